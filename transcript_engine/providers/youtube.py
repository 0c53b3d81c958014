from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from functools import partial
from typing import Any, Awaitable, Callable, Literal

from transcript_engine.adapters.http import DEFAULT_USER_AGENT, get_text
from transcript_engine.components.media import MediaProgressContext
from transcript_engine.components.whisper import MediaTranscriber, resolve_transcriber
from transcript_engine.components.ytdlp import fetch_duration_seconds_with_ytdlp, fetch_transcript_with_ytdlp
from transcript_engine.contracts.artifacts import ProviderResult, TranscriptRequest, TranscriptSource
from transcript_engine.contracts.errors import TranscriptModeError
from transcript_engine.contracts.options import ProviderFetchOptions, YoutubeTranscriptMode
from transcript_engine.contracts.progress import TranscriptStart
from transcript_engine.providers.base import AttemptLog, nothing_found, run_attempts
from transcript_engine.providers.youtube_sources import (
    YoutubeTranscript,
    extract_youtube_duration_seconds,
    extract_youtubei_transcript_config,
    fetch_transcript_from_caption_tracks,
    fetch_transcript_from_transcript_endpoint,
    fetch_transcript_with_apify,
    fetch_youtube_duration_seconds_via_player,
)
from transcript_engine.utils.formatting import normalize_transcript_text
from transcript_engine.utils.urls import extract_youtube_video_id, is_youtube_url


name = "youtube"

_BOOTSTRAP_RE = re.compile(r"ytcfg\.set|ytInitialPlayerResponse")

logger = logging.getLogger(__name__)


def can_handle(request: TranscriptRequest) -> bool:
    return is_youtube_url(request.url)


def check_mode_contract(options: ProviderFetchOptions, *, has_provider: bool) -> None:
    """Raise for strict modes whose prerequisites are missing; runs before any network access."""
    mode = options.youtube_transcript_mode
    if mode == "yt-dlp" and not options.yt_dlp_path:
        raise TranscriptModeError("Missing yt-dlp binary for --youtube yt-dlp (set YT_DLP_PATH or install yt-dlp)")
    if mode == "yt-dlp" and not has_provider:
        raise TranscriptModeError(
            "Missing transcription provider for --youtube yt-dlp "
            "(install whisper-cpp or set OPENAI_API_KEY/FAL_KEY)"
        )
    if mode == "no-auto" and not (options.yt_dlp_path and has_provider):
        raise TranscriptModeError(
            "--youtube no-auto requires yt-dlp and a transcription provider "
            "(whisper-cpp, OPENAI_API_KEY, or FAL_KEY) for fallback"
        )
    if mode == "apify" and not options.apify_api_token:
        raise TranscriptModeError("Missing APIFY_API_TOKEN for --youtube apify")


async def _ensure_watch_page(request: TranscriptRequest, options: ProviderFetchOptions) -> str | None:
    page = request.html
    if isinstance(page, str) and _BOOTSTRAP_RE.search(page):
        return page
    fetched = await get_text(
        options.fetcher,
        request.url,
        headers={"User-Agent": DEFAULT_USER_AGENT, "Accept": "text/html,application/xhtml+xml"},
    )
    return fetched if fetched is not None else page


async def _resolve_duration(
    options: ProviderFetchOptions,
    *,
    page: str,
    video_id: str,
    url: str,
) -> float | None:
    duration = extract_youtube_duration_seconds(page)
    if not duration:
        duration = await fetch_youtube_duration_seconds_via_player(options.fetcher, page=page, video_id=video_id)
    if not duration and options.yt_dlp_path:
        duration = await fetch_duration_seconds_with_ytdlp(
            options.yt_dlp_path,
            url,
            timeout_s=options.settings.ytdlp_probe_timeout_s,
        )
    return duration if duration and duration > 0 else None


type YoutubeStrategy = Literal["youtubei", "captionTracks", "creatorCaptions", "yt-dlp", "apify"]
type PlannedAttempt = tuple[YoutubeStrategy, str | None]


def plan_attempts(mode: YoutubeTranscriptMode, *, can_run_ytdlp: bool) -> tuple[PlannedAttempt, ...]:
    """Ordered strategies for a mode, each paired with the progress hint it announces."""
    if mode == "web":
        return (("youtubei", None), ("captionTracks", None))
    if mode == "no-auto":
        return (
            ("creatorCaptions", None),
            ("yt-dlp", "YouTube: no creator captions; falling back to yt-dlp audio"),
        )
    if mode == "yt-dlp":
        return (("yt-dlp", "YouTube: downloading audio (yt-dlp)"),)
    if mode == "apify":
        return (("apify", "YouTube: fetching transcript (Apify)"),)
    if can_run_ytdlp:
        return (
            ("youtubei", None),
            ("captionTracks", None),
            ("yt-dlp", "YouTube: captions unavailable; falling back to yt-dlp audio"),
            ("apify", "YouTube: yt-dlp transcription failed; trying Apify"),
        )
    return (
        ("youtubei", None),
        ("captionTracks", None),
        ("apify", "YouTube: captions unavailable; trying Apify"),
    )


@dataclass(slots=True)
class YoutubeFlow:
    """State shared by the YouTube strategies for one request."""

    request: TranscriptRequest
    options: ProviderFetchOptions
    transcriber: MediaTranscriber
    log: AttemptLog
    page: str
    video_id: str
    duration_metadata: dict[str, Any] = field(default_factory=dict)

    @property
    def url(self) -> str:
        return self.request.url

    def hint(self, message: str | None) -> None:
        if message:
            self.options.progress.emit(TranscriptStart(url=self.url, service="youtube", hint=message))

    def caption_result(self, transcript: YoutubeTranscript, source: TranscriptSource, **metadata: Any) -> ProviderResult:
        return self.log.result(
            normalize_transcript_text(transcript.text),
            source,
            segments=transcript.segments if self.options.transcript_timestamps else None,
            metadata={"provider": source, **metadata, **self.duration_metadata},
        )


async def _youtubei(flow: YoutubeFlow, hint: str | None) -> ProviderResult | None:
    flow.hint("YouTube: checking captions (youtubei)")
    config = extract_youtubei_transcript_config(flow.page)
    if config is None:
        flow.hint("YouTube: youtubei unavailable; checking caption tracks")
        return None
    flow.log.push("youtubei")
    transcript = await fetch_transcript_from_transcript_endpoint(
        flow.options.fetcher,
        config=config,
        original_url=flow.url,
    )
    if transcript is not None and transcript.text:
        return flow.caption_result(transcript, "youtubei")
    flow.hint("YouTube: youtubei empty; checking caption tracks")
    return None


async def _caption_tracks(flow: YoutubeFlow, hint: str | None) -> ProviderResult | None:
    flow.hint(hint)
    flow.log.push("captionTracks")
    captions = await fetch_transcript_from_caption_tracks(
        flow.options.fetcher,
        page=flow.page,
        original_url=flow.url,
        video_id=flow.video_id,
    )
    if captions is not None and captions.text:
        return flow.caption_result(captions, "captionTracks")
    return None


async def _creator_captions(flow: YoutubeFlow, hint: str | None) -> ProviderResult | None:
    flow.hint(hint or "YouTube: checking creator captions only (skipping auto-generated)")
    flow.log.push("captionTracks")
    manual = await fetch_transcript_from_caption_tracks(
        flow.options.fetcher,
        page=flow.page,
        original_url=flow.url,
        video_id=flow.video_id,
        skip_auto_generated=True,
    )
    if manual is not None and manual.text:
        return flow.caption_result(manual, "captionTracks", manualOnly=True)
    flow.log.note("No creator captions found, using yt-dlp transcription")
    return None


async def _ytdlp_audio(flow: YoutubeFlow, hint: str | None) -> ProviderResult | None:
    options = flow.options
    flow.hint(hint)
    flow.log.push("yt-dlp")
    outcome = await fetch_transcript_with_ytdlp(
        ytdlp_path=options.yt_dlp_path,
        transcriber=flow.transcriber,
        url=flow.url,
        progress=MediaProgressContext(url=flow.url, service="youtube", sink=options.progress, media_kind="video"),
        timeout_s=options.settings.ytdlp_timeout_s,
    )
    flow.log.extend_notes(outcome.notes)
    if outcome.ok:
        return flow.log.result(
            normalize_transcript_text(outcome.text or ""),
            "yt-dlp",
            metadata={"provider": "yt-dlp", "transcriptionProvider": outcome.provider, **flow.duration_metadata},
        )
    if options.youtube_transcript_mode == "yt-dlp" and outcome.error is not None:
        raise outcome.error
    logger.debug("yt-dlp transcription failed for %s: %s", flow.url, outcome.error)
    return None


async def _apify(flow: YoutubeFlow, hint: str | None) -> ProviderResult | None:
    options = flow.options
    if not options.apify_api_token:
        return None
    flow.hint(hint)
    flow.log.push("apify")
    text = await fetch_transcript_with_apify(
        options.fetcher,
        api_token=options.apify_api_token,
        url=flow.url,
        actor=options.settings.apify_youtube_actor,
    )
    if not text:
        return None
    return flow.log.result(
        normalize_transcript_text(text),
        "apify",
        metadata={"provider": "apify", **flow.duration_metadata},
    )


_STRATEGIES: dict[YoutubeStrategy, Callable[[YoutubeFlow, str | None], Awaitable[ProviderResult | None]]] = {
    "youtubei": _youtubei,
    "captionTracks": _caption_tracks,
    "creatorCaptions": _creator_captions,
    "yt-dlp": _ytdlp_audio,
    "apify": _apify,
}


async def fetch_transcript(request: TranscriptRequest, options: ProviderFetchOptions) -> ProviderResult:
    """Run the caption, yt-dlp and Apify strategies planned for the requested mode.

    ``auto`` tries youtubei, then caption tracks, then yt-dlp audio (when a binary and a
    transcription backend exist), then Apify. ``web`` stops after captions. ``no-auto``
    accepts creator captions only before falling back to yt-dlp. ``yt-dlp`` and ``apify``
    force a single strategy and raise when it is misconfigured or (for yt-dlp) fails.
    """
    log = AttemptLog()
    transcriber = resolve_transcriber(options)
    has_provider = transcriber.has_any_provider()
    check_mode_contract(options, has_provider=has_provider)

    page = await _ensure_watch_page(request, options)
    if not page:
        return log.result(None, None)

    video_id = (request.resource_key or "").strip() or extract_youtube_video_id(request.url)
    if not video_id:
        return log.result(None, None)

    duration = await _resolve_duration(options, page=page, video_id=video_id, url=request.url)
    flow = YoutubeFlow(
        request=request,
        options=options,
        transcriber=transcriber,
        log=log,
        page=page,
        video_id=video_id,
        duration_metadata={"durationSeconds": duration} if duration else {},
    )
    plan = plan_attempts(
        options.youtube_transcript_mode,
        can_run_ytdlp=bool(options.yt_dlp_path and has_provider),
    )
    result = await run_attempts(partial(_STRATEGIES[strategy], flow, hint) for strategy, hint in plan)
    if result is not None:
        return result
    return nothing_found(log, provider="youtube", reason="no_transcript_available", **flow.duration_metadata)


__all__ = ["YoutubeFlow", "can_handle", "check_mode_contract", "fetch_transcript", "name", "plan_attempts"]
