from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from typing import Any

from bs4 import BeautifulSoup

from transcript_engine.components.media import (
    MediaProgressContext,
    local_path_from_url,
    transcribe_local_media,
    transcribe_media_url,
)
from transcript_engine.components.whisper import MediaTranscriber, resolve_transcriber
from transcript_engine.components.ytdlp import NOT_CONFIGURED_MESSAGE, fetch_transcript_with_ytdlp
from transcript_engine.contracts.artifacts import ProviderResult, TranscriptRequest, TranscriptSegment
from transcript_engine.contracts.errors import ComponentError, DownloadError
from transcript_engine.contracts.options import ProviderFetchOptions
from transcript_engine.contracts.progress import MediaKind
from transcript_engine.providers.base import MISSING_PROVIDER_NOTE, AttemptLog, nothing_found
from transcript_engine.providers.captions import (
    json_transcript_to_plain_text,
    json_transcript_to_segments,
    vtt_to_plain_text,
    vtt_to_segments,
)
from transcript_engine.utils.formatting import normalize_transcript_text
from transcript_engine.utils.urls import is_direct_media_url, is_twitter_status_url, resolve_absolute_url


name = "generic"

CAPTION_ACCEPT = "text/vtt,text/plain,application/json;q=0.9,*/*;q=0.8"
TWITTER_SKIPPED_NOTE = (
    "Twitter transcript skipped (media transcript mode is auto; pass --media-mode prefer to force audio)."
)

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class EmbeddedTrack:
    url: str
    type: str | None
    language: str | None


@dataclass(frozen=True, slots=True)
class EmbeddedMedia:
    kind: MediaKind
    media_url: str | None
    track: EmbeddedTrack | None


def can_handle(request: TranscriptRequest) -> bool:
    return True


def _attr(tag: Any, attr: str) -> str | None:
    value = tag.get(attr) if tag is not None else None
    if isinstance(value, list):
        value = " ".join(value)
    return value.strip() if isinstance(value, str) and value.strip() else None


def select_preferred_track(tracks: list[EmbeddedTrack]) -> EmbeddedTrack | None:
    if not tracks:
        return None
    for track in tracks:
        if (track.language or "").lower().startswith("en"):
            return track
    return tracks[0]


def _first_media_url(soup: BeautifulSoup, tag: str, base_url: str) -> str | None:
    direct = soup.select_one(f"{tag}[src]")
    src = _attr(direct, "src")
    if src is None:
        src = _attr(soup.select_one(f"{tag} source[src]"), "src")
    return resolve_absolute_url(src, base_url)


def _og_media_url(soup: BeautifulSoup, kind: str, base_url: str) -> str | None:
    for attr in ("property", "name"):
        for suffix in ("", ":url", ":secure_url"):
            meta = soup.find("meta", attrs={attr: f"og:{kind}{suffix}"})
            content = _attr(meta, "content")
            if content:
                return resolve_absolute_url(content, base_url)
    return None


def pick_media_url(candidates: list[str | None]) -> str | None:
    fallback = None
    for candidate in candidates:
        if not candidate:
            continue
        if is_direct_media_url(candidate):
            return candidate
        fallback = fallback or candidate
    return fallback


def detect_embedded_media(page: str, base_url: str) -> EmbeddedMedia | None:
    soup = BeautifulSoup(page, "html.parser")
    tracks: list[EmbeddedTrack] = []
    for element in soup.find_all("track"):
        if (_attr(element, "kind") or "").lower() not in ("captions", "subtitles"):
            continue
        url = resolve_absolute_url(_attr(element, "src"), base_url)
        if url is None:
            continue
        language = _attr(element, "srclang") or _attr(element, "lang")
        tracks.append(
            EmbeddedTrack(url=url, type=_attr(element, "type"), language=language.lower() if language else None)
        )
    track = select_preferred_track(tracks)

    video_url = _first_media_url(soup, "video", base_url)
    og_video = _og_media_url(soup, "video", base_url)
    if video_url or og_video:
        return EmbeddedMedia(kind="video", media_url=pick_media_url([video_url, og_video]), track=track)

    audio_url = _first_media_url(soup, "audio", base_url)
    og_audio = _og_media_url(soup, "audio", base_url)
    if audio_url or og_audio:
        return EmbeddedMedia(kind="audio", media_url=pick_media_url([audio_url, og_audio]), track=track)

    has_video = soup.find("video") is not None
    has_audio = not has_video and soup.find("audio") is not None
    if track is not None or has_video or has_audio:
        return EmbeddedMedia(kind="audio" if has_audio else "video", media_url=None, track=track)
    return None


async def fetch_caption_track(
    options: ProviderFetchOptions,
    track: EmbeddedTrack,
    notes: list[str],
) -> tuple[str, list[TranscriptSegment] | None] | None:
    include_segments = options.transcript_timestamps
    try:
        response = await options.fetcher.request("GET", track.url, headers={"Accept": CAPTION_ACCEPT})
    except DownloadError as exc:
        notes.append(f"Embedded captions fetch failed: {exc}")
        return None
    if not response.ok:
        notes.append(f"Embedded captions fetch failed ({response.status})")
        return None
    body = response.text()
    content_type = (response.header("content-type") or "").lower()
    declared = (track.type or "").lower()

    if "application/json" in declared or "application/json" in content_type:
        try:
            payload = json.loads(body)
        except ValueError:
            notes.append("Embedded captions JSON parse failed")
            return None
        text = json_transcript_to_plain_text(payload)
        if not text:
            return None
        return text, json_transcript_to_segments(payload) if include_segments else None

    if "text/vtt" in declared or "text/vtt" in content_type or track.url.lower().endswith(".vtt"):
        plain = vtt_to_plain_text(body)
        if not plain:
            return None
        return plain, vtt_to_segments(body) if include_segments else None

    trimmed = body.strip()
    return (trimmed, None) if trimmed else None


async def _direct_media(
    request: TranscriptRequest,
    options: ProviderFetchOptions,
    transcriber: MediaTranscriber,
    log: AttemptLog,
    media_url: str,
    kind: MediaKind | None,
) -> ProviderResult | None:
    """Transcribe a direct media URL (or local file) through the orchestrator."""
    if not transcriber.has_any_provider():
        log.note(MISSING_PROVIDER_NOTE)
        return None
    log.push("whisper")
    progress = MediaProgressContext(
        url=request.url,
        service="generic",
        sink=options.progress,
        media_kind=kind or options.media_kind_hint or "audio",
    )
    try:
        if media_url.startswith("file://"):
            outcome = await transcribe_local_media(
                local_path_from_url(media_url),
                transcriber=transcriber,
                notes=log.notes,
                progress=progress,
            )
        else:
            outcome = await transcribe_media_url(
                fetcher=options.fetcher,
                transcriber=transcriber,
                url=media_url,
                filename_hint="media",
                duration_hint=None,
                notes=log.notes,
                progress=progress,
            )
    except (ComponentError, OSError) as exc:
        log.note(f"Media download failed: {exc}")
        return None
    if outcome.ok:
        return log.whisper_result(
            outcome,
            metadata={"provider": "generic", "kind": kind or "media", "mediaUrl": media_url},
        )
    if outcome.error is not None:
        log.note(f"Media transcription failed: {outcome.error}")
    return None


async def _ytdlp_media(
    request: TranscriptRequest,
    options: ProviderFetchOptions,
    transcriber: MediaTranscriber,
    log: AttemptLog,
    media_url: str,
    kind: MediaKind | None,
) -> ProviderResult | None:
    if not options.yt_dlp_path:
        log.note(NOT_CONFIGURED_MESSAGE)
        return None
    if not transcriber.has_any_provider():
        log.note(MISSING_PROVIDER_NOTE)
        return None
    log.push("yt-dlp")
    outcome = await fetch_transcript_with_ytdlp(
        ytdlp_path=options.yt_dlp_path,
        transcriber=transcriber,
        url=media_url,
        progress=MediaProgressContext(
            url=request.url,
            service="generic",
            sink=options.progress,
            media_kind=kind or options.media_kind_hint or "video",
        ),
        timeout_s=options.settings.ytdlp_timeout_s,
    )
    log.extend_notes(outcome.notes)
    if outcome.ok:
        return log.result(
            normalize_transcript_text(outcome.text or ""),
            "yt-dlp",
            metadata={"provider": "generic", "kind": kind or "media", "transcriptionProvider": outcome.provider},
        )
    if outcome.error is not None:
        log.note(f"yt-dlp transcription failed: {outcome.error}")
    return None


async def _twitter(
    request: TranscriptRequest,
    options: ProviderFetchOptions,
    transcriber: MediaTranscriber,
    log: AttemptLog,
    kind: MediaKind | None,
) -> ProviderResult:
    if not options.yt_dlp_path:
        return ProviderResult(
            text=None,
            source=None,
            metadata={"provider": "generic", "kind": "twitter", "reason": "missing_yt_dlp"},
            attempted_providers=tuple(log.attempted),
            notes=NOT_CONFIGURED_MESSAGE,
        )
    if not transcriber.has_any_provider():
        return ProviderResult(
            text=None,
            source=None,
            metadata={"provider": "generic", "kind": "twitter", "reason": "missing_transcription_keys"},
            attempted_providers=tuple(log.attempted),
            notes=MISSING_PROVIDER_NOTE,
        )

    log.push("yt-dlp")
    extra_args: list[str] = []
    cookie_source = options.cookies_from_browser
    if cookie_source:
        extra_args.extend(["--cookies-from-browser", cookie_source])
        log.note(f"Using X cookies from {cookie_source}")

    outcome = await fetch_transcript_with_ytdlp(
        ytdlp_path=options.yt_dlp_path,
        transcriber=transcriber,
        url=request.url,
        progress=MediaProgressContext(
            url=request.url,
            service="generic",
            sink=options.progress,
            media_kind=kind or options.media_kind_hint or "video",
        ),
        extra_args=extra_args or None,
        timeout_s=options.settings.ytdlp_timeout_s,
    )
    log.extend_notes(outcome.notes)
    if outcome.ok:
        return log.result(
            normalize_transcript_text(outcome.text or ""),
            "yt-dlp",
            metadata={
                "provider": "generic",
                "kind": "twitter",
                "transcriptionProvider": outcome.provider,
                "cookieSource": cookie_source,
            },
        )
    if outcome.error is not None:
        log.note(f"yt-dlp transcription failed: {outcome.error}")
    return nothing_found(
        log,
        provider="generic",
        kind="twitter",
        reason="yt_dlp_failed" if outcome.error is not None else "no_transcript",
        transcriptionProvider=outcome.provider,
    )


async def fetch_transcript(request: TranscriptRequest, options: ProviderFetchOptions) -> ProviderResult:
    """Embedded caption tracks, then direct or embedded media, then X/Twitter via yt-dlp."""
    url = request.url
    log = AttemptLog()
    transcriber = resolve_transcriber(options)

    if is_direct_media_url(url) or url.startswith("file://"):
        result = await _direct_media(request, options, transcriber, log, url, options.media_kind_hint)
        if result is not None:
            return result
        return nothing_found(log, provider="generic", kind="media", reason="media_failed")

    embedded = detect_embedded_media(request.html, url) if request.html else None
    twitter = is_twitter_status_url(url)
    has_embedded_media = embedded is not None
    kind = options.media_kind_hint or (embedded.kind if embedded is not None else None)

    if embedded is not None and embedded.track is not None:
        log.push("embedded")
        caption = await fetch_caption_track(options, embedded.track, log.notes)
        if caption is not None:
            text, segments = caption
            return log.result(
                normalize_transcript_text(text),
                "embedded",
                segments=segments if options.transcript_timestamps else None,
                metadata={
                    "provider": "embedded",
                    "kind": embedded.kind,
                    "trackUrl": embedded.track.url,
                    "trackType": embedded.track.type,
                    "trackLanguage": embedded.track.language,
                },
            )

    should_attempt_media = options.media_transcript_mode == "prefer" or (twitter and has_embedded_media)
    media_url = embedded.media_url if should_attempt_media and embedded is not None else None
    if should_attempt_media and media_url:
        if is_direct_media_url(media_url):
            result = await _direct_media(request, options, transcriber, log, media_url, kind)
        else:
            result = await _ytdlp_media(request, options, transcriber, log, media_url, kind)
        if result is not None:
            return result
    elif should_attempt_media and embedded is not None and not twitter:
        result = await _ytdlp_media(request, options, transcriber, log, url, kind)
        if result is not None:
            return result

    if twitter and options.media_transcript_mode != "prefer" and not has_embedded_media:
        return ProviderResult(
            text=None,
            source=None,
            metadata={"provider": "generic", "kind": "twitter", "reason": "media_mode_auto"},
            attempted_providers=tuple(log.attempted),
            notes=TWITTER_SKIPPED_NOTE,
        )

    if not twitter:
        return nothing_found(log, provider="generic", reason="not_implemented")

    return await _twitter(request, options, transcriber, log, kind)


__all__ = [
    "CAPTION_ACCEPT",
    "EmbeddedMedia",
    "EmbeddedTrack",
    "TWITTER_SKIPPED_NOTE",
    "can_handle",
    "detect_embedded_media",
    "fetch_caption_track",
    "fetch_transcript",
    "name",
    "pick_media_url",
    "select_preferred_track",
]
