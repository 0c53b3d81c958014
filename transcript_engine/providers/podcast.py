from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Awaitable

from transcript_engine.adapters.http import get_text
from transcript_engine.components.media import MediaProgressContext, transcribe_media_url
from transcript_engine.components.whisper import MediaTranscriber, resolve_transcriber
from transcript_engine.components.ytdlp import fetch_transcript_with_ytdlp
from transcript_engine.contracts.artifacts import ProviderResult, TranscriptRequest, WhisperTranscriptionResult
from transcript_engine.contracts.errors import ComponentError
from transcript_engine.contracts.options import ProviderFetchOptions
from transcript_engine.providers.base import MISSING_PROVIDER_NOTE, AttemptLog, nothing_found, run_attempts
from transcript_engine.providers.podcast_sources import (
    apple_ids_from_url,
    decode_xml_entities,
    extract_apple_embedded_stream_url,
    extract_enclosure_for_episode,
    extract_enclosure_from_feed,
    extract_og_audio_url,
    fetch_spotify_episode,
    is_apple_podcasts_url,
    is_podcast_host,
    looks_like_feed_url,
    looks_like_rss_or_atom_feed,
    lookup_apple_episode,
    resolve_podcast_feed_url_from_itunes_search,
    spotify_episode_id,
    try_fetch_transcript_from_feed_xml,
)
from transcript_engine.utils.formatting import normalize_transcript_text
from transcript_engine.utils.urls import is_direct_media_url


name = "podcast"

logger = logging.getLogger(__name__)


def can_handle(request: TranscriptRequest) -> bool:
    # Direct media wins even when the path mentions "podcast".
    if is_direct_media_url(request.url):
        return False
    if isinstance(request.html, str) and looks_like_rss_or_atom_feed(request.html):
        return True
    return is_podcast_host(request.url) or looks_like_feed_url(request.url)


@dataclass(slots=True)
class PodcastFlow:
    """State shared by the podcast strategies for one request."""

    request: TranscriptRequest
    options: ProviderFetchOptions
    transcriber: MediaTranscriber
    log: AttemptLog

    @property
    def page(self) -> str | None:
        return self.request.html if isinstance(self.request.html, str) else None

    def missing_provider(self) -> ProviderResult | None:
        if self.transcriber.has_any_provider():
            return None
        return ProviderResult(
            text=None,
            source=None,
            metadata={"provider": "podcast", "reason": "missing_transcription_keys"},
            attempted_providers=tuple(self.log.attempted),
            notes=MISSING_PROVIDER_NOTE,
        )

    async def transcribe(
        self,
        url: str,
        *,
        filename_hint: str,
        duration_hint: float | None,
    ) -> WhisperTranscriptionResult:
        return await transcribe_media_url(
            fetcher=self.options.fetcher,
            transcriber=self.transcriber,
            url=url,
            filename_hint=filename_hint,
            duration_hint=duration_hint,
            notes=self.log.notes,
            progress=MediaProgressContext(url=self.request.url, service="podcast", sink=self.options.progress),
        )

    def feed_transcript_result(self, transcript: Any, **metadata: Any) -> ProviderResult:
        return self.log.result(
            normalize_transcript_text(transcript.text),
            "podcastTranscript",
            segments=transcript.segments if self.options.transcript_timestamps else None,
            metadata={
                "provider": "podcast",
                "transcriptUrl": transcript.transcript_url,
                "transcriptType": transcript.transcript_type,
                **metadata,
            },
        )

    async def transcribe_to_result(
        self,
        url: str,
        *,
        filename_hint: str,
        duration_hint: float | None,
        metadata: dict[str, Any],
    ) -> ProviderResult:
        missing = self.missing_provider()
        if missing is not None:
            return missing
        self.log.push_once("whisper")
        outcome = await self.transcribe(url, filename_hint=filename_hint, duration_hint=duration_hint)
        return self.log.whisper_result(outcome, metadata=metadata, include_provider_on_failure=True)


async def _guarded(
    flow: PodcastFlow,
    label: str,
    pending: Awaitable[ProviderResult],
) -> ProviderResult | None:
    try:
        return await pending
    except (ComponentError, OSError) as exc:
        flow.log.note(f"{label} media download failed: {exc}")
        return None


async def _inline_feed_transcript(flow: PodcastFlow) -> ProviderResult | None:
    page = flow.page
    if not page or "podcast:transcript" not in page.lower():
        return None
    flow.log.push_once("podcastTranscript")
    transcript = await try_fetch_transcript_from_feed_xml(
        flow.options.fetcher,
        feed_xml=page,
        episode_title=None,
        notes=flow.log.notes,
    )
    if transcript is None:
        return None
    return flow.feed_transcript_result(transcript, kind="rss_podcast_transcript")


async def _spotify(flow: PodcastFlow) -> ProviderResult | None:
    episode_id = spotify_episode_id(flow.request.url)
    if episode_id is None:
        return None
    fetcher = flow.options.fetcher
    episode = await fetch_spotify_episode(fetcher, episode_id, flow.log.notes)
    if episode is None:
        return None
    feed_url = await resolve_podcast_feed_url_from_itunes_search(fetcher, episode.show_name or episode.title)
    if feed_url is None:
        flow.log.note("Spotify: could not resolve the podcast feed via iTunes search")
        return None
    feed_xml = await get_text(fetcher, feed_url)
    if not feed_xml:
        flow.log.note(f"Spotify: feed fetch failed ({feed_url})")
        return None

    if "podcast:transcript" in feed_xml.lower():
        flow.log.push_once("podcastTranscript")
        transcript = await try_fetch_transcript_from_feed_xml(
            fetcher,
            feed_xml=feed_xml,
            episode_title=episode.title,
            notes=flow.log.notes,
        )
        if transcript is not None:
            return flow.feed_transcript_result(
                transcript,
                kind="spotify_rss_transcript",
                episodeTitle=episode.title,
                feedUrl=feed_url,
            )

    enclosure = extract_enclosure_for_episode(feed_xml, episode.title)
    if enclosure is None:
        flow.log.note(f"Spotify: episode not found in feed ({episode.title})")
        return None
    enclosure_url = decode_xml_entities(enclosure.enclosure_url)
    return await _guarded(
        flow,
        "Spotify",
        flow.transcribe_to_result(
            enclosure_url,
            filename_hint="episode.mp3",
            duration_hint=enclosure.duration_seconds,
            metadata={
                "provider": "podcast",
                "kind": "spotify_itunes_rss_enclosure",
                "episodeTitle": episode.title,
                "feedUrl": feed_url,
                "enclosureUrl": enclosure_url,
                "durationSeconds": enclosure.duration_seconds,
            },
        ),
    )


async def _apple_lookup(flow: PodcastFlow) -> ProviderResult | None:
    if not is_apple_podcasts_url(flow.request.url):
        return None
    show_id, episode_id = apple_ids_from_url(flow.request.url)
    if not show_id or not episode_id:
        return None
    fetcher = flow.options.fetcher
    episode = await lookup_apple_episode(fetcher, show_id, episode_id)
    if episode is None:
        return None

    if episode.feed_url and episode.title:
        feed_xml = await get_text(fetcher, episode.feed_url)
        if feed_xml and "podcast:transcript" in feed_xml.lower():
            flow.log.push_once("podcastTranscript")
            transcript = await try_fetch_transcript_from_feed_xml(
                fetcher,
                feed_xml=feed_xml,
                episode_title=episode.title,
                notes=flow.log.notes,
            )
            if transcript is not None:
                return flow.feed_transcript_result(
                    transcript,
                    kind="apple_rss_transcript",
                    episodeTitle=episode.title,
                    feedUrl=episode.feed_url,
                )

    if not episode.episode_url:
        return None
    return await _guarded(
        flow,
        "Apple Podcasts",
        flow.transcribe_to_result(
            episode.episode_url,
            filename_hint="episode.mp3",
            duration_hint=episode.duration_seconds,
            metadata={
                "provider": "podcast",
                "kind": "apple_itunes_episode",
                "episodeTitle": episode.title,
                "episodeUrl": episode.episode_url,
                "feedUrl": episode.feed_url,
                "durationSeconds": episode.duration_seconds,
            },
        ),
    )


async def _apple_embedded(flow: PodcastFlow) -> ProviderResult | None:
    page = flow.page
    if not page or not is_apple_podcasts_url(flow.request.url):
        return None
    stream_url = extract_apple_embedded_stream_url(page)
    if stream_url is None:
        return None
    return await _guarded(
        flow,
        "Apple Podcasts",
        flow.transcribe_to_result(
            stream_url,
            filename_hint="episode.mp3",
            duration_hint=None,
            metadata={"provider": "podcast", "kind": "apple_embedded", "streamUrl": stream_url},
        ),
    )


async def _feed_enclosure(flow: PodcastFlow) -> ProviderResult | None:
    page = flow.page
    enclosure = extract_enclosure_from_feed(page) if page else None
    if enclosure is None:
        return None
    enclosure_url = decode_xml_entities(enclosure.enclosure_url)
    try:
        return await flow.transcribe_to_result(
            enclosure_url,
            filename_hint="episode.mp3",
            duration_hint=enclosure.duration_seconds,
            metadata={
                "provider": "podcast",
                "kind": "rss_enclosure",
                "enclosureUrl": enclosure_url,
                "durationSeconds": enclosure.duration_seconds,
            },
        )
    except (ComponentError, OSError) as exc:
        logger.debug("enclosure transcription failed: %s", exc)
        return ProviderResult(
            text=None,
            source=None,
            metadata={"provider": "podcast", "kind": "rss_enclosure", "enclosureUrl": enclosure_url},
            attempted_providers=tuple(flow.log.attempted),
            notes=f"Podcast enclosure download failed: {exc}",
        )


async def _og_audio(flow: PodcastFlow) -> ProviderResult | None:
    page = flow.page
    og_audio_url = extract_og_audio_url(page) if page else None
    if og_audio_url is None:
        return None
    flow.log.push("whisper")
    metadata = {"provider": "podcast", "kind": "og_audio", "ogAudioUrl": og_audio_url}
    try:
        outcome = await flow.transcribe(og_audio_url, filename_hint="audio.mp3", duration_hint=None)
    except (ComponentError, OSError) as exc:
        outcome = WhisperTranscriptionResult(text=None, provider=None, error=exc)
    if outcome.ok:
        flow.log.note("Used og:audio media (may be a preview clip, not the full episode)")
        return flow.log.whisper_result(outcome, metadata=metadata)
    return ProviderResult(
        text=None,
        source=None,
        metadata=metadata,
        attempted_providers=tuple(flow.log.attempted),
        notes=str(outcome.error) if outcome.error is not None else None,
    )


async def _ytdlp(flow: PodcastFlow) -> ProviderResult | None:
    options = flow.options
    if not options.yt_dlp_path:
        return None
    flow.log.push("yt-dlp")
    url = flow.request.url
    outcome = await fetch_transcript_with_ytdlp(
        ytdlp_path=options.yt_dlp_path,
        transcriber=flow.transcriber,
        url=url,
        progress=MediaProgressContext(url=url, service="podcast", sink=options.progress),
        timeout_s=options.settings.ytdlp_timeout_s,
    )
    flow.log.extend_notes(outcome.notes)
    if not outcome.ok and outcome.error is not None:
        flow.log.note(f"yt-dlp transcription failed: {outcome.error}")
    return flow.log.result(
        normalize_transcript_text(outcome.text) if outcome.ok and outcome.text else None,
        "yt-dlp" if outcome.ok else None,
        metadata={"provider": "podcast", "kind": "yt_dlp", "transcriptionProvider": outcome.provider},
    )


async def fetch_transcript(request: TranscriptRequest, options: ProviderFetchOptions) -> ProviderResult:
    """Inline feed transcript first, then Spotify, Apple, the feed enclosure, og:audio and yt-dlp."""
    flow = PodcastFlow(
        request=request,
        options=options,
        transcriber=resolve_transcriber(options),
        log=AttemptLog(),
    )
    result = await run_attempts(
        (
            lambda: _inline_feed_transcript(flow),
            lambda: _spotify(flow),
            lambda: _apple_lookup(flow),
            lambda: _apple_embedded(flow),
            lambda: _feed_enclosure(flow),
            lambda: _og_audio(flow),
            lambda: _ytdlp(flow),
        )
    )
    if result is not None:
        return result

    missing = flow.missing_provider()
    if missing is not None:
        return missing
    return nothing_found(flow.log, provider="podcast", reason="no_enclosure_and_no_yt_dlp")


__all__ = ["PodcastFlow", "can_handle", "fetch_transcript", "name"]
