from __future__ import annotations

import logging
from dataclasses import replace
from typing import Any

from transcript_engine.contracts.artifacts import (
    CacheMode,
    ProviderResult,
    TranscriptRequest,
    TranscriptResolution,
    TranscriptSegment,
)
from transcript_engine.contracts.options import ProviderFetchOptions
from transcript_engine.contracts.progress import TranscriptDone, TranscriptStart
from transcript_engine.pipeline.cache import (
    DEFAULT_TTL_POLICY,
    CacheTtlPolicy,
    TranscriptCache,
    append_note,
    map_cached_source,
    read_transcript_cache,
    write_transcript_cache,
)
from transcript_engine.providers import select_provider
from transcript_engine.utils.time import Timer
from transcript_engine.utils.urls import (
    extract_embedded_youtube_url,
    extract_youtube_video_id,
    is_youtube_url,
    normalize_url,
)

FALLBACK_NOTE = "Falling back to cached transcript content after provider miss"

_PROGRESS_SERVICES = {"youtube": "YouTube", "podcast": "Podcast"}

logger = logging.getLogger(__name__)


def _resource_key(url: str) -> str | None:
    return extract_youtube_video_id(url) if is_youtube_url(url) else None


def _segments_from_metadata(metadata: dict[str, Any] | None) -> list[TranscriptSegment] | None:
    if not metadata:
        return None
    raw = metadata.get("segments")
    if not isinstance(raw, list):
        return None
    segments: list[TranscriptSegment] = []
    for item in raw:
        if isinstance(item, TranscriptSegment):
            segments.append(item)
        elif isinstance(item, dict) and isinstance(item.get("text"), str):
            start = item.get("start_s")
            end = item.get("end_s")
            segments.append(
                TranscriptSegment(
                    text=item["text"],
                    start_s=float(start) if isinstance(start, (int, float)) else 0.0,
                    end_s=float(end) if isinstance(end, (int, float)) else None,
                )
            )
    return segments or None


def _result_metadata(result: ProviderResult, *, timestamps: bool) -> dict[str, Any]:
    metadata = dict(result.metadata)
    if result.segments:
        metadata["segments"] = [segment.to_dict() for segment in result.segments]
        if timestamps:
            metadata["timestamps"] = True
    elif timestamps and metadata.get("timestamps") is None:
        metadata["timestamps"] = False
    return metadata


async def resolve_transcript_for_link(
    url: str,
    html: str | None,
    options: ProviderFetchOptions,
    cache: TranscriptCache | None = None,
    cache_mode: CacheMode = "default",
    file_mtime: float | None = None,
    *,
    ttl_policy: CacheTtlPolicy = DEFAULT_TTL_POLICY,
) -> TranscriptResolution:
    """Resolve the best available transcript for ``url``.

    Consults the cache first, dispatches to the first provider that claims the link
    and writes the outcome back (negative results included). An expired cache entry
    is served as a fallback when the provider comes back empty.
    """
    normalized_url = normalize_url(url)
    embedded = None if is_youtube_url(normalized_url) else extract_embedded_youtube_url(html)
    effective_url = embedded or normalized_url
    if embedded:
        logger.debug("Resolving embedded YouTube video %s for %s", embedded, normalized_url)

    resource_key = _resource_key(effective_url)
    request = TranscriptRequest(url=effective_url, html=html, resource_key=resource_key)
    provider = select_provider(request)

    lookup = await read_transcript_cache(normalized_url, cache_mode, cache, file_mtime)
    diagnostics = replace(lookup.diagnostics, attempted_providers=())
    if lookup.resolution is not None:
        logger.debug("Transcript cache hit for %s", normalized_url)
        return replace(lookup.resolution, diagnostics=diagnostics)

    label = _PROGRESS_SERVICES.get(provider.name)
    if label is not None:
        options.progress.emit(
            TranscriptStart(url=normalized_url, service=provider.name, hint=f"{label}: resolving transcript")
        )

    timer = Timer.start()
    result = await provider.fetch_transcript(request, options)
    logger.debug(
        "%s provider finished in %d ms (source=%s, attempted=%s)",
        provider.name,
        timer.elapsed_ms(),
        result.source,
        ",".join(result.attempted_providers),
    )

    has_text = bool(result.text)
    if label is not None:
        options.progress.emit(
            TranscriptDone(
                url=normalized_url,
                service=provider.name,
                ok=has_text,
                hint=f"{provider.name}/{result.source}" if result.source else provider.name,
            )
        )

    diagnostics = replace(
        diagnostics,
        provider=result.source,
        attempted_providers=result.attempted_providers,
        text_provided=has_text,
        notes=append_note(diagnostics.notes, result.notes) if result.notes else diagnostics.notes,
    )

    metadata = _result_metadata(result, timestamps=options.transcript_timestamps)
    if result.source is not None or result.text is not None:
        await write_transcript_cache(
            cache,
            url=normalized_url,
            service=provider.name,
            resource_key=resource_key,
            text=result.text,
            source=result.source,
            metadata=metadata,
            cache_mode=cache_mode,
            file_mtime=file_mtime,
            ttl_policy=ttl_policy,
        )

    cached = lookup.cached
    if not has_text and cached is not None and cached.content and cache_mode != "bypass":
        source = map_cached_source(cached.source)
        diagnostics = replace(
            diagnostics,
            cache_status="fallback",
            provider=source,
            text_provided=True,
            notes=append_note(diagnostics.notes, FALLBACK_NOTE),
        )
        return TranscriptResolution(
            text=cached.content,
            source=source,
            segments=_segments_from_metadata(cached.metadata) if options.transcript_timestamps else None,
            metadata=cached.metadata,
            diagnostics=diagnostics,
        )

    return TranscriptResolution(
        text=result.text,
        source=result.source,
        segments=result.segments if options.transcript_timestamps else None,
        metadata=metadata,
        diagnostics=diagnostics,
    )


__all__ = ["FALLBACK_NOTE", "resolve_transcript_for_link"]
