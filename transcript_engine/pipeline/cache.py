from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import Any, Callable, Protocol
from urllib.parse import urlsplit

from transcript_engine.contracts.artifacts import (
    KNOWN_TRANSCRIPT_SOURCES,
    CacheMode,
    TranscriptCacheEntry,
    TranscriptDiagnostics,
    TranscriptResolution,
    TranscriptSource,
)
from transcript_engine.pipeline.io import read_json_file, write_json_file
from transcript_engine.utils.hashing import sha256_text
from transcript_engine.utils.time import now_unix_ms


DEFAULT_TTL_MS = 1000 * 60 * 60 * 24 * 7
NEGATIVE_TTL_MS = 1000 * 60 * 60 * 6
CACHE_FORMAT_VERSION = 1

BYPASS_REQUESTED_NOTE = "Cache bypass requested"
BYPASS_IGNORED_NOTE = "Cached transcript ignored due to bypass request"
EXPIRED_NOTE = "Cached transcript expired; fetching fresh copy"
HIT_NOTE = "Served transcript from cache"

logger = logging.getLogger(__name__)


class TranscriptCache(Protocol):
    async def get(self, *, url: str, file_mtime: float | None = None) -> TranscriptCacheEntry | None: ...

    async def set(
        self,
        *,
        url: str,
        service: str,
        resource_key: str | None,
        content: str | None,
        source: str | None,
        ttl_ms: int,
        metadata: dict[str, Any] | None = None,
        file_mtime: float | None = None,
    ) -> None: ...


@dataclass(frozen=True, slots=True)
class CacheTtlPolicy:
    positive_ttl_ms: int = DEFAULT_TTL_MS
    negative_ttl_ms: int = NEGATIVE_TTL_MS

    def ttl_for(self, text: str | None) -> int:
        return self.positive_ttl_ms if text else self.negative_ttl_ms


DEFAULT_TTL_POLICY = CacheTtlPolicy()


@dataclass(frozen=True, slots=True)
class CacheLookup:
    cached: TranscriptCacheEntry | None
    resolution: TranscriptResolution | None
    diagnostics: TranscriptDiagnostics


def is_local_source(url: str) -> bool:
    scheme = urlsplit(url).scheme.lower()
    # Single letters are Windows drive prefixes.
    return scheme in ("", "file") or len(scheme) == 1


def transcript_cache_key(url: str, file_mtime: float | None = None) -> str:
    """Content-identity key; the mtime only participates for local files."""
    mtime = file_mtime if file_mtime is not None and is_local_source(url) else None
    payload = json.dumps(
        {"url": url, "fileMtime": mtime, "formatVersion": CACHE_FORMAT_VERSION},
        sort_keys=True,
    )
    return sha256_text(payload)


def map_cached_source(source: str | None) -> TranscriptSource | None:
    if source is None:
        return None
    if source in KNOWN_TRANSCRIPT_SOURCES:
        return source  # type: ignore[return-value]
    return "unknown"


def append_note(existing: str | None, note: str) -> str:
    return f"{existing}; {note}" if existing else note


def base_diagnostics(cache_mode: CacheMode) -> TranscriptDiagnostics:
    bypass = cache_mode == "bypass"
    return TranscriptDiagnostics(
        cache_mode=cache_mode,
        cache_status="bypassed" if bypass else "miss",
        notes=BYPASS_REQUESTED_NOTE if bypass else None,
    )


async def read_transcript_cache(
    url: str,
    cache_mode: CacheMode,
    cache: TranscriptCache | None,
    file_mtime: float | None = None,
) -> CacheLookup:
    cached = await cache.get(url=url, file_mtime=file_mtime) if cache is not None else None
    diagnostics = base_diagnostics(cache_mode)
    if cached is None:
        return CacheLookup(cached=None, resolution=None, diagnostics=diagnostics)

    provider = map_cached_source(cached.source)
    diagnostics = replace(
        diagnostics,
        provider=provider,
        attempted_providers=(provider,) if provider else (),
        text_provided=bool(cached.content),
    )

    if cache_mode == "bypass":
        diagnostics = replace(diagnostics, notes=append_note(diagnostics.notes, BYPASS_IGNORED_NOTE))
        return CacheLookup(cached=cached, resolution=None, diagnostics=diagnostics)

    if cached.expired:
        diagnostics = replace(
            diagnostics,
            cache_status="expired",
            notes=append_note(diagnostics.notes, EXPIRED_NOTE),
        )
        return CacheLookup(cached=cached, resolution=None, diagnostics=diagnostics)

    diagnostics = replace(diagnostics, cache_status="hit", notes=append_note(diagnostics.notes, HIT_NOTE))
    resolution = TranscriptResolution(text=cached.content, source=provider, metadata=cached.metadata)
    return CacheLookup(cached=cached, resolution=resolution, diagnostics=diagnostics)


async def write_transcript_cache(
    cache: TranscriptCache | None,
    *,
    url: str,
    service: str,
    resource_key: str | None,
    text: str | None,
    source: str | None,
    metadata: dict[str, Any] | None = None,
    cache_mode: CacheMode = "default",
    file_mtime: float | None = None,
    ttl_policy: CacheTtlPolicy = DEFAULT_TTL_POLICY,
) -> bool:
    """Store a positive or negative entry; returns whether anything was written."""
    if cache is None or cache_mode == "bypass":
        return False
    if text is None and source is None:
        return False

    await cache.set(
        url=url,
        service=service,
        resource_key=resource_key,
        content=text,
        source=source or ("unknown" if text else "unavailable"),
        ttl_ms=ttl_policy.ttl_for(text),
        metadata=metadata,
        file_mtime=file_mtime,
    )
    return True


def _entry_from_record(record: dict[str, Any], now_ms: int) -> TranscriptCacheEntry:
    expires_at = record.get("expiresAtMs")
    content = record.get("content")
    source = record.get("source")
    metadata = record.get("metadata")
    return TranscriptCacheEntry(
        content=content if isinstance(content, str) else None,
        source=map_cached_source(source) if isinstance(source, str) else None,
        expired=isinstance(expires_at, (int, float)) and expires_at <= now_ms,
        metadata=metadata if isinstance(metadata, dict) else None,
    )


def _build_record(
    *,
    url: str,
    service: str,
    resource_key: str | None,
    content: str | None,
    source: str | None,
    ttl_ms: int,
    metadata: dict[str, Any] | None,
    file_mtime: float | None,
    now_ms: int,
) -> dict[str, Any]:
    return {
        "url": url,
        "service": service,
        "resourceKey": resource_key,
        "content": content,
        "source": source,
        "metadata": metadata,
        "fileMtime": file_mtime,
        "createdAtMs": now_ms,
        "expiresAtMs": now_ms + ttl_ms,
        "formatVersion": CACHE_FORMAT_VERSION,
    }


@dataclass(slots=True)
class InMemoryTranscriptCache:
    clock: Callable[[], int] = now_unix_ms
    _records: dict[str, dict[str, Any]] = field(default_factory=dict)

    def __len__(self) -> int:
        return len(self._records)

    async def get(self, *, url: str, file_mtime: float | None = None) -> TranscriptCacheEntry | None:
        record = self._records.get(transcript_cache_key(url, file_mtime))
        if record is None:
            return None
        return _entry_from_record(record, self.clock())

    async def set(
        self,
        *,
        url: str,
        service: str,
        resource_key: str | None,
        content: str | None,
        source: str | None,
        ttl_ms: int,
        metadata: dict[str, Any] | None = None,
        file_mtime: float | None = None,
    ) -> None:
        self._records[transcript_cache_key(url, file_mtime)] = _build_record(
            url=url,
            service=service,
            resource_key=resource_key,
            content=content,
            source=source,
            ttl_ms=ttl_ms,
            metadata=metadata,
            file_mtime=file_mtime,
            now_ms=self.clock(),
        )


class JsonFileTranscriptCache:
    """One JSON document per key under ``root``."""

    def __init__(self, root: Path, *, clock: Callable[[], int] = now_unix_ms) -> None:
        self.root = Path(root)
        self._clock = clock

    def path_for(self, url: str, file_mtime: float | None = None) -> Path:
        return self.root / f"{transcript_cache_key(url, file_mtime)}.json"

    async def get(self, *, url: str, file_mtime: float | None = None) -> TranscriptCacheEntry | None:
        record = read_json_file(self.path_for(url, file_mtime))
        if not isinstance(record, dict):
            return None
        if record.get("formatVersion") != CACHE_FORMAT_VERSION:
            logger.debug("Ignoring cache entry with format %r for %s", record.get("formatVersion"), url)
            return None
        return _entry_from_record(record, self._clock())

    async def set(
        self,
        *,
        url: str,
        service: str,
        resource_key: str | None,
        content: str | None,
        source: str | None,
        ttl_ms: int,
        metadata: dict[str, Any] | None = None,
        file_mtime: float | None = None,
    ) -> None:
        record = _build_record(
            url=url,
            service=service,
            resource_key=resource_key,
            content=content,
            source=source,
            ttl_ms=ttl_ms,
            metadata=metadata,
            file_mtime=file_mtime,
            now_ms=self._clock(),
        )
        write_json_file(self.path_for(url, file_mtime), record)


__all__ = [
    "CACHE_FORMAT_VERSION",
    "CacheLookup",
    "CacheTtlPolicy",
    "DEFAULT_TTL_MS",
    "DEFAULT_TTL_POLICY",
    "InMemoryTranscriptCache",
    "JsonFileTranscriptCache",
    "NEGATIVE_TTL_MS",
    "TranscriptCache",
    "append_note",
    "is_local_source",
    "map_cached_source",
    "read_transcript_cache",
    "transcript_cache_key",
    "write_transcript_cache",
]
