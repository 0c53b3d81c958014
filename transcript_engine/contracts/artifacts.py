from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Literal


type TranscriptSource = Literal[
    "youtubei",
    "captionTracks",
    "yt-dlp",
    "apify",
    "podcastTranscript",
    "whisper",
    "embedded",
    "html",
    "unavailable",
    "unknown",
]
type BackendId = Literal["onnx-parakeet", "onnx-canary", "whisper.cpp", "openai", "fal"]
type CacheMode = Literal["default", "bypass"]
type CacheStatus = Literal["hit", "miss", "expired", "bypassed", "fallback", "unknown"]

KNOWN_TRANSCRIPT_SOURCES: frozenset[str] = frozenset(
    {
        "youtubei",
        "captionTracks",
        "yt-dlp",
        "apify",
        "podcastTranscript",
        "whisper",
        "embedded",
        "html",
        "unavailable",
    }
)


@dataclass(frozen=True, slots=True)
class TranscriptRequest:
    url: str
    html: str | None = None
    resource_key: str | None = None


@dataclass(frozen=True, slots=True)
class TranscriptSegment:
    text: str
    start_s: float
    end_s: float | None = None

    def to_dict(self) -> dict[str, Any]:
        return {"text": self.text, "start_s": self.start_s, "end_s": self.end_s}


@dataclass(frozen=True, slots=True)
class ProviderResult:
    text: str | None
    source: TranscriptSource | None
    segments: list[TranscriptSegment] | None = None
    metadata: dict[str, Any] = field(default_factory=dict)
    attempted_providers: tuple[str, ...] = ()
    notes: str | None = None


@dataclass(frozen=True, slots=True)
class WhisperTranscriptionResult:
    """Outcome of one orchestrated transcription; failures are carried, not raised."""

    text: str | None
    provider: BackendId | None
    error: Exception | None = None
    notes: list[str] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return bool(self.text and self.text.strip())


@dataclass(frozen=True, slots=True)
class TranscriptCacheEntry:
    content: str | None
    source: str | None
    expired: bool
    metadata: dict[str, Any] | None = None


@dataclass(frozen=True, slots=True)
class TranscriptDiagnostics:
    cache_mode: CacheMode
    cache_status: CacheStatus
    provider: str | None = None
    attempted_providers: tuple[str, ...] = ()
    text_provided: bool = False
    notes: str | None = None


@dataclass(frozen=True, slots=True)
class TranscriptResolution:
    text: str | None
    source: TranscriptSource | None
    segments: list[TranscriptSegment] | None = None
    metadata: dict[str, Any] | None = None
    diagnostics: TranscriptDiagnostics | None = None


def join_notes(notes: list[str]) -> str | None:
    cleaned = [note.strip() for note in notes if note and note.strip()]
    return "; ".join(cleaned) if cleaned else None


__all__ = [
    "BackendId",
    "CacheMode",
    "CacheStatus",
    "KNOWN_TRANSCRIPT_SOURCES",
    "ProviderResult",
    "TranscriptCacheEntry",
    "TranscriptDiagnostics",
    "TranscriptRequest",
    "TranscriptResolution",
    "TranscriptSegment",
    "TranscriptSource",
    "WhisperTranscriptionResult",
    "join_notes",
]
