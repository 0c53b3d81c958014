from __future__ import annotations

import logging
from dataclasses import asdict, dataclass
from typing import Any, Callable, ClassVar, Literal, Protocol


type TranscriptService = Literal["youtube", "podcast", "generic"]
type MediaKind = Literal["video", "audio"]

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class TranscriptMediaDownloadStart:
    kind: ClassVar[str] = "transcript-media-download-start"

    url: str
    service: TranscriptService
    media_url: str | None = None
    total_bytes: int | None = None
    media_kind: MediaKind | None = None


@dataclass(frozen=True, slots=True)
class TranscriptMediaDownloadProgress:
    kind: ClassVar[str] = "transcript-media-download-progress"

    url: str
    service: TranscriptService
    downloaded_bytes: int
    total_bytes: int | None = None
    media_kind: MediaKind | None = None


@dataclass(frozen=True, slots=True)
class TranscriptMediaDownloadDone:
    kind: ClassVar[str] = "transcript-media-download-done"

    url: str
    service: TranscriptService
    downloaded_bytes: int
    total_bytes: int | None = None
    media_kind: MediaKind | None = None


@dataclass(frozen=True, slots=True)
class TranscriptWhisperStart:
    kind: ClassVar[str] = "transcript-whisper-start"

    url: str
    service: TranscriptService
    provider_hint: str
    model_id: str | None = None
    total_duration_seconds: float | None = None
    parts: int | None = None


@dataclass(frozen=True, slots=True)
class TranscriptWhisperProgress:
    kind: ClassVar[str] = "transcript-whisper-progress"

    url: str
    service: TranscriptService
    processed_duration_seconds: float | None = None
    total_duration_seconds: float | None = None
    part_index: int | None = None
    parts: int | None = None


@dataclass(frozen=True, slots=True)
class TranscriptStart:
    kind: ClassVar[str] = "transcript-start"

    url: str
    service: TranscriptService
    hint: str | None = None


@dataclass(frozen=True, slots=True)
class TranscriptDone:
    kind: ClassVar[str] = "transcript-done"

    url: str
    service: TranscriptService
    ok: bool
    hint: str | None = None


type ProgressEvent = (
    TranscriptMediaDownloadStart
    | TranscriptMediaDownloadProgress
    | TranscriptMediaDownloadDone
    | TranscriptWhisperStart
    | TranscriptWhisperProgress
    | TranscriptStart
    | TranscriptDone
)


@dataclass(frozen=True, slots=True)
class WhisperProgress:
    """Orchestrator-level progress; callers attach url/service before emitting."""

    part_index: int | None
    parts: int | None
    processed_duration_seconds: float | None
    total_duration_seconds: float | None


type WhisperProgressCallback = Callable[[WhisperProgress], None]


class ProgressSink(Protocol):
    def emit(self, event: ProgressEvent) -> None:
        """Receive one progress event."""


class NullProgressSink:
    def emit(self, event: ProgressEvent) -> None:
        return None


class CallbackProgressSink:
    def __init__(self, callback: Callable[[ProgressEvent], None]) -> None:
        self._callback = callback

    def emit(self, event: ProgressEvent) -> None:
        self._callback(event)


class LoggingProgressSink:
    def __init__(self, log: logging.Logger | None = None, *, level: int = logging.INFO) -> None:
        self._log = log or logger
        self._level = level

    def emit(self, event: ProgressEvent) -> None:
        payload = progress_event_to_dict(event)
        kind = payload.pop("kind")
        details = " ".join(f"{key}={value}" for key, value in payload.items() if value is not None)
        self._log.log(self._level, "%s %s", kind, details)


NULL_PROGRESS: ProgressSink = NullProgressSink()


def progress_event_to_dict(event: ProgressEvent) -> dict[str, Any]:
    return {"kind": event.kind, **asdict(event)}


__all__ = [
    "CallbackProgressSink",
    "LoggingProgressSink",
    "MediaKind",
    "NULL_PROGRESS",
    "NullProgressSink",
    "ProgressEvent",
    "ProgressSink",
    "TranscriptDone",
    "TranscriptMediaDownloadDone",
    "TranscriptMediaDownloadProgress",
    "TranscriptMediaDownloadStart",
    "TranscriptService",
    "TranscriptStart",
    "TranscriptWhisperProgress",
    "TranscriptWhisperStart",
    "WhisperProgress",
    "WhisperProgressCallback",
    "progress_event_to_dict",
]
