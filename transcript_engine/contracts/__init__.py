from .artifacts import (
    ProviderResult,
    TranscriptCacheEntry,
    TranscriptDiagnostics,
    TranscriptRequest,
    TranscriptResolution,
    TranscriptSegment,
    WhisperTranscriptionResult,
)
from .errors import (
    ComponentError,
    DownloadError,
    EmptyTranscriptError,
    ExternalToolError,
    FfmpegError,
    InputValidationError,
    PipelineError,
    ProviderError,
    ProviderResponseError,
    TranscriptionError,
    TranscriptModeError,
)
from .options import ProviderFetchOptions
from .progress import NULL_PROGRESS, CallbackProgressSink, LoggingProgressSink, NullProgressSink, ProgressSink

__all__ = [
    "ProviderResult",
    "TranscriptCacheEntry",
    "TranscriptDiagnostics",
    "TranscriptRequest",
    "TranscriptResolution",
    "TranscriptSegment",
    "WhisperTranscriptionResult",
    "ProviderFetchOptions",
    "ProgressSink",
    "NullProgressSink",
    "CallbackProgressSink",
    "LoggingProgressSink",
    "NULL_PROGRESS",
    "PipelineError",
    "TranscriptModeError",
    "ComponentError",
    "InputValidationError",
    "FfmpegError",
    "ExternalToolError",
    "DownloadError",
    "TranscriptionError",
    "ProviderError",
    "ProviderResponseError",
    "EmptyTranscriptError",
]
