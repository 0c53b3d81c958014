from __future__ import annotations


class PipelineError(Exception):
    """Raised by the resolution entrypoint for user-facing failures."""


class TranscriptModeError(PipelineError):
    """Raised when an explicitly requested transcript mode cannot run as configured."""


class ComponentError(Exception):
    """Base exception for component-level failures."""


class InputValidationError(ComponentError):
    """Raised when an input path, URL or option is invalid."""


class FfmpegError(ComponentError):
    """Raised when ffmpeg/ffprobe operations fail."""


class ExternalToolError(FfmpegError):
    """Raised when a non-ffmpeg subprocess (yt-dlp, whisper.cpp, ONNX CLI) fails."""


class DownloadError(ComponentError):
    """Raised when remote media cannot be fetched."""


class TranscriptionError(ComponentError):
    """Raised when a transcription backend call fails."""


class ProviderError(TranscriptionError):
    """Raised for hosted API failures."""


class ProviderResponseError(ProviderError):
    """Raised when a backend returns an unexpected response shape."""


class EmptyTranscriptError(TranscriptionError):
    """Raised when a backend succeeds but produces no usable text."""


__all__ = [
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
