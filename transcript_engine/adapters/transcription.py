from __future__ import annotations

import mimetypes
from pathlib import Path
from typing import Protocol

from transcript_engine.contracts.errors import EmptyTranscriptError


MAX_OPENAI_UPLOAD_BYTES = 24 * 1024 * 1024

_EXTENSION_BY_MEDIA_TYPE = {
    "audio/mpeg": ".mp3",
    "audio/mp3": ".mp3",
    "audio/mp4": ".m4a",
    "audio/x-m4a": ".m4a",
    "audio/m4a": ".m4a",
    "audio/aac": ".aac",
    "audio/wav": ".wav",
    "audio/x-wav": ".wav",
    "audio/wave": ".wav",
    "audio/ogg": ".ogg",
    "audio/opus": ".opus",
    "audio/flac": ".flac",
    "audio/webm": ".webm",
    "video/mp4": ".mp4",
    "video/webm": ".webm",
    "video/quicktime": ".mov",
    "video/mpeg": ".mpeg",
}


class BytesTranscriptionBackend(Protocol):
    """Backend boundary for transcribing in-memory media."""

    async def transcribe_bytes(self, data: bytes, *, media_type: str, filename: str) -> str:
        """Return non-empty text or raise a TranscriptionError."""


class FileTranscriptionBackend(Protocol):
    """Backend boundary for transcribing media already on disk."""

    async def transcribe_file(self, path: Path, *, media_type: str) -> str:
        """Return non-empty text or raise a TranscriptionError."""


def require_text(backend_id: str, value: object) -> str:
    text = "" if value is None else str(value).strip()
    if not text:
        raise EmptyTranscriptError(f"{backend_id} returned empty text")
    return text


def normalize_media_type(value: str | None) -> str:
    if not value:
        return "application/octet-stream"
    return value.split(";", 1)[0].strip().lower() or "application/octet-stream"


def guess_media_type(filename: str | None, default: str = "application/octet-stream") -> str:
    if not filename:
        return default
    guessed, _ = mimetypes.guess_type(filename)
    return guessed or default


def ensure_filename_extension(filename: str | None, media_type: str) -> str:
    """Hosted APIs infer the container from the extension, so make sure there is one."""
    name = (filename or "").strip() or "media"
    if Path(name).suffix:
        return name
    extension = _EXTENSION_BY_MEDIA_TYPE.get(normalize_media_type(media_type))
    if extension is None:
        extension = mimetypes.guess_extension(normalize_media_type(media_type)) or ".mp3"
    return f"{name}{extension}"


def is_wav_media_type(media_type: str) -> bool:
    lowered = media_type.lower()
    return "wav" in lowered or "wave" in lowered


__all__ = [
    "BytesTranscriptionBackend",
    "FileTranscriptionBackend",
    "MAX_OPENAI_UPLOAD_BYTES",
    "ensure_filename_extension",
    "guess_media_type",
    "is_wav_media_type",
    "normalize_media_type",
    "require_text",
]
