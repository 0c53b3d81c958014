from __future__ import annotations

import logging
import tempfile
import uuid
from pathlib import Path
from typing import TYPE_CHECKING, Awaitable, Callable, Protocol

from transcript_engine.adapters.fal import FalTranscriptionBackend, supports_media_type
from transcript_engine.adapters.ffmpeg import (
    DEFAULT_SEGMENT_SECONDS,
    StrPath,
    Transcoder,
    remove_tree_quietly,
    resolve_transcoder,
    unlink_quietly,
)
from transcript_engine.adapters.onnx_cli import OnnxCliBackend
from transcript_engine.adapters.openai_transcription import (
    OpenAITranscriptionBackend,
    load_openai_client,
    should_retry_via_transcode,
)
from transcript_engine.adapters.transcription import MAX_OPENAI_UPLOAD_BYTES, ensure_filename_extension
from transcript_engine.adapters.whisper_cpp import WhisperCppBackend
from transcript_engine.contracts.artifacts import WhisperTranscriptionResult
from transcript_engine.contracts.errors import EmptyTranscriptError, FfmpegError, TranscriptionError
from transcript_engine.contracts.progress import WhisperProgress, WhisperProgressCallback
from transcript_engine.utils.formatting import format_bytes

if TYPE_CHECKING:
    from transcript_engine.contracts.options import ProviderFetchOptions


NO_PROVIDERS_MESSAGE = "No transcription providers available (install whisper-cpp or set OPENAI_API_KEY or FAL_KEY)"

logger = logging.getLogger(__name__)


class MediaTranscriber(Protocol):
    """What providers need from the orchestrator."""

    def has_any_provider(self) -> bool: ...

    def can_transcode(self) -> bool: ...

    def provider_hint(self) -> str: ...

    def model_id(self) -> str | None: ...

    async def probe_duration_seconds(self, path: StrPath) -> float | None: ...

    async def transcribe_bytes(
        self,
        data: bytes,
        *,
        media_type: str,
        filename: str | None = None,
        duration_hint: float | None = None,
        progress: WhisperProgressCallback | None = None,
    ) -> WhisperTranscriptionResult: ...

    async def transcribe_file(
        self,
        path: StrPath,
        *,
        media_type: str,
        filename: str | None = None,
        duration_hint: float | None = None,
        progress: WhisperProgressCallback | None = None,
    ) -> WhisperTranscriptionResult: ...


async def _attempt(label: str, call: Callable[[], Awaitable[str]]) -> tuple[str | None, Exception | None]:
    try:
        text = await call()
    except Exception as exc:  # pragma: no cover - exact backend exceptions vary
        return None, exc
    if not text or not text.strip():
        return None, EmptyTranscriptError(f"{label} returned empty text")
    return text.strip(), None


def _merge_notes(target: list[str], extra: list[str]) -> None:
    for note in extra:
        if note not in target:
            target.append(note)


def _spill_path(filename: str | None, media_type: str) -> Path:
    name = Path(ensure_filename_extension(filename, media_type)).name
    return Path(tempfile.gettempdir()) / f"transcript-media-{uuid.uuid4().hex}-{name}"


def _unreadable(path: Path, exc: OSError, notes: list[str]) -> WhisperTranscriptionResult:
    return WhisperTranscriptionResult(
        text=None,
        provider=None,
        error=TranscriptionError(f"cannot read media file {path}: {exc}"),
        notes=notes,
    )


class WhisperOrchestrator:
    """Tries backends in preference order and chunks oversized media through the transcoder.

    Order: ONNX CLI (when selected), whisper.cpp (when installed), OpenAI, then FAL
    (audio only). A backend that raises or yields blank text is recorded as a note and
    the next one is tried. Nothing here raises for an expected failure; the outcome is
    a ``WhisperTranscriptionResult`` with ``error`` set.
    """

    def __init__(
        self,
        *,
        onnx: OnnxCliBackend | None = None,
        whisper_cpp: WhisperCppBackend | None = None,
        openai: OpenAITranscriptionBackend | None = None,
        fal: FalTranscriptionBackend | None = None,
        transcoder: Transcoder | None = None,
        max_upload_bytes: int = MAX_OPENAI_UPLOAD_BYTES,
        segment_seconds: int = DEFAULT_SEGMENT_SECONDS,
    ) -> None:
        if max_upload_bytes <= 0:
            raise ValueError("max_upload_bytes must be > 0")
        if segment_seconds <= 0:
            raise ValueError("segment_seconds must be > 0")
        self._onnx = onnx
        self._whisper_cpp = whisper_cpp
        self._openai = openai
        self._fal = fal
        self._transcoder = transcoder
        self._max_upload_bytes = max_upload_bytes
        self._segment_seconds = segment_seconds

    @classmethod
    def from_options(cls, options: "ProviderFetchOptions") -> "WhisperOrchestrator":
        settings = options.settings
        transcoder = resolve_transcoder(
            settings.ffmpeg_path,
            settings.ffprobe_path,
            timeout_s=settings.ffmpeg_timeout_s,
        )
        openai = None
        if options.openai_api_key:
            openai = OpenAITranscriptionBackend(
                load_openai_client(options.openai_api_key, base_url=settings.openai_base_url),
                model=settings.openai_model,
                timeout_s=settings.transcription_timeout_s,
            )
        fal = None
        if options.fal_api_key:
            fal = FalTranscriptionBackend(
                options.fetcher,
                api_key=options.fal_api_key,
                model=settings.fal_model,
                timeout_s=settings.transcription_timeout_s,
            )
        return cls(
            onnx=OnnxCliBackend.from_settings(settings, fetcher=options.fetcher, transcoder=transcoder),
            whisper_cpp=WhisperCppBackend.from_settings(settings, transcoder=transcoder),
            openai=openai,
            fal=fal,
            transcoder=transcoder,
        )

    def has_any_provider(self) -> bool:
        onnx_ready = self._onnx is not None and self._onnx.configured
        return onnx_ready or any(backend is not None for backend in (self._whisper_cpp, self._openai, self._fal))

    def can_transcode(self) -> bool:
        return self._transcoder is not None

    def provider_hint(self) -> str:
        if self._onnx is not None and self._onnx.configured:
            return "onnx"
        if self._whisper_cpp is not None:
            return "cpp"
        if self._openai is not None and self._fal is not None:
            return "openai->fal"
        if self._openai is not None:
            return "openai"
        if self._fal is not None:
            return "fal"
        return "unknown"

    def model_id(self) -> str | None:
        if self._onnx is not None and self._onnx.configured:
            return self._onnx.model_id
        if self._whisper_cpp is not None:
            return self._whisper_cpp.model_id
        if self._openai is not None:
            return self._openai.model
        if self._fal is not None:
            return self._fal.model
        return None

    async def probe_duration_seconds(self, path: StrPath) -> float | None:
        if self._transcoder is None:
            return None
        return await self._transcoder.probe_duration_seconds(path)

    async def transcribe(
        self,
        source: bytes | StrPath,
        *,
        media_type: str,
        filename: str | None = None,
        duration_hint: float | None = None,
        progress: WhisperProgressCallback | None = None,
    ) -> WhisperTranscriptionResult:
        if isinstance(source, (bytes, bytearray, memoryview)):
            return await self.transcribe_bytes(
                bytes(source),
                media_type=media_type,
                filename=filename,
                duration_hint=duration_hint,
                progress=progress,
            )
        return await self.transcribe_file(
            source,
            media_type=media_type,
            filename=filename,
            duration_hint=duration_hint,
            progress=progress,
        )

    async def _transcribe_local_file(self, path: Path, media_type: str, notes: list[str]) -> WhisperTranscriptionResult | None:
        if self._onnx is not None:
            onnx = self._onnx
            onnx_notes: list[str] = []
            text, error = await _attempt(
                onnx.backend_id,
                lambda: onnx.transcribe_file(path, media_type=media_type, notes=onnx_notes),
            )
            _merge_notes(notes, onnx_notes)
            if text:
                return WhisperTranscriptionResult(text=text, provider=onnx.backend_id, notes=notes)  # type: ignore[arg-type]
            notes.append(f"{onnx.backend_id} failed; falling back to Whisper: {error}")
            logger.debug("%s failed: %s", onnx.backend_id, error)

        if self._whisper_cpp is not None:
            cpp = self._whisper_cpp
            text, error = await _attempt(cpp.backend_id, lambda: cpp.transcribe_file(path, media_type=media_type))
            if text:
                return WhisperTranscriptionResult(text=text, provider="whisper.cpp", notes=notes)
            notes.append(f"whisper.cpp failed; falling back to remote Whisper: {error}")
            logger.debug("whisper.cpp failed: %s", error)
        return None

    async def transcribe_bytes(
        self,
        data: bytes,
        *,
        media_type: str,
        filename: str | None = None,
        duration_hint: float | None = None,
        progress: WhisperProgressCallback | None = None,
    ) -> WhisperTranscriptionResult:
        notes: list[str] = []
        if self._onnx is not None or self._whisper_cpp is not None:
            spill = _spill_path(filename, media_type)
            try:
                spill.write_bytes(data)
                local = await self._transcribe_local_file(spill, media_type, notes)
            finally:
                unlink_quietly(spill)
            if local is not None:
                return local
        return await self._transcribe_bytes_remote(
            data,
            media_type=media_type,
            filename=filename,
            duration_hint=duration_hint,
            progress=progress,
            notes=notes,
        )

    async def _transcribe_bytes_remote(
        self,
        data: bytes,
        *,
        media_type: str,
        filename: str | None,
        duration_hint: float | None,
        progress: WhisperProgressCallback | None,
        notes: list[str],
    ) -> WhisperTranscriptionResult:
        if self._openai is None and self._fal is None:
            return WhisperTranscriptionResult(
                text=None,
                provider=None,
                error=TranscriptionError(NO_PROVIDERS_MESSAGE),
                notes=notes,
            )

        upload_name = ensure_filename_extension(filename, media_type)
        openai_error: Exception | None = None
        if self._openai is not None:
            openai = self._openai
            if len(data) > self._max_upload_bytes:
                if self._transcoder is not None:
                    spill = _spill_path(filename, media_type)
                    try:
                        spill.write_bytes(data)
                        chunked = await self._transcribe_file_remote(
                            spill,
                            media_type=media_type,
                            size=len(data),
                            duration_hint=duration_hint,
                            progress=progress,
                            notes=notes,
                        )
                    finally:
                        unlink_quietly(spill)
                    return chunked
                notes.append(
                    f"Media too large for Whisper upload ({format_bytes(len(data))}); "
                    f"transcribing first {format_bytes(self._max_upload_bytes)} only "
                    "(install ffmpeg for full transcription)"
                )
                data = data[: self._max_upload_bytes]

            text, error = await _attempt(
                "OpenAI transcription",
                lambda: openai.transcribe_bytes(data, media_type=media_type, filename=upload_name),
            )
            if text:
                return WhisperTranscriptionResult(text=text, provider="openai", notes=notes)

            if error is not None and should_retry_via_transcode(error):
                if self._transcoder is not None:
                    notes.append("OpenAI could not decode media; transcoding via ffmpeg and retrying")
                    try:
                        mp3 = await self._transcoder.transcode_bytes_to_mp3(data, upload_name)
                    except FfmpegError as exc:
                        notes.append(f"ffmpeg transcode failed; cannot retry OpenAI decode error: {exc}")
                    else:
                        retry_name = f"{Path(upload_name).stem}.mp3"
                        text, error = await _attempt(
                            "OpenAI transcription",
                            lambda: openai.transcribe_bytes(mp3, media_type="audio/mpeg", filename=retry_name),
                        )
                        if text:
                            return WhisperTranscriptionResult(text=text, provider="openai", notes=notes)
                else:
                    notes.append("OpenAI could not decode media; install ffmpeg to enable transcoding retry")

            if isinstance(error, EmptyTranscriptError):
                openai_error = TranscriptionError("OpenAI transcription returned empty text")
            else:
                openai_error = TranscriptionError(f"OpenAI transcription failed: {error}")
            logger.debug("%s", openai_error)

        fal_error: Exception | None = None
        if self._fal is not None:
            fal = self._fal
            if supports_media_type(media_type):
                if openai_error is not None:
                    notes.append(f"OpenAI transcription failed; falling back to FAL: {openai_error}")
                text, error = await _attempt(
                    "FAL transcription",
                    lambda: fal.transcribe_bytes(data, media_type=media_type, filename=upload_name),
                )
                if text:
                    return WhisperTranscriptionResult(text=text, provider="fal", notes=notes)
                if isinstance(error, EmptyTranscriptError):
                    fal_error = TranscriptionError("FAL transcription returned empty text")
                else:
                    fal_error = TranscriptionError(f"FAL transcription failed: {error}")
            else:
                notes.append(f"Skipping FAL transcription: unsupported mediaType {media_type}")

        final_error = fal_error or openai_error or TranscriptionError(NO_PROVIDERS_MESSAGE)
        return WhisperTranscriptionResult(
            text=None,
            provider="fal" if fal_error is not None else ("openai" if openai_error is not None else None),
            error=final_error,
            notes=notes,
        )

    async def transcribe_file(
        self,
        path: StrPath,
        *,
        media_type: str,
        filename: str | None = None,
        duration_hint: float | None = None,
        progress: WhisperProgressCallback | None = None,
    ) -> WhisperTranscriptionResult:
        file_path = Path(path)
        notes: list[str] = []
        total = duration_hint
        if total is None:
            total = await self.probe_duration_seconds(file_path)
        if progress is not None:
            progress(WhisperProgress(None, None, None, total))

        local = await self._transcribe_local_file(file_path, media_type, notes)
        if local is not None:
            return local

        try:
            size = file_path.stat().st_size
        except OSError as exc:
            return _unreadable(file_path, exc, notes)
        return await self._transcribe_file_remote(
            file_path,
            media_type=media_type,
            size=size,
            duration_hint=total,
            progress=progress,
            notes=notes,
            filename=filename,
        )

    async def _transcribe_file_remote(
        self,
        path: Path,
        *,
        media_type: str,
        size: int,
        duration_hint: float | None,
        progress: WhisperProgressCallback | None,
        notes: list[str],
        filename: str | None = None,
    ) -> WhisperTranscriptionResult:
        name = filename or path.name
        if size <= self._max_upload_bytes:
            try:
                data = path.read_bytes()
            except OSError as exc:
                return _unreadable(path, exc, notes)
            return await self._transcribe_bytes_remote(
                data,
                media_type=media_type,
                filename=name,
                duration_hint=duration_hint,
                progress=progress,
                notes=notes,
            )

        if self._transcoder is None:
            notes.append(
                f"Media too large for Whisper upload ({format_bytes(size)}); "
                "install ffmpeg to enable chunked transcription"
            )
            try:
                with path.open("rb") as handle:
                    head = handle.read(self._max_upload_bytes)
            except OSError as exc:
                return _unreadable(path, exc, notes)
            return await self._transcribe_bytes_remote(
                head,
                media_type=media_type,
                filename=name,
                duration_hint=duration_hint,
                progress=progress,
                notes=notes,
            )

        total = duration_hint
        if total is None:
            total = await self._transcoder.probe_duration_seconds(path)
        try:
            parts = await self._transcoder.segment(path, self._segment_seconds)
        except FfmpegError as exc:
            return WhisperTranscriptionResult(text=None, provider=None, error=exc, notes=notes)

        segment_seconds = self._segment_seconds
        try:
            notes.append(f"ffmpeg chunked media into {len(parts)} parts ({segment_seconds}s each)")
            if progress is not None:
                progress(WhisperProgress(None, len(parts), 0.0 if total else None, total))
            texts: list[str] = []
            provider = None
            for index, part in enumerate(parts):
                part_notes: list[str] = []
                try:
                    part_data = part.read_bytes()
                except OSError as exc:
                    return _unreadable(part, exc, notes)
                result = await self._transcribe_bytes_remote(
                    part_data,
                    media_type="audio/mpeg",
                    filename=part.name,
                    duration_hint=None,
                    progress=None,
                    notes=part_notes,
                )
                _merge_notes(notes, part_notes)
                if not result.ok:
                    logger.debug("part %s/%s failed: %s", index + 1, len(parts), result.error)
                    return WhisperTranscriptionResult(
                        text=None,
                        provider=result.provider,
                        error=result.error,
                        notes=notes,
                    )
                texts.append((result.text or "").strip())
                provider = result.provider
                if progress is not None:
                    processed = float((index + 1) * segment_seconds)
                    if total is not None:
                        processed = min(processed, total)
                    progress(WhisperProgress(index + 1, len(parts), processed, total))
            return WhisperTranscriptionResult(text="\n\n".join(texts), provider=provider, notes=notes)
        finally:
            remove_tree_quietly(parts[0].parent)


def resolve_transcriber(options: "ProviderFetchOptions") -> MediaTranscriber:
    if options.transcriber is not None:
        return options.transcriber
    return WhisperOrchestrator.from_options(options)


__all__ = [
    "MediaTranscriber",
    "NO_PROVIDERS_MESSAGE",
    "WhisperOrchestrator",
    "resolve_transcriber",
]
