from __future__ import annotations

import logging
import tempfile
import uuid
from dataclasses import dataclass
from pathlib import Path
from urllib.parse import unquote, urlparse

from transcript_engine.adapters.ffmpeg import StrPath, unlink_quietly
from transcript_engine.adapters.http import Fetcher
from transcript_engine.adapters.transcription import MAX_OPENAI_UPLOAD_BYTES, guess_media_type, normalize_media_type
from transcript_engine.components.whisper import MediaTranscriber
from transcript_engine.contracts.artifacts import WhisperTranscriptionResult
from transcript_engine.contracts.errors import DownloadError, InputValidationError
from transcript_engine.contracts.progress import (
    NULL_PROGRESS,
    MediaKind,
    ProgressSink,
    TranscriptMediaDownloadDone,
    TranscriptMediaDownloadProgress,
    TranscriptMediaDownloadStart,
    TranscriptService,
    TranscriptWhisperProgress,
    TranscriptWhisperStart,
    WhisperProgress,
    WhisperProgressCallback,
)
from transcript_engine.utils.formatting import format_bytes


MAX_REMOTE_MEDIA_BYTES = 512 * 1024 * 1024
CAPPED_PROGRESS_STEP_BYTES = 64 * 1024
FILE_PROGRESS_STEP_BYTES = 128 * 1024

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class MediaProgressContext:
    """Where to report progress for one media transcription, and under which url/service."""

    url: str
    service: TranscriptService
    sink: ProgressSink = NULL_PROGRESS
    media_kind: MediaKind = "audio"

    def whisper_callback(self) -> WhisperProgressCallback:
        def _emit(event: WhisperProgress) -> None:
            self.sink.emit(
                TranscriptWhisperProgress(
                    url=self.url,
                    service=self.service,
                    processed_duration_seconds=event.processed_duration_seconds,
                    total_duration_seconds=event.total_duration_seconds,
                    part_index=event.part_index,
                    parts=event.parts,
                )
            )

        return _emit

    def whisper_start(self, transcriber: MediaTranscriber, total_duration_seconds: float | None) -> None:
        self.sink.emit(
            TranscriptWhisperStart(
                url=self.url,
                service=self.service,
                provider_hint=transcriber.provider_hint(),
                model_id=transcriber.model_id(),
                total_duration_seconds=total_duration_seconds,
                parts=None,
            )
        )


@dataclass(frozen=True, slots=True)
class RemoteMediaHead:
    content_length: int | None
    media_type: str | None
    filename: str | None


class _DownloadReporter:
    """Throttles download progress and keeps the reported total from shrinking."""

    def __init__(self, context: MediaProgressContext | None, total_bytes: int | None, step_bytes: int) -> None:
        self._context = context
        self._total = total_bytes
        self._step = step_bytes
        self._last_reported = 0
        self.downloaded = 0

    @property
    def total_bytes(self) -> int | None:
        return self._total

    def _bump_total(self, downloaded: int) -> None:
        if self._total is not None and downloaded > self._total:
            self._total = downloaded

    def __call__(self, downloaded: int) -> None:
        self.downloaded = downloaded
        self._bump_total(downloaded)
        if downloaded - self._last_reported < self._step:
            return
        self._last_reported = downloaded
        self._emit_progress(downloaded)

    def _emit_progress(self, downloaded: int) -> None:
        if self._context is None:
            return
        self._context.sink.emit(
            TranscriptMediaDownloadProgress(
                url=self._context.url,
                service=self._context.service,
                downloaded_bytes=downloaded,
                total_bytes=self._total,
                media_kind=self._context.media_kind,
            )
        )

    def start(self, media_url: str) -> None:
        if self._context is None:
            return
        self._context.sink.emit(
            TranscriptMediaDownloadStart(
                url=self._context.url,
                service=self._context.service,
                media_url=media_url,
                total_bytes=self._total,
                media_kind=self._context.media_kind,
            )
        )

    def finish(self, downloaded: int) -> None:
        self.downloaded = downloaded
        self._bump_total(downloaded)
        if downloaded != self._last_reported:
            self._emit_progress(downloaded)
        if self._context is None:
            return
        self._context.sink.emit(
            TranscriptMediaDownloadDone(
                url=self._context.url,
                service=self._context.service,
                downloaded_bytes=downloaded,
                total_bytes=self._total,
                media_kind=self._context.media_kind,
            )
        )


def filename_from_url(url: str) -> str | None:
    try:
        path = urlparse(url).path
    except ValueError:
        return None
    base = unquote(path.rsplit("/", 1)[-1]).strip()
    return base or None


def parse_content_length(value: str | None) -> int | None:
    if not value:
        return None
    try:
        parsed = int(float(value.strip()))
    except ValueError:
        return None
    return parsed if parsed > 0 else None


async def probe_remote_media(fetcher: Fetcher, url: str) -> RemoteMediaHead:
    filename = filename_from_url(url)
    try:
        response = await fetcher.request("HEAD", url)
    except DownloadError as exc:
        logger.debug("HEAD %s failed: %s", url, exc)
        return RemoteMediaHead(content_length=None, media_type=None, filename=filename)
    if not response.ok:
        return RemoteMediaHead(content_length=None, media_type=None, filename=filename)
    content_type = response.header("content-type")
    return RemoteMediaHead(
        content_length=parse_content_length(response.header("content-length")),
        media_type=normalize_media_type(content_type) if content_type and content_type.strip() else None,
        filename=filename,
    )


async def download_capped_bytes(
    fetcher: Fetcher,
    url: str,
    max_bytes: int,
    *,
    reporter: _DownloadReporter | None = None,
) -> bytes:
    response = await fetcher.request(
        "GET",
        url,
        headers={"Range": f"bytes=0-{max_bytes - 1}"},
        max_bytes=max_bytes,
        on_progress=reporter,
    )
    if not response.ok:
        raise DownloadError(f"Download failed ({response.status})")
    return response.body[:max_bytes]


async def transcribe_media_url(
    *,
    fetcher: Fetcher,
    transcriber: MediaTranscriber,
    url: str,
    filename_hint: str,
    duration_hint: float | None,
    notes: list[str],
    progress: MediaProgressContext | None = None,
) -> WhisperTranscriptionResult:
    """Download remote media and transcribe it.

    Small media is held in memory. Large media is streamed to a temp file so the
    orchestrator can chunk it. Without ffmpeg only the first upload-sized slice is
    fetched (via a Range request) and transcribed.

    Raises DownloadError when the media is too large or the download fails.
    """
    head = await probe_remote_media(fetcher, url)
    if head.content_length is not None and head.content_length > MAX_REMOTE_MEDIA_BYTES:
        raise DownloadError(
            f"Remote media too large ({format_bytes(head.content_length)}). "
            f"Limit is {format_bytes(MAX_REMOTE_MEDIA_BYTES)}."
        )

    media_type = head.media_type or guess_media_type(head.filename or filename_hint)
    filename = head.filename or filename_hint
    whisper_progress = progress.whisper_callback() if progress is not None else None

    if not transcriber.can_transcode() or (
        head.content_length is not None and head.content_length <= MAX_OPENAI_UPLOAD_BYTES
    ):
        reporter = _DownloadReporter(progress, head.content_length, CAPPED_PROGRESS_STEP_BYTES)
        reporter.start(url)
        data = await download_capped_bytes(fetcher, url, MAX_OPENAI_UPLOAD_BYTES, reporter=reporter)
        reporter.finish(len(data))
        if progress is not None:
            progress.whisper_start(transcriber, duration_hint)
        if not transcriber.can_transcode() and (head.content_length is None or head.content_length > len(data)):
            notes.append(f"Transcribed first {format_bytes(len(data))} only (ffmpeg not available)")
        result = await transcriber.transcribe_bytes(
            data,
            media_type=media_type,
            filename=filename,
            duration_hint=duration_hint,
            progress=whisper_progress,
        )
        notes.extend(result.notes)
        return result

    tmp_path = Path(tempfile.gettempdir()) / f"transcript-media-{uuid.uuid4().hex}.bin"
    try:
        reporter = _DownloadReporter(progress, head.content_length, FILE_PROGRESS_STEP_BYTES)
        reporter.start(url)
        downloaded = await fetcher.download_to_file(url, tmp_path, on_progress=reporter)
        reporter.finish(downloaded)

        duration = duration_hint
        if duration is None:
            duration = await transcriber.probe_duration_seconds(tmp_path)
        if progress is not None:
            progress.whisper_start(transcriber, duration)
        result = await transcriber.transcribe_file(
            tmp_path,
            media_type=media_type,
            filename=filename,
            duration_hint=duration,
            progress=whisper_progress,
        )
        notes.extend(result.notes)
        return result
    finally:
        unlink_quietly(tmp_path)


def local_path_from_url(url: str) -> Path:
    parsed = urlparse(url)
    if parsed.scheme not in ("", "file"):
        raise InputValidationError(f"not a local media path: {url}")
    return Path(unquote(parsed.path) if parsed.scheme == "file" else url)


async def transcribe_local_media(
    path: StrPath,
    *,
    transcriber: MediaTranscriber,
    notes: list[str],
    duration_hint: float | None = None,
    progress: MediaProgressContext | None = None,
) -> WhisperTranscriptionResult:
    media_path = Path(path)
    if not media_path.is_file():
        raise InputValidationError(f"media file not found: {media_path}")
    duration = duration_hint
    if duration is None:
        duration = await transcriber.probe_duration_seconds(media_path)
    if progress is not None:
        progress.whisper_start(transcriber, duration)
    result = await transcriber.transcribe_file(
        media_path,
        media_type=guess_media_type(media_path.name),
        filename=media_path.name,
        duration_hint=duration,
        progress=progress.whisper_callback() if progress is not None else None,
    )
    notes.extend(result.notes)
    return result


__all__ = [
    "CAPPED_PROGRESS_STEP_BYTES",
    "FILE_PROGRESS_STEP_BYTES",
    "MAX_REMOTE_MEDIA_BYTES",
    "MediaProgressContext",
    "RemoteMediaHead",
    "download_capped_bytes",
    "filename_from_url",
    "local_path_from_url",
    "parse_content_length",
    "probe_remote_media",
    "transcribe_local_media",
    "transcribe_media_url",
]
