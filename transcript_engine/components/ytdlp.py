from __future__ import annotations

import json
import logging
import tempfile
import uuid
from pathlib import Path
from typing import Callable, Sequence

from transcript_engine.adapters.ffmpeg import unlink_quietly
from transcript_engine.adapters.process import run_process
from transcript_engine.components.media import MediaProgressContext
from transcript_engine.components.whisper import NO_PROVIDERS_MESSAGE, MediaTranscriber
from transcript_engine.contracts.artifacts import WhisperTranscriptionResult
from transcript_engine.contracts.errors import DownloadError, TranscriptionError
from transcript_engine.contracts.progress import (
    TranscriptMediaDownloadDone,
    TranscriptMediaDownloadProgress,
    TranscriptMediaDownloadStart,
)


YTDLP_DOWNLOAD_TIMEOUT_S = 300.0
YTDLP_PROBE_TIMEOUT_S = 30.0
MAX_STDERR_BYTES = 8192
PROGRESS_TEMPLATE = (
    "progress:%(progress.downloaded_bytes)s|%(progress.total_bytes)s|%(progress.total_bytes_estimate)s"
)
NOT_CONFIGURED_MESSAGE = "yt-dlp is not configured (set YT_DLP_PATH or ensure yt-dlp is on PATH)"

logger = logging.getLogger(__name__)


def build_ytdlp_audio_cmd(
    ytdlp: str,
    url: str,
    output_path: str | Path,
    *,
    with_progress: bool = True,
    extra_args: Sequence[str] | None = None,
) -> list[str]:
    cmd = [
        ytdlp,
        "-x",
        "--audio-format",
        "mp3",
        "--no-playlist",
        "--retries",
        "3",
        "--no-warnings",
    ]
    if url.startswith("file://"):
        cmd.append("--enable-file-urls")
    if with_progress:
        cmd.extend(["--progress", "--newline", "--progress-template", PROGRESS_TEMPLATE])
    if extra_args:
        cmd.extend(extra_args)
    cmd.extend(["-o", str(output_path), url])
    return cmd


def build_ytdlp_duration_cmd(ytdlp: str, url: str) -> list[str]:
    return [ytdlp, "--skip-download", "--dump-json", "--no-playlist", "--no-warnings", url]


def _positive_float(raw: str) -> float | None:
    try:
        value = float(raw)
    except ValueError:
        return None
    return value if value > 0 else None


def parse_progress_line(line: str) -> tuple[int, int | None] | None:
    """Parse ``progress:<downloaded>|<total>|<estimate>``; total falls back to the estimate."""
    trimmed = line.strip()
    if not trimmed.startswith("progress:"):
        return None
    fields = trimmed[len("progress:"):].split("|")
    fields += [""] * (3 - len(fields))
    try:
        downloaded = float(fields[0])
    except ValueError:
        return None
    if downloaded < 0:
        return None
    total = _positive_float(fields[1]) or _positive_float(fields[2])
    return int(downloaded), int(total) if total is not None else None


class _ProgressTracker:
    """Turns progress lines into events; the reported total never shrinks."""

    def __init__(self, context: MediaProgressContext) -> None:
        self._context = context
        self._last_total: int | None = None

    def __call__(self, line: str) -> None:
        parsed = parse_progress_line(line)
        if parsed is None:
            return
        downloaded, total = parsed
        if total is not None:
            if self._last_total is None or total > self._last_total:
                self._last_total = total
            else:
                total = self._last_total
        else:
            total = self._last_total
        self._context.sink.emit(
            TranscriptMediaDownloadProgress(
                url=self._context.url,
                service=self._context.service,
                downloaded_bytes=downloaded,
                total_bytes=total,
                media_kind=self._context.media_kind,
            )
        )


async def download_audio(
    ytdlp: str,
    url: str,
    output_path: Path,
    *,
    extra_args: Sequence[str] | None = None,
    on_line: Callable[[str], None] | None = None,
    timeout_s: float = YTDLP_DOWNLOAD_TIMEOUT_S,
) -> None:
    cmd = build_ytdlp_audio_cmd(
        ytdlp,
        url,
        output_path,
        with_progress=on_line is not None,
        extra_args=extra_args,
    )
    try:
        completed = await run_process(
            cmd,
            timeout_s=timeout_s,
            stderr_limit=MAX_STDERR_BYTES,
            on_stdout_line=on_line,
        )
    except OSError as exc:
        raise DownloadError(str(exc)) from exc
    if completed.timed_out:
        raise DownloadError("yt-dlp download timeout")
    if completed.returncode != 0:
        detail = completed.stderr.strip()
        suffix = f": {detail}" if detail else ""
        if completed.returncode < 0:
            raise DownloadError(f"yt-dlp terminated (signal {-completed.returncode}){suffix}")
        raise DownloadError(f"yt-dlp exited with code {completed.returncode}{suffix}")


async def fetch_transcript_with_ytdlp(
    *,
    ytdlp_path: str | None,
    transcriber: MediaTranscriber,
    url: str,
    progress: MediaProgressContext | None = None,
    extra_args: Sequence[str] | None = None,
    timeout_s: float = YTDLP_DOWNLOAD_TIMEOUT_S,
) -> WhisperTranscriptionResult:
    """Download audio with yt-dlp and transcribe it; failures are returned, never raised."""
    if not ytdlp_path:
        return WhisperTranscriptionResult(text=None, provider=None, error=TranscriptionError(NOT_CONFIGURED_MESSAGE))
    if not transcriber.has_any_provider():
        return WhisperTranscriptionResult(text=None, provider=None, error=TranscriptionError(NO_PROVIDERS_MESSAGE))

    output_path = Path(tempfile.gettempdir()) / f"transcript-ytdlp-{uuid.uuid4().hex}.mp3"
    try:
        if progress is not None:
            progress.sink.emit(
                TranscriptMediaDownloadStart(
                    url=progress.url,
                    service=progress.service,
                    media_url=url,
                    total_bytes=None,
                    media_kind=progress.media_kind,
                )
            )
        await download_audio(
            ytdlp_path,
            url,
            output_path,
            extra_args=extra_args,
            on_line=_ProgressTracker(progress) if progress is not None else None,
            timeout_s=timeout_s,
        )
        size = output_path.stat().st_size
        if progress is not None:
            progress.sink.emit(
                TranscriptMediaDownloadDone(
                    url=progress.url,
                    service=progress.service,
                    downloaded_bytes=size,
                    total_bytes=None,
                    media_kind=progress.media_kind,
                )
            )

        duration = await transcriber.probe_duration_seconds(output_path)
        if progress is not None:
            progress.whisper_start(transcriber, duration)
        return await transcriber.transcribe_file(
            output_path,
            media_type="audio/mpeg",
            filename="audio.mp3",
            duration_hint=duration,
            progress=progress.whisper_callback() if progress is not None else None,
        )
    except (DownloadError, OSError) as exc:
        logger.debug("yt-dlp download failed for %s: %s", url, exc)
        return WhisperTranscriptionResult(
            text=None,
            provider=None,
            error=DownloadError(f"yt-dlp failed to download audio: {exc}"),
        )
    finally:
        unlink_quietly(output_path)


def parse_duration_from_dump(stdout: str) -> float | None:
    for line in stdout.splitlines():
        line = line.strip()
        if not line.startswith("{"):
            continue
        try:
            payload = json.loads(line)
        except ValueError:
            return None
        duration = payload.get("duration") if isinstance(payload, dict) else None
        if isinstance(duration, (int, float)) and not isinstance(duration, bool) and duration > 0:
            return float(duration)
        return None
    return None


async def fetch_duration_seconds_with_ytdlp(
    ytdlp_path: str | None,
    url: str,
    *,
    timeout_s: float = YTDLP_PROBE_TIMEOUT_S,
) -> float | None:
    if not ytdlp_path:
        return None
    try:
        completed = await run_process(
            build_ytdlp_duration_cmd(ytdlp_path, url),
            timeout_s=timeout_s,
            stderr_limit=MAX_STDERR_BYTES,
        )
    except OSError as exc:
        logger.debug("yt-dlp duration probe failed: %s", exc)
        return None
    if completed.timed_out or completed.returncode != 0:
        return None
    return parse_duration_from_dump(completed.stdout)


__all__ = [
    "MAX_STDERR_BYTES",
    "NOT_CONFIGURED_MESSAGE",
    "PROGRESS_TEMPLATE",
    "build_ytdlp_audio_cmd",
    "build_ytdlp_duration_cmd",
    "download_audio",
    "fetch_duration_seconds_with_ytdlp",
    "fetch_transcript_with_ytdlp",
    "parse_duration_from_dump",
    "parse_progress_line",
]
