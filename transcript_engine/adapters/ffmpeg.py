from __future__ import annotations

import contextlib
import logging
import os
import re
import shutil
import tempfile
import uuid
from os import PathLike
from pathlib import Path
from typing import Protocol

from transcript_engine.adapters.process import run_process
from transcript_engine.contracts.errors import FfmpegError


type StrPath = str | PathLike[str]

DEFAULT_SEGMENT_SECONDS = 600
SEGMENT_DIR_PREFIX = "transcript-segments-"
_PART_NAME_RE = re.compile(r"^part-(\d{3,})\.mp3$")

logger = logging.getLogger(__name__)


def _path_str(value: StrPath) -> str:
    return str(Path(value))


def _require_positive_int(name: str, value: int) -> None:
    if value <= 0:
        raise ValueError(f"{name} must be > 0")


def build_ffprobe_duration_cmd(input_path: StrPath, *, ffprobe: str = "ffprobe") -> list[str]:
    return [
        ffprobe,
        "-v",
        "error",
        "-show_entries",
        "format=duration",
        "-of",
        "default=noprint_wrappers=1:nokey=1",
        _path_str(input_path),
    ]


def build_ffmpeg_wav_cmd(
    input_path: StrPath,
    output_path: StrPath,
    *,
    ffmpeg: str = "ffmpeg",
    sample_rate: int = 16000,
    channels: int = 1,
) -> list[str]:
    """Build a deterministic ffmpeg command for PCM WAV normalization."""
    _require_positive_int("sample_rate", sample_rate)
    _require_positive_int("channels", channels)

    return [
        ffmpeg,
        "-hide_banner",
        "-loglevel",
        "error",
        "-y",
        "-i",
        _path_str(input_path),
        "-vn",
        "-acodec",
        "pcm_s16le",
        "-ar",
        str(sample_rate),
        "-ac",
        str(channels),
        _path_str(output_path),
    ]


def build_ffmpeg_mp3_cmd(
    input_path: StrPath,
    output_path: StrPath,
    *,
    ffmpeg: str = "ffmpeg",
    sample_rate: int = 16000,
    bitrate: str = "64k",
) -> list[str]:
    _require_positive_int("sample_rate", sample_rate)
    return [
        ffmpeg,
        "-hide_banner",
        "-loglevel",
        "error",
        "-y",
        "-i",
        _path_str(input_path),
        "-vn",
        "-ac",
        "1",
        "-ar",
        str(sample_rate),
        "-b:a",
        bitrate,
        _path_str(output_path),
    ]


def build_ffmpeg_segment_cmd(
    input_path: StrPath,
    segments_dir: StrPath,
    segment_seconds: int,
    *,
    ffmpeg: str = "ffmpeg",
) -> list[str]:
    """Build a deterministic ffmpeg segmenting command producing mono MP3 parts."""
    _require_positive_int("segment_seconds", segment_seconds)
    part_pattern = Path(segments_dir) / "part-%03d.mp3"

    return [
        ffmpeg,
        "-hide_banner",
        "-loglevel",
        "error",
        "-y",
        "-i",
        _path_str(input_path),
        "-vn",
        "-ac",
        "1",
        "-ar",
        "16000",
        "-b:a",
        "64k",
        "-f",
        "segment",
        "-segment_time",
        str(segment_seconds),
        "-reset_timestamps",
        "1",
        str(part_pattern),
    ]


def collect_segment_parts(segments_dir: Path) -> list[Path]:
    parts = [path for path in Path(segments_dir).iterdir() if path.is_file() and _PART_NAME_RE.fullmatch(path.name)]
    return sorted(parts, key=lambda path: int(_PART_NAME_RE.fullmatch(path.name).group(1)))  # type: ignore[union-attr]


def parse_probe_duration(stdout: str) -> float | None:
    for line in stdout.splitlines():
        try:
            value = float(line.strip())
        except ValueError:
            continue
        if value > 0:
            return value
    return None


def remove_tree_quietly(path: StrPath | None) -> None:
    if path is None:
        return
    try:
        shutil.rmtree(path)
    except FileNotFoundError:
        return
    except OSError as exc:
        logger.warning("failed to remove temp dir %s: %s", path, exc)


def unlink_quietly(path: StrPath | None) -> None:
    if path is None:
        return
    try:
        Path(path).unlink(missing_ok=True)
    except OSError as exc:
        logger.warning("failed to remove temp file %s: %s", path, exc)


class Transcoder(Protocol):
    async def probe_duration_seconds(self, input_path: StrPath) -> float | None:
        """Return the media duration, or None when it cannot be determined."""

    async def transcode_to_wav(self, input_path: StrPath, output_path: StrPath) -> Path:
        """Write a mono 16 kHz WAV copy of the input."""

    async def transcode_bytes_to_mp3(self, data: bytes, filename: str | None = None) -> bytes:
        """Return a mono MP3 rendition of the given media bytes."""

    async def segment(self, input_path: StrPath, segment_seconds: int) -> list[Path]:
        """Split media into ordered fixed-duration MP3 parts inside a fresh temp dir."""


class MediaTranscoder:
    """ffmpeg/ffprobe wrapper used for probing, WAV/MP3 conversion and segmenting."""

    def __init__(
        self,
        ffmpeg_path: str,
        *,
        ffprobe_path: str | None = None,
        timeout_s: float = 600.0,
        probe_timeout_s: float = 30.0,
    ) -> None:
        if not ffmpeg_path:
            raise ValueError("ffmpeg_path is required")
        self._ffmpeg = ffmpeg_path
        self._ffprobe = ffprobe_path
        self._timeout_s = timeout_s
        self._probe_timeout_s = probe_timeout_s

    async def _run_or_raise(self, cmd: list[str], fallback_message: str) -> None:
        try:
            completed = await run_process(cmd, timeout_s=self._timeout_s, stderr_limit=16000)
        except OSError as exc:
            raise FfmpegError(f"{fallback_message}: cannot run {cmd[0]}: {exc}") from exc
        if completed.timed_out:
            raise FfmpegError(f"{fallback_message} (timed out after {self._timeout_s:g}s)")
        if completed.returncode != 0:
            raise FfmpegError(completed.error_message(fallback_message))

    async def probe_duration_seconds(self, input_path: StrPath) -> float | None:
        if not self._ffprobe:
            return None
        try:
            completed = await run_process(
                build_ffprobe_duration_cmd(input_path, ffprobe=self._ffprobe),
                timeout_s=self._probe_timeout_s,
                stdout_limit=4096,
                stderr_limit=4096,
            )
        except OSError as exc:
            logger.debug("ffprobe unavailable: %s", exc)
            return None
        if completed.returncode != 0 or completed.timed_out:
            return None
        return parse_probe_duration(completed.stdout)

    async def transcode_to_wav(self, input_path: StrPath, output_path: StrPath) -> Path:
        output = Path(output_path)
        await self._run_or_raise(
            build_ffmpeg_wav_cmd(input_path, output, ffmpeg=self._ffmpeg),
            "ffmpeg WAV transcode failed",
        )
        if not output.is_file():
            raise FfmpegError(f"ffmpeg did not produce WAV output: {output}")
        return output

    async def transcode_bytes_to_mp3(self, data: bytes, filename: str | None = None) -> bytes:
        suffix = Path(filename).suffix if filename else ".bin"
        token = uuid.uuid4().hex
        tmp_dir = Path(tempfile.gettempdir())
        input_path = tmp_dir / f"transcript-transcode-{token}{suffix or '.bin'}"
        output_path = tmp_dir / f"transcript-transcode-{token}.mp3"
        try:
            try:
                input_path.write_bytes(data)
            except OSError as exc:
                raise FfmpegError(f"cannot stage media for ffmpeg: {exc}") from exc
            await self._run_or_raise(
                build_ffmpeg_mp3_cmd(input_path, output_path, ffmpeg=self._ffmpeg),
                "ffmpeg MP3 transcode failed",
            )
            try:
                return output_path.read_bytes()
            except OSError as exc:
                raise FfmpegError(f"ffmpeg did not produce MP3 output: {exc}") from exc
        finally:
            unlink_quietly(input_path)
            unlink_quietly(output_path)

    async def segment(self, input_path: StrPath, segment_seconds: int = DEFAULT_SEGMENT_SECONDS) -> list[Path]:
        _require_positive_int("segment_seconds", segment_seconds)
        segments_dir = Path(tempfile.mkdtemp(prefix=SEGMENT_DIR_PREFIX))
        try:
            await self._run_or_raise(
                build_ffmpeg_segment_cmd(input_path, segments_dir, segment_seconds, ffmpeg=self._ffmpeg),
                "ffmpeg segmenting failed",
            )
            parts = collect_segment_parts(segments_dir)
            if not parts:
                raise FfmpegError("ffmpeg produced no audio segments")
            return parts
        except BaseException:
            remove_tree_quietly(segments_dir)
            raise


def resolve_transcoder(
    ffmpeg_path: str | None,
    ffprobe_path: str | None = None,
    *,
    timeout_s: float = 600.0,
) -> MediaTranscoder | None:
    if not ffmpeg_path:
        return None
    if os.sep in ffmpeg_path and not Path(ffmpeg_path).is_file():
        logger.debug("ffmpeg path does not exist: %s", ffmpeg_path)
        return None
    return MediaTranscoder(ffmpeg_path, ffprobe_path=ffprobe_path, timeout_s=timeout_s)


__all__ = [
    "DEFAULT_SEGMENT_SECONDS",
    "MediaTranscoder",
    "SEGMENT_DIR_PREFIX",
    "StrPath",
    "Transcoder",
    "build_ffmpeg_mp3_cmd",
    "build_ffmpeg_segment_cmd",
    "build_ffmpeg_wav_cmd",
    "build_ffprobe_duration_cmd",
    "collect_segment_parts",
    "parse_probe_duration",
    "remove_tree_quietly",
    "resolve_transcoder",
    "unlink_quietly",
]
