from __future__ import annotations

import asyncio
from pathlib import Path
import tempfile
import unittest

import pytest

from transcript_engine.adapters.ffmpeg import (
    SEGMENT_DIR_PREFIX,
    MediaTranscoder,
    build_ffmpeg_mp3_cmd,
    build_ffmpeg_segment_cmd,
    build_ffmpeg_wav_cmd,
    build_ffprobe_duration_cmd,
    collect_segment_parts,
    parse_probe_duration,
    resolve_transcoder,
)
from transcript_engine.contracts.errors import FfmpegError


def test_build_ffmpeg_wav_cmd_is_mono_16k_pcm() -> None:
    cmd = build_ffmpeg_wav_cmd(Path("in.mp3"), Path("out.wav"))

    assert cmd == [
        "ffmpeg",
        "-hide_banner",
        "-loglevel",
        "error",
        "-y",
        "-i",
        str(Path("in.mp3")),
        "-vn",
        "-acodec",
        "pcm_s16le",
        "-ar",
        "16000",
        "-ac",
        "1",
        str(Path("out.wav")),
    ]


def test_build_ffmpeg_segment_cmd_writes_numbered_mp3_parts() -> None:
    cmd = build_ffmpeg_segment_cmd("episode.m4a", "parts", 600, ffmpeg="/opt/ffmpeg")

    assert cmd[0] == "/opt/ffmpeg"
    assert cmd[cmd.index("-f") + 1] == "segment"
    assert cmd[cmd.index("-segment_time") + 1] == "600"
    assert cmd[cmd.index("-reset_timestamps") + 1] == "1"
    assert cmd[-1] == str(Path("parts") / "part-%03d.mp3")


def test_build_ffmpeg_mp3_cmd_uses_requested_bitrate() -> None:
    cmd = build_ffmpeg_mp3_cmd("in.webm", "out.mp3", bitrate="96k")

    assert cmd[cmd.index("-b:a") + 1] == "96k"
    assert cmd[cmd.index("-ac") + 1] == "1"
    assert cmd[-1] == str(Path("out.mp3"))


def test_build_ffprobe_duration_cmd() -> None:
    assert build_ffprobe_duration_cmd("a.mp3", ffprobe="ffprobe") == [
        "ffprobe",
        "-v",
        "error",
        "-show_entries",
        "format=duration",
        "-of",
        "default=noprint_wrappers=1:nokey=1",
        str(Path("a.mp3")),
    ]


@pytest.mark.parametrize("segment_seconds", [0, -30])
def test_segment_cmd_rejects_non_positive_durations(segment_seconds: int) -> None:
    with pytest.raises(ValueError):
        build_ffmpeg_segment_cmd("a.mp3", "parts", segment_seconds)


def test_parse_probe_duration_skips_noise() -> None:
    assert parse_probe_duration("N/A\n123.456\n") == pytest.approx(123.456)
    assert parse_probe_duration("N/A\n") is None
    assert parse_probe_duration("0\n") is None


def test_resolve_transcoder_requires_existing_explicit_path() -> None:
    assert resolve_transcoder(None) is None
    assert resolve_transcoder("/definitely/missing/ffmpeg") is None
    assert resolve_transcoder("ffmpeg", "ffprobe") is not None


class CollectSegmentPartsTests(unittest.TestCase):
    def test_orders_parts_numerically_and_ignores_strays(self) -> None:
        with tempfile.TemporaryDirectory() as tmp:
            root = Path(tmp)
            for name in ["part-010.mp3", "part-002.mp3", "part-001.mp3", "notes.txt", "part-x.mp3"]:
                (root / name).write_bytes(b"mp3")

            parts = collect_segment_parts(root)

            self.assertEqual([part.name for part in parts], ["part-001.mp3", "part-002.mp3", "part-010.mp3"])


class MissingBinaryTests(unittest.TestCase):
    def test_transcode_with_missing_ffmpeg_raises_ffmpeg_error(self) -> None:
        transcoder = MediaTranscoder("ffmpeg-not-installed-xyz")

        with self.assertRaises(FfmpegError) as ctx:
            asyncio.run(transcoder.transcode_bytes_to_mp3(b"ogg", "clip.ogg"))

        self.assertIn("cannot run ffmpeg-not-installed-xyz", str(ctx.exception))

    def test_segment_with_missing_ffmpeg_leaves_no_temp_dir(self) -> None:
        transcoder = MediaTranscoder("ffmpeg-not-installed-xyz")
        before = {path.name for path in Path(tempfile.gettempdir()).glob(f"{SEGMENT_DIR_PREFIX}*")}

        with self.assertRaises(FfmpegError):
            asyncio.run(transcoder.segment("missing.mp3", 600))

        after = {path.name for path in Path(tempfile.gettempdir()).glob(f"{SEGMENT_DIR_PREFIX}*")}
        self.assertEqual(after - before, set())

    def test_probe_with_missing_ffprobe_returns_none(self) -> None:
        transcoder = MediaTranscoder("ffmpeg", ffprobe_path="ffprobe-not-installed-xyz")

        self.assertIsNone(asyncio.run(transcoder.probe_duration_seconds("missing.mp3")))
