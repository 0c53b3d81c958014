from __future__ import annotations

import pytest

from transcript_engine.components.ytdlp import (
    build_ytdlp_audio_cmd,
    build_ytdlp_duration_cmd,
    parse_duration_from_dump,
    parse_progress_line,
)
from transcript_engine.providers.captions import (
    json_transcript_to_plain_text,
    json_transcript_to_segments,
    parse_cue_timestamp,
    srt_to_plain_text,
    vtt_to_plain_text,
    vtt_to_segments,
)


ROLLING_VTT = """WEBVTT
Kind: captions

NOTE produced by a captioner

00:00:01.000 --> 00:00:02.000 align:start
<c>so today</c>

00:00:02.000 --> 00:00:03.000
so today

00:00:03.000 --> 00:00:04.500
we talk about &amp; caching
"""

SRT = """1
00:00:00,000 --> 00:00:01,500
First line

2
00:00:01,500 --> 00:00:03,000
Second <i>line</i>
"""


def test_vtt_plain_text_collapses_rolling_duplicates() -> None:
    assert vtt_to_plain_text(ROLLING_VTT) == "so today we talk about & caching"


def test_vtt_segments_keep_timings() -> None:
    segments = vtt_to_segments(ROLLING_VTT)

    assert segments is not None
    assert [(s.start_s, s.end_s) for s in segments] == [(1.0, 2.0), (2.0, 3.0), (3.0, 4.5)]


def test_srt_is_parsed_like_vtt() -> None:
    assert srt_to_plain_text(SRT) == "First line Second line"


def test_parse_cue_timestamp_variants() -> None:
    assert parse_cue_timestamp("01:02:03.500") == pytest.approx(3723.5)
    assert parse_cue_timestamp("00:01,250") == pytest.approx(1.25)
    assert parse_cue_timestamp("nope") is None


def test_json_transcripts() -> None:
    assert json_transcript_to_plain_text({"text": "  whole   transcript "}) == "whole transcript"
    assert json_transcript_to_plain_text(["a", {"text": "b"}]) == "a b"
    assert json_transcript_to_plain_text({"segments": []}) is None

    segments = json_transcript_to_segments({"cues": [{"text": "x", "start": "1.5", "dur": 2}]})
    assert segments is not None
    assert (segments[0].start_s, segments[0].end_s) == (1.5, 3.5)


def test_parse_progress_line() -> None:
    assert parse_progress_line("progress:100|NA|2000") == (100, 2000)
    assert parse_progress_line("progress:100|4000|2000") == (100, 4000)
    assert parse_progress_line("progress:5|NA|NA") == (5, None)
    assert parse_progress_line("[download] 10%") is None
    assert parse_progress_line("progress:NA|1|1") is None


def test_build_ytdlp_audio_cmd() -> None:
    cmd = build_ytdlp_audio_cmd("yt-dlp", "https://x.com/a/status/1", "/tmp/out.mp3", extra_args=["--cookies-from-browser", "firefox"])

    assert cmd[:4] == ["yt-dlp", "-x", "--audio-format", "mp3"]
    assert "--progress-template" in cmd
    assert cmd[-5:] == ["--cookies-from-browser", "firefox", "-o", "/tmp/out.mp3", "https://x.com/a/status/1"]
    assert "--enable-file-urls" in build_ytdlp_audio_cmd("yt-dlp", "file:///m.mp4", "o.mp3", with_progress=False)


def test_duration_probe_command_and_parsing() -> None:
    assert build_ytdlp_duration_cmd("yt-dlp", "u")[-1] == "u"
    assert parse_duration_from_dump('WARNING: x\n{"duration": 61.5, "id": "abc"}\n') == 61.5
    assert parse_duration_from_dump('{"duration": 0}') is None
    assert parse_duration_from_dump("no json") is None
