from __future__ import annotations

import html
import re
from typing import Any

from transcript_engine.contracts.artifacts import TranscriptSegment
from transcript_engine.utils.formatting import normalize_transcript_text


_CUE_TIMING_RE = re.compile(
    r"^\s*((?:\d+:)?\d{1,2}:\d{2}[.,]\d{1,3})\s*-->\s*((?:\d+:)?\d{1,2}:\d{2}[.,]\d{1,3})"
)
_TAG_RE = re.compile(r"<[^>]+>")
_SEQUENCE_RE = re.compile(r"^\d+$")


def parse_cue_timestamp(value: str) -> float | None:
    parts = value.strip().replace(",", ".").split(":")
    try:
        numbers = [float(part) for part in parts]
    except ValueError:
        return None
    seconds = 0.0
    for number in numbers:
        seconds = seconds * 60 + number
    return seconds


def _clean_cue_line(line: str) -> str:
    return html.unescape(_TAG_RE.sub("", line)).strip()


def _iter_cues(body: str) -> list[tuple[float | None, float | None, str]]:
    """Split WebVTT or SRT text into ``(start, end, text)`` cues; headers and notes are dropped."""
    cues: list[tuple[float | None, float | None, str]] = []
    blocks = re.split(r"\n\s*\n", body.replace("\r\n", "\n").replace("\r", "\n"))
    for block in blocks:
        lines = [line for line in block.split("\n") if line.strip()]
        if not lines:
            continue
        head = lines[0].strip()
        if head.startswith(("WEBVTT", "NOTE", "STYLE", "REGION")):
            continue
        timing_index, match = next(
            ((i, m) for i, m in enumerate(_CUE_TIMING_RE.match(line) for line in lines) if m is not None),
            (None, None),
        )
        if timing_index is None or match is None:
            continue
        text_lines = [_clean_cue_line(line) for line in lines[timing_index + 1 :]]
        text = " ".join(line for line in text_lines if line)
        if not text:
            continue
        cues.append((parse_cue_timestamp(match.group(1)), parse_cue_timestamp(match.group(2)), text))
    return cues


def _dedupe_consecutive(texts: list[str]) -> list[str]:
    out: list[str] = []
    for text in texts:
        if out and out[-1] == text:
            continue
        out.append(text)
    return out


def vtt_to_plain_text(body: str) -> str:
    """Flatten WebVTT (or SRT) cues into text; rolling duplicate cues are collapsed."""
    return normalize_transcript_text(" ".join(_dedupe_consecutive([text for _, _, text in _iter_cues(body)])))


def vtt_to_segments(body: str) -> list[TranscriptSegment] | None:
    segments = [
        TranscriptSegment(text=text, start_s=start, end_s=end)
        for start, end, text in _iter_cues(body)
        if start is not None
    ]
    return segments or None


srt_to_plain_text = vtt_to_plain_text
srt_to_segments = vtt_to_segments


def _json_entries(payload: Any) -> list[Any]:
    if isinstance(payload, list):
        return payload
    if isinstance(payload, dict):
        for key in ("segments", "transcript", "captions", "cues", "results"):
            value = payload.get(key)
            if isinstance(value, list):
                return value
    return []


def _number(value: Any) -> float | None:
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return float(value)
    if isinstance(value, str):
        try:
            return float(value)
        except ValueError:
            return parse_cue_timestamp(value) if ":" in value else None
    return None


def _entry_text(entry: Any) -> str:
    if isinstance(entry, str):
        return entry.strip()
    if isinstance(entry, dict):
        for key in ("text", "body", "content", "utf8"):
            value = entry.get(key)
            if isinstance(value, str) and value.strip():
                return html.unescape(value).strip()
    return ""


def json_transcript_to_plain_text(payload: Any) -> str | None:
    if isinstance(payload, dict) and isinstance(payload.get("text"), str) and not _json_entries(payload):
        text = normalize_transcript_text(payload["text"])
        return text or None
    texts = [_entry_text(entry) for entry in _json_entries(payload)]
    text = normalize_transcript_text(" ".join(t for t in texts if t))
    return text or None


def json_transcript_to_segments(payload: Any) -> list[TranscriptSegment] | None:
    segments: list[TranscriptSegment] = []
    for entry in _json_entries(payload):
        if not isinstance(entry, dict):
            continue
        text = _entry_text(entry)
        start = _number(entry.get("startTime", entry.get("start", entry.get("start_time"))))
        if not text or start is None:
            continue
        end = _number(entry.get("endTime", entry.get("end", entry.get("end_time"))))
        if end is None:
            duration = _number(entry.get("dur", entry.get("duration")))
            end = start + duration if duration is not None else None
        segments.append(TranscriptSegment(text=text, start_s=start, end_s=end))
    return segments or None


__all__ = [
    "json_transcript_to_plain_text",
    "json_transcript_to_segments",
    "parse_cue_timestamp",
    "srt_to_plain_text",
    "srt_to_segments",
    "vtt_to_plain_text",
    "vtt_to_segments",
]
