"""Small helpers shared across the engine."""

from __future__ import annotations

from .formatting import format_bytes, normalize_transcript_text, parse_clock_duration
from .hashing import sha256_text
from .time import Timer, now_unix_ms

__all__ = [
    "format_bytes",
    "normalize_transcript_text",
    "now_unix_ms",
    "parse_clock_duration",
    "sha256_text",
    "Timer",
]
