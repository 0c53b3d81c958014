from __future__ import annotations

import re


_BYTE_UNITS = ("B", "KB", "MB", "GB")
_WHITESPACE_RE = re.compile(r"[ \t\f\v]+")
_BLANK_LINES_RE = re.compile(r"\n{3,}")


def format_bytes(size: int | float) -> str:
    value = float(max(size, 0))
    unit_index = 0
    while value >= 1024 and unit_index < len(_BYTE_UNITS) - 1:
        value /= 1024
        unit_index += 1
    unit = _BYTE_UNITS[unit_index]
    decimals = 0 if value >= 10 or unit == "B" else 1
    return f"{value:.{decimals}f} {unit}"


def normalize_transcript_text(text: str) -> str:
    lines = [_WHITESPACE_RE.sub(" ", line).strip() for line in text.replace("\r\n", "\n").split("\n")]
    return _BLANK_LINES_RE.sub("\n\n", "\n".join(lines)).strip()


def parse_clock_duration(value: str | None) -> float | None:
    """Parse ``SS``, ``MM:SS`` or ``HH:MM:SS`` (fractions allowed) into seconds."""
    if value is None:
        return None
    raw = value.strip()
    if not raw:
        return None
    try:
        parts = [float(part) for part in raw.split(":")]
    except ValueError:
        return None
    if len(parts) > 3 or any(part < 0 for part in parts):
        return None
    seconds = 0.0
    for part in parts:
        seconds = seconds * 60 + part
    return seconds if seconds > 0 else None


__all__ = ["format_bytes", "normalize_transcript_text", "parse_clock_duration"]
