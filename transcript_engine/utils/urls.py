from __future__ import annotations

import re
from urllib.parse import parse_qs, urljoin, urlparse


DIRECT_MEDIA_EXTENSIONS: tuple[str, ...] = (
    ".mp3",
    ".m4a",
    ".aac",
    ".wav",
    ".ogg",
    ".oga",
    ".opus",
    ".flac",
    ".mp4",
    ".m4v",
    ".mov",
    ".webm",
    ".mkv",
    ".mpeg",
    ".mpg",
)

_YOUTUBE_RE = re.compile(r"youtube\.com|youtu\.be", re.IGNORECASE)
_VIDEO_ID_RE = re.compile(r"^[A-Za-z0-9_-]{6,}$")
_PATH_ID_RE = re.compile(r"^/(?:shorts|embed|live|v)/([A-Za-z0-9_-]{6,})")
_TWITTER_STATUS_RE = re.compile(
    r"^https?://(?:www\.|mobile\.)?(?:twitter\.com|x\.com)/[^/]+/status(?:es)?/\d+",
    re.IGNORECASE,
)
_EMBEDDED_YOUTUBE_RE = re.compile(
    r"(?:https?:)?//(?:www\.)?(?:youtube(?:-nocookie)?\.com/(?:embed/|watch\?v=|shorts/)|youtu\.be/)"
    r"([A-Za-z0-9_-]{6,})",
    re.IGNORECASE,
)


def normalize_url(raw: str) -> str:
    url = raw.strip()
    if not url:
        return url
    if url.startswith("//"):
        return f"https:{url}"
    if not re.match(r"^[a-zA-Z][a-zA-Z0-9+.-]*:", url):
        return f"https://{url}"
    return url


def resolve_absolute_url(candidate: str | None, base_url: str) -> str | None:
    if candidate is None:
        return None
    trimmed = candidate.strip()
    if not trimmed:
        return None
    try:
        return urljoin(base_url, trimmed)
    except ValueError:
        return None


def is_direct_media_url(url: str) -> bool:
    try:
        path = urlparse(url).path.lower()
    except ValueError:
        return False
    return path.endswith(DIRECT_MEDIA_EXTENSIONS)


def is_youtube_url(url: str) -> bool:
    return bool(_YOUTUBE_RE.search(url))


def is_twitter_status_url(url: str) -> bool:
    return bool(_TWITTER_STATUS_RE.match(url))


def extract_youtube_video_id(url: str) -> str | None:
    try:
        parsed = urlparse(normalize_url(url))
    except ValueError:
        return None
    host = (parsed.hostname or "").lower()
    if host.endswith("youtu.be"):
        candidate = parsed.path.strip("/").split("/", 1)[0]
        return candidate if _VIDEO_ID_RE.match(candidate) else None
    if "youtube" not in host:
        return None
    values = parse_qs(parsed.query).get("v")
    if values and _VIDEO_ID_RE.match(values[0]):
        return values[0]
    match = _PATH_ID_RE.match(parsed.path)
    return match.group(1) if match else None


def extract_embedded_youtube_url(html: str | None) -> str | None:
    """Return a watch URL for the first YouTube video embedded in a page, if any."""
    if not html:
        return None
    match = _EMBEDDED_YOUTUBE_RE.search(html)
    if match is None:
        return None
    return f"https://www.youtube.com/watch?v={match.group(1)}"


__all__ = [
    "DIRECT_MEDIA_EXTENSIONS",
    "extract_embedded_youtube_url",
    "extract_youtube_video_id",
    "is_direct_media_url",
    "is_twitter_status_url",
    "is_youtube_url",
    "normalize_url",
    "resolve_absolute_url",
]
