from __future__ import annotations

import html as html_lib
import json
import logging
import re
from dataclasses import dataclass
from typing import Any, Iterator
from urllib.parse import parse_qs, quote, urlparse

from bs4 import BeautifulSoup

from transcript_engine.adapters.http import Fetcher, get_json, get_text
from transcript_engine.contracts.artifacts import TranscriptSegment
from transcript_engine.providers.captions import (
    json_transcript_to_plain_text,
    json_transcript_to_segments,
    vtt_to_plain_text,
    vtt_to_segments,
)
from transcript_engine.utils.formatting import normalize_transcript_text, parse_clock_duration


PODCAST_PLATFORM_HOST_RE = re.compile(
    r"(?:^|[/.])(?:podcasts\.apple\.com|itunes\.apple\.com|open\.spotify\.com|podbean\.com|buzzsprout\.com|"
    r"libsyn\.com|simplecast\.com|megaphone\.fm|anchor\.fm|podcasters\.spotify\.com|transistor\.fm|"
    r"captivate\.fm|omny\.fm|omnystudio\.com|acast\.com|podcasts\.google\.com|pca\.st|overcast\.fm|"
    r"castbox\.fm|podomatic\.com|spreaker\.com|audioboom\.com|redcircle\.com|art19\.com|pinecast\.com)",
    re.IGNORECASE,
)
FEED_HINT_URL_RE = re.compile(r"(?:/feed(?:/|$|\?)|/rss(?:/|$|\?)|\.rss(?:$|\?)|\.xml(?:$|\?)|format=rss)", re.IGNORECASE)

ITUNES_SEARCH_URL = "https://itunes.apple.com/search"
ITUNES_LOOKUP_URL = "https://itunes.apple.com/lookup"
SPOTIFY_EMBED_URL = "https://open.spotify.com/embed/episode"

_FEED_ROOT_RE = re.compile(r"<(?:rss|feed|rdf:RDF)\b", re.IGNORECASE)
_ITEM_RE = re.compile(r"<(item|entry)\b[^>]*>(.*?)</\1>", re.IGNORECASE | re.DOTALL)
_TITLE_RE = re.compile(r"<title\b[^>]*>(.*?)</title>", re.IGNORECASE | re.DOTALL)
_ENCLOSURE_RE = re.compile(r"<enclosure\b([^>]*)/?>", re.IGNORECASE)
_ATOM_ENCLOSURE_RE = re.compile(r"<link\b(?=[^>]*\brel=['\"]enclosure['\"])([^>]*)/?>", re.IGNORECASE)
_TRANSCRIPT_TAG_RE = re.compile(r"<podcast:transcript\b([^>]*)/?>", re.IGNORECASE)
_ITUNES_DURATION_RE = re.compile(r"<itunes:duration\b[^>]*>(.*?)</itunes:duration>", re.IGNORECASE | re.DOTALL)
_ATTR_RE = re.compile(r"([\w:-]+)\s*=\s*(?:\"([^\"]*)\"|'([^']*)')")
_CDATA_RE = re.compile(r"<!\[CDATA\[(.*?)\]\]>", re.DOTALL)
_OG_AUDIO_RE = re.compile(r"<meta\s+property=['\"]og:audio['\"]\s+content=['\"]([^'\"]+)['\"][^>]*>", re.IGNORECASE)
_SPOTIFY_EPISODE_RE = re.compile(r"open\.spotify\.com/(?:embed/)?episode/([A-Za-z0-9]+)", re.IGNORECASE)
_APPLE_SHOW_ID_RE = re.compile(r"/id(\d+)")
_BLOCKED_MARKERS = ("captcha", "access denied", "are you a robot", "unusual traffic", "cf-chl")

_TRANSCRIPT_TYPE_PREFERENCE = (
    "text/vtt",
    "application/x-subrip",
    "application/srt",
    "text/srt",
    "application/json",
    "text/plain",
    "text/html",
)

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class FeedTranscript:
    text: str
    segments: list[TranscriptSegment] | None
    transcript_url: str
    transcript_type: str | None


@dataclass(frozen=True, slots=True)
class FeedEnclosure:
    enclosure_url: str
    duration_seconds: float | None


@dataclass(frozen=True, slots=True)
class FeedItem:
    title: str | None
    body: str


@dataclass(frozen=True, slots=True)
class TranscriptTag:
    url: str
    type: str | None


@dataclass(frozen=True, slots=True)
class SpotifyEpisode:
    title: str
    show_name: str | None


@dataclass(frozen=True, slots=True)
class AppleEpisode:
    title: str | None
    episode_url: str | None
    feed_url: str | None
    duration_seconds: float | None


def decode_xml_entities(value: str) -> str:
    return html_lib.unescape(value)


def _text_content(raw: str) -> str:
    cdata = _CDATA_RE.search(raw)
    inner = cdata.group(1) if cdata else raw
    return decode_xml_entities(re.sub(r"<[^>]+>", "", inner)).strip()


def _attributes(raw: str) -> dict[str, str]:
    return {match[0].lower(): decode_xml_entities(match[1] or match[2]) for match in _ATTR_RE.findall(raw)}


def looks_like_rss_or_atom_feed(body: str) -> bool:
    head = body.lstrip()[:2048]
    return bool(_FEED_ROOT_RE.search(head)) and ("<channel" in body.lower() or "<entry" in body.lower())


def is_podcast_host(url: str) -> bool:
    return bool(PODCAST_PLATFORM_HOST_RE.search(url))


def looks_like_feed_url(url: str) -> bool:
    return bool(FEED_HINT_URL_RE.search(url))


def iter_feed_items(feed_xml: str) -> Iterator[FeedItem]:
    for match in _ITEM_RE.finditer(feed_xml):
        body = match.group(2)
        title_match = _TITLE_RE.search(body)
        yield FeedItem(title=_text_content(title_match.group(1)) if title_match else None, body=body)


def _normalize_title(value: str | None) -> str:
    return re.sub(r"[^\w]+", " ", (value or "").lower()).strip()


def find_feed_item(feed_xml: str, episode_title: str | None) -> FeedItem | None:
    items = list(iter_feed_items(feed_xml))
    if not items:
        return None
    if episode_title is None:
        return items[0]
    wanted = _normalize_title(episode_title)
    if not wanted:
        return None
    for item in items:
        if _normalize_title(item.title) == wanted:
            return item
    for item in items:
        candidate = _normalize_title(item.title)
        if candidate and (wanted in candidate or candidate in wanted):
            return item
    return None


def extract_item_duration_seconds(item_xml: str) -> float | None:
    match = _ITUNES_DURATION_RE.search(item_xml)
    return parse_clock_duration(_text_content(match.group(1))) if match else None


def _enclosure_url(item_xml: str) -> str | None:
    for pattern in (_ENCLOSURE_RE, _ATOM_ENCLOSURE_RE):
        for match in pattern.finditer(item_xml):
            attrs = _attributes(match.group(1))
            url = attrs.get("url") or attrs.get("href")
            if url and url.strip():
                return url.strip()
    return None


def extract_enclosure_from_feed(feed_xml: str) -> FeedEnclosure | None:
    for item in iter_feed_items(feed_xml):
        url = _enclosure_url(item.body)
        if url:
            return FeedEnclosure(enclosure_url=url, duration_seconds=extract_item_duration_seconds(item.body))
    url = _enclosure_url(feed_xml)
    return FeedEnclosure(enclosure_url=url, duration_seconds=None) if url else None


def extract_enclosure_for_episode(feed_xml: str, episode_title: str) -> FeedEnclosure | None:
    item = find_feed_item(feed_xml, episode_title)
    if item is None:
        return None
    url = _enclosure_url(item.body)
    if not url:
        return None
    return FeedEnclosure(enclosure_url=url, duration_seconds=extract_item_duration_seconds(item.body))


def extract_transcript_tags(xml: str) -> list[TranscriptTag]:
    tags: list[TranscriptTag] = []
    for match in _TRANSCRIPT_TAG_RE.finditer(xml):
        attrs = _attributes(match.group(1))
        url = (attrs.get("url") or "").strip()
        if url:
            tags.append(TranscriptTag(url=url, type=(attrs.get("type") or "").strip().lower() or None))
    return tags


def select_transcript_tag(tags: list[TranscriptTag]) -> TranscriptTag | None:
    if not tags:
        return None

    def rank(tag: TranscriptTag) -> int:
        try:
            return _TRANSCRIPT_TYPE_PREFERENCE.index(tag.type or "")
        except ValueError:
            return len(_TRANSCRIPT_TYPE_PREFERENCE)

    return sorted(tags, key=rank)[0]


def parse_transcript_body(
    body: str,
    *,
    declared_type: str | None,
    url: str,
) -> tuple[str, list[TranscriptSegment] | None] | None:
    kind = (declared_type or "").lower()
    lowered_url = url.lower().split("?", 1)[0]
    stripped = body.strip()
    if not stripped:
        return None
    if "json" in kind or lowered_url.endswith(".json") or stripped.startswith(("{", "[")):
        try:
            payload = json.loads(stripped)
        except ValueError:
            payload = None
        if payload is not None:
            text = json_transcript_to_plain_text(payload)
            return (text, json_transcript_to_segments(payload)) if text else None
    if (
        "vtt" in kind
        or "srt" in kind
        or "subrip" in kind
        or lowered_url.endswith((".vtt", ".srt"))
        or stripped.startswith("WEBVTT")
        or "-->" in stripped
    ):
        text = vtt_to_plain_text(stripped)
        return (text, vtt_to_segments(stripped)) if text else None
    if "html" in kind or lowered_url.endswith((".html", ".htm")):
        text = normalize_transcript_text(BeautifulSoup(stripped, "html.parser").get_text("\n"))
        return (text, None) if text else None
    text = normalize_transcript_text(stripped)
    return (text, None) if text else None


async def try_fetch_transcript_from_feed_xml(
    fetcher: Fetcher,
    *,
    feed_xml: str,
    episode_title: str | None,
    notes: list[str],
) -> FeedTranscript | None:
    """Fetch and parse the ``podcast:transcript`` for an episode (or the first episode)."""
    if episode_title is None:
        tagged = (item for item in iter_feed_items(feed_xml) if extract_transcript_tags(item.body))
        first = next(tagged, None)
        scope = first.body if first is not None else feed_xml
    else:
        item = find_feed_item(feed_xml, episode_title)
        scope = item.body if item is not None else ""
    tag = select_transcript_tag(extract_transcript_tags(scope))
    if tag is None:
        return None
    url = decode_xml_entities(tag.url)
    body = await get_text(fetcher, url)
    if body is None:
        notes.append(f"Podcast transcript fetch failed: {url}")
        return None
    parsed = parse_transcript_body(body, declared_type=tag.type, url=url)
    if parsed is None:
        notes.append("Podcast transcript was empty")
        return None
    text, segments = parsed
    return FeedTranscript(text=text, segments=segments, transcript_url=url, transcript_type=tag.type)


def extract_og_audio_url(page: str) -> str | None:
    match = _OG_AUDIO_RE.search(page)
    if match is None:
        return None
    candidate = match.group(1).strip()
    if not re.match(r"^https?://", candidate, re.IGNORECASE):
        return None
    return candidate


def looks_like_blocked_html(page: str) -> bool:
    lowered = page[:20000].lower()
    return any(marker in lowered for marker in _BLOCKED_MARKERS)


def spotify_episode_id(url: str) -> str | None:
    match = _SPOTIFY_EPISODE_RE.search(url)
    return match.group(1) if match else None


def _walk_first(node: Any, keys: tuple[str, ...]) -> Any:
    stack = [node]
    while stack:
        current = stack.pop()
        if isinstance(current, dict):
            for key in keys:
                value = current.get(key)
                if isinstance(value, str) and value.strip():
                    return value
            stack.extend(reversed([v for v in current.values() if isinstance(v, (dict, list))]))
        elif isinstance(current, list):
            stack.extend(reversed(current))
    return None


def parse_spotify_embed(page: str) -> SpotifyEpisode | None:
    soup = BeautifulSoup(page, "html.parser")
    title: str | None = None
    show: str | None = None
    script = soup.find("script", id="__NEXT_DATA__")
    if script is not None and script.string:
        try:
            data = json.loads(script.string)
        except ValueError:
            data = None
        entity = _walk_entity(data)
        if entity is not None:
            title = entity.get("name") or entity.get("title")
            subtitle = entity.get("subtitle")
            show = subtitle if isinstance(subtitle, str) else None
    if not title:
        meta = soup.find("meta", attrs={"property": "og:title"})
        title = meta.get("content") if meta is not None else None
        if not title and soup.title is not None:
            title = soup.title.get_text()
    if not isinstance(title, str) or not title.strip():
        return None
    return SpotifyEpisode(title=title.strip(), show_name=show.strip() if show else None)


def _walk_entity(data: Any) -> dict[str, Any] | None:
    stack = [data]
    while stack:
        current = stack.pop()
        if isinstance(current, dict):
            entity = current.get("entity")
            if isinstance(entity, dict) and (entity.get("name") or entity.get("title")):
                return entity
            stack.extend(v for v in current.values() if isinstance(v, (dict, list)))
        elif isinstance(current, list):
            stack.extend(current)
    return None


async def fetch_spotify_episode(fetcher: Fetcher, episode_id: str, notes: list[str]) -> SpotifyEpisode | None:
    page = await get_text(fetcher, f"{SPOTIFY_EMBED_URL}/{episode_id}")
    if page is None:
        notes.append("Spotify embed fetch failed")
        return None
    if looks_like_blocked_html(page):
        notes.append("Spotify embed page blocked")
        return None
    episode = parse_spotify_embed(page)
    if episode is None:
        notes.append("Spotify episode title not found")
    return episode


async def resolve_podcast_feed_url_from_itunes_search(fetcher: Fetcher, show_name: str) -> str | None:
    payload = await get_json(
        fetcher,
        f"{ITUNES_SEARCH_URL}?media=podcast&entity=podcast&limit=10&term={quote(show_name)}",
    )
    results = payload.get("results") if isinstance(payload, dict) else None
    if not isinstance(results, list):
        return None
    wanted = _normalize_title(show_name)
    fallback: str | None = None
    for result in results:
        if not isinstance(result, dict):
            continue
        feed_url = result.get("feedUrl")
        if not isinstance(feed_url, str) or not feed_url:
            continue
        if _normalize_title(result.get("collectionName")) == wanted:
            return feed_url
        fallback = fallback or feed_url
    return fallback


def apple_ids_from_url(url: str) -> tuple[str | None, str | None]:
    try:
        parsed = urlparse(url)
    except ValueError:
        return None, None
    query = parse_qs(parsed.query)
    show_match = _APPLE_SHOW_ID_RE.search(parsed.path)
    show_id = show_match.group(1) if show_match else (query.get("id") or [None])[0]
    episode_id = (query.get("i") or [None])[0]
    return show_id, episode_id


def is_apple_podcasts_url(url: str) -> bool:
    host = (urlparse(url).hostname or "").lower()
    return host.endswith("podcasts.apple.com") or host.endswith("itunes.apple.com")


async def lookup_apple_episode(fetcher: Fetcher, show_id: str, episode_id: str) -> AppleEpisode | None:
    payload = await get_json(
        fetcher,
        f"{ITUNES_LOOKUP_URL}?id={quote(show_id)}&entity=podcastEpisode&limit=300",
    )
    results = payload.get("results") if isinstance(payload, dict) else None
    if not isinstance(results, list):
        return None
    feed_url: str | None = None
    episode: dict[str, Any] | None = None
    for result in results:
        if not isinstance(result, dict):
            continue
        if isinstance(result.get("feedUrl"), str) and feed_url is None:
            feed_url = result["feedUrl"]
        if str(result.get("trackId")) == episode_id and result.get("wrapperType") == "podcastEpisode":
            episode = result
    if episode is None:
        return None
    millis = episode.get("trackTimeMillis")
    duration = millis / 1000.0 if isinstance(millis, (int, float)) and millis > 0 else None
    episode_url = episode.get("episodeUrl")
    return AppleEpisode(
        title=episode.get("trackName") if isinstance(episode.get("trackName"), str) else None,
        episode_url=episode_url if isinstance(episode_url, str) and episode_url else None,
        feed_url=episode.get("feedUrl") if isinstance(episode.get("feedUrl"), str) else feed_url,
        duration_seconds=duration,
    )


def extract_apple_embedded_stream_url(page: str) -> str | None:
    soup = BeautifulSoup(page, "html.parser")
    script = soup.find("script", id="serialized-server-data")
    if script is None or not script.string:
        return None
    try:
        data = json.loads(script.string)
    except ValueError:
        return None
    url = _walk_first(data, ("assetUrl", "streamUrl"))
    return url.strip() if isinstance(url, str) and url.strip().startswith(("http://", "https://")) else None


__all__ = [
    "AppleEpisode",
    "FEED_HINT_URL_RE",
    "FeedEnclosure",
    "FeedItem",
    "FeedTranscript",
    "PODCAST_PLATFORM_HOST_RE",
    "SpotifyEpisode",
    "TranscriptTag",
    "apple_ids_from_url",
    "decode_xml_entities",
    "extract_apple_embedded_stream_url",
    "extract_enclosure_for_episode",
    "extract_enclosure_from_feed",
    "extract_item_duration_seconds",
    "extract_og_audio_url",
    "extract_transcript_tags",
    "fetch_spotify_episode",
    "find_feed_item",
    "is_apple_podcasts_url",
    "is_podcast_host",
    "iter_feed_items",
    "lookup_apple_episode",
    "looks_like_blocked_html",
    "looks_like_feed_url",
    "looks_like_rss_or_atom_feed",
    "parse_spotify_embed",
    "parse_transcript_body",
    "resolve_podcast_feed_url_from_itunes_search",
    "select_transcript_tag",
    "spotify_episode_id",
    "try_fetch_transcript_from_feed_xml",
]
