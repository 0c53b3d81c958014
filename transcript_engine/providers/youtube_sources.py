from __future__ import annotations

import html as html_lib
import json
import logging
import re
from dataclasses import dataclass
from typing import Any, Iterator
from urllib.parse import parse_qsl, quote, urlencode, urlparse, urlunparse

from transcript_engine.adapters.http import DEFAULT_USER_AGENT, Fetcher, get_text, post_json
from transcript_engine.contracts.artifacts import TranscriptSegment
from transcript_engine.contracts.errors import DownloadError
from transcript_engine.utils.formatting import normalize_transcript_text


YOUTUBE_ORIGIN = "https://www.youtube.com"
APIFY_BASE_URL = "https://api.apify.com/v2"
_XSSI_PREFIX = ")]}'"
_DEFAULT_CLIENT_NAME = "WEB"
_DEFAULT_CLIENT_VERSION = "2.20240101.00.00"
_LENGTH_SECONDS_RE = re.compile(r'"lengthSeconds"\s*:\s*"(\d+)"')
_XML_TEXT_RE = re.compile(r'<text\s+([^>]*)>(.*?)</text>', re.DOTALL)
_XML_ATTR_RE = re.compile(r'(\w+)="([^"]*)"')
_TAG_RE = re.compile(r"<[^>]+>")

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class YoutubeTranscript:
    text: str
    segments: list[TranscriptSegment] | None = None


@dataclass(frozen=True, slots=True)
class YoutubeiTranscriptConfig:
    api_key: str
    context: dict[str, Any]
    params: str
    client_name: str = _DEFAULT_CLIENT_NAME
    client_version: str = _DEFAULT_CLIENT_VERSION
    visitor_data: str | None = None


@dataclass(frozen=True, slots=True)
class CaptionTrack:
    base_url: str
    language_code: str | None
    kind: str | None
    name: str | None = None

    @property
    def auto_generated(self) -> bool:
        return (self.kind or "").lower() == "asr"


def extract_balanced_json(text: str, marker: str) -> Any:
    """Parse the JSON object that follows ``marker``; braces inside strings are ignored."""
    index = text.find(marker)
    if index < 0:
        return None
    start = text.find("{", index + len(marker))
    if start < 0:
        return None
    depth = 0
    in_string = False
    escaped = False
    for position in range(start, len(text)):
        char = text[position]
        if in_string:
            if escaped:
                escaped = False
            elif char == "\\":
                escaped = True
            elif char == '"':
                in_string = False
            continue
        if char == '"':
            in_string = True
        elif char == "{":
            depth += 1
        elif char == "}":
            depth -= 1
            if depth == 0:
                try:
                    return json.loads(text[start : position + 1])
                except ValueError:
                    return None
    return None


def _extract_all_balanced(text: str, marker: str) -> Iterator[Any]:
    offset = 0
    while True:
        index = text.find(marker, offset)
        if index < 0:
            return
        parsed = extract_balanced_json(text[index:], marker)
        if parsed is not None:
            yield parsed
        offset = index + len(marker)


def extract_ytcfg(page: str) -> dict[str, Any]:
    merged: dict[str, Any] = {}
    for marker in ("ytcfg.set(", "var ytcfg ="):
        for parsed in _extract_all_balanced(page, marker):
            if isinstance(parsed, dict):
                merged.update(parsed)
    return merged


def extract_player_response(page: str) -> dict[str, Any] | None:
    for marker in ("var ytInitialPlayerResponse =", "ytInitialPlayerResponse ="):
        parsed = extract_balanced_json(page, marker)
        if isinstance(parsed, dict):
            return parsed
    return None


def extract_initial_data(page: str) -> dict[str, Any] | None:
    for marker in ("var ytInitialData =", "ytInitialData ="):
        parsed = extract_balanced_json(page, marker)
        if isinstance(parsed, dict):
            return parsed
    return None


def strip_xssi_prefix(body: str) -> str:
    trimmed = body.lstrip()
    if trimmed.startswith(_XSSI_PREFIX):
        return trimmed[len(_XSSI_PREFIX) :]
    return body


def _walk(node: Any, key: str) -> Iterator[Any]:
    stack = [node]
    while stack:
        current = stack.pop()
        if isinstance(current, dict):
            children = []
            for name, value in current.items():
                if name == key:
                    yield value
                if isinstance(value, (dict, list)):
                    children.append(value)
            stack.extend(reversed(children))
        elif isinstance(current, list):
            stack.extend(reversed(current))


def _first(node: Any, key: str) -> Any:
    return next(_walk(node, key), None)


def _runs_text(node: Any) -> str:
    if not isinstance(node, dict):
        return ""
    simple = node.get("simpleText")
    if isinstance(simple, str):
        return simple
    runs = node.get("runs")
    if isinstance(runs, list):
        return "".join(str(run.get("text", "")) for run in runs if isinstance(run, dict))
    return ""


def _ms(value: Any) -> float | None:
    try:
        return int(str(value)) / 1000.0
    except (TypeError, ValueError):
        return None


def extract_youtubei_transcript_config(page: str) -> YoutubeiTranscriptConfig | None:
    ytcfg = extract_ytcfg(page)
    api_key = ytcfg.get("INNERTUBE_API_KEY")
    context = ytcfg.get("INNERTUBE_CONTEXT")
    if not isinstance(api_key, str) or not isinstance(context, dict):
        return None
    endpoint = _first(extract_initial_data(page) or {}, "getTranscriptEndpoint")
    params = endpoint.get("params") if isinstance(endpoint, dict) else None
    if not isinstance(params, str) or not params:
        return None
    client = context.get("client") if isinstance(context.get("client"), dict) else {}
    return YoutubeiTranscriptConfig(
        api_key=api_key,
        context=context,
        params=params,
        client_name=str(ytcfg.get("INNERTUBE_CLIENT_NAME") or client.get("clientName") or _DEFAULT_CLIENT_NAME),
        client_version=str(
            ytcfg.get("INNERTUBE_CLIENT_VERSION") or client.get("clientVersion") or _DEFAULT_CLIENT_VERSION
        ),
        visitor_data=ytcfg.get("VISITOR_DATA") if isinstance(ytcfg.get("VISITOR_DATA"), str) else None,
    )


def _youtubei_headers(config: YoutubeiTranscriptConfig, original_url: str) -> dict[str, str]:
    headers = {
        "User-Agent": DEFAULT_USER_AGENT,
        "Origin": YOUTUBE_ORIGIN,
        "Referer": original_url,
        "X-Youtube-Client-Name": "1" if config.client_name == "WEB" else config.client_name,
        "X-Youtube-Client-Version": config.client_version,
    }
    if config.visitor_data:
        headers["X-Goog-Visitor-Id"] = config.visitor_data
    return headers


def parse_transcript_segments(payload: Any) -> YoutubeTranscript | None:
    segments: list[TranscriptSegment] = []
    for renderer in _walk(payload, "transcriptSegmentRenderer"):
        if not isinstance(renderer, dict):
            continue
        text = normalize_transcript_text(html_lib.unescape(_runs_text(renderer.get("snippet"))))
        if not text:
            continue
        start = _ms(renderer.get("startMs"))
        segments.append(TranscriptSegment(text=text, start_s=start or 0.0, end_s=_ms(renderer.get("endMs"))))
    if not segments:
        return None
    text = normalize_transcript_text(" ".join(segment.text for segment in segments))
    return YoutubeTranscript(text=text, segments=segments) if text else None


async def fetch_transcript_from_transcript_endpoint(
    fetcher: Fetcher,
    *,
    config: YoutubeiTranscriptConfig,
    original_url: str,
) -> YoutubeTranscript | None:
    url = f"{YOUTUBE_ORIGIN}/youtubei/v1/get_transcript?key={quote(config.api_key)}&prettyPrint=false"
    response = await _post_youtubei(
        fetcher,
        url,
        {"context": config.context, "params": config.params},
        headers=_youtubei_headers(config, original_url),
    )
    if response is None:
        return None
    return parse_transcript_segments(response)


async def _post_youtubei(fetcher: Fetcher, url: str, payload: Any, *, headers: dict[str, str]) -> Any:
    """POST JSON to a youtubei endpoint; tolerates the XSSI guard prefix."""
    try:
        response = await fetcher.request(
            "POST",
            url,
            headers={"Content-Type": "application/json", **headers},
            json_body=payload,
        )
    except DownloadError as exc:
        logger.debug("POST %s failed: %s", url, exc)
        return None
    if not response.ok:
        logger.debug("POST %s -> %s", url, response.status)
        return None
    try:
        return json.loads(strip_xssi_prefix(response.text()))
    except ValueError:
        return None


def caption_tracks_from_player(player: Any) -> list[CaptionTrack]:
    tracks: list[CaptionTrack] = []
    raw = _first(player or {}, "captionTracks")
    if not isinstance(raw, list):
        return tracks
    for item in raw:
        if not isinstance(item, dict):
            continue
        base_url = item.get("baseUrl")
        if not isinstance(base_url, str) or not base_url:
            continue
        tracks.append(
            CaptionTrack(
                base_url=base_url,
                language_code=item.get("languageCode") if isinstance(item.get("languageCode"), str) else None,
                kind=item.get("kind") if isinstance(item.get("kind"), str) else None,
                name=_runs_text(item.get("name")) or None,
            )
        )
    return tracks


def select_caption_track(tracks: list[CaptionTrack], *, skip_auto_generated: bool = False) -> CaptionTrack | None:
    candidates = [track for track in tracks if not (skip_auto_generated and track.auto_generated)]
    if not candidates:
        return None

    def is_english(track: CaptionTrack) -> bool:
        return (track.language_code or "").lower().startswith("en")

    for predicate in (
        lambda t: is_english(t) and not t.auto_generated,
        lambda t: not t.auto_generated,
        is_english,
    ):
        for track in candidates:
            if predicate(track):
                return track
    return candidates[0]


def with_query_param(url: str, name: str, value: str) -> str:
    parsed = urlparse(url)
    query = [(key, val) for key, val in parse_qsl(parsed.query, keep_blank_values=True) if key != name]
    query.append((name, value))
    return urlunparse(parsed._replace(query=urlencode(query)))


def parse_json3_captions(payload: Any) -> YoutubeTranscript | None:
    if not isinstance(payload, dict):
        return None
    segments: list[TranscriptSegment] = []
    for event in payload.get("events") or []:
        if not isinstance(event, dict):
            continue
        segs = event.get("segs")
        if not isinstance(segs, list):
            continue
        text = normalize_transcript_text("".join(str(seg.get("utf8", "")) for seg in segs if isinstance(seg, dict)))
        if not text:
            continue
        start = _ms(event.get("tStartMs")) or 0.0
        duration = _ms(event.get("dDurationMs"))
        segments.append(
            TranscriptSegment(text=text, start_s=start, end_s=start + duration if duration is not None else None)
        )
    if not segments:
        return None
    return YoutubeTranscript(text=normalize_transcript_text(" ".join(s.text for s in segments)), segments=segments)


def parse_xml_captions(body: str) -> YoutubeTranscript | None:
    segments: list[TranscriptSegment] = []
    for attrs_raw, inner in _XML_TEXT_RE.findall(body):
        attrs = dict(_XML_ATTR_RE.findall(attrs_raw))
        text = normalize_transcript_text(html_lib.unescape(_TAG_RE.sub("", html_lib.unescape(inner))))
        if not text:
            continue
        try:
            start = float(attrs.get("start", "0"))
        except ValueError:
            start = 0.0
        try:
            end: float | None = start + float(attrs["dur"]) if "dur" in attrs else None
        except ValueError:
            end = None
        segments.append(TranscriptSegment(text=text, start_s=start, end_s=end))
    if not segments:
        return None
    return YoutubeTranscript(text=normalize_transcript_text(" ".join(s.text for s in segments)), segments=segments)


async def fetch_player_response(fetcher: Fetcher, *, page: str, video_id: str) -> dict[str, Any] | None:
    ytcfg = extract_ytcfg(page)
    api_key = ytcfg.get("INNERTUBE_API_KEY")
    context = ytcfg.get("INNERTUBE_CONTEXT")
    if not isinstance(api_key, str) or not isinstance(context, dict):
        return None
    payload = await _post_youtubei(
        fetcher,
        f"{YOUTUBE_ORIGIN}/youtubei/v1/player?key={quote(api_key)}&prettyPrint=false",
        {"context": context, "videoId": video_id},
        headers={"User-Agent": DEFAULT_USER_AGENT, "Origin": YOUTUBE_ORIGIN},
    )
    return payload if isinstance(payload, dict) else None


async def fetch_transcript_from_caption_tracks(
    fetcher: Fetcher,
    *,
    page: str,
    original_url: str,
    video_id: str,
    skip_auto_generated: bool = False,
) -> YoutubeTranscript | None:
    tracks = caption_tracks_from_player(extract_player_response(page))
    if not tracks:
        tracks = caption_tracks_from_player(await fetch_player_response(fetcher, page=page, video_id=video_id))
    track = select_caption_track(tracks, skip_auto_generated=skip_auto_generated)
    if track is None:
        return None

    headers = {"User-Agent": DEFAULT_USER_AGENT, "Referer": original_url}
    body = await get_text(fetcher, with_query_param(track.base_url, "fmt", "json3"), headers=headers)
    if body:
        try:
            parsed = parse_json3_captions(json.loads(body))
        except ValueError:
            parsed = None
        if parsed is not None:
            return parsed

    xml_url = with_query_param(track.base_url, "fmt", "srv1")
    body = await get_text(fetcher, xml_url, headers=headers)
    return parse_xml_captions(body) if body else None


def _positive_seconds(value: Any) -> float | None:
    try:
        seconds = float(value)
    except (TypeError, ValueError):
        return None
    return seconds if seconds > 0 else None


def extract_youtube_duration_seconds(page: str) -> float | None:
    player = extract_player_response(page)
    if player is not None:
        details = player.get("videoDetails")
        if isinstance(details, dict):
            seconds = _positive_seconds(details.get("lengthSeconds"))
            if seconds is not None:
                return seconds
    match = _LENGTH_SECONDS_RE.search(page)
    return _positive_seconds(match.group(1)) if match else None


async def fetch_youtube_duration_seconds_via_player(fetcher: Fetcher, *, page: str, video_id: str) -> float | None:
    player = await fetch_player_response(fetcher, page=page, video_id=video_id)
    if player is None:
        return None
    details = player.get("videoDetails")
    return _positive_seconds(details.get("lengthSeconds")) if isinstance(details, dict) else None


def _apify_item_text(item: Any) -> str | None:
    if not isinstance(item, dict):
        return None
    for key in ("transcript", "text"):
        value = item.get(key)
        if isinstance(value, str) and value.strip():
            return value
        if isinstance(value, list):
            joined = " ".join(str(part.get("text", "")) for part in value if isinstance(part, dict))
            if joined.strip():
                return joined
    data = item.get("data")
    if isinstance(data, list):
        joined = " ".join(str(part.get("text", "")).strip() for part in data if isinstance(part, dict))
        if joined.strip():
            return joined
    return None


async def fetch_transcript_with_apify(
    fetcher: Fetcher,
    *,
    api_token: str,
    url: str,
    actor: str,
) -> str | None:
    endpoint = f"{APIFY_BASE_URL}/acts/{quote(actor, safe='~')}/run-sync-get-dataset-items?token={quote(api_token)}"
    payload = await post_json(fetcher, endpoint, {"videoUrl": url})
    items = payload if isinstance(payload, list) else [payload]
    for item in items:
        text = _apify_item_text(item)
        if text:
            return normalize_transcript_text(html_lib.unescape(text))
    return None


__all__ = [
    "CaptionTrack",
    "YoutubeTranscript",
    "YoutubeiTranscriptConfig",
    "caption_tracks_from_player",
    "extract_balanced_json",
    "extract_initial_data",
    "extract_player_response",
    "extract_youtube_duration_seconds",
    "extract_youtubei_transcript_config",
    "extract_ytcfg",
    "fetch_player_response",
    "fetch_transcript_from_caption_tracks",
    "fetch_transcript_from_transcript_endpoint",
    "fetch_transcript_with_apify",
    "fetch_youtube_duration_seconds_via_player",
    "parse_json3_captions",
    "parse_transcript_segments",
    "parse_xml_captions",
    "select_caption_track",
    "strip_xssi_prefix",
    "with_query_param",
]
