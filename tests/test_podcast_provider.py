from __future__ import annotations

import asyncio
import unittest

from transcript_engine.adapters.http import HttpResponse
from transcript_engine.contracts.artifacts import TranscriptRequest
from transcript_engine.contracts.options import ProviderFetchOptions
from transcript_engine.providers import podcast
from transcript_engine.providers.base import MISSING_PROVIDER_NOTE
from transcript_engine.providers.podcast_sources import (
    TranscriptTag,
    extract_enclosure_for_episode,
    extract_enclosure_from_feed,
    parse_transcript_body,
    select_transcript_tag,
)


FEED_URL = "https://feeds.example.com/show.rss"

FEED_WITH_TRANSCRIPT = """<?xml version="1.0"?>
<rss version="2.0" xmlns:podcast="https://podcastindex.org/namespace/1.0">
  <channel>
    <title>Example Show</title>
    <item>
      <title>Episode 1</title>
      <enclosure url="https://cdn.example.com/ep1.mp3?a=1&amp;b=2" type="audio/mpeg" length="1000"/>
      <itunes:duration>01:02:03</itunes:duration>
      <podcast:transcript url="https://cdn.example.com/ep1.json" type="application/json"/>
      <podcast:transcript url="https://cdn.example.com/ep1.vtt" type="text/vtt"/>
    </item>
  </channel>
</rss>
"""

FEED_WITHOUT_TRANSCRIPT = """<rss version="2.0"><channel><title>Show</title>
<item><title>Episode 2</title><enclosure url="https://cdn.example.com/ep2.mp3" type="audio/mpeg"/></item>
</channel></rss>"""

VTT = """WEBVTT

00:00:00.000 --> 00:00:02.000
Hello and welcome.

00:00:02.000 --> 00:00:04.500
<v Host>To the show.</v>
"""


class _RoutingFetcher:
    def __init__(self, routes: dict[str, HttpResponse] | None = None) -> None:
        self.routes = routes or {}
        self.calls: list[tuple[str, str]] = []

    async def request(self, method, url, *, headers=None, json_body=None, max_bytes=None, on_progress=None):
        self.calls.append((method, url))
        for prefix, response in self.routes.items():
            if url.startswith(prefix):
                return response
        return HttpResponse(status=404, url=url)

    async def download_to_file(self, url, path, *, headers=None, on_progress=None):
        raise AssertionError(f"unexpected download of {url}")


class _RecordingTranscriber:
    def __init__(self, *, available: bool = True) -> None:
        self.available = available
        self.calls: list[object] = []

    def has_any_provider(self) -> bool:
        return self.available

    def can_transcode(self) -> bool:
        return False

    def provider_hint(self) -> str:
        return "fake"

    def model_id(self) -> str | None:
        return None

    async def transcribe_bytes(self, data, **kwargs):
        self.calls.append(("bytes", data))
        raise AssertionError("transcriber should not be called")

    async def transcribe_file(self, path, **kwargs):
        self.calls.append(("file", path))
        raise AssertionError("transcriber should not be called")


class PodcastProviderTests(unittest.TestCase):
    def test_can_handle_feeds_and_hosts_but_not_direct_media(self) -> None:
        self.assertTrue(podcast.can_handle(TranscriptRequest(url="https://example.com/x", html=FEED_WITH_TRANSCRIPT)))
        self.assertTrue(podcast.can_handle(TranscriptRequest(url="https://open.spotify.com/episode/abc123")))
        self.assertFalse(podcast.can_handle(TranscriptRequest(url="https://cdn.example.com/podcast/ep1.mp3")))

    def test_inline_feed_transcript_skips_transcription(self) -> None:
        fetcher = _RoutingFetcher({"https://cdn.example.com/ep1.vtt": HttpResponse(200, "vtt", body=VTT.encode())})
        transcriber = _RecordingTranscriber()
        options = ProviderFetchOptions(fetcher=fetcher, transcriber=transcriber)  # type: ignore[arg-type]

        result = asyncio.run(
            podcast.fetch_transcript(TranscriptRequest(url=FEED_URL, html=FEED_WITH_TRANSCRIPT), options)
        )

        self.assertEqual(result.text, "Hello and welcome. To the show.")
        self.assertEqual(result.source, "podcastTranscript")
        self.assertEqual(result.attempted_providers, ("podcastTranscript",))
        self.assertEqual(result.metadata["kind"], "rss_podcast_transcript")
        self.assertEqual(result.metadata["transcriptUrl"], "https://cdn.example.com/ep1.vtt")
        self.assertIsNone(result.segments)
        self.assertEqual(transcriber.calls, [])
        self.assertEqual(fetcher.calls, [("GET", "https://cdn.example.com/ep1.vtt")])

    def test_enclosure_without_any_backend_reports_missing_keys(self) -> None:
        fetcher = _RoutingFetcher()
        options = ProviderFetchOptions(fetcher=fetcher, transcriber=_RecordingTranscriber(available=False))  # type: ignore[arg-type]

        result = asyncio.run(
            podcast.fetch_transcript(TranscriptRequest(url=FEED_URL, html=FEED_WITHOUT_TRANSCRIPT), options)
        )

        self.assertIsNone(result.text)
        self.assertIsNone(result.source)
        self.assertEqual(result.metadata["reason"], "missing_transcription_keys")
        self.assertEqual(result.notes, MISSING_PROVIDER_NOTE)
        self.assertEqual(fetcher.calls, [])

    def test_feed_without_enclosure_or_yt_dlp_is_unavailable(self) -> None:
        transcriber = _RecordingTranscriber()
        options = ProviderFetchOptions(fetcher=_RoutingFetcher(), transcriber=transcriber)  # type: ignore[arg-type]
        html = "<rss><channel><item><title>Trailer</title></item></channel></rss>"

        result = asyncio.run(podcast.fetch_transcript(TranscriptRequest(url=FEED_URL, html=html), options))

        self.assertIsNone(result.text)
        self.assertEqual(result.source, "unavailable")
        self.assertEqual(result.attempted_providers, ("unavailable",))
        self.assertEqual(result.metadata, {"provider": "podcast", "reason": "no_enclosure_and_no_yt_dlp"})
        self.assertEqual(transcriber.calls, [])


def test_select_transcript_tag_prefers_vtt() -> None:
    tags = [
        TranscriptTag(url="a.html", type="text/html"),
        TranscriptTag(url="a.json", type="application/json"),
        TranscriptTag(url="a.vtt", type="text/vtt"),
    ]

    assert select_transcript_tag(tags).url == "a.vtt"
    assert select_transcript_tag([]) is None


def test_parse_transcript_body_handles_json_segments() -> None:
    body = '{"segments": [{"body": "First", "startTime": 0, "endTime": 1.5}, {"body": "second", "startTime": 1.5}]}'

    parsed = parse_transcript_body(body, declared_type="application/json", url="https://x/t.json")

    assert parsed is not None
    text, segments = parsed
    assert text == "First second"
    assert segments is not None and segments[0].start_s == 0.0


def test_enclosure_extraction_decodes_entities_and_duration() -> None:
    enclosure = extract_enclosure_from_feed(FEED_WITH_TRANSCRIPT)

    assert enclosure is not None
    assert enclosure.enclosure_url.replace("&amp;", "&") == "https://cdn.example.com/ep1.mp3?a=1&b=2"
    assert enclosure.duration_seconds == 3723.0
    assert extract_enclosure_for_episode(FEED_WITH_TRANSCRIPT, "episode 1") is not None
    assert extract_enclosure_for_episode(FEED_WITH_TRANSCRIPT, "Missing episode") is None
