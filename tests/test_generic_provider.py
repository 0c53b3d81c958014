from __future__ import annotations

import asyncio
from pathlib import Path
import tempfile
import unittest

from transcript_engine.adapters.http import HttpResponse
from transcript_engine.contracts.artifacts import TranscriptRequest, WhisperTranscriptionResult
from transcript_engine.contracts.options import ProviderFetchOptions
from transcript_engine.providers import generic, select_provider
from transcript_engine.providers.generic import TWITTER_SKIPPED_NOTE, detect_embedded_media


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


class _FakeTranscriber:
    def __init__(self, text: str | None = "spoken words", *, available: bool = True) -> None:
        self.text = text
        self.available = available
        self.bytes_calls: list[tuple[bytes, str]] = []
        self.file_calls: list[Path] = []

    def has_any_provider(self) -> bool:
        return self.available

    def can_transcode(self) -> bool:
        return False

    def provider_hint(self) -> str:
        return "openai"

    def model_id(self) -> str | None:
        return "whisper-1"

    async def probe_duration_seconds(self, path):
        return None

    async def transcribe_bytes(self, data, *, media_type, filename=None, duration_hint=None, progress=None):
        self.bytes_calls.append((data, media_type))
        return WhisperTranscriptionResult(text=self.text, provider="openai")

    async def transcribe_file(self, path, *, media_type, filename=None, duration_hint=None, progress=None):
        self.file_calls.append(Path(path))
        return WhisperTranscriptionResult(text=self.text, provider="openai")


def _options(fetcher, transcriber, **overrides) -> ProviderFetchOptions:
    return ProviderFetchOptions(fetcher=fetcher, transcriber=transcriber, **overrides)


class GenericProviderTests(unittest.TestCase):
    def test_direct_media_url_is_downloaded_and_transcribed(self) -> None:
        url = "https://cdn.example.com/clip.mp3"
        fetcher = _RoutingFetcher(
            {url: HttpResponse(200, url, headers={"Content-Length": "5", "Content-Type": "audio/mpeg"}, body=b"audio")}
        )
        transcriber = _FakeTranscriber()

        result = asyncio.run(generic.fetch_transcript(TranscriptRequest(url=url), _options(fetcher, transcriber)))

        self.assertEqual(result.text, "spoken words")
        self.assertEqual(result.source, "whisper")
        self.assertEqual(result.attempted_providers, ("whisper",))
        self.assertEqual(
            result.metadata,
            {"provider": "generic", "kind": "media", "mediaUrl": url, "transcriptionProvider": "openai"},
        )
        self.assertIsNone(result.notes)
        self.assertEqual(transcriber.bytes_calls, [(b"audio", "audio/mpeg")])
        self.assertEqual([method for method, _ in fetcher.calls], ["HEAD", "GET"])

    def test_partial_download_without_ffmpeg_is_noted(self) -> None:
        url = "https://cdn.example.com/stream.mp3"
        cases = [
            ({"Content-Type": "audio/mpeg"}, "unknown length"),
            ({"Content-Length": "900", "Content-Type": "audio/mpeg"}, "longer than downloaded"),
        ]
        for headers, label in cases:
            with self.subTest(label):
                fetcher = _RoutingFetcher({url: HttpResponse(200, url, headers=headers, body=b"audio")})

                result = asyncio.run(
                    generic.fetch_transcript(TranscriptRequest(url=url), _options(fetcher, _FakeTranscriber()))
                )

                self.assertEqual(result.text, "spoken words")
                self.assertEqual(result.notes, "Transcribed first 5 B only (ffmpeg not available)")

    def test_local_file_url_uses_the_file_path(self) -> None:
        transcriber = _FakeTranscriber("local words")
        with tempfile.TemporaryDirectory() as tmp:
            media = Path(tmp) / "memo.m4a"
            media.write_bytes(b"m4a")

            result = asyncio.run(
                generic.fetch_transcript(
                    TranscriptRequest(url=media.as_uri()),
                    _options(_RoutingFetcher(), transcriber),
                )
            )

        self.assertEqual(result.text, "local words")
        self.assertEqual(transcriber.file_calls, [media])

    def test_direct_media_failure_reports_media_failed(self) -> None:
        url = "https://cdn.example.com/missing.mp3"
        transcriber = _FakeTranscriber()

        result = asyncio.run(generic.fetch_transcript(TranscriptRequest(url=url), _options(_RoutingFetcher(), transcriber)))

        self.assertIsNone(result.text)
        self.assertEqual(result.source, "unavailable")
        self.assertEqual(result.attempted_providers, ("whisper", "unavailable"))
        self.assertEqual(result.metadata["reason"], "media_failed")
        self.assertEqual(result.notes, "Media download failed: Download failed (404)")

    def test_embedded_vtt_track_wins_over_media(self) -> None:
        page_url = "https://example.com/talk"
        html = """<html><body><video src="/talk.mp4">
            <track kind="captions" srclang="en" src="/talk.vtt">
        </video></body></html>"""
        vtt = "WEBVTT\n\n00:00.000 --> 00:01.000\nWelcome everyone\n"
        fetcher = _RoutingFetcher({"https://example.com/talk.vtt": HttpResponse(200, "x", body=vtt.encode())})
        transcriber = _FakeTranscriber()

        result = asyncio.run(
            generic.fetch_transcript(TranscriptRequest(url=page_url, html=html), _options(fetcher, transcriber))
        )

        self.assertEqual(result.text, "Welcome everyone")
        self.assertEqual(result.source, "embedded")
        self.assertEqual(result.metadata["trackUrl"], "https://example.com/talk.vtt")
        self.assertEqual(result.metadata["trackLanguage"], "en")
        self.assertEqual(transcriber.bytes_calls, [])

    def test_twitter_status_without_media_is_skipped_in_auto_mode(self) -> None:
        url = "https://x.com/someone/status/1234567890"

        result = asyncio.run(
            generic.fetch_transcript(TranscriptRequest(url=url), _options(_RoutingFetcher(), _FakeTranscriber()))
        )

        self.assertEqual(result.metadata["reason"], "media_mode_auto")
        self.assertIsNone(result.source)
        self.assertEqual(result.notes, TWITTER_SKIPPED_NOTE)

    def test_plain_page_is_not_implemented(self) -> None:
        result = asyncio.run(
            generic.fetch_transcript(
                TranscriptRequest(url="https://example.com/article", html="<p>hello</p>"),
                _options(_RoutingFetcher(), _FakeTranscriber()),
            )
        )

        self.assertIsNone(result.text)
        self.assertEqual(result.metadata, {"provider": "generic", "reason": "not_implemented"})
        self.assertEqual(result.source, "unavailable")
        self.assertEqual(result.attempted_providers, ("unavailable",))


def test_detect_embedded_media_prefers_direct_video_and_english_track() -> None:
    html = """<video><source src="https://cdn.example.com/a.mp4">
        <track kind="subtitles" srclang="de" src="de.vtt"><track kind="captions" srclang="en-US" src="en.vtt">
    </video>"""

    media = detect_embedded_media(html, "https://example.com/page/")

    assert media is not None
    assert media.kind == "video"
    assert media.media_url == "https://cdn.example.com/a.mp4"
    assert media.track is not None and media.track.url == "https://example.com/page/en.vtt"


def test_select_provider_dispatches_by_url() -> None:
    assert select_provider(TranscriptRequest(url="https://youtu.be/abc123def45")).name == "youtube"
    assert select_provider(TranscriptRequest(url="https://feeds.example.com/show.rss")).name == "podcast"
    assert select_provider(TranscriptRequest(url="https://cdn.example.com/podcast.mp3")).name == "generic"
    assert select_provider(TranscriptRequest(url="https://example.com/")).name == "generic"
