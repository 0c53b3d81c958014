from __future__ import annotations

import asyncio
import json
from pathlib import Path
import tempfile
import unittest

from transcript_engine.pipeline.cache import (
    DEFAULT_TTL_MS,
    NEGATIVE_TTL_MS,
    CacheTtlPolicy,
    InMemoryTranscriptCache,
    JsonFileTranscriptCache,
    read_transcript_cache,
    transcript_cache_key,
    write_transcript_cache,
)
from transcript_engine.pipeline.io import read_json_file, write_json_file


class _Clock:
    def __init__(self, now_ms: int = 1_000_000) -> None:
        self.now_ms = now_ms

    def __call__(self) -> int:
        return self.now_ms


class _RecordingCache:
    def __init__(self) -> None:
        self.sets: list[dict[str, object]] = []

    async def get(self, *, url, file_mtime=None):
        return None

    async def set(self, **kwargs) -> None:
        self.sets.append(kwargs)


def test_ttl_constants() -> None:
    assert DEFAULT_TTL_MS == 7 * 24 * 60 * 60 * 1000
    assert NEGATIVE_TTL_MS == 6 * 60 * 60 * 1000


def test_cache_key_uses_mtime_only_for_local_sources() -> None:
    assert transcript_cache_key("https://example.com/a.mp3", 1.0) == transcript_cache_key("https://example.com/a.mp3", 2.0)
    assert transcript_cache_key("file:///tmp/a.mp3", 1.0) != transcript_cache_key("file:///tmp/a.mp3", 2.0)
    assert transcript_cache_key("/tmp/a.mp3", 1.0) != transcript_cache_key("/tmp/a.mp3", None)


class InMemoryTranscriptCacheTests(unittest.TestCase):
    def test_round_trip_returns_fresh_entry(self) -> None:
        cache = InMemoryTranscriptCache(clock=_Clock())

        asyncio.run(
            cache.set(
                url="https://example.com/v",
                service="generic",
                resource_key=None,
                content="X",
                source="whisper",
                ttl_ms=1000,
            )
        )
        entry = asyncio.run(cache.get(url="https://example.com/v"))

        assert entry is not None
        self.assertEqual((entry.content, entry.source, entry.expired), ("X", "whisper", False))

    def test_entries_expire_after_ttl(self) -> None:
        clock = _Clock()
        cache = InMemoryTranscriptCache(clock=clock)
        asyncio.run(
            cache.set(url="u", service="youtube", resource_key="id", content=None, source="unavailable", ttl_ms=10)
        )

        clock.now_ms += 10
        entry = asyncio.run(cache.get(url="u"))

        assert entry is not None
        self.assertTrue(entry.expired)

    def test_mtime_change_invalidates_local_file_entry(self) -> None:
        cache = InMemoryTranscriptCache(clock=_Clock())
        url = "file:///media/memo.m4a"
        asyncio.run(
            cache.set(url=url, service="generic", resource_key=None, content="v1", source="whisper", ttl_ms=1000, file_mtime=1.0)
        )

        self.assertIsNotNone(asyncio.run(cache.get(url=url, file_mtime=1.0)))
        self.assertIsNone(asyncio.run(cache.get(url=url, file_mtime=2.0)))


class ReadTranscriptCacheTests(unittest.TestCase):
    def setUp(self) -> None:
        self.clock = _Clock()
        self.cache = InMemoryTranscriptCache(clock=self.clock)
        asyncio.run(
            self.cache.set(
                url="https://example.com/v",
                service="generic",
                resource_key=None,
                content="cached text",
                source="captionTracks",
                ttl_ms=1000,
                metadata={"provider": "captionTracks"},
            )
        )

    def test_miss_without_entry(self) -> None:
        lookup = asyncio.run(read_transcript_cache("https://example.com/other", "default", self.cache))

        self.assertIsNone(lookup.cached)
        self.assertIsNone(lookup.resolution)
        self.assertEqual(lookup.diagnostics.cache_status, "miss")
        self.assertIsNone(lookup.diagnostics.notes)

    def test_hit_serves_resolution(self) -> None:
        lookup = asyncio.run(read_transcript_cache("https://example.com/v", "default", self.cache))

        assert lookup.resolution is not None
        self.assertEqual(lookup.resolution.text, "cached text")
        self.assertEqual(lookup.resolution.source, "captionTracks")
        self.assertEqual(lookup.diagnostics.cache_status, "hit")
        self.assertEqual(lookup.diagnostics.notes, "Served transcript from cache")
        self.assertTrue(lookup.diagnostics.text_provided)

    def test_expired_entry_is_reported_but_not_served(self) -> None:
        self.clock.now_ms += 5000

        lookup = asyncio.run(read_transcript_cache("https://example.com/v", "default", self.cache))

        self.assertIsNone(lookup.resolution)
        self.assertIsNotNone(lookup.cached)
        self.assertEqual(lookup.diagnostics.cache_status, "expired")
        self.assertEqual(lookup.diagnostics.notes, "Cached transcript expired; fetching fresh copy")

    def test_bypass_reports_bypassed_and_ignores_entry(self) -> None:
        lookup = asyncio.run(read_transcript_cache("https://example.com/v", "bypass", self.cache))

        self.assertIsNone(lookup.resolution)
        self.assertEqual(lookup.diagnostics.cache_status, "bypassed")
        self.assertEqual(
            lookup.diagnostics.notes,
            "Cache bypass requested; Cached transcript ignored due to bypass request",
        )

    def test_unknown_cached_source_maps_to_unknown(self) -> None:
        asyncio.run(
            self.cache.set(url="u2", service="generic", resource_key=None, content="x", source="weird", ttl_ms=1000)
        )

        lookup = asyncio.run(read_transcript_cache("u2", "default", self.cache))

        assert lookup.resolution is not None
        self.assertEqual(lookup.resolution.source, "unknown")


class WriteTranscriptCacheTests(unittest.TestCase):
    def _write(self, cache, **overrides) -> bool:
        kwargs = {
            "url": "https://example.com/v",
            "service": "youtube",
            "resource_key": "abc",
            "text": "hello",
            "source": "youtubei",
        }
        kwargs.update(overrides)
        return asyncio.run(write_transcript_cache(cache, **kwargs))

    def test_positive_and_negative_ttls(self) -> None:
        cache = _RecordingCache()

        self._write(cache)
        self._write(cache, text=None, source="unavailable")

        self.assertEqual([entry["ttl_ms"] for entry in cache.sets], [DEFAULT_TTL_MS, NEGATIVE_TTL_MS])

    def test_source_defaults(self) -> None:
        cache = _RecordingCache()

        self._write(cache, source=None)
        self.assertEqual(cache.sets[-1]["source"], "unknown")

    def test_skips_when_nothing_known_or_bypassed(self) -> None:
        cache = _RecordingCache()

        self.assertFalse(self._write(cache, text=None, source=None))
        self.assertFalse(self._write(cache, cache_mode="bypass"))
        self.assertEqual(cache.sets, [])

    def test_ttl_policy_override(self) -> None:
        cache = _RecordingCache()

        self._write(cache, ttl_policy=CacheTtlPolicy(positive_ttl_ms=5, negative_ttl_ms=1))
        self._write(cache, text=None, ttl_policy=CacheTtlPolicy(positive_ttl_ms=5, negative_ttl_ms=1))

        self.assertEqual([entry["ttl_ms"] for entry in cache.sets], [5, 1])


class JsonFileTranscriptCacheTests(unittest.TestCase):
    def setUp(self) -> None:
        self._tmp = tempfile.TemporaryDirectory()
        self.root = Path(self._tmp.name) / "cache"

    def tearDown(self) -> None:
        self._tmp.cleanup()

    def test_persists_one_json_document_per_key(self) -> None:
        clock = _Clock(5000)
        cache = JsonFileTranscriptCache(self.root, clock=clock)
        asyncio.run(
            cache.set(
                url="https://example.com/v",
                service="podcast",
                resource_key=None,
                content="persisted",
                source="podcastTranscript",
                ttl_ms=100,
                metadata={"segments": [{"text": "a", "start_s": 0.0, "end_s": None}]},
            )
        )

        path = cache.path_for("https://example.com/v")
        stored = json.loads(path.read_text(encoding="utf-8"))
        self.assertEqual(stored["expiresAtMs"], 5100)
        self.assertEqual(list(self.root.glob("*.tmp")), [])

        reopened = JsonFileTranscriptCache(self.root, clock=clock)
        entry = asyncio.run(reopened.get(url="https://example.com/v"))
        assert entry is not None
        self.assertEqual(entry.content, "persisted")
        self.assertEqual(entry.metadata, {"segments": [{"text": "a", "start_s": 0.0, "end_s": None}]})

    def test_corrupt_file_is_a_miss(self) -> None:
        cache = JsonFileTranscriptCache(self.root)
        path = cache.path_for("https://example.com/v")
        path.parent.mkdir(parents=True)
        path.write_text("{not json", encoding="utf-8")

        self.assertIsNone(asyncio.run(cache.get(url="https://example.com/v")))


def test_write_json_file_is_atomic_and_readable(tmp_path: Path) -> None:
    target = tmp_path / "nested" / "doc.json"

    write_json_file(target, {"b": 1, "a": [1, 2]})

    assert read_json_file(target) == {"a": [1, 2], "b": 1}
    assert read_json_file(tmp_path / "missing.json") is None
    assert [p.name for p in target.parent.iterdir()] == ["doc.json"]
