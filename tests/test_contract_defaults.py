import logging
import unittest

from transcript_engine.contracts.artifacts import (
    ProviderResult,
    TranscriptDiagnostics,
    TranscriptRequest,
    TranscriptResolution,
    TranscriptSegment,
    WhisperTranscriptionResult,
    join_notes,
)
from transcript_engine.contracts.progress import (
    NULL_PROGRESS,
    CallbackProgressSink,
    LoggingProgressSink,
    TranscriptMediaDownloadProgress,
    TranscriptStart,
    progress_event_to_dict,
)


class ArtifactDefaultsTests(unittest.TestCase):
    def test_artifact_construction_defaults(self) -> None:
        request = TranscriptRequest(url="https://example.com")
        self.assertIsNone(request.html)
        self.assertIsNone(request.resource_key)

        result = ProviderResult(text=None, source=None)
        self.assertEqual(result.metadata, {})
        self.assertEqual(result.attempted_providers, ())
        self.assertIsNone(result.notes)
        self.assertIsNone(result.segments)

        diagnostics = TranscriptDiagnostics(cache_mode="default", cache_status="miss")
        self.assertIsNone(diagnostics.provider)
        self.assertFalse(diagnostics.text_provided)

        resolution = TranscriptResolution(text="hi", source="html")
        self.assertIsNone(resolution.diagnostics)

        segment = TranscriptSegment(text="hello", start_s=1.0)
        self.assertEqual(segment.to_dict(), {"text": "hello", "start_s": 1.0, "end_s": None})

    def test_whisper_result_ok_requires_non_blank_text(self) -> None:
        self.assertTrue(WhisperTranscriptionResult(text="x", provider="openai").ok)
        self.assertFalse(WhisperTranscriptionResult(text="  ", provider="openai").ok)
        self.assertFalse(WhisperTranscriptionResult(text=None, provider=None).ok)

    def test_join_notes_skips_blanks(self) -> None:
        self.assertEqual(join_notes(["a", " ", "b "]), "a; b")
        self.assertIsNone(join_notes([]))


class ProgressSinkTests(unittest.TestCase):
    def test_event_dict_carries_kind(self) -> None:
        event = TranscriptStart(url="u", service="youtube", hint="YouTube: resolving transcript")

        self.assertEqual(
            progress_event_to_dict(event),
            {"kind": "transcript-start", "url": "u", "service": "youtube", "hint": "YouTube: resolving transcript"},
        )

    def test_callback_and_null_sinks(self) -> None:
        events: list[object] = []
        event = TranscriptMediaDownloadProgress(url="u", service="generic", downloaded_bytes=10)

        CallbackProgressSink(events.append).emit(event)
        NULL_PROGRESS.emit(event)

        self.assertEqual(events, [event])

    def test_logging_sink_omits_empty_fields(self) -> None:
        log = logging.getLogger("transcript_engine.tests.progress")
        sink = LoggingProgressSink(log)

        with self.assertLogs(log, level="INFO") as captured:
            sink.emit(TranscriptMediaDownloadProgress(url="u", service="podcast", downloaded_bytes=5))

        self.assertEqual(
            captured.records[0].getMessage(),
            "transcript-media-download-progress url=u service=podcast downloaded_bytes=5",
        )


if __name__ == "__main__":
    unittest.main()
