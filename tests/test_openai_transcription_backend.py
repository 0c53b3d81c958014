from __future__ import annotations

import asyncio
import unittest

import pytest

from transcript_engine.adapters.fal import FalTranscriptionBackend, build_fal_payload, extract_fal_text
from transcript_engine.adapters.http import HttpResponse
from transcript_engine.adapters.openai_transcription import OpenAITranscriptionBackend, should_retry_via_transcode
from transcript_engine.contracts.errors import EmptyTranscriptError, ProviderError


class _Obj:
    def __init__(self, **kwargs) -> None:
        for key, value in kwargs.items():
            setattr(self, key, value)


class _FakeTranscriptionsAPI:
    def __init__(self, responses: list[object]) -> None:
        self._responses = list(responses)
        self.calls: list[dict[str, object]] = []

    async def create(self, **kwargs):
        filename, data, media_type = kwargs["file"]
        self.calls.append(
            {
                "filename": filename,
                "size": len(data),
                "media_type": media_type,
                "model": kwargs.get("model"),
                "language": kwargs.get("language"),
            }
        )
        next_item = self._responses.pop(0)
        if isinstance(next_item, Exception):
            raise next_item
        return next_item


class _FakeAudioAPI:
    def __init__(self, transcriptions: _FakeTranscriptionsAPI) -> None:
        self.transcriptions = transcriptions


class _FakeClient:
    def __init__(self, responses: list[object]) -> None:
        self.audio = _FakeAudioAPI(_FakeTranscriptionsAPI(responses))


class _FakeFetcher:
    def __init__(self, response: HttpResponse) -> None:
        self.response = response
        self.calls: list[dict[str, object]] = []

    async def request(self, method, url, *, headers=None, json_body=None, max_bytes=None, on_progress=None):
        self.calls.append({"method": method, "url": url, "headers": dict(headers or {}), "json": json_body})
        return self.response


class OpenAITranscriptionBackendTests(unittest.TestCase):
    def test_uploads_with_extension_and_returns_stripped_text(self) -> None:
        client = _FakeClient([_Obj(text="  hello world \n")])
        backend = OpenAITranscriptionBackend(client, model="whisper-1", language="en")

        text = asyncio.run(backend.transcribe_bytes(b"abc", media_type="audio/mpeg", filename="episode"))

        self.assertEqual(text, "hello world")
        self.assertEqual(
            client.audio.transcriptions.calls,
            [{"filename": "episode.mp3", "size": 3, "media_type": "audio/mpeg", "model": "whisper-1", "language": "en"}],
        )

    def test_accepts_dict_and_plain_string_responses(self) -> None:
        client = _FakeClient([{"text": "from dict"}, "from string"])
        backend = OpenAITranscriptionBackend(client, model="whisper-1")

        self.assertEqual(asyncio.run(backend.transcribe_bytes(b"a", media_type="audio/wav", filename="a.wav")), "from dict")
        self.assertEqual(asyncio.run(backend.transcribe_bytes(b"a", media_type="audio/wav", filename="a.wav")), "from string")

    def test_whitespace_only_text_is_an_empty_transcript(self) -> None:
        backend = OpenAITranscriptionBackend(_FakeClient([_Obj(text="   ")]), model="whisper-1")

        with self.assertRaises(EmptyTranscriptError):
            asyncio.run(backend.transcribe_bytes(b"a", media_type="audio/mpeg", filename="a.mp3"))

    def test_model_is_required(self) -> None:
        with self.assertRaises(ValueError):
            OpenAITranscriptionBackend(_FakeClient([]), model="")


def test_should_retry_via_transcode_matches_decode_failures() -> None:
    assert should_retry_via_transcode(RuntimeError("Audio file could not be decoded or its format is not supported."))
    assert should_retry_via_transcode(RuntimeError("Unsupported file format"))
    assert not should_retry_via_transcode(RuntimeError("rate limited"))


def test_fal_payload_is_a_base64_data_uri() -> None:
    payload = build_fal_payload(b"hi", media_type="audio/mpeg; codecs=mp3")

    assert payload["audio_url"] == "data:audio/mpeg;base64,aGk="
    assert payload["task"] == "transcribe"


def test_extract_fal_text_falls_back_to_chunks() -> None:
    assert extract_fal_text({"text": "whole"}) == "whole"
    assert extract_fal_text({"text": "", "chunks": [{"text": " a "}, {"text": "b"}]}) == "a b"
    assert extract_fal_text([]) is None


def test_fal_backend_posts_with_key_authorization() -> None:
    fetcher = _FakeFetcher(HttpResponse(status=200, url="https://fal.run/fal-ai/wizper", body=b'{"text": "fal says hi"}'))
    backend = FalTranscriptionBackend(fetcher, api_key="secret")

    text = asyncio.run(backend.transcribe_bytes(b"x", media_type="audio/mpeg", filename="x.mp3"))

    assert text == "fal says hi"
    assert fetcher.calls[0]["url"] == "https://fal.run/fal-ai/wizper"
    assert fetcher.calls[0]["headers"]["Authorization"] == "Key secret"


def test_fal_backend_raises_on_http_failure() -> None:
    fetcher = _FakeFetcher(HttpResponse(status=500, url="https://fal.run/fal-ai/wizper", body=b"boom"))
    backend = FalTranscriptionBackend(fetcher, api_key="secret")

    with pytest.raises(ProviderError, match=r"FAL request failed \(500\): boom"):
        asyncio.run(backend.transcribe_bytes(b"x", media_type="audio/mpeg", filename="x.mp3"))


if __name__ == "__main__":
    unittest.main()
