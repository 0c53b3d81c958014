from __future__ import annotations

import asyncio
from typing import Any, Protocol

from transcript_engine.adapters.transcription import ensure_filename_extension, require_text
from transcript_engine.contracts.errors import ProviderError


_DECODE_FAILURE_MARKERS = (
    "could not be decoded",
    "format is not supported",
    "unsupported file format",
)


class _OpenAITranscriptionsAPI(Protocol):
    async def create(self, **kwargs: Any) -> Any: ...


class _OpenAIAudioAPI(Protocol):
    transcriptions: _OpenAITranscriptionsAPI


class OpenAIClientLike(Protocol):
    audio: _OpenAIAudioAPI


def _field(obj: Any, name: str, default: Any = None) -> Any:
    if obj is None:
        return default
    if isinstance(obj, str):
        return obj if name == "text" else default
    if isinstance(obj, dict):
        return obj.get(name, default)
    if hasattr(obj, name):
        return getattr(obj, name)
    model_dump = getattr(obj, "model_dump", None)
    if callable(model_dump):
        dumped = model_dump()
        if isinstance(dumped, dict):
            return dumped.get(name, default)
    return default


def should_retry_via_transcode(error: BaseException) -> bool:
    message = str(error).lower()
    return any(marker in message for marker in _DECODE_FAILURE_MARKERS)


def load_openai_client(api_key: str, *, base_url: str | None = None) -> OpenAIClientLike:
    from openai import AsyncOpenAI

    return AsyncOpenAI(api_key=api_key, base_url=base_url)


class OpenAITranscriptionBackend:
    """Hosted Whisper upload; one request per call, retries belong to the orchestrator."""

    backend_id = "openai"

    def __init__(
        self,
        client: OpenAIClientLike,
        *,
        model: str,
        language: str | None = None,
        timeout_s: float | None = 600.0,
    ) -> None:
        if not model:
            raise ValueError("model is required")
        self._client = client
        self._model = model
        self._language = language
        self._timeout_s = timeout_s

    @property
    def model(self) -> str:
        return self._model

    async def transcribe_bytes(self, data: bytes, *, media_type: str, filename: str) -> str:
        request_kwargs: dict[str, Any] = {
            "model": self._model,
            "file": (ensure_filename_extension(filename, media_type), data, media_type),
        }
        if self._language:
            request_kwargs["language"] = self._language
        try:
            response = await asyncio.wait_for(
                self._client.audio.transcriptions.create(**request_kwargs),
                timeout=self._timeout_s,
            )
        except asyncio.TimeoutError as exc:
            raise ProviderError(f"OpenAI transcription timed out after {self._timeout_s:g}s") from exc
        return require_text(self.backend_id, _field(response, "text"))


__all__ = [
    "OpenAIClientLike",
    "OpenAITranscriptionBackend",
    "load_openai_client",
    "should_retry_via_transcode",
]
