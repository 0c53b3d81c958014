from __future__ import annotations

import asyncio
import base64
from typing import Any

from transcript_engine.adapters.http import Fetcher
from transcript_engine.adapters.transcription import normalize_media_type, require_text
from transcript_engine.contracts.errors import ProviderError, ProviderResponseError


FAL_RUN_BASE_URL = "https://fal.run"


def build_fal_payload(data: bytes, *, media_type: str, language: str | None = None) -> dict[str, Any]:
    encoded = base64.b64encode(data).decode("ascii")
    payload: dict[str, Any] = {
        "audio_url": f"data:{normalize_media_type(media_type)};base64,{encoded}",
        "task": "transcribe",
        "chunk_level": "segment",
    }
    if language:
        payload["language"] = language
    return payload


def extract_fal_text(payload: Any) -> str | None:
    if not isinstance(payload, dict):
        return None
    text = payload.get("text")
    if isinstance(text, str) and text.strip():
        return text
    chunks = payload.get("chunks")
    if isinstance(chunks, list):
        joined = " ".join(str(chunk.get("text", "")).strip() for chunk in chunks if isinstance(chunk, dict))
        return joined.strip() or None
    return None


def supports_media_type(media_type: str) -> bool:
    return normalize_media_type(media_type).startswith("audio/")


class FalTranscriptionBackend:
    """FAL-hosted Whisper variant; audio media types only."""

    backend_id = "fal"

    def __init__(
        self,
        fetcher: Fetcher,
        *,
        api_key: str,
        model: str = "fal-ai/wizper",
        base_url: str = FAL_RUN_BASE_URL,
        timeout_s: float | None = 600.0,
    ) -> None:
        if not api_key:
            raise ValueError("api_key is required")
        self._fetcher = fetcher
        self._api_key = api_key
        self._model = model
        self._base_url = base_url.rstrip("/")
        self._timeout_s = timeout_s

    @property
    def model(self) -> str:
        return self._model

    async def transcribe_bytes(self, data: bytes, *, media_type: str, filename: str) -> str:
        url = f"{self._base_url}/{self._model}"
        try:
            response = await asyncio.wait_for(
                self._fetcher.request(
                    "POST",
                    url,
                    headers={"Authorization": f"Key {self._api_key}", "Content-Type": "application/json"},
                    json_body=build_fal_payload(data, media_type=media_type),
                ),
                timeout=self._timeout_s,
            )
        except asyncio.TimeoutError as exc:
            raise ProviderError(f"FAL request timed out after {self._timeout_s:g}s") from exc
        if not response.ok:
            detail = response.text().strip()[:500]
            raise ProviderError(f"FAL request failed ({response.status}): {detail}")
        try:
            payload = response.json()
        except ValueError as exc:
            raise ProviderResponseError("FAL returned a non-JSON response") from exc
        return require_text(self.backend_id, extract_fal_text(payload))


__all__ = [
    "FalTranscriptionBackend",
    "build_fal_payload",
    "extract_fal_text",
    "supports_media_type",
]
