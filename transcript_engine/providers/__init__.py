from __future__ import annotations

from transcript_engine.contracts.artifacts import TranscriptRequest
from transcript_engine.providers import generic, podcast, youtube
from transcript_engine.providers.base import TranscriptProvider

# First match wins; generic accepts everything.
PROVIDERS: tuple[TranscriptProvider, ...] = (youtube, podcast, generic)  # type: ignore[assignment]


def select_provider(request: TranscriptRequest) -> TranscriptProvider:
    for provider in PROVIDERS:
        if provider.can_handle(request):
            return provider
    return generic  # type: ignore[return-value]


__all__ = ["PROVIDERS", "select_provider"]
