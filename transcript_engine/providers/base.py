from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Iterable, Protocol

from transcript_engine.contracts.artifacts import (
    ProviderResult,
    TranscriptRequest,
    TranscriptSegment,
    TranscriptSource,
    WhisperTranscriptionResult,
    join_notes,
)
from transcript_engine.contracts.options import ProviderFetchOptions
from transcript_engine.utils.formatting import normalize_transcript_text


MISSING_PROVIDER_NOTE = "Missing transcription provider (install whisper-cpp or set OPENAI_API_KEY/FAL_KEY)"

logger = logging.getLogger(__name__)

type Attempt = Callable[[], Awaitable[ProviderResult | None]]


class TranscriptProvider(Protocol):
    """A provider module or object: ``can_handle`` is cheap and synchronous, ``fetch_transcript`` is not."""

    name: str

    def can_handle(self, request: TranscriptRequest) -> bool: ...

    async def fetch_transcript(self, request: TranscriptRequest, options: ProviderFetchOptions) -> ProviderResult: ...


@dataclass(slots=True)
class AttemptLog:
    """Mutable trail of strategies tried and notes gathered while one provider runs."""

    attempted: list[TranscriptSource] = field(default_factory=list)
    notes: list[str] = field(default_factory=list)

    def push(self, source: TranscriptSource) -> None:
        self.attempted.append(source)

    def push_once(self, source: TranscriptSource) -> None:
        if source not in self.attempted:
            self.attempted.append(source)

    def note(self, message: str) -> None:
        self.notes.append(message)

    def extend_notes(self, messages: Iterable[str]) -> None:
        self.notes.extend(messages)

    def joined_notes(self) -> str | None:
        return join_notes(self.notes)

    def result(
        self,
        text: str | None,
        source: TranscriptSource | None,
        *,
        metadata: dict[str, Any] | None = None,
        segments: list[TranscriptSegment] | None = None,
    ) -> ProviderResult:
        return ProviderResult(
            text=text,
            source=source,
            segments=segments,
            metadata=dict(metadata or {}),
            attempted_providers=tuple(self.attempted),
            notes=self.joined_notes(),
        )

    def whisper_result(
        self,
        outcome: WhisperTranscriptionResult,
        *,
        metadata: dict[str, Any],
        include_provider_on_failure: bool = False,
    ) -> ProviderResult:
        if outcome.ok:
            return self.result(
                normalize_transcript_text(outcome.text or ""),
                "whisper",
                metadata={**metadata, "transcriptionProvider": outcome.provider},
            )
        if outcome.error is not None:
            self.note(str(outcome.error))
        failure_metadata = dict(metadata)
        if include_provider_on_failure:
            failure_metadata["transcriptionProvider"] = outcome.provider
        return self.result(None, None, metadata=failure_metadata)


async def run_attempts(attempts: Iterable[Attempt]) -> ProviderResult | None:
    """Run strategies in order; the first one returning a result wins."""
    for attempt in attempts:
        result = await attempt()
        if result is not None:
            return result
    return None


def nothing_found(log: AttemptLog, **metadata: Any) -> ProviderResult:
    """Final outcome once every strategy came up empty; cached as a negative entry."""
    log.push_once("unavailable")
    return log.result(None, "unavailable", metadata=metadata)


__all__ = [
    "Attempt",
    "AttemptLog",
    "MISSING_PROVIDER_NOTE",
    "TranscriptProvider",
    "nothing_found",
    "run_attempts",
]
