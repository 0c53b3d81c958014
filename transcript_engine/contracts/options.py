from __future__ import annotations

import shutil
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Callable, Literal, Mapping

from transcript_engine.config import (
    APIFY_API_TOKEN_ENV_VAR,
    FAL_KEY_ENV_VAR,
    OPENAI_API_KEY_ENV_VAR,
    YT_DLP_PATH_ENV_VAR,
    TranscriberSettings,
    resolve_executable,
)
from transcript_engine.contracts.progress import NULL_PROGRESS, MediaKind, ProgressSink

if TYPE_CHECKING:
    from transcript_engine.adapters.http import Fetcher
    from transcript_engine.components.whisper import MediaTranscriber


type YoutubeTranscriptMode = Literal["auto", "web", "no-auto", "yt-dlp", "apify"]
type MediaTranscriptMode = Literal["auto", "prefer"]

YOUTUBE_TRANSCRIPT_MODES: tuple[str, ...] = ("auto", "web", "no-auto", "yt-dlp", "apify")
MEDIA_TRANSCRIPT_MODES: tuple[str, ...] = ("auto", "prefer")


def _clean(value: str | None) -> str | None:
    if value is None:
        return None
    stripped = value.strip()
    return stripped or None


@dataclass(frozen=True, slots=True)
class ProviderFetchOptions:
    """Per-request options threaded through every provider and helper; never mutated."""

    fetcher: "Fetcher"
    youtube_transcript_mode: YoutubeTranscriptMode = "auto"
    media_transcript_mode: MediaTranscriptMode = "auto"
    apify_api_token: str | None = None
    openai_api_key: str | None = None
    fal_api_key: str | None = None
    yt_dlp_path: str | None = None
    transcript_timestamps: bool = False
    progress: ProgressSink = NULL_PROGRESS
    env: Mapping[str, str] = field(default_factory=dict)
    settings: TranscriberSettings = field(default_factory=TranscriberSettings)
    transcriber: "MediaTranscriber | None" = None
    cookies_from_browser: str | None = None
    media_kind_hint: MediaKind | None = None

    @classmethod
    def from_env(
        cls,
        env: Mapping[str, str],
        *,
        fetcher: "Fetcher",
        which: Callable[[str], str | None] = shutil.which,
        **overrides: Any,
    ) -> "ProviderFetchOptions":
        values: dict[str, Any] = {
            "openai_api_key": _clean(env.get(OPENAI_API_KEY_ENV_VAR)),
            "fal_api_key": _clean(env.get(FAL_KEY_ENV_VAR)),
            "apify_api_token": _clean(env.get(APIFY_API_TOKEN_ENV_VAR)),
            "yt_dlp_path": resolve_executable("yt-dlp", env_var=YT_DLP_PATH_ENV_VAR, env=env, which=which),
            "env": dict(env),
            "settings": TranscriberSettings.from_env(env, which=which),
        }
        values.update(overrides)
        options = cls(fetcher=fetcher, **values)
        if options.youtube_transcript_mode not in YOUTUBE_TRANSCRIPT_MODES:
            raise ValueError(f"unsupported youtube transcript mode: {options.youtube_transcript_mode}")
        if options.media_transcript_mode not in MEDIA_TRANSCRIPT_MODES:
            raise ValueError(f"unsupported media transcript mode: {options.media_transcript_mode}")
        return options


__all__ = [
    "MEDIA_TRANSCRIPT_MODES",
    "MediaTranscriptMode",
    "ProviderFetchOptions",
    "YOUTUBE_TRANSCRIPT_MODES",
    "YoutubeTranscriptMode",
]
