from __future__ import annotations

import logging
import os
import shutil
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Literal, Mapping

from dotenv import dotenv_values


type TranscriberPreference = Literal["auto", "whisper", "parakeet", "canary"]

TRANSCRIBER_ENV_VAR = "SUMMARIZE_TRANSCRIBER"
ONNX_PARAKEET_CMD_ENV_VAR = "SUMMARIZE_ONNX_PARAKEET_CMD"
ONNX_CANARY_CMD_ENV_VAR = "SUMMARIZE_ONNX_CANARY_CMD"
ONNX_CACHE_DIR_ENV_VAR = "SUMMARIZE_ONNX_CACHE_DIR"
ONNX_MODEL_BASE_URL_ENV_VAR = "SUMMARIZE_ONNX_MODEL_BASE_URL"
WHISPER_CPP_BINARY_ENV_VAR = "SUMMARIZE_WHISPER_CPP_BINARY"
WHISPER_CPP_MODEL_PATH_ENV_VAR = "SUMMARIZE_WHISPER_CPP_MODEL_PATH"
WHISPER_CPP_DISABLE_ENV_VAR = "SUMMARIZE_DISABLE_LOCAL_WHISPER_CPP"
OPENAI_MODEL_ENV_VAR = "SUMMARIZE_OPENAI_TRANSCRIPTION_MODEL"
OPENAI_BASE_URL_ENV_VAR = "OPENAI_BASE_URL"
FAL_MODEL_ENV_VAR = "SUMMARIZE_FAL_MODEL"
FFMPEG_PATH_ENV_VAR = "FFMPEG_PATH"
FFPROBE_PATH_ENV_VAR = "FFPROBE_PATH"
YT_DLP_PATH_ENV_VAR = "YT_DLP_PATH"
OPENAI_API_KEY_ENV_VAR = "OPENAI_API_KEY"
FAL_KEY_ENV_VAR = "FAL_KEY"
APIFY_API_TOKEN_ENV_VAR = "APIFY_API_TOKEN"
APIFY_YOUTUBE_ACTOR_ENV_VAR = "APIFY_YOUTUBE_ACTOR"

DEFAULT_WHISPER_CPP_BINARY = "whisper-cli"
DEFAULT_OPENAI_TRANSCRIPTION_MODEL = "whisper-1"
DEFAULT_FAL_MODEL = "fal-ai/wizper"
DEFAULT_APIFY_YOUTUBE_ACTOR = "pintostudio~youtube-transcript-scraper"

_PREFERENCES: tuple[str, ...] = ("auto", "whisper", "parakeet", "canary")
_TRUTHY = {"1", "true", "yes", "on"}

logger = logging.getLogger(__name__)


def _clean(value: str | None) -> str | None:
    if value is None:
        return None
    stripped = value.strip()
    return stripped or None


def _home_dir(env: Mapping[str, str]) -> Path:
    home = _clean(env.get("HOME"))
    return Path(home) if home else Path.home()


def _parse_preference(raw: str | None) -> TranscriberPreference:
    value = (_clean(raw) or "auto").lower()
    if value not in _PREFERENCES:
        raise ValueError(
            f"{TRANSCRIBER_ENV_VAR} must be one of {', '.join(_PREFERENCES)} (got {raw!r})"
        )
    return value  # type: ignore[return-value]


def default_whisper_cpp_model_path(env: Mapping[str, str]) -> Path:
    return _home_dir(env) / ".summarize" / "cache" / "whisper-cpp" / "models" / "ggml-base.bin"


def default_onnx_cache_root(env: Mapping[str, str]) -> Path:
    xdg = _clean(env.get("XDG_CACHE_HOME"))
    base = Path(xdg) if xdg else _home_dir(env) / ".cache"
    return base / "summarize" / "onnx"


def resolve_executable(
    name: str,
    *,
    env_var: str,
    env: Mapping[str, str],
    which: Callable[[str], str | None] = shutil.which,
) -> str | None:
    override = _clean(env.get(env_var))
    if override:
        return override
    return which(name)


@dataclass(frozen=True, slots=True)
class TranscriberSettings:
    """Every environment-driven knob of the engine, collected once per request."""

    preference: TranscriberPreference = "auto"
    parakeet_cmd: str | None = None
    canary_cmd: str | None = None
    onnx_cache_dir: Path | None = None
    onnx_model_base_url: str | None = None
    whisper_cpp_binary: str = DEFAULT_WHISPER_CPP_BINARY
    whisper_cpp_model_path: Path | None = None
    whisper_cpp_disabled: bool = False
    openai_model: str = DEFAULT_OPENAI_TRANSCRIPTION_MODEL
    openai_base_url: str | None = None
    fal_model: str = DEFAULT_FAL_MODEL
    ffmpeg_path: str | None = None
    ffprobe_path: str | None = None
    apify_youtube_actor: str = DEFAULT_APIFY_YOUTUBE_ACTOR
    transcription_timeout_s: float = 600.0
    ffmpeg_timeout_s: float = 600.0
    ytdlp_timeout_s: float = 300.0
    ytdlp_probe_timeout_s: float = 30.0

    @classmethod
    def from_env(
        cls,
        env: Mapping[str, str],
        *,
        which: Callable[[str], str | None] = shutil.which,
    ) -> "TranscriberSettings":
        onnx_cache_dir = _clean(env.get(ONNX_CACHE_DIR_ENV_VAR))
        whisper_model = _clean(env.get(WHISPER_CPP_MODEL_PATH_ENV_VAR))
        base_url = _clean(env.get(ONNX_MODEL_BASE_URL_ENV_VAR))
        return cls(
            preference=_parse_preference(env.get(TRANSCRIBER_ENV_VAR)),
            parakeet_cmd=_clean(env.get(ONNX_PARAKEET_CMD_ENV_VAR)),
            canary_cmd=_clean(env.get(ONNX_CANARY_CMD_ENV_VAR)),
            onnx_cache_dir=Path(onnx_cache_dir) if onnx_cache_dir else default_onnx_cache_root(env),
            onnx_model_base_url=base_url.rstrip("/") if base_url else None,
            whisper_cpp_binary=_clean(env.get(WHISPER_CPP_BINARY_ENV_VAR)) or DEFAULT_WHISPER_CPP_BINARY,
            whisper_cpp_model_path=Path(whisper_model) if whisper_model else default_whisper_cpp_model_path(env),
            whisper_cpp_disabled=(_clean(env.get(WHISPER_CPP_DISABLE_ENV_VAR)) or "").lower() in _TRUTHY,
            openai_model=_clean(env.get(OPENAI_MODEL_ENV_VAR)) or DEFAULT_OPENAI_TRANSCRIPTION_MODEL,
            openai_base_url=_clean(env.get(OPENAI_BASE_URL_ENV_VAR)),
            fal_model=_clean(env.get(FAL_MODEL_ENV_VAR)) or DEFAULT_FAL_MODEL,
            ffmpeg_path=resolve_executable("ffmpeg", env_var=FFMPEG_PATH_ENV_VAR, env=env, which=which),
            ffprobe_path=resolve_executable("ffprobe", env_var=FFPROBE_PATH_ENV_VAR, env=env, which=which),
            apify_youtube_actor=_clean(env.get(APIFY_YOUTUBE_ACTOR_ENV_VAR)) or DEFAULT_APIFY_YOUTUBE_ACTOR,
        )

    def onnx_command_for(self, model: str) -> str | None:
        if model == "parakeet":
            return self.parakeet_cmd
        if model == "canary":
            return self.canary_cmd
        return None

    def selected_onnx_model(self) -> str | None:
        if self.preference in ("parakeet", "canary"):
            return self.preference
        if self.preference == "auto":
            if self.parakeet_cmd:
                return "parakeet"
            if self.canary_cmd:
                return "canary"
        return None


def load_environment(
    dotenv_path: str | os.PathLike[str] | None = None,
    *,
    base_env: Mapping[str, str] | None = None,
) -> dict[str, str]:
    """Merge a .env file under the process environment; process values win."""
    merged: dict[str, str] = {}
    if dotenv_path is None or Path(dotenv_path).is_file():
        for key, value in dotenv_values(dotenv_path).items():
            if value is not None:
                merged[key] = value
    elif dotenv_path is not None:
        logger.warning("dotenv file not found: %s", dotenv_path)
    merged.update(os.environ if base_env is None else base_env)
    return merged


__all__ = [
    "APIFY_API_TOKEN_ENV_VAR",
    "FAL_KEY_ENV_VAR",
    "OPENAI_API_KEY_ENV_VAR",
    "ONNX_CANARY_CMD_ENV_VAR",
    "ONNX_PARAKEET_CMD_ENV_VAR",
    "TRANSCRIBER_ENV_VAR",
    "TranscriberPreference",
    "TranscriberSettings",
    "YT_DLP_PATH_ENV_VAR",
    "default_onnx_cache_root",
    "default_whisper_cpp_model_path",
    "load_environment",
    "resolve_executable",
]
