from __future__ import annotations

import json
import logging
import os
import tempfile
import uuid
from dataclasses import dataclass
from pathlib import Path
from typing import Literal

from transcript_engine.adapters.ffmpeg import StrPath, Transcoder, unlink_quietly
from transcript_engine.adapters.http import Fetcher
from transcript_engine.adapters.process import run_process
from transcript_engine.adapters.transcription import is_wav_media_type
from transcript_engine.config import (
    ONNX_CANARY_CMD_ENV_VAR,
    ONNX_PARAKEET_CMD_ENV_VAR,
    TranscriberSettings,
    default_onnx_cache_root,
)
from transcript_engine.contracts.errors import DownloadError, EmptyTranscriptError, ExternalToolError, FfmpegError


type OnnxModelId = Literal["parakeet", "canary"]

STDOUT_LIMIT = 256_000
STDERR_LIMIT = 16_000

COMMAND_ENV_VARS: dict[str, str] = {
    "parakeet": ONNX_PARAKEET_CMD_ENV_VAR,
    "canary": ONNX_CANARY_CMD_ENV_VAR,
}


@dataclass(frozen=True, slots=True)
class OnnxModelSource:
    repo: str
    files: tuple[str, ...] = ("model.onnx", "vocab.txt")


MODEL_SOURCES: dict[str, OnnxModelSource] = {
    "parakeet": OnnxModelSource(repo="istupakov/parakeet-tdt-0.6b-v3-onnx"),
    "canary": OnnxModelSource(repo="istupakov/canary-1b-v2-onnx"),
}

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class ModelArtifacts:
    model_dir: Path
    model_path: Path
    vocab_path: Path


@dataclass(frozen=True, slots=True)
class ArgvTemplate:
    argv: tuple[str, ...]


@dataclass(frozen=True, slots=True)
class ShellTemplate:
    command: str


type CommandTemplate = ArgvTemplate | ShellTemplate


def onnx_provider_id(model: OnnxModelId) -> str:
    return "onnx-parakeet" if model == "parakeet" else "onnx-canary"


def parse_command_template(raw: str) -> CommandTemplate:
    """A JSON list of non-empty strings is an argv template; anything else runs through the shell."""
    trimmed = raw.strip()
    if trimmed.startswith("["):
        try:
            parsed = json.loads(trimmed)
        except ValueError:
            parsed = None
        if (
            isinstance(parsed, list)
            and parsed
            and all(isinstance(item, str) and item.strip() for item in parsed)
        ):
            return ArgvTemplate(argv=tuple(parsed))
    return ShellTemplate(command=trimmed)


def shell_quote(value: str) -> str:
    return "'" + value.replace("'", "'\\''") + "'"


def _replacements(input_path: str, artifacts: ModelArtifacts, *, quote: bool) -> list[tuple[str, str]]:
    wrap = shell_quote if quote else (lambda value: value)
    # {model_dir} must be replaced before {model}.
    return [
        ("{input}", wrap(input_path)),
        ("{model_dir}", wrap(str(artifacts.model_dir))),
        ("{model}", wrap(str(artifacts.model_path))),
        ("{vocab}", wrap(str(artifacts.vocab_path))),
    ]


def substitute_argv(template: ArgvTemplate, input_path: StrPath, artifacts: ModelArtifacts) -> list[str]:
    input_str = str(input_path)
    replacements = _replacements(input_str, artifacts, quote=False)
    argv: list[str] = []
    for arg in template.argv:
        for needle, value in replacements:
            arg = arg.replace(needle, value)
        argv.append(arg)
    if not any("{input}" in arg for arg in template.argv):
        argv.append(input_str)
    return argv


def substitute_shell(template: ShellTemplate, input_path: StrPath, artifacts: ModelArtifacts) -> str:
    input_str = str(input_path)
    command = template.command
    for needle, value in _replacements(input_str, artifacts, quote=True):
        command = command.replace(needle, value)
    if "{input}" not in template.command:
        command = f"{command} {shell_quote(input_str)}"
    return command


def build_onnx_command(template: CommandTemplate, input_path: StrPath, artifacts: ModelArtifacts) -> list[str]:
    if isinstance(template, ArgvTemplate):
        return substitute_argv(template, input_path, artifacts)
    return ["/bin/sh", "-c", substitute_shell(template, input_path, artifacts)]


def model_artifacts_for(model_dir: Path) -> ModelArtifacts:
    return ModelArtifacts(
        model_dir=model_dir,
        model_path=model_dir / "model.onnx",
        vocab_path=model_dir / "vocab.txt",
    )


async def ensure_model_artifacts(
    model: OnnxModelId,
    *,
    fetcher: Fetcher,
    cache_root: Path,
    base_url: str | None,
    notes: list[str],
) -> ModelArtifacts:
    model_dir = Path(cache_root) / model
    model_dir.mkdir(parents=True, exist_ok=True)
    source = MODEL_SOURCES[model]
    mirror = base_url.rstrip("/") if base_url else f"https://huggingface.co/{source.repo}/resolve/main"

    downloaded = False
    for name in source.files:
        target = model_dir / name
        if target.exists():
            continue
        fd, tmp_name = tempfile.mkstemp(prefix=f"{name}.", suffix=".part", dir=model_dir)
        os.close(fd)
        tmp_path = Path(tmp_name)
        try:
            await fetcher.download_to_file(f"{mirror}/{name}", tmp_path)
            os.replace(tmp_path, target)
        finally:
            unlink_quietly(tmp_path)
        downloaded = True

    if downloaded:
        notes.append(f"Downloaded {model} ONNX files to {model_dir}")
    return model_artifacts_for(model_dir)


class OnnxCliBackend:
    """User-configured CLI that reads a WAV file and prints the transcript on stdout."""

    def __init__(
        self,
        model: OnnxModelId,
        command_template: str | None,
        *,
        fetcher: Fetcher,
        cache_root: Path | None = None,
        base_url: str | None = None,
        transcoder: Transcoder | None = None,
        timeout_s: float = 600.0,
    ) -> None:
        self._model = model
        self._command_template = command_template
        self._fetcher = fetcher
        self._cache_root = cache_root or default_onnx_cache_root({})
        self._base_url = base_url
        self._transcoder = transcoder
        self._timeout_s = timeout_s

    @classmethod
    def from_settings(
        cls,
        settings: TranscriberSettings,
        *,
        fetcher: Fetcher,
        transcoder: Transcoder | None = None,
    ) -> "OnnxCliBackend | None":
        model = settings.selected_onnx_model()
        if model is None:
            return None
        return cls(
            model,  # type: ignore[arg-type]
            settings.onnx_command_for(model),
            fetcher=fetcher,
            cache_root=settings.onnx_cache_dir,
            base_url=settings.onnx_model_base_url,
            transcoder=transcoder,
            timeout_s=settings.transcription_timeout_s,
        )

    @property
    def backend_id(self) -> str:
        return onnx_provider_id(self._model)

    @property
    def model_id(self) -> str:
        return f"onnx:{self._model}"

    @property
    def configured(self) -> bool:
        return bool(self._command_template and self._command_template.strip())

    async def _ensure_wav(self, path: Path, media_type: str, notes: list[str]) -> tuple[Path, Path | None]:
        if is_wav_media_type(media_type):
            return path, None
        if self._transcoder is None:
            notes.append("ONNX transcriber: proceeding without ffmpeg transcode (input not WAV)")
            return path, None
        output = Path(tempfile.gettempdir()) / f"transcript-onnx-{uuid.uuid4().hex}.wav"
        try:
            await self._transcoder.transcode_to_wav(path, output)
        except FfmpegError as exc:
            unlink_quietly(output)
            notes.append(f"ONNX transcriber: ffmpeg transcode to WAV failed ({exc}); using original input")
            return path, None
        notes.append("ONNX transcriber: transcoded media to 16kHz WAV via ffmpeg")
        return output, output

    async def transcribe_file(
        self,
        path: Path,
        *,
        media_type: str,
        notes: list[str] | None = None,
    ) -> str:
        collected = notes if notes is not None else []
        provider = self.backend_id
        if not self._command_template:
            raise ExternalToolError(
                f"{provider}: command not configured "
                f"(set {COMMAND_ENV_VARS[self._model]} to a CLI that emits text from WAV audio)"
            )
        try:
            artifacts = await ensure_model_artifacts(
                self._model,
                fetcher=self._fetcher,
                cache_root=self._cache_root,
                base_url=self._base_url,
                notes=collected,
            )
        except (DownloadError, OSError) as exc:
            raise ExternalToolError(f"{provider} model download failed: {exc}") from exc

        input_path, cleanup_path = await self._ensure_wav(Path(path), media_type, collected)
        try:
            cmd = build_onnx_command(parse_command_template(self._command_template), input_path, artifacts)
            try:
                completed = await run_process(
                    cmd,
                    timeout_s=self._timeout_s,
                    stdout_limit=STDOUT_LIMIT,
                    stderr_limit=STDERR_LIMIT,
                )
            except OSError as exc:
                raise ExternalToolError(f"{provider} failed: {exc}") from exc
        finally:
            unlink_quietly(cleanup_path)

        if completed.timed_out:
            raise ExternalToolError(f"{provider} failed (timeout): exceeded {self._timeout_s:g}s")
        if completed.returncode != 0:
            raise ExternalToolError(
                f"{provider} failed ({completed.returncode}): {completed.stderr.strip() or 'unknown error'}"
            )
        text = completed.stdout.strip()
        if not text:
            raise EmptyTranscriptError(f"{provider} returned empty text")
        return text


__all__ = [
    "ArgvTemplate",
    "CommandTemplate",
    "ModelArtifacts",
    "MODEL_SOURCES",
    "OnnxCliBackend",
    "OnnxModelId",
    "ShellTemplate",
    "build_onnx_command",
    "ensure_model_artifacts",
    "model_artifacts_for",
    "onnx_provider_id",
    "parse_command_template",
    "shell_quote",
    "substitute_argv",
    "substitute_shell",
]
