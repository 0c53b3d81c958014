from __future__ import annotations

import logging
import os
import shutil
import tempfile
import uuid
from pathlib import Path
from typing import Callable

from transcript_engine.adapters.ffmpeg import StrPath, Transcoder, unlink_quietly
from transcript_engine.adapters.process import run_process
from transcript_engine.adapters.transcription import is_wav_media_type, require_text
from transcript_engine.config import TranscriberSettings
from transcript_engine.contracts.errors import ExternalToolError


logger = logging.getLogger(__name__)


def build_whisper_cpp_cmd(
    binary: StrPath,
    model_path: StrPath,
    input_path: StrPath,
    output_base: StrPath,
    *,
    language: str | None = None,
) -> list[str]:
    cmd = [
        str(binary),
        "-m",
        str(model_path),
        "-f",
        str(input_path),
        "-otxt",
        "-of",
        str(output_base),
        "-np",
        "-nt",
    ]
    if language:
        cmd.extend(["-l", language])
    return cmd


def resolve_whisper_cpp_binary(
    binary: str,
    *,
    which: Callable[[str], str | None] = shutil.which,
) -> str | None:
    if os.sep in binary:
        return binary if Path(binary).is_file() else None
    return which(binary)


class WhisperCppBackend:
    """Local whisper.cpp CLI; reads the ``-otxt`` sidecar it writes next to ``-of``."""

    backend_id = "whisper.cpp"

    def __init__(
        self,
        binary: str,
        model_path: Path,
        *,
        transcoder: Transcoder | None = None,
        timeout_s: float = 600.0,
    ) -> None:
        self._binary = binary
        self._model_path = Path(model_path)
        self._transcoder = transcoder
        self._timeout_s = timeout_s

    @classmethod
    def from_settings(
        cls,
        settings: TranscriberSettings,
        *,
        transcoder: Transcoder | None = None,
        which: Callable[[str], str | None] = shutil.which,
    ) -> "WhisperCppBackend | None":
        """Return a backend only when it is enabled, installed and its model exists."""
        if settings.whisper_cpp_disabled:
            return None
        binary = resolve_whisper_cpp_binary(settings.whisper_cpp_binary, which=which)
        if binary is None:
            return None
        model = settings.whisper_cpp_model_path
        if model is None or not model.is_file():
            logger.debug("whisper.cpp model missing: %s", model)
            return None
        return cls(binary, model, transcoder=transcoder, timeout_s=settings.transcription_timeout_s)

    @property
    def model_id(self) -> str:
        return f"whisper.cpp:{self._model_path.name}"

    async def transcribe_file(self, path: Path, *, media_type: str) -> str:
        work_dir = Path(tempfile.mkdtemp(prefix="transcript-whisper-cpp-"))
        wav_path: Path | None = None
        try:
            input_path = Path(path)
            if not is_wav_media_type(media_type) and self._transcoder is not None:
                wav_path = await self._transcoder.transcode_to_wav(path, work_dir / f"{uuid.uuid4().hex}.wav")
                input_path = wav_path
            output_base = work_dir / "transcript"
            completed = await run_process(
                build_whisper_cpp_cmd(self._binary, self._model_path, input_path, output_base),
                timeout_s=self._timeout_s,
                stdout_limit=256000,
                stderr_limit=16000,
            )
            if completed.timed_out:
                raise ExternalToolError(f"whisper.cpp timed out after {self._timeout_s:g}s")
            if completed.returncode != 0:
                raise ExternalToolError(
                    f"whisper.cpp failed ({completed.returncode}): {completed.error_message('no output')}"
                )
            txt_path = output_base.with_suffix(".txt")
            raw = txt_path.read_text(encoding="utf-8", errors="replace") if txt_path.is_file() else completed.stdout
            return require_text(self.backend_id, raw)
        finally:
            unlink_quietly(wav_path)
            shutil.rmtree(work_dir, ignore_errors=True)


__all__ = ["WhisperCppBackend", "build_whisper_cpp_cmd", "resolve_whisper_cpp_binary"]
