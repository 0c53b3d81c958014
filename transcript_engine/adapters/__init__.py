from __future__ import annotations

from .fal import FalTranscriptionBackend
from .ffmpeg import (
    MediaTranscoder,
    Transcoder,
    build_ffmpeg_mp3_cmd,
    build_ffmpeg_segment_cmd,
    build_ffmpeg_wav_cmd,
    build_ffprobe_duration_cmd,
    resolve_transcoder,
)
from .http import AiohttpFetcher, Fetcher, HttpResponse
from .onnx_cli import OnnxCliBackend, build_onnx_command, parse_command_template
from .openai_transcription import OpenAIClientLike, OpenAITranscriptionBackend
from .process import ProcessResult, run_process
from .transcription import BytesTranscriptionBackend, FileTranscriptionBackend
from .whisper_cpp import WhisperCppBackend, build_whisper_cpp_cmd

__all__ = [
    "AiohttpFetcher",
    "BytesTranscriptionBackend",
    "FalTranscriptionBackend",
    "Fetcher",
    "FileTranscriptionBackend",
    "HttpResponse",
    "MediaTranscoder",
    "OnnxCliBackend",
    "OpenAIClientLike",
    "OpenAITranscriptionBackend",
    "ProcessResult",
    "Transcoder",
    "WhisperCppBackend",
    "build_ffmpeg_mp3_cmd",
    "build_ffmpeg_segment_cmd",
    "build_ffmpeg_wav_cmd",
    "build_ffprobe_duration_cmd",
    "build_onnx_command",
    "build_whisper_cpp_cmd",
    "parse_command_template",
    "resolve_transcoder",
    "run_process",
]
