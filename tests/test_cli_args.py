from __future__ import annotations

import json
from pathlib import Path

import pytest

from transcript_engine.cli import run_transcript as cli
from transcript_engine.contracts.artifacts import TranscriptDiagnostics, TranscriptResolution, TranscriptSegment
from transcript_engine.contracts.progress import LoggingProgressSink
from transcript_engine.pipeline.cache import JsonFileTranscriptCache


def test_parse_args_defaults() -> None:
    args = cli.parse_args(["https://youtu.be/abc123def45"])

    assert args.target == "https://youtu.be/abc123def45"
    assert args.youtube_mode == "auto"
    assert args.media_mode == "auto"
    assert args.timestamps is False
    assert args.cache_dir is None
    assert args.no_cache is False
    assert args.as_json is False
    assert args.cookies_from_browser is None


def test_parse_args_maps_cli_flags() -> None:
    args = cli.parse_args(
        [
            "https://example.com/episode",
            "--youtube",
            "no-auto",
            "--media-mode",
            "prefer",
            "--timestamps",
            "--cache-dir",
            "cache",
            "--no-cache",
            "--json",
            "--env-file",
            ".env.local",
            "--cookies-from-browser",
            "firefox",
            "-v",
        ]
    )

    assert args.youtube_mode == "no-auto"
    assert args.media_mode == "prefer"
    assert args.timestamps is True
    assert args.cache_dir == Path("cache")
    assert args.no_cache is True
    assert args.as_json is True
    assert args.env_file == Path(".env.local")
    assert args.cookies_from_browser == "firefox"
    assert args.verbose is True


def test_parse_args_rejects_unknown_youtube_mode() -> None:
    with pytest.raises(SystemExit):
        cli.parse_args(["https://youtu.be/x", "--youtube", "scrape"])


def test_resolve_target_turns_local_files_into_file_urls(tmp_path: Path) -> None:
    media = tmp_path / "memo.m4a"
    media.write_bytes(b"m4a")

    target = cli.resolve_target(str(media))

    assert target.url == media.resolve().as_uri()
    assert target.file_mtime == media.stat().st_mtime
    assert cli.resolve_target("https://example.com/a.mp3") == cli.CliTarget(url="https://example.com/a.mp3")
    assert cli.resolve_target(str(tmp_path / "missing.mp3")).file_mtime is None


def test_build_fetch_options_applies_flags_over_env() -> None:
    args = cli.parse_args(["https://x.com/a/status/1", "--media-mode", "prefer", "--timestamps", "--cookies-from-browser", "chrome"])
    fetcher = object()

    options = cli.build_fetch_options(args, env={"OPENAI_API_KEY": " sk-test "}, fetcher=fetcher)

    assert options.fetcher is fetcher
    assert options.openai_api_key == "sk-test"
    assert options.media_transcript_mode == "prefer"
    assert options.transcript_timestamps is True
    assert options.cookies_from_browser == "chrome"
    assert isinstance(options.progress, LoggingProgressSink)


def test_build_cache_only_with_cache_dir(tmp_path: Path) -> None:
    assert cli.build_cache(cli.parse_args(["u"])) is None
    cache = cli.build_cache(cli.parse_args(["u", "--cache-dir", str(tmp_path)]))
    assert isinstance(cache, JsonFileTranscriptCache)
    assert cache.root == tmp_path


def _resolution(text: str | None) -> TranscriptResolution:
    return TranscriptResolution(
        text=text,
        source="whisper" if text else None,
        segments=[TranscriptSegment(text="hi", start_s=0.0, end_s=1.0)] if text else None,
        metadata={"provider": "generic"} if text else {"provider": "generic", "reason": "not_implemented"},
        diagnostics=TranscriptDiagnostics(cache_mode="default", cache_status="miss"),
    )


def test_main_success_prints_transcript(monkeypatch: pytest.MonkeyPatch, capsys: pytest.CaptureFixture[str]) -> None:
    async def fake_run_from_args(args):  # type: ignore[no-untyped-def]
        return _resolution("hello world")

    monkeypatch.setattr(cli, "run_from_args", fake_run_from_args)

    exit_code = cli.main(["https://example.com/clip.mp3"])
    out = capsys.readouterr()

    assert exit_code == 0
    assert out.out.splitlines() == ["hello world"]


def test_main_json_output(monkeypatch: pytest.MonkeyPatch, capsys: pytest.CaptureFixture[str]) -> None:
    async def fake_run_from_args(args):  # type: ignore[no-untyped-def]
        return _resolution("hello world")

    monkeypatch.setattr(cli, "run_from_args", fake_run_from_args)

    exit_code = cli.main(["https://example.com/clip.mp3", "--json"])
    payload = json.loads(capsys.readouterr().out)

    assert exit_code == 0
    assert payload["text"] == "hello world"
    assert payload["segments"] == [{"text": "hi", "start_s": 0.0, "end_s": 1.0}]
    assert payload["diagnostics"]["cache_status"] == "miss"


def test_main_without_transcript_reports_reason(monkeypatch: pytest.MonkeyPatch, capsys: pytest.CaptureFixture[str]) -> None:
    async def fake_run_from_args(args):  # type: ignore[no-untyped-def]
        return _resolution(None)

    monkeypatch.setattr(cli, "run_from_args", fake_run_from_args)

    exit_code = cli.main(["https://example.com/article"])

    assert exit_code == 1
    assert "error: no transcript available (not_implemented)" in capsys.readouterr().err


def test_main_failure_returns_nonzero(monkeypatch: pytest.MonkeyPatch, capsys: pytest.CaptureFixture[str]) -> None:
    async def raise_error(args):  # type: ignore[no-untyped-def]
        raise RuntimeError("boom")

    monkeypatch.setattr(cli, "run_from_args", raise_error)

    exit_code = cli.main(["https://example.com/clip.mp3"])
    out = capsys.readouterr()

    assert exit_code == 1
    assert "error: boom" in out.err
