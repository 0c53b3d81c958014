from __future__ import annotations

import argparse
import asyncio
import json
import logging
import sys
from dataclasses import asdict, dataclass
from pathlib import Path
from typing import Any, Sequence

from transcript_engine.adapters.http import AiohttpFetcher
from transcript_engine.config import load_environment
from transcript_engine.contracts.artifacts import CacheMode, TranscriptResolution
from transcript_engine.contracts.options import (
    MEDIA_TRANSCRIPT_MODES,
    YOUTUBE_TRANSCRIPT_MODES,
    ProviderFetchOptions,
)
from transcript_engine.contracts.progress import LoggingProgressSink
from transcript_engine.pipeline.cache import JsonFileTranscriptCache, TranscriptCache
from transcript_engine.pipeline.resolve import resolve_transcript_for_link


type Argv = Sequence[str]

logger = logging.getLogger("transcript_engine.cli")


@dataclass(frozen=True, slots=True)
class CliTarget:
    url: str
    file_mtime: float | None = None


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="transcript-engine",
        description="Fetch or transcribe the transcript behind a URL or local media file.",
    )
    parser.add_argument("target", metavar="URL_OR_PATH", help="Link to resolve, or a local media file.")
    parser.add_argument(
        "--youtube",
        dest="youtube_mode",
        choices=YOUTUBE_TRANSCRIPT_MODES,
        default="auto",
        help="YouTube transcript strategy.",
    )
    parser.add_argument(
        "--media-mode",
        choices=MEDIA_TRANSCRIPT_MODES,
        default="auto",
        help="'prefer' transcribes embedded media even when captions exist.",
    )
    parser.add_argument("--timestamps", action="store_true", help="Include timed segments when available.")
    parser.add_argument("--cache-dir", type=Path, default=None, help="Directory for the JSON transcript cache.")
    parser.add_argument("--no-cache", action="store_true", help="Bypass cached transcripts for this run.")
    parser.add_argument("--json", dest="as_json", action="store_true", help="Print the full resolution as JSON.")
    parser.add_argument("--env-file", type=Path, default=None, help="Optional .env file to load.")
    parser.add_argument(
        "--cookies-from-browser",
        default=None,
        help="Browser profile handed to yt-dlp for X/Twitter media.",
    )
    parser.add_argument("-v", "--verbose", action="store_true", help="Enable debug logging.")
    return parser


def parse_args(argv: Argv | None = None) -> argparse.Namespace:
    return build_parser().parse_args(list(argv) if argv is not None else None)


def resolve_target(raw: str) -> CliTarget:
    """Turn existing local paths into ``file://`` URLs carrying their mtime."""
    candidate = Path(raw).expanduser()
    if "://" not in raw and candidate.is_file():
        resolved = candidate.resolve()
        return CliTarget(url=resolved.as_uri(), file_mtime=resolved.stat().st_mtime)
    return CliTarget(url=raw)


def build_fetch_options(
    args: argparse.Namespace,
    *,
    env: dict[str, str],
    fetcher: Any,
) -> ProviderFetchOptions:
    overrides: dict[str, Any] = {
        "youtube_transcript_mode": args.youtube_mode,
        "media_transcript_mode": args.media_mode,
        "transcript_timestamps": bool(args.timestamps),
        "progress": LoggingProgressSink(),
    }
    if args.cookies_from_browser:
        overrides["cookies_from_browser"] = args.cookies_from_browser
    return ProviderFetchOptions.from_env(env, fetcher=fetcher, **overrides)


def build_cache(args: argparse.Namespace) -> TranscriptCache | None:
    if args.cache_dir is None:
        return None
    return JsonFileTranscriptCache(Path(args.cache_dir))


def resolution_to_dict(resolution: TranscriptResolution) -> dict[str, Any]:
    return {
        "text": resolution.text,
        "source": resolution.source,
        "segments": [segment.to_dict() for segment in resolution.segments] if resolution.segments else None,
        "metadata": resolution.metadata,
        "diagnostics": asdict(resolution.diagnostics) if resolution.diagnostics is not None else None,
    }


async def run_from_args(args: argparse.Namespace) -> TranscriptResolution:
    env = load_environment(args.env_file)
    target = resolve_target(args.target)
    cache_mode: CacheMode = "bypass" if args.no_cache else "default"
    async with AiohttpFetcher() as fetcher:
        options = build_fetch_options(args, env=env, fetcher=fetcher)
        return await resolve_transcript_for_link(
            target.url,
            None,
            options,
            cache=build_cache(args),
            cache_mode=cache_mode,
            file_mtime=target.file_mtime,
        )


def main(argv: Argv | None = None) -> int:
    args = parse_args(argv)
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
        stream=sys.stderr,
    )
    try:
        resolution = asyncio.run(run_from_args(args))
    except Exception as exc:
        logger.debug("transcript resolution failed", exc_info=True)
        print(f"error: {exc}", file=sys.stderr)
        return 1

    if args.as_json:
        print(json.dumps(resolution_to_dict(resolution), indent=2, default=str))
        return 0
    if not resolution.text:
        reason = (resolution.metadata or {}).get("reason")
        notes = resolution.diagnostics.notes if resolution.diagnostics is not None else None
        print(f"error: no transcript available ({reason or notes or 'unknown reason'})", file=sys.stderr)
        return 1
    print(resolution.text)
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
