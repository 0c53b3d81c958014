from __future__ import annotations

import asyncio
import json
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Callable, Mapping, Protocol

import aiohttp

from transcript_engine.contracts.errors import DownloadError


DEFAULT_USER_AGENT = (
    "Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/122.0 Safari/537.36"
)
_STREAM_CHUNK_BYTES = 64 * 1024

logger = logging.getLogger(__name__)

type ByteProgress = Callable[[int], None]


@dataclass(frozen=True, slots=True)
class HttpResponse:
    status: int
    url: str
    headers: Mapping[str, str] = field(default_factory=dict)
    body: bytes = b""

    @property
    def ok(self) -> bool:
        return 200 <= self.status < 300

    def header(self, name: str) -> str | None:
        lowered = name.lower()
        for key, value in self.headers.items():
            if key.lower() == lowered:
                return value
        return None

    def text(self) -> str:
        return self.body.decode("utf-8", errors="replace")

    def json(self) -> Any:
        return json.loads(self.text())


class Fetcher(Protocol):
    async def request(
        self,
        method: str,
        url: str,
        *,
        headers: Mapping[str, str] | None = None,
        json_body: Any = None,
        max_bytes: int | None = None,
        on_progress: ByteProgress | None = None,
    ) -> HttpResponse:
        """Perform one HTTP request and return the (optionally capped) body."""

    async def download_to_file(
        self,
        url: str,
        path: Path,
        *,
        headers: Mapping[str, str] | None = None,
        on_progress: ByteProgress | None = None,
    ) -> int:
        """Stream a response body into ``path`` and return the byte count."""


async def _best_effort(fetcher: Fetcher, method: str, url: str, **kwargs: Any) -> HttpResponse | None:
    try:
        return await fetcher.request(method, url, **kwargs)
    except DownloadError as exc:
        logger.debug("%s %s failed: %s", method, url, exc)
        return None


async def get_text(fetcher: Fetcher, url: str, *, headers: Mapping[str, str] | None = None) -> str | None:
    response = await _best_effort(fetcher, "GET", url, headers=headers)
    if response is None:
        return None
    if not response.ok:
        logger.debug("GET %s -> %s", url, response.status)
        return None
    return response.text()


async def get_json(fetcher: Fetcher, url: str, *, headers: Mapping[str, str] | None = None) -> Any:
    response = await _best_effort(fetcher, "GET", url, headers=headers)
    if response is None:
        return None
    if not response.ok:
        logger.debug("GET %s -> %s", url, response.status)
        return None
    try:
        return response.json()
    except ValueError:
        return None


async def post_json(
    fetcher: Fetcher,
    url: str,
    payload: Any,
    *,
    headers: Mapping[str, str] | None = None,
) -> Any:
    merged = {"Content-Type": "application/json", **(headers or {})}
    response = await _best_effort(fetcher, "POST", url, headers=merged, json_body=payload)
    if response is None:
        return None
    if not response.ok:
        logger.debug("POST %s -> %s", url, response.status)
        return None
    try:
        return response.json()
    except ValueError:
        return None


class AiohttpFetcher:
    """aiohttp-backed fetcher; one session per fetcher, closed via ``aclose`` or ``async with``."""

    def __init__(
        self,
        *,
        timeout_s: float = 120.0,
        user_agent: str = DEFAULT_USER_AGENT,
        session: aiohttp.ClientSession | None = None,
    ) -> None:
        self._timeout = aiohttp.ClientTimeout(total=timeout_s)
        self._user_agent = user_agent
        self._session = session
        self._owns_session = session is None

    async def __aenter__(self) -> "AiohttpFetcher":
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        if self._session is not None and self._owns_session:
            await self._session.close()
        self._session = None

    def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(
                timeout=self._timeout,
                headers={"User-Agent": self._user_agent},
            )
            self._owns_session = True
        return self._session

    async def request(
        self,
        method: str,
        url: str,
        *,
        headers: Mapping[str, str] | None = None,
        json_body: Any = None,
        max_bytes: int | None = None,
        on_progress: ByteProgress | None = None,
    ) -> HttpResponse:
        session = self._get_session()
        kwargs: dict[str, Any] = {"headers": dict(headers or {}), "allow_redirects": True}
        if json_body is not None:
            kwargs["data"] = json.dumps(json_body)
        try:
            async with session.request(method, url, **kwargs) as response:
                body = b""
                if method.upper() != "HEAD":
                    body = await _read_body(response, max_bytes=max_bytes, on_progress=on_progress)
                return HttpResponse(
                    status=response.status,
                    url=str(response.url),
                    headers={key: value for key, value in response.headers.items()},
                    body=body,
                )
        except (aiohttp.ClientError, asyncio.TimeoutError) as exc:
            raise DownloadError(f"{method} {url} failed: {exc}") from exc

    async def download_to_file(
        self,
        url: str,
        path: Path,
        *,
        headers: Mapping[str, str] | None = None,
        on_progress: ByteProgress | None = None,
    ) -> int:
        session = self._get_session()
        written = 0
        try:
            async with session.get(url, headers=dict(headers or {}), allow_redirects=True) as response:
                if response.status >= 400:
                    raise DownloadError(f"Download failed ({response.status}) for {url}")
                with Path(path).open("wb") as handle:
                    async for chunk in response.content.iter_chunked(_STREAM_CHUNK_BYTES):
                        handle.write(chunk)
                        written += len(chunk)
                        if on_progress is not None:
                            on_progress(written)
        except (aiohttp.ClientError, asyncio.TimeoutError) as exc:
            raise DownloadError(f"Download failed for {url}: {exc}") from exc
        return written


async def _read_body(
    response: aiohttp.ClientResponse,
    *,
    max_bytes: int | None,
    on_progress: ByteProgress | None,
) -> bytes:
    if max_bytes is None and on_progress is None:
        return await response.read()
    parts: list[bytes] = []
    total = 0
    async for chunk in response.content.iter_chunked(_STREAM_CHUNK_BYTES):
        if max_bytes is not None and total + len(chunk) > max_bytes:
            chunk = chunk[: max_bytes - total]
        parts.append(chunk)
        total += len(chunk)
        if on_progress is not None:
            on_progress(total)
        if max_bytes is not None and total >= max_bytes:
            break
    return b"".join(parts)


__all__ = [
    "AiohttpFetcher",
    "ByteProgress",
    "DEFAULT_USER_AGENT",
    "Fetcher",
    "HttpResponse",
    "get_json",
    "get_text",
    "post_json",
]
