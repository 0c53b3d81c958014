from __future__ import annotations

import asyncio
import contextlib
import logging
from dataclasses import dataclass
from typing import Callable, Sequence


logger = logging.getLogger(__name__)

_READ_CHUNK_BYTES = 64 * 1024


@dataclass(frozen=True, slots=True)
class ProcessResult:
    returncode: int
    stdout: str
    stderr: str
    timed_out: bool = False

    def error_message(self, fallback: str) -> str:
        return self.stderr.strip() or self.stdout.strip() or fallback


class _CappedBuffer:
    def __init__(self, limit: int | None) -> None:
        self._limit = limit
        self._parts: list[bytes] = []
        self._size = 0

    def append(self, data: bytes) -> None:
        if self._limit is None:
            self._parts.append(data)
            return
        remaining = self._limit - self._size
        if remaining <= 0:
            return
        chunk = data[:remaining]
        self._parts.append(chunk)
        self._size += len(chunk)

    def text(self) -> str:
        return b"".join(self._parts).decode("utf-8", errors="replace")


async def _pump(
    stream: asyncio.StreamReader | None,
    buffer: _CappedBuffer,
    on_line: Callable[[str], None] | None,
) -> None:
    if stream is None:
        return
    if on_line is None:
        while True:
            data = await stream.read(_READ_CHUNK_BYTES)
            if not data:
                return
            buffer.append(data)
    while True:
        line = await stream.readline()
        if not line:
            return
        buffer.append(line)
        on_line(line.decode("utf-8", errors="replace").rstrip("\r\n"))


async def _kill(proc: asyncio.subprocess.Process) -> None:
    if proc.returncode is not None:
        return
    with contextlib.suppress(ProcessLookupError):
        proc.kill()
    with contextlib.suppress(ProcessLookupError):
        await proc.wait()


async def run_process(
    cmd: Sequence[str],
    *,
    timeout_s: float | None = None,
    stdout_limit: int | None = None,
    stderr_limit: int | None = None,
    on_stdout_line: Callable[[str], None] | None = None,
    stdin_data: bytes | None = None,
) -> ProcessResult:
    """Run a command without blocking the loop; the process is killed on timeout or cancellation."""
    logger.debug("spawn: %s", " ".join(cmd))
    proc = await asyncio.create_subprocess_exec(
        *cmd,
        stdin=asyncio.subprocess.PIPE if stdin_data is not None else asyncio.subprocess.DEVNULL,
        stdout=asyncio.subprocess.PIPE,
        stderr=asyncio.subprocess.PIPE,
    )
    stdout = _CappedBuffer(stdout_limit)
    stderr = _CappedBuffer(stderr_limit)

    async def _communicate() -> int:
        if stdin_data is not None and proc.stdin is not None:
            proc.stdin.write(stdin_data)
            with contextlib.suppress(BrokenPipeError, ConnectionResetError):
                await proc.stdin.drain()
            proc.stdin.close()
        await asyncio.gather(
            _pump(proc.stdout, stdout, on_stdout_line),
            _pump(proc.stderr, stderr, None),
        )
        return await proc.wait()

    try:
        returncode = await asyncio.wait_for(_communicate(), timeout=timeout_s)
    except asyncio.TimeoutError:
        await _kill(proc)
        logger.debug("timed out after %ss: %s", timeout_s, cmd[0])
        return ProcessResult(
            returncode=proc.returncode if proc.returncode is not None else -1,
            stdout=stdout.text(),
            stderr=stderr.text(),
            timed_out=True,
        )
    except BaseException:
        await _kill(proc)
        raise
    return ProcessResult(returncode=returncode, stdout=stdout.text(), stderr=stderr.text())


__all__ = ["ProcessResult", "run_process"]
