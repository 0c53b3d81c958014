from __future__ import annotations

import asyncio
import sys
import time
import unittest

from transcript_engine.adapters.process import ProcessResult, run_process


def test_error_message_prefers_stderr_then_stdout() -> None:
    assert ProcessResult(1, "out", " err \n").error_message("fallback") == "err"
    assert ProcessResult(1, "out\n", "").error_message("fallback") == "out"
    assert ProcessResult(1, "", "").error_message("fallback") == "fallback"


class RunProcessTests(unittest.TestCase):
    def test_timeout_kills_the_child_and_flags_result(self) -> None:
        cmd = [sys.executable, "-c", "import sys, time; print('started', flush=True); time.sleep(30)"]

        started = time.monotonic()
        result = asyncio.run(run_process(cmd, timeout_s=0.5))
        elapsed = time.monotonic() - started

        self.assertTrue(result.timed_out)
        self.assertNotEqual(result.returncode, 0)
        self.assertLess(elapsed, 10.0)

    def test_output_is_capped_and_lines_are_streamed(self) -> None:
        cmd = [sys.executable, "-c", "for i in range(3): print('line', i)"]
        lines: list[str] = []

        result = asyncio.run(run_process(cmd, timeout_s=10, stdout_limit=8, on_stdout_line=lines.append))

        self.assertFalse(result.timed_out)
        self.assertEqual(result.returncode, 0)
        self.assertEqual(lines, ["line 0", "line 1", "line 2"])
        self.assertLessEqual(len(result.stdout), 8)

    def test_stdin_is_forwarded(self) -> None:
        cmd = [sys.executable, "-c", "import sys; sys.stdout.write(sys.stdin.read().upper())"]

        result = asyncio.run(run_process(cmd, timeout_s=10, stdin_data=b"abc"))

        self.assertEqual(result.stdout, "ABC")

    def test_missing_binary_raises_os_error(self) -> None:
        with self.assertRaises(OSError):
            asyncio.run(run_process(["definitely-not-a-binary-xyz"], timeout_s=5))


if __name__ == "__main__":
    unittest.main()
