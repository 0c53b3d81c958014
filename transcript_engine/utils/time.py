from __future__ import annotations

import time
from dataclasses import dataclass


def now_unix_ms() -> int:
    return int(time.time() * 1000)


@dataclass(slots=True)
class Timer:
    start_s: float

    @classmethod
    def start(cls) -> "Timer":
        return cls(start_s=time.monotonic())

    def elapsed_ms(self) -> int:
        return max(0, int((time.monotonic() - self.start_s) * 1000))
