from __future__ import annotations

import asyncio
import time
from collections import deque
from collections.abc import Callable


class RateLimiter:
    """Sliding-window limit on job starts: at most ``max_jobs`` per ``duration_ms``."""

    def __init__(self, max_jobs: int, duration_ms: int, clock: Callable[[], float] = time.monotonic):
        if max_jobs < 1 or duration_ms < 1:
            raise ValueError("rate limit needs max_jobs >= 1 and duration_ms >= 1")
        self.max_jobs = max_jobs
        self.duration = duration_ms / 1000
        self.clock = clock
        self._starts: deque[float] = deque()

    def _trim(self, now: float) -> None:
        while self._starts and now - self._starts[0] >= self.duration:
            self._starts.popleft()

    def wait_time(self) -> float:
        now = self.clock()
        self._trim(now)
        if len(self._starts) < self.max_jobs:
            return 0.0
        return self._starts[0] + self.duration - now

    def try_acquire(self) -> bool:
        if self.wait_time() > 0:
            return False
        self._starts.append(self.clock())
        return True

    async def acquire(self) -> None:
        while not self.try_acquire():
            await asyncio.sleep(max(self.wait_time(), 0.01))
