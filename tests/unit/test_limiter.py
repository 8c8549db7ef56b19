from __future__ import annotations

import asyncio

import pytest

from jobflow.queue.limiter import RateLimiter


class FakeClock:
    def __init__(self) -> None:
        self.now = 100.0

    def __call__(self) -> float:
        return self.now


def test_limiter_blocks_within_window() -> None:
    clock = FakeClock()
    limiter = RateLimiter(2, 1000, clock=clock)

    assert limiter.try_acquire() is True
    assert limiter.try_acquire() is True
    assert limiter.try_acquire() is False
    assert limiter.wait_time() == pytest.approx(1.0)

    clock.now += 0.5
    assert limiter.wait_time() == pytest.approx(0.5)

    clock.now += 0.5
    assert limiter.try_acquire() is True


def test_limiter_rejects_invalid_limits() -> None:
    with pytest.raises(ValueError):
        RateLimiter(0, 1000)
    with pytest.raises(ValueError):
        RateLimiter(1, 0)


def test_acquire_returns_immediately_with_capacity() -> None:
    limiter = RateLimiter(1, 60_000)

    asyncio.run(asyncio.wait_for(limiter.acquire(), timeout=1))

    assert limiter.try_acquire() is False
