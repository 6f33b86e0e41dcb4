"""Backpressure for inference calls."""

from __future__ import annotations

import asyncio
import time
from typing import Callable, Optional, Protocol

from config import Settings


class RateLimiter(Protocol):
    async def acquire(self) -> None:
        ...


class MinIntervalRateLimiter:
    """Keep at least `interval_seconds` between consecutive acquisitions."""

    def __init__(
        self,
        interval_seconds: float,
        *,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], "asyncio.Future"] = asyncio.sleep,
    ) -> None:
        self.interval_seconds = max(float(interval_seconds), 0.0)
        self._clock = clock
        self._sleep = sleep
        self._lock = asyncio.Lock()
        self._last: Optional[float] = None

    async def acquire(self) -> None:
        async with self._lock:
            now = self._clock()
            if self._last is not None:
                wait = self._last + self.interval_seconds - now
                if wait > 0:
                    await self._sleep(wait)
                    now = self._clock()
            self._last = now


class TokenBucketRateLimiter:
    """Allow bursts of `capacity` calls, refilled at `refill_per_second`."""

    def __init__(
        self,
        capacity: int,
        refill_per_second: float,
        *,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], "asyncio.Future"] = asyncio.sleep,
    ) -> None:
        if capacity < 1:
            raise ValueError("capacity must be >= 1")
        if refill_per_second <= 0:
            raise ValueError("refill_per_second must be > 0")
        self.capacity = capacity
        self.refill_per_second = refill_per_second
        self._clock = clock
        self._sleep = sleep
        self._lock = asyncio.Lock()
        self._tokens = float(capacity)
        self._updated = clock()

    def _refill(self) -> None:
        now = self._clock()
        elapsed = max(0.0, now - self._updated)
        self._tokens = min(float(self.capacity), self._tokens + elapsed * self.refill_per_second)
        self._updated = now

    async def acquire(self) -> None:
        async with self._lock:
            self._refill()
            if self._tokens < 1.0:
                await self._sleep((1.0 - self._tokens) / self.refill_per_second)
                self._refill()
            self._tokens = max(0.0, self._tokens - 1.0)


class NoopRateLimiter:
    async def acquire(self) -> None:
        return None


def build_rate_limiter(config: Settings) -> RateLimiter:
    interval = float(config.INFERENCE_MIN_INTERVAL_SECONDS)
    if interval <= 0:
        return NoopRateLimiter()
    if config.INFERENCE_RATE_LIMITER == "token_bucket":
        return TokenBucketRateLimiter(
            capacity=max(int(config.INFERENCE_BUCKET_CAPACITY), 1),
            refill_per_second=1.0 / interval,
        )
    return MinIntervalRateLimiter(interval)
