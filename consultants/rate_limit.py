"""Per-agent sliding window rate limiter with sleep-until-admitted semantics."""

import asyncio
import logging
import time
from collections import defaultdict
from collections.abc import Awaitable, Callable

logger = logging.getLogger(__name__)


class SlidingWindowRateLimiter:
    """Sliding window rate limiter keyed by agent id.

    Tracks timestamps of admitted requests per key within the trailing window
    and pruned on every check. ``clock`` and ``sleep`` are injectable so tests
    can drive time by hand.
    """

    def __init__(
        self,
        window_sec: float = 60.0,
        default_limit: int = 30,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        if window_sec <= 0:
            raise ValueError("window_sec must be positive")
        if default_limit < 1:
            raise ValueError("default_limit must be at least 1")
        self.window_sec = window_sec
        self.default_limit = default_limit
        self._clock = clock
        self._sleep = sleep
        self._limits: dict[str, int] = {}
        self._timestamps: dict[str, list[float]] = defaultdict(list)
        self._locks: dict[str, asyncio.Lock] = {}

    def set_limit(self, key: str, max_per_window: int) -> None:
        if max_per_window < 1:
            raise ValueError(f"Rate limit for {key} must be at least 1")
        self._limits[key] = max_per_window

    def limit_for(self, key: str) -> int:
        return self._limits.get(key, self.default_limit)

    def _prune(self, key: str, now: float) -> list[float]:
        cutoff = now - self.window_sec
        ts = self._timestamps[key]
        ts[:] = [t for t in ts if t > cutoff]
        return ts

    def try_acquire(self, key: str) -> float:
        """Record a request if admitted.

        Returns:
            0.0 when admitted, otherwise seconds until the oldest timestamp
            leaves the window.
        """
        now = self._clock()
        ts = self._prune(key, now)
        if len(ts) < self.limit_for(key):
            ts.append(now)
            return 0.0
        return max(ts[0] + self.window_sec - now, 0.0)

    async def acquire(self, key: str) -> float:
        """Sleep until a slot is free, then take it. Returns total seconds waited."""
        lock = self._locks.setdefault(key, asyncio.Lock())
        waited = 0.0
        async with lock:
            while True:
                wait = self.try_acquire(key)
                if wait <= 0:
                    return waited
                logger.info("Rate limit reached for %s, waiting %.1fs", key, wait)
                await self._sleep(wait)
                waited += wait

    def usage(self, key: str) -> int:
        """Requests currently counted in the window for ``key``."""
        return len(self._prune(key, self._clock()))

    def reset(self, key: str | None = None) -> None:
        if key is None:
            self._timestamps.clear()
        else:
            self._timestamps.pop(key, None)
