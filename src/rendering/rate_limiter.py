# src/rendering/rate_limiter.py - v1
"""Process-wide rolling-window limiter for upstream render calls.

At most ``requests`` acquisitions succeed in any ``window_ms`` span. Waiters
queue on an asyncio.Lock, which wakes them in FIFO order; only the head of
the queue sleeps on the window, so later arrivals never overtake it. A
waiter cancelled while queued or sleeping leaves without taking a slot.

The limiter belongs to one event loop; all batches of an engine share it.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections import deque
from collections.abc import Callable

from pydantic import BaseModel

logger = logging.getLogger(__name__)


class LimiterStats(BaseModel):
    requests: int
    window_ms: int
    in_window: int
    available: int
    waiting: int
    total_acquired: int


class RateLimiter:
    """Sliding-log limiter: R grants per rolling W milliseconds."""

    def __init__(
        self,
        requests: int,
        window_ms: int,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        if requests < 1 or window_ms < 1:
            raise ValueError("requests and window_ms must be positive")
        self._requests = requests
        self._window = window_ms / 1000.0
        self._clock = clock
        self._grants: deque[float] = deque()
        self._lock = asyncio.Lock()
        self._waiting = 0
        self._total = 0

    @property
    def requests(self) -> int:
        return self._requests

    @property
    def window_ms(self) -> int:
        return int(self._window * 1000)

    def _evict(self, now: float) -> None:
        while self._grants and now - self._grants[0] >= self._window:
            self._grants.popleft()

    async def acquire(self) -> float:
        """Wait for a slot; return the (clock) time it was granted."""
        self._waiting += 1
        try:
            async with self._lock:
                while True:
                    now = self._clock()
                    self._evict(now)
                    if len(self._grants) < self._requests:
                        self._grants.append(now)
                        self._total += 1
                        return now
                    delay = self._grants[0] + self._window - now
                    logger.debug("Rate budget exhausted, waiting %.3fs", delay)
                    await asyncio.sleep(delay)
        finally:
            self._waiting -= 1

    def available(self) -> int:
        """Slots free right now."""
        self._evict(self._clock())
        return self._requests - len(self._grants)

    def stats(self) -> LimiterStats:
        available = self.available()
        return LimiterStats(
            requests=self._requests,
            window_ms=self.window_ms,
            in_window=self._requests - available,
            available=available,
            waiting=self._waiting,
            total_acquired=self._total,
        )
