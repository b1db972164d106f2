# src/rendering/retry.py - v2
"""Per-record retry policy with linear backoff.

Only UpstreamTransient and RenderTimeout are retried. The n-th retry waits
``base_delay * n``. A cancel signal cuts a backoff short, in which case the
last error is raised as the final outcome.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import TypeVar

from bulkdoc.core.errors import RETRYABLE_ERRORS, BulkDocError

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass(frozen=True)
class RetryPolicy:
    """Retry configuration for one batch."""

    attempts: int
    base_delay_s: float

    @classmethod
    def from_ms(cls, attempts: int, base_delay_ms: int) -> RetryPolicy:
        return cls(attempts=attempts, base_delay_s=base_delay_ms / 1000.0)

    @property
    def max_calls(self) -> int:
        return self.attempts + 1

    def delay_for(self, retry: int) -> float:
        """Delay before the ``retry``-th retry (1-based)."""
        return self.base_delay_s * retry


def is_retryable(error: BaseException) -> bool:
    return isinstance(error, RETRYABLE_ERRORS)


async def sleep_unless_cancelled(delay: float, cancel: asyncio.Event | None) -> bool:
    """Sleep for ``delay`` seconds; return True if ``cancel`` fired first."""
    if cancel is None:
        await asyncio.sleep(delay)
        return False
    if cancel.is_set():
        return True
    try:
        await asyncio.wait_for(cancel.wait(), timeout=delay)
    except asyncio.TimeoutError:
        return False
    return True


async def with_retry(
    fn: Callable[[int], Awaitable[T]],
    policy: RetryPolicy,
    label: str = "render",
    cancel: asyncio.Event | None = None,
) -> T:
    """Call ``fn(attempt)`` until it succeeds or the policy is exhausted.

    Raises:
        The last error once retries are exhausted, cancelled during a
        backoff, or on the first non-retryable error.
    """
    attempt = 0
    while True:
        attempt += 1
        try:
            return await fn(attempt)
        except RETRYABLE_ERRORS as e:
            if attempt > policy.attempts:
                raise
            delay = policy.delay_for(attempt)
            code = e.code if isinstance(e, BulkDocError) else type(e).__name__
            logger.warning(
                "%s - %s (attempt %d/%d), retrying in %.2fs",
                label, code, attempt, policy.max_calls, delay,
            )
            if await sleep_unless_cancelled(delay, cancel):
                logger.info("%s - cancelled during backoff", label)
                raise
