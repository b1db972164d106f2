# tests/unit/rendering/test_unit_rate_limiter.py - v1
"""Tests for rendering/rate_limiter.py - budget, FIFO order, cancellation."""

from __future__ import annotations

import asyncio

import pytest

from bulkdoc.rendering.rate_limiter import RateLimiter


class FakeClock:
    def __init__(self) -> None:
        self.now = 0.0

    def __call__(self) -> float:
        return self.now


class TestRateLimiterBudget:
    def test_invalid_arguments(self):
        with pytest.raises(ValueError):
            RateLimiter(0, 1000)
        with pytest.raises(ValueError):
            RateLimiter(1, 0)

    @pytest.mark.asyncio
    async def test_grants_up_to_budget_immediately(self):
        clock = FakeClock()
        limiter = RateLimiter(3, 1000, clock=clock)
        for _ in range(3):
            await limiter.acquire()
        assert limiter.available() == 0
        stats = limiter.stats()
        assert stats.in_window == 3
        assert stats.total_acquired == 3

    @pytest.mark.asyncio
    async def test_window_slides(self):
        clock = FakeClock()
        limiter = RateLimiter(2, 1000, clock=clock)
        await limiter.acquire()
        clock.now = 0.5
        await limiter.acquire()
        clock.now = 1.0
        assert limiter.available() == 1
        clock.now = 1.5
        assert limiter.available() == 2

    @pytest.mark.asyncio
    async def test_rolling_window_compliance(self):
        limiter = RateLimiter(5, 100)
        grants = await asyncio.gather(*(limiter.acquire() for _ in range(15)))
        grants = sorted(grants)
        for i, start in enumerate(grants):
            in_window = [g for g in grants[i:] if g - start < 0.1]
            assert len(in_window) <= 5


class TestRateLimiterOrdering:
    @pytest.mark.asyncio
    async def test_fifo_among_waiters(self):
        limiter = RateLimiter(1, 30)
        order: list[int] = []

        async def take(i: int) -> None:
            await limiter.acquire()
            order.append(i)

        tasks = []
        for i in range(5):
            tasks.append(asyncio.create_task(take(i)))
            await asyncio.sleep(0)
        await asyncio.gather(*tasks)
        assert order == [0, 1, 2, 3, 4]

    @pytest.mark.asyncio
    async def test_cancelled_waiter_does_not_consume(self):
        limiter = RateLimiter(1, 100)
        await limiter.acquire()
        waiter = asyncio.create_task(limiter.acquire())
        await asyncio.sleep(0.01)
        assert limiter.stats().waiting == 1
        waiter.cancel()
        with pytest.raises(asyncio.CancelledError):
            await waiter
        assert limiter.stats().waiting == 0
        assert limiter.stats().total_acquired == 1
        await asyncio.sleep(0.11)
        assert limiter.available() == 1
