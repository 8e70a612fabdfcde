"""
Tests for the per-key rate limiter: tiers, daily quota and backends.
"""

from unittest.mock import AsyncMock

import pytest

from toolshub.pricing import FREE_TIER, PAID_TIER
from toolshub.services.rate_limiter import (
    ERROR_DAILY,
    ERROR_PER_SECOND,
    InMemoryCounterBackend,
    RateLimiter,
    RedisCounterBackend,
    _SlidingWindow,
)


@pytest.fixture
def limiter():
    return RateLimiter(InMemoryCounterBackend())


# ---------------------------------------------------------------------------
# Sliding window
# ---------------------------------------------------------------------------

class TestSlidingWindow:
    def test_allows_up_to_limit(self):
        window = _SlidingWindow()
        assert window.try_acquire(2, 1, now=100.0) == (True, 1)
        assert window.try_acquire(2, 1, now=100.1) == (True, 2)
        assert window.try_acquire(2, 1, now=100.2) == (False, 2)

    def test_old_events_expire(self):
        window = _SlidingWindow()
        window.try_acquire(1, 1, now=100.0)
        assert window.try_acquire(1, 1, now=100.5)[0] is False
        assert window.try_acquire(1, 1, now=101.5)[0] is True


# ---------------------------------------------------------------------------
# Tiers
# ---------------------------------------------------------------------------

class TestTiers:
    @pytest.mark.asyncio
    async def test_free_tier_per_second(self, limiter):
        first = await limiter.check_rate_limits("key-1", is_paid=False)
        second = await limiter.check_rate_limits("key-1", is_paid=False)
        assert first.allowed is True
        assert first.remaining_daily == FREE_TIER.daily_limit - 1
        assert second.allowed is False
        assert second.error_type == ERROR_PER_SECOND

    @pytest.mark.asyncio
    async def test_paid_tier_allows_burst(self, limiter):
        results = [await limiter.check_rate_limits("key-1", is_paid=True) for _ in range(PAID_TIER.requests_per_second)]
        assert all(r.allowed for r in results)
        assert all(r.remaining_daily is None for r in results)

        over = await limiter.check_rate_limits("key-1", is_paid=True)
        assert over.allowed is False
        assert over.error_type == ERROR_PER_SECOND

    @pytest.mark.asyncio
    async def test_keys_are_independent(self, limiter):
        await limiter.check_rate_limits("key-1", is_paid=False)
        other = await limiter.check_rate_limits("key-2", is_paid=False)
        assert other.allowed is True

    @pytest.mark.asyncio
    async def test_reset_clears_counters(self, limiter):
        await limiter.check_rate_limits("key-1", is_paid=False)
        await limiter.reset()
        assert (await limiter.check_rate_limits("key-1", is_paid=False)).allowed is True


# ---------------------------------------------------------------------------
# Daily quota
# ---------------------------------------------------------------------------

class TestDailyQuota:
    @pytest.mark.asyncio
    async def test_counts_down_then_denies(self, limiter):
        remaining = [(await limiter.check_daily_quota("sandbox", 3)).remaining_daily for _ in range(3)]
        assert remaining == [2, 1, 0]

        denied = await limiter.check_daily_quota("sandbox", 3)
        assert denied.allowed is False
        assert denied.error_type == ERROR_DAILY
        assert denied.remaining_daily == 0
        assert "Daily limit of 3 calls" in denied.message


# ---------------------------------------------------------------------------
# Redis backend (script mocked)
# ---------------------------------------------------------------------------

class TestRedisBackend:
    @pytest.mark.asyncio
    async def test_acquire_uses_windowed_key(self):
        backend = RedisCounterBackend("redis://localhost:6379/0", timeout_s=1.0)
        backend._script = AsyncMock(return_value=[1, 4])

        allowed, count = await backend.acquire("second:key-1", 10, 1)

        assert (allowed, count) == (True, 4)
        kwargs = backend._script.await_args.kwargs
        assert kwargs["keys"][0].startswith("ratelimit:second:key-1:")
        assert kwargs["args"] == [10, 2]

    @pytest.mark.asyncio
    async def test_denial_passes_through(self):
        backend = RedisCounterBackend("redis://localhost:6379/0", timeout_s=1.0)
        backend._script = AsyncMock(return_value=[0, 10])

        limiter = RateLimiter(backend)
        result = await limiter.check_rate_limits("key-1", is_paid=True)

        assert result.allowed is False
        assert result.error_type == ERROR_PER_SECOND
