"""
Rate Limiter: per-key request throttling by tier.

Tiers (see toolshub.pricing):
  - free: 1 req/s and 100 calls per UTC day
  - paid: 10 req/s, no daily cap

Per-second is checked first, then (free only) the daily quota. A denial is
a structured RateLimitResult, never an exception. Backend errors (Redis
down, timeouts) do propagate; the orchestrator turns them into a 500 so
the call is denied.

Counter backends:
  - memory: thread-safe sliding windows (single process). Resets on restart.
  - redis:  fixed windows via a Lua check-and-increment script, shared by
            every instance. Select with TOOLSHUB_RATE_LIMIT_BACKEND=redis.

In both backends "check limit, then count" is a single atomic step per
key, so concurrent callers cannot both take the last slot.
"""
from __future__ import annotations

import logging
import math
import time
from collections import defaultdict
from dataclasses import dataclass
from datetime import datetime, timezone
from threading import Lock
from typing import Optional, Tuple

import redis.asyncio as aioredis

from toolshub.config import settings
from toolshub.pricing import tier_for

logger = logging.getLogger(__name__)

SECOND_WINDOW_S = 1
DAY_WINDOW_S = 86_400

ERROR_PER_SECOND = "per-second"
ERROR_DAILY = "daily"


@dataclass(frozen=True)
class RateLimitResult:
    allowed: bool
    error_type: Optional[str] = None
    message: Optional[str] = None
    remaining_daily: Optional[int] = None


# ---------------------------------------------------------------------------
# Backends
# ---------------------------------------------------------------------------

class CounterBackend:
    """Atomic "count this event if fewer than *limit* happened in the window"."""

    async def acquire(self, key: str, limit: int, window_s: int) -> Tuple[bool, int]:
        """Returns (allowed, count). count includes this event when allowed."""
        raise NotImplementedError

    async def reset(self) -> None:
        pass

    async def close(self) -> None:
        pass


class _SlidingWindow:
    """Thread-safe sliding-window counter for a single key."""

    __slots__ = ("_timestamps", "_lock")

    def __init__(self):
        self._timestamps: list[float] = []
        self._lock = Lock()

    def try_acquire(self, limit: int, window_s: float, now: float) -> Tuple[bool, int]:
        """Prune, then record *now* only if under *limit*."""
        cutoff = now - window_s
        with self._lock:
            self._timestamps = [t for t in self._timestamps if t > cutoff]
            if len(self._timestamps) >= limit:
                return False, len(self._timestamps)
            self._timestamps.append(now)
            return True, len(self._timestamps)

    def last_seen(self) -> float:
        with self._lock:
            return self._timestamps[-1] if self._timestamps else 0.0


class InMemoryCounterBackend(CounterBackend):
    _EVICT_EVERY = 1_000

    def __init__(self) -> None:
        self._windows: dict[str, _SlidingWindow] = defaultdict(_SlidingWindow)
        self._lock = Lock()
        self._calls = 0

    def _window(self, key: str) -> _SlidingWindow:
        with self._lock:
            self._calls += 1
            if self._calls % self._EVICT_EVERY == 0:
                self._evict_idle(time.time())
            return self._windows[key]

    def _evict_idle(self, now: float) -> None:
        # Caller holds self._lock
        idle = [k for k, w in self._windows.items() if now - w.last_seen() > DAY_WINDOW_S]
        for key in idle:
            del self._windows[key]

    async def acquire(self, key: str, limit: int, window_s: int) -> Tuple[bool, int]:
        return self._window(key).try_acquire(limit, window_s, time.time())

    async def reset(self) -> None:
        with self._lock:
            self._windows.clear()
            self._calls = 0


_CHECK_AND_INCR_LUA = """
local current = tonumber(redis.call('GET', KEYS[1]) or '0')
local limit = tonumber(ARGV[1])
if current >= limit then
  return {0, current}
end
current = redis.call('INCR', KEYS[1])
if current == 1 then
  redis.call('EXPIRE', KEYS[1], ARGV[2])
end
return {1, current}
"""


class RedisCounterBackend(CounterBackend):
    """Fixed-window counters in Redis, keyed ``ratelimit:<key>:<bucket>``."""

    def __init__(self, url: str, timeout_s: float) -> None:
        self._client = aioredis.Redis.from_url(
            url,
            decode_responses=True,
            socket_timeout=timeout_s,
            socket_connect_timeout=timeout_s,
        )
        self._script = self._client.register_script(_CHECK_AND_INCR_LUA)

    async def acquire(self, key: str, limit: int, window_s: int) -> Tuple[bool, int]:
        bucket = int(time.time() // window_s)
        redis_key = f"ratelimit:{key}:{bucket}"
        allowed, count = await self._script(keys=[redis_key], args=[limit, math.ceil(window_s) + 1])
        return bool(int(allowed)), int(count)

    async def close(self) -> None:
        await self._client.aclose()


# ---------------------------------------------------------------------------
# Limiter
# ---------------------------------------------------------------------------

def _utc_day() -> str:
    return datetime.now(timezone.utc).strftime("%Y-%m-%d")


class RateLimiter:
    def __init__(self, backend: CounterBackend) -> None:
        self.backend = backend

    async def check_rate_limits(self, key_id: str, is_paid: bool) -> RateLimitResult:
        """Per-second then daily check for *key_id* at the tier *is_paid* selects."""
        tier = tier_for(is_paid)

        allowed, _ = await self.backend.acquire(
            f"second:{key_id}", tier.requests_per_second, SECOND_WINDOW_S
        )
        if not allowed:
            logger.info("Rate limited (per-second): key=%s tier=%s", key_id, tier.name)
            return RateLimitResult(
                allowed=False,
                error_type=ERROR_PER_SECOND,
                message=(
                    f"Rate limit exceeded: maximum {tier.requests_per_second} "
                    f"request(s) per second on the {tier.name} tier"
                ),
            )

        if tier.daily_limit is None:
            return RateLimitResult(allowed=True)

        return await self.check_daily_quota(key_id, tier.daily_limit)

    async def check_daily_quota(self, key_id: str, limit: int) -> RateLimitResult:
        """Count one call against *key_id*'s allowance for the current UTC day."""
        allowed, count = await self.backend.acquire(f"daily:{key_id}:{_utc_day()}", limit, DAY_WINDOW_S)
        if not allowed:
            logger.info("Rate limited (daily): key=%s limit=%d", key_id, limit)
            return RateLimitResult(
                allowed=False,
                error_type=ERROR_DAILY,
                message=f"Daily limit of {limit} calls reached. Add funds for unlimited daily usage.",
                remaining_daily=0,
            )
        return RateLimitResult(allowed=True, remaining_daily=max(0, limit - count))

    async def reset(self) -> None:
        await self.backend.reset()

    async def close(self) -> None:
        await self.backend.close()


_rate_limiter: Optional[RateLimiter] = None


def _build_backend() -> CounterBackend:
    if settings.rate_limit_backend == "redis":
        if not settings.redis_url:
            raise RuntimeError("TOOLSHUB_RATE_LIMIT_BACKEND=redis requires TOOLSHUB_REDIS_URL")
        logger.info("Rate limiter using Redis backend")
        return RedisCounterBackend(settings.redis_url, settings.store_timeout_s)
    logger.info("Rate limiter using in-memory backend (single instance only)")
    return InMemoryCounterBackend()


def get_rate_limiter() -> RateLimiter:
    global _rate_limiter
    if _rate_limiter is None:
        _rate_limiter = RateLimiter(_build_backend())
    return _rate_limiter


async def close_rate_limiter() -> None:
    global _rate_limiter
    if _rate_limiter is not None:
        await _rate_limiter.close()
        _rate_limiter = None
