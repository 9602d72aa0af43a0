"""
Rate Limiter - sliding window request limiting for the public read path.

The limiter is a thin policy layer (limit, window, fail-open) over a
pluggable counter:

- InMemorySlidingWindowCounter: per-key timestamp deques, correct only for a
  single process
- RedisSlidingWindowCounter: sorted set per key updated by one atomic Lua
  script, shared by every worker process

If the counter raises (Redis down, not initialized), the request is allowed
when fail_open is set and rejected otherwise.

Usage:
    from lead_engine.middleware.rate_limiter import rate_limiter

    allowed, info = await rate_limiter.check_ip_rate_limit("203.0.113.9")
    if not allowed:
        raise HTTPException(429, detail="Rate limit exceeded")
"""

import asyncio
import time
from collections import deque
from collections.abc import Callable

from lead_engine.config import settings
from lead_engine.infrastructure.observability.logging import get_logger
from lead_engine.services.redis_client import FastRedisClient, fast_redis

logger = get_logger(__name__)


class SlidingWindowCounter:
    """
    Record a hit for key if fewer than limit hits fall inside the window.

    Returns (allowed, current_count, oldest_timestamp). oldest_timestamp is
    only meaningful when the hit was refused (0 otherwise).
    """

    async def hit(self, key: str, limit: int, window_seconds: int) -> tuple[bool, int, float]:
        raise NotImplementedError


class InMemorySlidingWindowCounter(SlidingWindowCounter):
    def __init__(self, clock: Callable[[], float] = time.time):
        self.clock = clock
        self._hits: dict[str, deque[float]] = {}
        self._lock = asyncio.Lock()

    async def hit(self, key: str, limit: int, window_seconds: int) -> tuple[bool, int, float]:
        async with self._lock:
            now = self.clock()
            hits = self._hits.setdefault(key, deque())
            while hits and hits[0] <= now - window_seconds:
                hits.popleft()

            if len(hits) >= limit:
                return False, len(hits), hits[0]

            hits.append(now)
            self._prune(now, window_seconds)
            return True, len(hits), 0

    def _prune(self, now: float, window_seconds: int) -> None:
        # Drop idle keys so the map does not grow with every distinct IP seen
        stale = [k for k, v in self._hits.items() if not v or v[-1] <= now - window_seconds]
        for k in stale:
            del self._hits[k]

    def reset(self) -> None:
        self._hits.clear()


class RedisSlidingWindowCounter(SlidingWindowCounter):
    # Returns: {allowed (0 or 1), current_count, oldest_timestamp or 0}
    RATE_LIMIT_LUA_SCRIPT = """
    local key = KEYS[1]
    local limit = tonumber(ARGV[1])
    local window_seconds = tonumber(ARGV[2])
    local current_time = tonumber(ARGV[3])
    local unique_id = ARGV[4]

    -- Remove entries older than the window
    local window_start = current_time - window_seconds
    redis.call('ZREMRANGEBYSCORE', key, 0, window_start)

    local current_count = redis.call('ZCARD', key)

    if current_count >= limit then
        local oldest_entries = redis.call('ZRANGE', key, 0, 0, 'WITHSCORES')
        local oldest_timestamp = 0
        if #oldest_entries > 0 then
            oldest_timestamp = tonumber(oldest_entries[2])
        end
        return {0, current_count, oldest_timestamp}
    end

    redis.call('ZADD', key, current_time, unique_id)
    redis.call('EXPIRE', key, window_seconds * 2)

    return {1, current_count + 1, 0}
    """

    def __init__(self, client: FastRedisClient = fast_redis, namespace: str = "ratelimit"):
        self.client = client
        self.namespace = namespace

    async def hit(self, key: str, limit: int, window_seconds: int) -> tuple[bool, int, float]:
        current_time = int(time.time())
        unique_id = f"{current_time}:{time.time_ns()}"
        result = await self.client.eval(
            self.RATE_LIMIT_LUA_SCRIPT,
            1,
            f"{self.namespace}:{key}",
            limit,
            window_seconds,
            current_time,
            unique_id,
        )
        return bool(result[0]), int(result[1]), float(result[2] or 0)


def build_counter(backend: str | None = None) -> SlidingWindowCounter:
    backend = (backend or settings.RATE_LIMIT_BACKEND).lower()
    if backend == "redis":
        return RedisSlidingWindowCounter()
    if backend != "memory":
        logger.warning("Unknown rate limit backend, using in-memory counter", backend=backend)
    return InMemorySlidingWindowCounter()


class RateLimiter:
    """
    Sliding window rate limiter.

    Example:
        With 10 req/min, a caller who made 10 requests between 10:00:00 and
        10:00:30 gets its next slot when the first of them leaves the window,
        never a burst of 20 across the minute boundary.
    """

    def __init__(
        self,
        counter: SlidingWindowCounter | None = None,
        default_limit: int = 10,
        window_seconds: int = 60,
        fail_open: bool = True,
    ):
        self.counter = counter or InMemorySlidingWindowCounter()
        self.default_limit = default_limit
        self.window_seconds = window_seconds
        self.fail_open = fail_open

    async def check_rate_limit(
        self,
        key: str,
        limit: int | None = None,
        window_seconds: int | None = None,
    ) -> tuple[bool, dict]:
        """
        Check and count one request for key.

        Returns:
            Tuple of (allowed, info) where info carries limit, remaining and
            retry_after (seconds, set when refused).
        """
        limit = limit or self.default_limit
        window_seconds = window_seconds or self.window_seconds

        try:
            allowed, current_count, oldest_timestamp = await self.counter.hit(key, limit, window_seconds)
        except Exception as e:
            logger.error(
                "Rate limiter counter error",
                error=str(e),
                error_type=type(e).__name__,
                key=key,
                limit=limit,
            )
            if self.fail_open:
                return True, self._create_info_dict(
                    allowed=True, limit=limit, remaining=limit, error="rate_limiter_error"
                )
            return False, self._create_info_dict(
                allowed=False, limit=limit, remaining=0, retry_after=window_seconds, error="rate_limiter_error"
            )

        if not allowed:
            if oldest_timestamp > 0:
                retry_after = max(1, int(oldest_timestamp + window_seconds - time.time()) + 1)
                retry_after = min(retry_after, window_seconds)
            else:
                retry_after = window_seconds
            return False, self._create_info_dict(
                allowed=False,
                limit=limit,
                remaining=0,
                retry_after=retry_after,
                window_seconds=window_seconds,
            )

        return True, self._create_info_dict(
            allowed=True,
            limit=limit,
            remaining=max(0, limit - current_count),
            window_seconds=window_seconds,
        )

    async def check_ip_rate_limit(self, ip_address: str, limit: int | None = None) -> tuple[bool, dict]:
        return await self.check_rate_limit(key=f"ip:{ip_address}", limit=limit)

    def _create_info_dict(
        self,
        allowed: bool,
        limit: int,
        remaining: int,
        retry_after: int | None = None,
        window_seconds: int | None = None,
        error: str | None = None,
    ) -> dict:
        info = {
            "allowed": allowed,
            "limit": limit,
            "remaining": remaining,
            "retry_after": retry_after,
        }
        if window_seconds is not None:
            info["window_seconds"] = window_seconds
        if error:
            info["error"] = error
        return info


# Global singleton
rate_limiter = RateLimiter(
    counter=build_counter(),
    default_limit=settings.get_rate_limits()["public_per_window"],
    window_seconds=settings.RATE_LIMIT_WINDOW_SECONDS,
    fail_open=settings.RATE_LIMIT_FAIL_OPEN,
)
