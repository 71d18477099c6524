"""Request spacing for the sports-data feed.

SportMonks counts calls per endpoint, so every process that talks to it
(API workers, Celery workers, beat) shares one interval per endpoint through
Redis. Without ``REDIS_URL`` each process spaces its own calls in memory.
"""

import asyncio
import time
from typing import Protocol

import redis.asyncio as redis
import structlog

from bitredict.config import Settings

logger = structlog.get_logger(__name__)


class RequestLimiter(Protocol):
    async def wait_if_needed(self, endpoint: str = "default") -> None: ...


class MinIntervalLimiter:
    """Keeps at least ``interval`` seconds between calls to the same endpoint in this process."""

    def __init__(self, interval: float):
        self.interval = interval
        self._last_call: dict[str, float] = {}
        self._locks: dict[str, asyncio.Lock] = {}

    async def wait_if_needed(self, endpoint: str = "default") -> None:
        lock = self._locks.setdefault(endpoint, asyncio.Lock())
        async with lock:
            last = self._last_call.get(endpoint)
            if last is not None:
                wait_time = self.interval - (time.monotonic() - last)
                if wait_time > 0:
                    logger.debug("rate_limited", endpoint=endpoint, wait_time=wait_time)
                    await asyncio.sleep(wait_time)
            self._last_call[endpoint] = time.monotonic()


class RedisIntervalLimiter:
    """
    Minimum interval between calls to an endpoint, shared through Redis.

    A call claims the endpoint with ``SET key NX PX interval``; while the key
    lives every other caller waits out its remaining TTL. Redis failures fail
    open so the feed keeps working when Redis is down.
    """

    def __init__(
        self,
        redis_client: redis.Redis,
        interval: float,
        key_prefix: str = "ratelimit:sportmonks",
        max_wait: float = 30.0,
    ):
        """
        Args:
            redis_client: Redis client for shared state
            interval: Seconds between calls to the same endpoint
            key_prefix: Redis key prefix
            max_wait: Give up waiting after this many seconds and proceed
        """
        self.redis = redis_client
        self.interval = interval
        self.key_prefix = key_prefix
        self.max_wait = max_wait

    def _get_key(self, endpoint: str) -> str:
        return f"{self.key_prefix}:{endpoint}"

    async def acquire(self, endpoint: str = "default") -> float:
        """Claim the endpoint. Returns 0 on success, else seconds until it frees up."""
        key = self._get_key(endpoint)
        interval_ms = max(1, int(self.interval * 1000))
        try:
            if await self.redis.set(key, "1", nx=True, px=interval_ms):
                return 0.0
            ttl_ms = await self.redis.pttl(key)
        except (redis.RedisError, OSError) as e:
            logger.error("rate_limiter_error", error=str(e), endpoint=endpoint)
            return 0.0
        # -2: expired between SET and PTTL, -1: no TTL (should not happen)
        if ttl_ms is None or ttl_ms < 0:
            return 0.001
        return max(ttl_ms, 1) / 1000

    async def wait_if_needed(self, endpoint: str = "default") -> None:
        total_wait = 0.0
        while True:
            wait_time = await self.acquire(endpoint)
            if wait_time <= 0:
                return
            if total_wait >= self.max_wait:
                logger.warning("rate_limiter_max_wait_exceeded", endpoint=endpoint, total_wait=total_wait)
                return
            wait_time = min(wait_time, self.max_wait - total_wait)
            logger.debug("rate_limited", endpoint=endpoint, wait_time=wait_time)
            await asyncio.sleep(wait_time)
            total_wait += wait_time


def build_limiter(settings: Settings, redis_client: redis.Redis | None = None) -> RequestLimiter:
    """Redis-shared limiter when Redis is configured, in-process spacing otherwise."""
    interval = settings.sportmonks_min_interval_seconds
    if redis_client is None and settings.redis_url:
        redis_client = redis.from_url(settings.redis_url)
    if redis_client is not None:
        return RedisIntervalLimiter(redis_client, interval)
    return MinIntervalLimiter(interval)
