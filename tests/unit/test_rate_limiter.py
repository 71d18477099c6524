"""Unit tests for sports-data request spacing.

CRITICAL TESTS:
- With Redis configured, processes share one interval per endpoint
- A Redis failure lets the request through
- Without Redis, spacing falls back to this process
"""

from unittest.mock import AsyncMock

import pytest
import redis.asyncio as redis

from bitredict.services.results import rate_limiter
from bitredict.services.results.rate_limiter import (
    MinIntervalLimiter,
    RedisIntervalLimiter,
    build_limiter,
)
from bitredict.services.results.sportmonks import SportMonksFeed


class FakeRedis:
    """Just enough of redis.asyncio.Redis for SET NX PX and PTTL."""

    def __init__(self, ttl_ms=400):
        self.keys: dict[str, int] = {}
        self.ttl_ms = ttl_ms
        self.set_calls: list[tuple[str, int]] = []
        self.error: Exception | None = None

    async def set(self, key, value, nx=False, px=None):
        if self.error is not None:
            raise self.error
        self.set_calls.append((key, px))
        if nx and key in self.keys:
            return None
        self.keys[key] = px
        return True

    async def pttl(self, key):
        return self.ttl_ms if key in self.keys else -2

    def expire_all(self):
        self.keys.clear()


@pytest.fixture
def fake_redis():
    return FakeRedis()


@pytest.fixture
def sleep(monkeypatch, fake_redis):
    """Sleeping lets the held key expire."""

    async def _sleep(seconds):
        fake_redis.expire_all()

    mock = AsyncMock(side_effect=_sleep)
    monkeypatch.setattr(rate_limiter.asyncio, "sleep", mock)
    return mock


class TestRedisIntervalLimiter:
    """Test endpoint spacing shared through Redis."""

    async def test_first_call_claims_endpoint(self, fake_redis, sleep):
        limiter = RedisIntervalLimiter(fake_redis, 1.5)

        await limiter.wait_if_needed("fixtures_multi")

        assert fake_redis.set_calls == [("ratelimit:sportmonks:fixtures_multi", 1500)]
        sleep.assert_not_awaited()

    async def test_second_caller_waits_out_ttl(self, fake_redis, sleep):
        """Two limiters stand in for two worker processes sharing one Redis."""
        first = RedisIntervalLimiter(fake_redis, 1.0)
        second = RedisIntervalLimiter(fake_redis, 1.0)

        await first.wait_if_needed("fixtures_multi")
        await second.wait_if_needed("fixtures_multi")

        sleep.assert_awaited_once_with(0.4)
        assert len(fake_redis.set_calls) == 3

    async def test_endpoints_spaced_independently(self, fake_redis, sleep):
        limiter = RedisIntervalLimiter(fake_redis, 1.0)

        await limiter.wait_if_needed("fixtures_multi")
        await limiter.wait_if_needed("livescores")

        sleep.assert_not_awaited()

    async def test_redis_error_fails_open(self, fake_redis, sleep):
        fake_redis.error = redis.ConnectionError("connection refused")
        limiter = RedisIntervalLimiter(fake_redis, 1.0)

        await limiter.wait_if_needed("fixtures_multi")
        await limiter.wait_if_needed("fixtures_multi")

        sleep.assert_not_awaited()

    async def test_gives_up_after_max_wait(self, fake_redis, monkeypatch):
        sleep = AsyncMock()
        monkeypatch.setattr(rate_limiter.asyncio, "sleep", sleep)
        fake_redis.ttl_ms = 1000
        limiter = RedisIntervalLimiter(fake_redis, 1.0, max_wait=2.5)
        fake_redis.keys[limiter._get_key("fixtures_multi")] = 1000

        await limiter.wait_if_needed("fixtures_multi")

        assert [call.args[0] for call in sleep.await_args_list] == [1.0, 1.0, 0.5]


class TestBuildLimiter:
    """Test limiter selection from settings."""

    def test_in_process_without_redis_url(self, settings):
        limiter = build_limiter(settings.model_copy(update={"redis_url": None}))

        assert isinstance(limiter, MinIntervalLimiter)
        assert limiter.interval == settings.sportmonks_min_interval_seconds

    def test_redis_when_configured(self, settings):
        limiter = build_limiter(settings.model_copy(update={"redis_url": "redis://localhost:6379/0"}))

        assert isinstance(limiter, RedisIntervalLimiter)
        assert limiter.key_prefix == "ratelimit:sportmonks"

    def test_given_client_used(self, settings, fake_redis):
        limiter = build_limiter(settings.model_copy(update={"redis_url": None}), redis_client=fake_redis)

        assert isinstance(limiter, RedisIntervalLimiter)
        assert limiter.redis is fake_redis

    async def test_feed_closes_redis_client_it_built(self, settings):
        feed = SportMonksFeed(settings.model_copy(update={"redis_url": "redis://localhost:6379/0"}))
        feed.limiter.redis = AsyncMock()

        await feed.__aexit__(None, None, None)

        feed.limiter.redis.aclose.assert_awaited_once()
