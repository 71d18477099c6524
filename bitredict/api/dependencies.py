"""FastAPI dependencies for Bitredict."""

from collections.abc import AsyncGenerator
from functools import lru_cache

import redis.asyncio as redis
from sqlalchemy.ext.asyncio import AsyncSession

from bitredict.config import get_settings
from bitredict.models.base import get_api_session_factory
from bitredict.services.chain import ChainGateway
from bitredict.services.coordinator import JobCoordinator
from bitredict.store import AlertStore, CronStore


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    """Get database session dependency."""
    async with get_api_session_factory()() as session:
        try:
            yield session
        except Exception:
            await session.rollback()
            raise
        finally:
            await session.close()


async def get_redis() -> AsyncGenerator[redis.Redis | None, None]:
    """Redis client, or None when REDIS_URL is not configured."""
    settings = get_settings()
    if not settings.redis_url:
        yield None
        return
    client = redis.from_url(settings.redis_url)
    try:
        yield client
    finally:
        await client.aclose()


@lru_cache
def get_gateway() -> ChainGateway:
    return ChainGateway(get_settings())


def get_coordinator() -> JobCoordinator:
    session_factory = get_api_session_factory()
    return JobCoordinator(
        CronStore(session_factory),
        alerts=AlertStore(session_factory),
        settings=get_settings(),
    )
