"""Health check endpoints."""

from datetime import datetime, timezone

import redis.asyncio as redis
from fastapi import APIRouter, Depends
from pydantic import BaseModel
from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession

from bitredict.api.dependencies import get_db, get_gateway, get_redis
from bitredict.config import get_settings

router = APIRouter(tags=["health"])


class HealthResponse(BaseModel):
    """Health check response."""

    status: str
    timestamp: datetime


class ReadyCheck(BaseModel):
    """Individual readiness check."""

    status: str
    message: str | None = None


class ReadyResponse(BaseModel):
    """Readiness check response."""

    ready: bool
    checks: dict[str, ReadyCheck]


@router.get("/health", response_model=HealthResponse)
async def health():
    """
    Basic health check.

    Returns healthy if the service is running.
    """
    return HealthResponse(
        status="healthy",
        timestamp=datetime.now(timezone.utc),
    )


@router.get("/ready", response_model=ReadyResponse)
async def ready(
    db: AsyncSession = Depends(get_db),
    redis_client: redis.Redis | None = Depends(get_redis),
):
    """
    Readiness check for all dependencies.

    Checks:
    - Database connectivity
    - Redis connectivity (skipped when REDIS_URL is unset)
    - Chain RPC reachability
    """
    checks = {}
    all_ready = True

    # Check database
    try:
        await db.execute(text("SELECT 1"))
        checks["db"] = ReadyCheck(status="ok")
    except Exception as e:
        checks["db"] = ReadyCheck(status="error", message=str(e))
        all_ready = False

    # Check Redis
    if redis_client is None:
        checks["redis"] = ReadyCheck(status="disabled", message="REDIS_URL not configured")
    else:
        try:
            await redis_client.ping()
            checks["redis"] = ReadyCheck(status="ok")
        except Exception as e:
            checks["redis"] = ReadyCheck(status="error", message=str(e))
            all_ready = False

    # Check chain RPC
    if not get_settings().chain_configured:
        checks["rpc"] = ReadyCheck(status="warning", message="RPC_URL not configured")
    else:
        try:
            block = await get_gateway().get_block_number()
            checks["rpc"] = ReadyCheck(status="ok", message=f"head {block}")
        except Exception as e:
            checks["rpc"] = ReadyCheck(status="error", message=str(e))
            all_ready = False

    return ReadyResponse(ready=all_ready, checks=checks)
