"""Database models."""

from bitredict.models.base import Base, TimestampMixin
from bitredict.models.domain import (
    Bet,
    Fixture,
    FixtureResult,
    MarketIdLookup,
    OddysseyCycle,
    OddysseySlip,
    Pool,
    PoolLiquidityProvider,
    PrizeClaim,
    SystemAlert,
)
from bitredict.models.system import CronExecutionLog, CronLock, IndexerCursor

__all__ = [
    "Base",
    "TimestampMixin",
    "Bet",
    "CronExecutionLog",
    "CronLock",
    "Fixture",
    "FixtureResult",
    "IndexerCursor",
    "MarketIdLookup",
    "OddysseyCycle",
    "OddysseySlip",
    "Pool",
    "PoolLiquidityProvider",
    "PrizeClaim",
    "SystemAlert",
]
