"""Domain models for Bitredict.

Mirrors of on-chain state (pools, bets, Oddyssey cycles and slips) plus the
off-chain fixture data the Oddyssey pipeline resolves cycles from. All tables
live in the ``oracle`` schema.
"""

from datetime import datetime
from decimal import Decimal
from typing import Any

from sqlalchemy import (
    BigInteger,
    Boolean,
    CheckConstraint,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    Text,
    UniqueConstraint,
    func,
    text,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import Mapped, mapped_column

from bitredict.models.base import Base, TimestampMixin

ORACLE_SCHEMA = "oracle"


class Fixture(Base, TimestampMixin):
    """
    A football match with its pre-match odds snapshot.

    Immutable once a cycle references it.
    """

    __tablename__ = "fixtures"
    __table_args__ = (
        Index("idx_fixtures_match_date", "match_date"),
        {"schema": ORACLE_SCHEMA},
    )

    id: Mapped[int] = mapped_column(BigInteger, primary_key=True)
    name: Mapped[str | None] = mapped_column(String(300), nullable=True)
    home_team: Mapped[str] = mapped_column(String(200), nullable=False)
    away_team: Mapped[str] = mapped_column(String(200), nullable=False)
    league_name: Mapped[str | None] = mapped_column(String(200), nullable=True)
    match_date: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    status: Mapped[str] = mapped_column(String(20), default="NS", nullable=False)
    home_odds: Mapped[Decimal | None] = mapped_column(Numeric(10, 3), nullable=True)
    draw_odds: Mapped[Decimal | None] = mapped_column(Numeric(10, 3), nullable=True)
    away_odds: Mapped[Decimal | None] = mapped_column(Numeric(10, 3), nullable=True)
    over_25_odds: Mapped[Decimal | None] = mapped_column(Numeric(10, 3), nullable=True)
    under_25_odds: Mapped[Decimal | None] = mapped_column(Numeric(10, 3), nullable=True)

    def __repr__(self) -> str:
        return f"<Fixture {self.id} {self.home_team} vs {self.away_team}>"


class FixtureResult(Base, TimestampMixin):
    """
    Final result of a fixture in canonical enum form.

    outcome_1x2 / outcome_ou25 / outcome_btts are guarded by the
    validate_fixture_result_trigger; only full words are accepted.
    """

    __tablename__ = "fixture_results"
    __table_args__ = ({"schema": ORACLE_SCHEMA},)

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    fixture_id: Mapped[int] = mapped_column(BigInteger, unique=True, nullable=False)
    home_score: Mapped[int | None] = mapped_column(Integer, nullable=True)
    away_score: Mapped[int | None] = mapped_column(Integer, nullable=True)
    outcome_1x2: Mapped[str | None] = mapped_column(String(10), nullable=True)
    outcome_ou25: Mapped[str | None] = mapped_column(String(10), nullable=True)
    outcome_btts: Mapped[str | None] = mapped_column(String(10), nullable=True)
    finished_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    source: Mapped[str | None] = mapped_column(String(50), nullable=True)


class OddysseyCycle(Base, TimestampMixin):
    """A daily Oddyssey round of exactly 10 matches."""

    __tablename__ = "oddyssey_cycles"
    __table_args__ = (
        CheckConstraint("matches_count = 10", name="ck_oddyssey_cycles_ten_matches"),
        Index(
            "idx_oddyssey_cycles_unresolved",
            "cycle_id",
            postgresql_where=text("is_resolved = false"),
        ),
        {"schema": ORACLE_SCHEMA},
    )

    cycle_id: Mapped[int] = mapped_column(BigInteger, primary_key=True)
    matches_count: Mapped[int] = mapped_column(Integer, default=10, nullable=False)
    matches_data: Mapped[list[dict[str, Any]]] = mapped_column(
        JSONB, nullable=False, doc="Ordered match snapshot: id, start_time, odds"
    )
    cycle_start_time: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    cycle_end_time: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    prize_pool: Mapped[Decimal] = mapped_column(Numeric(78, 0), default=0, nullable=False)
    tx_hash: Mapped[str | None] = mapped_column(String(66), nullable=True)
    is_resolved: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    resolved_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    resolution_tx_hash: Mapped[str | None] = mapped_column(String(66), nullable=True)
    resolution_data: Mapped[list[dict[str, Any]] | None] = mapped_column(JSONB, nullable=True)
    evaluation_completed: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    evaluation_completed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))

    def __repr__(self) -> str:
        return f"<OddysseyCycle {self.cycle_id} resolved={self.is_resolved}>"


class OddysseySlip(Base, TimestampMixin):
    """One player's 10 predictions for a cycle."""

    __tablename__ = "oddyssey_slips"
    __table_args__ = (
        UniqueConstraint("slip_id", "cycle_id", name="uq_oddyssey_slips_slip_cycle"),
        CheckConstraint(
            "correct_count IS NULL OR (correct_count >= 0 AND correct_count <= 10)",
            name="ck_oddyssey_slips_correct_count",
        ),
        Index("idx_oddyssey_slips_cycle_pending", "cycle_id", "is_evaluated"),
        {"schema": ORACLE_SCHEMA},
    )

    slip_id: Mapped[int] = mapped_column(BigInteger, primary_key=True)
    cycle_id: Mapped[int] = mapped_column(
        BigInteger, ForeignKey(f"{ORACLE_SCHEMA}.oddyssey_cycles.cycle_id"), nullable=False
    )
    player_address: Mapped[str] = mapped_column(String(42), nullable=False)
    placed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    predictions: Mapped[list[dict[str, Any]]] = mapped_column(JSONB, nullable=False)
    is_evaluated: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    correct_count: Mapped[int | None] = mapped_column(Integer, nullable=True)
    final_score: Mapped[Decimal | None] = mapped_column(Numeric(78, 0), nullable=True)
    tx_hash: Mapped[str | None] = mapped_column(String(66), nullable=True)
    evaluation_tx_hash: Mapped[str | None] = mapped_column(String(66), nullable=True)
    evaluated_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    prize_claimed: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)


class Pool(Base, TimestampMixin):
    """A peer-to-peer prediction pool mirrored from PoolCore."""

    __tablename__ = "pools"
    __table_args__ = (
        CheckConstraint(
            "betting_end_time <= event_start_time AND event_start_time <= event_end_time",
            name="ck_pools_event_times",
        ),
        Index("idx_pools_market_id", "market_id"),
        Index("idx_pools_unsettled", "pool_id", postgresql_where=text("is_settled = false")),
        {"schema": ORACLE_SCHEMA},
    )

    pool_id: Mapped[int] = mapped_column(BigInteger, primary_key=True)
    creator_address: Mapped[str] = mapped_column(String(42), nullable=False)
    predicted_outcome: Mapped[str | None] = mapped_column(String(66), nullable=True)
    odds: Mapped[int] = mapped_column(Integer, nullable=False)
    creator_stake: Mapped[Decimal] = mapped_column(Numeric(78, 0), default=0)
    total_creator_side_stake: Mapped[Decimal] = mapped_column(Numeric(78, 0), default=0)
    total_bettor_stake: Mapped[Decimal] = mapped_column(Numeric(78, 0), default=0)
    event_start_time: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    event_end_time: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    betting_end_time: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    league: Mapped[str | None] = mapped_column(String(200), nullable=True)
    category: Mapped[str | None] = mapped_column(String(100), nullable=True)
    market_id: Mapped[str | None] = mapped_column(Text, nullable=True)
    market_type: Mapped[int | None] = mapped_column(Integer, nullable=True)
    oracle_type: Mapped[str] = mapped_column(String(10), default="Guided", nullable=False)
    is_private: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    use_bitr: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    is_settled: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    creator_side_won: Mapped[bool | None] = mapped_column(Boolean, nullable=True)
    result: Mapped[str | None] = mapped_column(String(66), nullable=True)
    settlement_tx_hash: Mapped[str | None] = mapped_column(String(66), nullable=True)
    settled_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    is_refunded: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    tx_hash: Mapped[str | None] = mapped_column(String(66), nullable=True)
    block_number: Mapped[int | None] = mapped_column(BigInteger, nullable=True)

    def __repr__(self) -> str:
        return f"<Pool {self.pool_id} settled={self.is_settled}>"


class MarketIdLookup(Base):
    """keccak256(market_id) -> market_id, for indexed-string event arguments."""

    __tablename__ = "market_id_lookup"
    __table_args__ = ({"schema": ORACLE_SCHEMA},)

    market_hash: Mapped[str] = mapped_column(String(66), primary_key=True)
    market_id: Mapped[str] = mapped_column(Text, nullable=False)
    pool_id: Mapped[int | None] = mapped_column(BigInteger, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False
    )


class _LogKeyed:
    """Rows derived from a single chain log, unique by (tx_hash, log_index)."""

    tx_hash: Mapped[str] = mapped_column(String(66), nullable=False)
    log_index: Mapped[int] = mapped_column(Integer, nullable=False)
    block_number: Mapped[int] = mapped_column(BigInteger, nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False
    )


class Bet(_LogKeyed, Base):
    __tablename__ = "bets"
    __table_args__ = (
        UniqueConstraint("tx_hash", "log_index", name="uq_bets_tx_log"),
        Index("idx_bets_pool", "pool_id"),
        {"schema": ORACLE_SCHEMA},
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    pool_id: Mapped[int] = mapped_column(BigInteger, nullable=False)
    bettor_address: Mapped[str] = mapped_column(String(42), nullable=False)
    amount: Mapped[Decimal] = mapped_column(Numeric(78, 0), nullable=False)
    is_for_outcome: Mapped[bool] = mapped_column(Boolean, nullable=False)


class PoolLiquidityProvider(_LogKeyed, Base):
    __tablename__ = "pool_liquidity_providers"
    __table_args__ = (
        UniqueConstraint("tx_hash", "log_index", name="uq_pool_lp_tx_log"),
        Index("idx_pool_lp_pool", "pool_id"),
        {"schema": ORACLE_SCHEMA},
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    pool_id: Mapped[int] = mapped_column(BigInteger, nullable=False)
    provider_address: Mapped[str] = mapped_column(String(42), nullable=False)
    amount: Mapped[Decimal] = mapped_column(Numeric(78, 0), nullable=False)


class PrizeClaim(_LogKeyed, Base):
    __tablename__ = "prize_claims"
    __table_args__ = (
        UniqueConstraint("tx_hash", "log_index", name="uq_prize_claims_tx_log"),
        {"schema": ORACLE_SCHEMA},
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    cycle_id: Mapped[int] = mapped_column(BigInteger, nullable=False)
    player_address: Mapped[str] = mapped_column(String(42), nullable=False)
    rank: Mapped[int] = mapped_column(Integer, nullable=False)
    amount: Mapped[Decimal] = mapped_column(Numeric(78, 0), nullable=False)


class SystemAlert(Base):
    """Operator-facing record of invariant violations and unclassified reverts."""

    __tablename__ = "system_alerts"
    __table_args__ = ({"schema": ORACLE_SCHEMA},)

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    alert_type: Mapped[str] = mapped_column(String(50), nullable=False)
    severity: Mapped[str] = mapped_column(String(20), default="error", nullable=False)
    message: Mapped[str] = mapped_column(Text, nullable=False)
    details: Mapped[dict[str, Any] | None] = mapped_column(JSONB, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False
    )
