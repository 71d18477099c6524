"""Plain records passed between the stores and the services."""

import uuid
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any


@dataclass
class LockRecord:
    job_name: str
    locked_by: str
    locked_at: datetime
    expires_at: datetime
    execution_id: uuid.UUID
    metadata: dict[str, Any] = field(default_factory=dict)


@dataclass
class ExecutionRecord:
    job_name: str
    execution_id: uuid.UUID
    status: str
    started_at: datetime
    completed_at: datetime | None = None
    duration_ms: int | None = None
    error_message: str | None = None
    metadata: dict[str, Any] = field(default_factory=dict)


@dataclass
class FixtureRecord:
    id: int
    home_team: str
    away_team: str
    match_date: datetime
    league_name: str | None = None
    status: str = "NS"
    home_odds: float | None = None
    draw_odds: float | None = None
    away_odds: float | None = None
    over_25_odds: float | None = None
    under_25_odds: float | None = None

    @property
    def name(self) -> str:
        return f"{self.home_team} vs {self.away_team}"


@dataclass
class ResultRecord:
    fixture_id: int
    home_score: int | None = None
    away_score: int | None = None
    outcome_1x2: str | None = None
    outcome_ou25: str | None = None
    outcome_btts: str | None = None
    finished_at: datetime | None = None
    source: str | None = None


@dataclass
class CycleRecord:
    """
    A cycle row. ``matches`` is the ordered snapshot:
    ``[{"id", "start_time", "odds_home", "odds_draw", "odds_away", "odds_over", "odds_under"}, ...]``.
    """

    cycle_id: int
    matches: list[dict[str, Any]]
    cycle_start_time: datetime | None = None
    cycle_end_time: datetime | None = None
    prize_pool: int = 0
    tx_hash: str | None = None
    is_resolved: bool = False
    resolved_at: datetime | None = None
    resolution_tx_hash: str | None = None
    resolution_data: list[dict[str, Any]] | None = None
    evaluation_completed: bool = False

    @property
    def match_ids(self) -> list[int]:
        return [int(m["id"]) for m in self.matches]


@dataclass
class SlipRecord:
    slip_id: int
    cycle_id: int
    player_address: str
    predictions: list[dict[str, Any]]
    placed_at: datetime | None = None
    is_evaluated: bool = False
    correct_count: int | None = None
    final_score: int | None = None
    tx_hash: str | None = None
    evaluation_tx_hash: str | None = None
    evaluated_at: datetime | None = None


@dataclass
class PoolRecord:
    pool_id: int
    creator_address: str
    odds: int
    event_start_time: datetime
    event_end_time: datetime
    betting_end_time: datetime
    market_id: str | None = None
    predicted_outcome: str | None = None
    creator_stake: int = 0
    total_creator_side_stake: int = 0
    total_bettor_stake: int = 0
    league: str | None = None
    category: str | None = None
    market_type: int | None = None
    oracle_type: str = "Guided"
    is_private: bool = False
    use_bitr: bool = False
    is_settled: bool = False
    creator_side_won: bool | None = None
    result: str | None = None
    settlement_tx_hash: str | None = None
    is_refunded: bool = False
    tx_hash: str | None = None
    block_number: int | None = None


@dataclass
class BetRecord:
    pool_id: int
    bettor_address: str
    amount: int
    is_for_outcome: bool
    tx_hash: str
    log_index: int
    block_number: int


@dataclass
class LiquidityRecord:
    pool_id: int
    provider_address: str
    amount: int
    tx_hash: str
    log_index: int
    block_number: int


@dataclass
class PrizeClaimRecord:
    cycle_id: int
    player_address: str
    rank: int
    amount: int
    tx_hash: str
    log_index: int
    block_number: int
