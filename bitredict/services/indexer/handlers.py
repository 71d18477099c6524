"""Event handlers, keyed by (contract, event).

Every handler is idempotent: rows are keyed by entity id or by
(tx_hash, log_index), so replaying a window leaves the store unchanged.
"""

from collections.abc import Awaitable, Callable
from datetime import datetime, timezone

import structlog

from bitredict.errors import InvariantViolation
from bitredict.services.chain.gateway import ChainEvent, to_hex
from bitredict.store.records import BetRecord, LiquidityRecord

logger = structlog.get_logger(__name__)

Handler = Callable[[ChainEvent], Awaitable[object]]


class PoolEventHandlers:
    def __init__(self, gateway, pools, alerts=None, clock=None):
        self.gateway = gateway
        self.pools = pools
        self.alerts = alerts
        self.clock = clock or (lambda: datetime.now(timezone.utc))

    async def handle_pool_created(self, event: ChainEvent) -> None:
        pool_id = int(event.args["poolId"])
        pool = await self.gateway.get_pool(pool_id)
        if not (pool.betting_end_time <= pool.event_start_time <= pool.event_end_time):
            error = InvariantViolation(
                f"Pool {pool_id} has inconsistent event times",
                details={
                    "pool_id": pool_id,
                    "betting_end_time": pool.betting_end_time.isoformat(),
                    "event_start_time": pool.event_start_time.isoformat(),
                    "event_end_time": pool.event_end_time.isoformat(),
                },
            )
            logger.error("pool_time_violation", **error.details)
            if self.alerts is not None:
                await self.alerts.record("InvariantViolation", error.message, error.details)
            return

        # Stakes accumulate from the BetPlaced / LiquidityAdded events that follow.
        pool.total_creator_side_stake = pool.creator_stake
        pool.total_bettor_stake = 0
        pool.tx_hash = event.tx_hash
        pool.block_number = event.block_number
        await self.pools.upsert_pool(pool)
        logger.info("pool_indexed", pool_id=pool_id, market_id=pool.market_id, oracle_type=pool.oracle_type)

    async def handle_bet_placed(self, event: ChainEvent) -> None:
        inserted = await self.pools.insert_bet(
            BetRecord(
                pool_id=int(event.args["poolId"]),
                bettor_address=event.args["bettor"],
                amount=int(event.args["amount"]),
                is_for_outcome=bool(event.args["isForOutcome"]),
                tx_hash=event.tx_hash,
                log_index=event.log_index,
                block_number=event.block_number,
            )
        )
        if inserted:
            logger.info("bet_indexed", pool_id=int(event.args["poolId"]), tx_hash=event.tx_hash)

    async def handle_liquidity_added(self, event: ChainEvent) -> None:
        await self.pools.insert_liquidity(
            LiquidityRecord(
                pool_id=int(event.args["poolId"]),
                provider_address=event.args["provider"],
                amount=int(event.args["amount"]),
                tx_hash=event.tx_hash,
                log_index=event.log_index,
                block_number=event.block_number,
            )
        )

    async def handle_pool_settled(self, event: ChainEvent) -> None:
        await self.pools.mark_pool_settled(
            int(event.args["poolId"]),
            to_hex(event.args["result"]),
            bool(event.args["creatorSideWon"]),
            event.tx_hash,
            self.clock(),
        )

    async def handle_pool_refunded(self, event: ChainEvent) -> None:
        await self.pools.mark_pool_refunded(int(event.args["poolId"]))
        logger.info("pool_refunded", pool_id=int(event.args["poolId"]), reason=event.args.get("reason"))


def build_handlers(pipeline, pool_events: PoolEventHandlers, settlement) -> dict[tuple[str, str], Handler]:
    return {
        ("Oddyssey", "CycleStarted"): pipeline.handle_cycle_started,
        ("Oddyssey", "SlipPlaced"): pipeline.handle_slip_placed,
        ("Oddyssey", "SlipEvaluated"): pipeline.handle_slip_evaluated,
        ("Oddyssey", "CycleResolved"): pipeline.handle_cycle_resolved,
        ("Oddyssey", "PrizeClaimed"): pipeline.handle_prize_claimed,
        ("PoolCore", "PoolCreated"): pool_events.handle_pool_created,
        ("PoolCore", "BetPlaced"): pool_events.handle_bet_placed,
        ("PoolCore", "LiquidityAdded"): pool_events.handle_liquidity_added,
        ("PoolCore", "PoolSettled"): pool_events.handle_pool_settled,
        ("PoolCore", "PoolRefunded"): pool_events.handle_pool_refunded,
        ("GuidedOracle", "OutcomeSubmitted"): settlement.handle_outcome_submitted,
    }
