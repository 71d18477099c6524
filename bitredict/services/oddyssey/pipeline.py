"""Oddyssey cycle pipeline.

Drives each daily cycle through its states:

    NotStarted -> Active -> Ended -> Resolved -> EvaluationComplete

open() starts a cycle on chain, resolve() writes the 10 canonical results,
evaluate() submits evaluateSlip for every slip not yet evaluated on chain,
sync() copies the chain's (correctCount, finalScore) back to the database
and finalize() closes the cycle once no slip is left unevaluated. The event
handlers keep the database converging to the chain between runs.
"""

import asyncio
from datetime import date, datetime, timezone
from typing import Any

import structlog

from bitredict.errors import (
    BitredictError,
    InvariantViolation,
    NotFoundError,
    TxRevertError,
)
from bitredict.services.canonical import (
    CycleState,
    MoneylineResult,
    OverUnderResult,
    moneyline_code,
    moneyline_outcome,
    over_under_code,
    over_under_outcome,
)
from bitredict.services.chain.gateway import MATCHES_PER_CYCLE, ChainEvent, ChainMatch, ChainSlip
from bitredict.services.oddyssey.selector import to_chain_match
from bitredict.store.records import CycleRecord, PrizeClaimRecord, SlipRecord

logger = structlog.get_logger(__name__)


def _ensure_active(ctx) -> None:
    if ctx is not None:
        ctx.ensure_active()


def _from_timestamp(value: int) -> datetime | None:
    return datetime.fromtimestamp(int(value), tz=timezone.utc) if value else None


def resolution_data(matches: list[ChainMatch]) -> list[dict[str, Any]]:
    return [
        {
            "match_id": m.id,
            "moneyline": moneyline_outcome(m.moneyline),
            "over_under": over_under_outcome(m.over_under),
        }
        for m in matches
    ]


class OddysseyPipeline:
    def __init__(
        self,
        gateway,
        oddyssey,
        results,
        selector,
        settings,
        alerts=None,
        clock=None,
        sleep=None,
    ):
        self.gateway = gateway
        self.oddyssey = oddyssey
        self.results = results
        self.selector = selector
        self.settings = settings
        self.alerts = alerts
        self.clock = clock or (lambda: datetime.now(timezone.utc))
        self.sleep = sleep or asyncio.sleep

    # ------------------------------------------------------------------
    # open
    # ------------------------------------------------------------------

    async def open_cycle(self, ctx=None, target_date: date | None = None) -> dict[str, Any]:
        """Start today's cycle when the previous one has ended and 10 fixtures qualify."""
        now = self.clock()
        current_id = await self.gateway.get_current_cycle_id()
        if current_id > 0:
            status = await self.gateway.get_cycle_status(current_id)
            if status.state == CycleState.ACTIVE and status.end_time > now.timestamp():
                logger.warning("cycle_open_deferred", reason="cycle_active", cycle_id=current_id)
                return {"status": "deferred", "reason": "cycle_active", "cycle_id": current_id}
            if status.state == CycleState.NOT_STARTED:
                logger.warning("cycle_open_deferred", reason="previous_not_ended", cycle_id=current_id)
                return {"status": "deferred", "reason": "previous_not_ended", "cycle_id": current_id}

        fixtures = await self.selector.select(target_date or now.date())
        if len(fixtures) < MATCHES_PER_CYCLE:
            logger.warning("cycle_open_deferred", reason="insufficient_fixtures", available=len(fixtures))
            return {"status": "deferred", "reason": "insufficient_fixtures", "available": len(fixtures)}

        matches = [to_chain_match(f) for f in fixtures]
        _ensure_active(ctx)
        tx = await self.gateway.start_daily_cycle(matches)
        cycle_id = await self.gateway.get_current_cycle_id()
        await self.sync_cycle_from_chain(cycle_id, tx_hash=tx.tx_hash)

        logger.info("cycle_opened", cycle_id=cycle_id, tx_hash=tx.tx_hash, match_ids=[m.id for m in matches])
        return {"status": "opened", "cycle_id": cycle_id, "tx_hash": tx.tx_hash}

    async def sync_cycle_from_chain(self, cycle_id: int, tx_hash: str | None = None) -> CycleRecord:
        """Write the chain's view of a cycle to the database; the chain wins on mismatch."""
        matches = await self.gateway.get_daily_matches(cycle_id)
        status = await self.gateway.get_cycle_status(cycle_id)
        existing = await self.oddyssey.get_cycle(cycle_id)

        snapshot = [m.snapshot() for m in matches]
        if existing is not None and existing.matches != snapshot:
            logger.warning("cycle_sync_mismatch", cycle_id=cycle_id, db_match_ids=existing.match_ids)

        record = CycleRecord(
            cycle_id=cycle_id,
            matches=snapshot,
            cycle_start_time=existing.cycle_start_time if existing else self.clock(),
            cycle_end_time=_from_timestamp(status.end_time),
            prize_pool=status.prize_pool,
            tx_hash=tx_hash or (existing.tx_hash if existing else None),
        )
        await self.oddyssey.upsert_cycle(record)

        if status.state == CycleState.RESOLVED:
            await self.oddyssey.mark_cycle_resolved(cycle_id, None, resolution_data(matches), self.clock())
        return record

    # ------------------------------------------------------------------
    # resolve
    # ------------------------------------------------------------------

    async def build_results(self, cycle: CycleRecord) -> list[tuple[MoneylineResult, OverUnderResult]]:
        """The cycle's 10 chain results in match order; a missing result is NOT_SET."""
        stored = await self.results.get_results(cycle.match_ids)
        built = []
        for match_id in cycle.match_ids:
            result = stored.get(match_id)
            if result is None:
                built.append((MoneylineResult.NOT_SET, OverUnderResult.NOT_SET))
            else:
                built.append((moneyline_code(result.outcome_1x2), over_under_code(result.outcome_ou25)))
        return built

    async def resolve_cycle(self, cycle_id: int, ctx=None) -> dict[str, Any]:
        cycle = await self.oddyssey.get_cycle(cycle_id)
        if cycle is None:
            raise NotFoundError(f"Cycle {cycle_id} not found", details={"cycle_id": cycle_id})
        if cycle.is_resolved:
            return {"status": "skipped", "reason": "already_resolved", "cycle_id": cycle_id}

        if await self.gateway.is_cycle_resolved(cycle_id):
            matches = await self.gateway.get_daily_matches(cycle_id)
            await self.oddyssey.mark_cycle_resolved(cycle_id, None, resolution_data(matches), self.clock())
            logger.info("cycle_resolution_synced", cycle_id=cycle_id)
            return {"status": "synced", "cycle_id": cycle_id}

        results = await self.build_results(cycle)
        _ensure_active(ctx)
        tx = await self.gateway.resolve_cycle(cycle_id, results)

        data = [
            {
                "match_id": match_id,
                "moneyline": moneyline_outcome(moneyline),
                "over_under": over_under_outcome(over_under),
            }
            for match_id, (moneyline, over_under) in zip(cycle.match_ids, results)
        ]
        await self.oddyssey.mark_cycle_resolved(cycle_id, tx.tx_hash, data, self.clock())
        logger.info("cycle_resolved", cycle_id=cycle_id, tx_hash=tx.tx_hash)
        return {"status": "resolved", "cycle_id": cycle_id, "tx_hash": tx.tx_hash}

    async def resolve_ready_cycles(self, ctx=None) -> dict[str, Any]:
        """Resolve every ended cycle whose 10 results are all present."""
        stats = {"checked": 0, "resolved": 0, "deferred": 0}
        now = self.clock()
        for cycle in await self.oddyssey.unresolved_cycles():
            stats["checked"] += 1
            if cycle.cycle_end_time is None or cycle.cycle_end_time > now:
                stats["deferred"] += 1
                continue
            results = await self.build_results(cycle)
            missing = sum(
                1
                for moneyline, over_under in results
                if moneyline == MoneylineResult.NOT_SET or over_under == OverUnderResult.NOT_SET
            )
            if missing:
                logger.warning("cycle_resolution_deferred", cycle_id=cycle.cycle_id, missing_results=missing)
                stats["deferred"] += 1
                continue
            outcome = await self.resolve_cycle(cycle.cycle_id, ctx)
            if outcome["status"] in ("resolved", "synced"):
                stats["resolved"] += 1
        return stats

    # ------------------------------------------------------------------
    # evaluate / sync / finalize
    # ------------------------------------------------------------------

    async def _store_evaluation(self, chain_slip: ChainSlip, tx_hash: str | None = None) -> None:
        await self.oddyssey.mark_slip_evaluated(
            chain_slip.slip_id,
            chain_slip.correct_count,
            chain_slip.final_score,
            self.clock(),
            tx_hash=tx_hash,
        )

    async def _evaluate_slip(self, slip: SlipRecord, ctx=None) -> bool:
        """Evaluate one slip; returns True when a transaction was sent."""
        chain_slip = await self.gateway.get_slip(slip.slip_id)
        if chain_slip.is_evaluated:
            await self._store_evaluation(chain_slip)
            logger.info("slip_already_evaluated", slip_id=slip.slip_id, cycle_id=slip.cycle_id)
            return False

        _ensure_active(ctx)
        try:
            tx = await self.gateway.evaluate_slip(slip.slip_id)
        except TxRevertError as e:
            if e.reason != "slip_already_evaluated":
                raise
            await self._store_evaluation(await self.gateway.get_slip(slip.slip_id))
            return True

        chain_slip = await self.gateway.get_slip(slip.slip_id)
        await self._store_evaluation(chain_slip, tx.tx_hash)
        logger.info(
            "slip_evaluated",
            slip_id=slip.slip_id,
            cycle_id=slip.cycle_id,
            correct_count=chain_slip.correct_count,
            final_score=chain_slip.final_score,
            tx_hash=tx.tx_hash,
        )
        return True

    async def evaluate_cycle(self, cycle_id: int, ctx=None) -> dict[str, Any]:
        """
        Evaluate every unevaluated slip of a resolved cycle.

        Slips already evaluated on chain are only marked in the database.
        Submissions are spaced by the slip delay and batches by the batch delay.
        """
        stats = {"cycle_id": cycle_id, "slips": 0, "submitted": 0, "synced": 0, "errors": 0}
        if not await self.gateway.is_cycle_resolved(cycle_id):
            logger.warning("cycle_evaluation_deferred", cycle_id=cycle_id, reason="not_resolved_on_chain")
            stats["status"] = "deferred"
            return stats

        slips = await self.oddyssey.unevaluated_slips(cycle_id)
        stats["slips"] = len(slips)
        batch_size = self.settings.slip_evaluation_batch_size
        for start in range(0, len(slips), batch_size):
            if start:
                await self.sleep(self.settings.slip_batch_delay_seconds)
            for slip in slips[start : start + batch_size]:
                try:
                    submitted = await self._evaluate_slip(slip, ctx)
                except TxRevertError as e:
                    logger.error("slip_evaluation_reverted", slip_id=slip.slip_id, error=e.message)
                    stats["errors"] += 1
                    if not e.classified and self.alerts is not None:
                        await self.alerts.record(
                            "slip_evaluation_reverted",
                            e.message,
                            {"slip_id": slip.slip_id, "cycle_id": cycle_id, "tx_hash": e.tx_hash},
                        )
                    continue
                except NotFoundError as e:
                    logger.warning(
                        "slip_not_found_on_chain", slip_id=slip.slip_id, cycle_id=cycle_id, error=e.message
                    )
                    stats["errors"] += 1
                    continue
                except BitredictError as e:
                    if not e.retryable:
                        raise
                    logger.error("slip_evaluation_error", slip_id=slip.slip_id, error=e.message)
                    stats["errors"] += 1
                    continue
                if submitted:
                    stats["submitted"] += 1
                    await self.sleep(self.settings.slip_submission_delay_seconds)
                else:
                    stats["synced"] += 1

        stats["status"] = "evaluated"
        logger.info("cycle_evaluated", **stats)
        return stats

    async def sync_slips(self, cycle_id: int) -> int:
        """Overwrite db evaluation values that disagree with the chain."""
        corrected = 0
        for slip in await self.oddyssey.slips_for_cycle(cycle_id):
            try:
                chain_slip = await self.gateway.get_slip(slip.slip_id)
            except NotFoundError:
                logger.warning("slip_not_found_on_chain", slip_id=slip.slip_id, cycle_id=cycle_id)
                continue
            if not chain_slip.is_evaluated:
                continue
            db_values = (slip.is_evaluated, slip.correct_count, slip.final_score)
            chain_values = (True, chain_slip.correct_count, chain_slip.final_score)
            if db_values != chain_values:
                logger.warning(
                    "slip_sync_mismatch",
                    slip_id=slip.slip_id,
                    cycle_id=cycle_id,
                    db_correct_count=slip.correct_count,
                    db_final_score=slip.final_score,
                    chain_correct_count=chain_slip.correct_count,
                    chain_final_score=chain_slip.final_score,
                )
                await self._store_evaluation(chain_slip)
                corrected += 1
        return corrected

    async def finalize(self, cycle_id: int) -> bool:
        completed = await self.oddyssey.mark_evaluation_completed(cycle_id, self.clock())
        if completed:
            logger.info("cycle_evaluation_completed", cycle_id=cycle_id)
        return completed

    async def process_cycle_evaluation(self, cycle_id: int, ctx=None) -> dict[str, Any]:
        """evaluate -> sync -> finalize for one cycle."""
        stats = await self.evaluate_cycle(cycle_id, ctx)
        if stats.get("status") == "deferred":
            return stats
        stats["corrected"] = await self.sync_slips(cycle_id)
        stats["finalized"] = await self.finalize(cycle_id)
        return stats

    async def evaluate_pending_cycles(self, ctx=None) -> list[dict[str, Any]]:
        return [
            await self.process_cycle_evaluation(cycle_id, ctx)
            for cycle_id in await self.oddyssey.cycles_pending_evaluation()
        ]

    # ------------------------------------------------------------------
    # Event handlers
    # ------------------------------------------------------------------

    async def handle_cycle_started(self, event: ChainEvent) -> None:
        await self.sync_cycle_from_chain(int(event.args["cycleId"]), tx_hash=event.tx_hash)

    async def _cycle_for(self, cycle_id: int) -> CycleRecord:
        cycle = await self.oddyssey.get_cycle(cycle_id)
        if cycle is None:
            cycle = await self.sync_cycle_from_chain(cycle_id)
        return cycle

    async def store_slip(self, chain_slip: ChainSlip, tx_hash: str | None = None) -> bool:
        """Insert a chain slip once; a slip whose predictions do not follow the cycle's match order is refused."""
        cycle = await self._cycle_for(chain_slip.cycle_id)
        predicted = [p["match_id"] for p in chain_slip.predictions]
        if predicted != cycle.match_ids:
            error = InvariantViolation(
                f"Slip {chain_slip.slip_id} predictions do not follow cycle {cycle.cycle_id} match order",
                details={
                    "slip_id": chain_slip.slip_id,
                    "cycle_id": cycle.cycle_id,
                    "predicted": predicted,
                    "expected": cycle.match_ids,
                },
            )
            logger.error("slip_order_violation", **error.details)
            if self.alerts is not None:
                await self.alerts.record("InvariantViolation", error.message, error.details)
            return False

        inserted = await self.oddyssey.insert_slip_if_absent(
            SlipRecord(
                slip_id=chain_slip.slip_id,
                cycle_id=chain_slip.cycle_id,
                player_address=chain_slip.player,
                predictions=chain_slip.predictions,
                placed_at=_from_timestamp(chain_slip.placed_at),
                tx_hash=tx_hash,
            )
        )
        if inserted:
            logger.info("slip_recorded", slip_id=chain_slip.slip_id, cycle_id=chain_slip.cycle_id)
        return inserted

    async def handle_slip_placed(self, event: ChainEvent) -> None:
        chain_slip = await self.gateway.get_slip(int(event.args["slipId"]))
        await self.store_slip(chain_slip, event.tx_hash)

    async def handle_slip_evaluated(self, event: ChainEvent) -> None:
        slip_id = int(event.args["slipId"])
        chain_slip = await self.gateway.get_slip(slip_id)
        if await self.oddyssey.get_slip(slip_id) is None and not await self.store_slip(chain_slip):
            return
        await self._store_evaluation(chain_slip, event.tx_hash)

    async def handle_cycle_resolved(self, event: ChainEvent) -> None:
        cycle_id = int(event.args["cycleId"])
        await self._cycle_for(cycle_id)
        matches = await self.gateway.get_daily_matches(cycle_id)
        if await self.oddyssey.mark_cycle_resolved(cycle_id, event.tx_hash, resolution_data(matches), self.clock()):
            logger.info("cycle_resolution_observed", cycle_id=cycle_id, tx_hash=event.tx_hash)

    async def handle_prize_claimed(self, event: ChainEvent) -> None:
        await self.oddyssey.insert_prize_claim(
            PrizeClaimRecord(
                cycle_id=int(event.args["cycleId"]),
                player_address=event.args["player"],
                rank=int(event.args["rank"]),
                amount=int(event.args["amount"]),
                tx_hash=event.tx_hash,
                log_index=event.log_index,
                block_number=event.block_number,
            )
        )

    # ------------------------------------------------------------------
    # Operations
    # ------------------------------------------------------------------

    async def audit_cycle(self, cycle_id: int) -> dict[str, Any]:
        """Compare chain and database for a cycle and its slips; changes nothing."""
        cycle = await self.oddyssey.get_cycle(cycle_id)
        status = await self.gateway.get_cycle_status(cycle_id)
        matches = await self.gateway.get_daily_matches(cycle_id)
        report: dict[str, Any] = {
            "cycle_id": cycle_id,
            "chain_state": status.state.name,
            "chain_slip_count": status.slip_count,
            "db_present": cycle is not None,
            "db_resolved": cycle.is_resolved if cycle else None,
            "matches_consistent": cycle is not None and cycle.matches == [m.snapshot() for m in matches],
            "slip_mismatches": [],
        }
        slips = await self.oddyssey.slips_for_cycle(cycle_id) if cycle else []
        report["db_slip_count"] = len(slips)
        for slip in slips:
            chain_slip = await self.gateway.get_slip(slip.slip_id)
            if (slip.is_evaluated, slip.correct_count, slip.final_score) != (
                chain_slip.is_evaluated,
                chain_slip.correct_count if chain_slip.is_evaluated else slip.correct_count,
                chain_slip.final_score if chain_slip.is_evaluated else slip.final_score,
            ):
                report["slip_mismatches"].append(
                    {
                        "slip_id": slip.slip_id,
                        "db": [slip.is_evaluated, slip.correct_count, slip.final_score],
                        "chain": [chain_slip.is_evaluated, chain_slip.correct_count, chain_slip.final_score],
                    }
                )
        logger.info(
            "cycle_audited",
            cycle_id=cycle_id,
            chain_state=report["chain_state"],
            mismatches=len(report["slip_mismatches"]),
        )
        return report

    async def fix_slip(self, slip_id: int) -> dict[str, Any]:
        """Re-read a slip from chain and overwrite the database copy."""
        chain_slip = await self.gateway.get_slip(slip_id)
        inserted = False
        if await self.oddyssey.get_slip(slip_id) is None:
            inserted = await self.store_slip(chain_slip)
        if chain_slip.is_evaluated:
            await self._store_evaluation(chain_slip)
        logger.info("slip_fixed", slip_id=slip_id, inserted=inserted, evaluated=chain_slip.is_evaluated)
        return {
            "slip_id": slip_id,
            "inserted": inserted,
            "is_evaluated": chain_slip.is_evaluated,
            "correct_count": chain_slip.correct_count,
            "final_score": chain_slip.final_score,
        }
