"""Persistence for Oddyssey cycles, slips and prize claims."""

from datetime import datetime
from typing import Any

from sqlalchemy import and_, exists, func, select, update
from sqlalchemy.dialects.postgresql import insert
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from bitredict.models.domain import OddysseyCycle, OddysseySlip, PrizeClaim
from bitredict.store.records import CycleRecord, PrizeClaimRecord, SlipRecord


def _cycle_record(row: OddysseyCycle) -> CycleRecord:
    return CycleRecord(
        cycle_id=row.cycle_id,
        matches=list(row.matches_data or []),
        cycle_start_time=row.cycle_start_time,
        cycle_end_time=row.cycle_end_time,
        prize_pool=int(row.prize_pool or 0),
        tx_hash=row.tx_hash,
        is_resolved=row.is_resolved,
        resolved_at=row.resolved_at,
        resolution_tx_hash=row.resolution_tx_hash,
        resolution_data=row.resolution_data,
        evaluation_completed=row.evaluation_completed,
    )


def _slip_record(row: OddysseySlip) -> SlipRecord:
    return SlipRecord(
        slip_id=row.slip_id,
        cycle_id=row.cycle_id,
        player_address=row.player_address,
        predictions=list(row.predictions or []),
        placed_at=row.placed_at,
        is_evaluated=row.is_evaluated,
        correct_count=row.correct_count,
        final_score=int(row.final_score) if row.final_score is not None else None,
        tx_hash=row.tx_hash,
        evaluation_tx_hash=row.evaluation_tx_hash,
        evaluated_at=row.evaluated_at,
    )


class OddysseyStore:
    """SQL access to oracle.oddyssey_cycles / oddyssey_slips / prize_claims."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self.session_factory = session_factory

    # Cycles

    async def get_cycle(self, cycle_id: int) -> CycleRecord | None:
        async with self.session_factory() as session:
            row = await session.get(OddysseyCycle, cycle_id)
            return _cycle_record(row) if row else None

    async def latest_cycle(self) -> CycleRecord | None:
        async with self.session_factory() as session:
            row = await session.scalar(
                select(OddysseyCycle).order_by(OddysseyCycle.cycle_id.desc()).limit(1)
            )
            return _cycle_record(row) if row else None

    async def upsert_cycle(self, record: CycleRecord) -> None:
        """Insert or refresh a cycle; a resolved cycle's matches are frozen."""
        values: dict[str, Any] = {
            "cycle_id": record.cycle_id,
            "matches_count": len(record.matches),
            "matches_data": record.matches,
            "cycle_start_time": record.cycle_start_time,
            "cycle_end_time": record.cycle_end_time,
            "prize_pool": record.prize_pool,
            "tx_hash": record.tx_hash,
        }
        stmt = insert(OddysseyCycle).values(**values)
        stmt = stmt.on_conflict_do_update(
            index_elements=["cycle_id"],
            set_={
                "matches_data": stmt.excluded.matches_data,
                "matches_count": stmt.excluded.matches_count,
                "cycle_start_time": stmt.excluded.cycle_start_time,
                "cycle_end_time": stmt.excluded.cycle_end_time,
                "prize_pool": stmt.excluded.prize_pool,
                "tx_hash": func.coalesce(OddysseyCycle.tx_hash, stmt.excluded.tx_hash),
                "updated_at": func.now(),
            },
            where=OddysseyCycle.is_resolved.is_(False),
        )
        async with self.session_factory() as session:
            await session.execute(stmt)
            await session.commit()

    async def mark_cycle_resolved(
        self,
        cycle_id: int,
        tx_hash: str | None,
        resolution_data: list[dict[str, Any]] | None,
        resolved_at: datetime,
    ) -> bool:
        async with self.session_factory() as session:
            result = await session.execute(
                update(OddysseyCycle)
                .where(OddysseyCycle.cycle_id == cycle_id, OddysseyCycle.is_resolved.is_(False))
                .values(
                    is_resolved=True,
                    resolved_at=resolved_at,
                    resolution_tx_hash=tx_hash,
                    resolution_data=resolution_data,
                )
            )
            await session.commit()
            return bool(result.rowcount)

    async def unresolved_cycles(self) -> list[CycleRecord]:
        async with self.session_factory() as session:
            rows = await session.scalars(
                select(OddysseyCycle)
                .where(OddysseyCycle.is_resolved.is_(False))
                .order_by(OddysseyCycle.cycle_id)
            )
            return [_cycle_record(row) for row in rows]

    async def cycles_pending_evaluation(self) -> list[int]:
        """Resolved cycles whose evaluation has not been finalized."""
        async with self.session_factory() as session:
            rows = await session.scalars(
                select(OddysseyCycle.cycle_id)
                .where(
                    OddysseyCycle.is_resolved.is_(True),
                    OddysseyCycle.evaluation_completed.is_(False),
                )
                .order_by(OddysseyCycle.cycle_id)
            )
            return list(rows)

    async def mark_evaluation_completed(self, cycle_id: int, at: datetime) -> bool:
        async with self.session_factory() as session:
            pending = exists().where(
                and_(OddysseySlip.cycle_id == cycle_id, OddysseySlip.is_evaluated.is_(False))
            )
            result = await session.execute(
                update(OddysseyCycle)
                .where(
                    OddysseyCycle.cycle_id == cycle_id,
                    OddysseyCycle.is_resolved.is_(True),
                    ~pending,
                )
                .values(evaluation_completed=True, evaluation_completed_at=at)
            )
            await session.commit()
            return bool(result.rowcount)

    # Slips

    async def insert_slip_if_absent(self, record: SlipRecord) -> bool:
        async with self.session_factory() as session:
            result = await session.execute(
                insert(OddysseySlip)
                .values(
                    slip_id=record.slip_id,
                    cycle_id=record.cycle_id,
                    player_address=record.player_address,
                    placed_at=record.placed_at,
                    predictions=record.predictions,
                    tx_hash=record.tx_hash,
                )
                .on_conflict_do_nothing(index_elements=["slip_id"])
                .returning(OddysseySlip.slip_id)
            )
            inserted = result.scalar_one_or_none() is not None
            await session.commit()
            return inserted

    async def get_slip(self, slip_id: int) -> SlipRecord | None:
        async with self.session_factory() as session:
            row = await session.get(OddysseySlip, slip_id)
            return _slip_record(row) if row else None

    async def slips_for_cycle(self, cycle_id: int) -> list[SlipRecord]:
        async with self.session_factory() as session:
            rows = await session.scalars(
                select(OddysseySlip)
                .where(OddysseySlip.cycle_id == cycle_id)
                .order_by(OddysseySlip.slip_id)
            )
            return [_slip_record(row) for row in rows]

    async def unevaluated_slips(self, cycle_id: int) -> list[SlipRecord]:
        async with self.session_factory() as session:
            rows = await session.scalars(
                select(OddysseySlip)
                .where(OddysseySlip.cycle_id == cycle_id, OddysseySlip.is_evaluated.is_(False))
                .order_by(OddysseySlip.slip_id)
            )
            return [_slip_record(row) for row in rows]

    async def mark_slip_evaluated(
        self,
        slip_id: int,
        correct_count: int,
        final_score: int,
        evaluated_at: datetime,
        tx_hash: str | None = None,
    ) -> None:
        """Store on-chain evaluation values; the chain values are authoritative."""
        async with self.session_factory() as session:
            await session.execute(
                update(OddysseySlip)
                .where(OddysseySlip.slip_id == slip_id)
                .values(
                    is_evaluated=True,
                    correct_count=correct_count,
                    final_score=final_score,
                    evaluated_at=func.coalesce(OddysseySlip.evaluated_at, evaluated_at),
                    evaluation_tx_hash=func.coalesce(tx_hash, OddysseySlip.evaluation_tx_hash),
                )
            )
            await session.commit()

    async def max_slip_id(self) -> int | None:
        async with self.session_factory() as session:
            return await session.scalar(select(func.max(OddysseySlip.slip_id)))

    # Prize claims

    async def insert_prize_claim(self, record: PrizeClaimRecord) -> bool:
        async with self.session_factory() as session:
            result = await session.execute(
                insert(PrizeClaim)
                .values(
                    cycle_id=record.cycle_id,
                    player_address=record.player_address,
                    rank=record.rank,
                    amount=record.amount,
                    tx_hash=record.tx_hash,
                    log_index=record.log_index,
                    block_number=record.block_number,
                )
                .on_conflict_do_nothing(index_elements=["tx_hash", "log_index"])
                .returning(PrizeClaim.id)
            )
            inserted = result.scalar_one_or_none() is not None
            await session.commit()
            return inserted
