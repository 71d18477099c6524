"""Persistence for pools, bets, liquidity and the market id reverse lookup."""

from datetime import datetime

from eth_utils import keccak
from sqlalchemy import select, update
from sqlalchemy.dialects.postgresql import insert
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from bitredict.models.domain import Bet, MarketIdLookup, Pool, PoolLiquidityProvider
from bitredict.store.records import BetRecord, LiquidityRecord, PoolRecord


def clean_market_id(market_id: str) -> str:
    """Strip leading control characters, as left by some pool creation paths."""
    return market_id.lstrip("".join(chr(c) for c in range(0x20)))


def market_hash(market_id: str) -> str:
    """keccak256 of the UTF-8 market id, as emitted for indexed strings."""
    return "0x" + keccak(text=market_id).hex()


def market_id_variants(market_id: str) -> list[str]:
    cleaned = clean_market_id(market_id)
    return [market_id] if cleaned == market_id else [market_id, cleaned]


def _pool_record(row: Pool) -> PoolRecord:
    return PoolRecord(
        pool_id=row.pool_id,
        creator_address=row.creator_address,
        odds=row.odds,
        event_start_time=row.event_start_time,
        event_end_time=row.event_end_time,
        betting_end_time=row.betting_end_time,
        market_id=row.market_id,
        predicted_outcome=row.predicted_outcome,
        creator_stake=int(row.creator_stake or 0),
        total_creator_side_stake=int(row.total_creator_side_stake or 0),
        total_bettor_stake=int(row.total_bettor_stake or 0),
        league=row.league,
        category=row.category,
        market_type=row.market_type,
        oracle_type=row.oracle_type,
        is_private=row.is_private,
        use_bitr=row.use_bitr,
        is_settled=row.is_settled,
        creator_side_won=row.creator_side_won,
        result=row.result,
        settlement_tx_hash=row.settlement_tx_hash,
        is_refunded=row.is_refunded,
        tx_hash=row.tx_hash,
        block_number=row.block_number,
    )


class PoolStore:
    """SQL access to oracle.pools and the rows derived from pool events."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self.session_factory = session_factory

    async def upsert_pool(self, record: PoolRecord) -> None:
        """
        Insert or refresh a pool and register its market id hashes.

        Settled pools are terminal: the refresh is skipped for them.
        """
        values = {
            "pool_id": record.pool_id,
            "creator_address": record.creator_address,
            "predicted_outcome": record.predicted_outcome,
            "odds": record.odds,
            "creator_stake": record.creator_stake,
            "total_creator_side_stake": record.total_creator_side_stake,
            "total_bettor_stake": record.total_bettor_stake,
            "event_start_time": record.event_start_time,
            "event_end_time": record.event_end_time,
            "betting_end_time": record.betting_end_time,
            "league": record.league,
            "category": record.category,
            "market_id": record.market_id,
            "market_type": record.market_type,
            "oracle_type": record.oracle_type,
            "is_private": record.is_private,
            "use_bitr": record.use_bitr,
            "tx_hash": record.tx_hash,
            "block_number": record.block_number,
        }
        stmt = insert(Pool).values(**values)
        refreshed = {
            key: getattr(stmt.excluded, key)
            for key in values
            if key not in ("pool_id", "total_creator_side_stake", "total_bettor_stake")
        }
        stmt = stmt.on_conflict_do_update(
            index_elements=["pool_id"],
            set_=refreshed,
            where=Pool.is_settled.is_(False),
        )
        async with self.session_factory() as session:
            await session.execute(stmt)
            if record.market_id:
                for variant in market_id_variants(record.market_id):
                    await session.execute(
                        insert(MarketIdLookup)
                        .values(
                            market_hash=market_hash(variant),
                            market_id=variant,
                            pool_id=record.pool_id,
                        )
                        .on_conflict_do_nothing(index_elements=["market_hash"])
                    )
            await session.commit()

    async def get_pool(self, pool_id: int) -> PoolRecord | None:
        async with self.session_factory() as session:
            row = await session.get(Pool, pool_id)
            return _pool_record(row) if row else None

    async def lookup_market_hash(self, hash_hex: str) -> str | None:
        async with self.session_factory() as session:
            return await session.scalar(
                select(MarketIdLookup.market_id).where(
                    MarketIdLookup.market_hash == hash_hex.lower()
                )
            )

    async def pools_with_market(self, include_settled: bool = False) -> list[PoolRecord]:
        async with self.session_factory() as session:
            query = select(Pool).where(Pool.market_id.is_not(None)).order_by(Pool.pool_id)
            if not include_settled:
                query = query.where(Pool.is_settled.is_(False))
            rows = await session.scalars(query)
            return [_pool_record(row) for row in rows]

    async def mark_pool_settled(
        self,
        pool_id: int,
        result: str | None,
        creator_side_won: bool | None,
        tx_hash: str | None,
        settled_at: datetime,
    ) -> bool:
        async with self.session_factory() as session:
            updated = await session.execute(
                update(Pool)
                .where(Pool.pool_id == pool_id, Pool.is_settled.is_(False))
                .values(
                    is_settled=True,
                    result=result,
                    creator_side_won=creator_side_won,
                    settlement_tx_hash=tx_hash,
                    settled_at=settled_at,
                )
            )
            await session.commit()
            return bool(updated.rowcount)

    async def mark_pool_refunded(self, pool_id: int) -> bool:
        async with self.session_factory() as session:
            updated = await session.execute(
                update(Pool).where(Pool.pool_id == pool_id).values(is_refunded=True)
            )
            await session.commit()
            return bool(updated.rowcount)

    async def insert_bet(self, record: BetRecord) -> bool:
        """Insert a bet once per (tx_hash, log_index) and add it to the pool totals."""
        async with self.session_factory() as session:
            result = await session.execute(
                insert(Bet)
                .values(
                    pool_id=record.pool_id,
                    bettor_address=record.bettor_address,
                    amount=record.amount,
                    is_for_outcome=record.is_for_outcome,
                    tx_hash=record.tx_hash,
                    log_index=record.log_index,
                    block_number=record.block_number,
                )
                .on_conflict_do_nothing(index_elements=["tx_hash", "log_index"])
                .returning(Bet.id)
            )
            inserted = result.scalar_one_or_none() is not None
            if inserted:
                await session.execute(
                    update(Pool)
                    .where(Pool.pool_id == record.pool_id)
                    .values(total_bettor_stake=Pool.total_bettor_stake + record.amount)
                )
            await session.commit()
            return inserted

    async def insert_liquidity(self, record: LiquidityRecord) -> bool:
        async with self.session_factory() as session:
            result = await session.execute(
                insert(PoolLiquidityProvider)
                .values(
                    pool_id=record.pool_id,
                    provider_address=record.provider_address,
                    amount=record.amount,
                    tx_hash=record.tx_hash,
                    log_index=record.log_index,
                    block_number=record.block_number,
                )
                .on_conflict_do_nothing(index_elements=["tx_hash", "log_index"])
                .returning(PoolLiquidityProvider.id)
            )
            inserted = result.scalar_one_or_none() is not None
            if inserted:
                await session.execute(
                    update(Pool)
                    .where(Pool.pool_id == record.pool_id)
                    .values(
                        total_creator_side_stake=Pool.total_creator_side_stake + record.amount
                    )
                )
            await session.commit()
            return inserted

    async def bets_for_pool(self, pool_id: int) -> list[BetRecord]:
        async with self.session_factory() as session:
            rows = await session.scalars(
                select(Bet).where(Bet.pool_id == pool_id).order_by(Bet.block_number, Bet.log_index)
            )
            return [
                BetRecord(
                    pool_id=row.pool_id,
                    bettor_address=row.bettor_address,
                    amount=int(row.amount),
                    is_for_outcome=row.is_for_outcome,
                    tx_hash=row.tx_hash,
                    log_index=row.log_index,
                    block_number=row.block_number,
                )
                for row in rows
            ]
