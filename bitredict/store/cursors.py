"""Indexer cursors: last fully processed block per (contract, event)."""

from sqlalchemy import func, select
from sqlalchemy.dialects.postgresql import insert
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from bitredict.models.system import IndexerCursor


class CursorStore:
    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self.session_factory = session_factory

    async def get(self, contract: str, event_names: list[str]) -> dict[str, int]:
        async with self.session_factory() as session:
            rows = await session.execute(
                select(IndexerCursor.event_name, IndexerCursor.last_processed_block).where(
                    IndexerCursor.contract == contract,
                    IndexerCursor.event_name.in_(event_names),
                )
            )
            return {name: block for name, block in rows}

    async def advance(self, contract: str, event_names: list[str], block: int) -> None:
        """Move every cursor of the contract to ``block`` in one transaction; never backwards."""
        stmt = insert(IndexerCursor).values(
            [
                {"contract": contract, "event_name": name, "last_processed_block": block}
                for name in event_names
            ]
        )
        stmt = stmt.on_conflict_do_update(
            index_elements=["contract", "event_name"],
            set_={
                "last_processed_block": func.greatest(
                    IndexerCursor.last_processed_block, stmt.excluded.last_processed_block
                ),
                "updated_at": func.now(),
            },
        )
        async with self.session_factory() as session:
            await session.execute(stmt)
            await session.commit()
