"""Persistence for fixtures and canonical fixture results."""

from datetime import datetime

import structlog
from sqlalchemy import func, or_, select
from sqlalchemy.dialects.postgresql import insert
from sqlalchemy.exc import DBAPIError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from bitredict.errors import ValidationError
from bitredict.models.domain import Fixture, FixtureResult
from bitredict.store.records import FixtureRecord, ResultRecord

logger = structlog.get_logger(__name__)

CANONICAL_1X2 = ("Home", "Draw", "Away")
CANONICAL_OU = ("Over", "Under")
CANONICAL_BTTS = ("Yes", "No")


def _result_record(row: FixtureResult) -> ResultRecord:
    return ResultRecord(
        fixture_id=row.fixture_id,
        home_score=row.home_score,
        away_score=row.away_score,
        outcome_1x2=row.outcome_1x2,
        outcome_ou25=row.outcome_ou25,
        outcome_btts=row.outcome_btts,
        finished_at=row.finished_at,
        source=row.source,
    )


def _fixture_record(row: Fixture) -> FixtureRecord:
    return FixtureRecord(
        id=row.id,
        home_team=row.home_team,
        away_team=row.away_team,
        match_date=row.match_date,
        league_name=row.league_name,
        status=row.status,
        home_odds=float(row.home_odds) if row.home_odds is not None else None,
        draw_odds=float(row.draw_odds) if row.draw_odds is not None else None,
        away_odds=float(row.away_odds) if row.away_odds is not None else None,
        over_25_odds=float(row.over_25_odds) if row.over_25_odds is not None else None,
        under_25_odds=float(row.under_25_odds) if row.under_25_odds is not None else None,
    )


class ResultStore:
    """SQL access to oracle.fixtures and oracle.fixture_results."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self.session_factory = session_factory

    async def upsert_fixtures(self, fixtures: list[FixtureRecord]) -> int:
        """Insert fixtures not yet known; existing rows are left untouched."""
        if not fixtures:
            return 0
        async with self.session_factory() as session:
            result = await session.execute(
                insert(Fixture)
                .values(
                    [
                        {
                            "id": f.id,
                            "name": f.name,
                            "home_team": f.home_team,
                            "away_team": f.away_team,
                            "league_name": f.league_name,
                            "match_date": f.match_date,
                            "status": f.status,
                            "home_odds": f.home_odds,
                            "draw_odds": f.draw_odds,
                            "away_odds": f.away_odds,
                            "over_25_odds": f.over_25_odds,
                            "under_25_odds": f.under_25_odds,
                        }
                        for f in fixtures
                    ]
                )
                .on_conflict_do_nothing(index_elements=["id"])
                .returning(Fixture.id)
            )
            inserted = len(result.all())
            await session.commit()
        return inserted

    async def fixtures_between(self, start: datetime, end: datetime) -> list[FixtureRecord]:
        async with self.session_factory() as session:
            rows = await session.scalars(
                select(Fixture)
                .where(Fixture.match_date >= start, Fixture.match_date < end)
                .order_by(Fixture.match_date, Fixture.id)
            )
            return [_fixture_record(row) for row in rows]

    async def get_results(self, fixture_ids: list[int]) -> dict[int, ResultRecord]:
        if not fixture_ids:
            return {}
        async with self.session_factory() as session:
            rows = await session.scalars(
                select(FixtureResult).where(FixtureResult.fixture_id.in_(fixture_ids))
            )
            return {row.fixture_id: _result_record(row) for row in rows}

    async def upsert_result(self, record: ResultRecord, repair: bool = False) -> None:
        """
        Insert or update a fixture result.

        A non-null outcome is never cleared: null incoming fields keep the
        stored value. Only ``repair=True`` may replace an existing outcome
        with a different canonical value.
        """
        values = {
            "fixture_id": record.fixture_id,
            "home_score": record.home_score,
            "away_score": record.away_score,
            "outcome_1x2": record.outcome_1x2,
            "outcome_ou25": record.outcome_ou25,
            "outcome_btts": record.outcome_btts,
            "finished_at": record.finished_at,
            "source": record.source,
        }
        stmt = insert(FixtureResult).values(**values)
        excluded = stmt.excluded
        table = FixtureResult.__table__.c

        def keep(column: str):
            incoming = getattr(excluded, column)
            current = getattr(table, column)
            if repair:
                return func.coalesce(incoming, current)
            return func.coalesce(current, incoming)

        stmt = stmt.on_conflict_do_update(
            index_elements=["fixture_id"],
            set_={
                "home_score": keep("home_score"),
                "away_score": keep("away_score"),
                "outcome_1x2": keep("outcome_1x2"),
                "outcome_ou25": keep("outcome_ou25"),
                "outcome_btts": keep("outcome_btts"),
                "finished_at": keep("finished_at"),
                "source": func.coalesce(excluded.source, table.source),
                "updated_at": func.now(),
            },
        )
        async with self.session_factory() as session:
            try:
                await session.execute(stmt)
                await session.commit()
            except DBAPIError as e:
                await session.rollback()
                if "Invalid outcome" in str(e.orig):
                    raise ValidationError(
                        f"Rejected non-canonical result for fixture {record.fixture_id}",
                        details={"fixture_id": record.fixture_id, "error": str(e.orig)},
                    ) from e
                raise

    async def legacy_results(self) -> list[ResultRecord]:
        """Rows written before the format trigger existed with non-canonical outcomes."""
        async with self.session_factory() as session:
            rows = await session.scalars(
                select(FixtureResult).where(
                    or_(
                        FixtureResult.outcome_1x2.not_in(CANONICAL_1X2),
                        FixtureResult.outcome_ou25.not_in(CANONICAL_OU),
                        FixtureResult.outcome_btts.not_in(CANONICAL_BTTS),
                    )
                )
            )
            return [_result_record(row) for row in rows]
