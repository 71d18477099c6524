"""Result ingestion: final scores in, canonical outcomes out."""

from datetime import datetime, timedelta, timezone
from typing import Any

import structlog

from bitredict.errors import BitredictError
from bitredict.services.canonical import outcomes_from_score
from bitredict.services.results.validator import FixtureResultValidator
from bitredict.store.records import ResultRecord

logger = structlog.get_logger(__name__)

# Kickoff must be at least this long ago before a result is looked up.
RESULT_DELAY = timedelta(hours=2)


class ResultIngestor:
    def __init__(self, results, oddyssey, feed=None, clock=None):
        self.results = results
        self.oddyssey = oddyssey
        self.feed = feed
        self.clock = clock or (lambda: datetime.now(timezone.utc))
        self.validator = FixtureResultValidator(results)

    async def record_result(
        self,
        fixture_id: int,
        home_score: int,
        away_score: int,
        finished_at: datetime | None = None,
        source: str | None = None,
    ) -> ResultRecord:
        """Store a final score with its canonical 1X2, O/U 2.5 and BTTS outcomes."""
        one_x_two, over_under, btts = outcomes_from_score(home_score, away_score)
        record = ResultRecord(
            fixture_id=fixture_id,
            home_score=home_score,
            away_score=away_score,
            outcome_1x2=one_x_two,
            outcome_ou25=over_under,
            outcome_btts=btts,
            finished_at=finished_at or self.clock(),
            source=source,
        )
        self.validator.validate_before_write(record)
        await self.results.upsert_result(record)
        logger.info(
            "fixture_result_recorded",
            fixture_id=fixture_id,
            score=f"{home_score}-{away_score}",
            outcome_1x2=one_x_two,
            outcome_ou25=over_under,
        )
        return record

    async def pending_fixture_ids(self) -> list[int]:
        """Fixtures of unresolved cycles that kicked off long enough ago and have no result."""
        cutoff = int((self.clock() - RESULT_DELAY).timestamp())
        candidates: list[int] = []
        for cycle in await self.oddyssey.unresolved_cycles():
            for match in cycle.matches:
                if int(match["start_time"]) <= cutoff:
                    candidates.append(int(match["id"]))
        if not candidates:
            return []
        existing = await self.results.get_results(candidates)
        return sorted(
            {
                fid
                for fid in candidates
                if fid not in existing or existing[fid].outcome_1x2 is None or existing[fid].outcome_ou25 is None
            }
        )

    async def ingest_pending_results(self) -> dict[str, Any]:
        stats = {"pending": 0, "fetched": 0, "recorded": 0, "errors": 0}
        if self.feed is None:
            logger.warning("results_feed_not_configured")
            return stats

        pending = await self.pending_fixture_ids()
        stats["pending"] = len(pending)
        if not pending:
            return stats

        scores = await self.feed.fetch_final_scores(pending)
        stats["fetched"] = len(scores)
        for score in scores:
            try:
                await self.record_result(
                    score.fixture_id,
                    score.home_score,
                    score.away_score,
                    finished_at=score.finished_at,
                    source="sportmonks",
                )
                stats["recorded"] += 1
            except (BitredictError, ValueError) as e:
                logger.error("result_ingest_error", fixture_id=score.fixture_id, error=str(e))
                stats["errors"] += 1

        logger.info("pending_results_ingested", **stats)
        return stats
