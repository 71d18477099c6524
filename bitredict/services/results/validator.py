"""Fixture result format validation.

Mirrors the database trigger so that bad values are refused before a round
trip, and repairs rows written in legacy short forms before the trigger
existed.
"""

import structlog

from bitredict.errors import ValidationError
from bitredict.services.canonical import Btts, Outcome1X2, OverUnder25
from bitredict.store.records import ResultRecord

logger = structlog.get_logger(__name__)

# Legacy spellings seen in old rows, lowercased.
LEGACY_1X2 = {
    "home": Outcome1X2.HOME,
    "h": Outcome1X2.HOME,
    "1": Outcome1X2.HOME,
    "homewin": Outcome1X2.HOME,
    "away": Outcome1X2.AWAY,
    "a": Outcome1X2.AWAY,
    "2": Outcome1X2.AWAY,
    "awaywin": Outcome1X2.AWAY,
    "draw": Outcome1X2.DRAW,
    "d": Outcome1X2.DRAW,
    "x": Outcome1X2.DRAW,
}
LEGACY_OU = {
    "over": OverUnder25.OVER,
    "o": OverUnder25.OVER,
    "under": OverUnder25.UNDER,
    "u": OverUnder25.UNDER,
}
LEGACY_BTTS = {
    "yes": Btts.YES,
    "y": Btts.YES,
    "true": Btts.YES,
    "1": Btts.YES,
    "no": Btts.NO,
    "n": Btts.NO,
    "false": Btts.NO,
    "0": Btts.NO,
}


def _normalize(value: str | None, table: dict) -> str | None:
    if value is None:
        return None
    key = str(value).strip().lower().replace(" ", "").replace("_", "")
    canonical = table.get(key)
    return canonical.value if canonical is not None else None


class FixtureResultValidator:
    """Strict checks on write, lenient normalization for repair."""

    def __init__(self, store=None):
        self.store = store

    @staticmethod
    def validate_before_write(record: ResultRecord) -> None:
        """Raise ValidationError for any non-canonical outcome; None is allowed."""
        checks = (
            ("outcome_1x2", record.outcome_1x2, {o.value for o in Outcome1X2}),
            ("outcome_ou25", record.outcome_ou25, {o.value for o in OverUnder25}),
            ("outcome_btts", record.outcome_btts, {o.value for o in Btts}),
        )
        for field_name, value, allowed in checks:
            if value is None:
                continue
            if value not in allowed:
                raise ValidationError(
                    f"Invalid {field_name} format: {value!r} (expected one of {sorted(allowed)})",
                    details={"fixture_id": record.fixture_id, "field": field_name, "value": value},
                )

    @staticmethod
    def normalize_1x2(value: str | None) -> str | None:
        return _normalize(value, LEGACY_1X2)

    @staticmethod
    def normalize_ou25(value: str | None) -> str | None:
        return _normalize(value, LEGACY_OU)

    @staticmethod
    def normalize_btts(value: str | None) -> str | None:
        return _normalize(value, LEGACY_BTTS)

    def normalize(self, record: ResultRecord) -> ResultRecord:
        return ResultRecord(
            fixture_id=record.fixture_id,
            home_score=record.home_score,
            away_score=record.away_score,
            outcome_1x2=self.normalize_1x2(record.outcome_1x2),
            outcome_ou25=self.normalize_ou25(record.outcome_ou25),
            outcome_btts=self.normalize_btts(record.outcome_btts),
            finished_at=record.finished_at,
            source=record.source,
        )

    async def repair_legacy_results(self) -> dict[str, int]:
        """Rewrite legacy rows in canonical form; rows that cannot be mapped are left alone."""
        stats = {"checked": 0, "repaired": 0, "unrepairable": 0}
        for record in await self.store.legacy_results():
            stats["checked"] += 1
            repaired = self.normalize(record)
            originals = (record.outcome_1x2, record.outcome_ou25, record.outcome_btts)
            fixed = (repaired.outcome_1x2, repaired.outcome_ou25, repaired.outcome_btts)
            if any(orig is not None and new is None for orig, new in zip(originals, fixed)):
                logger.warning(
                    "legacy_result_unrepairable",
                    fixture_id=record.fixture_id,
                    outcome_1x2=record.outcome_1x2,
                    outcome_ou25=record.outcome_ou25,
                    outcome_btts=record.outcome_btts,
                )
                stats["unrepairable"] += 1
                continue
            await self.store.upsert_result(repaired, repair=True)
            stats["repaired"] += 1

        logger.info("legacy_results_repaired", **stats)
        return stats
