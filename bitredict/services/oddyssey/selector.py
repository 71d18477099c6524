"""Daily cycle fixture selection."""

from datetime import date, datetime, time, timedelta, timezone
from decimal import Decimal
from typing import Any

import structlog

from bitredict.services.chain.gateway import MATCHES_PER_CYCLE, ChainMatch
from bitredict.store.records import FixtureRecord

logger = structlog.get_logger(__name__)

ODDS_SCALE = 1000
MAX_PER_LEAGUE_FIRST_PASS = 2
PRIME_TIME_HOURS = range(15, 22)


def scale_odds(odds: float | Decimal) -> int:
    """Decimal odds -> contract uint32 (x1000)."""
    return int((Decimal(str(odds)) * ODDS_SCALE).to_integral_value())


def to_chain_match(fixture: FixtureRecord) -> ChainMatch:
    return ChainMatch(
        id=fixture.id,
        start_time=int(fixture.match_date.timestamp()),
        odds_home=scale_odds(fixture.home_odds),
        odds_draw=scale_odds(fixture.draw_odds),
        odds_away=scale_odds(fixture.away_odds),
        odds_over=scale_odds(fixture.over_25_odds),
        odds_under=scale_odds(fixture.under_25_odds),
    )


class CycleSelector:
    """
    Picks the 10 fixtures of a daily cycle.

    Eligible fixtures kick off on the target date no earlier than the first
    match hour and carry all five odds within range. Among those, balanced
    1X2 odds and prime-time kickoffs score higher, with at most two per league
    on the first pass.
    """

    def __init__(self, results, settings, config: dict[str, Any] | None = None):
        self.results = results
        self.settings = settings
        selection = ((config or {}).get("oddyssey") or {}).get("selection") or {}
        self.min_odds = float(selection.get("min_odds", 1.0))
        self.max_odds = float(selection.get("max_odds", 50.0))
        self.max_over_under_odds = float(selection.get("max_over_under_odds", 10.0))

    def is_eligible(self, fixture: FixtureRecord, earliest: datetime) -> bool:
        if fixture.match_date < earliest:
            return False
        if fixture.status not in ("NS", "TBA"):
            return False
        moneyline = (fixture.home_odds, fixture.draw_odds, fixture.away_odds)
        over_under = (fixture.over_25_odds, fixture.under_25_odds)
        if any(odd is None for odd in moneyline + over_under):
            return False
        if not all(self.min_odds < float(odd) < self.max_odds for odd in moneyline):
            return False
        return all(self.min_odds < float(odd) <= self.max_over_under_odds for odd in over_under)

    @staticmethod
    def score(fixture: FixtureRecord) -> float:
        moneyline = [float(fixture.home_odds), float(fixture.draw_odds), float(fixture.away_odds)]
        score = min(moneyline) / max(moneyline) * 20
        all_odds = moneyline + [float(fixture.over_25_odds), float(fixture.under_25_odds)]
        if all(1.05 <= odd <= 15.0 for odd in all_odds):
            score += 15
        if fixture.match_date.hour in PRIME_TIME_HOURS:
            score += 10
        return score

    async def select(self, target_date: date) -> list[FixtureRecord]:
        """Up to 10 fixtures, ordered by kickoff then id; fewer means the cycle must wait."""
        day_start = datetime.combine(target_date, time(0, 0), tzinfo=timezone.utc)
        earliest = day_start.replace(hour=self.settings.cycle_first_match_hour_utc)
        fixtures = await self.results.fixtures_between(day_start, day_start + timedelta(days=1))
        eligible = [f for f in fixtures if self.is_eligible(f, earliest)]
        ranked = sorted(eligible, key=lambda f: (-self.score(f), f.match_date, f.id))

        selected: list[FixtureRecord] = []
        per_league: dict[str | None, int] = {}
        for fixture in ranked:
            if len(selected) == MATCHES_PER_CYCLE:
                break
            if per_league.get(fixture.league_name, 0) < MAX_PER_LEAGUE_FIRST_PASS:
                selected.append(fixture)
                per_league[fixture.league_name] = per_league.get(fixture.league_name, 0) + 1
        for fixture in ranked:
            if len(selected) == MATCHES_PER_CYCLE:
                break
            if fixture not in selected:
                selected.append(fixture)

        selected.sort(key=lambda f: (f.match_date, f.id))
        logger.info(
            "cycle_fixtures_selected",
            target_date=target_date.isoformat(),
            available=len(fixtures),
            eligible=len(eligible),
            selected=len(selected),
        )
        return selected
