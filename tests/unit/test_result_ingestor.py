"""Unit tests for result validation and ingestion.

CRITICAL TESTS:
- Non-canonical outcomes MUST be refused on write
- A stored outcome is never cleared by a later partial write
- Legacy short forms are repaired only when they map unambiguously
"""

from datetime import datetime, timedelta, timezone

import pytest

from bitredict.errors import ValidationError
from bitredict.services.results import FinalScore, FixtureResultValidator, ResultIngestor
from bitredict.services.results.sportmonks import parse_final_score
from bitredict.store.records import CycleRecord, ResultRecord


class StubFeed:
    def __init__(self, scores):
        self.scores = scores
        self.requested = []

    async def fetch_final_scores(self, fixture_ids):
        self.requested.append(list(fixture_ids))
        return [s for s in self.scores if s.fixture_id in fixture_ids]


class TestFormatCanonicality:
    """Test the write-side format check shared with the database trigger."""

    def setup_method(self):
        self.validator = FixtureResultValidator()

    @pytest.mark.parametrize("value", ["1", "X", "2", "home", ""])
    async def test_short_forms_rejected_on_insert(self, result_store, value):
        """Legacy and empty 1X2 values raise ValidationError and are not stored."""
        with pytest.raises(ValidationError) as exc_info:
            await result_store.upsert_result(ResultRecord(fixture_id=1, outcome_1x2=value))

        assert "Invalid outcome_1x2 format" in exc_info.value.message
        assert 1 not in result_store.results

    @pytest.mark.parametrize("value", ["Home", "Draw", "Away"])
    async def test_canonical_values_accepted(self, result_store, value):
        await result_store.upsert_result(ResultRecord(fixture_id=1, outcome_1x2=value))

        assert result_store.results[1].outcome_1x2 == value

    def test_over_under_and_btts_checked_too(self):
        with pytest.raises(ValidationError):
            self.validator.validate_before_write(ResultRecord(fixture_id=2, outcome_ou25="O"))
        with pytest.raises(ValidationError):
            self.validator.validate_before_write(ResultRecord(fixture_id=2, outcome_btts="true"))

    def test_missing_outcomes_allowed(self):
        """None means "not known yet" and passes."""
        self.validator.validate_before_write(ResultRecord(fixture_id=3))


class TestLegacyRepair:
    """Test normalization of pre-trigger rows."""

    def setup_method(self):
        self.validator = FixtureResultValidator()

    @pytest.mark.parametrize(
        "raw,expected",
        [("1", "Home"), ("x", "Draw"), ("2", "Away"), ("H", "Home"), ("home_win", "Home"), ("bogus", None)],
    )
    def test_normalize_1x2(self, raw, expected):
        assert self.validator.normalize_1x2(raw) == expected

    def test_normalize_over_under_and_btts(self):
        assert self.validator.normalize_ou25("o") == "Over"
        assert self.validator.normalize_ou25("U") == "Under"
        assert self.validator.normalize_btts("true") == "Yes"
        assert self.validator.normalize_btts("0") == "No"
        assert self.validator.normalize_btts(None) is None

    async def test_repair_rewrites_mappable_rows_only(self, result_store):
        result_store.seed_legacy(ResultRecord(fixture_id=10, outcome_1x2="1", outcome_ou25="O", outcome_btts="n"))
        result_store.seed_legacy(ResultRecord(fixture_id=11, outcome_1x2="??", outcome_ou25="Under"))
        await result_store.upsert_result(ResultRecord(fixture_id=12, outcome_1x2="Draw"))

        stats = await FixtureResultValidator(result_store).repair_legacy_results()

        assert stats == {"checked": 2, "repaired": 1, "unrepairable": 1}
        repaired = result_store.results[10]
        assert (repaired.outcome_1x2, repaired.outcome_ou25, repaired.outcome_btts) == ("Home", "Over", "No")
        assert result_store.results[11].outcome_1x2 == "??", "Unmappable rows must be left for an operator"


class TestResultIngestor:
    """Test score recording and the pending-results sweep."""

    def setup_method(self):
        self.now = datetime(2026, 10, 1, 20, 0, tzinfo=timezone.utc)

    def _ingestor(self, result_store, oddyssey_store, feed=None):
        return ResultIngestor(result_store, oddyssey_store, feed=feed, clock=lambda: self.now)

    async def test_record_result_derives_all_outcomes(self, result_store, oddyssey_store):
        ingestor = self._ingestor(result_store, oddyssey_store)

        record = await ingestor.record_result(104, 0, 0, source="manual")

        stored = result_store.results[104]
        assert stored == record
        assert (stored.outcome_1x2, stored.outcome_ou25, stored.outcome_btts) == ("Draw", "Under", "No")
        assert stored.finished_at == self.now

    async def test_record_result_rejects_negative_score(self, result_store, oddyssey_store):
        with pytest.raises(ValueError):
            await self._ingestor(result_store, oddyssey_store).record_result(1, -1, 0)
        assert result_store.results == {}

    async def test_partial_write_never_clears_outcome(self, result_store):
        """A later write with a null outcome keeps the stored value."""
        await result_store.upsert_result(ResultRecord(fixture_id=5, outcome_1x2="Home", outcome_ou25="Over"))
        await result_store.upsert_result(ResultRecord(fixture_id=5, outcome_1x2=None, outcome_btts="Yes"))

        stored = result_store.results[5]
        assert stored.outcome_1x2 == "Home"
        assert stored.outcome_ou25 == "Over"
        assert stored.outcome_btts == "Yes"

    async def test_pending_fixtures_wait_for_kickoff_delay(self, result_store, oddyssey_store):
        """Only matches that kicked off 2h+ ago and lack a result are pending."""
        old = int((self.now - timedelta(hours=3)).timestamp())
        recent = int((self.now - timedelta(minutes=30)).timestamp())
        oddyssey_store.cycles[1] = CycleRecord(
            cycle_id=1,
            matches=[{"id": 1, "start_time": old}, {"id": 2, "start_time": old}, {"id": 3, "start_time": recent}],
        )
        oddyssey_store.cycles[2] = CycleRecord(
            cycle_id=2, matches=[{"id": 4, "start_time": old}], is_resolved=True
        )
        await result_store.upsert_result(ResultRecord(fixture_id=2, outcome_1x2="Home", outcome_ou25="Over"))

        pending = await self._ingestor(result_store, oddyssey_store).pending_fixture_ids()

        assert pending == [1]

    async def test_ingest_pending_results(self, result_store, oddyssey_store):
        old = int((self.now - timedelta(hours=4)).timestamp())
        oddyssey_store.cycles[1] = CycleRecord(
            cycle_id=1, matches=[{"id": 7, "start_time": old}, {"id": 8, "start_time": old}]
        )
        feed = StubFeed([FinalScore(7, 2, 1, "FT"), FinalScore(8, -1, 0, "FT")])

        stats = await self._ingestor(result_store, oddyssey_store, feed).ingest_pending_results()

        assert feed.requested == [[7, 8]]
        assert stats == {"pending": 2, "fetched": 2, "recorded": 1, "errors": 1}
        assert result_store.results[7].outcome_1x2 == "Home"
        assert result_store.results[7].source == "sportmonks"
        assert 8 not in result_store.results

    async def test_no_feed_configured(self, result_store, oddyssey_store):
        stats = await self._ingestor(result_store, oddyssey_store).ingest_pending_results()

        assert stats == {"pending": 0, "fetched": 0, "recorded": 0, "errors": 0}


class TestParseFinalScore:
    """Test SportMonks score extraction."""

    @staticmethod
    def _score(description, participant, goals):
        return {"description": description, "score": {"goals": goals, "participant": participant}}

    def test_full_time_uses_current(self):
        fixture = {
            "id": 42,
            "state": {"state": "FT"},
            "scores": [
                self._score("1ST_HALF", "home", 0),
                self._score("CURRENT", "home", 2),
                self._score("CURRENT", "away", 1),
            ],
        }

        score = parse_final_score(fixture)

        assert (score.fixture_id, score.home_score, score.away_score) == (42, 2, 1)

    def test_extra_time_uses_ninety_minutes(self):
        """CURRENT includes extra time; the 90-minute score is the sum of the halves."""
        fixture = {
            "id": 43,
            "state": {"state": "AET"},
            "scores": [
                self._score("1ST_HALF", "home", 1),
                self._score("1ST_HALF", "away", 0),
                self._score("2ND_HALF", "home", 0),
                self._score("2ND_HALF", "away", 1),
                self._score("CURRENT", "home", 2),
                self._score("CURRENT", "away", 1),
            ],
        }

        score = parse_final_score(fixture)

        assert (score.home_score, score.away_score) == (1, 1)

    def test_unfinished_fixture_ignored(self):
        fixture = {"id": 44, "state": {"state": "INPLAY_2ND_HALF"}, "scores": []}

        assert parse_final_score(fixture) is None

    def test_missing_scores_ignored(self):
        fixture = {"id": 45, "state": {"state": "FT"}, "scores": [self._score("CURRENT", "home", 1)]}

        assert parse_final_score(fixture) is None
