"""Unit tests for canonical outcomes and their chain codes.

The contract only understands the integer codes; a wrong mapping here resolves
a cycle with the wrong results, so every boundary value is pinned.
"""

import pytest

from bitredict.errors import InvariantViolation, TxRevertError, classify_revert, should_alert
from bitredict.services.canonical import (
    MoneylineResult,
    OracleType,
    OverUnderResult,
    moneyline_code,
    moneyline_outcome,
    outcomes_from_score,
    over_under_code,
    over_under_outcome,
)


class TestOutcomesFromScore:
    """Test outcome derivation from 90-minute scores."""

    def test_happy_cycle_outcomes(self, happy_scores):
        """The happy-cycle seed yields the expected 1X2 and O/U 2.5 sequences."""
        derived = [outcomes_from_score(*happy_scores[fid]) for fid in sorted(happy_scores)]

        assert [d[0] for d in derived] == [
            "Home", "Draw", "Away", "Home", "Draw", "Home", "Draw", "Away", "Home", "Away",
        ]
        # Two goals is under 2.5: 1-1 and 0-2 are Under.
        assert [d[1] for d in derived] == [
            "Under", "Over", "Under", "Over", "Under", "Over", "Under", "Under", "Over", "Over",
        ]

    def test_btts(self):
        """Both teams to score needs a goal on each side."""
        assert outcomes_from_score(1, 1)[2] == "Yes"
        assert outcomes_from_score(3, 0)[2] == "No"
        assert outcomes_from_score(0, 0)[2] == "No"

    def test_three_goals_is_over(self):
        assert outcomes_from_score(2, 1)[1] == "Over"
        assert outcomes_from_score(0, 3)[1] == "Over"

    @pytest.mark.parametrize("home,away", [(-1, 0), (0, -2), (None, 1)])
    def test_invalid_scores_rejected(self, home, away):
        with pytest.raises(ValueError):
            outcomes_from_score(home, away)


class TestChainCodes:
    """Test canonical strings <-> contract enum codes."""

    def test_full_words_map_to_codes(self):
        assert moneyline_code("Home") == MoneylineResult.HOME_WIN
        assert moneyline_code("Draw") == MoneylineResult.DRAW
        assert moneyline_code("Away") == MoneylineResult.AWAY_WIN
        assert over_under_code("Over") == OverUnderResult.OVER
        assert over_under_code("Under") == OverUnderResult.UNDER

    @pytest.mark.parametrize("value", ["1", "X", "2", "home", "HOME", "", None, 1])
    def test_anything_else_is_not_set(self, value):
        """Short forms and wrong case never reach the contract as a result."""
        assert moneyline_code(value) == MoneylineResult.NOT_SET

    @pytest.mark.parametrize("value", ["O", "U", "over", "", None])
    def test_over_under_short_forms_are_not_set(self, value):
        assert over_under_code(value) == OverUnderResult.NOT_SET

    def test_codes_back_to_outcomes(self):
        assert moneyline_outcome(1) == "Home"
        assert moneyline_outcome(3) == "Away"
        assert over_under_outcome(2) == "Under"

    def test_not_set_and_unknown_codes_give_none(self):
        assert moneyline_outcome(0) is None
        assert moneyline_outcome(9) is None
        assert over_under_outcome(0) is None

    def test_oracle_type_from_code(self):
        assert OracleType.from_code(0) == OracleType.GUIDED
        assert OracleType.from_code(1) == OracleType.OPEN


class TestRevertClassification:
    """Test mapping of revert messages to retry decisions."""

    @pytest.mark.parametrize(
        "message,reason",
        [
            ("execution reverted: Only guided oracle", "only_guided_oracle"),
            ("execution reverted: Event not ended yet", "event_not_ended"),
            ("execution reverted: Already settled", "already_settled"),
            ("execution reverted: Slip already evaluated", "slip_already_evaluated"),
            ("execution reverted: Cycle not resolved", "cycle_not_resolved"),
        ],
    )
    def test_known_reverts_are_not_retried(self, message, reason):
        error = classify_revert(message, tx_hash="0xabc")

        assert isinstance(error, TxRevertError)
        assert error.reason == reason
        assert error.retryable is False
        assert error.tx_hash == "0xabc"
        assert should_alert(error) is False

    def test_unknown_revert_is_retryable_and_alerts(self):
        error = classify_revert("execution reverted: out of gas")

        assert error.reason is None
        assert error.retryable is True
        assert should_alert(error) is True

    def test_invariant_violations_alert(self):
        assert should_alert(InvariantViolation("bad slip order")) is True
        assert should_alert(ValueError("boom")) is False
