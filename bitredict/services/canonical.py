"""Canonical result enums and their on-chain codes.

Every boundary between the database, the sports feed and the contracts goes
through this module. Conversions to chain codes accept the full-word enum
strings only; anything else maps to NOT_SET, which callers must treat as
"result not available".
"""

from enum import Enum, IntEnum


class Outcome1X2(str, Enum):
    HOME = "Home"
    DRAW = "Draw"
    AWAY = "Away"


class OverUnder25(str, Enum):
    OVER = "Over"
    UNDER = "Under"


class Btts(str, Enum):
    YES = "Yes"
    NO = "No"


class MoneylineResult(IntEnum):
    NOT_SET = 0
    HOME_WIN = 1
    DRAW = 2
    AWAY_WIN = 3


class OverUnderResult(IntEnum):
    NOT_SET = 0
    OVER = 1
    UNDER = 2


class BetType(IntEnum):
    MONEYLINE = 0
    OVER_UNDER = 1


class CycleState(IntEnum):
    NOT_STARTED = 0
    ACTIVE = 1
    ENDED = 2
    RESOLVED = 3


class OracleType(str, Enum):
    GUIDED = "Guided"
    OPEN = "Open"

    @classmethod
    def from_code(cls, code: int) -> "OracleType":
        return cls.GUIDED if int(code) == 0 else cls.OPEN


_MONEYLINE_CODES = {
    Outcome1X2.HOME.value: MoneylineResult.HOME_WIN,
    Outcome1X2.DRAW.value: MoneylineResult.DRAW,
    Outcome1X2.AWAY.value: MoneylineResult.AWAY_WIN,
}
_MONEYLINE_OUTCOMES = {code: outcome for outcome, code in _MONEYLINE_CODES.items()}

_OVER_UNDER_CODES = {
    OverUnder25.OVER.value: OverUnderResult.OVER,
    OverUnder25.UNDER.value: OverUnderResult.UNDER,
}
_OVER_UNDER_OUTCOMES = {code: outcome for outcome, code in _OVER_UNDER_CODES.items()}


def moneyline_code(outcome: str | None) -> MoneylineResult:
    """Home/Draw/Away -> contract code; any other input is NOT_SET."""
    if not isinstance(outcome, str):
        return MoneylineResult.NOT_SET
    return _MONEYLINE_CODES.get(outcome, MoneylineResult.NOT_SET)


def over_under_code(outcome: str | None) -> OverUnderResult:
    """Over/Under -> contract code; any other input is NOT_SET."""
    if not isinstance(outcome, str):
        return OverUnderResult.NOT_SET
    return _OVER_UNDER_CODES.get(outcome, OverUnderResult.NOT_SET)


def moneyline_outcome(code: int) -> str | None:
    """Contract code -> Home/Draw/Away; NOT_SET and unknown codes give None."""
    try:
        return _MONEYLINE_OUTCOMES.get(MoneylineResult(code))
    except ValueError:
        return None


def over_under_outcome(code: int) -> str | None:
    try:
        return _OVER_UNDER_OUTCOMES.get(OverUnderResult(code))
    except ValueError:
        return None


def outcomes_from_score(home_score: int, away_score: int) -> tuple[str, str, str]:
    """
    Derive (1X2, O/U 2.5, BTTS) canonical outcomes from a final score.

    Raises ValueError for negative or missing scores.
    """
    if home_score is None or away_score is None:
        raise ValueError("Both scores are required")
    if home_score < 0 or away_score < 0:
        raise ValueError(f"Invalid score {home_score}-{away_score}")

    if home_score > away_score:
        one_x_two = Outcome1X2.HOME
    elif away_score > home_score:
        one_x_two = Outcome1X2.AWAY
    else:
        one_x_two = Outcome1X2.DRAW

    over_under = OverUnder25.OVER if home_score + away_score > 2.5 else OverUnder25.UNDER
    btts = Btts.YES if home_score > 0 and away_score > 0 else Btts.NO
    return one_x_two.value, over_under.value, btts.value
