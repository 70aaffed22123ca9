"""
Challenge key calendar: `YYYY-MM-DD` keys and proleptic Gregorian day numbers.

A challenge key names one daily challenge instance. Day numbers make calendar
adjacency an integer subtraction: `is_next_day(a, b)` holds when
`day_number(b) - day_number(a) == 1`.
"""

import datetime
from typing import Optional, Tuple

from .errors import InvalidChallengeKey

_DIGIT_POSITIONS = (0, 1, 2, 3, 5, 6, 8, 9)
_DAYS_IN_MONTH = (31, 28, 31, 30, 31, 30, 31, 31, 30, 31, 30, 31)


def is_leap_year(year: int) -> bool:
    return year % 4 == 0 and (year % 100 != 0 or year % 400 == 0)


def days_in_month(year: int, month: int) -> int:
    if month == 2 and is_leap_year(year):
        return 29
    return _DAYS_IN_MONTH[month - 1]


def parse_challenge_key(key: str) -> Tuple[int, int, int]:
    """Return (year, month, day) for a valid key or raise InvalidChallengeKey."""
    if not isinstance(key, str) or len(key) != 10:
        raise InvalidChallengeKey(f"invalid challenge key: {key!r}")
    if key[4] != "-" or key[7] != "-":
        raise InvalidChallengeKey(f"invalid challenge key: {key!r}")
    for i in _DIGIT_POSITIONS:
        # str.isdigit alone accepts non-ASCII digits such as superscripts
        if not (key[i].isascii() and key[i].isdigit()):
            raise InvalidChallengeKey(f"invalid challenge key: {key!r}")
    year, month, day = int(key[0:4]), int(key[5:7]), int(key[8:10])
    if month < 1 or month > 12:
        raise InvalidChallengeKey(f"invalid month in challenge key: {key!r}")
    if day < 1 or day > days_in_month(year, month):
        raise InvalidChallengeKey(f"invalid day in challenge key: {key!r}")
    return year, month, day


def validate_challenge_key(key: str) -> str:
    parse_challenge_key(key)
    return key


def is_valid_challenge_key(key: str) -> bool:
    try:
        parse_challenge_key(key)
    except InvalidChallengeKey:
        return False
    return True


def normalize_challenge_key(key: Optional[str]) -> str:
    """Trim surrounding whitespace and validate."""
    if key is None:
        raise InvalidChallengeKey("challenge key is required")
    return validate_challenge_key(str(key).strip())


def day_number(key: str) -> int:
    """Days since 1970-01-01 for the key's date (era / year-of-era decomposition)."""
    year, month, day = parse_challenge_key(key)
    y = year - 1 if month <= 2 else year
    era = y // 400
    yoe = y - era * 400
    mp = (month + 9) % 12
    doy = (153 * mp + 2) // 5 + day - 1
    doe = yoe * 365 + yoe // 4 - yoe // 100 + doy
    return era * 146097 + doe - 719468


def is_next_day(previous: str, following: str) -> bool:
    return day_number(following) - day_number(previous) == 1


def today_key() -> str:
    # daily challenges roll over at UTC midnight
    return datetime.datetime.now(datetime.timezone.utc).date().isoformat()
