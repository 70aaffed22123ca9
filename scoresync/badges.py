from typing import Iterable, List, Optional

from . import challenge_key as ck
from .models import DailyBadgeStatus

MAX_BADGE_POWER = 9


def badge_power(streak: int) -> Optional[int]:
    """Largest p <= MAX_BADGE_POWER with 2**p <= streak, or None below one day."""
    if streak < 1:
        return None
    power = 0
    while power < MAX_BADGE_POWER and 2 ** (power + 1) <= streak:
        power += 1
    return power


def _ordered_keys(keys: Iterable[str]) -> List[str]:
    trimmed = (k.strip() for k in keys if isinstance(k, str))
    valid = {k for k in trimmed if ck.is_valid_challenge_key(k)}
    return sorted(valid, key=ck.day_number)


def longest_streak(keys: List[str]) -> int:
    if not keys:
        return 0
    best = run = 1
    for previous, following in zip(keys, keys[1:]):
        run = run + 1 if ck.is_next_day(previous, following) else 1
        best = max(best, run)
    return best


def latest_run(keys: List[str]) -> int:
    if not keys:
        return 0
    run = 1
    for index in range(len(keys) - 1, 0, -1):
        if not ck.is_next_day(keys[index - 1], keys[index]):
            break
        run += 1
    return run


def badge_status_from_streaks(current_streak: int, max_streak: int) -> DailyBadgeStatus:
    highest = badge_power(max_streak)
    if highest is None:
        next_power: Optional[int] = 0
    elif highest >= MAX_BADGE_POWER:
        next_power = None
    else:
        next_power = highest + 1
    next_days = None if next_power is None else 2 ** next_power
    return DailyBadgeStatus(
        current_streak=current_streak,
        max_streak=max_streak,
        highest_badge_power=highest,
        highest_badge_days=None if highest is None else 2 ** highest,
        next_badge_power=next_power,
        next_badge_days=next_days,
        days_to_next_badge=None if next_days is None else max(0, next_days - current_streak),
    )


def compute_badge_status(accepted_keys: Iterable[str], today: str) -> DailyBadgeStatus:
    """Fold accepted daily completions into streak and badge tier.

    Invalid keys are dropped. The streak ending at the latest completion stays
    current while that completion is today or yesterday; otherwise it has
    lapsed and the current streak is 0.
    """
    ck.validate_challenge_key(today)
    keys = _ordered_keys(accepted_keys)
    if not keys:
        return badge_status_from_streaks(0, 0)
    last = keys[-1]
    lapsed = not (last == today or ck.is_next_day(last, today))
    return badge_status_from_streaks(0 if lapsed else latest_run(keys), longest_streak(keys))
