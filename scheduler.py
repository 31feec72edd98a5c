"""Which split day is due today, and how workout streaks move.

Everything here is a pure function of its arguments; callers own the
state and decide when to persist it.
"""

from __future__ import annotations
import datetime
from dataclasses import dataclass, replace
from typing import Optional


def _as_date(value: datetime.date | datetime.datetime) -> datetime.date:
    if isinstance(value, datetime.datetime):
        return value.date()
    return value


def calendar_days_between(
    start: datetime.date | datetime.datetime, end: datetime.date | datetime.datetime
) -> int:
    """Number of midnights crossed going from ``start`` to ``end``.

    Negative when ``end`` lies on an earlier calendar day, e.g. after the
    device clock was moved back.
    """
    return (_as_date(end) - _as_date(start)).days


def advance_day_position(position: int, days_passed: int, split_length: int) -> int:
    """Return the 1-based split day reached after ``days_passed`` days."""
    if split_length <= 0:
        raise ValueError("split_length must be positive")
    index = (position + days_passed - 1) % split_length
    index = (index + split_length) % split_length
    return min(max(index + 1, 1), split_length)


@dataclass(frozen=True)
class DayPosition:
    position: int
    last_update: datetime.datetime
    changed: bool = False


def refresh_day_position(
    position: int,
    last_update: datetime.datetime,
    now: datetime.datetime,
    split_length: Optional[int],
) -> DayPosition:
    """Roll the stored split position forward to ``now``.

    Reopening on the same calendar day, or having no active split, leaves
    both the position and the last-update time untouched.
    """
    if not split_length:
        return DayPosition(position, last_update)
    days_passed = calendar_days_between(last_update, now)
    if days_passed == 0:
        return DayPosition(position, last_update)
    new_position = advance_day_position(position, days_passed, split_length)
    return DayPosition(new_position, now, new_position != position)


@dataclass(frozen=True)
class StreakState:
    current: int = 0
    longest: int = 0
    last_workout_date: Optional[datetime.date] = None
    rest_days_per_week: int = 2
    paused: bool = False

    @property
    def tolerance(self) -> int:
        """Largest gap in calendar days that still continues the streak."""
        return 1 + self.rest_days_per_week


def record_workout(
    streak: StreakState, workout_day: datetime.date | datetime.datetime
) -> StreakState:
    """Return the streak after a workout completed on ``workout_day``."""
    if streak.rest_days_per_week < 0:
        raise ValueError("rest_days_per_week must be non-negative")
    if streak.paused:
        return streak
    day = _as_date(workout_day)
    if streak.last_workout_date is None:
        return replace(streak, current=1, longest=max(streak.longest, 1), last_workout_date=day)
    elapsed = calendar_days_between(streak.last_workout_date, day)
    if elapsed <= 0:
        return streak
    if elapsed <= streak.tolerance:
        current = streak.current + 1
    else:
        current = 1
    return replace(
        streak,
        current=current,
        longest=max(streak.longest, current),
        last_workout_date=day,
    )


def check_streak_status(
    streak: StreakState, today: datetime.date | datetime.datetime
) -> StreakState:
    """Expire a streak whose allowed rest gap has already run out."""
    if streak.paused or streak.last_workout_date is None:
        return streak
    if calendar_days_between(streak.last_workout_date, today) > streak.tolerance:
        return replace(streak, current=0)
    return streak
