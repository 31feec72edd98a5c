import datetime
import os
import sys
import unittest

import pytest

sys.path.append(os.path.dirname(os.path.dirname(__file__)))
from scheduler import (
    StreakState,
    advance_day_position,
    calendar_days_between,
    check_streak_status,
    record_workout,
    refresh_day_position,
)


class DayPositionTestCase(unittest.TestCase):
    def test_calendar_days_use_midnights(self) -> None:
        late = datetime.datetime(2024, 6, 1, 23, 59)
        early = datetime.datetime(2024, 6, 2, 0, 1)
        self.assertEqual(calendar_days_between(late, early), 1)
        self.assertEqual(calendar_days_between(early, late), -1)
        self.assertEqual(
            calendar_days_between(datetime.datetime(2024, 6, 1, 0, 0), late), 0
        )

    def test_seven_day_split_scenario(self) -> None:
        self.assertEqual(advance_day_position(5, 3, 7), 1)

    def test_formula_holds_for_all_positions(self) -> None:
        for length in (1, 2, 3, 7):
            for position in range(1, length + 1):
                for days in list(range(0, 30)) + [365, 9999, 10000]:
                    result = advance_day_position(position, days, length)
                    self.assertEqual(result, ((position + days - 1) % length) + 1)
                    self.assertTrue(1 <= result <= length)

    def test_negative_days_wrap_backwards(self) -> None:
        self.assertEqual(advance_day_position(1, -1, 4), 4)
        self.assertEqual(advance_day_position(2, -9, 4), 1)

    def test_invalid_split_length(self) -> None:
        with self.assertRaises(ValueError):
            advance_day_position(1, 1, 0)

    def test_same_day_reopen_is_a_no_op(self) -> None:
        last = datetime.datetime(2024, 6, 1, 7, 0)
        now = datetime.datetime(2024, 6, 1, 21, 0)
        first = refresh_day_position(3, last, now, 5)
        second = refresh_day_position(first.position, first.last_update, now, 5)
        self.assertEqual((first.position, first.last_update, first.changed), (3, last, False))
        self.assertEqual(second.position, 3)

    def test_no_active_split_keeps_position(self) -> None:
        last = datetime.datetime(2024, 6, 1)
        result = refresh_day_position(4, last, datetime.datetime(2024, 6, 9), None)
        self.assertEqual(result.position, 4)
        self.assertEqual(result.last_update, last)

    def test_refresh_moves_forward(self) -> None:
        last = datetime.datetime(2024, 6, 1, 8, 0)
        now = datetime.datetime(2024, 6, 4, 8, 0)
        result = refresh_day_position(5, last, now, 7)
        self.assertEqual(result.position, 1)
        self.assertEqual(result.last_update, now)
        self.assertTrue(result.changed)


def _streak(last, current=4, longest=6, rest=2, paused=False):
    return StreakState(current, longest, last, rest, paused)


def test_streak_within_tolerance_increments():
    today = datetime.date(2024, 6, 10)
    result = record_workout(_streak(today - datetime.timedelta(days=3)), today)
    assert result.current == 5
    assert result.last_workout_date == today


def test_streak_beyond_tolerance_resets():
    today = datetime.date(2024, 6, 10)
    result = record_workout(_streak(today - datetime.timedelta(days=4)), today)
    assert result.current == 1
    assert result.longest == 6


def test_first_workout_starts_streak():
    result = record_workout(StreakState(), datetime.datetime(2024, 6, 10, 18, 30))
    assert (result.current, result.longest) == (1, 1)
    assert result.last_workout_date == datetime.date(2024, 6, 10)


def test_longest_follows_current():
    today = datetime.date(2024, 6, 10)
    result = record_workout(_streak(today - datetime.timedelta(days=1), current=6), today)
    assert result.longest == 7


def test_same_day_workout_keeps_streak():
    today = datetime.date(2024, 6, 10)
    streak = _streak(today)
    assert record_workout(streak, today) == streak


def test_paused_streak_is_frozen():
    today = datetime.date(2024, 6, 10)
    streak = _streak(today - datetime.timedelta(days=30), paused=True)
    assert record_workout(streak, today) == streak
    assert check_streak_status(streak, today) == streak


def test_negative_rest_days_rejected():
    with pytest.raises(ValueError):
        record_workout(_streak(datetime.date(2024, 6, 1), rest=-1), datetime.date(2024, 6, 2))


def test_check_streak_expires_after_gap():
    today = datetime.date(2024, 6, 10)
    assert check_streak_status(_streak(today - datetime.timedelta(days=4)), today).current == 0
    assert check_streak_status(_streak(today - datetime.timedelta(days=3)), today).current == 4
