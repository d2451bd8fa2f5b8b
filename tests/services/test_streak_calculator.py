"""Tests for the UTC-day streak calculation."""

from __future__ import annotations

import random
from datetime import UTC, date, datetime, timedelta, timezone

import pytest

from app.services.streak_calculator import active_days, compute_streak, utc_day


def _at(day: int, hour: int = 12) -> datetime:
    return datetime(2026, 3, day, hour, 0, tzinfo=UTC)


# ---- basic shapes ----


def test_no_events_gives_zero_streaks() -> None:
    state = compute_streak([], _at(6))
    assert state.current_streak_days == 0
    assert state.longest_streak_days == 0
    assert state.last_computed_date == date(2026, 3, 6)


def test_single_event_today() -> None:
    state = compute_streak([_at(6, 8)], _at(6))
    assert state.current_streak_days == 1
    assert state.longest_streak_days == 1


def test_many_events_on_one_day_count_once() -> None:
    state = compute_streak([_at(6, 1), _at(6, 9), _at(6, 11)], _at(6))
    assert state.current_streak_days == 1
    assert state.longest_streak_days == 1


def test_gap_resets_current_but_keeps_longest() -> None:
    # Days 1, 2, 3, nothing on 4 and 5, then day 6 is today.
    events = [_at(1), _at(2), _at(3), _at(6)]
    state = compute_streak(events, _at(6))
    assert state.current_streak_days == 1
    assert state.longest_streak_days == 3


def test_streak_ending_yesterday_is_still_current() -> None:
    events = [_at(3), _at(4), _at(5)]
    state = compute_streak(events, _at(6))
    assert state.current_streak_days == 3
    assert state.longest_streak_days == 3


def test_streak_ending_two_days_ago_is_broken() -> None:
    events = [_at(2), _at(3), _at(4)]
    state = compute_streak(events, _at(6))
    assert state.current_streak_days == 0
    assert state.longest_streak_days == 3


# ---- time handling ----


def test_days_are_utc_calendar_days() -> None:
    # 23:30 at UTC-5 on the 5th is 04:30 UTC on the 6th.
    eastern = timezone(timedelta(hours=-5))
    late_local = datetime(2026, 3, 5, 23, 30, tzinfo=eastern)
    assert utc_day(late_local) == date(2026, 3, 6)

    state = compute_streak([_at(5, 10), late_local], _at(6))
    assert state.current_streak_days == 2


def test_future_events_are_clamped_to_today() -> None:
    events = [_at(6), datetime(2026, 3, 8, 9, 0, tzinfo=UTC)]
    state = compute_streak(events, _at(6))
    assert state.current_streak_days == 1
    assert state.longest_streak_days == 1


def test_future_event_alone_counts_as_today() -> None:
    state = compute_streak([_at(9)], _at(6))
    assert state.current_streak_days == 1


def test_naive_timestamp_rejected() -> None:
    with pytest.raises(ValueError, match="naive"):
        compute_streak([datetime(2026, 3, 6, 12, 0)], _at(6))


def test_naive_now_rejected() -> None:
    with pytest.raises(ValueError):
        compute_streak([], datetime(2026, 3, 6, 12, 0))


# ---- properties ----


def test_order_of_events_does_not_matter() -> None:
    events = [_at(1), _at(2), _at(4), _at(5), _at(6), _at(6, 20)]
    expected = compute_streak(events, _at(6))

    shuffled = list(events)
    random.Random(7).shuffle(shuffled)
    assert compute_streak(shuffled, _at(6)) == expected
    assert compute_streak(reversed(events), _at(6)) == expected


@pytest.mark.parametrize(
    "days",
    [
        [1],
        [1, 2, 3],
        [1, 3, 5],
        [2, 3, 5, 6],
        [1, 2, 3, 4, 5, 6],
    ],
)
def test_longest_is_never_shorter_than_current(days: list[int]) -> None:
    state = compute_streak([_at(d) for d in days], _at(6))
    assert 0 <= state.current_streak_days <= state.longest_streak_days


def test_active_days_are_distinct_and_newest_first() -> None:
    days = active_days([_at(2), _at(4, 1), _at(4, 23), _at(3)], date(2026, 3, 6))
    assert days == [date(2026, 3, 4), date(2026, 3, 3), date(2026, 3, 2)]
