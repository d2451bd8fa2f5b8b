"""Learning streaks from completion timestamps.

A streak is a run of consecutive UTC calendar days that each contain at
least one completion.  Days are UTC so a streak boundary never depends
on which server, or which student timezone, computed it.

Pure functions: "now" is always passed in, never read from the clock.
"""

from __future__ import annotations

from collections.abc import Iterable
from datetime import UTC, date, datetime, timedelta

from app.models.analytics import StreakState


def utc_day(ts: datetime) -> date:
    if ts.tzinfo is None:
        raise ValueError(f"naive timestamp {ts!r}; completion times must be tz-aware")
    return ts.astimezone(UTC).date()


def active_days(timestamps: Iterable[datetime], today: date) -> list[date]:
    """Distinct active days, most recent first.

    Timestamps in the future are clamped to ``today``: they still count as
    activity but can never extend a streak past the present.
    """
    return sorted({min(utc_day(ts), today) for ts in timestamps}, reverse=True)


def compute_streak(timestamps: Iterable[datetime], now: datetime) -> StreakState:
    today = utc_day(now)
    days = active_days(timestamps, today)
    if not days:
        return StreakState(last_computed_date=today)

    runs: list[int] = []
    run = 1
    for newer, older in zip(days, days[1:]):
        if (newer - older).days == 1:
            run += 1
        else:
            runs.append(run)
            run = 1
    runs.append(run)

    # The first run is anchored at the most recent active day; it only
    # counts as "current" while that day is today or yesterday.
    current = runs[0] if days[0] >= today - timedelta(days=1) else 0
    return StreakState(
        current_streak_days=current,
        longest_streak_days=max(runs),
        last_computed_date=today,
    )
