"""Pacing: actual progress vs. time-expected progress.

    actual    = completed / total * 100          (clamped to [0, 100])
    expected  = days_elapsed / duration * 100    (clamped to [0, 100])
    deviation = actual - expected

    label = AHEAD    if deviation >  band
            BEHIND   if deviation < -band
            ON_TRACK otherwise

The band defaults to 5 points and comes from DEVIATION_BAND.  A course
with no lessons has nothing to complete, so its actual progress is 0.
Durations below one day are treated as one day.
"""

from __future__ import annotations

from datetime import datetime

from app.models.analytics import DeviationResult, PacingLabel

DEFAULT_BAND = 5.0

_SECONDS_PER_DAY = 86_400


def actual_progress(completed_lessons: int, total_lessons: int) -> float:
    if completed_lessons < 0:
        raise ValueError(f"completed_lessons must be >= 0 (got {completed_lessons})")
    if total_lessons <= 0:
        return 0.0
    return min(100.0, completed_lessons * 100 / total_lessons)


def days_elapsed(enrollment_date: datetime, now: datetime) -> int:
    seconds = (now - enrollment_date).total_seconds()
    return max(0, int(seconds // _SECONDS_PER_DAY))


def expected_progress(
    enrollment_date: datetime, course_duration_days: int, now: datetime
) -> float:
    elapsed = days_elapsed(enrollment_date, now)
    return min(100.0, elapsed * 100 / max(course_duration_days, 1))


def classify(deviation: float, band: float = DEFAULT_BAND) -> PacingLabel:
    if deviation > band:
        return PacingLabel.AHEAD
    if deviation < -band:
        return PacingLabel.BEHIND
    return PacingLabel.ON_TRACK


def pacing_from_percent(
    actual_percent: float,
    *,
    enrollment_date: datetime,
    course_duration_days: int,
    now: datetime,
    band: float = DEFAULT_BAND,
) -> DeviationResult:
    """Same as track_deviation, starting from an already-computed percent."""
    actual = min(100.0, max(0.0, actual_percent))
    expected = expected_progress(enrollment_date, course_duration_days, now)
    deviation = actual - expected
    return DeviationResult(
        actual_progress_percent=actual,
        expected_progress_percent=expected,
        deviation=deviation,
        label=classify(deviation, band),
        days_elapsed=days_elapsed(enrollment_date, now),
    )


def track_deviation(
    *,
    completed_lessons: int,
    total_lessons: int,
    enrollment_date: datetime,
    course_duration_days: int,
    now: datetime,
    band: float = DEFAULT_BAND,
) -> DeviationResult:
    return pacing_from_percent(
        actual_progress(completed_lessons, total_lessons),
        enrollment_date=enrollment_date,
        course_duration_days=course_duration_days,
        now=now,
        band=band,
    )
