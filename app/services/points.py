"""Gamification points.

Awards are idempotent per triggering event id.  The ledger of event ids
already paid out lives on the EnrollmentSummary row of the course the
event belongs to, so checking the ledger and adding the points happen
in the same optimistic-locked write as the progress update that caused
them.  Replaying an event finds its id in the ledger and changes
nothing.

The point values are policy (AwardTable, from Settings); the mechanism
below does not care what they are.
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass, replace
from enum import Enum

from app.core.config import SETTINGS, Settings
from app.core.metrics import POINT_AWARDS
from app.models.enrollment import EnrollmentSummary
from app.repos.enrollment_repo import EnrollmentRepo
from app.services.enrollment_updates import update_enrollment

logger = logging.getLogger(__name__)

POINTS_PER_LEVEL = 100


class AwardType(str, Enum):
    ENROLLMENT = "enrollment"
    LESSON_COMPLETION = "lesson_completion"
    QUIZ_PASS = "quiz_pass"
    COURSE_COMPLETION = "course_completion"


@dataclass(frozen=True, slots=True)
class AwardTable:
    enrollment: int = 50
    lesson_completion: int = 10
    course_completion: int = 500
    quiz_mode: str = "percentage"  # percentage|flat
    quiz_flat: int = 20

    @staticmethod
    def from_settings(settings: Settings) -> AwardTable:
        return AwardTable(
            enrollment=settings.points_enrollment,
            lesson_completion=settings.points_lesson,
            course_completion=settings.points_course_completion,
            quiz_mode=settings.points_quiz_mode,
            quiz_flat=settings.points_quiz_flat,
        )

    def quiz_points(self, percentage: float) -> int:
        if self.quiz_mode == "flat":
            return self.quiz_flat
        # One point per 10%, half up.
        return math.floor(percentage / 10 + 0.5)


@dataclass(frozen=True, slots=True)
class AwardResult:
    applied: bool
    total_points: int
    points: int = 0


def apply_award(
    summary: EnrollmentSummary, event_id: str, points: int
) -> tuple[EnrollmentSummary, AwardResult]:
    if points < 0:
        raise ValueError(f"award points must be >= 0 (got {points})")
    if event_id in summary.awarded_event_ids:
        return summary, AwardResult(applied=False, total_points=summary.total_points)

    updated = replace(
        summary,
        awarded_event_ids=summary.awarded_event_ids | {event_id},
        total_points=summary.total_points + points,
    )
    return updated, AwardResult(
        applied=True, total_points=updated.total_points, points=points
    )


def level_for(total_points: int) -> int:
    return total_points // POINTS_PER_LEVEL + 1


def record_award_metric(event_type: AwardType, result: AwardResult) -> None:
    POINT_AWARDS.labels(
        event_type=event_type.value,
        result="applied" if result.applied else "duplicate",
    ).inc()


class PointsAggregator:
    """Standalone award operation for triggers outside the ingestion flow."""

    def __init__(
        self, enrollments: EnrollmentRepo, *, settings: Settings = SETTINGS
    ) -> None:
        self._enrollments = enrollments
        self._attempts = settings.occ_max_retries + 1

    async def apply_award(
        self,
        student_id: str,
        course_id: str,
        event_id: str,
        event_type: AwardType,
        points: int,
    ) -> AwardResult:
        _, result = await update_enrollment(
            self._enrollments,
            student_id,
            course_id,
            lambda s: apply_award(s, event_id, points),
            max_attempts=self._attempts,
        )
        record_award_metric(event_type, result)
        if result.applied:
            logger.info(
                "Awarded %d points student=%s event=%s total=%d",
                points,
                student_id,
                event_id,
                result.total_points,
            )
        return result
