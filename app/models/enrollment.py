from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum


class EnrollmentStatus(str, Enum):
    ENROLLED = "ENROLLED"
    ACTIVE = "ACTIVE"
    COMPLETED = "COMPLETED"
    PAUSED = "PAUSED"


@dataclass(frozen=True, slots=True)
class EnrollmentSummary:
    """The one mutable aggregate: per (student, course) progress row.

    Derived from, and reconcilable against, the completion log.
    ``version`` is bumped by the store on every successful write and is
    the optimistic-concurrency token.  ``awarded_event_ids`` is the
    points ledger for this course; keeping it on the row makes progress,
    status and points one atomic write.
    """

    student_id: str
    course_id: str
    enrollment_date: datetime
    status: EnrollmentStatus = EnrollmentStatus.ENROLLED
    completed_lesson_ids: frozenset[str] = field(default_factory=frozenset)
    total_progress_percent: float = 0.0
    time_spent_minutes: int = 0
    last_activity_at: datetime | None = None
    total_points: int = 0
    awarded_event_ids: frozenset[str] = field(default_factory=frozenset)
    completed_at: datetime | None = None
    version: int = 0

    @staticmethod
    def new(*, student_id: str, course_id: str, enrolled_at: datetime) -> EnrollmentSummary:
        return EnrollmentSummary(
            student_id=student_id,
            course_id=course_id,
            enrollment_date=enrolled_at,
        )

    @property
    def award_id(self) -> str:
        return f"enrollment:{self.student_id}:{self.course_id}"

    @property
    def completion_award_id(self) -> str:
        return f"course-complete:{self.student_id}:{self.course_id}"

    @property
    def activity_at(self) -> datetime:
        """Most recent activity, falling back to the enrollment date."""
        return self.last_activity_at or self.enrollment_date
