"""Derived read models.

Nothing here is a source of truth: every value is recomputed from the
event log and the enrollment rows, and may be cached as a whole.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime
from enum import Enum

from app.models.enrollment import EnrollmentStatus


class PacingLabel(str, Enum):
    AHEAD = "AHEAD"
    ON_TRACK = "ON_TRACK"
    BEHIND = "BEHIND"


@dataclass(frozen=True, slots=True)
class StreakState:
    current_streak_days: int = 0
    longest_streak_days: int = 0
    last_computed_date: date | None = None


@dataclass(frozen=True, slots=True)
class DeviationResult:
    actual_progress_percent: float
    expected_progress_percent: float
    deviation: float
    label: PacingLabel
    days_elapsed: int = 0


@dataclass(frozen=True, slots=True)
class QuizStats:
    attempts: int = 0
    quizzes_passed: int = 0
    average_percentage: float = 0.0
    best_percentage: float = 0.0


@dataclass(frozen=True, slots=True)
class ModuleProgress:
    module_id: str
    title: str
    position: int
    total_lessons: int
    completed_lessons: int
    progress_percent: float
    status: str  # NOT_STARTED|IN_PROGRESS|COMPLETED


@dataclass(frozen=True, slots=True)
class CourseDashboardEntry:
    course_id: str
    title: str
    status: EnrollmentStatus
    enrollment_date: datetime
    last_activity_at: datetime
    completed_lessons: int
    total_lessons: int
    time_spent_minutes: int
    points: int
    pacing: DeviationResult
    streak: StreakState
    quiz: QuizStats
    expected_completion_date: datetime
    estimated_days_to_completion: int
    partial: bool = False


@dataclass(frozen=True, slots=True)
class UpcomingDeadline:
    course_id: str
    title: str
    days_left: int
    expected_date: datetime


@dataclass(frozen=True, slots=True)
class RecentActivity:
    course_id: str
    lesson_id: str
    completed_at: datetime
    time_spent_minutes: int


@dataclass(frozen=True, slots=True)
class StudentRollup:
    total_enrolled: int
    active: int
    completed: int
    paused: int
    average_progress_percent: float
    total_study_minutes: int
    current_streak_days: int
    longest_streak_days: int
    overall_streak: StreakState
    total_points: int
    level: int
    average_quiz_percentage: float
    next_streak_milestone: int = 7


@dataclass(frozen=True, slots=True)
class DailyActivity:
    day: date
    weekday: str  # Mon..Sun
    minutes: int
    lessons_completed: int


@dataclass(frozen=True, slots=True)
class WeeklyActivity:
    """Study time and completions per UTC day, oldest day first."""

    days: tuple[DailyActivity, ...] = ()
    total_minutes: int = 0
    total_lessons: int = 0


@dataclass(frozen=True, slots=True)
class Achievement:
    id: str
    name: str
    description: str
    earned: bool


@dataclass(frozen=True, slots=True)
class DashboardSummary:
    student_id: str
    as_of: datetime
    rollup: StudentRollup
    courses: tuple[CourseDashboardEntry, ...]
    upcoming_deadlines: tuple[UpcomingDeadline, ...] = ()
    recent_activity: tuple[RecentActivity, ...] = ()
    weekly_activity: WeeklyActivity = field(default_factory=WeeklyActivity)
    achievements: tuple[Achievement, ...] = ()
    partial: bool = False


@dataclass(frozen=True, slots=True)
class CourseProgressReport:
    """Single-course view behind GET course-progress."""

    student_id: str
    course_id: str
    pacing: DeviationResult
    streak: StreakState
    modules: tuple[ModuleProgress, ...]
    completed_lessons: int
    total_lessons: int
    estimated_days_to_completion: int
    next_module: ModuleProgress | None = None


@dataclass(frozen=True, slots=True)
class CourseRollup:
    """Instructor view: one course across all enrolled students."""

    course_id: str
    title: str
    enrolled: int
    by_status: dict[str, int]
    by_pacing: dict[str, int]
    average_progress_percent: float
    completion_rate_percent: float
