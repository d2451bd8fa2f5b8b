"""JSON shapes for the progress API.

Domain objects are frozen dataclasses; these pydantic models are the
wire format.  Floats are rounded to two decimals here and nowhere else,
so cached and freshly built responses serialize identically.
"""

from __future__ import annotations

from datetime import date, datetime

from pydantic import BaseModel

from app.models.analytics import (
    Achievement,
    CourseDashboardEntry,
    CourseProgressReport,
    CourseRollup,
    DashboardSummary,
    DeviationResult,
    ModuleProgress,
    QuizStats,
    StreakState,
    WeeklyActivity,
)
from app.models.enrollment import EnrollmentSummary
from app.services.points import level_for


def _r2(value: float) -> float:
    return round(value, 2)


# ---------------------------------------------------------------------------
# Input
# ---------------------------------------------------------------------------


class CompletionIn(BaseModel):
    course_id: str
    lesson_id: str
    time_spent_minutes: int = 0
    completed_at: datetime | None = None


class QuizResultIn(BaseModel):
    course_id: str
    lesson_id: str
    quiz_id: str
    score: float
    max_score: float
    idempotency_key: str | None = None


# ---------------------------------------------------------------------------
# Output
# ---------------------------------------------------------------------------


class EnrollmentOut(BaseModel):
    student_id: str
    course_id: str
    status: str
    enrollment_date: datetime
    completed_lessons: int
    total_progress_percent: float
    time_spent_minutes: int
    last_activity_at: datetime | None
    total_points: int
    level: int
    version: int


class CompletionOut(BaseModel):
    event_id: str
    lesson_id: str
    completed_at: datetime
    duplicate: bool
    points_awarded: int
    enrollment: EnrollmentOut


class QuizResultOut(BaseModel):
    event_id: str
    quiz_id: str
    attempt_number: int
    percentage: float
    passed: bool
    duplicate: bool
    points_awarded: int
    enrollment: EnrollmentOut


class StreakOut(BaseModel):
    current_streak_days: int
    longest_streak_days: int
    last_computed_date: date | None


class PacingOut(BaseModel):
    actual_progress_percent: float
    expected_progress_percent: float
    deviation: float
    label: str
    days_elapsed: int


class QuizStatsOut(BaseModel):
    attempts: int
    quizzes_passed: int
    average_percentage: float
    best_percentage: float


class CourseEntryOut(BaseModel):
    course_id: str
    title: str
    status: str
    enrollment_date: datetime
    last_activity_at: datetime
    completed_lessons: int
    total_lessons: int
    progress_percent: float
    time_spent_minutes: int
    points: int
    pacing: PacingOut
    streak: StreakOut
    quiz: QuizStatsOut
    expected_completion_date: datetime
    estimated_days_to_completion: int
    partial: bool


class RollupOut(BaseModel):
    total_enrolled: int
    active: int
    completed: int
    paused: int
    average_progress_percent: float
    total_study_minutes: int
    current_streak_days: int
    longest_streak_days: int
    overall_streak: StreakOut
    total_points: int
    level: int
    average_quiz_percentage: float
    next_streak_milestone: int


class DeadlineOut(BaseModel):
    course_id: str
    title: str
    days_left: int
    expected_date: datetime


class ActivityOut(BaseModel):
    course_id: str
    lesson_id: str
    completed_at: datetime
    time_spent_minutes: int


class DailyActivityOut(BaseModel):
    day: date
    weekday: str
    hours: float
    lessons_completed: int


class WeeklyActivityOut(BaseModel):
    days: list[DailyActivityOut]
    total_hours: float
    total_lessons: int
    average_hours_per_day: float


class AchievementOut(BaseModel):
    id: str
    name: str
    description: str
    earned: bool


class DashboardOut(BaseModel):
    student_id: str
    as_of: datetime
    partial: bool
    rollup: RollupOut
    courses: list[CourseEntryOut]
    upcoming_deadlines: list[DeadlineOut]
    recent_activity: list[ActivityOut]
    weekly_activity: WeeklyActivityOut
    achievements: list[AchievementOut]


class ModuleOut(BaseModel):
    module_id: str
    title: str
    position: int
    total_lessons: int
    completed_lessons: int
    progress_percent: float
    status: str


class CourseProgressOut(BaseModel):
    student_id: str
    course_id: str
    actual_progress_percent: float
    expected_progress_percent: float
    deviation: float
    label: str
    streak: StreakOut
    completed_lessons: int
    total_lessons: int
    estimated_days_to_completion: int
    modules: list[ModuleOut]
    next_module: ModuleOut | None


class CourseRollupOut(BaseModel):
    course_id: str
    title: str
    enrolled: int
    by_status: dict[str, int]
    by_pacing: dict[str, int]
    average_progress_percent: float
    completion_rate_percent: float


# ---------------------------------------------------------------------------
# Converters
# ---------------------------------------------------------------------------


def enrollment_out(s: EnrollmentSummary) -> EnrollmentOut:
    return EnrollmentOut(
        student_id=s.student_id,
        course_id=s.course_id,
        status=s.status.value,
        enrollment_date=s.enrollment_date,
        completed_lessons=len(s.completed_lesson_ids),
        total_progress_percent=_r2(s.total_progress_percent),
        time_spent_minutes=s.time_spent_minutes,
        last_activity_at=s.last_activity_at,
        total_points=s.total_points,
        level=level_for(s.total_points),
        version=s.version,
    )


def streak_out(s: StreakState) -> StreakOut:
    return StreakOut(
        current_streak_days=s.current_streak_days,
        longest_streak_days=s.longest_streak_days,
        last_computed_date=s.last_computed_date,
    )


def pacing_out(d: DeviationResult) -> PacingOut:
    return PacingOut(
        actual_progress_percent=_r2(d.actual_progress_percent),
        expected_progress_percent=_r2(d.expected_progress_percent),
        deviation=_r2(d.deviation),
        label=d.label.value,
        days_elapsed=d.days_elapsed,
    )


def _quiz_out(q: QuizStats) -> QuizStatsOut:
    return QuizStatsOut(
        attempts=q.attempts,
        quizzes_passed=q.quizzes_passed,
        average_percentage=_r2(q.average_percentage),
        best_percentage=_r2(q.best_percentage),
    )


def _course_entry_out(e: CourseDashboardEntry) -> CourseEntryOut:
    return CourseEntryOut(
        course_id=e.course_id,
        title=e.title,
        status=e.status.value,
        enrollment_date=e.enrollment_date,
        last_activity_at=e.last_activity_at,
        completed_lessons=e.completed_lessons,
        total_lessons=e.total_lessons,
        progress_percent=_r2(e.pacing.actual_progress_percent),
        time_spent_minutes=e.time_spent_minutes,
        points=e.points,
        pacing=pacing_out(e.pacing),
        streak=streak_out(e.streak),
        quiz=_quiz_out(e.quiz),
        expected_completion_date=e.expected_completion_date,
        estimated_days_to_completion=e.estimated_days_to_completion,
        partial=e.partial,
    )


def _hours(minutes: float) -> float:
    return _r2(minutes / 60)


def _weekly_out(w: WeeklyActivity) -> WeeklyActivityOut:
    return WeeklyActivityOut(
        days=[
            DailyActivityOut(
                day=d.day,
                weekday=d.weekday,
                hours=_hours(d.minutes),
                lessons_completed=d.lessons_completed,
            )
            for d in w.days
        ],
        total_hours=_hours(w.total_minutes),
        total_lessons=w.total_lessons,
        average_hours_per_day=(
            _hours(w.total_minutes / len(w.days)) if w.days else 0.0
        ),
    )


def _achievement_out(a: Achievement) -> AchievementOut:
    return AchievementOut(
        id=a.id, name=a.name, description=a.description, earned=a.earned
    )


def dashboard_out(summary: DashboardSummary) -> DashboardOut:
    r = summary.rollup
    return DashboardOut(
        student_id=summary.student_id,
        as_of=summary.as_of,
        partial=summary.partial,
        rollup=RollupOut(
            total_enrolled=r.total_enrolled,
            active=r.active,
            completed=r.completed,
            paused=r.paused,
            average_progress_percent=_r2(r.average_progress_percent),
            total_study_minutes=r.total_study_minutes,
            current_streak_days=r.current_streak_days,
            longest_streak_days=r.longest_streak_days,
            overall_streak=streak_out(r.overall_streak),
            total_points=r.total_points,
            level=r.level,
            average_quiz_percentage=_r2(r.average_quiz_percentage),
            next_streak_milestone=r.next_streak_milestone,
        ),
        courses=[_course_entry_out(e) for e in summary.courses],
        upcoming_deadlines=[
            DeadlineOut(
                course_id=d.course_id,
                title=d.title,
                days_left=d.days_left,
                expected_date=d.expected_date,
            )
            for d in summary.upcoming_deadlines
        ],
        recent_activity=[
            ActivityOut(
                course_id=a.course_id,
                lesson_id=a.lesson_id,
                completed_at=a.completed_at,
                time_spent_minutes=a.time_spent_minutes,
            )
            for a in summary.recent_activity
        ],
        weekly_activity=_weekly_out(summary.weekly_activity),
        achievements=[_achievement_out(a) for a in summary.achievements],
    )


def _module_out(m: ModuleProgress) -> ModuleOut:
    return ModuleOut(
        module_id=m.module_id,
        title=m.title,
        position=m.position,
        total_lessons=m.total_lessons,
        completed_lessons=m.completed_lessons,
        progress_percent=_r2(m.progress_percent),
        status=m.status,
    )


def course_progress_out(report: CourseProgressReport) -> CourseProgressOut:
    return CourseProgressOut(
        student_id=report.student_id,
        course_id=report.course_id,
        actual_progress_percent=_r2(report.pacing.actual_progress_percent),
        expected_progress_percent=_r2(report.pacing.expected_progress_percent),
        deviation=_r2(report.pacing.deviation),
        label=report.pacing.label.value,
        streak=streak_out(report.streak),
        completed_lessons=report.completed_lessons,
        total_lessons=report.total_lessons,
        estimated_days_to_completion=report.estimated_days_to_completion,
        modules=[_module_out(m) for m in report.modules],
        next_module=(
            _module_out(report.next_module) if report.next_module else None
        ),
    )


def course_rollup_out(rollup: CourseRollup) -> CourseRollupOut:
    return CourseRollupOut(
        course_id=rollup.course_id,
        title=rollup.title,
        enrolled=rollup.enrolled,
        by_status=dict(rollup.by_status),
        by_pacing=dict(rollup.by_pacing),
        average_progress_percent=_r2(rollup.average_progress_percent),
        completion_rate_percent=_r2(rollup.completion_rate_percent),
    )
