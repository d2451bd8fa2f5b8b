"""Dashboard aggregation: the read side of the engine.

build_summary fans out over a student's enrollments.  For each course it
reads that course's completion and quiz events, recomputes streak and
pacing from them, and folds everything into one DashboardSummary.

Per-course work runs under a timeout (DASHBOARD_COURSE_TIMEOUT_SECONDS).
A course that times out, or whose catalog entry has disappeared, is
still listed: it is built from the enrollment row alone and flagged
``partial``, and so is the summary.  Each bounded build reads through
its own database session, so a build cancelled mid-query leaves the
request session usable.

The completion log wins over the enrollment row.  When the two
disagree the entry uses the log, a warning is logged and an
``enrollment_reconcile`` task is queued so the row gets repaired.

Given the same stored data and the same ``now`` the output is identical:
courses are ordered by last activity (newest first) then course id.
"""

from __future__ import annotations

import asyncio
import logging
from collections import Counter
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta
from statistics import fmean

from app.core.config import SETTINGS, Settings
from app.core.metrics import (
    DASHBOARD_BUILD_DURATION,
    DASHBOARD_PARTIAL,
    ENROLLMENT_DRIFT,
)
from app.models.analytics import (
    Achievement,
    CourseDashboardEntry,
    CourseProgressReport,
    CourseRollup,
    DailyActivity,
    DashboardSummary,
    ModuleProgress,
    PacingLabel,
    QuizStats,
    RecentActivity,
    StreakState,
    StudentRollup,
    UpcomingDeadline,
    WeeklyActivity,
)
from app.models.course import CourseInfo
from app.models.enrollment import EnrollmentStatus, EnrollmentSummary
from app.models.events import CompletionEvent, QuizEvent
from app.repos.store import ProgressStore, isolated_store
from app.services.deviation_tracker import pacing_from_percent, track_deviation
from app.services.errors import NotFoundError
from app.services.points import level_for
from app.services.streak_calculator import compute_streak, utc_day
from app.services.task_queue import ENROLLMENT_RECONCILE, TaskQueue

logger = logging.getLogger(__name__)

VELOCITY_WINDOW_DAYS = 7
DEADLINE_HORIZON_DAYS = 7
RECENT_ACTIVITY_LIMIT = 10
ACTIVITY_WINDOW_DAYS = 7
STREAK_MILESTONES = (7, 30, 100)
WEEKDAYS = ("Mon", "Tue", "Wed", "Thu", "Fri", "Sat", "Sun")

ACHIEVEMENTS = (
    ("first_course", "First Steps", "Enroll in your first course"),
    ("week_streak", "Week Warrior", "Keep a 7-day learning streak"),
    ("course_complete", "Finisher", "Complete your first course"),
    ("explorer", "Explorer", "Enroll in 3 different courses"),
    ("month_streak", "Dedicated Learner", "Keep a 30-day learning streak"),
    ("point_master", "Point Master", "Earn 1000 points"),
)


# ---------------------------------------------------------------------------
# Pure helpers
# ---------------------------------------------------------------------------


def _ceil_div(a: int, b: int) -> int:
    return -(-a // b)


def recent_completions(events: list[CompletionEvent], now: datetime) -> int:
    since = now - timedelta(days=VELOCITY_WINDOW_DAYS)
    return sum(1 for e in events if since < e.completed_at <= now)


def estimate_days_to_completion(
    *,
    completed_lessons: int,
    total_lessons: int,
    recent_completions: int,
    duration_days: int,
) -> int:
    """Days left at the current pace.

    Velocity is completions per day over the last week.  Working in
    lessons instead of percent keeps the division exact:

        remaining% / velocity%  ==  remaining_lessons * window / recent

    With no recent completions the course duration sets the pace
    instead: remaining% of ``duration_days``.
    """
    if total_lessons <= 0:
        return duration_days
    remaining = max(0, total_lessons - completed_lessons)
    if remaining == 0:
        return 0
    if recent_completions > 0:
        return _ceil_div(remaining * VELOCITY_WINDOW_DAYS, recent_completions)
    return _ceil_div(remaining * duration_days, total_lessons)


def quiz_stats(events: list[QuizEvent]) -> QuizStats:
    if not events:
        return QuizStats()
    percentages = [q.percentage for q in events]
    return QuizStats(
        attempts=len(events),
        quizzes_passed=len({q.quiz_id for q in events if q.passed}),
        average_percentage=fmean(percentages),
        best_percentage=max(percentages),
    )


def module_rollup(
    course: CourseInfo, completed_lesson_ids: frozenset[str]
) -> tuple[ModuleProgress, ...]:
    out = []
    for module in sorted(course.modules, key=lambda m: (m.position, m.id)):
        total = len(module.lesson_ids)
        done = sum(1 for lid in module.lesson_ids if lid in completed_lesson_ids)
        if done == 0:
            status = "NOT_STARTED"
        elif done >= total:
            status = "COMPLETED"
        else:
            status = "IN_PROGRESS"
        out.append(
            ModuleProgress(
                module_id=module.id,
                title=module.title,
                position=module.position,
                total_lessons=total,
                completed_lessons=done,
                progress_percent=done * 100 / total if total else 0.0,
                status=status,
            )
        )
    return tuple(out)


def next_module(modules: tuple[ModuleProgress, ...]) -> ModuleProgress | None:
    """First module, in course order, that still has lessons to do.

    Modules without lessons are skipped; None once everything is done.
    """
    for module in modules:
        if module.total_lessons and module.status != "COMPLETED":
            return module
    return None


def weekly_activity(events: list[CompletionEvent], now: datetime) -> WeeklyActivity:
    today = utc_day(now)
    first = today - timedelta(days=ACTIVITY_WINDOW_DAYS - 1)
    minutes: Counter[date] = Counter()
    lessons: Counter[date] = Counter()
    for e in events:
        day = utc_day(e.completed_at)
        if first <= day <= today:
            minutes[day] += e.time_spent_minutes
            lessons[day] += 1

    days = tuple(
        DailyActivity(
            day=day,
            weekday=WEEKDAYS[day.weekday()],
            minutes=minutes[day],
            lessons_completed=lessons[day],
        )
        for day in (first + timedelta(days=i) for i in range(ACTIVITY_WINDOW_DAYS))
    )
    return WeeklyActivity(
        days=days,
        total_minutes=sum(minutes.values()),
        total_lessons=sum(lessons.values()),
    )


def next_streak_milestone(streak_days: int) -> int:
    for milestone in STREAK_MILESTONES:
        if streak_days < milestone:
            return milestone
    return streak_days + 50


def achievements(
    entries: list[CourseDashboardEntry], streak_days: int, total_points: int
) -> tuple[Achievement, ...]:
    earned = {
        "first_course": bool(entries),
        "week_streak": streak_days >= 7,
        "course_complete": any(
            e.status is EnrollmentStatus.COMPLETED for e in entries
        ),
        "explorer": len(entries) >= 3,
        "month_streak": streak_days >= 30,
        "point_master": total_points >= 1000,
    }
    return tuple(
        Achievement(id=key, name=name, description=description, earned=earned[key])
        for key, name, description in ACHIEVEMENTS
    )


def _entry_sort_key(entry: CourseDashboardEntry) -> tuple[float, str]:
    return (-entry.last_activity_at.timestamp(), entry.course_id)


# ---------------------------------------------------------------------------
# Aggregator
# ---------------------------------------------------------------------------


@dataclass(slots=True)
class _CourseBuild:
    entry: CourseDashboardEntry
    completions: list[CompletionEvent] = field(default_factory=list)
    quizzes: list[QuizEvent] = field(default_factory=list)
    drifted: bool = False


class DashboardAggregator:
    def __init__(
        self,
        store: ProgressStore,
        *,
        settings: Settings = SETTINGS,
        queue: TaskQueue | None = None,
    ) -> None:
        self._store = store
        self._settings = settings
        self._queue = queue

    def _duration(self, course: CourseInfo | None) -> int:
        if course is not None and course.duration_days:
            return course.duration_days
        return self._settings.default_course_duration_days

    # -- per course -----------------------------------------------------------

    def _entry_from_row(
        self, row: EnrollmentSummary, now: datetime
    ) -> CourseDashboardEntry:
        """Degraded entry: no catalog, no event reads."""
        duration = self._duration(None)
        remaining = 100 - row.total_progress_percent
        return CourseDashboardEntry(
            course_id=row.course_id,
            title=row.course_id,
            status=row.status,
            enrollment_date=row.enrollment_date,
            last_activity_at=row.activity_at,
            completed_lessons=len(row.completed_lesson_ids),
            total_lessons=0,
            time_spent_minutes=row.time_spent_minutes,
            points=row.total_points,
            pacing=pacing_from_percent(
                row.total_progress_percent,
                enrollment_date=row.enrollment_date,
                course_duration_days=duration,
                now=now,
                band=self._settings.deviation_band,
            ),
            streak=StreakState(last_computed_date=utc_day(now)),
            quiz=QuizStats(),
            expected_completion_date=row.enrollment_date + timedelta(days=duration),
            estimated_days_to_completion=(
                0
                if row.status is EnrollmentStatus.COMPLETED
                else max(0, _ceil_div(round(remaining * duration), 100))
            ),
            partial=True,
        )

    async def _build_course(
        self, store: ProgressStore, row: EnrollmentSummary, now: datetime
    ) -> _CourseBuild:
        course = await store.catalog.get_course(row.course_id)
        if course is None:
            logger.warning(
                "Course %s missing from catalog; dashboard entry from row only",
                row.course_id,
            )
            return _CourseBuild(entry=self._entry_from_row(row, now))

        completions = await store.events.list_completions(
            row.student_id, row.course_id
        )
        quizzes = await store.events.list_quiz_results(
            row.student_id, row.course_id
        )

        lesson_ids = frozenset(e.lesson_id for e in completions)
        drifted = lesson_ids != row.completed_lesson_ids
        duration = self._duration(course)
        completed = len(lesson_ids)

        last_activity = max(
            [row.activity_at]
            + [e.completed_at for e in completions]
            + [q.completed_at for q in quizzes]
        )
        entry = CourseDashboardEntry(
            course_id=course.id,
            title=course.title,
            status=row.status,
            enrollment_date=row.enrollment_date,
            last_activity_at=last_activity,
            completed_lessons=completed,
            total_lessons=course.total_lessons,
            time_spent_minutes=sum(e.time_spent_minutes for e in completions),
            points=row.total_points,
            pacing=track_deviation(
                completed_lessons=completed,
                total_lessons=course.total_lessons,
                enrollment_date=row.enrollment_date,
                course_duration_days=duration,
                now=now,
                band=self._settings.deviation_band,
            ),
            streak=compute_streak((e.completed_at for e in completions), now),
            quiz=quiz_stats(quizzes),
            expected_completion_date=row.enrollment_date + timedelta(days=duration),
            estimated_days_to_completion=(
                0
                if row.status is EnrollmentStatus.COMPLETED
                else estimate_days_to_completion(
                    completed_lessons=completed,
                    total_lessons=course.total_lessons,
                    recent_completions=recent_completions(completions, now),
                    duration_days=duration,
                )
            ),
        )
        return _CourseBuild(
            entry=entry, completions=completions, quizzes=quizzes, drifted=drifted
        )

    async def _build_course_isolated(
        self, row: EnrollmentSummary, now: datetime
    ) -> _CourseBuild:
        async with isolated_store(self._store) as store:
            return await self._build_course(store, row, now)

    async def _build_course_bounded(
        self, row: EnrollmentSummary, now: datetime
    ) -> _CourseBuild:
        # A timeout cancels the build mid-query, so it never runs on the
        # request's own session.
        try:
            return await asyncio.wait_for(
                self._build_course_isolated(row, now),
                timeout=self._settings.dashboard_course_timeout_seconds,
            )
        except TimeoutError:
            DASHBOARD_PARTIAL.inc()
            logger.warning(
                "Dashboard course build timed out student=%s course=%s after %.2fs",
                row.student_id,
                row.course_id,
                self._settings.dashboard_course_timeout_seconds,
            )
            return _CourseBuild(entry=self._entry_from_row(row, now))

    async def _request_reconcile(self, row: EnrollmentSummary) -> None:
        ENROLLMENT_DRIFT.inc()
        logger.warning(
            "Enrollment drift student=%s course=%s; using completion log",
            row.student_id,
            row.course_id,
            extra={"student_id": row.student_id, "course_id": row.course_id},
        )
        if self._queue is not None:
            await self._queue.enqueue(
                ENROLLMENT_RECONCILE,
                {"student_id": row.student_id, "course_id": row.course_id},
            )

    # -- student dashboard ---------------------------------------------------

    async def build_summary(self, student_id: str, now: datetime) -> DashboardSummary:
        with DASHBOARD_BUILD_DURATION.time():
            rows = sorted(
                await self._store.enrollments.list_by_student(student_id),
                key=lambda r: r.course_id,
            )
            builds: list[_CourseBuild] = []
            # Sequential: each course build holds a pooled connection.
            for row in rows:
                build = await self._build_course_bounded(row, now)
                if build.drifted:
                    await self._request_reconcile(row)
                builds.append(build)

        entries = sorted((b.entry for b in builds), key=_entry_sort_key)
        completions = [e for b in builds for e in b.completions]
        quizzes = [q for b in builds for q in b.quizzes]

        statuses = Counter(e.status for e in entries)
        total_points = sum(e.points for e in entries)
        overall_streak = compute_streak((e.completed_at for e in completions), now)
        rollup = StudentRollup(
            total_enrolled=len(entries),
            active=statuses[EnrollmentStatus.ACTIVE],
            completed=statuses[EnrollmentStatus.COMPLETED],
            paused=statuses[EnrollmentStatus.PAUSED],
            average_progress_percent=(
                fmean(e.pacing.actual_progress_percent for e in entries)
                if entries
                else 0.0
            ),
            total_study_minutes=sum(e.time_spent_minutes for e in entries),
            current_streak_days=max(
                (e.streak.current_streak_days for e in entries), default=0
            ),
            longest_streak_days=max(
                (e.streak.longest_streak_days for e in entries), default=0
            ),
            overall_streak=overall_streak,
            total_points=total_points,
            level=level_for(total_points),
            average_quiz_percentage=(
                fmean(q.percentage for q in quizzes) if quizzes else 0.0
            ),
            next_streak_milestone=next_streak_milestone(
                overall_streak.current_streak_days
            ),
        )

        return DashboardSummary(
            student_id=student_id,
            as_of=now,
            rollup=rollup,
            courses=tuple(entries),
            upcoming_deadlines=self._upcoming_deadlines(entries, now),
            recent_activity=tuple(
                RecentActivity(
                    course_id=e.course_id,
                    lesson_id=e.lesson_id,
                    completed_at=e.completed_at,
                    time_spent_minutes=e.time_spent_minutes,
                )
                for e in sorted(
                    completions,
                    key=lambda e: (-e.completed_at.timestamp(), e.lesson_id),
                )[:RECENT_ACTIVITY_LIMIT]
            ),
            weekly_activity=weekly_activity(completions, now),
            achievements=achievements(
                entries, overall_streak.current_streak_days, total_points
            ),
            partial=any(e.partial for e in entries),
        )

    def _upcoming_deadlines(
        self, entries: list[CourseDashboardEntry], now: datetime
    ) -> tuple[UpcomingDeadline, ...]:
        deadlines = []
        for entry in entries:
            if entry.status is EnrollmentStatus.COMPLETED:
                continue
            seconds_left = (entry.expected_completion_date - now).total_seconds()
            days_left = _ceil_div(int(seconds_left), 86_400)
            if 0 < days_left <= DEADLINE_HORIZON_DAYS:
                deadlines.append(
                    UpcomingDeadline(
                        course_id=entry.course_id,
                        title=entry.title,
                        days_left=days_left,
                        expected_date=entry.expected_completion_date,
                    )
                )
        deadlines.sort(key=lambda d: (d.days_left, d.course_id))
        return tuple(deadlines)

    # -- single course --------------------------------------------------------

    async def course_progress(
        self, student_id: str, course_id: str, now: datetime
    ) -> CourseProgressReport:
        row = await self._store.enrollments.get(student_id, course_id)
        if row is None:
            raise NotFoundError(f"student {student_id} is not enrolled in {course_id}")
        course = await self._store.catalog.get_course(course_id)
        if course is None:
            raise NotFoundError(f"course {course_id} not found")

        completions = await self._store.events.list_completions(student_id, course_id)
        lesson_ids = frozenset(e.lesson_id for e in completions)
        duration = self._duration(course)
        modules = module_rollup(course, lesson_ids)
        return CourseProgressReport(
            student_id=student_id,
            course_id=course_id,
            pacing=track_deviation(
                completed_lessons=len(lesson_ids),
                total_lessons=course.total_lessons,
                enrollment_date=row.enrollment_date,
                course_duration_days=duration,
                now=now,
                band=self._settings.deviation_band,
            ),
            streak=compute_streak((e.completed_at for e in completions), now),
            modules=modules,
            completed_lessons=len(lesson_ids),
            total_lessons=course.total_lessons,
            estimated_days_to_completion=(
                0
                if row.status is EnrollmentStatus.COMPLETED
                else estimate_days_to_completion(
                    completed_lessons=len(lesson_ids),
                    total_lessons=course.total_lessons,
                    recent_completions=recent_completions(completions, now),
                    duration_days=duration,
                )
            ),
            next_module=next_module(modules),
        )

    # -- instructor view ------------------------------------------------------

    async def course_rollup(self, course_id: str, now: datetime) -> CourseRollup:
        course = await self._store.catalog.get_course(course_id)
        if course is None:
            raise NotFoundError(f"course {course_id} not found")

        rows = await self._store.enrollments.list_by_course(course_id)
        duration = self._duration(course)
        by_status = {s.value: 0 for s in EnrollmentStatus}
        by_pacing = {p.value: 0 for p in PacingLabel}
        for row in rows:
            by_status[row.status.value] += 1
            pacing = pacing_from_percent(
                row.total_progress_percent,
                enrollment_date=row.enrollment_date,
                course_duration_days=duration,
                now=now,
                band=self._settings.deviation_band,
            )
            by_pacing[pacing.label.value] += 1

        enrolled = len(rows)
        return CourseRollup(
            course_id=course.id,
            title=course.title,
            enrolled=enrolled,
            by_status=by_status,
            by_pacing=by_pacing,
            average_progress_percent=(
                fmean(r.total_progress_percent for r in rows) if rows else 0.0
            ),
            completion_rate_percent=(
                by_status[EnrollmentStatus.COMPLETED.value] * 100 / enrolled
                if enrolled
                else 0.0
            ),
        )
