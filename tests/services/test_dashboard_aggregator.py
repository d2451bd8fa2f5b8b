from __future__ import annotations

import asyncio
import logging
from dataclasses import replace
from datetime import date, timedelta

import pytest
from prometheus_client import REGISTRY

from app.core.config import SETTINGS
from app.models.analytics import ModuleProgress, PacingLabel
from app.models.enrollment import EnrollmentStatus
from app.models.events import CompletionEvent
from app.repos import store as store_module
from app.repos.catalog_repo import InMemoryCatalogRepo
from app.repos.enrollment_repo import InMemoryEnrollmentRepo
from app.repos.event_repo import InMemoryEventRepo
from app.repos.store import ProgressStore, isolated_store
from app.services.dashboard import (
    DashboardAggregator,
    achievements,
    estimate_days_to_completion,
    module_rollup,
    next_module,
    next_streak_milestone,
    quiz_stats,
    weekly_activity,
)
from app.services.errors import NotFoundError
from app.services.points import AwardTable
from app.services.progress_service import ProgressService
from app.services.task_queue import ENROLLMENT_RECONCILE, InMemoryTaskQueue
from tests.conftest import COURSE, NOW, make_course

_SETTINGS = replace(
    SETTINGS,
    deviation_band=5.0,
    default_course_duration_days=30,
    dashboard_course_timeout_seconds=2.0,
)


class _SlowCatalogRepo(InMemoryCatalogRepo):
    """Catalog whose reads can be made to stall."""

    def __init__(self) -> None:
        super().__init__()
        self.delay = 0.0

    async def get_course(self, course_id: str):
        if self.delay:
            await asyncio.sleep(self.delay)
        return await super().get_course(course_id)


@pytest.fixture
def catalog() -> _SlowCatalogRepo:
    repo = _SlowCatalogRepo()
    repo.put(COURSE)
    return repo


@pytest.fixture
def store(catalog: _SlowCatalogRepo) -> ProgressStore:
    return ProgressStore(
        events=InMemoryEventRepo(),
        enrollments=InMemoryEnrollmentRepo(),
        catalog=catalog,
    )


@pytest.fixture
def service(store: ProgressStore) -> ProgressService:
    return ProgressService(store, awards=AwardTable(), settings=_SETTINGS)


def _aggregator(store: ProgressStore, **kw) -> DashboardAggregator:
    return DashboardAggregator(store, settings=kw.pop("settings", _SETTINGS), **kw)


def _enroll(service, course_id=COURSE.id, days_ago=10, student="s1") -> None:
    asyncio.run(service.enroll(student, course_id, NOW - timedelta(days=days_ago)))


def _complete(service, lesson, course_id=COURSE.id, ago=timedelta(0), student="s1"):
    asyncio.run(
        service.record_completion(
            student, course_id, lesson, 10, NOW, completed_at=NOW - ago
        )
    )


def _build(store: ProgressStore, **kw):
    return asyncio.run(_aggregator(store, **kw).build_summary("s1", NOW))


def _partial_count() -> float:
    return REGISTRY.get_sample_value("progress_dashboard_partial_total") or 0.0


# ---------------------------------------------------------------------------
# Pure helpers
# ---------------------------------------------------------------------------


def test_estimate_uses_recent_velocity() -> None:
    # 2 lessons in the last week, 2 left: one lesson every 3.5 days.
    assert (
        estimate_days_to_completion(
            completed_lessons=2, total_lessons=4, recent_completions=2, duration_days=20
        )
        == 7
    )


def test_estimate_falls_back_to_course_duration() -> None:
    assert (
        estimate_days_to_completion(
            completed_lessons=1, total_lessons=4, recent_completions=0, duration_days=20
        )
        == 15
    )


def test_estimate_edge_cases() -> None:
    assert (
        estimate_days_to_completion(
            completed_lessons=4, total_lessons=4, recent_completions=0, duration_days=20
        )
        == 0
    )
    assert (
        estimate_days_to_completion(
            completed_lessons=0, total_lessons=0, recent_completions=0, duration_days=20
        )
        == 20
    )


def test_module_rollup_statuses() -> None:
    modules = module_rollup(COURSE, frozenset({"l1", "l2", "l3"}))
    assert [(m.module_id, m.status) for m in modules] == [
        ("py-101-m1", "COMPLETED"),
        ("py-101-m2", "IN_PROGRESS"),
    ]
    assert modules[1].progress_percent == 50.0


def test_quiz_stats_empty() -> None:
    stats = quiz_stats([])
    assert stats.attempts == 0
    assert stats.average_percentage == 0.0


def _event(lesson: str, ago: timedelta, minutes: int = 10) -> CompletionEvent:
    return CompletionEvent(
        id=f"e-{lesson}",
        student_id="s1",
        course_id=COURSE.id,
        lesson_id=lesson,
        completed_at=NOW - ago,
        time_spent_minutes=minutes,
    )


def test_weekly_activity_covers_last_seven_days() -> None:
    events = [
        _event("l1", timedelta(0), minutes=15),
        _event("l2", timedelta(hours=2), minutes=5),
        _event("l3", timedelta(days=6), minutes=30),
        _event("l4", timedelta(days=7), minutes=99),
    ]
    week = weekly_activity(events, NOW)

    assert [d.day for d in week.days] == [
        date(2026, 3, 9) + timedelta(days=i) for i in range(7)
    ]
    weekdays = ["Mon", "Tue", "Wed", "Thu", "Fri", "Sat", "Sun"]
    assert [d.weekday for d in week.days] == weekdays
    assert (week.days[0].minutes, week.days[0].lessons_completed) == (30, 1)
    assert (week.days[-1].minutes, week.days[-1].lessons_completed) == (20, 2)
    assert all(d.minutes == 0 for d in week.days[1:-1])
    # The event from 7 days ago falls outside the window.
    assert week.total_minutes == 50
    assert week.total_lessons == 3


def test_weekly_activity_empty() -> None:
    week = weekly_activity([], NOW)
    assert len(week.days) == 7
    assert week.total_minutes == 0
    assert week.total_lessons == 0


@pytest.mark.parametrize(
    "streak,expected", [(0, 7), (6, 7), (7, 30), (29, 30), (30, 100), (100, 150)]
)
def test_next_streak_milestone(streak: int, expected: int) -> None:
    assert next_streak_milestone(streak) == expected


def test_achievements_without_enrollments() -> None:
    earned = {a.id: a.earned for a in achievements([], 0, 0)}
    assert list(earned) == [
        "first_course",
        "week_streak",
        "course_complete",
        "explorer",
        "month_streak",
        "point_master",
    ]
    assert not any(earned.values())


def test_achievements_streak_and_points() -> None:
    earned = {a.id: a.earned for a in achievements([], 30, 1000)}
    assert earned["week_streak"] is True
    assert earned["month_streak"] is True
    assert earned["point_master"] is True
    assert earned["first_course"] is False


def _module(module_id: str, total: int, done: int) -> ModuleProgress:
    if done == 0:
        status = "NOT_STARTED"
    elif done >= total:
        status = "COMPLETED"
    else:
        status = "IN_PROGRESS"
    return ModuleProgress(
        module_id=module_id,
        title=module_id,
        position=0,
        total_lessons=total,
        completed_lessons=done,
        progress_percent=done * 100 / total if total else 0.0,
        status=status,
    )


def test_next_module_is_first_unfinished() -> None:
    modules = (_module("m1", 2, 2), _module("m2", 0, 0), _module("m3", 3, 1))
    assert next_module(modules).module_id == "m3"


def test_next_module_none_when_all_done() -> None:
    assert next_module((_module("m1", 2, 2), _module("m2", 0, 0))) is None
    assert next_module(()) is None


# ---------------------------------------------------------------------------
# Student dashboard
# ---------------------------------------------------------------------------


def test_no_enrollments(store: ProgressStore) -> None:
    summary = _build(store)
    assert summary.courses == ()
    assert summary.rollup.total_enrolled == 0
    assert summary.rollup.average_progress_percent == 0.0
    assert summary.rollup.level == 1
    assert summary.partial is False


def test_single_course_entry(service, store) -> None:
    _enroll(service, days_ago=10)
    _complete(service, "l1", ago=timedelta(days=1))
    _complete(service, "l2")

    summary = _build(store)
    (entry,) = summary.courses
    assert entry.course_id == COURSE.id
    assert entry.title == "Python 101"
    assert entry.status is EnrollmentStatus.ACTIVE
    assert entry.completed_lessons == 2
    assert entry.total_lessons == 4
    assert entry.time_spent_minutes == 20
    assert entry.points == 70
    assert entry.last_activity_at == NOW
    assert entry.pacing.actual_progress_percent == 50.0
    assert entry.pacing.expected_progress_percent == 50.0
    assert entry.pacing.label is PacingLabel.ON_TRACK
    assert entry.streak.current_streak_days == 2
    assert entry.streak.longest_streak_days == 2
    assert entry.estimated_days_to_completion == 7
    assert entry.expected_completion_date == NOW + timedelta(days=10)
    assert entry.partial is False

    rollup = summary.rollup
    assert rollup.total_enrolled == 1
    assert rollup.active == 1
    assert rollup.average_progress_percent == 50.0
    assert rollup.total_study_minutes == 20
    assert rollup.total_points == 70
    assert rollup.current_streak_days == 2


def test_summary_weekly_activity_and_achievements(service, store) -> None:
    _enroll(service, days_ago=10)
    _complete(service, "l1", ago=timedelta(days=1))
    _complete(service, "l2")

    summary = _build(store)
    week = summary.weekly_activity
    assert [d.lessons_completed for d in week.days] == [0, 0, 0, 0, 0, 1, 1]
    assert week.total_minutes == 20
    assert week.total_lessons == 2
    assert summary.rollup.next_streak_milestone == 7

    earned = {a.id for a in summary.achievements if a.earned}
    assert earned == {"first_course"}


def test_estimate_without_recent_activity(service, store) -> None:
    _enroll(service, days_ago=10)
    _complete(service, "l1", ago=timedelta(days=9))
    (entry,) = _build(store).courses
    assert entry.estimated_days_to_completion == 15
    assert entry.streak.current_streak_days == 0


def test_completed_course_needs_no_more_days(service, store) -> None:
    _enroll(service, days_ago=5)
    for lesson in ("l1", "l2", "l3", "l4"):
        _complete(service, lesson)
    summary = _build(store)
    (entry,) = summary.courses
    assert entry.status is EnrollmentStatus.COMPLETED
    assert entry.estimated_days_to_completion == 0
    assert summary.rollup.completed == 1
    assert summary.rollup.level == 6  # 590 points


def test_courses_ordered_by_last_activity(service, store, catalog) -> None:
    catalog.put(make_course("aa-200", 2))
    _enroll(service, days_ago=5)
    _enroll(service, course_id="aa-200", days_ago=5)
    _complete(service, "aa-200-l1", course_id="aa-200", ago=timedelta(days=2))
    _complete(service, "l1", ago=timedelta(days=1))

    summary = _build(store)
    assert [e.course_id for e in summary.courses] == [COURSE.id, "aa-200"]


def test_ties_broken_by_course_id(service, store, catalog) -> None:
    catalog.put(make_course("zz-300", 2))
    catalog.put(make_course("aa-200", 2))
    for course_id in ("zz-300", COURSE.id, "aa-200"):
        _enroll(service, course_id=course_id, days_ago=3)

    summary = _build(store)
    assert [e.course_id for e in summary.courses] == ["aa-200", COURSE.id, "zz-300"]


def test_build_is_deterministic(service, store, catalog) -> None:
    catalog.put(make_course("aa-200", 3))
    _enroll(service, days_ago=4)
    _enroll(service, course_id="aa-200", days_ago=2)
    _complete(service, "l1", ago=timedelta(hours=5))
    _complete(service, "aa-200-l2", course_id="aa-200", ago=timedelta(hours=5))

    assert _build(store) == _build(store)


def test_quiz_stats_in_entry(service, store) -> None:
    _enroll(service)
    for score in (5, 8):
        asyncio.run(
            service.record_quiz_result("s1", COURSE.id, "l1", "q1", score, 10, NOW)
        )
    summary = _build(store)
    quiz = summary.courses[0].quiz
    assert quiz.attempts == 2
    assert quiz.quizzes_passed == 1
    assert quiz.average_percentage == 65.0
    assert quiz.best_percentage == 80.0
    assert summary.rollup.average_quiz_percentage == 65.0


def test_upcoming_deadlines(service, store, catalog) -> None:
    catalog.put(make_course("aa-200", 2, duration_days=60))
    _enroll(service, days_ago=15)  # due in 5 days
    _enroll(service, course_id="aa-200", days_ago=15)  # due in 45 days

    deadlines = _build(store).upcoming_deadlines
    assert [(d.course_id, d.days_left) for d in deadlines] == [(COURSE.id, 5)]


def test_overdue_course_has_no_deadline(service, store) -> None:
    _enroll(service, days_ago=25)
    assert _build(store).upcoming_deadlines == ()


def test_recent_activity_newest_first_and_limited(service, store, catalog) -> None:
    catalog.put(make_course("big", 12, duration_days=90))
    _enroll(service, course_id="big", days_ago=20)
    for i in range(1, 13):
        _complete(service, f"big-l{i}", course_id="big", ago=timedelta(hours=i))

    activity = _build(store).recent_activity
    assert len(activity) == 10
    assert activity[0].lesson_id == "big-l1"
    assert activity[-1].lesson_id == "big-l10"


def test_rollup_counts_statuses(service, store, catalog) -> None:
    catalog.put(make_course("aa-200", 2))
    catalog.put(make_course("bb-300", 2))
    _enroll(service)
    _enroll(service, course_id="aa-200")
    _enroll(service, course_id="bb-300")
    _complete(service, "l1")
    asyncio.run(service.pause("s1", "aa-200"))

    rollup = _build(store).rollup
    assert rollup.total_enrolled == 3
    assert rollup.active == 1
    assert rollup.paused == 1
    assert rollup.completed == 0


# ---------------------------------------------------------------------------
# Degraded builds
# ---------------------------------------------------------------------------


def test_slow_course_degrades_to_partial_entry(service, store, catalog) -> None:
    _enroll(service)
    _complete(service, "l1")
    catalog.delay = 0.2

    before = _partial_count()
    settings = replace(_SETTINGS, dashboard_course_timeout_seconds=0.01)
    summary = _build(store, settings=settings)

    (entry,) = summary.courses
    assert summary.partial is True
    assert entry.partial is True
    assert entry.title == COURSE.id
    assert entry.completed_lessons == 1
    assert entry.points == 60
    assert _partial_count() - before == 1


class _ScratchSession:
    def __init__(self, log: list[str]) -> None:
        self._log = log

    async def __aenter__(self):
        self._log.append("open")
        return self

    async def __aexit__(self, *exc) -> bool:
        self._log.append("close")
        return False


class _RequestSession:
    """Fails the test if the aggregator touches it."""

    def __getattr__(self, name: str):
        raise AssertionError(f"request session used: {name}")


def test_timed_out_build_never_touches_request_session(
    service, store, catalog, monkeypatch: pytest.MonkeyPatch
) -> None:
    _enroll(service)
    _complete(service, "l1")
    catalog.delay = 0.2
    log: list[str] = []
    monkeypatch.setattr(
        store_module, "async_session_factory", lambda: _ScratchSession(log)
    )
    monkeypatch.setattr(
        store_module, "pg_store", lambda session: replace(store, session=session)
    )
    request_store = replace(store, session=_RequestSession())

    settings = replace(_SETTINGS, dashboard_course_timeout_seconds=0.01)
    summary = _build(request_store, settings=settings)

    assert summary.partial is True
    assert log == ["open", "close"]


def test_in_memory_store_builds_in_place(store: ProgressStore) -> None:
    async def scoped() -> ProgressStore:
        async with isolated_store(store) as inner:
            return inner

    assert asyncio.run(scoped()) is store


def test_course_missing_from_catalog_is_partial(service, store, catalog) -> None:
    _enroll(service)
    _complete(service, "l1")
    catalog.clear()

    summary = _build(store)
    (entry,) = summary.courses
    assert summary.partial is True
    assert entry.partial is True
    assert entry.total_lessons == 0
    assert entry.completed_lessons == 1


def test_drift_uses_log_and_queues_reconcile(
    service, store, caplog: pytest.LogCaptureFixture
) -> None:
    _enroll(service)
    _complete(service, "l1")
    _complete(service, "l2")

    async def corrupt() -> None:
        row = await store.enrollments.get("s1", COURSE.id)
        await store.enrollments.compare_and_set(
            replace(row, completed_lesson_ids=frozenset({"l1"})), row.version
        )

    asyncio.run(corrupt())
    queue = InMemoryTaskQueue()
    drift_before = REGISTRY.get_sample_value("progress_enrollment_drift_total") or 0.0

    with caplog.at_level(logging.WARNING, logger="app.services.dashboard"):
        summary = _build(store, queue=queue)

    assert summary.courses[0].completed_lessons == 2
    assert "drift" in caplog.text
    assert (
        REGISTRY.get_sample_value("progress_enrollment_drift_total") - drift_before
        == 1
    )
    task = asyncio.run(queue.dequeue(ENROLLMENT_RECONCILE))
    assert task is not None
    assert task.payload == {"student_id": "s1", "course_id": COURSE.id}


def test_consistent_row_queues_nothing(service, store) -> None:
    _enroll(service)
    _complete(service, "l1")
    queue = InMemoryTaskQueue()
    _build(store, queue=queue)
    assert asyncio.run(queue.queue_length(ENROLLMENT_RECONCILE)) == 0


# ---------------------------------------------------------------------------
# Single course and instructor views
# ---------------------------------------------------------------------------


def test_course_progress_report(service, store) -> None:
    _enroll(service, days_ago=10)
    for lesson in ("l1", "l2", "l3"):
        _complete(service, lesson)

    report = asyncio.run(_aggregator(store).course_progress("s1", COURSE.id, NOW))
    assert report.completed_lessons == 3
    assert report.total_lessons == 4
    assert report.pacing.actual_progress_percent == 75.0
    assert report.pacing.label is PacingLabel.AHEAD
    assert [m.status for m in report.modules] == ["COMPLETED", "IN_PROGRESS"]
    assert report.next_module.module_id == "py-101-m2"
    assert report.streak.current_streak_days == 1
    # 3 lessons this week, 1 left: ceil(7 / 3)
    assert report.estimated_days_to_completion == 3


def test_course_progress_not_enrolled(store) -> None:
    with pytest.raises(NotFoundError):
        asyncio.run(_aggregator(store).course_progress("s1", COURSE.id, NOW))


def test_course_rollup(service, store) -> None:
    for student in ("s1", "s2", "s3"):
        _enroll(service, student=student, days_ago=10)
    for lesson in ("l1", "l2"):
        _complete(service, lesson, student="s2")
    for lesson in ("l1", "l2", "l3", "l4"):
        _complete(service, lesson, student="s3")

    rollup = asyncio.run(_aggregator(store).course_rollup(COURSE.id, NOW))
    assert rollup.enrolled == 3
    assert rollup.by_status == {
        "ENROLLED": 1,
        "ACTIVE": 1,
        "COMPLETED": 1,
        "PAUSED": 0,
    }
    assert rollup.by_pacing == {"AHEAD": 1, "ON_TRACK": 1, "BEHIND": 1}
    assert rollup.average_progress_percent == 50.0
    assert rollup.completion_rate_percent == pytest.approx(100 / 3)


def test_course_rollup_empty_and_unknown(store) -> None:
    rollup = asyncio.run(_aggregator(store).course_rollup(COURSE.id, NOW))
    assert rollup.enrolled == 0
    assert rollup.completion_rate_percent == 0.0

    with pytest.raises(NotFoundError):
        asyncio.run(_aggregator(store).course_rollup("nope", NOW))


def test_course_progress_next_module_none_when_complete(service, store) -> None:
    _enroll(service, days_ago=10)
    for lesson in ("l1", "l2", "l3", "l4"):
        _complete(service, lesson)

    report = asyncio.run(_aggregator(store).course_progress("s1", COURSE.id, NOW))
    assert report.next_module is None
