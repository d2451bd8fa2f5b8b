from __future__ import annotations

import asyncio
from dataclasses import replace

from app.models.enrollment import EnrollmentStatus, EnrollmentSummary
from app.models.events import CompletionEvent, QuizDraft
from app.repos.catalog_repo import InMemoryCatalogRepo
from app.repos.enrollment_repo import InMemoryEnrollmentRepo
from app.repos.event_repo import InMemoryEventRepo
from tests.conftest import COURSE, NOW


def _completion(lesson: str, student: str = "s1", course: str = "py-101"):
    return CompletionEvent.new(
        student_id=student, course_id=course, lesson_id=lesson, completed_at=NOW
    )


def _draft(
    quiz: str = "q1", key: str | None = None, student: str = "s1"
) -> QuizDraft:
    return QuizDraft(
        student_id=student,
        course_id="py-101",
        lesson_id="l1",
        quiz_id=quiz,
        score=7,
        max_score=10,
        percentage=70.0,
        passed=True,
        completed_at=NOW,
        idempotency_key=key,
    )


# ---- event log ----


def test_completion_unique_per_student_and_lesson() -> None:
    repo = InMemoryEventRepo()
    first, created = asyncio.run(repo.append_completion(_completion("l1")))
    again, created_again = asyncio.run(repo.append_completion(_completion("l1")))

    assert created is True
    assert created_again is False
    assert again.id == first.id
    assert len(asyncio.run(repo.list_completions("s1"))) == 1


def test_list_completions_filters_by_student_and_course() -> None:
    repo = InMemoryEventRepo()
    asyncio.run(repo.append_completion(_completion("l1")))
    asyncio.run(repo.append_completion(_completion("x1", course="other")))
    asyncio.run(repo.append_completion(_completion("l1", student="s2")))

    assert len(asyncio.run(repo.list_completions("s1"))) == 2
    assert [e.lesson_id for e in asyncio.run(repo.list_completions("s1", "py-101"))] == [
        "l1"
    ]


def test_quiz_attempts_numbered_per_quiz() -> None:
    repo = InMemoryEventRepo()
    a1, _ = asyncio.run(repo.append_quiz_result(_draft("q1")))
    a2, _ = asyncio.run(repo.append_quiz_result(_draft("q1")))
    b1, _ = asyncio.run(repo.append_quiz_result(_draft("q2")))

    assert (a1.attempt_number, a2.attempt_number, b1.attempt_number) == (1, 2, 1)


def test_quiz_idempotency_key_returns_prior_event() -> None:
    repo = InMemoryEventRepo()
    first, created = asyncio.run(repo.append_quiz_result(_draft(key="k1")))
    replay, replay_created = asyncio.run(repo.append_quiz_result(_draft(key="k1")))

    assert created is True
    assert replay_created is False
    assert replay == first
    assert len(asyncio.run(repo.list_quiz_results("s1"))) == 1


def test_quiz_idempotency_key_scoped_to_student() -> None:
    repo = InMemoryEventRepo()
    mine, _ = asyncio.run(repo.append_quiz_result(_draft(key="attempt-1")))
    theirs, created = asyncio.run(
        repo.append_quiz_result(_draft(key="attempt-1", student="s2"))
    )

    assert created is True
    assert theirs.student_id == "s2"
    assert theirs.id != mine.id
    assert theirs.attempt_number == 1


# ---- enrollment rows ----


def _summary() -> EnrollmentSummary:
    return EnrollmentSummary.new(student_id="s1", course_id="py-101", enrolled_at=NOW)


def test_add_is_first_writer_wins() -> None:
    repo = InMemoryEnrollmentRepo()
    assert asyncio.run(repo.add(_summary())) is True
    assert asyncio.run(repo.add(replace(_summary(), total_points=999))) is False

    row = asyncio.run(repo.get("s1", "py-101"))
    assert row.version == 1
    assert row.total_points == 0


def test_compare_and_set_bumps_version() -> None:
    repo = InMemoryEnrollmentRepo()
    asyncio.run(repo.add(_summary()))
    row = asyncio.run(repo.get("s1", "py-101"))

    updated = replace(row, status=EnrollmentStatus.ACTIVE)
    assert asyncio.run(repo.compare_and_set(updated, 1)) is True
    # Stale version loses.
    assert asyncio.run(repo.compare_and_set(updated, 1)) is False

    stored = asyncio.run(repo.get("s1", "py-101"))
    assert stored.version == 2
    assert stored.status is EnrollmentStatus.ACTIVE


def test_compare_and_set_missing_row() -> None:
    repo = InMemoryEnrollmentRepo()
    assert asyncio.run(repo.compare_and_set(_summary(), 0)) is False


def test_list_by_student_and_course() -> None:
    repo = InMemoryEnrollmentRepo()
    asyncio.run(repo.add(_summary()))
    asyncio.run(
        repo.add(EnrollmentSummary.new(student_id="s2", course_id="py-101", enrolled_at=NOW))
    )
    asyncio.run(
        repo.add(EnrollmentSummary.new(student_id="s1", course_id="js-101", enrolled_at=NOW))
    )

    assert {s.course_id for s in asyncio.run(repo.list_by_student("s1"))} == {
        "py-101",
        "js-101",
    }
    assert {s.student_id for s in asyncio.run(repo.list_by_course("py-101"))} == {
        "s1",
        "s2",
    }


# ---- catalog ----


def test_catalog_indexes_lessons_by_course() -> None:
    repo = InMemoryCatalogRepo()
    repo.put(COURSE)

    lesson = asyncio.run(repo.get_lesson("l3"))
    assert lesson.course_id == COURSE.id
    assert lesson.module_id == "py-101-m2"
    assert asyncio.run(repo.get_lesson("missing")) is None
    assert asyncio.run(repo.get_course(COURSE.id)) == COURSE
    assert COURSE.has_lesson("l4") and not COURSE.has_lesson("l5")
