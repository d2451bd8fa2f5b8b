"""Event ingestion: the write side of the aggregation engine.

Each operation appends its immutable event first (idempotent per lesson,
or per idempotency key for quizzes) and then folds it into the student's
EnrollmentSummary through the optimistic-concurrency loop.  The fold is a
pure function of (row, event), so a replay that finds the event already
stored still runs it: if the earlier attempt died between the append and
the row write, the replay repairs the row; if it did not, the fold
changes nothing and nothing is written.

Status rules:
  ENROLLED -> ACTIVE      first completed lesson
  *        -> COMPLETED   progress reaches 100 (terminal)
  PAUSED                  only by explicit pause/resume; completions keep a
                          paused row paused unless they finish the course
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, replace
from datetime import datetime

from app.core.config import SETTINGS, Settings
from app.core.metrics import COMPLETIONS_RECORDED, QUIZ_RESULTS_RECORDED
from app.models.course import CourseInfo
from app.models.enrollment import EnrollmentStatus, EnrollmentSummary
from app.models.events import CompletionEvent, QuizDraft, QuizEvent
from app.repos.store import ProgressStore
from app.services.deviation_tracker import actual_progress
from app.services.enrollment_updates import update_enrollment
from app.services.errors import InvalidInputError, NotFoundError
from app.services.points import (
    AwardResult,
    AwardTable,
    AwardType,
    apply_award,
    record_award_metric,
)

logger = logging.getLogger(__name__)

Awards = list[tuple[AwardType, AwardResult]]


@dataclass(frozen=True, slots=True)
class EnrollmentResult:
    summary: EnrollmentSummary
    created: bool


@dataclass(frozen=True, slots=True)
class CompletionResult:
    event: CompletionEvent
    summary: EnrollmentSummary
    duplicate: bool
    points_awarded: int = 0


@dataclass(frozen=True, slots=True)
class QuizSubmission:
    event: QuizEvent
    summary: EnrollmentSummary
    duplicate: bool
    points_awarded: int = 0


# ---------------------------------------------------------------------------
# Pure row transitions
# ---------------------------------------------------------------------------


def _latest(a: datetime | None, b: datetime | None) -> datetime | None:
    if a is None:
        return b
    if b is None:
        return a
    return max(a, b)


def with_derived_status(summary: EnrollmentSummary, at: datetime) -> EnrollmentSummary:
    if summary.status is EnrollmentStatus.COMPLETED:
        return summary
    if summary.total_progress_percent >= 100:
        return replace(
            summary,
            status=EnrollmentStatus.COMPLETED,
            completed_at=summary.completed_at or at,
        )
    if summary.status is EnrollmentStatus.PAUSED:
        return summary
    if summary.completed_lesson_ids:
        return replace(summary, status=EnrollmentStatus.ACTIVE)
    return replace(summary, status=EnrollmentStatus.ENROLLED)


def _apply_progress_awards(
    summary: EnrollmentSummary,
    lesson_award_ids: list[str],
    awards: AwardTable,
) -> tuple[EnrollmentSummary, Awards]:
    applied: Awards = []
    for award_id in lesson_award_ids:
        summary, result = apply_award(summary, award_id, awards.lesson_completion)
        applied.append((AwardType.LESSON_COMPLETION, result))
    if summary.status is EnrollmentStatus.COMPLETED:
        summary, result = apply_award(
            summary, summary.completion_award_id, awards.course_completion
        )
        applied.append((AwardType.COURSE_COMPLETION, result))
    return summary, applied


def apply_completion(
    summary: EnrollmentSummary,
    event: CompletionEvent,
    total_lessons: int,
    awards: AwardTable,
) -> tuple[EnrollmentSummary, Awards]:
    """Fold one completion into the row: lessons, time, status and points."""
    newly_completed = event.lesson_id not in summary.completed_lesson_ids
    lessons = summary.completed_lesson_ids | {event.lesson_id}
    updated = replace(
        summary,
        completed_lesson_ids=lessons,
        total_progress_percent=actual_progress(len(lessons), total_lessons),
    )
    if newly_completed:
        updated = replace(
            updated,
            time_spent_minutes=updated.time_spent_minutes + event.time_spent_minutes,
            last_activity_at=_latest(updated.last_activity_at, event.completed_at),
        )
    updated = with_derived_status(updated, event.completed_at)
    return _apply_progress_awards(updated, [event.award_id], awards)


def apply_quiz_result(
    summary: EnrollmentSummary, event: QuizEvent, awards: AwardTable
) -> tuple[EnrollmentSummary, Awards]:
    updated = replace(
        summary, last_activity_at=_latest(summary.last_activity_at, event.completed_at)
    )
    if not event.passed:
        return updated, []
    updated, result = apply_award(
        updated, event.pass_award_id, awards.quiz_points(event.percentage)
    )
    return updated, [(AwardType.QUIZ_PASS, result)]


def apply_reconciliation(
    summary: EnrollmentSummary,
    completions: list[CompletionEvent],
    total_lessons: int,
    awards: AwardTable,
    now: datetime,
) -> tuple[EnrollmentSummary, Awards]:
    """Rebuild the row's derived fields from the completion log."""
    lessons = frozenset(e.lesson_id for e in completions)
    last_completion = max((e.completed_at for e in completions), default=None)
    updated = replace(
        summary,
        completed_lesson_ids=lessons,
        total_progress_percent=actual_progress(len(lessons), total_lessons),
        time_spent_minutes=sum(e.time_spent_minutes for e in completions),
        last_activity_at=_latest(summary.last_activity_at, last_completion),
    )
    updated = with_derived_status(updated, last_completion or now)
    return _apply_progress_awards(
        updated, sorted(e.award_id for e in completions), awards
    )


def _points_applied(applied: Awards) -> int:
    return sum(r.points for _, r in applied if r.applied)


# ---------------------------------------------------------------------------
# Service
# ---------------------------------------------------------------------------


def _require_id(name: str, value: str) -> str:
    value = value.strip()
    if not value:
        logger.warning("Rejected blank %s", name)
        raise InvalidInputError(f"{name} must be non-empty")
    return value


def _check_event_time(completed_at: datetime, now: datetime) -> None:
    if completed_at.tzinfo is None:
        raise InvalidInputError("completed_at must include a timezone")
    if completed_at > now:
        logger.warning("Rejected future completed_at=%s", completed_at.isoformat())
        raise InvalidInputError("completed_at must not be in the future")


class ProgressService:
    def __init__(
        self,
        store: ProgressStore,
        *,
        awards: AwardTable | None = None,
        settings: Settings = SETTINGS,
    ) -> None:
        self._store = store
        self._awards = awards or AwardTable.from_settings(settings)
        self._settings = settings
        self._attempts = settings.occ_max_retries + 1

    async def _course(self, course_id: str) -> CourseInfo:
        course = await self._store.catalog.get_course(course_id)
        if course is None:
            raise NotFoundError(f"course {course_id} not found")
        return course

    async def _check_lesson(self, course_id: str, lesson_id: str) -> None:
        lesson = await self._store.catalog.get_lesson(lesson_id)
        if lesson is None:
            raise NotFoundError(f"lesson {lesson_id} not found")
        if lesson.course_id != course_id:
            logger.warning(
                "Rejected lesson=%s for course=%s (belongs to %s)",
                lesson_id,
                course_id,
                lesson.course_id,
            )
            raise InvalidInputError(
                f"lesson {lesson_id} does not belong to course {course_id}"
            )

    async def _require_enrollment(
        self, student_id: str, course_id: str
    ) -> EnrollmentSummary:
        summary = await self._store.enrollments.get(student_id, course_id)
        if summary is None:
            raise NotFoundError(f"student {student_id} is not enrolled in {course_id}")
        return summary

    def _log_transition(
        self, before: EnrollmentStatus, after: EnrollmentSummary
    ) -> None:
        if before is not after.status:
            logger.info(
                "Enrollment status student=%s course=%s %s -> %s",
                after.student_id,
                after.course_id,
                before.value,
                after.status.value,
            )

    # -- enrollment ---------------------------------------------------------

    async def enroll(
        self, student_id: str, course_id: str, now: datetime
    ) -> EnrollmentResult:
        student_id = _require_id("student_id", student_id)
        course_id = _require_id("course_id", course_id)
        await self._course(course_id)

        fresh = EnrollmentSummary.new(
            student_id=student_id, course_id=course_id, enrolled_at=now
        )
        summary, result = apply_award(fresh, fresh.award_id, self._awards.enrollment)
        if not await self._store.enrollments.add(summary):
            existing = await self._require_enrollment(student_id, course_id)
            record_award_metric(
                AwardType.ENROLLMENT,
                AwardResult(applied=False, total_points=existing.total_points),
            )
            return EnrollmentResult(summary=existing, created=False)

        record_award_metric(AwardType.ENROLLMENT, result)
        logger.info("Enrolled student=%s course=%s", student_id, course_id)
        return EnrollmentResult(summary=replace(summary, version=1), created=True)

    async def pause(self, student_id: str, course_id: str) -> EnrollmentSummary:
        def mutate(s: EnrollmentSummary) -> tuple[EnrollmentSummary, EnrollmentStatus]:
            if s.status is EnrollmentStatus.COMPLETED:
                raise InvalidInputError(f"course {course_id} is already completed")
            return replace(s, status=EnrollmentStatus.PAUSED), s.status

        summary, before = await update_enrollment(
            self._store.enrollments,
            student_id,
            course_id,
            mutate,
            max_attempts=self._attempts,
        )
        self._log_transition(before, summary)
        return summary

    async def resume(self, student_id: str, course_id: str) -> EnrollmentSummary:
        def mutate(s: EnrollmentSummary) -> tuple[EnrollmentSummary, EnrollmentStatus]:
            if s.status is not EnrollmentStatus.PAUSED:
                return s, s.status
            resumed = (
                EnrollmentStatus.ACTIVE
                if s.completed_lesson_ids
                else EnrollmentStatus.ENROLLED
            )
            return replace(s, status=resumed), s.status

        summary, before = await update_enrollment(
            self._store.enrollments,
            student_id,
            course_id,
            mutate,
            max_attempts=self._attempts,
        )
        self._log_transition(before, summary)
        return summary

    # -- ingestion ----------------------------------------------------------

    async def record_completion(
        self,
        student_id: str,
        course_id: str,
        lesson_id: str,
        time_spent_minutes: int,
        now: datetime,
        *,
        completed_at: datetime | None = None,
    ) -> CompletionResult:
        student_id = _require_id("student_id", student_id)
        course_id = _require_id("course_id", course_id)
        lesson_id = _require_id("lesson_id", lesson_id)
        if time_spent_minutes < 0:
            logger.warning("Rejected negative time_spent=%d", time_spent_minutes)
            raise InvalidInputError("time_spent_minutes must be >= 0")
        completed_at = completed_at or now
        _check_event_time(completed_at, now)

        course = await self._course(course_id)
        await self._check_lesson(course_id, lesson_id)
        before = await self._require_enrollment(student_id, course_id)

        event, created = await self._store.events.append_completion(
            CompletionEvent.new(
                student_id=student_id,
                course_id=course_id,
                lesson_id=lesson_id,
                completed_at=completed_at,
                time_spent_minutes=time_spent_minutes,
            )
        )
        COMPLETIONS_RECORDED.labels(result="created" if created else "duplicate").inc()
        if not created:
            logger.info(
                "Duplicate completion student=%s lesson=%s", student_id, lesson_id
            )

        summary, applied = await update_enrollment(
            self._store.enrollments,
            student_id,
            course_id,
            lambda s: apply_completion(s, event, course.total_lessons, self._awards),
            max_attempts=self._attempts,
        )
        for award_type, result in applied:
            record_award_metric(award_type, result)
        self._log_transition(before.status, summary)

        return CompletionResult(
            event=event,
            summary=summary,
            duplicate=not created,
            points_awarded=_points_applied(applied),
        )

    async def record_quiz_result(
        self,
        student_id: str,
        course_id: str,
        lesson_id: str,
        quiz_id: str,
        score: float,
        max_score: float,
        now: datetime,
        *,
        idempotency_key: str | None = None,
    ) -> QuizSubmission:
        student_id = _require_id("student_id", student_id)
        course_id = _require_id("course_id", course_id)
        lesson_id = _require_id("lesson_id", lesson_id)
        quiz_id = _require_id("quiz_id", quiz_id)
        if max_score <= 0:
            raise InvalidInputError("max_score must be > 0")
        if not 0 <= score <= max_score:
            logger.warning("Rejected quiz score=%s max=%s", score, max_score)
            raise InvalidInputError("score must be between 0 and max_score")

        await self._course(course_id)
        await self._check_lesson(course_id, lesson_id)
        await self._require_enrollment(student_id, course_id)

        percentage = score * 100 / max_score
        event, created = await self._store.events.append_quiz_result(
            QuizDraft(
                student_id=student_id,
                course_id=course_id,
                lesson_id=lesson_id,
                quiz_id=quiz_id,
                score=score,
                max_score=max_score,
                percentage=percentage,
                passed=percentage >= self._settings.quiz_passing_percent,
                completed_at=now,
                idempotency_key=idempotency_key,
            )
        )
        if not created and (
            event.student_id != student_id
            or event.lesson_id != lesson_id
            or event.quiz_id != quiz_id
        ):
            logger.warning(
                "Rejected reused idempotency key student=%s quiz=%s",
                student_id,
                quiz_id,
            )
            raise InvalidInputError(
                "idempotency_key was already used for a different quiz"
            )
        if not created:
            outcome = "duplicate"
        else:
            outcome = "passed" if event.passed else "failed"
        QUIZ_RESULTS_RECORDED.labels(outcome=outcome).inc()

        summary, applied = await update_enrollment(
            self._store.enrollments,
            student_id,
            course_id,
            lambda s: apply_quiz_result(s, event, self._awards),
            max_attempts=self._attempts,
        )
        for award_type, result in applied:
            record_award_metric(award_type, result)

        logger.info(
            "Quiz result student=%s quiz=%s attempt=%d pct=%.1f %s",
            student_id,
            quiz_id,
            event.attempt_number,
            event.percentage,
            outcome,
        )
        return QuizSubmission(
            event=event,
            summary=summary,
            duplicate=not created,
            points_awarded=_points_applied(applied),
        )

    # -- repair ---------------------------------------------------------------

    async def reconcile(
        self, student_id: str, course_id: str, now: datetime
    ) -> EnrollmentSummary:
        course = await self._course(course_id)
        before = await self._require_enrollment(student_id, course_id)
        completions = await self._store.events.list_completions(student_id, course_id)

        summary, applied = await update_enrollment(
            self._store.enrollments,
            student_id,
            course_id,
            lambda s: apply_reconciliation(
                s, completions, course.total_lessons, self._awards, now
            ),
            max_attempts=self._attempts,
        )
        for award_type, result in applied:
            record_award_metric(award_type, result)
        if summary.version != before.version:
            logger.info(
                "Reconciled enrollment student=%s course=%s lessons=%d",
                student_id,
                course_id,
                len(summary.completed_lesson_ids),
            )
        self._log_transition(before.status, summary)
        return summary
