"""Event ingestion endpoints.

Lesson completion:
  Client -> POST /v1/progress/completions
  -> append CompletionEvent (idempotent per student+lesson)
  -> fold into EnrollmentSummary (progress, status, points; one write)
  -> commit, then invalidate the dashboard cache and queue a refresh
  -> 202 Accepted

Quiz results follow the same path.  Enrollment and pause/resume change
the enrollment row directly.  The student is always the token subject.
"""

from __future__ import annotations

import logging
from datetime import UTC, datetime
from typing import Annotated

from fastapi import APIRouter, Depends, Response, status

from app.api.dependencies import get_store, require_user
from app.api.errors import http_error
from app.api.schemas import (
    CompletionIn,
    CompletionOut,
    EnrollmentOut,
    QuizResultIn,
    QuizResultOut,
    enrollment_out,
)
from app.models.principal import Principal
from app.repos.store import ProgressStore
from app.services.cache import cache_service, dashboard_key
from app.services.errors import ProgressError
from app.services.progress_service import ProgressService
from app.services.task_queue import DASHBOARD_REFRESH, task_queue

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/v1", tags=["progress"])


async def _after_write(store: ProgressStore, student_id: str) -> None:
    # Commit first: a refresh racing this request must read the new rows.
    await store.commit()
    await cache_service.delete(dashboard_key(student_id))
    await task_queue.enqueue(DASHBOARD_REFRESH, {"student_id": student_id})


# ---------------------------------------------------------------------------
# Enrollment
# ---------------------------------------------------------------------------


@router.post(
    "/courses/{course_id}/enroll",
    response_model=EnrollmentOut,
    status_code=status.HTTP_201_CREATED,
)
async def enroll(
    course_id: str,
    response: Response,
    principal: Annotated[Principal, Depends(require_user)],
    store: Annotated[ProgressStore, Depends(get_store)],
) -> EnrollmentOut:
    """Enroll the caller.  201 on first enrollment, 200 if already enrolled."""
    try:
        result = await ProgressService(store).enroll(
            principal.user_id, course_id, datetime.now(UTC)
        )
    except ProgressError as exc:
        raise http_error(exc) from None

    if result.created:
        await _after_write(store, principal.user_id)
    else:
        response.status_code = status.HTTP_200_OK
    return enrollment_out(result.summary)


@router.post("/courses/{course_id}/pause", response_model=EnrollmentOut)
async def pause(
    course_id: str,
    principal: Annotated[Principal, Depends(require_user)],
    store: Annotated[ProgressStore, Depends(get_store)],
) -> EnrollmentOut:
    try:
        summary = await ProgressService(store).pause(principal.user_id, course_id)
    except ProgressError as exc:
        raise http_error(exc) from None
    await _after_write(store, principal.user_id)
    return enrollment_out(summary)


@router.post("/courses/{course_id}/resume", response_model=EnrollmentOut)
async def resume(
    course_id: str,
    principal: Annotated[Principal, Depends(require_user)],
    store: Annotated[ProgressStore, Depends(get_store)],
) -> EnrollmentOut:
    try:
        summary = await ProgressService(store).resume(principal.user_id, course_id)
    except ProgressError as exc:
        raise http_error(exc) from None
    await _after_write(store, principal.user_id)
    return enrollment_out(summary)


# ---------------------------------------------------------------------------
# Ingestion
# ---------------------------------------------------------------------------


@router.post(
    "/progress/completions",
    response_model=CompletionOut,
    status_code=status.HTTP_202_ACCEPTED,
)
async def record_completion(
    body: CompletionIn,
    principal: Annotated[Principal, Depends(require_user)],
    store: Annotated[ProgressStore, Depends(get_store)],
) -> CompletionOut:
    """Record a lesson completion.

    Replays (same student + lesson) are accepted and reported with
    ``duplicate: true``; they never add progress or points twice.
    """
    try:
        result = await ProgressService(store).record_completion(
            principal.user_id,
            body.course_id,
            body.lesson_id,
            body.time_spent_minutes,
            datetime.now(UTC),
            completed_at=body.completed_at,
        )
    except ProgressError as exc:
        raise http_error(exc) from None

    await _after_write(store, principal.user_id)
    return CompletionOut(
        event_id=result.event.id,
        lesson_id=result.event.lesson_id,
        completed_at=result.event.completed_at,
        duplicate=result.duplicate,
        points_awarded=result.points_awarded,
        enrollment=enrollment_out(result.summary),
    )


@router.post(
    "/progress/quiz-results",
    response_model=QuizResultOut,
    status_code=status.HTTP_202_ACCEPTED,
)
async def record_quiz_result(
    body: QuizResultIn,
    principal: Annotated[Principal, Depends(require_user)],
    store: Annotated[ProgressStore, Depends(get_store)],
) -> QuizResultOut:
    try:
        result = await ProgressService(store).record_quiz_result(
            principal.user_id,
            body.course_id,
            body.lesson_id,
            body.quiz_id,
            body.score,
            body.max_score,
            datetime.now(UTC),
            idempotency_key=body.idempotency_key,
        )
    except ProgressError as exc:
        raise http_error(exc) from None

    await _after_write(store, principal.user_id)
    return QuizResultOut(
        event_id=result.event.id,
        quiz_id=result.event.quiz_id,
        attempt_number=result.event.attempt_number,
        percentage=round(result.event.percentage, 2),
        passed=result.event.passed,
        duplicate=result.duplicate,
        points_awarded=result.points_awarded,
        enrollment=enrollment_out(result.summary),
    )
