"""Optimistic-concurrency write loop for EnrollmentSummary rows.

Every mutation of an enrollment row goes through ``update_enrollment``:

  1. read the row and its version
  2. apply a pure ``mutate`` function to it
  3. compare-and-set the result against the version read in step 1
  4. on a version mismatch, start again from step 1

Because ``mutate`` is re-run against the freshly read row, concurrent
writers compose (set union of completed lessons, award ledger union)
instead of overwriting each other.  A mutation that changes nothing is
not written at all, which is what makes replays free.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import replace
from typing import TypeVar

from app.core.metrics import ENROLLMENT_CONFLICTS
from app.models.enrollment import EnrollmentSummary
from app.repos.enrollment_repo import EnrollmentRepo
from app.services.errors import ConcurrencyConflictError, NotFoundError

logger = logging.getLogger(__name__)

T = TypeVar("T")

Mutation = Callable[[EnrollmentSummary], tuple[EnrollmentSummary, T]]


async def update_enrollment(
    repo: EnrollmentRepo,
    student_id: str,
    course_id: str,
    mutate: Mutation[T],
    *,
    max_attempts: int,
) -> tuple[EnrollmentSummary, T]:
    for attempt in range(1, max_attempts + 1):
        current = await repo.get(student_id, course_id)
        if current is None:
            raise NotFoundError(f"student {student_id} is not enrolled in {course_id}")

        updated, outcome = mutate(current)
        if updated == current:
            return current, outcome

        if await repo.compare_and_set(updated, current.version):
            return replace(updated, version=current.version + 1), outcome

        ENROLLMENT_CONFLICTS.labels(outcome="retried").inc()
        logger.warning(
            "Enrollment version conflict student=%s course=%s attempt=%d/%d",
            student_id,
            course_id,
            attempt,
            max_attempts,
            extra={"student_id": student_id, "course_id": course_id},
        )

    ENROLLMENT_CONFLICTS.labels(outcome="exhausted").inc()
    raise ConcurrencyConflictError(student_id, course_id, max_attempts)
