"""PostgreSQL implementation of EventRepo."""

from __future__ import annotations

import logging

from sqlalchemy import func, select
from sqlalchemy.dialects.postgresql import insert
from sqlalchemy.ext.asyncio import AsyncSession

from app.db.tables import CompletionEventRow, QuizEventRow
from app.models.events import CompletionEvent, QuizDraft, QuizEvent

logger = logging.getLogger(__name__)

# Attempts to claim the next attempt_number before giving up; each miss
# means another request for the same quiz committed first.
_ATTEMPT_NUMBER_RETRIES = 5


class PgEventRepo:
    """Satisfies the EventRepo Protocol using PostgreSQL via SQLAlchemy.

    Uniqueness lives in the schema (see tables.py); inserts use
    ON CONFLICT DO NOTHING and then read back whichever row won.
    """

    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def append_completion(
        self, event: CompletionEvent
    ) -> tuple[CompletionEvent, bool]:
        stmt = (
            insert(CompletionEventRow)
            .values(
                id=event.id,
                student_id=event.student_id,
                course_id=event.course_id,
                lesson_id=event.lesson_id,
                completed_at=event.completed_at,
                time_spent_minutes=event.time_spent_minutes,
            )
            .on_conflict_do_nothing(index_elements=["student_id", "lesson_id"])
        )
        result = await self._session.execute(stmt)
        if result.rowcount == 1:
            return event, True

        existing = (
            await self._session.execute(
                select(CompletionEventRow).where(
                    CompletionEventRow.student_id == event.student_id,
                    CompletionEventRow.lesson_id == event.lesson_id,
                )
            )
        ).scalar_one()
        return _row_to_completion(existing), False

    async def list_completions(
        self, student_id: str, course_id: str | None = None
    ) -> list[CompletionEvent]:
        stmt = select(CompletionEventRow).where(
            CompletionEventRow.student_id == student_id
        )
        if course_id is not None:
            stmt = stmt.where(CompletionEventRow.course_id == course_id)
        rows = (await self._session.execute(stmt)).scalars().all()
        return [_row_to_completion(r) for r in rows]

    async def append_quiz_result(self, draft: QuizDraft) -> tuple[QuizEvent, bool]:
        if draft.idempotency_key:
            prior = await self._by_idempotency_key(
                draft.student_id, draft.idempotency_key
            )
            if prior is not None:
                return prior, False

        for _ in range(_ATTEMPT_NUMBER_RETRIES):
            last_attempt = (
                await self._session.execute(
                    select(func.max(QuizEventRow.attempt_number)).where(
                        QuizEventRow.student_id == draft.student_id,
                        QuizEventRow.lesson_id == draft.lesson_id,
                        QuizEventRow.quiz_id == draft.quiz_id,
                    )
                )
            ).scalar_one_or_none() or 0

            event = draft.numbered(last_attempt + 1)
            stmt = (
                insert(QuizEventRow)
                .values(
                    id=event.id,
                    student_id=event.student_id,
                    course_id=event.course_id,
                    lesson_id=event.lesson_id,
                    quiz_id=event.quiz_id,
                    score=event.score,
                    max_score=event.max_score,
                    percentage=event.percentage,
                    passed=event.passed,
                    completed_at=event.completed_at,
                    attempt_number=event.attempt_number,
                    idempotency_key=event.idempotency_key,
                )
                .on_conflict_do_nothing()
            )
            result = await self._session.execute(stmt)
            if result.rowcount == 1:
                return event, True

            # Lost the race: either someone took this attempt number or
            # the same idempotency key landed concurrently.
            if draft.idempotency_key:
                prior = await self._by_idempotency_key(
                    draft.student_id, draft.idempotency_key
                )
                if prior is not None:
                    return prior, False
            logger.warning(
                "Quiz attempt number collision student=%s quiz=%s attempt=%d",
                draft.student_id,
                draft.quiz_id,
                event.attempt_number,
            )

        raise RuntimeError(
            f"could not assign a quiz attempt number for quiz={draft.quiz_id}"
        )

    async def list_quiz_results(
        self, student_id: str, course_id: str | None = None
    ) -> list[QuizEvent]:
        stmt = select(QuizEventRow).where(QuizEventRow.student_id == student_id)
        if course_id is not None:
            stmt = stmt.where(QuizEventRow.course_id == course_id)
        rows = (await self._session.execute(stmt)).scalars().all()
        return [_row_to_quiz(r) for r in rows]

    async def _by_idempotency_key(
        self, student_id: str, key: str
    ) -> QuizEvent | None:
        row = (
            await self._session.execute(
                select(QuizEventRow).where(
                    QuizEventRow.student_id == student_id,
                    QuizEventRow.idempotency_key == key,
                )
            )
        ).scalar_one_or_none()
        return _row_to_quiz(row) if row is not None else None


def _row_to_completion(row: CompletionEventRow) -> CompletionEvent:
    return CompletionEvent(
        id=row.id,
        student_id=row.student_id,
        course_id=row.course_id,
        lesson_id=row.lesson_id,
        completed_at=row.completed_at,
        time_spent_minutes=row.time_spent_minutes,
    )


def _row_to_quiz(row: QuizEventRow) -> QuizEvent:
    return QuizEvent(
        id=row.id,
        student_id=row.student_id,
        course_id=row.course_id,
        lesson_id=row.lesson_id,
        quiz_id=row.quiz_id,
        score=row.score,
        max_score=row.max_score,
        percentage=row.percentage,
        passed=row.passed,
        completed_at=row.completed_at,
        attempt_number=row.attempt_number,
        idempotency_key=row.idempotency_key,
    )
