from __future__ import annotations

from typing import Protocol

from app.models.events import CompletionEvent, QuizDraft, QuizEvent


class EventRepo(Protocol):
    async def append_completion(
        self, event: CompletionEvent
    ) -> tuple[CompletionEvent, bool]: ...
    async def list_completions(
        self, student_id: str, course_id: str | None = None
    ) -> list[CompletionEvent]: ...
    async def append_quiz_result(self, draft: QuizDraft) -> tuple[QuizEvent, bool]: ...
    async def list_quiz_results(
        self, student_id: str, course_id: str | None = None
    ) -> list[QuizEvent]: ...


class InMemoryEventRepo:
    """Append-only logs held in process memory.

    No method awaits anything, so each call runs to completion without
    interleaving with other tasks; that is what makes the check-then-append
    below atomic.
    """

    def __init__(self) -> None:
        self._completions: dict[tuple[str, str], CompletionEvent] = {}
        self._quizzes: list[QuizEvent] = []
        self._quiz_by_key: dict[tuple[str, str], QuizEvent] = {}

    async def append_completion(
        self, event: CompletionEvent
    ) -> tuple[CompletionEvent, bool]:
        key = (event.student_id, event.lesson_id)
        existing = self._completions.get(key)
        if existing is not None:
            return existing, False
        self._completions[key] = event
        return event, True

    async def list_completions(
        self, student_id: str, course_id: str | None = None
    ) -> list[CompletionEvent]:
        return [
            e
            for e in self._completions.values()
            if e.student_id == student_id
            and (course_id is None or e.course_id == course_id)
        ]

    async def append_quiz_result(self, draft: QuizDraft) -> tuple[QuizEvent, bool]:
        if draft.idempotency_key:
            prior = self._quiz_by_key.get(
                (draft.student_id, draft.idempotency_key)
            )
            if prior is not None:
                return prior, False

        last_attempt = max(
            (
                q.attempt_number
                for q in self._quizzes
                if q.student_id == draft.student_id
                and q.lesson_id == draft.lesson_id
                and q.quiz_id == draft.quiz_id
            ),
            default=0,
        )
        event = draft.numbered(last_attempt + 1)
        self._quizzes.append(event)
        if event.idempotency_key:
            self._quiz_by_key[(event.student_id, event.idempotency_key)] = event
        return event, True

    async def list_quiz_results(
        self, student_id: str, course_id: str | None = None
    ) -> list[QuizEvent]:
        return [
            q
            for q in self._quizzes
            if q.student_id == student_id
            and (course_id is None or q.course_id == course_id)
        ]
