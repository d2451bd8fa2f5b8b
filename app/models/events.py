from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from uuid import uuid4


@dataclass(frozen=True, slots=True)
class CompletionEvent:
    """Append-only fact: a student finished a lesson.

    At most one per (student_id, lesson_id); the store enforces it.
    """

    id: str
    student_id: str
    course_id: str
    lesson_id: str
    completed_at: datetime
    time_spent_minutes: int = 0

    @staticmethod
    def new(
        *,
        student_id: str,
        course_id: str,
        lesson_id: str,
        completed_at: datetime,
        time_spent_minutes: int = 0,
    ) -> CompletionEvent:
        return CompletionEvent(
            id=str(uuid4()),
            student_id=student_id,
            course_id=course_id,
            lesson_id=lesson_id,
            completed_at=completed_at,
            time_spent_minutes=time_spent_minutes,
        )

    @property
    def award_id(self) -> str:
        return f"lesson:{self.student_id}:{self.lesson_id}"


@dataclass(frozen=True, slots=True)
class QuizEvent:
    """Append-only fact: one graded quiz attempt.

    attempt_number is assigned by the store and is unique per
    (student_id, lesson_id, quiz_id).
    """

    id: str
    student_id: str
    course_id: str
    lesson_id: str
    quiz_id: str
    score: float
    max_score: float
    percentage: float
    passed: bool
    completed_at: datetime
    attempt_number: int = 1
    idempotency_key: str | None = None

    @property
    def pass_award_id(self) -> str:
        # One pass award per quiz, whichever attempt passes first.
        return f"quiz-pass:{self.student_id}:{self.quiz_id}"


@dataclass(frozen=True, slots=True)
class QuizDraft:
    """A quiz attempt before the store has numbered it."""

    student_id: str
    course_id: str
    lesson_id: str
    quiz_id: str
    score: float
    max_score: float
    percentage: float
    passed: bool
    completed_at: datetime
    idempotency_key: str | None = None

    def numbered(self, attempt_number: int) -> QuizEvent:
        return QuizEvent(
            id=str(uuid4()),
            student_id=self.student_id,
            course_id=self.course_id,
            lesson_id=self.lesson_id,
            quiz_id=self.quiz_id,
            score=self.score,
            max_score=self.max_score,
            percentage=self.percentage,
            passed=self.passed,
            completed_at=self.completed_at,
            attempt_number=attempt_number,
            idempotency_key=self.idempotency_key,
        )
