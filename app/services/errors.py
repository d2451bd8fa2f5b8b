"""Error taxonomy for the aggregation engine.

Routers translate these into HTTP responses; nothing below the API
layer knows about status codes.  Replayed events are not errors and
have no class here: they come back as normal results flagged
``duplicate``.
"""

from __future__ import annotations


class ProgressError(Exception):
    """Base class for every error the engine raises on purpose."""


class NotFoundError(ProgressError):
    """A referenced student/course/lesson/enrollment does not exist."""


class InvalidInputError(ProgressError, ValueError):
    """Input rejected at the boundary before reaching the algorithms."""


class ConcurrencyConflictError(ProgressError):
    """Enrollment row kept changing underneath us; retries exhausted."""

    def __init__(self, student_id: str, course_id: str, attempts: int) -> None:
        super().__init__(
            f"enrollment {student_id}/{course_id} still conflicting "
            f"after {attempts} attempts"
        )
        self.student_id = student_id
        self.course_id = course_id
        self.attempts = attempts
