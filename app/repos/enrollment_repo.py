from __future__ import annotations

from dataclasses import replace
from typing import Protocol

from app.models.enrollment import EnrollmentSummary


class EnrollmentRepo(Protocol):
    async def get(self, student_id: str, course_id: str) -> EnrollmentSummary | None: ...
    async def add(self, summary: EnrollmentSummary) -> bool: ...
    async def list_by_student(self, student_id: str) -> list[EnrollmentSummary]: ...
    async def list_by_course(self, course_id: str) -> list[EnrollmentSummary]: ...
    async def compare_and_set(
        self, summary: EnrollmentSummary, expected_version: int
    ) -> bool: ...


class InMemoryEnrollmentRepo:
    def __init__(self) -> None:
        self._store: dict[tuple[str, str], EnrollmentSummary] = {}

    async def get(self, student_id: str, course_id: str) -> EnrollmentSummary | None:
        return self._store.get((student_id, course_id))

    async def add(self, summary: EnrollmentSummary) -> bool:
        key = (summary.student_id, summary.course_id)
        if key in self._store:
            return False
        self._store[key] = replace(summary, version=1)
        return True

    async def list_by_student(self, student_id: str) -> list[EnrollmentSummary]:
        return [s for (sid, _), s in self._store.items() if sid == student_id]

    async def list_by_course(self, course_id: str) -> list[EnrollmentSummary]:
        return [s for (_, cid), s in self._store.items() if cid == course_id]

    async def compare_and_set(
        self, summary: EnrollmentSummary, expected_version: int
    ) -> bool:
        key = (summary.student_id, summary.course_id)
        current = self._store.get(key)
        if current is None or current.version != expected_version:
            return False
        self._store[key] = replace(summary, version=expected_version + 1)
        return True
