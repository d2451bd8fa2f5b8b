"""PostgreSQL implementation of EnrollmentRepo."""

from __future__ import annotations

from sqlalchemy import select, update
from sqlalchemy.dialects.postgresql import insert
from sqlalchemy.ext.asyncio import AsyncSession

from app.db.tables import EnrollmentRow
from app.models.enrollment import EnrollmentStatus, EnrollmentSummary


class PgEnrollmentRepo:
    """Satisfies the EnrollmentRepo Protocol using PostgreSQL via SQLAlchemy.

    compare_and_set is a single conditional UPDATE: the WHERE clause on
    ``version`` is the optimistic lock, and rowcount tells us who won.
    """

    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def get(self, student_id: str, course_id: str) -> EnrollmentSummary | None:
        stmt = select(EnrollmentRow).where(
            EnrollmentRow.student_id == student_id,
            EnrollmentRow.course_id == course_id,
        )
        row = (await self._session.execute(stmt)).scalar_one_or_none()
        if row is None:
            return None
        return _row_to_summary(row)

    async def add(self, summary: EnrollmentSummary) -> bool:
        stmt = (
            insert(EnrollmentRow)
            .values(version=1, **_summary_values(summary))
            .on_conflict_do_nothing(index_elements=["student_id", "course_id"])
        )
        result = await self._session.execute(stmt)
        return result.rowcount == 1

    async def list_by_student(self, student_id: str) -> list[EnrollmentSummary]:
        stmt = select(EnrollmentRow).where(EnrollmentRow.student_id == student_id)
        rows = (await self._session.execute(stmt)).scalars().all()
        return [_row_to_summary(r) for r in rows]

    async def list_by_course(self, course_id: str) -> list[EnrollmentSummary]:
        stmt = select(EnrollmentRow).where(EnrollmentRow.course_id == course_id)
        rows = (await self._session.execute(stmt)).scalars().all()
        return [_row_to_summary(r) for r in rows]

    async def compare_and_set(
        self, summary: EnrollmentSummary, expected_version: int
    ) -> bool:
        stmt = (
            update(EnrollmentRow)
            .where(
                EnrollmentRow.student_id == summary.student_id,
                EnrollmentRow.course_id == summary.course_id,
                EnrollmentRow.version == expected_version,
            )
            .values(version=expected_version + 1, **_summary_values(summary))
            .execution_options(synchronize_session=False)
        )
        result = await self._session.execute(stmt)
        return result.rowcount == 1


def _summary_values(summary: EnrollmentSummary) -> dict:
    return {
        "student_id": summary.student_id,
        "course_id": summary.course_id,
        "enrollment_date": summary.enrollment_date,
        "status": summary.status.value,
        "completed_lesson_ids": sorted(summary.completed_lesson_ids),
        "total_progress_percent": summary.total_progress_percent,
        "time_spent_minutes": summary.time_spent_minutes,
        "last_activity_at": summary.last_activity_at,
        "total_points": summary.total_points,
        "awarded_event_ids": sorted(summary.awarded_event_ids),
        "completed_at": summary.completed_at,
    }


def _row_to_summary(row: EnrollmentRow) -> EnrollmentSummary:
    return EnrollmentSummary(
        student_id=row.student_id,
        course_id=row.course_id,
        enrollment_date=row.enrollment_date,
        status=EnrollmentStatus(row.status),
        completed_lesson_ids=frozenset(row.completed_lesson_ids or ()),
        total_progress_percent=row.total_progress_percent,
        time_spent_minutes=row.time_spent_minutes,
        last_activity_at=row.last_activity_at,
        total_points=row.total_points,
        awarded_event_ids=frozenset(row.awarded_event_ids or ()),
        completed_at=row.completed_at,
        version=row.version,
    )
