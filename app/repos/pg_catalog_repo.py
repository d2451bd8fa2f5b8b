"""PostgreSQL implementation of CatalogRepo (read-only)."""

from __future__ import annotations

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.db.tables import CourseModuleRow, CourseRow, LessonRow
from app.models.course import CourseInfo, LessonInfo, ModuleInfo


class PgCatalogRepo:
    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def get_course(self, course_id: str) -> CourseInfo | None:
        course = (
            await self._session.execute(
                select(CourseRow).where(CourseRow.id == course_id)
            )
        ).scalar_one_or_none()
        if course is None:
            return None

        modules = (
            (
                await self._session.execute(
                    select(CourseModuleRow)
                    .where(CourseModuleRow.course_id == course_id)
                    .order_by(CourseModuleRow.position)
                )
            )
            .scalars()
            .all()
        )
        lessons = (
            (
                await self._session.execute(
                    select(LessonRow)
                    .where(LessonRow.course_id == course_id)
                    .order_by(LessonRow.position)
                )
            )
            .scalars()
            .all()
        )

        lessons_by_module: dict[str, list[str]] = {}
        for lesson in lessons:
            if lesson.module_id is not None:
                lessons_by_module.setdefault(lesson.module_id, []).append(lesson.id)

        return CourseInfo(
            id=course.id,
            title=course.title,
            total_lessons=course.total_lessons,
            duration_days=course.duration_days,
            modules=tuple(
                ModuleInfo(
                    id=m.id,
                    title=m.title,
                    position=m.position,
                    lesson_ids=tuple(lessons_by_module.get(m.id, ())),
                )
                for m in modules
            ),
        )

    async def get_lesson(self, lesson_id: str) -> LessonInfo | None:
        row = (
            await self._session.execute(
                select(LessonRow).where(LessonRow.id == lesson_id)
            )
        ).scalar_one_or_none()
        if row is None:
            return None
        return LessonInfo(id=row.id, course_id=row.course_id, module_id=row.module_id)
