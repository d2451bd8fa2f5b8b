from __future__ import annotations

from typing import Protocol

from app.models.course import CourseInfo, LessonInfo


class CatalogRepo(Protocol):
    async def get_course(self, course_id: str) -> CourseInfo | None: ...
    async def get_lesson(self, lesson_id: str) -> LessonInfo | None: ...


class InMemoryCatalogRepo:
    """Read-only catalog boundary backed by a dict.

    ``put`` exists for seeding and tests; catalog CRUD lives elsewhere.
    """

    def __init__(self) -> None:
        self._courses: dict[str, CourseInfo] = {}
        self._lessons: dict[str, LessonInfo] = {}

    def put(self, course: CourseInfo) -> None:
        self._courses[course.id] = course
        for module in course.modules:
            for lesson_id in module.lesson_ids:
                self._lessons[lesson_id] = LessonInfo(
                    id=lesson_id, course_id=course.id, module_id=module.id
                )

    def clear(self) -> None:
        self._courses.clear()
        self._lessons.clear()

    async def get_course(self, course_id: str) -> CourseInfo | None:
        return self._courses.get(course_id)

    async def get_lesson(self, lesson_id: str) -> LessonInfo | None:
        return self._lessons.get(lesson_id)
