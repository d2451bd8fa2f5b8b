from __future__ import annotations

from dataclasses import dataclass


@dataclass(frozen=True, slots=True)
class ModuleInfo:
    id: str
    title: str
    position: int
    lesson_ids: tuple[str, ...] = ()


@dataclass(frozen=True, slots=True)
class CourseInfo:
    """Catalog view of a course, as far as the engine cares.

    ``total_lessons`` comes from the catalog and may be stale relative to
    ``modules``; progress always divides by ``total_lessons``.
    """

    id: str
    title: str
    total_lessons: int
    duration_days: int | None = None
    modules: tuple[ModuleInfo, ...] = ()

    def has_lesson(self, lesson_id: str) -> bool:
        return any(lesson_id in m.lesson_ids for m in self.modules)


@dataclass(frozen=True, slots=True)
class LessonInfo:
    id: str
    course_id: str
    module_id: str | None = None
