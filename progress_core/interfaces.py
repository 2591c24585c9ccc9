"""Collaborator interfaces the orchestrator is written against."""

from __future__ import annotations

from typing import Protocol

from .schemas import (
    GlobalStats,
    Lesson,
    LessonStats,
    ProgressEvent,
    ProgressState,
    ProgressUpdate,
    UserStats,
)


class LessonStore(Protocol):
    def get_lesson(self, lesson_id: int) -> Lesson | None: ...

    def get_lesson_by_order(self, order_index: int) -> Lesson | None: ...

    def list_lessons(self) -> list[Lesson]: ...


class ProgressStore(Protocol):
    """Progress rows keyed by (user_id, lesson_id).

    Both upserts are single atomic read-modify-write operations. On a row
    that is already completed they only replace ``last_code``.
    """

    def get_progress(self, user_id: int, lesson_id: int) -> ProgressState | None: ...

    def list_progress(self, user_id: int) -> list[ProgressState]: ...

    def upsert_attempt(self, user_id: int, lesson_id: int, code: str) -> ProgressUpdate: ...

    def upsert_completion(self, user_id: int, lesson_id: int, code: str) -> ProgressUpdate: ...


class EventSink(Protocol):
    def publish(self, topic: str, event: ProgressEvent) -> None: ...


class StatsSource(Protocol):
    def global_stats(self) -> GlobalStats: ...

    def lesson_stats(self, lesson_id: int) -> LessonStats: ...

    def user_stats(self, user_id: int) -> UserStats: ...
