from __future__ import annotations

from collections.abc import Mapping
from datetime import datetime, timezone
from enum import Enum
from typing import Literal, TypeVar

from pydantic import BaseModel, Field, field_validator, model_validator

from evaluator.base import GradingSpec, grading_spec_from_fields


def _ensure_utc(value: datetime) -> datetime:
    if value.tzinfo is None or value.tzinfo.utcoffset(value) is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


TBaseSchema = TypeVar("TBaseSchema", bound="BaseSchema")


class BaseSchema(BaseModel):
    def to_json(self) -> str:
        return self.model_dump_json()

    def to_dict(self) -> dict[str, object]:
        return self.model_dump()

    @classmethod
    def from_json(cls: type[TBaseSchema], data: str) -> TBaseSchema:
        return cls.model_validate_json(data)

    @classmethod
    def from_dict(cls: type[TBaseSchema], data: Mapping[str, object]) -> TBaseSchema:
        return cls.model_validate(data)


Difficulty = Literal["beginner", "intermediate", "advanced"]


class ProgressStatus(str, Enum):
    NOT_STARTED = "not_started"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"


class Lesson(BaseSchema):
    id: int | None = None
    title: str = Field(min_length=1, max_length=255)
    description: str | None = None
    instructions: str | None = None
    template_code: str | None = None
    expected_output: str | None = None
    test_cases: dict[str, object] | None = None
    order_index: int = Field(gt=0)
    difficulty: Difficulty | None = None

    @field_validator("title")
    @classmethod
    def title_not_blank(cls, value: str) -> str:
        if not value.strip():
            raise ValueError("title must not be blank")
        return value

    @property
    def grading_spec(self) -> GradingSpec:
        return grading_spec_from_fields(self.expected_output, self.test_cases)


class ProgressState(BaseSchema):
    """Where one user stands on one lesson."""

    user_id: int
    lesson_id: int
    status: ProgressStatus = ProgressStatus.NOT_STARTED
    attempts: int = Field(default=0, ge=0)
    last_code: str | None = None
    completed_at: datetime | None = None

    @field_validator("completed_at")
    @classmethod
    def completed_at_utc(cls, value: datetime | None) -> datetime | None:
        return _ensure_utc(value) if value is not None else None

    @model_validator(mode="after")
    def completion_has_timestamp(self) -> "ProgressState":
        if self.status is ProgressStatus.COMPLETED and self.completed_at is None:
            raise ValueError("completed progress requires completed_at")
        return self

    @property
    def completed(self) -> bool:
        return self.status is ProgressStatus.COMPLETED


class ProgressUpdate(BaseSchema):
    """Outcome of one atomic store write: the status before and the row after."""

    previous_status: ProgressStatus
    state: ProgressState

    @property
    def newly_completed(self) -> bool:
        return self.state.completed and self.previous_status is not ProgressStatus.COMPLETED


class LessonAvailability(BaseSchema):
    lesson_id: int
    title: str
    order_index: int
    difficulty: Difficulty | None = None
    state: Literal["completed", "available", "locked"]
    status: ProgressStatus = ProgressStatus.NOT_STARTED
    attempts: int = 0


class UserStats(BaseSchema):
    user_id: int
    total_lessons: int
    completed_lessons: int
    in_progress_lessons: int
    not_started_lessons: int
    completion_percentage: float
    total_attempts: int
    average_attempts_per_lesson: float

    @classmethod
    def from_progress(
        cls,
        user_id: int,
        total_lessons: int,
        rows: list[ProgressState],
    ) -> "UserStats":
        completed = sum(1 for row in rows if row.status is ProgressStatus.COMPLETED)
        in_progress = sum(1 for row in rows if row.status is ProgressStatus.IN_PROGRESS)
        total_attempts = sum(row.attempts for row in rows)
        attempted = sum(1 for row in rows if row.attempts > 0)
        return cls(
            user_id=user_id,
            total_lessons=total_lessons,
            completed_lessons=completed,
            in_progress_lessons=in_progress,
            not_started_lessons=max(0, total_lessons - completed - in_progress),
            completion_percentage=_percentage(completed, total_lessons),
            total_attempts=total_attempts,
            average_attempts_per_lesson=round(total_attempts / attempted, 1) if attempted else 0.0,
        )


def _percentage(part: int, whole: int) -> float:
    return round(part / whole * 100, 1) if whole > 0 else 0.0


class LessonStats(BaseSchema):
    lesson_id: int
    total_users: int
    completed_count: int
    in_progress_count: int
    completion_rate: float
    total_attempts: int
    average_attempts: float


class LessonCompletionSummary(BaseSchema):
    lesson_id: int
    lesson_title: str
    order_index: int
    completed_count: int
    in_progress_count: int
    total_attempts: int


class GlobalStats(BaseSchema):
    total_lessons: int
    total_users: int
    lesson_completion_stats: list[LessonCompletionSummary] = Field(default_factory=list)
    overall_completion_rate: float
    updated_at: datetime = Field(default_factory=utc_now)


# Events carry identifiers and titles only, never submitted source.


class LessonCompletedEvent(BaseSchema):
    event: Literal["lesson_completed"] = "lesson_completed"
    user_id: int
    lesson_id: int
    lesson_title: str
    attempts: int
    completed_at: datetime
    timestamp: datetime = Field(default_factory=utc_now)


class LessonUnlockedEvent(BaseSchema):
    event: Literal["lesson_unlocked"] = "lesson_unlocked"
    user_id: int
    lesson_id: int
    lesson_title: str
    order_index: int
    timestamp: datetime = Field(default_factory=utc_now)


class StatsUpdatedEvent(BaseSchema):
    event: Literal["stats_updated"] = "stats_updated"
    global_stats: GlobalStats | None = None
    lesson_stats: LessonStats | None = None
    timestamp: datetime = Field(default_factory=utc_now)


ProgressEvent = LessonCompletedEvent | LessonUnlockedEvent | StatsUpdatedEvent
