"""
Submission workflow: access check, sandbox run, grading, progress write, events.
"""

from __future__ import annotations

import logging
import threading
import weakref
from collections.abc import Callable
from dataclasses import dataclass

from evaluator.base import Verdict
from evaluator.solution import SolutionEvaluator
from sandbox.execution import ExecutionOptions, execute
from sandbox.executor import ExecutionResult
from sandbox.taxonomy import ErrorCategory

from .events import GLOBAL_PROGRESS_TOPIC, PROGRESS_STATS_TOPIC, user_progress_topic
from .interfaces import EventSink, LessonStore, ProgressStore, StatsSource
from .schemas import (
    Lesson,
    LessonAvailability,
    LessonCompletedEvent,
    LessonUnlockedEvent,
    ProgressEvent,
    ProgressState,
    ProgressStatus,
    ProgressUpdate,
    StatsUpdatedEvent,
    UserStats,
)

logger = logging.getLogger(__name__)

Runner = Callable[[str, ExecutionOptions | None], ExecutionResult]


class ProgressError(Exception):
    """Base class for submission workflow errors."""


class LessonNotFoundError(ProgressError):
    def __init__(self, lesson_id: int) -> None:
        super().__init__(f"Lesson not found: {lesson_id}")
        self.lesson_id = lesson_id


class LessonAccessDeniedError(ProgressError):
    def __init__(self, user_id: int, lesson_id: int) -> None:
        super().__init__(
            f"User {user_id} cannot access lesson {lesson_id}: complete the previous lesson first"
        )
        self.user_id = user_id
        self.lesson_id = lesson_id


@dataclass(frozen=True)
class SubmissionResult:
    lesson: Lesson
    verdict: Verdict
    execution: ExecutionResult
    progress: ProgressState | None = None
    newly_completed: bool = False
    unlocked_lesson: Lesson | None = None

    @property
    def passed(self) -> bool:
        return self.verdict.passed

    @property
    def rejected(self) -> bool:
        """Refused by the safety policy; nothing was recorded."""
        return _is_policy_refusal(self.execution)


def _is_policy_refusal(result: ExecutionResult) -> bool:
    return result.error is not None and result.error.category is ErrorCategory.DANGEROUS_CODE


class ProgressOrchestrator:
    """
    Runs learner submissions against lessons and records progress.

    Lessons form a chain by ``order_index``: the first lesson is always
    open, every later one opens once its predecessor is completed.
    Submissions of one user are processed one at a time, in arrival order.
    """

    def __init__(
        self,
        lessons: LessonStore,
        progress: ProgressStore,
        events: EventSink | None = None,
        runner: Runner = execute,
        evaluator: SolutionEvaluator | None = None,
        stats: StatsSource | None = None,
        options: ExecutionOptions | None = None,
    ) -> None:
        self.lessons = lessons
        self.progress = progress
        self.events = events
        self.runner = runner
        self.evaluator = evaluator or SolutionEvaluator()
        self.stats = stats
        self.options = options
        # entries disappear once no submission of that user holds the lock
        self._user_locks: weakref.WeakValueDictionary[int, threading.Lock] = weakref.WeakValueDictionary()
        self._locks_guard = threading.Lock()

    def submit_solution(self, user_id: int, lesson_id: int, code: str) -> SubmissionResult:
        """Grade ``code`` for ``lesson_id`` and record the outcome for ``user_id``.

        Raises:
            LessonNotFoundError: If the lesson does not exist
            LessonAccessDeniedError: If the previous lesson is not completed
        """
        with self._lock_for(user_id):
            lesson = self._require_lesson(lesson_id)
            if not self._is_reachable(user_id, lesson):
                logger.info(f"User {user_id} denied access to lesson {lesson_id}")
                raise LessonAccessDeniedError(user_id, lesson_id)

            result = self.runner(code, self.options)
            verdict = self.evaluator.evaluate(lesson.grading_spec, result, lesson.difficulty)

            if _is_policy_refusal(result):
                return SubmissionResult(lesson=lesson, verdict=verdict, execution=result)

            if verdict.passed:
                update = self.progress.upsert_completion(user_id, lesson_id, code)
            else:
                update = self.progress.upsert_attempt(user_id, lesson_id, code)

            unlocked: Lesson | None = None
            if update.newly_completed:
                unlocked = self._announce_completion(user_id, lesson, update)

            return SubmissionResult(
                lesson=lesson,
                verdict=verdict,
                execution=result,
                progress=update.state,
                newly_completed=update.newly_completed,
                unlocked_lesson=unlocked,
            )

    def check_solution(self, lesson_id: int, code: str) -> Verdict:
        """Grade ``code`` without access checks or persistence."""
        lesson = self._require_lesson(lesson_id)
        result = self.runner(code, self.options)
        return self.evaluator.evaluate(lesson.grading_spec, result, lesson.difficulty)

    def can_access_lesson(self, user_id: int, lesson_id: int) -> bool:
        return self._is_reachable(user_id, self._require_lesson(lesson_id))

    def get_available_lessons(self, user_id: int) -> list[LessonAvailability]:
        lessons = sorted(self.lessons.list_lessons(), key=lambda lesson: lesson.order_index)
        states = {state.lesson_id: state for state in self.progress.list_progress(user_id)}
        completed_orders = {
            lesson.order_index
            for lesson in lessons
            if lesson.id in states and states[lesson.id].completed
        }

        availability: list[LessonAvailability] = []
        for lesson in lessons:
            state = states.get(lesson.id) if lesson.id is not None else None
            if lesson.order_index in completed_orders:
                label = "completed"
            elif lesson.order_index == 1 or (lesson.order_index - 1) in completed_orders:
                label = "available"
            else:
                label = "locked"
            availability.append(
                LessonAvailability(
                    lesson_id=_lesson_id(lesson),
                    title=lesson.title,
                    order_index=lesson.order_index,
                    difficulty=lesson.difficulty,
                    state=label,
                    status=state.status if state else ProgressStatus.NOT_STARTED,
                    attempts=state.attempts if state else 0,
                )
            )
        return availability

    def get_next_lesson(self, user_id: int) -> Lesson | None:
        """First reachable lesson the user has not completed yet."""
        available = {
            entry.lesson_id
            for entry in self.get_available_lessons(user_id)
            if entry.state == "available"
        }
        for lesson in sorted(self.lessons.list_lessons(), key=lambda lesson: lesson.order_index):
            if lesson.id in available:
                return lesson
        return None

    def user_statistics(self, user_id: int) -> UserStats:
        if self.stats is not None:
            return self.stats.user_stats(user_id)
        return UserStats.from_progress(
            user_id,
            total_lessons=len(self.lessons.list_lessons()),
            rows=self.progress.list_progress(user_id),
        )

    def _require_lesson(self, lesson_id: int) -> Lesson:
        lesson = self.lessons.get_lesson(lesson_id)
        if lesson is None:
            raise LessonNotFoundError(lesson_id)
        return lesson

    def _is_reachable(self, user_id: int, lesson: Lesson) -> bool:
        if lesson.order_index == 1:
            return True
        previous = self.lessons.get_lesson_by_order(lesson.order_index - 1)
        if previous is None or previous.id is None:
            return False
        state = self.progress.get_progress(user_id, previous.id)
        return state is not None and state.completed

    def _lock_for(self, user_id: int) -> threading.Lock:
        with self._locks_guard:
            lock = self._user_locks.get(user_id)
            if lock is None:
                lock = self._user_locks[user_id] = threading.Lock()
            return lock

    def _announce_completion(
        self,
        user_id: int,
        lesson: Lesson,
        update: ProgressUpdate,
    ) -> Lesson | None:
        state = update.state
        if state.completed_at is None:
            raise ProgressError(f"Completed progress for lesson {state.lesson_id} has no completion time")
        logger.info(
            f"User {user_id} completed lesson {state.lesson_id} ({lesson.title}) "
            f"after {state.attempts} attempt(s)"
        )
        completed = LessonCompletedEvent(
            user_id=user_id,
            lesson_id=state.lesson_id,
            lesson_title=lesson.title,
            attempts=state.attempts,
            completed_at=state.completed_at,
        )
        self._publish(user_progress_topic(user_id), completed)
        self._publish(GLOBAL_PROGRESS_TOPIC, completed)

        unlocked = self.lessons.get_lesson_by_order(lesson.order_index + 1)
        if unlocked is not None:
            logger.info(f"User {user_id} unlocked lesson {unlocked.id} ({unlocked.title})")
            self._publish(
                user_progress_topic(user_id),
                LessonUnlockedEvent(
                    user_id=user_id,
                    lesson_id=_lesson_id(unlocked),
                    lesson_title=unlocked.title,
                    order_index=unlocked.order_index,
                ),
            )

        if self.stats is not None:
            self._publish(
                PROGRESS_STATS_TOPIC,
                StatsUpdatedEvent(
                    global_stats=self.stats.global_stats(),
                    lesson_stats=self.stats.lesson_stats(state.lesson_id),
                ),
            )
        return unlocked

    def _publish(self, topic: str, event: ProgressEvent) -> None:
        if self.events is None:
            return
        try:
            self.events.publish(topic, event)
        except Exception as exc:  # noqa: BLE001 - progress is already committed
            logger.error(f"Failed to publish {event.event} to {topic}: {exc}")


def _lesson_id(lesson: Lesson) -> int:
    if lesson.id is None:
        raise ValueError(f"Lesson '{lesson.title}' has no id")
    return lesson.id
