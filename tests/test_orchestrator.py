import gc
import logging
import random
import threading
from pathlib import Path
from unittest.mock import patch

import pytest

from evaluator.feedback import FeedbackTemplates
from evaluator.solution import SolutionEvaluator
from progress_core.events import (
    GLOBAL_PROGRESS_TOPIC,
    PROGRESS_STATS_TOPIC,
    InMemoryEventSink,
    user_progress_topic,
)
from progress_core.orchestrator import (
    LessonAccessDeniedError,
    LessonNotFoundError,
    ProgressError,
    ProgressOrchestrator,
)
from progress_core.schemas import (
    Lesson,
    LessonCompletedEvent,
    LessonUnlockedEvent,
    ProgressState,
    ProgressStatus,
    ProgressUpdate,
    StatsUpdatedEvent,
)
from sandbox.execution import ExecutionOptions
from sandbox.executor import ExecutionResult, failed_result
from sandbox.taxonomy import ErrorCategory, make_error
from store.repository import LessonRepository, ProgressRepository

PASS_FIRST = 'print("Hello, World!")  # marker-7f3a'
FAIL_FIRST = 'print("Hello")'
PASS_SECOND = "2 + 2"
ANYTHING = "x = 1"
DANGEROUS = "import os"


class FakeRunner:
    """Canned sandbox results keyed by source; records every call."""

    def __init__(self) -> None:
        self.calls: list[str] = []
        self._lock = threading.Lock()
        self.results: dict[str, ExecutionResult] = {
            PASS_FIRST: ExecutionResult(value=None, output="Hello, World!\n", error=None, elapsed_ms=2),
            FAIL_FIRST: ExecutionResult(value=None, output="Hello\n", error=None, elapsed_ms=2),
            PASS_SECOND: ExecutionResult(value=4, output="", error=None, elapsed_ms=1),
            ANYTHING: ExecutionResult(value=None, output="", error=None, elapsed_ms=1),
            DANGEROUS: failed_result(make_error(ErrorCategory.DANGEROUS_CODE, "filesystem operations"), 0),
        }

    def __call__(self, code: str, options: ExecutionOptions | None = None) -> ExecutionResult:
        with self._lock:
            self.calls.append(code)
        return self.results[code]


class Harness:
    def __init__(self, tmp_path: Path, with_stats: bool = True) -> None:
        db_path = str(tmp_path / "engine.db")
        self.lessons = LessonRepository(db_path)
        self.progress = ProgressRepository(db_path)
        self.first = self.lessons.save_lesson(
            Lesson(title="Hello", order_index=1, expected_output="Hello, World!", difficulty="beginner")
        )
        self.second = self.lessons.save_lesson(
            Lesson(title="Arithmetic", order_index=2, test_cases={"expected_result": 4})
        )
        self.third = self.lessons.save_lesson(
            Lesson(title="Free form", order_index=3, difficulty="advanced")
        )
        self.events = InMemoryEventSink()
        self.runner = FakeRunner()
        self.orchestrator = ProgressOrchestrator(
            lessons=self.lessons,
            progress=self.progress,
            events=self.events,
            runner=self.runner,
            evaluator=SolutionEvaluator(FeedbackTemplates(random.Random(0))),
            stats=self.progress if with_stats else None,
        )

    def id_of(self, lesson: Lesson) -> int:
        assert lesson.id is not None
        return lesson.id


@pytest.fixture
def harness(tmp_path: Path) -> Harness:
    return Harness(tmp_path)


class TestSubmitSolution:
    def test_passing_submission_completes_and_unlocks(self, harness: Harness) -> None:
        result = harness.orchestrator.submit_solution(1, harness.id_of(harness.first), PASS_FIRST)

        assert result.passed is True
        assert result.newly_completed is True
        assert result.progress is not None
        assert result.progress.status is ProgressStatus.COMPLETED
        assert result.progress.attempts == 1
        assert result.progress.last_code == PASS_FIRST
        assert result.unlocked_lesson == harness.second

        user_events = harness.events.for_topic(user_progress_topic(1))
        assert [type(event) for event in user_events] == [LessonCompletedEvent, LessonUnlockedEvent]
        assert user_events[1].lesson_id == harness.id_of(harness.second)
        assert [type(event) for event in harness.events.for_topic(GLOBAL_PROGRESS_TOPIC)] == [
            LessonCompletedEvent
        ]
        stats_events = harness.events.for_topic(PROGRESS_STATS_TOPIC)
        assert len(stats_events) == 1
        assert isinstance(stats_events[0], StatsUpdatedEvent)
        assert stats_events[0].lesson_stats is not None
        assert stats_events[0].lesson_stats.completed_count == 1

    def test_failing_then_passing_counts_attempts(self, harness: Harness) -> None:
        lesson_id = harness.id_of(harness.first)
        failed = harness.orchestrator.submit_solution(1, lesson_id, FAIL_FIRST)
        assert failed.passed is False
        assert failed.progress is not None
        assert failed.progress.status is ProgressStatus.IN_PROGRESS
        assert failed.progress.attempts == 1
        assert "Expected: Hello, World!" in failed.verdict.feedback
        assert harness.events.events == []

        passed = harness.orchestrator.submit_solution(1, lesson_id, PASS_FIRST)
        assert passed.progress is not None
        assert passed.progress.attempts == 2
        assert passed.progress.status is ProgressStatus.COMPLETED

    def test_locked_lesson_is_denied_before_execution(self, harness: Harness) -> None:
        with pytest.raises(LessonAccessDeniedError):
            harness.orchestrator.submit_solution(1, harness.id_of(harness.second), PASS_SECOND)
        assert harness.runner.calls == []
        assert harness.progress.get_progress(1, harness.id_of(harness.second)) is None
        assert harness.events.events == []

    def test_unknown_lesson_is_not_found(self, harness: Harness) -> None:
        with pytest.raises(LessonNotFoundError):
            harness.orchestrator.submit_solution(1, 999, ANYTHING)
        assert harness.runner.calls == []

    def test_gate_rejection_records_nothing(self, harness: Harness) -> None:
        lesson_id = harness.id_of(harness.first)
        result = harness.orchestrator.submit_solution(1, lesson_id, DANGEROUS)
        assert result.rejected is True
        assert result.passed is False
        assert result.progress is None
        assert result.verdict.error is not None
        assert result.verdict.error.category is ErrorCategory.DANGEROUS_CODE
        assert harness.progress.get_progress(1, lesson_id) is None
        assert harness.events.events == []

    def test_resubmitting_completed_lesson_only_updates_code(self, harness: Harness) -> None:
        lesson_id = harness.id_of(harness.first)
        harness.orchestrator.submit_solution(1, lesson_id, PASS_FIRST)
        published = len(harness.events.events)

        again = harness.orchestrator.submit_solution(1, lesson_id, FAIL_FIRST)
        assert again.passed is False
        assert again.newly_completed is False
        assert again.progress is not None
        assert again.progress.status is ProgressStatus.COMPLETED
        assert again.progress.attempts == 1
        assert again.progress.last_code == FAIL_FIRST

        repeat = harness.orchestrator.submit_solution(1, lesson_id, PASS_FIRST)
        assert repeat.newly_completed is False
        assert len(harness.events.events) == published

    def test_events_never_carry_source(self, harness: Harness) -> None:
        harness.orchestrator.submit_solution(1, harness.id_of(harness.first), PASS_FIRST)
        assert harness.events.events
        for published in harness.events.events:
            assert "marker-7f3a" not in published.event.to_json()

    def test_last_lesson_unlocks_nothing(self, harness: Harness) -> None:
        harness.orchestrator.submit_solution(1, harness.id_of(harness.first), PASS_FIRST)
        harness.orchestrator.submit_solution(1, harness.id_of(harness.second), PASS_SECOND)
        harness.events.clear()

        result = harness.orchestrator.submit_solution(1, harness.id_of(harness.third), ANYTHING)
        assert result.passed is True
        assert result.unlocked_lesson is None
        assert result.verdict.feedback.endswith("This was a challenging lesson!")
        user_events = harness.events.for_topic(user_progress_topic(1))
        assert [type(event) for event in user_events] == [LessonCompletedEvent]

    def test_double_submit_completes_once(self, harness: Harness) -> None:
        lesson_id = harness.id_of(harness.first)
        barrier = threading.Barrier(2)

        def submit() -> None:
            barrier.wait()
            harness.orchestrator.submit_solution(1, lesson_id, PASS_FIRST)

        threads = [threading.Thread(target=submit) for _ in range(2)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        state = harness.progress.get_progress(1, lesson_id)
        assert state is not None
        assert state.status is ProgressStatus.COMPLETED
        assert state.attempts == 1
        completions = [
            event
            for event in harness.events.for_topic(GLOBAL_PROGRESS_TOPIC)
            if isinstance(event, LessonCompletedEvent)
        ]
        assert len(completions) == 1

    def test_users_progress_independently(self, harness: Harness) -> None:
        lesson_id = harness.id_of(harness.first)
        threads = [
            threading.Thread(target=harness.orchestrator.submit_solution, args=(user_id, lesson_id, PASS_FIRST))
            for user_id in range(1, 6)
        ]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        for user_id in range(1, 6):
            state = harness.progress.get_progress(user_id, lesson_id)
            assert state is not None
            assert state.completed is True
        assert len(harness.events.for_topic(GLOBAL_PROGRESS_TOPIC)) == 5

    def test_failing_sink_does_not_undo_progress(self, tmp_path: Path, caplog: pytest.LogCaptureFixture) -> None:
        harness = Harness(tmp_path)

        class BrokenSink:
            def publish(self, topic, event):
                raise RuntimeError("bus down")

        harness.orchestrator.events = BrokenSink()
        with caplog.at_level(logging.ERROR, logger="progress_core.orchestrator"):
            result = harness.orchestrator.submit_solution(1, harness.id_of(harness.first), PASS_FIRST)
        assert result.newly_completed is True
        state = harness.progress.get_progress(1, harness.id_of(harness.first))
        assert state is not None and state.completed
        assert any("bus down" in record.message for record in caplog.records)


class TestLessonQueries:
    def test_access_follows_order(self, harness: Harness) -> None:
        assert harness.orchestrator.can_access_lesson(1, harness.id_of(harness.first)) is True
        assert harness.orchestrator.can_access_lesson(1, harness.id_of(harness.second)) is False
        harness.orchestrator.submit_solution(1, harness.id_of(harness.first), PASS_FIRST)
        assert harness.orchestrator.can_access_lesson(1, harness.id_of(harness.second)) is True
        assert harness.orchestrator.can_access_lesson(1, harness.id_of(harness.third)) is False
        with pytest.raises(LessonNotFoundError):
            harness.orchestrator.can_access_lesson(1, 999)

    def test_available_lessons(self, harness: Harness) -> None:
        states = [entry.state for entry in harness.orchestrator.get_available_lessons(1)]
        assert states == ["available", "locked", "locked"]

        harness.orchestrator.submit_solution(1, harness.id_of(harness.first), FAIL_FIRST)
        harness.orchestrator.submit_solution(1, harness.id_of(harness.first), PASS_FIRST)
        entries = harness.orchestrator.get_available_lessons(1)
        assert [entry.state for entry in entries] == ["completed", "available", "locked"]
        assert entries[0].attempts == 2
        assert entries[0].status is ProgressStatus.COMPLETED

    def test_next_lesson(self, harness: Harness) -> None:
        assert harness.orchestrator.get_next_lesson(1) == harness.first
        harness.orchestrator.submit_solution(1, harness.id_of(harness.first), PASS_FIRST)
        assert harness.orchestrator.get_next_lesson(1) == harness.second
        harness.orchestrator.submit_solution(1, harness.id_of(harness.second), PASS_SECOND)
        harness.orchestrator.submit_solution(1, harness.id_of(harness.third), ANYTHING)
        assert harness.orchestrator.get_next_lesson(1) is None

    def test_check_solution_does_not_persist(self, harness: Harness) -> None:
        verdict = harness.orchestrator.check_solution(harness.id_of(harness.second), PASS_SECOND)
        assert verdict.passed is True
        assert harness.progress.list_progress(1) == []
        assert harness.events.events == []

    def test_user_statistics_without_stats_source(self, tmp_path: Path) -> None:
        harness = Harness(tmp_path, with_stats=False)
        harness.orchestrator.submit_solution(1, harness.id_of(harness.first), PASS_FIRST)
        stats = harness.orchestrator.user_statistics(1)
        assert stats.completed_lessons == 1
        assert stats.total_lessons == 3
        assert stats.completion_percentage == 33.3
        assert harness.events.for_topic(PROGRESS_STATS_TOPIC) == []


def test_end_to_end_with_real_sandbox(tmp_path: Path) -> None:
    db_path = str(tmp_path / "e2e.db")
    lessons = LessonRepository(db_path)
    progress = ProgressRepository(db_path)
    lesson = lessons.save_lesson(Lesson(title="Hello", order_index=1, expected_output="Hello, World!"))
    assert lesson.id is not None
    orchestrator = ProgressOrchestrator(lessons=lessons, progress=progress)

    rejected = orchestrator.submit_solution(1, lesson.id, "import os\nprint('Hello, World!')")
    assert rejected.rejected is True
    assert progress.get_progress(1, lesson.id) is None

    failing = orchestrator.submit_solution(1, lesson.id, "print('Hello')")
    assert failing.passed is False

    passing = orchestrator.submit_solution(1, lesson.id, "print('Hello, World!')")
    assert passing.passed is True
    assert passing.progress is not None
    assert passing.progress.attempts == 2


def test_user_locks_are_dropped_when_idle(harness: Harness) -> None:
    for user_id in range(1, 4):
        harness.orchestrator.submit_solution(user_id, harness.id_of(harness.first), FAIL_FIRST)
    gc.collect()
    assert len(harness.orchestrator._user_locks) == 0


def test_completion_without_timestamp_is_an_error(harness: Harness) -> None:
    lesson_id = harness.id_of(harness.first)
    broken = ProgressUpdate.model_construct(
        previous_status=ProgressStatus.IN_PROGRESS,
        state=ProgressState.model_construct(
            user_id=1,
            lesson_id=lesson_id,
            status=ProgressStatus.COMPLETED,
            attempts=1,
            last_code=PASS_FIRST,
            completed_at=None,
        ),
    )
    with patch.object(harness.progress, "upsert_completion", return_value=broken):
        with pytest.raises(ProgressError, match="no completion time"):
            harness.orchestrator.submit_solution(1, lesson_id, PASS_FIRST)
    assert harness.events.events == []
