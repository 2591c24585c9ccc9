"""
SQLite-backed lesson and progress repositories.
"""

from __future__ import annotations

import json
import sqlite3
from datetime import datetime
from typing import cast

from progress_core.schemas import (
    GlobalStats,
    Lesson,
    LessonCompletionSummary,
    LessonStats,
    ProgressState,
    ProgressStatus,
    ProgressUpdate,
    UserStats,
    utc_now,
)

from .database import connect, initialize_database, transaction


def _require_int(value: object, field: str) -> int:
    if isinstance(value, bool):
        raise ValueError(f"{field} must be an int")
    if isinstance(value, int):
        return value
    if isinstance(value, float):
        return int(value)
    if isinstance(value, str):
        return int(value)
    if value is None:
        raise ValueError(f"{field} is required")
    raise ValueError(f"{field} must be an int")


def _optional_str(value: object) -> str | None:
    if value is None:
        return None
    if isinstance(value, str):
        return value
    return str(value)


def _optional_datetime(value: object) -> datetime | None:
    if value is None:
        return None
    if isinstance(value, datetime):
        return value
    return datetime.fromisoformat(str(value))


def _optional_mapping(value: object) -> dict[str, object] | None:
    if value is None:
        return None
    loaded = cast(object, json.loads(str(value)))
    if not isinstance(loaded, dict):
        raise TypeError("test_cases must decode to a mapping")
    return cast(dict[str, object], loaded)


def _percentage(part: int, whole: int) -> float:
    return round(part / whole * 100, 1) if whole > 0 else 0.0


def lesson_from_row(row: sqlite3.Row) -> Lesson:
    row_dict = cast(dict[str, object], dict(row))
    return Lesson.from_dict(
        {
            "id": row_dict["id"],
            "title": row_dict["title"],
            "description": row_dict.get("description"),
            "instructions": row_dict.get("instructions"),
            "template_code": row_dict.get("template_code"),
            "expected_output": row_dict.get("expected_output"),
            "test_cases": _optional_mapping(row_dict.get("test_cases_json")),
            "order_index": row_dict["order_index"],
            "difficulty": row_dict.get("difficulty"),
        }
    )


def progress_from_row(row: sqlite3.Row) -> ProgressState:
    row_dict = cast(dict[str, object], dict(row))
    return ProgressState(
        user_id=_require_int(row_dict["user_id"], "user_id"),
        lesson_id=_require_int(row_dict["lesson_id"], "lesson_id"),
        status=ProgressStatus(str(row_dict["status"])),
        attempts=_require_int(row_dict["attempts"], "attempts"),
        last_code=_optional_str(row_dict.get("last_code")),
        completed_at=_optional_datetime(row_dict.get("completed_at")),
    )


class LessonRepository:
    def __init__(self, db_path: str) -> None:
        self.db_path: str = db_path
        initialize_database(self.db_path)

    def save_lesson(self, lesson: Lesson) -> Lesson:
        """Insert ``lesson``, or overwrite the lesson holding the same order_index."""
        test_cases_json = json.dumps(lesson.test_cases) if lesson.test_cases is not None else None
        with transaction(self.db_path) as connection:
            _ = connection.execute(
                """
                INSERT INTO lessons (
                    title, description, instructions, template_code,
                    expected_output, test_cases_json, order_index, difficulty
                )
                VALUES (?, ?, ?, ?, ?, ?, ?, ?)
                ON CONFLICT(order_index) DO UPDATE SET
                    title = excluded.title,
                    description = excluded.description,
                    instructions = excluded.instructions,
                    template_code = excluded.template_code,
                    expected_output = excluded.expected_output,
                    test_cases_json = excluded.test_cases_json,
                    difficulty = excluded.difficulty
                """,
                (
                    lesson.title,
                    lesson.description,
                    lesson.instructions,
                    lesson.template_code,
                    lesson.expected_output,
                    test_cases_json,
                    lesson.order_index,
                    lesson.difficulty,
                ),
            )
            row = cast(
                sqlite3.Row,
                connection.execute(
                    "SELECT * FROM lessons WHERE order_index = ?", (lesson.order_index,)
                ).fetchone(),
            )
        return lesson_from_row(row)

    def get_lesson(self, lesson_id: int) -> Lesson | None:
        with connect(self.db_path) as connection:
            row = cast(
                sqlite3.Row | None,
                connection.execute("SELECT * FROM lessons WHERE id = ?", (lesson_id,)).fetchone(),
            )
        return lesson_from_row(row) if row is not None else None

    def get_lesson_by_order(self, order_index: int) -> Lesson | None:
        with connect(self.db_path) as connection:
            row = cast(
                sqlite3.Row | None,
                connection.execute(
                    "SELECT * FROM lessons WHERE order_index = ?", (order_index,)
                ).fetchone(),
            )
        return lesson_from_row(row) if row is not None else None

    def list_lessons(self) -> list[Lesson]:
        with connect(self.db_path) as connection:
            rows = connection.execute("SELECT * FROM lessons ORDER BY order_index").fetchall()
        return [lesson_from_row(cast(sqlite3.Row, row)) for row in rows]

    def count_lessons(self) -> int:
        with connect(self.db_path) as connection:
            row = cast(sqlite3.Row, connection.execute("SELECT COUNT(*) FROM lessons").fetchone())
        return _require_int(cast(object, row[0]), "count")


class ProgressRepository:
    """
    Per-user lesson progress with atomic upserts and aggregate statistics.

    Every write is one ``BEGIN IMMEDIATE`` transaction keyed by the
    ``UNIQUE(user_id, lesson_id)`` constraint, so concurrent submissions
    for the same pair are applied one after the other and none is lost.
    A completed row never leaves ``completed``; later writes only replace
    ``last_code``.
    """

    def __init__(self, db_path: str) -> None:
        self.db_path: str = db_path
        initialize_database(self.db_path)

    def get_progress(self, user_id: int, lesson_id: int) -> ProgressState | None:
        with connect(self.db_path) as connection:
            row = cast(
                sqlite3.Row | None,
                connection.execute(
                    "SELECT * FROM user_progress WHERE user_id = ? AND lesson_id = ?",
                    (user_id, lesson_id),
                ).fetchone(),
            )
        return progress_from_row(row) if row is not None else None

    def list_progress(self, user_id: int) -> list[ProgressState]:
        with connect(self.db_path) as connection:
            rows = connection.execute(
                """
                SELECT p.*
                FROM user_progress p
                JOIN lessons l ON l.id = p.lesson_id
                WHERE p.user_id = ?
                ORDER BY l.order_index
                """,
                (user_id,),
            ).fetchall()
        return [progress_from_row(cast(sqlite3.Row, row)) for row in rows]

    def upsert_attempt(self, user_id: int, lesson_id: int, code: str) -> ProgressUpdate:
        return self._upsert(
            user_id,
            lesson_id,
            """
            INSERT INTO user_progress (user_id, lesson_id, status, attempts, last_code)
            VALUES (?, ?, 'in_progress', 1, ?)
            ON CONFLICT(user_id, lesson_id) DO UPDATE SET
                last_code = excluded.last_code,
                attempts = CASE WHEN status = 'completed' THEN attempts ELSE attempts + 1 END,
                status = CASE WHEN status = 'completed' THEN status ELSE 'in_progress' END,
                updated_at = CURRENT_TIMESTAMP
            """,
            (user_id, lesson_id, code),
        )

    def upsert_completion(self, user_id: int, lesson_id: int, code: str) -> ProgressUpdate:
        completed_at = utc_now().isoformat()
        return self._upsert(
            user_id,
            lesson_id,
            """
            INSERT INTO user_progress (user_id, lesson_id, status, attempts, last_code, completed_at)
            VALUES (?, ?, 'completed', 1, ?, ?)
            ON CONFLICT(user_id, lesson_id) DO UPDATE SET
                last_code = excluded.last_code,
                attempts = CASE WHEN status = 'completed' THEN attempts ELSE attempts + 1 END,
                completed_at = CASE
                    WHEN status = 'completed' THEN completed_at ELSE excluded.completed_at
                END,
                status = 'completed',
                updated_at = CURRENT_TIMESTAMP
            """,
            (user_id, lesson_id, code, completed_at),
        )

    def _upsert(
        self,
        user_id: int,
        lesson_id: int,
        statement: str,
        params: tuple[object, ...],
    ) -> ProgressUpdate:
        with transaction(self.db_path) as connection:
            previous = cast(
                sqlite3.Row | None,
                connection.execute(
                    "SELECT status FROM user_progress WHERE user_id = ? AND lesson_id = ?",
                    (user_id, lesson_id),
                ).fetchone(),
            )
            previous_status = (
                ProgressStatus(str(previous["status"]))
                if previous is not None
                else ProgressStatus.NOT_STARTED
            )
            _ = connection.execute(statement, params)
            row = cast(
                sqlite3.Row,
                connection.execute(
                    "SELECT * FROM user_progress WHERE user_id = ? AND lesson_id = ?",
                    (user_id, lesson_id),
                ).fetchone(),
            )
        return ProgressUpdate(previous_status=previous_status, state=progress_from_row(row))

    def user_stats(self, user_id: int) -> UserStats:
        return UserStats.from_progress(
            user_id,
            total_lessons=self._count("SELECT COUNT(*) FROM lessons"),
            rows=self.list_progress(user_id),
        )

    def lesson_stats(self, lesson_id: int) -> LessonStats:
        total_users = self._count("SELECT COUNT(DISTINCT user_id) FROM user_progress")
        with connect(self.db_path) as connection:
            row = cast(
                sqlite3.Row,
                connection.execute(
                    """
                    SELECT
                        COUNT(CASE WHEN status = 'completed' THEN 1 END) AS completed_count,
                        COUNT(CASE WHEN status = 'in_progress' THEN 1 END) AS in_progress_count,
                        COALESCE(SUM(attempts), 0) AS total_attempts
                    FROM user_progress
                    WHERE lesson_id = ?
                    """,
                    (lesson_id,),
                ).fetchone(),
            )
        completed = _require_int(cast(object, row["completed_count"]), "completed_count")
        total_attempts = _require_int(cast(object, row["total_attempts"]), "total_attempts")
        return LessonStats(
            lesson_id=lesson_id,
            total_users=total_users,
            completed_count=completed,
            in_progress_count=_require_int(cast(object, row["in_progress_count"]), "in_progress_count"),
            completion_rate=_percentage(completed, total_users),
            total_attempts=total_attempts,
            average_attempts=round(total_attempts / completed, 1) if completed else 0.0,
        )

    def global_stats(self) -> GlobalStats:
        total_lessons = self._count("SELECT COUNT(*) FROM lessons")
        total_users = self._count("SELECT COUNT(DISTINCT user_id) FROM user_progress")
        completions = self._count("SELECT COUNT(*) FROM user_progress WHERE status = 'completed'")
        with connect(self.db_path) as connection:
            rows = connection.execute(
                """
                SELECT
                    l.id AS lesson_id,
                    l.title AS lesson_title,
                    l.order_index AS order_index,
                    COUNT(CASE WHEN p.status = 'completed' THEN 1 END) AS completed_count,
                    COUNT(CASE WHEN p.status = 'in_progress' THEN 1 END) AS in_progress_count,
                    COALESCE(SUM(p.attempts), 0) AS total_attempts
                FROM user_progress p
                JOIN lessons l ON l.id = p.lesson_id
                GROUP BY l.id, l.title, l.order_index
                ORDER BY l.order_index
                """
            ).fetchall()
        summaries = [
            LessonCompletionSummary.from_dict(dict(cast(sqlite3.Row, row))) for row in rows
        ]
        return GlobalStats(
            total_lessons=total_lessons,
            total_users=total_users,
            lesson_completion_stats=summaries,
            overall_completion_rate=_percentage(completions, total_lessons * total_users),
        )

    def _count(self, query: str) -> int:
        with connect(self.db_path) as connection:
            row = cast(sqlite3.Row, connection.execute(query).fetchone())
        return _require_int(cast(object, row[0]), "count")
