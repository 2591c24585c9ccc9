"""
Progress Core Module

Lesson progression on top of the sandbox and the evaluator.

This module implements the submission workflow:
- Lesson and progress schemas (pydantic)
- Store, event sink and statistics interfaces
- Sequential lesson access (each lesson unlocks the next)
- Atomic progress transitions and completion/unlock events
"""

__version__ = "0.1.0"

from .orchestrator import (
    LessonAccessDeniedError,
    LessonNotFoundError,
    ProgressError,
    ProgressOrchestrator,
    SubmissionResult,
)
from .schemas import Lesson, LessonAvailability, ProgressState, ProgressStatus, ProgressUpdate

__all__ = [
    "Lesson",
    "LessonAccessDeniedError",
    "LessonAvailability",
    "LessonNotFoundError",
    "ProgressError",
    "ProgressOrchestrator",
    "ProgressState",
    "ProgressStatus",
    "ProgressUpdate",
    "SubmissionResult",
]
