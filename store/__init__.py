"""
Store Module

Lesson and progress storage layer.

This module provides:
- SQLite-backed storage for lessons and per-user progress
- Atomic progress upserts (one transaction per submission)
- Non-regressing completion state
- User, lesson and global progress statistics
"""

__version__ = "0.1.0"

from .repository import LessonRepository, ProgressRepository

__all__ = ["LessonRepository", "ProgressRepository"]
