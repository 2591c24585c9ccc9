"""Lesson catalogs: YAML files holding a list of lessons."""

from __future__ import annotations

import logging
from pathlib import Path
from typing import cast

import yaml
from pydantic import ValidationError

from progress_core.schemas import Lesson
from store.repository import LessonRepository

logger = logging.getLogger(__name__)


def load_catalog(yaml_path: str | Path) -> list[Lesson]:
    """Read and validate a lesson catalog.

    The file holds either a list of lessons or a mapping with a
    ``lessons`` key. Order indices must be unique.

    Raises:
        FileNotFoundError: If the catalog doesn't exist
        ValueError: If the YAML or any lesson is invalid
    """
    yaml_path = Path(yaml_path)
    if not yaml_path.exists():
        raise FileNotFoundError(f"Lesson catalog not found: {yaml_path}")

    with open(yaml_path, "r", encoding="utf-8") as f:
        try:
            data = cast(object, yaml.safe_load(f))
        except yaml.YAMLError as e:
            raise ValueError(f"Invalid YAML in {yaml_path}: {e}") from e

    if isinstance(data, dict):
        data = cast(dict[str, object], data).get("lessons")
    if not isinstance(data, list) or not data:
        raise ValueError(f"No lessons found in {yaml_path}")

    lessons: list[Lesson] = []
    for position, entry in enumerate(cast(list[object], data), start=1):
        if not isinstance(entry, dict):
            raise ValueError(f"Lesson #{position} in {yaml_path} is not a mapping")
        try:
            lessons.append(Lesson.from_dict(cast(dict[str, object], entry)))
        except ValidationError as e:
            raise ValueError(f"Invalid lesson #{position} in {yaml_path}: {e}") from e

    seen: set[int] = set()
    for lesson in lessons:
        if lesson.order_index in seen:
            raise ValueError(f"Duplicate order_index {lesson.order_index} in {yaml_path}")
        seen.add(lesson.order_index)
    return sorted(lessons, key=lambda lesson: lesson.order_index)


def import_catalog(yaml_path: str | Path, repository: LessonRepository) -> list[Lesson]:
    """Load a catalog and store every lesson, replacing lessons at the same order_index."""
    lessons = load_catalog(yaml_path)
    saved = [repository.save_lesson(lesson) for lesson in lessons]
    logger.info(f"Imported {len(saved)} lesson(s) from {yaml_path}")
    return saved
