"""
Progress event topics and simple sinks.
"""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass

from .schemas import ProgressEvent

logger = logging.getLogger(__name__)

GLOBAL_PROGRESS_TOPIC = "global_progress"
PROGRESS_STATS_TOPIC = "progress_stats"


def user_progress_topic(user_id: int) -> str:
    return f"user_progress:{user_id}"


@dataclass(frozen=True)
class PublishedEvent:
    topic: str
    event: ProgressEvent


class InMemoryEventSink:
    """Records every published event in order; thread-safe."""

    def __init__(self) -> None:
        self._events: list[PublishedEvent] = []
        self._lock = threading.Lock()

    def publish(self, topic: str, event: ProgressEvent) -> None:
        with self._lock:
            self._events.append(PublishedEvent(topic, event))

    @property
    def events(self) -> list[PublishedEvent]:
        with self._lock:
            return list(self._events)

    def for_topic(self, topic: str) -> list[ProgressEvent]:
        return [published.event for published in self.events if published.topic == topic]

    def clear(self) -> None:
        with self._lock:
            self._events.clear()


class LoggingEventSink:
    def publish(self, topic: str, event: ProgressEvent) -> None:
        logger.info(f"[{topic}] {event.event}: {event.to_json()}")
