from __future__ import annotations
import datetime
import logging
from collections import defaultdict
from dataclasses import dataclass
from typing import Any, Callable, Optional

_LOGGER = logging.getLogger(__name__)


@dataclass(frozen=True)
class SyncStatusChanged:
    state: str
    message: Optional[str] = None
    error: Optional[str] = None


@dataclass(frozen=True)
class DataMerged:
    inserted: int
    updated: int
    deleted: int


@dataclass(frozen=True)
class DayPositionChanged:
    old_position: int
    new_position: int


@dataclass(frozen=True)
class WorkoutCompleted:
    date: str
    record_id: str


@dataclass(frozen=True)
class StreakUpdated:
    current: int
    longest: int
    last_workout_date: Optional[datetime.date]


class EventBus:
    """Typed publish/subscribe channel between the core and its presenters."""

    def __init__(self) -> None:
        self._subscribers: dict[type, list[Callable[[Any], None]]] = defaultdict(list)

    def subscribe(self, event_type: type, callback: Callable[[Any], None]) -> Callable[[], None]:
        """Register ``callback`` and return a function that removes it."""
        self._subscribers[event_type].append(callback)

        def unsubscribe() -> None:
            if callback in self._subscribers[event_type]:
                self._subscribers[event_type].remove(callback)

        return unsubscribe

    def publish(self, event: Any) -> None:
        for callback in list(self._subscribers[type(event)]):
            try:
                callback(event)
            except Exception:
                _LOGGER.exception("Event subscriber failed for %s", type(event).__name__)
