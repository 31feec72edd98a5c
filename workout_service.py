from __future__ import annotations
import datetime
import logging
from typing import Optional

from app_state import AppState
from db import SettingsRepository
from events import DayPositionChanged, EventBus, WorkoutCompleted
from local_store import LocalStore
from models import (
    CompletedDayRecord,
    Day,
    Exercise,
    MuscleGroup,
    Split,
    WorkoutSet,
    as_utc,
    utcnow,
)
from profile_service import ProfileService
from scheduler import refresh_day_position

_LOGGER = logging.getLogger(__name__)

SET_FIELDS = {
    "weight",
    "reps",
    "failure",
    "warm_up",
    "rest_pause",
    "drop_set",
    "time",
    "note",
    "body_weight",
}


class WorkoutService:
    """Split editing, live workout sessions and workout history."""

    def __init__(
        self,
        store: LocalStore,
        state: AppState,
        settings_repo: Optional[SettingsRepository] = None,
        events: Optional[EventBus] = None,
        profiles: Optional[ProfileService] = None,
        sync=None,
    ) -> None:
        self.store = store
        self.state = state
        self.settings_repo = settings_repo
        self.events = events or EventBus()
        self.profiles = profiles or ProfileService(store, self.events)
        self.sync = sync

    def _save_state(self) -> None:
        if self.settings_repo is not None:
            self.state.save(self.settings_repo)

    # -- splits ------------------------------------------------------------

    def create_split(
        self,
        name: str,
        number_of_days: int,
        start_date: Optional[datetime.datetime] = None,
        activate: bool = True,
    ) -> Split:
        if not name or not name.strip():
            raise ValueError("split name must not be empty")
        if number_of_days < 1:
            raise ValueError("a split needs at least one day")
        split = Split(
            name=name.strip(),
            start_date=as_utc(start_date) or utcnow(),
            days=[Day(name=f"Day {i}", day_of_split=i) for i in range(1, number_of_days + 1)],
        )
        self.store.insert(split)
        if activate:
            self.activate_split(split)
        else:
            self.store.save()
        return split

    def activate_split(self, split: Split) -> None:
        """Make ``split`` the active one, starting again at its first day."""
        was_active = split.is_active
        self.store.activate_split(split)
        if not was_active:
            self.state.day_in_split = 1
            self.state.last_update = datetime.datetime.now()
            self._save_state()

    def duplicate_split(self, split: Split, name: Optional[str] = None) -> Split:
        copy = split.clone()
        copy.name = name or f"{split.name} copy"
        copy.is_active = False
        self.store.insert(copy)
        self.store.save()
        return copy

    def delete_split(self, split: Split) -> None:
        self.store.delete(split)
        self.store.save()

    def add_day(self, split: Split, name: str = "", is_rest_day: bool = False) -> Day:
        position = max((d.day_of_split for d in split.days), default=0) + 1
        day = Day(name=name or f"Day {position}", day_of_split=position, is_rest_day=is_rest_day)
        self.store.insert(day, split)
        self.store.flush()
        return day

    def set_rest_day(self, day: Day, is_rest_day: bool) -> None:
        self.store.update(day, is_rest_day=is_rest_day)
        self.store.flush()

    # -- exercises and sets -----------------------------------------------

    def add_exercise(
        self,
        day: Day,
        name: str,
        muscle_group: str = MuscleGroup.CHEST.value,
        rep_goal: str = "",
        sets: int = 0,
    ) -> Exercise:
        if not name or not name.strip():
            raise ValueError("exercise name must not be empty")
        order = max((e.exercise_order for e in day.exercises), default=0) + 1
        exercise = Exercise(
            name=name.strip(),
            rep_goal=rep_goal,
            muscle_group=MuscleGroup.parse(muscle_group).value,
            exercise_order=order,
            sets=[WorkoutSet() for _ in range(sets)],
        )
        self.store.insert(exercise, day)
        self.store.flush()
        return exercise

    def delete_exercise(self, exercise: Exercise) -> None:
        self.store.delete(exercise)
        self.store.flush()

    def mark_exercise_done(
        self, exercise: Exercise, done: bool = True, now: Optional[datetime.datetime] = None
    ) -> None:
        completed_at = (now or utcnow()) if done else None
        self.store.update(exercise, done=done, completed_at=completed_at)
        self.store.flush()

    def _set_changes(self, changes: dict, unit: Optional[str]) -> dict:
        unknown = set(changes) - SET_FIELDS
        if unknown:
            raise ValueError(f"unknown set fields: {', '.join(sorted(unknown))}")
        changes = dict(changes)
        if "weight" in changes:
            changes["weight"] = self.profiles.to_canonical(changes["weight"], unit)
            if changes["weight"] < 0:
                raise ValueError("weight must be non-negative")
        if changes.get("reps", 0) < 0:
            raise ValueError("reps must be non-negative")
        return changes

    def add_set(self, exercise: Exercise, unit: Optional[str] = None, **values) -> WorkoutSet:
        workout_set = WorkoutSet(**self._set_changes(values, unit))
        self.store.insert(workout_set, exercise)
        self.store.flush()
        return workout_set

    def update_set(self, workout_set: WorkoutSet, unit: Optional[str] = None, **changes) -> bool:
        """Edit a set; weight is given in ``unit`` or the profile's unit."""
        changed = self.store.update(workout_set, **self._set_changes(changes, unit))
        self.store.flush()
        return changed

    def delete_set(self, workout_set: WorkoutSet) -> None:
        self.store.delete(workout_set)
        self.store.flush()

    def copy_workout(self, source: Day, target: Day) -> None:
        """Replace ``target``'s exercises with fresh copies of ``source``'s."""
        for exercise in list(target.exercises):
            self.store.delete(exercise)
        for exercise in source.ordered_exercises():
            self.store.insert(exercise.clone(), target)
        self.store.flush()

    # -- sessions ----------------------------------------------------------

    def begin_workout(self) -> None:
        """Start batching set edits until ``end_workout``."""
        self.store.begin_session()
        if self.sync is not None:
            self.sync.set_interactive_session(True)

    def end_workout(self, day: Day, now: Optional[datetime.datetime] = None) -> CompletedDayRecord:
        """Persist the session's edits and record ``day`` as completed."""
        try:
            self.store.end_session()
            return self.complete_workout(day, now)
        finally:
            if self.sync is not None:
                self.sync.set_interactive_session(False)

    def complete_workout(
        self, day: Day, now: Optional[datetime.datetime] = None
    ) -> CompletedDayRecord:
        """Snapshot the finished exercises of ``day`` into history."""
        now = now or datetime.datetime.now()
        snapshot = Day(
            name=day.name,
            day_of_split=day.day_of_split,
            exercises=[e.clone() for e in day.ordered_exercises() if e.done],
            is_rest_day=day.is_rest_day,
        )
        date = now.date().isoformat()
        record = self.store.record_completion(date, snapshot)
        _LOGGER.info("Recorded %s with %d exercises for %s", day.name, len(snapshot.exercises), date)
        self.profiles.record_workout(now)
        self.events.publish(WorkoutCompleted(date, record.id))
        return record

    def history(self, date: datetime.date | str) -> Optional[CompletedDayRecord]:
        if isinstance(date, datetime.date):
            date = date.isoformat()
        return self.store.completed_for_date(date)

    # -- scheduling --------------------------------------------------------

    def today(self, now: Optional[datetime.datetime] = None) -> Optional[Day]:
        """Roll the split position forward to ``now`` and return the due day."""
        now = now or datetime.datetime.now()
        split = self.store.active_split()
        result = refresh_day_position(
            self.state.day_in_split,
            self.state.last_update,
            now,
            len(split.days) if split else None,
        )
        if result.last_update != self.state.last_update or result.position != self.state.day_in_split:
            old = self.state.day_in_split
            self.state.day_in_split = result.position
            self.state.last_update = result.last_update
            self._save_state()
            if result.changed:
                _LOGGER.info("Split day moved from %d to %d", old, result.position)
                self.events.publish(DayPositionChanged(old, result.position))
        if split is None:
            return None
        return split.day_at(self.state.day_in_split)

    def select_day(self, day: Day, now: Optional[datetime.datetime] = None) -> None:
        """Make ``day`` today's position in the active split."""
        old = self.state.day_in_split
        self.state.day_in_split = day.day_of_split
        self.state.last_update = now or datetime.datetime.now()
        self._save_state()
        if old != day.day_of_split:
            self.events.publish(DayPositionChanged(old, day.day_of_split))
