"""On-device entity graph with atomic, batched persistence.

All mutations land in memory first and become visible to the next read
immediately. ``save()`` writes every pending insert, update and delete in a
single SQLite transaction; if it fails the pending set is kept so the same
save can be retried.
"""

from __future__ import annotations
import datetime
import logging
import sqlite3
from typing import Iterable, Optional

from db import (
    CompletedDayRepository,
    DayRepository,
    ExerciseRepository,
    ProfileRepository,
    SetRepository,
    SplitRepository,
    TombstoneRepository,
    WeightPointRepository,
)
from models import (
    CompletedDayRecord,
    Day,
    Exercise,
    Profile,
    Split,
    WeightPoint,
    WorkoutSet,
    TIMESTAMP_FIELDS,
    as_utc,
    utcnow,
    walk,
)

_LOGGER = logging.getLogger(__name__)

_PROTECTED_FIELDS = {"id", "days", "exercises", "sets", "day", "updated_at", "dirty"}


def _normalize_timestamps(entity) -> None:
    for name in TIMESTAMP_FIELDS:
        value = getattr(entity, name, None)
        if isinstance(value, datetime.datetime):
            setattr(entity, name, as_utc(value))


class StoreError(Exception):
    """Raised when the local store is used inconsistently."""


class PersistenceError(Exception):
    """Raised when pending changes could not be written to disk."""


class LocalStore:
    """Authoritative local copy of splits, history, weight points and profile."""

    def __init__(self, db_path: str = "liftsync.db") -> None:
        self.db_path = db_path
        self.splits_repo = SplitRepository(db_path)
        self.days_repo = DayRepository(db_path)
        self.exercises_repo = ExerciseRepository(db_path)
        self.sets_repo = SetRepository(db_path)
        self.completed_repo = CompletedDayRepository(db_path)
        self.weights_repo = WeightPointRepository(db_path)
        self.profile_repo = ProfileRepository(db_path)
        self.tombstones_repo = TombstoneRepository(db_path)
        self._splits: dict[str, Split] = {}
        self._completed: dict[str, CompletedDayRecord] = {}
        self._weight_points: dict[str, WeightPoint] = {}
        self._profile: Optional[Profile] = None
        self._index: dict[str, object] = {}
        self._parents: dict[str, Optional[str]] = {}
        self._pending_upserts: dict[str, object] = {}
        self._pending_deletes: dict[str, object] = {}
        self._pending_tombstones: dict[str, str] = {}
        self._session_active = False
        self._load()

    # -- loading -----------------------------------------------------------

    def _load(self) -> None:
        for split in self.splits_repo.fetch_all_splits():
            self._splits[split.id] = split
            self._register(split, None)

        standalone: dict[str, Day] = {}
        days: dict[str, Day] = {}
        for split_id, day in self.days_repo.fetch_all_days():
            days[day.id] = day
            if split_id is None:
                standalone[day.id] = day
                continue
            split = self._splits.get(split_id)
            if split is None:
                _LOGGER.warning("Skipping day %s of unknown split %s", day.id, split_id)
                continue
            split.days.append(day)
            self._register(day, split_id)

        exercises: dict[str, Exercise] = {}
        for day_id, exercise in self.exercises_repo.fetch_all_exercises():
            day = days.get(day_id)
            if day is None:
                _LOGGER.warning("Skipping exercise %s of unknown day %s", exercise.id, day_id)
                continue
            day.exercises.append(exercise)
            exercises[exercise.id] = exercise
            self._register(exercise, day_id)

        for exercise_id, workout_set in self.sets_repo.fetch_all_sets():
            exercise = exercises.get(exercise_id)
            if exercise is None:
                _LOGGER.warning("Skipping set %s of unknown exercise %s", workout_set.id, exercise_id)
                continue
            exercise.sets.append(workout_set)
            self._register(workout_set, exercise_id)

        for record_id, date, day_id, updated_at, dirty in self.completed_repo.fetch_all_records():
            day = standalone.pop(day_id, None)
            if day is None:
                _LOGGER.warning("Skipping history record %s without snapshot %s", record_id, day_id)
                continue
            record = CompletedDayRecord(
                date=date, day=day, id=record_id, updated_at=updated_at, dirty=dirty
            )
            self._completed[date] = record
            self._register(record, None)
            self._register(day, record_id)

        for point in self.weights_repo.fetch_history():
            self._weight_points[point.id] = point
            self._register(point, None)

        profile = self.profile_repo.fetch_profile()
        if profile is not None:
            self._profile = profile
            self._register(profile, None)

    def _register(self, entity, parent_id: Optional[str]) -> None:
        self._index[entity.id] = entity
        self._parents[entity.id] = parent_id

    def _register_tree(self, entity, parent_id: Optional[str]) -> None:
        self._register(entity, parent_id)
        for child in entity.children():
            self._register_tree(child, entity.id)

    # -- queries -----------------------------------------------------------

    def get(self, entity_id: str):
        return self._index.get(entity_id)

    def require(self, entity_id: str):
        entity = self._index.get(entity_id)
        if entity is None:
            raise StoreError(f"unknown entity {entity_id}")
        return entity

    def contains(self, entity) -> bool:
        return self._index.get(entity.id) is entity

    def parent_id(self, entity_id: str) -> Optional[str]:
        return self._parents.get(entity_id)

    def parent_of(self, entity):
        parent_id = self._parents.get(entity.id)
        return self._index.get(parent_id) if parent_id else None

    def owning_record(self, entity) -> Optional[CompletedDayRecord]:
        """The history record whose snapshot contains ``entity``, if any."""
        current = self.parent_of(entity)
        while current is not None:
            if isinstance(current, CompletedDayRecord):
                return current
            current = self.parent_of(current)
        return None

    def splits(self) -> list[Split]:
        return sorted(self._splits.values(), key=lambda s: (s.start_date, s.id))

    def active_split(self) -> Optional[Split]:
        for split in self.splits():
            if split.is_active:
                return split
        return None

    def completed_for_date(self, date: str) -> Optional[CompletedDayRecord]:
        return self._completed.get(date)

    def completed_records(self) -> list[CompletedDayRecord]:
        return [self._completed[d] for d in sorted(self._completed)]

    def weight_points(self) -> list[WeightPoint]:
        return sorted(self._weight_points.values(), key=lambda p: p.date)

    def profile(self) -> Profile:
        """Return the profile, creating an unsaved default one if needed."""
        if self._profile is None:
            self.insert(Profile())
        return self._profile

    def has_profile(self) -> bool:
        return self._profile is not None

    def all_entities(self) -> list:
        """Every stored entity, parents before children."""
        result: list = []
        if self._profile is not None:
            result.append(self._profile)
        for split in self.splits():
            result.extend(walk(split))
        for record in self.completed_records():
            result.extend(walk(record))
        result.extend(self.weight_points())
        return result

    def has_pending_edits(self, entity) -> bool:
        """Whether ``entity`` or anything it owns carries unsynced changes."""
        return any(e.dirty for e in walk(entity))

    def dirty_entities(self) -> list:
        """Entities waiting to be pushed, parents first.

        History records travel with their snapshot, so a record is listed
        once when it or anything in its snapshot is dirty.
        """
        result: list = []
        if self._profile is not None and self._profile.dirty:
            result.append(self._profile)
        for split in self.splits():
            result.extend(e for e in walk(split) if e.dirty)
        for record in self.completed_records():
            if self.has_pending_edits(record):
                result.append(record)
        result.extend(p for p in self.weight_points() if p.dirty)
        return result

    def pending_remote_deletes(self, saved_only: bool = False) -> list[tuple[str, str]]:
        """Remote deletes still owed, as (kind, id) pairs.

        With ``saved_only`` deletes that exist only in memory are left out.
        """
        seen = {
            entity_id: kind
            for kind, entity_id in self.tombstones_repo.fetch_all_tombstones()
        }
        if not saved_only:
            seen.update(self._pending_tombstones)
        return [(kind, entity_id) for entity_id, kind in seen.items()]

    def is_unsaved(self, entity) -> bool:
        """Whether ``entity`` has changes not yet written to disk."""
        targets = walk(entity) if isinstance(entity, CompletedDayRecord) else [entity]
        return any(item.id in self._pending_upserts for item in targets)

    # -- sessions ----------------------------------------------------------

    @property
    def in_session(self) -> bool:
        return self._session_active

    @property
    def has_pending_changes(self) -> bool:
        return bool(self._pending_upserts or self._pending_deletes or self._pending_tombstones)

    def begin_session(self) -> None:
        """Start batching: edits stay in memory until ``end_session``."""
        self._session_active = True

    def end_session(self) -> None:
        self._session_active = False
        self.save()

    def flush(self) -> None:
        """Save now unless a session is batching edits."""
        if not self._session_active:
            self.save()

    # -- mutations ---------------------------------------------------------

    def insert(self, entity, parent=None, *, from_remote: bool = False) -> None:
        for item in walk(entity):
            if item.id in self._index:
                raise StoreError(f"identifier {item.id} is already in use")

        parent_id = None
        if isinstance(entity, Split):
            self._splits[entity.id] = entity
        elif isinstance(entity, Day):
            parent_id = self._attach(entity, parent, Split, "days")
        elif isinstance(entity, Exercise):
            parent_id = self._attach(entity, parent, Day, "exercises")
        elif isinstance(entity, WorkoutSet):
            parent_id = self._attach(entity, parent, Exercise, "sets")
        elif isinstance(entity, CompletedDayRecord):
            if entity.date in self._completed:
                raise StoreError(f"a history record already exists for {entity.date}")
            self._completed[entity.date] = entity
        elif isinstance(entity, WeightPoint):
            self._weight_points[entity.id] = entity
        elif isinstance(entity, Profile):
            if self._profile is not None:
                raise StoreError("profile already exists")
            self._profile = entity
        else:
            raise StoreError(f"unsupported entity type {type(entity).__name__}")

        self._register_tree(entity, parent_id)
        for item in walk(entity):
            _normalize_timestamps(item)
            if not from_remote:
                item.dirty = True
            self._pending_deletes.pop(item.id, None)
            self._pending_tombstones.pop(item.id, None)
            self._pending_upserts[item.id] = item

    def _attach(self, entity, parent, parent_type, attr: str) -> str:
        if not isinstance(parent, parent_type) or not self.contains(parent):
            raise StoreError(
                f"{type(entity).__name__} needs a stored {parent_type.__name__} parent"
            )
        collection = getattr(parent, attr)
        if not any(item is entity for item in collection):
            collection.append(entity)
        return parent.id

    def _detach(self, entity) -> None:
        if isinstance(entity, Split):
            self._splits.pop(entity.id, None)
            return
        if isinstance(entity, CompletedDayRecord):
            if self._completed.get(entity.date) is entity:
                del self._completed[entity.date]
            return
        if isinstance(entity, WeightPoint):
            self._weight_points.pop(entity.id, None)
            return
        if isinstance(entity, Profile):
            self._profile = None
            return
        parent = self.parent_of(entity)
        if isinstance(parent, CompletedDayRecord):
            raise StoreError("a history snapshot can only be removed with its record")
        if parent is not None:
            attr = {Day: "days", Exercise: "exercises", WorkoutSet: "sets"}[type(entity)]
            collection = getattr(parent, attr)
            collection[:] = [item for item in collection if item is not entity]
            self._pending_upserts[parent.id] = parent

    def update(self, entity, **changes) -> bool:
        """Apply scalar changes, stamp the modification time and mark dirty."""
        if not self.contains(entity):
            raise StoreError(f"{type(entity).__name__} {entity.id} is not in the store")
        changed = False
        for key, value in changes.items():
            if key in _PROTECTED_FIELDS or not hasattr(entity, key):
                raise StoreError(f"cannot update field {key!r}")
            value = as_utc(value)
            if getattr(entity, key) != value:
                setattr(entity, key, value)
                changed = True
        if changed:
            entity.updated_at = utcnow()
            entity.dirty = True
            self._pending_upserts[entity.id] = entity
        return changed

    def apply_remote(self, entity, values: dict, updated_at: datetime.datetime) -> None:
        """Overwrite scalar fields with a newer remote copy; the result is clean."""
        for key, value in values.items():
            if key in _PROTECTED_FIELDS or not hasattr(entity, key):
                continue
            setattr(entity, key, value)
        entity.updated_at = updated_at
        entity.dirty = False
        self._pending_upserts[entity.id] = entity

    def mark_dirty(self, entity) -> bool:
        if entity.dirty:
            return False
        entity.dirty = True
        self._pending_upserts[entity.id] = entity
        return True

    def move(self, entity, new_parent) -> None:
        """Re-home a day, exercise or set under another parent of the right type."""
        parent_type, attr = {
            Day: (Split, "days"),
            Exercise: (Day, "exercises"),
            WorkoutSet: (Exercise, "sets"),
        }[type(entity)]
        if not isinstance(new_parent, parent_type) or not self.contains(new_parent):
            raise StoreError(f"cannot move {entity.id} under {getattr(new_parent, 'id', None)}")
        self._detach(entity)
        getattr(new_parent, attr).append(entity)
        self._parents[entity.id] = new_parent.id
        self._pending_upserts[entity.id] = entity

    def delete(self, entity, *, from_remote: bool = False) -> list[str]:
        """Remove ``entity`` and everything it owns; returns the removed ids."""
        if not self.contains(entity):
            raise StoreError(f"{type(entity).__name__} {entity.id} is not in the store")
        self._detach(entity)
        removed = []
        for item in walk(entity):
            self._index.pop(item.id, None)
            self._parents.pop(item.id, None)
            self._pending_upserts.pop(item.id, None)
            self._pending_deletes[item.id] = item
            removed.append(item.id)
        if not from_remote and not isinstance(entity, Profile):
            if isinstance(entity, CompletedDayRecord):
                self._pending_tombstones[entity.id] = entity.KIND
            else:
                for item in walk(entity):
                    self._pending_tombstones[item.id] = item.KIND
        return removed

    def queue_remote_delete(self, kind: str, entity_id: str) -> None:
        self._pending_tombstones[entity_id] = kind

    def clear_remote_deletes(self, entity_ids: Iterable[str]) -> None:
        ids = list(entity_ids)
        for entity_id in ids:
            self._pending_tombstones.pop(entity_id, None)
        self.tombstones_repo.clear(ids)

    def mark_synced(self, pushed: Iterable[tuple[str, datetime.datetime]]) -> int:
        """Clear dirty markers for records pushed at the given version.

        A record edited after it was read for the push keeps its marker.
        """
        cleared = 0
        for entity_id, version in pushed:
            entity = self._index.get(entity_id)
            if entity is None or entity.updated_at != version:
                continue
            targets = walk(entity) if isinstance(entity, CompletedDayRecord) else [entity]
            for target in targets:
                if target.dirty:
                    target.dirty = False
                    self._pending_upserts[target.id] = target
                    cleared += 1
        self.flush()
        return cleared

    # -- invariants --------------------------------------------------------

    def activate_split(self, split: Split) -> None:
        """Make ``split`` the only active split, persisted in one transaction."""
        if not self.contains(split):
            raise StoreError(f"split {split.id} is not in the store")
        for other in self._splits.values():
            if other is not split and other.is_active:
                self.update(other, is_active=False)
        if not split.is_active:
            self.update(split, is_active=True)
        self.save()

    def put_completion(self, record: CompletedDayRecord, *, from_remote: bool = False) -> None:
        """Insert ``record``, first retiring any record for the same date."""
        existing = self._completed.get(record.date)
        if existing is not None:
            _LOGGER.info("Replacing history record for %s", record.date)
            self.delete(existing, from_remote=from_remote)
        self.insert(record, from_remote=from_remote)

    def record_completion(self, date: str, day: Day) -> CompletedDayRecord:
        """Store ``day`` as the one history entry for ``date``."""
        day.date = date
        record = CompletedDayRecord(date=date, day=day)
        self.put_completion(record)
        self.save()
        return record

    # -- persistence -------------------------------------------------------

    def save(self) -> None:
        if not self.has_pending_changes:
            return
        try:
            with self.splits_repo.transaction() as conn:
                for entity in self._pending_deletes.values():
                    self._delete_row(conn, entity)
                for entity in self._pending_upserts.values():
                    self._write_row(conn, entity)
                for entity_id, kind in self._pending_tombstones.items():
                    self.tombstones_repo.add(conn, kind, entity_id)
        except sqlite3.Error as e:
            _LOGGER.error("Saving local changes failed: %s", e)
            raise PersistenceError(str(e)) from e
        _LOGGER.debug(
            "Saved %d upserts, %d deletes, %d tombstones",
            len(self._pending_upserts),
            len(self._pending_deletes),
            len(self._pending_tombstones),
        )
        self._pending_upserts.clear()
        self._pending_deletes.clear()
        self._pending_tombstones.clear()

    def _position(self, parent, attr: str, entity) -> int:
        for i, item in enumerate(getattr(parent, attr)):
            if item is entity:
                return i
        return 0

    def _write_row(self, conn: sqlite3.Connection, entity) -> None:
        if isinstance(entity, Split):
            self.splits_repo.upsert(conn, entity)
        elif isinstance(entity, Day):
            parent = self.parent_of(entity)
            if isinstance(parent, Split):
                self.days_repo.upsert(
                    conn, entity, parent.id, self._position(parent, "days", entity)
                )
            else:
                self.days_repo.upsert(conn, entity, None, 0)
        elif isinstance(entity, Exercise):
            parent = self.parent_of(entity)
            self.exercises_repo.upsert(
                conn, entity, parent.id, self._position(parent, "exercises", entity)
            )
        elif isinstance(entity, WorkoutSet):
            parent = self.parent_of(entity)
            self.sets_repo.upsert(
                conn, entity, parent.id, self._position(parent, "sets", entity)
            )
        elif isinstance(entity, CompletedDayRecord):
            self.completed_repo.upsert(conn, entity)
        elif isinstance(entity, WeightPoint):
            self.weights_repo.upsert(conn, entity)
        elif isinstance(entity, Profile):
            self.profile_repo.upsert(conn, entity)

    def _delete_row(self, conn: sqlite3.Connection, entity) -> None:
        repo = {
            Split: self.splits_repo,
            Day: self.days_repo,
            Exercise: self.exercises_repo,
            WorkoutSet: self.sets_repo,
            CompletedDayRecord: self.completed_repo,
            WeightPoint: self.weights_repo,
            Profile: self.profile_repo,
        }[type(entity)]
        repo.delete(conn, entity.id)
