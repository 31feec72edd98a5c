"""Split documents for sharing between devices and users.

A document is a camelCase JSON object describing one split with its days,
exercises and sets. Dates may be ISO-8601 strings or seconds since
2001-01-01 UTC, the reference date used by the mobile app's encoder.
Importing never reuses identifiers from the document.
"""

from __future__ import annotations
import asyncio
import datetime
import json
import logging
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from local_store import LocalStore
from models import Day, Exercise, MuscleGroup, Split, WorkoutSet, new_id, utcnow

_LOGGER = logging.getLogger(__name__)

REFERENCE_DATE = datetime.datetime(2001, 1, 1, tzinfo=datetime.timezone.utc)


class ImportValidationError(Exception):
    """A split document was rejected.

    ``kind`` is one of ``missing-field``, ``type-mismatch``,
    ``corrupt-payload`` or ``invalid-value``.
    """

    def __init__(self, kind: str, message: str) -> None:
        super().__init__(message)
        self.kind = kind


def parse_timestamp(value: Any) -> Any:
    """Turn ISO text or reference-date seconds into an aware datetime.

    Anything else is passed through so strict validation rejects it.
    """
    if isinstance(value, bool):
        return value
    if isinstance(value, datetime.datetime):
        if value.tzinfo is None:
            return value.replace(tzinfo=datetime.timezone.utc)
        return value
    if isinstance(value, (int, float)):
        try:
            return REFERENCE_DATE + datetime.timedelta(seconds=value)
        except (OverflowError, ValueError) as e:
            raise ValueError(f"timestamp {value!r} is out of range") from e
    if isinstance(value, str):
        text = value.strip()
        if text.endswith("Z"):
            text = text[:-1] + "+00:00"
        try:
            parsed = datetime.datetime.fromisoformat(text)
        except ValueError:
            return value
        if parsed.tzinfo is None:
            parsed = parsed.replace(tzinfo=datetime.timezone.utc)
        return parsed
    return value


class _Document(BaseModel):
    model_config = ConfigDict(strict=True, populate_by_name=True, extra="ignore")


class SetDocument(_Document):
    id: str = ""
    weight: float = Field(ge=0)
    reps: int = Field(ge=0)
    failure: bool = False
    warm_up: bool = Field(False, alias="warmUp")
    rest_pause: bool = Field(False, alias="restPause")
    drop_set: bool = Field(False, alias="dropSet")
    time: str = ""
    note: str = ""
    body_weight: bool = Field(False, alias="bodyWeight")
    created_at: Optional[datetime.datetime] = Field(None, alias="createdAt")

    @field_validator("created_at", mode="before")
    @classmethod
    def _timestamp(cls, value: Any) -> Any:
        return parse_timestamp(value)


class ExerciseDocument(_Document):
    id: str = ""
    name: str
    rep_goal: str = Field("", alias="repGoal")
    muscle_group: str = Field(alias="muscleGroup")
    exercise_order: int = Field(0, alias="exerciseOrder")
    sets: Optional[list[SetDocument]] = None
    done: bool = False
    created_at: Optional[datetime.datetime] = Field(None, alias="createdAt")
    completed_at: Optional[datetime.datetime] = Field(None, alias="completedAt")

    @field_validator("created_at", "completed_at", mode="before")
    @classmethod
    def _timestamps(cls, value: Any) -> Any:
        return parse_timestamp(value)

    @field_validator("muscle_group")
    @classmethod
    def _known_muscle_group(cls, value: str) -> str:
        return MuscleGroup.parse(value).value


class DayDocument(_Document):
    id: str = ""
    name: str
    day_of_split: int = Field(alias="dayOfSplit")
    exercises: Optional[list[ExerciseDocument]] = None
    date: str = ""
    is_rest_day: bool = Field(False, alias="isRestDay")


class SplitDocument(_Document):
    id: str = ""
    name: str
    days: Optional[list[DayDocument]]
    is_active: bool = Field(False, alias="isActive")
    start_date: datetime.datetime = Field(alias="startDate")

    @field_validator("start_date", mode="before")
    @classmethod
    def _start_date(cls, value: Any) -> Any:
        return parse_timestamp(value)


def _classify(error: ValidationError) -> ImportValidationError:
    first = error.errors()[0]
    location = ".".join(str(part) for part in first["loc"]) or "document"
    error_type = first["type"]
    if error_type == "missing":
        kind = "missing-field"
    elif error_type.endswith("_type") or error_type.endswith("_parsing"):
        kind = "type-mismatch"
    else:
        kind = "invalid-value"
    return ImportValidationError(kind, f"{location}: {first['msg']}")


# -- export ----------------------------------------------------------------


def _iso(value: Optional[datetime.datetime]) -> Optional[str]:
    return value.isoformat() if value else None


def set_to_document(workout_set: WorkoutSet) -> dict:
    return {
        "id": workout_set.id,
        "weight": workout_set.weight,
        "reps": workout_set.reps,
        "failure": workout_set.failure,
        "warmUp": workout_set.warm_up,
        "restPause": workout_set.rest_pause,
        "dropSet": workout_set.drop_set,
        "time": workout_set.time,
        "note": workout_set.note,
        "bodyWeight": workout_set.body_weight,
        "createdAt": _iso(workout_set.created_at),
    }


def exercise_to_document(exercise: Exercise) -> dict:
    return {
        "id": exercise.id,
        "name": exercise.name,
        "repGoal": exercise.rep_goal,
        "muscleGroup": exercise.muscle_group,
        "exerciseOrder": exercise.exercise_order,
        "sets": [set_to_document(s) for s in exercise.sets],
        "done": exercise.done,
        "createdAt": _iso(exercise.created_at),
        "completedAt": _iso(exercise.completed_at),
    }


def day_to_document(day: Day) -> dict:
    return {
        "id": day.id,
        "name": day.name,
        "dayOfSplit": day.day_of_split,
        "exercises": [exercise_to_document(e) for e in day.ordered_exercises()],
        "date": day.date,
        "isRestDay": day.is_rest_day,
    }


def split_to_document(split: Split) -> dict:
    return {
        "id": split.id,
        "name": split.name,
        "days": [day_to_document(d) for d in sorted(split.days, key=lambda d: d.day_of_split)],
        "isActive": split.is_active,
        "startDate": _iso(split.start_date),
    }


def export_split(split: Split) -> str:
    """Serialize ``split`` and its subtree to document text."""
    return json.dumps(split_to_document(split), indent=2)


# -- import ----------------------------------------------------------------


def _pick_id(document_id: str, fresh_ids: bool) -> str:
    if fresh_ids or not document_id:
        return new_id()
    return document_id


def set_from_document(doc: SetDocument, fresh_ids: bool = True) -> WorkoutSet:
    return WorkoutSet(
        weight=doc.weight,
        reps=doc.reps,
        failure=doc.failure,
        warm_up=doc.warm_up,
        rest_pause=doc.rest_pause,
        drop_set=doc.drop_set,
        time=doc.time,
        note=doc.note,
        body_weight=doc.body_weight,
        created_at=doc.created_at or utcnow(),
        id=_pick_id(doc.id, fresh_ids),
    )


def exercise_from_document(doc: ExerciseDocument, fresh_ids: bool = True) -> Exercise:
    # a shared template starts undone
    return Exercise(
        name=doc.name,
        rep_goal=doc.rep_goal,
        muscle_group=doc.muscle_group,
        exercise_order=doc.exercise_order,
        sets=[set_from_document(s, fresh_ids) for s in doc.sets or []],
        done=False if fresh_ids else doc.done,
        completed_at=None if fresh_ids else doc.completed_at,
        created_at=doc.created_at or utcnow(),
        id=_pick_id(doc.id, fresh_ids),
    )


def day_from_document(doc: DayDocument, fresh_ids: bool = True) -> Day:
    return Day(
        name=doc.name,
        day_of_split=doc.day_of_split,
        exercises=[exercise_from_document(e, fresh_ids) for e in doc.exercises or []],
        is_rest_day=doc.is_rest_day,
        date=doc.date,
        id=_pick_id(doc.id, fresh_ids),
    )


def split_from_document(doc: SplitDocument, fresh_ids: bool = True) -> Split:
    return Split(
        name=doc.name.strip(),
        days=[day_from_document(d, fresh_ids) for d in doc.days or []],
        is_active=doc.is_active,
        start_date=doc.start_date,
        id=_pick_id(doc.id, fresh_ids),
    )


def parse_split(payload: str | bytes | dict) -> SplitDocument:
    """Validate a split document without touching the store."""
    if isinstance(payload, (str, bytes, bytearray)):
        try:
            data = json.loads(payload)
        except (json.JSONDecodeError, UnicodeDecodeError) as e:
            raise ImportValidationError("corrupt-payload", f"not valid JSON: {e}") from e
    else:
        data = payload
    if not isinstance(data, dict):
        raise ImportValidationError("corrupt-payload", "document must be a JSON object")
    try:
        doc = SplitDocument.model_validate(data)
    except ValidationError as e:
        raise _classify(e) from e
    if not doc.name.strip():
        raise ImportValidationError("missing-field", "name: split name is required")
    if not doc.days:
        raise ImportValidationError("missing-field", "days: a split needs at least one day")
    return doc


def _store_document(store: LocalStore, doc: SplitDocument) -> Split:
    split = split_from_document(doc)
    make_active = split.is_active
    split.is_active = False
    store.insert(split)
    if make_active:
        store.activate_split(split)
    else:
        store.save()
    _LOGGER.info("Imported split %r with %d days", split.name, len(split.days))
    return split


def import_split(store: LocalStore, payload: str | bytes | dict) -> Split:
    """Validate ``payload`` and add it to ``store`` under fresh identifiers.

    Nothing is written when validation fails.
    """
    return _store_document(store, parse_split(payload))


def _write_text(path: str, text: str) -> None:
    with open(path, "w", encoding="utf-8") as f:
        f.write(text)


def _read_document(path: str) -> SplitDocument:
    with open(path, "rb") as f:
        return parse_split(f.read())


async def export_split_file(split: Split, path: str, timeout: float = 5.0) -> str:
    """Write ``split`` to ``path`` off the event loop."""
    text = export_split(split)
    await asyncio.wait_for(asyncio.to_thread(_write_text, path, text), timeout)
    return path


async def import_split_file(store: LocalStore, path: str, timeout: float = 5.0) -> Split:
    """Read and validate ``path`` off the event loop, then store the split."""
    doc = await asyncio.wait_for(asyncio.to_thread(_read_document, path), timeout)
    return _store_document(store, doc)
