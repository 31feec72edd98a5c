"""Wire format of records exchanged with the remote store.

Every record is an envelope::

    {"kind": ..., "id": ..., "updated_at": ..., "parent_id": ...,
     "deleted": false, "fields": {...}}

History records carry their whole day snapshot nested in ``fields``.
"""

from __future__ import annotations
import datetime
from dataclasses import dataclass, field
from typing import Any, Literal, Optional

from pydantic import BaseModel, Field, ValidationError, field_validator

from interchange import DayDocument, day_from_document, day_to_document
from models import MuscleGroup, as_utc, walk


class RecordDecodeError(ValueError):
    """A pulled record could not be understood."""


@dataclass
class RemoteRecord:
    kind: str
    id: str
    updated_at: datetime.datetime
    parent_id: Optional[str] = None
    deleted: bool = False
    fields: dict = field(default_factory=dict)


class _Envelope(BaseModel):
    kind: Literal["split", "day", "exercise", "set", "completed_day", "weight_point", "profile"]
    id: str = Field(min_length=1)
    updated_at: datetime.datetime
    parent_id: Optional[str] = None
    deleted: bool = False
    fields: dict = Field(default_factory=dict)


class SplitFields(BaseModel):
    name: str
    is_active: bool = False
    start_date: datetime.datetime


class DayFields(BaseModel):
    name: str
    day_of_split: int = 1
    is_rest_day: bool = False
    date: str = ""


class ExerciseFields(BaseModel):
    name: str
    rep_goal: str = ""
    muscle_group: str
    exercise_order: int = 0
    done: bool = False
    completed_at: Optional[datetime.datetime] = None
    created_at: datetime.datetime

    @field_validator("muscle_group")
    @classmethod
    def _known_muscle_group(cls, value: str) -> str:
        return MuscleGroup.parse(value).value


class SetFields(BaseModel):
    weight: float = Field(ge=0)
    reps: int = Field(ge=0)
    failure: bool = False
    warm_up: bool = False
    rest_pause: bool = False
    drop_set: bool = False
    time: str = ""
    note: str = ""
    body_weight: bool = False
    created_at: datetime.datetime


class CompletedDayFields(BaseModel):
    date: datetime.date
    day: DayDocument


class WeightPointFields(BaseModel):
    date: datetime.datetime
    weight: float = Field(gt=0)


class ProfileFields(BaseModel):
    username: str = "User"
    height: float = Field(0.0, ge=0)
    weight: float = Field(0.0, ge=0)
    age: int = Field(0, ge=0)
    bmi: float = 0.0
    weight_unit: Literal["kg", "lbs"] = "kg"
    round_set_weights: bool = False
    is_health_enabled: bool = False
    current_streak: int = Field(0, ge=0)
    longest_streak: int = Field(0, ge=0)
    last_workout_date: Optional[datetime.date] = None
    rest_days_per_week: int = Field(2, ge=0, le=6)
    streak_paused: bool = False


FIELD_MODELS: dict[str, type[BaseModel]] = {
    "split": SplitFields,
    "day": DayFields,
    "exercise": ExerciseFields,
    "set": SetFields,
    "completed_day": CompletedDayFields,
    "weight_point": WeightPointFields,
    "profile": ProfileFields,
}


def decode_record(raw: Any) -> tuple[RemoteRecord, dict]:
    """Validate one pulled record.

    Returns the envelope and the entity values to apply. For history
    records the values hold a ``Day`` snapshot built with the remote ids.
    """
    if isinstance(raw, RemoteRecord):
        raw = {
            "kind": raw.kind,
            "id": raw.id,
            "updated_at": raw.updated_at,
            "parent_id": raw.parent_id,
            "deleted": raw.deleted,
            "fields": raw.fields,
        }
    if not isinstance(raw, dict):
        raise RecordDecodeError("record must be an object")
    try:
        return _decode(raw)
    except (ValidationError, ValueError, TypeError, OverflowError, KeyError) as e:
        raise RecordDecodeError(f"record {raw.get('id')!r}: {e}") from e


def _decode(raw: dict) -> tuple[RemoteRecord, dict]:
    envelope = _Envelope.model_validate(raw)
    values: dict = {}
    if not envelope.deleted:
        values = FIELD_MODELS[envelope.kind].model_validate(envelope.fields).model_dump()

    record = RemoteRecord(
        kind=envelope.kind,
        id=envelope.id,
        updated_at=as_utc(envelope.updated_at),
        parent_id=envelope.parent_id,
        deleted=envelope.deleted,
        fields=envelope.fields,
    )
    for key, value in values.items():
        if isinstance(value, datetime.datetime):
            values[key] = as_utc(value)
    if record.kind == "completed_day" and not record.deleted:
        snapshot = day_from_document(DayDocument.model_validate(values["day"]), fresh_ids=False)
        for item in walk(snapshot):
            item.updated_at = record.updated_at
            item.dirty = False
        values = {"date": values["date"].isoformat(), "day": snapshot}
    return record, values


FIELD_NAMES: dict[str, tuple[str, ...]] = {
    kind: tuple(name for name in model.model_fields)
    for kind, model in FIELD_MODELS.items()
    if kind != "completed_day"
}


def _plain(value: Any) -> Any:
    if isinstance(value, (datetime.datetime, datetime.date)):
        return value.isoformat()
    return value


def encode_entity(entity, parent_id: Optional[str] = None) -> dict:
    """Build the push payload for ``entity`` at its current version."""
    if entity.KIND == "completed_day":
        fields = {"date": entity.date, "day": day_to_document(entity.day)}
    else:
        fields = {name: _plain(getattr(entity, name)) for name in FIELD_NAMES[entity.KIND]}
    return {
        "kind": entity.KIND,
        "id": entity.id,
        "updated_at": entity.updated_at.isoformat(),
        "parent_id": parent_id,
        "deleted": False,
        "fields": fields,
    }
