from __future__ import annotations
import datetime
import uuid
from dataclasses import dataclass, field, replace
from enum import Enum
from typing import ClassVar, Optional


def new_id() -> str:
    return str(uuid.uuid4())


def utcnow() -> datetime.datetime:
    return datetime.datetime.now(datetime.timezone.utc)


def as_utc(value):
    """Return ``value`` as an aware UTC datetime; naive values are read as UTC."""
    if isinstance(value, datetime.datetime):
        if value.tzinfo is None:
            return value.replace(tzinfo=datetime.timezone.utc)
        return value.astimezone(datetime.timezone.utc)
    return value


TIMESTAMP_FIELDS = ("start_date", "created_at", "completed_at", "updated_at", "date")


class MuscleGroup(str, Enum):
    """Fixed set of muscle-group tags an exercise can carry."""

    CHEST = "Chest"
    BACK = "Back"
    BICEPS = "Biceps"
    TRICEPS = "Triceps"
    SHOULDERS = "Shoulders"
    QUADS = "Quads"
    HAMSTRINGS = "Hamstrings"
    CALVES = "Calves"
    GLUTES = "Glutes"
    ABS = "Abs"

    @classmethod
    def parse(cls, value: str | MuscleGroup) -> MuscleGroup:
        if isinstance(value, MuscleGroup):
            return value
        text = str(value or "").strip().lower()
        for member in cls:
            if member.value.lower() == text:
                return member
        raise ValueError(f"unknown muscle group: {value!r}")


@dataclass(eq=False)
class WorkoutSet:
    """One performed unit of an exercise. ``weight`` is always kilograms."""

    KIND: ClassVar[str] = "set"

    weight: float = 0.0
    reps: int = 0
    failure: bool = False
    warm_up: bool = False
    rest_pause: bool = False
    drop_set: bool = False
    time: str = ""
    note: str = ""
    body_weight: bool = False
    created_at: datetime.datetime = field(default_factory=utcnow)
    id: str = field(default_factory=new_id)
    updated_at: datetime.datetime = field(default_factory=utcnow)
    dirty: bool = True

    def children(self) -> list:
        return []

    def clone(self) -> WorkoutSet:
        return replace(self, id=new_id(), updated_at=utcnow(), dirty=True)


@dataclass(eq=False)
class Exercise:
    KIND: ClassVar[str] = "exercise"

    name: str
    rep_goal: str = ""
    muscle_group: str = MuscleGroup.CHEST.value
    exercise_order: int = 0
    sets: list[WorkoutSet] = field(default_factory=list)
    done: bool = False
    completed_at: Optional[datetime.datetime] = None
    created_at: datetime.datetime = field(default_factory=utcnow)
    id: str = field(default_factory=new_id)
    updated_at: datetime.datetime = field(default_factory=utcnow)
    dirty: bool = True

    def children(self) -> list:
        return list(self.sets)

    def clone(self) -> Exercise:
        return replace(
            self,
            id=new_id(),
            sets=[s.clone() for s in self.sets],
            updated_at=utcnow(),
            dirty=True,
        )


@dataclass(eq=False)
class Day:
    """A slot in a split, or the body of a completed-workout snapshot."""

    KIND: ClassVar[str] = "day"

    name: str
    day_of_split: int = 1
    exercises: list[Exercise] = field(default_factory=list)
    is_rest_day: bool = False
    date: str = ""
    id: str = field(default_factory=new_id)
    updated_at: datetime.datetime = field(default_factory=utcnow)
    dirty: bool = True

    def children(self) -> list:
        return list(self.exercises)

    def clone(self) -> Day:
        return replace(
            self,
            id=new_id(),
            exercises=[e.clone() for e in self.exercises],
            updated_at=utcnow(),
            dirty=True,
        )

    def ordered_exercises(self) -> list[Exercise]:
        return sorted(self.exercises, key=lambda e: e.exercise_order)


@dataclass(eq=False)
class Split:
    KIND: ClassVar[str] = "split"

    name: str
    days: list[Day] = field(default_factory=list)
    is_active: bool = False
    start_date: datetime.datetime = field(default_factory=utcnow)
    id: str = field(default_factory=new_id)
    updated_at: datetime.datetime = field(default_factory=utcnow)
    dirty: bool = True

    def children(self) -> list:
        return list(self.days)

    def clone(self) -> Split:
        return replace(
            self,
            id=new_id(),
            days=[d.clone() for d in self.days],
            updated_at=utcnow(),
            dirty=True,
        )

    def day_at(self, position: int) -> Optional[Day]:
        for day in self.days:
            if day.day_of_split == position:
                return day
        return None


@dataclass(eq=False)
class CompletedDayRecord:
    """History entry keyed by an ISO calendar date, owning its day snapshot."""

    KIND: ClassVar[str] = "completed_day"

    date: str
    day: Day
    id: str = field(default_factory=new_id)
    updated_at: datetime.datetime = field(default_factory=utcnow)
    dirty: bool = True

    def children(self) -> list:
        return [self.day]

    def clone(self) -> CompletedDayRecord:
        return replace(
            self, id=new_id(), day=self.day.clone(), updated_at=utcnow(), dirty=True
        )


@dataclass(eq=False)
class WeightPoint:
    KIND: ClassVar[str] = "weight_point"

    date: datetime.datetime
    weight: float
    id: str = field(default_factory=new_id)
    updated_at: datetime.datetime = field(default_factory=utcnow)
    dirty: bool = True

    def children(self) -> list:
        return []

    def clone(self) -> WeightPoint:
        return replace(self, id=new_id(), updated_at=utcnow(), dirty=True)


PROFILE_ID = "user_profile"


@dataclass(eq=False)
class Profile:
    """Per-user preferences, body stats and streak state."""

    KIND: ClassVar[str] = "profile"

    username: str = "User"
    height: float = 0.0
    weight: float = 0.0
    age: int = 0
    bmi: float = 0.0
    weight_unit: str = "kg"
    round_set_weights: bool = False
    is_health_enabled: bool = False
    current_streak: int = 0
    longest_streak: int = 0
    last_workout_date: Optional[datetime.date] = None
    rest_days_per_week: int = 2
    streak_paused: bool = False
    id: str = PROFILE_ID
    updated_at: datetime.datetime = field(default_factory=utcnow)
    dirty: bool = True

    def children(self) -> list:
        return []

    @staticmethod
    def compute_bmi(height_cm: float, weight_kg: float) -> float:
        if height_cm > 0 and weight_kg > 0:
            meters = height_cm / 100.0
            return weight_kg / (meters * meters)
        return 0.0

    def update_bmi(self) -> float:
        self.bmi = self.compute_bmi(self.height, self.weight)
        return self.bmi


ENTITY_TYPES = {
    cls.KIND: cls
    for cls in (Split, Day, Exercise, WorkoutSet, CompletedDayRecord, WeightPoint, Profile)
}


def walk(entity) -> list:
    """Return ``entity`` and all entities it owns, parents before children."""
    result = [entity]
    for child in entity.children():
        result.extend(walk(child))
    return result
