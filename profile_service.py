from __future__ import annotations
import datetime
import logging
from typing import Optional

from algorithms import WeightConverter
from events import EventBus, StreakUpdated
from local_store import LocalStore
from models import Profile, WeightPoint, as_utc
from scheduler import StreakState, check_streak_status, record_workout

_LOGGER = logging.getLogger(__name__)


class MetricsProvider:
    """Source of body measurements, such as a phone's health store.

    The base class provides nothing and accepts every write.
    """

    def read_height(self) -> Optional[float]:
        return None

    def read_weight(self) -> Optional[float]:
        return None

    def read_age(self) -> Optional[int]:
        return None

    def write_weight(self, weight_kg: float, when: datetime.datetime) -> None:
        pass

    def write_height(self, height_cm: float) -> None:
        pass


class ProfileService:
    """Preferences, body stats, weight history and streak bookkeeping."""

    def __init__(
        self,
        store: LocalStore,
        events: Optional[EventBus] = None,
        provider: Optional[MetricsProvider] = None,
    ) -> None:
        self.store = store
        self.events = events or EventBus()
        self.provider = provider

    @property
    def profile(self) -> Profile:
        return self.store.profile()

    def _share(self, method: str, *args) -> None:
        """Forward a write to the metrics provider without waiting on it."""
        if self.provider is None or not self.profile.is_health_enabled:
            return
        try:
            getattr(self.provider, method)(*args)
        except Exception:
            _LOGGER.warning("Metrics provider rejected %s", method, exc_info=True)

    def update_physical_stats(
        self,
        height: Optional[float] = None,
        weight: Optional[float] = None,
        age: Optional[int] = None,
        unit: Optional[str] = None,
    ) -> Profile:
        """Set height (cm), weight and age; BMI follows automatically."""
        profile = self.profile
        changes: dict = {}
        if height is not None:
            if height < 0:
                raise ValueError("height must be non-negative")
            changes["height"] = float(height)
        if weight is not None:
            weight_kg = self.to_canonical(weight, unit)
            if weight_kg < 0:
                raise ValueError("weight must be non-negative")
            changes["weight"] = weight_kg
        if age is not None:
            if age < 0:
                raise ValueError("age must be non-negative")
            changes["age"] = int(age)
        changes["bmi"] = Profile.compute_bmi(
            changes.get("height", profile.height), changes.get("weight", profile.weight)
        )
        self.store.update(profile, **changes)
        self.store.flush()
        if "height" in changes:
            self._share("write_height", changes["height"])
        return profile

    def update_preferences(
        self,
        weight_unit: Optional[str] = None,
        round_set_weights: Optional[bool] = None,
        username: Optional[str] = None,
        is_health_enabled: Optional[bool] = None,
    ) -> Profile:
        changes: dict = {}
        if weight_unit is not None:
            changes["weight_unit"] = WeightConverter.normalize_unit(weight_unit)
        if round_set_weights is not None:
            changes["round_set_weights"] = bool(round_set_weights)
        if username is not None:
            changes["username"] = username
        if is_health_enabled is not None:
            changes["is_health_enabled"] = bool(is_health_enabled)
        self.store.update(self.profile, **changes)
        self.store.flush()
        return self.profile

    def set_rest_days(self, rest_days: int) -> None:
        if not 0 <= rest_days <= 6:
            raise ValueError("rest days per week must be between 0 and 6")
        self.store.update(self.profile, rest_days_per_week=rest_days)
        self.store.flush()

    def set_streak_paused(self, paused: bool) -> None:
        self.store.update(self.profile, streak_paused=paused)
        self.store.flush()

    def log_weight(
        self,
        weight: float,
        unit: Optional[str] = None,
        when: Optional[datetime.datetime] = None,
    ) -> WeightPoint:
        """Add a body-weight point and make it the profile's current weight."""
        weight_kg = self.to_canonical(weight, unit)
        if weight_kg <= 0:
            raise ValueError("weight must be positive")
        when = as_utc(when) or datetime.datetime.now(datetime.timezone.utc)
        point = WeightPoint(date=when, weight=weight_kg)
        self.store.insert(point)
        profile = self.profile
        self.store.update(
            profile, weight=weight_kg, bmi=Profile.compute_bmi(profile.height, weight_kg)
        )
        self.store.flush()
        self._share("write_weight", weight_kg, when)
        return point

    def weight_history(self) -> list[WeightPoint]:
        return self.store.weight_points()

    def seed_from_provider(self) -> bool:
        """Fill body stats from the metrics provider; returns whether any changed."""
        if self.provider is None:
            return False
        height = self.provider.read_height()
        weight = self.provider.read_weight()
        age = self.provider.read_age()
        before = (self.profile.height, self.profile.weight, self.profile.age)
        self.update_physical_stats(height=height, weight=weight, age=age, unit="kg")
        return before != (self.profile.height, self.profile.weight, self.profile.age)

    # -- units -------------------------------------------------------------

    def to_canonical(self, value: float, unit: Optional[str] = None) -> float:
        return WeightConverter.to_canonical(value, unit or self.profile.weight_unit)

    def display_weight(self, weight_kg: float) -> float:
        profile = self.profile
        return WeightConverter.to_display(
            weight_kg, profile.weight_unit, profile.round_set_weights
        )

    # -- streaks -----------------------------------------------------------

    def streak_state(self) -> StreakState:
        profile = self.profile
        return StreakState(
            current=profile.current_streak,
            longest=profile.longest_streak,
            last_workout_date=profile.last_workout_date,
            rest_days_per_week=profile.rest_days_per_week,
            paused=profile.streak_paused,
        )

    def _apply_streak(self, streak: StreakState) -> StreakState:
        changed = self.store.update(
            self.profile,
            current_streak=streak.current,
            longest_streak=streak.longest,
            last_workout_date=streak.last_workout_date,
        )
        if changed:
            self.store.flush()
            self.events.publish(
                StreakUpdated(streak.current, streak.longest, streak.last_workout_date)
            )
        return streak

    def record_workout(self, when: datetime.date | datetime.datetime) -> StreakState:
        return self._apply_streak(record_workout(self.streak_state(), when))

    def check_streak(self, today: datetime.date | datetime.datetime) -> StreakState:
        streak = check_streak_status(self.streak_state(), today)
        if streak.current != self.profile.current_streak:
            _LOGGER.info("Streak expired after %s", streak.last_workout_date)
        return self._apply_streak(streak)
