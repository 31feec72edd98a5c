import datetime
import os
import sys

import pytest

sys.path.append(os.path.dirname(os.path.dirname(__file__)))
from events import EventBus, StreakUpdated
from local_store import LocalStore
from profile_service import MetricsProvider, ProfileService


class StubProvider(MetricsProvider):
    def __init__(self, fail_writes=False):
        self.fail_writes = fail_writes
        self.weights = []

    def read_height(self):
        return 175.0

    def read_weight(self):
        return 70.0

    def write_weight(self, weight_kg, when):
        if self.fail_writes:
            raise RuntimeError("health store unavailable")
        self.weights.append(weight_kg)


@pytest.fixture
def store(tmp_path):
    return LocalStore(str(tmp_path / "profile.db"))


def test_stats_update_bmi(store):
    service = ProfileService(store)
    profile = service.update_physical_stats(height=180, weight=81, age=30)
    assert profile.bmi == pytest.approx(25.0)
    service.update_physical_stats(height=0)
    assert profile.bmi == 0.0
    with pytest.raises(ValueError):
        service.update_physical_stats(age=-1)
    assert LocalStore(store.db_path).profile().age == 30


def test_log_weight_in_display_unit(store):
    service = ProfileService(store)
    service.update_physical_stats(height=180)
    service.update_preferences(weight_unit="lbs")
    point = service.log_weight(176.3696)
    assert point.weight == pytest.approx(80.0, abs=1e-3)
    assert store.profile().weight == pytest.approx(80.0, abs=1e-3)
    assert store.profile().bmi == pytest.approx(24.69, abs=0.01)
    assert [p.id for p in LocalStore(store.db_path).weight_points()] == [point.id]
    with pytest.raises(ValueError):
        service.log_weight(0)


def test_display_weight_rounding(store):
    service = ProfileService(store)
    service.update_preferences(weight_unit="lbs", round_set_weights=True)
    assert service.display_weight(50.0) == 110.0
    service.update_preferences(weight_unit="kg", round_set_weights=False)
    assert service.display_weight(62.346) == 62.35
    with pytest.raises(ValueError):
        service.update_preferences(weight_unit="stone")


def test_seed_from_provider(store):
    service = ProfileService(store, provider=StubProvider())
    assert service.seed_from_provider()
    assert store.profile().height == 175.0
    assert store.profile().weight == 70.0
    assert not service.seed_from_provider()


def test_provider_failures_do_not_block(store):
    provider = StubProvider(fail_writes=True)
    service = ProfileService(store, provider=provider)
    service.update_preferences(is_health_enabled=True)
    service.log_weight(72.0, unit="kg")
    assert store.profile().weight == 72.0


def test_provider_writes_only_when_enabled(store):
    provider = StubProvider()
    service = ProfileService(store, provider=provider)
    service.log_weight(72.0, unit="kg")
    assert provider.weights == []
    service.update_preferences(is_health_enabled=True)
    service.log_weight(73.0, unit="kg")
    assert provider.weights == [73.0]


def test_streak_tracking(store):
    events = EventBus()
    seen = []
    events.subscribe(StreakUpdated, seen.append)
    service = ProfileService(store, events)
    service.set_rest_days(1)
    start = datetime.date(2024, 6, 1)
    service.record_workout(start)
    service.record_workout(start + datetime.timedelta(days=2))
    assert store.profile().current_streak == 2
    service.record_workout(start + datetime.timedelta(days=5))
    assert store.profile().current_streak == 1
    assert store.profile().longest_streak == 2
    assert seen[-1] == StreakUpdated(1, 2, start + datetime.timedelta(days=5))
    with pytest.raises(ValueError):
        service.set_rest_days(7)


def test_check_streak_and_pause(store):
    service = ProfileService(store)
    service.record_workout(datetime.date(2024, 6, 1))
    service.set_streak_paused(True)
    assert service.check_streak(datetime.date(2024, 7, 1)).current == 1
    service.set_streak_paused(False)
    assert service.check_streak(datetime.date(2024, 7, 1)).current == 0
    assert store.profile().current_streak == 0


def test_naive_and_aware_weight_dates_sort_together(store):
    service = ProfileService(store)
    aware = service.log_weight(80, when=datetime.datetime(2024, 6, 2, 7, 0, tzinfo=datetime.timezone.utc))
    naive = service.log_weight(81, when=datetime.datetime(2024, 6, 1, 7, 0))
    assert naive.date.tzinfo is not None
    assert [p.id for p in store.weight_points()] == [naive.id, aware.id]
    assert [p.id for p in LocalStore(store.db_path).weight_points()] == [naive.id, aware.id]
