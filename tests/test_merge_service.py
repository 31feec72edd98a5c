import datetime
import os
import sys

import pytest

sys.path.append(os.path.dirname(os.path.dirname(__file__)))
from interchange import day_to_document
from local_store import LocalStore
from merge_service import MergeResolver
from models import Day, Exercise, Split, WorkoutSet, walk
from remote_records import encode_entity

T0 = datetime.datetime(2024, 6, 1, 12, 0, tzinfo=datetime.timezone.utc)


def _at(minutes: int) -> str:
    return (T0 + datetime.timedelta(minutes=minutes)).isoformat()


def _split_record(split_id="S1", name="PPL", minutes=0, active=True, deleted=False):
    return {
        "kind": "split",
        "id": split_id,
        "updated_at": _at(minutes),
        "deleted": deleted,
        "fields": {"name": name, "is_active": active, "start_date": _at(-600)},
    }


def _day_record(day_id, split_id="S1", position=1, minutes=0, deleted=False):
    return {
        "kind": "day",
        "id": day_id,
        "updated_at": _at(minutes),
        "parent_id": split_id,
        "deleted": deleted,
        "fields": {"name": f"Day {position}", "day_of_split": position},
    }


def _exercise_record(exercise_id, day_id, minutes=0, deleted=False, name="Bench"):
    return {
        "kind": "exercise",
        "id": exercise_id,
        "updated_at": _at(minutes),
        "parent_id": day_id,
        "deleted": deleted,
        "fields": {
            "name": name,
            "rep_goal": "8",
            "muscle_group": "Chest",
            "exercise_order": 1,
            "created_at": _at(-60),
        },
    }


def _snapshot():
    return [
        _split_record(),
        _day_record("D1"),
        _day_record("D2", position=2),
        _exercise_record("E1", "D1"),
        {
            "kind": "set",
            "id": "W1",
            "updated_at": _at(0),
            "parent_id": "E1",
            "fields": {"weight": 100.0, "reps": 5, "created_at": _at(-60)},
        },
    ]


@pytest.fixture
def store(tmp_path):
    return LocalStore(str(tmp_path / "merge.db"))


def test_remote_records_are_added(store):
    report = MergeResolver(store).merge(_snapshot())
    split = store.get("S1")
    assert len(report.inserted) == 5
    assert [d.id for d in split.days] == ["D1", "D2"]
    assert split.days[0].exercises[0].sets[0].weight == 100.0
    assert not any(e.dirty for e in walk(split))
    assert store.active_split() is split


def test_same_snapshot_twice_changes_nothing(store):
    resolver = MergeResolver(store)
    resolver.merge(_snapshot())
    ids_before = sorted(e.id for e in store.all_entities())
    second = resolver.merge(_snapshot())
    assert second.changes == 0
    assert not store.has_pending_changes
    assert sorted(e.id for e in store.all_entities()) == ids_before


def test_last_write_wins(store):
    resolver = MergeResolver(store)
    resolver.merge(_snapshot())
    split = store.get("S1")
    resolver.merge([_split_record(name="Newer", minutes=5)])
    assert split.name == "Newer"
    assert not split.dirty

    store.update(split, name="Local edit")
    report = resolver.merge([_split_record(name="Stale", minutes=6)])
    assert split.name == "Local edit"
    assert report.updated == []


def test_older_remote_marks_local_for_push(store):
    resolver = MergeResolver(store)
    resolver.merge([_split_record(minutes=10)])
    report = resolver.merge([_split_record(name="Old", minutes=1)])
    assert store.get("S1").name == "PPL"
    assert store.get("S1").dirty
    assert report.marked_dirty == ["S1"]


def test_tombstone_removes_clean_record(store):
    resolver = MergeResolver(store)
    resolver.merge(_snapshot())
    report = resolver.merge([_exercise_record("E1", "D1", minutes=3, deleted=True)])
    assert store.get("E1") is None
    assert store.get("W1") is None
    assert set(report.deleted) == {"E1", "W1"}
    assert store.pending_remote_deletes() == []


def test_tombstone_keeps_unsynced_local_work(store):
    resolver = MergeResolver(store)
    resolver.merge(_snapshot())
    workout_set = store.get("W1")
    store.update(workout_set, reps=7)
    report = resolver.merge([_exercise_record("E1", "D1", minutes=3, deleted=True)])
    exercise = store.get("E1")
    assert exercise is not None
    assert exercise.dirty
    assert workout_set.reps == 7
    assert "E1" in report.marked_dirty
    assert resolver.merge([_exercise_record("E1", "D1", minutes=3, deleted=True)]).changes == 0


def test_local_only_records_marked_on_full_snapshot(store):
    resolver = MergeResolver(store)
    resolver.merge(_snapshot())
    local = Split(name="Offline", dirty=False)
    store.insert(local, from_remote=True)
    store.save()
    resolver.merge(_snapshot(), full_snapshot=False)
    assert not local.dirty
    report = resolver.merge(_snapshot(), full_snapshot=True)
    assert local.dirty
    assert local.id in report.marked_dirty


def test_undecodable_record_is_skipped(store):
    records = _snapshot()
    records.insert(1, {"kind": "split", "id": "BAD", "updated_at": "yesterday"})
    records.append({"kind": "set", "id": "W2", "updated_at": _at(0), "parent_id": "E1", "fields": {"reps": -3}})
    records.append("garbage")
    report = MergeResolver(store).merge(records)
    assert len(report.inserted) == 5
    assert "BAD" in report.skipped
    assert "W2" in report.skipped
    assert store.get("E1") is not None


def test_orphans_are_skipped(store):
    report = MergeResolver(store).merge([_exercise_record("E9", "missing-day")])
    assert report.skipped == ["E9"]
    assert store.get("E9") is None


def test_remote_move_reparents(store):
    resolver = MergeResolver(store)
    resolver.merge(_snapshot())
    resolver.merge([_exercise_record("E1", "D2", minutes=4)])
    assert store.parent_id("E1") == "D2"
    assert store.get("D1").exercises == []
    assert store.get("D2").exercises[0].id == "E1"


def test_two_active_splits_are_normalized(store):
    resolver = MergeResolver(store)
    resolver.merge([_split_record("S1", minutes=1), _split_record("S2", name="Other", minutes=2)])
    assert [s.id for s in store.splits() if s.is_active] == ["S2"]


def test_first_split_activated_when_none_active(store):
    MergeResolver(store).merge([_split_record("S1", active=False)])
    assert store.active_split().id == "S1"


def _completion_record(record_id, date, minutes, exercise_name):
    day = Day(name="Push", exercises=[Exercise(name=exercise_name, done=True, sets=[WorkoutSet(reps=5)])])
    day.date = date
    return {
        "kind": "completed_day",
        "id": record_id,
        "updated_at": _at(minutes),
        "fields": {"date": date, "day": day_to_document(day)},
    }


def test_completion_for_same_date_newer_wins(store):
    local = store.record_completion("2024-06-01", Day(name="Local", exercises=[Exercise(name="Row")]))
    local.updated_at = T0
    report = MergeResolver(store).merge([_completion_record("R1", "2024-06-01", 5, "Bench")])
    record = store.completed_for_date("2024-06-01")
    assert record.id == "R1"
    assert record.day.exercises[0].name == "Bench"
    assert store.get(local.id) is None
    assert local.id in report.deleted
    assert ("completed_day", local.id) in store.pending_remote_deletes()


def test_completion_for_same_date_local_wins(store):
    local = store.record_completion("2024-06-01", Day(name="Local", exercises=[Exercise(name="Row")]))
    local.updated_at = T0 + datetime.timedelta(hours=1)
    resolver = MergeResolver(store)
    resolver.merge([_completion_record("R1", "2024-06-01", 5, "Bench")])
    assert store.completed_for_date("2024-06-01") is local
    assert store.get("R1") is None
    assert ("completed_day", "R1") in store.pending_remote_deletes()
    assert resolver.merge([_completion_record("R1", "2024-06-01", 5, "Bench")]).changes == 0


def test_completion_round_trip_is_idempotent(store):
    resolver = MergeResolver(store)
    resolver.merge([_completion_record("R1", "2024-06-03", 0, "Squat")])
    record = store.completed_for_date("2024-06-03")
    payload = encode_entity(record)
    assert resolver.merge([payload]).changes == 0
    assert store.completed_repo.count_for_date("2024-06-03") == 1


def test_out_of_range_dates_in_history_are_skipped(store):
    bad = _completion_record("R9", "2024-06-02", 0, "Bench")
    bad["fields"]["day"]["exercises"][0]["createdAt"] = 1e20
    naive = _split_record("S2", name="Naive")
    naive["updated_at"] = "2024-06-01T12:30:00"
    report = MergeResolver(store).merge([bad, _split_record(), naive])
    assert report.skipped == ["R9"]
    assert store.completed_for_date("2024-06-02") is None
    assert store.get("S1") is not None
    assert store.get("S2").updated_at.tzinfo is not None
    assert [s.id for s in store.splits()] == ["S1", "S2"]
