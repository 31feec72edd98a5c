import asyncio
import datetime
import json
import os
import sys
import unittest

import pytest

sys.path.append(os.path.dirname(os.path.dirname(__file__)))
from interchange import (
    ImportValidationError,
    REFERENCE_DATE,
    export_split,
    export_split_file,
    import_split,
    import_split_file,
    parse_split,
)
from local_store import LocalStore
from models import Day, Exercise, Split, WorkoutSet, walk


def _document() -> dict:
    return {
        "id": "0A1B",
        "name": "Push Pull Legs",
        "isActive": True,
        "startDate": "2024-05-01T08:00:00Z",
        "days": [
            {
                "id": "D1",
                "name": "Push",
                "dayOfSplit": 1,
                "date": "",
                "isRestDay": False,
                "exercises": [
                    {
                        "id": "E1",
                        "name": "Bench Press",
                        "repGoal": "6-8",
                        "muscleGroup": "Chest",
                        "exerciseOrder": 1,
                        "sets": [
                            {"id": "S1", "weight": 80, "reps": 8, "failure": False, "warmUp": True},
                            {"id": "S2", "weight": 85.5, "reps": 6, "dropSet": True},
                        ],
                    }
                ],
            },
            {"id": "D2", "name": "Rest", "dayOfSplit": 2, "isRestDay": True, "exercises": None},
        ],
    }


class ImportTestCase(unittest.TestCase):
    def setUp(self) -> None:
        self.path = "interchange_test.db"
        if os.path.exists(self.path):
            os.remove(self.path)
        self.store = LocalStore(self.path)

    def tearDown(self) -> None:
        if os.path.exists(self.path):
            os.remove(self.path)

    def test_import_builds_fresh_tree(self) -> None:
        split = import_split(self.store, json.dumps(_document()))
        self.assertEqual(split.name, "Push Pull Legs")
        self.assertTrue(split.is_active)
        ids = {e.id for e in walk(split)}
        self.assertFalse(ids & {"0A1B", "D1", "D2", "E1", "S1", "S2"})
        bench = split.days[0].exercises[0]
        self.assertEqual(bench.rep_goal, "6-8")
        self.assertEqual([s.weight for s in bench.sets], [80.0, 85.5])
        self.assertTrue(bench.sets[0].warm_up)
        self.assertTrue(split.days[1].is_rest_day)
        self.assertEqual(split.start_date, datetime.datetime(2024, 5, 1, 8, tzinfo=datetime.timezone.utc))

    def test_import_twice_gives_disjoint_trees(self) -> None:
        first = import_split(self.store, _document())
        second = import_split(self.store, _document())
        self.assertFalse({e.id for e in walk(first)} & {e.id for e in walk(second)})
        self.assertEqual(len(self.store.splits()), 2)
        self.assertEqual(sum(s.is_active for s in self.store.splits()), 1)
        self.assertIs(self.store.active_split(), second)

    def test_import_is_persisted(self) -> None:
        split = import_split(self.store, _document())
        reloaded = LocalStore(self.path)
        self.assertEqual(reloaded.get(split.id).days[0].exercises[0].name, "Bench Press")

    def test_missing_field(self) -> None:
        doc = _document()
        del doc["days"][0]["exercises"][0]["muscleGroup"]
        with self.assertRaises(ImportValidationError) as ctx:
            import_split(self.store, doc)
        self.assertEqual(ctx.exception.kind, "missing-field")
        self.assertEqual(self.store.splits(), [])

    def test_type_mismatch(self) -> None:
        doc = _document()
        doc["days"][0]["exercises"][0]["sets"][0]["reps"] = "eight"
        with self.assertRaises(ImportValidationError) as ctx:
            import_split(self.store, doc)
        self.assertEqual(ctx.exception.kind, "type-mismatch")
        self.assertFalse(self.store.has_pending_changes)

    def test_corrupt_payload(self) -> None:
        with self.assertRaises(ImportValidationError) as ctx:
            import_split(self.store, '{"name": "broken"')
        self.assertEqual(ctx.exception.kind, "corrupt-payload")
        with self.assertRaises(ImportValidationError) as ctx:
            import_split(self.store, "[1, 2]")
        self.assertEqual(ctx.exception.kind, "corrupt-payload")

    def test_empty_name_and_no_days(self) -> None:
        doc = _document()
        doc["name"] = "   "
        with self.assertRaises(ImportValidationError) as ctx:
            parse_split(doc)
        self.assertEqual(ctx.exception.kind, "missing-field")
        doc = _document()
        doc["days"] = []
        with self.assertRaises(ImportValidationError) as ctx:
            parse_split(doc)
        self.assertEqual(ctx.exception.kind, "missing-field")

    def test_unknown_muscle_group(self) -> None:
        doc = _document()
        doc["days"][0]["exercises"][0]["muscleGroup"] = "Forearms"
        with self.assertRaises(ImportValidationError) as ctx:
            parse_split(doc)
        self.assertEqual(ctx.exception.kind, "invalid-value")

    def test_out_of_range_timestamp(self) -> None:
        for seconds in (1e20, 1e13):
            doc = _document()
            doc["startDate"] = seconds
            with self.assertRaises(ImportValidationError) as ctx:
                import_split(self.store, doc)
            self.assertEqual(ctx.exception.kind, "invalid-value")
        doc = _document()
        doc["days"][0]["exercises"][0]["sets"][0]["createdAt"] = -1e20
        with self.assertRaises(ImportValidationError) as ctx:
            import_split(self.store, doc)
        self.assertEqual(ctx.exception.kind, "invalid-value")
        self.assertEqual(self.store.splits(), [])
        self.assertFalse(self.store.has_pending_changes)


def test_reference_date_seconds_accepted():
    doc = _document()
    doc["startDate"] = 86400
    parsed = parse_split(doc)
    assert parsed.start_date == REFERENCE_DATE + datetime.timedelta(days=1)


def test_export_preserves_ids_and_fields():
    bench = Exercise(
        name="Bench", rep_goal="AMRAP", muscle_group="Chest", exercise_order=1,
        sets=[WorkoutSet(weight=70.0, reps=10, rest_pause=True, note="paused")],
    )
    split = Split(name="Upper", days=[Day(name="A", day_of_split=1, exercises=[bench])])
    doc = json.loads(export_split(split))
    assert doc["id"] == split.id
    assert doc["days"][0]["exercises"][0]["id"] == bench.id
    exported_set = doc["days"][0]["exercises"][0]["sets"][0]
    assert exported_set["restPause"] is True
    assert exported_set["note"] == "paused"
    assert doc["days"][0]["exercises"][0]["repGoal"] == "AMRAP"


@pytest.mark.asyncio
async def test_file_round_trip(tmp_path):
    store = LocalStore(str(tmp_path / "files.db"))
    source = Split(name="Full Body", days=[Day(name="A", exercises=[Exercise(name="Squat", muscle_group="Quads")])])
    path = await export_split_file(source, str(tmp_path / "full.json"))
    imported = await import_split_file(store, path)
    assert imported.name == "Full Body"
    assert imported.id != source.id
    assert imported.days[0].exercises[0].muscle_group == "Quads"


@pytest.mark.asyncio
async def test_import_file_rejects_garbage(tmp_path):
    store = LocalStore(str(tmp_path / "files.db"))
    path = tmp_path / "bad.json"
    path.write_bytes(b"\xff\xfe not json")
    with pytest.raises(ImportValidationError):
        await import_split_file(store, str(path))
    assert store.splits() == []
