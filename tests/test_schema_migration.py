import os
import sqlite3
import sys

sys.path.append(os.path.dirname(os.path.dirname(__file__)))
from db import Database
from local_store import LocalStore


class TestSchemaMigration:
    def test_drops_existing_backup_table(self, tmp_path):
        db_file = tmp_path / "test.db"
        conn = sqlite3.connect(str(db_file))
        conn.execute(
            "CREATE TABLE sets (id TEXT PRIMARY KEY, exercise_id TEXT, weight REAL, reps INTEGER, created_at TEXT, updated_at TEXT)"
        )
        conn.execute("CREATE TABLE sets_old (id INTEGER)")
        conn.commit()
        conn.close()

        Database(str(db_file))

        conn = sqlite3.connect(str(db_file))
        cur = conn.execute(
            "SELECT name FROM sqlite_master WHERE type='table' AND name='sets_old'"
        )
        assert cur.fetchone() is None
        cur = conn.execute("PRAGMA table_info(sets)")
        cols = [row[1] for row in cur.fetchall()]
        assert "body_weight" in cols
        assert "drop_set" in cols
        conn.close()

    def test_old_rows_keep_values(self, tmp_path):
        db_file = tmp_path / "old.db"
        conn = sqlite3.connect(str(db_file))
        conn.execute(
            "CREATE TABLE splits (id TEXT PRIMARY KEY, name TEXT, start_date TEXT, updated_at TEXT)"
        )
        conn.execute(
            "INSERT INTO splits VALUES ('S1', 'Legacy', '2024-01-01T00:00:00+00:00', '2024-01-02T00:00:00+00:00')"
        )
        conn.commit()
        conn.close()

        store = LocalStore(str(db_file))
        split = store.get("S1")
        assert split.name == "Legacy"
        assert not split.is_active
        assert split.dirty

    def test_completion_date_index(self, tmp_path):
        db_file = str(tmp_path / "index.db")
        Database(db_file)
        conn = sqlite3.connect(db_file)
        cur = conn.execute("PRAGMA index_list(completed_days)")
        names = [row[1] for row in cur.fetchall()]
        conn.close()
        assert "idx_completed_days_date" in names
