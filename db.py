import sqlite3
import aiosqlite
import datetime
from contextlib import contextmanager, asynccontextmanager
from typing import List, Tuple, Optional, Iterable

from models import (
    CompletedDayRecord,
    Day,
    Exercise,
    Profile,
    Split,
    WeightPoint,
    WorkoutSet,
    as_utc,
)


def _ts(value: Optional[datetime.datetime]) -> Optional[str]:
    return value.isoformat() if value is not None else None


def _parse_ts(value: Optional[str]) -> Optional[datetime.datetime]:
    if not value:
        return None
    return as_utc(datetime.datetime.fromisoformat(value))


def _parse_date(value: Optional[str]) -> Optional[datetime.date]:
    if not value:
        return None
    return datetime.date.fromisoformat(value)


class Database:
    """Provides SQLite connection management and schema initialization."""

    _TABLE_DEFINITIONS = {
        "splits": (
            """CREATE TABLE splits (
                    id TEXT PRIMARY KEY,
                    name TEXT NOT NULL,
                    is_active INTEGER NOT NULL DEFAULT 0,
                    start_date TEXT NOT NULL,
                    updated_at TEXT NOT NULL,
                    dirty INTEGER NOT NULL DEFAULT 1
                );""",
            ["id", "name", "is_active", "start_date", "updated_at", "dirty"],
        ),
        "days": (
            """CREATE TABLE days (
                    id TEXT PRIMARY KEY,
                    split_id TEXT,
                    name TEXT NOT NULL,
                    day_of_split INTEGER NOT NULL,
                    is_rest_day INTEGER NOT NULL DEFAULT 0,
                    date TEXT NOT NULL DEFAULT '',
                    position INTEGER NOT NULL DEFAULT 0,
                    updated_at TEXT NOT NULL,
                    dirty INTEGER NOT NULL DEFAULT 1
                );""",
            [
                "id",
                "split_id",
                "name",
                "day_of_split",
                "is_rest_day",
                "date",
                "position",
                "updated_at",
                "dirty",
            ],
        ),
        "exercises": (
            """CREATE TABLE exercises (
                    id TEXT PRIMARY KEY,
                    day_id TEXT NOT NULL,
                    name TEXT NOT NULL,
                    rep_goal TEXT NOT NULL DEFAULT '',
                    muscle_group TEXT NOT NULL,
                    exercise_order INTEGER NOT NULL DEFAULT 0,
                    done INTEGER NOT NULL DEFAULT 0,
                    completed_at TEXT,
                    created_at TEXT NOT NULL,
                    position INTEGER NOT NULL DEFAULT 0,
                    updated_at TEXT NOT NULL,
                    dirty INTEGER NOT NULL DEFAULT 1
                );""",
            [
                "id",
                "day_id",
                "name",
                "rep_goal",
                "muscle_group",
                "exercise_order",
                "done",
                "completed_at",
                "created_at",
                "position",
                "updated_at",
                "dirty",
            ],
        ),
        "sets": (
            """CREATE TABLE sets (
                    id TEXT PRIMARY KEY,
                    exercise_id TEXT NOT NULL,
                    weight REAL NOT NULL DEFAULT 0,
                    reps INTEGER NOT NULL DEFAULT 0,
                    failure INTEGER NOT NULL DEFAULT 0,
                    warm_up INTEGER NOT NULL DEFAULT 0,
                    rest_pause INTEGER NOT NULL DEFAULT 0,
                    drop_set INTEGER NOT NULL DEFAULT 0,
                    time TEXT NOT NULL DEFAULT '',
                    note TEXT NOT NULL DEFAULT '',
                    body_weight INTEGER NOT NULL DEFAULT 0,
                    created_at TEXT NOT NULL,
                    position INTEGER NOT NULL DEFAULT 0,
                    updated_at TEXT NOT NULL,
                    dirty INTEGER NOT NULL DEFAULT 1
                );""",
            [
                "id",
                "exercise_id",
                "weight",
                "reps",
                "failure",
                "warm_up",
                "rest_pause",
                "drop_set",
                "time",
                "note",
                "body_weight",
                "created_at",
                "position",
                "updated_at",
                "dirty",
            ],
        ),
        "completed_days": (
            """CREATE TABLE completed_days (
                    id TEXT PRIMARY KEY,
                    date TEXT NOT NULL UNIQUE,
                    day_id TEXT NOT NULL,
                    updated_at TEXT NOT NULL,
                    dirty INTEGER NOT NULL DEFAULT 1
                );""",
            ["id", "date", "day_id", "updated_at", "dirty"],
        ),
        "weight_points": (
            """CREATE TABLE weight_points (
                    id TEXT PRIMARY KEY,
                    date TEXT NOT NULL,
                    weight REAL NOT NULL,
                    updated_at TEXT NOT NULL,
                    dirty INTEGER NOT NULL DEFAULT 1
                );""",
            ["id", "date", "weight", "updated_at", "dirty"],
        ),
        "profile": (
            """CREATE TABLE profile (
                    id TEXT PRIMARY KEY,
                    username TEXT NOT NULL,
                    height REAL NOT NULL DEFAULT 0,
                    weight REAL NOT NULL DEFAULT 0,
                    age INTEGER NOT NULL DEFAULT 0,
                    bmi REAL NOT NULL DEFAULT 0,
                    weight_unit TEXT NOT NULL DEFAULT 'kg',
                    round_set_weights INTEGER NOT NULL DEFAULT 0,
                    is_health_enabled INTEGER NOT NULL DEFAULT 0,
                    current_streak INTEGER NOT NULL DEFAULT 0,
                    longest_streak INTEGER NOT NULL DEFAULT 0,
                    last_workout_date TEXT,
                    rest_days_per_week INTEGER NOT NULL DEFAULT 2,
                    streak_paused INTEGER NOT NULL DEFAULT 0,
                    updated_at TEXT NOT NULL,
                    dirty INTEGER NOT NULL DEFAULT 1
                );""",
            [
                "id",
                "username",
                "height",
                "weight",
                "age",
                "bmi",
                "weight_unit",
                "round_set_weights",
                "is_health_enabled",
                "current_streak",
                "longest_streak",
                "last_workout_date",
                "rest_days_per_week",
                "streak_paused",
                "updated_at",
                "dirty",
            ],
        ),
        "tombstones": (
            """CREATE TABLE tombstones (
                    entity_id TEXT PRIMARY KEY,
                    kind TEXT NOT NULL,
                    deleted_at TEXT NOT NULL
                );""",
            ["entity_id", "kind", "deleted_at"],
        ),
        "settings": (
            """CREATE TABLE settings (
                    key TEXT PRIMARY KEY,
                    value TEXT NOT NULL
                );""",
            ["key", "value"],
        ),
        "sync_log": (
            """CREATE TABLE sync_log (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    timestamp TEXT NOT NULL,
                    direction TEXT NOT NULL,
                    outcome TEXT NOT NULL,
                    records INTEGER NOT NULL DEFAULT 0,
                    message TEXT
                );""",
            ["id", "timestamp", "direction", "outcome", "records", "message"],
        ),
    }

    _INDEX_DEFINITIONS = [
        "CREATE UNIQUE INDEX IF NOT EXISTS idx_completed_days_date ON completed_days(date);",
        "CREATE INDEX IF NOT EXISTS idx_days_split ON days(split_id);",
        "CREATE INDEX IF NOT EXISTS idx_exercises_day ON exercises(day_id);",
        "CREATE INDEX IF NOT EXISTS idx_sets_exercise ON sets(exercise_id);",
    ]

    _ZERO_DEFAULT_COLUMNS = {
        "position",
        "done",
        "is_rest_day",
        "records",
        "is_active",
        "exercise_order",
        "weight",
        "reps",
        "failure",
        "warm_up",
        "rest_pause",
        "drop_set",
        "body_weight",
        "height",
        "age",
        "bmi",
        "round_set_weights",
        "is_health_enabled",
        "current_streak",
        "longest_streak",
        "streak_paused",
    }

    def __init__(self, db_path: str = "liftsync.db") -> None:
        self._db_path = db_path
        self._ensure_schema()
        self._ensure_indexes()

    @contextmanager
    def _connection(self):
        connection = sqlite3.connect(self._db_path)
        try:
            yield connection
            connection.commit()
        finally:
            connection.close()

    def transaction(self):
        """Open a connection whose writes commit together or not at all."""
        return self._connection()

    def _ensure_schema(self) -> None:
        with self._connection() as conn:
            for table, (sql, columns) in self._TABLE_DEFINITIONS.items():
                self._ensure_table(conn, table, sql, columns)

    def _ensure_indexes(self) -> None:
        """Create lookup indexes, notably the unique completion-date key."""
        with self._connection() as conn:
            for sql in self._INDEX_DEFINITIONS:
                conn.execute(sql)

    def _ensure_table(
        self, conn: sqlite3.Connection, table: str, sql: str, columns: List[str]
    ) -> None:
        cur = conn.execute(
            "SELECT name FROM sqlite_master WHERE type='table' AND name=?;", (table,)
        )
        if cur.fetchone() is None:
            conn.execute(sql)
            return

        cur = conn.execute(f"PRAGMA table_info({table});")
        existing_cols = [row[1] for row in cur.fetchall()]
        if existing_cols == columns:
            return

        conn.execute(f"DROP TABLE IF EXISTS {table}_old;")
        conn.execute(f"ALTER TABLE {table} RENAME TO {table}_old;")
        conn.execute(sql)

        common = [c for c in existing_cols if c in columns]
        if common:
            cols = ", ".join(common)
            missing = [c for c in columns if c not in existing_cols]
            if missing:
                def default_val(col: str) -> str:
                    if col == "dirty":
                        return "1"
                    if col in self._ZERO_DEFAULT_COLUMNS:
                        return "0"
                    if col == "muscle_group":
                        return "'Chest'"
                    if col == "username":
                        return "'User'"
                    if col in ("updated_at", "created_at", "timestamp"):
                        return "CURRENT_TIMESTAMP"
                    if col in ("rep_goal", "time", "note", "date"):
                        return "''"
                    if col == "weight_unit":
                        return "'kg'"
                    if col == "rest_days_per_week":
                        return "2"
                    return "NULL"

                defaults = ", ".join(default_val(c) for c in missing)
                conn.execute(
                    f"INSERT INTO {table} ({cols}, {', '.join(missing)}) SELECT {cols}, {defaults} FROM {table}_old;"
                )
            else:
                conn.execute(
                    f"INSERT INTO {table} ({cols}) SELECT {cols} FROM {table}_old;"
                )
        conn.execute(f"DROP TABLE {table}_old;")


class BaseRepository(Database):
    """Base repository providing helper methods."""

    def fetch_all(self, query: str, params: Tuple = ()) -> List[Tuple]:
        with self._connection() as conn:
            cursor = conn.cursor()
            cursor.execute(query, params)
            return cursor.fetchall()


class AsyncDatabase(Database):
    """Provides asynchronous connection management."""

    @asynccontextmanager
    async def _async_connection(self):
        conn = await aiosqlite.connect(self._db_path)
        try:
            yield conn
            await conn.commit()
        finally:
            await conn.close()


class AsyncBaseRepository(AsyncDatabase):
    """Asynchronous variant of BaseRepository using aiosqlite."""

    async def execute(self, query: str, params: Tuple = ()) -> int:
        async with self._async_connection() as conn:
            cursor = await conn.execute(query, params)
            await conn.commit()
            return cursor.lastrowid

    async def fetch_all(self, query: str, params: Tuple = ()) -> List[Tuple]:
        async with self._async_connection() as conn:
            cursor = await conn.execute(query, params)
            rows = await cursor.fetchall()
            return rows

    async def _delete_all(self, table: str) -> None:
        await self.execute(f"DELETE FROM {table};")


class SplitRepository(BaseRepository):
    """Repository for split rows."""

    def upsert(self, conn: sqlite3.Connection, split: Split) -> None:
        conn.execute(
            "INSERT INTO splits (id, name, is_active, start_date, updated_at, dirty) "
            "VALUES (?, ?, ?, ?, ?, ?) "
            "ON CONFLICT(id) DO UPDATE SET name=excluded.name, is_active=excluded.is_active, "
            "start_date=excluded.start_date, updated_at=excluded.updated_at, dirty=excluded.dirty;",
            (
                split.id,
                split.name,
                int(split.is_active),
                _ts(split.start_date),
                _ts(split.updated_at),
                int(split.dirty),
            ),
        )

    def delete(self, conn: sqlite3.Connection, split_id: str) -> None:
        conn.execute("DELETE FROM splits WHERE id = ?;", (split_id,))

    def fetch_all_splits(self) -> List[Split]:
        rows = self.fetch_all(
            "SELECT id, name, is_active, start_date, updated_at, dirty "
            "FROM splits ORDER BY start_date, id;"
        )
        return [
            Split(
                id=r[0],
                name=r[1],
                is_active=bool(r[2]),
                start_date=_parse_ts(r[3]),
                updated_at=_parse_ts(r[4]),
                dirty=bool(r[5]),
            )
            for r in rows
        ]

    def active_count(self) -> int:
        rows = self.fetch_all("SELECT COUNT(*) FROM splits WHERE is_active = 1;")
        return int(rows[0][0])


class DayRepository(BaseRepository):
    """Repository for split days and completed-day snapshots."""

    def upsert(
        self,
        conn: sqlite3.Connection,
        day: Day,
        split_id: Optional[str],
        position: int,
    ) -> None:
        conn.execute(
            "INSERT INTO days (id, split_id, name, day_of_split, is_rest_day, date, position, updated_at, dirty) "
            "VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?) "
            "ON CONFLICT(id) DO UPDATE SET split_id=excluded.split_id, name=excluded.name, "
            "day_of_split=excluded.day_of_split, is_rest_day=excluded.is_rest_day, date=excluded.date, "
            "position=excluded.position, updated_at=excluded.updated_at, dirty=excluded.dirty;",
            (
                day.id,
                split_id,
                day.name,
                day.day_of_split,
                int(day.is_rest_day),
                day.date,
                position,
                _ts(day.updated_at),
                int(day.dirty),
            ),
        )

    def delete(self, conn: sqlite3.Connection, day_id: str) -> None:
        conn.execute("DELETE FROM days WHERE id = ?;", (day_id,))

    def fetch_all_days(self) -> List[Tuple[Optional[str], Day]]:
        rows = self.fetch_all(
            "SELECT id, split_id, name, day_of_split, is_rest_day, date, updated_at, dirty "
            "FROM days ORDER BY position, day_of_split;"
        )
        return [
            (
                r[1],
                Day(
                    id=r[0],
                    name=r[2],
                    day_of_split=int(r[3]),
                    is_rest_day=bool(r[4]),
                    date=r[5],
                    updated_at=_parse_ts(r[6]),
                    dirty=bool(r[7]),
                ),
            )
            for r in rows
        ]


class ExerciseRepository(BaseRepository):
    """Repository for exercises within a day."""

    def upsert(
        self, conn: sqlite3.Connection, exercise: Exercise, day_id: str, position: int
    ) -> None:
        conn.execute(
            "INSERT INTO exercises (id, day_id, name, rep_goal, muscle_group, exercise_order, done, "
            "completed_at, created_at, position, updated_at, dirty) "
            "VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?) "
            "ON CONFLICT(id) DO UPDATE SET day_id=excluded.day_id, name=excluded.name, "
            "rep_goal=excluded.rep_goal, muscle_group=excluded.muscle_group, "
            "exercise_order=excluded.exercise_order, done=excluded.done, "
            "completed_at=excluded.completed_at, created_at=excluded.created_at, "
            "position=excluded.position, updated_at=excluded.updated_at, dirty=excluded.dirty;",
            (
                exercise.id,
                day_id,
                exercise.name,
                exercise.rep_goal,
                exercise.muscle_group,
                exercise.exercise_order,
                int(exercise.done),
                _ts(exercise.completed_at),
                _ts(exercise.created_at),
                position,
                _ts(exercise.updated_at),
                int(exercise.dirty),
            ),
        )

    def delete(self, conn: sqlite3.Connection, exercise_id: str) -> None:
        conn.execute("DELETE FROM exercises WHERE id = ?;", (exercise_id,))

    def fetch_all_exercises(self) -> List[Tuple[str, Exercise]]:
        rows = self.fetch_all(
            "SELECT id, day_id, name, rep_goal, muscle_group, exercise_order, done, "
            "completed_at, created_at, updated_at, dirty FROM exercises ORDER BY position;"
        )
        return [
            (
                r[1],
                Exercise(
                    id=r[0],
                    name=r[2],
                    rep_goal=r[3],
                    muscle_group=r[4],
                    exercise_order=int(r[5]),
                    done=bool(r[6]),
                    completed_at=_parse_ts(r[7]),
                    created_at=_parse_ts(r[8]),
                    updated_at=_parse_ts(r[9]),
                    dirty=bool(r[10]),
                ),
            )
            for r in rows
        ]


class SetRepository(BaseRepository):
    """Repository for sets within an exercise. Weights are kilograms."""

    def upsert(
        self,
        conn: sqlite3.Connection,
        workout_set: WorkoutSet,
        exercise_id: str,
        position: int,
    ) -> None:
        conn.execute(
            "INSERT INTO sets (id, exercise_id, weight, reps, failure, warm_up, rest_pause, drop_set, "
            "time, note, body_weight, created_at, position, updated_at, dirty) "
            "VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?) "
            "ON CONFLICT(id) DO UPDATE SET exercise_id=excluded.exercise_id, weight=excluded.weight, "
            "reps=excluded.reps, failure=excluded.failure, warm_up=excluded.warm_up, "
            "rest_pause=excluded.rest_pause, drop_set=excluded.drop_set, time=excluded.time, "
            "note=excluded.note, body_weight=excluded.body_weight, created_at=excluded.created_at, "
            "position=excluded.position, updated_at=excluded.updated_at, dirty=excluded.dirty;",
            (
                workout_set.id,
                exercise_id,
                workout_set.weight,
                workout_set.reps,
                int(workout_set.failure),
                int(workout_set.warm_up),
                int(workout_set.rest_pause),
                int(workout_set.drop_set),
                workout_set.time,
                workout_set.note,
                int(workout_set.body_weight),
                _ts(workout_set.created_at),
                position,
                _ts(workout_set.updated_at),
                int(workout_set.dirty),
            ),
        )

    def delete(self, conn: sqlite3.Connection, set_id: str) -> None:
        conn.execute("DELETE FROM sets WHERE id = ?;", (set_id,))

    def fetch_all_sets(self) -> List[Tuple[str, WorkoutSet]]:
        rows = self.fetch_all(
            "SELECT id, exercise_id, weight, reps, failure, warm_up, rest_pause, drop_set, "
            "time, note, body_weight, created_at, updated_at, dirty FROM sets ORDER BY position;"
        )
        return [
            (
                r[1],
                WorkoutSet(
                    id=r[0],
                    weight=float(r[2]),
                    reps=int(r[3]),
                    failure=bool(r[4]),
                    warm_up=bool(r[5]),
                    rest_pause=bool(r[6]),
                    drop_set=bool(r[7]),
                    time=r[8],
                    note=r[9],
                    body_weight=bool(r[10]),
                    created_at=_parse_ts(r[11]),
                    updated_at=_parse_ts(r[12]),
                    dirty=bool(r[13]),
                ),
            )
            for r in rows
        ]


class CompletedDayRepository(BaseRepository):
    """Repository for completed-workout history keyed by calendar date."""

    def upsert(self, conn: sqlite3.Connection, record: CompletedDayRecord) -> None:
        conn.execute(
            "INSERT INTO completed_days (id, date, day_id, updated_at, dirty) VALUES (?, ?, ?, ?, ?) "
            "ON CONFLICT(id) DO UPDATE SET date=excluded.date, day_id=excluded.day_id, "
            "updated_at=excluded.updated_at, dirty=excluded.dirty;",
            (
                record.id,
                record.date,
                record.day.id,
                _ts(record.updated_at),
                int(record.dirty),
            ),
        )

    def delete(self, conn: sqlite3.Connection, record_id: str) -> None:
        conn.execute("DELETE FROM completed_days WHERE id = ?;", (record_id,))

    def fetch_all_records(self) -> List[Tuple[str, str, str, datetime.datetime, bool]]:
        rows = self.fetch_all(
            "SELECT id, date, day_id, updated_at, dirty FROM completed_days ORDER BY date;"
        )
        return [(r[0], r[1], r[2], _parse_ts(r[3]), bool(r[4])) for r in rows]

    def count_for_date(self, date: str) -> int:
        rows = self.fetch_all(
            "SELECT COUNT(*) FROM completed_days WHERE date = ?;",
            (date,),
        )
        return int(rows[0][0])


class WeightPointRepository(BaseRepository):
    """Repository for body weight history."""

    def upsert(self, conn: sqlite3.Connection, point: WeightPoint) -> None:
        if point.weight <= 0:
            raise ValueError("weight must be positive")
        conn.execute(
            "INSERT INTO weight_points (id, date, weight, updated_at, dirty) VALUES (?, ?, ?, ?, ?) "
            "ON CONFLICT(id) DO UPDATE SET date=excluded.date, weight=excluded.weight, "
            "updated_at=excluded.updated_at, dirty=excluded.dirty;",
            (point.id, _ts(point.date), point.weight, _ts(point.updated_at), int(point.dirty)),
        )

    def delete(self, conn: sqlite3.Connection, point_id: str) -> None:
        conn.execute("DELETE FROM weight_points WHERE id = ?;", (point_id,))

    def fetch_history(self) -> List[WeightPoint]:
        rows = self.fetch_all(
            "SELECT id, date, weight, updated_at, dirty FROM weight_points ORDER BY date;"
        )
        return [
            WeightPoint(
                id=r[0],
                date=_parse_ts(r[1]),
                weight=float(r[2]),
                updated_at=_parse_ts(r[3]),
                dirty=bool(r[4]),
            )
            for r in rows
        ]


class ProfileRepository(BaseRepository):
    """Repository for the singleton user profile."""

    def upsert(self, conn: sqlite3.Connection, profile: Profile) -> None:
        conn.execute(
            "INSERT INTO profile (id, username, height, weight, age, bmi, weight_unit, round_set_weights, "
            "is_health_enabled, current_streak, longest_streak, last_workout_date, rest_days_per_week, "
            "streak_paused, updated_at, dirty) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?) "
            "ON CONFLICT(id) DO UPDATE SET username=excluded.username, height=excluded.height, "
            "weight=excluded.weight, age=excluded.age, bmi=excluded.bmi, weight_unit=excluded.weight_unit, "
            "round_set_weights=excluded.round_set_weights, is_health_enabled=excluded.is_health_enabled, "
            "current_streak=excluded.current_streak, longest_streak=excluded.longest_streak, "
            "last_workout_date=excluded.last_workout_date, rest_days_per_week=excluded.rest_days_per_week, "
            "streak_paused=excluded.streak_paused, updated_at=excluded.updated_at, dirty=excluded.dirty;",
            (
                profile.id,
                profile.username,
                profile.height,
                profile.weight,
                profile.age,
                profile.bmi,
                profile.weight_unit,
                int(profile.round_set_weights),
                int(profile.is_health_enabled),
                profile.current_streak,
                profile.longest_streak,
                profile.last_workout_date.isoformat() if profile.last_workout_date else None,
                profile.rest_days_per_week,
                int(profile.streak_paused),
                _ts(profile.updated_at),
                int(profile.dirty),
            ),
        )

    def delete(self, conn: sqlite3.Connection, profile_id: str) -> None:
        conn.execute("DELETE FROM profile WHERE id = ?;", (profile_id,))

    def fetch_profile(self) -> Optional[Profile]:
        rows = self.fetch_all(
            "SELECT id, username, height, weight, age, bmi, weight_unit, round_set_weights, "
            "is_health_enabled, current_streak, longest_streak, last_workout_date, "
            "rest_days_per_week, streak_paused, updated_at, dirty FROM profile LIMIT 1;"
        )
        if not rows:
            return None
        r = rows[0]
        return Profile(
            id=r[0],
            username=r[1],
            height=float(r[2]),
            weight=float(r[3]),
            age=int(r[4]),
            bmi=float(r[5]),
            weight_unit=r[6],
            round_set_weights=bool(r[7]),
            is_health_enabled=bool(r[8]),
            current_streak=int(r[9]),
            longest_streak=int(r[10]),
            last_workout_date=_parse_date(r[11]),
            rest_days_per_week=int(r[12]),
            streak_paused=bool(r[13]),
            updated_at=_parse_ts(r[14]),
            dirty=bool(r[15]),
        )


class TombstoneRepository(BaseRepository):
    """Outbox of local deletes waiting to be propagated to the remote store."""

    def add(self, conn: sqlite3.Connection, kind: str, entity_id: str) -> None:
        conn.execute(
            "INSERT OR REPLACE INTO tombstones (entity_id, kind, deleted_at) VALUES (?, ?, ?);",
            (entity_id, kind, datetime.datetime.now(datetime.timezone.utc).isoformat()),
        )

    def remove(self, conn: sqlite3.Connection, entity_id: str) -> None:
        conn.execute("DELETE FROM tombstones WHERE entity_id = ?;", (entity_id,))

    def fetch_all_tombstones(self) -> List[Tuple[str, str]]:
        rows = self.fetch_all(
            "SELECT kind, entity_id FROM tombstones ORDER BY deleted_at, entity_id;"
        )
        return [(r[0], r[1]) for r in rows]

    def clear(self, entity_ids: Iterable[str]) -> None:
        with self._connection() as conn:
            for entity_id in entity_ids:
                self.remove(conn, entity_id)


class SettingsRepository(BaseRepository):
    """Key/value store for runtime state that survives restarts."""

    def get_text(self, key: str, default: str) -> str:
        rows = self.fetch_all("SELECT value FROM settings WHERE key = ?;", (key,))
        return rows[0][0] if rows else default

    def get_int(self, key: str, default: int) -> int:
        try:
            return int(float(self.get_text(key, str(default))))
        except ValueError:
            return default

    def set_many(self, values: dict[str, str]) -> None:
        with self._connection() as conn:
            for key, value in values.items():
                conn.execute(
                    "INSERT INTO settings (key, value) VALUES (?, ?) "
                    "ON CONFLICT(key) DO UPDATE SET value=excluded.value;",
                    (key, value),
                )


class AsyncSyncLogRepository(AsyncBaseRepository):
    """Async repository recording each sync attempt."""

    async def add(
        self,
        direction: str,
        outcome: str,
        records: int = 0,
        message: str | None = None,
    ) -> int:
        return await self.execute(
            "INSERT INTO sync_log (timestamp, direction, outcome, records, message) "
            "VALUES (?, ?, ?, ?, ?);",
            (
                datetime.datetime.now(datetime.timezone.utc).isoformat(),
                direction,
                outcome,
                records,
                message,
            ),
        )

    async def fetch_recent(self, limit: int = 20) -> List[Tuple]:
        return await self.fetch_all(
            "SELECT timestamp, direction, outcome, records, message FROM sync_log "
            "ORDER BY id DESC LIMIT ?;",
            (limit,),
        )

    async def delete_all(self) -> None:
        await self._delete_all("sync_log")
