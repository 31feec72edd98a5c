import os
import sys
import asyncio
import pytest

sys.path.append(os.path.dirname(os.path.dirname(__file__)))
from db import (
    AsyncBaseRepository,
    AsyncSyncLogRepository,
)

class NumberRepository(AsyncBaseRepository):
    async def init_db(self) -> None:
        async with self._async_connection() as conn:
            await conn.execute("CREATE TABLE IF NOT EXISTS numbers (val INTEGER)")
            await conn.commit()

    async def add(self, val: int) -> int:
        return await self.execute("INSERT INTO numbers (val) VALUES (?)", (val,))

    async def all(self):
        rows = await self.fetch_all("SELECT val FROM numbers")
        return [r[0] for r in rows]

@pytest.mark.asyncio
async def test_async_repository(tmp_path):
    repo = NumberRepository(str(tmp_path / "test.db"))
    await repo.init_db()
    await repo.add(5)
    assert await repo.all() == [5]


@pytest.mark.asyncio
async def test_sync_log_repo(tmp_path):
    db_file = str(tmp_path / "log.db")
    repo = AsyncSyncLogRepository(db_file)
    first = await repo.add("sync", "ok", 3)
    second = await repo.add("sync", "timeout", 0, "sync did not finish within 5s")
    assert (first, second) == (1, 2)
    rows = await repo.fetch_recent()
    assert [r[2] for r in rows] == ["timeout", "ok"]
    assert rows[0][4] == "sync did not finish within 5s"
    assert rows[1][3] == 3
    await repo.delete_all()
    assert await repo.fetch_recent() == []


@pytest.mark.asyncio
async def test_sync_log_concurrent_writes(tmp_path):
    repo = AsyncSyncLogRepository(str(tmp_path / "many.db"))
    await asyncio.gather(*(repo.add("sync", "ok", i) for i in range(5)))
    rows = await repo.fetch_recent(limit=10)
    assert sorted(r[3] for r in rows) == [0, 1, 2, 3, 4]
