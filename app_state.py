from __future__ import annotations
import datetime
from dataclasses import dataclass, field
from typing import Optional

from db import SettingsRepository


@dataclass
class AppState:
    """Mutable runtime state, loaded and saved at explicit points."""

    day_in_split: int = 1
    last_update: datetime.datetime = field(default_factory=datetime.datetime.now)
    sync_cursor: Optional[str] = None
    last_sync: Optional[datetime.datetime] = None

    @classmethod
    def load(cls, repo: SettingsRepository) -> AppState:
        state = cls()
        state.day_in_split = repo.get_int("day_in_split", 1)
        last_update = repo.get_text("last_update", "")
        if last_update:
            state.last_update = datetime.datetime.fromisoformat(last_update)
        state.sync_cursor = repo.get_text("sync_cursor", "") or None
        last_sync = repo.get_text("last_sync", "")
        if last_sync:
            state.last_sync = datetime.datetime.fromisoformat(last_sync)
        return state

    def save(self, repo: SettingsRepository) -> None:
        repo.set_many(
            {
                "day_in_split": str(self.day_in_split),
                "last_update": self.last_update.isoformat(),
                "sync_cursor": self.sync_cursor or "",
                "last_sync": self.last_sync.isoformat() if self.last_sync else "",
            }
        )
