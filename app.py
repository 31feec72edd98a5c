from __future__ import annotations
import datetime
import logging
from typing import Optional

from app_state import AppState
from config import YamlConfig, setup_logging
from db import AsyncSyncLogRepository, SettingsRepository
from events import EventBus
from local_store import LocalStore
from models import Day
from profile_service import MetricsProvider, ProfileService
from sync_service import NetworkMonitor, SyncCoordinator
from workout_service import WorkoutService

_LOGGER = logging.getLogger(__name__)


class LiftSyncApp:
    """Wires the store, services and sync coordinator from settings."""

    def __init__(
        self,
        db_path: str = "liftsync.db",
        settings_path: str = "settings.yaml",
        provider: Optional[MetricsProvider] = None,
        network: Optional[NetworkMonitor] = None,
    ) -> None:
        self.config = YamlConfig(settings_path)
        self.settings = self.config.settings()
        setup_logging(self.settings.log_level)
        self.events = EventBus()
        self.store = LocalStore(db_path)
        self.settings_repo = SettingsRepository(db_path)
        self.state = AppState.load(self.settings_repo)
        self.profiles = ProfileService(self.store, self.events, provider)
        if not self.store.has_profile():
            profile = self.store.profile()
            profile.weight_unit = self.settings.weight_unit
            profile.round_set_weights = self.settings.round_set_weights
            profile.rest_days_per_week = self.settings.rest_days_per_week
            self.store.save()
        self.sync = SyncCoordinator.from_settings(
            self.store,
            self.state,
            self.settings,
            settings_repo=self.settings_repo,
            events=self.events,
            network=network,
            log_repo=AsyncSyncLogRepository(db_path),
        )
        self.workouts = WorkoutService(
            self.store,
            self.state,
            settings_repo=self.settings_repo,
            events=self.events,
            profiles=self.profiles,
            sync=self.sync,
        )

    def on_foreground(self, now: Optional[datetime.datetime] = None) -> Optional[Day]:
        """Refresh derived state when the app comes to the front."""
        now = now or datetime.datetime.now()
        self.profiles.check_streak(now)
        return self.workouts.today(now)

    def close(self) -> None:
        self.sync.close()
        if self.store.has_pending_changes:
            self.store.save()
