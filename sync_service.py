"""Opportunistic synchronization between the local store and the remote store.

Network calls run in worker threads; pulled records are merged and dirty
markers cleared back on the event loop, so the entity graph is only ever
touched from one context.
"""

from __future__ import annotations
import asyncio
import datetime
import logging
import sqlite3
from dataclasses import dataclass
from enum import IntEnum
from typing import Callable, Optional

from app_state import AppState
from client import AuthExpiredError, RemoteStoreClient, SyncError, SyncTimeoutError
from db import AsyncSyncLogRepository, SettingsRepository
from events import DataMerged, EventBus, SyncStatusChanged
from local_store import LocalStore
from merge_service import MergeResolver
from remote_records import encode_entity
from settings_schema import SettingsSchema

_LOGGER = logging.getLogger(__name__)

POOR_NETWORK_MESSAGE = "Network quality is poor. Sync may take longer than usual."


class NetworkQuality(IntEnum):
    OFFLINE = 0
    POOR = 1
    GOOD = 2
    EXCELLENT = 3

    @property
    def allows_auto_sync(self) -> bool:
        return self >= NetworkQuality.GOOD


class NetworkMonitor:
    """Latest network quality, pushed in by a platform observer."""

    def __init__(self, quality: NetworkQuality = NetworkQuality.GOOD) -> None:
        self._quality = quality
        self._subscribers: list[Callable[[NetworkQuality, NetworkQuality], None]] = []

    @property
    def quality(self) -> NetworkQuality:
        return self._quality

    def subscribe(
        self, callback: Callable[[NetworkQuality, NetworkQuality], None]
    ) -> Callable[[], None]:
        self._subscribers.append(callback)

        def unsubscribe() -> None:
            if callback in self._subscribers:
                self._subscribers.remove(callback)

        return unsubscribe

    def report(self, quality: NetworkQuality) -> None:
        """Record a new reading; subscribers hear only about changes."""
        quality = NetworkQuality(quality)
        if quality == self._quality:
            return
        previous, self._quality = self._quality, quality
        _LOGGER.info("Network quality changed from %s to %s", previous.name, quality.name)
        for callback in list(self._subscribers):
            callback(previous, quality)


@dataclass
class SyncStatus:
    state: str = "idle"
    message: Optional[str] = None
    last_error: Optional[str] = None
    last_sync: Optional[datetime.datetime] = None
    pulled: int = 0
    pushed: int = 0
    timed_out: int = 0
    failed: int = 0


class SyncCoordinator:
    """Decides when to sync and runs pull, merge and push with a deadline."""

    def __init__(
        self,
        store: LocalStore,
        client: Optional[RemoteStoreClient],
        state: AppState,
        settings_repo: Optional[SettingsRepository] = None,
        events: Optional[EventBus] = None,
        network: Optional[NetworkMonitor] = None,
        log_repo: Optional[AsyncSyncLogRepository] = None,
        operation_timeout: float = 5.0,
        budget: float = 60.0,
        auto_sync_interval: float = 300.0,
        enabled: bool = True,
    ) -> None:
        self.store = store
        self.client = client
        self.state = state
        self.settings_repo = settings_repo
        self.events = events or EventBus()
        self.network = network or NetworkMonitor()
        self.log_repo = log_repo
        self.resolver = MergeResolver(store)
        self.operation_timeout = operation_timeout
        self.budget = budget
        self.auto_sync_interval = auto_sync_interval
        self.enabled = enabled and client is not None
        self.status = SyncStatus(last_sync=state.last_sync)
        self._interactive = False
        self._committing = False
        self._suppress_next_auto = False
        self._cancel_requested = False
        self._task: Optional[asyncio.Task] = None
        self._triggered: set[asyncio.Task] = set()
        self._unsubscribe = self.network.subscribe(self._on_network_change)

    @classmethod
    def from_settings(
        cls,
        store: LocalStore,
        state: AppState,
        settings: SettingsSchema,
        settings_repo: Optional[SettingsRepository] = None,
        events: Optional[EventBus] = None,
        network: Optional[NetworkMonitor] = None,
        log_repo: Optional[AsyncSyncLogRepository] = None,
    ) -> SyncCoordinator:
        client = None
        if settings.remote_url:
            token = settings.remote_api_token if isinstance(settings.remote_api_token, str) else None
            client = RemoteStoreClient(settings.remote_url, token or None, settings.sync_timeout)
        return cls(
            store,
            client,
            state,
            settings_repo=settings_repo,
            events=events,
            network=network,
            log_repo=log_repo,
            operation_timeout=settings.sync_timeout,
            budget=settings.sync_budget,
            auto_sync_interval=settings.auto_sync_interval,
            enabled=settings.sync_enabled,
        )

    # -- policy ------------------------------------------------------------

    @property
    def is_syncing(self) -> bool:
        return self._task is not None and not self._task.done()

    @property
    def interactive_session(self) -> bool:
        return self._interactive

    def should_auto_sync(self) -> bool:
        return self.network.quality.allows_auto_sync and not self._interactive

    def set_interactive_session(self, active: bool) -> None:
        """Flag latency-sensitive UI work; a running sync yields to it."""
        self._interactive = active
        if not active or not self.is_syncing:
            return
        if self._committing:
            _LOGGER.info("Interactive session began mid-push; skipping the next auto sync")
            self._suppress_next_auto = True
        else:
            _LOGGER.info("Interactive session began; cancelling the running sync")
            self._cancel_requested = True
            self._task.cancel()

    def _on_network_change(self, previous: NetworkQuality, quality: NetworkQuality) -> None:
        if previous.allows_auto_sync or not quality.allows_auto_sync:
            return
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            return
        task = loop.create_task(self.auto_sync())
        self._triggered.add(task)
        task.add_done_callback(self._trigger_done)

    def _trigger_done(self, task: asyncio.Task) -> None:
        self._triggered.discard(task)
        if task.cancelled():
            return
        error = task.exception()
        if error is not None:
            _LOGGER.error("Network-triggered sync failed", exc_info=error)

    # -- triggers ----------------------------------------------------------

    async def auto_sync(self) -> Optional[SyncStatus]:
        """Sync if policy allows; returns ``None`` when skipped."""
        if not self.enabled or self.is_syncing:
            return None
        if self._suppress_next_auto:
            self._suppress_next_auto = False
            _LOGGER.debug("Auto sync suppressed once after an interrupted session")
            return None
        if not self.should_auto_sync():
            return None
        return await self._run(self.budget)

    async def sync_now(self, budget: Optional[float] = None) -> SyncStatus:
        """Manual sync: ignores network and session gating, keeps the deadline."""
        if not self.enabled:
            self._set_status("disabled", message="Sync is disabled")
            return self.status
        if self.is_syncing:
            return self.status
        message = None
        if self.network.quality == NetworkQuality.POOR:
            message = POOR_NETWORK_MESSAGE
        return await self._run(budget or self.budget, message)

    async def run_periodic(self, interval: Optional[float] = None) -> None:
        """Call ``auto_sync`` every ``interval`` seconds until cancelled."""
        interval = interval or self.auto_sync_interval
        while True:
            await asyncio.sleep(interval)
            await self.auto_sync()

    async def sync_with_timeout(self, operation, budget: Optional[float] = None):
        """Await ``operation`` but abandon it after ``budget`` seconds."""
        budget = budget or self.budget
        try:
            return await asyncio.wait_for(operation, timeout=budget)
        except asyncio.TimeoutError as e:
            raise SyncTimeoutError(f"sync did not finish within {budget:g}s") from e

    # -- running -----------------------------------------------------------

    async def _run(self, budget: float, message: Optional[str] = None) -> SyncStatus:
        self._cancel_requested = False
        self._set_status("syncing", message=message)
        _LOGGER.info("Sync started")
        self._task = asyncio.ensure_future(self.sync_with_timeout(self._sync_once(), budget))
        try:
            pulled, pushed, timed_out, failed = await self._task
        except asyncio.CancelledError:
            if not self._cancel_requested:
                raise
            self._set_status("cancelled", message="Sync cancelled for an interactive session")
            await self._log("sync", "cancelled", 0, None)
            return self.status
        except SyncError as e:
            _LOGGER.warning("Sync failed (%s): %s", e.kind, e)
            self._set_status("error", message=message, error=str(e))
            await self._log("sync", e.kind, 0, str(e))
            return self.status
        except Exception as e:
            _LOGGER.exception("Sync aborted by an unexpected error")
            self._set_status("error", message=message, error=str(e))
            await self._log("sync", "error", 0, str(e))
            return self.status
        finally:
            self._task = None
            self._committing = False

        now = datetime.datetime.now(datetime.timezone.utc)
        self.state.last_sync = now
        if self.settings_repo is not None:
            self.state.save(self.settings_repo)
        problems = []
        if timed_out:
            problems.append(f"{timed_out} timed out")
        if failed:
            problems.append(f"{failed} failed")
        if problems:
            message = f"{pushed} items synced, {' and '.join(problems)} (will retry later)"
        self.status.last_sync = now
        self.status.pulled = pulled
        self.status.pushed = pushed
        self.status.timed_out = timed_out
        self.status.failed = failed
        self._set_status("idle", message=message)
        _LOGGER.info(
            "Sync finished: %d pulled, %d pushed, %d timed out, %d failed",
            pulled,
            pushed,
            timed_out,
            failed,
        )
        await self._log("sync", "partial" if problems else "ok", pulled + pushed, message)
        return self.status

    async def _sync_once(self) -> tuple[int, int, int, int]:
        pulled = await self.pull()
        pushed, timed_out, failed = await self.push()
        return pulled, pushed, timed_out, failed

    async def pull(self) -> int:
        """Fetch remote changes and hand them to the merge resolver."""
        cursor = self.state.sync_cursor
        records, next_cursor = await asyncio.to_thread(self.client.pull, cursor)
        report = self.resolver.merge(records, full_snapshot=cursor is None)
        if next_cursor:
            self.state.sync_cursor = next_cursor
        if report.changes:
            self.events.publish(
                DataMerged(len(report.inserted), len(report.updated), len(report.deleted))
            )
        return len(records)

    async def _call(self, func, *args) -> None:
        await asyncio.wait_for(asyncio.to_thread(func, *args), self.operation_timeout)

    async def push(self) -> tuple[int, int, int]:
        """Send queued deletes and dirty records.

        Returns (sent, timed out, failed). A record that fails stays queued
        and the rest of the batch still goes out; an expired login stops
        the batch. Edits batched by a running workout session stay local
        until the session is saved.
        """
        saved_only = self.store.in_session
        deletes = self.store.pending_remote_deletes(saved_only=saved_only)
        batch = [
            (entity.id, entity.updated_at, encode_entity(entity, self.store.parent_id(entity.id)))
            for entity in self.store.dirty_entities()
            if not (saved_only and self.store.is_unsaved(entity))
        ]
        deleted: list[str] = []
        pushed: list[tuple[str, datetime.datetime]] = []
        timed_out = 0
        failed = 0
        self._committing = True
        try:
            for kind, entity_id in deletes:
                try:
                    await self._call(self.client.delete, kind, entity_id)
                    deleted.append(entity_id)
                except asyncio.TimeoutError:
                    timed_out += 1
                except AuthExpiredError:
                    raise
                except SyncError as e:
                    failed += 1
                    _LOGGER.warning("Remote delete of %s %s failed: %s", kind, entity_id, e)
            for entity_id, version, payload in batch:
                try:
                    await self._call(self.client.push, payload)
                    pushed.append((entity_id, version))
                except asyncio.TimeoutError:
                    timed_out += 1
                except AuthExpiredError:
                    raise
                except SyncError as e:
                    failed += 1
                    _LOGGER.warning("Remote rejected %s %s: %s", payload["kind"], entity_id, e)
        finally:
            self._committing = False
            if deleted:
                self.store.clear_remote_deletes(deleted)
            if pushed:
                self.store.mark_synced(pushed)
        if timed_out or failed:
            _LOGGER.warning("%d records timed out and %d failed during push", timed_out, failed)
        return len(deleted) + len(pushed), timed_out, failed

    # -- reporting ---------------------------------------------------------

    def _set_status(self, state: str, message: Optional[str] = None, error: Optional[str] = None) -> None:
        self.status.state = state
        self.status.message = message
        if error is not None or state == "idle":
            self.status.last_error = error
        self.events.publish(SyncStatusChanged(state, message, error))

    async def _log(self, direction: str, outcome: str, records: int, message: Optional[str]) -> None:
        if self.log_repo is None:
            return
        try:
            await self.log_repo.add(direction, outcome, records, message)
        except sqlite3.Error as e:
            _LOGGER.warning("Could not record sync attempt: %s", e)

    def close(self) -> None:
        self._unsubscribe()
        for task in list(self._triggered):
            task.cancel()
        if self.is_syncing:
            self._task.cancel()
