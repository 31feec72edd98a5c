"""Reconcile pulled remote records with the local store.

Records are compared by ``updated_at`` and the newer copy wins. A remote
delete never discards local edits that have not been pushed yet; such
records are marked dirty so the next push re-creates them remotely.
Applying the same batch twice changes nothing the second time.
"""

from __future__ import annotations
import logging
from dataclasses import dataclass, field
from typing import Any, Iterable

from local_store import LocalStore
from models import ENTITY_TYPES, CompletedDayRecord, walk
from remote_records import RecordDecodeError, RemoteRecord, decode_record

_LOGGER = logging.getLogger(__name__)

KIND_ORDER = ("profile", "split", "day", "exercise", "set", "completed_day", "weight_point")
PARENT_KIND = {"day": "split", "exercise": "day", "set": "exercise"}


@dataclass
class MergeReport:
    inserted: list[str] = field(default_factory=list)
    updated: list[str] = field(default_factory=list)
    deleted: list[str] = field(default_factory=list)
    marked_dirty: list[str] = field(default_factory=list)
    normalized: list[str] = field(default_factory=list)
    skipped: list[Any] = field(default_factory=list)

    @property
    def changes(self) -> int:
        return (
            len(self.inserted)
            + len(self.updated)
            + len(self.deleted)
            + len(self.marked_dirty)
            + len(self.normalized)
        )


class MergeResolver:
    """Applies a pulled batch of records to a ``LocalStore``."""

    def __init__(self, store: LocalStore) -> None:
        self.store = store

    def merge(self, raw_records: Iterable[Any], full_snapshot: bool = False) -> MergeReport:
        """Merge ``raw_records`` and persist the outcome in one save.

        With ``full_snapshot`` the batch is the complete remote state, so
        local records absent from it are marked for upload.
        """
        report = MergeReport()
        latest: dict[str, tuple[RemoteRecord, dict]] = {}
        for raw in raw_records:
            try:
                record, values = decode_record(raw)
            except RecordDecodeError as e:
                _LOGGER.warning("Skipping undecodable remote record: %s", e)
                report.skipped.append(raw.get("id") if isinstance(raw, dict) else None)
                continue
            seen = latest.get(record.id)
            if seen is None or record.updated_at >= seen[0].updated_at:
                latest[record.id] = (record, values)

        batch = sorted(latest.values(), key=lambda item: KIND_ORDER.index(item[0].kind))
        for record, values in batch:
            if record.deleted:
                self._apply_delete(record, report)
            elif record.kind == "completed_day":
                self._apply_completion(record, values, report)
            else:
                self._apply_record(record, values, report)

        if full_snapshot:
            self._mark_local_only(set(latest), report)
        self._normalize_active_split(report)
        self.store.flush()
        _LOGGER.info(
            "Merged %d remote records: %d inserted, %d updated, %d deleted, %d kept local",
            len(batch),
            len(report.inserted),
            len(report.updated),
            len(report.deleted),
            len(report.marked_dirty),
        )
        return report

    def _keep_local(self, entity, report: MergeReport) -> None:
        for item in walk(entity):
            if self.store.mark_dirty(item):
                report.marked_dirty.append(item.id)

    def _apply_record(self, record: RemoteRecord, values: dict, report: MergeReport) -> None:
        local = self.store.get(record.id)
        if local is None and record.kind == "profile" and self.store.has_profile():
            local = self.store.profile()
        if local is None:
            parent = None
            if record.kind in PARENT_KIND:
                parent = self.store.get(record.parent_id) if record.parent_id else None
                if (
                    parent is None
                    or parent.KIND != PARENT_KIND[record.kind]
                    or self._in_history(parent)
                ):
                    _LOGGER.warning(
                        "Skipping %s %s: parent %s is unknown", record.kind, record.id, record.parent_id
                    )
                    report.skipped.append(record.id)
                    return
            entity = ENTITY_TYPES[record.kind](
                **values, id=record.id, updated_at=record.updated_at, dirty=False
            )
            self.store.insert(entity, parent, from_remote=True)
            report.inserted.append(record.id)
            return

        if local.KIND != record.kind:
            _LOGGER.warning("Skipping %s %s: id belongs to a %s", record.kind, record.id, local.KIND)
            report.skipped.append(record.id)
            return
        if record.updated_at > local.updated_at:
            self.store.apply_remote(local, values, record.updated_at)
            if record.kind in PARENT_KIND and record.parent_id:
                if self.store.parent_id(local.id) != record.parent_id:
                    new_parent = self.store.get(record.parent_id)
                    if new_parent is not None and new_parent.KIND == PARENT_KIND[record.kind]:
                        self.store.move(local, new_parent)
            report.updated.append(record.id)
        elif record.updated_at < local.updated_at:
            if self.store.mark_dirty(local):
                report.marked_dirty.append(local.id)

    def _apply_delete(self, record: RemoteRecord, report: MergeReport) -> None:
        local = self.store.get(record.id)
        if local is None or local.KIND != record.kind:
            return
        if self.store.owning_record(local) is not None:
            return
        if self.store.has_pending_edits(local):
            _LOGGER.info("Keeping locally edited %s %s deleted remotely", record.kind, record.id)
            self._keep_local(local, report)
            return
        report.deleted.extend(self.store.delete(local, from_remote=True))

    def _apply_completion(self, record: RemoteRecord, values: dict, report: MergeReport) -> None:
        incoming = CompletedDayRecord(
            date=values["date"],
            day=values["day"],
            id=record.id,
            updated_at=record.updated_at,
            dirty=False,
        )
        current = self.store.get(record.id)
        if current is not None and current.KIND != record.kind:
            report.skipped.append(record.id)
            return
        if current is None:
            current = self.store.completed_for_date(incoming.date)
        if current is None:
            self.store.put_completion(incoming, from_remote=True)
            report.inserted.append(record.id)
            return

        if record.updated_at > current.updated_at:
            if current.id != incoming.id:
                # the superseded local record must disappear remotely too
                report.deleted.extend(self.store.delete(current))
            else:
                self.store.delete(current, from_remote=True)
            self.store.put_completion(incoming, from_remote=True)
            report.updated.append(record.id)
        elif record.updated_at < current.updated_at or current.id != incoming.id:
            self._keep_local(current, report)
            if current.id != incoming.id:
                pending = {entity_id for _, entity_id in self.store.pending_remote_deletes()}
                if incoming.id not in pending:
                    self.store.queue_remote_delete(incoming.KIND, incoming.id)
                    report.marked_dirty.append(incoming.id)

    def _in_history(self, entity) -> bool:
        return isinstance(entity, CompletedDayRecord) or self.store.owning_record(entity) is not None

    def _mark_local_only(self, remote_ids: set[str], report: MergeReport) -> None:
        for entity in self.store.all_entities():
            if entity.id in remote_ids or self.store.owning_record(entity) is not None:
                continue
            if self.store.mark_dirty(entity):
                report.marked_dirty.append(entity.id)

    def _normalize_active_split(self, report: MergeReport) -> None:
        splits = self.store.splits()
        active = [s for s in splits if s.is_active]
        if len(active) > 1:
            keep = max(active, key=lambda s: (s.updated_at, s.id))
            for split in active:
                if split is not keep:
                    self.store.update(split, is_active=False)
                    report.normalized.append(split.id)
        elif not active and splits:
            self.store.update(splits[0], is_active=True)
            report.normalized.append(splits[0].id)
