"""Push-then-pull reconciliation between the local ledger and the remote store.

Conflict policy is last-writer-wins on updated_at: a pulled record replaces
the local copy only when it is strictly newer, and records are replaced
wholesale, never merged field by field.
"""

import logging
import threading
from collections import defaultdict
from collections.abc import Callable
from datetime import datetime, timedelta

from .clients.remote import RemoteDataService
from .db import Database
from .exceptions import SyncError
from .identifiers import utcnow
from .mapping import ENTITIES, MEMBERS, SESSIONS, EntitySpec
from .models import SyncedRecord, SyncReport, SyncStatus

logger = logging.getLogger(__name__)

# Foreign keys a pulled record needs locally before it can be written
_PARENT_FIELDS = {
    "session_id": SESSIONS,
    "member_id": MEMBERS,
    "from_member_id": MEMBERS,
    "to_member_id": MEMBERS,
}


class SyncReconciler:
    """Owns the sync lock and watermark for one local database.

    Construct one per process. Tests build their own instances.
    """

    def __init__(
        self,
        database: Database,
        remote: RemoteDataService,
        is_online: Callable[[], bool] | None = None,
        initial_lookback_days: int = 7,
    ):
        """Initialize the reconciler."""
        self.db = database
        self.remote = remote
        self.is_online = is_online or remote.ping
        self.initial_lookback = timedelta(days=initial_lookback_days)
        self.last_sync_at: datetime | None = database.get_last_sync_at()
        self._lock = threading.Lock()
        self._connected: bool | None = None

    # ========================================================================
    # State
    # ========================================================================

    @property
    def is_syncing(self) -> bool:
        return self._lock.locked()

    def status(self) -> SyncStatus:
        """Current sync state."""
        return SyncStatus(is_syncing=self.is_syncing, last_sync_at=self.last_sync_at)

    def _watermark(self) -> datetime:
        if self.last_sync_at is not None:
            return self.last_sync_at
        return utcnow() - self.initial_lookback

    # ========================================================================
    # Sync
    # ========================================================================

    def sync(self) -> SyncReport | None:
        """
        Push local changes, then pull remote changes.

        A call made while another sync is running returns None immediately,
        as does a call made while offline. The watermark only advances when
        both phases succeed. Records already pushed and marked clean stay
        clean if a later step fails.

        Returns:
            Counts of records moved, or None if the sync was skipped

        Raises:
            SyncError: If push or pull failed
        """
        if not self._lock.acquire(blocking=False):
            logger.info("Sync already in progress, skipping")
            return None

        try:
            if not self.is_online():
                logger.info("Device offline, skipping sync")
                return None

            started_at = utcnow()
            since = self._watermark()
            report = SyncReport()
            logger.info(f"Starting sync (changes since {since.isoformat()})")

            try:
                self._push(report)
                self._push_deletes(report)
                self._pull(since, report)
            except Exception as e:
                logger.error(f"Sync failed: {e}")
                raise SyncError(f"Sync failed: {e}") from e

            # Pull uses >=, so starting the next window at our start time
            # re-reads rather than misses concurrent remote writes
            self.db.set_last_sync_at(started_at)
            self.last_sync_at = started_at
            report.finished_at = utcnow()

            logger.info(
                f"Sync complete: pushed {sum(report.pushed.values())}, "
                f"pulled {sum(report.pulled.values())}, deleted {report.deleted}"
            )
            return report
        finally:
            self._lock.release()

    def _push(self, report: SyncReport) -> None:
        """Upsert every pending record, then clear its flag."""
        for spec in ENTITIES:
            records = self.db.list_pending_sync(spec)
            if not records:
                continue
            self.remote.upsert(spec.name, [spec.to_remote(r) for r in records])
            self.db.mark_synced(spec, [r.id for r in records])
            report.pushed[spec.name] = len(records)
            logger.debug(f"Pushed {len(records)} {spec.name}")

    def _push_deletes(self, report: SyncReport) -> None:
        """Send queued deletions, children before parents."""
        by_entity: dict[str, list[str]] = defaultdict(list)
        for entity_name, record_id in self.db.list_pending_deletes():
            by_entity[entity_name].append(record_id)

        for spec in reversed(ENTITIES):
            record_ids = by_entity.pop(spec.name, [])
            if not record_ids:
                continue
            self.remote.delete(spec.name, record_ids)
            self.db.clear_pending_deletes(spec.name, record_ids)
            report.deleted += len(record_ids)

    def _pull(self, since: datetime, report: SyncReport) -> None:
        """Write remote records that are new or strictly newer than local."""
        for spec in ENTITIES:
            payloads = self.remote.fetch_changes_since(spec.name, since)
            applied = 0
            with self.db.transaction():
                for payload in payloads:
                    if self._apply_pulled(spec, spec.from_remote(payload)):
                        applied += 1
            if applied:
                report.pulled[spec.name] = applied
            logger.debug(
                f"Pulled {len(payloads)} {spec.name}, applied {applied}"
            )

    def _apply_pulled(self, spec: EntitySpec, record: SyncedRecord) -> bool:
        local = self.db.get(spec, record.id)
        if local is not None and record.updated_at <= local.updated_at:
            # Local copy is as new or newer; local wins ties
            return False
        missing = self._missing_parent(record)
        if missing is not None:
            logger.warning(
                f"Skipping pulled {spec.name} {record.id}: "
                f"{missing} not present locally"
            )
            return False
        self.db.upsert(record)
        return True

    def _missing_parent(self, record: SyncedRecord) -> str | None:
        for field, parent in _PARENT_FIELDS.items():
            parent_id = getattr(record, field, None)
            if parent_id is not None and self.db.get(parent, parent_id) is None:
                return f"{parent.name} {parent_id}"
        return None

    # ========================================================================
    # Triggers
    # ========================================================================

    def start(self) -> SyncReport | None:
        """Run the startup sync. Failures are logged; the next trigger retries."""
        return self._sync_logged("Initial sync")

    def on_connectivity_change(self, connected: bool) -> SyncReport | None:
        """Sync when the network comes back."""
        was_connected = self._connected
        self._connected = connected
        if not connected or was_connected:
            return None
        logger.info("Network connected, triggering sync")
        return self._sync_logged("Reconnect sync")

    def _sync_logged(self, label: str) -> SyncReport | None:
        try:
            return self.sync()
        except SyncError as e:
            logger.error(f"{label} error: {e}")
            return None
