"""Sync orchestrator - drives push, pull, merge and queue drain cycles."""

import logging
import threading
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Callable, Optional, Union

from ..errors import HandoverSyncError, ParseError, TransportError
from ..export import export_data
from ..models import OperationType, QueueItem, count_units
from .merge import MergeEngine
from .protocols import (
    LocalStoreProtocol,
    MergeEngineProtocol,
    Notifier,
    OfflineQueueProtocol,
    RemoteClientProtocol,
)
from .retry import QueueBackoff, RetryConfig

__all__ = [
    "SyncOrchestrator",
    "SyncState",
    "SyncReport",
    "TRIGGER_CONNECTIVITY_LOST",
    "TRIGGER_CONNECTIVITY_RESTORED",
    "TRIGGER_RESYNC",
    "TRIGGER_TIMER",
]

logger = logging.getLogger(__name__)

TRIGGER_CONNECTIVITY_LOST = "connectivity-lost"
TRIGGER_CONNECTIVITY_RESTORED = "connectivity-restored"
TRIGGER_RESYNC = "resync-requested"
TRIGGER_TIMER = "timer-elapsed"

DEFAULT_STALE_AFTER = timedelta(minutes=10)


class SyncState(str, Enum):
    IDLE = "idle"
    SYNCING = "syncing"
    OFFLINE = "offline"


@dataclass
class SyncReport:
    """Outcome of one sync cycle."""

    pushed: bool = False
    queued: int = 0
    pulled: bool = False
    merged_units: int = 0
    drained: int = 0
    dropped: int = 0
    warnings: list[str] = field(default_factory=list)
    error: Optional[str] = None

    @property
    def success(self) -> bool:
        return self.error is None


def _log_notification(message: str, level: str = "info") -> None:
    logger.info(f"{level.upper()}: {message}")


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class SyncOrchestrator:
    """Keeps the local dataset and the remote sheet in step.

    One cycle pushes the local dataset, pulls the sheet and merges it in, then
    drains the offline queue. Push and pull failures degrade the cycle instead
    of failing it; only unexpected errors (a corrupt local dataset, say) end
    it with a failure notification. Triggers that arrive while a cycle is
    running are ignored.
    """

    def __init__(
        self,
        store: LocalStoreProtocol,
        queue: OfflineQueueProtocol,
        remote: RemoteClientProtocol,
        merger: Optional[MergeEngineProtocol] = None,
        notifier: Optional[Notifier] = None,
        max_retries: int = 3,
        stale_after: timedelta = DEFAULT_STALE_AFTER,
        retry_config: Optional[RetryConfig] = None,
        importer=None,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        self.store = store
        self.queue = queue
        self.remote = remote
        self.merger = merger or MergeEngine()
        self.importer = importer
        self.max_retries = max_retries
        self.stale_after = stale_after
        self._notify = notifier or _log_notification
        self._clock = clock or _utcnow
        self._backoff = QueueBackoff(retry_config or RetryConfig(max_retries=max_retries))

        self._state = SyncState.IDLE
        self._online = True
        self._cycle_lock = threading.Lock()

    @property
    def state(self) -> SyncState:
        return self._state

    @property
    def is_online(self) -> bool:
        return self._online

    # -- triggers ---------------------------------------------------------

    def handle_trigger(self, signal: str) -> Optional[SyncReport]:
        """Dispatch a signal emitted by a trigger source."""
        if signal == TRIGGER_CONNECTIVITY_LOST:
            return self.on_connectivity_change(False)
        if signal == TRIGGER_CONNECTIVITY_RESTORED:
            return self.on_connectivity_change(True)
        if signal == TRIGGER_RESYNC:
            return self.request_resync()
        if signal == TRIGGER_TIMER:
            return self.check_and_sync()
        logger.warning(f"Ignoring unknown trigger {signal!r}")
        return None

    def on_connectivity_change(self, online: bool) -> Optional[SyncReport]:
        """Go offline, or come back online and sync straight away."""
        if not online:
            was_online = self._online
            self._online = False
            if self._state != SyncState.SYNCING:
                self._state = SyncState.OFFLINE
            if was_online:
                logger.info("Network offline, saving data locally")
                self._notify(
                    "Network offline, data will be synced when connection is restored",
                    "warning",
                )
            return None

        was_offline = not self._online
        self._online = True
        if self._state == SyncState.OFFLINE:
            self._state = SyncState.IDLE
        if was_offline:
            logger.info("Network online, syncing data...")
            self._notify("Network restored, syncing data...", "info")
        return self.sync_all()

    def request_resync(self, reason: str = TRIGGER_RESYNC) -> Optional[SyncReport]:
        """Sync now, e.g. when the app becomes visible again."""
        logger.info(f"Resync requested ({reason})")
        return self.sync_all()

    def check_and_sync(self) -> Optional[SyncReport]:
        """Timer entry point: sync only if online and the last sync is stale."""
        if not self._online:
            return None
        if not self.is_stale():
            logger.debug("Last sync is recent, skipping timed sync")
            return None
        return self.sync_all()

    def is_stale(self, now: Optional[datetime] = None) -> bool:
        now = now or self._clock()
        last_sync = self.store.read_metadata().last_sync
        return last_sync is None or now - last_sync > self.stale_after

    # -- sync cycle -------------------------------------------------------

    def sync_all(self) -> Optional[SyncReport]:
        """Run one full sync cycle.

        Returns:
            The cycle's SyncReport, or None if offline or a cycle is already
            running
        """
        if not self._online:
            logger.info("Offline, cannot sync")
            return None

        if not self._cycle_lock.acquire(blocking=False):
            logger.info("Sync already in progress, ignoring trigger")
            return None

        report = SyncReport()
        try:
            self._state = SyncState.SYNCING
            try:
                self._run_cycle(report)
                self._mark_synced()
            except Exception as e:
                logger.exception(f"Sync error: {e}")
                report.error = str(e)
                self._notify(f"Sync failed: {e}", "error")
            else:
                self._notify(self._success_message(report), "success")
            return report
        finally:
            self._state = SyncState.IDLE if self._online else SyncState.OFFLINE
            self._cycle_lock.release()

    def _run_cycle(self, report: SyncReport) -> None:
        data = self.store.read()

        fresh_ids = set()
        item = self._push(data, report)
        if item is not None:
            fresh_ids.add(item.id)

        self._pull(report)
        self._drain_queue(report, skip_ids=fresh_ids)

    def _push(self, data: dict, report: SyncReport) -> Optional[QueueItem]:
        """Push the local dataset, queueing it on failure.

        Returns:
            The queued item if the push failed
        """
        if count_units(data) == 0:
            logger.info("No local data to sync")
            return None

        try:
            self.remote.push(data)
            report.pushed = True
            return None
        except (TransportError, ParseError) as e:
            logger.warning(f"Error syncing to sheet: {e}")
            report.warnings.append(f"Push failed: {e}")
            report.queued += 1
            return self.queue.enqueue(OperationType.PUSH_TO_REMOTE.value, data)

    def _pull(self, report: SyncReport) -> None:
        """Pull the sheet and merge it into the local dataset."""
        try:
            remote_data = self.remote.pull()
        except (TransportError, ParseError) as e:
            logger.warning(f"Error pulling from sheet: {e}")
            report.warnings.append(f"Pull failed: {e}")
            return

        if not remote_data:
            return

        merged = self.merger.merge(self.store.read(), remote_data)
        self.store.write(merged)
        report.pulled = True
        report.merged_units = count_units(merged)
        logger.info("Pull from sheet successful")

    def _drain_queue(self, report: SyncReport, skip_ids: Optional[set] = None) -> None:
        """Retry queued operations. One item's failure never blocks the rest."""
        now = self._clock()
        if self._backoff.is_waiting(now):
            logger.info("Offline queue in backoff, skipping drain")
            return

        items = [item for item in self.queue.list() if item.id not in (skip_ids or ())]
        if not items:
            return

        logger.info(f"Processing {len(items)} items from offline queue")
        failed = False
        for item in items:
            try:
                self._process_item(item)
            except (TransportError, ParseError) as e:
                failed = True
                self._record_failure(item, e, report)
                continue
            self.queue.remove(item.id)
            report.drained += 1

        if failed:
            self._backoff.record_failure(now)
        else:
            self._backoff.record_success()

    def _process_item(self, item: QueueItem) -> None:
        if item.operation == OperationType.PUSH_TO_REMOTE.value:
            # The snapshot, not the store: a pull may have merged over the edit since
            self.remote.push(item.payload)
        elif item.operation == OperationType.SAVE_TO_SERVER.value:
            self.remote.save_data(item.payload)
        else:
            logger.warning(f"Unknown queue item type {item.operation!r}, discarding")

    def _record_failure(self, item: QueueItem, error: Exception, report: SyncReport) -> None:
        logger.warning(f"Failed to process queue item {item.id}: {error}")
        updated = self.queue.bump_retry(item.id)
        if updated is not None and updated.retry_count >= self.max_retries:
            logger.warning(
                f"Max retries reached, removing {updated.operation} item {updated.id}"
            )
            self.queue.remove(updated.id)
            report.dropped += 1

    def _mark_synced(self) -> None:
        metadata = self.store.read_metadata()
        metadata.last_sync = self._clock()
        self.store.write_metadata(metadata)

    @staticmethod
    def _success_message(report: SyncReport) -> str:
        if report.queued:
            return "Sync finished, local changes queued until the sheet is reachable"
        return "All data synced successfully"

    # -- import / export --------------------------------------------------

    def export(self, fmt: str = "json") -> Union[str, bytes]:
        """Export the local dataset.

        Raises:
            UnsupportedFormatError: If ``fmt`` is not json, csv or excel
        """
        return export_data(self.store.read(), fmt)

    def import_from_sheet(self, sheet_url: str) -> Optional[int]:
        """Import flats from a published sheet; imported records win.

        Returns:
            Number of flats imported, or None if the import failed
        """
        if self.importer is None:
            raise RuntimeError("No sheet importer configured")

        try:
            imported = self.importer.fetch(sheet_url)
            merged = self.merger.merge_imported(self.store.read(), imported)
            self.store.write(merged)
            metadata = self.store.read_metadata()
            metadata.last_import = self._clock()
            self.store.write_metadata(metadata)
        except HandoverSyncError as e:
            logger.error(f"Error importing from sheet: {e}")
            self._notify(f"Import failed: {e}", "error")
            return None

        count = count_units(imported)
        self._notify("Data imported from Google Sheets", "success")
        return count

    def get_status(self) -> dict:
        metadata = self.store.read_metadata()
        return {
            "state": self._state.value,
            "online": self._online,
            "endpoint_configured": self.remote.is_configured,
            "queue_size": self.queue.size(),
            "last_sync": metadata.last_sync.isoformat() if metadata.last_sync else None,
            "last_import": metadata.last_import.isoformat() if metadata.last_import else None,
        }
