# =============================================================================
# fitgym_core/offline/sync_drainer.py
# Queue Drainer: delivers local changes to the remote store
# =============================================================================
"""
SyncDrainer - pushes queued local changes to the remote store.

Features:
- Background drain thread (periodic) plus explicit sync_now()/drain_table()
- Drains on reconnect via ConnectionManager callbacks
- Strict per-table FIFO; one drain per table at a time
- Exponential backoff per table on transient failures
- Rejected changes parked as conflicts without blocking the queue
- Pull of remote rows into the local store
- Sync status tracking and event callbacks
"""

from __future__ import annotations
import threading
import time
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional
import logging

from fitgym_core.config import AppConfig
from fitgym_core.errors import FitGymError, SyncRejectedError, SyncTransientError
from fitgym_core.models import DrainReport
from fitgym_core.offline.connection_manager import ConnectionManager, ConnectionState, ConnectionStatus
from fitgym_core.offline.local_store import LocalStore
from fitgym_core.offline.remote_store import RemoteStore
from fitgym_core.utils.serialization import parse_timestamp

logger = logging.getLogger(__name__)


@dataclass
class SyncState:
    """Current sync state."""
    is_syncing: bool = False
    last_sync: Optional[datetime] = None
    last_sync_success: Optional[datetime] = None
    pending_count: int = 0
    conflict_count: int = 0
    failed_count: int = 0
    total_synced: int = 0


@dataclass
class BackoffState:
    """Retry schedule of one table."""
    failures: int = 0
    next_attempt: float = 0.0   # monotonic seconds


class SyncDrainer:
    """
    Drains the sync queue into a remote store.

    Usage:
        drainer = SyncDrainer(store, remote, connection_manager, config)
        drainer.start()      # Background draining
        drainer.sync_now()   # Immediate drain of every table
    """

    def __init__(
        self,
        store: LocalStore,
        remote: Optional[RemoteStore],
        connection_manager: Optional[ConnectionManager] = None,
        config: Optional[AppConfig] = None,
        monotonic: Callable[[], float] = time.monotonic,
    ):
        """
        Args:
            store: Local store owning the queue
            remote: Destination; None keeps the drainer idle (local-only mode)
            connection_manager: Gate and reconnect trigger; None means always online
            config: Intervals, batch size and backoff settings
            monotonic: Time source for backoff scheduling
        """
        config = config or AppConfig()
        self._store = store
        self._queue = store.sync_queue
        self._remote = remote
        self._connection_manager = connection_manager
        self._monotonic = monotonic

        self.sync_interval = config.sync_interval
        self.batch_size = config.batch_size
        self.backoff_base = config.backoff_base
        self.backoff_cap = config.backoff_cap

        self._state = SyncState()
        self._table_locks: Dict[str, threading.Lock] = {}
        self._locks_guard = threading.Lock()
        self._backoff: Dict[str, BackoffState] = {}
        self._sync_thread: Optional[threading.Thread] = None
        self._stop_sync = threading.Event()
        self._wake = threading.Event()
        self._callbacks: List[Callable[[SyncState], None]] = []

        if connection_manager is not None:
            connection_manager.register_callback(self._on_connection_change)

    @property
    def state(self) -> SyncState:
        """Get current sync state."""
        return self._state

    @property
    def queue(self):
        """The SyncQueue being drained."""
        return self._queue

    @property
    def is_syncing(self) -> bool:
        return self._state.is_syncing

    @property
    def pending_count(self) -> int:
        """Queue entries awaiting delivery."""
        return self._queue.pending_count()

    @property
    def can_sync(self) -> bool:
        """Whether a remote is configured and reachable."""
        if self._remote is None:
            return False
        return self._connection_manager is None or self._connection_manager.is_online

    # =========================================================================
    # BACKGROUND THREAD
    # =========================================================================

    def start(self) -> None:
        """Start background drain thread."""
        if self._sync_thread is not None and self._sync_thread.is_alive():
            return

        self._stop_sync.clear()
        self._sync_thread = threading.Thread(
            target=self._sync_loop,
            daemon=True,
            name="SyncDrainer"
        )
        self._sync_thread.start()
        logger.info("Sync drainer started")

    def stop(self, timeout: float = 10.0) -> None:
        """
        Stop draining.

        In-flight work stops between operations; entries not yet acked stay
        queued for the next start.
        """
        self._stop_sync.set()
        self._wake.set()
        if self._sync_thread:
            self._sync_thread.join(timeout=timeout)
        logger.info("Sync drainer stopped")

    def trigger(self) -> None:
        """Ask the background thread to drain now."""
        self._wake.set()

    def _sync_loop(self) -> None:
        """Background drain loop."""
        while not self._stop_sync.is_set():
            # Wait for interval, trigger or stop signal
            self._wake.wait(timeout=self.sync_interval)
            self._wake.clear()
            if self._stop_sync.is_set():
                break

            if self.can_sync:
                try:
                    self.sync_now()
                except Exception as e:
                    logger.error(f"Sync error: {e}", exc_info=True)

    def _on_connection_change(self, state: ConnectionState) -> None:
        """Drain as soon as connectivity is regained."""
        if state.status == ConnectionStatus.ONLINE:
            logger.info("Connection restored, triggering sync")
            # The failure cause was most likely the network; retry right away
            with self._locks_guard:
                self._backoff.clear()
            if self._sync_thread is not None and self._sync_thread.is_alive():
                self.trigger()
            else:
                self.sync_now()

    # =========================================================================
    # DRAINING
    # =========================================================================

    def _table_lock(self, table: str) -> threading.Lock:
        with self._locks_guard:
            if table not in self._table_locks:
                self._table_locks[table] = threading.Lock()
            return self._table_locks[table]

    def backoff_delay(self, failures: int) -> float:
        """Delay before retry number `failures` (1-based)."""
        if failures <= 0:
            return 0.0
        return min(self.backoff_base * 2 ** (failures - 1), self.backoff_cap)

    def _register_failure(self, table: str) -> float:
        with self._locks_guard:
            backoff = self._backoff.setdefault(table, BackoffState())
            backoff.failures += 1
            delay = self.backoff_delay(backoff.failures)
            backoff.next_attempt = self._monotonic() + delay
        return delay

    def _backoff_elapsed(self, table: str) -> bool:
        with self._locks_guard:
            backoff = self._backoff.get(table)
        return backoff is None or self._monotonic() >= backoff.next_attempt

    def _clear_backoff(self, table: str) -> None:
        with self._locks_guard:
            self._backoff.pop(table, None)

    def backing_off(self) -> List[str]:
        """Tables waiting for their next retry."""
        with self._locks_guard:
            schedule = {t: b.next_attempt for t, b in self._backoff.items()}
        now = self._monotonic()
        return sorted(t for t, next_attempt in schedule.items() if now < next_attempt)

    def sync_now(self, force: bool = False) -> DrainReport:
        """
        Drain every table with pending entries.

        Args:
            force: Ignore backoff schedules

        Returns:
            DrainReport for this run
        """
        report = DrainReport()
        if not self.can_sync:
            logger.debug("Cannot sync: no remote or offline")
            report.skipped_tables.extend(self._queue.pending_tables())
            return report

        self._state.is_syncing = True
        self._state.last_sync = self._store.clock.now()
        self._notify_callbacks()

        try:
            for table in self._queue.pending_tables():
                if self._stop_sync.is_set():
                    break
                self.drain_table(table, force=force, report=report)
        finally:
            self._state.is_syncing = False
            self._state.total_synced += report.applied
            self._state.failed_count = report.failed
            self._state.pending_count = self._queue.pending_count()
            self._state.conflict_count = len(self._queue.conflicts())
            if report.failed == 0:
                self._state.last_sync_success = self._store.clock.now()
            self._notify_callbacks()

        if report.applied or report.failed or report.conflicts:
            logger.info(
                f"Sync complete: {report.applied} applied, {report.failed} failed, "
                f"{report.conflicts} conflicts"
            )
        return report

    def drain_table(
        self,
        table: str,
        force: bool = False,
        report: Optional[DrainReport] = None,
    ) -> DrainReport:
        """
        Deliver one table's pending entries in enqueue order.

        A transient failure stops the table and schedules a retry; a rejection
        parks the entry (and later entries of the same record) and continues.
        """
        report = report if report is not None else DrainReport()
        if self._remote is None:
            report.skipped_tables.append(table)
            return report

        lock = self._table_lock(table)
        if not lock.acquire(blocking=False):
            logger.debug(f"Drain of {table} already running")
            report.skipped_tables.append(table)
            return report

        try:
            if not force and not self._backoff_elapsed(table):
                logger.debug(f"Skipping {table}: backing off")
                report.skipped_tables.append(table)
                return report

            while not self._stop_sync.is_set():
                batch = self._queue.peek_batch(table, self.batch_size)
                if not batch:
                    break

                parked = set()
                for entry in batch:
                    if self._stop_sync.is_set():
                        return report
                    if entry.record_id in parked:
                        continue

                    try:
                        self._remote.apply(entry)
                    except SyncRejectedError as e:
                        self._queue.mark_conflict(entry.id, e.message)
                        parked.add(entry.record_id)
                        report.conflicts += 1
                        continue
                    except Exception as e:
                        # Unknown failures are retried like transient ones
                        message = e.message if isinstance(e, FitGymError) else str(e)
                        self._queue.record_failure(entry.id, message)
                        delay = self._register_failure(table)
                        report.failed += 1
                        log = logger.warning if isinstance(e, SyncTransientError) else logger.error
                        log(
                            f"Delivery of {table}/{entry.record_id} failed, "
                            f"retrying in {delay:.0f}s: {message}",
                            exc_info=not isinstance(e, SyncTransientError),
                        )
                        return report

                    self._queue.ack(entry.id)
                    report.applied += 1
                    report.tables[table] = report.tables.get(table, 0) + 1

                if len(batch) < self.batch_size:
                    break

            self._clear_backoff(table)
            return report

        finally:
            lock.release()

    # =========================================================================
    # PULL
    # =========================================================================

    def pull_from_cloud(self, table: str, since: Optional[datetime] = None) -> int:
        """
        Pull remote rows into the local store.

        Local rows with undelivered changes are never overwritten.

        Args:
            table: Table to pull
            since: Only rows updated since this time (defaults to the last pull)

        Returns:
            Number of rows written locally
        """
        if not self.can_sync:
            return 0

        setting_key = f"last_pull_{table}"
        if since is None:
            since = parse_timestamp(self._store.get_setting(setting_key))

        started = self._store.clock.now()
        try:
            rows = self._remote.fetch(table, since=since)
        except SyncTransientError as e:
            logger.warning(f"Error pulling {table}: {e}")
            return 0

        written = self._store.apply_remote_rows(table, rows)
        self._store.set_setting(setting_key, started.isoformat())

        if written:
            logger.info(f"Pulled {written} rows into {table}")
        return written

    def full_sync(self) -> Dict[str, int]:
        """
        Push local changes, then pull every tracked table.

        Returns:
            Dict with sync statistics
        """
        stats = {
            "pushed": 0,
            "pulled": 0,
            "conflicts": 0,
            "errors": 0,
        }

        if not self.can_sync:
            return stats

        report = self.sync_now()
        stats["pushed"] = report.applied
        stats["conflicts"] = report.conflicts
        stats["errors"] = report.failed

        for table in self._store.TRACKED_TABLES:
            try:
                stats["pulled"] += self.pull_from_cloud(table)
            except FitGymError as e:
                logger.error(f"Error pulling {table}: {e}")
                stats["errors"] += 1

        return stats

    # =========================================================================
    # CALLBACKS AND STATUS
    # =========================================================================

    def register_callback(self, callback: Callable[[SyncState], None]) -> None:
        """Register a callback for sync state changes."""
        if callback not in self._callbacks:
            self._callbacks.append(callback)

    def unregister_callback(self, callback: Callable[[SyncState], None]) -> None:
        """Remove a registered callback."""
        if callback in self._callbacks:
            self._callbacks.remove(callback)

    def _notify_callbacks(self) -> None:
        """Notify all registered callbacks."""
        for callback in list(self._callbacks):
            try:
                callback(self._state)
            except Exception as e:
                logger.error(f"Error in sync callback: {e}")

    def get_status_display(self) -> Dict[str, Any]:
        """Get sync status for the pending-sync indicator."""
        return {
            "is_syncing": self._state.is_syncing,
            "last_sync": self._state.last_sync.isoformat() if self._state.last_sync else None,
            "last_success": self._state.last_sync_success.isoformat() if self._state.last_sync_success else None,
            "pending_count": self.pending_count,
            "conflict_count": len(self._queue.conflicts()),
            "failed_count": self._state.failed_count,
            "total_synced": self._state.total_synced,
            "backing_off": self.backing_off(),
        }
