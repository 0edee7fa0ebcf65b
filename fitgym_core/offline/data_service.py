# =============================================================================
# fitgym_core/offline/data_service.py
# Offline Data Service - single wiring point for the data core
# =============================================================================
"""
OfflineDataService - the object the app holds on to.

Builds the local store, sync queue, remote store, connection manager,
drainer, engines and domain services from one AppConfig, and exposes the
status the UI needs (online flag, pending-sync count).

Usage:
------
from fitgym_core.offline import get_data_service

service = get_data_service()
service.start()

workout = service.workouts.start_workout(user_id)
service.workouts.log_set(workout.id, "squat", SetLog(1, reps=5, weight=80))

print(service.is_online)
print(service.pending_sync_count)
"""

from __future__ import annotations
import threading
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional
import logging

from fitgym_core.config import AppConfig
from fitgym_core.errors import ErrorContext, safe_execute
from fitgym_core.offline.connection_manager import ConnectionManager
from fitgym_core.offline.local_store import LocalStore
from fitgym_core.offline.remote_store import RemoteStore, create_remote_store
from fitgym_core.offline.sync_drainer import SyncDrainer
from fitgym_core.utils.clock import Clock, SystemClock

logger = logging.getLogger(__name__)


class OfflineDataService:
    """
    Offline-first data service.

    Reads and writes always go to the local store; delivery to the remote
    store happens in the background whenever it is reachable.
    """

    def __init__(
        self,
        config: Optional[AppConfig] = None,
        clock: Optional[Clock] = None,
        remote: Optional[RemoteStore] = None,
        connection_manager: Optional[ConnectionManager] = None,
    ):
        """
        Args:
            config: Configuration (defaults to AppConfig.from_env())
            clock: Time source (defaults to the system clock in the configured zone)
            remote: Remote store override (defaults to create_remote_store(config))
            connection_manager: Connectivity override
        """
        self.config = config or AppConfig.from_env()
        self.clock = clock or SystemClock(self.config.tzinfo())
        self._remote = remote
        self._remote_resolved = remote is not None
        self._connection_manager = connection_manager

        self._store: Optional[LocalStore] = None
        self._drainer: Optional[SyncDrainer] = None
        self._record_engine = None
        self._streak_engine = None
        self._workouts = None
        self._attendance = None
        self._nutrition = None
        self._sync_service = None
        self._callbacks: List[Callable[[bool], None]] = []
        self._started = False

    # =========================================================================
    # LAZY LOADING OF DEPENDENCIES
    # =========================================================================

    @property
    def store(self) -> LocalStore:
        if self._store is None:
            self._store = LocalStore(self.config.db_path, clock=self.clock)
        return self._store

    @property
    def remote(self) -> Optional[RemoteStore]:
        if not self._remote_resolved:
            self._remote = create_remote_store(self.config)
            self._remote_resolved = True
        return self._remote

    @property
    def connection_manager(self) -> ConnectionManager:
        if self._connection_manager is None:
            self._connection_manager = ConnectionManager(
                backend_url=self.config.supabase_url,
                check_interval_online=self.config.check_interval_online,
                check_interval_offline=self.config.check_interval_offline,
                timeout=self.config.connection_timeout,
            )
        return self._connection_manager

    @property
    def drainer(self) -> SyncDrainer:
        if self._drainer is None:
            self._drainer = SyncDrainer(
                self.store,
                self.remote,
                connection_manager=self.connection_manager,
                config=self.config,
            )
        return self._drainer

    @property
    def record_engine(self):
        if self._record_engine is None:
            from fitgym_core.engines import RecordEngine
            self._record_engine = RecordEngine(
                self.store,
                clock=self.clock,
                award_first_entry=self.config.award_first_entry,
            )
        return self._record_engine

    @property
    def streak_engine(self):
        if self._streak_engine is None:
            from fitgym_core.engines import StreakEngine
            self._streak_engine = StreakEngine(self.store, clock=self.clock)
        return self._streak_engine

    @property
    def workouts(self):
        """WorkoutService bound to this data core."""
        if self._workouts is None:
            from fitgym_core.services import WorkoutService
            self._workouts = WorkoutService(
                self.store, self.record_engine, self.streak_engine, clock=self.clock
            )
        return self._workouts

    @property
    def attendance(self):
        """AttendanceService bound to this data core."""
        if self._attendance is None:
            from fitgym_core.services import AttendanceService
            self._attendance = AttendanceService(self.store, self.streak_engine, clock=self.clock)
        return self._attendance

    @property
    def nutrition(self):
        """NutritionService bound to this data core."""
        if self._nutrition is None:
            from fitgym_core.services import NutritionService
            self._nutrition = NutritionService(self.store, self.streak_engine)
        return self._nutrition

    @property
    def sync(self):
        """SyncService (non-raising sync actions for the UI)."""
        if self._sync_service is None:
            from fitgym_core.services import SyncService
            self._sync_service = SyncService(self.drainer)
        return self._sync_service

    # =========================================================================
    # PROPERTIES
    # =========================================================================

    @property
    def is_online(self) -> bool:
        """Whether the remote store is configured and reachable."""
        return self.drainer.can_sync

    @property
    def connection_status(self) -> str:
        return self.connection_manager.status.value

    @property
    def pending_sync_count(self) -> int:
        """Local changes not yet delivered (conflicts excluded)."""
        return self.store.sync_queue.pending_count()

    @property
    def last_sync(self) -> Optional[datetime]:
        """Get last successful sync time."""
        return self.drainer.state.last_sync_success

    # =========================================================================
    # LIFECYCLE
    # =========================================================================

    def start(self, monitor_connection: bool = True) -> None:
        """
        Start connectivity monitoring and background sync.

        Args:
            monitor_connection: Whether to poll connectivity in the background
        """
        if self._started:
            return

        self.connection_manager.register_callback(self._on_connection_change)
        self.connection_manager.initialize(start_monitoring=monitor_connection)
        self.drainer.start()

        self._started = True
        logger.info(
            f"OfflineDataService started. Online: {self.is_online}, "
            f"pending: {self.pending_sync_count}"
        )

    def shutdown(self) -> None:
        """
        Stop background work and close the store. Undelivered changes stay queued.

        A failing step is logged and the remaining steps still run.
        """
        if self._drainer is not None:
            with ErrorContext("Stopping sync drainer"):
                self._drainer.stop()
        if self._connection_manager is not None:
            with ErrorContext("Stopping connection monitoring"):
                self._connection_manager.stop_monitoring()
        if self._store is not None:
            with ErrorContext("Closing local store"):
                self._store.close()
        self._started = False
        logger.info("OfflineDataService shut down")

    def _on_connection_change(self, state) -> None:
        """Relay online/offline changes to status callbacks."""
        is_online = self.is_online
        logger.info(f"Connection changed: online={is_online}")

        for callback in list(self._callbacks):
            safe_execute(callback, is_online, error_message="Error in connection callback")

    def register_status_callback(self, callback: Callable[[bool], None]) -> None:
        """Register a callback for online/offline status changes."""
        if callback not in self._callbacks:
            self._callbacks.append(callback)

    def unregister_status_callback(self, callback: Callable[[bool], None]) -> None:
        if callback in self._callbacks:
            self._callbacks.remove(callback)

    # =========================================================================
    # SYNC OPERATIONS
    # =========================================================================

    def sync_now(self, force: bool = False):
        """Drain the queue now. Returns a ServiceResult wrapping the DrainReport."""
        return self.sync.sync_now(force=force)

    def full_sync(self):
        """Push then pull. Returns a ServiceResult wrapping the statistics."""
        return self.sync.full_sync()

    def resolve_conflicts(self, table: Optional[str] = None, record_id: Optional[str] = None):
        """Requeue conflicted changes after they were fixed by hand."""
        return self.sync.resolve_conflicts(table=table, record_id=record_id)

    def force_offline(self) -> None:
        self.connection_manager.force_offline()

    def force_check_connection(self) -> None:
        self.connection_manager.force_check()

    def get_status(self) -> Dict[str, Any]:
        """Status for the app's connectivity / pending-sync indicator."""
        return {
            "is_online": self.is_online,
            "has_remote": self.remote is not None,
            "connection": self.connection_manager.get_status_display(),
            "sync": self.drainer.get_status_display(),
            "queue": self.store.sync_queue.stats(),
        }


# Singleton accessor
_data_service: Optional[OfflineDataService] = None
_data_service_lock = threading.Lock()


def get_data_service(config: Optional[AppConfig] = None) -> OfflineDataService:
    """
    Get the process-wide OfflineDataService.

    The first call builds it (from `config` or the environment); later calls
    return the same instance.
    """
    global _data_service
    if _data_service is None:
        with _data_service_lock:
            if _data_service is None:
                _data_service = OfflineDataService(config)
    return _data_service


def reset_data_service() -> None:
    """Shut down and forget the process-wide service."""
    global _data_service
    with _data_service_lock:
        if _data_service is not None:
            _data_service.shutdown()
        _data_service = None
