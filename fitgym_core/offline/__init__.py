# =============================================================================
# fitgym_core/offline/__init__.py
# Offline-First Persistence and Sync
# =============================================================================
"""
Offline-first persistence and sync.

Architecture:
------------
    UI / services
         |
         v
    LocalStore (SQLite) --- same transaction ---> SyncQueue
                                                     |
                                                     v
    ConnectionManager --- reconnect ---------> SyncDrainer ---> RemoteStore
                                                                (Supabase)

Every write lands in the local store and the queue together; the drainer
delivers queued changes in order whenever the remote store is reachable.
"""

from fitgym_core.offline.connection_manager import (
    ConnectionManager,
    ConnectionState,
    ConnectionStatus,
)
from fitgym_core.offline.local_store import LocalStore
from fitgym_core.offline.sync_queue import SyncQueue
from fitgym_core.offline.remote_store import (
    RemoteStore,
    SupabaseRemoteStore,
    InMemoryRemoteStore,
    create_remote_store,
)
from fitgym_core.offline.sync_drainer import SyncDrainer, SyncState
from fitgym_core.offline.data_service import (
    OfflineDataService,
    get_data_service,
    reset_data_service,
)

__all__ = [
    "ConnectionManager",
    "ConnectionState",
    "ConnectionStatus",
    "LocalStore",
    "SyncQueue",
    "RemoteStore",
    "SupabaseRemoteStore",
    "InMemoryRemoteStore",
    "create_remote_store",
    "SyncDrainer",
    "SyncState",
    "OfflineDataService",
    "get_data_service",
    "reset_data_service",
]
