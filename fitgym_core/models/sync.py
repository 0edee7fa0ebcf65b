# =============================================================================
# fitgym_core/models/sync.py
# Sync bookkeeping types
# =============================================================================

from __future__ import annotations
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, Optional


class SyncStatus(str, Enum):
    """Sync state of a local row."""
    PENDING = "pending"
    SYNCED = "synced"
    CONFLICT = "conflict"


class SyncOperation(str, Enum):
    """Kind of queued change."""
    INSERT = "INSERT"
    UPDATE = "UPDATE"
    DELETE = "DELETE"


class QueueStatus(str, Enum):
    """State of a queue entry. Acked entries are deleted, not marked."""
    PENDING = "pending"
    CONFLICT = "conflict"


@dataclass
class SyncQueueEntry:
    """One queued local change waiting for delivery to the remote store."""
    id: int
    table: str
    operation: SyncOperation
    record_id: str
    payload: Dict[str, Any]
    enqueued_at: Optional[datetime] = None
    attempts: int = 0
    last_attempt_at: Optional[datetime] = None
    last_error: Optional[str] = None
    status: QueueStatus = QueueStatus.PENDING


@dataclass
class DrainReport:
    """Outcome of one drain run."""
    applied: int = 0
    failed: int = 0
    conflicts: int = 0
    tables: Dict[str, int] = field(default_factory=dict)
    skipped_tables: list = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return self.failed == 0 and self.conflicts == 0
