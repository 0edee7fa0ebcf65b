# =============================================================================
# fitgym_core/offline/remote_store.py
# Remote (cloud) store adapters
# =============================================================================
"""
RemoteStore - where queued local changes are delivered.

SupabaseRemoteStore talks to the cloud database; InMemoryRemoteStore keeps
rows in dictionaries for local-only runs and tests. Both raise
SyncTransientError for retryable failures and SyncRejectedError for changes
the remote will never accept.
"""

from __future__ import annotations
import copy
import threading
from abc import ABC, abstractmethod
from collections import deque
from datetime import datetime
from typing import Any, Callable, Deque, Dict, List, Optional, Tuple
import logging

from postgrest.exceptions import APIError
from supabase import Client, create_client

from fitgym_core.config import AppConfig
from fitgym_core.errors import SyncRejectedError, SyncTransientError
from fitgym_core.models import SyncOperation, SyncQueueEntry
from fitgym_core.utils.serialization import parse_timestamp

logger = logging.getLogger(__name__)

Row = Dict[str, Any]

# PostgreSQL error classes the server will keep rejecting:
# 22 data exception, 23 integrity violation, 42 syntax/schema error
REJECTED_SQLSTATE_CLASSES = ("22", "23", "42")
REJECTED_HTTP_STATUSES = ("400", "409", "422")
# PostgREST request/schema errors (PGRST1xx, PGRST2xx)
REJECTED_POSTGREST_PREFIXES = ("PGRST1", "PGRST2")


class RemoteStore(ABC):
    """Abstract remote store."""

    @abstractmethod
    def create(self, table: str, record_id: str, data: Row) -> None:
        """Insert a row. Redelivery of the same row must be harmless."""

    @abstractmethod
    def update(self, table: str, record_id: str, data: Row) -> None:
        """Apply a (partial) update to an existing row."""

    @abstractmethod
    def delete(self, table: str, record_id: str) -> None:
        """Delete a row. Deleting a missing row is not an error."""

    @abstractmethod
    def fetch(self, table: str, since: Optional[datetime] = None) -> List[Row]:
        """Rows of a table, optionally only those updated at or after `since`."""

    def apply(self, entry: SyncQueueEntry) -> None:
        """Deliver one queue entry."""
        operation = SyncOperation(entry.operation)
        if operation == SyncOperation.INSERT:
            self.create(entry.table, entry.record_id, dict(entry.payload))
        elif operation == SyncOperation.UPDATE:
            self.update(entry.table, entry.record_id, dict(entry.payload))
        elif operation == SyncOperation.DELETE:
            self.delete(entry.table, entry.record_id)


class SupabaseRemoteStore(RemoteStore):
    """
    Remote store backed by a Supabase (PostgREST) client.

    Usage:
        remote = SupabaseRemoteStore(create_client(url, key))
        remote.apply(entry)
    """

    PAGE_SIZE = 1000

    def __init__(self, client: Client, table_mapping: Optional[Dict[str, str]] = None):
        self._client = client
        self._table_mapping = table_mapping or {}

    def _table(self, table: str):
        return self._client.table(self._table_mapping.get(table, table))

    def _classify(self, error: Exception, table: str, record_id: Optional[str]) -> Exception:
        """Map a client error onto the retry/reject split."""
        if isinstance(error, APIError):
            code = str(error.code or "")
            if (
                code[:2] in REJECTED_SQLSTATE_CLASSES
                or code in REJECTED_HTTP_STATUSES
                or code.startswith(REJECTED_POSTGREST_PREFIXES)
            ):
                return SyncRejectedError(
                    f"Remote rejected {table}/{record_id}: {error.message}",
                    table=table,
                    record_id=record_id,
                    remote_code=code,
                )
        return SyncTransientError(
            f"Remote call failed for {table}/{record_id}: {error}",
            table=table,
            record_id=record_id,
        )

    def _execute(self, request, table: str, record_id: Optional[str] = None):
        try:
            return request.execute()
        except Exception as e:
            raise self._classify(e, table, record_id) from e

    def create(self, table: str, record_id: str, data: Row) -> None:
        data = {**data, "id": record_id}
        # Upsert on id so at-least-once redelivery does not duplicate
        self._execute(self._table(table).upsert(data, on_conflict="id"), table, record_id)

    def update(self, table: str, record_id: str, data: Row) -> None:
        changes = {k: v for k, v in data.items() if k != "id"}
        if not changes:
            return
        self._execute(self._table(table).update(changes).eq("id", record_id), table, record_id)

    def delete(self, table: str, record_id: str) -> None:
        self._execute(self._table(table).delete().eq("id", record_id), table, record_id)

    def fetch(self, table: str, since: Optional[datetime] = None) -> List[Row]:
        rows: List[Row] = []
        offset = 0
        while True:
            query = self._table(table).select("*")
            if since:
                query = query.gte("updated_at", since.isoformat())
            query = query.order("updated_at").range(offset, offset + self.PAGE_SIZE - 1)

            result = self._execute(query, table)
            batch = result.data or []
            rows.extend(batch)
            if len(batch) < self.PAGE_SIZE:
                break
            offset += self.PAGE_SIZE

        logger.debug(f"Fetched {len(rows)} rows from {table}")
        return rows


class InMemoryRemoteStore(RemoteStore):
    """
    Dict-backed remote store.

    Keeps a log of applied operations and supports failure injection:

        remote.fail_next(SyncTransientError("timeout"))
        remote.reject_when(lambda op, table, rid, data: table == "attendance")

    An UPDATE for a row the remote has never seen is rejected, which makes
    out-of-order delivery visible.
    """

    def __init__(self):
        self.tables: Dict[str, Dict[str, Row]] = {}
        self.log: List[Tuple[str, str, str]] = []
        self._failures: Deque[Exception] = deque()
        self._rejectors: List[Callable[[str, str, str, Row], bool]] = []
        self._lock = threading.Lock()

    def fail_next(self, error: Exception, times: int = 1) -> None:
        """Raise `error` on the next `times` calls."""
        for _ in range(times):
            self._failures.append(error)

    def reject_when(self, predicate: Callable[[str, str, str, Row], bool]) -> None:
        """Reject every call for which predicate(op, table, record_id, data) holds."""
        self._rejectors.append(predicate)

    def _check(self, operation: str, table: str, record_id: str, data: Row) -> None:
        if self._failures:
            raise self._failures.popleft()
        for predicate in self._rejectors:
            if predicate(operation, table, record_id, data):
                raise SyncRejectedError(
                    f"Rejected {operation} on {table}/{record_id}",
                    table=table,
                    record_id=record_id,
                )

    def create(self, table: str, record_id: str, data: Row) -> None:
        with self._lock:
            self._check("INSERT", table, record_id, data)
            self.tables.setdefault(table, {})[record_id] = {**copy.deepcopy(data), "id": record_id}
            self.log.append(("INSERT", table, record_id))

    def update(self, table: str, record_id: str, data: Row) -> None:
        with self._lock:
            self._check("UPDATE", table, record_id, data)
            rows = self.tables.setdefault(table, {})
            if record_id not in rows:
                raise SyncRejectedError(
                    f"Cannot update missing row {table}/{record_id}",
                    table=table,
                    record_id=record_id,
                    remote_code="PGRST116",
                )
            rows[record_id].update(copy.deepcopy(data))
            self.log.append(("UPDATE", table, record_id))

    def delete(self, table: str, record_id: str) -> None:
        with self._lock:
            self._check("DELETE", table, record_id, {})
            self.tables.setdefault(table, {}).pop(record_id, None)
            self.log.append(("DELETE", table, record_id))

    def fetch(self, table: str, since: Optional[datetime] = None) -> List[Row]:
        with self._lock:
            rows = [copy.deepcopy(r) for r in self.tables.get(table, {}).values()]
        if since is None:
            return rows
        return [
            r for r in rows
            if r.get("updated_at") and parse_timestamp(r["updated_at"]) >= since
        ]

    def get(self, table: str, record_id: str) -> Optional[Row]:
        row = self.tables.get(table, {}).get(record_id)
        return copy.deepcopy(row) if row is not None else None


def create_remote_store(config: AppConfig) -> Optional[RemoteStore]:
    """
    Build the remote store for a configuration.

    Returns None when no cloud credentials are configured (local-only mode).
    """
    if not config.has_remote:
        logger.info("No Supabase credentials configured, running local-only")
        return None

    client = create_client(config.supabase_url, config.supabase_key)
    logger.info("Supabase remote store configured")
    return SupabaseRemoteStore(client)
