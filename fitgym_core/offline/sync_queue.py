# =============================================================================
# fitgym_core/offline/sync_queue.py
# Durable FIFO of local changes awaiting delivery
# =============================================================================
"""
SyncQueue - durable, ordered log of local writes.

Lives in the same SQLite file as the data tables so a row write and its queue
entry commit together. Entries leave the queue only through ack().
"""

from __future__ import annotations
import json
import logging
from typing import TYPE_CHECKING, Any, Dict, List, Optional

from fitgym_core.errors import ValidationError
from fitgym_core.models import QueueStatus, SyncOperation, SyncQueueEntry, SyncStatus
from fitgym_core.utils.serialization import parse_timestamp, to_json_safe

if TYPE_CHECKING:
    from fitgym_core.offline.local_store import LocalStore

logger = logging.getLogger(__name__)


class SyncQueue:
    """FIFO queue over the sync_queue table, ordered by autoincrement id."""

    def __init__(self, store: LocalStore):
        self._store = store

    def _to_entry(self, row) -> SyncQueueEntry:
        return SyncQueueEntry(
            id=row["id"],
            table=row["table_name"],
            operation=SyncOperation(row["operation"]),
            record_id=row["record_id"],
            payload=json.loads(row["payload_json"]) if row["payload_json"] else {},
            enqueued_at=parse_timestamp(row["enqueued_at"]),
            attempts=row["attempts"] or 0,
            last_attempt_at=parse_timestamp(row["last_attempt_at"]),
            last_error=row["last_error"],
            status=QueueStatus(row["status"]),
        )

    def enqueue(
        self,
        table: str,
        operation: SyncOperation,
        payload: Dict[str, Any],
        record_id: Optional[str] = None,
    ) -> SyncQueueEntry:
        """
        Append a change to the queue.

        A change to a record that already has parked entries is parked behind
        them, so it cannot reach the remote before the rejected change.

        Args:
            table: Table the change applies to
            operation: INSERT, UPDATE or DELETE
            payload: Row, partial update or {"id": ...}
            record_id: Row id (taken from payload["id"] when omitted)
        """
        operation = SyncOperation(operation)
        record_id = record_id or payload.get("id")
        if not record_id:
            raise ValidationError(
                "Queue entries need a record id",
                field="record_id",
            )
        record_id = str(record_id)
        enqueued_at = self._store.clock.now()
        payload = to_json_safe(payload)

        with self._store.transaction() as conn:
            parked = conn.execute(
                """
                SELECT 1 FROM sync_queue
                WHERE table_name = ? AND record_id = ? AND status = ?
                LIMIT 1
                """,
                [table, record_id, QueueStatus.CONFLICT.value]
            ).fetchone()
            status = QueueStatus.CONFLICT if parked else QueueStatus.PENDING
            cursor = conn.execute(
                """
                INSERT INTO sync_queue (table_name, operation, record_id, payload_json, enqueued_at, status)
                VALUES (?, ?, ?, ?, ?, ?)
                """,
                [
                    table,
                    operation.value,
                    record_id,
                    json.dumps(payload),
                    enqueued_at.isoformat(),
                    status.value,
                ]
            )
            entry_id = cursor.lastrowid

        logger.debug(f"Queued {operation.value} on {table}/{record_id} (entry {entry_id}), {status.value}")
        return SyncQueueEntry(
            id=entry_id,
            table=table,
            operation=operation,
            record_id=record_id,
            payload=payload,
            enqueued_at=enqueued_at,
            status=status,
        )

    def get(self, entry_id: int) -> Optional[SyncQueueEntry]:
        row = self._store._get_connection().execute(
            "SELECT * FROM sync_queue WHERE id = ?", [entry_id]
        ).fetchone()
        return self._to_entry(row) if row else None

    def peek_batch(self, table: str, n: int) -> List[SyncQueueEntry]:
        """Oldest n pending entries for a table, in enqueue order."""
        rows = self._store._get_connection().execute(
            """
            SELECT * FROM sync_queue
            WHERE table_name = ? AND status = ?
            ORDER BY id
            LIMIT ?
            """,
            [table, QueueStatus.PENDING.value, int(n)]
        ).fetchall()
        return [self._to_entry(r) for r in rows]

    def ack(self, entry_id: int) -> bool:
        """
        Remove a delivered entry.

        When it was the last entry for its record, the local row moves to
        synced in the same transaction. Acking a missing entry is a no-op.

        Returns:
            True if an entry was removed
        """
        with self._store.transaction() as conn:
            row = conn.execute(
                "SELECT table_name, record_id FROM sync_queue WHERE id = ?", [entry_id]
            ).fetchone()
            if row is None:
                return False

            conn.execute("DELETE FROM sync_queue WHERE id = ?", [entry_id])
            remaining = conn.execute(
                "SELECT COUNT(*) FROM sync_queue WHERE table_name = ? AND record_id = ?",
                [row["table_name"], row["record_id"]]
            ).fetchone()[0]
            if remaining == 0:
                self._store._set_sync_status(
                    conn, row["table_name"], row["record_id"], SyncStatus.SYNCED
                )

        return True

    def record_failure(self, entry_id: int, error: str) -> None:
        """Count a failed delivery attempt; the entry stays at the head."""
        with self._store.transaction() as conn:
            conn.execute(
                """
                UPDATE sync_queue
                SET attempts = attempts + 1, last_attempt_at = ?, last_error = ?
                WHERE id = ?
                """,
                [self._store.clock.now().isoformat(), str(error), entry_id]
            )

    def mark_conflict(self, entry_id: int, error: str) -> int:
        """
        Park a rejected entry for manual resolution.

        Later entries for the same record are parked with it so they are not
        applied out of order. The local row is marked conflict.

        Returns:
            Number of entries parked
        """
        with self._store.transaction() as conn:
            row = conn.execute(
                "SELECT table_name, record_id FROM sync_queue WHERE id = ?", [entry_id]
            ).fetchone()
            if row is None:
                return 0

            cursor = conn.execute(
                """
                UPDATE sync_queue
                SET status = ?,
                    attempts = attempts + CASE WHEN id = ? THEN 1 ELSE 0 END,
                    last_attempt_at = CASE WHEN id = ? THEN ? ELSE last_attempt_at END,
                    last_error = CASE WHEN id = ? THEN ? ELSE last_error END
                WHERE table_name = ? AND record_id = ? AND id >= ?
                """,
                [
                    QueueStatus.CONFLICT.value,
                    entry_id,
                    entry_id, self._store.clock.now().isoformat(),
                    entry_id, str(error),
                    row["table_name"], row["record_id"], entry_id,
                ]
            )
            self._store._set_sync_status(
                conn, row["table_name"], row["record_id"], SyncStatus.CONFLICT
            )

        logger.warning(
            f"Conflict on {row['table_name']}/{row['record_id']}: {error} "
            f"({cursor.rowcount} entries parked)"
        )
        return cursor.rowcount

    def conflicts(self, table: Optional[str] = None) -> List[SyncQueueEntry]:
        """Entries parked by mark_conflict, oldest first."""
        sql = "SELECT * FROM sync_queue WHERE status = ?"
        params: List[Any] = [QueueStatus.CONFLICT.value]
        if table:
            sql += " AND table_name = ?"
            params.append(table)
        rows = self._store._get_connection().execute(sql + " ORDER BY id", params).fetchall()
        return [self._to_entry(r) for r in rows]

    def requeue_conflicts(
        self,
        table: Optional[str] = None,
        record_id: Optional[str] = None,
    ) -> int:
        """
        Return parked entries to the retry path after manual resolution.

        Returns:
            Number of entries requeued
        """
        where = "status = ?"
        params: List[Any] = [QueueStatus.CONFLICT.value]
        if table:
            where += " AND table_name = ?"
            params.append(table)
        if record_id:
            where += " AND record_id = ?"
            params.append(record_id)

        with self._store.transaction() as conn:
            records = conn.execute(
                f"SELECT DISTINCT table_name, record_id FROM sync_queue WHERE {where}", params
            ).fetchall()
            cursor = conn.execute(
                f"UPDATE sync_queue SET status = ?, attempts = 0 WHERE {where}",
                [QueueStatus.PENDING.value] + params
            )
            for r in records:
                self._store._set_sync_status(
                    conn, r["table_name"], r["record_id"], SyncStatus.PENDING
                )

        if cursor.rowcount:
            logger.info(f"Requeued {cursor.rowcount} conflicted entries")
        return cursor.rowcount

    def pending_tables(self) -> List[str]:
        """Tables with pending entries, ordered by their oldest entry."""
        rows = self._store._get_connection().execute(
            """
            SELECT table_name, MIN(id) AS first_id FROM sync_queue
            WHERE status = ?
            GROUP BY table_name
            ORDER BY first_id
            """,
            [QueueStatus.PENDING.value]
        ).fetchall()
        return [r["table_name"] for r in rows]

    def pending_count(self, table: Optional[str] = None) -> int:
        sql = "SELECT COUNT(*) FROM sync_queue WHERE status = ?"
        params: List[Any] = [QueueStatus.PENDING.value]
        if table:
            sql += " AND table_name = ?"
            params.append(table)
        return self._store._get_connection().execute(sql, params).fetchone()[0]

    def size(self) -> int:
        """All entries, pending and conflicted."""
        return self._store._get_connection().execute(
            "SELECT COUNT(*) FROM sync_queue"
        ).fetchone()[0]

    def is_empty(self) -> bool:
        return self.size() == 0

    def stats(self) -> Dict[str, Any]:
        """Queue counts by operation and status plus the enqueue time range."""
        conn = self._store._get_connection()
        by_operation = {
            r["operation"]: r["count"]
            for r in conn.execute(
                "SELECT operation, COUNT(*) AS count FROM sync_queue GROUP BY operation"
            ).fetchall()
        }
        by_status = {
            r["status"]: r["count"]
            for r in conn.execute(
                "SELECT status, COUNT(*) AS count FROM sync_queue GROUP BY status"
            ).fetchall()
        }
        bounds = conn.execute(
            "SELECT MIN(enqueued_at) AS oldest, MAX(enqueued_at) AS newest FROM sync_queue"
        ).fetchone()

        return {
            "total": sum(by_status.values()),
            "pending": by_status.get(QueueStatus.PENDING.value, 0),
            "conflict": by_status.get(QueueStatus.CONFLICT.value, 0),
            "by_operation": {op.value: by_operation.get(op.value, 0) for op in SyncOperation},
            "oldest": parse_timestamp(bounds["oldest"]),
            "newest": parse_timestamp(bounds["newest"]),
        }
