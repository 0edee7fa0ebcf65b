# =============================================================================
# fitgym_core/offline/local_store.py
# Local SQLite Store for Offline-First Operations
# =============================================================================
"""
LocalStore - device-resident SQLite store, authoritative for UI reads.

Features:
- Automatic schema creation
- put/get/query/delete on row dictionaries
- Every write on a tracked table and its sync queue entry share one transaction
- Re-entrant transactions so services can group several writes
- Typed nested documents (JSON columns) decoded on read
- DataFrame export (pandas)
- Thread-safe: one connection per thread, one writer at a time
"""

from __future__ import annotations
import json
import sqlite3
import threading
import uuid
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Callable, Dict, Iterable, List, Optional
import logging

import pandas as pd

from fitgym_core.errors import LocalWriteError, RecordNotFoundError, ValidationError
from fitgym_core.models import QueueStatus, SyncOperation, SyncStatus
from fitgym_core.offline.sync_queue import SyncQueue
from fitgym_core.utils.clock import Clock, SystemClock
from fitgym_core.utils.serialization import to_json_safe

logger = logging.getLogger(__name__)

Row = Dict[str, Any]


class LocalStore:
    """
    Local SQLite store for offline data storage.

    Mirrors the cloud schema so rows can be pushed as-is by the SyncDrainer.
    """

    DEFAULT_DB_PATH = Path("local_data") / "fitgym.db"

    # Schema definitions matching the cloud tables
    SCHEMA = {
        "workout_logs": """
            CREATE TABLE IF NOT EXISTS workout_logs (
                id TEXT PRIMARY KEY,
                user_id TEXT NOT NULL,
                plan_id TEXT,
                date TEXT NOT NULL,
                started_at TEXT NOT NULL,
                name TEXT,
                exercises TEXT,
                personal_records TEXT,
                duration INTEGER DEFAULT 0,
                notes TEXT,
                mood INTEGER,
                energy INTEGER,
                used_rest_timer INTEGER DEFAULT 0,
                completed_at TEXT,
                created_at TEXT,
                updated_at TEXT,
                sync_status TEXT DEFAULT 'pending'
            )
        """,
        "personal_records": """
            CREATE TABLE IF NOT EXISTS personal_records (
                id TEXT PRIMARY KEY,
                user_id TEXT NOT NULL,
                exercise_id TEXT NOT NULL,
                exercise_name TEXT,
                type TEXT NOT NULL,
                value REAL NOT NULL,
                previous_value REAL,
                date TEXT NOT NULL,
                workout_log_id TEXT,
                created_at TEXT,
                updated_at TEXT,
                sync_status TEXT DEFAULT 'pending'
            )
        """,
        "attendance": """
            CREATE TABLE IF NOT EXISTS attendance (
                id TEXT PRIMARY KEY,
                user_id TEXT NOT NULL,
                date TEXT NOT NULL,
                check_in_time TEXT NOT NULL,
                check_out_time TEXT,
                method TEXT NOT NULL,
                location_verified INTEGER DEFAULT 0,
                created_at TEXT,
                updated_at TEXT,
                sync_status TEXT DEFAULT 'pending'
            )
        """,
        "nutrition_logs": """
            CREATE TABLE IF NOT EXISTS nutrition_logs (
                id TEXT PRIMARY KEY,
                user_id TEXT NOT NULL,
                date TEXT NOT NULL,
                total_calories REAL,
                total_protein REAL,
                total_carbs REAL,
                total_fat REAL,
                water REAL,
                notes TEXT,
                created_at TEXT,
                updated_at TEXT,
                sync_status TEXT DEFAULT 'pending',
                UNIQUE(user_id, date)
            )
        """,
        "exercises": """
            CREATE TABLE IF NOT EXISTS exercises (
                id TEXT PRIMARY KEY,
                name TEXT NOT NULL,
                category TEXT NOT NULL,
                equipment TEXT,
                primary_muscles TEXT,
                owner TEXT NOT NULL,
                owner_user_id TEXT,
                created_at TEXT,
                updated_at TEXT,
                sync_status TEXT DEFAULT 'pending'
            )
        """,
        "announcements": """
            CREATE TABLE IF NOT EXISTS announcements (
                id TEXT PRIMARY KEY,
                author_id TEXT NOT NULL,
                audience TEXT NOT NULL,
                title TEXT NOT NULL,
                message TEXT,
                priority TEXT DEFAULT 'normal',
                expires_at TEXT,
                read_by TEXT,
                created_at TEXT,
                updated_at TEXT,
                sync_status TEXT DEFAULT 'pending'
            )
        """,
        "sync_queue": """
            CREATE TABLE IF NOT EXISTS sync_queue (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                table_name TEXT NOT NULL,
                operation TEXT NOT NULL,
                record_id TEXT NOT NULL,
                payload_json TEXT,
                enqueued_at TEXT NOT NULL,
                attempts INTEGER DEFAULT 0,
                last_attempt_at TEXT,
                last_error TEXT,
                status TEXT DEFAULT 'pending'
            )
        """,
        "app_settings": """
            CREATE TABLE IF NOT EXISTS app_settings (
                key TEXT PRIMARY KEY,
                value TEXT,
                updated_at TEXT
            )
        """,
    }

    INDEXES = [
        "CREATE INDEX IF NOT EXISTS idx_workout_logs_user ON workout_logs(user_id, date)",
        "CREATE INDEX IF NOT EXISTS idx_personal_records_lookup "
        "ON personal_records(user_id, exercise_id, type)",
        "CREATE INDEX IF NOT EXISTS idx_attendance_user ON attendance(user_id, date)",
        "CREATE INDEX IF NOT EXISTS idx_sync_queue_table ON sync_queue(table_name, status, id)",
    ]

    # Tables whose writes are queued for the remote store
    TRACKED_TABLES = (
        "workout_logs",
        "personal_records",
        "attendance",
        "nutrition_logs",
        "exercises",
        "announcements",
    )

    # Nested documents stored as JSON text
    JSON_COLUMNS = {
        "workout_logs": ("exercises", "personal_records"),
        "exercises": ("primary_muscles",),
        "announcements": ("read_by",),
    }

    BOOL_COLUMNS = {
        "workout_logs": ("used_rest_timer",),
        "attendance": ("location_verified",),
    }

    META_COLUMNS = ("created_at", "updated_at", "sync_status")

    def __init__(self, db_path: Optional[Path] = None, clock: Optional[Clock] = None):
        """
        Initialize local store.

        Args:
            db_path: Path to SQLite database file
            clock: Time source for row timestamps
        """
        self.db_path = Path(db_path or self.DEFAULT_DB_PATH)
        self.clock = clock or SystemClock()
        self._local = threading.local()
        self._write_lock = threading.RLock()
        self._connections: List[sqlite3.Connection] = []
        self._connections_lock = threading.Lock()
        self._columns: Dict[str, List[str]] = {}
        self._initialized = False
        self.sync_queue = SyncQueue(self)
        self._ensure_directory()
        self.initialize()

    def _ensure_directory(self) -> None:
        """Ensure database directory exists."""
        self.db_path.parent.mkdir(parents=True, exist_ok=True)

    def _get_connection(self) -> sqlite3.Connection:
        """Get thread-local database connection."""
        conn = getattr(self._local, "connection", None)
        if conn is None:
            conn = sqlite3.connect(
                str(self.db_path),
                check_same_thread=False,
                isolation_level=None,
                timeout=30,
            )
            conn.row_factory = sqlite3.Row
            conn.execute("PRAGMA foreign_keys = ON")
            conn.execute("PRAGMA journal_mode = WAL")
            self._local.connection = conn
            with self._connections_lock:
                self._connections.append(conn)
        return conn

    @contextmanager
    def transaction(self):
        """
        Context manager for one logical write unit.

        Nested calls on the same thread run as savepoints inside the outermost
        transaction: a failed inner block is undone on its own, and nothing
        is durable until the outermost block commits.
        """
        with self._write_lock:
            conn = self._get_connection()
            depth = getattr(self._local, "depth", 0)
            savepoint = f"sp_{depth}"
            self._local.depth = depth + 1
            try:
                if depth == 0:
                    conn.execute("BEGIN IMMEDIATE")
                else:
                    conn.execute(f"SAVEPOINT {savepoint}")
                yield conn
                if depth == 0:
                    conn.execute("COMMIT")
                else:
                    conn.execute(f"RELEASE {savepoint}")
            except BaseException:
                if conn.in_transaction:
                    if depth == 0:
                        conn.execute("ROLLBACK")
                    else:
                        conn.execute(f"ROLLBACK TO {savepoint}")
                        conn.execute(f"RELEASE {savepoint}")
                raise
            finally:
                self._local.depth = depth

    def initialize(self) -> None:
        """Initialize database schema."""
        if self._initialized:
            return

        with self.transaction() as conn:
            for table_name, schema in self.SCHEMA.items():
                conn.execute(schema)
                logger.debug(f"Created/verified table: {table_name}")
            for index in self.INDEXES:
                conn.execute(index)

        self._initialized = True
        logger.info(f"Local store initialized at: {self.db_path}")

    # =========================================================================
    # ROW ENCODING
    # =========================================================================

    def _check_table(self, table: str) -> None:
        if table not in self.SCHEMA or table in ("sync_queue", "app_settings"):
            raise LocalWriteError(
                f"Unknown table: {table}",
                table=table,
                operation="access",
            )

    def columns(self, table: str) -> List[str]:
        """Column names of a table."""
        if table not in self._columns:
            rows = self._get_connection().execute(f"PRAGMA table_info({table})").fetchall()
            self._columns[table] = [r["name"] for r in rows]
        return self._columns[table]

    def _check_columns(self, table: str, data: Row) -> None:
        unknown = set(data) - set(self.columns(table))
        if unknown:
            raise ValidationError(
                f"Unknown column(s) for {table}: {sorted(unknown)}",
                field="columns",
                actual=sorted(unknown),
            )

    def _encode(self, table: str, data: Row) -> Row:
        json_cols = self.JSON_COLUMNS.get(table, ())
        bool_cols = self.BOOL_COLUMNS.get(table, ())
        encoded = {}
        for key, value in data.items():
            if key in json_cols:
                encoded[key] = None if value is None else json.dumps(to_json_safe(value))
            elif key in bool_cols:
                encoded[key] = None if value is None else int(bool(value))
            else:
                encoded[key] = to_json_safe(value)
        return encoded

    def _decode(self, table: str, row: Optional[sqlite3.Row]) -> Optional[Row]:
        if row is None:
            return None
        data = dict(row)
        for key in self.JSON_COLUMNS.get(table, ()):
            if data.get(key) is not None:
                data[key] = json.loads(data[key])
        for key in self.BOOL_COLUMNS.get(table, ()):
            if data.get(key) is not None:
                data[key] = bool(data[key])
        return data

    def _payload(self, row: Row) -> Row:
        """Queue payload for a row: data fields plus row timestamps."""
        return {k: v for k, v in row.items() if k != "sync_status"}

    def _now(self) -> str:
        return self.clock.now().isoformat()

    # =========================================================================
    # GENERIC CRUD OPERATIONS
    # =========================================================================

    def put(self, table: str, row: Row) -> Row:
        """
        Insert or overwrite a row and queue it for sync.

        Args:
            table: Table name
            row: Column:value pairs; an id is generated when missing

        Returns:
            The stored row as read back
        """
        self._check_table(table)
        data = {k: v for k, v in row.items() if k not in self.META_COLUMNS}
        data["id"] = str(data.get("id") or uuid.uuid4())
        self._check_columns(table, data)
        record_id = data["id"]

        try:
            with self.transaction() as conn:
                existing = conn.execute(
                    f"SELECT created_at FROM {table} WHERE id = ?", [record_id]
                ).fetchone()
                now = self._now()
                data["updated_at"] = now
                data["sync_status"] = SyncStatus.PENDING.value

                if existing is None:
                    operation = SyncOperation.INSERT
                    data["created_at"] = now
                    encoded = self._encode(table, data)
                    columns = ", ".join(encoded.keys())
                    placeholders = ", ".join(["?" for _ in encoded])
                    conn.execute(
                        f"INSERT INTO {table} ({columns}) VALUES ({placeholders})",
                        list(encoded.values()),
                    )
                else:
                    operation = SyncOperation.UPDATE
                    encoded = self._encode(table, data)
                    encoded.pop("id")
                    set_clause = ", ".join([f"{k} = ?" for k in encoded.keys()])
                    conn.execute(
                        f"UPDATE {table} SET {set_clause} WHERE id = ?",
                        list(encoded.values()) + [record_id],
                    )

                stored = self._decode(
                    table,
                    conn.execute(f"SELECT * FROM {table} WHERE id = ?", [record_id]).fetchone(),
                )
                entry = self.sync_queue.enqueue(table, operation, self._payload(stored), record_id)
                if entry.status == QueueStatus.CONFLICT:
                    self._set_sync_status(conn, table, record_id, SyncStatus.CONFLICT)
                    stored["sync_status"] = SyncStatus.CONFLICT.value
        except sqlite3.Error as e:
            raise LocalWriteError(
                f"Failed to write {table} row {record_id}: {e}",
                table=table,
                operation="put",
            ) from e

        return stored

    def put_many(self, table: str, rows: Iterable[Row]) -> List[Row]:
        """Write several rows as one logical unit."""
        with self.transaction():
            return [self.put(table, row) for row in rows]

    def update(self, table: str, record_id: str, changes: Row) -> Row:
        """
        Apply a partial update and queue the change set.

        Raises:
            RecordNotFoundError: if the row does not exist
        """
        self._check_table(table)
        data = {k: v for k, v in changes.items() if k not in self.META_COLUMNS and k != "id"}
        self._check_columns(table, data)

        try:
            with self.transaction() as conn:
                exists = conn.execute(
                    f"SELECT 1 FROM {table} WHERE id = ?", [record_id]
                ).fetchone()
                if exists is None:
                    raise RecordNotFoundError(
                        f"{table} row not found",
                        table=table,
                        record_id=record_id,
                    )

                data["updated_at"] = self._now()
                encoded = self._encode(table, data)
                encoded["sync_status"] = SyncStatus.PENDING.value
                set_clause = ", ".join([f"{k} = ?" for k in encoded.keys()])
                conn.execute(
                    f"UPDATE {table} SET {set_clause} WHERE id = ?",
                    list(encoded.values()) + [record_id],
                )

                payload = {"id": record_id, **data}
                entry = self.sync_queue.enqueue(table, SyncOperation.UPDATE, to_json_safe(payload), record_id)
                if entry.status == QueueStatus.CONFLICT:
                    self._set_sync_status(conn, table, record_id, SyncStatus.CONFLICT)
                stored = self._decode(
                    table,
                    conn.execute(f"SELECT * FROM {table} WHERE id = ?", [record_id]).fetchone(),
                )
        except sqlite3.Error as e:
            raise LocalWriteError(
                f"Failed to update {table} row {record_id}: {e}",
                table=table,
                operation="update",
            ) from e

        return stored

    def delete(self, table: str, record_id: str) -> bool:
        """Delete a row and queue the deletion. Returns False if it did not exist."""
        self._check_table(table)
        try:
            with self.transaction() as conn:
                cursor = conn.execute(f"DELETE FROM {table} WHERE id = ?", [record_id])
                if cursor.rowcount == 0:
                    return False
                self.sync_queue.enqueue(table, SyncOperation.DELETE, {"id": record_id}, record_id)
        except sqlite3.Error as e:
            raise LocalWriteError(
                f"Failed to delete {table} row {record_id}: {e}",
                table=table,
                operation="delete",
            ) from e

        return True

    def get(self, table: str, record_id: str) -> Optional[Row]:
        """Get a row by id."""
        self._check_table(table)
        cursor = self._get_connection().execute(
            f"SELECT * FROM {table} WHERE id = ?",
            [record_id]
        )
        return self._decode(table, cursor.fetchone())

    def query(
        self,
        table: str,
        where: Optional[str] = None,
        params: Optional[List] = None,
        order_by: Optional[str] = None,
        limit: Optional[int] = None,
        predicate: Optional[Callable[[Row], bool]] = None,
    ) -> List[Row]:
        """
        Get rows from a table with optional filtering.

        Args:
            table: Table name
            where: Optional SQL WHERE clause with ? placeholders
            params: Parameters for the WHERE clause
            order_by: Optional ORDER BY clause
            limit: Max rows (applied before the predicate)
            predicate: Optional Python filter over decoded rows
        """
        self._check_table(table)
        sql = f"SELECT * FROM {table}"

        if where:
            sql += f" WHERE {where}"

        if order_by:
            sql += f" ORDER BY {order_by}"

        if limit:
            sql += f" LIMIT {int(limit)}"

        cursor = self._get_connection().execute(sql, params or [])
        rows = [self._decode(table, r) for r in cursor.fetchall()]
        if predicate is not None:
            rows = [r for r in rows if predicate(r)]
        return rows

    def count(self, table: str, where: Optional[str] = None, params: Optional[List] = None) -> int:
        """Count rows in a table."""
        self._check_table(table)
        sql = f"SELECT COUNT(*) AS count FROM {table}"
        if where:
            sql += f" WHERE {where}"
        return self._get_connection().execute(sql, params or []).fetchone()["count"]

    # =========================================================================
    # SYNC STATUS (used by the queue and drainer)
    # =========================================================================

    def _set_sync_status(
        self,
        conn: sqlite3.Connection,
        table: str,
        record_id: str,
        status: SyncStatus,
    ) -> None:
        """Set sync_status only; data fields and updated_at are untouched."""
        if table not in self.TRACKED_TABLES:
            return
        conn.execute(
            f"UPDATE {table} SET sync_status = ? WHERE id = ?",
            [SyncStatus(status).value, record_id],
        )

    def apply_remote_rows(self, table: str, rows: Iterable[Row]) -> int:
        """
        Store rows pulled from the remote store as synced.

        Local rows that are pending or in conflict are left alone; the local
        store stays authoritative until its own changes are delivered.

        Returns:
            Number of rows written
        """
        self._check_table(table)
        written = 0
        try:
            with self.transaction() as conn:
                for row in rows:
                    data = {k: v for k, v in row.items() if k in self.columns(table)}
                    if not data.get("id"):
                        continue
                    record_id = str(data["id"])
                    local = conn.execute(
                        f"SELECT sync_status FROM {table} WHERE id = ?", [record_id]
                    ).fetchone()
                    if local is not None and local["sync_status"] != SyncStatus.SYNCED.value:
                        logger.debug(f"Skipping remote {table}/{record_id}: local changes pending")
                        continue

                    now = self._now()
                    data["id"] = record_id
                    data.setdefault("created_at", now)
                    data.setdefault("updated_at", now)
                    data["sync_status"] = SyncStatus.SYNCED.value
                    encoded = self._encode(table, data)
                    columns = ", ".join(encoded.keys())
                    placeholders = ", ".join(["?" for _ in encoded])
                    conn.execute(
                        f"INSERT OR REPLACE INTO {table} ({columns}) VALUES ({placeholders})",
                        list(encoded.values()),
                    )
                    written += 1
        except sqlite3.Error as e:
            raise LocalWriteError(
                f"Failed to apply remote rows to {table}: {e}",
                table=table,
                operation="pull",
            ) from e

        return written

    # =========================================================================
    # PANDAS INTEGRATION
    # =========================================================================

    def to_dataframe(
        self,
        table: str,
        where: Optional[str] = None,
        params: Optional[List] = None,
    ) -> pd.DataFrame:
        """
        Load a table into a pandas DataFrame.

        Args:
            table: Table name
            where: Optional WHERE clause
            params: Parameters for WHERE clause

        Returns:
            DataFrame with decoded rows (empty frame with table columns if none)
        """
        rows = self.query(table, where=where, params=params)
        if not rows:
            return pd.DataFrame(columns=self.columns(table))
        return pd.DataFrame(rows)

    # =========================================================================
    # SETTINGS
    # =========================================================================

    def get_setting(self, key: str, default: Any = None) -> Any:
        """Get an app setting."""
        row = self._get_connection().execute(
            "SELECT value FROM app_settings WHERE key = ?",
            [key]
        ).fetchone()
        if row is None:
            return default
        try:
            return json.loads(row["value"])
        except json.JSONDecodeError:
            return row["value"]

    def set_setting(self, key: str, value: Any) -> None:
        """Set an app setting."""
        value_str = json.dumps(to_json_safe(value)) if not isinstance(value, str) else value
        with self.transaction() as conn:
            conn.execute(
                """
                INSERT OR REPLACE INTO app_settings (key, value, updated_at)
                VALUES (?, ?, ?)
                """,
                [key, value_str, self._now()]
            )

    def close(self) -> None:
        """Close every connection opened by this store."""
        with self._connections_lock:
            for conn in self._connections:
                try:
                    conn.close()
                except sqlite3.Error as e:
                    logger.debug(f"Error closing connection: {e}")
            self._connections.clear()
        self._local = threading.local()
