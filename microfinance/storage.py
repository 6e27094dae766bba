"""
Storage Backend Module

Provides abstract storage interface and implementations for in-memory (testing)
and SQLite (persistence). All monetary values stored as Decimal strings.

Backend failures surface as StoreFailureError; both backends offer an atomic
compare-and-swap (``update_if``) used to serialize concurrent loan updates.
"""

from abc import ABC, abstractmethod
from typing import Dict, List, Optional, Any, Union, get_args
from decimal import Decimal
from datetime import date, datetime, timezone
from enum import Enum
import sqlite3
import json
import threading
from dataclasses import dataclass, asdict, fields
from pathlib import Path
from contextlib import contextmanager

from .errors import StoreFailureError


def _unwrap_optional(field_type: Any) -> Any:
    """Return T for Optional[T], otherwise the type itself"""
    args = [arg for arg in get_args(field_type) if arg is not type(None)]
    if len(args) == 1:
        return args[0]
    return field_type


def serialize_value(value: Any) -> Any:
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, Decimal):
        return str(value)
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    if isinstance(value, (list, tuple)):
        return [serialize_value(v) for v in value]
    if isinstance(value, dict):
        return {k: serialize_value(v) for k, v in value.items()}
    return value


def _deserialize_value(field_type: Any, value: Any) -> Any:
    if value is None:
        return None
    target = _unwrap_optional(field_type)
    if not isinstance(target, type) or isinstance(value, target):
        return value
    if issubclass(target, Enum):
        return target(value)
    if target is Decimal:
        return Decimal(str(value))
    if target is datetime:
        return datetime.fromisoformat(value)
    if target is date:
        return date.fromisoformat(value[:10])
    return value


@dataclass
class StorageRecord:
    """Base class for all stored records"""
    id: str
    created_at: datetime
    updated_at: datetime

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for storage"""
        result = asdict(self)
        return {key: serialize_value(value) for key, value in result.items()}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'StorageRecord':
        """Create instance from dictionary, restoring Decimal/date/Enum fields"""
        kwargs = {}
        for f in fields(cls):
            if f.name in data:
                kwargs[f.name] = _deserialize_value(f.type, data[f.name])
        return cls(**kwargs)


class StorageInterface(ABC):
    """Abstract interface for storage backends"""

    @abstractmethod
    def save(self, table: str, record_id: str, data: Dict[str, Any]) -> None:
        """Save a record to storage"""
        pass

    @abstractmethod
    def load(self, table: str, record_id: str) -> Optional[Dict[str, Any]]:
        """Load a record from storage"""
        pass

    @abstractmethod
    def load_all(self, table: str) -> List[Dict[str, Any]]:
        """Load all records from a table"""
        pass

    @abstractmethod
    def delete(self, table: str, record_id: str) -> bool:
        """Delete a record from storage"""
        pass

    @abstractmethod
    def exists(self, table: str, record_id: str) -> bool:
        """Check if a record exists"""
        pass

    @abstractmethod
    def find(self, table: str, filters: Dict[str, Any]) -> List[Dict[str, Any]]:
        """Find records matching filters"""
        pass

    @abstractmethod
    def update_if(self, table: str, record_id: str, expected: Dict[str, Any],
                  changes: Dict[str, Any]) -> Optional[Dict[str, Any]]:
        """
        Atomically apply ``changes`` if every key in ``expected`` still holds.

        Returns:
            The updated record, or None when the record is missing or a
            compared value no longer matches
        """
        pass

    @abstractmethod
    def count(self, table: str) -> int:
        """Count records in table"""
        pass

    @abstractmethod
    def clear_table(self, table: str) -> None:
        """Clear all records from a table"""
        pass

    @abstractmethod
    def close(self) -> None:
        """Close storage connection"""
        pass

    def begin_transaction(self) -> None:
        """Start a database transaction (default no-op)"""
        pass

    def commit(self) -> None:
        """Commit current transaction (default no-op)"""
        pass

    def rollback(self) -> None:
        """Rollback current transaction (default no-op)"""
        pass

    @contextmanager
    def atomic(self):
        """Context manager for atomic operations"""
        self.begin_transaction()
        try:
            yield
            self.commit()
        except Exception:
            self.rollback()
            raise


def _matches(record: Dict[str, Any], filters: Dict[str, Any]) -> bool:
    for key, value in filters.items():
        if key not in record or record[key] != value:
            return False
    return True


class InMemoryStorage(StorageInterface):
    """In-memory storage implementation for testing"""

    def __init__(self):
        self._data: Dict[str, Dict[str, Dict[str, Any]]] = {}
        self._lock = threading.RLock()

    def _ensure_table(self, table: str) -> None:
        """Ensure table exists"""
        if table not in self._data:
            self._data[table] = {}

    def save(self, table: str, record_id: str, data: Dict[str, Any]) -> None:
        """Save a record to memory"""
        with self._lock:
            self._ensure_table(table)
            # Deep copy to prevent external mutation
            self._data[table][record_id] = json.loads(json.dumps(data, default=str))

    def load(self, table: str, record_id: str) -> Optional[Dict[str, Any]]:
        """Load a record from memory"""
        with self._lock:
            self._ensure_table(table)
            record = self._data[table].get(record_id)
            if record:
                return json.loads(json.dumps(record))
            return None

    def load_all(self, table: str) -> List[Dict[str, Any]]:
        """Load all records from a table"""
        with self._lock:
            self._ensure_table(table)
            return [json.loads(json.dumps(record)) for record in self._data[table].values()]

    def delete(self, table: str, record_id: str) -> bool:
        """Delete a record from memory"""
        with self._lock:
            self._ensure_table(table)
            if record_id in self._data[table]:
                del self._data[table][record_id]
                return True
            return False

    def exists(self, table: str, record_id: str) -> bool:
        """Check if a record exists"""
        with self._lock:
            self._ensure_table(table)
            return record_id in self._data[table]

    def find(self, table: str, filters: Dict[str, Any]) -> List[Dict[str, Any]]:
        """Find records matching filters"""
        with self._lock:
            self._ensure_table(table)
            return [
                json.loads(json.dumps(record))
                for record in self._data[table].values()
                if _matches(record, filters)
            ]

    def update_if(self, table: str, record_id: str, expected: Dict[str, Any],
                  changes: Dict[str, Any]) -> Optional[Dict[str, Any]]:
        """Compare-and-swap under the storage lock"""
        with self._lock:
            self._ensure_table(table)
            current = self._data[table].get(record_id)
            if current is None or not _matches(current, expected):
                return None
            updated = dict(current)
            updated.update(json.loads(json.dumps(changes, default=str)))
            self._data[table][record_id] = updated
            return json.loads(json.dumps(updated))

    def count(self, table: str) -> int:
        """Count records in table"""
        with self._lock:
            self._ensure_table(table)
            return len(self._data[table])

    def clear_table(self, table: str) -> None:
        """Clear all records from a table"""
        with self._lock:
            self._data[table] = {}

    def begin_transaction(self) -> None:
        """Hold the storage lock so other threads wait until the transaction ends"""
        self._lock.acquire()

    def commit(self) -> None:
        """Release the storage lock"""
        self._lock.release()

    def rollback(self) -> None:
        """Release the storage lock (writes already made are kept)"""
        self._lock.release()

    def close(self) -> None:
        """Close storage (no-op for in-memory)"""
        pass


class SQLiteStorage(StorageInterface):
    """SQLite storage implementation for persistence"""

    def __init__(self, db_path: Union[str, Path] = ":memory:"):
        self.db_path = str(db_path)
        try:
            self._connection = sqlite3.connect(
                self.db_path, check_same_thread=False, isolation_level='DEFERRED'
            )
        except sqlite3.Error as e:
            raise StoreFailureError("Could not open SQLite database", {"error": str(e)})
        self._connection.row_factory = sqlite3.Row
        self._lock = threading.RLock()
        self._in_transaction = False
        self._tx_depth = 0
        self._tables = set()

        if self.db_path != ":memory:":
            with self._guard("configure"):
                self._connection.execute("PRAGMA journal_mode = WAL")
                self._connection.execute("PRAGMA synchronous = NORMAL")
                self._connection.commit()

    @contextmanager
    def _guard(self, operation: str, table: Optional[str] = None):
        """Hold the connection lock and translate sqlite3 errors"""
        with self._lock:
            if self._connection is None:
                raise StoreFailureError("Storage is closed", {"operation": operation})
            try:
                yield
            except sqlite3.Error as e:
                raise StoreFailureError(
                    f"SQLite {operation} failed",
                    {"operation": operation, "table": table, "error": str(e)}
                )

    def _ensure_table(self, table: str) -> None:
        """Ensure table exists with proper schema"""
        if table in self._tables:
            return
        self._connection.execute(f"""
            CREATE TABLE IF NOT EXISTS {table} (
                id TEXT PRIMARY KEY,
                data TEXT NOT NULL,
                created_at TEXT NOT NULL,
                updated_at TEXT NOT NULL
            )
        """)
        self._connection.execute(f"""
            CREATE INDEX IF NOT EXISTS idx_{table}_created_at
            ON {table}(created_at)
        """)
        if not self._in_transaction:
            self._connection.commit()
            self._tables.add(table)

    def _commit_unless_in_transaction(self) -> None:
        if not self._in_transaction:
            self._connection.commit()

    def save(self, table: str, record_id: str, data: Dict[str, Any]) -> None:
        """Save a record to SQLite"""
        with self._guard("save", table):
            self._ensure_table(table)
            now = datetime.now(timezone.utc).isoformat()
            data_json = json.dumps(data, default=str)

            # Use INSERT OR REPLACE to handle updates
            self._connection.execute(f"""
                INSERT OR REPLACE INTO {table} (id, data, created_at, updated_at)
                VALUES (?, ?,
                    COALESCE((SELECT created_at FROM {table} WHERE id = ?), ?),
                    ?)
            """, (record_id, data_json, record_id, now, now))
            self._commit_unless_in_transaction()

    def load(self, table: str, record_id: str) -> Optional[Dict[str, Any]]:
        """Load a record from SQLite"""
        with self._guard("load", table):
            self._ensure_table(table)
            cursor = self._connection.execute(
                f"SELECT data FROM {table} WHERE id = ?", (record_id,)
            )
            row = cursor.fetchone()
            if row:
                return json.loads(row['data'])
            return None

    def load_all(self, table: str) -> List[Dict[str, Any]]:
        """Load all records from a table"""
        with self._guard("load_all", table):
            self._ensure_table(table)
            cursor = self._connection.execute(
                f"SELECT data FROM {table} ORDER BY created_at, rowid"
            )
            return [json.loads(row['data']) for row in cursor.fetchall()]

    def delete(self, table: str, record_id: str) -> bool:
        """Delete a record from SQLite"""
        with self._guard("delete", table):
            self._ensure_table(table)
            cursor = self._connection.execute(
                f"DELETE FROM {table} WHERE id = ?", (record_id,)
            )
            self._commit_unless_in_transaction()
            return cursor.rowcount > 0

    def exists(self, table: str, record_id: str) -> bool:
        """Check if a record exists"""
        with self._guard("exists", table):
            self._ensure_table(table)
            cursor = self._connection.execute(
                f"SELECT 1 FROM {table} WHERE id = ? LIMIT 1", (record_id,)
            )
            return cursor.fetchone() is not None

    def find(self, table: str, filters: Dict[str, Any]) -> List[Dict[str, Any]]:
        """Find records matching filters (simple JSON key matching)"""
        return [record for record in self.load_all(table) if _matches(record, filters)]

    def update_if(self, table: str, record_id: str, expected: Dict[str, Any],
                  changes: Dict[str, Any]) -> Optional[Dict[str, Any]]:
        """Compare-and-swap: read, compare and write under one lock and transaction"""
        with self._guard("update_if", table):
            self._ensure_table(table)
            cursor = self._connection.execute(
                f"SELECT data FROM {table} WHERE id = ?", (record_id,)
            )
            row = cursor.fetchone()
            if row is None:
                return None
            current = json.loads(row['data'])
            if not _matches(current, expected):
                return None
            current.update(json.loads(json.dumps(changes, default=str)))
            self._connection.execute(
                f"UPDATE {table} SET data = ?, updated_at = ? WHERE id = ?",
                (json.dumps(current), datetime.now(timezone.utc).isoformat(), record_id)
            )
            self._commit_unless_in_transaction()
            return current

    def count(self, table: str) -> int:
        """Count records in table"""
        with self._guard("count", table):
            self._ensure_table(table)
            cursor = self._connection.execute(f"SELECT COUNT(*) as count FROM {table}")
            return cursor.fetchone()['count']

    def clear_table(self, table: str) -> None:
        """Clear all records from a table"""
        with self._guard("clear_table", table):
            self._ensure_table(table)
            self._connection.execute(f"DELETE FROM {table}")
            self._commit_unless_in_transaction()

    def begin_transaction(self) -> None:
        """Start a database transaction; other threads wait until it ends"""
        self._lock.acquire()
        self._tx_depth += 1
        self._in_transaction = True

    def _end_transaction(self, operation: str) -> None:
        try:
            if self._tx_depth == 1:
                with self._guard(operation):
                    getattr(self._connection, operation)()
        finally:
            self._tx_depth -= 1
            self._in_transaction = self._tx_depth > 0
            self._lock.release()

    def commit(self) -> None:
        """Commit current transaction (outermost level only)"""
        self._end_transaction("commit")

    def rollback(self) -> None:
        """Rollback current transaction (outermost level only)"""
        self._end_transaction("rollback")

    def close(self) -> None:
        """Close SQLite connection"""
        with self._lock:
            if self._connection:
                self._connection.close()
                self._connection = None


def create_storage(database_url: str) -> StorageInterface:
    """
    Build a storage backend from a database URL.

    Supported forms are ``memory://``, ``sqlite://`` (in-memory SQLite) and
    ``sqlite:///path/to/file.db``.
    """
    if database_url.startswith("memory://"):
        return InMemoryStorage()
    if database_url.startswith("sqlite://"):
        path = database_url[len("sqlite:///"):] if database_url.startswith("sqlite:///") else ""
        return SQLiteStorage(path or ":memory:")
    raise ValueError(f"Unsupported database URL: {database_url}")
