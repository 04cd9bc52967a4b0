"""
Persistent key-value stores for backup bookkeeping.

The backup catalog lives under a single string key. This module provides
the storage contract and three implementations:

    - MemoryKeyValueStore: process-local dict, for tests and embedding
    - JsonFileKeyValueStore: one JSON document on disk, written atomically
    - SQLiteKeyValueStore: a ``kv_store`` table in a SQLite database

Every store accepts an optional quota (in bytes, counting UTF-8 keys and
values). A write that would exceed it raises QuotaExceededError, which is
how the backup layer learns that the host store is full.

Thread Safety:
    SQLiteKeyValueStore opens a connection per operation. The file store
    serializes writes with a lock but several processes must not share one
    file.
"""

from __future__ import annotations

import errno
import json
import logging
import os
import sqlite3
import tempfile
import threading
from collections.abc import Generator
from contextlib import contextmanager
from datetime import UTC, datetime
from pathlib import Path
from typing import Protocol, runtime_checkable

logger = logging.getLogger(__name__)


class StorageError(Exception):
    """Base exception for key-value store errors."""

    pass


class QuotaExceededError(StorageError):
    """Raised when a write would exceed the store's size quota."""

    def __init__(self, message: str, quota_bytes: int | None = None) -> None:
        super().__init__(message)
        self.quota_bytes = quota_bytes


@runtime_checkable
class KeyValueStore(Protocol):
    """Contract for host-provided persistent string storage."""

    def get(self, key: str) -> str | None:
        """Return the stored value, or None if absent."""
        ...

    def set(self, key: str, value: str) -> None:
        """Store a value. May raise QuotaExceededError."""
        ...

    def remove(self, key: str) -> None:
        """Delete a key. Missing keys are ignored."""
        ...


def _entry_size(key: str, value: str) -> int:
    return len(key.encode("utf-8")) + len(value.encode("utf-8"))


def _check_quota(quota_bytes: int | None, current: int, key: str, value: str) -> None:
    if not quota_bytes:
        return
    projected = current + _entry_size(key, value)
    if projected > quota_bytes:
        raise QuotaExceededError(
            f"Storage quota exceeded: writing {key!r} needs {projected:,} bytes, "
            f"quota is {quota_bytes:,} bytes",
            quota_bytes=quota_bytes,
        )


class MemoryKeyValueStore:
    """In-memory store. Contents are lost when the process exits."""

    def __init__(self, quota_bytes: int | None = None) -> None:
        self.quota_bytes = quota_bytes
        self._data: dict[str, str] = {}

    def get(self, key: str) -> str | None:
        return self._data.get(key)

    def set(self, key: str, value: str) -> None:
        current = sum(_entry_size(k, v) for k, v in self._data.items() if k != key)
        _check_quota(self.quota_bytes, current, key, value)
        self._data[key] = value

    def remove(self, key: str) -> None:
        self._data.pop(key, None)

    def keys(self) -> list[str]:
        return list(self._data)


class JsonFileKeyValueStore:
    """
    Store backed by a single JSON object on disk.

    Writes go to a temp file in the same directory and are renamed over the
    target so a crash never leaves a half-written file.

    Attributes:
        path: Location of the JSON document.
        quota_bytes: Optional size limit for all keys and values.
    """

    def __init__(self, path: Path | str, quota_bytes: int | None = None) -> None:
        self.path = Path(path)
        self.quota_bytes = quota_bytes
        self._lock = threading.Lock()
        self.path.parent.mkdir(parents=True, exist_ok=True)

    def _load(self) -> dict[str, str]:
        if not self.path.exists():
            return {}
        try:
            with open(self.path, encoding="utf-8") as f:
                data = json.load(f)
        except (OSError, json.JSONDecodeError) as e:
            logger.warning(f"Could not read key-value file {self.path}: {e}")
            return {}
        if not isinstance(data, dict):
            logger.warning(f"Ignoring non-object key-value file {self.path}")
            return {}
        return {str(k): v for k, v in data.items() if isinstance(v, str)}

    def _write(self, data: dict[str, str]) -> None:
        try:
            temp_fd, temp_path = tempfile.mkstemp(suffix=".json", dir=str(self.path.parent))
        except OSError as e:
            raise StorageError(f"Cannot write key-value file {self.path}: {e}") from e
        try:
            with os.fdopen(temp_fd, "w", encoding="utf-8") as f:
                json.dump(data, f, ensure_ascii=False)
            os.replace(temp_path, self.path)
        except OSError as e:
            if os.path.exists(temp_path):
                os.unlink(temp_path)
            if e.errno in (errno.ENOSPC, getattr(errno, "EDQUOT", errno.ENOSPC)):
                raise QuotaExceededError(f"Disk full while writing {self.path}") from e
            raise StorageError(f"Cannot write key-value file {self.path}: {e}") from e

    def get(self, key: str) -> str | None:
        return self._load().get(key)

    def set(self, key: str, value: str) -> None:
        with self._lock:
            data = self._load()
            current = sum(_entry_size(k, v) for k, v in data.items() if k != key)
            _check_quota(self.quota_bytes, current, key, value)
            data[key] = value
            self._write(data)

    def remove(self, key: str) -> None:
        with self._lock:
            data = self._load()
            if key in data:
                del data[key]
                self._write(data)


CREATE_TABLE_SQL = """
CREATE TABLE IF NOT EXISTS kv_store (
    key TEXT PRIMARY KEY,
    value TEXT NOT NULL,
    updated_at TEXT NOT NULL
);
"""


class SQLiteKeyValueStore:
    """
    Store backed by a SQLite table.

    Useful when several tools share one data directory: each write is a
    single transaction.

    Attributes:
        db_path: Path to the SQLite database file.
        quota_bytes: Optional size limit for all keys and values.
    """

    def __init__(self, db_path: Path | str, quota_bytes: int | None = None) -> None:
        self.db_path = Path(db_path)
        self.quota_bytes = quota_bytes
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        with self._get_connection() as conn:
            conn.executescript(CREATE_TABLE_SQL)

    @contextmanager
    def _get_connection(self) -> Generator[sqlite3.Connection, None, None]:
        """Yield a connection; closed when the block exits."""
        conn = sqlite3.connect(
            str(self.db_path),
            isolation_level=None,  # Autocommit mode, we manage transactions manually
            check_same_thread=False,
        )
        try:
            yield conn
        finally:
            conn.close()

    def get(self, key: str) -> str | None:
        with self._get_connection() as conn:
            row = conn.execute("SELECT value FROM kv_store WHERE key = ?", (key,)).fetchone()
        return row[0] if row else None

    def set(self, key: str, value: str) -> None:
        with self._get_connection() as conn:
            try:
                conn.execute("BEGIN IMMEDIATE")
                if self.quota_bytes:
                    (current,) = conn.execute(
                        "SELECT COALESCE(SUM(LENGTH(CAST(key AS BLOB)) + "
                        "LENGTH(CAST(value AS BLOB))), 0) FROM kv_store WHERE key != ?",
                        (key,),
                    ).fetchone()
                    _check_quota(self.quota_bytes, current, key, value)
                conn.execute(
                    "INSERT INTO kv_store (key, value, updated_at) VALUES (?, ?, ?) "
                    "ON CONFLICT(key) DO UPDATE SET value = excluded.value, "
                    "updated_at = excluded.updated_at",
                    (key, value, datetime.now(UTC).isoformat()),
                )
                conn.execute("COMMIT")
            except QuotaExceededError:
                conn.execute("ROLLBACK")
                raise
            except sqlite3.OperationalError as e:
                if conn.in_transaction:
                    conn.execute("ROLLBACK")
                if "full" in str(e).lower():
                    raise QuotaExceededError(f"Database full: {e}") from e
                raise StorageError(f"Cannot write key {key!r}: {e}") from e

    def remove(self, key: str) -> None:
        with self._get_connection() as conn:
            conn.execute("DELETE FROM kv_store WHERE key = ?", (key,))
