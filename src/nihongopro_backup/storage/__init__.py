"""
Key-value storage for the backup catalog.

Stores:
    - MemoryKeyValueStore: process-local, for tests and embedding
    - JsonFileKeyValueStore: one JSON document on disk
    - SQLiteKeyValueStore: a table in a SQLite database

Usage:
    from nihongopro_backup.storage import JsonFileKeyValueStore

    store = JsonFileKeyValueStore("~/.nihongopro/data/storage.json", quota_bytes=5 * 1024 * 1024)
    store.set("nihongopro_backup_metadata", "{...}")
"""

from nihongopro_backup.storage.kv_store import (
    JsonFileKeyValueStore,
    KeyValueStore,
    MemoryKeyValueStore,
    QuotaExceededError,
    SQLiteKeyValueStore,
    StorageError,
)

__all__ = [
    "KeyValueStore",
    "MemoryKeyValueStore",
    "JsonFileKeyValueStore",
    "SQLiteKeyValueStore",
    # Exceptions
    "StorageError",
    "QuotaExceededError",
]
