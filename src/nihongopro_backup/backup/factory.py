"""
Wiring of concrete collaborators from configuration.
"""

from __future__ import annotations

import logging
from pathlib import Path

from nihongopro_backup.backup.archive import get_codec
from nihongopro_backup.backup.cache import ArchiveCache, DirectoryArchiveCache
from nihongopro_backup.backup.manager import BackupManager
from nihongopro_backup.backup.metadata_store import BackupMetadataStore
from nihongopro_backup.backup.sinks import DirectorySink, FileSaveSink, HttpUploadSink
from nihongopro_backup.backup.versioning import VersionAllocator
from nihongopro_backup.config.settings import Settings
from nihongopro_backup.storage.kv_store import (
    JsonFileKeyValueStore,
    KeyValueStore,
    MemoryKeyValueStore,
    SQLiteKeyValueStore,
)

logger = logging.getLogger(__name__)

KV_JSON_FILE = "storage.json"
KV_SQLITE_FILE = "nihongopro.db"
ARCHIVES_DIR = "archives"


def build_kv_store(settings: Settings) -> KeyValueStore:
    """Create the catalog store selected by ``storage.backend``."""
    data_dir = Path(settings.data_dir).expanduser()
    quota = settings.storage.quota_bytes or None
    backend = settings.storage.backend

    if backend == "sqlite":
        return SQLiteKeyValueStore(data_dir / KV_SQLITE_FILE, quota_bytes=quota)
    if backend == "memory":
        return MemoryKeyValueStore(quota_bytes=quota)
    return JsonFileKeyValueStore(data_dir / KV_JSON_FILE, quota_bytes=quota)


def build_sink(settings: Settings) -> FileSaveSink:
    """Upload to ``share_url`` when set, otherwise write into ``export_dir``."""
    if settings.backup.share_url:
        return HttpUploadSink(
            settings.backup.share_url,
            token=settings.backup.share_token or None,
        )
    return DirectorySink(Path(settings.backup.export_dir).expanduser())


def build_backup_manager(
    settings: Settings,
    sink: FileSaveSink | None = None,
    cache: ArchiveCache | None = None,
) -> BackupManager:
    """
    Build a BackupManager from settings.

    Archives are cached under ``{data_dir}/archives`` so restore and export
    keep working across runs.

    Args:
        settings: Loaded settings.
        sink: Export destination override.
        cache: Archive cache override.

    Returns:
        Configured BackupManager.
    """
    data_dir = Path(settings.data_dir).expanduser()
    backup = settings.backup

    store = BackupMetadataStore(
        build_kv_store(settings),
        reminder_interval_days=backup.reminder_interval_days,
        reminder_cooldown_days=backup.reminder_cooldown_days,
    )
    codec = get_codec(backup.archive_format, backup.compression_level)
    allocator = VersionAllocator(
        store,
        filename_prefix=backup.filename_prefix,
        archive_extension=codec.extension,
    )

    logger.debug(
        f"Backup manager: {settings.storage.backend} store in {data_dir}, "
        f"{codec.extension} archives"
    )
    return BackupManager(
        store,
        allocator=allocator,
        codec=codec,
        sink=sink or build_sink(settings),
        cache=cache if cache is not None else DirectoryArchiveCache(data_dir / ARCHIVES_DIR),
        strict_checksum=backup.strict_checksum,
    )
