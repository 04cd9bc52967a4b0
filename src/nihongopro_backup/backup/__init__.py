"""
Backup and versioning for NihongoPro learner data.

This module snapshots a learner's local state (profile, study logs and
settings) into versioned backup archives, keeps a catalog of those
versions, and restores, imports and exports them across devices.

Usage:
    from nihongopro_backup.backup import BackupManager, BackupMetadataStore

    store = BackupMetadataStore(kv_store)
    manager = BackupManager(store, sink=DirectorySink(export_dir))

    # Create a backup
    created = manager.create_backup({"user": user, "logs": logs, "settings": settings})

    # Restore it
    envelope = manager.restore_backup(created.version)

    # Import a file from another device
    version = manager.import_backup(file_bytes, "nihongopro_backup_v3_20240115_143000.zip")
"""

from nihongopro_backup.backup.archive import (
    ArchiveCodec,
    ArchiveFormatError,
    TarGzArchiveCodec,
    ZipArchiveCodec,
    get_codec,
)
from nihongopro_backup.backup.cache import (
    ArchiveCache,
    DirectoryArchiveCache,
    MemoryArchiveCache,
)
from nihongopro_backup.backup.errors import BackupError, BackupErrorKind
from nihongopro_backup.backup.manager import BackupManager, CreatedBackup
from nihongopro_backup.backup.metadata_store import BackupMetadataStore
from nihongopro_backup.backup.models import (
    BACKUP_FORMAT_VERSION,
    BackupData,
    BackupMetadata,
    BackupPayload,
    BackupVersion,
    generate_checksum,
)
from nihongopro_backup.backup.sinks import (
    DirectorySink,
    FileSaveSink,
    HttpUploadSink,
    SinkError,
)
from nihongopro_backup.backup.validators import ValidationResult, validate_backup_data
from nihongopro_backup.backup.versioning import VersionAllocator

__all__ = [
    # Orchestration
    "BackupManager",
    "CreatedBackup",
    "BackupMetadataStore",
    "VersionAllocator",
    # Data models
    "BACKUP_FORMAT_VERSION",
    "BackupVersion",
    "BackupPayload",
    "BackupData",
    "BackupMetadata",
    "generate_checksum",
    "ValidationResult",
    "validate_backup_data",
    # Collaborators
    "ArchiveCodec",
    "ZipArchiveCodec",
    "TarGzArchiveCodec",
    "get_codec",
    "ArchiveCache",
    "MemoryArchiveCache",
    "DirectoryArchiveCache",
    "FileSaveSink",
    "DirectorySink",
    "HttpUploadSink",
    # Exceptions
    "BackupError",
    "BackupErrorKind",
    "ArchiveFormatError",
    "SinkError",
]
