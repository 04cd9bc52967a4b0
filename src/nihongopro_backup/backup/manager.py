"""
Backup orchestration for NihongoPro.

The BackupManager creates, restores, imports, exports and deletes backups.
A backup is an archive holding ``backup.json``, the serialized envelope
(format version, catalog entry, user/logs/settings payload, export date).
Only catalog metadata goes to the key-value store; archive bytes are kept
in an archive cache owned by the manager, so restore and export work for
as long as the cache keeps them and otherwise ask for a re-import.

Archives written by the pre-versioning app (``kawaii_backup.json``,
format 1.0) are upgraded on read into a 2.0 envelope whose id is derived
from the file content, so importing the same file twice is a duplicate.
"""

from __future__ import annotations

import json
import logging
import threading
from dataclasses import dataclass, replace
from datetime import UTC, datetime
from typing import Any

from nihongopro_backup.backup.archive import (
    ARCHIVE_FORMATS,
    BACKUP_DATA_FILENAME,
    LEGACY_DATA_FILENAME,
    ArchiveCodec,
    ArchiveFormatError,
    ZipArchiveCodec,
)
from nihongopro_backup.backup.cache import ArchiveCache, MemoryArchiveCache
from nihongopro_backup.backup.errors import BackupError, BackupErrorKind
from nihongopro_backup.backup.metadata_store import BackupMetadataStore
from nihongopro_backup.backup.models import (
    SOURCE_IMPORTED,
    SOURCE_LOCAL,
    BackupData,
    BackupPayload,
    BackupVersion,
    build_envelope,
    parse_iso_datetime,
    serialize_envelope,
    utc_now_iso,
    verify_envelope_integrity,
)
from nihongopro_backup.backup.sinks import FileSaveSink
from nihongopro_backup.backup.validators import validate_backup_data
from nihongopro_backup.backup.versioning import VersionAllocator, derive_legacy_version_id

logger = logging.getLogger(__name__)

_OLDEST = datetime.min.replace(tzinfo=UTC)


@dataclass
class CreatedBackup:
    """Result of create_backup: the catalog entry and its archive bytes."""

    version: BackupVersion
    archive: bytes


class BackupManager:
    """
    Manages backup operations against injected collaborators.

    Example:
        store = BackupMetadataStore(JsonFileKeyValueStore(path))
        manager = BackupManager(store, sink=DirectorySink("exports"))
        created = manager.create_backup({"user": user, "logs": logs, "settings": settings})
        envelope = manager.restore_backup(created.version)

    Every exception raised by a public method is a BackupError.
    """

    def __init__(
        self,
        metadata_store: BackupMetadataStore,
        allocator: VersionAllocator | None = None,
        codec: ArchiveCodec | None = None,
        sink: FileSaveSink | None = None,
        cache: ArchiveCache | None = None,
        strict_checksum: bool = False,
    ) -> None:
        """
        Initialize backup manager.

        Args:
            metadata_store: Catalog store.
            allocator: Version allocator (default: one over metadata_store
                using the codec's extension).
            codec: Archive codec used to write backups (default: zip).
            sink: Destination for exported archives. Export fails without one.
            cache: Archive byte cache (default: in-memory, per session).
            strict_checksum: Reject restores and imports whose checksum or
                size do not match instead of only logging the mismatch.
        """
        self.metadata_store = metadata_store
        self.codec = codec or ZipArchiveCodec()
        self.allocator = allocator or VersionAllocator(
            metadata_store, archive_extension=self.codec.extension
        )
        self.sink = sink
        self.cache = cache if cache is not None else MemoryArchiveCache()
        self.strict_checksum = strict_checksum
        self._lock = threading.RLock()

    # -------------------------------------------------------------------------
    # Create / restore
    # -------------------------------------------------------------------------

    def create_backup(
        self,
        payload: BackupPayload | dict[str, Any],
        description: str | None = None,
    ) -> CreatedBackup:
        """
        Create a new backup from the caller's snapshot.

        The envelope is sealed in two passes, packed under ``backup.json``,
        recorded in the catalog and cached. The reminder dismissal is
        cleared so the reminder cadence restarts from this backup.

        Args:
            payload: ``user``, ``logs`` and ``settings`` to back up.
            description: Optional note stored on the version.

        Returns:
            CreatedBackup with the version and the archive bytes.

        Raises:
            BackupError: VALIDATION_ERROR if the payload does not form a
                valid envelope, QUOTA_EXCEEDED if the catalog cannot be
                saved, SERIALIZATION_ERROR for anything else.
        """
        try:
            if isinstance(payload, dict):
                payload = BackupPayload.from_dict(payload)

            with self._lock:
                timestamp = utc_now_iso()
                version = BackupVersion(
                    id=self.allocator.generate_version_id(),
                    version_number=self.allocator.get_next_version_number(),
                    timestamp=timestamp,
                    source=SOURCE_LOCAL,
                    description=description,
                )
                envelope, text = build_envelope(version, payload, export_date=timestamp)
                self._validate(envelope.to_dict(), "Cannot create backup")

                archive = self.codec.pack({BACKUP_DATA_FILENAME: text.encode("utf-8")})

                self._record(envelope.backup_version, archive)
                self.metadata_store.clear_reminder_dismissed_at()

        except BackupError:
            raise
        except Exception as e:
            raise BackupError(
                f"Failed to create backup: {e}",
                BackupErrorKind.SERIALIZATION_ERROR,
            ) from e

        sealed = envelope.backup_version
        logger.info(
            f"Backup created: v{sealed.version_number} ({sealed.id}), "
            f"{sealed.data_size:,} bytes, checksum {sealed.checksum}"
        )
        return CreatedBackup(version=sealed, archive=archive)

    def restore_backup(
        self,
        version: BackupVersion | str,
        archive_bytes: bytes | None = None,
    ) -> BackupData:
        """
        Read back a backup's envelope.

        Nothing in the catalog changes; applying the payload, or recording
        a new backup, is up to the caller.

        Args:
            version: Version record or id to restore.
            archive_bytes: Archive to read (default: the cached archive).

        Returns:
            The validated envelope.

        Raises:
            BackupError: NOT_FOUND when no archive bytes are available,
                ARCHIVE_ERROR, INVALID_FORMAT or VALIDATION_ERROR when the
                archive cannot be read.
        """
        try:
            version_id = version if isinstance(version, str) else version.id
            data = self._archive_for(version_id, archive_bytes)
            envelope, _ = self._parse(data)

            if envelope.backup_version.id != version_id:
                logger.warning(
                    f"Archive holds version {envelope.backup_version.id}, "
                    f"expected {version_id}"
                )
        except BackupError:
            raise
        except Exception as e:
            raise BackupError(
                f"Failed to restore backup: {e}",
                BackupErrorKind.UNKNOWN,
            ) from e

        logger.info(
            f"Backup restored: v{envelope.backup_version.version_number} "
            f"({len(envelope.logs)} study logs)"
        )
        return envelope

    def parse_backup_file(self, archive_bytes: bytes) -> BackupData:
        """
        Parse and validate an archive without cataloging it.

        Useful for previewing a file before importing or restoring it.
        Legacy archives are returned upgraded, with a provisional id and
        version number.

        Raises:
            BackupError: ARCHIVE_ERROR, INVALID_FORMAT or VALIDATION_ERROR.
        """
        try:
            envelope, _ = self._parse(archive_bytes)
        except BackupError:
            raise
        except Exception as e:
            raise BackupError(
                f"Failed to parse backup file: {e}",
                BackupErrorKind.UNKNOWN,
            ) from e
        return envelope

    # -------------------------------------------------------------------------
    # Import / export / delete
    # -------------------------------------------------------------------------

    def import_backup(self, file_bytes: bytes, file_name: str) -> BackupVersion:
        """
        Import a backup file from another device or an earlier export.

        Args:
            file_bytes: Raw archive bytes.
            file_name: Original filename, used for the type check.

        Returns:
            The cataloged version, with source "imported".

        Raises:
            BackupError: INVALID_FORMAT for non-archive files, ARCHIVE_ERROR
                or VALIDATION_ERROR for unreadable ones, DUPLICATE_VERSION
                when the id is already cataloged (the catalog is untouched).
        """
        try:
            if not self._looks_like_archive(file_bytes, file_name):
                raise BackupError(
                    f"Invalid file type. Please select a .{self.codec.extension} backup file.",
                    BackupErrorKind.INVALID_FORMAT,
                )

            with self._lock:
                envelope, legacy = self._parse(file_bytes)
                incoming = envelope.backup_version

                existing = self.metadata_store.get_backup_metadata().find(incoming.id)
                if existing is not None:
                    raise BackupError(
                        f"Duplicate backup version detected (v{existing.version_number}). "
                        f"This backup has already been imported.",
                        BackupErrorKind.DUPLICATE_VERSION,
                        existing_version_number=existing.version_number,
                    )

                imported = replace(incoming, source=SOURCE_IMPORTED)
                if legacy:
                    upgraded = replace(envelope, backup_version=imported)
                    archive = self.codec.pack(
                        {BACKUP_DATA_FILENAME: serialize_envelope(upgraded).encode("utf-8")}
                    )
                else:
                    archive = file_bytes
                self._record(imported, archive)

        except BackupError:
            raise
        except Exception as e:
            raise BackupError(
                f"Failed to import backup: {e}",
                BackupErrorKind.UNKNOWN,
            ) from e

        logger.info(
            f"Backup imported from {file_name}: v{imported.version_number} ({imported.id})"
            + (" [upgraded from legacy format]" if legacy else "")
        )
        return imported

    def export_backup_file(
        self,
        version: BackupVersion | str,
        archive_bytes: bytes | None = None,
    ) -> str:
        """
        Hand a backup archive to the configured sink.

        Args:
            version: Version record or cataloged id.
            archive_bytes: Archive to export (default: the cached archive).

        Returns:
            The filename the archive was saved under.

        Raises:
            BackupError: NOT_FOUND when the version or its bytes are
                unavailable, UNKNOWN when the sink fails.
        """
        try:
            record = self._resolve(version)
            data = self._archive_for(record.id, archive_bytes)

            if self.sink is None:
                raise BackupError(
                    "No export destination configured",
                    BackupErrorKind.UNKNOWN,
                )

            filename = self.allocator.generate_backup_filename(record)
            self.sink.save(data, filename)
        except BackupError:
            raise
        except Exception as e:
            raise BackupError(
                f"Failed to export backup: {e}",
                BackupErrorKind.UNKNOWN,
            ) from e

        logger.info(f"Backup v{record.version_number} exported as {filename}")
        return filename

    def delete_backup(self, version_id: str) -> bool:
        """
        Delete a version from the catalog and drop its cached archive.

        Raises:
            BackupError: NOT_FOUND if the id is not cataloged.
        """
        try:
            with self._lock:
                if not self.metadata_store.remove_backup_metadata(version_id):
                    raise BackupError("Backup version not found", BackupErrorKind.NOT_FOUND)
                self.cache.discard(version_id)
        except BackupError:
            raise
        except Exception as e:
            raise BackupError(
                f"Failed to delete backup: {e}",
                BackupErrorKind.UNKNOWN,
            ) from e

        logger.info(f"Backup deleted: {version_id}")
        return True

    # -------------------------------------------------------------------------
    # History and reminder
    # -------------------------------------------------------------------------

    def get_backup_history(self) -> list[BackupVersion]:
        """Catalog versions, newest first (ties broken by version number)."""
        versions = self.metadata_store.get_backup_metadata().versions
        return sorted(
            versions,
            key=lambda v: (v.created_at or _OLDEST, v.version_number),
            reverse=True,
        )

    def has_archive(self, version_id: str) -> bool:
        """Whether restore and export can run without re-importing the file."""
        return version_id in self.cache

    def should_show_backup_reminder(self, now: datetime | None = None) -> bool:
        return self.metadata_store.should_show_backup_reminder(now)

    def dismiss_backup_reminder(self) -> None:
        self.metadata_store.set_reminder_dismissed_at()

    def clear_backup_reminder(self) -> None:
        self.metadata_store.clear_reminder_dismissed_at()

    # -------------------------------------------------------------------------
    # Internals
    # -------------------------------------------------------------------------

    def _record(self, version: BackupVersion, archive: bytes) -> None:
        """Cache the archive, then catalog the version; a failed catalog write drops the archive."""
        self.cache.put(version.id, archive)
        try:
            self.metadata_store.add_backup_version(version)
        except Exception:
            self.cache.discard(version.id)
            raise

    def _resolve(self, version: BackupVersion | str) -> BackupVersion:
        if isinstance(version, BackupVersion):
            return version
        record = self.metadata_store.get_backup_metadata().find(version)
        if record is None:
            raise BackupError(f"Backup version not found: {version}", BackupErrorKind.NOT_FOUND)
        return record

    def _archive_for(self, version_id: str, archive_bytes: bytes | None) -> bytes:
        if archive_bytes is not None:
            if not archive_bytes:
                raise BackupError(
                    "Invalid backup file: the file is empty",
                    BackupErrorKind.ARCHIVE_ERROR,
                )
            return archive_bytes
        cached = self.cache.get(version_id)
        if not cached:
            raise BackupError(
                "Backup file is not available in this session. "
                "Please re-import the backup file.",
                BackupErrorKind.NOT_FOUND,
            )
        return cached

    def _codec_for(self, data: bytes) -> ArchiveCodec:
        if self.codec.matches(data):
            return self.codec
        for codec_class in ARCHIVE_FORMATS.values():
            codec = codec_class()
            if codec.matches(data):
                return codec
        return self.codec

    def _looks_like_archive(self, data: bytes, file_name: str) -> bool:
        lowered = file_name.lower()
        if any(lowered.endswith(f".{ext}") for ext in ARCHIVE_FORMATS):
            return True
        return any(codec_class().matches(data) for codec_class in ARCHIVE_FORMATS.values())

    def _unpack(self, data: bytes) -> dict[str, bytes]:
        try:
            return self._codec_for(data).unpack(data)
        except ArchiveFormatError as e:
            raise BackupError(
                f"Invalid backup file: {e}",
                BackupErrorKind.ARCHIVE_ERROR,
            ) from e

    def _read_json(self, raw: bytes) -> Any:
        try:
            return json.loads(raw.decode("utf-8"))
        except (UnicodeDecodeError, json.JSONDecodeError) as e:
            raise BackupError(
                "Invalid backup file: corrupted JSON data",
                BackupErrorKind.INVALID_FORMAT,
            ) from e

    def _validate(self, data: Any, context: str) -> None:
        validation = validate_backup_data(data)
        if not validation.valid:
            raise BackupError(
                f"{context}: {', '.join(validation.errors)}",
                BackupErrorKind.VALIDATION_ERROR,
                errors=validation.errors,
            )

    def _parse(self, archive_bytes: bytes) -> tuple[BackupData, bool]:
        """
        Unpack, parse and validate an archive.

        Returns:
            Tuple of (envelope, whether it was upgraded from the legacy format).
        """
        entries = self._unpack(archive_bytes)

        if BACKUP_DATA_FILENAME in entries:
            data = self._read_json(entries[BACKUP_DATA_FILENAME])
            self._validate(data, "Invalid backup data")
            envelope = BackupData.from_dict(data)
            self._check_integrity(envelope)
            return envelope, False

        if LEGACY_DATA_FILENAME in entries:
            raw = entries[LEGACY_DATA_FILENAME]
            data = self._read_json(raw)
            envelope = self._upgrade_legacy(data, raw.decode("utf-8"))
            self._validate(envelope.to_dict(), "Invalid legacy backup data")
            return envelope, True

        raise BackupError(
            f"Invalid backup file: missing {BACKUP_DATA_FILENAME}",
            BackupErrorKind.INVALID_FORMAT,
        )

    def _upgrade_legacy(self, data: Any, content: str) -> BackupData:
        if not isinstance(data, dict):
            raise BackupError(
                "Invalid legacy backup data: BackupData must be an object",
                BackupErrorKind.VALIDATION_ERROR,
                errors=["BackupData must be an object"],
            )

        export_date = data.get("exportDate")
        timestamp = export_date if parse_iso_datetime(export_date) else utc_now_iso()
        version = BackupVersion(
            id=derive_legacy_version_id(content),
            version_number=self.allocator.get_next_version_number(),
            timestamp=timestamp,
            source=SOURCE_IMPORTED,
        )
        envelope, _ = build_envelope(version, BackupPayload.from_dict(data), export_date=timestamp)
        logger.debug(f"Upgraded legacy backup from {timestamp} to v{version.version_number}")
        return envelope

    def _check_integrity(self, envelope: BackupData) -> None:
        problems = verify_envelope_integrity(envelope)
        if not problems:
            return
        if self.strict_checksum:
            raise BackupError(
                f"Backup integrity check failed: {', '.join(problems)}",
                BackupErrorKind.VALIDATION_ERROR,
                errors=problems,
            )
        logger.warning(
            f"Backup v{envelope.backup_version.version_number} integrity check: "
            f"{'; '.join(problems)}"
        )
