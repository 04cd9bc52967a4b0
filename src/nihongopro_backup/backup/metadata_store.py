"""
Backup catalog persistence.

The catalog (version entries, last backup date, reminder dismissal time)
is stored as one JSON document in a host-provided key-value store. Reads
never fail: a missing, unparsable or invalid catalog degrades to an empty
one and is logged. Writes are validated first and surface storage
problems as BackupError with QUOTA_EXCEEDED, VALIDATION_ERROR or UNKNOWN.

Every read-modify-write runs under a per-store lock so threads sharing a
store cannot lose each other's updates. Separate processes writing the
same store must still be serialized by the caller.
"""

from __future__ import annotations

import json
import logging
import threading
from datetime import UTC, datetime, timedelta

from nihongopro_backup.backup.errors import BackupError, BackupErrorKind
from nihongopro_backup.backup.models import (
    BackupMetadata,
    BackupVersion,
    format_iso,
    parse_iso_datetime,
)
from nihongopro_backup.backup.validators import (
    validate_backup_metadata,
    validate_backup_version,
)
from nihongopro_backup.storage.kv_store import KeyValueStore, QuotaExceededError

logger = logging.getLogger(__name__)

METADATA_KEY = "nihongopro_backup_metadata"

DEFAULT_REMINDER_INTERVAL_DAYS = 7
DEFAULT_REMINDER_COOLDOWN_DAYS = 3


class BackupMetadataStore:
    """
    CRUD over the backup catalog.

    Example:
        store = BackupMetadataStore(JsonFileKeyValueStore(path))
        store.add_backup_version(version)
        if store.should_show_backup_reminder():
            ...

    Attributes:
        kv_store: Underlying key-value store.
        reminder_interval_days: Days after the last backup before reminding.
        reminder_cooldown_days: Days a dismissed reminder stays hidden.
    """

    def __init__(
        self,
        kv_store: KeyValueStore,
        reminder_interval_days: int = DEFAULT_REMINDER_INTERVAL_DAYS,
        reminder_cooldown_days: int = DEFAULT_REMINDER_COOLDOWN_DAYS,
        key: str = METADATA_KEY,
    ) -> None:
        self.kv_store = kv_store
        self.reminder_interval_days = reminder_interval_days
        self.reminder_cooldown_days = reminder_cooldown_days
        self.key = key
        self._lock = threading.RLock()

    # -------------------------------------------------------------------------
    # Catalog
    # -------------------------------------------------------------------------

    def get_backup_metadata(self) -> BackupMetadata:
        """
        Load the catalog.

        Returns:
            The stored catalog, or an empty one if it is absent, unparsable
            or fails validation.
        """
        try:
            stored = self.kv_store.get(self.key)
        except Exception as e:
            logger.error(f"Failed to read backup metadata: {e}")
            return BackupMetadata()

        if not stored:
            return BackupMetadata()

        try:
            parsed = json.loads(stored)
        except json.JSONDecodeError as e:
            logger.error(f"Failed to parse backup metadata: {e}")
            return BackupMetadata()

        validation = validate_backup_metadata(parsed)
        if not validation.valid:
            logger.warning(
                f"Invalid backup metadata in storage, using empty catalog: "
                f"{'; '.join(validation.errors)}"
            )
            return BackupMetadata()

        return BackupMetadata.from_dict(parsed)

    def save_backup_metadata(self, metadata: BackupMetadata) -> None:
        """
        Persist the catalog.

        Raises:
            BackupError: VALIDATION_ERROR if the catalog is invalid,
                QUOTA_EXCEEDED if the store is full, UNKNOWN otherwise.
        """
        data = metadata.to_dict()
        validation = validate_backup_metadata(data)
        if not validation.valid:
            raise BackupError(
                f"Invalid backup metadata: {', '.join(validation.errors)}",
                BackupErrorKind.VALIDATION_ERROR,
                errors=validation.errors,
            )

        try:
            self.kv_store.set(self.key, json.dumps(data, ensure_ascii=False))
        except QuotaExceededError as e:
            raise BackupError(
                "Storage quota exceeded. Please delete some old backups to free up space.",
                BackupErrorKind.QUOTA_EXCEEDED,
            ) from e
        except Exception as e:
            raise BackupError(
                f"Failed to save backup metadata: {e}",
                BackupErrorKind.UNKNOWN,
            ) from e

    def add_backup_version(self, version: BackupVersion) -> None:
        """
        Record a version, replacing any entry with the same id.

        Also sets the last backup date to the version's timestamp.

        Raises:
            BackupError: If the version is invalid or saving fails.
        """
        validation = validate_backup_version(version.to_dict())
        if not validation.valid:
            raise BackupError(
                f"Invalid backup version: {', '.join(validation.errors)}",
                BackupErrorKind.VALIDATION_ERROR,
                errors=validation.errors,
            )

        with self._lock:
            metadata = self.get_backup_metadata()
            for index, existing in enumerate(metadata.versions):
                if existing.id == version.id:
                    metadata.versions[index] = version
                    break
            else:
                metadata.versions.append(version)

            metadata.last_backup_date = version.timestamp
            self.save_backup_metadata(metadata)

        logger.debug(f"Recorded backup version v{version.version_number} ({version.id})")

    def remove_backup_metadata(self, version_id: str) -> bool:
        """
        Remove a version from the catalog.

        Returns:
            True if the version was found and removed. Nothing is written
            when it was not found.
        """
        with self._lock:
            metadata = self.get_backup_metadata()
            remaining = [v for v in metadata.versions if v.id != version_id]
            if len(remaining) == len(metadata.versions):
                return False
            metadata.versions = remaining
            self.save_backup_metadata(metadata)
        return True

    def clear_all_metadata(self) -> None:
        """Delete the whole catalog (explicit reset)."""
        with self._lock:
            self.kv_store.remove(self.key)
        logger.info("Backup metadata cleared")

    # -------------------------------------------------------------------------
    # Backup dates and reminder
    # -------------------------------------------------------------------------

    def get_last_backup_date(self) -> datetime | None:
        return parse_iso_datetime(self.get_backup_metadata().last_backup_date)

    def set_last_backup_date(self, date: datetime) -> None:
        with self._lock:
            metadata = self.get_backup_metadata()
            metadata.last_backup_date = format_iso(date)
            self.save_backup_metadata(metadata)

    def get_reminder_dismissed_at(self) -> datetime | None:
        return parse_iso_datetime(self.get_backup_metadata().reminder_dismissed_at)

    def set_reminder_dismissed_at(self, date: datetime | None = None) -> None:
        """Record that the reminder was dismissed (now, by default)."""
        with self._lock:
            metadata = self.get_backup_metadata()
            metadata.reminder_dismissed_at = format_iso(date or datetime.now(UTC))
            self.save_backup_metadata(metadata)

    def clear_reminder_dismissed_at(self) -> None:
        with self._lock:
            metadata = self.get_backup_metadata()
            metadata.reminder_dismissed_at = None
            self.save_backup_metadata(metadata)

    def should_show_backup_reminder(self, now: datetime | None = None) -> bool:
        """
        Decide whether to remind the user to back up.

        The reminder is hidden while a dismissal is younger than the
        cooldown. Otherwise it is shown when there has never been a backup
        or the last one is at least ``reminder_interval_days`` old.

        Args:
            now: Reference time (defaults to the current UTC time).
        """
        now = now or datetime.now(UTC)
        if now.tzinfo is None:
            now = now.replace(tzinfo=UTC)
        metadata = self.get_backup_metadata()

        dismissed_at = parse_iso_datetime(metadata.reminder_dismissed_at)
        if dismissed_at and now - dismissed_at < timedelta(days=self.reminder_cooldown_days):
            return False

        last_backup = parse_iso_datetime(metadata.last_backup_date)
        if last_backup is None:
            return True

        return now - last_backup >= timedelta(days=self.reminder_interval_days)
