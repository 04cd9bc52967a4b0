"""
Version identifiers, version numbers and display names for backups.

Ids are random UUIDs because catalogs are built independently on several
devices and a local counter cannot keep them unique. Version numbers are
local: the next number is always one more than the highest number in the
current catalog, imported entries included.
"""

from __future__ import annotations

import uuid
from datetime import datetime
from typing import TYPE_CHECKING

from nihongopro_backup.backup.models import BackupVersion, parse_iso_datetime

if TYPE_CHECKING:
    from nihongopro_backup.backup.metadata_store import BackupMetadataStore

DEFAULT_FILENAME_PREFIX = "nihongopro"
DEFAULT_ARCHIVE_EXTENSION = "zip"

# Namespace for ids derived from pre-versioning backup files
LEGACY_ID_NAMESPACE = uuid.uuid5(uuid.NAMESPACE_URL, "nihongopro:legacy-backup")


def generate_uuid() -> str:
    """Generate a UUID v4 string."""
    return str(uuid.uuid4())


def derive_legacy_version_id(content: str) -> str:
    """
    Derive a stable id for a legacy backup file.

    Legacy files carry no id, so the id is a UUID v5 of the file content:
    reading the same file twice yields the same id.
    """
    return str(uuid.uuid5(LEGACY_ID_NAMESPACE, content))


class VersionAllocator:
    """
    Allocates ids and version numbers and formats labels and filenames.

    Example:
        allocator = VersionAllocator(metadata_store)
        number = allocator.get_next_version_number()
        name = allocator.generate_backup_filename(version)
        # nihongopro_backup_v3_20240115_143000.zip
    """

    def __init__(
        self,
        metadata_store: BackupMetadataStore,
        filename_prefix: str = DEFAULT_FILENAME_PREFIX,
        archive_extension: str = DEFAULT_ARCHIVE_EXTENSION,
    ) -> None:
        """
        Initialize the allocator.

        Args:
            metadata_store: Catalog store, read to find the highest number.
            filename_prefix: Prefix for generated backup filenames.
            archive_extension: Extension of the archive format (no dot).
        """
        self._store = metadata_store
        self.filename_prefix = filename_prefix
        self.archive_extension = archive_extension.lstrip(".")

    def generate_version_id(self) -> str:
        """Generate a globally unique version id."""
        return generate_uuid()

    def get_next_version_number(self) -> int:
        """
        Get the number for the next backup.

        Returns:
            One more than the highest version number in the catalog
            (1 for an empty catalog).
        """
        metadata = self._store.get_backup_metadata()
        highest = max((v.version_number or 0 for v in metadata.versions), default=0)
        return max(0, highest) + 1

    def format_version_label(self, version: BackupVersion | None) -> str:
        """
        Format a label for display, e.g. ``v1 - 2024-01-15 14:30``.

        The time is shown in the local timezone.
        """
        if version is None:
            return ""
        number = version.version_number or 1
        created = _local_time(version.timestamp)
        date_text = created.strftime("%Y-%m-%d %H:%M") if created else "Invalid Date"
        return f"v{number} - {date_text}"

    def generate_backup_filename(self, version: BackupVersion | None) -> str:
        """
        Build the export filename for a version.

        Format: ``{prefix}_backup_v{n}_{YYYYMMDD_HHmmss}.{ext}`` in local time.
        """
        if version is None:
            return f"{self.filename_prefix}_backup.{self.archive_extension}"
        number = version.version_number or 1
        created = _local_time(version.timestamp)
        stamp = created.strftime("%Y%m%d_%H%M%S") if created else "invalid"
        return f"{self.filename_prefix}_backup_v{number}_{stamp}.{self.archive_extension}"


def _local_time(timestamp: str | None) -> datetime | None:
    if not timestamp:
        return datetime.now().astimezone()
    parsed = parse_iso_datetime(timestamp)
    return parsed.astimezone() if parsed else None
