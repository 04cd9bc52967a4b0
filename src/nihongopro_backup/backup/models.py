"""
Data models for the backup subsystem.

This module defines the dataclasses that describe catalog entries, backup
envelopes and the catalog itself, plus the checksum and the two-pass
envelope builder.

Schema Design Decisions:
    - IDs are UUID v4 strings so catalogs built on different devices never
      collide
    - Timestamps are kept as the ISO 8601 strings found on the wire so a
      re-serialized envelope matches the one that was checksummed
    - Wire keys are camelCase; attributes are snake_case
    - Payload sections (user, logs, settings) are carried as plain JSON
      values, unknown keys included, so a restore returns exactly what was
      backed up
"""

from __future__ import annotations

import copy
import json
from collections.abc import Iterator
from dataclasses import dataclass, field, replace
from datetime import UTC, datetime
from typing import Any

# Current backup format version
BACKUP_FORMAT_VERSION = "2.0"

# Format written by the pre-versioning app (single kawaii_backup.json entry)
LEGACY_FORMAT_VERSION = "1.0"

SOURCE_LOCAL = "local"
SOURCE_IMPORTED = "imported"
BACKUP_SOURCES = (SOURCE_LOCAL, SOURCE_IMPORTED)


def utc_now_iso() -> str:
    """Current time as an ISO 8601 UTC string with millisecond precision."""
    return format_iso(datetime.now(UTC))


def format_iso(value: datetime) -> str:
    """Format a datetime the way the mobile app writes timestamps (``...Z``)."""
    if value.tzinfo is None:
        value = value.replace(tzinfo=UTC)
    text = value.astimezone(UTC).isoformat(timespec="milliseconds")
    return text.replace("+00:00", "Z")


def parse_iso_datetime(value: Any) -> datetime | None:
    """
    Parse an ISO 8601 string into an aware datetime.

    Naive values are interpreted as UTC.

    Returns:
        The parsed datetime, or None if the value is not a valid ISO string.
    """
    if not isinstance(value, str) or not value:
        return None
    try:
        parsed = datetime.fromisoformat(value)
    except ValueError:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=UTC)
    return parsed


def _to_int32(value: int) -> int:
    value &= 0xFFFFFFFF
    if value >= 0x80000000:
        value -= 0x100000000
    return value


def _utf16_code_units(data: str) -> Iterator[int]:
    encoded = data.encode("utf-16-le", "surrogatepass")
    for index in range(0, len(encoded), 2):
        yield encoded[index] | (encoded[index + 1] << 8)


def generate_checksum(data: str) -> str:
    """
    Compute the backup checksum of a string.

    A 32-bit rolling hash (``hash * 31 + code``) over the UTF-16 code units
    of the input, reported as the absolute value in lowercase hex padded to
    at least 8 digits. This only flags accidental corruption; it is not a
    cryptographic digest.

    Args:
        data: Serialized envelope text.

    Returns:
        Hex checksum string.
    """
    value = 0
    for code in _utf16_code_units(data):
        value = _to_int32((value << 5) - value + code)
    return format(abs(value), "x").zfill(8)


@dataclass
class BackupVersion:
    """
    One catalog entry describing a created or imported snapshot.

    Attributes:
        id: UUID v4 string. Never changes once created.
        version_number: Local, monotonically allocated number (1, 2, ...).
        timestamp: Creation time as an ISO 8601 string.
        data_size: Byte length of the serialized envelope.
        checksum: Hex checksum of the serialized envelope.
        source: "local" for backups made here, "imported" otherwise.
        description: Optional free-text note.
    """

    id: str
    version_number: int
    timestamp: str
    data_size: int = 0
    checksum: str = ""
    source: str = SOURCE_LOCAL
    description: str | None = None

    @property
    def created_at(self) -> datetime | None:
        """Parsed creation timestamp (None if unparsable)."""
        return parse_iso_datetime(self.timestamp)

    def to_dict(self) -> dict[str, Any]:
        """Convert to the wire representation."""
        data: dict[str, Any] = {
            "id": self.id,
            "versionNumber": self.version_number,
            "timestamp": self.timestamp,
            "dataSize": self.data_size,
            "checksum": self.checksum,
            "source": self.source,
        }
        if self.description is not None:
            data["description"] = self.description
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> BackupVersion:
        """Create from the wire representation."""
        return cls(
            id=data["id"],
            version_number=int(data["versionNumber"]),
            timestamp=data["timestamp"],
            data_size=data.get("dataSize", 0),
            checksum=data.get("checksum", ""),
            source=data.get("source", SOURCE_LOCAL),
            description=data.get("description"),
        )


@dataclass
class BackupPayload:
    """
    The caller's snapshot of local state.

    Attributes:
        user: Profile (name, avatarId, xp, streak, lastLogin, favorites,
            mistakes, dailyGoals).
        logs: Study log entries (type, content, score, date).
        settings: App settings (lang, targetLang, theme, onlineMode,
            aiConfig, ttsConfig).
    """

    user: dict[str, Any]
    logs: list[dict[str, Any]] = field(default_factory=list)
    settings: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {"user": self.user, "logs": self.logs, "settings": self.settings}

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> BackupPayload:
        return cls(
            user=data.get("user") or {},
            logs=data.get("logs") or [],
            settings=data.get("settings") or {},
        )


@dataclass
class BackupData:
    """
    The transported backup document (the envelope).

    Attributes:
        version: Backup format version ("2.0").
        backup_version: Catalog entry describing this backup.
        user: Profile payload.
        logs: Study log payload.
        settings: Settings payload.
        export_date: When the envelope was produced (ISO 8601).
    """

    version: str
    backup_version: BackupVersion
    user: dict[str, Any]
    logs: list[dict[str, Any]]
    settings: dict[str, Any]
    export_date: str

    @property
    def payload(self) -> BackupPayload:
        """The user/logs/settings sections as a payload."""
        return BackupPayload(user=self.user, logs=self.logs, settings=self.settings)

    def to_dict(self) -> dict[str, Any]:
        """Convert to the wire representation."""
        return {
            "version": self.version,
            "backupVersion": self.backup_version.to_dict(),
            "user": self.user,
            "logs": self.logs,
            "settings": self.settings,
            "exportDate": self.export_date,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> BackupData:
        """Create from the wire representation (assumed already validated)."""
        return cls(
            version=data["version"],
            backup_version=BackupVersion.from_dict(data["backupVersion"]),
            user=data["user"],
            logs=data["logs"],
            settings=data["settings"],
            export_date=data["exportDate"],
        )


@dataclass
class BackupMetadata:
    """
    The backup catalog, the only record this subsystem persists itself.

    Attributes:
        versions: Catalog entries in insertion order.
        last_backup_date: Timestamp of the most recently recorded version.
        reminder_dismissed_at: When the backup reminder was last dismissed.
    """

    versions: list[BackupVersion] = field(default_factory=list)
    last_backup_date: str | None = None
    reminder_dismissed_at: str | None = None

    def find(self, version_id: str) -> BackupVersion | None:
        """Return the entry with the given id, if cataloged."""
        for version in self.versions:
            if version.id == version_id:
                return version
        return None

    def to_dict(self) -> dict[str, Any]:
        return {
            "versions": [v.to_dict() for v in self.versions],
            "lastBackupDate": self.last_backup_date,
            "reminderDismissedAt": self.reminder_dismissed_at,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> BackupMetadata:
        return cls(
            versions=[BackupVersion.from_dict(v) for v in data.get("versions", [])],
            last_backup_date=data.get("lastBackupDate"),
            reminder_dismissed_at=data.get("reminderDismissedAt"),
        )


def serialize_envelope(envelope: BackupData) -> str:
    """Serialize an envelope to the canonical JSON text stored in archives."""
    return json.dumps(envelope.to_dict(), indent=2, ensure_ascii=False)


def _unsealed(envelope: BackupData) -> BackupData:
    return replace(
        envelope,
        backup_version=replace(envelope.backup_version, data_size=0, checksum=""),
    )


def build_envelope(
    version: BackupVersion,
    payload: BackupPayload,
    export_date: str,
    format_version: str = BACKUP_FORMAT_VERSION,
) -> tuple[BackupData, str]:
    """
    Build a sealed envelope in two passes.

    The first pass serializes the envelope with ``dataSize`` 0 and an empty
    ``checksum``; size and checksum are taken from that text and written
    into the version record, and the envelope is serialized again.

    Args:
        version: Version record (its size and checksum are ignored).
        payload: User state to embed. It is deep-copied.
        export_date: Export timestamp (ISO 8601).
        format_version: Backup format version string.

    Returns:
        Tuple of (sealed envelope, final serialized text).
    """
    draft = _unsealed(
        BackupData(
            version=format_version,
            backup_version=version,
            user=copy.deepcopy(payload.user),
            logs=copy.deepcopy(payload.logs),
            settings=copy.deepcopy(payload.settings),
            export_date=export_date,
        )
    )
    draft_text = serialize_envelope(draft)

    sealed = replace(
        draft,
        backup_version=replace(
            draft.backup_version,
            data_size=len(draft_text.encode("utf-8")),
            checksum=generate_checksum(draft_text),
        ),
    )
    return sealed, serialize_envelope(sealed)


def compute_envelope_checksum(envelope: BackupData) -> tuple[str, int]:
    """
    Recompute the checksum and size an envelope was sealed with.

    Returns:
        Tuple of (checksum, data_size).
    """
    text = serialize_envelope(_unsealed(envelope))
    return generate_checksum(text), len(text.encode("utf-8"))


def verify_envelope_integrity(envelope: BackupData) -> list[str]:
    """
    Compare an envelope's stored checksum and size against recomputed ones.

    Returns:
        Mismatch descriptions; empty when the envelope is consistent.
    """
    checksum, data_size = compute_envelope_checksum(envelope)
    stored = envelope.backup_version
    problems = []
    if stored.checksum != checksum:
        problems.append(f"checksum mismatch: stored {stored.checksum}, computed {checksum}")
    if stored.data_size != data_size:
        problems.append(f"dataSize mismatch: stored {stored.data_size}, computed {data_size}")
    return problems
