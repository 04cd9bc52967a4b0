"""
Error taxonomy for the backup subsystem.

Every failure that leaves a public backup operation is a BackupError whose
``kind`` tells callers what went wrong without parsing the message:

    INVALID_FORMAT       Not an archive, missing backup.json, or bad JSON
    VALIDATION_ERROR     Well-formed document with invalid fields
    SERIALIZATION_ERROR  A backup could not be produced
    ARCHIVE_ERROR        The archive codec failed
    DUPLICATE_VERSION    The imported version id is already cataloged
    NOT_FOUND            Missing version or payload bytes
    QUOTA_EXCEEDED       The key-value store rejected a write for size
    UNKNOWN              Anything else

No operation retries on its own; callers decide whether to try again.
"""

from __future__ import annotations

from enum import Enum


class BackupErrorKind(str, Enum):
    """Machine-readable failure category."""

    INVALID_FORMAT = "INVALID_FORMAT"
    VALIDATION_ERROR = "VALIDATION_ERROR"
    SERIALIZATION_ERROR = "SERIALIZATION_ERROR"
    ARCHIVE_ERROR = "ARCHIVE_ERROR"
    DUPLICATE_VERSION = "DUPLICATE_VERSION"
    NOT_FOUND = "NOT_FOUND"
    QUOTA_EXCEEDED = "QUOTA_EXCEEDED"
    UNKNOWN = "UNKNOWN"


class BackupError(Exception):
    """
    Error raised by backup operations.

    Attributes:
        message: Human-readable description.
        kind: Failure category.
        errors: Field-path validation messages (VALIDATION_ERROR only).
        existing_version_number: Version number of the already-cataloged
            entry (DUPLICATE_VERSION only).
    """

    def __init__(
        self,
        message: str,
        kind: BackupErrorKind = BackupErrorKind.UNKNOWN,
        errors: list[str] | None = None,
        existing_version_number: int | None = None,
    ) -> None:
        self.message = message
        self.kind = kind
        self.errors = errors or []
        self.existing_version_number = existing_version_number
        super().__init__(message)

    def __repr__(self) -> str:
        return f"BackupError({self.kind.value}: {self.message!r})"
