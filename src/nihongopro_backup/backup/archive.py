"""
Archive codecs for backup files.

A backup file is a compressed container whose canonical entry,
``backup.json``, holds the serialized envelope. Keeping the container
multi-entry leaves room for more files later without breaking readers
that only look for ``backup.json``.

Two formats are supported:
    - zip (deflate), the format the mobile app reads and writes
    - tar.gz, for desktop tooling
"""

from __future__ import annotations

import io
import logging
import tarfile
import time
import zipfile
import zlib
from typing import Protocol, runtime_checkable

logger = logging.getLogger(__name__)

# Canonical envelope entry inside the archive
BACKUP_DATA_FILENAME = "backup.json"

# Entry written by the pre-versioning app
LEGACY_DATA_FILENAME = "kawaii_backup.json"

# Refuse to inflate entries larger than this
MAX_ENTRY_BYTES = 64 * 1024 * 1024

ZIP_SIGNATURES = (b"PK\x03\x04", b"PK\x05\x06")
GZIP_SIGNATURE = b"\x1f\x8b"


class ArchiveFormatError(Exception):
    """Raised when archive bytes cannot be packed or unpacked."""

    pass


@runtime_checkable
class ArchiveCodec(Protocol):
    """Contract for archive containers."""

    extension: str

    def pack(self, entries: dict[str, bytes]) -> bytes:
        """Pack named entries into archive bytes."""
        ...

    def unpack(self, data: bytes) -> dict[str, bytes]:
        """Unpack archive bytes into named entries."""
        ...

    def matches(self, data: bytes) -> bool:
        """Whether the bytes carry this format's signature."""
        ...


class ZipArchiveCodec:
    """Deflate-compressed zip archives."""

    extension = "zip"

    def __init__(self, compression_level: int = 6) -> None:
        self.compression_level = compression_level

    def pack(self, entries: dict[str, bytes]) -> bytes:
        buffer = io.BytesIO()
        try:
            with zipfile.ZipFile(
                buffer,
                "w",
                compression=zipfile.ZIP_DEFLATED,
                compresslevel=self.compression_level,
            ) as archive:
                for name, content in entries.items():
                    archive.writestr(name, content)
        except (zipfile.BadZipFile, ValueError, OSError) as e:
            raise ArchiveFormatError(f"Could not create zip archive: {e}") from e
        logger.debug(f"Packed {len(entries)} entries into {buffer.tell():,} byte zip archive")
        return buffer.getvalue()

    def unpack(self, data: bytes) -> dict[str, bytes]:
        entries: dict[str, bytes] = {}
        try:
            with zipfile.ZipFile(io.BytesIO(data)) as archive:
                for info in archive.infolist():
                    if info.is_dir():
                        continue
                    if info.file_size > MAX_ENTRY_BYTES:
                        raise ArchiveFormatError(
                            f"Archive entry {info.filename} is too large ({info.file_size:,} bytes)"
                        )
                    entries[info.filename] = archive.read(info)
        except (zipfile.BadZipFile, zipfile.LargeZipFile, zlib.error, ValueError, OSError, EOFError) as e:
            raise ArchiveFormatError(f"Unable to read zip archive: {e}") from e
        return entries

    def matches(self, data: bytes) -> bool:
        return data[:4] in ZIP_SIGNATURES


class TarGzArchiveCodec:
    """Gzip-compressed tar archives."""

    extension = "tar.gz"

    def __init__(self, compression_level: int = 6) -> None:
        self.compression_level = compression_level

    def pack(self, entries: dict[str, bytes]) -> bytes:
        buffer = io.BytesIO()
        try:
            with tarfile.open(
                fileobj=buffer,
                mode="w:gz",
                compresslevel=self.compression_level,
            ) as tar:
                for name, content in entries.items():
                    tarinfo = tarfile.TarInfo(name=name)
                    tarinfo.size = len(content)
                    tarinfo.mtime = int(time.time())
                    tar.addfile(tarinfo, io.BytesIO(content))
        except (tarfile.TarError, OSError) as e:
            raise ArchiveFormatError(f"Could not create tar archive: {e}") from e
        logger.debug(f"Packed {len(entries)} entries into {buffer.tell():,} byte tar.gz archive")
        return buffer.getvalue()

    def unpack(self, data: bytes) -> dict[str, bytes]:
        entries: dict[str, bytes] = {}
        try:
            with tarfile.open(fileobj=io.BytesIO(data), mode="r:gz") as tar:
                for member in tar.getmembers():
                    if not member.isfile():
                        continue
                    if member.size > MAX_ENTRY_BYTES:
                        raise ArchiveFormatError(
                            f"Archive entry {member.name} is too large ({member.size:,} bytes)"
                        )
                    file_obj = tar.extractfile(member)
                    if file_obj is None:
                        continue
                    entries[member.name] = file_obj.read()
        except (tarfile.TarError, zlib.error, OSError, EOFError) as e:
            raise ArchiveFormatError(f"Unable to read tar archive: {e}") from e
        return entries

    def matches(self, data: bytes) -> bool:
        return data[:2] == GZIP_SIGNATURE


ARCHIVE_FORMATS = {
    "zip": ZipArchiveCodec,
    "tar.gz": TarGzArchiveCodec,
}


def get_codec(archive_format: str, compression_level: int = 6) -> ArchiveCodec:
    """
    Create the codec for a configured archive format.

    Raises:
        ValueError: If the format is not supported.
    """
    codec_class = ARCHIVE_FORMATS.get(archive_format)
    if codec_class is None:
        raise ValueError(
            f"Unsupported archive format: {archive_format}. "
            f"Must be one of: {', '.join(ARCHIVE_FORMATS)}"
        )
    return codec_class(compression_level=compression_level)
