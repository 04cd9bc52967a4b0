"""
Archive caches keyed by backup version id.

The catalog stores metadata only. The archive bytes needed to restore or
export a version are kept here, owned by the backup manager: filled on
create and import, dropped on delete. MemoryArchiveCache lasts for one
session; DirectoryArchiveCache keeps archives on disk so restore and
export keep working after a restart.
"""

from __future__ import annotations

import hashlib
import logging
import os
import tempfile
from pathlib import Path
from typing import Protocol, runtime_checkable

logger = logging.getLogger(__name__)

@runtime_checkable
class ArchiveCache(Protocol):
    """Contract for archive byte storage."""

    def get(self, version_id: str) -> bytes | None:
        ...

    def put(self, version_id: str, data: bytes) -> None:
        ...

    def discard(self, version_id: str) -> None:
        ...

    def __contains__(self, version_id: object) -> bool:
        ...


class MemoryArchiveCache:
    """Session-scoped cache."""

    def __init__(self) -> None:
        self._archives: dict[str, bytes] = {}

    def get(self, version_id: str) -> bytes | None:
        return self._archives.get(version_id)

    def put(self, version_id: str, data: bytes) -> None:
        self._archives[version_id] = data

    def discard(self, version_id: str) -> None:
        self._archives.pop(version_id, None)

    def __contains__(self, version_id: object) -> bool:
        return version_id in self._archives

    def __len__(self) -> int:
        return len(self._archives)


class DirectoryArchiveCache:
    """
    Persistent cache storing one ``.archive`` file per version.

    Files are named by the SHA-256 of the version id, so any id string maps
    to a safe filename inside the cache directory.

    Attributes:
        cache_dir: Directory holding the archive files.
    """

    SUFFIX = ".archive"

    def __init__(self, cache_dir: Path | str) -> None:
        self.cache_dir = Path(cache_dir)
        self.cache_dir.mkdir(parents=True, exist_ok=True)

    def _path(self, version_id: str) -> Path:
        digest = hashlib.sha256(version_id.encode("utf-8", "surrogatepass")).hexdigest()
        return self.cache_dir / f"{digest}{self.SUFFIX}"

    def get(self, version_id: str) -> bytes | None:
        path = self._path(version_id)
        if not path.exists():
            return None
        return path.read_bytes()

    def put(self, version_id: str, data: bytes) -> None:
        path = self._path(version_id)
        temp_fd, temp_path = tempfile.mkstemp(suffix=self.SUFFIX, dir=str(self.cache_dir))
        try:
            with os.fdopen(temp_fd, "wb") as f:
                f.write(data)
            os.replace(temp_path, path)
        except Exception:
            if os.path.exists(temp_path):
                os.unlink(temp_path)
            raise

    def discard(self, version_id: str) -> None:
        path = self._path(version_id)
        if path.exists():
            path.unlink()
            logger.debug(f"Dropped cached archive for {version_id}")

    def __contains__(self, version_id: object) -> bool:
        if not isinstance(version_id, str):
            return False
        return self._path(version_id).exists()
