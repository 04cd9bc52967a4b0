"""
File-save sinks that receive exported backup archives.

The backup manager hands ``(bytes, filename)`` to a sink and does not
track what happens afterwards. Two sinks are provided:

    - DirectorySink writes the archive into a local directory
    - HttpUploadSink PUTs the archive to a share endpoint
"""

from __future__ import annotations

import logging
import os
import tempfile
import time
from pathlib import Path
from typing import Protocol, runtime_checkable

import requests

logger = logging.getLogger(__name__)


class SinkError(Exception):
    """Raised when a sink cannot accept an archive."""

    pass


@runtime_checkable
class FileSaveSink(Protocol):
    """Contract for export destinations."""

    def save(self, data: bytes, filename: str) -> None:
        """Deliver archive bytes under the given filename."""
        ...


class DirectorySink:
    """
    Writes exported archives into a directory.

    Existing files are never overwritten; a numeric suffix is added instead.

    Attributes:
        output_dir: Destination directory (created on first save).
        last_path: Path of the most recently written file.
    """

    def __init__(self, output_dir: Path | str) -> None:
        self.output_dir = Path(output_dir)
        self.last_path: Path | None = None

    def _free_path(self, filename: str) -> Path:
        candidate = self.output_dir / filename
        if not candidate.exists():
            return candidate
        stem, dot, suffix = filename.partition(".")
        counter = 1
        while True:
            candidate = self.output_dir / f"{stem}_{counter}{dot}{suffix}"
            if not candidate.exists():
                return candidate
            counter += 1

    def save(self, data: bytes, filename: str) -> None:
        if self.output_dir.is_file():
            raise SinkError(f"Output path is a file: {self.output_dir}")
        self.output_dir.mkdir(parents=True, exist_ok=True)

        target = self._free_path(Path(filename).name)
        temp_fd, temp_path = tempfile.mkstemp(dir=str(self.output_dir))
        try:
            with os.fdopen(temp_fd, "wb") as f:
                f.write(data)
            os.replace(temp_path, target)
        except OSError as e:
            if os.path.exists(temp_path):
                os.unlink(temp_path)
            raise SinkError(f"Could not write {target}: {e}") from e

        self.last_path = target
        logger.info(f"Backup exported: {target} ({len(data):,} bytes)")


class HttpUploadSink:
    """
    Uploads exported archives to an HTTP share endpoint.

    The archive is sent as the body of ``PUT {base_url}/{filename}``.

    Example:
        sink = HttpUploadSink("https://share.example.com/backups", token="...")
        sink.save(archive_bytes, "nihongopro_backup_v3_20240115_143000.zip")
    """

    def __init__(
        self,
        base_url: str,
        token: str | None = None,
        timeout: float = 60,
        session: requests.Session | None = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.token = token
        self.timeout = timeout
        self._session = session

    def _get_session(self) -> requests.Session:
        if self._session is not None:
            return self._session

        self._session = requests.Session()
        self._session.headers.update({"Content-Type": "application/octet-stream"})
        if self.token:
            self._session.headers["Authorization"] = f"Bearer {self.token}"
        return self._session

    def save(self, data: bytes, filename: str) -> None:
        session = self._get_session()
        url = f"{self.base_url}/{filename}"

        start_time = time.time()
        try:
            response = session.put(url, data=data, timeout=self.timeout)
        except requests.exceptions.ConnectionError as e:
            raise SinkError(f"Failed to connect to {self.base_url}: {e}") from e
        except requests.exceptions.Timeout as e:
            raise SinkError(f"Upload to {self.base_url} timed out: {e}") from e

        duration_ms = (time.time() - start_time) * 1000
        logger.info(f"Upload: PUT {url} -> {response.status_code} ({duration_ms:.0f}ms)")

        if response.status_code in (401, 403):
            raise SinkError(f"Upload rejected by {self.base_url}: check the share token")

        try:
            response.raise_for_status()
        except requests.exceptions.HTTPError as e:
            raise SinkError(f"Upload failed: {e}") from e
