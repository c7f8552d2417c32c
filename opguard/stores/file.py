"""File-based store implementation with cross-process locking."""

import fcntl
import hashlib
import json
import logging
import os
import time
from collections.abc import Iterator
from contextlib import contextmanager
from pathlib import Path

from ..exceptions import KeyAlreadyExists, RecordStateError
from ..record import Record
from .base import Store

logger = logging.getLogger(__name__)


class FileStore(Store):
    """File-based store for idempotency records.

    Uses one JSON file per key for persistence and fcntl for cross-process
    locking. Safe for multi-process scenarios on one host (e.g., gunicorn
    workers).

    Args:
        directory: Path to directory for storing records
    """

    def __init__(self, directory: str | Path) -> None:
        self.directory = Path(directory)
        self.directory.mkdir(parents=True, exist_ok=True)

    def _stem(self, key: str) -> str:
        # Hash so any key is a safe, collision-free file name
        return hashlib.sha256(key.encode("utf-8")).hexdigest()

    def _record_path(self, key: str) -> Path:
        """Get file path for a record."""
        return self.directory / f"{self._stem(key)}.json"

    def _lock_path(self, key: str) -> Path:
        """Get lock file path for a key."""
        return self.directory / f"{self._stem(key)}.lock"

    @contextmanager
    def _locked(self, key: str) -> Iterator[None]:
        """Hold an exclusive cross-process lock for one key."""
        fd = os.open(self._lock_path(key), os.O_CREAT | os.O_RDWR)
        try:
            fcntl.flock(fd, fcntl.LOCK_EX)
            yield
        finally:
            fcntl.flock(fd, fcntl.LOCK_UN)
            os.close(fd)

    def _read(self, path: Path) -> Record | None:
        try:
            with open(path) as f:
                record = Record.from_dict(json.load(f))
        except FileNotFoundError:
            return None
        except (json.JSONDecodeError, KeyError, ValueError):
            logger.warning("Ignoring unreadable record file %s", path)
            return None

        if record.is_expired():
            return None
        return record

    def _write(self, record: Record) -> None:
        record_path = self._record_path(record.key)

        # Write atomically using temp file + rename
        temp_path = record_path.with_suffix(".tmp")
        with open(temp_path, "w") as f:
            json.dump(record.to_dict(), f, indent=2)

        temp_path.replace(record_path)

    def find(self, key: str) -> Record | None:
        """Retrieve a record, checking TTL expiration."""
        return self._read(self._record_path(key))

    def create_processing(
        self,
        key: str,
        owner_id: str,
        operation_type: str,
        fingerprint: str,
        ttl: float | None = None,
    ) -> Record:
        """Insert a processing record while holding the key's lock."""
        with self._locked(key):
            if self._read(self._record_path(key)) is not None:
                raise KeyAlreadyExists(key)
            record = self._new_record(key, owner_id, operation_type, fingerprint, ttl)
            self._write(record)
        logger.debug("Created processing record for key %s", key)
        return record

    def complete(self, key: str, result: object) -> Record:
        with self._locked(key):
            record = self._require(key)
            record.mark_completed(result)
            self._write(record)
        return record

    def fail(self, key: str, failure_detail: object) -> Record:
        with self._locked(key):
            record = self._require(key)
            record.mark_failed(failure_detail)
            self._write(record)
        return record

    def _require(self, key: str) -> Record:
        record = self._read(self._record_path(key))
        if record is None:
            raise RecordStateError(key, "no record to transition")
        return record

    def recent(self, limit: int = 50, owner_id: str | None = None) -> list[Record]:
        records = []
        for path in self.directory.glob("*.json"):
            record = self._read(path)
            if record is not None and owner_id in (None, record.owner_id):
                records.append(record)
        records.sort(key=lambda r: r.created_at, reverse=True)
        return records[:limit]

    def purge_expired(self) -> int:
        """Delete files of expired records; returns how many were removed.

        Lock files are left in place. Another process may be waiting on one,
        and unlinking it would let two processes lock different files for
        the same key. They are empty, and `clear` removes them.
        """
        removed = 0
        for path in self.directory.glob("*.json"):
            try:
                with open(path) as f:
                    data = json.load(f)
            except (OSError, json.JSONDecodeError):
                continue
            key = data.get("key")
            if not isinstance(key, str):
                continue

            # Re-read under the lock; the key may have been reused meanwhile
            with self._locked(key):
                try:
                    with open(path) as f:
                        expires_at = json.load(f).get("expires_at")
                except (OSError, json.JSONDecodeError):
                    continue
                if expires_at is not None and time.time() > expires_at:
                    path.unlink(missing_ok=True)
                    removed += 1
        return removed

    def clear(self) -> None:
        """Clear all records and lock files (useful for testing).

        Only call this while no other process uses the directory: a lock
        file removed under a holder no longer serialises that key.
        """
        for path in self.directory.glob("*.json"):
            path.unlink(missing_ok=True)
        for path in self.directory.glob("*.lock"):
            path.unlink(missing_ok=True)
