"""In-memory store implementation."""

import copy
import logging
import threading
import time

from ..exceptions import KeyAlreadyExists, RecordStateError
from ..record import Record
from .base import Store

logger = logging.getLogger(__name__)


class MemoryStore(Store):
    """Thread-safe in-memory store for idempotency records.

    Note: This store does NOT persist across processes or restarts.
    Use FileStore or RedisStore for multi-process scenarios.
    """

    def __init__(self) -> None:
        self._records: dict[str, Record] = {}
        self._global_lock = threading.Lock()

    def _live(self, key: str) -> Record | None:
        # Caller must hold the lock
        record = self._records.get(key)
        if record is not None and record.is_expired(time.time()):
            del self._records[key]
            return None
        return record

    def find(self, key: str) -> Record | None:
        """Retrieve a copy of a record, checking TTL expiration."""
        with self._global_lock:
            record = self._live(key)
            return copy.deepcopy(record) if record else None

    def create_processing(
        self,
        key: str,
        owner_id: str,
        operation_type: str,
        fingerprint: str,
        ttl: float | None = None,
    ) -> Record:
        """Insert a processing record unless the key is taken."""
        with self._global_lock:
            if self._live(key) is not None:
                raise KeyAlreadyExists(key)
            record = self._new_record(key, owner_id, operation_type, fingerprint, ttl)
            self._records[key] = record
            logger.debug("Created processing record for key %s", key)
            return copy.deepcopy(record)

    def complete(self, key: str, result: object) -> Record:
        with self._global_lock:
            record = self._require(key)
            record.mark_completed(copy.deepcopy(result))
            return copy.deepcopy(record)

    def fail(self, key: str, failure_detail: object) -> Record:
        with self._global_lock:
            record = self._require(key)
            record.mark_failed(copy.deepcopy(failure_detail))
            return copy.deepcopy(record)

    def _require(self, key: str) -> Record:
        record = self._live(key)
        if record is None:
            raise RecordStateError(key, "no record to transition")
        return record

    def recent(self, limit: int = 50, owner_id: str | None = None) -> list[Record]:
        with self._global_lock:
            now = time.time()
            live = [
                r
                for r in self._records.values()
                if not r.is_expired(now) and owner_id in (None, r.owner_id)
            ]
            live.sort(key=lambda r: r.created_at, reverse=True)
            return [copy.deepcopy(r) for r in live[:limit]]

    def clear(self) -> None:
        """Clear all records (useful for testing)."""
        with self._global_lock:
            self._records.clear()
