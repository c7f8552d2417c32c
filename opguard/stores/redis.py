"""Redis-based store implementation with atomic operations."""

import json
import logging
import time
from collections.abc import Callable
from typing import TYPE_CHECKING

from ..exceptions import KeyAlreadyExists, RecordStateError
from ..record import Record
from .base import Store

if TYPE_CHECKING:
    from redis import Redis
    from redis.client import Pipeline

logger = logging.getLogger(__name__)


class RedisStore(Store):
    """Redis-based store for idempotency records.

    Uses SET NX for atomic record creation and WATCH/MULTI for terminal
    transitions, which also set the key's expiry. Safe for multi-process
    and multi-server scenarios.

    Args:
        client: Redis client instance
        prefix: Key prefix for namespacing (default: "opguard:")
    """

    def __init__(self, client: "Redis", prefix: str = "opguard:") -> None:
        self.client = client
        self.prefix = prefix

    def _key(self, key: str) -> str:
        """Add prefix to key."""
        return f"{self.prefix}record:{key}"

    @property
    def _index_key(self) -> str:
        """Sorted set of keys scored by created_at."""
        return f"{self.prefix}index"

    @property
    def _expiry_key(self) -> str:
        """Sorted set of terminal keys scored by expires_at."""
        return f"{self.prefix}expiry"

    def _load(self, data: bytes | str | None) -> Record | None:
        if data is None:
            return None
        try:
            record = Record.from_dict(json.loads(data))
        except (json.JSONDecodeError, KeyError, ValueError):
            logger.warning("Ignoring unreadable record data in redis")
            return None
        if record.is_expired():
            return None
        return record

    def find(self, key: str) -> Record | None:
        """Retrieve a record from Redis."""
        return self._load(self.client.get(self._key(key)))

    def create_processing(
        self,
        key: str,
        owner_id: str,
        operation_type: str,
        fingerprint: str,
        ttl: float | None = None,
    ) -> Record:
        """Insert a processing record using SET NX.

        The key is created without an expiry. The TTL is applied by the
        terminal transition, so Redis never drops a record mid-operation.
        """
        record = self._new_record(key, owner_id, operation_type, fingerprint, ttl)
        data = json.dumps(record.to_dict())

        if not self.client.set(self._key(key), data, nx=True):
            raise KeyAlreadyExists(key)

        self.client.zadd(self._index_key, {key: record.created_at})
        logger.debug("Created processing record for key %s", key)
        return record

    def complete(self, key: str, result: object) -> Record:
        return self._transition(key, lambda record: record.mark_completed(result))

    def fail(self, key: str, failure_detail: object) -> Record:
        return self._transition(key, lambda record: record.mark_failed(failure_detail))

    def _transition(self, key: str, apply: Callable[[Record], None]) -> Record:
        """Apply a terminal transition under WATCH, starting the key's TTL."""
        redis_key = self._key(key)

        def update(pipe: "Pipeline") -> Record:
            record = self._load(pipe.get(redis_key))
            if record is None:
                raise RecordStateError(key, "no record to transition")
            apply(record)
            data = json.dumps(record.to_dict())
            pipe.multi()
            if record.ttl is not None:
                pipe.set(redis_key, data, px=max(1, int(record.ttl * 1000)))
                pipe.zadd(self._expiry_key, {key: record.expires_at})
            else:
                pipe.set(redis_key, data)
            return record

        return self.client.transaction(update, redis_key, value_from_callable=True)

    def _prune_index(self) -> None:
        """Drop index entries whose records have expired."""
        now = time.time()
        expired = self.client.zrangebyscore(self._expiry_key, "-inf", now)
        if not expired:
            return
        # A key reused after expiry is live again and keeps its index entry
        gone = [raw for raw in expired if self.find(_decode(raw)) is None]
        if gone:
            self.client.zrem(self._index_key, *gone)
        self.client.zremrangebyscore(self._expiry_key, "-inf", now)

    def recent(self, limit: int = 50, owner_id: str | None = None) -> list[Record]:
        self._prune_index()
        records: list[Record] = []
        start = 0
        while len(records) < limit:
            page = self.client.zrevrange(self._index_key, start, start + limit - 1)
            if not page:
                break
            start += len(page)
            for raw_key in page:
                record = self.find(_decode(raw_key))
                if record is None:
                    # Deleted or expired before pruning caught it
                    self.client.zrem(self._index_key, raw_key)
                    start -= 1
                    continue
                if owner_id is not None and record.owner_id != owner_id:
                    continue
                records.append(record)
                if len(records) >= limit:
                    break
        return records

    def clear(self) -> None:
        """Clear all records with this prefix (useful for testing)."""
        pattern = f"{self.prefix}*"
        cursor = 0

        while True:
            cursor, keys = self.client.scan(cursor, match=pattern, count=100)
            if keys:
                self.client.delete(*keys)
            if cursor == 0:
                break


def _decode(raw_key: bytes | str) -> str:
    return raw_key.decode() if isinstance(raw_key, bytes) else raw_key
