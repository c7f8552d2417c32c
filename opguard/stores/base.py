"""Base store interface for idempotency records."""

import time
from abc import ABC, abstractmethod

from ..record import Record


class Store(ABC):
    """Abstract base class for idempotency record stores.

    Stores are responsible for:
    - Persisting records, one per key
    - Inserting new records atomically (the uniqueness guarantee)
    - Applying terminal transitions exactly once
    - Managing TTL/expiration
    """

    @abstractmethod
    def find(self, key: str) -> Record | None:
        """Retrieve a record by key.

        Args:
            key: The idempotency key

        Returns:
            Record if found and not expired, None otherwise
        """
        pass

    @abstractmethod
    def create_processing(
        self,
        key: str,
        owner_id: str,
        operation_type: str,
        fingerprint: str,
        ttl: float | None = None,
    ) -> Record:
        """Atomically insert a new record in processing state.

        Args:
            key: The idempotency key
            owner_id: Identity of the caller
            operation_type: Handler tag
            fingerprint: Request fingerprint
            ttl: Seconds to keep the record once it is terminal
                (None = no expiration). Processing records never expire.

        Returns:
            The inserted record

        Raises:
            KeyAlreadyExists: If a live record already holds the key
        """
        pass

    @abstractmethod
    def complete(self, key: str, result: object) -> Record:
        """Mark a processing record as completed.

        Raises:
            RecordStateError: If the record is missing or already terminal
        """
        pass

    @abstractmethod
    def fail(self, key: str, failure_detail: object) -> Record:
        """Mark a processing record as failed.

        Raises:
            RecordStateError: If the record is missing or already terminal
        """
        pass

    @abstractmethod
    def recent(self, limit: int = 50, owner_id: str | None = None) -> list[Record]:
        """Return live records, newest first.

        Args:
            limit: Maximum number of records
            owner_id: Only records created by this owner (None = all owners)
        """
        pass

    @abstractmethod
    def clear(self) -> None:
        """Remove all records (useful for testing)."""
        pass

    @staticmethod
    def _new_record(
        key: str,
        owner_id: str,
        operation_type: str,
        fingerprint: str,
        ttl: float | None,
    ) -> Record:
        return Record(
            key=key,
            owner_id=owner_id,
            operation_type=operation_type,
            request_fingerprint=fingerprint,
            status="processing",
            created_at=time.time(),
            ttl=ttl,
        )
