"""Record dataclass for storing operation state."""

import time
from dataclasses import dataclass, field
from typing import Literal

from opguard.exceptions import RecordStateError
from opguard.utils import ensure_float

Status = Literal["processing", "completed", "failed"]

STATUSES = ("processing", "completed", "failed")


@dataclass
class Record:
    """Represents the state of one idempotent operation.

    Attributes:
        key: Caller-supplied idempotency key
        owner_id: Identity that created the record
        operation_type: Tag of the handler that performs the side effect
        request_fingerprint: Hash of the payload the key was first used with
        status: Current lifecycle state
        result: Stored handler result (if completed)
        failure_detail: Stored error payload (if failed)
        created_at: Timestamp when the record was created
        completed_at: Timestamp of the terminal transition
        expires_at: Timestamp after which the key may be reused
        ttl: Seconds a terminal record is kept (None = forever)

    A processing record never expires; the TTL clock starts at the
    terminal transition.
    """

    key: str
    owner_id: str
    operation_type: str
    request_fingerprint: str
    status: Status = "processing"
    result: object = None
    failure_detail: object = None
    created_at: float = field(default_factory=time.time)
    completed_at: float | None = None
    expires_at: float | None = None
    ttl: float | None = None

    @property
    def is_terminal(self) -> bool:
        return self.status != "processing"

    def mark_completed(self, result: object) -> None:
        """Move a processing record to completed."""
        self._check_processing("complete")
        self.status = "completed"
        self.result = result
        self._finish()

    def mark_failed(self, failure_detail: object) -> None:
        """Move a processing record to failed."""
        self._check_processing("fail")
        self.status = "failed"
        self.failure_detail = failure_detail
        self._finish()

    def _finish(self) -> None:
        self.completed_at = time.time()
        if self.ttl is not None:
            self.expires_at = self.completed_at + self.ttl

    def _check_processing(self, action: str) -> None:
        if self.status != "processing":
            raise RecordStateError(
                self.key, f"cannot {action}, record is already {self.status}"
            )

    def is_expired(self, now: float | None = None) -> bool:
        if self.expires_at is None:
            return False
        return (now if now is not None else time.time()) > self.expires_at

    def is_stale(self, timeout: float) -> bool:
        """Check if a processing record is older than timeout.

        Args:
            timeout: Seconds after which a processing record looks abandoned

        Returns:
            True if the record is still processing and older than timeout
        """
        if self.status != "processing":
            return False
        return (time.time() - self.created_at) > timeout

    def to_dict(self) -> dict[str, object]:
        """Convert record to dictionary for serialization."""
        return {
            "key": self.key,
            "owner_id": self.owner_id,
            "operation_type": self.operation_type,
            "request_fingerprint": self.request_fingerprint,
            "status": self.status,
            "result": self.result,
            "failure_detail": self.failure_detail,
            "created_at": self.created_at,
            "completed_at": self.completed_at,
            "expires_at": self.expires_at,
            "ttl": self.ttl,
        }

    @classmethod
    def from_dict(cls, data: dict[str, object]) -> "Record":
        """Create record from dictionary."""
        status = data["status"]
        if status not in STATUSES:
            raise ValueError(f"Invalid status: {status}")

        created_at = ensure_float(value=data["created_at"])
        completed_at = ensure_float(value=data.get("completed_at"), default=None)
        expires_at = ensure_float(value=data.get("expires_at"), default=None)
        ttl = ensure_float(value=data.get("ttl"), default=None)

        return cls(
            key=str(data["key"]),
            owner_id=str(data["owner_id"]),
            operation_type=str(data["operation_type"]),
            request_fingerprint=str(data["request_fingerprint"]),
            status=status,  # type: ignore[arg-type]
            result=data.get("result"),
            failure_detail=data.get("failure_detail"),
            created_at=created_at,  # type: ignore[arg-type]
            completed_at=completed_at,
            expires_at=expires_at,
            ttl=ttl,
        )
