"""Exceptions for idempotent operation processing."""


class IdempotencyError(Exception):
    """Base exception for idempotency-related errors."""


class Unauthenticated(IdempotencyError):
    """Raise when the caller has no valid identity."""

    def __init__(self, reason: str = "Unauthorized") -> None:
        self.reason = reason
        super().__init__(reason)


class MalformedRequest(IdempotencyError):
    """Raise when a request is missing its key, operation type or payload."""


class SerializationError(MalformedRequest):
    """Raise when a payload cannot be canonicalized for fingerprinting."""

    def __init__(self, value: object, reason: str) -> None:
        self.value = value
        self.reason = reason
        super().__init__(f"Cannot serialize payload: {reason}")


class UnsupportedOperation(IdempotencyError):
    """Raise when no handler is registered for an operation type."""

    def __init__(self, operation_type: str) -> None:
        self.operation_type = operation_type
        super().__init__(f"Unsupported operation type: {operation_type}")


class KeyReuseMismatch(IdempotencyError):
    """Raise when a key is reused for a different request."""

    def __init__(self, key: str) -> None:
        self.key = key
        super().__init__(
            f"Idempotency key '{key}' already used with different request parameters"
        )


class OperationInFlight(IdempotencyError):
    """Raise when the operation for a key is still processing."""

    def __init__(self, key: str) -> None:
        self.key = key
        super().__init__(f"Operation for key '{key}' is still processing")


class OperationFailed(IdempotencyError):
    """Raise when a prior execution for a key failed; carries its detail."""

    def __init__(self, key: str, detail: object) -> None:
        self.key = key
        self.detail = detail
        super().__init__(f"Previous operation for key '{key}' failed")


class HandlerError(IdempotencyError):
    """Raise when a handler fails during a fresh execution."""

    def __init__(self, key: str, detail: dict[str, object]) -> None:
        self.key = key
        self.detail = detail
        super().__init__(str(detail.get("error", "Operation failed")))


class KeyAlreadyExists(IdempotencyError):
    """Raise by stores when an insert loses the uniqueness race."""

    def __init__(self, key: str) -> None:
        self.key = key
        super().__init__(f"Record already exists for key: {key}")


class RecordStateError(IdempotencyError):
    """Raise when a record cannot take the requested transition."""

    def __init__(self, key: str, reason: str) -> None:
        self.key = key
        self.reason = reason
        super().__init__(f"Record '{key}': {reason}")


class OperationError(Exception):
    """Business-level failure raised by an operation handler.

    Args:
        message: Human readable error
        detail: Extra JSON-compatible fields stored with the failure
    """

    def __init__(self, message: str, detail: dict[str, object] | None = None) -> None:
        self.message = message
        self.detail = detail or {}
        super().__init__(message)
