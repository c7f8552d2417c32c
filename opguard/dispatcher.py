"""Idempotent dispatcher: runs each keyed operation at most once."""

import logging
from collections.abc import Callable, Mapping
from dataclasses import dataclass

from .exceptions import (
    HandlerError,
    KeyAlreadyExists,
    KeyReuseMismatch,
    OperationError,
    OperationFailed,
    OperationInFlight,
    RecordStateError,
    SerializationError,
    UnsupportedOperation,
)
from .fingerprint import canonicalize, fingerprint
from .record import Record
from .registry import HandlerFunc, HandlerRegistry
from .stores import Store

logger = logging.getLogger(__name__)

# How many times a lost creation race is re-evaluated before giving up
MAX_CREATE_ATTEMPTS = 3


@dataclass(frozen=True)
class DispatchResult:
    """Outcome of a successful dispatch.

    Attributes:
        key: The idempotency key
        operation_type: Handler tag that produced the result
        result: The handler result as stored
        cached: True if served from a completed record
    """

    key: str
    operation_type: str
    result: object
    cached: bool

    def to_response(self) -> dict[str, object]:
        """Response body: the result annotated with cache status."""
        body = dict(self.result) if isinstance(self.result, dict) else {"result": self.result}
        body["idempotent"] = True
        body["cached"] = self.cached
        return body


class Dispatcher:
    """Dispatch operations so each idempotency key executes at most once.

    Args:
        store: Record store; its atomic insert is the only serialization point
        registry: Handlers by operation type (defaults to an empty registry)
        ttl: Seconds a record is kept after it completes or fails
            (None = keep forever); processing records never expire

    Example:
        dispatcher = Dispatcher(MemoryStore())

        @dispatcher.operation("create_expense")
        def create_expense(payload, owner_id):
            return {"success": True, "expense": {...}}

        dispatcher.dispatch("pay-req-42", "user-1", "create_expense", {...})
    """

    def __init__(
        self,
        store: Store,
        registry: HandlerRegistry | None = None,
        ttl: float | None = None,
    ) -> None:
        if ttl is not None and ttl <= 0:
            raise ValueError(f"ttl must be positive, got {ttl}")
        self.store = store
        self.registry = registry if registry is not None else HandlerRegistry()
        self.ttl = ttl

    def operation(self, operation_type: str) -> Callable[[HandlerFunc], HandlerFunc]:
        """Decorator registering a function as an operation handler."""
        return self.registry.handler(operation_type)

    def dispatch(
        self,
        key: str,
        owner_id: str,
        operation_type: str,
        payload: Mapping[str, object],
    ) -> DispatchResult:
        """Run an operation once per key, replaying the outcome afterwards.

        Raises:
            KeyReuseMismatch: Key already used for a different payload,
                owner or operation type
            OperationInFlight: Key is still processing; retry later
            OperationFailed: Key already failed; the stored failure is replayed
            UnsupportedOperation: No handler for a new key's operation type
            HandlerError: The handler failed during this execution
        """
        request_fingerprint = fingerprint(payload)

        for _ in range(MAX_CREATE_ATTEMPTS):
            existing = self.store.find(key)
            if existing is not None:
                return self._replay(
                    existing, owner_id, operation_type, request_fingerprint
                )

            if not self.registry.supports(operation_type):
                raise UnsupportedOperation(operation_type)

            try:
                self.store.create_processing(
                    key, owner_id, operation_type, request_fingerprint, ttl=self.ttl
                )
            except KeyAlreadyExists:
                # Lost the creation race; evaluate the winner's record
                logger.warning("Lost creation race for key %s, re-reading", key)
                continue

            return self._execute(key, owner_id, operation_type, payload)

        # The key kept appearing and disappearing (e.g. TTL churn)
        raise OperationInFlight(key)

    def _replay(
        self,
        record: Record,
        owner_id: str,
        operation_type: str,
        request_fingerprint: str,
    ) -> DispatchResult:
        if (
            record.request_fingerprint != request_fingerprint
            or record.owner_id != owner_id
            or record.operation_type != operation_type
        ):
            logger.warning("Key %s reused with a different request", record.key)
            raise KeyReuseMismatch(record.key)

        if record.status == "processing":
            logger.warning("Key %s is still processing", record.key)
            raise OperationInFlight(record.key)

        if record.status == "completed":
            logger.debug("Serving cached result for key %s", record.key)
            return DispatchResult(
                key=record.key,
                operation_type=record.operation_type,
                result=record.result,
                cached=True,
            )

        raise OperationFailed(record.key, record.failure_detail)

    def _execute(
        self,
        key: str,
        owner_id: str,
        operation_type: str,
        payload: Mapping[str, object],
    ) -> DispatchResult:
        logger.info("Executing %s for key %s", operation_type, key)
        try:
            result = _normalize_result(
                self.registry.execute(operation_type, payload, owner_id)
            )
        except Exception as e:
            detail = _failure_detail(e)
            logger.exception("Operation %s failed for key %s", operation_type, key)
            try:
                self.store.fail(key, detail)
            except RecordStateError:
                logger.exception("Could not record failure for key %s", key)
            raise HandlerError(key, detail) from e

        # The side effect happened; its result is returned even if unrecorded
        try:
            self.store.complete(key, result)
        except RecordStateError:
            logger.exception("Could not record result for key %s", key)
        return DispatchResult(
            key=key, operation_type=operation_type, result=result, cached=False
        )


def _normalize_result(result: object) -> object:
    """Return the result in the form it will have when replayed.

    Raises:
        OperationError: If the handler returned something not storable
    """
    try:
        return canonicalize(result)
    except SerializationError as e:
        raise OperationError(f"Handler returned an unstorable result: {e.reason}") from e


def _failure_detail(error: Exception) -> dict[str, object]:
    detail: dict[str, object] = {"error": str(error) or type(error).__name__}
    if isinstance(error, OperationError):
        try:
            extra = canonicalize(error.detail)
        except SerializationError as e:
            logger.warning("Dropping unstorable failure detail: %s", e.reason)
            extra = {}
        if isinstance(extra, dict):
            detail = {**extra, **detail}
    return detail
