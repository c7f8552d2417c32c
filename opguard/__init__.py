"""opguard - Idempotent operation processing.

Lets a client retry a request that triggers a side-effecting operation
without the operation executing more than once, even under network
retries or concurrent duplicate submissions.

Example:
    dispatcher = Dispatcher(MemoryStore())

    @dispatcher.operation("create_expense")
    def create_expense(payload, owner_id):
        return {"success": True, "expense": save_expense(payload)}

    dispatcher.dispatch("pay-req-42", "user-1", "create_expense", payload)
"""

from .dispatcher import DispatchResult, Dispatcher
from .exceptions import (
    HandlerError,
    IdempotencyError,
    KeyAlreadyExists,
    KeyReuseMismatch,
    MalformedRequest,
    OperationError,
    OperationFailed,
    OperationInFlight,
    RecordStateError,
    SerializationError,
    Unauthenticated,
    UnsupportedOperation,
)
from .fingerprint import fingerprint
from .record import Record
from .registry import FunctionHandler, Handler, HandlerRegistry
from .stores import FileStore, MemoryStore, Store

__version__ = "0.1.0"

__all__ = [
    "Dispatcher",
    "DispatchResult",
    "Handler",
    "FunctionHandler",
    "HandlerRegistry",
    "Record",
    "fingerprint",
    "Store",
    "MemoryStore",
    "FileStore",
    "IdempotencyError",
    "Unauthenticated",
    "MalformedRequest",
    "SerializationError",
    "UnsupportedOperation",
    "KeyReuseMismatch",
    "OperationInFlight",
    "OperationFailed",
    "HandlerError",
    "KeyAlreadyExists",
    "RecordStateError",
    "OperationError",
]
