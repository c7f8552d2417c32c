"""Operation handler registry."""

from abc import ABC, abstractmethod
from collections.abc import Callable, Mapping

from .exceptions import UnsupportedOperation

HandlerFunc = Callable[[Mapping[str, object], str], object]


class Handler(ABC):
    """One side-effecting business operation.

    Subclasses set ``operation_type`` and implement ``execute``. Handlers
    signal business failures by raising ``OperationError``.
    """

    operation_type: str

    @abstractmethod
    def execute(self, payload: Mapping[str, object], owner_id: str) -> object:
        """Perform the operation and return a JSON-compatible result."""
        pass


class FunctionHandler(Handler):
    """Adapt a plain ``func(payload, owner_id)`` callable to a Handler."""

    def __init__(self, operation_type: str, func: HandlerFunc) -> None:
        self.operation_type = operation_type
        self.func = func

    def execute(self, payload: Mapping[str, object], owner_id: str) -> object:
        return self.func(payload, owner_id)

    def __repr__(self) -> str:
        return f"FunctionHandler({self.operation_type!r}, {self.func.__qualname__})"


class HandlerRegistry:
    """Map of operation type to handler, filled at startup."""

    def __init__(self, handlers: list[Handler] | None = None) -> None:
        self._handlers: dict[str, Handler] = {}
        for handler in handlers or []:
            self.register(handler)

    def register(self, handler: Handler) -> Handler:
        """Add a handler.

        Raises:
            ValueError: If the operation type is already registered
        """
        name = getattr(handler, "operation_type", None)
        if not isinstance(name, str) or not name:
            raise ValueError(f"Handler {handler!r} has no operation_type")
        if name in self._handlers:
            raise ValueError(f"Handler already registered for '{name}'")
        self._handlers[name] = handler
        return handler

    def handler(self, operation_type: str) -> Callable[[HandlerFunc], HandlerFunc]:
        """Decorator registering a function as the handler for a type.

        Example:
            @registry.handler("create_expense")
            def create_expense(payload, owner_id):
                return {"success": True}
        """

        def decorator(func: HandlerFunc) -> HandlerFunc:
            self.register(FunctionHandler(operation_type, func))
            return func

        return decorator

    def supports(self, operation_type: str) -> bool:
        return operation_type in self._handlers

    @property
    def operation_types(self) -> list[str]:
        return sorted(self._handlers)

    def get(self, operation_type: str) -> Handler:
        try:
            return self._handlers[operation_type]
        except KeyError:
            raise UnsupportedOperation(operation_type) from None

    def execute(
        self, operation_type: str, payload: Mapping[str, object], owner_id: str
    ) -> object:
        """Run the handler for an operation type, without retries."""
        return self.get(operation_type).execute(payload, owner_id)
