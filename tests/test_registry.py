"""Tests for the operation handler registry."""

import pytest

from opguard.exceptions import UnsupportedOperation
from opguard.registry import FunctionHandler, Handler, HandlerRegistry


class EchoHandler(Handler):
    operation_type = "echo"

    def execute(self, payload, owner_id):
        return {"payload": dict(payload), "owner": owner_id}


def test_register_and_execute():
    """Test dispatch to a registered handler class."""
    registry = HandlerRegistry([EchoHandler()])

    result = registry.execute("echo", {"a": 1}, "user-1")

    assert result == {"payload": {"a": 1}, "owner": "user-1"}
    assert registry.supports("echo")
    assert registry.operation_types == ["echo"]


def test_handler_decorator():
    """Test registering a plain function."""
    registry = HandlerRegistry()

    @registry.handler("double")
    def double(payload, owner_id):
        return payload["x"] * 2

    assert registry.execute("double", {"x": 4}, "u") == 8
    assert isinstance(registry.get("double"), FunctionHandler)
    # The decorated function stays usable directly
    assert double({"x": 1}, "u") == 2


def test_unknown_operation():
    """Test unknown operation types raise UnsupportedOperation."""
    registry = HandlerRegistry()

    with pytest.raises(UnsupportedOperation) as exc_info:
        registry.execute("nope", {}, "u")

    assert exc_info.value.operation_type == "nope"
    assert not registry.supports("nope")


def test_duplicate_registration_rejected():
    """Test one handler per operation type."""
    registry = HandlerRegistry([EchoHandler()])

    with pytest.raises(ValueError):
        registry.register(EchoHandler())


def test_handler_without_operation_type_rejected():
    """Test handlers must name their operation type."""

    class Nameless(Handler):
        def execute(self, payload, owner_id):
            return None

    with pytest.raises(ValueError):
        HandlerRegistry().register(Nameless())
