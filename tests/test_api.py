"""Tests for the HTTP interface."""

import threading
from concurrent.futures import ThreadPoolExecutor

import pytest
from fastapi.testclient import TestClient

from opguard.api import StaticTokenAuthenticator, create_app
from opguard.dispatcher import Dispatcher
from opguard.handlers import Ledger, default_registry
from opguard.stores import MemoryStore

AUTH = {"Authorization": "Bearer token-1"}
EXPENSE = {
    "operation_type": "create_expense",
    "payload": {"amount": 150.00, "description": "travel"},
}


@pytest.fixture
def ledger():
    return Ledger()


@pytest.fixture
def dispatcher(ledger):
    return Dispatcher(MemoryStore(), default_registry(ledger))


@pytest.fixture
def client(dispatcher):
    authenticator = StaticTokenAuthenticator({"token-1": "user-1", "token-2": "user-2"})
    return TestClient(create_app(dispatcher, authenticator))


def post(client, key, body=EXPENSE, headers=AUTH):
    return client.post(
        "/operations", json=body, headers={**headers, "Idempotency-Key": key}
    )


def test_fresh_then_cached(client, ledger):
    """Test the same request twice executes once and replays."""
    first = post(client, "pay-req-42")
    second = post(client, "pay-req-42")

    assert first.status_code == 200
    assert second.status_code == 200
    assert first.json()["cached"] is False
    assert second.json()["cached"] is True
    assert first.json()["idempotent"] is True
    assert first.json()["expense"] == second.json()["expense"]
    assert len(ledger.rows("expenses")) == 1


def test_parallel_duplicates_write_one_expense(dispatcher, ledger):
    """Test two parallel submissions create exactly one expense row."""
    release = threading.Event()
    started = threading.Event()
    inner = dispatcher.registry.get("create_expense")
    original = inner.execute

    def slow_execute(payload, owner_id):
        started.set()
        release.wait(timeout=5)
        return original(payload, owner_id)

    inner.execute = slow_execute
    app = create_app(dispatcher, StaticTokenAuthenticator({"token-1": "user-1"}))

    with TestClient(app) as client, ThreadPoolExecutor(max_workers=1) as pool:
        first = pool.submit(post, client, "pay-req-42")
        assert started.wait(timeout=5)

        in_flight = post(client, "pay-req-42")
        release.set()
        fresh = first.result(timeout=5)
        replay = post(client, "pay-req-42")

    assert in_flight.status_code == 409
    assert in_flight.json()["idempotency_key"] == "pay-req-42"
    assert in_flight.headers["Retry-After"] == "1"
    assert fresh.status_code == 200
    assert replay.json()["expense"]["id"] == fresh.json()["expense"]["id"]
    assert len(ledger.rows("expenses")) == 1


def test_key_reuse_with_different_payload(client, ledger):
    """Test a different payload under a used key is rejected with 422."""
    post(client, "pay-req-42")

    response = post(
        client,
        "pay-req-42",
        {"operation_type": "create_expense", "payload": {"amount": 200.00, "description": "travel"}},
    )

    assert response.status_code == 422
    assert "different request" in response.json()["error"]
    assert len(ledger.rows("expenses")) == 1


def test_key_reuse_by_other_owner(client):
    """Test another caller can't read a key's result."""
    post(client, "pay-req-42")

    response = post(client, "pay-req-42", headers={"Authorization": "Bearer token-2"})

    assert response.status_code == 422


def test_handler_failure_recorded_and_replayed(client):
    """Test failures return 500 and replay without re-execution."""
    body = {
        "operation_type": "process_payment",
        "payload": {"payment_request_id": "missing", "amount": 10},
    }

    first = post(client, "pay-1", body)
    second = post(client, "pay-1", body)

    assert first.status_code == 500
    assert "Row not found" in first.json()["error"]
    assert second.status_code == 500
    assert second.json()["error"] == "Previous operation failed"
    assert second.json()["details"] == first.json()


def test_unsupported_operation(client):
    """Test unknown operation types are rejected and leave no record."""
    response = post(client, "k", {"operation_type": "nope", "payload": {}})

    assert response.status_code == 400
    assert response.json() == {"error": "Unsupported operation type: nope"}
    assert post(client, "k").status_code == 200


def test_missing_authorization(client):
    """Test requests without credentials get 401."""
    response = client.post("/operations", json=EXPENSE, headers={"Idempotency-Key": "k"})

    assert response.status_code == 401
    assert response.json() == {"error": "Unauthorized"}


def test_invalid_token(client):
    """Test unknown tokens get 401."""
    response = post(client, "k", headers={"Authorization": "Bearer wrong"})

    assert response.status_code == 401
    assert response.json() == {"error": "Invalid token"}


def test_authentication_checked_before_body(client):
    """Test a bad body from an unknown caller is still a 401."""
    response = client.post(
        "/operations",
        content=b"not json",
        headers={"Idempotency-Key": "k", "Content-Type": "application/json"},
    )

    assert response.status_code == 401


def test_missing_idempotency_key(client):
    """Test the key header is required."""
    response = client.post("/operations", json=EXPENSE, headers=AUTH)

    assert response.status_code == 400
    assert response.json() == {"error": "Idempotency-Key header is required"}


def test_overlong_idempotency_key(client):
    """Test keys are length limited."""
    assert post(client, "k" * 256).status_code == 400


@pytest.mark.parametrize(
    "body",
    [
        {"payload": {}},
        {"operation_type": "create_expense"},
        {"operation_type": "", "payload": {}},
        {"operation_type": "create_expense", "payload": []},
        ["create_expense"],
    ],
)
def test_malformed_body(client, body):
    """Test missing or malformed operation_type/payload get 400."""
    response = post(client, "k", body)

    assert response.status_code == 400
    assert response.json() == {"error": "operation_type and payload are required"}


def test_non_json_body(client):
    """Test unparseable bodies get 400."""
    response = client.post(
        "/operations",
        content=b"{",
        headers={**AUTH, "Idempotency-Key": "k", "Content-Type": "application/json"},
    )

    assert response.status_code == 400


def test_list_operations(client):
    """Test the monitor listing returns newest records first."""
    post(client, "first")
    post(client, "second", {"operation_type": "create_expense", "payload": {"amount": 1}})

    response = client.get("/operations", headers=AUTH)

    assert response.status_code == 200
    records = response.json()["records"]
    assert [r["key"] for r in records] == ["second", "first"]
    assert records[0]["status"] == "completed"
    assert records[0]["operation_type"] == "create_expense"
    assert records[0]["completed_at"] is not None


def test_list_operations_scoped_to_caller(client):
    """Test callers only see the keys they created."""
    post(client, "mine")
    post(client, "theirs", headers={"Authorization": "Bearer token-2"})

    mine = client.get("/operations", headers=AUTH).json()["records"]
    theirs = client.get(
        "/operations", headers={"Authorization": "Bearer token-2"}
    ).json()["records"]

    assert [r["key"] for r in mine] == ["mine"]
    assert [r["key"] for r in theirs] == ["theirs"]


def test_list_operations_requires_auth(client):
    """Test the monitor listing needs credentials."""
    assert client.get("/operations").status_code == 401


def test_list_operations_limit_bounds(client):
    """Test limit outside 1..200 is a 400."""
    assert client.get("/operations?limit=0", headers=AUTH).status_code == 400
    assert client.get("/operations?limit=500", headers=AUTH).status_code == 400


def test_cors_allows_idempotency_key_header(client):
    """Test preflight requests accept the Idempotency-Key header."""
    response = client.options(
        "/operations",
        headers={
            "Origin": "https://app.example.com",
            "Access-Control-Request-Method": "POST",
            "Access-Control-Request-Headers": "idempotency-key",
        },
    )

    assert response.status_code == 200
    assert "idempotency-key" in response.headers["access-control-allow-headers"].lower()
