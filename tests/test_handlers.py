"""Tests for the bundled business operation handlers."""

import pytest

from opguard.exceptions import OperationError
from opguard.handlers import (
    ApproveProtocolHandler,
    CreateExpenseHandler,
    GenerateConsolidatedProtocolHandler,
    Ledger,
    ProcessPaymentHandler,
    default_registry,
    sanitize_text,
)


@pytest.fixture
def ledger():
    return Ledger()


def test_default_registry_has_all_operations(ledger):
    """Test the four bundled operation types are registered."""
    registry = default_registry(ledger)

    assert registry.operation_types == [
        "approve_protocol",
        "create_expense",
        "generate_consolidated_protocol",
        "process_payment",
    ]


def test_create_expense(ledger):
    """Test expense rows get an id and creator."""
    handler = CreateExpenseHandler(ledger)

    result = handler.execute({"amount": 150.00, "description": "travel"}, "user-1")

    expense = result["expense"]
    assert result["success"] is True
    assert expense["amount"] == 150.00
    assert expense["created_by"] == "user-1"
    assert expense["id"]
    assert ledger.rows("expenses") == [expense]


def test_create_expense_ignores_client_id(ledger):
    """Test that callers can't pick the row id."""
    handler = CreateExpenseHandler(ledger)

    first = handler.execute({"id": "fixed", "amount": 1}, "u")
    second = handler.execute({"id": "fixed", "amount": 1}, "u")

    assert first["expense"]["id"] != "fixed"
    assert first["expense"]["id"] != second["expense"]["id"]


def test_process_payment(ledger):
    """Test payment requests are marked paid."""
    ledger.insert("payment_requests", {"id": "p1", "status": "approved"})
    handler = ProcessPaymentHandler(ledger)

    result = handler.execute({"payment_request_id": "p1", "amount": 300}, "user-1")

    assert result["payment"]["status"] == "paid"
    assert result["payment"]["payment_amount"] == 300
    assert result["payment"]["paid_at"]
    assert ledger.get("payment_requests", "p1")["status"] == "paid"


def test_process_payment_missing_request(ledger):
    """Test unknown payment requests fail the operation."""
    with pytest.raises(OperationError):
        ProcessPaymentHandler(ledger).execute(
            {"payment_request_id": "nope", "amount": 1}, "u"
        )


def test_process_payment_missing_fields(ledger):
    """Test required fields are reported."""
    with pytest.raises(OperationError) as exc_info:
        ProcessPaymentHandler(ledger).execute({"payment_request_id": "p1"}, "u")

    assert exc_info.value.detail == {"missing": ["amount"]}


def test_approve_protocol(ledger):
    """Test approval stamps and sanitized notes."""
    ledger.insert("service_provider_protocols", {"id": "sp1", "status": "draft"})
    handler = ApproveProtocolHandler(ledger)

    result = handler.execute(
        {
            "protocol_id": "sp1",
            "approval_type": "master",
            "notes": "<b>ok</b> <script>alert(1)</script>for   payment",
        },
        "user-9",
    )

    protocol = result["protocol"]
    assert protocol["master_approved_by"] == "user-9"
    assert protocol["master_approved_at"]
    assert protocol["approval_notes"] == "ok for payment"


def test_approve_protocol_rejects_odd_approval_type(ledger):
    """Test approval type must be a plain field prefix."""
    ledger.insert("service_provider_protocols", {"id": "sp1"})

    with pytest.raises(OperationError):
        ApproveProtocolHandler(ledger).execute(
            {"protocol_id": "sp1", "approval_type": "status = 'paid' --"}, "u"
        )


def test_generate_consolidated_protocol_numbers(ledger):
    """Test protocol numbers follow a per-month sequence."""
    handler = GenerateConsolidatedProtocolHandler(ledger)

    first = handler.execute({"competence_month": "2024-10", "protocol_ids": ["a"]}, "u")
    second = handler.execute(
        {"competence_month": "2024-10-01", "protocol_ids": ["b"]}, "u"
    )
    other = handler.execute({"competence_month": "2024-11", "protocol_ids": ["c"]}, "u")

    assert first["consolidated_protocol"]["protocol_number"] == "CONS-202410-001"
    assert second["consolidated_protocol"]["protocol_number"] == "CONS-202410-002"
    assert other["consolidated_protocol"]["protocol_number"] == "CONS-202411-001"
    assert first["consolidated_protocol"]["status"] == "draft"
    assert first["consolidated_protocol"]["competence_month"] == "2024-10-01"


def test_generate_consolidated_protocol_validation(ledger):
    """Test bad months and empty protocol lists fail."""
    handler = GenerateConsolidatedProtocolHandler(ledger)

    with pytest.raises(OperationError):
        handler.execute({"competence_month": "October", "protocol_ids": ["a"]}, "u")
    with pytest.raises(OperationError):
        handler.execute({"competence_month": "2024-10", "protocol_ids": "a"}, "u")


def test_sanitize_text():
    """Test HTML stripping and entity decoding."""
    assert sanitize_text("<p>a &amp; b</p>") == "a & b"
    assert sanitize_text("<style>x{}</style>plain") == "plain"
    assert sanitize_text(None) == ""
    assert sanitize_text(42) == ""


def test_ledger_returns_copies(ledger):
    """Test ledger rows can't be mutated from outside."""
    row = ledger.insert("expenses", {"id": "e1", "tags": ["a"]})
    row["tags"].append("b")

    assert ledger.get("expenses", "e1")["tags"] == ["a"]
