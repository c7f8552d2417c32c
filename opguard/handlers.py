"""Business operation handlers and the ledger they write to.

The ledger stands in for the relational store behind the real operations:
protocols, payment requests, expenses and consolidated protocols.
"""

import copy
import re
import threading
import uuid
from collections.abc import Mapping
from datetime import datetime, timezone

from .exceptions import OperationError
from .registry import Handler, HandlerRegistry

_TAG_RE = re.compile(r"<(script|style)[^>]*>.*?</\1>|<[^>]+>", re.IGNORECASE | re.DOTALL)
_ENTITIES = {"&nbsp;": " ", "&lt;": "<", "&gt;": ">", "&quot;": '"', "&#39;": "'", "&amp;": "&"}
_APPROVAL_TYPE_RE = re.compile(r"^[a-z][a-z0-9_]{0,31}$")
_MONTH_RE = re.compile(r"^(\d{4})-(\d{2})(?:-\d{2})?$")


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


def sanitize_text(value: object) -> str:
    """Strip HTML tags and collapse whitespace; non-strings become ''."""
    if not isinstance(value, str) or not value:
        return ""
    text = _TAG_RE.sub("", value)
    for entity, char in _ENTITIES.items():
        text = text.replace(entity, char)
    return " ".join(text.split())


class Ledger:
    """Thread-safe in-memory tables of rows keyed by id."""

    def __init__(self) -> None:
        self._tables: dict[str, dict[str, dict[str, object]]] = {}
        self._sequences: dict[str, int] = {}
        self._lock = threading.Lock()

    def insert(self, table: str, row: Mapping[str, object]) -> dict[str, object]:
        with self._lock:
            new_row = copy.deepcopy(dict(row))
            new_row.setdefault("id", uuid.uuid4().hex)
            row_id = str(new_row["id"])
            rows = self._tables.setdefault(table, {})
            if row_id in rows:
                raise OperationError(f"Duplicate id in {table}: {row_id}")
            rows[row_id] = new_row
            return copy.deepcopy(new_row)

    def update(
        self, table: str, row_id: str, changes: Mapping[str, object]
    ) -> dict[str, object]:
        with self._lock:
            row = self._tables.get(table, {}).get(str(row_id))
            if row is None:
                raise OperationError(f"Row not found in {table}: {row_id}")
            row.update(copy.deepcopy(dict(changes)))
            return copy.deepcopy(row)

    def get(self, table: str, row_id: str) -> dict[str, object] | None:
        with self._lock:
            row = self._tables.get(table, {}).get(str(row_id))
            return copy.deepcopy(row) if row is not None else None

    def rows(self, table: str) -> list[dict[str, object]]:
        with self._lock:
            return [copy.deepcopy(r) for r in self._tables.get(table, {}).values()]

    def next_sequence(self, name: str) -> int:
        with self._lock:
            self._sequences[name] = self._sequences.get(name, 0) + 1
            return self._sequences[name]


def _require(payload: Mapping[str, object], *fields: str) -> None:
    missing = [f for f in fields if payload.get(f) in (None, "")]
    if missing:
        raise OperationError(
            f"Missing required fields: {', '.join(missing)}", {"missing": missing}
        )


class LedgerHandler(Handler):
    """Base for handlers that write to a Ledger."""

    def __init__(self, ledger: Ledger) -> None:
        self.ledger = ledger


class ApproveProtocolHandler(LedgerHandler):
    """Stamp an approval of a given type on a service provider protocol."""

    operation_type = "approve_protocol"
    table = "service_provider_protocols"

    def execute(self, payload: Mapping[str, object], owner_id: str) -> object:
        _require(payload, "protocol_id", "approval_type")
        approval_type = payload["approval_type"]
        if not isinstance(approval_type, str) or not _APPROVAL_TYPE_RE.match(approval_type):
            raise OperationError(f"Invalid approval type: {approval_type!r}")

        protocol = self.ledger.update(
            self.table,
            str(payload["protocol_id"]),
            {
                f"{approval_type}_approved_at": _now(),
                f"{approval_type}_approved_by": owner_id,
                "approval_notes": sanitize_text(payload.get("notes")),
            },
        )
        return {"success": True, "protocol": protocol}


class ProcessPaymentHandler(LedgerHandler):
    """Mark a payment request as paid."""

    operation_type = "process_payment"
    table = "payment_requests"

    def execute(self, payload: Mapping[str, object], owner_id: str) -> object:
        _require(payload, "payment_request_id", "amount")
        payment = self.ledger.update(
            self.table,
            str(payload["payment_request_id"]),
            {"status": "paid", "paid_at": _now(), "payment_amount": payload["amount"]},
        )
        return {"success": True, "payment": payment}


class CreateExpenseHandler(LedgerHandler):
    operation_type = "create_expense"
    table = "expenses"

    def execute(self, payload: Mapping[str, object], owner_id: str) -> object:
        row = {k: v for k, v in payload.items() if k != "id"}
        expense = self.ledger.insert(
            self.table, {**row, "created_by": owner_id, "created_at": _now()}
        )
        return {"success": True, "expense": expense}


class GenerateConsolidatedProtocolHandler(LedgerHandler):
    """Create a draft consolidated protocol for a competence month.

    Protocol numbers look like ``CONS-202410-001``, one sequence per month.
    """

    operation_type = "generate_consolidated_protocol"
    table = "consolidated_protocols"

    def execute(self, payload: Mapping[str, object], owner_id: str) -> object:
        _require(payload, "competence_month", "protocol_ids")
        month = _MONTH_RE.match(str(payload["competence_month"]))
        if month is None:
            raise OperationError(
                f"Invalid competence month: {payload['competence_month']!r}"
            )
        protocol_ids = payload["protocol_ids"]
        if not isinstance(protocol_ids, (list, tuple)) or not protocol_ids:
            raise OperationError("protocol_ids must be a non-empty list")

        year, mon = month.groups()
        sequence = self.ledger.next_sequence(f"consolidated:{year}{mon}")
        consolidated = self.ledger.insert(
            self.table,
            {
                "protocol_number": f"CONS-{year}{mon}-{sequence:03d}",
                "competence_month": f"{year}-{mon}-01",
                "service_provider_protocol_ids": list(protocol_ids),
                "created_by": owner_id,
                "created_at": _now(),
                "status": "draft",
            },
        )
        return {"success": True, "consolidated_protocol": consolidated}


HANDLER_CLASSES: tuple[type[LedgerHandler], ...] = (
    ApproveProtocolHandler,
    ProcessPaymentHandler,
    CreateExpenseHandler,
    GenerateConsolidatedProtocolHandler,
)


def default_registry(ledger: Ledger) -> HandlerRegistry:
    """Registry with every bundled handler bound to one ledger."""
    return HandlerRegistry([cls(ledger) for cls in HANDLER_CLASSES])
