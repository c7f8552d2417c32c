"""Basic usage examples for opguard."""

from opguard import (
    Dispatcher,
    HandlerError,
    KeyReuseMismatch,
    MemoryStore,
    OperationError,
    OperationFailed,
)

dispatcher = Dispatcher(MemoryStore(), ttl=300)


# Example 1: Register an operation
@dispatcher.operation("create_expense")
def create_expense(payload, owner_id):
    """Create an expense row (the side effect we must not repeat)."""
    print(f"💳 Writing expense for {owner_id}: {payload}")
    return {"success": True, "expense": {"id": "exp-1", **payload}}


# Example 2: Business failures are recorded and replayed
@dispatcher.operation("process_payment")
def process_payment(payload, owner_id):
    raise OperationError("Payment request not found")


payload = {"amount": 150.00, "description": "travel"}

# First call executes, the retry is served from the record
print(dispatcher.dispatch("pay-req-42", "user-1", "create_expense", payload).to_response())
print(dispatcher.dispatch("pay-req-42", "user-1", "create_expense", payload).to_response())

# Same key, different payload
try:
    dispatcher.dispatch("pay-req-42", "user-1", "create_expense", {**payload, "amount": 200.00})
except KeyReuseMismatch as e:
    print(f"Rejected: {e}")

# A failed key replays the stored failure instead of running again
for attempt in range(2):
    try:
        dispatcher.dispatch("pay-1", "user-1", "process_payment", {"payment_request_id": "p1"})
    except HandlerError as e:
        print(f"Attempt {attempt + 1} failed now: {e.detail}")
    except OperationFailed as e:
        print(f"Attempt {attempt + 1} replayed failure: {e.detail}")
