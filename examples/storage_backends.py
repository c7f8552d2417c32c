"""Examples of using different record stores."""

from opguard import Dispatcher
from opguard.handlers import Ledger, default_registry
from opguard.stores import FileStore, MemoryStore

PAYLOAD = {"amount": 150.00, "description": "travel"}


def run(dispatcher: Dispatcher, key: str) -> None:
    first = dispatcher.dispatch(key, "user-1", "create_expense", PAYLOAD)
    second = dispatcher.dispatch(key, "user-1", "create_expense", PAYLOAD)
    print(f"  first cached={first.cached}  second cached={second.cached}")
    print(f"  expense id: {first.result['expense']['id']}")


# Example 1: MemoryStore (single process only)
print("=" * 60)
print("Example 1: MemoryStore (in-memory, single process)")
print("=" * 60)
run(Dispatcher(MemoryStore(), default_registry(Ledger())), "memory-demo")
print()

# Example 2: FileStore (persistent, multi-process safe on one host)
print("=" * 60)
print("Example 2: FileStore (persistent, multi-process safe)")
print("=" * 60)
file_store = FileStore("/tmp/opguard_demo")
run(Dispatcher(file_store, default_registry(Ledger())), "file-demo")
print()

# Example 3: RedisStore (distributed, multi-server safe)
print("=" * 60)
print("Example 3: RedisStore (distributed, multi-server safe)")
print("=" * 60)

try:
    import redis

    from opguard.stores import RedisStore

    redis_client = redis.Redis(host="localhost", port=6379, db=0)
    redis_client.ping()

    redis_store = RedisStore(redis_client, prefix="demo:")
    run(Dispatcher(redis_store, default_registry(Ledger()), ttl=300), "redis-demo")
    redis_store.clear()
except redis.exceptions.ConnectionError as e:
    print(f"⚠️  Redis not available: {e}")
    print("   Make sure Redis is running: redis-server")

print()
print("Cleaning up demo files...")
file_store.clear()
