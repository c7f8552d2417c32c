"""Record stores: the durable key space behind the dispatcher."""

from .base import Store
from .file import FileStore
from .memory import MemoryStore

__all__ = ["Store", "MemoryStore", "FileStore", "RedisStore"]


def __getattr__(name: str) -> type:
    # Importing redis is deferred until a RedisStore is asked for
    if name == "RedisStore":
        from .redis import RedisStore

        return RedisStore
    raise AttributeError(f"module {__name__!r} has no attribute {name!r}")
