"""Storage backends for the async subsystem.

All backends implement ExecutionStore:
    - InMemoryExecutionStore: in-process, for tests and single-process use
    - SqliteExecutionStore: aiosqlite-backed
    - RedisExecutionStore: redis.asyncio-backed, for workers on several machines
"""

from pyrunbook.storage.base import ExecutionStore, StorageError, WorkNotificationSource


def __getattr__(name: str):
    """Import backends on first use so unused drivers are never loaded."""
    if name == "InMemoryExecutionStore":
        from pyrunbook.storage.memory import InMemoryExecutionStore

        return InMemoryExecutionStore
    elif name == "SqliteExecutionStore":
        from pyrunbook.storage.sqlite import SqliteExecutionStore

        return SqliteExecutionStore
    elif name == "RedisExecutionStore":
        from pyrunbook.storage.redis import RedisExecutionStore

        return RedisExecutionStore
    raise AttributeError(f"module {__name__!r} has no attribute {name!r}")


__all__ = [
    "ExecutionStore",
    "StorageError",
    "WorkNotificationSource",
    "InMemoryExecutionStore",
    "SqliteExecutionStore",
    "RedisExecutionStore",
]
