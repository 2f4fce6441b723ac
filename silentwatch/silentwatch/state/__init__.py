"""Local persistence: durable queue storage and the session identifier."""

from silentwatch.state.session import KeyValueStore, SessionStore
from silentwatch.state.stores import LocalStore, SQLiteKeyValueStore, SQLiteQueueStore

__all__ = [
    "KeyValueStore",
    "LocalStore",
    "SQLiteKeyValueStore",
    "SQLiteQueueStore",
    "SessionStore",
]
