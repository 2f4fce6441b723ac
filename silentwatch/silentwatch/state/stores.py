"""SQLite-backed implementations of the queue and key/value store protocols.

:class:`LocalStore` owns the engine for one database file; the queue and
key/value stores borrow it and open a short session per operation, so each
call is its own transaction.
"""

from __future__ import annotations

import logging
from collections.abc import Sequence
from contextlib import AbstractAsyncContextManager
from pathlib import Path
from typing import Any

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker

from silentwatch.delivery.queue import QueueStoreError
from silentwatch.state.repository import KeyValueRepository, QueueRepository
from silentwatch.state.sqlite_adapter import create_local_tables, get_local_engine, get_local_session, session_factory

logger = logging.getLogger(__name__)


class LocalStore:
    """Lifecycle owner of the local SQLite database.

    Parameters
    ----------
    db_path:
        Database file.  Parent directories are created on :meth:`open`.
    """

    def __init__(self, db_path: Path | str) -> None:
        self._db_path = db_path
        self._engine: AsyncEngine | None = None
        self._sessions: async_sessionmaker[AsyncSession] | None = None

    @property
    def engine(self) -> AsyncEngine:
        if self._engine is None:
            raise RuntimeError("LocalStore is not open")
        return self._engine

    @property
    def is_open(self) -> bool:
        return self._engine is not None

    def session(self) -> AbstractAsyncContextManager[AsyncSession]:
        """Open one transactional session.  Raises RuntimeError when closed."""
        if self._sessions is None:
            raise RuntimeError("LocalStore is not open")
        return get_local_session(self._sessions)

    async def open(self) -> None:
        """Create the engine and tables.  Calling twice is a no-op."""
        if self._engine is not None:
            return
        engine = get_local_engine(self._db_path)
        try:
            await create_local_tables(engine)
        except Exception:
            await engine.dispose()
            raise
        self._engine = engine
        self._sessions = session_factory(engine)
        logger.info("Local store opened at %s", self._db_path)

    async def close(self) -> None:
        if self._engine is not None:
            await self._engine.dispose()
        self._engine = None
        self._sessions = None

    def queue_store(self) -> SQLiteQueueStore:
        return SQLiteQueueStore(self)

    def kv_store(self) -> SQLiteKeyValueStore:
        return SQLiteKeyValueStore(self)


class SQLiteQueueStore:
    """:class:`~silentwatch.delivery.queue.QueueStore` backed by ``queued_events``.

    Storage failures surface as :class:`QueueStoreError`.
    """

    def __init__(self, store: LocalStore) -> None:
        self._store = store

    async def append(self, payload: dict[str, Any]) -> int:
        try:
            async with self._store.session() as session:
                return await QueueRepository(session).append(payload)
        except (SQLAlchemyError, RuntimeError) as exc:
            raise QueueStoreError(f"append failed: {exc}") from exc

    async def snapshot(self) -> list[tuple[int, dict[str, Any]]]:
        try:
            async with self._store.session() as session:
                return await QueueRepository(session).list_all()
        except (SQLAlchemyError, RuntimeError) as exc:
            raise QueueStoreError(f"snapshot failed: {exc}") from exc

    async def delete(self, keys: Sequence[int]) -> None:
        if not keys:
            return
        try:
            async with self._store.session() as session:
                await QueueRepository(session).delete_keys(keys)
        except (SQLAlchemyError, RuntimeError) as exc:
            raise QueueStoreError(f"delete failed: {exc}") from exc

    async def count(self) -> int:
        try:
            async with self._store.session() as session:
                return await QueueRepository(session).count()
        except (SQLAlchemyError, RuntimeError) as exc:
            raise QueueStoreError(f"count failed: {exc}") from exc


class SQLiteKeyValueStore:
    """:class:`~silentwatch.state.session.KeyValueStore` backed by ``kv_entries``."""

    def __init__(self, store: LocalStore) -> None:
        self._store = store

    async def get(self, key: str) -> str | None:
        async with self._store.session() as session:
            return await KeyValueRepository(session).get(key)

    async def set(self, key: str, value: str) -> None:
        async with self._store.session() as session:
            await KeyValueRepository(session).set(key, value)
