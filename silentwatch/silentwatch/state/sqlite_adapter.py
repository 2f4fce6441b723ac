"""SQLite adapter for the process-local persistent store.

One database file holds both the durable queue and the session key/value
entries, so a restarted process finds its undelivered events and keeps
its session identifier.  The host application and the ``silentwatch``
CLI may open the same file concurrently; WAL mode plus a busy timeout
lets a drain run while the application keeps appending.
"""

from __future__ import annotations

import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from pathlib import Path

from sqlalchemy import event
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine

from silentwatch.state.tables import Base

logger = logging.getLogger(__name__)

MEMORY = ":memory:"

_PRAGMAS = (
    ("journal_mode", "WAL"),
    ("synchronous", "NORMAL"),
    ("busy_timeout", "5000"),
)


def sqlite_url(db_path: Path | str) -> str:
    """Return the aiosqlite URL for *db_path*, creating parent directories."""
    if str(db_path) == MEMORY:
        return f"sqlite+aiosqlite:///{MEMORY}"
    path = Path(db_path)
    path.parent.mkdir(parents=True, exist_ok=True)
    return f"sqlite+aiosqlite:///{path}"


def get_local_engine(db_path: Path | str) -> AsyncEngine:
    """Create an async engine for *db_path* with the queue pragmas applied on connect."""
    url = sqlite_url(db_path)
    engine = create_async_engine(url, connect_args={"check_same_thread": False})

    @event.listens_for(engine.sync_engine, "connect")
    def _on_connect(dbapi_conn: object, _record: object) -> None:
        cursor = dbapi_conn.cursor()  # type: ignore[attr-defined]
        for name, value in _PRAGMAS:
            cursor.execute(f"PRAGMA {name}={value}")
        cursor.close()

    logger.debug("SQLite engine ready at %s", url)
    return engine


async def create_local_tables(engine: AsyncEngine) -> None:
    """Create ``queued_events`` and ``kv_entries`` if they do not exist."""
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


def session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(engine, expire_on_commit=False)


@asynccontextmanager
async def get_local_session(factory: async_sessionmaker[AsyncSession]) -> AsyncIterator[AsyncSession]:
    """Yield one session as a single transaction: commit on exit, roll back on error."""
    async with factory() as session:
        try:
            yield session
        except Exception:
            await session.rollback()
            raise
        await session.commit()
