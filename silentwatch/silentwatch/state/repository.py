"""Repository classes providing access to the local SQLite store.

Each repository takes an ``AsyncSession`` at construction time and operates
within the caller's transaction boundary.  Writes call ``session.flush()``
so that generated keys are populated; the caller commits (usually through
:func:`silentwatch.state.sqlite_adapter.get_local_session`).
"""

from __future__ import annotations

import logging
from collections.abc import Sequence
from typing import Any

from sqlalchemy import delete, func, select
from sqlalchemy.ext.asyncio import AsyncSession

from silentwatch.state.tables import KeyValueTable, QueuedEventTable

logger = logging.getLogger(__name__)

# Stay well under SQLite's bound-parameter limit when deleting by key.
_DELETE_CHUNK_SIZE = 500


class QueueRepository:
    """CRUD operations for the ``queued_events`` table."""

    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def append(self, payload: dict[str, Any]) -> int:
        """Insert one record and return its generated key."""
        row = QueuedEventTable(payload=payload)
        self._session.add(row)
        await self._session.flush()
        return row.key

    async def list_all(self) -> list[tuple[int, dict[str, Any]]]:
        """Return every stored record as ``(key, payload)`` in key order."""
        stmt = select(QueuedEventTable.key, QueuedEventTable.payload).order_by(QueuedEventTable.key)
        result = await self._session.execute(stmt)
        return [(key, payload) for key, payload in result.all()]

    async def delete_keys(self, keys: Sequence[int]) -> int:
        """Delete exactly the given keys and return the number of rows removed."""
        removed = 0
        for start in range(0, len(keys), _DELETE_CHUNK_SIZE):
            chunk = list(keys[start : start + _DELETE_CHUNK_SIZE])
            result = await self._session.execute(delete(QueuedEventTable).where(QueuedEventTable.key.in_(chunk)))
            removed += result.rowcount or 0
        return removed

    async def count(self) -> int:
        result = await self._session.execute(select(func.count()).select_from(QueuedEventTable))
        return int(result.scalar_one())


class KeyValueRepository:
    """CRUD operations for the ``kv_entries`` table."""

    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def get(self, key: str) -> str | None:
        row = await self._session.get(KeyValueTable, key)
        return row.value if row is not None else None

    async def set(self, key: str, value: str) -> None:
        row = await self._session.get(KeyValueTable, key)
        if row is None:
            self._session.add(KeyValueTable(key=key, value=value))
        else:
            row.value = value
        await self._session.flush()
