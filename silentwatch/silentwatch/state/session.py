"""Persistent session identifier.

The session id is a UUID4 generated on first use and stored under a
configurable key, so every process sharing the same local store reports
under the same session.  It is never explicitly destroyed.
"""

from __future__ import annotations

import logging
import uuid
from typing import Protocol

logger = logging.getLogger(__name__)


class KeyValueStore(Protocol):
    """Protocol for the small persistent string store."""

    async def get(self, key: str) -> str | None: ...

    async def set(self, key: str, value: str) -> None: ...


class SessionStore:
    """Lazily create and persist the session identifier.

    Parameters
    ----------
    store:
        Persistent key/value store.
    key:
        Storage key for the identifier.
    """

    def __init__(self, store: KeyValueStore, key: str = "silentwatch_session_id") -> None:
        self._store = store
        self._key = key
        self._cached: str | None = None

    async def get_or_create(self) -> str:
        """Return the persisted session id, creating it on first use.

        If the store cannot be read or written, an ephemeral id is used for
        the rest of this process; losing session continuity is preferable
        to failing the host application.
        """
        if self._cached is not None:
            return self._cached

        try:
            existing = await self._store.get(self._key)
        except Exception:
            logger.warning("Session store unavailable; using an ephemeral session id", exc_info=True)
            self._cached = str(uuid.uuid4())
            return self._cached

        if existing:
            self._cached = existing
            return existing

        session_id = str(uuid.uuid4())
        try:
            await self._store.set(self._key, session_id)
        except Exception:
            logger.warning("Could not persist session id; it will not survive a restart", exc_info=True)
        self._cached = session_id
        logger.debug("Created session id %s", session_id)
        return session_id
