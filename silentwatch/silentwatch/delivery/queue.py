"""Durable local queue of telemetry events awaiting delivery.

Events land here when a direct send fails and are replayed by the drain
loop.  Delivery is at-least-once: a batch that reaches the backend but
whose acknowledgement is lost will be sent again.

INVARIANT: A record is deleted if and only if it was part of a drained
snapshot whose delivery call succeeded.  Records appended while a
delivery is in flight are not part of that snapshot and stay queued.
The one exception is a record whose payload no longer parses as a
telemetry event: it can never be delivered, so a drain deletes it
without sending it.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable, Sequence
from typing import Any, Protocol

from pydantic import ValidationError

from silentwatch.models.events import QueuedEvent, TelemetryEvent

logger = logging.getLogger(__name__)

DeliverFn = Callable[[list[TelemetryEvent]], Awaitable[None]]


class QueueStoreError(Exception):
    """Raised by queue stores when the underlying storage is unusable."""


class QueueStore(Protocol):
    """Protocol for the persistent record store behind the queue."""

    async def append(self, payload: dict[str, Any]) -> int:
        """Persist one record and return its monotonically assigned key."""
        ...

    async def snapshot(self) -> list[tuple[int, dict[str, Any]]]:
        """Return all stored records as ``(key, payload)`` pairs."""
        ...

    async def delete(self, keys: Sequence[int]) -> None:
        """Delete exactly the given keys."""
        ...

    async def count(self) -> int: ...


class DurableQueue:
    """Append-only persistent queue with drain-and-clear semantics.

    Parameters
    ----------
    store:
        The persistent record store.
    """

    def __init__(self, store: QueueStore) -> None:
        self._store = store
        self._drain_lock = asyncio.Lock()

    async def enqueue(self, event: TelemetryEvent) -> bool:
        """Persist *event* for later delivery.

        Never raises.  A storage failure is logged and the event dropped.

        Returns
        -------
        bool
            True if the event was persisted.
        """
        try:
            key = await self._store.append(event.to_wire())
        except Exception:
            logger.warning("Failed to enqueue %s event; dropping it", event.type.value, exc_info=True)
            return False
        logger.debug("Queued %s event under key %d", event.type.value, key)
        return True

    async def snapshot(self) -> list[QueuedEvent]:
        """Return the valid records currently stored, in key order."""
        records, _invalid = self._parse(await self._store.snapshot())
        return records

    async def drain(self, deliver: DeliverFn) -> int:
        """Deliver every stored event in one batch and clear them on success.

        Parameters
        ----------
        deliver:
            Coroutine function receiving the full batch.  Raising signals
            failure and leaves all records queued.

        Returns
        -------
        int
            Number of events delivered and removed (0 on failure or when
            the queue is empty).
        """
        async with self._drain_lock:
            try:
                raw = await self._store.snapshot()
            except Exception:
                logger.warning("Failed to read the durable queue", exc_info=True)
                return 0

            records, invalid_keys = self._parse(raw)
            if invalid_keys:
                logger.warning("Discarding %d unreadable queued records", len(invalid_keys))
                await self._delete(invalid_keys)

            if not records:
                return 0

            try:
                await deliver([record.event for record in records])
            except Exception as exc:
                logger.warning("Queue drain of %d events failed, will retry: %s", len(records), exc)
                return 0

            if not await self._delete([record.key for record in records]):
                return 0
            logger.info("Drained %d queued events", len(records))
            return len(records)

    async def size(self) -> int:
        """Number of records currently stored (0 if storage is unavailable)."""
        try:
            return await self._store.count()
        except Exception:
            logger.warning("Failed to count queued events", exc_info=True)
            return 0

    # -- Internal helpers ----------------------------------------------------

    async def _delete(self, keys: list[int]) -> bool:
        try:
            await self._store.delete(keys)
        except Exception:
            logger.warning("Failed to delete %d queued records; they will be resent", len(keys), exc_info=True)
            return False
        return True

    @staticmethod
    def _parse(raw: list[tuple[int, dict[str, Any]]]) -> tuple[list[QueuedEvent], list[int]]:
        records: list[QueuedEvent] = []
        invalid: list[int] = []
        for key, payload in raw:
            try:
                records.append(QueuedEvent(key=key, event=TelemetryEvent.model_validate(payload)))
            except ValidationError:
                invalid.append(key)
        return records, invalid
