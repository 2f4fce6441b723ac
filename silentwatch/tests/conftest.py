"""Shared fixtures for SilentWatch tests.

Provides a manually advanced clock for deterministic correlation timing,
recording HTTP backends built on ``httpx.MockTransport``, temporary SQLite
stores and sample event factories.
"""

from __future__ import annotations

import heapq
import itertools
import json
from collections.abc import Callable
from pathlib import Path
from typing import Any

import httpx
import pytest
import pytest_asyncio

from silentwatch.models.events import (
    ActionEvent,
    ActionKind,
    TargetDescriptor,
    TelemetryEvent,
    TelemetryEventType,
)
from silentwatch.state.stores import LocalStore

# Absorbs float drift when a test advances in several small steps.
_EPSILON = 1e-9

# ---------------------------------------------------------------------------
# Clock
# ---------------------------------------------------------------------------


class _FakeTimer:
    def __init__(self, due: float, callback: Callable[[], None]) -> None:
        self.due = due
        self.callback = callback
        self.cancelled = False

    def cancel(self) -> None:
        self.cancelled = True


class FakeClock:
    """Clock whose time only moves when :meth:`advance` is called."""

    def __init__(self, start: float = 1000.0) -> None:
        self._now = start
        self._heap: list[tuple[float, int, _FakeTimer]] = []
        self._seq = itertools.count()

    def now(self) -> float:
        return self._now

    def call_later(self, delay: float, callback: Callable[[], None]) -> _FakeTimer:
        timer = _FakeTimer(self._now + delay, callback)
        heapq.heappush(self._heap, (timer.due, next(self._seq), timer))
        return timer

    @property
    def live_timers(self) -> int:
        return sum(1 for _, _, timer in self._heap if not timer.cancelled)

    def advance(self, seconds: float) -> None:
        """Move time forward, firing due timers in order."""
        target = self._now + seconds
        while self._heap and self._heap[0][0] <= target + _EPSILON:
            due, _, timer = heapq.heappop(self._heap)
            self._now = max(self._now, due)
            if not timer.cancelled:
                timer.callback()
        self._now = target


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


# ---------------------------------------------------------------------------
# HTTP backends
# ---------------------------------------------------------------------------


class RecordingBackend:
    """Mock ingestion backend recording every batch it receives.

    ``statuses`` are returned in order for successive requests; once
    exhausted, ``default_status`` is used.  ``fail_connect`` makes every
    request raise ``httpx.ConnectError``.
    """

    def __init__(self, statuses: list[int] | None = None, default_status: int = 200) -> None:
        self.statuses = list(statuses or [])
        self.default_status = default_status
        self.fail_connect = False
        self.batches: list[dict[str, Any]] = []
        self.attempts = 0

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.attempts += 1
        if self.fail_connect:
            raise httpx.ConnectError("connection refused", request=request)
        status = self.statuses.pop(0) if self.statuses else self.default_status
        if 200 <= status < 300:
            self.batches.append(json.loads(request.content))
        return httpx.Response(status, json={"ok": 200 <= status < 300})

    @property
    def events(self) -> list[dict[str, Any]]:
        return [event for batch in self.batches for event in batch["events"]]

    def client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(transport=httpx.MockTransport(self.handler))


@pytest.fixture
def backend() -> RecordingBackend:
    return RecordingBackend()


# ---------------------------------------------------------------------------
# Storage
# ---------------------------------------------------------------------------


@pytest_asyncio.fixture
async def local_store(tmp_path: Path):
    store = LocalStore(tmp_path / "queue.db")
    await store.open()
    yield store
    await store.close()


# ---------------------------------------------------------------------------
# Factories
# ---------------------------------------------------------------------------


def make_event(
    event_type: TelemetryEventType = TelemetryEventType.HEARTBEAT,
    payload: dict[str, Any] | None = None,
    **kwargs: Any,
) -> TelemetryEvent:
    return TelemetryEvent(
        type=event_type,
        session_id=kwargs.pop("session_id", "session-test"),
        page=kwargs.pop("page", "/checkout"),
        payload=payload or {},
        **kwargs,
    )


def button(text: str = "Pay now", **kwargs: Any) -> TargetDescriptor:
    return TargetDescriptor(tag="button", id=kwargs.pop("id", "pay"), class_name="btn primary", text=text, **kwargs)


def click(target: TargetDescriptor | None = None) -> ActionEvent:
    return ActionEvent(kind=ActionKind.CLICK, target=target or button())
