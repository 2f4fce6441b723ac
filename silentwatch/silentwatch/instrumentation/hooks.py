"""Instrumentation hooks producing telemetry outside the correlation engine.

* :class:`Heartbeat` -- periodic liveness telemetry plus a check that the
  expected page elements are still present.
* :class:`ErrorCaptureHandler` -- forwards the host's ERROR log records.
* :class:`LoopExceptionHook` -- forwards exceptions the asyncio loop could
  not deliver to anyone (e.g. never-awaited failed tasks).

All hooks hand events to a sink (normally
``DeliveryPipeline.enqueue_for_delivery``) and never raise into the host.
"""

from __future__ import annotations

import asyncio
import logging
import traceback
from collections.abc import Callable, Iterable
from typing import Any, Protocol

from silentwatch.models.events import TelemetryEvent, TelemetryEventType

logger = logging.getLogger(__name__)

EventSink = Callable[[TelemetryEvent], object]
EventBuilder = Callable[[TelemetryEventType, dict[str, Any]], TelemetryEvent]

# Loggers whose records are never captured, to avoid feedback loops.
_OWN_LOGGER_PREFIX = "silentwatch"


class DocumentProbe(Protocol):
    """Capability answering whether a selector currently matches anything."""

    def has_element(self, selector: str) -> bool: ...


class Heartbeat:
    """Periodic liveness and missing-element telemetry.

    Parameters
    ----------
    sink:
        Receives the produced events.
    build:
        Builds a :class:`TelemetryEvent` from a type and payload.
    interval_seconds:
        Beat period.  ``0`` disables the background loop.
    expected_selectors:
        Selectors that must match an element on every beat.
    document_probe:
        Answers selector lookups.  Without one, no element check runs.
    viewport_probe:
        Optional callable returning extra heartbeat payload (viewport
        size, scroll position, ...).
    """

    def __init__(
        self,
        sink: EventSink,
        build: EventBuilder,
        interval_seconds: float,
        expected_selectors: Iterable[str] = (),
        document_probe: DocumentProbe | None = None,
        viewport_probe: Callable[[], dict[str, Any]] | None = None,
    ) -> None:
        self._sink = sink
        self._build = build
        self._interval = interval_seconds
        self._selectors = list(expected_selectors)
        self._probe = document_probe
        self._viewport_probe = viewport_probe
        self._task: asyncio.Task[None] | None = None

    @property
    def running(self) -> bool:
        return self._task is not None

    def beat(self) -> int:
        """Emit one heartbeat and any missing-element events.

        Returns
        -------
        int
            Number of events handed to the sink.
        """
        emitted = 0
        try:
            payload: dict[str, Any] = {}
            if self._viewport_probe is not None:
                payload.update(self._viewport_probe())
            self._sink(self._build(TelemetryEventType.HEARTBEAT, payload))
            emitted += 1
        except Exception:
            logger.debug("Heartbeat emission failed", exc_info=True)

        for selector in self._missing_selectors():
            try:
                self._sink(self._build(TelemetryEventType.MISSING_DOM_ELEMENT, {"selector": selector}))
                emitted += 1
            except Exception:
                logger.debug("Missing-element emission failed for %s", selector, exc_info=True)
        return emitted

    def _missing_selectors(self) -> list[str]:
        if self._probe is None:
            return []
        missing: list[str] = []
        for selector in self._selectors:
            try:
                if not self._probe.has_element(selector):
                    missing.append(selector)
            except Exception:
                logger.debug("Probe failed for selector %s", selector, exc_info=True)
        return missing

    def start(self) -> None:
        if self._task is not None or self._interval <= 0:
            return
        self._task = asyncio.ensure_future(self._run())
        logger.info("Heartbeat started (interval=%.1fs)", self._interval)

    async def _run(self) -> None:
        while True:
            await asyncio.sleep(self._interval)
            self.beat()

    async def stop(self) -> None:
        if self._task is None:
            return
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        self._task = None


class ErrorCaptureHandler(logging.Handler):
    """Logging handler turning the host's ERROR records into telemetry.

    Records from SilentWatch's own loggers are skipped.  When *loop* is
    given, records logged from other threads (executors,
    ``asyncio.to_thread``) are handed to the sink on that loop.
    """

    def __init__(
        self,
        sink: EventSink,
        build: EventBuilder,
        level: int = logging.ERROR,
        loop: asyncio.AbstractEventLoop | None = None,
    ) -> None:
        super().__init__(level=level)
        self._sink = sink
        self._build = build
        self._loop = loop
        self._attached_to: logging.Logger | None = None

    def _on_loop_thread(self) -> bool:
        try:
            return asyncio.get_running_loop() is self._loop
        except RuntimeError:
            return False

    def emit(self, record: logging.LogRecord) -> None:
        if record.name == _OWN_LOGGER_PREFIX or record.name.startswith(_OWN_LOGGER_PREFIX + "."):
            return
        try:
            payload: dict[str, Any] = {
                "message": record.getMessage(),
                "logger": record.name,
                "level": record.levelname,
            }
            if record.exc_info and record.exc_info[0] is not None:
                payload["exception"] = "".join(traceback.format_exception_only(*record.exc_info[:2])).strip()
            event = self._build(TelemetryEventType.CONSOLE_ERROR, payload)
            if self._loop is None or self._on_loop_thread():
                self._sink(event)
            else:
                self._loop.call_soon_threadsafe(self._sink, event)
        except Exception:
            self.handleError(record)

    def attach(self, target: logging.Logger | None = None) -> None:
        """Install on *target* (the root logger by default)."""
        if self._attached_to is not None:
            return
        self._attached_to = target or logging.getLogger()
        self._attached_to.addHandler(self)

    def detach(self) -> None:
        if self._attached_to is not None:
            self._attached_to.removeHandler(self)
            self._attached_to = None


class LoopExceptionHook:
    """asyncio exception handler reporting ``unhandled_rejection`` telemetry.

    The previously installed handler (or the loop's default one) is still
    invoked after reporting.
    """

    def __init__(self, sink: EventSink, build: EventBuilder) -> None:
        self._sink = sink
        self._build = build
        self._loop: asyncio.AbstractEventLoop | None = None
        self._previous: Callable[[asyncio.AbstractEventLoop, dict[str, Any]], object] | None = None

    @property
    def installed(self) -> bool:
        return self._loop is not None

    def install(self, loop: asyncio.AbstractEventLoop | None = None) -> None:
        if self._loop is not None:
            return
        loop = loop or asyncio.get_running_loop()
        self._previous = loop.get_exception_handler()
        loop.set_exception_handler(self.handle)
        self._loop = loop

    def uninstall(self) -> None:
        if self._loop is None:
            return
        self._loop.set_exception_handler(self._previous)
        self._loop = None
        self._previous = None

    def handle(self, loop: asyncio.AbstractEventLoop, context: dict[str, Any]) -> None:
        try:
            exc = context.get("exception")
            payload: dict[str, Any] = {
                "message": str(context.get("message", "")),
                "exception": repr(exc) if exc is not None else None,
            }
            self._sink(self._build(TelemetryEventType.UNHANDLED_REJECTION, payload))
        except Exception:
            logger.debug("Failed to report unhandled loop exception", exc_info=True)

        if self._previous is not None:
            self._previous(loop, context)
        else:
            loop.default_exception_handler(context)
