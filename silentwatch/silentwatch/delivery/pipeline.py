"""Telemetry delivery pipeline: admit, redact, transmit or enqueue.

Each event passes through, in order:

1. the sampler (probabilistic admission),
2. the rate limiter (token bucket),
3. the scrubber (PII redaction),
4. direct transmission, falling back to the durable queue on failure.

Admission runs before scrubbing and storage so dropped events cost
nothing, and scrubbing runs before anything leaves the process, including
the durable queue.  A background drain loop replays queued events through
the same transport and envelope as live sends.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable
from enum import Enum

from silentwatch.delivery.queue import DurableQueue
from silentwatch.delivery.transport import TransmissionError, Transport
from silentwatch.models.events import TelemetryEvent
from silentwatch.telemetry.privacy import scrub_event
from silentwatch.telemetry.rate_limiter import TokenBucket
from silentwatch.telemetry.sampling import Sampler

logger = logging.getLogger(__name__)


class DeliveryOutcome(str, Enum):
    """What happened to an event handed to the pipeline."""

    SAMPLED_OUT = "sampled_out"
    RATE_LIMITED = "rate_limited"
    DROPPED = "dropped"
    SCHEDULED = "scheduled"
    SENT = "sent"
    QUEUED = "queued"


class DeliveryPipeline:
    """Compose admission control, scrubbing, transmission and queuing.

    Parameters
    ----------
    transport:
        Batch transport to the ingestion backend.
    queue:
        Durable queue receiving events whose direct send failed.
    sampler:
        Probabilistic admission gate.
    rate_limiter:
        Token-bucket admission gate.
    scrubber:
        Pure redaction function applied to admitted events.
    page:
        Page label placed on every batch envelope.
    drain_interval_seconds:
        Period of the background drain loop.
    """

    def __init__(
        self,
        transport: Transport,
        queue: DurableQueue,
        sampler: Sampler,
        rate_limiter: TokenBucket,
        scrubber: Callable[[TelemetryEvent], TelemetryEvent] = scrub_event,
        page: str = "",
        drain_interval_seconds: float = 10.0,
    ) -> None:
        self._transport = transport
        self._queue = queue
        self._sampler = sampler
        self._rate_limiter = rate_limiter
        self._scrubber = scrubber
        self._page = page
        self._drain_interval = drain_interval_seconds
        self._in_flight: set[asyncio.Task[DeliveryOutcome]] = set()
        self._drain_task: asyncio.Task[None] | None = None

    @property
    def queue(self) -> DurableQueue:
        return self._queue

    @property
    def in_flight_count(self) -> int:
        return len(self._in_flight)

    # -- Direct path ---------------------------------------------------------

    def enqueue_for_delivery(self, event: TelemetryEvent) -> DeliveryOutcome:
        """Admit, scrub and schedule *event* for transmission.

        Fire-and-forget: admission and scrubbing happen synchronously, the
        send runs as a background task.  Must be called on the event loop
        thread; elsewhere the event is dropped before admission, so no
        rate-limit token is spent.  Never raises.
        """
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            logger.debug("No running event loop; dropping %s event", event.type.value)
            return DeliveryOutcome.DROPPED
        try:
            outcome, scrubbed = self._admit(event)
            if scrubbed is None:
                return outcome
            task = loop.create_task(self._transmit(scrubbed))
        except Exception:
            logger.debug("Failed to schedule %s event", event.type.value, exc_info=True)
            return DeliveryOutcome.DROPPED
        self._in_flight.add(task)
        task.add_done_callback(self._in_flight.discard)
        return DeliveryOutcome.SCHEDULED

    async def deliver(self, event: TelemetryEvent) -> DeliveryOutcome:
        """Awaitable variant of :meth:`enqueue_for_delivery`.

        Returns once the send has settled (``SENT``, ``QUEUED`` or
        ``DROPPED``) or admission rejected the event.
        """
        try:
            outcome, scrubbed = self._admit(event)
        except Exception:
            logger.debug("Failed to admit %s event", event.type.value, exc_info=True)
            return DeliveryOutcome.DROPPED
        if scrubbed is None:
            return outcome
        return await self._transmit(scrubbed)

    async def flush(self) -> None:
        """Wait for every in-flight direct send to settle."""
        while self._in_flight:
            await asyncio.gather(*list(self._in_flight), return_exceptions=True)

    def _admit(self, event: TelemetryEvent) -> tuple[DeliveryOutcome, TelemetryEvent | None]:
        if not self._sampler.should_sample():
            logger.debug("Sampled out %s event", event.type.value)
            return DeliveryOutcome.SAMPLED_OUT, None
        if not self._rate_limiter.allow():
            logger.debug("Rate limited %s event", event.type.value)
            return DeliveryOutcome.RATE_LIMITED, None
        try:
            scrubbed = self._scrubber(event)
        except Exception:
            # Unredacted data must never leave the process or reach storage.
            logger.warning("Scrubbing failed; dropping %s event", event.type.value, exc_info=True)
            return DeliveryOutcome.DROPPED, None
        return DeliveryOutcome.SCHEDULED, scrubbed

    async def _transmit(self, event: TelemetryEvent) -> DeliveryOutcome:
        try:
            await self._transport.send([event], page=self._page)
        except TransmissionError as exc:
            logger.debug("Direct send failed, queuing %s event: %s", event.type.value, exc)
        except Exception:
            logger.warning("Unexpected transport failure, queuing %s event", event.type.value, exc_info=True)
        else:
            return DeliveryOutcome.SENT

        if await self._queue.enqueue(event):
            return DeliveryOutcome.QUEUED
        return DeliveryOutcome.DROPPED

    # -- Drain path ----------------------------------------------------------

    async def drain_once(self) -> int:
        """Run one drain cycle; returns the number of events delivered."""
        return await self._queue.drain(self._send_batch)

    async def _send_batch(self, events: list[TelemetryEvent]) -> None:
        await self._transport.send(events, page=self._page)

    def start_drain_loop(self) -> None:
        """Launch the periodic drain coroutine."""
        if self._drain_task is not None:
            return
        self._drain_task = asyncio.ensure_future(self._drain_loop())
        logger.info("Queue drain loop started (interval=%.1fs)", self._drain_interval)

    async def _drain_loop(self) -> None:
        while True:
            await asyncio.sleep(self._drain_interval)
            try:
                await self.drain_once()
            except Exception:
                logger.warning("Drain cycle crashed; retrying next interval", exc_info=True)

    async def stop(self) -> None:
        """Cancel the drain loop and wait for in-flight sends."""
        if self._drain_task is not None:
            self._drain_task.cancel()
            try:
                await self._drain_task
            except asyncio.CancelledError:
                pass
            self._drain_task = None
        await self.flush()
