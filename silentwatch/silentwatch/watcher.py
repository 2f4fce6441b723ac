"""SilentWatch facade wiring the engine into a running asyncio application.

Typical use::

    watch = await init_silent_watch({"logEndpoint": "https://logs.example.com/logs"})
    client = watch.create_async_client()      # host HTTP calls are observed
    watch.record_click(TargetDescriptor(tag="button", text="Pay"))
    ...
    await watch.stop()

Startup opens the local store, resolves the session id, connects the
network monitor to the correlation engine, the engine to the delivery
pipeline, and starts the drain loop, the heartbeat and the error hooks.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable, Mapping
from typing import Any

import httpx

from silentwatch.config import WatchSettings, load_settings, settings_from_options
from silentwatch.correlation.clock import Clock, LoopClock
from silentwatch.correlation.engine import CorrelationEngine
from silentwatch.correlation.interaction import InteractionSource
from silentwatch.delivery.pipeline import DeliveryOutcome, DeliveryPipeline
from silentwatch.delivery.queue import DurableQueue, QueueStore
from silentwatch.delivery.transport import HttpTransport, Transport
from silentwatch.instrumentation.hooks import DocumentProbe, ErrorCaptureHandler, Heartbeat, LoopExceptionHook
from silentwatch.log_format import configure_logging
from silentwatch.models.events import TargetDescriptor, TelemetryEvent, TelemetryEventType
from silentwatch.network.monitor import NetworkActivityMonitor
from silentwatch.state.session import KeyValueStore, SessionStore
from silentwatch.state.stores import LocalStore
from silentwatch.telemetry.rate_limiter import TokenBucket
from silentwatch.telemetry.sampling import ProbabilisticSampler, Sampler

logger = logging.getLogger(__name__)

_RATE_WINDOW_SECONDS = 60.0


class SilentWatch:
    """One engine instance: monitor, correlation, delivery and hooks.

    Every capability can be injected; anything omitted gets the default
    implementation built from *settings*.

    Parameters
    ----------
    settings:
        Engine settings.  Loaded from the environment when omitted.
    clock:
        Correlation clock.  Defaults to the running asyncio loop.
    interaction_source:
        Source of user actions the engine subscribes to.
    document_probe:
        Answers expected-selector lookups for the heartbeat.
    viewport_probe:
        Extra heartbeat payload provider.
    transport:
        Batch transport.  Defaults to :class:`HttpTransport` on
        ``settings.log_endpoint``.
    queue_store, kv_store:
        Persistent stores.  Default to the SQLite file at
        ``settings.queue_path``.
    sampler, rate_limiter:
        Admission gates.  Default to ``settings.sampling_rate`` and
        ``settings.max_events_per_minute`` per minute.
    capture_errors:
        Install the ERROR-log and loop exception hooks.
    on_detect:
        Called with every silent-failure event before it is delivered.
    """

    def __init__(
        self,
        settings: WatchSettings | None = None,
        *,
        clock: Clock | None = None,
        interaction_source: InteractionSource | None = None,
        document_probe: DocumentProbe | None = None,
        viewport_probe: Callable[[], dict[str, Any]] | None = None,
        transport: Transport | None = None,
        queue_store: QueueStore | None = None,
        kv_store: KeyValueStore | None = None,
        sampler: Sampler | None = None,
        rate_limiter: TokenBucket | None = None,
        capture_errors: bool = True,
        on_detect: Callable[[TelemetryEvent], object] | None = None,
    ) -> None:
        self._settings = settings or load_settings()
        self._clock = clock or LoopClock()
        self._interaction_source = interaction_source
        self._document_probe = document_probe
        self._viewport_probe = viewport_probe
        self._transport = transport
        self._owned_transport: HttpTransport | None = None
        self._queue_store = queue_store
        self._kv_store = kv_store
        self._local_store: LocalStore | None = None
        self._sampler = sampler or ProbabilisticSampler(self._settings.sampling_rate)
        self._rate_limiter = rate_limiter or TokenBucket(
            self._settings.max_events_per_minute, refill_period_seconds=_RATE_WINDOW_SECONDS
        )
        self._capture_errors = capture_errors
        self._on_detect = on_detect

        self.monitor = NetworkActivityMonitor(excluded_urls=[self._settings.log_endpoint])

        self._session_id: str | None = None
        self._pipeline: DeliveryPipeline | None = None
        self._engine: CorrelationEngine | None = None
        self._heartbeat: Heartbeat | None = None
        self._error_handler: ErrorCaptureHandler | None = None
        self._loop_hook: LoopExceptionHook | None = None

    # -- Accessors -----------------------------------------------------------

    @property
    def settings(self) -> WatchSettings:
        return self._settings

    @property
    def started(self) -> bool:
        return self._engine is not None

    @property
    def session_id(self) -> str | None:
        return self._session_id

    @property
    def engine(self) -> CorrelationEngine | None:
        return self._engine

    @property
    def pipeline(self) -> DeliveryPipeline | None:
        return self._pipeline

    @property
    def heartbeat(self) -> Heartbeat | None:
        return self._heartbeat

    # -- Lifecycle -----------------------------------------------------------

    async def start(self) -> bool:
        """Start the engine.  Idempotent; never raises.

        Returns
        -------
        bool
            True if the engine is running afterwards.
        """
        if self.started:
            return True
        try:
            await self._start()
        except Exception:
            logger.warning("SilentWatch failed to start; telemetry disabled", exc_info=True)
            await self._teardown()
            return False
        logger.info("SilentWatch started (session=%s)", self._session_id)
        return True

    async def _start(self) -> None:
        settings = self._settings
        queue_store, kv_store = await self._open_stores()

        self._session_id = await SessionStore(kv_store, settings.session_key).get_or_create()

        transport = self._transport
        if transport is None:
            self._owned_transport = HttpTransport(settings.log_endpoint, timeout=settings.http_timeout_seconds)
            transport = self._owned_transport

        self._pipeline = DeliveryPipeline(
            transport=transport,
            queue=DurableQueue(queue_store),
            sampler=self._sampler,
            rate_limiter=self._rate_limiter,
            page=settings.page,
            drain_interval_seconds=settings.drain_interval_seconds,
        )

        engine = CorrelationEngine(
            clock=self._clock,
            emit=self._on_silent_failure,
            session_id=self._session_id,
            page=settings.page,
            timeout_seconds=settings.silent_failure_timeout_seconds,
        )
        self._engine = engine
        self.monitor.add_listener(engine.notify_network)
        if self._interaction_source is not None:
            engine.attach(self._interaction_source)

        self._heartbeat = Heartbeat(
            sink=self._pipeline.enqueue_for_delivery,
            build=self.build_event,
            interval_seconds=settings.heartbeat_interval_seconds,
            expected_selectors=settings.expected_selectors,
            document_probe=self._document_probe,
            viewport_probe=self._viewport_probe,
        )
        self._heartbeat.start()

        if self._capture_errors:
            self._error_handler = ErrorCaptureHandler(
                self._pipeline.enqueue_for_delivery, self.build_event, loop=asyncio.get_running_loop()
            )
            self._error_handler.attach()
            self._loop_hook = LoopExceptionHook(self._pipeline.enqueue_for_delivery, self.build_event)
            self._loop_hook.install()

        self._pipeline.start_drain_loop()

    async def _open_stores(self) -> tuple[QueueStore, KeyValueStore]:
        queue_store, kv_store = self._queue_store, self._kv_store
        if queue_store is None or kv_store is None:
            self._local_store = LocalStore(self._settings.queue_path)
            try:
                await self._local_store.open()
            except Exception:
                # Stores on a closed LocalStore fail per call and are handled there.
                logger.warning(
                    "Local store unavailable at %s; queued events will be dropped",
                    self._settings.queue_path,
                    exc_info=True,
                )
            queue_store = queue_store or self._local_store.queue_store()
            kv_store = kv_store or self._local_store.kv_store()
        return queue_store, kv_store

    async def stop(self) -> None:
        """Stop every loop and hook and release owned resources.  Never raises."""
        try:
            await self._teardown()
        except Exception:
            logger.warning("SilentWatch shutdown was not clean", exc_info=True)

    async def _teardown(self) -> None:
        if self._engine is not None:
            self.monitor.remove_listener(self._engine.notify_network)
            self._engine.close()
            self._engine = None
        if self._loop_hook is not None:
            self._loop_hook.uninstall()
            self._loop_hook = None
        if self._error_handler is not None:
            self._error_handler.detach()
            self._error_handler = None
        if self._heartbeat is not None:
            await self._heartbeat.stop()
            self._heartbeat = None
        if self._pipeline is not None:
            await self._pipeline.stop()
            self._pipeline = None
        if self._owned_transport is not None:
            await self._owned_transport.close()
            self._owned_transport = None
        if self._local_store is not None:
            await self._local_store.close()
            self._local_store = None

    def _on_silent_failure(self, event: TelemetryEvent) -> None:
        if self._on_detect is not None:
            try:
                self._on_detect(event)
            except Exception:
                logger.debug("on_detect callback failed", exc_info=True)
        if self._pipeline is not None:
            self._pipeline.enqueue_for_delivery(event)

    # -- Host-facing API -----------------------------------------------------

    def build_event(self, event_type: TelemetryEventType, payload: dict[str, Any]) -> TelemetryEvent:
        return TelemetryEvent(
            type=event_type,
            session_id=self._session_id or "",
            page=self._settings.page,
            payload=payload,
        )

    def record_click(self, target: TargetDescriptor) -> bool:
        """Report a click; returns True if a correlation window opened."""
        if self._engine is None:
            return False
        return self._engine.record_click(target)

    def record_submit(self, target: TargetDescriptor) -> bool:
        """Report a form submission; returns True if a correlation window opened."""
        if self._engine is None:
            return False
        return self._engine.record_submit(target)

    def track(
        self,
        payload: dict[str, Any],
        event_type: TelemetryEventType = TelemetryEventType.CUSTOM,
    ) -> DeliveryOutcome:
        """Send an arbitrary telemetry event through the delivery pipeline."""
        if self._pipeline is None:
            return DeliveryOutcome.DROPPED
        try:
            event = self.build_event(event_type, payload)
        except Exception:
            logger.debug("Could not build %s event", event_type, exc_info=True)
            return DeliveryOutcome.DROPPED
        return self._pipeline.enqueue_for_delivery(event)

    def create_async_client(self, **kwargs: Any) -> httpx.AsyncClient:
        """Build an ``httpx.AsyncClient`` whose calls count as network follow-up."""
        return self.monitor.create_async_client(**kwargs)

    def create_client(self, **kwargs: Any) -> httpx.Client:
        """Build a synchronous ``httpx.Client`` whose calls count as network follow-up."""
        return self.monitor.create_client(**kwargs)


def create_silent_watch(options: Mapping[str, Any] | None = None, **capabilities: Any) -> SilentWatch:
    """Build a :class:`SilentWatch` from host options without starting it."""
    return SilentWatch(settings_from_options(options), **capabilities)


async def init_silent_watch(options: Mapping[str, Any] | None = None, **capabilities: Any) -> SilentWatch:
    """Configure logging, build a :class:`SilentWatch` from host options and start it.

    Parameters
    ----------
    options:
        Host configuration object with camelCase option names.
    capabilities:
        Keyword arguments forwarded to :class:`SilentWatch`.
    """
    watch = create_silent_watch(options, **capabilities)
    configure_logging(watch.settings)
    await watch.start()
    return watch
