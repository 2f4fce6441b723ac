"""Correlation engine: binds user actions to network follow-up.

The engine owns the single interaction slot described in
:mod:`silentwatch.correlation.state_machine` and performs the side effects
that the pure transitions ask for: starting and cancelling the deadline
timer and emitting the silent-failure verdict.

A qualifying action opens a window of ``timeout_seconds``.  Any network
signal observed before the window closes resolves it quietly; if none
arrives, a ``silent_failure`` telemetry event carrying the action's target
descriptor is handed to ``emit``.  A newer action supersedes an open window
outright: the older window never produces a verdict.

Every public entry point swallows internal errors after logging them, so
the host's own event handlers are never disturbed.
"""

from __future__ import annotations

import functools
import itertools
import logging
from collections.abc import Callable

from silentwatch.correlation.clock import Clock, TimerHandle
from silentwatch.correlation.interaction import InteractionSource, qualifies
from silentwatch.correlation.state_machine import (
    IDLE,
    CancelTimer,
    EmitSilentFailure,
    MarkResolved,
    MarkSuperseded,
    Pending,
    SlotState,
    StartTimer,
    Transition,
    on_action,
    on_deadline,
    on_network_signal,
)
from silentwatch.models.events import (
    ActionEvent,
    ActionKind,
    NetworkSignal,
    TargetDescriptor,
    TelemetryEvent,
    TelemetryEventType,
)

logger = logging.getLogger(__name__)

EmitFn = Callable[[TelemetryEvent], object]

DEFAULT_TIMEOUT_SECONDS = 0.7


class CorrelationEngine:
    """Single-slot correlation of user actions with network activity.

    Parameters
    ----------
    clock:
        Time source and timer scheduler.
    emit:
        Receives each silent-failure :class:`TelemetryEvent`, usually
        :meth:`DeliveryPipeline.enqueue_for_delivery`.
    session_id:
        Session identifier stamped on emitted events.
    page:
        Page label stamped on emitted events.
    timeout_seconds:
        Correlation deadline.
    """

    def __init__(
        self,
        clock: Clock,
        emit: EmitFn,
        session_id: str,
        page: str = "",
        timeout_seconds: float = DEFAULT_TIMEOUT_SECONDS,
    ) -> None:
        if timeout_seconds <= 0:
            raise ValueError(f"Correlation timeout must be positive, got {timeout_seconds}")
        self._clock = clock
        self._emit = emit
        self._session_id = session_id
        self._page = page
        self._timeout = timeout_seconds
        self._state: SlotState = IDLE
        self._timer: TimerHandle | None = None
        self._timer_id: int | None = None
        self._ids = itertools.count(1)
        self._unsubscribers: list[Callable[[], None]] = []

    @property
    def state(self) -> SlotState:
        return self._state

    @property
    def pending(self) -> Pending | None:
        return self._state if isinstance(self._state, Pending) else None

    @property
    def timeout_seconds(self) -> float:
        return self._timeout

    @property
    def live_timer_count(self) -> int:
        """0 or 1: the number of deadline timers currently scheduled."""
        return 0 if self._timer is None else 1

    # -- Inputs --------------------------------------------------------------

    def observe_action(self, event: ActionEvent) -> bool:
        """Open a correlation window for *event* if it qualifies.

        Returns
        -------
        bool
            True if a window was opened.
        """
        try:
            if not qualifies(event):
                logger.debug("Ignoring %s on non-interactive <%s>", event.kind.value, event.target.tag)
                return False
            if event.target.disabled:
                logger.debug("%s on disabled <%s>", event.kind.value, event.target.tag)
            transition = on_action(
                self._state,
                event,
                now=self._clock.now(),
                timeout=self._timeout,
                correlation_id=next(self._ids),
            )
            self._apply(transition)
            return True
        except Exception:
            logger.debug("Failed to observe action", exc_info=True)
            return False

    def record_click(self, target: TargetDescriptor) -> bool:
        return self.observe_action(ActionEvent(kind=ActionKind.CLICK, target=target))

    def record_submit(self, target: TargetDescriptor) -> bool:
        return self.observe_action(ActionEvent(kind=ActionKind.FORM_SUBMIT, target=target))

    def notify_network(self, signal: NetworkSignal) -> None:
        """Feed one observed network call into the slot."""
        try:
            self._apply(on_network_signal(self._state, signal, now=self._clock.now()))
        except Exception:
            logger.debug("Failed to process network signal", exc_info=True)

    def attach(self, source: InteractionSource) -> None:
        """Subscribe to an interaction source until :meth:`close`."""
        try:
            self._unsubscribers.append(source.subscribe(self.observe_action))
        except Exception:
            logger.warning("Could not subscribe to interaction source", exc_info=True)

    def close(self) -> None:
        """Detach from all sources and drop any open window without a verdict."""
        for unsubscribe in self._unsubscribers:
            try:
                unsubscribe()
            except Exception:
                logger.debug("Unsubscribe failed", exc_info=True)
        self._unsubscribers.clear()
        self._cancel_timer()
        self._state = IDLE

    # -- Effects -------------------------------------------------------------

    def _on_deadline(self, correlation_id: int) -> None:
        try:
            if self._timer_id == correlation_id:
                self._timer = None
                self._timer_id = None
            self._apply(on_deadline(self._state, correlation_id))
        except Exception:
            logger.debug("Deadline handling failed", exc_info=True)

    def _apply(self, transition: Transition) -> None:
        self._state = transition.state
        for effect in transition.effects:
            if isinstance(effect, CancelTimer):
                if self._timer_id == effect.correlation_id:
                    self._cancel_timer()
            elif isinstance(effect, StartTimer):
                self._cancel_timer()
                self._timer = self._clock.call_later(
                    effect.delay, functools.partial(self._on_deadline, effect.correlation_id)
                )
                self._timer_id = effect.correlation_id
            elif isinstance(effect, EmitSilentFailure):
                self._emit_silent_failure(effect.event)
            elif isinstance(effect, MarkResolved):
                logger.debug(
                    "%s on <%s> resolved by %s (%s)",
                    effect.event.kind.value,
                    effect.event.target.tag,
                    effect.signal.url,
                    effect.signal.outcome.value,
                )
            elif isinstance(effect, MarkSuperseded):
                logger.debug("%s on <%s> superseded", effect.event.kind.value, effect.event.target.tag)

    def _cancel_timer(self) -> None:
        if self._timer is not None:
            self._timer.cancel()
        self._timer = None
        self._timer_id = None

    def _emit_silent_failure(self, event: ActionEvent) -> None:
        telemetry = TelemetryEvent(
            type=TelemetryEventType.SILENT_FAILURE,
            session_id=self._session_id,
            page=self._page,
            silent_failure=True,
            payload={
                "action": event.kind.value,
                **event.target.summary(),
                "disabled": event.target.disabled,
                "occurredAt": event.occurred_at.isoformat(),
                "timeoutMs": round(self._timeout * 1000),
            },
        )
        logger.info("Silent failure: %s on <%s> had no network follow-up", event.kind.value, event.target.tag)
        try:
            self._emit(telemetry)
        except Exception:
            logger.debug("Silent-failure emit failed", exc_info=True)
