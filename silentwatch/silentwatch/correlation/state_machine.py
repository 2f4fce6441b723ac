"""Pure state machine for the single interaction slot.

The slot is either :class:`Idle` or :class:`Pending`.  Each transition
function takes the current state and an input and returns the next state
together with the side effects the engine must perform, in order.  No
function here touches a timer or emits anything itself.

Transitions::

    Idle    --action-->           Pending         [StartTimer]
    Pending --action-->           Pending (new)   [CancelTimer, MarkSuperseded, StartTimer]
    Pending --signal < deadline-> Idle            [CancelTimer, MarkResolved]
    Pending --deadline-->         Idle            [EmitSilentFailure]

INVARIANT: At most one Pending exists; a new action supersedes the old
one before its own timer starts, so two timers are never live together.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import NamedTuple

from silentwatch.models.events import ActionEvent, NetworkSignal


@dataclass(frozen=True)
class Idle:
    """No action awaiting network follow-up."""


@dataclass(frozen=True)
class Pending:
    """One action awaiting network follow-up until *deadline*."""

    event: ActionEvent
    deadline: float
    correlation_id: int


SlotState = Idle | Pending

IDLE = Idle()


# -- Effects -----------------------------------------------------------------


@dataclass(frozen=True)
class StartTimer:
    correlation_id: int
    delay: float


@dataclass(frozen=True)
class CancelTimer:
    correlation_id: int


@dataclass(frozen=True)
class EmitSilentFailure:
    event: ActionEvent


@dataclass(frozen=True)
class MarkResolved:
    event: ActionEvent
    signal: NetworkSignal


@dataclass(frozen=True)
class MarkSuperseded:
    event: ActionEvent


Effect = StartTimer | CancelTimer | EmitSilentFailure | MarkResolved | MarkSuperseded


class Transition(NamedTuple):
    state: SlotState
    effects: tuple[Effect, ...]


# -- Transition functions ----------------------------------------------------


def on_action(
    state: SlotState,
    event: ActionEvent,
    *,
    now: float,
    timeout: float,
    correlation_id: int,
) -> Transition:
    """Enter Pending for *event*, superseding any outstanding window."""
    effects: list[Effect] = []
    if isinstance(state, Pending):
        effects.append(CancelTimer(state.correlation_id))
        effects.append(MarkSuperseded(state.event))
    effects.append(StartTimer(correlation_id, timeout))
    return Transition(Pending(event=event, deadline=now + timeout, correlation_id=correlation_id), tuple(effects))


def on_network_signal(state: SlotState, signal: NetworkSignal, *, now: float) -> Transition:
    """Resolve the pending window if the signal arrived strictly before its deadline."""
    if isinstance(state, Pending) and now < state.deadline:
        return Transition(IDLE, (CancelTimer(state.correlation_id), MarkResolved(state.event, signal)))
    return Transition(state, ())


def on_deadline(state: SlotState, correlation_id: int) -> Transition:
    """Flag the pending window as a silent failure when its timer fires.

    Timers of superseded or resolved windows are ignored.
    """
    if isinstance(state, Pending) and state.correlation_id == correlation_id:
        return Transition(IDLE, (EmitSilentFailure(state.event),))
    return Transition(state, ())
