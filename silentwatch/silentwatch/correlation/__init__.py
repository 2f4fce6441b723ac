"""Correlation of user actions with network follow-up."""

from silentwatch.correlation.clock import Clock, LoopClock, TimerHandle
from silentwatch.correlation.engine import DEFAULT_TIMEOUT_SECONDS, CorrelationEngine
from silentwatch.correlation.interaction import (
    InteractionBus,
    InteractionSource,
    is_actionable,
    qualifies,
)
from silentwatch.correlation.state_machine import Idle, Pending, SlotState

__all__ = [
    "DEFAULT_TIMEOUT_SECONDS",
    "Clock",
    "CorrelationEngine",
    "Idle",
    "InteractionBus",
    "InteractionSource",
    "LoopClock",
    "Pending",
    "SlotState",
    "TimerHandle",
    "is_actionable",
    "qualifies",
]
