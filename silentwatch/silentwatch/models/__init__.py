"""Domain models for the SilentWatch engine."""

from silentwatch.models.events import (
    ActionEvent,
    ActionKind,
    NetworkOutcome,
    NetworkSignal,
    QueuedEvent,
    TargetDescriptor,
    TelemetryBatch,
    TelemetryEvent,
    TelemetryEventType,
)

__all__ = [
    "ActionEvent",
    "ActionKind",
    "NetworkOutcome",
    "NetworkSignal",
    "QueuedEvent",
    "TargetDescriptor",
    "TelemetryBatch",
    "TelemetryEvent",
    "TelemetryEventType",
]
