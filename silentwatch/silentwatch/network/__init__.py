"""Observation of the host application's outbound HTTP calls."""

from silentwatch.network.monitor import (
    NetworkActivityMonitor,
    NetworkListener,
    ObservedAsyncTransport,
    ObservedTransport,
)

__all__ = [
    "NetworkActivityMonitor",
    "NetworkListener",
    "ObservedAsyncTransport",
    "ObservedTransport",
]
