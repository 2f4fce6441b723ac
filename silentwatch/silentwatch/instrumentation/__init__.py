"""Heartbeat, error and missing-element instrumentation hooks."""

from silentwatch.instrumentation.hooks import (
    DocumentProbe,
    ErrorCaptureHandler,
    Heartbeat,
    LoopExceptionHook,
)

__all__ = [
    "DocumentProbe",
    "ErrorCaptureHandler",
    "Heartbeat",
    "LoopExceptionHook",
]
