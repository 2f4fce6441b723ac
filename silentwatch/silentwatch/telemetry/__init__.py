"""Admission control and privacy for outgoing telemetry."""

from __future__ import annotations

from silentwatch.telemetry.privacy import scrub_event, scrub_pii, scrub_value
from silentwatch.telemetry.rate_limiter import TokenBucket
from silentwatch.telemetry.sampling import ProbabilisticSampler, Sampler

__all__ = [
    "ProbabilisticSampler",
    "Sampler",
    "TokenBucket",
    "scrub_event",
    "scrub_pii",
    "scrub_value",
]
