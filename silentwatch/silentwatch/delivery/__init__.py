"""Telemetry delivery: transport, durable queue and the delivery pipeline."""

from silentwatch.delivery.pipeline import DeliveryOutcome, DeliveryPipeline
from silentwatch.delivery.queue import DurableQueue, QueueStore, QueueStoreError
from silentwatch.delivery.transport import HttpTransport, TransmissionError, Transport

__all__ = [
    "DeliveryOutcome",
    "DeliveryPipeline",
    "DurableQueue",
    "HttpTransport",
    "QueueStore",
    "QueueStoreError",
    "TransmissionError",
    "Transport",
]
