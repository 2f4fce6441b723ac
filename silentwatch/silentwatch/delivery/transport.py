"""HTTP transport delivering telemetry batches to the ingestion backend.

Every batch, whether sent live or replayed from the durable queue, is
POSTed as ``{"events": [...], "page": ..., "timestamp": ...}`` to the one
configured endpoint.

INVARIANT: The transport's own client is never routed through the network
activity monitor, so telemetry never counts as application activity.
"""

from __future__ import annotations

import logging
from collections.abc import Sequence
from typing import Protocol

import httpx

from silentwatch.models.events import TelemetryBatch, TelemetryEvent

logger = logging.getLogger(__name__)

_TIMEOUT_SECONDS = 5.0


class TransmissionError(Exception):
    """Raised when a batch could not be delivered (network error or non-2xx)."""


class Transport(Protocol):
    """Protocol for batch delivery."""

    async def send(self, events: Sequence[TelemetryEvent], page: str = "") -> None:
        """Deliver *events* as one batch or raise :class:`TransmissionError`."""
        ...


class HttpTransport:
    """POST telemetry batches to an HTTP endpoint.

    Parameters
    ----------
    endpoint:
        Backend URL receiving batches.
    http_client:
        Optional ``httpx.AsyncClient`` for testing.  A default client
        is created if not provided.
    timeout:
        Seconds before a request is given up; guarantees every send
        settles.
    """

    def __init__(
        self,
        endpoint: str,
        http_client: httpx.AsyncClient | None = None,
        timeout: float = _TIMEOUT_SECONDS,
    ) -> None:
        self._endpoint = endpoint
        self._client = http_client or httpx.AsyncClient(timeout=timeout)
        self._owns_client = http_client is None

    @property
    def endpoint(self) -> str:
        return self._endpoint

    async def close(self) -> None:
        """Close the HTTP client if we own it."""
        if self._owns_client:
            await self._client.aclose()

    async def send(self, events: Sequence[TelemetryEvent], page: str = "") -> None:
        """POST *events* as a single batch.

        Raises
        ------
        TransmissionError
            On transport failure or a non-2xx response.
        """
        batch = TelemetryBatch(events=list(events), page=page)
        try:
            response = await self._client.post(
                self._endpoint,
                json=batch.to_wire(),
                headers={"Content-Type": "application/json"},
            )
        except httpx.HTTPError as exc:
            raise TransmissionError(f"Could not reach {self._endpoint}: {exc}") from exc

        if not response.is_success:
            raise TransmissionError(f"Backend at {self._endpoint} answered HTTP {response.status_code}")

        logger.debug("Delivered batch of %d events to %s", len(batch.events), self._endpoint)
