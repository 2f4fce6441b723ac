"""Network activity monitor for host HTTP clients.

Instead of patching a shared global, the host constructs its httpx clients
through the monitor (or wraps its own transports), and every request then
passes through a side-observing proxy transport.  Each settled request is
reported exactly once as a :class:`NetworkSignal`, whatever its outcome:
a 5xx or a connection error still proves the application tried to talk to
the network.

INVARIANT: The proxies never alter requests, responses or exceptions.
Listener failures are logged and swallowed so observation can never break
the host's own calls.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable, Iterable
from typing import Any
from urllib.parse import urlsplit

import httpx

from silentwatch.models.events import NetworkOutcome, NetworkSignal

logger = logging.getLogger(__name__)

NetworkListener = Callable[[NetworkSignal], None]

_DEFAULT_PORTS = {"http": 80, "https": 443}


def _url_parts(url: str) -> tuple[str, str, int | None, str]:
    parts = urlsplit(url)
    scheme = parts.scheme.lower()
    port = parts.port or _DEFAULT_PORTS.get(scheme)
    return scheme, (parts.hostname or "").lower(), port, parts.path.rstrip("/")


class NetworkActivityMonitor:
    """Observe outbound calls made through wrapped httpx transports.

    Parameters
    ----------
    excluded_urls:
        URL prefixes that are never reported, normally the telemetry
        endpoint itself.
    """

    def __init__(self, excluded_urls: Iterable[str] = ()) -> None:
        self._excluded = [_url_parts(url) for url in excluded_urls if url]
        self._listeners: list[NetworkListener] = []
        self._degraded = False

    @property
    def degraded(self) -> bool:
        """True when a transport could not be wrapped; such calls are never reported."""
        return self._degraded

    def add_listener(self, listener: NetworkListener) -> None:
        if listener not in self._listeners:
            self._listeners.append(listener)

    def remove_listener(self, listener: NetworkListener) -> None:
        if listener in self._listeners:
            self._listeners.remove(listener)

    def is_excluded(self, url: str) -> bool:
        """Return True if *url* falls under one of the excluded prefixes."""
        scheme, host, port, path = _url_parts(url)
        for ex_scheme, ex_host, ex_port, ex_path in self._excluded:
            if (scheme, host, port) != (ex_scheme, ex_host, ex_port):
                continue
            if path == ex_path or path.startswith(ex_path + "/"):
                return True
        return False

    def report(self, url: str, outcome: NetworkOutcome, status_code: int | None = None) -> None:
        """Publish one settled call to every listener, unless excluded."""
        try:
            if self.is_excluded(url):
                logger.debug("Ignoring own telemetry call to %s", url)
                return
            signal = NetworkSignal(url=url, outcome=outcome, status_code=status_code)
        except Exception:
            logger.debug("Could not build a network signal for %s", url, exc_info=True)
            return
        for listener in list(self._listeners):
            try:
                listener(signal)
            except Exception:
                logger.debug("Network listener failed for %s", url, exc_info=True)

    # -- Transport wrapping --------------------------------------------------

    def wrap_async_transport(self, transport: httpx.AsyncBaseTransport) -> httpx.AsyncBaseTransport:
        """Return an observing proxy around an async transport.

        Wrapping is idempotent.  A transport without
        ``handle_async_request`` is returned as-is and the monitor is
        flagged degraded.
        """
        if isinstance(transport, ObservedAsyncTransport) and transport.monitor is self:
            return transport
        if not callable(getattr(transport, "handle_async_request", None)):
            self._mark_degraded(transport)
            return transport
        return ObservedAsyncTransport(transport, self)

    def wrap_transport(self, transport: httpx.BaseTransport) -> httpx.BaseTransport:
        """Return an observing proxy around a synchronous transport."""
        if isinstance(transport, ObservedTransport) and transport.monitor is self:
            return transport
        if not callable(getattr(transport, "handle_request", None)):
            self._mark_degraded(transport)
            return transport
        return ObservedTransport(transport, self)

    def create_async_client(self, **kwargs: Any) -> httpx.AsyncClient:
        """Build an ``httpx.AsyncClient`` whose requests are observed.

        Accepts the usual ``httpx.AsyncClient`` keyword arguments; a given
        ``transport`` is wrapped, otherwise a default one is created.
        """
        transport = kwargs.pop("transport", None) or httpx.AsyncHTTPTransport()
        return httpx.AsyncClient(transport=self.wrap_async_transport(transport), **kwargs)

    def create_client(self, **kwargs: Any) -> httpx.Client:
        """Build a synchronous ``httpx.Client`` whose requests are observed."""
        transport = kwargs.pop("transport", None) or httpx.HTTPTransport()
        return httpx.Client(transport=self.wrap_transport(transport), **kwargs)

    def _mark_degraded(self, transport: object) -> None:
        self._degraded = True
        logger.warning(
            "Cannot observe transport %s; silent failures may be over-reported",
            type(transport).__name__,
        )


def _outcome_for(response: httpx.Response) -> NetworkOutcome:
    return NetworkOutcome.SUCCESS if response.is_success else NetworkOutcome.HTTP_ERROR


class ObservedAsyncTransport(httpx.AsyncBaseTransport):
    """Async transport proxy reporting each request to a monitor."""

    def __init__(self, wrapped: httpx.AsyncBaseTransport, monitor: NetworkActivityMonitor) -> None:
        self._wrapped = wrapped
        self.monitor = monitor

    async def handle_async_request(self, request: httpx.Request) -> httpx.Response:
        url = str(request.url)
        try:
            response = await self._wrapped.handle_async_request(request)
        except (Exception, asyncio.CancelledError):
            self.monitor.report(url, NetworkOutcome.TRANSPORT_ERROR)
            raise
        self.monitor.report(url, _outcome_for(response), response.status_code)
        return response

    async def aclose(self) -> None:
        await self._wrapped.aclose()


class ObservedTransport(httpx.BaseTransport):
    """Synchronous transport proxy reporting each request to a monitor."""

    def __init__(self, wrapped: httpx.BaseTransport, monitor: NetworkActivityMonitor) -> None:
        self._wrapped = wrapped
        self.monitor = monitor

    def handle_request(self, request: httpx.Request) -> httpx.Response:
        url = str(request.url)
        try:
            response = self._wrapped.handle_request(request)
        except Exception:
            self.monitor.report(url, NetworkOutcome.TRANSPORT_ERROR)
            raise
        self.monitor.report(url, _outcome_for(response), response.status_code)
        return response

    def close(self) -> None:
        self._wrapped.close()
