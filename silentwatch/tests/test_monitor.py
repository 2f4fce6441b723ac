"""Tests for the network activity monitor and its observing transports."""

from __future__ import annotations

import asyncio

import httpx
import pytest

from silentwatch.models.events import NetworkOutcome, NetworkSignal
from silentwatch.network.monitor import NetworkActivityMonitor, ObservedAsyncTransport, ObservedTransport

TELEMETRY = "https://logs.example.com/logs"


def _handler(request: httpx.Request) -> httpx.Response:
    if request.url.path == "/fail":
        raise httpx.ConnectError("refused", request=request)
    if request.url.path == "/boom":
        return httpx.Response(500, text="server error")
    return httpx.Response(200, json={"ok": True})


class _HangingTransport(httpx.AsyncBaseTransport):
    """Async transport whose requests never complete."""

    def __init__(self) -> None:
        self.entered = asyncio.Event()

    async def handle_async_request(self, request: httpx.Request) -> httpx.Response:
        self.entered.set()
        await asyncio.Event().wait()
        raise AssertionError("unreachable")


@pytest.fixture
def signals() -> list[NetworkSignal]:
    return []


@pytest.fixture
def monitor(signals: list[NetworkSignal]) -> NetworkActivityMonitor:
    m = NetworkActivityMonitor(excluded_urls=[TELEMETRY])
    m.add_listener(signals.append)
    return m


# ---------------------------------------------------------------------------
# Async clients
# ---------------------------------------------------------------------------


class TestAsyncObservation:
    @pytest.mark.asyncio
    async def test_success_reported(self, monitor: NetworkActivityMonitor, signals: list[NetworkSignal]) -> None:
        async with monitor.create_async_client(transport=httpx.MockTransport(_handler)) as client:
            response = await client.get("https://api.example.com/orders")

        assert response.json() == {"ok": True}
        assert len(signals) == 1
        assert signals[0].url == "https://api.example.com/orders"
        assert signals[0].outcome is NetworkOutcome.SUCCESS
        assert signals[0].status_code == 200

    @pytest.mark.asyncio
    async def test_http_error_reported_and_response_untouched(
        self, monitor: NetworkActivityMonitor, signals: list[NetworkSignal]
    ) -> None:
        async with monitor.create_async_client(transport=httpx.MockTransport(_handler)) as client:
            response = await client.post("https://api.example.com/boom", json={})

        assert response.status_code == 500
        assert response.text == "server error"
        assert signals[0].outcome is NetworkOutcome.HTTP_ERROR
        assert signals[0].status_code == 500

    @pytest.mark.asyncio
    async def test_transport_error_reported_and_reraised(
        self, monitor: NetworkActivityMonitor, signals: list[NetworkSignal]
    ) -> None:
        async with monitor.create_async_client(transport=httpx.MockTransport(_handler)) as client:
            with pytest.raises(httpx.ConnectError):
                await client.get("https://api.example.com/fail")

        assert [s.outcome for s in signals] == [NetworkOutcome.TRANSPORT_ERROR]
        assert signals[0].status_code is None

    @pytest.mark.asyncio
    async def test_telemetry_endpoint_excluded(
        self, monitor: NetworkActivityMonitor, signals: list[NetworkSignal]
    ) -> None:
        """Should skip the telemetry endpoint and its sub-paths only."""
        async with monitor.create_async_client(transport=httpx.MockTransport(_handler)) as client:
            await client.post(TELEMETRY, json={"events": []})
            await client.post(TELEMETRY + "/batch", json={"events": []})
            await client.get("https://logs.example.com/logsearch")

        assert [s.url for s in signals] == ["https://logs.example.com/logsearch"]

    @pytest.mark.asyncio
    async def test_listener_failure_does_not_break_call(self, monitor: NetworkActivityMonitor) -> None:
        def broken(signal: NetworkSignal) -> None:
            raise RuntimeError("listener bug")

        monitor.add_listener(broken)
        async with monitor.create_async_client(transport=httpx.MockTransport(_handler)) as client:
            response = await client.get("https://api.example.com/orders")
        assert response.status_code == 200

    @pytest.mark.asyncio
    async def test_cancelled_call_reported_and_reraised(
        self, monitor: NetworkActivityMonitor, signals: list[NetworkSignal]
    ) -> None:
        """Should report a cancelled request as a transport error and re-raise the cancellation."""
        transport = _HangingTransport()
        async with monitor.create_async_client(transport=transport) as client:
            task = asyncio.ensure_future(client.get("https://api.example.com/slow"))
            await transport.entered.wait()
            task.cancel()
            with pytest.raises(asyncio.CancelledError):
                await task

        assert [s.outcome for s in signals] == [NetworkOutcome.TRANSPORT_ERROR]
        assert signals[0].url == "https://api.example.com/slow"


# ---------------------------------------------------------------------------
# Sync clients
# ---------------------------------------------------------------------------


class TestSyncObservation:
    def test_success_and_error(self, monitor: NetworkActivityMonitor, signals: list[NetworkSignal]) -> None:
        with monitor.create_client(transport=httpx.MockTransport(_handler)) as client:
            client.get("https://api.example.com/orders")
            with pytest.raises(httpx.ConnectError):
                client.get("https://api.example.com/fail")

        assert [s.outcome for s in signals] == [NetworkOutcome.SUCCESS, NetworkOutcome.TRANSPORT_ERROR]


# ---------------------------------------------------------------------------
# Wrapping
# ---------------------------------------------------------------------------


class TestWrapping:
    def test_wrap_is_idempotent(self, monitor: NetworkActivityMonitor) -> None:
        wrapped = monitor.wrap_async_transport(httpx.MockTransport(_handler))
        assert isinstance(wrapped, ObservedAsyncTransport)
        assert monitor.wrap_async_transport(wrapped) is wrapped

    def test_sync_wrap_is_idempotent(self, monitor: NetworkActivityMonitor) -> None:
        """Should return an already observed sync transport unchanged."""
        wrapped = monitor.wrap_transport(httpx.MockTransport(_handler))
        assert isinstance(wrapped, ObservedTransport)
        assert monitor.wrap_transport(wrapped) is wrapped

    def test_other_monitor_wraps_again(self, monitor: NetworkActivityMonitor) -> None:
        wrapped = monitor.wrap_transport(httpx.MockTransport(_handler))
        other = NetworkActivityMonitor()
        rewrapped = other.wrap_transport(wrapped)
        assert isinstance(rewrapped, ObservedTransport)
        assert rewrapped is not wrapped
        assert rewrapped.monitor is other

    def test_unwrappable_sync_transport_degrades(self, monitor: NetworkActivityMonitor) -> None:
        opaque = object()
        assert monitor.wrap_transport(opaque) is opaque  # type: ignore[arg-type]
        assert monitor.degraded is True

    def test_unwrappable_transport_degrades(self, monitor: NetworkActivityMonitor) -> None:
        opaque = object()
        assert monitor.wrap_async_transport(opaque) is opaque  # type: ignore[arg-type]
        assert monitor.degraded is True

    def test_removed_listener_not_called(self, monitor: NetworkActivityMonitor, signals: list[NetworkSignal]) -> None:
        monitor.remove_listener(signals.append)
        monitor.report("https://api.example.com/x", NetworkOutcome.SUCCESS, 200)
        assert signals == []

    @pytest.mark.parametrize(
        ("url", "excluded"),
        [
            (TELEMETRY, True),
            ("https://logs.example.com:443/logs/", True),
            ("https://LOGS.example.com/logs?x=1", True),
            ("http://logs.example.com/logs", False),
            ("https://logs.example.com:8443/logs", False),
            ("https://api.example.com/logs", False),
        ],
    )
    def test_exclusion_matching(self, monitor: NetworkActivityMonitor, url: str, excluded: bool) -> None:
        assert monitor.is_excluded(url) is excluded
