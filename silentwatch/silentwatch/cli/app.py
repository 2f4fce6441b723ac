"""SilentWatch CLI -- operator commands for the local durable queue.

Human-readable output goes to *stderr* via Rich; ``--json`` prints
machine-readable output on *stdout* so scripts can compose cleanly.
"""

from __future__ import annotations

import asyncio
import json
from pathlib import Path
from typing import Any

import typer
from pydantic import ValidationError
from rich.console import Console
from rich.table import Table

from silentwatch.config import WatchSettings, load_settings
from silentwatch.delivery.queue import DurableQueue
from silentwatch.delivery.transport import HttpTransport
from silentwatch.state.stores import LocalStore

app = typer.Typer(
    name="silentwatch",
    help="SilentWatch - silent-failure telemetry queue tools",
    no_args_is_help=True,
)
console = Console(stderr=True)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _load(queue_path: Path | None, endpoint: str | None) -> WatchSettings:
    overrides: dict[str, Any] = {}
    if queue_path is not None:
        overrides["queue_path"] = queue_path
    if endpoint is not None:
        overrides["log_endpoint"] = endpoint
    try:
        return load_settings(**overrides)
    except ValidationError as exc:
        console.print(f"[red]Invalid configuration: {exc}[/red]")
        raise typer.Exit(code=2) from exc


def _make_transport(settings: WatchSettings) -> HttpTransport:
    return HttpTransport(settings.log_endpoint, timeout=settings.http_timeout_seconds)


async def _read_status(settings: WatchSettings) -> dict[str, Any]:
    store = LocalStore(settings.queue_path)
    await store.open()
    try:
        depth = await DurableQueue(store.queue_store()).size()
        session_id = await store.kv_store().get(settings.session_key)
    finally:
        await store.close()
    return {"queue_path": str(settings.queue_path), "queued": depth, "session_id": session_id}


async def _run_drain(settings: WatchSettings) -> dict[str, Any]:
    store = LocalStore(settings.queue_path)
    await store.open()
    transport = _make_transport(settings)
    try:
        queue = DurableQueue(store.queue_store())

        async def _deliver(events: list[Any]) -> None:
            await transport.send(events, page=settings.page)

        delivered = await queue.drain(_deliver)
        remaining = await queue.size()
    finally:
        await transport.close()
        await store.close()
    return {"endpoint": settings.log_endpoint, "delivered": delivered, "remaining": remaining}


# ---------------------------------------------------------------------------
# Commands
# ---------------------------------------------------------------------------


@app.command()
def status(
    queue_path: Path | None = typer.Option(
        None,
        "--queue-path",
        help="SQLite queue file (defaults to SILENTWATCH_QUEUE_PATH).",
    ),
    json_mode: bool = typer.Option(False, "--json", help="Emit JSON to stdout."),
) -> None:
    """Show queue depth and the persisted session id."""
    settings = _load(queue_path, None)
    result = asyncio.run(_read_status(settings))

    if json_mode:
        typer.echo(json.dumps(result))
        return

    table = Table(title="SilentWatch queue")
    table.add_column("Field", style="bold")
    table.add_column("Value")
    table.add_row("Queue file", result["queue_path"])
    table.add_row("Queued events", str(result["queued"]))
    table.add_row("Session id", result["session_id"] or "[dim]not created yet[/dim]")
    console.print(table)


@app.command()
def drain(
    queue_path: Path | None = typer.Option(None, "--queue-path", help="SQLite queue file."),
    endpoint: str | None = typer.Option(None, "--endpoint", help="Override the telemetry endpoint."),
    json_mode: bool = typer.Option(False, "--json", help="Emit JSON to stdout."),
) -> None:
    """Run one drain cycle against the telemetry endpoint."""
    settings = _load(queue_path, endpoint)
    with console.status(f"Draining queue to {settings.log_endpoint}...", spinner="dots"):
        result = asyncio.run(_run_drain(settings))

    if json_mode:
        typer.echo(json.dumps(result))
    elif result["delivered"]:
        console.print(f"[green]Delivered {result['delivered']} events[/green] to [bold]{result['endpoint']}[/bold]")
    elif result["remaining"]:
        console.print(f"[yellow]Delivery failed; {result['remaining']} events remain queued.[/yellow]")
    else:
        console.print("[green]Queue is empty -- nothing to deliver.[/green]")

    if result["delivered"] == 0 and result["remaining"] > 0:
        raise typer.Exit(code=1)


@app.command("config")
def show_config(
    json_mode: bool = typer.Option(False, "--json", help="Emit JSON to stdout."),
) -> None:
    """Print the effective settings."""
    settings = _load(None, None)
    data = settings.model_dump(mode="json")

    if json_mode:
        typer.echo(json.dumps(data))
        return

    table = Table(title="SilentWatch settings")
    table.add_column("Setting", style="bold")
    table.add_column("Value")
    for key, value in data.items():
        table.add_row(key, str(value))
    console.print(table)
