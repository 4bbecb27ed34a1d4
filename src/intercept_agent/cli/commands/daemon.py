"""Daemon lifecycle CLI commands."""

from __future__ import annotations

from typing import Any

import httpx
import typer

from intercept_agent.cli.daemon_client import DaemonClient, DaemonController, format_json

app = typer.Typer(help="Daemon lifecycle commands")


@app.command("start")
def daemon_start() -> None:
    """Start the daemon process."""
    controller = DaemonController()
    status = controller.status()
    if status["pid_running"]:
        typer.echo(f"Daemon already running (pid {status['pid']})")
        return
    pid = controller.start()
    if pid == -1:
        typer.echo("Daemon already running (pid unknown)")
        return
    typer.echo(f"Daemon started (pid {pid})")


@app.command("stop")
def daemon_stop() -> None:
    """Stop the daemon, deactivating every active interceptor first."""
    if DaemonController().stop():
        typer.echo("Daemon stopped")
    else:
        typer.echo("Daemon not running")


@app.command("status")
def daemon_status() -> None:
    """Show daemon status as JSON."""
    status = DaemonController().status()

    health: dict[str, Any] | None = None
    client = DaemonClient(auto_start=False)
    try:
        health = client.request("GET", "/health").json()
    except (httpx.HTTPError, ValueError):
        health = None
    finally:
        client.close()

    status["health"] = health
    typer.echo(format_json(status))
