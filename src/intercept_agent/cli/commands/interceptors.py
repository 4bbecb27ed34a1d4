"""Interceptor CLI commands."""

from __future__ import annotations

from typing import Any

import typer

from intercept_agent.cli.daemon_client import ACTIVATE_TIMEOUT, DaemonClient, format_json
from intercept_agent.cli.utils import handle_response

app = typer.Typer(help="Interceptor commands")


def activation_options(device: str | None, application: str | None) -> dict[str, Any]:
    options: dict[str, Any] = {}
    if device:
        options["device_id"] = device
    if application:
        options["path_to_application"] = application
    return options


@app.command("list")
def interceptors_list(
    port: int | None = typer.Option(None, "--port", "-p", help="Proxy port to report state for"),
    json_output: bool = typer.Option(False, "--json", help="Output JSON"),
) -> None:
    """List interceptors and whether they can be activated."""
    client = DaemonClient()
    params = {"proxy_port": port} if port is not None else None
    resp = client.request("GET", "/interceptors", params=params)
    client.close()

    data = resp.json()
    if json_output:
        typer.echo(format_json(data))
        return

    for item in data.get("interceptors", []):
        line = f"{item['id']}  v{item['version']} activable={item['is_activable']}"
        if port is not None:
            line += f" active={item['is_active']}"
        typer.echo(line)


@app.command("activate")
def interceptors_activate(
    interceptor_id: str = typer.Argument(..., help="Interceptor id (android-adb, electron)"),
    port: int = typer.Option(..., "--port", "-p", help="Proxy port"),
    device: str | None = typer.Option(None, "--device", "-d", help="Android device serial"),
    application: str | None = typer.Option(
        None, "--app", "-a", help="Path to the Electron application executable"
    ),
    json_output: bool = typer.Option(False, "--json", help="Output JSON"),
) -> None:
    """Start intercepting a target through the proxy on PORT."""
    client = DaemonClient()
    resp = client.request(
        "POST",
        f"/interceptors/{interceptor_id}/activate",
        json_body={"proxy_port": port, "options": activation_options(device, application)},
        timeout=ACTIVATE_TIMEOUT,
    )
    client.close()
    handle_response(resp, json_output=json_output)


@app.command("deactivate")
def interceptors_deactivate(
    interceptor_id: str = typer.Argument(..., help="Interceptor id"),
    port: int = typer.Option(..., "--port", "-p", help="Proxy port"),
    json_output: bool = typer.Option(False, "--json", help="Output JSON"),
) -> None:
    """Stop every target an interceptor routes through PORT."""
    client = DaemonClient()
    resp = client.request(
        "POST",
        f"/interceptors/{interceptor_id}/deactivate",
        json_body={"proxy_port": port},
        timeout=ACTIVATE_TIMEOUT,
    )
    client.close()
    handle_response(resp, json_output=json_output)


@app.command("deactivate-all")
def interceptors_deactivate_all(
    json_output: bool = typer.Option(False, "--json", help="Output JSON"),
) -> None:
    """Stop all interception on all ports."""
    client = DaemonClient()
    resp = client.request("POST", "/interceptors/deactivate-all", timeout=ACTIVATE_TIMEOUT)
    client.close()
    handle_response(resp, json_output=json_output)
