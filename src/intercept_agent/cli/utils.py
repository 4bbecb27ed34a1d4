"""Shared CLI response rendering."""

from __future__ import annotations

from typing import Any, cast

import typer

from intercept_agent.cli.daemon_client import format_json


def _parse_response_json(resp: Any) -> dict[str, Any]:
    try:
        return cast(dict[str, Any], resp.json())
    except ValueError as exc:
        typer.echo("Failed to parse response")
        raise typer.Exit(code=1) from exc


def _maybe_render_error(data: dict[str, Any]) -> None:
    if not (isinstance(data, dict) and data.get("error")):
        return
    error = data["error"]
    typer.echo(f"{error.get('code')}: {error.get('message')}")
    remediation = error.get("remediation")
    if remediation:
        typer.echo(f"Hint: {remediation}")
    raise typer.Exit(code=1)


def _maybe_render_done(data: dict[str, Any]) -> bool:
    if not (isinstance(data, dict) and data.get("status") == "done"):
        return False
    message = "✓ Done"
    if "interceptor" in data:
        message += f" [{data['interceptor']}"
        if "proxy_port" in data:
            message += f" :{data['proxy_port']}"
        message += "]"
    typer.echo(message)
    result = data.get("result")
    if result:
        typer.echo(format_json(result))
    return True


def handle_response(resp: Any, json_output: bool = False) -> None:
    data = _parse_response_json(resp)
    if json_output:
        typer.echo(format_json(data))
        return

    _maybe_render_error(data)
    if _maybe_render_done(data):
        return
    typer.echo(format_json(data))
