"""CLI entry point using Typer."""

from __future__ import annotations

import typer

from intercept_agent.cli.commands import daemon, interceptors

app = typer.Typer(
    name="intercept-agent",
    help="Route Android devices and Electron apps through an intercepting proxy",
    no_args_is_help=True,
)


@app.command()
def version() -> None:
    """Show version information."""
    from intercept_agent import __version__

    typer.echo(f"intercept-agent v{__version__}")


app.add_typer(daemon.app, name="daemon")
app.add_typer(interceptors.app, name="interceptors")


if __name__ == "__main__":
    app()
