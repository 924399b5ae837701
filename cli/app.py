from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

import typer

from cli.client import ApiClient
from cli.config import CLIConfig, load_config
from cli.render import render_alerts, render_history, render_telemetry
from models.readings import TimeRange


@dataclass
class CLIState:
    config: CLIConfig
    client: ApiClient


app = typer.Typer(
    help="Utilities for interacting with the cabin oxygen monitor service.",
    context_settings={"help_option_names": ["-h", "--help"]},
)


def _get_state(ctx: typer.Context) -> CLIState:
    state = ctx.obj
    if not isinstance(state, CLIState):
        raise typer.Exit(code=1)
    return state


@app.callback()
def main(
    ctx: typer.Context,
    base_url: Optional[str] = typer.Option(
        None,
        "--base-url",
        "-b",
        help="Monitor API base URL (defaults to API_BASE_URL env or http://localhost:8000).",
    ),
    timeout: Optional[float] = typer.Option(
        None,
        "--timeout",
        help="Seconds to wait for each API request.",
    ),
) -> None:
    """Entry point for the CLI."""
    config = load_config(base_url=base_url, timeout=timeout)
    client = ApiClient(config)
    ctx.obj = CLIState(config=config, client=client)
    ctx.call_on_close(client.close)


@app.command("status")
def status_command(ctx: typer.Context) -> None:
    """Show the latest reading, status, and connectivity."""
    state = _get_state(ctx)
    render_telemetry(state.client.get_telemetry())


@app.command("refresh")
def refresh_command(ctx: typer.Context) -> None:
    """Poll the sensor immediately and show the result."""
    state = _get_state(ctx)
    typer.echo(f"Refreshing readings from {state.config.base_url} ...")
    payload = state.client.refresh()
    if not payload.get("connected"):
        typer.secho("Sensor is disconnected; showing last known values.", fg=typer.colors.YELLOW)
    render_telemetry(payload)


@app.command("history")
def history_command(
    ctx: typer.Context,
    time_range: TimeRange = typer.Argument(
        TimeRange.last_hour, help="Lookback window to summarize."
    ),
) -> None:
    """Show readings and statistics for a time range."""
    state = _get_state(ctx)
    render_history(state.client.get_history(time_range.value))


@app.command("alerts")
def alerts_command(ctx: typer.Context) -> None:
    """List alerts raised by the monitor."""
    state = _get_state(ctx)
    render_alerts(state.client.get_alerts())
