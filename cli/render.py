from __future__ import annotations

from typing import Any, Dict, Iterable, List

import typer

_STATUS_COLORS = {
    "Normal": typer.colors.GREEN,
    "Warning": typer.colors.YELLOW,
    "Alert": typer.colors.RED,
}


def echo_heading(text: str) -> None:
    typer.secho(text, bold=True)


def echo_key_values(pairs: Iterable[tuple[str, Any]]) -> None:
    for key, value in pairs:
        typer.echo(f"{key}: {value}")


def _echo_readings(readings: List[Dict[str, Any]]) -> None:
    if not readings:
        typer.echo("No readings available.")
        return
    for reading in readings:
        typer.echo(f"  - {reading.get('timestamp')}: {reading.get('value')}%")


def render_telemetry(payload: Dict[str, Any]) -> None:
    echo_heading("Cabin Oxygen")
    reading = payload.get("reading") or {}
    status = payload.get("status")
    echo_key_values(
        [
            ("device_id", payload.get("device_id")),
            ("connected", "yes" if payload.get("connected") else "no"),
            ("last_update", payload.get("last_update_time") or "never"),
            ("oxygen_level", f"{reading['value']}%" if reading else "n/a"),
        ]
    )
    if status:
        typer.secho(f"status: {status}", fg=_STATUS_COLORS.get(status))
    else:
        typer.echo("status: unknown")

    typer.echo()
    echo_heading("Recent Readings")
    _echo_readings(payload.get("recent_readings") or [])


def render_history(payload: Dict[str, Any]) -> None:
    echo_heading(f"History ({payload.get('label')})")
    statistics = payload.get("statistics") or {}
    echo_key_values(
        [
            ("source", payload.get("source")),
            ("average", f"{statistics.get('average')}%"),
            ("minimum", f"{statistics.get('minimum')}%"),
            ("maximum", f"{statistics.get('maximum')}%"),
        ]
    )
    typer.echo()
    echo_heading("Readings")
    _echo_readings(payload.get("readings") or [])


def render_alerts(events: List[Dict[str, Any]]) -> None:
    echo_heading("Alerts")
    if not events:
        typer.echo("No alerts raised.")
        return
    for event in events:
        typer.secho(
            f"  - {event.get('timestamp')}: {event.get('title')} - {event.get('message')}",
            fg=typer.colors.RED,
        )
