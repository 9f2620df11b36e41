from __future__ import annotations

import csv
import json
import sys
from typing import Any, Dict, Iterable, List, Sequence

import typer

RECORD_COLUMNS = (
    "Location",
    "sensor_index",
    "name",
    "latitude",
    "longitude",
    "created_at",
    "Humidity",
    "Temperature",
    "PM 2.5",
    "PM 10.0",
    "AQI",
)


def echo_heading(text: str) -> None:
    typer.secho(text, bold=True)


def echo_key_values(pairs: Iterable[tuple[str, Any]]) -> None:
    for key, value in pairs:
        typer.echo(f"{key}: {value}")


def render_places(places: Sequence[Dict[str, Any]]) -> None:
    if not places:
        typer.echo("No matching places.")
        return
    for ix, place in enumerate(places):
        typer.echo(f"{ix}. {place.get('name')} ({place.get('latitude')}, {place.get('longitude')})")


def render_session(payload: Dict[str, Any]) -> None:
    echo_heading("Session")
    echo_key_values(
        [
            ("session_id", payload.get("session_id")),
            ("location", f"{payload.get('city')}, {payload.get('region')}"),
            ("coordinates", f"{payload.get('latitude')}, {payload.get('longitude')}"),
            ("radius_miles", payload.get("radius_miles")),
            ("dates", f"{payload.get('start_date')} - {payload.get('end_date')}"),
            ("averaging_minutes", payload.get("averaging_minutes")),
        ]
    )


def render_job(payload: Dict[str, Any]) -> None:
    echo_heading("Fetch Job")
    echo_key_values(
        [
            ("job_id", payload.get("job_id")),
            ("status", payload.get("status")),
            ("sensor_count", payload.get("sensor_count")),
            ("record_count", payload.get("record_count")),
            ("processing_ms", payload.get("processing_ms")),
        ]
    )
    message = payload.get("message")
    if message:
        typer.echo()
        typer.secho(message, fg=typer.colors.RED)


def render_records(items: List[Dict[str, Any]], output_format: str = "table") -> None:
    if output_format == "json":
        typer.echo(json.dumps(items, indent=2))
        return
    if output_format == "csv":
        writer = csv.DictWriter(sys.stdout, fieldnames=list(RECORD_COLUMNS), extrasaction="ignore")
        writer.writeheader()
        writer.writerows(items)
        return

    echo_heading("Measurements")
    if not items:
        typer.echo("No measurements available.")
        return
    typer.echo(" | ".join(RECORD_COLUMNS))
    for item in items:
        typer.echo(" | ".join(str(item.get(column, "")) for column in RECORD_COLUMNS))
