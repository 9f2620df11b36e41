from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict, Optional

import typer

from cli.client import ApiClient
from cli.config import OUTPUT_FORMATS, CLIConfig, load_config
from cli.render import render_job, render_places, render_records, render_session


@dataclass
class CLIState:
    config: CLIConfig
    client: ApiClient


app = typer.Typer(
    help="Search locations and pull air-quality sensor history from the explorer service.",
    context_settings={"help_option_names": ["-h", "--help"]},
)


def _get_state(ctx: typer.Context) -> CLIState:
    state = ctx.obj
    if not isinstance(state, CLIState):
        raise typer.Exit(code=1, message="CLI state is uninitialized.")
    return state


@app.callback()
def main(
    ctx: typer.Context,
    base_url: Optional[str] = typer.Option(
        None,
        "--base-url",
        "-b",
        help="Explorer API base URL (defaults to API_BASE_URL env or http://localhost:8000).",
    ),
    poll_interval: Optional[float] = typer.Option(
        None,
        "--poll-interval",
        help="Seconds between status checks when waiting for a fetch.",
    ),
    timeout: Optional[float] = typer.Option(
        None,
        "--timeout",
        help="Maximum seconds to wait when polling a fetch.",
    ),
) -> None:
    """Entry point for the CLI."""
    config = load_config(
        base_url=base_url,
        poll_interval=poll_interval,
        poll_timeout=timeout,
    )
    client = ApiClient(config)
    ctx.obj = CLIState(config=config, client=client)
    ctx.call_on_close(client.close)


@app.command("places")
def places_command(
    ctx: typer.Context,
    text: str = typer.Argument(..., help="Beginning of a US place name (3+ characters)."),
    max_rows: Optional[int] = typer.Option(None, "--max-rows", min=1, help="Number of candidates."),
) -> None:
    """List place name candidates for a prefix."""
    state = _get_state(ctx)
    render_places(state.client.search_places(text, max_rows))


@app.command("aqi")
def aqi_command(
    ctx: typer.Context,
    pm: float = typer.Argument(..., help="Particulate matter concentration."),
) -> None:
    """Convert a PM concentration to an AQI value and band."""
    state = _get_state(ctx)
    payload = state.client.convert_pm(pm)
    description = payload.get("description") or "n/a"
    typer.echo(f"AQI {payload.get('aqi')} ({description})")


@app.command("fetch")
def fetch_command(
    ctx: typer.Context,
    location: str = typer.Option(..., "--location", "-l", help="City to search, e.g. 'Flagstaff, AZ'."),
    start: datetime = typer.Option(..., "--start", formats=["%Y-%m-%d"], help="First day (inclusive)."),
    end: datetime = typer.Option(..., "--end", formats=["%Y-%m-%d"], help="Last day (inclusive)."),
    minutes: int = typer.Option(60, "--minutes", "-m", min=0, help="Averaging bucket in minutes."),
    radius: Optional[float] = typer.Option(None, "--radius", "-r", help="Search radius in miles."),
    limit: int = typer.Option(0, "--limit", min=0, help="Maximum number of sensors (0 = all)."),
    wait: bool = typer.Option(
        True,
        "--wait/--no-wait",
        help="Wait for the fetch to finish and print the measurements.",
    ),
    output_format: Optional[str] = typer.Option(
        None, "--format", "-f", help="table, json or csv (defaults to CLI_OUTPUT_FORMAT or table)."
    ),
) -> None:
    """Search a location, start a fetch and optionally print its measurements."""
    state = _get_state(ctx)
    if output_format is None:
        output_format = state.config.output_format
    elif output_format not in OUTPUT_FORMATS:
        raise typer.BadParameter(f"Unknown format {output_format!r}.", param_hint="--format")
    session = state.client.create_session()
    session_id = session["session_id"]

    session = state.client.search_location(session_id, location)
    if radius is not None:
        session = state.client.change_radius(session_id, radius)
    session = state.client.update_session(
        session_id,
        start_date=start.date().isoformat(),
        end_date=end.date().isoformat(),
        averaging_minutes=minutes,
        sensor_limit=limit,
    )
    if output_format == "table":
        render_session(session)

    job_id = state.client.start_fetch(session_id)
    typer.secho(f"Fetch started. job_id={job_id}", fg=typer.colors.GREEN, err=output_format != "table")
    if not wait:
        return

    last_progress: Dict[str, Any] = {}

    def show_progress(payload: Dict[str, Any]) -> None:
        progress = payload.get("progress")
        if progress and progress != last_progress.get("text"):
            last_progress["text"] = progress
            typer.echo(progress, err=True)

    job = state.client.poll_job(
        job_id,
        interval=state.config.poll_interval,
        timeout=state.config.poll_timeout,
        on_update=show_progress,
    )
    if job.get("status") != "completed":
        render_job(job)
        raise typer.Exit(code=1)

    dataset = state.client.get_dataset(session_id)
    render_records(dataset.get("items") or [], output_format)


@app.command("job")
def job_command(
    ctx: typer.Context,
    job_id: str = typer.Argument(..., help="Identifier returned when the fetch started."),
) -> None:
    """Show the status of a fetch."""
    state = _get_state(ctx)
    render_job(state.client.get_job(job_id))
