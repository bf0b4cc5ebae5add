"""CLI output formatting functions.

This module contains functions for displaying job status, progress, event
logs and tick results on the command line.
"""

import json
from typing import Any

import click

from crmsync.sync.job import JobStatus, SyncJob
from crmsync.sync.worker import TickOutcome, TickResult

STATUS_COLORS = {
    JobStatus.QUEUED: "cyan",
    JobStatus.RUNNING: "yellow",
    JobStatus.COMPLETED: "green",
    JobStatus.FAILED: "red",
    JobStatus.CANCELED: "magenta",
}

OUTCOME_COLORS = {
    TickOutcome.IDLE: None,
    TickOutcome.PROGRESSED: "yellow",
    TickOutcome.COMPLETED: "green",
    TickOutcome.FAILED: "red",
    TickOutcome.CANCELED: "magenta",
}


def format_progress(job: SyncJob) -> str:
    """Progress as "done / total (pct%)", or just "done" without an estimate."""
    total = job.progress_total_estimate
    if not total:
        return f"{job.progress_done} contacts"
    percent = min(100, int(job.progress_done * 100 / total))
    return f"{job.progress_done} / {total} contacts ({percent}%)"


def styled_status(status: JobStatus) -> str:
    return click.style(status.value, fg=STATUS_COLORS.get(status))


def show_job_status(job: SyncJob, verbose: bool = False) -> None:
    """Print a job snapshot."""
    click.echo(f"Job:      {job.id}")
    click.echo(f"Status:   {styled_status(job.status)}")
    click.echo(f"Mode:     {job.sync_mode.value}")
    click.echo(f"Progress: {format_progress(job)}")
    if job.started_at:
        click.echo(f"Started:  {job.started_at:%Y-%m-%d %H:%M:%S %Z}")
    if job.finished_at:
        click.echo(f"Finished: {job.finished_at:%Y-%m-%d %H:%M:%S %Z}")
    if job.error_message:
        click.echo(click.style(f"Error:    {job.error_message}", fg="red"))
    if verbose:
        click.echo(f"Checkpoint: {json.dumps(job.checkpoint.to_dict())}")


def show_progress_line(job: SyncJob) -> None:
    """One-line update used while watching a job."""
    click.echo(f"[{styled_status(job.status)}] {format_progress(job)}")


def show_events(events: list[dict[str, Any]]) -> None:
    """Print a job's event log."""
    if not events:
        click.echo("No events recorded.")
        return
    for event in events:
        payload = json.dumps(event["payload"], sort_keys=True)
        click.echo(f"{event['created_at']}  {event['event_type']:<16} {payload}")


def show_tick_result(result: TickResult) -> None:
    """Print what a tick did."""
    outcome = click.style(result.outcome.value, fg=OUTCOME_COLORS.get(result.outcome))
    if result.outcome == TickOutcome.IDLE:
        click.echo(f"Tick: {outcome} ({result.message})")
        return
    click.echo(
        f"Tick: {outcome} job={result.job_id} "
        f"pages={result.pages_processed} records={result.records_processed}"
    )
    if result.message:
        click.echo(f"  {result.message}")
