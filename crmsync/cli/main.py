"""
Command-line interface for crmsync.

Provides commands for connecting a user's Google account, starting,
canceling and watching import jobs, and running the worker.

Usage:
    # Show help
    crmsync --help

    # Store tokens issued by the application's consent flow
    crmsync connect --user alice --refresh-token 1//0g...

    # Start an import and watch it
    crmsync start --user alice --watch

    # Run worker ticks
    crmsync tick
    crmsync run --interval 30s
"""

import sys
from datetime import timedelta
from pathlib import Path
from typing import Optional

import click

from crmsync import __version__
from crmsync.auth.google_auth import AuthenticationError
from crmsync.cli.formatters import (
    show_events,
    show_job_status,
    show_progress_line,
    show_tick_result,
)
from crmsync.cli.poller import poll_until_terminal
from crmsync.config.generator import save_config_file
from crmsync.config.loader import DEFAULT_CONFIG_FILE, ConfigError, ConfigLoader
from crmsync.config.settings import Settings
from crmsync.services import Services, build_services
from crmsync.sync.control import JobControlError
from crmsync.sync.job import VALID_SYNC_MODES, SyncJob, SyncMode
from crmsync.sync.worker import TickOutcome
from crmsync.utils import resolve_config_dir, utcnow
from crmsync.utils.paths import log_dir_path, pid_file_path
from crmsync.utils.logging import cleanup_old_logs, get_logger, setup_logging

# Environment variable naming the acting user
USER_ENV_VAR = "CRMSYNC_USER"


def get_config_dir(config_dir: Optional[str]) -> Path:
    """Get the configuration directory path."""
    return resolve_config_dir(config_dir)


def get_config_file(config_dir: Path, config_file: Optional[str]) -> Path:
    """Get the configuration file path."""
    if config_file:
        return Path(config_file).expanduser()
    return config_dir / DEFAULT_CONFIG_FILE


def get_services(ctx: click.Context) -> Services:
    """Build services on first use; tests may pre-seed ctx.obj['services']."""
    services = ctx.obj.get("services")
    if services is None:
        services = build_services(ctx.obj["settings"])
        ctx.obj["services"] = services
        ctx.call_on_close(services.close)
    return services


def fail(message: str) -> None:
    click.echo(click.style(f"Error: {message}", fg="red"), err=True)
    sys.exit(1)


user_option = click.option(
    "--user",
    "-u",
    "user_id",
    required=True,
    envvar=USER_ENV_VAR,
    help=f"User to act for (or ${USER_ENV_VAR}).",
)


@click.group()
@click.version_option(version=__version__, prog_name="crmsync")
@click.option(
    "--verbose", "-v", is_flag=True, help="Enable verbose output with detailed logging."
)
@click.option(
    "--config-dir",
    "-c",
    type=click.Path(exists=False, file_okay=False, dir_okay=True),
    envvar="CRMSYNC_CONFIG_DIR",
    help="Configuration directory path (default: ~/.crmsync).",
)
@click.option(
    "--config-file",
    "-f",
    type=click.Path(exists=False, file_okay=True, dir_okay=False),
    envvar="CRMSYNC_CONFIG_FILE",
    help="Configuration file path (default: <config dir>/config.yaml).",
)
@click.pass_context
def cli(
    ctx: click.Context,
    verbose: bool,
    config_dir: Optional[str],
    config_file: Optional[str],
) -> None:
    """
    Google Contacts import for the personal CRM.

    Imports a user's Google contacts into the contact store in small,
    resumable steps and reports progress while the import runs.
    """
    ctx.ensure_object(dict)

    resolved_config_dir = get_config_dir(config_dir)
    resolved_config_file = get_config_file(resolved_config_dir, config_file)
    ctx.obj["config_dir"] = resolved_config_dir
    ctx.obj["config_file"] = resolved_config_file

    config = {}
    try:
        loader = ConfigLoader(config_dir=resolved_config_dir)
        config = loader.load_from_file(resolved_config_file)
        if config:
            loader.validate(config)
    except ConfigError as e:
        # Keep going on defaults so init-config can still fix things
        click.echo(
            click.style(f"Warning: Configuration error: {e}", fg="yellow"), err=True
        )
        config = {}

    settings = Settings.from_dict(config, resolved_config_dir)
    settings.verbose = verbose or settings.verbose
    ctx.obj["config"] = config
    ctx.obj["settings"] = settings
    ctx.obj["verbose"] = settings.verbose

    log_dir = settings.log_path or log_dir_path(resolved_config_dir)
    setup_logging(
        verbose=settings.verbose or settings.debug,
        log_dir=log_dir,
        enable_file_logging=True,
    )
    if settings.log_retention_count > 0:
        cleanup_old_logs(log_dir=log_dir, keep_count=settings.log_retention_count)


# =============================================================================
# Connection Commands
# =============================================================================


@cli.command("connect")
@user_option
@click.option("--refresh-token", required=True, help="OAuth refresh token for the user.")
@click.option("--access-token", default=None, help="Current access token, if known.")
@click.option(
    "--expires-in",
    type=int,
    default=None,
    help="Seconds until the access token expires.",
)
@click.pass_context
def connect_command(
    ctx: click.Context,
    user_id: str,
    refresh_token: str,
    access_token: Optional[str],
    expires_in: Optional[int],
) -> None:
    """
    Store Google tokens for a user.

    The tokens come from the application's consent flow. Without an access
    token the worker refreshes one on its first tick.

    Example:

        crmsync connect --user alice --refresh-token 1//0gAbC...
    """
    logger = get_logger(__name__)
    services = get_services(ctx)

    expiry = None
    if access_token and expires_in is not None:
        expiry = utcnow() + timedelta(seconds=expires_in)

    services.token_store.connect(
        user_id, refresh_token, access_token=access_token, expiry=expiry
    )
    logger.info(f"Stored Google tokens for {user_id}")
    click.echo(click.style(f"Google Contacts connected for {user_id}.", fg="green"))


@cli.command("disconnect")
@user_option
@click.pass_context
def disconnect_command(ctx: click.Context, user_id: str) -> None:
    """Forget a user's Google tokens."""
    services = get_services(ctx)
    if services.token_store.disconnect(user_id):
        click.echo(click.style(f"Google Contacts disconnected for {user_id}.", fg="green"))
    else:
        click.echo(f"{user_id} was not connected.")


# =============================================================================
# Job Commands
# =============================================================================


def _watch(ctx: click.Context, user_id: str, job_id: str, interval: float) -> SyncJob:
    control = get_services(ctx).control
    job = poll_until_terminal(
        lambda: control.get_status(user_id, job_id),
        on_update=show_progress_line,
        interval=interval,
    )
    click.echo()
    show_job_status(job, verbose=ctx.obj["verbose"])
    return job


@cli.command("start")
@user_option
@click.option(
    "--mode",
    "sync_mode",
    type=click.Choice(sorted(VALID_SYNC_MODES)),
    default=SyncMode.ALL.value,
    show_default=True,
    help="Which contacts to import.",
)
@click.option("--watch", "-w", is_flag=True, help="Poll until the job finishes.")
@click.option("--interval", type=float, default=None, help="Seconds between polls.")
@click.pass_context
def start_command(
    ctx: click.Context,
    user_id: str,
    sync_mode: str,
    watch: bool,
    interval: Optional[float],
) -> None:
    """
    Start an import, or show the one already in progress.

    The job runs when the worker ticks (`crmsync tick` or `crmsync run`).

    Examples:

        crmsync start --user alice

        crmsync start --user alice --mode phone_only --watch
    """
    control = get_services(ctx).control
    existing = control.get_active(user_id)

    try:
        job = control.start_sync(user_id, sync_mode=sync_mode)
    except (JobControlError, ValueError) as e:
        fail(str(e))
        return

    if existing is not None and existing.id == job.id:
        click.echo(click.style("Sync already in progress.", fg="yellow"))
    else:
        click.echo(click.style("Sync job queued.", fg="green"))
    show_job_status(job, verbose=ctx.obj["verbose"])

    if watch:
        click.echo()
        _watch(ctx, user_id, job.id, interval or ctx.obj["settings"].poll_interval)


@cli.command("cancel")
@user_option
@click.argument("job_id")
@click.pass_context
def cancel_command(ctx: click.Context, user_id: str, job_id: str) -> None:
    """Cancel a queued or running import."""
    try:
        job = get_services(ctx).control.cancel_sync(user_id, job_id)
    except JobControlError as e:
        fail(str(e))
        return
    click.echo(click.style(f"Sync {job.id} canceled.", fg="green"))


@cli.command("status")
@user_option
@click.argument("job_id", required=False)
@click.option("--watch", "-w", is_flag=True, help="Poll until the job finishes.")
@click.option("--interval", type=float, default=None, help="Seconds between polls.")
@click.pass_context
def status_command(
    ctx: click.Context,
    user_id: str,
    job_id: Optional[str],
    watch: bool,
    interval: Optional[float],
) -> None:
    """
    Show an import job.

    Without JOB_ID shows the user's active job, or the most recent one.

    Example:

        crmsync status --user alice --watch
    """
    services = get_services(ctx)

    if job_id is None:
        job = services.control.get_active(user_id)
        if job is None:
            recent = services.ledger.list_jobs(user_id, limit=1)
            job = recent[0] if recent else None
        if job is None:
            click.echo(f"No sync jobs for {user_id}.")
            state = services.token_store.get(user_id)
            if state is None or not state.is_connected:
                click.echo("Google Contacts: " + click.style("Not connected", fg="red"))
            return
        job_id = job.id

    try:
        job = services.control.get_status(user_id, job_id)
    except JobControlError as e:
        fail(str(e))
        return

    if watch and not job.is_terminal:
        _watch(ctx, user_id, job.id, interval or ctx.obj["settings"].poll_interval)
        return

    show_job_status(job, verbose=ctx.obj["verbose"])
    state = services.token_store.get(user_id)
    if state is not None and state.last_sync_at:
        click.echo(f"Last completed sync: {state.last_sync_at:%Y-%m-%d %H:%M:%S %Z}")


@cli.command("events")
@user_option
@click.argument("job_id")
@click.pass_context
def events_command(ctx: click.Context, user_id: str, job_id: str) -> None:
    """Print the event log of a job."""
    services = get_services(ctx)
    try:
        services.control.get_status(user_id, job_id)
    except JobControlError as e:
        fail(str(e))
        return
    show_events(services.ledger.list_events(job_id))


# =============================================================================
# Worker Commands
# =============================================================================


@cli.command("tick")
@click.option(
    "--count",
    "-n",
    type=int,
    default=1,
    show_default=True,
    help="Maximum ticks to run; stops early when there is no work.",
)
@click.pass_context
def tick_command(ctx: click.Context, count: int) -> None:
    """
    Run the worker once (or up to --count times).

    Suitable for cron or any external scheduler.
    """
    services = get_services(ctx)
    try:
        worker = services.worker
    except AuthenticationError as e:
        fail(str(e))
        return

    for _ in range(max(count, 1)):
        result = worker.tick()
        show_tick_result(result)
        if result.outcome == TickOutcome.IDLE:
            break


@cli.command("run")
@click.option(
    "--interval",
    "-i",
    default=None,
    help="Wait between idle ticks (e.g. '30s', '5m'). Defaults to config or 30s.",
)
@click.option("--stop", is_flag=True, help="Stop a running scheduler and exit.")
@click.option("--max-ticks", type=int, default=None, hidden=True)
@click.pass_context
def run_command(
    ctx: click.Context,
    interval: Optional[str],
    stop: bool,
    max_ticks: Optional[int],
) -> None:
    """
    Run worker ticks in the foreground until SIGTERM/SIGINT.

    While jobs keep making progress the next tick starts immediately;
    otherwise the scheduler waits for the interval.

    Examples:

        crmsync -v run --interval 10s

        crmsync run --stop
    """
    from crmsync.daemon import (
        DaemonAlreadyRunningError,
        DaemonError,
        DaemonScheduler,
        parse_interval,
    )

    logger = get_logger(__name__)
    settings: Settings = ctx.obj["settings"]
    pid_file = pid_file_path(ctx.obj["config_dir"])

    if stop:
        if DaemonScheduler.stop_running_daemon(pid_file):
            click.echo(click.style("Stop signal sent.", fg="green"))
        else:
            click.echo("No running scheduler found.")
        return

    effective_interval = interval or settings.tick_interval
    try:
        interval_seconds = parse_interval(effective_interval)
    except ValueError as e:
        fail(str(e))
        return

    services = get_services(ctx)
    try:
        worker = services.worker
    except AuthenticationError as e:
        fail(str(e))
        return

    click.echo(f"Starting scheduler with {effective_interval} interval (Ctrl+C to stop)")
    scheduler = DaemonScheduler(
        interval=interval_seconds, pid_file=pid_file, max_cycles=max_ticks
    )
    scheduler.set_tick_callback(worker.tick)

    try:
        scheduler.run()
    except DaemonAlreadyRunningError as e:
        fail(str(e))
        return
    except DaemonError as e:
        logger.error(f"Scheduler failed: {e}")
        fail(str(e))
        return

    stats = scheduler.stats
    click.echo(
        f"Scheduler stopped after {stats.tick_count} ticks "
        f"({stats.completed_count} completed, {stats.failed_count} failed)"
    )


# =============================================================================
# Config Command
# =============================================================================


@cli.command("init-config")
@click.option("--force", is_flag=True, help="Overwrite an existing config file.")
@click.pass_context
def init_config_command(ctx: click.Context, force: bool) -> None:
    """
    Write a documented default config.yaml.

    Example:

        crmsync init-config
    """
    config_file: Path = ctx.obj["config_file"]
    success, error = save_config_file(config_file, overwrite=force)
    if not success:
        fail(error or "Failed to create configuration file")
        return
    click.echo(click.style("Configuration file created successfully!", fg="green"))
    click.echo(f"Location: {config_file}")
