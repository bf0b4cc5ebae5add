"""CLI package for crmsync."""

from crmsync.cli.main import cli, get_config_dir, get_config_file
from crmsync.cli.poller import DEFAULT_POLL_INTERVAL, poll_until_terminal

__all__ = [
    "DEFAULT_POLL_INTERVAL",
    "cli",
    "get_config_dir",
    "get_config_file",
    "poll_until_terminal",
]
