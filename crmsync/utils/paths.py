"""
Layout of the crmsync configuration directory.

Everything crmsync keeps on disk lives under one directory (default
~/.crmsync, or $CRMSYNC_CONFIG_DIR):

    config.yaml         settings (crmsync init-config)
    credentials.json    optional Google OAuth client secrets
    crmsync.db          tokens, contacts and sync jobs
    daemon.pid          PID of a running `crmsync run`
    logs/               daily log files
"""

from __future__ import annotations

import os
from pathlib import Path

DEFAULT_CONFIG_DIR = Path.home() / ".crmsync"

CONFIG_DIR_ENV_VAR = "CRMSYNC_CONFIG_DIR"

DB_FILE_NAME = "crmsync.db"
PID_FILE_NAME = "daemon.pid"
LOG_DIR_NAME = "logs"


def resolve_config_dir(config_dir: Path | str | None = None) -> Path:
    """
    Absolute configuration directory.

    An explicit config_dir wins over $CRMSYNC_CONFIG_DIR, which wins over
    ~/.crmsync.
    """
    if config_dir is None:
        config_dir = os.environ.get(CONFIG_DIR_ENV_VAR) or DEFAULT_CONFIG_DIR
    return Path(config_dir).expanduser().resolve()


def db_path(config_dir: Path) -> Path:
    return config_dir / DB_FILE_NAME


def pid_file_path(config_dir: Path) -> Path:
    return config_dir / PID_FILE_NAME


def log_dir_path(config_dir: Path) -> Path:
    return config_dir / LOG_DIR_NAME
