"""
Configuration file generator for the contact sync engine.

Provides functionality to generate a default configuration file with
every available option documented.
"""

import logging
from pathlib import Path

logger = logging.getLogger(__name__)


def generate_default_config() -> str:
    """
    Generate default YAML configuration with all options documented.

    Returns:
        String containing YAML configuration with comments
    """
    return """# crmsync Configuration
# =====================
#
# Save as ~/.crmsync/config.yaml (or inside $CRMSYNC_CONFIG_DIR).
# Every option is commented out and shows its default.

# Storage
# -------

# SQLite database holding tokens, contacts and sync jobs
# Default: <config dir>/crmsync.db
# db_path: ~/.crmsync/crmsync.db


# Worker
# ------

# Pages fetched per tick before the worker yields
# Default: 2
# max_pages_per_tick: 2

# Contacts requested per page (1-1000)
# Default: 200
# page_size: 200

# Refresh the access token when it expires within this many seconds
# Default: 300
# token_expiry_buffer: 300

# How long a worker holds a claimed job (seconds). Must be longer than the
# slowest tick, or another worker may pick the job up while it is in flight.
# Default: 300
# lease_seconds: 300

# Interval between ticks for `crmsync run` (30s, 5m, 1h or seconds)
# Default: 30s
# tick_interval: 30s


# Status Polling
# --------------

# Seconds between polls for `crmsync status --watch`
# Default: 3
# poll_interval: 3


# Google OAuth Client
# -------------------

# May also come from GOOGLE_CLIENT_ID / GOOGLE_CLIENT_SECRET or from
# credentials.json in the config directory.
# google_client_id: 1234.apps.googleusercontent.com
# google_client_secret: your-client-secret
# google_token_uri: https://oauth2.googleapis.com/token

# Socket timeout for People API requests (seconds)
# Default: 30
# api_timeout: 30


# Logging
# -------

# Directory for daily log files
# Default: <config dir>/logs
# log_dir: ~/.crmsync/logs

# Number of log files to keep
# Default: 10
# log_retention_count: 10

# Enable verbose output
# Default: false
# verbose: false

# Enable debug logging
# Default: false
# debug: false
"""


def save_config_file(
    config_path: Path, overwrite: bool = False
) -> tuple[bool, str | None]:
    """
    Save the default configuration file to config_path.

    Creates parent directories if they don't exist and writes the file with
    owner-only permissions.

    Args:
        config_path: Path where the config file should be saved
        overwrite: If True, overwrite an existing file

    Returns:
        Tuple of (success, error_message)
    """
    config_path = config_path.expanduser().resolve()

    if config_path.exists() and not overwrite:
        return (
            False,
            f"Configuration file already exists: {config_path}\n"
            "Use --force to overwrite.",
        )

    try:
        config_path.parent.mkdir(parents=True, mode=0o700, exist_ok=True)
        config_path.write_text(generate_default_config(), encoding="utf-8")
        config_path.chmod(0o600)
    except OSError as e:
        error_msg = f"Failed to create configuration file: {e}"
        logger.error(error_msg)
        return (False, error_msg)

    logger.info(f"Created configuration file: {config_path}")
    return (True, None)
