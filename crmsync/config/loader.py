"""
Configuration loader module for the contact sync engine.

Provides YAML-based configuration file loading with support for:
- Loading configuration from default or custom paths
- Graceful handling of missing configuration files
- Type and range validation of known keys
"""

import logging
from pathlib import Path
from typing import Any, Optional

import yaml

from crmsync.utils.paths import resolve_config_dir

# Default configuration file name
DEFAULT_CONFIG_FILE = "config.yaml"

# Largest page the People API accepts
MAX_PAGE_SIZE = 1000

logger = logging.getLogger(__name__)


class ConfigError(Exception):
    """Raised when configuration loading or validation fails."""

    pass


# Known configuration keys and their expected types
VALID_KEYS: dict[str, Any] = {
    # Storage
    "db_path": str,
    # Worker
    "max_pages_per_tick": int,
    "page_size": int,
    "token_expiry_buffer": int,
    "lease_seconds": int,
    "tick_interval": (str, int),
    # Client polling
    "poll_interval": (int, float),
    # Google OAuth client / API
    "google_client_id": str,
    "google_client_secret": str,
    "google_token_uri": str,
    "api_timeout": int,
    # Logging
    "log_dir": str,
    "log_retention_count": int,
    "verbose": bool,
    "debug": bool,
}

POSITIVE_INT_KEYS = [
    "max_pages_per_tick",
    "page_size",
    "lease_seconds",
    "api_timeout",
    "log_retention_count",
]


class ConfigLoader:
    """
    YAML configuration file loader.

    Attributes:
        config_dir: Directory containing the configuration file
        config_file: Name of the configuration file

    Usage:
        loader = ConfigLoader()
        config = loader.load_and_validate()

        # Load from specific file
        config = loader.load_from_file("/path/to/config.yaml")
    """

    def __init__(
        self,
        config_dir: Optional[Path] = None,
        config_file: str = DEFAULT_CONFIG_FILE,
    ):
        """
        Initialize the configuration loader.

        Args:
            config_dir: Directory containing the configuration file.
                       Defaults to ~/.crmsync/ or $CRMSYNC_CONFIG_DIR
            config_file: Name of the configuration file (default: config.yaml)
        """
        self.config_dir = resolve_config_dir(config_dir)
        self.config_file = config_file

    @property
    def config_path(self) -> Path:
        return self.config_dir / self.config_file

    def load(self) -> dict[str, Any]:
        """
        Load configuration from the default configuration file.

        Returns:
            Configuration values, or an empty dict if the file doesn't exist

        Raises:
            ConfigError: If the configuration file exists but cannot be parsed
        """
        return self.load_from_file(self.config_path)

    def load_from_file(self, path: Path | str) -> dict[str, Any]:
        """
        Load configuration from a specific file.

        Returns an empty dict if the file doesn't exist, allowing
        graceful operation with defaults.

        Raises:
            ConfigError: If the file exists but cannot be read or parsed
        """
        path = Path(path)

        if not path.exists():
            logger.debug(f"Configuration file not found: {path}")
            return {}

        try:
            with open(path, encoding="utf-8") as f:
                config = yaml.safe_load(f)
        except yaml.YAMLError as e:
            raise ConfigError(f"Failed to parse YAML configuration file: {e}") from e
        except OSError as e:
            raise ConfigError(f"Failed to read configuration file: {e}") from e

        if config is None:
            logger.debug(f"Configuration file is empty: {path}")
            return {}

        if not isinstance(config, dict):
            raise ConfigError(
                f"Configuration file must contain a YAML dictionary, "
                f"got {type(config).__name__}"
            )

        logger.debug(f"Loaded configuration from {path}")
        return config

    def validate(self, config: dict[str, Any]) -> None:
        """
        Validate configuration types and values.

        Unknown keys are ignored with a debug message.

        Raises:
            ConfigError: If configuration is invalid
        """
        if not isinstance(config, dict):
            raise ConfigError(
                f"Configuration must be a dictionary, got {type(config).__name__}"
            )

        for key, value in config.items():
            if key not in VALID_KEYS:
                logger.debug(f"Ignoring unknown configuration key: {key}")
                continue
            expected_type = VALID_KEYS[key]
            if not isinstance(value, expected_type):
                if isinstance(expected_type, tuple):
                    type_name = " or ".join(t.__name__ for t in expected_type)
                else:
                    type_name = expected_type.__name__
                raise ConfigError(
                    f"Invalid type for '{key}': expected {type_name}, "
                    f"got {type(value).__name__}"
                )

        for key in POSITIVE_INT_KEYS:
            if key in config and config[key] < 1:
                raise ConfigError(f"{key} must be >= 1, got {config[key]}")

        if "page_size" in config and config["page_size"] > MAX_PAGE_SIZE:
            raise ConfigError(
                f"page_size must be <= {MAX_PAGE_SIZE}, got {config['page_size']}"
            )

        if "token_expiry_buffer" in config and config["token_expiry_buffer"] < 0:
            raise ConfigError(
                f"token_expiry_buffer must be >= 0, "
                f"got {config['token_expiry_buffer']}"
            )

        if "poll_interval" in config and config["poll_interval"] <= 0:
            raise ConfigError(
                f"poll_interval must be > 0, got {config['poll_interval']}"
            )

        if "tick_interval" in config:
            # Imported here; crmsync.daemon pulls in the worker stack
            from crmsync.daemon import parse_interval

            try:
                seconds = parse_interval(config["tick_interval"])
            except ValueError as e:
                raise ConfigError(f"Invalid tick_interval: {e}") from e
            if seconds < 1:
                raise ConfigError(f"tick_interval must be >= 1s, got {seconds}")

    def load_and_validate(self) -> dict[str, Any]:
        """
        Load configuration and validate it.

        Raises:
            ConfigError: If configuration cannot be loaded or is invalid
        """
        config = self.load()
        if config:
            self.validate(config)
        return config
