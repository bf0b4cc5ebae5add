"""
Typed runtime settings built from the validated configuration dictionary.
"""

from dataclasses import dataclass, fields
from pathlib import Path
from typing import Any, Optional

from crmsync.auth.google_auth import DEFAULT_EXPIRY_BUFFER, DEFAULT_TOKEN_URI
from crmsync.storage.jobs import DEFAULT_LEASE_SECONDS
from crmsync.sync.checkpoint import DEFAULT_PAGE_SIZE
from crmsync.utils import paths

DEFAULT_TICK_INTERVAL = "30s"
DEFAULT_POLL_INTERVAL = 3.0


@dataclass
class Settings:
    """
    Runtime settings with defaults for every key.

    Usage:
        config = ConfigLoader(config_dir).load_and_validate()
        settings = Settings.from_dict(config, config_dir)
    """

    config_dir: Path
    db_path: str = ""
    max_pages_per_tick: int = 2
    page_size: int = DEFAULT_PAGE_SIZE
    token_expiry_buffer: int = DEFAULT_EXPIRY_BUFFER
    lease_seconds: int = DEFAULT_LEASE_SECONDS
    tick_interval: str | int = DEFAULT_TICK_INTERVAL
    poll_interval: float = DEFAULT_POLL_INTERVAL
    google_client_id: Optional[str] = None
    google_client_secret: Optional[str] = None
    google_token_uri: str = DEFAULT_TOKEN_URI
    api_timeout: int = 30
    log_dir: Optional[str] = None
    log_retention_count: int = 10
    verbose: bool = False
    debug: bool = False

    def __post_init__(self) -> None:
        if not self.db_path:
            self.db_path = str(paths.db_path(self.config_dir))

    @classmethod
    def from_dict(cls, config: dict[str, Any], config_dir: Path) -> "Settings":
        """Build settings from a validated config dict; unknown keys are ignored."""
        known = {f.name for f in fields(cls)} - {"config_dir"}
        values = {key: value for key, value in config.items() if key in known}
        if "db_path" in values:
            values["db_path"] = str(Path(values["db_path"]).expanduser())
        return cls(config_dir=Path(config_dir), **values)

    @property
    def log_path(self) -> Optional[Path]:
        return Path(self.log_dir).expanduser() if self.log_dir else None
