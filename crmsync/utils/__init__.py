"""
crmsync.utils - Utility module

Common utilities including path resolution and time helpers.
"""

from crmsync.utils.paths import DEFAULT_CONFIG_DIR, resolve_config_dir
from crmsync.utils.timeutil import format_timestamp, parse_timestamp, utcnow

__all__ = [
    "DEFAULT_CONFIG_DIR",
    "format_timestamp",
    "parse_timestamp",
    "resolve_config_dir",
    "utcnow",
]
