"""
crmsync.config - Configuration management module

YAML configuration loading, validation, defaults and file generation.
"""

from crmsync.config.generator import generate_default_config, save_config_file
from crmsync.config.loader import DEFAULT_CONFIG_FILE, ConfigError, ConfigLoader
from crmsync.config.settings import Settings

__all__ = [
    "DEFAULT_CONFIG_FILE",
    "ConfigError",
    "ConfigLoader",
    "Settings",
    "generate_default_config",
    "save_config_file",
]
