"""
Logging configuration module for crmsync.

All crmsync loggers hang off the "crmsync" logger, which gets a console
handler and, unless disabled, a daily log file in <config dir>/logs.

OAuth material must never reach a log file: every handler installed here
carries a TokenRedactionFilter that scrubs Google access tokens, refresh
tokens and bearer headers from the rendered message.

Environment variables:
    CRMSYNC_LOG_LEVEL: DEBUG, INFO, WARNING (or WARN), ERROR, CRITICAL
    CRMSYNC_DEBUG: 1/true/yes forces DEBUG
    CRMSYNC_LOG_FILE: explicit log file path, or "none" to disable the file
"""

import logging
import os
import re
import sys
from datetime import datetime
from pathlib import Path
from typing import Optional

from crmsync.utils.paths import log_dir_path, resolve_config_dir

# Console format
CONSOLE_FORMAT = "%(levelname)s: %(message)s"

# Console format with -v, and the file format
VERBOSE_FORMAT = (
    "%(asctime)s - %(name)s - %(levelname)s - [%(filename)s:%(lineno)d] - %(message)s"
)

DATE_FORMAT = "%Y-%m-%d %H:%M:%S"

ENV_LOG_LEVEL = "CRMSYNC_LOG_LEVEL"
ENV_DEBUG = "CRMSYNC_DEBUG"
ENV_LOG_FILE = "CRMSYNC_LOG_FILE"

LOG_FILE_PREFIX = "crmsync_"

ROOT_LOGGER_NAME = "crmsync"

# Third-party loggers that log request URLs or discovery chatter at INFO
NOISY_LOGGERS = (
    "googleapiclient.discovery",
    "googleapiclient.discovery_cache",
    "google.auth.transport.requests",
    "urllib3.connectionpool",
    "httpx",
)

REDACTED = "[REDACTED]"

_LEVEL_NAMES = {
    "DEBUG": logging.DEBUG,
    "INFO": logging.INFO,
    "WARNING": logging.WARNING,
    "WARN": logging.WARNING,
    "ERROR": logging.ERROR,
    "CRITICAL": logging.CRITICAL,
}


class TokenRedactionFilter(logging.Filter):
    """
    Scrub OAuth credentials from log records.

    Matches Google access tokens (ya29.*), refresh tokens (1//*), bearer
    authorization values and access_token/refresh_token/client_secret
    key-value pairs. The record is rewritten in place with its arguments
    merged into the message; records are never dropped.
    """

    PATTERNS = (
        re.compile(r"ya29\.[0-9A-Za-z._-]+"),
        re.compile(r"\b1//[0-9A-Za-z._-]+"),
        re.compile(r"(?i)(bearer\s+)[0-9A-Za-z._~+/=-]+"),
        re.compile(
            r"(?i)((?:access_token|refresh_token|client_secret)[\"']?\s*[=:]\s*[\"']?)"
            r"[^\s&\"',}]+"
        ),
    )

    def filter(self, record: logging.LogRecord) -> bool:
        message = record.getMessage()
        redacted = self.redact(message)
        if redacted != message:
            record.msg = redacted
            record.args = ()
        return True

    @classmethod
    def redact(cls, text: str) -> str:
        for pattern in cls.PATTERNS:
            if pattern.groups:
                text = pattern.sub(lambda m: m.group(1) + REDACTED, text)
            else:
                text = pattern.sub(REDACTED, text)
        return text


class ColoredFormatter(logging.Formatter):
    """
    Formatter that colors the level name on a capable terminal.

    Colors are skipped when stderr is not a TTY, NO_COLOR is set or TERM is
    "dumb". The record handed to other handlers is left untouched.
    """

    COLORS = {
        logging.DEBUG: "\033[36m",
        logging.INFO: "\033[32m",
        logging.WARNING: "\033[33m",
        logging.ERROR: "\033[31m",
        logging.CRITICAL: "\033[35m",
    }
    RESET = "\033[0m"

    def __init__(
        self,
        fmt: Optional[str] = None,
        datefmt: Optional[str] = None,
        use_colors: bool = True,
    ):
        super().__init__(fmt, datefmt)
        self.use_colors = use_colors and _stderr_supports_color()

    def format(self, record: logging.LogRecord) -> str:
        color = self.COLORS.get(record.levelno) if self.use_colors else None
        if color is None:
            return super().format(record)

        colored = logging.makeLogRecord(record.__dict__)
        colored.levelname = f"{color}{record.levelname}{self.RESET}"
        return super().format(colored)


def _stderr_supports_color() -> bool:
    isatty = getattr(sys.stderr, "isatty", None)
    if isatty is None or not isatty():
        return False
    # https://no-color.org/
    if os.environ.get("NO_COLOR"):
        return False
    return os.environ.get("TERM", "") != "dumb"


def get_log_level_from_env() -> int:
    """
    Logging level from the environment; CRMSYNC_DEBUG wins over
    CRMSYNC_LOG_LEVEL and unknown names fall back to INFO.
    """
    if os.environ.get(ENV_DEBUG, "").lower() in ("1", "true", "yes"):
        return logging.DEBUG
    return _LEVEL_NAMES.get(os.environ.get(ENV_LOG_LEVEL, "INFO").upper(), logging.INFO)


def default_log_dir() -> Path:
    return log_dir_path(resolve_config_dir())


def get_log_file_path(log_dir: Optional[Path] = None) -> Optional[Path]:
    """
    Path of today's log file.

    Args:
        log_dir: Directory to use when CRMSYNC_LOG_FILE is not set
                 (default <config dir>/logs)

    Returns:
        Path to the log file, or None if file logging is disabled
    """
    override = os.environ.get(ENV_LOG_FILE)
    if override is not None:
        if override.lower() in ("", "none", "disabled"):
            return None
        return Path(override)

    file_name = f"{LOG_FILE_PREFIX}{datetime.now():%Y%m%d}.log"
    return (log_dir or default_log_dir()) / file_name


def _console_handler(level: int, verbose: bool, use_colors: bool) -> logging.Handler:
    fmt = VERBOSE_FORMAT if verbose else CONSOLE_FORMAT
    handler = logging.StreamHandler(sys.stderr)
    handler.setLevel(level)
    if use_colors:
        handler.setFormatter(ColoredFormatter(fmt, DATE_FORMAT))
    else:
        handler.setFormatter(logging.Formatter(fmt, DATE_FORMAT))
    handler.addFilter(TokenRedactionFilter())
    return handler


def _file_handler(path: Path) -> logging.Handler:
    path.parent.mkdir(parents=True, exist_ok=True)
    handler = logging.FileHandler(path, encoding="utf-8")
    # The file always gets the full story
    handler.setLevel(logging.DEBUG)
    handler.setFormatter(logging.Formatter(VERBOSE_FORMAT, DATE_FORMAT))
    handler.addFilter(TokenRedactionFilter())
    return handler


def setup_logging(
    level: Optional[int] = None,
    verbose: bool = False,
    log_dir: Optional[Path] = None,
    log_file: Optional[Path] = None,
    enable_file_logging: bool = True,
    use_colors: bool = True,
) -> logging.Logger:
    """
    Configure the crmsync logger hierarchy.

    Safe to call more than once; previous handlers are replaced.

    Args:
        level: Logging level. If None, read from the environment.
        verbose: Use DEBUG and the verbose console format.
        log_dir: Directory for daily log files.
        log_file: Explicit log file path (overrides log_dir).
        enable_file_logging: Set False for console-only logging.
        use_colors: Color the console level names when supported.

    Returns:
        The "crmsync" logger

    Example:
        setup_logging(verbose=True)
        setup_logging(log_dir=Path('/var/log/crmsync'))
    """
    if level is None:
        level = get_log_level_from_env()
    if verbose:
        level = logging.DEBUG

    logger = logging.getLogger(ROOT_LOGGER_NAME)
    logger.setLevel(level)
    logger.handlers.clear()
    logger.propagate = False
    logger.addHandler(_console_handler(level, verbose, use_colors))

    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)

    if enable_file_logging:
        path = log_file or get_log_file_path(log_dir)
        if path is not None:
            try:
                logger.addHandler(_file_handler(path))
            except OSError as e:
                logger.warning(f"Could not create log file {path}: {e}")
            else:
                logger.debug(f"Log file: {path}")

    return logger


def cleanup_old_logs(log_dir: Optional[Path] = None, keep_count: int = 10) -> int:
    """
    Delete crmsync_*.log files beyond the keep_count most recent.

    Args:
        log_dir: Directory containing the logs (default <config dir>/logs)
        keep_count: Files to keep; 0 disables cleanup

    Returns:
        Number of files deleted
    """
    if keep_count <= 0:
        return 0

    directory = log_dir or default_log_dir()
    if not directory.is_dir():
        return 0

    logs = sorted(
        directory.glob(f"{LOG_FILE_PREFIX}*.log"),
        key=lambda p: p.stat().st_mtime,
        reverse=True,
    )
    deleted = 0
    for path in logs[keep_count:]:
        try:
            path.unlink()
        except OSError as e:
            logging.getLogger(__name__).debug(f"Could not delete {path}: {e}")
            continue
        deleted += 1
    return deleted


def get_logger(name: str) -> logging.Logger:
    """Logger under "crmsync" for a module name."""
    if not name.startswith(ROOT_LOGGER_NAME):
        name = f"{ROOT_LOGGER_NAME}.{name}"
    return logging.getLogger(name)


def set_log_level(level: int) -> None:
    """Change the console level at runtime; file handlers stay at DEBUG."""
    logger = logging.getLogger(ROOT_LOGGER_NAME)
    logger.setLevel(level)
    for handler in logger.handlers:
        if not isinstance(handler, logging.FileHandler):
            handler.setLevel(level)


__all__ = [
    "setup_logging",
    "get_logger",
    "set_log_level",
    "cleanup_old_logs",
    "ColoredFormatter",
    "TokenRedactionFilter",
    "get_log_level_from_env",
    "get_log_file_path",
    "CONSOLE_FORMAT",
    "VERBOSE_FORMAT",
    "DATE_FORMAT",
]
