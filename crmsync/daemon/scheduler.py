"""
Tick scheduler for running the sync worker in the background.

Provides a DaemonScheduler class that manages:
- Invoking the worker tick at a configurable interval
- Draining: while ticks keep finding work, the next one runs without waiting
- Signal handling for graceful shutdown (SIGTERM/SIGINT)
- PID file management so only one local scheduler runs per config dir
"""

from __future__ import annotations

import logging
import os
import signal
import time
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path

from crmsync.sync.worker import TickOutcome, TickResult
from crmsync.utils.paths import DEFAULT_CONFIG_DIR, pid_file_path

logger = logging.getLogger(__name__)

# Default PID file location
DEFAULT_PID_FILE = pid_file_path(DEFAULT_CONFIG_DIR)

# Upper bound on back-to-back ticks before the scheduler sleeps anyway
DEFAULT_MAX_DRAIN_TICKS = 50


class DaemonError(Exception):
    """Base exception for daemon-related errors."""

    pass


class PIDFileError(DaemonError):
    """Raised when PID file operations fail."""

    pass


class DaemonAlreadyRunningError(DaemonError):
    """Raised when attempting to start a daemon that is already running."""

    pass


@dataclass
class DaemonStats:
    """Counters for the scheduler's lifetime."""

    started_at: datetime = field(default_factory=datetime.now)
    tick_count: int = 0
    idle_count: int = 0
    completed_count: int = 0
    failed_count: int = 0
    error_count: int = 0
    last_tick_at: datetime | None = None
    last_outcome: str | None = None
    last_error: str | None = None


class PIDFileManager:
    """Creates, reads and removes the scheduler's PID file."""

    def __init__(self, pid_file: Path | None = None):
        self.pid_file = pid_file or DEFAULT_PID_FILE

    def create(self) -> None:
        """
        Write the current process ID, replacing a stale file.

        Raises:
            PIDFileError: If the PID file cannot be created.
            DaemonAlreadyRunningError: If a scheduler is already running.
        """
        existing_pid = self.read()
        if existing_pid is not None:
            if self.is_process_running(existing_pid):
                raise DaemonAlreadyRunningError(
                    f"Scheduler already running with PID {existing_pid}"
                )
            logger.warning(
                f"PID {existing_pid} in {self.pid_file} is gone; taking over"
            )
            self.remove()

        try:
            self.pid_file.parent.mkdir(parents=True, exist_ok=True)
            self.pid_file.write_text(str(os.getpid()))
        except OSError as e:
            raise PIDFileError(f"Cannot write PID file {self.pid_file}: {e}") from e
        logger.debug(f"Created PID file: {self.pid_file}")

    def read(self) -> int | None:
        """
        Read the stored PID, or None if there is no PID file.

        Raises:
            PIDFileError: If the PID file exists but cannot be read or parsed.
        """
        if not self.pid_file.exists():
            return None

        try:
            content = self.pid_file.read_text().strip()
        except OSError as e:
            raise PIDFileError(f"Cannot read PID file {self.pid_file}: {e}") from e
        try:
            return int(content)
        except ValueError as e:
            raise PIDFileError(f"Invalid PID {content!r} in {self.pid_file}") from e

    def remove(self) -> None:
        if not self.pid_file.exists():
            return
        try:
            self.pid_file.unlink()
        except OSError as e:
            raise PIDFileError(f"Cannot remove PID file {self.pid_file}: {e}") from e
        logger.debug(f"Removed PID file: {self.pid_file}")

    @staticmethod
    def is_process_running(pid: int) -> bool:
        try:
            os.kill(pid, 0)
            return True
        except ProcessLookupError:
            return False
        except PermissionError:
            return True


class DaemonScheduler:
    """
    Runs worker ticks until told to stop.

    Usage:
        scheduler = DaemonScheduler(interval=30, pid_file=pid_file_path(config_dir))
        scheduler.set_tick_callback(worker.tick)
        scheduler.run()  # blocks until SIGTERM/SIGINT

    Attributes:
        interval: Seconds to wait after an idle tick
        pid_file: Path to PID file
        stats: Scheduler statistics
    """

    def __init__(
        self,
        interval: int = 30,
        pid_file: Path | None = None,
        max_drain_ticks: int = DEFAULT_MAX_DRAIN_TICKS,
        max_cycles: int | None = None,
    ):
        """
        Initialize the scheduler.

        Args:
            interval: Seconds between ticks when there is no work
            pid_file: Path to PID file. Defaults to ~/.crmsync/daemon.pid
            max_drain_ticks: Back-to-back ticks allowed while work remains
            max_cycles: Stop after this many ticks (None runs until signaled)
        """
        self.interval = interval
        self.max_drain_ticks = max_drain_ticks
        self.max_cycles = max_cycles
        self._pid_manager = PIDFileManager(pid_file)
        self._tick_callback: Callable[[], TickResult] | None = None
        self._running = False
        self._shutdown_requested = False
        self._original_sigterm_handler = None
        self._original_sigint_handler = None
        self.stats = DaemonStats()

    @property
    def pid_file(self) -> Path:
        return self._pid_manager.pid_file

    def set_tick_callback(self, callback: Callable[[], TickResult]) -> None:
        """Set the function invoked once per tick."""
        self._tick_callback = callback

    def _setup_signal_handlers(self) -> None:
        self._original_sigterm_handler = signal.signal(
            signal.SIGTERM, self._signal_handler
        )
        self._original_sigint_handler = signal.signal(
            signal.SIGINT, self._signal_handler
        )
        logger.debug("Signal handlers installed for SIGTERM and SIGINT")

    def _restore_signal_handlers(self) -> None:
        if self._original_sigterm_handler is not None:
            signal.signal(signal.SIGTERM, self._original_sigterm_handler)
        if self._original_sigint_handler is not None:
            signal.signal(signal.SIGINT, self._original_sigint_handler)

    def _signal_handler(self, signum: int, frame: object) -> None:
        signal_name = signal.Signals(signum).name
        logger.info(f"Received {signal_name}; stopping after the current tick")
        self._shutdown_requested = True

    def _run_tick(self) -> TickResult | None:
        """
        Execute one tick and update statistics.

        Returns:
            The tick result, or None if the tick raised.
        """
        if self._tick_callback is None:
            logger.warning("No tick callback set; nothing to run")
            return None

        self.stats.tick_count += 1
        self.stats.last_tick_at = datetime.now()

        try:
            result = self._tick_callback()
        except Exception as e:
            self.stats.error_count += 1
            self.stats.last_error = str(e)
            logger.exception(f"Tick #{self.stats.tick_count} raised: {e}")
            return None

        self.stats.last_outcome = result.outcome.value
        if result.outcome == TickOutcome.IDLE:
            self.stats.idle_count += 1
        elif result.outcome == TickOutcome.COMPLETED:
            self.stats.completed_count += 1
        elif result.outcome == TickOutcome.FAILED:
            self.stats.failed_count += 1
            self.stats.last_error = result.message

        if result.outcome != TickOutcome.IDLE:
            logger.info(
                f"Tick #{self.stats.tick_count}: {result.outcome.value} "
                f"job={result.job_id} pages={result.pages_processed}"
            )
        return result

    def _cycles_exhausted(self) -> bool:
        return self.max_cycles is not None and self.stats.tick_count >= self.max_cycles

    def _sleep_interruptible(self, seconds: int) -> bool:
        """
        Wait between idle ticks in one-second steps so a stop request is
        noticed promptly.

        Returns:
            False if shutdown was requested while waiting.
        """
        deadline = time.monotonic() + seconds
        while not self._shutdown_requested:
            remaining = deadline - time.monotonic()
            if remaining <= 0:
                break
            time.sleep(min(1.0, remaining))
        return not self._shutdown_requested

    def run(self) -> None:
        """
        Run ticks until a shutdown signal or max_cycles.

        Raises:
            DaemonAlreadyRunningError: If another scheduler is already running.
            PIDFileError: If the PID file cannot be written.
        """
        logger.info(f"Starting tick scheduler (interval: {self.interval}s)")

        self._pid_manager.create()
        logger.info(f"Scheduler running as PID {os.getpid()} ({self.pid_file})")

        self._setup_signal_handlers()
        self._running = True
        self._shutdown_requested = False
        self.stats = DaemonStats()

        try:
            while not self._shutdown_requested and not self._cycles_exhausted():
                drained = 0
                result = self._run_tick()
                while (
                    result is not None
                    and result.outcome != TickOutcome.IDLE
                    and drained < self.max_drain_ticks
                    and not self._shutdown_requested
                    and not self._cycles_exhausted()
                ):
                    drained += 1
                    result = self._run_tick()

                if self._shutdown_requested or self._cycles_exhausted():
                    break

                logger.debug(f"No work; next tick in {self.interval}s")
                if not self._sleep_interruptible(self.interval):
                    break
        finally:
            self._running = False
            self._restore_signal_handlers()
            self._pid_manager.remove()
            logger.info(f"Scheduler stopped after {self.stats.tick_count} ticks")

    def stop(self) -> None:
        """Request shutdown; safe to call from the tick callback."""
        logger.info("Stop requested")
        self._shutdown_requested = True

    def is_running(self) -> bool:
        return self._running

    @classmethod
    def get_running_pid(cls, pid_file: Path | None = None) -> int | None:
        """PID of a live scheduler, or None."""
        manager = PIDFileManager(pid_file)
        pid = manager.read()
        if pid is not None and manager.is_process_running(pid):
            return pid
        return None

    @classmethod
    def stop_running_daemon(cls, pid_file: Path | None = None) -> bool:
        """
        Ask a running scheduler to stop after its current tick.

        Returns:
            True if the signal was sent, False if no scheduler is running.
        """
        pid = cls.get_running_pid(pid_file)
        if pid is None:
            logger.info("No running scheduler found")
            return False

        try:
            os.kill(pid, signal.SIGTERM)
        except ProcessLookupError:
            logger.warning(f"Scheduler process {pid} exited before the signal")
            return False
        except PermissionError:
            logger.error(f"Permission denied sending signal to PID {pid}")
            return False
        logger.info(f"Sent SIGTERM to scheduler PID {pid}")
        return True
