"""
Status polling for a running sync job.

The client never waits on the worker; it re-reads the job at a fixed
interval until the job reaches a terminal state.
"""

import logging
import time
from collections.abc import Callable
from typing import Optional

from crmsync.sync.job import SyncJob

# Seconds between status reads
DEFAULT_POLL_INTERVAL = 3.0

logger = logging.getLogger(__name__)


def poll_until_terminal(
    fetch_status: Callable[[], SyncJob],
    on_update: Optional[Callable[[SyncJob], None]] = None,
    interval: float = DEFAULT_POLL_INTERVAL,
    max_polls: Optional[int] = None,
    sleep: Callable[[float], None] = time.sleep,
) -> SyncJob:
    """
    Poll a job until it is completed, failed or canceled.

    on_update is called with every snapshot whose status or progress differs
    from the previous one, including the first and the terminal one.

    Args:
        fetch_status: Returns the current job snapshot
        on_update: Progress callback
        interval: Seconds between polls
        max_polls: Give up after this many reads and return the last snapshot
        sleep: Sleep function

    Returns:
        The last snapshot read
    """
    last_seen: Optional[tuple] = None
    polls = 0

    while True:
        job = fetch_status()
        polls += 1

        fingerprint = (job.status, job.progress_done, job.progress_total_estimate)
        if fingerprint != last_seen:
            last_seen = fingerprint
            logger.debug(
                f"Job {job.id}: {job.status.value} {job.progress_done}"
                f"/{job.progress_total_estimate or '?'}"
            )
            if on_update is not None:
                on_update(job)

        if job.is_terminal:
            return job
        if max_polls is not None and polls >= max_polls:
            logger.debug(f"Stopped polling job {job.id} after {polls} reads")
            return job

        sleep(interval)
