"""
Client-facing job control: start, cancel and status.

These operations never do import work themselves; they only touch the job
ledger. The worker picks queued jobs up on its next tick.
"""

import logging
from typing import Optional

from crmsync.storage.jobs import JobLedger
from crmsync.storage.tokens import TokenStore
from crmsync.sync.checkpoint import DEFAULT_PAGE_SIZE, Checkpoint
from crmsync.sync.job import (
    JOB_TYPE_GOOGLE_CONTACTS,
    VALID_SYNC_MODES,
    SyncJob,
    SyncMode,
)

logger = logging.getLogger(__name__)


class JobControlError(Exception):
    """Base class for job control failures."""

    pass


class JobNotFoundError(JobControlError):
    """Raised when a job does not exist or belongs to another user."""

    pass


class NotCancelableError(JobControlError):
    """Raised when a job cannot be canceled."""

    pass


class IntegrationNotConnectedError(JobControlError):
    """Raised when a sync is requested for a user without stored tokens."""

    pass


class JobControl:
    """
    Start, cancel and inspect sync jobs on behalf of a user.

    Usage:
        control = JobControl(ledger, token_store)
        job = control.start_sync('user-1', sync_mode='phone_only')
        job = control.get_status('user-1', job.id)
        control.cancel_sync('user-1', job.id)
    """

    def __init__(
        self,
        ledger: JobLedger,
        token_store: TokenStore,
        page_size: int = DEFAULT_PAGE_SIZE,
    ):
        self.ledger = ledger
        self.token_store = token_store
        self.page_size = page_size

    def start_sync(self, user_id: str, sync_mode: str = SyncMode.ALL.value) -> SyncJob:
        """
        Enqueue an import, or return the user's job already in flight.

        Args:
            user_id: Caller
            sync_mode: Import filter ("all", "phone_only" or "phone_or_email")

        Returns:
            The new queued job, or the existing queued/running job unchanged

        Raises:
            ValueError: If sync_mode is unknown
            IntegrationNotConnectedError: If the user has no refresh token
        """
        mode = sync_mode.value if isinstance(sync_mode, SyncMode) else sync_mode
        if mode not in VALID_SYNC_MODES:
            raise ValueError(
                f"Invalid sync_mode '{mode}'. "
                f"Must be one of: {', '.join(sorted(VALID_SYNC_MODES))}"
            )

        state = self.token_store.get(user_id)
        if state is None or not state.is_connected:
            raise IntegrationNotConnectedError(
                "Google Contacts not connected. Please connect in Settings first."
            )

        job, created = self.ledger.create_job(
            user_id,
            {"sync_mode": mode},
            checkpoint=Checkpoint.new(self.page_size),
            job_type=JOB_TYPE_GOOGLE_CONTACTS,
        )
        if created:
            logger.info(f"Queued sync job {job.id} for {user_id} (mode={mode})")
        else:
            logger.info(f"Sync already in progress for {user_id}: {job.id}")
        return job

    def cancel_sync(self, user_id: str, job_id: str) -> SyncJob:
        """
        Cancel the caller's queued or running job.

        Raises:
            NotCancelableError: If the job is unknown, foreign or already finished
        """
        job = self.ledger.cancel(user_id, job_id)
        if job is None:
            raise NotCancelableError("Job not found or cannot be canceled")
        logger.info(f"Canceled sync job {job_id} for {user_id}")
        return job

    def get_status(self, user_id: str, job_id: str) -> SyncJob:
        """
        Read the caller's job.

        Raises:
            JobNotFoundError: If the job is unknown or belongs to another user
        """
        job = self.ledger.get_job_for_user(user_id, job_id)
        if job is None:
            raise JobNotFoundError("Job not found")
        return job

    def get_active(self, user_id: str) -> Optional[SyncJob]:
        """The caller's queued or running job, if any."""
        return self.ledger.find_active_job(user_id, JOB_TYPE_GOOGLE_CONTACTS)
