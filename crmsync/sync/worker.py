"""
Sync worker: one bounded unit of import work per tick.

Each tick claims at most one queued or running job, makes sure the user has a
usable access token, pulls up to max_pages_per_tick pages from the People
API, reconciles them into the contact store and persists the checkpoint after
every page. A job that is canceled while a tick is in flight is noticed at the
next checkpoint write, after which the tick stops without touching the job.
"""

import logging
import os
import socket
import uuid
from dataclasses import asdict, dataclass
from enum import Enum
from typing import Any, Optional

from crmsync.api.people_api import PeopleAPI, PeopleAPIError
from crmsync.auth.google_auth import (
    AuthenticationError,
    ReauthorizationRequiredError,
    TokenManager,
)
from crmsync.storage.jobs import DEFAULT_LEASE_SECONDS, JobLedger
from crmsync.sync.checkpoint import Checkpoint, CheckpointError
from crmsync.sync.job import JobStatus, SyncJob
from crmsync.sync.reconcile import ContactReconciler

# Pages pulled per tick before yielding
DEFAULT_MAX_PAGES_PER_TICK = 2

# Failure reasons recorded on the job
NOT_CONNECTED_MESSAGE = "Google Contacts not connected"
REFRESH_FAILED_MESSAGE = (
    "Failed to refresh Google token. Please reconnect Google Contacts."
)
AUTH_EXPIRED_MESSAGE = (
    "Google authentication expired. Please reconnect Google Contacts."
)
REFRESH_ERROR_MESSAGE = "Token refresh failed: {detail}"
API_ERROR_MESSAGE = "Google API error: {detail}"
UNREADABLE_CHECKPOINT_MESSAGE = "Unreadable checkpoint: {detail}"

logger = logging.getLogger(__name__)


class TickOutcome(str, Enum):
    """What a tick did."""

    IDLE = "idle"  # nothing to claim
    PROGRESSED = "progressed"  # pages imported, more remain
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELED = "canceled"  # canceled while the tick held the job


@dataclass
class TickResult:
    """Summary of one tick."""

    outcome: TickOutcome
    job_id: Optional[str] = None
    pages_processed: int = 0
    records_processed: int = 0
    message: Optional[str] = None

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data["outcome"] = self.outcome.value
        return data


def default_worker_id() -> str:
    """Identify this process in lease tokens."""
    return f"{socket.gethostname()}:{os.getpid()}"


class SyncWorker:
    """
    Stateless tick executor.

    Usage:
        worker = SyncWorker(ledger, token_manager, PeopleAPI(), reconciler)
        result = worker.tick()
        if result.outcome == TickOutcome.IDLE:
            ...
    """

    def __init__(
        self,
        ledger: JobLedger,
        token_manager: TokenManager,
        people_api: PeopleAPI,
        reconciler: ContactReconciler,
        max_pages_per_tick: int = DEFAULT_MAX_PAGES_PER_TICK,
        lease_seconds: int = DEFAULT_LEASE_SECONDS,
        worker_id: Optional[str] = None,
    ):
        """
        Initialize the worker.

        Args:
            ledger: Job ledger
            token_manager: Supplies access tokens, refreshing when needed
            people_api: External page reader
            reconciler: Applies pages to the contact store
            max_pages_per_tick: Pages fetched per tick at most
            lease_seconds: Lease length for a claimed job; must exceed the
                           worst-case duration of one tick
            worker_id: Prefix for lease tokens (default host:pid)
        """
        if max_pages_per_tick < 1:
            raise ValueError("max_pages_per_tick must be at least 1")
        self.ledger = ledger
        self.token_manager = token_manager
        self.people_api = people_api
        self.reconciler = reconciler
        self.max_pages_per_tick = max_pages_per_tick
        self.lease_seconds = lease_seconds
        self.worker_id = worker_id or default_worker_id()

    def tick(self) -> TickResult:
        """
        Run one tick.

        Never raises for job-level problems: they end up on the job as a
        failure and in the returned TickResult. The lease taken by the tick
        is always released.
        """
        owner = f"{self.worker_id}:{uuid.uuid4().hex[:8]}"
        job_id = self.ledger.claim_next_id(owner, lease_seconds=self.lease_seconds)
        if job_id is None:
            logger.debug("No sync jobs to process")
            return TickResult(TickOutcome.IDLE, message="No jobs to process")

        try:
            job = self.ledger.get_job(job_id)
            if job is None:
                return TickResult(TickOutcome.IDLE, message="Claimed job disappeared")
            logger.info(
                f"Processing job {job.id} for user {job.user_id} ({job.status.value})"
            )
            return self._process(job, owner)
        except CheckpointError as e:
            logger.error(f"Job {job_id} has an unreadable checkpoint: {e}")
            return self._fail(
                job_id, owner, UNREADABLE_CHECKPOINT_MESSAGE.format(detail=e),
                checkpoint=Checkpoint.new(),
            )
        except Exception as e:
            logger.exception(f"Unexpected error while processing job {job_id}")
            return self._fail(job_id, owner, str(e) or type(e).__name__)
        finally:
            self.ledger.release(job_id, owner)

    # =========================================================================
    # Tick steps
    # =========================================================================

    def _process(self, job: SyncJob, owner: str) -> TickResult:
        if job.status == JobStatus.QUEUED:
            if not self.ledger.mark_running(job.id, owner):
                return self._stopped(job.id)
            logger.info(f"Job {job.id} started")

        user_id = job.user_id
        if not self.token_manager.is_connected(user_id):
            return self._fail(job.id, owner, NOT_CONNECTED_MESSAGE)

        try:
            access_token = self.token_manager.ensure_access_token(user_id)
        except ReauthorizationRequiredError as e:
            logger.warning(f"Token refresh rejected for {user_id}: {e}")
            return self._fail(job.id, owner, REFRESH_FAILED_MESSAGE)
        except AuthenticationError as e:
            logger.warning(f"Token refresh failed for {user_id}: {e}")
            return self._fail(
                job.id, owner, REFRESH_ERROR_MESSAGE.format(detail=e)
            )

        checkpoint = job.checkpoint
        total_processed = job.progress_done
        total_estimate = job.progress_total_estimate
        records_this_tick = 0

        for page_number in range(1, self.max_pages_per_tick + 1):
            logger.debug(
                f"Fetching page {page_number} for job {job.id} "
                f"(page_token={'present' if checkpoint.next_page_token else 'none'})"
            )
            try:
                page = self.people_api.fetch_page(
                    access_token,
                    page_token=checkpoint.next_page_token,
                    page_size=checkpoint.page_size,
                )
            except ReauthorizationRequiredError:
                return self._fail(
                    job.id, owner, AUTH_EXPIRED_MESSAGE, page_number - 1,
                    records_this_tick,
                )
            except PeopleAPIError as e:
                detail = e.status_code if e.status_code is not None else e
                return self._fail(
                    job.id, owner, API_ERROR_MESSAGE.format(detail=detail),
                    page_number - 1, records_this_tick,
                )

            stats = self.reconciler.apply_batch(user_id, page.records, job.sync_mode)
            total_processed += stats.processed
            records_this_tick += stats.processed
            if page.total_estimate is not None:
                total_estimate = page.total_estimate
            checkpoint = checkpoint.advance(page.next_page_token, page.last_external_id)

            saved = self.ledger.save_progress(
                job.id,
                owner,
                checkpoint,
                progress_done=total_processed,
                progress_total_estimate=total_estimate,
                batch_payload={
                    "page": page_number,
                    "contacts_in_batch": stats.received,
                    "contacts_processed": stats.processed,
                    "created": stats.created,
                    "updated": stats.updated,
                    "skipped": stats.skipped,
                    "filtered": stats.filtered,
                    "errors": stats.errors,
                    "total_processed": total_processed,
                },
            )
            if not saved:
                logger.info(f"Job {job.id} is no longer held by this tick; stopping")
                return self._stopped(job.id, page_number, records_this_tick)

            logger.info(f"Job {job.id} page {page_number}: {stats.summary()}")

            if page.is_last:
                if not self.ledger.complete(job.id, owner, total_processed):
                    return self._stopped(job.id, page_number, records_this_tick)
                self.token_manager.token_store.mark_synced(user_id)
                logger.info(
                    f"Sync completed for job {job.id}: {total_processed} contacts"
                )
                return TickResult(
                    TickOutcome.COMPLETED,
                    job_id=job.id,
                    pages_processed=page_number,
                    records_processed=records_this_tick,
                    message=f"Sync completed ({total_processed} contacts)",
                )

        logger.info(
            f"Processed {self.max_pages_per_tick} pages for job {job.id}, "
            f"total contacts: {total_processed}"
        )
        return TickResult(
            TickOutcome.PROGRESSED,
            job_id=job.id,
            pages_processed=self.max_pages_per_tick,
            records_processed=records_this_tick,
            message="Batch processed, more to do",
        )

    def _fail(
        self,
        job_id: str,
        owner: str,
        message: str,
        pages: int = 0,
        records: int = 0,
        checkpoint: Optional[Checkpoint] = None,
    ) -> TickResult:
        if not self.ledger.fail(job_id, message, owner, checkpoint=checkpoint):
            return self._stopped(job_id, pages, records)
        logger.error(f"Job {job_id} failed: {message}")
        return TickResult(
            TickOutcome.FAILED,
            job_id=job_id,
            pages_processed=pages,
            records_processed=records,
            message=message,
        )

    def _stopped(self, job_id: str, pages: int = 0, records: int = 0) -> TickResult:
        """Result for a tick that lost the job to a cancel or another worker."""
        current = self.ledger.get_job(job_id)
        if current is not None and current.status == JobStatus.CANCELED:
            return TickResult(
                TickOutcome.CANCELED,
                job_id=job_id,
                pages_processed=pages,
                records_processed=records,
                message="Job was canceled",
            )
        status = current.status.value if current else "missing"
        logger.warning(f"Lost lease on job {job_id} (status={status})")
        return TickResult(
            TickOutcome.PROGRESSED,
            job_id=job_id,
            pages_processed=pages,
            records_processed=records,
            message="Job is held by another worker",
        )
