"""
Sync job model.

Defines the job status state machine, the import filter modes, the event
types written to the job log and the SyncJob snapshot returned by the ledger.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any

from crmsync.sync.checkpoint import Checkpoint
from crmsync.utils.timeutil import format_timestamp

# Job type handled by the worker
JOB_TYPE_GOOGLE_CONTACTS = "google_contacts_sync"

# Source name recorded on contact links
SOURCE_GOOGLE = "google"


class JobStatus(str, Enum):
    """Lifecycle states of a sync job."""

    QUEUED = "queued"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELED = "canceled"

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_STATUSES

    @property
    def is_active(self) -> bool:
        return self in ACTIVE_STATUSES


ACTIVE_STATUSES = frozenset({JobStatus.QUEUED, JobStatus.RUNNING})
TERMINAL_STATUSES = frozenset(
    {JobStatus.COMPLETED, JobStatus.FAILED, JobStatus.CANCELED}
)


class SyncMode(str, Enum):
    """Which external contacts a job imports."""

    ALL = "all"  # Every named contact
    PHONE_ONLY = "phone_only"  # Contacts with at least one phone number
    PHONE_OR_EMAIL = "phone_or_email"  # Contacts with a phone or an email


VALID_SYNC_MODES = {mode.value for mode in SyncMode}


class EventType(str, Enum):
    """Event types appended to sync_job_items."""

    JOB_STARTED = "job_started"
    BATCH_COMPLETED = "batch_completed"
    JOB_COMPLETED = "job_completed"
    ERROR = "error"
    CANCELED = "canceled"


@dataclass
class SyncJob:
    """
    Snapshot of one sync_jobs row.

    Attributes:
        id: Opaque job identifier
        user_id: Owner of the job
        job_type: Job discriminator (always google_contacts_sync)
        status: Current lifecycle state
        progress_done: Records imported so far
        progress_total_estimate: Total reported by the source, if any
        error_message: Failure reason, set only when status is failed
        checkpoint: Resumable cursor state
        job_params: Parameters captured at enqueue time
    """

    id: str
    user_id: str
    job_type: str
    status: JobStatus
    checkpoint: Checkpoint
    job_params: dict[str, Any] = field(default_factory=dict)
    progress_done: int = 0
    progress_total_estimate: int | None = None
    error_message: str | None = None
    started_at: datetime | None = None
    finished_at: datetime | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None
    lease_owner: str | None = None
    lease_expires_at: datetime | None = None

    @property
    def is_terminal(self) -> bool:
        return self.status.is_terminal

    @property
    def sync_mode(self) -> SyncMode:
        """Import filter for this job; unknown values fall back to ALL."""
        value = self.job_params.get("sync_mode", SyncMode.ALL.value)
        try:
            return SyncMode(value)
        except ValueError:
            return SyncMode.ALL

    def to_status_payload(self) -> dict[str, Any]:
        """Projection returned to polling clients."""
        return {
            "job_id": self.id,
            "status": self.status.value,
            "progress_done": self.progress_done,
            "progress_total_estimate": self.progress_total_estimate,
            "error_message": self.error_message,
            "started_at": format_timestamp(self.started_at),
            "finished_at": format_timestamp(self.finished_at),
            "checkpoint": self.checkpoint.to_dict(),
            "created_at": format_timestamp(self.created_at),
        }
