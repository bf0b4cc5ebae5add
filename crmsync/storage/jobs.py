"""
Job ledger for sync jobs and their event log.

Every status change is a conditional UPDATE on the current status, so a
terminal job can never be written again and two workers can never both
advance the same job. Worker writes are additionally guarded by the lease
acquired when the job was claimed.
"""

from __future__ import annotations

import json
import logging
import sqlite3
import uuid
from collections.abc import Callable
from datetime import datetime, timedelta
from typing import Any, Optional

from crmsync.storage.db import SyncDatabase
from crmsync.sync.checkpoint import Checkpoint, CheckpointError
from crmsync.sync.job import (
    JOB_TYPE_GOOGLE_CONTACTS,
    EventType,
    JobStatus,
    SyncJob,
)
from crmsync.utils.timeutil import format_timestamp, parse_timestamp, utcnow

# Default lease length for a claimed job, in seconds
DEFAULT_LEASE_SECONDS = 300

# How many candidates a worker looks at before giving up on a claim
CLAIM_CANDIDATE_LIMIT = 10

_ACTIVE_SQL = "('queued', 'running')"

logger = logging.getLogger(__name__)


class JobLedger:
    """
    Durable store of sync jobs.

    Usage:
        ledger = JobLedger(db)
        job, created = ledger.create_job('user-1', {'sync_mode': 'all'})
        claimed = ledger.claim_next(owner='worker-abc')
    """

    def __init__(
        self,
        db: SyncDatabase,
        clock: Callable[[], datetime] = utcnow,
    ):
        """
        Initialize the ledger.

        Args:
            db: Initialized database
            clock: Source of the current UTC time
        """
        self.db = db
        self.clock = clock

    def _now(self) -> str:
        return format_timestamp(self.clock())  # type: ignore[return-value]

    # =========================================================================
    # Reads
    # =========================================================================

    def get_job(self, job_id: str) -> Optional[SyncJob]:
        with self.db.connection() as conn:
            row = conn.execute(
                "SELECT * FROM sync_jobs WHERE id = ?", (job_id,)
            ).fetchone()
        return _row_to_job(row) if row else None

    def get_job_for_user(self, user_id: str, job_id: str) -> Optional[SyncJob]:
        """Return the job only if it belongs to user_id."""
        with self.db.connection() as conn:
            row = conn.execute(
                "SELECT * FROM sync_jobs WHERE id = ? AND user_id = ?",
                (job_id, user_id),
            ).fetchone()
        return _row_to_job(row) if row else None

    def find_active_job(
        self, user_id: str, job_type: str = JOB_TYPE_GOOGLE_CONTACTS
    ) -> Optional[SyncJob]:
        """Return the user's queued or running job, if any."""
        with self.db.connection() as conn:
            row = conn.execute(
                f"""
                SELECT * FROM sync_jobs
                WHERE user_id = ? AND job_type = ? AND status IN {_ACTIVE_SQL}
                ORDER BY created_at DESC
                LIMIT 1
                """,  # nosec B608 - constant status list
                (user_id, job_type),
            ).fetchone()
        return _row_to_job(row) if row else None

    def list_jobs(self, user_id: str, limit: int = 20) -> list[SyncJob]:
        """Most recent jobs of a user, newest first."""
        with self.db.connection() as conn:
            cursor = conn.execute(
                """
                SELECT * FROM sync_jobs WHERE user_id = ?
                ORDER BY created_at DESC LIMIT ?
                """,
                (user_id, limit),
            )
            return [_row_to_job(row) for row in cursor.fetchall()]

    def list_events(self, job_id: str) -> list[dict[str, Any]]:
        """Event log of a job in insertion order."""
        with self.db.connection() as conn:
            cursor = conn.execute(
                """
                SELECT id, job_id, event_type, payload, created_at
                FROM sync_job_items WHERE job_id = ? ORDER BY id
                """,
                (job_id,),
            )
            events = []
            for row in cursor.fetchall():
                event = dict(row)
                event["payload"] = json.loads(event["payload"]) if event["payload"] else {}
                events.append(event)
            return events

    # =========================================================================
    # Enqueue / cancel (client side)
    # =========================================================================

    def create_job(
        self,
        user_id: str,
        job_params: dict[str, Any],
        checkpoint: Optional[Checkpoint] = None,
        job_type: str = JOB_TYPE_GOOGLE_CONTACTS,
    ) -> tuple[SyncJob, bool]:
        """
        Enqueue a job unless the user already has an active one.

        The partial unique index on (user_id, job_type) for active statuses
        makes this safe against concurrent callers: the loser of an insert
        race gets the winner's job back.

        Returns:
            Tuple of (job, created) where created is False when an existing
            active job was returned
        """
        existing = self.find_active_job(user_id, job_type)
        if existing is not None:
            return existing, False

        job_id = str(uuid.uuid4())
        checkpoint = checkpoint or Checkpoint.new()
        now = self._now()
        try:
            with self.db.connection() as conn:
                conn.execute(
                    """
                    INSERT INTO sync_jobs (
                        id, user_id, job_type, status, progress_done,
                        checkpoint, job_params, created_at, updated_at
                    ) VALUES (?, ?, ?, 'queued', 0, ?, ?, ?, ?)
                    """,
                    (
                        job_id,
                        user_id,
                        job_type,
                        json.dumps(checkpoint.to_dict()),
                        json.dumps(job_params),
                        now,
                        now,
                    ),
                )
        except sqlite3.IntegrityError:
            winner = self.find_active_job(user_id, job_type)
            if winner is None:
                raise
            logger.debug(f"Lost enqueue race for {user_id}; returning {winner.id}")
            return winner, False

        job = self.get_job(job_id)
        if job is None:
            raise RuntimeError(f"Job {job_id} vanished right after insert")
        return job, True

    def cancel(self, user_id: str, job_id: str) -> Optional[SyncJob]:
        """
        Move a caller-owned active job to canceled.

        Returns:
            The canceled job, or None if the job is not the caller's or is
            already terminal
        """
        now = self._now()
        with self.db.connection() as conn:
            cursor = conn.execute(
                f"""
                UPDATE sync_jobs
                SET status = 'canceled', finished_at = ?, updated_at = ?,
                    lease_owner = NULL, lease_expires_at = NULL
                WHERE id = ? AND user_id = ? AND status IN {_ACTIVE_SQL}
                """,  # nosec B608 - constant status list
                (now, now, job_id, user_id),
            )
            if cursor.rowcount == 0:
                return None
            self._append_event(
                conn,
                job_id,
                EventType.CANCELED,
                {"canceled_by": user_id, "canceled_at": now},
            )
        return self.get_job(job_id)

    # =========================================================================
    # Worker side
    # =========================================================================

    def claim_next(
        self,
        owner: str,
        lease_seconds: int = DEFAULT_LEASE_SECONDS,
        job_type: str = JOB_TYPE_GOOGLE_CONTACTS,
    ) -> Optional[SyncJob]:
        """
        Claim one eligible job for this worker and load it.

        Raises:
            CheckpointError: If the claimed job's checkpoint cannot be decoded;
                the lease stays with owner in that case
        """
        job_id = self.claim_next_id(owner, lease_seconds, job_type)
        return self.get_job(job_id) if job_id else None

    def claim_next_id(
        self,
        owner: str,
        lease_seconds: int = DEFAULT_LEASE_SECONDS,
        job_type: str = JOB_TYPE_GOOGLE_CONTACTS,
    ) -> Optional[str]:
        """
        Claim one eligible job for this worker without decoding it.

        Queued jobs are preferred over running ones, oldest first. A job whose
        lease is held by another live worker is skipped.

        Args:
            owner: Unique token of the claiming worker tick
            lease_seconds: How long the claim stays exclusive
            job_type: Job type to claim

        Returns:
            The claimed job id, or None if nothing is eligible
        """
        now = self._now()
        with self.db.connection() as conn:
            candidates = [
                row["id"]
                for row in conn.execute(
                    f"""
                    SELECT id FROM sync_jobs
                    WHERE job_type = ? AND status IN {_ACTIVE_SQL}
                      AND (lease_owner IS NULL OR lease_expires_at <= ?)
                    ORDER BY CASE status WHEN 'queued' THEN 0 ELSE 1 END,
                             created_at, id
                    LIMIT ?
                    """,  # nosec B608 - constant status list
                    (job_type, now, CLAIM_CANDIDATE_LIMIT),
                ).fetchall()
            ]

        for job_id in candidates:
            if self._try_claim(job_id, owner, lease_seconds):
                return job_id
            logger.debug(f"Job {job_id} was claimed by another worker")
        return None

    def _try_claim(self, job_id: str, owner: str, lease_seconds: int) -> bool:
        now_dt = self.clock()
        now = format_timestamp(now_dt)
        expires = format_timestamp(now_dt + timedelta(seconds=lease_seconds))
        with self.db.connection() as conn:
            cursor = conn.execute(
                f"""
                UPDATE sync_jobs
                SET lease_owner = ?, lease_expires_at = ?, updated_at = ?
                WHERE id = ? AND status IN {_ACTIVE_SQL}
                  AND (lease_owner IS NULL OR lease_expires_at <= ?)
                """,  # nosec B608 - constant status list
                (owner, expires, now, job_id, now),
            )
            return cursor.rowcount == 1

    def release(self, job_id: str, owner: str) -> None:
        """Give up the lease if this worker still holds it."""
        with self.db.connection() as conn:
            conn.execute(
                """
                UPDATE sync_jobs SET lease_owner = NULL, lease_expires_at = NULL
                WHERE id = ? AND lease_owner = ?
                """,
                (job_id, owner),
            )

    def mark_running(self, job_id: str, owner: str) -> bool:
        """
        Transition queued → running and log job_started.

        Returns:
            False if the job is no longer queued or the lease was lost
        """
        now = self._now()
        with self.db.connection() as conn:
            cursor = conn.execute(
                """
                UPDATE sync_jobs
                SET status = 'running', started_at = ?, updated_at = ?
                WHERE id = ? AND status = 'queued' AND lease_owner = ?
                """,
                (now, now, job_id, owner),
            )
            if cursor.rowcount == 0:
                return False
            self._append_event(
                conn, job_id, EventType.JOB_STARTED, {"started_at": now}
            )
            return True

    def save_progress(
        self,
        job_id: str,
        owner: str,
        checkpoint: Checkpoint,
        progress_done: int,
        progress_total_estimate: Optional[int],
        batch_payload: Optional[dict[str, Any]] = None,
    ) -> bool:
        """
        Persist checkpoint and counters after a page, in one write.

        The batch_completed event, when given, is written in the same
        transaction.

        Returns:
            False if the job stopped running (e.g. canceled) or the lease was
            lost; nothing is written in that case
        """
        now = self._now()
        with self.db.connection() as conn:
            cursor = conn.execute(
                """
                UPDATE sync_jobs
                SET checkpoint = ?, progress_done = MAX(progress_done, ?),
                    progress_total_estimate = ?, updated_at = ?
                WHERE id = ? AND status = 'running' AND lease_owner = ?
                """,
                (
                    json.dumps(checkpoint.to_dict()),
                    progress_done,
                    progress_total_estimate,
                    now,
                    job_id,
                    owner,
                ),
            )
            if cursor.rowcount == 0:
                return False
            if batch_payload is not None:
                self._append_event(
                    conn, job_id, EventType.BATCH_COMPLETED, batch_payload
                )
            return True

    def complete(self, job_id: str, owner: str, total_processed: int) -> bool:
        """
        Transition running → completed and log job_completed.

        Returns:
            False if the job stopped running or the lease was lost
        """
        now = self._now()
        with self.db.connection() as conn:
            cursor = conn.execute(
                """
                UPDATE sync_jobs
                SET status = 'completed', finished_at = ?, updated_at = ?,
                    lease_owner = NULL, lease_expires_at = NULL
                WHERE id = ? AND status = 'running' AND lease_owner = ?
                """,
                (now, now, job_id, owner),
            )
            if cursor.rowcount == 0:
                return False
            self._append_event(
                conn,
                job_id,
                EventType.JOB_COMPLETED,
                {"finished_at": now, "total_processed": total_processed},
            )
            return True

    def fail(
        self,
        job_id: str,
        error_message: str,
        owner: str,
        checkpoint: Optional[Checkpoint] = None,
    ) -> bool:
        """
        Transition an active job to failed and log an error event.

        Args:
            job_id: Job to fail
            error_message: Reason shown to the user
            owner: Lease token of the failing worker tick
            checkpoint: Replaces the stored checkpoint when given, e.g. one
                        that could not be decoded

        Returns:
            False if the job is already terminal or the lease was lost
        """
        now = self._now()
        with self.db.connection() as conn:
            cursor = conn.execute(
                f"""
                UPDATE sync_jobs
                SET status = 'failed', error_message = ?, finished_at = ?,
                    updated_at = ?, lease_owner = NULL, lease_expires_at = NULL,
                    checkpoint = COALESCE(?, checkpoint)
                WHERE id = ? AND status IN {_ACTIVE_SQL} AND lease_owner = ?
                """,  # nosec B608 - constant status list
                (
                    error_message,
                    now,
                    now,
                    json.dumps(checkpoint.to_dict()) if checkpoint else None,
                    job_id,
                    owner,
                ),
            )
            if cursor.rowcount == 0:
                return False
            self._append_event(
                conn,
                job_id,
                EventType.ERROR,
                {"error": error_message, "timestamp": now},
            )
            return True

    # =========================================================================
    # Event log
    # =========================================================================

    def append_event(
        self, job_id: str, event_type: EventType, payload: dict[str, Any]
    ) -> None:
        """Append an event outside of a status transition."""
        with self.db.connection() as conn:
            self._append_event(conn, job_id, event_type, payload)

    def _append_event(
        self,
        conn: sqlite3.Connection,
        job_id: str,
        event_type: EventType,
        payload: dict[str, Any],
    ) -> None:
        conn.execute(
            """
            INSERT INTO sync_job_items (job_id, event_type, payload, created_at)
            VALUES (?, ?, ?, ?)
            """,
            (job_id, event_type.value, json.dumps(payload), self._now()),
        )


def _row_to_job(row: sqlite3.Row) -> SyncJob:
    try:
        checkpoint_blob = json.loads(row["checkpoint"]) if row["checkpoint"] else None
    except json.JSONDecodeError as e:
        raise CheckpointError(f"Checkpoint is not valid JSON: {e}") from e
    params = json.loads(row["job_params"]) if row["job_params"] else {}
    return SyncJob(
        id=row["id"],
        user_id=row["user_id"],
        job_type=row["job_type"],
        status=JobStatus(row["status"]),
        checkpoint=Checkpoint.from_dict(checkpoint_blob),
        job_params=params,
        progress_done=row["progress_done"],
        progress_total_estimate=row["progress_total_estimate"],
        error_message=row["error_message"],
        started_at=parse_timestamp(row["started_at"]),
        finished_at=parse_timestamp(row["finished_at"]),
        created_at=parse_timestamp(row["created_at"]),
        updated_at=parse_timestamp(row["updated_at"]),
        lease_owner=row["lease_owner"],
        lease_expires_at=parse_timestamp(row["lease_expires_at"]),
    )
