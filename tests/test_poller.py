"""Tests for polling a job until it finishes."""

from unittest.mock import MagicMock

from crmsync.cli.poller import poll_until_terminal
from crmsync.sync.checkpoint import Checkpoint
from crmsync.sync.job import JobStatus, SyncJob


def _job(status, done=0, total=None, error=None):
    return SyncJob(
        id="job-1",
        user_id="user-1",
        job_type="google_contacts_sync",
        status=status,
        checkpoint=Checkpoint.new(page_size=200),
        progress_done=done,
        progress_total_estimate=total,
        error_message=error,
    )


class TestPollUntilTerminal:
    """Tests for poll_until_terminal."""

    def test_returns_terminal_job_immediately(self):
        sleep = MagicMock()
        fetch = MagicMock(return_value=_job(JobStatus.COMPLETED, done=5))

        job = poll_until_terminal(fetch, sleep=sleep)

        assert job.status == JobStatus.COMPLETED
        fetch.assert_called_once()
        sleep.assert_not_called()

    def test_polls_until_terminal(self):
        snapshots = [
            _job(JobStatus.QUEUED),
            _job(JobStatus.RUNNING, done=200, total=450),
            _job(JobStatus.RUNNING, done=400, total=450),
            _job(JobStatus.FAILED, done=400, total=450, error="Google API error: 500"),
        ]
        sleep = MagicMock()

        job = poll_until_terminal(
            MagicMock(side_effect=snapshots), interval=0.5, sleep=sleep
        )

        assert job.status == JobStatus.FAILED
        assert job.error_message == "Google API error: 500"
        assert sleep.call_count == 3
        sleep.assert_called_with(0.5)

    def test_on_update_skips_unchanged_snapshots(self):
        """Repeated reads of the same progress are reported once."""
        snapshots = [
            _job(JobStatus.QUEUED),
            _job(JobStatus.QUEUED),
            _job(JobStatus.RUNNING, done=10),
            _job(JobStatus.RUNNING, done=10),
            _job(JobStatus.COMPLETED, done=12),
        ]
        seen = []

        poll_until_terminal(
            MagicMock(side_effect=snapshots),
            on_update=lambda job: seen.append((job.status, job.progress_done)),
            sleep=MagicMock(),
        )

        assert seen == [
            (JobStatus.QUEUED, 0),
            (JobStatus.RUNNING, 10),
            (JobStatus.COMPLETED, 12),
        ]

    def test_total_estimate_change_is_an_update(self):
        snapshots = [
            _job(JobStatus.RUNNING, done=10),
            _job(JobStatus.RUNNING, done=10, total=30),
            _job(JobStatus.CANCELED, done=10, total=30),
        ]
        on_update = MagicMock()

        poll_until_terminal(MagicMock(side_effect=snapshots), on_update, sleep=MagicMock())

        assert on_update.call_count == 3

    def test_max_polls(self):
        fetch = MagicMock(return_value=_job(JobStatus.RUNNING, done=3))
        sleep = MagicMock()

        job = poll_until_terminal(fetch, max_polls=3, sleep=sleep)

        assert job.status == JobStatus.RUNNING
        assert fetch.call_count == 3
        assert sleep.call_count == 2
