"""
Tests for the CLI module.

Tests the command-line interface using Click's testing utilities. Commands
run against a database in a temporary config directory; services are
handed to the group through ctx.obj so tests can swap in a fake worker.
"""

import os
from unittest.mock import patch

import pytest
from click.testing import CliRunner

from conftest import FakePeopleAPI, FakeRefresher, make_person
from crmsync.cli import cli, get_config_dir, get_config_file
from crmsync.cli.poller import poll_until_terminal
from crmsync.config.settings import Settings
from crmsync.daemon import DaemonScheduler
from crmsync.services import build_services
from crmsync.sync.job import JobStatus


@pytest.fixture(autouse=True)
def no_logging_setup():
    with patch("crmsync.cli.main.setup_logging"):
        yield


@pytest.fixture
def services(tmp_path):
    services = build_services(Settings(config_dir=tmp_path))
    yield services
    services.close()


@pytest.fixture
def run(tmp_path, services):
    """Invoke the CLI with the temp config dir and the shared services."""
    runner = CliRunner()

    def _run(*args, **kwargs):
        return runner.invoke(
            cli,
            ["--config-dir", str(tmp_path), *args],
            obj={"services": services},
            **kwargs,
        )

    return _run


@pytest.fixture
def connected(run):
    result = run("connect", "--user", "alice", "--refresh-token", "refresh-1")
    assert result.exit_code == 0
    return "alice"


def _use_fake_worker(services, pages):
    api = FakePeopleAPI(pages)
    services.worker = services.build_worker(people_api=api, refresher=FakeRefresher())
    return api


class TestHelperFunctions:
    """Tests for CLI helper functions."""

    def test_get_config_dir_with_path(self, tmp_path):
        assert get_config_dir(str(tmp_path)) == tmp_path.resolve()

    def test_get_config_file_default(self, tmp_path):
        assert get_config_file(tmp_path, None) == tmp_path / "config.yaml"

    def test_get_config_file_explicit(self, tmp_path):
        assert get_config_file(tmp_path, "/etc/crm.yaml").name == "crm.yaml"


class TestCliGroup:
    """Tests for the main CLI group."""

    def test_cli_help(self):
        """Test that CLI shows help."""
        result = CliRunner().invoke(cli, ["--help"])
        assert result.exit_code == 0
        assert "Google Contacts import" in result.output

    def test_cli_version(self):
        result = CliRunner().invoke(cli, ["--version"])
        assert result.exit_code == 0
        assert "crmsync" in result.output

    def test_invalid_config_falls_back_to_defaults(self, run, tmp_path):
        """A broken config file is reported but does not stop the command."""
        (tmp_path / "config.yaml").write_text("page_size: many\n")

        result = run("status", "--user", "alice")

        assert result.exit_code == 0
        assert "Warning: Configuration error" in result.output
        assert "No sync jobs for alice." in result.output


class TestConnectCommands:
    """Tests for connect and disconnect."""

    def test_connect(self, run, services):
        result = run("connect", "--user", "alice", "--refresh-token", "refresh-1")

        assert result.exit_code == 0
        assert "Google Contacts connected for alice." in result.output
        state = services.token_store.get("alice")
        assert state.refresh_token == "refresh-1"
        assert state.access_token is None
        assert state.expiry is None

    def test_connect_with_access_token(self, run, services):
        result = run(
            "connect",
            "--user", "alice",
            "--refresh-token", "refresh-1",
            "--access-token", "access-1",
            "--expires-in", "3600",
        )

        assert result.exit_code == 0
        state = services.token_store.get("alice")
        assert state.access_token == "access-1"
        assert state.expiry is not None

    def test_user_from_environment(self, run, services):
        result = run("connect", "--refresh-token", "r", env={"CRMSYNC_USER": "bob"})

        assert result.exit_code == 0
        assert services.token_store.get("bob").is_connected

    def test_user_is_required(self, run):
        with patch.dict(os.environ, {}, clear=True):
            result = run("connect", "--refresh-token", "r")
        assert result.exit_code == 2

    def test_disconnect(self, run, services, connected):
        result = run("disconnect", "--user", connected)

        assert result.exit_code == 0
        assert "disconnected" in result.output
        state = services.token_store.get(connected)
        assert state is None or not state.is_connected

    def test_disconnect_unknown_user(self, run):
        result = run("disconnect", "--user", "nobody")
        assert result.exit_code == 0
        assert "nobody was not connected." in result.output


class TestStartCommand:
    """Tests for the start command."""

    def test_start(self, run, services, connected):
        result = run("start", "--user", connected, "--mode", "phone_only")

        assert result.exit_code == 0
        assert "Sync job queued." in result.output
        assert "Status:   queued" in result.output
        job = services.control.get_active(connected)
        assert job.job_params == {"sync_mode": "phone_only"}

    def test_start_twice(self, run, services, connected):
        run("start", "--user", connected)

        result = run("start", "--user", connected)

        assert result.exit_code == 0
        assert "Sync already in progress." in result.output
        assert len(services.ledger.list_jobs(connected)) == 1

    def test_start_not_connected(self, run):
        result = run("start", "--user", "alice")

        assert result.exit_code == 1
        assert "Please connect in Settings first" in result.output

    def test_start_invalid_mode(self, run, connected):
        result = run("start", "--user", connected, "--mode", "everything")
        assert result.exit_code == 2

    def test_start_verbose_shows_checkpoint(self, run, connected):
        result = run("--verbose", "start", "--user", connected)
        assert '"version": 1' in result.output

    def test_start_watch(self, run, services, connected):
        """--watch polls the job while the worker imports it."""
        _use_fake_worker(services, [[make_person("c1", "Ada")]])

        def tick_then_poll(fetch_status, **kwargs):
            services.worker.tick()
            return poll_until_terminal(fetch_status, max_polls=1, **kwargs)

        with patch(
            "crmsync.cli.main.poll_until_terminal", side_effect=tick_then_poll
        ) as poll:
            result = run("start", "--user", connected, "--watch", "--interval", "0.5")

        assert result.exit_code == 0
        assert poll.call_args.kwargs["interval"] == 0.5
        assert "[completed] 1 contacts" in result.output
        assert "Status:   completed" in result.output


class TestCancelCommand:
    """Tests for the cancel command."""

    def test_cancel(self, run, services, connected):
        run("start", "--user", connected)
        job = services.control.get_active(connected)

        result = run("cancel", "--user", connected, job.id)

        assert result.exit_code == 0
        assert f"Sync {job.id} canceled." in result.output
        assert services.ledger.get_job(job.id).status == JobStatus.CANCELED

    def test_cancel_unknown_job(self, run, connected):
        result = run("cancel", "--user", connected, "missing")

        assert result.exit_code == 1
        assert "Job not found or cannot be canceled" in result.output


class TestStatusCommand:
    """Tests for the status command."""

    def test_no_jobs_not_connected(self, run):
        result = run("status", "--user", "alice")

        assert result.exit_code == 0
        assert "No sync jobs for alice." in result.output
        assert "Not connected" in result.output

    def test_no_jobs_connected(self, run, connected):
        result = run("status", "--user", connected)
        assert "Not connected" not in result.output

    def test_active_job(self, run, services, connected):
        run("start", "--user", connected)
        job = services.control.get_active(connected)

        result = run("status", "--user", connected)

        assert result.exit_code == 0
        assert f"Job:      {job.id}" in result.output
        assert "Progress: 0 contacts" in result.output

    def test_most_recent_finished_job(self, run, services, connected):
        _use_fake_worker(services, [[make_person("c1", "Ada"), make_person("c2", "Grace")]])
        run("start", "--user", connected)
        run("tick")

        result = run("status", "--user", connected)

        assert "Status:   completed" in result.output
        assert "Progress: 2 contacts" in result.output
        assert "Last completed sync:" in result.output

    def test_unknown_job(self, run, connected):
        result = run("status", "--user", connected, "missing")

        assert result.exit_code == 1
        assert "Job not found" in result.output

    def test_other_users_job(self, run, services, connected):
        run("start", "--user", connected)
        job = services.control.get_active(connected)

        result = run("status", "--user", "mallory", job.id)

        assert result.exit_code == 1


class TestEventsCommand:
    """Tests for the events command."""

    def test_events_after_import(self, run, services, connected):
        _use_fake_worker(services, [[make_person("c1", "Ada")]])
        run("start", "--user", connected)
        job = services.control.get_active(connected)
        run("tick")

        result = run("events", "--user", connected, job.id)

        assert result.exit_code == 0
        assert "job_started" in result.output
        assert "batch_completed" in result.output
        assert "job_completed" in result.output

    def test_no_events(self, run, services, connected):
        run("start", "--user", connected)
        job = services.control.get_active(connected)

        result = run("events", "--user", connected, job.id)

        assert "No events recorded." in result.output

    def test_unknown_job(self, run, connected):
        result = run("events", "--user", connected, "missing")
        assert result.exit_code == 1


class TestTickCommand:
    """Tests for the tick command."""

    def test_idle(self, run, services):
        _use_fake_worker(services, [[]])

        result = run("tick")

        assert result.exit_code == 0
        assert "Tick: idle (No jobs to process)" in result.output

    def test_progress_then_complete(self, run, services, connected):
        pages = [[make_person(f"c{i}", f"Person {i}")] for i in range(3)]
        api = _use_fake_worker(services, pages)
        services.worker.max_pages_per_tick = 1
        run("start", "--user", connected)

        first = run("tick")
        rest = run("tick", "--count", "5")

        assert "Tick: progressed" in first.output
        assert "pages=1 records=1" in first.output
        assert "Tick: completed" in rest.output
        assert rest.output.count("Tick:") == 3
        assert len(api.calls) == 3

    def test_without_oauth_client(self, run):
        with patch.dict(os.environ, {}, clear=True):
            result = run("tick")

        assert result.exit_code == 1
        assert "not configured" in result.output


class TestRunCommand:
    """Tests for the run command."""

    def test_run_max_ticks(self, run, services):
        _use_fake_worker(services, [[]])

        with patch.object(DaemonScheduler, "_setup_signal_handlers"), patch.object(
            DaemonScheduler, "_restore_signal_handlers"
        ), patch.object(DaemonScheduler, "_sleep_interruptible", return_value=True):
            result = run("run", "--interval", "1s", "--max-ticks", "2")

        assert result.exit_code == 0
        assert "Starting scheduler with 1s interval" in result.output
        assert "Scheduler stopped after 2 ticks" in result.output

    def test_run_invalid_interval(self, run):
        result = run("run", "--interval", "soon")

        assert result.exit_code == 1
        assert "Invalid interval format" in result.output

    def test_run_refuses_second_instance(self, run, services, tmp_path):
        _use_fake_worker(services, [[]])
        (tmp_path / "daemon.pid").write_text(str(os.getpid()))

        with patch.object(DaemonScheduler, "_setup_signal_handlers"), patch.object(
            DaemonScheduler, "_restore_signal_handlers"
        ):
            result = run("run", "--max-ticks", "1")

        assert result.exit_code == 1
        assert "already running" in result.output

    def test_stop_without_scheduler(self, run):
        result = run("run", "--stop")

        assert result.exit_code == 0
        assert "No running scheduler found." in result.output

    def test_stop_sends_signal(self, run, tmp_path):
        with patch.object(DaemonScheduler, "stop_running_daemon", return_value=True) as stop:
            result = run("run", "--stop")

        assert "Stop signal sent." in result.output
        stop.assert_called_once_with(tmp_path.resolve() / "daemon.pid")


class TestInitConfigCommand:
    """Tests for the init-config command."""

    def test_creates_file(self, run, tmp_path):
        result = run("init-config")

        assert result.exit_code == 0
        assert "Configuration file created successfully!" in result.output
        assert (tmp_path / "config.yaml").exists()

    def test_refuses_overwrite(self, run, tmp_path):
        (tmp_path / "config.yaml").write_text("page_size: 10\n")

        result = run("init-config")

        assert result.exit_code == 1
        assert "already exists" in result.output
        assert (tmp_path / "config.yaml").read_text() == "page_size: 10\n"

    def test_force(self, run, tmp_path):
        (tmp_path / "config.yaml").write_text("page_size: 10\n")

        result = run("init-config", "--force")

        assert result.exit_code == 0
        assert "page_size: 10" not in (tmp_path / "config.yaml").read_text()
