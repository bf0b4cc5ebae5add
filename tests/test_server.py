"""
Tests for the HTTP surface.

Runs the FastAPI app through TestClient against a file database in a
temporary directory, with the worker wired to a scripted People API.
"""

import os
from datetime import timedelta
from unittest.mock import patch

import pytest
from fastapi.testclient import TestClient

from conftest import FakePeopleAPI, FakeRefresher, make_person
from crmsync.config.settings import Settings
from crmsync.server import create_app
from crmsync.services import build_services
from crmsync.utils.timeutil import utcnow

USER = {"X-User-Id": "user-1"}


@pytest.fixture
def services(tmp_path):
    services = build_services(Settings(config_dir=tmp_path))
    yield services
    services.close()


@pytest.fixture
def client(services):
    return TestClient(create_app(services))


@pytest.fixture
def connected(services):
    services.token_store.connect(
        "user-1", "refresh-1", access_token="access-valid",
        expiry=utcnow() + timedelta(hours=1),
    )
    return "user-1"


def _use_fake_worker(services, pages):
    api = FakePeopleAPI(pages)
    services.worker = services.build_worker(people_api=api, refresher=FakeRefresher())
    return api


class TestAuthHeader:
    """Requests without a caller are rejected."""

    @pytest.mark.parametrize(
        "method,path",
        [("post", "/sync/start"), ("post", "/sync/cancel"), ("get", "/sync/status")],
    )
    def test_missing_user(self, client, method, path):
        response = getattr(client, method)(path)
        assert response.status_code == 401
        assert response.json() == {"error": "Unauthorized"}

    def test_health_needs_no_user(self, client):
        response = client.get("/health")
        assert response.status_code == 200
        assert response.json() == {"status": "ok"}


class TestStart:
    """Tests for POST /sync/start."""

    def test_start_queues_job(self, client, connected):
        response = client.post("/sync/start", json={"sync_mode": "phone_only"}, headers=USER)

        assert response.status_code == 200
        data = response.json()
        assert data["status"] == "queued"
        assert data["message"] == "Sync job queued"
        assert data["job_id"]

    def test_start_without_body(self, client, services, connected):
        response = client.post("/sync/start", headers=USER)

        assert response.status_code == 200
        job = services.ledger.get_job(response.json()["job_id"])
        assert job.job_params == {"sync_mode": "all"}

    def test_second_start_returns_same_job(self, client, connected):
        first = client.post("/sync/start", json={}, headers=USER).json()
        second = client.post("/sync/start", json={}, headers=USER).json()

        assert second["job_id"] == first["job_id"]
        assert second["message"] == "Sync already in progress"

    def test_not_connected(self, client):
        response = client.post("/sync/start", json={}, headers=USER)

        assert response.status_code == 400
        assert response.json() == {
            "error": "Google Contacts not connected. Please connect in Settings first."
        }

    def test_invalid_mode(self, client, connected):
        response = client.post("/sync/start", json={"sync_mode": "bogus"}, headers=USER)

        assert response.status_code == 400
        assert "Invalid sync_mode" in response.json()["error"]


class TestCancel:
    """Tests for POST /sync/cancel."""

    def test_cancel(self, client, connected):
        job_id = client.post("/sync/start", json={}, headers=USER).json()["job_id"]

        response = client.post("/sync/cancel", json={"job_id": job_id}, headers=USER)

        assert response.status_code == 200
        assert response.json()["status"] == "canceled"

    def test_cancel_requires_job_id(self, client, connected):
        response = client.post("/sync/cancel", json={}, headers=USER)
        assert response.status_code == 400
        assert response.json() == {"error": "job_id is required"}

    def test_cancel_terminal_job(self, client, connected):
        job_id = client.post("/sync/start", json={}, headers=USER).json()["job_id"]
        client.post("/sync/cancel", json={"job_id": job_id}, headers=USER)

        response = client.post("/sync/cancel", json={"job_id": job_id}, headers=USER)

        assert response.status_code == 404
        assert response.json() == {"error": "Job not found or cannot be canceled"}

    def test_cancel_other_users_job(self, client, connected):
        job_id = client.post("/sync/start", json={}, headers=USER).json()["job_id"]

        response = client.post(
            "/sync/cancel", json={"job_id": job_id}, headers={"X-User-Id": "intruder"}
        )

        assert response.status_code == 404


class TestStatus:
    """Tests for GET and POST /sync/status."""

    def test_get_status(self, client, connected):
        job_id = client.post("/sync/start", json={}, headers=USER).json()["job_id"]

        response = client.get("/sync/status", params={"job_id": job_id}, headers=USER)

        assert response.status_code == 200
        data = response.json()
        assert data["job_id"] == job_id
        assert data["status"] == "queued"
        assert data["progress_done"] == 0
        assert data["progress_total_estimate"] is None
        assert data["error_message"] is None
        assert data["checkpoint"]["version"] == 1

    def test_post_status(self, client, connected):
        job_id = client.post("/sync/start", json={}, headers=USER).json()["job_id"]

        response = client.post("/sync/status", json={"job_id": job_id}, headers=USER)

        assert response.json()["job_id"] == job_id

    def test_status_requires_job_id(self, client, connected):
        response = client.get("/sync/status", headers=USER)
        assert response.status_code == 400

    def test_status_unknown_job(self, client, connected):
        response = client.get("/sync/status", params={"job_id": "missing"}, headers=USER)
        assert response.status_code == 404
        assert response.json() == {"error": "Job not found"}

    def test_status_other_users_job(self, client, connected):
        job_id = client.post("/sync/start", json={}, headers=USER).json()["job_id"]

        response = client.get(
            "/sync/status", params={"job_id": job_id}, headers={"X-User-Id": "intruder"}
        )

        assert response.status_code == 404


class TestTick:
    """Tests for POST /sync/tick."""

    def test_idle_tick(self, client, services):
        _use_fake_worker(services, [[]])

        response = client.post("/sync/tick")

        assert response.status_code == 200
        assert response.json()["outcome"] == "idle"

    def test_tick_drives_job_to_completion(self, client, services, connected):
        api = _use_fake_worker(
            services,
            [[make_person("c1", "Ada")], [make_person("c2", "Grace")]],
        )
        job_id = client.post("/sync/start", json={}, headers=USER).json()["job_id"]

        tick = client.post("/sync/tick").json()
        status = client.get("/sync/status", params={"job_id": job_id}, headers=USER).json()

        assert tick["outcome"] == "completed"
        assert tick["job_id"] == job_id
        assert status["status"] == "completed"
        assert status["progress_done"] == 2
        assert status["finished_at"] is not None
        assert len(api.calls) == 2

    def test_tick_without_oauth_client(self, client):
        with patch.dict(os.environ, {}, clear=True):
            response = client.post("/sync/tick")

        assert response.status_code == 503
        assert "not configured" in response.json()["error"]
