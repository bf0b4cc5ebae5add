"""
Shared fixtures: an in-memory database, a scripted People API and a fake
token refresher.
"""

from datetime import timedelta
from typing import Any, Optional

import pytest

from crmsync.api.people_api import Page
from crmsync.auth.google_auth import RefreshedToken, TokenManager
from crmsync.storage.contacts import ContactRepository
from crmsync.storage.db import SyncDatabase
from crmsync.storage.jobs import JobLedger
from crmsync.storage.tokens import TokenStore
from crmsync.sync.control import JobControl
from crmsync.sync.reconcile import ContactReconciler
from crmsync.sync.worker import SyncWorker
from crmsync.utils.timeutil import utcnow


def make_person(
    resource_id: str,
    name: Optional[str] = None,
    phone: Optional[str] = None,
    email: Optional[str] = None,
    etag: str = "etag-1",
) -> dict[str, Any]:
    """Build a People API person resource."""
    person: dict[str, Any] = {
        "resourceName": f"people/{resource_id}",
        "etag": etag,
    }
    if name is not None:
        person["names"] = [{"displayName": name}]
    if phone:
        person["phoneNumbers"] = [{"value": phone, "type": "mobile"}]
    if email:
        person["emailAddresses"] = [{"value": email, "type": "home"}]
    return person


class FakePeopleAPI:
    """
    Serves a fixed list of pages.

    Page i is requested with token "page-i" (page 0 with no token). Errors
    can be scripted per call number (1-based).
    """

    def __init__(self, pages: list[list[dict[str, Any]]], total: Optional[int] = None):
        self.pages = pages
        self.total = total
        self.calls: list[dict[str, Any]] = []
        self.errors: dict[int, Exception] = {}
        self.before_return = None

    def fetch_page(
        self,
        access_token: str,
        page_token: Optional[str] = None,
        page_size: Optional[int] = None,
    ) -> Page:
        self.calls.append(
            {"access_token": access_token, "page_token": page_token, "page_size": page_size}
        )
        error = self.errors.get(len(self.calls))
        if error is not None:
            raise error

        index = int(page_token.split("-")[1]) if page_token else 0
        next_token = f"page-{index + 1}" if index + 1 < len(self.pages) else None
        page = Page(
            records=self.pages[index],
            next_page_token=next_token,
            total_estimate=self.total,
        )
        if self.before_return is not None:
            self.before_return(len(self.calls))
        return page

    @property
    def page_tokens(self) -> list[Optional[str]]:
        return [call["page_token"] for call in self.calls]


class FakeRefresher:
    """Hands out numbered access tokens, or raises a scripted error."""

    def __init__(self, error: Optional[Exception] = None, expires_in: int = 3600):
        self.error = error
        self.expires_in = expires_in
        self.calls: list[str] = []

    def refresh_access_token(self, refresh_token: str) -> RefreshedToken:
        self.calls.append(refresh_token)
        if self.error is not None:
            raise self.error
        return RefreshedToken(
            access_token=f"access-{len(self.calls)}", expires_in=self.expires_in
        )


@pytest.fixture
def db():
    database = SyncDatabase(":memory:")
    database.initialize()
    yield database
    database.close()


@pytest.fixture
def token_store(db):
    return TokenStore(db)


@pytest.fixture
def contacts(db):
    return ContactRepository(db)


@pytest.fixture
def ledger(db):
    return JobLedger(db)


@pytest.fixture
def control(ledger, token_store):
    return JobControl(ledger, token_store)


@pytest.fixture
def connected_user(token_store):
    """A user with a valid access token that needs no refresh."""
    token_store.connect(
        "user-1",
        refresh_token="refresh-1",
        access_token="access-valid",
        expiry=utcnow() + timedelta(hours=1),
    )
    return "user-1"


@pytest.fixture
def refresher():
    return FakeRefresher()


@pytest.fixture
def make_worker(ledger, token_store, contacts, refresher):
    """Factory for a worker around a fake API."""

    def _make(
        api: FakePeopleAPI,
        max_pages_per_tick: int = 2,
        token_refresher: Optional[FakeRefresher] = None,
    ) -> SyncWorker:
        return SyncWorker(
            ledger=ledger,
            token_manager=TokenManager(token_store, token_refresher or refresher),
            people_api=api,
            reconciler=ContactReconciler(contacts),
            max_pages_per_tick=max_pages_per_tick,
            worker_id="test-worker",
        )

    return _make
