"""
Wiring of the storage, job control and worker from runtime settings.

The CLI and the HTTP server build their collaborators through here so both
surfaces share one database layout and one worker configuration.
"""

import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional

from crmsync.api.people_api import PeopleAPI
from crmsync.auth.google_auth import (
    GoogleTokenRefresher,
    TokenManager,
    load_client_config,
)
from crmsync.config.settings import Settings
from crmsync.storage.contacts import ContactRepository
from crmsync.storage.db import SyncDatabase
from crmsync.storage.jobs import JobLedger
from crmsync.storage.tokens import TokenStore
from crmsync.sync.control import JobControl
from crmsync.sync.reconcile import ContactReconciler
from crmsync.sync.worker import SyncWorker

logger = logging.getLogger(__name__)


@dataclass
class Services:
    """Long-lived collaborators sharing one database."""

    settings: Settings
    db: SyncDatabase
    token_store: TokenStore
    contacts: ContactRepository
    ledger: JobLedger
    control: JobControl
    _worker: Optional[SyncWorker] = field(default=None, repr=False)

    def build_worker(
        self,
        people_api: Optional[PeopleAPI] = None,
        refresher: Optional[GoogleTokenRefresher] = None,
    ) -> SyncWorker:
        """
        Create a worker from the settings.

        Raises:
            AuthenticationError: If no OAuth client is configured and no
                refresher is given
        """
        settings = self.settings
        if refresher is None:
            client = load_client_config(
                settings.config_dir,
                client_id=settings.google_client_id,
                client_secret=settings.google_client_secret,
                token_uri=settings.google_token_uri,
            )
            refresher = GoogleTokenRefresher(client)

        return SyncWorker(
            ledger=self.ledger,
            token_manager=TokenManager(
                self.token_store, refresher, expiry_buffer=settings.token_expiry_buffer
            ),
            people_api=people_api
            or PeopleAPI(page_size=settings.page_size, timeout=settings.api_timeout),
            reconciler=ContactReconciler(self.contacts),
            max_pages_per_tick=settings.max_pages_per_tick,
            lease_seconds=settings.lease_seconds,
        )

    @property
    def worker(self) -> SyncWorker:
        """Worker built on first use."""
        if self._worker is None:
            self._worker = self.build_worker()
        return self._worker

    @worker.setter
    def worker(self, worker: SyncWorker) -> None:
        self._worker = worker

    def close(self) -> None:
        self.db.close()


def build_services(settings: Settings, db: Optional[SyncDatabase] = None) -> Services:
    """
    Open (and create if needed) the database and build the services.

    Args:
        settings: Runtime settings
        db: Existing database to use instead of settings.db_path
    """
    if db is None:
        if settings.db_path != ":memory:":
            Path(settings.db_path).parent.mkdir(parents=True, exist_ok=True)
        db = SyncDatabase(settings.db_path)
    db.initialize()
    logger.debug(f"Using database {db.db_path}")

    token_store = TokenStore(db)
    ledger = JobLedger(db)
    return Services(
        settings=settings,
        db=db,
        token_store=token_store,
        contacts=ContactRepository(db),
        ledger=ledger,
        control=JobControl(ledger, token_store, page_size=settings.page_size),
    )
