"""
Reconciliation of one page of external records into the contact store.
"""

import logging
from dataclasses import dataclass
from typing import Any

from crmsync.storage.contacts import ContactRepository
from crmsync.sync.contact import ExternalContact
from crmsync.sync.job import SOURCE_GOOGLE, SyncMode

logger = logging.getLogger(__name__)


@dataclass
class BatchStats:
    """
    Outcome counts for one page.

    received is every raw record on the page; created + updated is what
    counts towards job progress.
    """

    received: int = 0
    created: int = 0
    updated: int = 0
    skipped: int = 0  # no display name
    filtered: int = 0  # excluded by the job's sync mode
    errors: int = 0  # unparseable or failed to write

    @property
    def processed(self) -> int:
        return self.created + self.updated

    def summary(self) -> str:
        return (
            f"{self.processed}/{self.received} imported "
            f"({self.created} created, {self.updated} updated, "
            f"{self.skipped} skipped, {self.filtered} filtered, "
            f"{self.errors} errors)"
        )


class ContactReconciler:
    """
    Applies external records to the contact repository.

    A bad record never aborts the page: it is logged and counted.

    Usage:
        reconciler = ContactReconciler(ContactRepository(db))
        stats = reconciler.apply_batch('user-1', page.records, SyncMode.ALL)
    """

    def __init__(self, repository: ContactRepository, source: str = SOURCE_GOOGLE):
        self.repository = repository
        self.source = source

    def apply_batch(
        self,
        user_id: str,
        records: list[Any],
        sync_mode: SyncMode = SyncMode.ALL,
    ) -> BatchStats:
        """
        Upsert every importable record of a page.

        Args:
            user_id: Owner of the contact store
            records: Raw person resources from the API
            sync_mode: Import filter captured in the job parameters

        Returns:
            BatchStats for the page
        """
        stats = BatchStats(received=len(records))

        for person in records:
            try:
                contact = ExternalContact.from_api_response(person)
            except (ValueError, TypeError, AttributeError, KeyError) as e:
                logger.warning(f"Failed to parse contact: {e}")
                stats.errors += 1
                continue

            if not contact.is_valid():
                logger.debug(f"Skipping {contact.resource_name}: no display name")
                stats.skipped += 1
                continue

            if not contact.matches_sync_mode(sync_mode):
                stats.filtered += 1
                continue

            try:
                outcome = self.repository.upsert_by_source_id(
                    user_id, contact, source=self.source
                )
            except Exception as e:
                logger.warning(f"Failed to import {contact.resource_name}: {e}")
                stats.errors += 1
                continue

            if outcome.created:
                stats.created += 1
            else:
                stats.updated += 1

        logger.debug(f"Batch for {user_id}: {stats.summary()}")
        return stats
