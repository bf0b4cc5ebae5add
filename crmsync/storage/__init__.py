"""
crmsync.storage - Persistence layer

SQLite-backed token store, contact repository and job ledger.
"""

from crmsync.storage.contacts import (
    USER_AUTHORED_FIELDS,
    ContactRepository,
    UpsertOutcome,
)
from crmsync.storage.db import SyncDatabase
from crmsync.storage.jobs import DEFAULT_LEASE_SECONDS, JobLedger
from crmsync.storage.tokens import TokenState, TokenStore

__all__ = [
    "DEFAULT_LEASE_SECONDS",
    "USER_AUTHORED_FIELDS",
    "ContactRepository",
    "JobLedger",
    "SyncDatabase",
    "TokenState",
    "TokenStore",
    "UpsertOutcome",
]
