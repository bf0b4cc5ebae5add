"""
crmsync.sync - Sync domain

Job model, checkpoint format and external contact parsing. The worker and
job control live in crmsync.sync.worker and crmsync.sync.control.
"""

from crmsync.sync.checkpoint import Checkpoint, CheckpointError
from crmsync.sync.contact import ExternalContact
from crmsync.sync.job import (
    JOB_TYPE_GOOGLE_CONTACTS,
    EventType,
    JobStatus,
    SyncJob,
    SyncMode,
)

__all__ = [
    "JOB_TYPE_GOOGLE_CONTACTS",
    "Checkpoint",
    "CheckpointError",
    "EventType",
    "ExternalContact",
    "JobStatus",
    "SyncJob",
    "SyncMode",
]
