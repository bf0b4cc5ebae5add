from typing import Any, Optional

from pydantic import BaseModel

from crmsync.sync.job import SyncMode


class StartSyncRequest(BaseModel):
    sync_mode: str = SyncMode.ALL.value


class JobRequest(BaseModel):
    job_id: Optional[str] = None


class JobActionResponse(BaseModel):
    job_id: str
    status: str
    message: str


class JobStatusResponse(BaseModel):
    job_id: str
    status: str
    progress_done: int
    progress_total_estimate: Optional[int] = None
    error_message: Optional[str] = None
    started_at: Optional[str] = None
    finished_at: Optional[str] = None
    checkpoint: dict[str, Any]
    created_at: Optional[str] = None


class TickResponse(BaseModel):
    outcome: str
    job_id: Optional[str] = None
    pages_processed: int = 0
    records_processed: int = 0
    message: Optional[str] = None
