"""
HTTP surface for job control and worker ticks.

Caller identity is taken from the X-User-Id header; authenticating that
header is the job of whatever sits in front of this app.

Usage:
    app = create_app(services)
    uvicorn.run(app)  # or any ASGI server
"""

import logging
from typing import Optional

from fastapi import APIRouter, Depends, FastAPI, Header, Query, Request
from fastapi.responses import JSONResponse

from crmsync import __version__
from crmsync.auth.google_auth import AuthenticationError
from crmsync.server.schemas import (
    JobActionResponse,
    JobRequest,
    JobStatusResponse,
    StartSyncRequest,
    TickResponse,
)
from crmsync.services import Services
from crmsync.sync.control import (
    IntegrationNotConnectedError,
    JobControl,
    JobNotFoundError,
    NotCancelableError,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/sync")


class MissingUserError(Exception):
    """Raised when a request carries no caller identity."""

    pass


def get_services(request: Request) -> Services:
    return request.app.state.services


def get_control(services: Services = Depends(get_services)) -> JobControl:
    return services.control


def get_user_id(x_user_id: Optional[str] = Header(None)) -> str:
    if not x_user_id:
        raise MissingUserError()
    return x_user_id


def _error(status_code: int, message: str) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"error": message})


@router.post("/start", response_model=JobActionResponse)
def start_sync(
    body: Optional[StartSyncRequest] = None,
    user_id: str = Depends(get_user_id),
    control: JobControl = Depends(get_control),
):
    sync_mode = body.sync_mode if body else StartSyncRequest().sync_mode
    try:
        existing = control.get_active(user_id)
        job = control.start_sync(user_id, sync_mode=sync_mode)
    except ValueError as e:
        return _error(400, str(e))

    if existing is not None and existing.id == job.id:
        message = "Sync already in progress"
    else:
        message = "Sync job queued"
    return JobActionResponse(job_id=job.id, status=job.status.value, message=message)


@router.post("/cancel", response_model=JobActionResponse)
def cancel_sync(
    body: JobRequest,
    user_id: str = Depends(get_user_id),
    control: JobControl = Depends(get_control),
):
    if not body.job_id:
        return _error(400, "job_id is required")
    job = control.cancel_sync(user_id, body.job_id)
    return JobActionResponse(
        job_id=job.id, status=job.status.value, message="Sync canceled"
    )


@router.get("/status", response_model=JobStatusResponse)
def get_status(
    job_id: Optional[str] = Query(None),
    user_id: str = Depends(get_user_id),
    control: JobControl = Depends(get_control),
):
    if not job_id:
        return _error(400, "job_id is required")
    return control.get_status(user_id, job_id).to_status_payload()


@router.post("/status", response_model=JobStatusResponse)
def post_status(
    body: JobRequest,
    user_id: str = Depends(get_user_id),
    control: JobControl = Depends(get_control),
):
    if not body.job_id:
        return _error(400, "job_id is required")
    return control.get_status(user_id, body.job_id).to_status_payload()


@router.post("/tick", response_model=TickResponse)
def run_tick(services: Services = Depends(get_services)):
    try:
        worker = services.worker
    except AuthenticationError as e:
        logger.error(f"Worker is not configured: {e}")
        return _error(503, str(e))
    return worker.tick().to_dict()


def create_app(services: Services) -> FastAPI:
    """
    Build the ASGI app around already-initialized services.

    Args:
        services: Storage, job control and worker wiring
    """
    app = FastAPI(title="crmsync", version=__version__)
    app.state.services = services
    app.include_router(router)

    @app.exception_handler(MissingUserError)
    async def _missing_user(request: Request, exc: MissingUserError) -> JSONResponse:
        return _error(401, "Unauthorized")

    @app.exception_handler(IntegrationNotConnectedError)
    async def _not_connected(
        request: Request, exc: IntegrationNotConnectedError
    ) -> JSONResponse:
        return _error(400, str(exc))

    @app.exception_handler(NotCancelableError)
    async def _not_cancelable(request: Request, exc: NotCancelableError) -> JSONResponse:
        return _error(404, str(exc))

    @app.exception_handler(JobNotFoundError)
    async def _not_found(request: Request, exc: JobNotFoundError) -> JSONResponse:
        return _error(404, str(exc))

    @app.get("/health")
    def health() -> dict[str, str]:
        return {"status": "ok"}

    return app
