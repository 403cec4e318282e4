"""
Sniper router for job lifecycle APIs.

Endpoints:
- POST /sniper - Create and schedule a job
- GET /sniper - List jobs
- GET /sniper/events/stream - Server-Sent Events stream of job snapshots
- GET /sniper/{job_id} - Get one job (+ whether credentials are needed)
- POST /sniper/{job_id}/cancel - Cancel a job
- PATCH /sniper/{job_id}/credentials - Supply credentials (e.g. after restart)
- DELETE /sniper/{job_id} - Cancel if needed and remove a job

Note: /events/stream is registered before /{job_id} so "events" is never
taken for a job id.
"""

import asyncio
import json
import logging
from typing import AsyncIterator, Optional

from fastapi import APIRouter, HTTPException, Request
from fastapi.responses import StreamingResponse

from permit_sniper.sniper.entities import DateRange, SniperJob, SniperJobRequest
from permit_sniper.sniper.errors import (
    InvalidOperationError,
    JobNotFoundError,
    SniperError,
    ValidationError,
)
from permit_sniper.sniper.service import SniperService

from ..schemas.sniper import (
    CredentialsUpdateRequest,
    CredentialsUpdateResponse,
    SniperJobCreateRequest,
    SniperJobDeleteResponse,
    SniperJobDetailResponse,
    SniperJobEnvelope,
    SniperJobListResponse,
    SniperJobResponse,
)
from .._sniper_state import get_sniper_service


logger = logging.getLogger(__name__)

router = APIRouter()

KEEPALIVE_SECONDS = 15.0
STREAM_QUEUE_SIZE = 256


def _job_to_response(job: SniperJob) -> SniperJobResponse:
    return SniperJobResponse(**job.to_dict())


def _raise_http(e: SniperError) -> None:
    """Map a sniper error onto its HTTP status."""
    if isinstance(e, ValidationError):
        raise HTTPException(status_code=400, detail=str(e))
    if isinstance(e, JobNotFoundError):
        raise HTTPException(status_code=404, detail=str(e))
    if isinstance(e, InvalidOperationError):
        raise HTTPException(status_code=409, detail=str(e))
    raise HTTPException(status_code=500, detail=str(e))


def format_sse_event(job: SniperJob) -> str:
    """One SSE frame carrying a job snapshot."""
    return f"data: {json.dumps(job.to_dict(), ensure_ascii=False)}\n\n"


async def event_stream(
    service: SniperService,
    request: Optional[Request] = None,
    keepalive: float = KEEPALIVE_SECONDS,
) -> AsyncIterator[str]:
    """
    Yield every current job, then each new snapshot as it is published.

    Snapshots are handed from worker threads to the event loop through
    call_soon_threadsafe. A comment line is sent every `keepalive` seconds
    without traffic.
    """
    loop = asyncio.get_running_loop()
    queue: asyncio.Queue = asyncio.Queue(maxsize=STREAM_QUEUE_SIZE)

    def enqueue(job: SniperJob) -> None:
        if queue.full():
            logger.warning(f"[SSE] Subscriber queue full, dropping update for {job.job_id}")
            return
        queue.put_nowait(job)

    def on_update(job: SniperJob) -> None:
        try:
            loop.call_soon_threadsafe(enqueue, job)
        except RuntimeError:
            # Event loop already closed
            pass

    unsubscribe = service.subscribe(on_update)
    try:
        for job in service.list_jobs():
            yield format_sse_event(job)

        while True:
            if request is not None and await request.is_disconnected():
                break
            try:
                job = await asyncio.wait_for(queue.get(), timeout=keepalive)
            except asyncio.TimeoutError:
                yield ": keep-alive\n\n"
                continue
            yield format_sse_event(job)
    finally:
        unsubscribe()


# =============================================================================
# Endpoints
# =============================================================================


@router.post("", response_model=SniperJobEnvelope, status_code=201)
def create_sniper_job(request: SniperJobCreateRequest):
    """
    Create and schedule a sniper job.

    The pre-warm trigger fires `pre_warm_lead_seconds` before the window
    opens (immediately if that moment has passed). Credentials are kept in
    memory only.
    """
    service = get_sniper_service()

    job_request = SniperJobRequest(
        permit_id=request.permit_id,
        permit_name=request.permit_name,
        division_id=request.division_id,
        desired_ranges=tuple(
            DateRange(start_date=r.start_date, end_date=r.end_date)
            for r in request.desired_ranges
        ),
        group_size=request.group_size,
        window_opens_at=request.window_opens_at,
        email=request.email,
        password=request.password,
    )

    try:
        job = service.create_job(job_request)
    except SniperError as e:
        _raise_http(e)

    return SniperJobEnvelope(job=_job_to_response(job))


@router.get("", response_model=SniperJobListResponse)
def list_sniper_jobs():
    """List all sniper jobs, oldest first."""
    service = get_sniper_service()
    return SniperJobListResponse(jobs=[_job_to_response(j) for j in service.list_jobs()])


@router.get("/events/stream")
async def stream_sniper_events(request: Request):
    """
    Live stream of job snapshots (text/event-stream).

    Every current job is sent first, then each change as it happens.
    """
    service = get_sniper_service()
    return StreamingResponse(
        event_stream(service, request),
        media_type="text/event-stream",
        headers={"Cache-Control": "no-cache", "Connection": "keep-alive"},
    )


@router.get("/{job_id}", response_model=SniperJobDetailResponse)
def get_sniper_job(job_id: str):
    """Get one job and whether it is waiting for credentials."""
    service = get_sniper_service()

    try:
        job = service.get_job(job_id)
        needs_credentials = service.needs_credentials(job_id)
    except SniperError as e:
        _raise_http(e)

    return SniperJobDetailResponse(
        job=_job_to_response(job),
        needs_credentials=needs_credentials,
    )


@router.post("/{job_id}/cancel", response_model=SniperJobEnvelope)
def cancel_sniper_job(job_id: str):
    """
    Cancel a job that has not finished.

    Returns 409 if the job is already in-cart, failed or cancelled.
    """
    service = get_sniper_service()

    try:
        job = service.cancel_job(job_id)
    except SniperError as e:
        _raise_http(e)

    return SniperJobEnvelope(job=_job_to_response(job))


@router.patch("/{job_id}/credentials", response_model=CredentialsUpdateResponse)
def update_sniper_credentials(job_id: str, request: CredentialsUpdateRequest):
    """
    Supply or replace credentials.

    A pending job is rescheduled at once; if its pre-warm time has already
    passed it starts immediately.
    """
    service = get_sniper_service()

    try:
        job = service.supply_credentials(job_id, request.email, request.password)
    except SniperError as e:
        _raise_http(e)

    return CredentialsUpdateResponse(updated=True, job=_job_to_response(job))


@router.delete("/{job_id}", response_model=SniperJobDeleteResponse)
def delete_sniper_job(job_id: str):
    """Cancel (if unfinished), release any kept browser session, and remove the job."""
    service = get_sniper_service()

    try:
        deleted = service.delete_job(job_id)
    except SniperError as e:
        _raise_http(e)

    return SniperJobDeleteResponse(deleted=deleted)
