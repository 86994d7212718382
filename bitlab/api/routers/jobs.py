"""Job management endpoints."""
from __future__ import annotations

import json

from fastapi import APIRouter, Depends
from sse_starlette.sse import EventSourceResponse

from ...errors import JobNotFoundError
from ...jobs.scheduler import JobScheduler
from ..deps.providers import get_scheduler
from ..schemas.envelope import ApiResponse
from ..schemas.requests import CreateJobRequest

router = APIRouter(prefix="/api/jobs", tags=["jobs"])


def _not_found(job_id: str) -> None:
    """Raise JobNotFoundError to be handled by the global error handler."""
    raise JobNotFoundError(f"Job '{job_id}' not found")


@router.get("")
async def list_jobs(status: str | None = None, scheduler: JobScheduler = Depends(get_scheduler)) -> ApiResponse:
    jobs = scheduler.get_all_jobs()
    if status is not None:
        jobs = [j for j in jobs if j.status.value == status]
    return ApiResponse.success([j.summary() for j in jobs])


@router.get("/counts")
async def job_counts(scheduler: JobScheduler = Depends(get_scheduler)) -> ApiResponse:
    return ApiResponse.success(scheduler.get_status_counts())


@router.get("/stats")
async def queue_stats(scheduler: JobScheduler = Depends(get_scheduler)) -> ApiResponse:
    return ApiResponse.success(scheduler.queue_stats())


@router.get("/queue")
async def pending_queue(scheduler: JobScheduler = Depends(get_scheduler)) -> ApiResponse:
    return ApiResponse.success([j.summary() for j in scheduler.get_pending_queue()])


@router.get("/events")
async def all_job_events(scheduler: JobScheduler = Depends(get_scheduler)):
    async def _generate():
        async for event in scheduler.events():
            yield {"event": event.get("event", "message"), "data": json.dumps(event, default=str)}

    return EventSourceResponse(_generate())


@router.post("")
async def create_job(body: CreateJobRequest, scheduler: JobScheduler = Depends(get_scheduler)) -> ApiResponse:
    job = await scheduler.create_job(body.name, body.data_file_id, body.presets, body.priority)
    return ApiResponse.success(job.summary())


@router.get("/{job_id}")
async def get_job(job_id: str, scheduler: JobScheduler = Depends(get_scheduler)) -> ApiResponse:
    job = scheduler.get_job(job_id)
    if job is None:
        _not_found(job_id)
    return ApiResponse.success(job.model_dump(mode="json"))


@router.get("/{job_id}/events")
async def job_events(job_id: str, scheduler: JobScheduler = Depends(get_scheduler)):
    if scheduler.get_job(job_id) is None:
        _not_found(job_id)

    async def _generate():
        async for event in scheduler.events(job_id):
            yield {"event": event.get("event", "message"), "data": json.dumps(event, default=str)}

    return EventSourceResponse(_generate())


@router.post("/{job_id}/start")
async def start_job(job_id: str, scheduler: JobScheduler = Depends(get_scheduler)) -> ApiResponse:
    job = await scheduler.start_job(job_id)
    return ApiResponse.success(job.summary())


@router.post("/{job_id}/pause")
async def pause_job(job_id: str, scheduler: JobScheduler = Depends(get_scheduler)) -> ApiResponse:
    job = await scheduler.pause_job(job_id)
    return ApiResponse.success(job.summary())


@router.post("/{job_id}/resume")
async def resume_job(job_id: str, scheduler: JobScheduler = Depends(get_scheduler)) -> ApiResponse:
    job = await scheduler.resume_job(job_id)
    return ApiResponse.success(job.summary())


@router.post("/{job_id}/cancel")
async def cancel_job(job_id: str, scheduler: JobScheduler = Depends(get_scheduler)) -> ApiResponse:
    job = await scheduler.cancel_job(job_id)
    return ApiResponse.success(job.summary())


@router.post("/{job_id}/replay")
async def replay_job(job_id: str, scheduler: JobScheduler = Depends(get_scheduler)) -> ApiResponse:
    job = await scheduler.replay_job(job_id)
    return ApiResponse.success(job.summary())


@router.delete("/{job_id}")
async def delete_job(job_id: str, scheduler: JobScheduler = Depends(get_scheduler)) -> ApiResponse:
    deleted = await scheduler.delete_job(job_id)
    return ApiResponse.success({"deleted": deleted, "job_id": job_id})
