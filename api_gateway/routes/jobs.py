"""
Job endpoints.

Create, status, list, cancel, delete, and a server-sent event stream of a
job's progress.
"""

from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends, Query, status
from fastapi.responses import StreamingResponse
from pydantic import BaseModel

from shared.errors import ValidationError
from shared.logging import get_logger
from shared.models.events import CompleteEvent, ErrorEvent, ProgressEvent
from shared.models.job import Job
from api_gateway.dependencies import get_controller, get_current_user, verify_job_ownership
from api_gateway.pipeline_controller import PipelineController

logger = get_logger(__name__)

router = APIRouter(prefix="/api/v1")

VALID_STATUSES = ("queued", "generating", "completed", "failed", "cancelled")


class CreateJobRequest(BaseModel):
    prompt: str
    config: Optional[Dict[str, Any]] = None


def job_to_response(job: Job) -> Dict[str, Any]:
    return job.model_dump(mode="json")


def snapshot_event(job: Job):
    """Event describing a job's stored state, sent first on every stream."""
    if job.status == "completed":
        return CompleteEvent(job_id=job.id, artifact_ref=job.final_artifact)
    if job.status in ("failed", "cancelled"):
        return ErrorEvent(
            job_id=job.id,
            error=job.error_message or job.current_step,
            error_kind=job.error_kind,
            status=job.status,
        )
    return ProgressEvent(job_id=job.id, progress=job.progress, step=job.current_step, stage=job.stage)


def format_sse(event) -> str:
    return f"event: {event.type}\ndata: {event.model_dump_json()}\n\n"


@router.post("/jobs", status_code=status.HTTP_201_CREATED)
async def create_job(
    request: CreateJobRequest,
    owner_id: str = Depends(get_current_user),
    controller: PipelineController = Depends(get_controller)
):
    """
    Submit a prompt for generation.

    Invalid prompts or configs are rejected with 400 before anything is stored.
    """
    job_id = await controller.create(owner_id, request.prompt, request.config)
    return {"job_id": job_id, "status": "queued"}


@router.get("/jobs")
async def list_jobs(
    status_filter: Optional[str] = Query(None, alias="status"),
    limit: int = Query(10, ge=1, le=50),
    offset: int = Query(0, ge=0),
    owner_id: str = Depends(get_current_user),
    controller: PipelineController = Depends(get_controller)
):
    """List the caller's jobs, newest first."""
    jobs = await controller.list_jobs(owner_id)
    if status_filter:
        if status_filter not in VALID_STATUSES:
            raise ValidationError(f"Invalid status filter. Must be one of: {list(VALID_STATUSES)}")
        jobs = [job for job in jobs if job.status == status_filter]

    return {
        "jobs": [job_to_response(job) for job in jobs[offset:offset + limit]],
        "total": len(jobs),
        "limit": limit,
        "offset": offset,
    }


@router.get("/jobs/{job_id}")
async def get_job_status(job: Job = Depends(verify_job_ownership)):
    """Job status (polling alternative to the stream)."""
    return job_to_response(job)


@router.post("/jobs/{job_id}/cancel")
async def cancel_job(
    job: Job = Depends(verify_job_ownership),
    controller: PipelineController = Depends(get_controller)
):
    """Cancel a job. Terminal jobs are returned unchanged."""
    cancelled = await controller.cancel(job.id)
    logger.info("Job cancel requested", extra={"job_id": job.id, "status": cancelled.status})
    return job_to_response(cancelled)


@router.delete("/jobs/{job_id}")
async def delete_job(
    job: Job = Depends(verify_job_ownership),
    controller: PipelineController = Depends(get_controller)
):
    await controller.delete(job.id)
    return {"job_id": job.id, "deleted": True}


@router.get("/jobs/{job_id}/stream")
async def stream_job(
    job: Job = Depends(verify_job_ownership),
    controller: PipelineController = Depends(get_controller)
):
    """
    Server-sent events for a job.

    Subscribes first, then sends the stored state, so nothing published
    between the two is missed. Ends after a complete or error event.
    """
    async def event_stream():
        async with controller.channel.subscribe(job.id) as subscription:
            current = await controller.get(job.id)
            first = snapshot_event(current)
            yield format_sse(first)
            if first.type != "progress":
                return
            async for event in subscription:
                yield format_sse(event)

    return StreamingResponse(
        event_stream(),
        media_type="text/event-stream",
        headers={"Cache-Control": "no-cache", "X-Accel-Buffering": "no"},
    )
