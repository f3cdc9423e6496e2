"""
FastAPI dependencies.

Caller identity, controller lookup, and job ownership checks. Authentication
happens upstream; the authenticated owner arrives in the X-User-Id header.
"""

from typing import Optional

from fastapi import Depends, Header, HTTPException, Path, Request, status

from shared.errors import JobNotFoundError
from shared.logging import get_logger
from shared.models.job import Job
from api_gateway.pipeline_controller import PipelineController

logger = get_logger(__name__)


def get_controller(request: Request) -> PipelineController:
    return request.app.state.controller


async def get_current_user(x_user_id: Optional[str] = Header(None)) -> str:
    """
    Owner id of the caller.

    Raises:
        HTTPException: 401 if the header is missing or blank
    """
    if not x_user_id or not x_user_id.strip():
        logger.warning("Request without X-User-Id header")
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Missing X-User-Id header"
        )
    return x_user_id.strip()


async def verify_job_ownership(
    job_id: str = Path(...),
    owner_id: str = Depends(get_current_user),
    controller: PipelineController = Depends(get_controller)
) -> Job:
    """
    Load a job and check it belongs to the caller.

    Someone else's job is reported as missing so ids cannot be probed.

    Raises:
        HTTPException: 404 if the job does not exist or belongs to another owner
    """
    try:
        job = await controller.get(job_id)
    except JobNotFoundError:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Job not found")

    if job.owner_id != owner_id:
        logger.warning(
            "Job ownership verification failed",
            extra={"job_id": job_id, "job_owner_id": job.owner_id, "current_user_id": owner_id}
        )
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Job not found")
    return job
