"""
In-process job store.

Used for local runs and tests. Records are copied on the way in and out so
callers never share a mutable Job with the store.
"""

import asyncio
from typing import Any, Dict, List

from shared.errors import JobImmutableError, JobNotFoundError, ValidationError
from shared.logging import get_logger
from shared.models.job import Job

from .base import JobStore, apply_partial

logger = get_logger("job_store.memory")


class InMemoryJobStore(JobStore):
    """Dict-backed job store guarded by a single asyncio lock."""

    def __init__(self):
        self._jobs: Dict[str, Job] = {}
        self._lock = asyncio.Lock()

    async def create(self, job: Job) -> str:
        async with self._lock:
            if job.id in self._jobs:
                raise ValidationError(f"Job {job.id} already exists", job_id=job.id)
            self._jobs[job.id] = job.model_copy(deep=True)
        logger.debug("Created job", extra={"job_id": job.id, "owner_id": job.owner_id})
        return job.id

    async def get(self, job_id: str) -> Job:
        async with self._lock:
            job = self._jobs.get(job_id)
            if job is None:
                raise JobNotFoundError(f"Job {job_id} not found", job_id=job_id)
            return job.model_copy(deep=True)

    async def update(self, job_id: str, partial: Dict[str, Any]) -> Job:
        async with self._lock:
            current = self._jobs.get(job_id)
            if current is None:
                raise JobNotFoundError(f"Job {job_id} not found", job_id=job_id)
            if current.is_terminal:
                raise JobImmutableError(
                    f"Job {job_id} is {current.status} and can no longer change",
                    job_id=job_id
                )
            updated = apply_partial(current, partial)
            self._jobs[job_id] = updated
            return updated.model_copy(deep=True)

    async def list_by_owner(self, owner_id: str) -> List[Job]:
        async with self._lock:
            jobs = [job.model_copy(deep=True) for job in self._jobs.values() if job.owner_id == owner_id]
        return sorted(jobs, key=lambda job: job.created_at, reverse=True)

    async def delete(self, job_id: str) -> None:
        async with self._lock:
            if self._jobs.pop(job_id, None) is None:
                raise JobNotFoundError(f"Job {job_id} not found", job_id=job_id)
