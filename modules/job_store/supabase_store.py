"""
Supabase-backed job store.

One row per job in the `jobs` table; scenes and config live in JSONB columns
so a stage result is written with a single row update. Updates filter on a
non-terminal status, which makes terminal records immutable even against a
concurrent writer.
"""

from typing import Any, Dict, List, Optional

from shared.database import DatabaseClient, get_db
from shared.errors import JobImmutableError, JobNotFoundError
from shared.logging import get_logger
from shared.models.job import Job

from .base import JobStore, apply_partial

logger = get_logger("job_store.supabase")

ACTIVE_STATUSES = ["queued", "generating"]


class SupabaseJobStore(JobStore):
    """Job store over the Supabase `jobs` table."""

    def __init__(self, db: Optional[DatabaseClient] = None, table: str = "jobs"):
        self.db = db or get_db()
        self.table = table

    async def create(self, job: Job) -> str:
        await self.db.table(self.table).insert(job.model_dump(mode="json")).execute()
        logger.info("Created job", extra={"job_id": job.id, "owner_id": job.owner_id})
        return job.id

    async def get(self, job_id: str) -> Job:
        result = await self.db.table(self.table).select("*").eq("id", job_id).limit(1).execute()
        if not result.data:
            raise JobNotFoundError(f"Job {job_id} not found", job_id=job_id)
        return Job.model_validate(result.data[0])

    async def update(self, job_id: str, partial: Dict[str, Any]) -> Job:
        current = await self.get(job_id)
        if current.is_terminal:
            raise JobImmutableError(
                f"Job {job_id} is {current.status} and can no longer change",
                job_id=job_id
            )
        updated = apply_partial(current, partial)
        row = updated.model_dump(mode="json", include=set(partial) | {"updated_at"})

        result = await (
            self.db.table(self.table)
            .update(row)
            .eq("id", job_id)
            .in_("status", ACTIVE_STATUSES)
            .execute()
        )
        if not result.data:
            # Row vanished or turned terminal between the read and the write
            latest = await self.get(job_id)
            raise JobImmutableError(
                f"Job {job_id} is {latest.status} and can no longer change",
                job_id=job_id
            )
        return Job.model_validate(result.data[0])

    async def list_by_owner(self, owner_id: str) -> List[Job]:
        result = await (
            self.db.table(self.table)
            .select("*")
            .eq("owner_id", owner_id)
            .order("created_at", desc=True)
            .execute()
        )
        return [Job.model_validate(row) for row in result.data or []]

    async def delete(self, job_id: str) -> None:
        result = await self.db.table(self.table).delete().eq("id", job_id).execute()
        if not result.data:
            raise JobNotFoundError(f"Job {job_id} not found", job_id=job_id)
        logger.info("Deleted job", extra={"job_id": job_id})
