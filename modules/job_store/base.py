"""
Job store interface.

CRUD and list-by-owner over job records. Implementations guarantee that
`update` applies a partial change atomically and refuse any change to a job
that already reached a terminal status.
"""

from abc import ABC, abstractmethod
from typing import Any, Dict, List

from pydantic import ValidationError as PydanticValidationError

from shared.errors import ValidationError
from shared.models.job import Job, utcnow

# Fields fixed at creation
IMMUTABLE_FIELDS = frozenset({"id", "owner_id", "created_at"})


def apply_partial(job: Job, partial: Dict[str, Any]) -> Job:
    """
    Return a validated copy of `job` with `partial` applied.

    Raises:
        ValidationError: Unknown or immutable field, or the result violates Job invariants
    """
    unknown = set(partial) - set(Job.model_fields)
    if unknown:
        raise ValidationError(f"Unknown job fields: {', '.join(sorted(unknown))}", job_id=job.id)
    fixed = set(partial) & IMMUTABLE_FIELDS
    if fixed:
        raise ValidationError(f"Job fields cannot change: {', '.join(sorted(fixed))}", job_id=job.id)

    data = job.model_dump()
    for key, value in partial.items():
        if isinstance(value, list):
            data[key] = [item.model_dump() if hasattr(item, "model_dump") else item for item in value]
        elif hasattr(value, "model_dump"):
            data[key] = value.model_dump()
        else:
            data[key] = value
    data["updated_at"] = utcnow()

    try:
        return Job.model_validate(data)
    except PydanticValidationError as e:
        raise ValidationError(f"Invalid job update: {e}", job_id=job.id) from e


class JobStore(ABC):
    """Persistence for job records."""

    @abstractmethod
    async def create(self, job: Job) -> str:
        """Persist a new job. Returns its id."""

    @abstractmethod
    async def get(self, job_id: str) -> Job:
        """
        Load a job.

        Raises:
            JobNotFoundError: If no job has this id
        """

    @abstractmethod
    async def update(self, job_id: str, partial: Dict[str, Any]) -> Job:
        """
        Atomically apply a partial update and return the new record.

        Raises:
            JobNotFoundError: If no job has this id
            JobImmutableError: If the job is already terminal
        """

    @abstractmethod
    async def list_by_owner(self, owner_id: str) -> List[Job]:
        """Jobs belonging to `owner_id`, newest first."""

    @abstractmethod
    async def delete(self, job_id: str) -> None:
        """
        Remove a job record (archival by a collaborator).

        Raises:
            JobNotFoundError: If no job has this id
        """
