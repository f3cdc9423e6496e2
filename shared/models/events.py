"""
Progress event models.

Events broadcast on a job's progress channel. Serialized as JSON with a
`type` discriminator so any subscriber can decode them.
"""

from datetime import datetime
from typing import Annotated, Literal, Optional, Union
from pydantic import BaseModel, Field, TypeAdapter, field_serializer

from .job import utcnow


class _BaseEvent(BaseModel):
    job_id: str
    timestamp: datetime = Field(default_factory=utcnow)

    @field_serializer("timestamp")
    def serialize_datetime(self, value: datetime) -> str:
        """Serialize datetime to ISO format string."""
        return value.isoformat()


class ProgressEvent(_BaseEvent):
    type: Literal["progress"] = "progress"
    progress: int = Field(ge=0, le=100)
    step: str
    message: str = ""
    stage: Optional[str] = None


class CompleteEvent(_BaseEvent):
    type: Literal["complete"] = "complete"
    artifact_ref: str


class ErrorEvent(_BaseEvent):
    type: Literal["error"] = "error"
    error: str
    error_kind: Optional[str] = None
    status: Literal["failed", "cancelled"] = "failed"


JobEvent = Annotated[Union[ProgressEvent, CompleteEvent, ErrorEvent], Field(discriminator="type")]

job_event_adapter: TypeAdapter = TypeAdapter(JobEvent)


def parse_event(raw: Union[str, bytes]) -> Union[ProgressEvent, CompleteEvent, ErrorEvent]:
    """Decode a JSON event published by any channel adapter."""
    return job_event_adapter.validate_json(raw)
