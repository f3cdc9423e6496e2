"""
Job-related data models.

Defines Job, JobConfig and VoiceProfile for tracking pipeline execution.
"""

from datetime import datetime, timezone
from typing import List, Literal, Optional
from pydantic import BaseModel, Field, field_serializer, model_validator

from .scene import Scene


JobStatus = Literal["queued", "generating", "completed", "failed", "cancelled"]
MotionEngine = Literal["auto", "runway", "animatediff"]
VisualStyle = Literal["cinematic", "realistic", "animated", "artistic", "minimalist"]
AspectRatio = Literal["16:9", "9:16", "1:1", "4:3"]
TransitionStyle = Literal["none", "fade", "slideleft", "wiperight"]

TERMINAL_STATUSES = frozenset({"completed", "failed", "cancelled"})


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class VoiceProfile(BaseModel):
    """Voice selection for narration."""

    gender: Literal["male", "female", "neutral"] = "female"
    language: str = "en"
    accent: str = "american"
    tone: str = "professional"


class JobConfig(BaseModel):
    """Generation options supplied with the prompt."""

    duration: int = Field(default=30, description="Target video length in seconds")
    visual_style: VisualStyle = "cinematic"
    tone: str = "professional"
    voice_profile: VoiceProfile = Field(default_factory=VoiceProfile)
    motion_engine: MotionEngine = "auto"
    enable_avatar: bool = False
    enable_music: bool = False
    music_track: Optional[str] = Field(default=None, description="Audio file or URL mixed under narration")
    reference_images: List[str] = Field(default_factory=list)
    aspect_ratio: AspectRatio = "16:9"
    title_overlay: bool = False
    transition: TransitionStyle = "fade"


class Job(BaseModel):
    """Job model representing one video generation request."""

    id: str
    owner_id: str
    prompt: str
    config: JobConfig = Field(default_factory=JobConfig)
    status: JobStatus = "queued"
    progress: int = Field(default=0, ge=0, le=100, description="Progress percentage 0-100")
    current_step: str = "Queued"
    stage: str = "queued"
    title: Optional[str] = None
    scenes: List[Scene] = Field(default_factory=list)
    final_artifact: Optional[str] = None
    credits_used: int = Field(default=0, ge=0)
    avatar_skipped: bool = False
    error_kind: Optional[str] = None
    error_message: Optional[str] = None
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)

    @model_validator(mode="after")
    def check_artifact_matches_status(self) -> "Job":
        """final_artifact is set exactly when the job completed."""
        if self.status == "completed" and not self.final_artifact:
            raise ValueError("Completed job must have a final_artifact")
        if self.status != "completed" and self.final_artifact:
            raise ValueError(f"Job in status '{self.status}' cannot expose a final_artifact")
        return self

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    @field_serializer("created_at", "updated_at")
    def serialize_datetime(self, value: Optional[datetime]) -> Optional[str]:
        """Serialize datetime to ISO format string."""
        return value.isoformat() if value else None
