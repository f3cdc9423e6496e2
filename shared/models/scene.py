"""
Scene data models.

Defines AssetRef, Scene, and the Script / ScriptScene schema the script
writer must produce.
"""

from typing import List, Optional
from pydantic import BaseModel, Field, field_validator


# Per-stage asset slot on a Scene, keyed by stage name
STAGE_ASSET_SLOTS = {
    "images": "image",
    "enhance": "enhanced_image",
    "motion": "motion_clip",
    "voice": "audio",
    "avatar": "avatar_clip",
}


class AssetRef(BaseModel):
    """Reference to a generated (or fallback) asset."""

    uri: str = Field(description="URL, local path, or fallback: descriptor")
    is_fallback: bool = False
    source: Optional[str] = Field(default=None, description="Backend that produced the asset")

    @field_validator("uri")
    @classmethod
    def validate_uri(cls, v: str) -> str:
        if not v or not v.strip():
            raise ValueError("Asset uri must not be empty")
        return v


class Scene(BaseModel):
    """One narrated segment of the video and its per-stage assets."""

    id: str
    order_index: int = Field(ge=0)
    duration: float = Field(gt=0, description="Scene duration in seconds")
    narration_text: str = ""
    visual_description: str
    emotion_tag: str = "neutral"

    image: Optional[AssetRef] = None
    enhanced_image: Optional[AssetRef] = None
    motion_clip: Optional[AssetRef] = None
    motion_engine: Optional[str] = Field(default=None, description="Engine chosen by the motion policy")
    audio: Optional[AssetRef] = None
    avatar_clip: Optional[AssetRef] = None

    def asset_for(self, stage: str) -> Optional[AssetRef]:
        """Asset slot filled by `stage`."""
        return getattr(self, STAGE_ASSET_SLOTS[stage])

    @property
    def best_image(self) -> Optional[AssetRef]:
        """Enhanced image when present, otherwise the raw image."""
        return self.enhanced_image or self.image


class ScriptScene(BaseModel):
    """Scene as produced by the script writer."""

    id: str
    narration: str = ""
    description: str
    emotion: str = "neutral"
    duration: float = Field(gt=0)


class Script(BaseModel):
    """Validated script: a title and an ordered list of scenes."""

    title: str
    scenes: List[ScriptScene]

    @property
    def total_duration(self) -> float:
        return sum(scene.duration for scene in self.scenes)
