"""
Stage Orchestrator module.

Runs one job through the generation stages, with per-scene fallbacks,
weighted progress and credit metering.
"""

from modules.stage_orchestrator.artifacts import (
    ArtifactUploader,
    LocalArtifactUploader,
    SupabaseArtifactUploader,
    create_artifact_uploader,
)
from modules.stage_orchestrator.motion_policy import MotionEnginePolicy
from modules.stage_orchestrator.orchestrator import StageOrchestrator
from modules.stage_orchestrator.progress import STAGE_LABELS, ProgressTracker, active_stages, stage_bands

__all__ = [
    "ArtifactUploader",
    "LocalArtifactUploader",
    "SupabaseArtifactUploader",
    "create_artifact_uploader",
    "MotionEnginePolicy",
    "StageOrchestrator",
    "STAGE_LABELS",
    "ProgressTracker",
    "active_stages",
    "stage_bands",
]
