"""
Data models for the generation pipeline.

This module exports all Pydantic models used across pipeline modules.
"""

from .job import Job, JobConfig, JobStatus, VoiceProfile, TERMINAL_STATUSES
from .scene import AssetRef, Scene, Script, ScriptScene, STAGE_ASSET_SLOTS
from .events import ProgressEvent, CompleteEvent, ErrorEvent, JobEvent, parse_event

__all__ = [
    # Job models
    "Job",
    "JobConfig",
    "JobStatus",
    "VoiceProfile",
    "TERMINAL_STATUSES",
    # Scene models
    "AssetRef",
    "Scene",
    "Script",
    "ScriptScene",
    "STAGE_ASSET_SLOTS",
    # Event models
    "ProgressEvent",
    "CompleteEvent",
    "ErrorEvent",
    "JobEvent",
    "parse_event",
]
