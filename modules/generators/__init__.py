"""
Generation Backends module.

Capability interfaces (script, image, enhancement, motion, voice, avatar),
their provider adapters, fallback assets and the submit-then-poll adapter.
"""

from modules.generators.interfaces import (
    AvatarSynthesizer,
    GenerationBackends,
    ImageEnhancer,
    ImageGenerator,
    MotionSynthesizer,
    ScriptGenerator,
    VoiceSynthesizer,
)
from modules.generators.factory import build_backends

__all__ = [
    "AvatarSynthesizer",
    "GenerationBackends",
    "ImageEnhancer",
    "ImageGenerator",
    "MotionSynthesizer",
    "ScriptGenerator",
    "VoiceSynthesizer",
    "build_backends",
]
