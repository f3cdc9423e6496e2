"""
Generation backend capabilities.

One abstract class per capability, each with a single async operation. The
orchestrator only ever talks to these interfaces; which concrete variant runs
is decided by configuration (and, for motion, by the engine policy).
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Dict, Optional

from shared.models.job import VoiceProfile
from shared.models.scene import Script


class ScriptGenerator(ABC):
    """Turns a prompt into a titled, scene-by-scene script."""

    name = "script"

    @abstractmethod
    async def generate(self, prompt: str, duration: int, style: str, tone: str) -> Script:
        ...


class ImageGenerator(ABC):
    """Still image for a scene description. Returns an image uri."""

    name = "image"

    @abstractmethod
    async def generate(self, scene_text: str, style: str) -> str:
        ...


class ImageEnhancer(ABC):
    """Upscales / cleans up an image. Returns the enhanced image uri."""

    name = "enhance"

    @abstractmethod
    async def enhance(self, image_uri: str) -> str:
        ...


class MotionSynthesizer(ABC):
    """
    Animates a still into a short clip. Returns a video uri.

    `engine` is the policy-facing name ("runway", "animatediff") and also the
    credit-meter operation name.
    `aspect_ratio` is the job's output ratio; engines that follow the input
    image may ignore it.
    """

    engine: str = "motion"

    @abstractmethod
    async def animate(self, image_uri: str, scene_text: str, aspect_ratio: str = "16:9") -> str:
        ...


class VoiceSynthesizer(ABC):
    """Narration audio for a piece of text. Returns an audio uri."""

    name = "voice"

    @abstractmethod
    async def synthesize(self, text: str, voice_profile: VoiceProfile) -> str:
        ...


class AvatarSynthesizer(ABC):
    """Talking-head clip driven by narration audio. Returns a video uri."""

    name = "avatar"

    @abstractmethod
    async def animate(self, audio_uri: str, image_uri: str) -> str:
        ...


@dataclass
class GenerationBackends:
    """
    The set of backends a job runs against.

    Only the script writer is mandatory; a missing optional backend makes its
    stage resolve every scene with a fallback (or skip, for avatars).
    """

    script: ScriptGenerator
    image: Optional[ImageGenerator] = None
    enhancer: Optional[ImageEnhancer] = None
    motion: Dict[str, MotionSynthesizer] = field(default_factory=dict)
    voice: Optional[VoiceSynthesizer] = None
    avatar: Optional[AvatarSynthesizer] = None

    def motion_engine(self, engine: str) -> Optional[MotionSynthesizer]:
        return self.motion.get(engine)
