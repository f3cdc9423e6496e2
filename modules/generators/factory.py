"""
Backend assembly from settings.

Providers whose credentials are not configured are left out, which makes
the orchestrator resolve their stage with fallbacks.
"""

from typing import Optional

from shared.config import Settings, settings as default_settings
from shared.logging import get_logger
from modules.generators.elevenlabs import ElevenLabsVoiceSynthesizer
from modules.generators.hedra import HedraAvatarSynthesizer
from modules.generators.interfaces import GenerationBackends
from modules.generators.replicate_backends import (
    ReplicateImageEnhancer,
    ReplicateImageGenerator,
    ReplicateMotionSynthesizer,
    ReplicateRunner,
)
from modules.generators.runway import RunwayMotionSynthesizer
from modules.generators.script_writer import OpenAIScriptWriter

logger = get_logger("generators.factory")


def build_backends(config: Optional[Settings] = None) -> GenerationBackends:
    """Instantiate every backend that has credentials configured."""
    config = config or default_settings
    runner = ReplicateRunner()

    motion = {ReplicateMotionSynthesizer.engine: ReplicateMotionSynthesizer(runner)}
    if config.runway_api_key:
        motion[RunwayMotionSynthesizer.engine] = RunwayMotionSynthesizer(config.runway_api_key)

    backends = GenerationBackends(
        script=OpenAIScriptWriter(),
        image=ReplicateImageGenerator(runner),
        enhancer=ReplicateImageEnhancer(runner),
        motion=motion,
        voice=ElevenLabsVoiceSynthesizer(config.elevenlabs_api_key) if config.elevenlabs_api_key else None,
        avatar=HedraAvatarSynthesizer(config.hedra_api_key) if config.hedra_api_key else None,
    )

    logger.info(
        "Generation backends ready",
        extra={
            "motion_engines": ",".join(sorted(motion)),
            "voice": backends.voice is not None,
            "avatar": backends.avatar is not None,
        }
    )
    return backends
