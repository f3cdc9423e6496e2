"""
Replicate-hosted backends.

SDXL still images, Real-ESRGAN enhancement and Stable Video Diffusion motion
(the economy "animatediff" engine). The Replicate client is synchronous, so
create/reload run in worker threads and polling goes through
`submit_and_poll`.
"""

import asyncio
import random
from typing import Any, Dict, Optional

import httpx
import replicate
from replicate.exceptions import ModelError, ReplicateError

from shared.config import settings
from shared.errors import GenerationError, PipelineError
from shared.logging import get_logger
from modules.generators.config import (
    NEGATIVE_PROMPT,
    REAL_ESRGAN_VERSION,
    SDXL_VERSION,
    STYLE_PROMPTS,
    SVD_VERSION,
)
from modules.generators.interfaces import ImageEnhancer, ImageGenerator, MotionSynthesizer
from modules.generators.polling import PollResult, classify_error_message, submit_and_poll

logger = get_logger("generators.replicate")


def first_output(output: Any) -> str:
    """Replicate outputs are a url or a list of urls."""
    if isinstance(output, (list, tuple)):
        if not output:
            raise GenerationError("Replicate returned an empty output list")
        output = output[0]
    if not output:
        raise GenerationError("Replicate returned no output")
    return str(output)


def classify_replicate_error(error: Exception) -> PipelineError:
    """Map Replicate client errors onto the pipeline taxonomy."""
    status = getattr(error, "status", None)
    message = f"Replicate error: {error}"
    if status == 402:
        return classify_error_message(f"{message} (payment required)")
    if status == 429:
        return classify_error_message(f"{message} (429 rate limit)")
    if isinstance(status, int) and status >= 500:
        return classify_error_message(f"{message} (network)")
    return classify_error_message(message)


class ReplicateRunner:
    """Runs one prediction to completion on a shared Replicate client."""

    def __init__(self, client: Optional[replicate.Client] = None):
        self.client = client or replicate.Client(api_token=settings.replicate_api_token)

    async def run(self, version: str, inputs: Dict[str, Any], label: str) -> Any:
        async def submit():
            return await asyncio.to_thread(
                self.client.predictions.create, version=version, input=inputs
            )

        async def poll(prediction) -> PollResult:
            await asyncio.to_thread(prediction.reload)
            return PollResult(
                status=prediction.status,
                output=prediction.output,
                error=str(prediction.error) if prediction.error else None,
            )

        try:
            return await submit_and_poll(
                submit,
                poll,
                label=label,
                interval=settings.backend_poll_interval,
                timeout=settings.backend_call_timeout,
                max_polls=settings.backend_max_polls,
            )
        except (ModelError, ReplicateError) as e:
            raise classify_replicate_error(e) from e
        except httpx.HTTPError as e:
            raise classify_error_message(f"{label} network error: {e}") from e


class ReplicateImageGenerator(ImageGenerator):
    """SDXL text-to-image with style presets."""

    def __init__(self, runner: Optional[ReplicateRunner] = None):
        self.runner = runner or ReplicateRunner()

    @staticmethod
    def build_prompt(scene_text: str, style: str) -> str:
        style_prompt = STYLE_PROMPTS.get(style, STYLE_PROMPTS["cinematic"])
        return f"{scene_text}, {style_prompt}, high quality, 4K resolution"

    async def generate(self, scene_text: str, style: str) -> str:
        output = await self.runner.run(
            SDXL_VERSION,
            {
                "prompt": self.build_prompt(scene_text, style),
                "negative_prompt": NEGATIVE_PROMPT,
                "width": 1024,
                "height": 1024,
                "num_outputs": 1,
                "scheduler": "DPMSolverMultistep",
                "num_inference_steps": 30,
                "guidance_scale": 7.5,
                "seed": random.randint(0, 999999),
            },
            label="sdxl",
        )
        return first_output(output)


class ReplicateImageEnhancer(ImageEnhancer):
    """Real-ESRGAN 2x upscale."""

    def __init__(self, runner: Optional[ReplicateRunner] = None, scale: int = 2):
        self.runner = runner or ReplicateRunner()
        self.scale = scale

    async def enhance(self, image_uri: str) -> str:
        output = await self.runner.run(
            REAL_ESRGAN_VERSION,
            {"image": image_uri, "scale": self.scale, "face_enhance": False},
            label="real-esrgan",
        )
        return first_output(output)


class ReplicateMotionSynthesizer(MotionSynthesizer):
    """Stable Video Diffusion image-to-video, the lower-cost motion engine."""

    engine = "animatediff"

    def __init__(self, runner: Optional[ReplicateRunner] = None):
        self.runner = runner or ReplicateRunner()

    async def animate(self, image_uri: str, scene_text: str, aspect_ratio: str = "16:9") -> str:
        output = await self.runner.run(
            SVD_VERSION,
            {
                "input_image": image_uri,
                "video_length": "14_frames_with_svd",
                "sizing_strategy": "maintain_aspect_ratio",
                "motion_bucket_id": 127,
                "cond_aug": 0.02,
                "decoding_t": 14,
                "seed": random.randint(0, 999999),
            },
            label="stable-video-diffusion",
        )
        return first_output(output)
