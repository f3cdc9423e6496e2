"""
Runway image-to-video backend, the higher-fidelity motion engine.
"""

import random
from typing import Optional

import httpx

from shared.config import settings
from shared.errors import GenerationError
from shared.logging import get_logger
from modules.generators.config import RUNWAY_BASE_URL, RUNWAY_CLIP_SECONDS, RUNWAY_MODEL
from modules.generators.http_client import HTTPBackend
from modules.generators.interfaces import MotionSynthesizer
from modules.generators.polling import PollResult, submit_and_poll

logger = get_logger("generators.runway")


class RunwayMotionSynthesizer(HTTPBackend, MotionSynthesizer):
    """Runway Gen-2 image-to-video through its task API."""

    engine = "runway"
    provider = "runway"

    def __init__(
        self,
        api_key: Optional[str] = None,
        client: Optional[httpx.AsyncClient] = None,
    ):
        super().__init__(
            RUNWAY_BASE_URL,
            headers={
                "Authorization": f"Bearer {api_key or settings.runway_api_key}",
                "Content-Type": "application/json",
                "X-Runway-Version": "2024-11-06",
            },
            client=client,
        )

    async def _submit(self, image_uri: str, scene_text: str, aspect_ratio: str) -> str:
        response = await self.request(
            "POST",
            "/image_to_video",
            json={
                "promptImage": image_uri,
                "model": RUNWAY_MODEL,
                "promptText": scene_text[:500],
                "watermark": False,
                "seed": random.randint(0, 999999),
                "ratio": aspect_ratio,
                "duration": RUNWAY_CLIP_SECONDS,
            },
        )
        task_id = response.json().get("id")
        if not task_id:
            raise GenerationError("Runway did not return a task id")
        logger.info("Submitted Runway task", extra={"task_id": task_id})
        return task_id

    async def _poll(self, task_id: str) -> PollResult:
        data = (await self.request("GET", f"/tasks/{task_id}")).json()
        output = data.get("output") or None
        return PollResult(
            status=data.get("status"),
            output=output[0] if output else None,
            error=data.get("failure") or data.get("failure_reason"),
        )

    async def animate(self, image_uri: str, scene_text: str, aspect_ratio: str = "16:9") -> str:
        return await submit_and_poll(
            lambda: self._submit(image_uri, scene_text, aspect_ratio),
            self._poll,
            label="runway",
            interval=settings.backend_poll_interval,
            timeout=settings.backend_call_timeout,
            max_polls=settings.backend_max_polls,
        )
