"""
Hedra talking-head avatar backend.
"""

from pathlib import Path
from typing import Optional

import httpx

from shared.config import settings
from shared.errors import GenerationError
from shared.logging import get_logger
from modules.generators.config import HEDRA_BASE_URL
from modules.generators.http_client import HTTPBackend
from modules.generators.interfaces import AvatarSynthesizer
from modules.generators.polling import PollResult, submit_and_poll

logger = get_logger("generators.hedra")


class HedraAvatarSynthesizer(HTTPBackend, AvatarSynthesizer):
    provider = "hedra"

    def __init__(self, api_key: Optional[str] = None, client: Optional[httpx.AsyncClient] = None):
        super().__init__(
            HEDRA_BASE_URL,
            headers={"Authorization": f"Bearer {api_key or settings.hedra_api_key}"},
            client=client,
        )

    async def _submit(self, audio_uri: str, image_uri: str) -> str:
        portrait = await self.request("POST", "/portrait", json={"imageUrl": image_uri})
        portrait_id = portrait.json().get("portraitId")

        audio_bytes = await self.read_media(audio_uri)
        audio = await self.request(
            "POST",
            "/audio",
            files={"file": (Path(audio_uri).name or "voice.mp3", audio_bytes, "audio/mpeg")},
        )
        audio_id = audio.json().get("audioId")
        if not portrait_id or not audio_id:
            raise GenerationError("Hedra did not return portrait/audio ids")

        job = await self.request(
            "POST",
            "/characters",
            json={
                "portraitId": portrait_id,
                "audioId": audio_id,
                "aspectRatio": "1:1",
                "videoLength": "audio",
            },
        )
        job_id = job.json().get("jobId")
        if not job_id:
            raise GenerationError("Hedra did not return a job id")
        return job_id

    async def _poll(self, job_id: str) -> PollResult:
        data = (await self.request("GET", f"/characters/{job_id}")).json()
        return PollResult(status=data.get("status"), output=data.get("videoUrl"), error=data.get("error"))

    async def animate(self, audio_uri: str, image_uri: str) -> str:
        return await submit_and_poll(
            lambda: self._submit(audio_uri, image_uri),
            self._poll,
            label="hedra",
            interval=settings.backend_poll_interval,
            timeout=settings.backend_call_timeout,
            max_polls=settings.backend_max_polls,
        )
