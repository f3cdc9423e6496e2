"""
ElevenLabs text-to-speech backend.

Synchronous provider: one request returns the mp3, which is written under
MEDIA_DIR/voice/.
"""

from typing import Optional

import httpx

from shared.config import settings
from shared.errors import GenerationError
from shared.logging import get_logger
from shared.models.job import VoiceProfile
from modules.generators.config import DEFAULT_VOICE_KEY, ELEVENLABS_BASE_URL, ELEVENLABS_MODEL, VOICE_MAP
from modules.generators.http_client import HTTPBackend, media_path
from modules.generators.interfaces import VoiceSynthesizer

logger = get_logger("generators.elevenlabs")


def voice_id_for(profile: VoiceProfile) -> str:
    """Pick a stock voice for a profile, falling back to the default voice."""
    language = profile.language.lower()[:2]
    key = f"{profile.gender}_{language}_{profile.accent.lower()}_{profile.tone.lower()}"
    return VOICE_MAP.get(key, VOICE_MAP[DEFAULT_VOICE_KEY])


class ElevenLabsVoiceSynthesizer(HTTPBackend, VoiceSynthesizer):
    provider = "elevenlabs"

    def __init__(self, api_key: Optional[str] = None, client: Optional[httpx.AsyncClient] = None):
        super().__init__(
            ELEVENLABS_BASE_URL,
            headers={
                "Accept": "audio/mpeg",
                "Content-Type": "application/json",
                "xi-api-key": api_key or settings.elevenlabs_api_key or "",
            },
            client=client,
        )

    async def synthesize(self, text: str, voice_profile: VoiceProfile) -> str:
        voice_id = voice_id_for(voice_profile)
        response = await self.request(
            "POST",
            f"/text-to-speech/{voice_id}",
            json={
                "text": text,
                "model_id": ELEVENLABS_MODEL,
                "voice_settings": {
                    "stability": 0.5,
                    "similarity_boost": 0.75,
                    "style": 0.0,
                    "use_speaker_boost": True,
                },
            },
        )
        if not response.content:
            raise GenerationError("ElevenLabs returned empty audio")

        path = media_path("voice", "mp3")
        path.write_bytes(response.content)
        logger.info(
            "Generated narration audio",
            extra={"voice_id": voice_id, "path": str(path), "size": len(response.content)}
        )
        return str(path)
