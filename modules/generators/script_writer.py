"""
Script writer backend.

Calls an OpenAI chat model in JSON mode and validates the reply against the
Script schema. Replies are repaired and defaulted where that is safe; a reply
that still cannot be parsed raises a retryable error so the call is retried
rather than trusted.
"""

import json
import math
import re
from typing import Any, Dict, List, Optional

from openai import (
    APIConnectionError,
    APIStatusError,
    AsyncOpenAI,
    InternalServerError,
    RateLimitError as OpenAIRateLimitError,
)
from pydantic import ValidationError as PydanticValidationError

from shared.config import settings
from shared.errors import GenerationError, QuotaExceededError, RateLimitError, TransientBackendError
from shared.logging import get_logger
from shared.models.scene import Script
from modules.generators.config import (
    MAX_SCENE_SECONDS,
    MAX_SCENES,
    MIN_SCENE_SECONDS,
    MIN_SCENES,
    SCENE_SECONDS_TARGET,
    SCRIPT_EMOTIONS,
    SCRIPT_MAX_TOKENS,
    SCRIPT_TEMPERATURE,
)
from modules.generators.interfaces import ScriptGenerator

logger = get_logger("generators.script_writer")


def scene_count_for(duration: int) -> int:
    """Number of scenes to request for a video of `duration` seconds."""
    return max(MIN_SCENES, min(MAX_SCENES, math.ceil(duration / SCENE_SECONDS_TARGET)))


def build_prompts(prompt: str, duration: int, style: str, tone: str) -> List[Dict[str, str]]:
    scenes_count = scene_count_for(duration)
    avg = duration / scenes_count
    system_prompt = f"""You are an expert video script writer and director. Create engaging, professional video scripts that are perfect for AI video generation.

IMPORTANT RULES:
- Create exactly {scenes_count} scenes for a {duration}-second video
- Each scene should be {math.floor(avg)}-{math.ceil(avg)} seconds long
- Write clear, specific visual descriptions for AI image generation
- Use {tone} tone throughout
- Match {style} visual style
- Keep narration natural and engaging
- Ensure scenes flow logically and tell a complete story

Return ONLY valid JSON in this exact format:
{{
  "title": "Video Title",
  "scenes": [
    {{
      "id": "scene_1",
      "narration": "What the narrator says during this scene",
      "description": "Detailed visual description for AI image generation",
      "emotion": "{'|'.join(SCRIPT_EMOTIONS)}",
      "duration": number_in_seconds
    }}
  ]
}}"""

    user_prompt = f"""Create a {duration}-second video script about: {prompt}

Requirements:
- Visual Style: {style}
- Tone: {tone}
- Exactly {scenes_count} scenes
- Total duration: exactly {duration} seconds
- Each scene description should be detailed enough for AI image generation
- Include specific details about setting, lighting, composition, and mood"""

    return [
        {"role": "system", "content": system_prompt},
        {"role": "user", "content": user_prompt},
    ]


def _repair_json(json_str: str) -> str:
    """
    Attempt to repair truncated or malformed JSON.

    Handles trailing commas, an unterminated final string, and unclosed
    objects/arrays (closed in nesting order).
    """
    if not json_str or not json_str.strip():
        return "{}"

    json_str = re.sub(r",(\s*[}\]])", r"\1", json_str.strip())

    stack: List[str] = []
    in_string = False
    escape_next = False
    for char in json_str:
        if escape_next:
            escape_next = False
            continue
        if char == "\\":
            escape_next = True
            continue
        if char == '"':
            in_string = not in_string
            continue
        if in_string:
            continue
        if char in "{[":
            stack.append("}" if char == "{" else "]")
        elif char in "}]" and stack:
            stack.pop()

    result = json_str
    if in_string:
        result += '"'
    result = re.sub(r",\s*$", "", result)
    result += "".join(reversed(stack))
    return result


def _extract_json(content: str) -> Dict[str, Any]:
    """Decode the model reply, stripping code fences and repairing if needed."""
    text = content.strip()
    fenced = re.match(r"^```(?:json)?\s*(.*?)\s*```$", text, re.DOTALL)
    if fenced:
        text = fenced.group(1)

    try:
        data = json.loads(text)
    except json.JSONDecodeError:
        try:
            data = json.loads(_repair_json(text))
        except json.JSONDecodeError as e:
            raise TransientBackendError(f"Script reply is not valid JSON: {e}") from e
        logger.warning("Repaired malformed script JSON")

    if not isinstance(data, dict):
        raise TransientBackendError("Script reply must be a JSON object")
    return data


def _first_text(raw: Dict[str, Any], *keys: str) -> str:
    for key in keys:
        value = raw.get(key)
        if isinstance(value, str) and value.strip():
            return value.strip()
    return ""


def _coerce_scene(raw: Any, index: int, default_duration: float) -> Optional[Dict[str, Any]]:
    """Default missing scene fields. Returns None for unusable entries."""
    if not isinstance(raw, dict):
        return None
    narration = _first_text(raw, "narration", "narration_text", "voiceover")
    description = _first_text(raw, "description", "visual_description", "visual") or narration
    if not description:
        return None

    emotion = _first_text(raw, "emotion", "emotion_tag").lower()
    if emotion not in SCRIPT_EMOTIONS:
        emotion = "neutral"

    try:
        duration = float(raw.get("duration"))
    except (TypeError, ValueError):
        duration = default_duration
    if not math.isfinite(duration) or duration <= 0:
        duration = default_duration

    return {
        "id": str(raw.get("id") or f"scene_{index + 1}"),
        "narration": narration,
        "description": description,
        "emotion": emotion,
        "duration": duration,
    }


def normalize_durations(durations: List[float], total: float) -> List[float]:
    """
    Clamp scene lengths, then rescale so they sum to `total`.

    Values are rounded to 0.01s; the last scene absorbs the rounding error.
    """
    if not durations:
        return []
    clamped = [min(MAX_SCENE_SECONDS, max(MIN_SCENE_SECONDS, d)) for d in durations]
    current = sum(clamped)
    scaled = [d * total / current for d in clamped]
    rounded = [round(d, 2) for d in scaled]
    rounded[-1] = round(total - sum(rounded[:-1]), 2)
    return rounded


def parse_script(content: Optional[str], duration: int) -> Script:
    """
    Validate a raw model reply into a Script.

    Raises:
        TransientBackendError: If the reply cannot be turned into a valid script
    """
    if not content or not content.strip():
        raise TransientBackendError("Script reply was empty")

    data = _extract_json(content)
    raw_scenes = data.get("scenes")
    if not isinstance(raw_scenes, list):
        raise TransientBackendError("Script reply has no scenes list")

    default_duration = duration / max(1, len(raw_scenes))
    scenes = [
        scene for scene in (
            _coerce_scene(raw, index, default_duration) for index, raw in enumerate(raw_scenes)
        ) if scene is not None
    ]

    for scene, scene_duration in zip(scenes, normalize_durations([s["duration"] for s in scenes], duration)):
        scene["duration"] = scene_duration

    # Ids must be unique; scene order is authoritative
    seen = set()
    for index, scene in enumerate(scenes):
        if scene["id"] in seen:
            scene["id"] = f"scene_{index + 1}"
        seen.add(scene["id"])

    title = data.get("title") if isinstance(data.get("title"), str) and data.get("title").strip() else "Untitled"

    try:
        return Script.model_validate({"title": title.strip(), "scenes": scenes})
    except PydanticValidationError as e:
        raise TransientBackendError(f"Script reply failed validation: {e}") from e


class OpenAIScriptWriter(ScriptGenerator):
    """Script writer backed by an OpenAI chat model in JSON mode."""

    def __init__(self, client: Optional[AsyncOpenAI] = None, model: Optional[str] = None):
        self.client = client or AsyncOpenAI(api_key=settings.openai_api_key)
        self.model = model or settings.script_model

    async def generate(self, prompt: str, duration: int, style: str, tone: str) -> Script:
        try:
            response = await self.client.chat.completions.create(
                model=self.model,
                messages=build_prompts(prompt, duration, style, tone),
                response_format={"type": "json_object"},
                temperature=SCRIPT_TEMPERATURE,
                max_tokens=SCRIPT_MAX_TOKENS,
            )
        except OpenAIRateLimitError as e:
            if getattr(e, "code", None) == "insufficient_quota":
                raise QuotaExceededError(f"OpenAI quota exhausted: {e}", code="PROVIDER_QUOTA") from e
            raise RateLimitError(f"OpenAI rate limit: {e}") from e
        except (APIConnectionError, InternalServerError) as e:
            raise TransientBackendError(f"OpenAI unavailable: {e}") from e
        except APIStatusError as e:
            raise GenerationError(f"OpenAI request rejected: {e}") from e

        content = response.choices[0].message.content
        script = parse_script(content, duration)
        logger.info(
            f"Generated script with {len(script.scenes)} scenes",
            extra={"title": script.title, "scene_count": len(script.scenes), "model": self.model}
        )
        return script
