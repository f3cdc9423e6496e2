"""
Validation utilities.

Input validation for job submission. Everything here runs before a job is
created, so a rejected request never reaches a generation backend.
"""

from pathlib import Path
from typing import Any, Dict, Optional, Union

from pydantic import ValidationError as PydanticValidationError

from shared.config import settings
from shared.errors import ValidationError
from shared.models.job import JobConfig


def validate_prompt(
    prompt: str,
    min_length: int = 3,
    max_length: int = 1000
) -> str:
    """
    Validate a creative prompt.

    Args:
        prompt: Prompt string to validate
        min_length: Minimum length in characters (default: 3)
        max_length: Maximum length in characters (default: 1000)

    Returns:
        The stripped prompt

    Raises:
        ValidationError: If prompt is invalid
    """
    if prompt is None:
        raise ValidationError("Prompt is required")

    if not isinstance(prompt, str):
        raise ValidationError("Prompt must be a string")

    stripped = prompt.strip()
    prompt_length = len(stripped)

    if prompt_length < min_length:
        raise ValidationError(
            f"Prompt must be at least {min_length} characters long "
            f"(current: {prompt_length})"
        )

    if prompt_length > max_length:
        raise ValidationError(
            f"Prompt must be at most {max_length} characters long "
            f"(current: {prompt_length})"
        )

    return stripped


def validate_media_reference(ref: str, field: str) -> None:
    """
    Validate a URL or local file reference supplied by the caller.

    Raises:
        ValidationError: If the reference is neither an http(s) URL nor an existing file
    """
    if not ref or not isinstance(ref, str):
        raise ValidationError(f"{field} must be a non-empty string")
    if ref.startswith(("http://", "https://")):
        return
    if not Path(ref).is_file():
        raise ValidationError(f"{field} '{ref}' is not a URL or an existing file")


def validate_job_config(
    config: Optional[Union[JobConfig, Dict[str, Any]]]
) -> JobConfig:
    """
    Parse and validate job config.

    Args:
        config: JobConfig instance, raw dict, or None for defaults

    Returns:
        Validated JobConfig

    Raises:
        ValidationError: If any option is malformed or out of range
    """
    if config is None:
        parsed = JobConfig()
    elif isinstance(config, JobConfig):
        parsed = config
    elif isinstance(config, dict):
        try:
            parsed = JobConfig.model_validate(config)
        except PydanticValidationError as e:
            details = "; ".join(
                f"{'.'.join(str(part) for part in err['loc'])}: {err['msg']}" for err in e.errors()
            )
            raise ValidationError(f"Invalid job config: {details}") from e
    else:
        raise ValidationError("Job config must be an object")

    if not settings.min_job_duration <= parsed.duration <= settings.max_job_duration:
        raise ValidationError(
            f"Duration must be between {settings.min_job_duration} and "
            f"{settings.max_job_duration} seconds (got {parsed.duration})"
        )

    for index, ref in enumerate(parsed.reference_images):
        validate_media_reference(ref, f"reference_images[{index}]")

    if parsed.music_track:
        validate_media_reference(parsed.music_track, "music_track")

    return parsed
