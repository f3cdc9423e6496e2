"""
Configuration management.

Centralized environment variable management and validation.
"""

from typing import Dict, Literal, Optional
from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict
from shared.errors import ConfigError


PIPELINE_STAGES = ("script", "images", "enhance", "motion", "voice", "avatar", "composite", "upload")


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore"
    )

    # Supabase configuration
    supabase_url: str
    supabase_service_key: str
    storage_bucket: str = "video-outputs"

    # Redis configuration
    redis_url: str

    # API keys
    openai_api_key: str
    replicate_api_token: str
    # Optional providers: a missing key means the stage always takes its fallback
    runway_api_key: Optional[str] = None
    elevenlabs_api_key: Optional[str] = None
    hedra_api_key: Optional[str] = None

    # Environment
    environment: Literal["development", "staging", "production"] = "development"

    # Logging
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = "INFO"
    log_dir: str = "logs"

    # Collaborator backends
    job_store_backend: Literal["supabase", "memory"] = "supabase"
    progress_channel_backend: Literal["redis", "memory"] = "redis"
    artifact_storage_backend: Literal["supabase", "local"] = "supabase"

    # Pipeline scheduling
    # STAGE_WEIGHTS: relative share of the 0-100 progress bar per stage.
    # Normalised at runtime, so they need not sum to exactly 100.
    stage_weights: Dict[str, int] = Field(default_factory=lambda: {
        "script": 5,
        "images": 15,
        "enhance": 10,
        "motion": 15,
        "voice": 15,
        "avatar": 15,
        "composite": 10,
        "upload": 5,
    })
    stage_concurrency: int = 3  # Worker limit per stage fan-out, independent of scene count
    backend_call_timeout: float = 300.0  # Seconds per backend call, polling included
    backend_poll_interval: float = 5.0
    backend_max_polls: int = 120
    backend_retry_attempts: int = 3
    backend_retry_base_delay: float = 2.0

    # Script generation
    script_model: str = "gpt-4o"
    min_job_duration: int = 6
    max_job_duration: int = 120

    # Motion engine policy
    # MOTION_AUTO_CREDIT_THRESHOLD: with motion_engine=auto, scenes use the premium
    # engine while credits used so far stay below this value, then the economy engine.
    motion_auto_credit_threshold: int = 50
    motion_premium_engine: str = "runway"
    motion_economy_engine: str = "animatediff"

    # Credit costs per backend operation (fallbacks are always free)
    credit_costs: Dict[str, int] = Field(default_factory=lambda: {
        "script": 1,
        "image": 2,
        "enhance": 1,
        "runway": 15,
        "animatediff": 5,
        "voice": 1,
        "avatar": 10,
    })
    max_credits_per_job: Optional[int] = None

    # Media / compositor
    media_dir: str = "media"
    ffmpeg_path: str = "ffmpeg"
    ffmpeg_preset: str = "medium"
    ffmpeg_crf: int = 23
    ffmpeg_timeout: float = 900.0
    output_fps: int = 30
    output_audio_bitrate: str = "192k"
    output_extension: str = "mp4"
    transition_duration: float = 0.5
    music_volume: float = 0.3

    # Progress channel
    progress_queue_size: int = 100

    @field_validator("supabase_url")
    @classmethod
    def validate_supabase_url(cls, v: str) -> str:
        """Validate Supabase URL format."""
        if not v:
            raise ConfigError("SUPABASE_URL is required")
        if not v.startswith(("http://", "https://")):
            raise ConfigError("SUPABASE_URL must be a valid HTTP/HTTPS URL")
        return v

    @field_validator("supabase_service_key")
    @classmethod
    def validate_supabase_service_key(cls, v: str) -> str:
        """Validate Supabase service key format."""
        if not v:
            raise ConfigError("SUPABASE_SERVICE_KEY is required")
        if len(v) < 50:  # Basic format check
            raise ConfigError("SUPABASE_SERVICE_KEY appears to be invalid")
        return v

    @field_validator("redis_url")
    @classmethod
    def validate_redis_url(cls, v: str) -> str:
        """Validate Redis URL format."""
        if not v:
            raise ConfigError("REDIS_URL is required")
        if not v.startswith(("redis://", "rediss://")):
            raise ConfigError("REDIS_URL must start with redis:// or rediss://")
        return v

    @field_validator("openai_api_key")
    @classmethod
    def validate_openai_api_key(cls, v: str) -> str:
        """Validate OpenAI API key format."""
        if not v:
            raise ConfigError("OPENAI_API_KEY is required")
        if not v.startswith("sk-"):
            raise ConfigError("OPENAI_API_KEY must start with 'sk-'")
        if len(v) < 20:
            raise ConfigError("OPENAI_API_KEY appears to be invalid")
        return v

    @field_validator("replicate_api_token")
    @classmethod
    def validate_replicate_api_token(cls, v: str) -> str:
        """Validate Replicate API token format."""
        if not v:
            raise ConfigError("REPLICATE_API_TOKEN is required")
        if not v.startswith("r8_"):
            raise ConfigError("REPLICATE_API_TOKEN must start with 'r8_'")
        if len(v) < 20:
            raise ConfigError("REPLICATE_API_TOKEN appears to be invalid")
        return v

    @field_validator("stage_weights")
    @classmethod
    def validate_stage_weights(cls, v: Dict[str, int]) -> Dict[str, int]:
        """Every stage needs a non-negative weight and the total must be positive."""
        missing = [stage for stage in PIPELINE_STAGES if stage not in v]
        if missing:
            raise ConfigError(f"STAGE_WEIGHTS missing stages: {', '.join(missing)}")
        unknown = [stage for stage in v if stage not in PIPELINE_STAGES]
        if unknown:
            raise ConfigError(f"STAGE_WEIGHTS has unknown stages: {', '.join(unknown)}")
        if any(weight < 0 for weight in v.values()):
            raise ConfigError("STAGE_WEIGHTS must be non-negative")
        if sum(v.values()) <= 0:
            raise ConfigError("STAGE_WEIGHTS must sum to a positive value")
        return v

    @field_validator("credit_costs")
    @classmethod
    def validate_credit_costs(cls, v: Dict[str, int]) -> Dict[str, int]:
        """Validate credit costs are non-negative."""
        if any(cost < 0 for cost in v.values()):
            raise ConfigError("CREDIT_COSTS must be non-negative")
        return v

    @field_validator("stage_concurrency", "backend_max_polls", "backend_retry_attempts")
    @classmethod
    def validate_positive_int(cls, v: int) -> int:
        """Validate scheduling limits are at least 1."""
        if v < 1:
            raise ConfigError("Concurrency, poll and retry limits must be at least 1")
        return v

    @field_validator("backend_call_timeout", "backend_poll_interval", "ffmpeg_timeout")
    @classmethod
    def validate_positive_float(cls, v: float) -> float:
        """Validate timeouts and intervals are positive."""
        if v <= 0:
            raise ConfigError("Timeouts and poll intervals must be positive")
        return v

    @field_validator("music_volume")
    @classmethod
    def validate_music_volume(cls, v: float) -> float:
        """Validate music volume is between 0 and 1."""
        if not 0.0 <= v <= 1.0:
            raise ConfigError("MUSIC_VOLUME must be between 0 and 1")
        return v

    def credit_cost(self, operation: str) -> int:
        """Static credit cost for a backend operation (0 if unpriced)."""
        return self.credit_costs.get(operation, 0)


# Singleton instance
try:
    settings = Settings()
except Exception as e:
    # Re-raise as ConfigError for consistency
    if isinstance(e, ConfigError):
        raise
    raise ConfigError(f"Failed to load configuration: {str(e)}") from e
