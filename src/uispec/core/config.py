"""Configuration Management."""

from functools import lru_cache
from typing import Any

from dotenv import load_dotenv
from pydantic import AliasChoices, BaseModel, ConfigDict, Field
from pydantic_settings import BaseSettings, SettingsConfigDict

# Load environment variables from .env file
load_dotenv()


class Settings(BaseSettings):
    """Process-wide settings from environment."""

    model_config = SettingsConfigDict(
        env_prefix="UISPEC_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Logging
    log_level: str = Field(default="INFO", description="Log level")
    json_logs: bool = Field(default=False, description="Use JSON log format")

    # Engine
    enable_partial_updates: bool = Field(default=True, description="Regenerate subtrees instead of whole UI")
    debug_mode: bool = Field(default=False, description="Log system events")
    render_cache_size: int = Field(default=512, gt=0, description="Render cache max entries")

    # Planning
    plan_cache_enabled: bool = Field(default=True, description="Cache planner output by prompt")
    plan_cache_size: int = Field(default=100, gt=0, description="Plan cache max size")
    plan_cache_ttl: int = Field(default=3600, gt=0, description="Plan cache TTL (seconds)")
    planner_temperature: float = Field(default=0.2, ge=0.0, le=2.0, description="Model temperature")
    planner_streaming: bool = Field(default=False, description="Stream provisional trees")
    prefetch_depth: int = Field(default=0, ge=0, description="Planning look-ahead depth")

    # Streaming
    stream_batch_size: int = Field(default=64, gt=0, description="Chars per planner chunk notification")

    # Validation
    max_spec_size: int = Field(default=512 * 1024, gt=0, description="Max planner output size (bytes)")
    max_spec_depth: int = Field(default=40, gt=0, description="Max specification nesting depth")


class PlanningConfig(BaseModel):
    """Options handed to the planner on every call."""

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    prefetch_depth: int = Field(default=0, ge=0, validation_alias=AliasChoices("prefetch_depth", "prefetchDepth"))
    temperature: float | None = Field(default=0.2, ge=0.0, le=2.0)
    streaming: bool = Field(default=False)


class EngineConfig(BaseModel):
    """Per-engine configuration surface."""

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    enable_partial_updates: bool = Field(
        default=True, validation_alias=AliasChoices("enable_partial_updates", "enablePartialUpdates")
    )
    planning: PlanningConfig = Field(
        default_factory=PlanningConfig, validation_alias=AliasChoices("planning", "planningConfig")
    )
    user_context: dict[str, Any] | None = Field(
        default=None, validation_alias=AliasChoices("user_context", "userContext")
    )
    debug_mode: bool = Field(default=False, validation_alias=AliasChoices("debug_mode", "debugMode"))

    @classmethod
    def from_settings(cls, settings: Settings, **overrides: Any) -> "EngineConfig":
        """Build engine defaults from process settings."""
        data: dict[str, Any] = {
            "enable_partial_updates": settings.enable_partial_updates,
            "debug_mode": settings.debug_mode,
            "planning": PlanningConfig(
                prefetch_depth=settings.prefetch_depth,
                temperature=settings.planner_temperature,
                streaming=settings.planner_streaming,
            ),
        }
        data.update(overrides)
        return cls.model_validate(data)


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
