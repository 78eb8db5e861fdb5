"""
Configuration for the personalization engine.
"""

from typing import Optional

from pydantic import Field, field_validator
from pydantic import ValidationError as PydanticValidationError

from shared.config import BaseConfig
from shared.errors import ConfigurationError


class EngineConfig(BaseConfig):
    """Engine configuration.

    Every setting can be supplied through the environment with the
    ``PERSONALIZATION_`` prefix, e.g. ``PERSONALIZATION_API_ENDPOINT``.
    Durations are in seconds.
    """

    # Workflow service
    api_endpoint: str = Field(default="http://localhost:3001", description="Workflow service base URL")
    api_key: Optional[str] = Field(default=None, description="Sent as X-API-Key when set")
    request_timeout: float = Field(default=10.0, ge=0)
    retry_attempts: int = Field(default=3, ge=0, description="Retries after the first fetch attempt")
    retry_delay: float = Field(default=1.5, ge=0, description="Linear backoff step")

    # Execution
    debug: bool = False
    execution_delay: float = Field(default=0.1, ge=0, description="Pause between actions of one chain")
    element_wait_timeout: float = Field(default=5.0, ge=0)
    transition_duration: float = Field(default=0.3, ge=0)
    redirect_guard_window: float = Field(default=10.0, ge=0)

    # Visibility gate
    hide_content_during_init: bool = True
    max_init_time: float = Field(default=5.0, ge=0)
    show_loading_indicator: bool = True
    hide_method: str = Field(default="opacity")

    # Event source
    tick_interval: float = Field(default=1.0, gt=0)
    throttle_ms: int = Field(default=100, ge=0, description="Scroll debounce")

    # Visitor state
    session_timeout: float = Field(default=1800.0, gt=0)

    # Telemetry
    track_interactions: bool = True
    batch_size: int = Field(default=10, gt=0)
    batch_timeout: float = Field(default=5.0, ge=0)

    @field_validator("hide_method")
    @classmethod
    def validate_hide_method(cls, value: str) -> str:
        value = value.strip().lower()
        if value not in ("opacity", "visibility"):
            raise ValueError("hide_method must be 'opacity' or 'visibility'")
        return value

    @field_validator("api_endpoint")
    @classmethod
    def strip_trailing_slash(cls, value: str) -> str:
        return value.rstrip("/")

    @property
    def effective_log_level(self) -> str:
        return "debug" if self.debug else self.log_level

    @property
    def throttle(self) -> float:
        return self.throttle_ms / 1000.0


def get_config(**overrides) -> EngineConfig:
    """Get engine configuration, raising ConfigurationError on invalid values."""
    try:
        return EngineConfig(**overrides)
    except PydanticValidationError as e:
        raise ConfigurationError(
            "Invalid engine configuration",
            details={"errors": [error["msg"] for error in e.errors()]}
        ) from e
