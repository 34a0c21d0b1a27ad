"""Application settings.

All configuration is sourced from environment variables prefixed with
``SWIMLANE_`` (and optionally `.env`). Every field has a default so the
library works without any environment.
"""

from __future__ import annotations

from typing import List, Optional

from pydantic import Field, ValidationError, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from ..core.defaults import DEFAULT_DIAGRAM_TITLE, DEFAULT_LANE_TITLES
from ..core.diagram import Orientation
from ..core.exceptions import ConfigurationError


class Settings(BaseSettings):
    """Typed environment-backed settings for swimlane."""

    model_config = SettingsConfigDict(
        env_prefix="SWIMLANE_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # History
    history_limit: int = Field(default=50, ge=1)
    # None keeps every audit entry
    audit_limit: Optional[int] = Field(default=None, ge=1)

    # New content
    default_orientation: Orientation = Orientation.VERTICAL
    default_diagram_title: str = DEFAULT_DIAGRAM_TITLE
    default_lane_titles: List[str] = Field(default_factory=lambda: list(DEFAULT_LANE_TITLES))
    new_lane_title: str = "New lane"
    new_step_title: str = "New step"

    # Logging
    log_level: str = "INFO"
    json_logs: bool = False

    # HTTP API
    cors_origins: List[str] = Field(
        default_factory=lambda: ["http://localhost:5173", "http://127.0.0.1:5173"]
    )
    rate_limit: str = "120 per minute"

    @field_validator("default_lane_titles")
    @classmethod
    def validate_lane_titles(cls, v: List[str]) -> List[str]:
        titles = [title.strip() for title in v if title and title.strip()]
        if not titles:
            raise ValueError("default_lane_titles needs at least one title")
        return titles

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        return v.strip().upper() or "INFO"


def load_settings(**overrides) -> Settings:
    """Build settings from the environment, applying keyword overrides."""
    try:
        return Settings(**overrides)
    except ValidationError as exc:
        raise ConfigurationError(
            "Invalid swimlane settings",
            context={"errors": [error["msg"] for error in exc.errors()]},
        ) from exc
