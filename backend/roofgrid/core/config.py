"""
Configuration for RoofGrid.

Settings are read from environment variables (prefix ``ROOFGRID_``) and an
optional ``.env`` file in the working directory.

Example:
    ROOFGRID_LOG_LEVEL=DEBUG
    ROOFGRID_TAX_RATE=0.0825
    ROOFGRID_DEFAULT_TIER=Best
"""

from functools import lru_cache
from typing import List

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings with environment validation."""

    # API configuration
    app_name: str = "RoofGrid"
    app_version: str = "0.1.0"
    api_prefix: str = "/api/v1"
    cors_origins: List[str] = Field(default_factory=lambda: ["*"])

    # Logging configuration
    log_level: str = "INFO"

    # Estimating defaults
    default_pitch: int = Field(default=6, ge=0, le=18)
    default_waste_factor: int = Field(default=10, ge=0, le=25)
    default_tier: str = "Better"
    tax_rate: float = Field(default=0.08, ge=0.0, le=1.0)

    model_config = SettingsConfigDict(
        env_file=".env",
        env_prefix="ROOFGRID_",
        case_sensitive=False,
        extra="ignore",
    )


@lru_cache()
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
