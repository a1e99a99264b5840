"""
Configuration management for BigML local predictions.

Uses Pydantic settings for type-safe configuration with environment variable support.
All settings can be overridden via environment variables (BIGML_USERNAME,
BIGML_API_KEY, BIGML_DOMAIN, ...).
"""

import logging
from functools import lru_cache
from pathlib import Path
from typing import Optional

from pydantic import Field, computed_field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """
    Connection and loading settings with environment variable support.

    Every field maps to a ``BIGML_``-prefixed environment variable:
    ``storage_dir`` is read from BIGML_STORAGE_DIR, ``max_models`` from
    BIGML_MAX_MODELS and so on.
    """

    model_config = SettingsConfigDict(
        env_prefix="BIGML_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # ==========================================================================
    # Credentials
    # ==========================================================================
    username: Optional[str] = Field(default=None, description="BigML username")
    api_key: Optional[str] = Field(default=None, description="BigML API key")

    # ==========================================================================
    # API location
    # ==========================================================================
    domain: str = Field(default="bigml.io", description="API domain")
    protocol: str = Field(default="https", description="http or https")
    api_version: str = Field(default="andromeda", description="API version path")

    # ==========================================================================
    # HTTP behaviour
    # ==========================================================================
    request_timeout: float = Field(default=30.0, gt=0)
    max_retries: int = Field(default=3, ge=1, le=10)
    requests_per_minute: int = Field(default=600, ge=1)
    poll_interval: float = Field(default=1.0, gt=0, description="Initial wait between status polls")
    max_poll_interval: float = Field(default=30.0, gt=0)

    # ==========================================================================
    # Local resources
    # ==========================================================================
    storage_dir: Optional[Path] = Field(
        default=None,
        description="Directory holding downloaded resources as <type>_<id> JSON files",
    )
    max_models: int = Field(
        default=200,
        ge=1,
        le=1000,
        description="Ensemble models fetched per batch",
    )
    log_level: str = Field(default="WARNING", description="Level for the bigml_local logger")

    @computed_field
    @property
    def base_url(self) -> str:
        """Root URL every resource path is appended to."""
        return f"{self.protocol}://{self.domain}/{self.api_version}/"

    @computed_field
    @property
    def auth_params(self) -> dict[str, str]:
        """Query string credentials, empty when not configured."""
        if self.username and self.api_key:
            return {"username": self.username, "api_key": self.api_key}
        return {}


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()


def configure_logging(settings: Optional[Settings] = None) -> None:
    """Apply the configured level to the package logger."""
    settings = settings or get_settings()
    logging.getLogger("bigml_local").setLevel(settings.log_level.upper())
