"""
Configuration management using Pydantic Settings.
Loads environment variables and provides centralized constants.
"""

import logging
from functools import lru_cache
from typing import Annotated, List, Literal

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, NoDecode, SettingsConfigDict

logger = logging.getLogger(__name__)


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Upstream catalog (TMDB)
    tmdb_api_key: str = Field(
        ...,
        description="TMDB API key (required)",
    )
    tmdb_base_url: str = Field(
        default="https://api.themoviedb.org/3",
        description="Base URL for the TMDB REST API",
    )
    tmdb_language: str = Field(
        default="fr-FR",
        description="Language requested for listing and detail payloads",
    )
    tmdb_media_types: Annotated[List[Literal["movie", "tv"]], NoDecode] = Field(
        default=["movie", "tv"],
        min_length=1,
        description="Popular listings walked by scheduled and CLI syncs, in order",
    )

    # Cache backend
    cache_backend: Literal["volatile", "durable"] = Field(
        default="volatile",
        description="Backend variant: in-process (volatile) or persisted (durable)",
    )
    cache_ttl: int = Field(
        default=86400,
        ge=1,
        description="Time-to-live for every cache entry in seconds",
    )
    cache_max_size: int = Field(
        default=1000,
        ge=1,
        description="Capacity bound of the volatile backend",
    )
    database_url: str = Field(
        default="sqlite+aiosqlite:///./catalog_cache.db",
        description="SQLAlchemy async URL of the durable backend",
    )
    durable_chunk_size: int = Field(
        default=200,
        ge=1,
        description="Rows written per transaction by the durable bulk path",
    )

    # Bulk sync
    sync_page_size: int = Field(
        default=20,
        ge=1,
        description="Items per upstream popular page",
    )
    sync_default_count: int = Field(
        default=500,
        ge=1,
        description="Items requested by scheduled and CLI syncs",
    )
    sync_default_backoff: float = Field(
        default=10.0,
        gt=0,
        description="Backoff in seconds when a rate-limit signal carries no delay",
    )
    sync_fetch_details: bool = Field(
        default=True,
        description="Fetch full detail for summary-only listing items",
    )
    sync_interval: int = Field(
        default=21600,
        ge=0,
        description="Seconds between scheduled syncs (0 disables)",
    )
    purge_interval: int = Field(
        default=3600,
        ge=0,
        description="Seconds between expired-entry purges (0 disables)",
    )
    sync_shutdown_grace: float = Field(
        default=30.0,
        ge=0,
        description="Seconds shutdown waits for an in-flight sync to flush its current page",
    )

    # Application Constants
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = Field(
        default="INFO",
        description="Logging level",
    )

    @field_validator("tmdb_api_key")
    @classmethod
    def validate_api_key(cls, v: str) -> str:
        """Ensure API key is not empty."""
        if not v or v.strip() == "":
            raise ValueError("TMDB_API_KEY must not be empty")
        return v.strip()

    @field_validator("tmdb_media_types", mode="before")
    @classmethod
    def split_media_types(cls, v):
        """Accept a comma-separated string such as ``movie,tv``."""
        if isinstance(v, str):
            return [part.strip() for part in v.split(",") if part.strip()]
        return v

    @field_validator("tmdb_base_url")
    @classmethod
    def validate_base_url(cls, v: str) -> str:
        """Ensure base URL is properly formatted."""
        v = v.strip().rstrip("/")
        if not v.startswith(("http://", "https://")):
            raise ValueError("TMDB_BASE_URL must start with http:// or https://")
        return v


@lru_cache
def get_settings() -> Settings:
    """
    Get cached settings instance.

    Returns:
        Settings: Application settings singleton

    Raises:
        ValidationError: If required environment variables are missing or invalid
    """
    return Settings()
