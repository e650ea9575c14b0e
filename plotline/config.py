"""Application configuration models."""

from __future__ import annotations

from functools import lru_cache
from typing import Literal

from pydantic import AliasChoices, Field, HttpUrl, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Settings loaded from environment variables or a .env file."""

    app_name: str = Field(default="Plotline", alias="APP_NAME")
    server_host: str = Field(default="0.0.0.0", alias="HOST")
    server_port: int = Field(default=3000, alias="PORT")
    log_level: str = Field(default="INFO", alias="LOG_LEVEL")

    tmdb_api_key: str | None = Field(default=None, alias="TMDB_API_KEY")
    tmdb_api_url: HttpUrl = Field(
        default="https://api.themoviedb.org/3", alias="TMDB_API_URL"
    )
    tmdb_image_url: HttpUrl = Field(
        default="https://image.tmdb.org/t/p/", alias="TMDB_IMAGE_URL"
    )
    tmdb_language: str = Field(default="en-US", alias="TMDB_LANGUAGE")

    omdb_api_key: str | None = Field(
        default=None,
        alias="OMDB_API_KEY",
        validation_alias=AliasChoices("OMDB_API_KEY", "OMDB_KEY"),
    )
    omdb_api_url: HttpUrl = Field(
        default="https://www.omdbapi.com", alias="OMDB_API_URL"
    )

    http_timeout_seconds: float = Field(
        default=30.0, alias="HTTP_TIMEOUT", gt=0, le=300
    )
    http_connect_timeout_seconds: float = Field(
        default=10.0, alias="HTTP_CONNECT_TIMEOUT", gt=0, le=120
    )
    upstream_retry_limit: int = Field(
        default=2, alias="UPSTREAM_RETRY_LIMIT", ge=0, le=10
    )

    image_cache_max_items: int = Field(
        default=100, alias="IMAGE_CACHE_MAX_ITEMS", ge=1, le=10_000
    )
    image_cache_max_bytes: int = Field(
        default=50 * 1024 * 1024, alias="IMAGE_CACHE_MAX_BYTES", ge=1024
    )

    episode_page_ceiling: int = Field(
        default=25, alias="EPISODE_PAGE_CEILING", ge=1, le=1_000
    )

    daily_pick_max_attempts: int = Field(
        default=5, alias="DAILY_PICK_MAX_ATTEMPTS", ge=1, le=50
    )
    daily_pick_key: str = Field(default="dailyPickCache", alias="DAILY_PICK_KEY")

    database_url: str = Field(
        default="sqlite+aiosqlite:///./plotline.db", alias="DATABASE_URL"
    )

    environment: Literal["development", "production"] = Field(
        default="development", alias="ENVIRONMENT"
    )

    @field_validator("tmdb_api_key", "omdb_api_key", mode="before")
    @classmethod
    def _strip_blank(cls, value: object) -> object:
        if value is None:
            return None
        if isinstance(value, str):
            stripped = value.strip()
            return stripped or None
        return value

    @field_validator("log_level", mode="before")
    @classmethod
    def _normalise_log_level(cls, value: object) -> str:
        """Accept log levels in any case and fall back to INFO when blank."""

        if value is None:
            return "INFO"
        level = str(value).strip().upper()
        if not level:
            return "INFO"
        if level not in {"CRITICAL", "ERROR", "WARNING", "INFO", "DEBUG"}:
            raise ValueError("LOG_LEVEL must be a standard logging level name")
        return level

    @field_validator("daily_pick_key", mode="before")
    @classmethod
    def _require_pick_key(cls, value: object) -> object:
        if isinstance(value, str) and not value.strip():
            raise ValueError("DAILY_PICK_KEY must not be blank")
        return value.strip() if isinstance(value, str) else value

    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8")


@lru_cache
def get_settings() -> Settings:
    """Return a cached settings instance."""

    return Settings()  # type: ignore[call-arg]


settings = get_settings()
