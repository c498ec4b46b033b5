"""Application configuration models."""

from __future__ import annotations

from functools import lru_cache
from pathlib import Path
from typing import Literal

from pydantic import Field, HttpUrl, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Settings loaded from environment variables or a .env file."""

    app_name: str = Field(default="Movista", alias="APP_NAME")
    server_host: str = Field(default="0.0.0.0", alias="HOST")
    server_port: int = Field(default=3000, alias="PORT")

    tmdb_api_key: str | None = Field(default=None, alias="TMDB_API_KEY")
    tmdb_base_url: HttpUrl = Field(
        default="https://api.themoviedb.org/3", alias="TMDB_BASE_URL"
    )
    tmdb_image_base_url: HttpUrl = Field(
        default="https://image.tmdb.org/t/p/", alias="TMDB_IMAGE_BASE_URL"
    )
    tmdb_language: str = Field(default="en-US", alias="TMDB_LANGUAGE")
    tmdb_timeout_seconds: float = Field(
        default=10.0, alias="TMDB_TIMEOUT", ge=1.0, le=60.0
    )

    openrouter_api_key: str | None = Field(
        default=None, alias="OPENROUTER_API_KEY"
    )
    openrouter_model: str = Field(
        default="google/gemini-2.5-flash-lite", alias="OPENROUTER_MODEL"
    )
    openrouter_api_url: HttpUrl = Field(
        default="https://openrouter.ai/api/v1", alias="OPENROUTER_API_URL"
    )

    favorites_backend: Literal["file", "database", "memory"] = Field(
        default="file", alias="FAVORITES_BACKEND"
    )
    favorites_path: Path = Field(
        default=Path("./movista-store.json"), alias="FAVORITES_PATH"
    )
    database_url: str = Field(
        default="sqlite+aiosqlite:///./movista.db", alias="DATABASE_URL"
    )

    environment: Literal["development", "production"] = Field(
        default="development", alias="ENVIRONMENT"
    )

    @field_validator("tmdb_api_key", "openrouter_api_key", mode="before")
    @classmethod
    def _strip_blank(cls, value: object) -> object:
        """Treat blank credentials as missing."""

        if isinstance(value, str):
            value = value.strip()
            if not value:
                return None
        return value

    @field_validator("tmdb_language", mode="before")
    @classmethod
    def _default_language(cls, value: object) -> object:
        if value is None:
            return "en-US"
        if isinstance(value, str) and not value.strip():
            return "en-US"
        return value

    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8")


@lru_cache
def get_settings() -> Settings:
    """Return a cached settings instance."""

    return Settings()  # type: ignore[call-arg]


settings = get_settings()
