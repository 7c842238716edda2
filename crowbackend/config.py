"""
Configuration and settings for the crow backend.
"""

from __future__ import annotations

from functools import lru_cache
from typing import Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

DEFAULT_ALLOWED_ORIGINS = [
    "https://oscarmcglone.com",
    "https://ratethiscrow.oscarmcglone.com",
    "https://crows.oscarmcglone.com",
    "https://ratethiscrow.site",
    "http://127.0.0.1:5500",
]


class Settings(BaseSettings):
    """Environment-backed settings for the FastAPI service."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        populate_by_name=True,
    )

    api_prefix: str = Field(default="")
    log_level: str = Field(default="INFO")

    # Upload gate (UPLOAD_PASS)
    upload_pass: Optional[str] = Field(default=None)

    # Database (Supabase Postgres expected, DATABASE_URL)
    database_url: Optional[str] = Field(default=None)

    # Development toggles
    use_in_memory_backends: bool = Field(
        default=False, alias="CROW_USE_IN_MEMORY_BACKENDS"
    )

    # Pending verification keys live in Redis when REDIS_URL is set.
    redis_url: Optional[str] = Field(default=None)
    redis_key_prefix: str = Field(default="crowmail")

    # Mail (Mailtrap send API)
    mailtrap_api_token: Optional[str] = Field(default=None)
    mailtrap_api_url: str = Field(default="https://send.api.mailtrap.io/api/send")
    mail_sender_email: str = Field(default="crowmail@ratethiscrow.site")
    mail_sender_name: str = Field(default="Crowmail")
    public_base_url: str = Field(default="https://ratethiscrow.site")

    # CORS allow-list, JSON encoded when given through ALLOWED_ORIGINS.
    allowed_origins: list[str] = Field(
        default_factory=lambda: list(DEFAULT_ALLOWED_ORIGINS)
    )

    verification_ttl_seconds: int = Field(default=24 * 60 * 60, ge=1)
    leaderboard_fraction: float = Field(default=0.25, gt=0.0, le=1.0)
    rating_min: float = Field(default=1.0)
    rating_max: float = Field(default=5.0)


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Return cached settings instance."""
    return Settings()
