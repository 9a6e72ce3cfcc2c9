"""
Runtime configuration helpers for the Wolfpack sync layer.

Loads DATABASE_URL, push delivery and realtime tuning values from the
environment and the .env file located in the project root.
"""

from __future__ import annotations

from functools import lru_cache
from pathlib import Path

from dotenv import load_dotenv
from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

# Resolve the project root
BASE_DIR = Path(__file__).resolve().parents[1]

# Absolute path to .env
ENV_PATH = BASE_DIR / ".env"

# Load .env defaults without overriding environment variables provided by the platform
load_dotenv(dotenv_path=ENV_PATH, override=False)


class Settings(BaseSettings):
    database_url: str = Field(default="sqlite+pysqlite:///./wolfpack.db", alias="DATABASE_URL")

    app_name: str = Field(default="Side Hustle Wolfpack", alias="APP_NAME")
    api_version: str = Field(default="0.1.0", alias="API_VERSION")
    public_base_url: str = Field(default="https://sidehustlelounge.com", alias="PUBLIC_BASE_URL")

    # Push delivery
    push_endpoint_url: str | None = Field(default=None, alias="PUSH_ENDPOINT_URL")
    push_timeout: float = Field(default=10.0, alias="PUSH_TIMEOUT")
    push_shared_secret: str | None = Field(default=None, alias="PUSH_SHARED_SECRET")

    # Realtime / messaging tuning
    typing_timeout_seconds: float = Field(default=3.0, alias="TYPING_TIMEOUT_SECONDS")
    typing_debounce_seconds: float = Field(default=1.0, alias="TYPING_DEBOUNCE_SECONDS")
    message_page_size: int = Field(default=50, alias="MESSAGE_PAGE_SIZE")
    notification_preview_chars: int = Field(default=50, alias="NOTIFICATION_PREVIEW_CHARS")
    unread_refresh_seconds: float = Field(default=30.0, alias="UNREAD_REFRESH_SECONDS")
    permission_request_cooldown_hours: float = Field(default=24.0, alias="PERMISSION_REQUEST_COOLDOWN_HOURS")
    expiry_sweep_minutes: float = Field(default=60.0, alias="EXPIRY_SWEEP_MINUTES")

    # Object storage (DigitalOcean Spaces / any S3-compatible endpoint)
    spaces_key: str | None = Field(default=None, alias="DO_SPACES_KEY")
    spaces_secret: str | None = Field(default=None, alias="DO_SPACES_SECRET")
    spaces_region: str | None = Field(default=None, alias="DO_SPACES_REGION")
    spaces_bucket: str | None = Field(default=None, alias="DO_SPACES_NAME")
    spaces_endpoint: str | None = Field(default=None, alias="DO_SPACES_ENDPOINT")

    model_config = SettingsConfigDict(
        env_file=str(ENV_PATH),
        env_file_encoding="utf-8",
        extra="ignore"
    )


@lru_cache()
def get_settings() -> Settings:
    return Settings()


__all__ = ["Settings", "get_settings"]
