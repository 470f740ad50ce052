"""
Configuration and settings for the civic issues backend.
"""

from __future__ import annotations

from functools import lru_cache
from typing import Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Environment-backed settings for the FastAPI service."""

    model_config = SettingsConfigDict(
        env_file=".env", env_file_encoding="utf-8", extra="ignore"
    )

    api_prefix: str = Field(default="/api")

    # Database (any SQLAlchemy URL; Postgres expected in production)
    database_url: Optional[str] = Field(default=None, env="DATABASE_URL")

    # S3-compatible object storage for issue photos
    storage_endpoint: Optional[str] = Field(default=None, env="STORAGE_ENDPOINT")
    storage_region: Optional[str] = Field(default=None, env="STORAGE_REGION")
    storage_bucket: Optional[str] = Field(default=None, env="STORAGE_BUCKET")
    aws_access_key_id: Optional[str] = Field(
        default=None, env="AWS_ACCESS_KEY_ID"
    )
    aws_secret_access_key: Optional[str] = Field(
        default=None, env="AWS_SECRET_ACCESS_KEY"
    )

    # LLM / Gemini (vision labeling + sentiment)
    gemini_api_key: Optional[str] = Field(default=None, env="GEMINI_API_KEY")

    # Push notifications
    expo_push_url: str = Field(
        default="https://exp.host/--/api/v2/push/send", env="EXPO_PUSH_URL"
    )

    # Authentication: Firebase ID tokens in production, a static token table otherwise
    use_firebase_auth: bool = Field(default=False, env="USE_FIREBASE_AUTH")

    # Development toggles
    use_in_memory_backends: bool = Field(
        default=False, env="USE_IN_MEMORY_BACKENDS"
    )

    # Queue (Redis)
    redis_url: Optional[str] = Field(default=None, env="REDIS_URL")
    redis_queue_key: str = Field(
        default="jansahyog:triage", env="REDIS_QUEUE_KEY"
    )

    # Issue submission
    require_issue_image: bool = Field(default=True, env="REQUIRE_ISSUE_IMAGE")
    max_image_bytes: int = Field(default=5 * 1024 * 1024, env="MAX_IMAGE_BYTES")
    max_image_dimension: int = Field(default=1600, env="MAX_IMAGE_DIMENSION")


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Return cached settings instance."""
    return Settings()
