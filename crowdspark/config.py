"""
Configuration and settings for the CrowdSpark backend.
"""

from __future__ import annotations

from functools import lru_cache
from typing import Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

DEFAULT_JWT_SECRET = "dev-secret-change-me"


class Settings(BaseSettings):
    """Environment-backed settings for the FastAPI service."""

    model_config = SettingsConfigDict(
        env_file=".env", env_file_encoding="utf-8", extra="ignore"
    )

    app_env: str = Field(default="development")
    host: str = Field(default="0.0.0.0")
    port: int = Field(default=5000)
    log_level: str = Field(default="INFO")

    # Any SQLAlchemy URL (Postgres in production, SQLite for local runs).
    database_url: Optional[str] = Field(default=None)

    # Session credential
    jwt_secret: str = Field(default=DEFAULT_JWT_SECRET)
    jwt_expires_in: int = Field(default=7 * 24 * 60 * 60)
    bcrypt_rounds: int = Field(default=10, ge=4, le=31)

    # Comma separated list of allowed cross-origin callers.
    frontend_url: Optional[str] = Field(default=None)

    # Hosted payment gateway (Razorpay)
    razorpay_key_id: Optional[str] = Field(default=None)
    razorpay_key_secret: Optional[str] = Field(default=None)
    razorpay_api_base: str = Field(default="https://api.razorpay.com/v1")
    payment_currency: str = Field(default="INR")

    # S3-compatible media hosting for campaign images
    media_bucket: Optional[str] = Field(default=None)
    media_region: Optional[str] = Field(default=None)
    media_endpoint: Optional[str] = Field(default=None)
    media_public_base_url: Optional[str] = Field(default=None)
    aws_access_key_id: Optional[str] = Field(default=None)
    aws_secret_access_key: Optional[str] = Field(default=None)

    # Development toggles
    use_in_memory_backends: bool = Field(default=False)

    # Cross-process notification fan-out (Redis pub/sub)
    redis_url: Optional[str] = Field(default=None)
    notifications_channel: str = Field(default="crowdspark:notifications")

    @property
    def is_production(self) -> bool:
        return self.app_env.lower() == "production"

    @property
    def allowed_origins(self) -> list[str]:
        if not self.frontend_url:
            return []
        return [o.strip() for o in self.frontend_url.split(",") if o.strip()]


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Return cached settings instance."""
    return Settings()
