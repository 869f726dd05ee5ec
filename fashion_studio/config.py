"""Configuration using pydantic-settings."""

import os
from typing import Literal

from pydantic import model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from .models import SubscriptionTier


class Settings(BaseSettings):
    """Application settings with validation and constants."""

    model_config = SettingsConfigDict(env_prefix="STUDIO_", env_file=".env", extra="ignore")

    host: str = "0.0.0.0"  # nosec B104 - Required for container deployment
    port: int = 8000
    log_level: str = "INFO"
    log_file: str | None = None

    environment: Literal["development", "docker", "lambda"] = "development"

    # Image providers
    image_provider: Literal["gemini", "openrouter"] = "gemini"
    gemini_api_key: str | None = None
    openrouter_api_key: str | None = None
    openrouter_base_url: str = "https://openrouter.ai/api/v1"
    openrouter_model: str = "google/gemini-2.5-flash-image"
    enable_fallback: bool = True
    provider_timeout: int = 120
    flash_model: str = "gemini-2.5-flash-image"
    pro_model: str = "gemini-3-pro-image-preview"

    # Circuit breaker around the image provider
    breaker_failure_threshold: int = 5
    breaker_recovery_seconds: int = 60

    database_url: str = "sqlite+aiosqlite:///./data/studio.db"
    redis_url: str | None = None

    aws_region: str = "us-east-1"
    dynamodb_table: str = "fashion-studio"

    # Generated image storage
    media_dir: str = "./data/media"
    media_base_url: str = "/media"
    s3_bucket: str | None = None
    s3_public_url: str | None = None

    rate_limit: str = "30/minute"

    # Guest quota
    guest_limit: int = 3
    guest_window_hours: int = 24
    guest_localhost_bypass: bool = True

    # Credits
    starter_credits: int = 50
    deactivated_credits: int = 5

    # JWT settings
    secret_key: str = "your-secret-key-change-in-production"  # noqa: S105
    jwt_algorithm: str = "HS256"
    jwt_audience: str | None = None
    jwt_expiration_minutes: int = 60

    # Payments
    stripe_secret_key: str | None = None
    webhook_secret: str | None = None

    @property
    def is_lambda_environment(self) -> bool:
        """Check if running in AWS Lambda."""
        return self.environment == "lambda" or bool(os.getenv("AWS_LAMBDA_FUNCTION_NAME"))

    @property
    def effective_database_url(self) -> str:
        """Get the effective database URL based on environment."""
        if self.is_lambda_environment:
            return f"dynamodb://{self.dynamodb_table}?region={self.aws_region}"
        return self.database_url

    @property
    def monthly_credits(self) -> dict[SubscriptionTier, int]:
        """Credits granted per paid subscription period."""
        return {
            SubscriptionTier.STARTER: 100,
            SubscriptionTier.CREATOR: 500,
            SubscriptionTier.STUDIO: 2000,
        }

    @model_validator(mode="after")
    def validate_limits(self) -> "Settings":
        """Validate quota and credit settings."""
        if self.guest_limit < 0:
            raise ValueError("STUDIO_GUEST_LIMIT must not be negative")
        if self.guest_window_hours <= 0:
            raise ValueError("STUDIO_GUEST_WINDOW_HOURS must be positive")
        if self.starter_credits < 0 or self.deactivated_credits < 0:
            raise ValueError("Credit allowances must not be negative")
        return self

    @model_validator(mode="after")
    def validate_environment(self) -> "Settings":
        """Set environment based on STUDIO_ENV or AWS Lambda detection."""
        env = os.getenv("STUDIO_ENV", "").lower()
        if env in ("lambda", "docker", "development"):
            self.environment = env  # type: ignore[assignment]
        elif os.getenv("AWS_LAMBDA_FUNCTION_NAME"):
            self.environment = "lambda"
        return self


settings = Settings()


def get_settings() -> Settings:
    """Get settings instance (for dependency injection)."""
    return settings
