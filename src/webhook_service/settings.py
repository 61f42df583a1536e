"""Application settings."""
from __future__ import annotations

from functools import lru_cache
from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Core configuration for the Webhook Service."""

    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    app_name: str = "webhook-service"
    env: Literal["development", "staging", "production"] = "development"
    host: str = "0.0.0.0"
    port: int = 8004
    log_level: str = "INFO"

    # Delivery engine
    webhook_dispatch_interval_seconds: float = 1.0
    webhook_batch_size: int = Field(default=10, ge=1)
    webhook_request_timeout_seconds: float = 30.0
    webhook_max_attempts: int = Field(default=3, ge=1)
    webhook_retry_base_delay_seconds: float = 1.0
    webhook_failure_threshold: int = Field(default=10, ge=1)
    webhook_user_agent: str = "Oblivion-Protocol-Webhook/1.0"
    webhook_history_size: int = 500  # finalized attempts kept for inspection


@lru_cache
def get_settings() -> Settings:
    """Cached settings instance."""
    return Settings()


settings = get_settings()
