"""
Application configuration with environment-driven settings.
"""

from functools import lru_cache
import os
from typing import Literal

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Application
    app_name: str = "bizadvisor"
    app_env: Literal["dev", "qa", "uat", "prod"] = "dev"
    debug: bool = False
    log_level: str = "INFO"

    # Local durable store (on-device)
    database_url: str = Field(
        default="sqlite+aiosqlite:///./bizadvisor.db",
        description="Async SQLAlchemy URL of the local context/queue store",
    )
    device_id: str = Field(
        default="device-local",
        description="Identifier of this device, sent with every upload batch",
    )

    # Dialogue
    session_timeout_minutes: int = Field(
        default=30,
        ge=1,
        description="Inactivity window after which an active session is closed",
    )
    session_sweep_interval_seconds: int = Field(
        default=60,
        ge=1,
        le=3600,
        description="Interval of the background session-timeout sweep",
    )
    entity_confidence_floor: float = Field(
        default=0.5,
        ge=0.0,
        le=1.0,
        description="Entities below this confidence are hints, not facts",
    )
    stt_min_confidence: float = Field(
        default=0.7,
        ge=0.0,
        le=1.0,
        description="Transcriptions below this confidence trigger a re-prompt",
    )
    max_declines_per_field: int = Field(
        default=2,
        ge=1,
        description="Consecutive declines after which a field is accepted as unset",
    )

    # Offline queue
    offline_queue_max_items: int = Field(
        default=500,
        ge=1,
        description="Maximum pending + in-flight items held on the device",
    )

    # Sync
    sync_endpoint_url: str = Field(
        default="http://localhost:8890",
        description="Base URL of the remote sync endpoint",
    )
    sync_api_key: str = Field(
        default="",
        description="Bearer token sent to the remote sync endpoint",
    )
    sync_batch_size: int = Field(default=20, ge=1, le=500)
    sync_max_attempts: int = Field(default=3, ge=1, le=10)
    sync_backoff_base_seconds: float = Field(default=1.0, ge=0.0)
    sync_reachability_timeout_seconds: float = Field(default=5.0, gt=0.0)
    sync_http_timeout_seconds: float = Field(default=15.0, gt=0.0)

    # Business advisor
    advisor_provider: Literal["openai", "mock"] = "mock"
    openai_api_key: str = Field(default="", description="API key for the OpenAI advisor")
    advisor_model: str = "gpt-4.1-mini"
    advisor_timeout_seconds: float = Field(default=30.0, gt=0.0)

    # CORS
    cors_origins: str = Field(
        default="http://localhost:8880",
        description="Comma-separated list of allowed CORS origins",
    )

    @field_validator("sync_endpoint_url", mode="before")
    @classmethod
    def strip_trailing_slash(cls, v: str) -> str:
        """Normalise the endpoint base URL."""
        return v.rstrip("/") if isinstance(v, str) else v

    @property
    def cors_origins_list(self) -> list[str]:
        """Parse CORS origins into a list."""
        return [origin.strip() for origin in self.cors_origins.split(",") if origin.strip()]

    @property
    def session_timeout_seconds(self) -> float:
        return self.session_timeout_minutes * 60.0


@lru_cache
def _get_settings_cached() -> Settings:
    return Settings()


def get_settings() -> Settings:
    # Under pytest env vars change between tests (monkeypatch); never serve a frozen copy.
    if os.environ.get("PYTEST_CURRENT_TEST"):
        return Settings()
    return _get_settings_cached()
