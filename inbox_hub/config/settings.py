"""
Application configuration settings using Pydantic Settings.

This module provides centralized configuration management with
environment variable support, validation, and type safety.
"""

from typing import Optional
from enum import Enum
from functools import lru_cache

from pydantic import Field, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from inbox_hub.models.types import PlatformType


class Environment(str, Enum):
    """Application environment options."""
    DEVELOPMENT = "development"
    TESTING = "testing"
    STAGING = "staging"
    PRODUCTION = "production"


class LogLevel(str, Enum):
    """Logging level options."""
    DEBUG = "DEBUG"
    INFO = "INFO"
    WARNING = "WARNING"
    ERROR = "ERROR"
    CRITICAL = "CRITICAL"


class StorageBackend(str, Enum):
    """Persistence backends available to the repositories."""
    MEMORY = "memory"
    MONGODB = "mongodb"


class Settings(BaseSettings):
    """Application settings with environment variable support."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=True,
        validate_assignment=True,
        extra="ignore",
    )

    # Environment Configuration
    ENVIRONMENT: Environment = Field(
        default=Environment.DEVELOPMENT,
        description="Application environment"
    )
    DEBUG: bool = Field(
        default=False,
        description="Enable debug mode"
    )

    # Server Configuration
    HOST: str = Field(
        default="0.0.0.0",
        description="Server host address"
    )
    PORT: int = Field(
        default=8002,
        ge=1,
        le=65535,
        description="Server port number"
    )

    # Logging Configuration
    LOG_LEVEL: LogLevel = Field(
        default=LogLevel.INFO,
        description="Logging level"
    )
    LOG_FORMAT: str = Field(
        default="json",
        pattern=r"^(json|text)$",
        description="Log output format"
    )

    # Meta Graph API Configuration
    META_GRAPH_API_BASE_URL: str = Field(
        default="https://graph.facebook.com",
        description="Graph API base URL"
    )
    META_GRAPH_API_VERSION: str = Field(
        default="v21.0",
        pattern=r"^v\d+\.\d+$",
        description="Graph API version used for every call"
    )
    META_APP_SECRET: str = Field(
        default="",
        description="App secret used to verify X-Hub-Signature-256"
    )
    WHATSAPP_APP_SECRET: Optional[str] = Field(
        default=None,
        description="Separate app secret for WhatsApp webhooks, if the WABA uses another app"
    )
    META_WEBHOOK_VERIFY_TOKEN: str = Field(
        default="",
        description="Token echoed back during hub.challenge subscription checks"
    )

    # Send Policy Configuration
    WHATSAPP_SESSION_WINDOW_HOURS: int = Field(
        default=24,
        ge=1,
        le=168,
        description="Customer-service window for free-form WhatsApp sends"
    )

    # Outbound Dispatch Configuration
    OUTBOUND_CONNECT_TIMEOUT_SECONDS: float = Field(
        default=5.0,
        gt=0,
        le=60,
        description="Connect timeout for Graph API calls"
    )
    OUTBOUND_TIMEOUT_SECONDS: float = Field(
        default=15.0,
        gt=0,
        le=120,
        description="Read/write timeout for Graph API calls"
    )
    OUTBOUND_MAX_ATTEMPTS: int = Field(
        default=3,
        ge=1,
        le=10,
        description="Maximum send attempts for retryable outcomes"
    )
    OUTBOUND_BACKOFF_BASE_SECONDS: float = Field(
        default=1.0,
        ge=0,
        le=60,
        description="Base delay for exponential backoff"
    )
    OUTBOUND_BACKOFF_MAX_SECONDS: float = Field(
        default=30.0,
        ge=0,
        le=600,
        description="Upper bound for a single backoff delay"
    )

    # Realtime Configuration
    REALTIME_SESSION_QUEUE_SIZE: int = Field(
        default=256,
        ge=1,
        le=10000,
        description="Buffered events per agent session before it is dropped"
    )
    REALTIME_BACKPLANE_ENABLED: bool = Field(
        default=False,
        description="Relay realtime events through Redis pub/sub"
    )
    REDIS_URL: str = Field(
        default="redis://localhost:6379/0",
        description="Redis connection URL"
    )
    REDIS_CHANNEL_PREFIX: str = Field(
        default="inbox_hub",
        min_length=1,
        max_length=64,
        description="Prefix for realtime pub/sub channels"
    )

    # Storage Configuration
    STORAGE_BACKEND: StorageBackend = Field(
        default=StorageBackend.MEMORY,
        description="Repository backend"
    )
    MONGODB_URI: str = Field(
        default="mongodb://localhost:27017",
        description="MongoDB connection URI"
    )
    MONGODB_DATABASE: str = Field(
        default="inbox_hub",
        min_length=1,
        max_length=64,
        description="MongoDB database name"
    )
    MONGODB_MAX_CONNECTIONS: int = Field(
        default=100,
        ge=1,
        le=1000,
        description="MongoDB maximum connections"
    )
    TOKEN_ENCRYPTION_KEY: Optional[str] = Field(
        default=None,
        description="Fernet key for encrypting platform tokens at rest"
    )

    # History Sync Configuration
    FACEBOOK_SYNC_ENABLED: bool = Field(
        default=False,
        description="Periodically backfill Messenger history"
    )
    FACEBOOK_SYNC_INTERVAL_MINUTES: int = Field(
        default=5,
        ge=1,
        le=1440,
        description="Interval between history sync runs"
    )
    FACEBOOK_SYNC_MAX_PAGES: int = Field(
        default=10,
        ge=1,
        le=100,
        description="Maximum pages fetched per conversation listing"
    )

    # Monitoring Configuration
    METRICS_ENABLED: bool = Field(
        default=True,
        description="Expose Prometheus metrics"
    )

    @field_validator("META_GRAPH_API_BASE_URL")
    @classmethod
    def validate_base_url(cls, v):
        """Strip trailing slashes so paths can be joined safely."""
        if not v.startswith(("http://", "https://")):
            raise ValueError(f"Invalid Graph API base URL: {v}")
        return v.rstrip("/")

    @model_validator(mode='after')
    def validate_environment_consistency(self):
        """Validate environment-specific consistency."""
        if self.ENVIRONMENT == Environment.PRODUCTION:
            if self.DEBUG:
                raise ValueError("Debug mode should not be enabled in production")

            if not self.META_APP_SECRET:
                raise ValueError("META_APP_SECRET is required in production")

            if not self.META_WEBHOOK_VERIFY_TOKEN:
                raise ValueError("META_WEBHOOK_VERIFY_TOKEN is required in production")

            if self.STORAGE_BACKEND == StorageBackend.MEMORY:
                raise ValueError("In-memory storage not allowed in production")

        if self.OUTBOUND_BACKOFF_BASE_SECONDS > self.OUTBOUND_BACKOFF_MAX_SECONDS:
            raise ValueError("Backoff base cannot exceed backoff max")

        return self

    def get_app_secret(self, platform_type: PlatformType) -> str:
        """Get the webhook signing secret for a platform type."""
        if platform_type == PlatformType.WHATSAPP and self.WHATSAPP_APP_SECRET:
            return self.WHATSAPP_APP_SECRET
        return self.META_APP_SECRET


@lru_cache()
def get_settings() -> Settings:
    """
    Get application settings (cached singleton).

    Returns:
        Settings: Configured application settings instance

    Note:
        Settings are cached using functools.lru_cache to avoid
        re-parsing environment variables on every call.
    """
    return Settings()


def reload_settings() -> Settings:
    """
    Force reload of application settings.

    Returns:
        Settings: New settings instance
    """
    get_settings.cache_clear()
    return get_settings()
