"""Centralized configuration management using pydantic-settings.

Configuration is loaded from environment variables with sensible defaults.
All settings can be overridden via environment variables or a .env file.
"""

from decimal import Decimal
from enum import Enum
from functools import lru_cache
from pathlib import Path
from typing import Literal

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Environment(str, Enum):
    """Application environment."""

    DEVELOPMENT = "development"
    TESTING = "testing"
    STAGING = "staging"
    PRODUCTION = "production"


class LogLevel(str, Enum):
    """Log level options."""

    DEBUG = "DEBUG"
    INFO = "INFO"
    WARNING = "WARNING"
    ERROR = "ERROR"
    CRITICAL = "CRITICAL"


class Settings(BaseSettings):
    """Application settings loaded from environment variables.

    All settings have sensible defaults for development. Override via
    environment variables (prefixed with FSB_) or .env file.

    Examples:
        FSB_SQLITE_PATH=/var/lib/fsb/billing.db
        FSB_DEFAULT_TAX_RATE=13
        FSB_LOG_LEVEL=DEBUG
        FSB_NOTIFICATION_RELAY_URL=https://relay.internal/notify
    """

    model_config = SettingsConfigDict(
        env_prefix="FSB_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Application
    app_name: str = "Field Service Billing"
    app_version: str = "0.1.0"
    environment: Environment = Environment.DEVELOPMENT
    debug: bool = Field(default=False, description="Enable debug mode")
    company_name: str = Field(
        default="Support Team", description="Sender name used in notifications"
    )

    # Database
    sqlite_path: Path = Field(
        default=Path("fieldservice_billing.db"),
        description="SQLite database file path",
    )

    # Logging
    log_level: LogLevel = LogLevel.INFO
    log_format: Literal["json", "console"] = Field(
        default="console",
        description="Log output format: 'json' for production, 'console' for development",
    )
    log_file: Path | None = Field(default=None, description="Optional log file path")

    # Documents
    default_tax_rate: Decimal = Field(default=Decimal("13"), ge=0, le=100)
    estimate_number_prefix: str = "EST"
    invoice_number_prefix: str = "INV"
    payment_number_prefix: str = "PAY"
    invoice_due_days: int = Field(default=30, ge=0)
    estimate_valid_days: int = Field(
        default=30,
        ge=0,
        description="Days a new estimate can be accepted. 0 means estimates never expire",
    )

    # Reentrancy and idempotency
    operation_timeout_seconds: float = Field(
        default=30.0,
        gt=0,
        description="Upper bound for an in-flight operation before its lock is released",
    )
    duplicate_payment_window_seconds: int = Field(
        default=10,
        ge=0,
        description="Identical payments recorded within this window are treated as one",
    )

    # Notifications
    notification_relay_url: str | None = Field(
        default=None,
        description="Base URL of the email/SMS relay. Unset means log-only delivery.",
    )
    notification_api_key: str | None = Field(
        default=None, description="Bearer token for the notification relay"
    )

    @field_validator("debug", mode="before")
    @classmethod
    def set_debug_from_environment(cls, v: bool, info) -> bool:
        """Auto-enable debug in development environment."""
        if info.data.get("environment") == Environment.DEVELOPMENT:
            return True
        return v

    @field_validator("log_format", mode="before")
    @classmethod
    def set_log_format_from_environment(cls, v: str, info) -> str:
        """Default to JSON logging in production."""
        if v is None:
            env = info.data.get("environment")
            if env == Environment.PRODUCTION:
                return "json"
        return v or "console"

    @property
    def is_production(self) -> bool:
        """Check if running in production environment."""
        return self.environment == Environment.PRODUCTION

    @property
    def is_testing(self) -> bool:
        """Check if running in testing environment."""
        return self.environment == Environment.TESTING

    def number_prefix(self, document_type: str) -> str:
        """Prefix for human-readable numbers of the given document type."""
        prefixes = {
            "estimate": self.estimate_number_prefix,
            "invoice": self.invoice_number_prefix,
            "payment": self.payment_number_prefix,
        }
        try:
            return prefixes[getattr(document_type, "value", document_type)]
        except KeyError:
            raise ValueError(f"Unknown document type: {document_type}")


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance.

    Uses lru_cache to ensure settings are only loaded once.
    Call get_settings.cache_clear() to reload settings.

    Returns:
        Configured Settings instance.
    """
    return Settings()
