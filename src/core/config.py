"""Configuration management for the washline platform.

All configuration is loaded from environment variables and/or .env file.
Integration flags default to False (disabled) when not set.
"""
from __future__ import annotations

from functools import lru_cache
from pathlib import Path
from typing import Optional

from pydantic import Field, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

# Project root detection
PROJECT_ROOT = Path(__file__).resolve().parents[2]
ENV_FILE = PROJECT_ROOT / ".env"

DATABASE_FILE = PROJECT_ROOT / "washline.db"
ABSOLUTE_DATABASE_URL = f"sqlite:///{DATABASE_FILE.as_posix()}"


def _resolve_database_url(url: str) -> str:
    """
    Convert relative SQLite paths to absolute paths based on PROJECT_ROOT.

    In-memory URLs and non-SQLite URLs are returned untouched.
    """
    if not url.startswith("sqlite:///"):
        return url

    path_part = url.replace("sqlite:///", "")
    if path_part == ":memory:" or path_part == "":
        return url

    if path_part.startswith("./") or (not path_part.startswith("/") and ":" not in path_part):
        if path_part.startswith("./"):
            path_part = path_part[2:]

        absolute_path = PROJECT_ROOT / path_part
        return f"sqlite:///{absolute_path.as_posix()}"

    return url


class Settings(BaseSettings):
    """
    Runtime configuration powered by environment variables and .env overrides.

    All settings can be configured via:
    1. Environment variables (highest priority)
    2. .env file in project root (loaded automatically)
    3. Default values (lowest priority)

    Integration flags (ENABLE_*) default to False.
    """

    model_config = SettingsConfigDict(
        env_file=ENV_FILE if ENV_FILE.exists() else None,
        env_file_encoding="utf-8",
        extra="ignore",
        case_sensitive=False,
        populate_by_name=True,
    )

    # -------------------------------------------------------------------------
    # Database
    # -------------------------------------------------------------------------
    database_url: str = Field(
        default=ABSOLUTE_DATABASE_URL,
        alias="DATABASE_URL",
        description="SQLAlchemy connection string.",
    )
    db_pool_size: int = Field(default=5, alias="DB_POOL_SIZE", ge=1)
    db_max_overflow: int = Field(default=10, alias="DB_MAX_OVERFLOW", ge=0)
    db_pool_timeout: int = Field(default=30, alias="DB_POOL_TIMEOUT", ge=1)

    # -------------------------------------------------------------------------
    # Admin / Site
    # -------------------------------------------------------------------------
    admin_api_key: Optional[str] = Field(default=None, alias="ADMIN_API_KEY")
    site_url: str = Field(default="http://localhost:3000", alias="SITE_URL")

    # -------------------------------------------------------------------------
    # Intake
    # -------------------------------------------------------------------------
    intake_rate_limit: int = Field(default=3, alias="INTAKE_RATE_LIMIT", ge=1)
    intake_rate_window_seconds: int = Field(default=60, alias="INTAKE_RATE_WINDOW_SECONDS", ge=1)
    intake_rate_cache_size: int = Field(default=500, alias="INTAKE_RATE_CACHE_SIZE", ge=1)
    # Reverse proxies in front of the API that append to X-Forwarded-For; 0 ignores the header
    trusted_proxy_count: int = Field(default=1, alias="TRUSTED_PROXY_COUNT", ge=0)

    # -------------------------------------------------------------------------
    # Scheduling
    # -------------------------------------------------------------------------
    appointment_timezone: str = Field(default="America/New_York", alias="APPOINTMENT_TIMEZONE")
    default_appointment_duration_min: int = Field(
        default=60, alias="DEFAULT_APPOINTMENT_DURATION_MIN", ge=15
    )
    default_travel_buffer_min: int = Field(default=30, alias="DEFAULT_TRAVEL_BUFFER_MIN", ge=0)
    ranker_timeout_seconds: float = Field(default=8.0, alias="RANKER_TIMEOUT_SECONDS", gt=0)

    # -------------------------------------------------------------------------
    # Outbox
    # -------------------------------------------------------------------------
    outbox_batch_size: int = Field(default=10, alias="OUTBOX_BATCH_SIZE", ge=1)
    outbox_max_batch_size: int = Field(default=50, alias="OUTBOX_MAX_BATCH_SIZE", ge=1)
    outbox_poll_interval_seconds: int = Field(default=15, alias="OUTBOX_POLL_INTERVAL_SECONDS", ge=1)
    outbox_lease_seconds: int = Field(default=300, alias="OUTBOX_LEASE_SECONDS", ge=1)

    # -------------------------------------------------------------------------
    # Pricing / Quotes
    # -------------------------------------------------------------------------
    default_deposit_rate: float = Field(default=0.2, alias="DEFAULT_DEPOSIT_RATE", gt=0.0, le=1.0)
    quote_default_expiry_days: Optional[int] = Field(
        default=None, alias="QUOTE_DEFAULT_EXPIRY_DAYS", ge=1, le=90
    )

    # -------------------------------------------------------------------------
    # Twilio
    # -------------------------------------------------------------------------
    twilio_account_sid: Optional[str] = Field(default=None, alias="TWILIO_ACCOUNT_SID")
    twilio_auth_token: Optional[str] = Field(default=None, alias="TWILIO_AUTH_TOKEN")
    twilio_from_number: Optional[str] = Field(default=None, alias="TWILIO_FROM_NUMBER")
    twilio_messaging_service_sid: Optional[str] = Field(
        default=None, alias="TWILIO_MESSAGING_SERVICE_SID"
    )
    staff_alert_phone: Optional[str] = Field(default=None, alias="STAFF_ALERT_PHONE")

    # -------------------------------------------------------------------------
    # Calendar bridge
    # -------------------------------------------------------------------------
    calendar_webhook_url: Optional[str] = Field(default=None, alias="CALENDAR_WEBHOOK_URL")
    calendar_api_token: Optional[str] = Field(default=None, alias="CALENDAR_API_TOKEN")
    calendar_timeout_seconds: float = Field(default=10.0, alias="CALENDAR_TIMEOUT_SECONDS", gt=0)

    # -------------------------------------------------------------------------
    # Conversion tracking (GA4 measurement protocol)
    # -------------------------------------------------------------------------
    ga_measurement_id: Optional[str] = Field(default=None, alias="GA_MEASUREMENT_ID")
    ga_api_secret: Optional[str] = Field(default=None, alias="GA_API_SECRET")
    ga_timeout_seconds: float = Field(default=5.0, alias="GA_TIMEOUT_SECONDS", gt=0)

    # -------------------------------------------------------------------------
    # Anthropic (Claude)
    # -------------------------------------------------------------------------
    anthropic_api_key: Optional[str] = Field(default=None, alias="ANTHROPIC_API_KEY")
    anthropic_model: str = Field(default="claude-sonnet-4-20250514", alias="ANTHROPIC_MODEL")
    anthropic_temperature: float = Field(default=0.2, alias="ANTHROPIC_TEMPERATURE", ge=0.0, le=1.0)
    anthropic_timeout_seconds: int = Field(default=30, alias="ANTHROPIC_TIMEOUT_SECONDS", ge=1)

    # -------------------------------------------------------------------------
    # OpenAI
    # -------------------------------------------------------------------------
    openai_api_key: Optional[str] = Field(default=None, alias="OPENAI_API_KEY")
    openai_model: str = Field(default="gpt-4o-mini", alias="OPENAI_MODEL")
    openai_temperature: float = Field(default=0.2, alias="OPENAI_TEMPERATURE", ge=0.0, le=1.0)
    openai_timeout_seconds: int = Field(default=30, alias="OPENAI_TIMEOUT_SECONDS", ge=1)

    # -------------------------------------------------------------------------
    # Feature Flags (Default: DISABLED)
    # -------------------------------------------------------------------------
    enable_ai_ranker: bool = Field(
        default=False,
        alias="ENABLE_AI_RANKER",
        description="Ask the LLM to rank schedule windows before the distance heuristic",
    )
    enable_calendar: bool = Field(
        default=False,
        alias="ENABLE_CALENDAR",
        description="Push appointments to the calendar bridge",
    )
    enable_conversions: bool = Field(
        default=False,
        alias="ENABLE_CONVERSIONS",
        description="Send GA4 conversion pings for new leads",
    )

    # -------------------------------------------------------------------------
    # Application
    # -------------------------------------------------------------------------
    dry_run: bool = Field(default=True, alias="DRY_RUN")
    log_level: str = Field(default="INFO", alias="LOG_LEVEL")
    log_format: str = Field(default="text", alias="LOG_FORMAT")  # "text" or "json"
    environment: str = Field(default="local", alias="ENVIRONMENT")

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        """Ensure log level is valid."""
        valid_levels = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}
        upper = v.upper()
        if upper not in valid_levels:
            raise ValueError(f"log_level must be one of {valid_levels}")
        return upper

    @field_validator("log_format")
    @classmethod
    def validate_log_format(cls, v: str) -> str:
        """Ensure log format is valid."""
        lower = v.lower()
        if lower not in {"text", "json"}:
            raise ValueError("log_format must be 'text' or 'json'")
        return lower

    @model_validator(mode="after")
    def validate_twilio_config(self) -> "Settings":
        """Validate Twilio configuration when not in dry-run mode."""
        if not self.dry_run and self.environment == "production":
            if not all([self.twilio_account_sid, self.twilio_auth_token, self.twilio_from_number]):
                raise ValueError("Twilio credentials required in production mode")
        return self

    @model_validator(mode="after")
    def resolve_database_url(self) -> "Settings":
        """Convert relative SQLite paths to absolute paths."""
        self.database_url = _resolve_database_url(self.database_url)
        return self

    # -------------------------------------------------------------------------
    # Helper Methods for Feature Detection
    # -------------------------------------------------------------------------

    def is_twilio_enabled(self) -> bool:
        """Check if Twilio is configured."""
        return bool(self.twilio_account_sid and self.twilio_auth_token)

    def is_calendar_enabled(self) -> bool:
        """
        Check if calendar sync is enabled AND configured.

        Returns True only if:
        - ENABLE_CALENDAR=true in .env
        - CALENDAR_WEBHOOK_URL is set
        """
        return self.enable_calendar and bool(self.calendar_webhook_url)

    def is_conversions_enabled(self) -> bool:
        """Check if GA4 conversion tracking is enabled and has credentials."""
        return self.enable_conversions and bool(self.ga_measurement_id and self.ga_api_secret)

    def is_anthropic_enabled(self) -> bool:
        """Check if Anthropic/Claude is configured."""
        return bool(self.anthropic_api_key)

    def is_openai_enabled(self) -> bool:
        """Check if OpenAI is configured."""
        return bool(self.openai_api_key)

    def is_llm_enabled(self) -> bool:
        """Check if any LLM is configured (Anthropic or OpenAI)."""
        return self.is_anthropic_enabled() or self.is_openai_enabled()

    def is_ai_ranker_enabled(self) -> bool:
        """The ranker needs both the flag and an LLM provider."""
        return self.enable_ai_ranker and self.is_llm_enabled()

    def get_enabled_services(self) -> list[str]:
        """Get list of enabled external services."""
        services = []
        if self.is_twilio_enabled():
            services.append("twilio")
        if self.is_calendar_enabled():
            services.append("calendar")
        if self.is_conversions_enabled():
            services.append("ga4")
        if self.is_openai_enabled():
            services.append("openai")
        if self.is_anthropic_enabled():
            services.append("anthropic")
        if self.is_ai_ranker_enabled():
            services.append("ai_ranker")
        return services


@lru_cache
def get_settings() -> Settings:
    """
    Get cached settings instance.

    Settings are loaded once and cached. To reload settings,
    call `reload_settings()`.

    Returns:
        Settings object with all configuration.
    """
    return Settings()


def reload_settings() -> Settings:
    """
    Clear settings cache and reload from environment.

    Useful for testing or after modifying .env file.
    """
    get_settings.cache_clear()
    return get_settings()
