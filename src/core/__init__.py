"""Core module exports."""
from __future__ import annotations

from core.config import Settings, get_settings, reload_settings
from core.db import after_commit, get_session, SessionLocal, get_session_factory
from core.exceptions import (
    # Base
    WashlineError,
    # Configuration
    ConfigurationError,
    # Request / Domain
    ValidationError,
    InvalidPhone,
    RateLimited,
    ConflictError,
    QuoteExpiredError,
    NotFoundError,
    UnauthorizedError,
    # External
    ExternalDependencyError,
    LLMError,
    LLMRateLimitError,
    LLMTimeoutError,
    TwilioError,
    CalendarError,
)
from core.logging_config import (
    setup_logging,
    get_logger,
    get_context_logger,
    log_external_call,
    JSONFormatter,
    ContextLogger,
)
from core.models import (
    Base,
    Contact,
    Property,
    Lead,
    Appointment,
    AppointmentNote,
    Quote,
    OutboxEvent,
    CrmPipeline,
)

__all__ = [
    # Config
    "Settings",
    "get_settings",
    "reload_settings",
    # Database
    "after_commit",
    "get_session",
    "get_session_factory",
    "SessionLocal",
    "Base",
    # Models
    "Contact",
    "Property",
    "Lead",
    "Appointment",
    "AppointmentNote",
    "Quote",
    "OutboxEvent",
    "CrmPipeline",
    # Exceptions
    "WashlineError",
    "ConfigurationError",
    "ValidationError",
    "InvalidPhone",
    "RateLimited",
    "ConflictError",
    "QuoteExpiredError",
    "NotFoundError",
    "UnauthorizedError",
    "ExternalDependencyError",
    "LLMError",
    "LLMRateLimitError",
    "LLMTimeoutError",
    "TwilioError",
    "CalendarError",
    # Logging
    "setup_logging",
    "get_logger",
    "get_context_logger",
    "log_external_call",
    "JSONFormatter",
    "ContextLogger",
]
