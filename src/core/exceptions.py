"""Custom exceptions for the washline application."""
from __future__ import annotations

from typing import Any, Dict, Optional


class WashlineError(Exception):
    """Base exception for all application errors.

    ``reason`` is a short machine-readable code that the HTTP layer returns
    as the ``error`` field.
    """

    default_reason = "application_error"

    def __init__(
        self,
        message: str = "",
        reason: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ) -> None:
        self.reason = reason or self.default_reason
        self.details = details or {}
        super().__init__(message or self.reason)


# =============================================================================
# Configuration Errors
# =============================================================================


class ConfigurationError(WashlineError):
    """Raised when required configuration is missing or invalid."""

    default_reason = "configuration_error"


# =============================================================================
# Request / Domain Errors
# =============================================================================


class ValidationError(WashlineError):
    """Raised when an input fails validation."""

    default_reason = "invalid_payload"


class InvalidPhone(ValidationError):
    """Raised when a phone number cannot be parsed into a plausible number."""

    default_reason = "invalid_phone"


class RateLimited(WashlineError):
    """Raised when a client exceeds the intake submission rate."""

    default_reason = "rate_limited"


class ConflictError(WashlineError):
    """Raised on uniqueness violations and invalid state transitions."""

    default_reason = "conflict"


class QuoteExpiredError(ConflictError):
    """Raised when a customer acts on a quote past its expiry."""

    default_reason = "expired"


class NotFoundError(WashlineError):
    """Raised when a referenced record does not exist."""

    default_reason = "not_found"


class UnauthorizedError(WashlineError):
    """Raised when the admin credential is missing or wrong."""

    default_reason = "unauthorized"


# =============================================================================
# External Dependency Errors
# =============================================================================


class ExternalDependencyError(WashlineError):
    """Base exception for calendar, SMS, LLM and analytics failures.

    Owning components catch these and degrade; they are not meant to
    reach a caller.
    """

    default_reason = "external_dependency_error"


class LLMError(ExternalDependencyError):
    """Base exception for LLM-related errors."""

    default_reason = "llm_error"


class LLMRateLimitError(LLMError):
    """Raised when the LLM API rate limit is exceeded."""

    pass


class LLMTimeoutError(LLMError):
    """Raised when the LLM API request times out."""

    pass


class TwilioError(ExternalDependencyError):
    """Raised when Twilio API fails."""

    default_reason = "twilio_error"


class CalendarError(ExternalDependencyError):
    """Raised when the calendar bridge rejects or drops a request."""

    default_reason = "calendar_error"


__all__ = [
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
]
