"""External collaborators for Washline.

This module provides:
- SMS notifications to customers and staff (Twilio)
- Calendar bridge sync
- GA4 conversion tracking
- LLM ranking of schedule windows
- Intake rate limiting over an in-process TTL cache

All integrations have:
- Feature flag checks (ENABLE_* in .env)
- Graceful fallbacks (disabled/missing credentials become logged no-ops)
- Retry logic (with exponential backoff)
- Structured logging
"""
from __future__ import annotations

from .cache import TTLCache
from .calendar import CalendarSync, get_calendar_sync
from .conversion import ConversionTracker, get_conversion_tracker
from .notification import EstimateNotification, Notifier, QuoteNotification, get_notifier
from .ranker import LLMWindowRanker
from .rate_limit import IntakeRateLimiter, get_intake_rate_limiter
from .retry import with_retry

__all__ = [
    "TTLCache",
    "CalendarSync",
    "get_calendar_sync",
    "ConversionTracker",
    "get_conversion_tracker",
    "EstimateNotification",
    "QuoteNotification",
    "Notifier",
    "get_notifier",
    "LLMWindowRanker",
    "IntakeRateLimiter",
    "get_intake_rate_limiter",
    "with_retry",
]
