"""Core utility functions."""
from __future__ import annotations

import secrets
import uuid
from concurrent.futures import ThreadPoolExecutor, TimeoutError as FutureTimeoutError
from datetime import datetime, timezone
from decimal import ROUND_HALF_UP, Decimal
from typing import Any, Callable, Optional, TypeVar

from core.logging_config import get_logger

LOGGER = get_logger(__name__)

T = TypeVar("T")

CENT = Decimal("0.01")

# Shared pool for calls that must not outlive a deadline
_timeout_pool = ThreadPoolExecutor(max_workers=4, thread_name_prefix="deadline")


def utcnow() -> datetime:
    """Get current UTC datetime with timezone info. Always use this instead of datetime.now()."""
    return datetime.now(timezone.utc)


def ensure_aware(dt: Optional[datetime]) -> Optional[datetime]:
    """
    Ensure a datetime is timezone-aware (UTC).

    SQLite stores datetimes without timezone info, so we need to make them
    aware before comparing with utcnow().

    Args:
        dt: A datetime that may or may not be timezone-aware.

    Returns:
        Timezone-aware datetime in UTC, or None if input was None.
    """
    if dt is None:
        return None
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def isoformat_or_none(dt: Optional[datetime]) -> Optional[str]:
    """Serialize a datetime as UTC ISO-8601, passing None through."""
    aware = ensure_aware(dt)
    return aware.isoformat() if aware else None


def generate_uuid() -> str:
    """Primary key generator for all tables."""
    return str(uuid.uuid4())


def generate_unique_key() -> str:
    """Generate a unique random key."""
    return uuid.uuid4().hex


def generate_token(nbytes: int = 18) -> str:
    """Generate an opaque URL-safe token (reschedule links, quote share links)."""
    return secrets.token_urlsafe(nbytes)


def to_money(value: Any) -> Decimal:
    """Coerce a number to a Decimal rounded half-up to cents."""
    if isinstance(value, Decimal):
        amount = value
    else:
        amount = Decimal(str(value))
    return amount.quantize(CENT, rounding=ROUND_HALF_UP)


class CircuitBreaker:
    """
    Simple circuit breaker for external service calls.

    States:
    - CLOSED: Normal operation, calls pass through
    - OPEN: Service is down, calls fail fast
    - HALF_OPEN: Testing if service is back
    """

    CLOSED = "closed"
    OPEN = "open"
    HALF_OPEN = "half_open"

    def __init__(
        self,
        name: str,
        failure_threshold: int = 5,
        recovery_timeout: int = 60,
        half_open_max_calls: int = 3,
    ):
        """
        Initialize circuit breaker.

        Args:
            name: Service name for logging.
            failure_threshold: Number of failures before opening circuit.
            recovery_timeout: Seconds to wait before trying again.
            half_open_max_calls: Max test calls in half-open state.
        """
        self.name = name
        self.failure_threshold = failure_threshold
        self.recovery_timeout = recovery_timeout
        self.half_open_max_calls = half_open_max_calls

        self.state = self.CLOSED
        self.failure_count = 0
        self.last_failure_time: Optional[datetime] = None
        self.half_open_calls = 0

    def can_execute(self) -> bool:
        """Check if a call can be made."""
        if self.state == self.CLOSED:
            return True

        if self.state == self.OPEN:
            if self.last_failure_time:
                elapsed = (utcnow() - self.last_failure_time).total_seconds()
                if elapsed >= self.recovery_timeout:
                    self.state = self.HALF_OPEN
                    self.half_open_calls = 0
                    LOGGER.info(f"Circuit breaker {self.name}: OPEN -> HALF_OPEN")
                    return True
            return False

        if self.state == self.HALF_OPEN:
            return self.half_open_calls < self.half_open_max_calls

        return False

    def record_success(self) -> None:
        """Record a successful call."""
        if self.state == self.HALF_OPEN:
            self.half_open_calls += 1
            if self.half_open_calls >= self.half_open_max_calls:
                self.state = self.CLOSED
                self.failure_count = 0
                LOGGER.info(f"Circuit breaker {self.name}: HALF_OPEN -> CLOSED")
        elif self.state == self.CLOSED:
            self.failure_count = 0

    def record_failure(self) -> None:
        """Record a failed call."""
        self.failure_count += 1
        self.last_failure_time = utcnow()

        if self.state == self.HALF_OPEN:
            self.state = self.OPEN
            LOGGER.warning(f"Circuit breaker {self.name}: HALF_OPEN -> OPEN (failure in test)")
        elif self.failure_count >= self.failure_threshold:
            self.state = self.OPEN
            LOGGER.warning(f"Circuit breaker {self.name}: CLOSED -> OPEN (threshold reached)")


def call_with_timeout(
    func: Callable[..., T],
    timeout_seconds: float,
    *args: Any,
    default: Optional[T] = None,
    **kwargs: Any,
) -> Optional[T]:
    """
    Run ``func`` on the deadline pool and wait at most ``timeout_seconds``.

    Works from any thread (unlike SIGALRM). On timeout the worker keeps
    running in the background and ``default`` is returned.
    """
    future = _timeout_pool.submit(func, *args, **kwargs)
    try:
        return future.result(timeout=timeout_seconds)
    except FutureTimeoutError:
        LOGGER.warning(f"{getattr(func, '__name__', 'call')} timed out after {timeout_seconds}s")
        return default


__all__ = [
    "utcnow",
    "ensure_aware",
    "isoformat_or_none",
    "generate_uuid",
    "generate_unique_key",
    "generate_token",
    "to_money",
    "CENT",
    "CircuitBreaker",
    "call_with_timeout",
]
