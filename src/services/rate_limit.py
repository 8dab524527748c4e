"""Per-client throttle for public lead intake."""
from __future__ import annotations

import threading
from typing import Optional

from core.config import get_settings
from core.logging_config import get_logger
from services.cache import TTLCache

LOGGER = get_logger(__name__)

UNKNOWN_CLIENT = "unknown"


class IntakeRateLimiter:
    """
    Sliding counter keyed by client identity.

    Each allowed attempt restarts the client's window, so a client is let
    back in once ``window_seconds`` pass without an allowed attempt.
    Rejected attempts do not extend the window. State lives in process
    memory only.
    """

    def __init__(
        self,
        max_requests: Optional[int] = None,
        window_seconds: Optional[float] = None,
        cache: Optional[TTLCache] = None,
    ):
        settings = get_settings()
        self.max_requests = max_requests or settings.intake_rate_limit
        self.window_seconds = window_seconds or settings.intake_rate_window_seconds
        self.cache = cache or TTLCache(
            default_ttl_seconds=self.window_seconds,
            max_size=settings.intake_rate_cache_size,
        )
        self._lock = threading.Lock()

    def increment_and_check(self, key: Optional[str]) -> bool:
        """
        Count an attempt for ``key``.

        Returns:
            True if the attempt is allowed, False if the client is over the
            limit or cannot be identified.
        """
        if not key or key == UNKNOWN_CLIENT:
            return False

        with self._lock:
            count = self.cache.get(key) or 0
            if count >= self.max_requests:
                LOGGER.warning(
                    "Intake rate limit exceeded",
                    extra={"extra_data": {"client": key, "count": count}},
                )
                return False
            self.cache.increment(key)
        return True

    def reset(self) -> None:
        self.cache.clear()


_limiter: Optional[IntakeRateLimiter] = None


def get_intake_rate_limiter() -> IntakeRateLimiter:
    """Get the process-wide intake limiter."""
    global _limiter
    if _limiter is None:
        _limiter = IntakeRateLimiter()
    return _limiter


def reset_intake_rate_limiter() -> None:
    """Drop the process-wide limiter (useful for testing)."""
    global _limiter
    _limiter = None
