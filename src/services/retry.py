"""Retry helpers for outbound HTTP using tenacity."""
from __future__ import annotations

from functools import wraps
from typing import Callable, Type, TypeVar, ParamSpec

import httpx
from tenacity import (
    before_sleep_log,
    retry,
    retry_if_exception,
    retry_if_exception_type,
    stop_after_attempt,
    stop_after_delay,
    wait_exponential,
)

from core.logging_config import get_logger

LOGGER = get_logger(__name__)

P = ParamSpec("P")
T = TypeVar("T")

# Network-level failures worth another attempt
TRANSIENT_ERRORS: tuple[Type[Exception], ...] = (
    httpx.TransportError,
    ConnectionError,
    TimeoutError,
)


def is_retryable_status(exc: BaseException) -> bool:
    """5xx and 429 responses are retried; other HTTP errors are final."""
    if not isinstance(exc, httpx.HTTPStatusError):
        return False
    status = exc.response.status_code
    return status == 429 or status >= 500


def with_retry(
    max_attempts: int = 3,
    max_delay_seconds: float = 20,
    retry_exceptions: tuple[Type[Exception], ...] = TRANSIENT_ERRORS,
    min_wait: float = 0.5,
    max_wait: float = 5,
) -> Callable[[Callable[P, T]], Callable[P, T]]:
    """
    Decorator to add retry logic to a function.

    Retries on ``retry_exceptions`` and on retryable HTTP status errors,
    then re-raises the last exception.

    Example:
        @with_retry(max_attempts=3)
        def post_event(payload):
            ...
    """

    def decorator(func: Callable[P, T]) -> Callable[P, T]:
        @retry(
            retry=retry_if_exception_type(retry_exceptions) | retry_if_exception(is_retryable_status),
            stop=stop_after_attempt(max_attempts) | stop_after_delay(max_delay_seconds),
            wait=wait_exponential(multiplier=1, min=min_wait, max=max_wait),
            before_sleep=before_sleep_log(LOGGER, log_level=20),
            reraise=True,
        )
        @wraps(func)
        def wrapper(*args: P.args, **kwargs: P.kwargs) -> T:
            return func(*args, **kwargs)

        return wrapper

    return decorator

