"""Authentication dependencies for FastAPI routes."""
from __future__ import annotations

import hmac
from typing import Optional

from fastapi import Header

from core.config import get_settings
from core.exceptions import UnauthorizedError
from core.logging_config import get_logger

LOGGER = get_logger(__name__)


def require_admin_key(x_admin_key: Optional[str] = Header(default=None)) -> None:
    """
    Check the shared admin key sent as ``X-Admin-Key``.

    Raises UnauthorizedError when the key is missing or wrong, and also
    when no key is configured, so an unconfigured deployment stays closed.
    """
    expected = get_settings().admin_api_key
    if not expected:
        LOGGER.warning("ADMIN_API_KEY is not configured; rejecting admin request")
        raise UnauthorizedError("Admin access is not configured")
    if not x_admin_key or not hmac.compare_digest(x_admin_key.encode(), expected.encode()):
        raise UnauthorizedError("Invalid admin key")
