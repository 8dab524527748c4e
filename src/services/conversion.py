"""GA4 measurement-protocol conversion pings."""
from __future__ import annotations

import time
from typing import Any, Dict, Optional

import httpx

from core.config import get_settings
from core.logging_config import get_logger, log_external_call

LOGGER = get_logger(__name__)

GA_ENDPOINT = "https://www.google-analytics.com/mp/collect"
DEFAULT_CLIENT_ID = "washline-web"


class ConversionTracker:
    """Fire-and-forget conversion events. Never raises."""

    def __init__(
        self,
        measurement_id: Optional[str] = None,
        api_secret: Optional[str] = None,
        enabled: Optional[bool] = None,
        timeout: Optional[float] = None,
        http_client: Optional[httpx.Client] = None,
    ):
        settings = get_settings()
        self.measurement_id = measurement_id or settings.ga_measurement_id
        self.api_secret = api_secret or settings.ga_api_secret
        self.enabled = settings.is_conversions_enabled() if enabled is None else enabled
        self.timeout = timeout or settings.ga_timeout_seconds
        self._client = http_client

    def _get_client(self) -> httpx.Client:
        if self._client is None:
            self._client = httpx.Client(timeout=self.timeout)
        return self._client

    def send_conversion(
        self,
        event_name: str,
        params: Optional[Dict[str, Any]] = None,
        client_id: Optional[str] = None,
    ) -> bool:
        """Post one event. Returns True when GA accepted the request."""
        if not self.enabled or not self.measurement_id or not self.api_secret:
            return False

        body = {
            "client_id": client_id or DEFAULT_CLIENT_ID,
            "events": [
                {
                    "name": event_name,
                    "params": {"engagement_time_msec": 1, **(params or {})},
                }
            ],
        }

        start_time = time.perf_counter()
        success = False
        try:
            response = self._get_client().post(
                GA_ENDPOINT,
                params={"measurement_id": self.measurement_id, "api_secret": self.api_secret},
                json=body,
            )
            response.raise_for_status()
            success = True
        except httpx.HTTPError as e:
            LOGGER.warning(f"GA4 conversion tracking failed: {e}")
        finally:
            log_external_call(
                LOGGER,
                service="ga4",
                operation=event_name,
                success=success,
                duration_ms=(time.perf_counter() - start_time) * 1000,
            )
        return success


_tracker: Optional[ConversionTracker] = None


def get_conversion_tracker() -> ConversionTracker:
    global _tracker
    if _tracker is None:
        _tracker = ConversionTracker()
    return _tracker
