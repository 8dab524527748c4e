"""Calendar bridge integration.

Appointments are pushed to an external calendar through a small JSON
webhook (``CALENDAR_WEBHOOK_URL``). The bridge answers ``{"id": ...}`` on
create; update and delete address the event by that id.
"""
from __future__ import annotations

import time
from datetime import timedelta
from typing import Any, Dict, Optional

import httpx

from core.config import get_settings
from core.exceptions import CalendarError
from core.logging_config import get_logger, log_external_call
from core.utils import CircuitBreaker, isoformat_or_none
from services.notification import EstimateNotification, join_services
from services.retry import with_retry

LOGGER = get_logger(__name__)

_calendar_circuit = CircuitBreaker(
    name="calendar_bridge",
    failure_threshold=5,
    recovery_timeout=120,
)


def build_event_body(payload: EstimateNotification) -> Dict[str, Any]:
    """Translate an appointment notification into the bridge's event shape."""
    appointment = payload.appointment
    start = appointment.start_at
    end = start + timedelta(minutes=appointment.duration_minutes) if start else None
    kind = "Job" if appointment.type == "job" else "Estimate"

    description = [
        f"Services: {join_services(payload.services)}",
        f"Customer: {payload.contact.name}",
    ]
    if payload.contact.phone:
        description.append(f"Phone: {payload.contact.phone}")
    if payload.contact.email:
        description.append(f"Email: {payload.contact.email}")
    if payload.notes:
        description.append(f"Notes: {payload.notes}")
    description.append(f"Reschedule: {appointment.reschedule_url}")

    return {
        "summary": f"{kind}: {payload.contact.name}",
        "location": payload.property.one_line(),
        "description": "\n".join(description),
        "start": isoformat_or_none(start),
        "end": isoformat_or_none(end),
        "travel_buffer_minutes": appointment.travel_buffer_minutes,
        "appointment_id": appointment.id,
        "status": appointment.status,
    }


class CalendarSync:
    """
    Create, update and delete calendar events.

    Failures are logged and reported as ``None`` / ``False``; callers never
    see an exception. When disabled or in DRY_RUN nothing is sent.
    """

    def __init__(
        self,
        webhook_url: Optional[str] = None,
        api_token: Optional[str] = None,
        timeout: Optional[float] = None,
        enabled: Optional[bool] = None,
        dry_run: Optional[bool] = None,
        http_client: Optional[httpx.Client] = None,
    ):
        settings = get_settings()
        self.webhook_url = (webhook_url or settings.calendar_webhook_url or "").rstrip("/")
        self.api_token = api_token or settings.calendar_api_token
        self.timeout = timeout or settings.calendar_timeout_seconds
        self.enabled = settings.is_calendar_enabled() if enabled is None else enabled
        self.dry_run = settings.dry_run if dry_run is None else dry_run
        self._client = http_client
        self.circuit = _calendar_circuit

    def _get_client(self) -> httpx.Client:
        if self._client is None:
            headers = {"Content-Type": "application/json"}
            if self.api_token:
                headers["Authorization"] = f"Bearer {self.api_token}"
            self._client = httpx.Client(timeout=self.timeout, headers=headers)
        return self._client

    def _should_send(self, action: str, appointment_id: Optional[str] = None) -> bool:
        if not self.enabled or not self.webhook_url:
            LOGGER.debug(f"Calendar disabled, skipping {action}")
            return False
        if self.dry_run:
            LOGGER.info(
                f"[DRY RUN] Calendar {action}",
                extra={"extra_data": {"appointment_id": appointment_id}},
            )
            return False
        if not self.circuit.can_execute():
            LOGGER.warning(f"Calendar circuit open, skipping {action}")
            return False
        return True

    @with_retry(max_attempts=3, min_wait=0.75, max_wait=3)
    def _request(self, method: str, path: str, body: Optional[Dict[str, Any]] = None) -> httpx.Response:
        response = self._get_client().request(method, f"{self.webhook_url}{path}", json=body)
        response.raise_for_status()
        return response

    def _call(self, action: str, method: str, path: str, body: Optional[Dict[str, Any]] = None) -> httpx.Response:
        start_time = time.perf_counter()
        success = False
        try:
            response = self._request(method, path, body)
            success = True
            self.circuit.record_success()
            return response
        except httpx.HTTPError as e:
            self.circuit.record_failure()
            raise CalendarError(f"Calendar {action} failed: {e}") from e
        finally:
            log_external_call(
                LOGGER,
                service="calendar",
                operation=action,
                success=success,
                duration_ms=(time.perf_counter() - start_time) * 1000,
            )

    def create_event(self, payload: EstimateNotification) -> Optional[str]:
        """Create an event; returns its external id or None."""
        if not self._should_send("create", payload.appointment.id):
            return None
        try:
            response = self._call("create", "POST", "/events", build_event_body(payload))
            event_id = response.json().get("id")
        except (CalendarError, ValueError) as e:
            LOGGER.warning(str(e), extra={"extra_data": {"appointment_id": payload.appointment.id}})
            return None
        return str(event_id) if event_id else None

    def update_event(self, event_id: str, payload: EstimateNotification) -> bool:
        """Update an existing event in place."""
        if not event_id or not self._should_send("update", payload.appointment.id):
            return False
        try:
            self._call("update", "PUT", f"/events/{event_id}", build_event_body(payload))
        except CalendarError as e:
            LOGGER.warning(str(e), extra={"extra_data": {"event_id": event_id}})
            return False
        return True

    def delete_event(self, event_id: str) -> bool:
        """Delete an event. A 404 from the bridge counts as deleted."""
        if not event_id or not self._should_send("delete"):
            return False
        try:
            self._call("delete", "DELETE", f"/events/{event_id}")
        except CalendarError as e:
            cause = e.__cause__
            if isinstance(cause, httpx.HTTPStatusError) and cause.response.status_code == 404:
                return True
            LOGGER.warning(str(e), extra={"extra_data": {"event_id": event_id}})
            return False
        return True


_calendar_sync: Optional[CalendarSync] = None


def get_calendar_sync() -> CalendarSync:
    global _calendar_sync
    if _calendar_sync is None:
        _calendar_sync = CalendarSync()
    return _calendar_sync


def reset_calendar_sync() -> None:
    global _calendar_sync
    _calendar_sync = None
