"""Appointment timing: preferred date/window resolution and display helpers."""
from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime, time, timedelta, timezone
from typing import Optional
from urllib.parse import urlencode
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from core.config import get_settings
from core.logging_config import get_logger

LOGGER = get_logger(__name__)

# Local start time for each customer-facing window
WINDOW_START_TIMES = {
    "morning": time(9, 0),
    "afternoon": time(13, 0),
    "evening": time(16, 0),
}
DEFAULT_WINDOW = "morning"


@dataclass(frozen=True)
class Timing:
    """Resolved start (UTC, or None when unscheduled) and duration."""
    start_at: Optional[datetime]
    duration_minutes: int


def appointment_zone(name: Optional[str] = None) -> ZoneInfo:
    """Time zone appointments are booked in."""
    zone_name = name or get_settings().appointment_timezone
    try:
        return ZoneInfo(zone_name)
    except ZoneInfoNotFoundError:
        LOGGER.warning(f"Unknown time zone {zone_name!r}, using UTC")
        return ZoneInfo("UTC")


def resolve_timing(
    preferred_date: Optional[str],
    window: Optional[str],
    duration_minutes: Optional[int] = None,
    zone_name: Optional[str] = None,
) -> Timing:
    """
    Turn a customer's preferred date and window into a UTC start time.

    ``preferred_date`` is ``YYYY-MM-DD`` in the appointment time zone.
    A missing or unparseable date yields an unscheduled timing. Unknown
    windows fall back to the morning window.
    """
    duration = duration_minutes or get_settings().default_appointment_duration_min
    if not preferred_date:
        return Timing(start_at=None, duration_minutes=duration)

    try:
        day = date.fromisoformat(preferred_date.strip())
    except ValueError:
        LOGGER.debug(f"Ignoring unparseable preferred date {preferred_date!r}")
        return Timing(start_at=None, duration_minutes=duration)

    key = (window or "").strip().lower()
    start_time = WINDOW_START_TIMES.get(key, WINDOW_START_TIMES[DEFAULT_WINDOW])
    local_start = datetime.combine(day, start_time, tzinfo=appointment_zone(zone_name))
    return Timing(start_at=local_start.astimezone(timezone.utc), duration_minutes=duration)


def format_window(start_at: datetime, duration_minutes: Optional[int] = None, zone_name: Optional[str] = None) -> str:
    """Render a slot like ``Tue, Mar 4 | 9:00 AM-10:30 AM`` in local time."""
    zone = appointment_zone(zone_name)
    local_start = start_at.astimezone(zone)
    day_part = f"{local_start:%a}, {local_start:%b} {local_start.day}"
    start_part = _format_clock(local_start)
    if duration_minutes and duration_minutes > 0:
        end_part = _format_clock(local_start + timedelta(minutes=duration_minutes))
        return f"{day_part} | {start_part}-{end_part}"
    return f"{day_part} | {start_part}"


def _format_clock(value: datetime) -> str:
    hour = value.hour % 12 or 12
    suffix = "AM" if value.hour < 12 else "PM"
    return f"{hour}:{value.minute:02d} {suffix}"


def build_reschedule_url(appointment_id: str, token: str, site_url: Optional[str] = None) -> str:
    """Customer link for moving an appointment."""
    base = (site_url or get_settings().site_url).rstrip("/")
    query = urlencode({"appointmentId": appointment_id, "token": token})
    return f"{base}/schedule?{query}"


def build_quote_url(share_token: str, site_url: Optional[str] = None) -> str:
    """Customer link for viewing and deciding on a quote."""
    base = (site_url or get_settings().site_url).rstrip("/")
    return f"{base}/quote/{share_token}"
