"""Build notification payloads from current database state."""
from __future__ import annotations

from decimal import Decimal
from typing import Dict, List, Optional

from sqlalchemy.orm import Session

from core.logging_config import get_logger
from core.models import Appointment, AppointmentStatus, Quote
from core.utils import ensure_aware
from scheduling.timing import build_quote_url, build_reschedule_url
from services.notification import (
    AppointmentInfo,
    ContactInfo,
    EstimateNotification,
    PropertyInfo,
    QuoteNotification,
)

LOGGER = get_logger(__name__)

DEFAULT_CUSTOMER_NAME = "Washline Customer"

_VALID_STATUSES = {status.value for status in AppointmentStatus}


def _clean_services(values) -> List[str]:
    if not isinstance(values, list):
        return []
    return [v for v in values if isinstance(v, str) and v.strip()]


def _contact_info(contact) -> ContactInfo:
    if contact is None:
        return ContactInfo(name=DEFAULT_CUSTOMER_NAME)
    return ContactInfo(
        name=contact.full_name or DEFAULT_CUSTOMER_NAME,
        email=contact.email,
        phone=contact.phone_e164 or contact.phone,
    )


def build_estimate_notification(
    session: Session,
    appointment_id: str,
    services: Optional[List[str]] = None,
    reschedule_url: Optional[str] = None,
    scheduling: Optional[Dict[str, Optional[str]]] = None,
    notes: Optional[str] = None,
) -> Optional[EstimateNotification]:
    """
    Re-read an appointment with its contact, property and lead.

    Arguments override what is stored. Returns None when the appointment is
    gone or has no reschedule token.
    """
    appointment = session.get(Appointment, appointment_id)
    if appointment is None:
        LOGGER.warning(f"Appointment {appointment_id} not found for notification")
        return None

    token = appointment.reschedule_token
    if not token:
        LOGGER.warning(f"Appointment {appointment_id} has no reschedule token")
        return None

    lead = appointment.lead
    stored_services = _clean_services(lead.services_requested) if lead else []
    form_payload = lead.form_payload if lead and isinstance(lead.form_payload, dict) else {}
    stored_scheduling = form_payload.get("scheduling") if isinstance(form_payload.get("scheduling"), dict) else {}

    merged_scheduling = {
        "preferred_date": stored_scheduling.get("preferred_date"),
        "time_window": stored_scheduling.get("time_window"),
    }
    for key, value in (scheduling or {}).items():
        if value is not None:
            merged_scheduling[key] = value

    prop = appointment.property
    property_info = PropertyInfo(
        address_line1=prop.address_line1 if prop else "Undisclosed address",
        city=prop.city if prop else "",
        state=prop.state if prop else "",
        postal_code=prop.postal_code if prop else "",
    )

    status = appointment.status if appointment.status in _VALID_STATUSES else AppointmentStatus.REQUESTED.value

    return EstimateNotification(
        lead_id=appointment.lead_id,
        services=services or stored_services,
        contact=_contact_info(appointment.contact),
        property=property_info,
        appointment=AppointmentInfo(
            id=appointment.id,
            start_at=ensure_aware(appointment.start_at),
            duration_minutes=appointment.duration_minutes or 60,
            travel_buffer_minutes=appointment.travel_buffer_minutes
            if appointment.travel_buffer_minutes is not None
            else 30,
            status=status,
            reschedule_token=token,
            reschedule_url=reschedule_url or build_reschedule_url(appointment.id, token),
            type=appointment.type,
            calendar_event_id=appointment.calendar_event_id,
        ),
        scheduling=merged_scheduling,
        notes=notes if notes is not None else (lead.notes if lead else None),
    )


def build_quote_notification(
    session: Session,
    quote_id: str,
    share_url: Optional[str] = None,
    notes: Optional[str] = None,
) -> Optional[QuoteNotification]:
    """Re-read a quote and its contact. None when missing or never shared."""
    quote = session.get(Quote, quote_id)
    if quote is None:
        LOGGER.warning(f"Quote {quote_id} not found for notification")
        return None

    url = share_url or (build_quote_url(quote.share_token) if quote.share_token else None)
    if not url:
        LOGGER.warning(f"Quote {quote_id} has no share link")
        return None

    return QuoteNotification(
        quote_id=quote.id,
        services=_clean_services(quote.services),
        contact=_contact_info(quote.contact),
        total=Decimal(quote.total or 0),
        deposit_due=Decimal(quote.deposit_due or 0),
        balance_due=Decimal(quote.balance_due or 0),
        share_url=url,
        expires_at=ensure_aware(quote.expires_at),
        notes=notes,
    )
