"""Customer and staff SMS notifications for estimates and quotes."""
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from typing import Any, Dict, List, Optional

from core.config import get_settings
from core.exceptions import TwilioError
from core.logging_config import get_logger
from outreach.phone import format_phone_display, validate_phone_for_sms
from outreach.twilio_client import SMSResult, TwilioClient, get_twilio_client
from scheduling.timing import appointment_zone

LOGGER = get_logger(__name__)

# Statuses that mean "not sent, nothing went wrong"
_BENIGN_SMS_STATUSES = {"dry_run", "not_configured"}


# =============================================================================
# Notification payloads
# =============================================================================


@dataclass
class ContactInfo:
    name: str
    email: Optional[str] = None
    phone: Optional[str] = None


@dataclass
class PropertyInfo:
    address_line1: str
    city: str = ""
    state: str = ""
    postal_code: str = ""

    def one_line(self) -> str:
        return f"{self.address_line1}, {self.city}, {self.state} {self.postal_code}".strip()


@dataclass
class AppointmentInfo:
    id: str
    start_at: Optional[datetime]
    duration_minutes: int
    travel_buffer_minutes: int
    status: str
    reschedule_token: str
    reschedule_url: str
    type: str = "estimate"
    calendar_event_id: Optional[str] = None


@dataclass
class EstimateNotification:
    """Everything needed to tell a customer about an appointment."""
    lead_id: Optional[str]
    services: List[str]
    contact: ContactInfo
    property: PropertyInfo
    appointment: AppointmentInfo
    scheduling: Dict[str, Optional[str]] = field(default_factory=dict)
    notes: Optional[str] = None


@dataclass
class QuoteNotification:
    """Everything needed to tell a customer about a quote."""
    quote_id: str
    services: List[str]
    contact: ContactInfo
    total: Decimal
    deposit_due: Decimal
    balance_due: Decimal
    share_url: str
    expires_at: Optional[datetime] = None
    notes: Optional[str] = None


def format_when(start_at: Optional[datetime]) -> str:
    """Human date for messages, in the appointment time zone."""
    if start_at is None:
        return "a time we'll confirm shortly"
    local = start_at.astimezone(appointment_zone())
    hour = local.hour % 12 or 12
    suffix = "AM" if local.hour < 12 else "PM"
    return f"{local:%a}, {local:%b} {local.day} at {hour}:{local.minute:02d} {suffix}"


def join_services(services: List[str]) -> str:
    labels = [s.replace("-", " ") for s in services if s]
    return ", ".join(labels) if labels else "exterior cleaning"


# =============================================================================
# Notifier
# =============================================================================


class Notifier:
    """
    Sends SMS to customers and the staff alert phone.

    Missing phone numbers and unconfigured/DRY_RUN Twilio are logged no-ops.
    A real send failure raises TwilioError so the outbox dispatcher can
    count it.
    """

    def __init__(self, sms_client: Optional[TwilioClient] = None, staff_phone: Optional[str] = None):
        self._sms_client = sms_client
        self.staff_phone = staff_phone if staff_phone is not None else get_settings().staff_alert_phone

    @property
    def sms_client(self) -> TwilioClient:
        if self._sms_client is None:
            self._sms_client = get_twilio_client()
        return self._sms_client

    def _send(self, to: Optional[str], body: str, context: Dict[str, Any]) -> bool:
        if not to:
            LOGGER.info("No phone on file, SMS skipped", extra={"extra_data": context})
            return False

        check = validate_phone_for_sms(to)
        if not check.is_sms_capable:
            LOGGER.warning(f"SMS skipped: {check.error}", extra={"extra_data": context})
            return False

        result: SMSResult = self.sms_client.send_sms(to=check.e164, body=body)
        if result.success:
            return True
        if result.status in _BENIGN_SMS_STATUSES:
            LOGGER.info(f"SMS not sent ({result.status})", extra={"extra_data": context})
            return False
        raise TwilioError(
            f"SMS to {to} failed: {result.error_message or result.status}",
            details={**context, "error_code": result.error_code},
        )

    def _alert_staff(self, body: str, context: Dict[str, Any]) -> bool:
        if not self.staff_phone:
            return False
        return self._send(self.staff_phone, body, context)

    def send_estimate_confirmation(self, payload: EstimateNotification, reason: str = "requested") -> bool:
        """Confirm a new or moved appointment to the customer."""
        when = format_when(payload.appointment.start_at)
        url = payload.appointment.reschedule_url
        if reason == "rescheduled":
            body = f"Update: your estimate is now {when}. Need changes? {url}"
        elif payload.appointment.type == "job":
            body = f"You're booked! Your {join_services(payload.services)} job is {when}. Need to adjust? {url}"
        else:
            body = f"Thanks! Your estimate is set for {when}. Need to adjust? {url}"

        context = {"appointment_id": payload.appointment.id, "lead_id": payload.lead_id, "reason": reason}
        sent = self._send(payload.contact.phone, body, context)
        self._alert_staff(
            f"{'Rescheduled' if reason == 'rescheduled' else 'New'} {payload.appointment.type}: "
            f"{payload.contact.name}, {payload.property.one_line()}, {when}. "
            f"Services: {join_services(payload.services)}",
            context,
        )
        return sent

    def send_reminder(self, payload: EstimateNotification, window_minutes: int) -> bool:
        """Remind the customer ahead of the appointment."""
        hours = max(round(window_minutes / 60), 1)
        when = format_when(payload.appointment.start_at)
        body = f"Reminder: estimate in {hours}h ({when}). Need to reschedule? {payload.appointment.reschedule_url}"
        return self._send(payload.contact.phone, body, {"appointment_id": payload.appointment.id})

    def send_status_update(self, payload: EstimateNotification, status: str) -> bool:
        """Tell the customer their appointment was confirmed or canceled."""
        when = format_when(payload.appointment.start_at)
        if status == "confirmed":
            body = f"Confirmed: we'll see you {when} at {payload.property.address_line1}."
        elif status == "canceled":
            body = f"Your appointment for {when} was canceled. Book again anytime: {payload.appointment.reschedule_url}"
        else:
            return False
        return self._send(payload.contact.phone, body, {"appointment_id": payload.appointment.id, "status": status})

    def send_quote_sent(self, payload: QuoteNotification) -> bool:
        """Send the customer their quote link."""
        body = (
            f"Hi {payload.contact.name.split(' ')[0]}, your quote for {join_services(payload.services)} "
            f"is ready: ${payload.total:,.2f} (deposit ${payload.deposit_due:,.2f}). View: {payload.share_url}"
        )
        return self._send(payload.contact.phone, body, {"quote_id": payload.quote_id})

    def send_quote_decision(self, payload: QuoteNotification, decision: str, source: str) -> bool:
        """Alert staff to a decision; thank the customer when they accepted."""
        context = {"quote_id": payload.quote_id, "decision": decision, "source": source}
        self._alert_staff(
            f"Quote {decision} by {source}: {payload.contact.name}, ${payload.total:,.2f}",
            context,
        )
        if decision == "accepted" and source == "customer":
            return self._send(
                payload.contact.phone,
                "Thanks for accepting your quote! We'll reach out shortly to schedule.",
                context,
            )
        return False

    def send_lead_alert(self, lead_id: str, contact: ContactInfo, services: List[str], address: str) -> bool:
        """Alert staff to a web lead that has no appointment yet."""
        return self._alert_staff(
            f"New web lead: {contact.name} ({format_phone_display(contact.phone) or 'no phone'}), {address}. "
            f"Services: {join_services(services)}",
            {"lead_id": lead_id},
        )


_notifier: Optional[Notifier] = None


def get_notifier() -> Notifier:
    global _notifier
    if _notifier is None:
        _notifier = Notifier()
    return _notifier
