"""
Outbox event handlers.

Each handler receives the dispatcher's session and the decoded payload and
returns ``processed`` or ``skipped``. Handlers re-read current state; the
payload only carries ids and overrides. Anything raised is counted as an
error by the dispatcher.
"""
from __future__ import annotations

from typing import Callable, Dict, Optional

from sqlalchemy.orm import Session

from core.logging_config import get_logger
from core.models import Appointment, AppointmentNote, AppointmentStatus, Contact, Lead, Property
from core.utils import to_money, utcnow
from domain.notifications import build_estimate_notification, build_quote_notification
from domain.pipeline_stage import parse_stage, upsert_pipeline_stage
from outbox.events import (
    EventType,
    EstimateRequestedPayload,
    EstimateRescheduledPayload,
    EstimateStatusChangedPayload,
    LeadCreatedPayload,
    PaymentRecordedPayload,
    PipelineStageRequestPayload,
    QuoteDecisionPayload,
    QuoteSentPayload,
    decode_payload,
)
from services.calendar import CalendarSync, get_calendar_sync
from services.notification import ContactInfo, EstimateNotification, Notifier, get_notifier

LOGGER = get_logger(__name__)

PROCESSED = "processed"
SKIPPED = "skipped"


class OutboxHandlers:
    """Dispatch table from event type to handler."""

    def __init__(self, notifier: Optional[Notifier] = None, calendar: Optional[CalendarSync] = None):
        self._notifier = notifier
        self._calendar = calendar
        self._handlers: Dict[str, Callable[[Session, object], str]] = {
            EventType.ESTIMATE_REQUESTED.value: self.handle_estimate_requested,
            EventType.ESTIMATE_RESCHEDULED.value: self.handle_estimate_rescheduled,
            EventType.ESTIMATE_STATUS_CHANGED.value: self.handle_estimate_status_changed,
            EventType.LEAD_CREATED.value: self.handle_lead_created,
            EventType.QUOTE_SENT.value: self.handle_quote_sent,
            EventType.QUOTE_DECISION.value: self.handle_quote_decision,
            EventType.PAYMENT_RECORDED.value: self.handle_payment_recorded,
            EventType.PIPELINE_STAGE_REQUEST.value: self.handle_pipeline_stage_request,
        }

    @property
    def notifier(self) -> Notifier:
        if self._notifier is None:
            self._notifier = get_notifier()
        return self._notifier

    @property
    def calendar(self) -> CalendarSync:
        if self._calendar is None:
            self._calendar = get_calendar_sync()
        return self._calendar

    def handle(self, session: Session, event_type: str, raw_payload: object) -> str:
        """Decode and run one event. Unknown types and bad payloads are skipped."""
        handler = self._handlers.get(event_type)
        if handler is None:
            LOGGER.warning(f"No handler for outbox event type {event_type!r}")
            return SKIPPED

        payload = decode_payload(event_type, raw_payload)
        if payload is None:
            return SKIPPED
        return handler(session, payload)

    # -------------------------------------------------------------------------
    # Calendar helpers
    # -------------------------------------------------------------------------

    def _attach_calendar_event(self, session: Session, appointment_id: str, event_id: str) -> None:
        appointment = session.get(Appointment, appointment_id)
        if appointment is not None:
            appointment.calendar_event_id = event_id
            session.flush()

    def _ensure_calendar_event(self, session: Session, notification: EstimateNotification) -> Optional[str]:
        existing = notification.appointment.calendar_event_id
        if existing:
            return existing
        if notification.appointment.start_at is None:
            return None

        event_id = self.calendar.create_event(notification)
        if not event_id:
            LOGGER.info(f"Calendar event not created for appointment {notification.appointment.id}")
            return None
        self._attach_calendar_event(session, notification.appointment.id, event_id)
        return event_id

    def _sync_calendar_for_reschedule(self, session: Session, notification: EstimateNotification) -> Optional[str]:
        event_id = notification.appointment.calendar_event_id
        if notification.appointment.start_at is None:
            return event_id

        if event_id:
            if self.calendar.update_event(event_id, notification):
                return event_id
            LOGGER.warning(f"Calendar update failed for {event_id}; creating a new event")

        new_id = self.calendar.create_event(notification)
        if not new_id:
            return None
        self._attach_calendar_event(session, notification.appointment.id, new_id)
        return new_id

    # -------------------------------------------------------------------------
    # Handlers
    # -------------------------------------------------------------------------

    def handle_estimate_requested(self, session: Session, payload: EstimateRequestedPayload) -> str:
        notification = build_estimate_notification(
            session,
            payload.appointment_id,
            services=payload.services,
            scheduling=payload.scheduling.model_dump() if payload.scheduling else None,
            notes=payload.notes,
        )
        if notification is None:
            return SKIPPED

        self._ensure_calendar_event(session, notification)
        self.notifier.send_estimate_confirmation(notification, payload.reason)
        return PROCESSED

    def handle_estimate_rescheduled(self, session: Session, payload: EstimateRescheduledPayload) -> str:
        notification = build_estimate_notification(
            session,
            payload.appointment_id,
            reschedule_url=payload.reschedule_url,
            scheduling=payload.scheduling.model_dump() if payload.scheduling else None,
        )
        if notification is None:
            return SKIPPED

        self._sync_calendar_for_reschedule(session, notification)
        self.notifier.send_estimate_confirmation(notification, "rescheduled")
        return PROCESSED

    def handle_estimate_status_changed(self, session: Session, payload: EstimateStatusChangedPayload) -> str:
        if payload.status not in (AppointmentStatus.CONFIRMED.value, AppointmentStatus.CANCELED.value):
            return SKIPPED

        notification = build_estimate_notification(session, payload.appointment_id)
        if notification is None:
            return SKIPPED
        # A later change superseded this one
        if notification.appointment.status != payload.status:
            return SKIPPED

        self.notifier.send_status_update(notification, payload.status)
        return PROCESSED

    def handle_lead_created(self, session: Session, payload: LeadCreatedPayload) -> str:
        lead = session.get(Lead, payload.lead_id)
        if lead is None:
            LOGGER.warning(f"Lead {payload.lead_id} not found")
            return SKIPPED

        appointment = (
            session.query(Appointment)
            .filter(Appointment.lead_id == lead.id)
            .order_by(Appointment.created_at)
            .first()
        )
        if appointment is not None:
            notification = build_estimate_notification(
                session, appointment.id, services=payload.services, notes=payload.notes
            )
            if notification is None:
                return SKIPPED
            self.notifier.send_estimate_confirmation(notification, "requested")
            return PROCESSED

        return self._alert_new_lead(session, lead, payload)

    def _alert_new_lead(self, session: Session, lead: Lead, payload: LeadCreatedPayload) -> str:
        contact = session.get(Contact, lead.contact_id)
        prop = session.get(Property, lead.property_id)
        if contact is None or prop is None:
            return SKIPPED

        self.notifier.send_lead_alert(
            lead.id,
            ContactInfo(name=contact.full_name, email=contact.email, phone=contact.phone_e164 or contact.phone),
            payload.services or list(lead.services_requested or []),
            f"{prop.address_line1}, {prop.city}, {prop.state} {prop.postal_code}",
        )
        return PROCESSED

    def handle_quote_sent(self, session: Session, payload: QuoteSentPayload) -> str:
        notification = build_quote_notification(session, payload.quote_id, share_url=payload.share_url)
        if notification is None:
            return SKIPPED
        self.notifier.send_quote_sent(notification)
        return PROCESSED

    def handle_quote_decision(self, session: Session, payload: QuoteDecisionPayload) -> str:
        notification = build_quote_notification(session, payload.quote_id, notes=payload.notes)
        if notification is None:
            return SKIPPED
        self.notifier.send_quote_decision(notification, payload.decision, payload.source)
        return PROCESSED

    def handle_payment_recorded(self, session: Session, payload: PaymentRecordedPayload) -> str:
        appointment = session.get(Appointment, payload.appointment_id)
        if appointment is None:
            LOGGER.warning(f"Payment for unknown appointment {payload.appointment_id}")
            return SKIPPED

        parts = [f"Payment recorded USD {to_money(payload.amount):.2f}"]
        if payload.method:
            parts.append(f"Method: {payload.method}")
        if payload.reference:
            parts.append(f"Ref: {payload.reference}")
        parts.append(f"Source: {payload.source or 'system'}")

        session.add(AppointmentNote(appointment_id=appointment.id, body=" | ".join(parts)))
        appointment.updated_at = utcnow()
        session.flush()
        return PROCESSED

    def handle_pipeline_stage_request(self, session: Session, payload: PipelineStageRequestPayload) -> str:
        stage = parse_stage(payload.stage)
        contact_id = payload.contact_id.strip()
        if not contact_id or stage is None:
            LOGGER.warning(f"Invalid pipeline stage request: {payload.stage!r} for {payload.contact_id!r}")
            return SKIPPED

        reason = payload.reason.strip() if payload.reason and payload.reason.strip() else None
        upsert_pipeline_stage(session, contact_id, stage, reason)
        return PROCESSED
