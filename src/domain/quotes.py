"""Quote lifecycle: pricing, sending, decisions and scheduling the job."""
from __future__ import annotations

from datetime import datetime, timedelta
from typing import Any, Callable, Dict, List, Optional, Tuple, Union

from sqlalchemy.orm import Session

from core.config import get_settings
from core.db import flush_or_conflict
from core.exceptions import ConflictError, NotFoundError, QuoteExpiredError, ValidationError
from core.logging_config import get_logger
from core.models import (
    Appointment,
    AppointmentNote,
    AppointmentStatus,
    AppointmentType,
    Contact,
    Lead,
    LeadStatus,
    PipelineStage,
    Property,
    Quote,
    QuoteStatus,
)
from core.utils import ensure_aware, generate_token, isoformat_or_none, utcnow
from domain.pipeline_stage import enqueue_stage_request, upsert_pipeline_stage
from outbox.events import (
    EstimateRequestedPayload,
    EventType,
    QuoteDecisionPayload,
    QuoteSentPayload,
    enqueue_event,
)
from pricing.engine import QuoteRequest, calculate_breakdown, parse_quote_request
from scheduling.timing import build_quote_url

LOGGER = get_logger(__name__)

DECISIONS = (QuoteStatus.ACCEPTED.value, QuoteStatus.DECLINED.value)


def _validate_decision(decision: str) -> str:
    if decision not in DECISIONS:
        raise ValidationError(f"Unknown decision {decision!r}", reason="invalid_decision")
    return decision


def public_quote_view(quote: Quote, now: datetime) -> Dict[str, Any]:
    """The customer-facing projection of a quote. No contact details beyond a first name."""
    expires_at = ensure_aware(quote.expires_at)
    contact = quote.contact
    prop = quote.property

    city_state = ", ".join(p for p in (prop.city.strip(), prop.state.strip()) if p) if prop else ""
    service_area = " ".join(p for p in (city_state, prop.postal_code.strip() if prop else "") if p)
    first_name = (contact.first_name or "").strip() if contact else ""

    return {
        "id": quote.id,
        "status": quote.status,
        "services": list(quote.services or []),
        "add_ons": list(quote.add_ons or []),
        "line_items": list(quote.line_items or []),
        "subtotal": float(quote.subtotal),
        "total": float(quote.total),
        "deposit_due": float(quote.deposit_due),
        "balance_due": float(quote.balance_due),
        "sent_at": isoformat_or_none(quote.sent_at),
        "expires_at": isoformat_or_none(expires_at),
        "expired": bool(expires_at and expires_at < now),
        "decision_notes": quote.decision_notes,
        "customer_name": first_name or "Customer",
        "service_area": service_area,
    }


class QuoteService:
    """
    Admin and customer operations on quotes.

    Methods flush inside the caller's session and enqueue outbox events in
    the same transaction; the caller commits.
    """

    def __init__(self, session: Session, clock: Callable[[], datetime] = utcnow):
        self.session = session
        self.clock = clock

    # -------------------------------------------------------------------------
    # Lookups
    # -------------------------------------------------------------------------

    def get_quote(self, quote_id: str, for_update: bool = False) -> Quote:
        query = self.session.query(Quote).filter(Quote.id == quote_id)
        if for_update:
            query = query.with_for_update()
        quote = query.first()
        if quote is None:
            raise NotFoundError(f"Quote {quote_id} not found", reason="quote_not_found")
        return quote

    def get_by_token(self, token: str) -> Quote:
        if not token:
            raise ValidationError("Missing share token", reason="missing_token")
        quote = self.session.query(Quote).filter(Quote.share_token == token).first()
        if quote is None:
            raise NotFoundError("Quote not found", reason="not_found")
        return quote

    def list_quotes(self, status: Optional[str] = None, limit: int = 100) -> List[Quote]:
        query = self.session.query(Quote)
        if status in {s.value for s in QuoteStatus}:
            query = query.filter(Quote.status == status)
        return query.order_by(Quote.updated_at.desc()).limit(limit).all()

    # -------------------------------------------------------------------------
    # Admin operations
    # -------------------------------------------------------------------------

    def create_quote(
        self,
        contact_id: str,
        property_id: str,
        request: Union[QuoteRequest, Dict[str, Any]],
        expires_in_days: Optional[int] = None,
        notes: Optional[str] = None,
    ) -> Quote:
        """
        Price and store a new pending quote.

        Raises:
            NotFoundError: Contact or property does not exist.
            ValidationError: Property belongs to another contact, or the
                pricing request is invalid.
        """
        contact = self.session.get(Contact, contact_id)
        if contact is None:
            raise NotFoundError(f"Contact {contact_id} not found", reason="contact_not_found")
        prop = self.session.get(Property, property_id)
        if prop is None:
            raise NotFoundError(f"Property {property_id} not found", reason="property_not_found")
        if prop.contact_id != contact.id:
            raise ValidationError("Property belongs to a different contact", reason="property_contact_mismatch")

        quote_request = parse_quote_request(request)
        breakdown = calculate_breakdown(quote_request, deposit_rate=get_settings().default_deposit_rate)

        days = expires_in_days or get_settings().quote_default_expiry_days
        expires_at = self.clock() + timedelta(days=days) if days else None

        quote = Quote(
            contact_id=contact.id,
            property_id=prop.id,
            status=QuoteStatus.PENDING.value,
            services=list(quote_request.selected_services),
            add_ons=list(quote_request.selected_add_ons) or None,
            surface_area=quote_request.surface_area,
            zone_id=breakdown.zone_id,
            travel_fee=breakdown.travel_fee,
            discounts=breakdown.discounts,
            add_ons_total=breakdown.add_ons_total,
            services_total=breakdown.services_total,
            subtotal=breakdown.subtotal,
            total=breakdown.total,
            deposit_due=breakdown.deposit_due,
            deposit_rate=breakdown.deposit_rate,
            balance_due=breakdown.balance_due,
            line_items=[item.to_dict() for item in breakdown.line_items],
            expires_at=expires_at,
            notes=notes,
        )
        self.session.add(quote)
        flush_or_conflict(self.session, "Quote could not be stored")

        lead = (
            self.session.query(Lead)
            .filter(Lead.contact_id == contact.id, Lead.property_id == prop.id)
            .order_by(Lead.created_at.desc())
            .first()
        )
        if lead is not None and lead.status in (LeadStatus.NEW.value, LeadStatus.CONTACTED.value):
            lead.status = LeadStatus.QUOTED.value
        enqueue_stage_request(self.session, contact.id, PipelineStage.QUOTED.value, "Quote created")
        self.session.flush()

        LOGGER.info(f"Created quote {quote.id} for contact {contact.id}: total {breakdown.total}")
        return quote

    def send_quote(self, quote_id: str) -> Quote:
        """
        Share a quote with the customer.

        Issues a share token the first time, stamps ``sent_at`` and enqueues
        ``quote.sent``. Re-sending a sent quote is allowed.
        """
        quote = self.get_quote(quote_id)
        if quote.status in DECISIONS:
            raise ConflictError(f"Quote {quote_id} is already {quote.status}", reason="quote_decided")

        if not quote.share_token:
            quote.share_token = generate_token()
        quote.sent_at = self.clock()
        quote.status = QuoteStatus.SENT.value
        flush_or_conflict(self.session, "Share token collision")

        enqueue_event(
            self.session,
            EventType.QUOTE_SENT,
            QuoteSentPayload(quote_id=quote.id, share_url=build_quote_url(quote.share_token)),
        )
        self.session.flush()
        LOGGER.info(f"Quote {quote.id} sent")
        return quote

    def record_decision(
        self,
        quote_id: str,
        decision: str,
        notes: Optional[str] = None,
        source: str = "admin",
    ) -> Tuple[Quote, bool]:
        """
        Staff records the customer's decision.

        Returns:
            (quote, changed). ``changed`` is False when the quote already had
            this status; nothing is enqueued then.
        """
        _validate_decision(decision)
        quote = self.get_quote(quote_id)
        if quote.status == decision:
            return quote, False

        self._apply_decision(quote, decision, notes, source)
        return quote, True

    # -------------------------------------------------------------------------
    # Customer operations
    # -------------------------------------------------------------------------

    def get_public_quote(self, token: str) -> Dict[str, Any]:
        return public_quote_view(self.get_by_token(token), self.clock())

    def decide_by_token(self, token: str, decision: str, notes: Optional[str] = None) -> Quote:
        """
        Customer accepts or declines from the share link.

        Raises:
            QuoteExpiredError: The quote is past its expiry.
            ConflictError: A different decision was already recorded.
        """
        _validate_decision(decision)
        quote = self.get_by_token(token)

        expires_at = ensure_aware(quote.expires_at)
        if expires_at and expires_at < self.clock():
            raise QuoteExpiredError("This quote has expired", reason="expired")

        if quote.decision_at is not None:
            if quote.status == decision:
                return quote
            raise ConflictError("A decision was already recorded for this quote", reason="decision_recorded")

        self._apply_decision(quote, decision, notes, "customer")
        return quote

    def _apply_decision(self, quote: Quote, decision: str, notes: Optional[str], source: str) -> None:
        quote.status = decision
        # First decision wins the timestamp and notes
        if quote.decision_at is None:
            quote.decision_at = self.clock()
            quote.decision_notes = notes

        enqueue_event(
            self.session,
            EventType.QUOTE_DECISION,
            QuoteDecisionPayload(quote_id=quote.id, decision=decision, source=source, notes=notes),
        )
        self.session.flush()
        LOGGER.info(f"Quote {quote.id} {decision} by {source}")

    # -------------------------------------------------------------------------
    # Quote -> job
    # -------------------------------------------------------------------------

    def schedule_job(
        self,
        quote_id: str,
        start_at: datetime,
        duration_minutes: Optional[int] = None,
        travel_buffer_minutes: Optional[int] = None,
        notes: Optional[str] = None,
    ) -> Appointment:
        """
        Book the job for an accepted quote.

        All precondition reads happen in the caller's transaction, with the
        quote row locked where the database supports it.

        Raises:
            NotFoundError: Quote does not exist.
            ConflictError: Quote is not accepted, or already has a live job.
        """
        settings = get_settings()
        quote = self.get_quote(quote_id, for_update=True)
        if quote.status != QuoteStatus.ACCEPTED.value:
            raise ConflictError("Quote has not been accepted", reason="quote_not_accepted")

        if quote.job_appointment_id:
            existing = self.session.get(Appointment, quote.job_appointment_id)
            if existing is not None and existing.status != AppointmentStatus.CANCELED.value:
                raise ConflictError("Quote already has a scheduled job", reason="already_scheduled")

        lead = self.session.query(Lead).filter(Lead.quote_id == quote.id).first()
        if lead is None:
            lead = (
                self.session.query(Lead)
                .filter(Lead.contact_id == quote.contact_id, Lead.property_id == quote.property_id)
                .order_by(Lead.created_at.desc())
                .first()
            )

        appointment = Appointment(
            contact_id=quote.contact_id,
            property_id=quote.property_id,
            lead_id=lead.id if lead else None,
            type=AppointmentType.JOB.value,
            start_at=ensure_aware(start_at),
            duration_minutes=duration_minutes or settings.default_appointment_duration_min,
            travel_buffer_minutes=travel_buffer_minutes
            if travel_buffer_minutes is not None
            else settings.default_travel_buffer_min,
            status=AppointmentStatus.CONFIRMED.value,
            reschedule_token=generate_token(),
        )
        self.session.add(appointment)
        flush_or_conflict(self.session, "Appointment could not be created")

        summary = ["Scheduled from accepted quote."]
        if quote.services:
            summary.append(f"Services: {', '.join(quote.services)}")
        if notes:
            summary.append(f"Notes: {notes}")
        self.session.add(AppointmentNote(appointment_id=appointment.id, body="\n".join(summary)))

        if lead is not None:
            lead.status = LeadStatus.SCHEDULED.value
            lead.quote_id = quote.id
        quote.job_appointment_id = appointment.id

        upsert_pipeline_stage(self.session, quote.contact_id, PipelineStage.WON.value, notes)
        enqueue_event(
            self.session,
            EventType.ESTIMATE_REQUESTED,
            EstimateRequestedPayload(
                appointment_id=appointment.id,
                lead_id=lead.id if lead else None,
                services=list(quote.services or []),
                notes=notes,
            ),
        )
        flush_or_conflict(self.session, "Job could not be scheduled")

        LOGGER.info(f"Scheduled job {appointment.id} for quote {quote.id}")
        return appointment
