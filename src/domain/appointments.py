"""Appointment lifecycle: status changes, customer reschedules, notes, payments, reminders."""
from __future__ import annotations

import hmac
from datetime import datetime, timedelta
from decimal import Decimal, InvalidOperation
from typing import Callable, Dict, FrozenSet, List, Optional, Tuple

from sqlalchemy.orm import Session

from core.db import after_commit, flush_or_conflict
from core.exceptions import ConflictError, ExternalDependencyError, NotFoundError, UnauthorizedError, ValidationError
from core.logging_config import get_logger
from core.models import (
    Appointment,
    AppointmentNote,
    AppointmentStatus,
    Lead,
    LeadStatus,
    PipelineStage,
    Quote,
)
from core.utils import ensure_aware, to_money, utcnow
from domain.notifications import build_estimate_notification
from domain.pipeline_stage import enqueue_stage_request
from outbox.events import (
    EstimateRescheduledPayload,
    EstimateStatusChangedPayload,
    EventType,
    PaymentRecordedPayload,
    SchedulingPreferences,
    enqueue_event,
)
from scheduling.timing import build_reschedule_url, resolve_timing
from services.calendar import CalendarSync, get_calendar_sync
from services.notification import Notifier

LOGGER = get_logger(__name__)

_S = AppointmentStatus

ALLOWED_TRANSITIONS: Dict[str, FrozenSet[str]] = {
    _S.REQUESTED.value: frozenset({_S.CONFIRMED.value, _S.CANCELED.value}),
    _S.CONFIRMED.value: frozenset({_S.COMPLETED.value, _S.CANCELED.value, _S.NO_SHOW.value}),
    _S.NO_SHOW.value: frozenset({_S.REQUESTED.value}),
    _S.COMPLETED.value: frozenset(),
    _S.CANCELED.value: frozenset(),
}

# Status -> CRM stage the contact moves to
STAGE_FOR_STATUS = {
    _S.CONFIRMED.value: PipelineStage.QUALIFIED.value,
    _S.COMPLETED.value: PipelineStage.WON.value,
    _S.CANCELED.value: PipelineStage.LOST.value,
}

RESCHEDULABLE = {_S.REQUESTED.value, _S.CONFIRMED.value, _S.NO_SHOW.value}


def can_transition(current: str, target: str) -> bool:
    return target in ALLOWED_TRANSITIONS.get(current, frozenset())


class AppointmentService:
    """Operations on a single appointment inside the caller's transaction."""

    def __init__(
        self,
        session: Session,
        calendar: Optional[CalendarSync] = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.session = session
        self._calendar = calendar
        self.clock = clock

    @property
    def calendar(self) -> CalendarSync:
        if self._calendar is None:
            self._calendar = get_calendar_sync()
        return self._calendar

    def get_appointment(self, appointment_id: str) -> Appointment:
        appointment = self.session.get(Appointment, appointment_id)
        if appointment is None:
            raise NotFoundError(f"Appointment {appointment_id} not found", reason="not_found")
        return appointment

    def list_appointments(self, status: Optional[str] = None, limit: int = 100) -> List[Appointment]:
        query = self.session.query(Appointment)
        if status:
            query = query.filter(Appointment.status == status)
        return query.order_by(Appointment.start_at.asc()).limit(limit).all()

    # -------------------------------------------------------------------------
    # Status
    # -------------------------------------------------------------------------

    def change_status(self, appointment_id: str, status: str) -> Tuple[Appointment, bool]:
        """
        Move an appointment through its state machine.

        Returns:
            (appointment, changed). Setting the current status again is a no-op.

        Raises:
            ValidationError: Unknown status.
            ConflictError: Transition not allowed (reason ``invalid_transition``).
        """
        if status not in ALLOWED_TRANSITIONS:
            raise ValidationError(f"Unknown appointment status {status!r}", reason="invalid_status")

        appointment = self.get_appointment(appointment_id)
        previous = appointment.status
        if previous == status:
            return appointment, False
        if not can_transition(previous, status):
            raise ConflictError(
                f"Cannot move appointment from {previous} to {status}",
                reason="invalid_transition",
                details={"from": previous, "to": status},
            )

        appointment.status = status

        if status == _S.CANCELED.value:
            self._detach_on_cancel(appointment)

        if status == _S.CONFIRMED.value and appointment.lead_id:
            lead = self.session.get(Lead, appointment.lead_id)
            if lead is not None:
                lead.status = LeadStatus.SCHEDULED.value

        enqueue_event(
            self.session,
            EventType.ESTIMATE_STATUS_CHANGED,
            EstimateStatusChangedPayload(appointment_id=appointment.id, status=status, previous_status=previous),
        )
        stage = STAGE_FOR_STATUS.get(status)
        if stage:
            enqueue_stage_request(self.session, appointment.contact_id, stage, f"Appointment {status}")

        flush_or_conflict(self.session)
        LOGGER.info(f"Appointment {appointment.id}: {previous} -> {status}")
        return appointment, True

    def _detach_on_cancel(self, appointment: Appointment) -> None:
        event_id = appointment.calendar_event_id
        appointment.calendar_event_id = None

        linked = self.session.query(Quote).filter(Quote.job_appointment_id == appointment.id).all()
        for quote in linked:
            quote.job_appointment_id = None

        if event_id:
            calendar = self.calendar

            def delete_calendar_event() -> None:
                calendar.delete_event(event_id)

            after_commit(self.session, delete_calendar_event)

    # -------------------------------------------------------------------------
    # Customer reschedule
    # -------------------------------------------------------------------------

    def reschedule(
        self,
        appointment_id: str,
        token: str,
        start_at: Optional[datetime] = None,
        preferred_date: Optional[str] = None,
        time_window: Optional[str] = None,
    ) -> Appointment:
        """
        Move an appointment using its reschedule token.

        Either ``start_at`` or ``preferred_date`` (with an optional window)
        must be given. A no-show goes back to ``requested``.

        Raises:
            UnauthorizedError: Token does not match.
            ConflictError: Appointment is completed or canceled.
            ValidationError: No usable new time.
        """
        appointment = self.get_appointment(appointment_id)
        if not token or not hmac.compare_digest(appointment.reschedule_token, token):
            raise UnauthorizedError("Invalid reschedule link", reason="invalid_token")
        if appointment.status not in RESCHEDULABLE:
            raise ConflictError(
                f"A {appointment.status} appointment cannot be rescheduled", reason="not_reschedulable"
            )

        if start_at is not None:
            new_start = ensure_aware(start_at)
        else:
            timing = resolve_timing(preferred_date, time_window, appointment.duration_minutes)
            new_start = timing.start_at
        if new_start is None:
            raise ValidationError("A new date is required", reason="invalid_start_at")
        if new_start < self.clock():
            raise ValidationError("The new time is in the past", reason="invalid_start_at")

        previous = appointment.status
        appointment.start_at = new_start
        if previous == _S.NO_SHOW.value:
            appointment.status = _S.REQUESTED.value

        reschedule_url = build_reschedule_url(appointment.id, appointment.reschedule_token)
        enqueue_event(
            self.session,
            EventType.ESTIMATE_RESCHEDULED,
            EstimateRescheduledPayload(
                appointment_id=appointment.id,
                start_at=new_start,
                reschedule_url=reschedule_url,
                scheduling=SchedulingPreferences(preferred_date=preferred_date, time_window=time_window),
            ),
        )
        flush_or_conflict(self.session)
        LOGGER.info(f"Appointment {appointment.id} rescheduled to {new_start.isoformat()}")
        return appointment

    # -------------------------------------------------------------------------
    # Notes and payments
    # -------------------------------------------------------------------------

    def add_note(self, appointment_id: str, body: str) -> AppointmentNote:
        appointment = self.get_appointment(appointment_id)
        text = (body or "").strip()
        if not text:
            raise ValidationError("Note body is required", reason="invalid_payload")

        note = AppointmentNote(appointment_id=appointment.id, body=text)
        self.session.add(note)
        flush_or_conflict(self.session)
        return note

    def record_payment(
        self,
        appointment_id: str,
        amount,
        method: str = "card",
        reference: Optional[str] = None,
        source: str = "admin",
    ) -> Decimal:
        """
        Record a payment against an appointment.

        The payment note is written by the ``payment.recorded`` handler.

        Returns:
            The amount, rounded to cents.
        """
        appointment = self.get_appointment(appointment_id)
        try:
            value = to_money(amount)
        except (InvalidOperation, ValueError, TypeError) as e:
            raise ValidationError("Amount must be a number", reason="invalid_amount") from e
        if value <= 0:
            raise ValidationError("Amount must be positive", reason="invalid_amount")

        enqueue_event(
            self.session,
            EventType.PAYMENT_RECORDED,
            PaymentRecordedPayload(
                appointment_id=appointment.id,
                amount=value,
                method=method or "card",
                reference=reference,
                source=source,
            ),
        )
        self.session.flush()
        return value


# =============================================================================
# Reminders
# =============================================================================


def send_due_reminders(
    session: Session,
    notifier: Notifier,
    now: Optional[datetime] = None,
    window_minutes: int = 24 * 60,
    tick_minutes: int = 15,
) -> int:
    """
    Remind customers whose appointment starts ``window_minutes`` from now.

    Meant to run every ``tick_minutes``; each appointment falls into exactly
    one tick's slice, so it is reminded once. Returns the number sent.
    """
    now = now or utcnow()
    slice_start = now + timedelta(minutes=window_minutes)
    slice_end = slice_start + timedelta(minutes=tick_minutes)

    due = (
        session.query(Appointment)
        .filter(
            Appointment.status.in_([_S.REQUESTED.value, _S.CONFIRMED.value]),
            Appointment.start_at >= slice_start,
            Appointment.start_at < slice_end,
        )
        .order_by(Appointment.start_at)
        .all()
    )

    sent = 0
    for appointment in due:
        notification = build_estimate_notification(session, appointment.id)
        if notification is None:
            continue
        try:
            if notifier.send_reminder(notification, window_minutes):
                sent += 1
        except ExternalDependencyError as e:
            LOGGER.warning(f"Reminder for appointment {appointment.id} failed: {e}")
    if due:
        LOGGER.info(f"Sent {sent} of {len(due)} appointment reminders")
    return sent
