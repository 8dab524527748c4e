"""Tests for the appointment lifecycle and reminders."""
from __future__ import annotations

from datetime import timedelta
from decimal import Decimal

import pytest

from conftest import future, make_appointment
from core.exceptions import ConflictError, NotFoundError, TwilioError, UnauthorizedError, ValidationError
from core.models import Appointment, Lead, OutboxEvent, Quote
from core.utils import utcnow
from domain.appointments import AppointmentService, can_transition, send_due_reminders
from domain.quotes import QuoteService
from scheduling.timing import resolve_timing


@pytest.fixture
def service(db_session, calendar):
    return AppointmentService(db_session, calendar=calendar)


def _events(session, event_type=None):
    query = session.query(OutboxEvent)
    if event_type:
        query = query.filter(OutboxEvent.type == event_type)
    return query.order_by(OutboxEvent.id).all()


def test_transition_table():
    assert can_transition("requested", "confirmed")
    assert can_transition("confirmed", "no_show")
    assert can_transition("no_show", "requested")
    assert not can_transition("requested", "completed")
    assert not can_transition("completed", "canceled")
    assert not can_transition("canceled", "requested")


def test_cancel_detaches_calendar_and_quote(service, db_session, sample_contact, sample_property, calendar):
    """Canceling clears the calendar id and job link; the event is deleted after commit."""
    appointment = make_appointment(
        db_session, sample_contact, sample_property, type="job", status="confirmed", calendar_event_id="cal-evt-9"
    )
    quote = QuoteService(db_session).create_quote(
        sample_contact.id, sample_property.id, {"zone_id": "zone-core", "selected_services": ["house-wash"]}
    )
    quote.job_appointment_id = appointment.id
    db_session.commit()

    updated, changed = service.change_status(appointment.id, "canceled")

    assert changed is True
    assert updated.status == "canceled"
    assert updated.calendar_event_id is None
    calendar.delete_event.assert_not_called()

    db_session.commit()

    calendar.delete_event.assert_called_once_with("cal-evt-9")
    assert db_session.get(Quote, quote.id).job_appointment_id is None
    stage_events = _events(db_session, "pipeline.stage_request")
    assert stage_events[-1].payload["stage"] == "lost"
    status_event = _events(db_session, "estimate.status_changed")[0]
    assert status_event.payload == {
        "appointment_id": appointment.id,
        "status": "canceled",
        "previous_status": "confirmed",
    }


def test_cancel_rolled_back_keeps_calendar_event(service, db_session, sample_contact, sample_property, calendar):
    appointment = make_appointment(db_session, sample_contact, sample_property, calendar_event_id="cal-evt-9")

    service.change_status(appointment.id, "canceled")
    db_session.rollback()

    calendar.delete_event.assert_not_called()
    db_session.expire_all()
    assert db_session.get(Appointment, appointment.id).calendar_event_id == "cal-evt-9"


def test_confirm_updates_lead_and_stage(service, db_session, sample_contact, sample_property):
    lead = Lead(
        contact_id=sample_contact.id, property_id=sample_property.id, services_requested=["deck"], status="new"
    )
    db_session.add(lead)
    db_session.commit()
    appointment = make_appointment(db_session, sample_contact, sample_property, lead_id=lead.id)

    service.change_status(appointment.id, "confirmed")

    assert lead.status == "scheduled"
    assert _events(db_session, "pipeline.stage_request")[0].payload["stage"] == "qualified"


def test_same_status_is_noop(service, db_session, sample_appointment):
    appointment, changed = service.change_status(sample_appointment.id, "requested")

    assert changed is False
    assert _events(db_session) == []


def test_invalid_transition(service, sample_appointment):
    with pytest.raises(ConflictError) as exc_info:
        service.change_status(sample_appointment.id, "completed")

    assert exc_info.value.reason == "invalid_transition"
    assert exc_info.value.details == {"from": "requested", "to": "completed"}


def test_unknown_status(service, sample_appointment):
    with pytest.raises(ValidationError):
        service.change_status(sample_appointment.id, "postponed")


def test_missing_appointment(service):
    with pytest.raises(NotFoundError):
        service.change_status("nope", "confirmed")


def test_list_appointments(service, db_session, sample_contact, sample_property):
    later = make_appointment(db_session, sample_contact, sample_property, start_at=future(6))
    sooner = make_appointment(db_session, sample_contact, sample_property, start_at=future(2))
    make_appointment(db_session, sample_contact, sample_property, status="canceled")

    listed = service.list_appointments(status="requested")

    assert [a.id for a in listed] == [sooner.id, later.id]


# =============================================================================
# Reschedule
# =============================================================================


def test_reschedule_with_start(service, db_session, sample_appointment):
    new_start = future(7, hour=18)

    appointment = service.reschedule(sample_appointment.id, sample_appointment.reschedule_token, start_at=new_start)

    assert appointment.start_at == new_start
    event = _events(db_session, "estimate.rescheduled")[0]
    assert event.payload["appointment_id"] == sample_appointment.id
    assert f"appointmentId={sample_appointment.id}" in event.payload["reschedule_url"]


def test_reschedule_with_preferred_date(service, sample_appointment):
    day = future(8).date().isoformat()

    appointment = service.reschedule(
        sample_appointment.id, sample_appointment.reschedule_token, preferred_date=day, time_window="evening"
    )

    assert appointment.start_at == resolve_timing(day, "evening").start_at


def test_reschedule_no_show_returns_to_requested(service, db_session, sample_contact, sample_property):
    appointment = make_appointment(db_session, sample_contact, sample_property, status="no_show")

    moved = service.reschedule(appointment.id, appointment.reschedule_token, start_at=future(4))

    assert moved.status == "requested"


def test_reschedule_bad_token(service, sample_appointment):
    with pytest.raises(UnauthorizedError):
        service.reschedule(sample_appointment.id, "not-the-token", start_at=future(4))
    with pytest.raises(UnauthorizedError):
        service.reschedule(sample_appointment.id, "", start_at=future(4))


def test_reschedule_closed_appointment(service, db_session, sample_contact, sample_property):
    appointment = make_appointment(db_session, sample_contact, sample_property, status="completed")

    with pytest.raises(ConflictError):
        service.reschedule(appointment.id, appointment.reschedule_token, start_at=future(4))


def test_reschedule_needs_future_time(service, sample_appointment):
    with pytest.raises(ValidationError):
        service.reschedule(sample_appointment.id, sample_appointment.reschedule_token)
    with pytest.raises(ValidationError):
        service.reschedule(
            sample_appointment.id, sample_appointment.reschedule_token, start_at=utcnow() - timedelta(hours=1)
        )


# =============================================================================
# Notes and payments
# =============================================================================


def test_add_note(service, sample_appointment):
    note = service.add_note(sample_appointment.id, "  Dog in the back yard  ")
    assert note.body == "Dog in the back yard"


def test_add_empty_note(service, sample_appointment):
    with pytest.raises(ValidationError):
        service.add_note(sample_appointment.id, "   ")


def test_record_payment(service, db_session, sample_appointment):
    amount = service.record_payment(sample_appointment.id, "99.999", method="cash", reference="R-7")

    assert amount == Decimal("100.00")
    event = _events(db_session, "payment.recorded")[0]
    assert event.payload["method"] == "cash"
    assert Decimal(event.payload["amount"]) == Decimal("100.00")


@pytest.mark.parametrize("amount", ["abc", 0, "-5"])
def test_record_payment_rejects_bad_amount(service, sample_appointment, amount):
    with pytest.raises(ValidationError):
        service.record_payment(sample_appointment.id, amount)


# =============================================================================
# Reminders
# =============================================================================


def test_reminders_fire_once_per_slice(db_session, sample_contact, sample_property, notifier):
    now = utcnow().replace(second=0, microsecond=0)
    due = make_appointment(db_session, sample_contact, sample_property, start_at=now + timedelta(hours=24, minutes=5))
    make_appointment(db_session, sample_contact, sample_property, start_at=now + timedelta(hours=24, minutes=20))
    make_appointment(
        db_session, sample_contact, sample_property, start_at=now + timedelta(hours=24, minutes=5), status="canceled"
    )

    sent = send_due_reminders(db_session, notifier, now=now)

    assert sent == 1
    notification, window = notifier.send_reminder.call_args.args
    assert notification.appointment.id == due.id
    assert window == 24 * 60

    # The next tick's slice no longer contains it
    notifier.send_reminder.reset_mock()
    send_due_reminders(db_session, notifier, now=now + timedelta(minutes=15))
    assert all(call.args[0].appointment.id != due.id for call in notifier.send_reminder.call_args_list)


def test_reminder_failure_is_contained(db_session, sample_contact, sample_property, notifier):
    now = utcnow().replace(second=0, microsecond=0)
    make_appointment(db_session, sample_contact, sample_property, start_at=now + timedelta(hours=24, minutes=1))
    notifier.send_reminder.side_effect = TwilioError("carrier rejected")

    assert send_due_reminders(db_session, notifier, now=now) == 0
