"""Tests for the outbox dispatcher and its handlers."""
from __future__ import annotations

from datetime import timedelta
from decimal import Decimal

import pytest

from conftest import make_appointment
from core.exceptions import NotFoundError
from core.models import Appointment, AppointmentNote, CrmPipeline, Lead, OutboxEvent
from core.utils import utcnow
from outbox.dispatcher import OutboxDispatcher
from outbox.events import EventType, decode_payload, enqueue_event
from outbox.handlers import OutboxHandlers


@pytest.fixture
def handlers(notifier, calendar):
    return OutboxHandlers(notifier=notifier, calendar=calendar)


@pytest.fixture
def dispatcher(session_factory, handlers):
    return OutboxDispatcher(session_factory=session_factory, handlers=handlers, worker_id="worker-a")


def _enqueue(session, event_type, payload):
    event = enqueue_event(session, event_type, payload)
    session.commit()
    return event


def _reload(session, model, key):
    session.expire_all()
    return session.get(model, key)


# =============================================================================
# Dispatcher
# =============================================================================


def test_fifo_order(dispatcher, db_session, sample_contact):
    """Later stage requests win because events run oldest first."""
    ids = [
        _enqueue(db_session, EventType.PIPELINE_STAGE_REQUEST, {"contact_id": sample_contact.id, "stage": stage}).id
        for stage in ("contacted", "quoted", "won")
    ]

    stats = dispatcher.process_batch()

    assert stats.event_ids == ids
    assert stats.processed == 3
    assert _reload(db_session, CrmPipeline, sample_contact.id).stage == "won"


def test_limit_is_respected(dispatcher, db_session, sample_contact):
    for _ in range(5):
        _enqueue(db_session, EventType.PIPELINE_STAGE_REQUEST, {"contact_id": sample_contact.id, "stage": "new"})

    stats = dispatcher.process_batch(2)

    assert stats.total == 2
    assert dispatcher.pending_count() == 3


def test_clamp_limit(dispatcher):
    assert dispatcher.clamp_limit(None) == 10
    assert dispatcher.clamp_limit(0) == 1
    assert dispatcher.clamp_limit(-5) == 1
    assert dispatcher.clamp_limit(500) == 50


def test_failed_handler_still_marks_event(dispatcher, db_session, sample_appointment, notifier):
    """A raising handler rolls back its writes; the event is marked with the error."""
    notifier.send_estimate_confirmation.side_effect = RuntimeError("sms gateway down")
    event = _enqueue(db_session, EventType.ESTIMATE_REQUESTED, {"appointment_id": sample_appointment.id})

    stats = dispatcher.process_batch()

    assert stats.errors == 1
    stored = _reload(db_session, OutboxEvent, event.id)
    assert stored.processed_at is not None
    assert stored.outcome == "error"
    assert stored.last_error == "RuntimeError: sms gateway down"
    assert stored.attempts == 1
    assert stored.claimed_by is None
    # Calendar id written by the handler was rolled back with it
    assert _reload(db_session, Appointment, sample_appointment.id).calendar_event_id is None


def test_requeue_and_retry(dispatcher, db_session, sample_appointment, notifier):
    notifier.send_estimate_confirmation.side_effect = RuntimeError("sms gateway down")
    event = _enqueue(db_session, EventType.ESTIMATE_REQUESTED, {"appointment_id": sample_appointment.id})
    dispatcher.process_batch()

    requeued = dispatcher.requeue(event.id)
    assert requeued.processed_at is None
    assert requeued.outcome is None
    assert dispatcher.pending_count() == 1

    notifier.send_estimate_confirmation.side_effect = None
    stats = dispatcher.process_batch()

    assert stats.processed == 1
    stored = _reload(db_session, OutboxEvent, event.id)
    assert stored.outcome == "processed"
    assert stored.attempts == 2


def test_requeue_unknown_event(dispatcher):
    with pytest.raises(NotFoundError):
        dispatcher.requeue(9999)


def test_unknown_type_skipped(dispatcher, db_session):
    event = _enqueue(db_session, "mystery.event", {"anything": 1})

    stats = dispatcher.process_batch()

    assert stats.skipped == 1
    assert _reload(db_session, OutboxEvent, event.id).outcome == "skipped"


def test_malformed_payload_skipped(dispatcher, db_session):
    event = OutboxEvent(type=EventType.QUOTE_SENT.value, payload={"share_url": "https://example.com"})
    db_session.add(event)
    db_session.commit()

    assert dispatcher.process_batch().skipped == 1


def test_live_lease_blocks_other_workers(session_factory, handlers, db_session, sample_contact):
    """A claimed event is invisible to other workers until its lease lapses."""
    _enqueue(db_session, EventType.PIPELINE_STAGE_REQUEST, {"contact_id": sample_contact.id, "stage": "won"})
    worker_a = OutboxDispatcher(session_factory=session_factory, handlers=handlers, worker_id="worker-a")
    later = OutboxDispatcher(
        session_factory=session_factory,
        handlers=handlers,
        worker_id="worker-b",
        lease_seconds=60,
        clock=lambda: utcnow() + timedelta(minutes=10),
    )
    soon = OutboxDispatcher(session_factory=session_factory, handlers=handlers, worker_id="worker-c")

    claimed = worker_a.claim_batch(10)
    assert len(claimed) == 1
    assert soon.claim_batch(10) == []

    # Worker A stalled past its lease; B takes over and A backs off
    assert later.claim_batch(10) == claimed
    assert worker_a.process_event(claimed[0]) is None
    assert later.process_event(claimed[0]) == "processed"


def test_decode_payload():
    decoded = decode_payload("payment.recorded", {"appointment_id": "a1", "amount": "40.5", "extra": True})

    assert decoded.amount == Decimal("40.5")
    assert decode_payload("payment.recorded", {"amount": "40"}) is None
    assert decode_payload("nope", {}) is None


# =============================================================================
# Handlers
# =============================================================================


def test_estimate_requested_creates_calendar_event(dispatcher, db_session, sample_appointment, notifier, calendar):
    _enqueue(db_session, EventType.ESTIMATE_REQUESTED, {"appointment_id": sample_appointment.id})

    dispatcher.process_batch()

    calendar.create_event.assert_called_once()
    notifier.send_estimate_confirmation.assert_called_once()
    assert notifier.send_estimate_confirmation.call_args.args[1] == "requested"
    assert _reload(db_session, Appointment, sample_appointment.id).calendar_event_id == "cal-evt-1"


def test_estimate_requested_keeps_existing_calendar_event(
    dispatcher, db_session, sample_contact, sample_property, calendar
):
    appointment = make_appointment(db_session, sample_contact, sample_property, calendar_event_id="cal-existing")
    _enqueue(db_session, EventType.ESTIMATE_REQUESTED, {"appointment_id": appointment.id})

    dispatcher.process_batch()

    calendar.create_event.assert_not_called()


def test_estimate_for_missing_appointment_skipped(dispatcher, db_session, notifier):
    _enqueue(db_session, EventType.ESTIMATE_REQUESTED, {"appointment_id": "gone"})

    assert dispatcher.process_batch().skipped == 1
    notifier.send_estimate_confirmation.assert_not_called()


def test_rescheduled_updates_calendar(dispatcher, db_session, sample_contact, sample_property, calendar, notifier):
    appointment = make_appointment(db_session, sample_contact, sample_property, calendar_event_id="cal-existing")
    _enqueue(db_session, EventType.ESTIMATE_RESCHEDULED, {"appointment_id": appointment.id})

    dispatcher.process_batch()

    calendar.update_event.assert_called_once()
    assert calendar.update_event.call_args.args[0] == "cal-existing"
    calendar.create_event.assert_not_called()
    assert notifier.send_estimate_confirmation.call_args.args[1] == "rescheduled"


def test_rescheduled_recreates_missing_event(
    dispatcher, db_session, sample_contact, sample_property, calendar
):
    appointment = make_appointment(db_session, sample_contact, sample_property, calendar_event_id="cal-stale")
    calendar.update_event.return_value = False
    _enqueue(db_session, EventType.ESTIMATE_RESCHEDULED, {"appointment_id": appointment.id})

    dispatcher.process_batch()

    calendar.create_event.assert_called_once()
    assert _reload(db_session, Appointment, appointment.id).calendar_event_id == "cal-evt-1"


def test_status_changed_superseded_is_skipped(dispatcher, db_session, sample_appointment, notifier):
    _enqueue(
        db_session,
        EventType.ESTIMATE_STATUS_CHANGED,
        {"appointment_id": sample_appointment.id, "status": "confirmed", "previous_status": "requested"},
    )

    # Appointment is still "requested"
    assert dispatcher.process_batch().skipped == 1
    notifier.send_status_update.assert_not_called()


def test_status_changed_notifies(dispatcher, db_session, sample_contact, sample_property, notifier):
    appointment = make_appointment(db_session, sample_contact, sample_property, status="canceled")
    _enqueue(
        db_session,
        EventType.ESTIMATE_STATUS_CHANGED,
        {"appointment_id": appointment.id, "status": "canceled"},
    )

    assert dispatcher.process_batch().processed == 1
    assert notifier.send_status_update.call_args.args[1] == "canceled"


def test_lead_created_without_appointment_alerts_staff(
    dispatcher, db_session, sample_contact, sample_property, notifier
):
    lead = Lead(contact_id=sample_contact.id, property_id=sample_property.id, services_requested=["roof"])
    db_session.add(lead)
    db_session.commit()
    _enqueue(db_session, EventType.LEAD_CREATED, {"lead_id": lead.id, "services": ["roof"]})

    dispatcher.process_batch()

    notifier.send_lead_alert.assert_called_once()
    lead_id, contact, services, address = notifier.send_lead_alert.call_args.args
    assert lead_id == lead.id
    assert contact.phone == "+19195550142"
    assert services == ["roof"]
    assert address == "42 Maple Court, Raleigh, NC 27601"


def test_lead_created_with_appointment_confirms(
    dispatcher, db_session, sample_contact, sample_property, notifier
):
    lead = Lead(contact_id=sample_contact.id, property_id=sample_property.id, services_requested=["roof"])
    db_session.add(lead)
    db_session.commit()
    make_appointment(db_session, sample_contact, sample_property, lead_id=lead.id)
    _enqueue(db_session, EventType.LEAD_CREATED, {"lead_id": lead.id, "services": ["roof"]})

    dispatcher.process_batch()

    notifier.send_estimate_confirmation.assert_called_once()
    notifier.send_lead_alert.assert_not_called()


def test_payment_recorded_writes_note(dispatcher, db_session, sample_appointment):
    _enqueue(
        db_session,
        EventType.PAYMENT_RECORDED,
        {
            "appointment_id": sample_appointment.id,
            "amount": "125.5",
            "method": "check",
            "reference": "CHK-1001",
            "source": "admin",
        },
    )

    dispatcher.process_batch()

    db_session.expire_all()
    note = db_session.query(AppointmentNote).one()
    assert note.body == "Payment recorded USD 125.50 | Method: check | Ref: CHK-1001 | Source: admin"


def test_stage_request_normalizes_and_validates(dispatcher, db_session, sample_contact):
    _enqueue(
        db_session,
        EventType.PIPELINE_STAGE_REQUEST,
        {"contact_id": sample_contact.id, "stage": " Qualified ", "reason": "  "},
    )
    _enqueue(db_session, EventType.PIPELINE_STAGE_REQUEST, {"contact_id": sample_contact.id, "stage": "dormant"})

    stats = dispatcher.process_batch()

    assert stats.processed == 1
    assert stats.skipped == 1
    row = _reload(db_session, CrmPipeline, sample_contact.id)
    assert row.stage == "qualified"
    assert row.notes is None
