"""Tests for public lead intake."""
from __future__ import annotations

import threading
import time

import pytest

from conftest import lead_payload
from core.exceptions import InvalidPhone, RateLimited, ValidationError
from core.models import Appointment, Contact, Lead, OutboxEvent, Property
from domain.intake import IntakePipeline, parse_submission
from scheduling.timing import resolve_timing

CLIENT_IP = "203.0.113.7"


@pytest.fixture
def pipeline(session_factory, rate_limiter, conversion_tracker, calendar):
    return IntakePipeline(
        session_factory=session_factory,
        rate_limiter=rate_limiter,
        conversion_tracker=conversion_tracker,
        calendar=calendar,
    )


def _counts(session):
    return {
        model.__tablename__: session.query(model).count()
        for model in (Contact, Property, Lead, Appointment, OutboxEvent)
    }


def test_estimate_request_writes_everything(pipeline, db_session):
    """One submission: contact, property, lead, appointment and one outbox event."""
    payload = lead_payload()
    result = pipeline.submit_lead(payload, client_ip=CLIENT_IP, referrer="https://example.com/house-washing")

    assert _counts(db_session) == {
        "contacts": 1,
        "properties": 1,
        "leads": 1,
        "appointments": 1,
        "outbox_events": 1,
    }

    lead = db_session.get(Lead, result.lead_id)
    assert lead.status == "scheduled"
    assert lead.services_requested == ["house-wash"]
    assert lead.utm_source == "google"
    assert lead.referrer == "https://example.com/house-washing"
    assert lead.form_payload["scheduling"]["time_window"] == "afternoon"

    appointment = db_session.get(Appointment, result.appointment_id)
    expected = resolve_timing(payload["scheduling"]["preferredDate"], "afternoon")
    assert appointment.status == "requested"
    assert appointment.type == "estimate"
    assert appointment.reschedule_token == result.reschedule_token
    assert result.start_at == expected.start_at

    event = db_session.query(OutboxEvent).one()
    assert event.type == "estimate.requested"
    assert event.payload["appointment_id"] == appointment.id
    assert event.payload["scheduling"] == {
        "preferred_date": payload["scheduling"]["preferredDate"],
        "time_window": "afternoon",
    }


def test_result_shape(pipeline, db_session):
    body = pipeline.submit_lead(lead_payload(), client_ip=CLIENT_IP).to_dict()

    assert body["ok"] is True
    assert body["lead_id"]
    lead = db_session.get(Lead, body["lead_id"])
    assert body["contact_id"] == lead.contact_id == db_session.query(Contact).one().id
    assert body["property_id"] == lead.property_id == db_session.query(Property).one().id
    assert "post_commit_tasks" not in body
    assert body["appointment_id"]
    assert body["reschedule_token"]
    assert body["time_window"] == "afternoon"
    assert body["duration_minutes"] == 60
    assert body["travel_buffer_minutes"] == 30


def test_web_lead_has_no_appointment(pipeline, db_session, calendar):
    result = pipeline.submit_lead(lead_payload(appointmentType="web_lead"), client_ip=CLIENT_IP)
    result.run_post_commit_tasks()

    assert result.appointment_id is None
    assert db_session.query(Appointment).count() == 0
    assert db_session.get(Lead, result.lead_id).status == "new"
    assert db_session.query(OutboxEvent).one().type == "lead.created"
    calendar.create_event.assert_not_called()


def test_post_commit_side_effects(pipeline, db_session, conversion_tracker, calendar):
    """Conversion ping and calendar event are deferred to the returned tasks."""
    result = pipeline.submit_lead(lead_payload(), client_ip=CLIENT_IP)

    conversion_tracker.send_conversion.assert_not_called()
    calendar.create_event.assert_not_called()
    assert len(result.post_commit_tasks) == 2

    result.run_post_commit_tasks()

    conversion_tracker.send_conversion.assert_called_once()
    name, params = conversion_tracker.send_conversion.call_args.args
    assert name == "generate_lead"
    assert params["source"] == "google"
    assert params["service"] == "house-wash"
    assert params["appointment_id"] == result.appointment_id

    calendar.create_event.assert_called_once()
    db_session.expire_all()
    assert db_session.get(Appointment, result.appointment_id).calendar_event_id == "cal-evt-1"


def test_calendar_skipped_without_start(pipeline, db_session, calendar):
    payload = lead_payload(scheduling={"preferredDate": "next tuesday", "timeWindow": "morning"})
    result = pipeline.submit_lead(payload, client_ip=CLIENT_IP)

    assert db_session.get(Appointment, result.appointment_id).start_at is None
    result.run_post_commit_tasks()
    calendar.create_event.assert_not_called()


def test_calendar_failure_keeps_lead(pipeline, db_session, calendar):
    calendar.create_event.side_effect = RuntimeError("calendar down")

    result = pipeline.submit_lead(lead_payload(), client_ip=CLIENT_IP)
    result.run_post_commit_tasks()

    assert db_session.get(Lead, result.lead_id) is not None
    assert db_session.get(Appointment, result.appointment_id).calendar_event_id is None


def test_failure_mid_transaction_rolls_back(pipeline, db_session, conversion_tracker, calendar, monkeypatch):
    """Nothing is stored and no post-commit hook runs when the outbox write fails."""

    def boom(*args, **kwargs):
        raise RuntimeError("outbox unavailable")

    monkeypatch.setattr("domain.intake.enqueue_event", boom)

    with pytest.raises(RuntimeError):
        pipeline.submit_lead(lead_payload(), client_ip=CLIENT_IP)

    assert all(count == 0 for count in _counts(db_session).values())
    conversion_tracker.send_conversion.assert_not_called()
    calendar.create_event.assert_not_called()


def test_honeypot_writes_nothing(pipeline, db_session, conversion_tracker):
    result = pipeline.submit_lead(lead_payload(hp_company="Spam LLC"), client_ip=CLIENT_IP)

    assert result.to_dict() == {"ok": True}
    assert all(count == 0 for count in _counts(db_session).values())
    conversion_tracker.send_conversion.assert_not_called()


def test_rate_limit_and_recovery(pipeline, clock):
    for _ in range(3):
        pipeline.submit_lead(lead_payload(), client_ip=CLIENT_IP)

    with pytest.raises(RateLimited):
        pipeline.submit_lead(lead_payload(), client_ip=CLIENT_IP)

    clock.advance(61)
    assert pipeline.submit_lead(lead_payload(), client_ip=CLIENT_IP).lead_id


def test_unidentified_client_rate_limited(pipeline, db_session):
    with pytest.raises(RateLimited):
        pipeline.submit_lead(lead_payload(), client_ip=None)
    assert db_session.query(Lead).count() == 0


def test_repeat_submission_reuses_contact_and_property(pipeline, db_session):
    first = pipeline.submit_lead(lead_payload(), client_ip=CLIENT_IP)
    second = pipeline.submit_lead(lead_payload(name="Dana R. Rivers"), client_ip=CLIENT_IP)

    assert first.contact_id == second.contact_id
    assert first.property_id == second.property_id
    assert db_session.query(Lead).count() == 2


def test_single_service_field(pipeline, db_session):
    payload = lead_payload(service="roof")
    payload.pop("services")

    result = pipeline.submit_lead(payload, client_ip=CLIENT_IP)

    assert db_session.get(Lead, result.lead_id).services_requested == ["roof"]


def test_missing_services_rejected(pipeline):
    payload = lead_payload()
    payload.pop("services")

    with pytest.raises(ValidationError):
        pipeline.submit_lead(payload, client_ip=CLIENT_IP)


def test_invalid_phone_rejected(pipeline, db_session):
    with pytest.raises(InvalidPhone):
        pipeline.submit_lead(lead_payload(phone="not-a-phone"), client_ip=CLIENT_IP)
    assert db_session.query(Contact).count() == 0


@pytest.mark.parametrize(
    "overrides, field",
    [
        ({"name": "D"}, "name"),
        ({"email": "dana-at-example"}, "email"),
        ({"state": "North Carolina"}, "state"),
        ({"services": []}, "services"),
        ({"appointmentType": "phone_call"}, "appointmentType"),
    ],
)
def test_submission_validation_errors(overrides, field):
    with pytest.raises(ValidationError) as exc_info:
        parse_submission(lead_payload(**overrides))

    fields = [problem["field"] for problem in exc_info.value.details["errors"]]
    assert field in fields


def test_snake_case_keys_accepted():
    payload = lead_payload()
    payload["address_line1"] = payload.pop("addressLine1")
    payload["postal_code"] = payload.pop("postalCode")

    submission = parse_submission(payload)

    assert submission.address_line1 == "42 Maple Court"
    assert submission.postal_code == "27601"


def test_slow_calendar_does_not_hold_submission(pipeline, db_session, calendar):
    release = threading.Event()

    def slow_create_event(notification):
        release.wait(timeout=5)
        return "cal-evt-slow"

    calendar.create_event.side_effect = slow_create_event

    started = time.monotonic()
    result = pipeline.submit_lead(lead_payload(), client_ip=CLIENT_IP)
    elapsed = time.monotonic() - started

    assert elapsed < 1.0
    assert result.lead_id
    calendar.create_event.assert_not_called()

    release.set()
    result.run_post_commit_tasks()
    db_session.expire_all()
    assert db_session.get(Appointment, result.appointment_id).calendar_event_id == "cal-evt-slow"


def test_conversion_failure_is_contained(pipeline, conversion_tracker, calendar):
    conversion_tracker.send_conversion.side_effect = RuntimeError("ga down")

    result = pipeline.submit_lead(lead_payload(), client_ip=CLIENT_IP)
    result.run_post_commit_tasks()

    calendar.create_event.assert_called_once()
