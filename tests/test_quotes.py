"""Tests for the quote lifecycle."""
from __future__ import annotations

from datetime import timedelta
from decimal import Decimal

import pytest

from conftest import future
from core.exceptions import ConflictError, NotFoundError, QuoteExpiredError, ValidationError
from core.models import (
    Appointment,
    AppointmentNote,
    Contact,
    CrmPipeline,
    Lead,
    OutboxEvent,
    Property,
)
from core.utils import utcnow
from domain.appointments import AppointmentService
from domain.quotes import QuoteService, public_quote_view

HOUSE_WASH = {"zone_id": "zone-core", "selected_services": ["house-wash"]}


@pytest.fixture
def quotes(db_session):
    return QuoteService(db_session)


@pytest.fixture
def sample_quote(quotes, db_session, sample_contact, sample_property):
    quote = quotes.create_quote(sample_contact.id, sample_property.id, HOUSE_WASH)
    db_session.commit()
    return quote


@pytest.fixture
def accepted_quote(quotes, db_session, sample_quote):
    quotes.record_decision(sample_quote.id, "accepted")
    db_session.commit()
    return sample_quote


def _event_types(session):
    return [event.type for event in session.query(OutboxEvent).order_by(OutboxEvent.id)]


# =============================================================================
# Create and send
# =============================================================================


def test_create_quote_prices_and_stores(sample_quote, db_session, sample_contact):
    assert sample_quote.status == "pending"
    assert sample_quote.subtotal == Decimal("375.00")
    assert sample_quote.total == Decimal("375.00")
    assert sample_quote.deposit_due == Decimal("75.00")
    assert sample_quote.balance_due == Decimal("300.00")
    assert sample_quote.share_token is None
    assert [item["id"] for item in sample_quote.line_items] == ["service-house-wash", "travel-fee"]

    event = db_session.query(OutboxEvent).one()
    assert event.type == "pipeline.stage_request"
    assert event.payload["contact_id"] == sample_contact.id
    assert event.payload["stage"] == "quoted"


def test_create_quote_advances_new_lead(quotes, db_session, sample_contact, sample_property):
    lead = Lead(contact_id=sample_contact.id, property_id=sample_property.id, services_requested=["house-wash"])
    db_session.add(lead)
    db_session.commit()

    quotes.create_quote(sample_contact.id, sample_property.id, HOUSE_WASH)

    assert lead.status == "quoted"


def test_create_quote_with_expiry(db_session, sample_contact, sample_property):
    now = utcnow()
    service = QuoteService(db_session, clock=lambda: now)

    quote = service.create_quote(sample_contact.id, sample_property.id, HOUSE_WASH, expires_in_days=7)

    assert quote.expires_at == now + timedelta(days=7)


def test_create_quote_property_mismatch(quotes, db_session, sample_property):
    stranger = Contact(first_name="Riley", last_name="Park", email="riley@example.com")
    db_session.add(stranger)
    db_session.commit()

    with pytest.raises(ValidationError) as exc_info:
        quotes.create_quote(stranger.id, sample_property.id, HOUSE_WASH)
    assert exc_info.value.reason == "property_contact_mismatch"


def test_create_quote_missing_rows(quotes, sample_contact, sample_property):
    with pytest.raises(NotFoundError):
        quotes.create_quote("missing", sample_property.id, HOUSE_WASH)
    with pytest.raises(NotFoundError):
        quotes.create_quote(sample_contact.id, "missing", HOUSE_WASH)


def test_create_quote_invalid_pricing(quotes, sample_contact, sample_property):
    with pytest.raises(ValidationError):
        quotes.create_quote(sample_contact.id, sample_property.id, {"selected_services": ["lawn-mowing"]})


def test_send_quote(quotes, db_session, sample_quote):
    sent = quotes.send_quote(sample_quote.id)
    token = sent.share_token

    assert sent.status == "sent"
    assert sent.sent_at is not None
    assert token
    event = db_session.query(OutboxEvent).filter(OutboxEvent.type == "quote.sent").one()
    assert event.payload["share_url"].endswith(f"/quote/{token}")

    # Re-sending keeps the link stable
    assert quotes.send_quote(sample_quote.id).share_token == token


def test_send_after_decision_rejected(quotes, accepted_quote):
    with pytest.raises(ConflictError) as exc_info:
        quotes.send_quote(accepted_quote.id)
    assert exc_info.value.reason == "quote_decided"


def test_list_quotes_filters_status(quotes, db_session, sample_contact, sample_property, sample_quote):
    other = quotes.create_quote(sample_contact.id, sample_property.id, HOUSE_WASH)
    quotes.send_quote(other.id)
    db_session.commit()

    assert [q.id for q in quotes.list_quotes(status="sent")] == [other.id]
    assert len(quotes.list_quotes()) == 2
    assert len(quotes.list_quotes(status="bogus")) == 2


# =============================================================================
# Decisions
# =============================================================================


def test_admin_decision_idempotent(quotes, db_session, sample_quote):
    quote, changed = quotes.record_decision(sample_quote.id, "accepted", notes="Phone call")
    assert changed is True
    decided_at = quote.decision_at

    quote, changed = quotes.record_decision(sample_quote.id, "accepted")
    assert changed is False
    assert _event_types(db_session).count("quote.decision") == 1

    # Staff may flip it; the first timestamp and notes stay
    quote, changed = quotes.record_decision(sample_quote.id, "declined", notes="Changed mind")
    assert changed is True
    assert quote.status == "declined"
    assert quote.decision_at == decided_at
    assert quote.decision_notes == "Phone call"


def test_admin_decision_unknown_value(quotes, sample_quote):
    with pytest.raises(ValidationError):
        quotes.record_decision(sample_quote.id, "maybe")


def test_customer_decision_by_token(quotes, db_session, sample_quote):
    token = quotes.send_quote(sample_quote.id).share_token
    db_session.commit()

    quote = quotes.decide_by_token(token, "accepted", notes="Looks great")

    assert quote.status == "accepted"
    assert quote.decision_notes == "Looks great"
    decision = db_session.query(OutboxEvent).filter(OutboxEvent.type == "quote.decision").one()
    assert decision.payload["source"] == "customer"

    # Same answer again is a no-op, a different one is refused
    assert quotes.decide_by_token(token, "accepted").status == "accepted"
    with pytest.raises(ConflictError) as exc_info:
        quotes.decide_by_token(token, "declined")
    assert exc_info.value.reason == "decision_recorded"
    assert _event_types(db_session).count("quote.decision") == 1


def test_customer_decision_expired(db_session, sample_contact, sample_property):
    now = utcnow()
    service = QuoteService(db_session, clock=lambda: now)
    quote = service.create_quote(sample_contact.id, sample_property.id, HOUSE_WASH, expires_in_days=1)
    token = service.send_quote(quote.id).share_token
    db_session.commit()

    later = QuoteService(db_session, clock=lambda: now + timedelta(days=2))
    with pytest.raises(QuoteExpiredError):
        later.decide_by_token(token, "accepted")
    assert later.get_public_quote(token)["expired"] is True


def test_unknown_and_missing_token(quotes):
    with pytest.raises(NotFoundError):
        quotes.decide_by_token("nope", "accepted")
    with pytest.raises(ValidationError):
        quotes.get_by_token("")


def test_public_view_hides_contact_details(quotes, db_session, sample_quote):
    token = quotes.send_quote(sample_quote.id).share_token
    db_session.commit()

    view = quotes.get_public_quote(token)

    assert view["customer_name"] == "Dana"
    assert view["service_area"] == "Raleigh, NC 27601"
    assert view["total"] == 375.0
    assert view["expired"] is False
    assert "email" not in view
    assert "phone" not in view
    assert "42 Maple Court" not in str(view)


def test_public_view_defaults(sample_quote):
    sample_quote.contact.first_name = "  "
    view = public_quote_view(sample_quote, utcnow())
    assert view["customer_name"] == "Customer"


# =============================================================================
# Scheduling the job
# =============================================================================


def test_schedule_job(quotes, db_session, sample_contact, sample_property, accepted_quote):
    lead = Lead(contact_id=sample_contact.id, property_id=sample_property.id, services_requested=["house-wash"])
    db_session.add(lead)
    db_session.commit()
    start = future(4, hour=14)

    job = quotes.schedule_job(accepted_quote.id, start, duration_minutes=180, notes="Bring the surface cleaner")
    db_session.commit()

    assert job.type == "job"
    assert job.status == "confirmed"
    assert job.start_at == start
    assert job.duration_minutes == 180
    assert job.travel_buffer_minutes == 30
    assert job.lead_id == lead.id
    assert accepted_quote.job_appointment_id == job.id
    assert lead.status == "scheduled"
    assert lead.quote_id == accepted_quote.id
    assert db_session.get(CrmPipeline, sample_contact.id).stage == "won"

    note = db_session.query(AppointmentNote).filter(AppointmentNote.appointment_id == job.id).one()
    assert note.body == (
        "Scheduled from accepted quote.\nServices: house-wash\nNotes: Bring the surface cleaner"
    )
    requested = db_session.query(OutboxEvent).filter(OutboxEvent.type == "estimate.requested").one()
    assert requested.payload["appointment_id"] == job.id


def test_schedule_job_requires_acceptance(quotes, sample_quote):
    with pytest.raises(ConflictError) as exc_info:
        quotes.schedule_job(sample_quote.id, future(4))
    assert exc_info.value.reason == "quote_not_accepted"


def test_schedule_job_only_once(quotes, db_session, calendar, accepted_quote):
    job = quotes.schedule_job(accepted_quote.id, future(4))
    db_session.commit()

    with pytest.raises(ConflictError) as exc_info:
        quotes.schedule_job(accepted_quote.id, future(5))
    assert exc_info.value.reason == "already_scheduled"

    # A canceled job frees the quote again
    AppointmentService(db_session, calendar=calendar).change_status(job.id, "canceled")
    db_session.commit()
    second = quotes.schedule_job(accepted_quote.id, future(5))

    assert second.id != job.id
    assert db_session.query(Appointment).filter(Appointment.type == "job").count() == 2


def test_schedule_job_without_lead(quotes, db_session, accepted_quote):
    job = quotes.schedule_job(accepted_quote.id, future(4))
    assert job.lead_id is None
    assert db_session.get(Property, accepted_quote.property_id) is not None
