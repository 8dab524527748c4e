"""Pytest configuration and fixtures."""
from __future__ import annotations

import os
import sys
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from pathlib import Path
from typing import Any, Dict
from unittest.mock import MagicMock

import pytest

# Add src to path for imports
src_path = Path(__file__).parent.parent / "src"
if str(src_path) not in sys.path:
    sys.path.insert(0, str(src_path))

# Set test environment before anything reads settings
os.environ["DATABASE_URL"] = "sqlite:///:memory:"
os.environ.setdefault("DRY_RUN", "true")
os.environ.setdefault("ENVIRONMENT", "test")
os.environ.setdefault("ADMIN_API_KEY", "test-admin-key")
os.environ.setdefault("APPOINTMENT_TIMEZONE", "America/New_York")

from core.db import Base, SessionLocal, engine
from core import models  # noqa: F401
from core.models import Appointment, Contact, Property
from core.utils import generate_token
from llm.client import reset_llm_client
from outreach.twilio_client import reset_twilio_client
from services.cache import TTLCache
from services.calendar import CalendarSync
from services.conversion import ConversionTracker
from services.notification import Notifier
from services.rate_limit import IntakeRateLimiter, reset_intake_rate_limiter

ADMIN_HEADERS = {"X-Admin-Key": "test-admin-key"}


class FakeClock:
    """Monotonic clock the tests can move forward."""

    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


def future(days: int = 3, hour: int = 15) -> datetime:
    """A UTC datetime ``days`` ahead, on the hour."""
    base = datetime.now(timezone.utc).replace(minute=0, second=0, microsecond=0)
    return base.replace(hour=hour) + timedelta(days=days)


def lead_payload(**overrides: Any) -> Dict[str, Any]:
    """A valid website submission in the camelCase shape the form sends."""
    payload: Dict[str, Any] = {
        "services": ["house-wash"],
        "name": "Dana Rivers",
        "phone": "(919) 555-0142",
        "email": "dana@example.com",
        "addressLine1": "42 Maple Court",
        "city": "Raleigh",
        "state": "NC",
        "postalCode": "27601",
        "notes": "Side gate code 1234",
        "appointmentType": "in_person_estimate",
        "scheduling": {"preferredDate": future(5).date().isoformat(), "timeWindow": "afternoon"},
        "utm": {"source": "google", "medium": "cpc", "campaign": "spring"},
    }
    payload.update(overrides)
    return payload


def make_appointment(session, contact, prop, **overrides: Any) -> Appointment:
    """Insert and commit an appointment for the given contact and property."""
    fields: Dict[str, Any] = {
        "contact_id": contact.id,
        "property_id": prop.id,
        "type": "estimate",
        "start_at": future(),
        "duration_minutes": 60,
        "travel_buffer_minutes": 30,
        "status": "requested",
        "reschedule_token": generate_token(),
    }
    fields.update(overrides)
    appointment = Appointment(**fields)
    session.add(appointment)
    session.commit()
    return appointment


# =============================================================================
# Database
# =============================================================================


@pytest.fixture(autouse=True)
def _schema():
    """Fresh schema and client singletons per test; the in-memory engine shares one connection."""
    Base.metadata.create_all(bind=engine)
    reset_intake_rate_limiter()
    reset_llm_client()
    reset_twilio_client()
    yield
    Base.metadata.drop_all(bind=engine)


@pytest.fixture
def session_factory():
    return SessionLocal


@pytest.fixture
def db_session():
    """
    A session for arranging and asserting.

    Commit before handing control to code that opens its own sessions;
    call ``expire_all()`` before reading what that code wrote.
    """
    session = SessionLocal()
    yield session
    session.rollback()
    session.close()


@pytest.fixture
def sample_contact(db_session) -> Contact:
    contact = Contact(
        first_name="Dana",
        last_name="Rivers",
        email="dana@example.com",
        phone="919-555-0142",
        phone_e164="+19195550142",
    )
    db_session.add(contact)
    db_session.commit()
    return contact


@pytest.fixture
def sample_property(db_session, sample_contact) -> Property:
    prop = Property(
        contact_id=sample_contact.id,
        address_line1="42 Maple Court",
        city="Raleigh",
        state="NC",
        postal_code="27601",
        lat=Decimal("35.779600"),
        lng=Decimal("-78.638200"),
    )
    db_session.add(prop)
    db_session.commit()
    return prop


@pytest.fixture
def sample_appointment(db_session, sample_contact, sample_property) -> Appointment:
    return make_appointment(db_session, sample_contact, sample_property)


# =============================================================================
# Collaborators
# =============================================================================


@pytest.fixture
def notifier():
    fake = MagicMock(spec=Notifier)
    for name in (
        "send_estimate_confirmation",
        "send_reminder",
        "send_status_update",
        "send_quote_sent",
        "send_quote_decision",
        "send_lead_alert",
    ):
        getattr(fake, name).return_value = True
    return fake


@pytest.fixture
def calendar():
    fake = MagicMock(spec=CalendarSync)
    fake.create_event.return_value = "cal-evt-1"
    fake.update_event.return_value = True
    fake.delete_event.return_value = True
    return fake


@pytest.fixture
def conversion_tracker():
    fake = MagicMock(spec=ConversionTracker)
    fake.send_conversion.return_value = True
    return fake


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def rate_limiter(clock):
    return IntakeRateLimiter(
        max_requests=3,
        window_seconds=60,
        cache=TTLCache(default_ttl_seconds=60, max_size=500, clock=clock),
    )
