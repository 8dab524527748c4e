"""
Public lead intake.

One submission produces, inside a single transaction, a contact, a property,
a lead, an optional estimate appointment and exactly one outbox event.
Conversion tracking and calendar creation are returned as tasks for the caller
to run once the response is on its way; they never run inside the commit.
"""
from __future__ import annotations

import re
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Callable, Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, ValidationError as PydanticValidationError, field_validator
from pydantic.alias_generators import to_camel
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from core.config import get_settings
from core.db import get_session_factory
from core.exceptions import ConflictError, RateLimited, ValidationError
from core.logging_config import get_logger
from core.models import Appointment, AppointmentStatus, AppointmentType, Lead, LeadStatus
from core.utils import generate_token, isoformat_or_none
from domain.contacts import AddressFields, ContactDirectory, ContactIdentity, split_name
from domain.notifications import build_estimate_notification
from outbox.events import (
    EstimateRequestedPayload,
    EventType,
    LeadCreatedPayload,
    SchedulingPreferences,
    enqueue_event,
)
from scheduling.timing import Timing, resolve_timing
from services.calendar import CalendarSync, get_calendar_sync
from services.conversion import ConversionTracker, get_conversion_tracker
from services.rate_limit import IntakeRateLimiter, get_intake_rate_limiter

LOGGER = get_logger(__name__)

IN_PERSON_ESTIMATE = "in_person_estimate"
WEB_LEAD = "web_lead"

_EMAIL_RE = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")


# =============================================================================
# Submission schema
# =============================================================================


class _CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, str_strip_whitespace=True)


class SchedulingInput(_CamelModel):
    preferred_date: Optional[str] = None
    alternate_date: Optional[str] = None
    time_window: Optional[str] = None


class UtmInput(_CamelModel):
    source: Optional[str] = None
    medium: Optional[str] = None
    campaign: Optional[str] = None
    term: Optional[str] = None
    content: Optional[str] = None
    gclid: Optional[str] = None
    fbclid: Optional[str] = None


class LeadSubmission(_CamelModel):
    """Website lead form. Accepts camelCase or snake_case keys."""
    services: Optional[List[str]] = None
    service: Optional[str] = Field(None, min_length=2)
    name: str = Field(..., min_length=2)
    phone: str = Field(..., min_length=7)
    email: Optional[str] = None
    address_line1: str = Field(..., min_length=5)
    address_line2: Optional[str] = None
    city: str = Field(..., min_length=2)
    state: str = Field(..., min_length=2, max_length=2)
    postal_code: str = Field(..., min_length=3)
    notes: Optional[str] = Field(None, max_length=1000)
    scheduling: SchedulingInput = Field(default_factory=SchedulingInput)
    appointment_type: Literal["in_person_estimate", "web_lead"] = WEB_LEAD
    utm: UtmInput = Field(default_factory=UtmInput)
    gclid: Optional[str] = None
    fbclid: Optional[str] = None
    consent: Optional[bool] = None
    hp_company: Optional[str] = Field(None, alias="hp_company")

    @field_validator("services")
    @classmethod
    def validate_services(cls, v: Optional[List[str]]) -> Optional[List[str]]:
        if v is None:
            return v
        cleaned = [s.strip() for s in v if isinstance(s, str)]
        if not cleaned or any(len(s) < 2 for s in cleaned):
            raise ValueError("services must be a non-empty list of service ids")
        return cleaned

    @field_validator("email")
    @classmethod
    def validate_email(cls, v: Optional[str]) -> Optional[str]:
        if not v:
            return None
        if not _EMAIL_RE.match(v):
            raise ValueError("invalid email address")
        return v

    @property
    def services_requested(self) -> List[str]:
        if self.services:
            return self.services
        return [self.service] if self.service else []

    @property
    def is_spam(self) -> bool:
        return bool(self.hp_company and self.hp_company.strip())


@dataclass
class IntakeResult:
    """Outcome of one submission. ``lead_id`` is None for honeypot hits."""
    lead_id: Optional[str] = None
    contact_id: Optional[str] = None
    property_id: Optional[str] = None
    appointment_id: Optional[str] = None
    reschedule_token: Optional[str] = None
    start_at: Optional[datetime] = None
    duration_minutes: Optional[int] = None
    travel_buffer_minutes: Optional[int] = None
    time_window: Optional[str] = None
    preferred_date: Optional[str] = None
    post_commit_tasks: List[Callable[[], None]] = field(default_factory=list, repr=False)

    def run_post_commit_tasks(self) -> None:
        """Run the deferred side effects inline, for callers without a task runner."""
        for task in self.post_commit_tasks:
            task()

    def to_dict(self) -> Dict[str, Any]:
        if self.lead_id is None:
            return {"ok": True}
        return {
            "ok": True,
            "lead_id": self.lead_id,
            "contact_id": self.contact_id,
            "property_id": self.property_id,
            "appointment_id": self.appointment_id,
            "reschedule_token": self.reschedule_token,
            "start_at": isoformat_or_none(self.start_at),
            "duration_minutes": self.duration_minutes,
            "travel_buffer_minutes": self.travel_buffer_minutes,
            "time_window": self.time_window,
            "preferred_date": self.preferred_date,
        }


def parse_submission(payload: Dict[str, Any]) -> LeadSubmission:
    try:
        submission = LeadSubmission.model_validate(payload)
    except PydanticValidationError as e:
        problems = [
            {"field": ".".join(str(part) for part in err["loc"]), "message": err["msg"]}
            for err in e.errors()
        ]
        raise ValidationError("Invalid lead submission", details={"errors": problems}) from e
    return submission


# =============================================================================
# Pipeline
# =============================================================================


class IntakePipeline:
    """Validate, throttle and persist website lead submissions."""

    def __init__(
        self,
        session_factory: Optional[Callable[[], Session]] = None,
        rate_limiter: Optional[IntakeRateLimiter] = None,
        timing_resolver: Callable[[Optional[str], Optional[str]], Timing] = resolve_timing,
        conversion_tracker: Optional[ConversionTracker] = None,
        calendar: Optional[CalendarSync] = None,
    ):
        self.session_factory = session_factory or get_session_factory()
        self.rate_limiter = rate_limiter or get_intake_rate_limiter()
        self.timing_resolver = timing_resolver
        self._conversion_tracker = conversion_tracker
        self._calendar = calendar

    @property
    def conversion_tracker(self) -> ConversionTracker:
        if self._conversion_tracker is None:
            self._conversion_tracker = get_conversion_tracker()
        return self._conversion_tracker

    @property
    def calendar(self) -> CalendarSync:
        if self._calendar is None:
            self._calendar = get_calendar_sync()
        return self._calendar

    def submit_lead(
        self,
        payload: Dict[str, Any],
        client_ip: Optional[str],
        referrer: Optional[str] = None,
    ) -> IntakeResult:
        """
        Record one lead submission.

        Raises:
            RateLimited: Client is over its submission budget or unidentified.
            ValidationError: Payload failed validation (InvalidPhone for phones).
            ConflictError: A concurrent writer won a uniqueness race.
        """
        if not self.rate_limiter.increment_and_check(client_ip or ""):
            raise RateLimited("Too many submissions, try again shortly")

        submission = parse_submission(payload)
        if submission.is_spam:
            LOGGER.info("Honeypot field filled; submission dropped", extra={"extra_data": {"ip": client_ip}})
            return IntakeResult()

        services = submission.services_requested
        if not services:
            raise ValidationError("At least one service must be selected.", reason="invalid_payload")

        session = self.session_factory()
        try:
            result = self._persist(session, submission, services, referrer)
            session.commit()
        except IntegrityError as e:
            session.rollback()
            raise ConflictError("Lead conflicts with a concurrent submission", reason="conflict") from e
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()

        result.post_commit_tasks = self._post_commit_tasks(submission, services, result)

        LOGGER.info(
            "New lead recorded",
            extra={
                "extra_data": {
                    "lead_id": result.lead_id,
                    "services": services,
                    "appointment_type": submission.appointment_type,
                    "ip": client_ip,
                }
            },
        )
        return result

    def _persist(
        self,
        session: Session,
        submission: LeadSubmission,
        services: List[str],
        referrer: Optional[str],
    ) -> IntakeResult:
        directory = ContactDirectory(session)
        first_name, last_name = split_name(submission.name)
        contact = directory.upsert_contact(
            ContactIdentity(
                first_name=first_name,
                last_name=last_name,
                email=submission.email,
                phone=submission.phone,
                source="web",
            )
        )
        prop = directory.upsert_property(
            contact.id,
            AddressFields(
                address_line1=submission.address_line1,
                address_line2=submission.address_line2,
                city=submission.city,
                state=submission.state,
                postal_code=submission.postal_code,
            ),
        )

        is_estimate = submission.appointment_type == IN_PERSON_ESTIMATE
        scheduling = submission.scheduling
        utm = submission.utm

        lead = Lead(
            contact_id=contact.id,
            property_id=prop.id,
            services_requested=services,
            notes=submission.notes,
            status=LeadStatus.SCHEDULED.value if is_estimate else LeadStatus.NEW.value,
            source="web",
            utm_source=utm.source,
            utm_medium=utm.medium,
            utm_campaign=utm.campaign,
            utm_term=utm.term,
            utm_content=utm.content,
            gclid=submission.gclid or utm.gclid,
            fbclid=submission.fbclid or utm.fbclid,
            referrer=referrer,
            form_payload={
                "services": services,
                "appointment_type": submission.appointment_type,
                "scheduling": scheduling.model_dump(exclude_none=True),
                "address_line1": prop.address_line1,
                "city": prop.city,
                "state": prop.state,
                "postal_code": prop.postal_code,
                "notes": submission.notes,
                "utm": utm.model_dump(exclude_none=True),
            },
        )
        session.add(lead)
        session.flush()

        result = IntakeResult(
            lead_id=lead.id,
            contact_id=contact.id,
            property_id=prop.id,
            time_window=scheduling.time_window,
            preferred_date=scheduling.preferred_date,
        )

        preferences = SchedulingPreferences(
            preferred_date=scheduling.preferred_date,
            time_window=scheduling.time_window,
        )

        if is_estimate:
            timing = self.timing_resolver(scheduling.preferred_date, scheduling.time_window)
            appointment = Appointment(
                contact_id=contact.id,
                property_id=prop.id,
                lead_id=lead.id,
                type=AppointmentType.ESTIMATE.value,
                start_at=timing.start_at,
                duration_minutes=timing.duration_minutes,
                travel_buffer_minutes=get_settings().default_travel_buffer_min,
                status=AppointmentStatus.REQUESTED.value,
                reschedule_token=generate_token(),
            )
            session.add(appointment)
            session.flush()

            result.appointment_id = appointment.id
            result.reschedule_token = appointment.reschedule_token
            result.start_at = appointment.start_at
            result.duration_minutes = appointment.duration_minutes
            result.travel_buffer_minutes = appointment.travel_buffer_minutes

            enqueue_event(
                session,
                EventType.ESTIMATE_REQUESTED,
                EstimateRequestedPayload(
                    appointment_id=appointment.id,
                    lead_id=lead.id,
                    services=services,
                    scheduling=preferences,
                    source="web",
                    notes=submission.notes,
                ),
            )
        else:
            enqueue_event(
                session,
                EventType.LEAD_CREATED,
                LeadCreatedPayload(lead_id=lead.id, services=services, source="web", notes=submission.notes),
            )

        session.flush()
        return result

    def _post_commit_tasks(
        self,
        submission: LeadSubmission,
        services: List[str],
        result: IntakeResult,
    ) -> List[Callable[[], None]]:
        """Side effects of a committed lead. Each task logs its own failure."""
        params = {
            "source": submission.utm.source or "web",
            "medium": submission.utm.medium or "form",
            "campaign": submission.utm.campaign,
            "service": services[0],
            "appointment_id": result.appointment_id,
        }

        def track_conversion() -> None:
            try:
                self.conversion_tracker.send_conversion(
                    "generate_lead", {k: v for k, v in params.items() if v is not None}
                )
            except Exception:
                LOGGER.exception(f"Conversion ping failed for lead {result.lead_id}")

        tasks: List[Callable[[], None]] = [track_conversion]

        if result.appointment_id:
            appointment_id = result.appointment_id

            def create_calendar_event() -> None:
                try:
                    self.attach_calendar_event(appointment_id)
                except Exception:
                    LOGGER.exception(f"Calendar event creation failed for appointment {appointment_id}")

            tasks.append(create_calendar_event)

        return tasks

    def attach_calendar_event(self, appointment_id: str) -> Optional[str]:
        """Create the calendar event and store its id in a short transaction of its own."""
        with self.session_factory() as session:
            notification = build_estimate_notification(session, appointment_id)
            if notification is None or notification.appointment.calendar_event_id:
                return None
            if notification.appointment.start_at is None:
                return None

            event_id = self.calendar.create_event(notification)
            if not event_id:
                return None

            appointment = session.get(Appointment, appointment_id)
            if appointment.calendar_event_id is None:
                appointment.calendar_event_id = event_id
                session.commit()
            return event_id
