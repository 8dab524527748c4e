"""SQLAlchemy ORM models for washline."""
from __future__ import annotations

import enum
from datetime import datetime
from decimal import Decimal
from typing import Any, Optional

from sqlalchemy import (
    Boolean,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    JSON,
    Numeric,
    String,
    Text,
    UniqueConstraint,
    func,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from core.db import Base
from core.utils import generate_uuid, isoformat_or_none, utcnow


# =============================================================================
# Enums
# =============================================================================


class LeadStatus(str, enum.Enum):
    """Lead lifecycle."""
    NEW = "new"
    CONTACTED = "contacted"
    QUOTED = "quoted"
    SCHEDULED = "scheduled"


class AppointmentType(str, enum.Enum):
    """Estimate visits come from intake, jobs from accepted quotes."""
    ESTIMATE = "estimate"
    JOB = "job"


class AppointmentStatus(str, enum.Enum):
    """Appointment lifecycle."""
    REQUESTED = "requested"
    CONFIRMED = "confirmed"
    COMPLETED = "completed"
    NO_SHOW = "no_show"
    CANCELED = "canceled"


class QuoteStatus(str, enum.Enum):
    """Quote lifecycle."""
    PENDING = "pending"
    SENT = "sent"
    ACCEPTED = "accepted"
    DECLINED = "declined"


class PipelineStage(str, enum.Enum):
    """CRM pipeline stages, one per contact."""
    NEW = "new"
    CONTACTED = "contacted"
    QUALIFIED = "qualified"
    QUOTED = "quoted"
    WON = "won"
    LOST = "lost"


def _timestamp_column(**kwargs: Any) -> Mapped[datetime]:
    return mapped_column(
        DateTime(timezone=True), default=utcnow, server_default=func.now(), **kwargs
    )


# =============================================================================
# Contact Model
# =============================================================================


class Contact(Base):
    """
    A customer identity.

    At most one row per email and one per E.164 phone. Emails are stored
    lower-cased.
    """
    __tablename__ = "contacts"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=generate_uuid)
    first_name: Mapped[str] = mapped_column(String(120), nullable=False)
    last_name: Mapped[str] = mapped_column(String(120), nullable=False, default="")
    email: Mapped[Optional[str]] = mapped_column(String(255), unique=True, nullable=True)
    phone: Mapped[Optional[str]] = mapped_column(String(40), nullable=True)
    phone_e164: Mapped[Optional[str]] = mapped_column(String(20), unique=True, nullable=True)
    source: Mapped[str] = mapped_column(String(40), default="web", nullable=False)

    created_at: Mapped[datetime] = _timestamp_column()
    updated_at: Mapped[datetime] = _timestamp_column(onupdate=utcnow)

    properties: Mapped[list["Property"]] = relationship("Property", back_populates="contact")

    @property
    def full_name(self) -> str:
        parts = [p for p in (self.first_name, self.last_name) if p and p.strip()]
        return " ".join(parts).strip()

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "first_name": self.first_name,
            "last_name": self.last_name,
            "email": self.email,
            "phone": self.phone,
            "phone_e164": self.phone_e164,
            "source": self.source,
            "created_at": isoformat_or_none(self.created_at),
        }


# =============================================================================
# Property Model
# =============================================================================


class Property(Base):
    """
    A service address.

    (address_line1, postal_code, state) is globally unique; the owning
    contact moves to whoever submitted the address last.
    """
    __tablename__ = "properties"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=generate_uuid)
    contact_id: Mapped[str] = mapped_column(
        ForeignKey("contacts.id", ondelete="CASCADE"), nullable=False, index=True
    )
    address_line1: Mapped[str] = mapped_column(String(255), nullable=False)
    address_line2: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    city: Mapped[str] = mapped_column(String(120), nullable=False)
    state: Mapped[str] = mapped_column(String(2), nullable=False)
    postal_code: Mapped[str] = mapped_column(String(16), nullable=False)
    lat: Mapped[Optional[Decimal]] = mapped_column(Numeric(9, 6), nullable=True)
    lng: Mapped[Optional[Decimal]] = mapped_column(Numeric(9, 6), nullable=True)
    gated: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)

    created_at: Mapped[datetime] = _timestamp_column()
    updated_at: Mapped[datetime] = _timestamp_column(onupdate=utcnow)

    contact: Mapped["Contact"] = relationship("Contact", back_populates="properties")

    __table_args__ = (
        UniqueConstraint("address_line1", "postal_code", "state", name="uq_properties_address"),
    )

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "contact_id": self.contact_id,
            "address_line1": self.address_line1,
            "address_line2": self.address_line2,
            "city": self.city,
            "state": self.state,
            "postal_code": self.postal_code,
            "lat": float(self.lat) if self.lat is not None else None,
            "lng": float(self.lng) if self.lng is not None else None,
            "gated": self.gated,
        }


# =============================================================================
# Lead Model
# =============================================================================


class Lead(Base):
    """
    A service request from the web form.

    Never deleted. ``form_payload`` keeps the submission as received.
    """
    __tablename__ = "leads"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=generate_uuid)
    contact_id: Mapped[str] = mapped_column(ForeignKey("contacts.id"), nullable=False, index=True)
    property_id: Mapped[str] = mapped_column(ForeignKey("properties.id"), nullable=False, index=True)
    services_requested: Mapped[list] = mapped_column(JSON, nullable=False)
    notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    status: Mapped[str] = mapped_column(String(20), default=LeadStatus.NEW.value, index=True)
    source: Mapped[str] = mapped_column(String(40), default="web")

    # Attribution
    utm_source: Mapped[Optional[str]] = mapped_column(String(120), nullable=True)
    utm_medium: Mapped[Optional[str]] = mapped_column(String(120), nullable=True)
    utm_campaign: Mapped[Optional[str]] = mapped_column(String(120), nullable=True)
    utm_term: Mapped[Optional[str]] = mapped_column(String(120), nullable=True)
    utm_content: Mapped[Optional[str]] = mapped_column(String(120), nullable=True)
    gclid: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    fbclid: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    referrer: Mapped[Optional[str]] = mapped_column(String(500), nullable=True)

    form_payload: Mapped[Optional[dict]] = mapped_column(JSON, nullable=True)
    quote_id: Mapped[Optional[str]] = mapped_column(
        ForeignKey("quotes.id", ondelete="SET NULL"), unique=True, nullable=True
    )

    created_at: Mapped[datetime] = _timestamp_column()
    updated_at: Mapped[datetime] = _timestamp_column(onupdate=utcnow)

    __table_args__ = (
        Index("ix_leads_contact_property", "contact_id", "property_id"),
    )

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "contact_id": self.contact_id,
            "property_id": self.property_id,
            "services_requested": list(self.services_requested or []),
            "status": self.status,
            "source": self.source,
            "quote_id": self.quote_id,
            "created_at": isoformat_or_none(self.created_at),
        }


# =============================================================================
# Appointment Models
# =============================================================================


class Appointment(Base):
    """
    An estimate visit or a scheduled job.

    ``reschedule_token`` authenticates customer reschedule links.
    """
    __tablename__ = "appointments"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=generate_uuid)
    contact_id: Mapped[str] = mapped_column(ForeignKey("contacts.id"), nullable=False, index=True)
    property_id: Mapped[str] = mapped_column(ForeignKey("properties.id"), nullable=False, index=True)
    lead_id: Mapped[Optional[str]] = mapped_column(
        ForeignKey("leads.id", ondelete="SET NULL"), nullable=True, index=True
    )
    type: Mapped[str] = mapped_column(String(20), default=AppointmentType.ESTIMATE.value)
    start_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True, index=True)
    duration_minutes: Mapped[int] = mapped_column(Integer, default=60, nullable=False)
    travel_buffer_minutes: Mapped[int] = mapped_column(Integer, default=30, nullable=False)
    status: Mapped[str] = mapped_column(
        String(20), default=AppointmentStatus.REQUESTED.value, index=True
    )
    reschedule_token: Mapped[str] = mapped_column(String(64), unique=True, nullable=False)
    calendar_event_id: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)

    created_at: Mapped[datetime] = _timestamp_column()
    updated_at: Mapped[datetime] = _timestamp_column(onupdate=utcnow)

    contact: Mapped["Contact"] = relationship("Contact")
    property: Mapped["Property"] = relationship("Property")
    lead: Mapped[Optional["Lead"]] = relationship("Lead")
    notes: Mapped[list["AppointmentNote"]] = relationship(
        "AppointmentNote",
        back_populates="appointment",
        order_by="AppointmentNote.created_at",
        cascade="all, delete-orphan",
    )

    __table_args__ = (
        Index("ix_appointments_status_start", "status", "start_at"),
    )

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "contact_id": self.contact_id,
            "property_id": self.property_id,
            "lead_id": self.lead_id,
            "type": self.type,
            "start_at": isoformat_or_none(self.start_at),
            "duration_minutes": self.duration_minutes,
            "travel_buffer_minutes": self.travel_buffer_minutes,
            "status": self.status,
            "reschedule_token": self.reschedule_token,
            "calendar_event_id": self.calendar_event_id,
        }


class AppointmentNote(Base):
    """Free-text staff note on an appointment."""
    __tablename__ = "appointment_notes"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=generate_uuid)
    appointment_id: Mapped[str] = mapped_column(
        ForeignKey("appointments.id", ondelete="CASCADE"), nullable=False, index=True
    )
    body: Mapped[str] = mapped_column(Text, nullable=False)
    created_at: Mapped[datetime] = _timestamp_column()

    appointment: Mapped["Appointment"] = relationship("Appointment", back_populates="notes")

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "appointment_id": self.appointment_id,
            "body": self.body,
            "created_at": isoformat_or_none(self.created_at),
        }


# =============================================================================
# Quote Model
# =============================================================================


class Quote(Base):
    """
    A priced proposal.

    Breakdown fields are written once at creation; afterwards only status,
    decision, share and send fields change.
    """
    __tablename__ = "quotes"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=generate_uuid)
    contact_id: Mapped[str] = mapped_column(ForeignKey("contacts.id"), nullable=False, index=True)
    property_id: Mapped[str] = mapped_column(ForeignKey("properties.id"), nullable=False, index=True)
    status: Mapped[str] = mapped_column(String(20), default=QuoteStatus.PENDING.value, index=True)

    services: Mapped[list] = mapped_column(JSON, nullable=False)
    add_ons: Mapped[Optional[list]] = mapped_column(JSON, nullable=True)
    surface_area: Mapped[Optional[Decimal]] = mapped_column(Numeric(10, 2), nullable=True)
    zone_id: Mapped[str] = mapped_column(String(40), nullable=False)

    travel_fee: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False)
    discounts: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False)
    add_ons_total: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False)
    services_total: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False)
    subtotal: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False)
    total: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False)
    deposit_due: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False)
    deposit_rate: Mapped[Decimal] = mapped_column(Numeric(5, 4), nullable=False)
    balance_due: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False)
    line_items: Mapped[list] = mapped_column(JSON, nullable=False)

    share_token: Mapped[Optional[str]] = mapped_column(String(64), unique=True, nullable=True)
    sent_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    expires_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    decision_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    decision_notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    job_appointment_id: Mapped[Optional[str]] = mapped_column(
        ForeignKey("appointments.id", ondelete="SET NULL", use_alter=True, name="fk_quotes_job_appointment"),
        nullable=True,
    )
    notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    created_at: Mapped[datetime] = _timestamp_column()
    updated_at: Mapped[datetime] = _timestamp_column(onupdate=utcnow)

    contact: Mapped["Contact"] = relationship("Contact")
    property: Mapped["Property"] = relationship("Property")

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "contact_id": self.contact_id,
            "property_id": self.property_id,
            "status": self.status,
            "services": list(self.services or []),
            "add_ons": list(self.add_ons or []),
            "zone_id": self.zone_id,
            "travel_fee": float(self.travel_fee),
            "discounts": float(self.discounts),
            "add_ons_total": float(self.add_ons_total),
            "services_total": float(self.services_total),
            "subtotal": float(self.subtotal),
            "total": float(self.total),
            "deposit_due": float(self.deposit_due),
            "deposit_rate": float(self.deposit_rate),
            "balance_due": float(self.balance_due),
            "line_items": list(self.line_items or []),
            "share_token": self.share_token,
            "sent_at": isoformat_or_none(self.sent_at),
            "expires_at": isoformat_or_none(self.expires_at),
            "decision_at": isoformat_or_none(self.decision_at),
            "decision_notes": self.decision_notes,
            "job_appointment_id": self.job_appointment_id,
            "created_at": isoformat_or_none(self.created_at),
        }


# =============================================================================
# Outbox Model
# =============================================================================


class OutboxEvent(Base):
    """
    A side effect waiting to be dispatched.

    Written in the same transaction as the business change. The integer id
    breaks ``created_at`` ties so dispatch order is strictly FIFO.
    ``claimed_by``/``lease_expires_at`` keep concurrent dispatchers apart.
    """
    __tablename__ = "outbox_events"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    type: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    payload: Mapped[dict] = mapped_column(JSON, nullable=False, default=dict)
    created_at: Mapped[datetime] = _timestamp_column()
    processed_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)

    claimed_by: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    lease_expires_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    attempts: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    outcome: Mapped[Optional[str]] = mapped_column(String(20), nullable=True)
    last_error: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    __table_args__ = (
        Index("ix_outbox_pending", "processed_at", "created_at"),
    )

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "type": self.type,
            "payload": self.payload,
            "created_at": isoformat_or_none(self.created_at),
            "processed_at": isoformat_or_none(self.processed_at),
            "attempts": self.attempts,
            "outcome": self.outcome,
            "last_error": self.last_error,
        }


# =============================================================================
# CRM Pipeline Model
# =============================================================================


class CrmPipeline(Base):
    """Single-row-per-contact sales stage projection."""
    __tablename__ = "crm_pipeline"

    contact_id: Mapped[str] = mapped_column(
        ForeignKey("contacts.id", ondelete="CASCADE"), primary_key=True
    )
    stage: Mapped[str] = mapped_column(String(20), default=PipelineStage.NEW.value, nullable=False)
    notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = _timestamp_column()
    updated_at: Mapped[datetime] = _timestamp_column(onupdate=utcnow)
