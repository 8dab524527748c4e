"""Appointment routes: admin status/notes/payments and the customer reschedule link."""
from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel, Field
from sqlalchemy.orm import Session

from api.auth_deps import require_admin_key
from api.deps import get_db, get_readonly_db
from core.logging_config import get_logger
from domain.appointments import AppointmentService

router = APIRouter()
LOGGER = get_logger(__name__)


# =============================================================================
# Pydantic Models
# =============================================================================


class StatusUpdate(BaseModel):
    status: str = Field(..., min_length=1)


class NoteCreate(BaseModel):
    body: str = Field(..., min_length=1, max_length=5000)


class PaymentCreate(BaseModel):
    amount: Decimal = Field(..., description="Amount in USD")
    method: str = Field("card", max_length=40)
    reference: Optional[str] = Field(None, max_length=255)


class RescheduleRequest(BaseModel):
    token: str = Field(..., min_length=1)
    start_at: Optional[datetime] = None
    preferred_date: Optional[str] = Field(None, alias="preferredDate")
    time_window: Optional[str] = Field(None, alias="timeWindow")

    model_config = {"populate_by_name": True}


# =============================================================================
# Admin
# =============================================================================


@router.get("", dependencies=[Depends(require_admin_key)])
def list_appointments(
    status: Optional[str] = Query(None),
    limit: int = Query(100, ge=1, le=500),
    db: Session = Depends(get_readonly_db),
) -> Dict[str, Any]:
    appointments = AppointmentService(db).list_appointments(status=status, limit=limit)
    return {"total": len(appointments), "appointments": [a.to_dict() for a in appointments]}


@router.post("/{appointment_id}/status", dependencies=[Depends(require_admin_key)])
def update_status(
    appointment_id: str,
    body: StatusUpdate,
    db: Session = Depends(get_db),
) -> Dict[str, Any]:
    appointment, changed = AppointmentService(db).change_status(appointment_id, body.status)
    return {"appointment": appointment.to_dict(), "changed": changed}


@router.post("/{appointment_id}/notes", dependencies=[Depends(require_admin_key)])
def add_note(
    appointment_id: str,
    body: NoteCreate,
    db: Session = Depends(get_db),
) -> Dict[str, Any]:
    note = AppointmentService(db).add_note(appointment_id, body.body)
    return {"note": note.to_dict()}


@router.post("/{appointment_id}/payments", dependencies=[Depends(require_admin_key)])
def record_payment(
    appointment_id: str,
    body: PaymentCreate,
    db: Session = Depends(get_db),
) -> Dict[str, Any]:
    """Record a payment; the note is appended when the outbox event is handled."""
    amount = AppointmentService(db).record_payment(
        appointment_id,
        body.amount,
        method=body.method,
        reference=body.reference,
    )
    return {"ok": True, "appointment_id": appointment_id, "amount": float(amount)}


# =============================================================================
# Customer
# =============================================================================


@router.post("/{appointment_id}/reschedule")
def reschedule(
    appointment_id: str,
    body: RescheduleRequest,
    db: Session = Depends(get_db),
) -> Dict[str, Any]:
    """Move an appointment using the token from the confirmation link."""
    appointment = AppointmentService(db).reschedule(
        appointment_id,
        body.token,
        start_at=body.start_at,
        preferred_date=body.preferred_date,
        time_window=body.time_window,
    )
    return {
        "ok": True,
        "appointment_id": appointment.id,
        "status": appointment.status,
        "start_at": appointment.start_at.isoformat() if appointment.start_at else None,
    }
