"""Admin quote routes: pricing, sending, decisions and job scheduling."""
from __future__ import annotations

from datetime import datetime
from typing import Any, Dict, Literal, Optional

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel, Field
from sqlalchemy.orm import Session

from api.auth_deps import require_admin_key
from api.deps import get_db, get_readonly_db, get_window_ranker
from core.config import get_settings
from core.logging_config import get_logger
from domain.quotes import QuoteService
from pricing.engine import QuoteRequest, calculate_breakdown
from scheduling.suggestions import SchedulingSuggestionEngine
from services.ranker import LLMWindowRanker

router = APIRouter(dependencies=[Depends(require_admin_key)])
LOGGER = get_logger(__name__)


# =============================================================================
# Pydantic Models
# =============================================================================


class QuoteCreate(QuoteRequest):
    """Pricing input plus who the quote is for."""

    contact_id: str = Field(..., min_length=1)
    property_id: str = Field(..., min_length=1)
    expires_in_days: Optional[int] = Field(None, ge=1, le=365)
    notes: Optional[str] = Field(None, max_length=2000)

    def pricing_request(self) -> QuoteRequest:
        return QuoteRequest.model_validate(
            self.model_dump(exclude={"contact_id", "property_id", "expires_in_days", "notes"})
        )


class DecisionRequest(BaseModel):
    decision: Literal["accepted", "declined"]
    notes: Optional[str] = Field(None, max_length=2000)


class ScheduleJobRequest(BaseModel):
    start_at: datetime
    duration_minutes: Optional[int] = Field(None, ge=15, le=720)
    travel_buffer_minutes: Optional[int] = Field(None, ge=0, le=240)
    notes: Optional[str] = Field(None, max_length=2000)


# =============================================================================
# Routes
# =============================================================================


@router.get("")
def list_quotes(
    status: Optional[str] = Query(None, description="Filter by quote status"),
    limit: int = Query(100, ge=1, le=500),
    db: Session = Depends(get_readonly_db),
) -> Dict[str, Any]:
    quotes = QuoteService(db).list_quotes(status=status, limit=limit)
    return {"total": len(quotes), "quotes": [q.to_dict() for q in quotes]}


@router.post("")
def create_quote(body: QuoteCreate, db: Session = Depends(get_db)) -> Dict[str, Any]:
    """Price and store a pending quote for a contact's property."""
    quote = QuoteService(db).create_quote(
        body.contact_id,
        body.property_id,
        body.pricing_request(),
        expires_in_days=body.expires_in_days,
        notes=body.notes,
    )
    return {"quote": quote.to_dict()}


@router.post("/price")
def price_quote(body: QuoteRequest) -> Dict[str, Any]:
    """Preview a breakdown without storing anything."""
    breakdown = calculate_breakdown(body, deposit_rate=get_settings().default_deposit_rate)
    return breakdown.to_dict()


@router.post("/{quote_id}/send")
def send_quote(quote_id: str, db: Session = Depends(get_db)) -> Dict[str, Any]:
    quote = QuoteService(db).send_quote(quote_id)
    return {"quote": quote.to_dict()}


@router.post("/{quote_id}/decision")
def record_decision(
    quote_id: str,
    body: DecisionRequest,
    db: Session = Depends(get_db),
) -> Dict[str, Any]:
    """Staff records an accept/decline on the customer's behalf."""
    quote, changed = QuoteService(db).record_decision(quote_id, body.decision, notes=body.notes)
    return {"quote": quote.to_dict(), "changed": changed}


@router.get("/{quote_id}/schedule-suggestions")
def schedule_suggestions(
    quote_id: str,
    db: Session = Depends(get_readonly_db),
    ranker: LLMWindowRanker = Depends(get_window_ranker),
) -> Dict[str, Any]:
    """Up to three windows for the job, ranked by the LLM when available."""
    result = SchedulingSuggestionEngine(db, ranker=ranker).suggest_windows(quote_id)
    return result.to_dict()


@router.post("/{quote_id}/schedule")
def schedule_job(
    quote_id: str,
    body: ScheduleJobRequest,
    db: Session = Depends(get_db),
) -> Dict[str, Any]:
    """Book the job appointment for an accepted quote."""
    appointment = QuoteService(db).schedule_job(
        quote_id,
        body.start_at,
        duration_minutes=body.duration_minutes,
        travel_buffer_minutes=body.travel_buffer_minutes,
        notes=body.notes,
    )
    return {"appointment": appointment.to_dict(), "quote_id": quote_id}
