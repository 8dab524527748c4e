"""Customer-facing quote routes, authorized by the share token."""
from __future__ import annotations

from typing import Any, Dict, Literal, Optional

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field
from sqlalchemy.orm import Session

from api.deps import get_db, get_readonly_db
from domain.quotes import QuoteService, public_quote_view

router = APIRouter()


class PublicDecision(BaseModel):
    decision: Literal["accepted", "declined"]
    notes: Optional[str] = Field(None, max_length=1000)


@router.get("/{token}")
def get_public_quote(token: str, db: Session = Depends(get_readonly_db)) -> Dict[str, Any]:
    return {"quote": QuoteService(db).get_public_quote(token)}


@router.post("/{token}/decision")
def decide_quote(token: str, body: PublicDecision, db: Session = Depends(get_db)) -> Dict[str, Any]:
    service = QuoteService(db)
    quote = service.decide_by_token(token, body.decision, notes=body.notes)
    return {"ok": True, "quote": public_quote_view(quote, service.clock())}
