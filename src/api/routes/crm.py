"""Admin CRM pipeline board routes."""
from __future__ import annotations

from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field
from sqlalchemy.orm import Session

from api.auth_deps import require_admin_key
from api.deps import get_db, get_readonly_db
from core.utils import isoformat_or_none
from domain.crm import CrmService

router = APIRouter(dependencies=[Depends(require_admin_key)])


class StageMove(BaseModel):
    stage: Optional[str] = None
    notes: Optional[str] = Field(None, max_length=5000)


@router.get("/pipeline")
def pipeline_board(db: Session = Depends(get_readonly_db)) -> Dict[str, Any]:
    """Contacts grouped into one lane per stage."""
    return CrmService(db).pipeline_board()


@router.patch("/pipeline/{contact_id}")
def move_contact(
    contact_id: str,
    body: StageMove,
    db: Session = Depends(get_db),
) -> Dict[str, Any]:
    row = CrmService(db).move_contact(contact_id, body.stage, body.notes)
    return {
        "pipeline": {
            "contact_id": row.contact_id,
            "stage": row.stage,
            "notes": row.notes,
            "updated_at": isoformat_or_none(row.updated_at),
        }
    }
