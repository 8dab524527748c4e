"""Admin contact directory."""
from __future__ import annotations

from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from api.auth_deps import require_admin_key
from api.deps import get_readonly_db
from domain.crm import DEFAULT_CONTACT_LIMIT, MAX_CONTACT_LIMIT, CrmService

router = APIRouter(dependencies=[Depends(require_admin_key)])


@router.get("")
def list_contacts(
    q: Optional[str] = Query(None, description="Matches name, email, phone or address"),
    limit: int = Query(DEFAULT_CONTACT_LIMIT, ge=1, le=MAX_CONTACT_LIMIT),
    offset: int = Query(0, ge=0),
    db: Session = Depends(get_readonly_db),
) -> Dict[str, Any]:
    return CrmService(db).list_contacts(q=q, limit=limit, offset=offset)
