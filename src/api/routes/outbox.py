"""Admin outbox routes."""
from __future__ import annotations

from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends, Query

from api.auth_deps import require_admin_key
from api.deps import get_dispatcher
from core.logging_config import get_logger
from outbox.dispatcher import OutboxDispatcher

router = APIRouter(dependencies=[Depends(require_admin_key)])
LOGGER = get_logger(__name__)


@router.post("/dispatch")
def dispatch(
    limit: Optional[int] = Query(None, description="Batch size, capped at the configured maximum"),
    dispatcher: OutboxDispatcher = Depends(get_dispatcher),
) -> Dict[str, Any]:
    """Process one batch of pending events."""
    stats = dispatcher.process_batch(limit)
    return {"ok": True, **stats.to_dict()}


@router.post("/{event_id}/requeue")
def requeue(
    event_id: int,
    dispatcher: OutboxDispatcher = Depends(get_dispatcher),
) -> Dict[str, Any]:
    event = dispatcher.requeue(event_id)
    return {"ok": True, "event": event.to_dict()}
