"""Health check routes with database and integration status."""
from __future__ import annotations

from typing import Any, Dict

from fastapi import APIRouter, Depends
from sqlalchemy import text
from sqlalchemy.orm import Session

from api.deps import get_readonly_db
from core.config import get_settings
from core.logging_config import get_logger
from core.models import OutboxEvent
from core.utils import utcnow

router = APIRouter()
LOGGER = get_logger(__name__)
SETTINGS = get_settings()


@router.get("")
async def health_check() -> Dict[str, Any]:
    """Basic health check - always returns OK."""
    return {
        "status": "healthy",
        "timestamp": utcnow().isoformat(),
        "dry_run": SETTINGS.dry_run,
        "environment": SETTINGS.environment,
    }


@router.get("/detailed")
def detailed_health_check(
    db: Session = Depends(get_readonly_db),
) -> Dict[str, Any]:
    """Database connectivity, outbox backlog and which integrations are configured."""
    status = "healthy"
    checks: Dict[str, Any] = {}

    try:
        db.execute(text("SELECT 1"))
        pending = db.query(OutboxEvent).filter(OutboxEvent.processed_at.is_(None)).count()
        checks["database"] = {"status": "healthy", "connected": True}
        checks["outbox"] = {"pending": pending}
    except Exception as e:
        LOGGER.error(f"Database health check failed: {e}")
        status = "unhealthy"
        checks["database"] = {"status": "unhealthy", "error": str(e)}

    checks["twilio"] = {
        "configured": SETTINGS.is_twilio_enabled(),
        "staff_alerts": bool(SETTINGS.staff_alert_phone),
    }
    checks["calendar"] = {"configured": SETTINGS.is_calendar_enabled()}
    checks["conversions"] = {"configured": SETTINGS.is_conversions_enabled()}
    checks["ai_ranker"] = {"configured": SETTINGS.is_ai_ranker_enabled()}

    return {
        "status": status,
        "timestamp": utcnow().isoformat(),
        "dry_run": SETTINGS.dry_run,
        "checks": checks,
    }
