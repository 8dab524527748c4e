"""Background jobs run by the worker process."""
from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Dict, Optional

from core.db import get_session
from core.logging_config import get_logger
from domain.appointments import send_due_reminders
from outbox.dispatcher import OutboxDispatcher, get_outbox_dispatcher
from services.notification import Notifier, get_notifier

LOGGER = get_logger(__name__)

REMINDER_TICK_MINUTES = 15
REMINDER_LEAD_MINUTES = 24 * 60


def _job_id(kind: str) -> str:
    return f"{kind}_{datetime.now(timezone.utc).strftime('%Y%m%d_%H%M%S')}"


def run_outbox_dispatch_job(
    limit: Optional[int] = None,
    dispatcher: Optional[OutboxDispatcher] = None,
) -> Dict[str, Any]:
    """
    Process one batch of outbox events.

    Args:
        limit: Batch size; the dispatcher caps it at the configured maximum.
        dispatcher: Dispatcher to use (defaults to the shared instance).

    Returns:
        Job summary with the batch stats.
    """
    job_id = _job_id("outbox")
    dispatcher = dispatcher or get_outbox_dispatcher()

    try:
        stats = dispatcher.process_batch(limit)
        if stats.total:
            LOGGER.info(
                "[%s] Outbox batch: total=%d processed=%d skipped=%d errors=%d",
                job_id,
                stats.total,
                stats.processed,
                stats.skipped,
                stats.errors,
            )
        return {
            "job_id": job_id,
            "job_type": "outbox_dispatch",
            "success": True,
            "result": stats.to_dict(),
        }
    except Exception as e:
        LOGGER.exception("[%s] Outbox dispatch failed: %s", job_id, e)
        return {
            "job_id": job_id,
            "job_type": "outbox_dispatch",
            "success": False,
            "error": str(e),
        }


def run_reminder_job(
    notifier: Optional[Notifier] = None,
    now: Optional[datetime] = None,
) -> Dict[str, Any]:
    """
    Send reminders for appointments starting a day from now.

    Runs every ``REMINDER_TICK_MINUTES``; each tick covers the next slice
    of that length so an appointment is reminded once.
    """
    job_id = _job_id("reminders")
    notifier = notifier or get_notifier()

    try:
        with get_session() as session:
            sent = send_due_reminders(
                session,
                notifier,
                now=now,
                window_minutes=REMINDER_LEAD_MINUTES,
                tick_minutes=REMINDER_TICK_MINUTES,
            )
        return {
            "job_id": job_id,
            "job_type": "reminders",
            "success": True,
            "result": {"sent": sent},
        }
    except Exception as e:
        LOGGER.exception("[%s] Reminder job failed: %s", job_id, e)
        return {
            "job_id": job_id,
            "job_type": "reminders",
            "success": False,
            "error": str(e),
        }
