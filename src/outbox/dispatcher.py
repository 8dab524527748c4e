"""
Outbox dispatcher.

Claims pending events with a short lease, runs each through its handler in
its own transaction, and marks every claimed event processed whatever the
outcome. Failed events are not retried automatically; an operator can
``requeue`` one.
"""
from __future__ import annotations

import os
import socket
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any, Callable, Dict, List, Optional

from sqlalchemy import or_
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from core.config import get_settings
from core.db import get_session_factory
from core.exceptions import NotFoundError
from core.logging_config import get_context_logger, get_logger
from core.models import OutboxEvent
from core.utils import generate_unique_key, utcnow
from outbox.handlers import PROCESSED, SKIPPED, OutboxHandlers

LOGGER = get_logger(__name__)

ERROR = "error"

_MAX_ERROR_LENGTH = 2000


@dataclass
class BatchStats:
    """Counts for one dispatch run."""
    total: int = 0
    processed: int = 0
    skipped: int = 0
    errors: int = 0
    event_ids: List[int] = field(default_factory=list)

    def record(self, outcome: str) -> None:
        if outcome == PROCESSED:
            self.processed += 1
        elif outcome == SKIPPED:
            self.skipped += 1
        else:
            self.errors += 1

    def to_dict(self) -> Dict[str, Any]:
        return {
            "total": self.total,
            "processed": self.processed,
            "skipped": self.skipped,
            "errors": self.errors,
        }


def _default_worker_id() -> str:
    return f"{socket.gethostname()}:{os.getpid()}:{generate_unique_key()[:8]}"


class OutboxDispatcher:
    """
    Process outbox events in FIFO order.

    Safe to run in several processes at once: ``claim_batch`` leases rows
    (``FOR UPDATE SKIP LOCKED`` where the database supports it) so no event
    is handled twice while its lease is live.
    """

    def __init__(
        self,
        session_factory: Optional[Callable[[], Session]] = None,
        handlers: Optional[OutboxHandlers] = None,
        worker_id: Optional[str] = None,
        lease_seconds: Optional[int] = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        settings = get_settings()
        self.session_factory = session_factory or get_session_factory()
        self.handlers = handlers or OutboxHandlers()
        self.worker_id = worker_id or _default_worker_id()
        self.log = get_context_logger(__name__, worker_id=self.worker_id)
        self.lease_seconds = lease_seconds or settings.outbox_lease_seconds
        self.default_limit = settings.outbox_batch_size
        self.max_limit = settings.outbox_max_batch_size
        self.clock = clock

    def clamp_limit(self, limit: Optional[int]) -> int:
        """Requested batch size bounded to [1, max batch size]."""
        if limit is None:
            limit = self.default_limit
        return max(1, min(int(limit), self.max_limit))

    def claim_batch(self, limit: int) -> List[int]:
        """Lease up to ``limit`` pending events and return their ids, oldest first."""
        now = self.clock()
        with self.session_factory() as session:
            events = (
                session.query(OutboxEvent)
                .filter(
                    OutboxEvent.processed_at.is_(None),
                    or_(OutboxEvent.lease_expires_at.is_(None), OutboxEvent.lease_expires_at < now),
                )
                .order_by(OutboxEvent.created_at, OutboxEvent.id)
                .limit(limit)
                .with_for_update(skip_locked=True)
                .all()
            )
            lease_until = now + timedelta(seconds=self.lease_seconds)
            for event in events:
                event.claimed_by = self.worker_id
                event.lease_expires_at = lease_until
                event.attempts = (event.attempts or 0) + 1
            session.commit()
            return [event.id for event in events]

    def process_event(self, event_id: int) -> Optional[str]:
        """
        Handle one claimed event and mark it processed.

        Handler writes and the processed mark commit together on success. On
        a handler failure the handler's writes roll back and the event is
        still marked, with the error recorded.
        """
        with self.session_factory() as session:
            event = session.get(OutboxEvent, event_id)
            if event is None or event.processed_at is not None:
                return None
            if event.claimed_by != self.worker_id:
                self.log.info(f"Outbox event {event_id} was claimed by another worker")
                return None

            event_type = event.type
            error: Optional[str] = None
            try:
                outcome = self.handlers.handle(session, event_type, event.payload)
            except Exception as e:
                session.rollback()
                outcome = ERROR
                error = f"{type(e).__name__}: {e}"[:_MAX_ERROR_LENGTH]
                self.log.warning(
                    f"Outbox handler failed for {event_type} #{event_id}: {e}",
                    extra={"event_id": event_id, "extra_data": {"type": event_type}},
                )

            try:
                event = session.get(OutboxEvent, event_id)
                event.processed_at = self.clock()
                event.outcome = outcome
                event.last_error = error
                event.claimed_by = None
                event.lease_expires_at = None
                session.commit()
            except SQLAlchemyError as e:
                session.rollback()
                self.log.error(f"Failed to mark outbox event {event_id} processed: {e}")

            LOGGER.debug(f"Outbox event {event_type} #{event_id}: {outcome}")
            return outcome

    def process_batch(self, limit: Optional[int] = None) -> BatchStats:
        """
        Process up to ``limit`` pending events (capped at the max batch size).

        Returns:
            BatchStats with total/processed/skipped/errors counts.
        """
        stats = BatchStats()
        for event_id in self.claim_batch(self.clamp_limit(limit)):
            outcome = self.process_event(event_id)
            if outcome is None:
                continue
            stats.total += 1
            stats.event_ids.append(event_id)
            stats.record(outcome)

        if stats.total:
            LOGGER.info(
                f"Outbox batch: {stats.processed} processed, {stats.skipped} skipped, {stats.errors} errors",
                extra={"extra_data": stats.to_dict()},
            )
        return stats

    def requeue(self, event_id: int) -> OutboxEvent:
        """Put a processed event back in the queue."""
        with self.session_factory() as session:
            event = session.get(OutboxEvent, event_id)
            if event is None:
                raise NotFoundError(f"Outbox event {event_id} not found", reason="event_not_found")
            event.processed_at = None
            event.outcome = None
            event.last_error = None
            event.claimed_by = None
            event.lease_expires_at = None
            session.commit()
            LOGGER.info(f"Requeued outbox event {event.type} #{event_id}")
            return event

    def pending_count(self) -> int:
        with self.session_factory() as session:
            return session.query(OutboxEvent).filter(OutboxEvent.processed_at.is_(None)).count()


_dispatcher: Optional[OutboxDispatcher] = None


def get_outbox_dispatcher() -> OutboxDispatcher:
    global _dispatcher
    if _dispatcher is None:
        _dispatcher = OutboxDispatcher()
    return _dispatcher
