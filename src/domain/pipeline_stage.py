"""CRM pipeline stage projection (one row per contact)."""
from __future__ import annotations

from typing import Optional

from sqlalchemy.orm import Session

from core.logging_config import get_logger
from core.models import CrmPipeline, OutboxEvent, PipelineStage
from core.utils import utcnow
from outbox.events import EventType, PipelineStageRequestPayload, enqueue_event

LOGGER = get_logger(__name__)

VALID_STAGES = {stage.value for stage in PipelineStage}


def parse_stage(value: Optional[str]) -> Optional[str]:
    """Normalize a stage name; None when it is not a known stage."""
    if not isinstance(value, str):
        return None
    normalized = value.strip().lower()
    return normalized if normalized in VALID_STAGES else None


def upsert_pipeline_stage(
    session: Session,
    contact_id: str,
    stage: str,
    reason: Optional[str] = None,
) -> CrmPipeline:
    """
    Insert or move the contact's pipeline row. Flushes, never commits.

    Raises:
        ValueError: If ``stage`` is not a pipeline stage.
    """
    normalized = parse_stage(stage)
    if normalized is None:
        raise ValueError(f"Unknown pipeline stage: {stage!r}")

    row = session.get(CrmPipeline, contact_id)
    if row is None:
        row = CrmPipeline(contact_id=contact_id, stage=normalized, notes=reason)
        session.add(row)
    else:
        row.stage = normalized
        row.notes = reason
        row.updated_at = utcnow()

    session.flush()
    LOGGER.debug(f"Pipeline stage for contact {contact_id} -> {normalized}")
    return row


def enqueue_stage_request(
    session: Session,
    contact_id: str,
    stage: str,
    reason: Optional[str] = None,
) -> OutboxEvent:
    """Ask the dispatcher to move the contact's stage after commit."""
    return enqueue_event(
        session,
        EventType.PIPELINE_STAGE_REQUEST,
        PipelineStageRequestPayload(contact_id=contact_id, stage=stage, reason=reason),
    )
