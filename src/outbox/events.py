"""
Outbox event types and payload schemas.

Every event type has one pydantic schema. Payloads carry ids plus the few
fields that override current state; handlers re-read everything else.
"""
from __future__ import annotations

import enum
from datetime import datetime
from decimal import Decimal
from typing import Any, Dict, List, Literal, Optional, Type, Union

from pydantic import BaseModel, ConfigDict, ValidationError as PydanticValidationError
from sqlalchemy.orm import Session

from core.logging_config import get_logger
from core.models import OutboxEvent

LOGGER = get_logger(__name__)


class EventType(str, enum.Enum):
    """Outbox event types."""
    LEAD_CREATED = "lead.created"
    ESTIMATE_REQUESTED = "estimate.requested"
    ESTIMATE_RESCHEDULED = "estimate.rescheduled"
    ESTIMATE_STATUS_CHANGED = "estimate.status_changed"
    QUOTE_SENT = "quote.sent"
    QUOTE_DECISION = "quote.decision"
    PAYMENT_RECORDED = "payment.recorded"
    PIPELINE_STAGE_REQUEST = "pipeline.stage_request"


# =============================================================================
# Payload schemas
# =============================================================================


class _Payload(BaseModel):
    model_config = ConfigDict(extra="ignore")


class SchedulingPreferences(_Payload):
    preferred_date: Optional[str] = None
    time_window: Optional[str] = None


class LeadCreatedPayload(_Payload):
    lead_id: str
    services: List[str]
    source: Optional[str] = None
    notes: Optional[str] = None


class EstimateRequestedPayload(_Payload):
    appointment_id: str
    lead_id: Optional[str] = None
    services: List[str] = []
    scheduling: Optional[SchedulingPreferences] = None
    source: Optional[str] = None
    notes: Optional[str] = None
    reason: str = "requested"


class EstimateRescheduledPayload(_Payload):
    appointment_id: str
    start_at: Optional[datetime] = None
    reschedule_url: Optional[str] = None
    scheduling: Optional[SchedulingPreferences] = None


class EstimateStatusChangedPayload(_Payload):
    appointment_id: str
    status: str
    previous_status: Optional[str] = None


class QuoteSentPayload(_Payload):
    quote_id: str
    share_url: Optional[str] = None


class QuoteDecisionPayload(_Payload):
    quote_id: str
    decision: Literal["accepted", "declined"]
    source: Literal["customer", "admin"] = "admin"
    notes: Optional[str] = None


class PaymentRecordedPayload(_Payload):
    appointment_id: str
    amount: Decimal
    method: str = "card"
    reference: Optional[str] = None
    source: Optional[str] = None


class PipelineStageRequestPayload(_Payload):
    contact_id: str
    stage: str
    reason: Optional[str] = None


EVENT_SCHEMAS: Dict[str, Type[_Payload]] = {
    EventType.LEAD_CREATED.value: LeadCreatedPayload,
    EventType.ESTIMATE_REQUESTED.value: EstimateRequestedPayload,
    EventType.ESTIMATE_RESCHEDULED.value: EstimateRescheduledPayload,
    EventType.ESTIMATE_STATUS_CHANGED.value: EstimateStatusChangedPayload,
    EventType.QUOTE_SENT.value: QuoteSentPayload,
    EventType.QUOTE_DECISION.value: QuoteDecisionPayload,
    EventType.PAYMENT_RECORDED.value: PaymentRecordedPayload,
    EventType.PIPELINE_STAGE_REQUEST.value: PipelineStageRequestPayload,
}


def decode_payload(event_type: str, payload: Any) -> Optional[_Payload]:
    """
    Decode a stored payload into its schema.

    Returns None for unknown types and malformed payloads.
    """
    schema = EVENT_SCHEMAS.get(event_type)
    if schema is None:
        return None
    try:
        return schema.model_validate(payload or {})
    except PydanticValidationError as e:
        LOGGER.warning(f"Malformed {event_type} payload: {e.error_count()} error(s)")
        return None


def enqueue_event(
    session: Session,
    event_type: Union[EventType, str],
    payload: Union[_Payload, Dict[str, Any]],
) -> OutboxEvent:
    """
    Add an outbox event to the session's current transaction.

    The event becomes visible to the dispatcher only when the caller
    commits.

    Raises:
        pydantic.ValidationError: If a dict payload does not fit its schema.
    """
    type_value = event_type.value if isinstance(event_type, EventType) else event_type
    if isinstance(payload, dict):
        schema = EVENT_SCHEMAS.get(type_value)
        if schema is not None:
            payload = schema.model_validate(payload)

    data = payload.model_dump(mode="json", exclude_none=True) if isinstance(payload, BaseModel) else payload
    event = OutboxEvent(type=type_value, payload=data)
    session.add(event)
    LOGGER.debug(f"Enqueued outbox event {type_value}")
    return event


__all__ = [
    "EventType",
    "EVENT_SCHEMAS",
    "SchedulingPreferences",
    "LeadCreatedPayload",
    "EstimateRequestedPayload",
    "EstimateRescheduledPayload",
    "EstimateStatusChangedPayload",
    "QuoteSentPayload",
    "QuoteDecisionPayload",
    "PaymentRecordedPayload",
    "PipelineStageRequestPayload",
    "decode_payload",
    "enqueue_event",
]
