"""Transactional outbox: event schemas and enqueueing.

The dispatcher and handlers live in ``outbox.dispatcher`` and
``outbox.handlers``.
"""
from __future__ import annotations

from .events import EVENT_SCHEMAS, EventType, decode_payload, enqueue_event

__all__ = [
    "EVENT_SCHEMAS",
    "EventType",
    "decode_payload",
    "enqueue_event",
]
