"""API route modules."""
from __future__ import annotations

from . import (
    appointments,
    contacts,
    crm,
    health,
    intake,
    outbox,
    public_quotes,
    quotes,
)

__all__ = [
    "appointments",
    "contacts",
    "crm",
    "health",
    "intake",
    "outbox",
    "public_quotes",
    "quotes",
]
