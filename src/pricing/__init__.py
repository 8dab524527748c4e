"""Quote pricing: catalog and deterministic breakdown engine."""
from __future__ import annotations

from .engine import Breakdown, LineItem, QuoteRequest, calculate_breakdown

__all__ = [
    "Breakdown",
    "LineItem",
    "QuoteRequest",
    "calculate_breakdown",
]
