"""Appointment timing and schedule suggestions."""
from __future__ import annotations

from .suggestions import SchedulingSuggestionEngine, ScheduleSuggestion, SuggestionResult
from .timing import Timing, resolve_timing

__all__ = [
    "SchedulingSuggestionEngine",
    "ScheduleSuggestion",
    "SuggestionResult",
    "Timing",
    "resolve_timing",
]
