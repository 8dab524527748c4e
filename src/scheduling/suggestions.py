"""
Schedule suggestions for accepted quotes.

Ranks upcoming nearby jobs by distance and optionally lets an LLM ranker
pick windows. Whenever the ranker is disabled, slow, or returns nothing
usable, a deterministic day-spread heuristic is used instead. Read-only.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Dict, List, Optional, Protocol, Sequence

from sqlalchemy.orm import Session

from core.config import get_settings
from core.exceptions import ConflictError, NotFoundError
from core.logging_config import get_logger
from core.models import Appointment, AppointmentStatus, Property, Quote, QuoteStatus
from core.utils import call_with_timeout, ensure_aware, utcnow
from pricing.catalog import (
    ADD_ON_DURATION_MINUTES,
    DEFAULT_DURATION_MINUTES,
    MAX_DURATION_MINUTES,
    resolve_service,
)
from scheduling.geo import distance_miles, parse_coord
from scheduling.timing import format_window

LOGGER = get_logger(__name__)

UPCOMING_WINDOW_DAYS = 14
UPCOMING_LIMIT = 120
MAX_SUGGESTIONS = 3
SCHEDULABLE_STATUSES = (AppointmentStatus.CONFIRMED.value, AppointmentStatus.REQUESTED.value)
FILLER_HOUR_UTC = 14
MULTI_SERVICE_EFFICIENCY = 0.9


class WindowRanker(Protocol):
    def rank_windows(
        self,
        target_address: Dict[str, Any],
        duration_minutes: int,
        candidates: List[Dict[str, Any]],
    ) -> Optional[List[Dict[str, Any]]]:
        ...


@dataclass
class UpcomingSlot:
    """An already-booked job near the target."""
    start_at: datetime
    duration_minutes: Optional[int]
    address: Dict[str, str]
    distance_miles: Optional[float]

    def to_candidate(self) -> Dict[str, Any]:
        return {
            "start_at": self.start_at.isoformat(),
            "duration_minutes": self.duration_minutes,
            "address": self.address,
            "distance_miles": round(self.distance_miles, 2) if self.distance_miles is not None else None,
        }


@dataclass
class ScheduleSuggestion:
    window: str
    reasoning: str
    start_at: datetime

    def to_dict(self) -> Dict[str, Any]:
        return {
            "window": self.window,
            "reasoning": self.reasoning,
            "start_at": self.start_at.isoformat(),
        }


@dataclass
class SuggestionResult:
    suggestions: List[ScheduleSuggestion] = field(default_factory=list)
    location_missing: bool = False
    used_fallback: bool = False
    duration_minutes: int = DEFAULT_DURATION_MINUTES
    candidates_considered: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "suggestions": [s.to_dict() for s in self.suggestions],
            "meta": {
                "location_missing": self.location_missing,
                "used_fallback": self.used_fallback,
                "duration_minutes": self.duration_minutes,
                "candidates_considered": self.candidates_considered,
            },
        }


def estimate_duration_minutes(
    services: Sequence[str],
    add_ons: Sequence[str] = (),
    minimum: int = DEFAULT_DURATION_MINUTES,
) -> int:
    """
    Estimate on-site minutes for a service mix.

    Per-service estimates are summed, trimmed 10% when two or more services
    share a visit, padded per add-on and clamped to [minimum, 6 hours].
    """
    total = 0.0
    for service_id in services:
        rate = resolve_service(service_id)
        total += rate.duration_minutes if rate else DEFAULT_DURATION_MINUTES
    if len(services) >= 2:
        total *= MULTI_SERVICE_EFFICIENCY
    total += ADD_ON_DURATION_MINUTES * len(add_ons or ())
    return int(min(max(round(total), minimum), MAX_DURATION_MINUTES))


def parse_suggestion_time(value: Any) -> Optional[datetime]:
    """Parse an ISO-8601 timestamp from a ranker reply. Naive values are read as UTC."""
    if not isinstance(value, str) or not value.strip():
        return None
    text = value.strip()
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    try:
        parsed = datetime.fromisoformat(text)
    except ValueError:
        return None
    return ensure_aware(parsed).astimezone(timezone.utc)


def build_fallback_suggestions(
    slots: Sequence[UpcomingSlot],
    duration_minutes: int,
    now: datetime,
) -> List[ScheduleSuggestion]:
    """
    Deterministic suggestions: one nearby job per calendar day, closest first,
    then afternoon filler slots on following days.
    """
    ordered = sorted(
        slots,
        key=lambda s: (s.distance_miles is None, s.distance_miles or 0.0, s.start_at),
    )
    used_days = set()
    suggestions: List[ScheduleSuggestion] = []

    for slot in ordered:
        if len(suggestions) >= MAX_SUGGESTIONS:
            break
        day = slot.start_at.astimezone(timezone.utc).date()
        if day in used_days:
            continue
        used_days.add(day)
        if slot.distance_miles is not None:
            reasoning = f"Pairs with a job only {slot.distance_miles:.1f} mi away."
        else:
            reasoning = "Pairs with another job on this day."
        suggestions.append(
            ScheduleSuggestion(
                window=format_window(slot.start_at, slot.duration_minutes or duration_minutes),
                reasoning=reasoning,
                start_at=slot.start_at,
            )
        )

    base = now.astimezone(timezone.utc).replace(hour=FILLER_HOUR_UTC, minute=0, second=0, microsecond=0)
    offset = 1
    while len(suggestions) < MAX_SUGGESTIONS:
        start_at = base + timedelta(days=offset)
        offset += 1
        if start_at.date() in used_days:
            continue
        used_days.add(start_at.date())
        suggestions.append(
            ScheduleSuggestion(
                window=format_window(start_at, duration_minutes),
                reasoning="Open slot with no conflicting jobs nearby.",
                start_at=start_at,
            )
        )

    return suggestions


class SchedulingSuggestionEngine:
    """Suggest up to three windows for scheduling an accepted quote."""

    def __init__(
        self,
        session: Session,
        ranker: Optional[WindowRanker] = None,
        clock: Callable[[], datetime] = utcnow,
        ranker_timeout_seconds: Optional[float] = None,
    ) -> None:
        settings = get_settings()
        self.session = session
        self.ranker = ranker
        self.clock = clock
        self.ranker_timeout_seconds = ranker_timeout_seconds or settings.ranker_timeout_seconds
        self.minimum_duration = settings.default_appointment_duration_min

    def suggest_windows(self, quote_id: str) -> SuggestionResult:
        """
        Build suggestions for a quote.

        Raises:
            NotFoundError: If the quote does not exist.
            ConflictError: If the quote is not accepted.
        """
        quote = self.session.get(Quote, quote_id)
        if quote is None:
            raise NotFoundError(f"Quote {quote_id} not found", reason="quote_not_found")
        if quote.status != QuoteStatus.ACCEPTED.value:
            raise ConflictError(f"Quote {quote_id} is {quote.status}", reason="quote_not_accepted")

        prop = quote.property
        target_lat = parse_coord(prop.lat)
        target_lng = parse_coord(prop.lng)
        location_missing = target_lat is None or target_lng is None

        duration = estimate_duration_minutes(quote.services or [], quote.add_ons or [], self.minimum_duration)
        now = self.clock()
        slots = self._load_upcoming(now, target_lat, target_lng)

        suggestions: List[ScheduleSuggestion] = []
        if not location_missing and self.ranker is not None:
            target = {
                "line1": prop.address_line1,
                "city": prop.city,
                "state": prop.state,
                "postal_code": prop.postal_code,
            }
            suggestions = self._ranked(target, duration, slots)

        used_fallback = not suggestions
        if used_fallback:
            suggestions = build_fallback_suggestions(slots, duration, now)

        LOGGER.info(
            f"Schedule suggestions for quote {quote_id}",
            extra={"extra_data": {
                "used_fallback": used_fallback,
                "location_missing": location_missing,
                "candidates": len(slots),
            }},
        )
        return SuggestionResult(
            suggestions=suggestions,
            location_missing=location_missing,
            used_fallback=used_fallback,
            duration_minutes=duration,
            candidates_considered=len(slots),
        )

    def _load_upcoming(
        self,
        now: datetime,
        target_lat: Optional[float],
        target_lng: Optional[float],
    ) -> List[UpcomingSlot]:
        window_end = now + timedelta(days=UPCOMING_WINDOW_DAYS)
        rows = (
            self.session.query(Appointment, Property)
            .join(Property, Appointment.property_id == Property.id)
            .filter(
                Appointment.status.in_(SCHEDULABLE_STATUSES),
                Appointment.start_at.isnot(None),
                Appointment.start_at >= now,
                Appointment.start_at <= window_end,
            )
            .order_by(Appointment.start_at.asc())
            .limit(UPCOMING_LIMIT)
            .all()
        )

        slots = []
        for appointment, prop in rows:
            slots.append(
                UpcomingSlot(
                    start_at=ensure_aware(appointment.start_at),
                    duration_minutes=appointment.duration_minutes,
                    address={
                        "line1": prop.address_line1,
                        "city": prop.city,
                        "state": prop.state,
                        "postal_code": prop.postal_code,
                    },
                    distance_miles=distance_miles(target_lat, target_lng, prop.lat, prop.lng),
                )
            )
        return slots

    def _ranked(
        self,
        target: Dict[str, Any],
        duration: int,
        slots: Sequence[UpcomingSlot],
    ) -> List[ScheduleSuggestion]:
        candidates = [slot.to_candidate() for slot in slots]
        try:
            raw = call_with_timeout(
                self.ranker.rank_windows,
                self.ranker_timeout_seconds,
                target,
                duration,
                candidates,
                default=None,
            )
        except Exception:
            LOGGER.exception("Window ranker raised; using fallback")
            return []

        suggestions = []
        for item in raw or []:
            if not isinstance(item, dict):
                continue
            start_at = parse_suggestion_time(item.get("start_at") or item.get("startAtIso"))
            if start_at is None:
                continue
            suggestions.append(
                ScheduleSuggestion(
                    window=str(item.get("window") or format_window(start_at, duration)),
                    reasoning=str(item.get("reasoning") or "Suggested by route planner."),
                    start_at=start_at,
                )
            )
        return suggestions[:MAX_SUGGESTIONS]
