"""Tests for timing, distance and schedule suggestions."""
from __future__ import annotations

import threading
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from unittest.mock import MagicMock

import pytest

from conftest import make_appointment
from core.exceptions import ConflictError, LLMError, NotFoundError
from core.models import Contact, Property
from domain.quotes import QuoteService
from llm.client import LLMClient, extract_json, get_llm_client, reset_llm_client
from scheduling.geo import distance_miles, haversine_miles, parse_coord
from scheduling.suggestions import (
    SchedulingSuggestionEngine,
    UpcomingSlot,
    build_fallback_suggestions,
    estimate_duration_minutes,
    parse_suggestion_time,
)
from scheduling.timing import build_quote_url, build_reschedule_url, format_window, resolve_timing
from services.ranker import LLMWindowRanker

NOW = datetime(2026, 3, 2, 12, 30, tzinfo=timezone.utc)


def _slot(start_at, distance, duration=60):
    return UpcomingSlot(
        start_at=start_at,
        duration_minutes=duration,
        address={"line1": "1 Elm St", "city": "Cary", "state": "NC", "postal_code": "27511"},
        distance_miles=distance,
    )


# =============================================================================
# Timing
# =============================================================================


@pytest.mark.parametrize(
    "window, local_hour",
    [("morning", 9), ("afternoon", 13), ("evening", 16), ("late night", 9), (None, 9)],
)
def test_resolve_timing_windows(window, local_hour):
    timing = resolve_timing("2026-03-10", window, zone_name="America/New_York")

    # EDT starts March 8, 2026
    assert timing.start_at == datetime(2026, 3, 10, local_hour + 4, 0, tzinfo=timezone.utc)
    assert timing.duration_minutes == 60


def test_resolve_timing_unscheduled():
    assert resolve_timing(None, "morning").start_at is None
    assert resolve_timing("03/10/2026", "morning").start_at is None
    assert resolve_timing("", None, duration_minutes=90).duration_minutes == 90


def test_format_window():
    start = datetime(2026, 3, 10, 13, 0, tzinfo=timezone.utc)
    assert format_window(start, 90, zone_name="America/New_York") == "Tue, Mar 10 | 9:00 AM-10:30 AM"
    assert format_window(start, zone_name="UTC") == "Tue, Mar 10 | 1:00 PM"


def test_customer_links():
    assert build_reschedule_url("appt-1", "tok", site_url="https://wash.example/") == (
        "https://wash.example/schedule?appointmentId=appt-1&token=tok"
    )
    assert build_quote_url("share-1", site_url="https://wash.example") == "https://wash.example/quote/share-1"


# =============================================================================
# Geo and duration
# =============================================================================


def test_parse_coord():
    assert parse_coord(Decimal("35.7796")) == pytest.approx(35.7796)
    assert parse_coord("nan") is None
    assert parse_coord("north") is None
    assert parse_coord(None) is None


def test_distance():
    # Downtown Raleigh to downtown Durham
    assert haversine_miles(35.7796, -78.6382, 35.9940, -78.8986) == pytest.approx(20.6, abs=1.0)
    assert distance_miles(35.7796, -78.6382, None, -78.8986) is None


@pytest.mark.parametrize(
    "services, add_ons, expected",
    [
        ([], [], 60),
        (["gutter"], [], 60),
        (["house-wash"], [], 150),
        (["house-wash", "driveway"], [], 216),
        (["house-wash", "driveway"], ["sealant"], 231),
        (["house-wash", "roof", "deck", "windows"], ["sealant", "rust-treatment"], 360),
    ],
)
def test_estimate_duration(services, add_ons, expected):
    assert estimate_duration_minutes(services, add_ons) == expected


def test_parse_suggestion_time():
    assert parse_suggestion_time("2026-03-05T14:00:00Z") == datetime(2026, 3, 5, 14, tzinfo=timezone.utc)
    assert parse_suggestion_time("2026-03-05T09:00:00-05:00") == datetime(2026, 3, 5, 14, tzinfo=timezone.utc)
    assert parse_suggestion_time("2026-03-05T14:00:00") == datetime(2026, 3, 5, 14, tzinfo=timezone.utc)
    assert parse_suggestion_time("tomorrow") is None
    assert parse_suggestion_time(None) is None


# =============================================================================
# Fallback heuristic
# =============================================================================


def test_fallback_without_slots():
    """Three afternoon fillers on the following days."""
    suggestions = build_fallback_suggestions([], 90, NOW)

    assert [s.start_at for s in suggestions] == [
        datetime(2026, 3, d, 14, 0, tzinfo=timezone.utc) for d in (3, 4, 5)
    ]
    assert all(s.reasoning == "Open slot with no conflicting jobs nearby." for s in suggestions)


def test_fallback_prefers_close_jobs_one_per_day():
    day_one = datetime(2026, 3, 3, 15, tzinfo=timezone.utc)
    slots = [
        _slot(day_one, 12.0),
        _slot(day_one + timedelta(hours=2), 1.5),
        _slot(datetime(2026, 3, 6, 13, tzinfo=timezone.utc), 4.25),
        _slot(datetime(2026, 3, 7, 13, tzinfo=timezone.utc), None),
    ]

    suggestions = build_fallback_suggestions(slots, 60, NOW)

    assert [s.start_at for s in suggestions] == [
        day_one + timedelta(hours=2),
        datetime(2026, 3, 6, 13, tzinfo=timezone.utc),
        datetime(2026, 3, 7, 13, tzinfo=timezone.utc),
    ]
    assert suggestions[0].reasoning == "Pairs with a job only 1.5 mi away."
    assert suggestions[2].reasoning == "Pairs with another job on this day."


def test_fallback_fillers_skip_used_days():
    slots = [_slot(datetime(2026, 3, 3, 15, tzinfo=timezone.utc), 2.0)]

    suggestions = build_fallback_suggestions(slots, 60, NOW)

    days = [s.start_at.date() for s in suggestions]
    assert len(set(days)) == 3
    assert suggestions[1].start_at == datetime(2026, 3, 4, 14, tzinfo=timezone.utc)


# =============================================================================
# Engine
# =============================================================================


@pytest.fixture
def accepted_quote(db_session, sample_contact, sample_property):
    service = QuoteService(db_session)
    quote = service.create_quote(
        sample_contact.id, sample_property.id, {"zone_id": "zone-core", "selected_services": ["house-wash"]}
    )
    service.record_decision(quote.id, "accepted")
    db_session.commit()
    return quote


@pytest.fixture
def nearby_job(db_session):
    neighbor = Contact(first_name="Lee", last_name="Moss", email="lee@example.com")
    db_session.add(neighbor)
    db_session.flush()
    prop = Property(
        contact_id=neighbor.id,
        address_line1="9 Oak Lane",
        city="Raleigh",
        state="NC",
        postal_code="27603",
        lat=Decimal("35.770000"),
        lng=Decimal("-78.640000"),
    )
    db_session.add(prop)
    db_session.commit()
    start = datetime.now(timezone.utc).replace(minute=0, second=0, microsecond=0) + timedelta(days=2)
    return make_appointment(db_session, neighbor, prop, start_at=start, type="job", status="confirmed")


def test_engine_requires_accepted_quote(db_session, sample_contact, sample_property):
    service = QuoteService(db_session)
    quote = service.create_quote(
        sample_contact.id, sample_property.id, {"zone_id": "zone-core", "selected_services": ["deck"]}
    )
    engine = SchedulingSuggestionEngine(db_session)

    with pytest.raises(ConflictError):
        engine.suggest_windows(quote.id)
    with pytest.raises(NotFoundError):
        engine.suggest_windows("missing")


def test_engine_fallback_uses_nearby_job(db_session, accepted_quote, nearby_job):
    result = SchedulingSuggestionEngine(db_session).suggest_windows(accepted_quote.id)

    assert result.used_fallback is True
    assert result.location_missing is False
    assert result.candidates_considered == 1
    assert result.duration_minutes == 150
    assert result.suggestions[0].start_at.replace(tzinfo=timezone.utc) == nearby_job.start_at
    assert len(result.suggestions) == 3
    assert set(result.to_dict()) == {"suggestions", "meta"}


def test_engine_uses_ranker(db_session, accepted_quote, nearby_job):
    ranker = MagicMock()
    ranker.rank_windows.return_value = [
        {"window": "Thu AM", "reasoning": "Next to Oak Lane", "start_at": "2030-01-03T14:00:00Z"},
        {"reasoning": "no time"},
        "garbage",
    ]

    result = SchedulingSuggestionEngine(db_session, ranker=ranker).suggest_windows(accepted_quote.id)

    assert result.used_fallback is False
    assert [s.window for s in result.suggestions] == ["Thu AM"]
    target, duration, candidates = ranker.rank_windows.call_args.args
    assert target["line1"] == "42 Maple Court"
    assert duration == 150
    assert candidates[0]["address"]["line1"] == "9 Oak Lane"
    assert candidates[0]["distance_miles"] is not None


@pytest.mark.parametrize("reply", [None, [], [{"window": "x", "start_at": "soon"}]])
def test_engine_falls_back_on_unusable_ranker_reply(db_session, accepted_quote, reply):
    ranker = MagicMock()
    ranker.rank_windows.return_value = reply

    result = SchedulingSuggestionEngine(db_session, ranker=ranker).suggest_windows(accepted_quote.id)

    assert result.used_fallback is True
    assert len(result.suggestions) == 3


def test_engine_falls_back_when_ranker_raises(db_session, accepted_quote):
    ranker = MagicMock()
    ranker.rank_windows.side_effect = RuntimeError("provider exploded")

    result = SchedulingSuggestionEngine(db_session, ranker=ranker).suggest_windows(accepted_quote.id)

    assert result.used_fallback is True


def test_engine_falls_back_when_ranker_times_out(db_session, accepted_quote):
    release = threading.Event()

    def slow_rank(target, duration, candidates):
        release.wait(timeout=5)
        return [{"window": "late", "start_at": "2030-01-03T14:00:00Z"}]

    ranker = MagicMock()
    ranker.rank_windows.side_effect = slow_rank
    engine = SchedulingSuggestionEngine(
        db_session, ranker=ranker, clock=lambda: NOW, ranker_timeout_seconds=0.05
    )

    try:
        result = engine.suggest_windows(accepted_quote.id)
    finally:
        release.set()

    assert result.used_fallback is True
    assert result.to_dict()["meta"]["used_fallback"] is True
    assert [s.start_at for s in result.suggestions] == [
        datetime(2026, 3, d, 14, 0, tzinfo=timezone.utc) for d in (3, 4, 5)
    ]
    assert len({s.start_at.date() for s in result.suggestions}) == 3


def test_engine_skips_ranker_without_location(db_session, accepted_quote, sample_property):
    sample_property.lat = None
    db_session.commit()
    ranker = MagicMock()

    result = SchedulingSuggestionEngine(db_session, ranker=ranker).suggest_windows(accepted_quote.id)

    assert result.location_missing is True
    assert result.used_fallback is True
    ranker.rank_windows.assert_not_called()


# =============================================================================
# LLM ranker
# =============================================================================


def test_extract_json():
    assert extract_json('Sure! [{"start_at": "x"}] Hope that helps') == [{"start_at": "x"}]
    assert extract_json('{"suggestions": [1]}') == {"suggestions": [1]}
    assert extract_json("no json here") is None
    assert extract_json("") is None


def test_ranker_disabled_returns_none():
    client = MagicMock(spec=LLMClient)
    ranker = LLMWindowRanker(client=client, enabled=False)

    assert ranker.rank_windows({}, 60, []) is None
    client.generate_json.assert_not_called()


def test_ranker_unwraps_suggestions():
    client = MagicMock(spec=LLMClient)
    client.is_available.return_value = True
    client.generate_json.return_value = {"suggestions": [{"start_at": "a"}, "junk", {"start_at": "b"}]}

    ranked = LLMWindowRanker(client=client, enabled=True).rank_windows({"line1": "x"}, 60, [])

    assert ranked == [{"start_at": "a"}, {"start_at": "b"}]


def test_ranker_swallows_llm_errors():
    client = MagicMock(spec=LLMClient)
    client.is_available.return_value = True
    client.generate_json.side_effect = LLMError("rate limited")

    assert LLMWindowRanker(client=client, enabled=True).rank_windows({}, 60, []) is None


def test_ranker_shares_llm_client_until_reset():
    shared = LLMWindowRanker(enabled=True).client

    assert shared is get_llm_client()
    assert LLMWindowRanker(enabled=True).client is shared

    reset_llm_client()

    assert LLMWindowRanker(enabled=True).client is not shared
