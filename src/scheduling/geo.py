"""Great-circle distance helpers."""
from __future__ import annotations

import math
from decimal import Decimal
from typing import Optional, Union

EARTH_RADIUS_MILES = 3958.8

Number = Union[float, int, Decimal, str]


def parse_coord(value: Optional[Number]) -> Optional[float]:
    """Coerce a stored coordinate to float; None for missing or non-finite values."""
    if value is None:
        return None
    try:
        numeric = float(value)
    except (TypeError, ValueError):
        return None
    return numeric if math.isfinite(numeric) else None


def haversine_miles(a_lat: float, a_lng: float, b_lat: float, b_lng: float) -> float:
    """Distance in miles between two lat/lng points."""
    lat1 = math.radians(a_lat)
    lat2 = math.radians(b_lat)
    d_lat = math.radians(b_lat - a_lat)
    d_lng = math.radians(b_lng - a_lng)

    h = math.sin(d_lat / 2) ** 2 + math.cos(lat1) * math.cos(lat2) * math.sin(d_lng / 2) ** 2
    return EARTH_RADIUS_MILES * 2 * math.atan2(math.sqrt(h), math.sqrt(1 - h))


def distance_miles(
    target_lat: Optional[Number],
    target_lng: Optional[Number],
    other_lat: Optional[Number],
    other_lng: Optional[Number],
) -> Optional[float]:
    """Haversine distance, or None unless all four coordinates are present."""
    coords = [parse_coord(v) for v in (target_lat, target_lng, other_lat, other_lng)]
    if any(c is None for c in coords):
        return None
    return haversine_miles(*coords)
