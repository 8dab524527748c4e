"""
Price catalog: zones, service rates, add-ons and bundles.

All amounts are Decimal dollars. Ids are the public identifiers used by the
quote builder and the web form.
"""
from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal
from typing import Dict, Optional, Tuple


# =============================================================================
# Types
# =============================================================================


@dataclass(frozen=True)
class Zone:
    """A pricing region with its own travel fee."""
    id: str
    name: str
    travel_fee: Decimal


@dataclass(frozen=True)
class ServiceRate:
    """
    Rate card for one service.

    Either ``flat_rate`` is set, or the price is
    ``max(base_price, base_price + area * price_per_sqft)``.
    """
    id: str
    label: str
    base_price: Decimal = Decimal("0")
    price_per_sqft: Decimal = Decimal("0")
    flat_rate: Optional[Decimal] = None
    minimum_sqft: int = 0
    includes_travel: bool = False
    duration_minutes: int = 60


@dataclass(frozen=True)
class AddOn:
    """Optional flat-priced supplement."""
    id: str
    name: str
    price: Decimal


@dataclass(frozen=True)
class Bundle:
    """Percent discount when every listed service is selected."""
    id: str
    label: str
    services: Tuple[str, ...]
    discount_percentage: Decimal


# =============================================================================
# Catalog
# =============================================================================

DEFAULT_ZONE_ID = "zone-core"
DEFAULT_DEPOSIT_RATE = Decimal("0.2")

# Concrete surfaces are priced per square foot and replace the driveway line
CONCRETE_RATE_PER_SQFT = Decimal("0.18")
CONCRETE_SURFACE_KINDS = ("driveway", "walkway", "patio", "pool_deck", "other")
MAX_CONCRETE_ENTRIES = 3

# Scheduling estimates
DEFAULT_DURATION_MINUTES = 60
ADD_ON_DURATION_MINUTES = 15
MAX_DURATION_MINUTES = 360

ZONES: Dict[str, Zone] = {
    zone.id: zone
    for zone in (
        Zone("zone-core", "Core Service Area", Decimal("25")),
        Zone("zone-extended", "Extended Service Area", Decimal("45")),
        Zone("zone-remote", "Remote Service Area", Decimal("75")),
    )
}

SERVICE_RATES: Dict[str, ServiceRate] = {
    rate.id: rate
    for rate in (
        ServiceRate("house-wash", "House Wash", Decimal("350"), Decimal("0.12"), duration_minutes=150),
        ServiceRate("driveway", "Driveway & Walkway Cleaning", Decimal("150"), Decimal("0.18"), duration_minutes=90),
        ServiceRate("roof", "Roof Soft Wash", Decimal("450"), Decimal("0.20"), duration_minutes=180),
        ServiceRate("deck", "Deck & Patio Cleaning", Decimal("200"), Decimal("0.50"), duration_minutes=120),
        ServiceRate("windows", "Exterior Window Cleaning", flat_rate=Decimal("225"), duration_minutes=90),
        ServiceRate("gutter", "Gutter Cleaning", flat_rate=Decimal("180"), duration_minutes=60),
        ServiceRate(
            "maintenance-plan",
            "Seasonal Maintenance Plan",
            flat_rate=Decimal("199"),
            includes_travel=True,
            duration_minutes=90,
        ),
    )
}

ADD_ONS: Dict[str, AddOn] = {
    add_on.id: add_on
    for add_on in (
        AddOn("gutter-brightening", "Gutter Face Brightening", Decimal("75")),
        AddOn("window-rinse", "Window Rinse", Decimal("60")),
        AddOn("rust-treatment", "Rust Stain Treatment", Decimal("95")),
        AddOn("sealant", "Concrete Sealant", Decimal("120")),
    )
}

BUNDLES: Tuple[Bundle, ...] = (
    Bundle("curb-appeal", "Curb Appeal Bundle", ("house-wash", "driveway"), Decimal("10")),
    Bundle("top-to-bottom", "Top-to-Bottom Bundle", ("house-wash", "roof", "gutter"), Decimal("15")),
)


def resolve_zone(zone_id: Optional[str]) -> Zone:
    """Look up a zone, falling back to the default zone for unknown ids."""
    return ZONES.get(zone_id or "", ZONES[DEFAULT_ZONE_ID])


def resolve_service(service_id: str) -> Optional[ServiceRate]:
    return SERVICE_RATES.get(service_id)


def resolve_add_on(add_on_id: str) -> Optional[AddOn]:
    return ADD_ONS.get(add_on_id)


__all__ = [
    "Zone",
    "ServiceRate",
    "AddOn",
    "Bundle",
    "ZONES",
    "SERVICE_RATES",
    "ADD_ONS",
    "BUNDLES",
    "DEFAULT_ZONE_ID",
    "DEFAULT_DEPOSIT_RATE",
    "CONCRETE_RATE_PER_SQFT",
    "CONCRETE_SURFACE_KINDS",
    "MAX_CONCRETE_ENTRIES",
    "DEFAULT_DURATION_MINUTES",
    "ADD_ON_DURATION_MINUTES",
    "MAX_DURATION_MINUTES",
    "resolve_zone",
    "resolve_service",
    "resolve_add_on",
]
