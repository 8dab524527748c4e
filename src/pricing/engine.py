"""
Deterministic quote pricing.

``calculate_breakdown`` is a pure function of its input: no I/O, no clock,
no settings. The same request always produces the same breakdown.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from decimal import Decimal
from typing import Any, Dict, List, Literal, Optional, Union

from pydantic import BaseModel, Field, ValidationError as PydanticValidationError, field_validator

from core.exceptions import ValidationError
from core.logging_config import get_logger
from core.utils import to_money
from pricing.catalog import (
    BUNDLES,
    CONCRETE_RATE_PER_SQFT,
    DEFAULT_DEPOSIT_RATE,
    MAX_CONCRETE_ENTRIES,
    ServiceRate,
    resolve_add_on,
    resolve_service,
    resolve_zone,
)

LOGGER = get_logger(__name__)

ZERO = Decimal("0")
HUNDRED = Decimal("100")


# =============================================================================
# Input
# =============================================================================


class ConcreteSurface(BaseModel):
    """One measured concrete surface."""
    kind: Literal["driveway", "walkway", "patio", "pool_deck", "other"]
    square_feet: Decimal = Field(..., gt=0)


class ManualDiscount(BaseModel):
    """Staff-entered discount: a percent of subtotal or a flat amount."""
    type: Literal["percent", "amount"]
    value: Decimal = Field(..., ge=0)


class QuoteRequest(BaseModel):
    """Pricing input for one quote."""
    zone_id: str = ""
    selected_services: List[str] = Field(..., min_length=1)
    selected_add_ons: List[str] = Field(default_factory=list)
    surface_area: Optional[Decimal] = Field(None, gt=0)
    service_overrides: Dict[str, Decimal] = Field(default_factory=dict)
    concrete_surfaces: List[ConcreteSurface] = Field(default_factory=list, max_length=MAX_CONCRETE_ENTRIES)
    concrete_manual_amounts: List[Decimal] = Field(default_factory=list, max_length=MAX_CONCRETE_ENTRIES)
    manual_discount: Optional[ManualDiscount] = None
    apply_bundles: bool = False
    deposit_rate: Optional[Decimal] = Field(None, gt=0, le=1)

    @field_validator("selected_services")
    @classmethod
    def validate_services(cls, v: List[str]) -> List[str]:
        for service_id in v:
            if resolve_service(service_id) is None:
                raise ValueError(f"unknown service '{service_id}'")
        return v

    @field_validator("service_overrides")
    @classmethod
    def validate_overrides(cls, v: Dict[str, Decimal]) -> Dict[str, Decimal]:
        for service_id, amount in v.items():
            if amount <= 0:
                raise ValueError(f"override for '{service_id}' must be positive")
        return v

    @field_validator("concrete_manual_amounts")
    @classmethod
    def validate_manual_amounts(cls, v: List[Decimal]) -> List[Decimal]:
        if any(amount <= 0 for amount in v):
            raise ValueError("concrete amounts must be positive")
        return v


# =============================================================================
# Output
# =============================================================================


@dataclass(frozen=True)
class LineItem:
    """One row of a priced quote. Discounts carry negative amounts."""
    id: str
    label: str
    amount: Decimal
    category: str

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "label": self.label,
            "amount": float(self.amount),
            "category": self.category,
        }


@dataclass(frozen=True)
class Breakdown:
    """Priced quote. ``total == subtotal - discounts`` and ``deposit_due + balance_due == total``."""
    zone_id: str
    services_total: Decimal
    add_ons_total: Decimal
    travel_fee: Decimal
    subtotal: Decimal
    bundle_discount: Decimal
    manual_discount: Decimal
    discounts: Decimal
    total: Decimal
    deposit_rate: Decimal
    deposit_due: Decimal
    balance_due: Decimal
    line_items: List[LineItem] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "zone_id": self.zone_id,
            "services_total": float(self.services_total),
            "add_ons_total": float(self.add_ons_total),
            "travel_fee": float(self.travel_fee),
            "subtotal": float(self.subtotal),
            "bundle_discount": float(self.bundle_discount),
            "manual_discount": float(self.manual_discount),
            "discounts": float(self.discounts),
            "total": float(self.total),
            "deposit_rate": float(self.deposit_rate),
            "deposit_due": float(self.deposit_due),
            "balance_due": float(self.balance_due),
            "line_items": [item.to_dict() for item in self.line_items],
        }


# =============================================================================
# Calculation
# =============================================================================


def parse_quote_request(data: Union[QuoteRequest, Dict[str, Any]]) -> QuoteRequest:
    """Validate raw input, converting pydantic errors into a ValidationError."""
    if isinstance(data, QuoteRequest):
        return data
    try:
        return QuoteRequest.model_validate(data)
    except PydanticValidationError as e:
        problems = [
            {"field": ".".join(str(part) for part in err["loc"]), "message": err["msg"]}
            for err in e.errors()
        ]
        raise ValidationError("Invalid quote request", details={"errors": problems}) from e


def compute_service_amount(rate: ServiceRate, surface_area: Optional[Decimal] = None) -> Decimal:
    """Price one service from its rate card."""
    if rate.flat_rate is not None:
        return to_money(rate.flat_rate)

    area = surface_area if surface_area is not None else Decimal(rate.minimum_sqft)
    variable = area * rate.price_per_sqft
    return to_money(max(rate.base_price, rate.base_price + variable))


def _concrete_override(request: QuoteRequest) -> Optional[Decimal]:
    # Structured surfaces win over manual amounts
    if request.concrete_surfaces:
        total = sum((s.square_feet * CONCRETE_RATE_PER_SQFT for s in request.concrete_surfaces), ZERO)
        return to_money(total)
    if request.concrete_manual_amounts:
        return to_money(sum(request.concrete_manual_amounts, ZERO))
    return None


def _bundle_discount(service_ids: List[str]) -> Decimal:
    selected = set(service_ids)
    discount = ZERO
    for bundle in BUNDLES:
        if not all(service_id in selected for service_id in bundle.services):
            continue
        bundle_total = sum(
            (compute_service_amount(resolve_service(s)) for s in bundle.services if resolve_service(s)),
            ZERO,
        )
        discount += bundle_total * bundle.discount_percentage / HUNDRED
    return to_money(discount)


def _manual_discount(discount: Optional[ManualDiscount], subtotal: Decimal) -> Decimal:
    if discount is None:
        return ZERO
    if discount.type == "percent":
        percent = min(discount.value, HUNDRED)
        return to_money(subtotal * percent / HUNDRED)
    return to_money(min(discount.value, subtotal))


def calculate_breakdown(
    data: Union[QuoteRequest, Dict[str, Any]],
    deposit_rate: Optional[Decimal] = None,
) -> Breakdown:
    """
    Price a quote request.

    Args:
        data: QuoteRequest or an equivalent dict.
        deposit_rate: Fallback deposit rate when the request does not carry one.

    Returns:
        Breakdown with every money field rounded half-up to cents.

    Raises:
        ValidationError: If the request shape is invalid. No partial result.
    """
    request = parse_quote_request(data)
    zone = resolve_zone(request.zone_id)
    line_items: List[LineItem] = []

    overrides: Dict[str, Decimal] = dict(request.service_overrides)
    concrete = _concrete_override(request) if "driveway" in request.selected_services else None
    # Driveway is only priced from concrete inputs, never from a direct override
    overrides.pop("driveway", None)
    if concrete is not None:
        overrides["driveway"] = concrete

    services_total = ZERO
    for service_id in request.selected_services:
        rate = resolve_service(service_id)
        if service_id in overrides:
            amount = to_money(overrides[service_id])
        else:
            amount = compute_service_amount(rate, request.surface_area)
        line_items.append(LineItem(f"service-{service_id}", rate.label, amount, "service"))
        services_total += amount

    add_ons_total = ZERO
    for add_on_id in request.selected_add_ons:
        add_on = resolve_add_on(add_on_id)
        if add_on is None:
            LOGGER.debug(f"Ignoring unknown add-on {add_on_id!r}")
            continue
        amount = to_money(add_on.price)
        line_items.append(LineItem(f"addon-{add_on.id}", add_on.name, amount, "add-on"))
        add_ons_total += amount

    includes_travel = any(resolve_service(s).includes_travel for s in request.selected_services)
    travel_fee = ZERO if includes_travel else to_money(zone.travel_fee)
    if travel_fee > 0:
        line_items.append(LineItem("travel-fee", f"{zone.name} travel", travel_fee, "travel"))

    subtotal = services_total + add_ons_total + travel_fee

    bundle_discount = ZERO
    if request.apply_bundles and not request.service_overrides and concrete is None:
        bundle_discount = min(_bundle_discount(request.selected_services), subtotal)
    manual_discount = min(_manual_discount(request.manual_discount, subtotal), subtotal - bundle_discount)
    discounts = bundle_discount + manual_discount

    if bundle_discount > 0:
        line_items.append(LineItem("bundle-discount", "Bundle Savings", -bundle_discount, "discount"))
    if manual_discount > 0:
        label = "Discount"
        if request.manual_discount.type == "percent":
            label = f"Discount ({min(request.manual_discount.value, HUNDRED).normalize():f}%)"
        line_items.append(LineItem("manual-discount", label, -manual_discount, "discount"))

    total = subtotal - discounts
    resolved_rate = Decimal(str(request.deposit_rate or deposit_rate or DEFAULT_DEPOSIT_RATE))
    deposit_due = to_money(total * resolved_rate)
    balance_due = max(total - deposit_due, ZERO)

    return Breakdown(
        zone_id=zone.id,
        services_total=services_total,
        add_ons_total=add_ons_total,
        travel_fee=travel_fee,
        subtotal=subtotal,
        bundle_discount=bundle_discount,
        manual_discount=manual_discount,
        discounts=discounts,
        total=total,
        deposit_rate=resolved_rate,
        deposit_due=deposit_due,
        balance_due=balance_due,
        line_items=line_items,
    )


__all__ = [
    "ConcreteSurface",
    "ManualDiscount",
    "QuoteRequest",
    "LineItem",
    "Breakdown",
    "parse_quote_request",
    "compute_service_amount",
    "calculate_breakdown",
]
