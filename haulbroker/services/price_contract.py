"""
Canonical price resolution for a freight.

The primary value is what a carrier or fleet operator is shown and what a
single truck is agreed at; it is always the full per-truck amount. The
secondary label and breakdown explain how the primary value was derived and
are withheld from fleet-operator (company) views.
"""

from __future__ import annotations

import enum
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Any, Dict, Optional

from haulbroker.core.errors import ValidationFailedError
from haulbroker.models.freight import PricingType
from haulbroker.utils.money import format_brl, quantize_money
from haulbroker.utils.units import Number, kg_to_tonnes, to_decimal


class ViewerRole(str, enum.Enum):
    CARRIER = "carrier"
    COMPANY = "company"


@dataclass(frozen=True)
class PriceTerms:
    pricing_type: PricingType
    price: Optional[Decimal] = None
    price_per_km: Optional[Decimal] = None
    price_per_ton: Optional[Decimal] = None
    required_trucks: int = 1
    weight: Optional[Decimal] = None  # kg
    distance_km: Optional[Decimal] = None

    @classmethod
    def from_freight(cls, freight) -> "PriceTerms":
        return cls(
            pricing_type=PricingType(freight.pricing_type),
            price=to_decimal(freight.price),
            price_per_km=to_decimal(freight.price_per_km),
            price_per_ton=to_decimal(freight.price_per_ton),
            required_trucks=freight.required_trucks,
            weight=to_decimal(freight.weight),
            distance_km=to_decimal(freight.distance_km),
        )


@dataclass
class PriceDisplay:
    pricing_type: PricingType
    primary_value: Decimal
    primary_label: str
    secondary_label: Optional[str] = None
    breakdown: Optional[Dict[str, Any]] = field(default=None)


def _require(value: Optional[Number], name: str, pricing_type: PricingType) -> Decimal:
    if value is None or to_decimal(value) <= 0:
        raise ValidationFailedError(
            f"{pricing_type.value} pricing requires a positive {name}",
            details={"pricing_type": pricing_type.value, "field": name},
        )
    return to_decimal(value)


def agreed_price(terms: PriceTerms) -> Decimal:
    """Internal per-truck price implied by the terms."""
    return resolve_price(terms, ViewerRole.CARRIER).primary_value


def resolve_price(terms: PriceTerms, viewer: ViewerRole = ViewerRole.CARRIER) -> PriceDisplay:
    pricing_type = terms.pricing_type

    if pricing_type == PricingType.FIXED:
        price = _require(terms.price, "price", pricing_type)
        primary = quantize_money(price)
        secondary = "Valor fixo por carreta"
        breakdown: Dict[str, Any] = {"price": str(primary)}
    elif pricing_type == PricingType.PER_KM:
        rate = _require(terms.price_per_km, "price_per_km", pricing_type)
        distance = _require(terms.distance_km, "distance_km", pricing_type)
        primary = quantize_money(rate * distance)
        secondary = f"{format_brl(rate)}/km × {distance.normalize():f} km"
        breakdown = {"price_per_km": str(rate), "distance_km": str(distance)}
    elif pricing_type == PricingType.PER_TON:
        rate = _require(terms.price_per_ton, "price_per_ton", pricing_type)
        tonnes = kg_to_tonnes(_require(terms.weight, "weight", pricing_type))
        primary = quantize_money(rate * tonnes)
        secondary = f"{format_brl(rate)}/ton × {tonnes.normalize():f} t"
        breakdown = {"price_per_ton": str(rate), "weight_tonnes": str(tonnes)}
    else:  # pragma: no cover - closed enum
        raise ValidationFailedError(f"Unknown pricing type {pricing_type}")

    if terms.required_trucks > 1:
        breakdown["required_trucks"] = terms.required_trucks
        secondary = f"{secondary} · {terms.required_trucks} carretas"

    display = PriceDisplay(
        pricing_type=pricing_type,
        primary_value=primary,
        primary_label=format_brl(primary),
    )
    if viewer == ViewerRole.CARRIER:
        display.secondary_label = secondary
        display.breakdown = breakdown
    return display
