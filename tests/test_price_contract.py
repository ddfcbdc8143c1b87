"""Tests for canonical price resolution and role-based visibility."""

from decimal import Decimal

import pytest

from haulbroker.core.errors import ValidationFailedError
from haulbroker.models.freight import PricingType
from haulbroker.services.price_contract import PriceTerms, ViewerRole, agreed_price, resolve_price
from haulbroker.utils.money import format_brl, quantize_money
from haulbroker.utils.units import kg_to_tonnes, to_decimal


def _make_terms(pricing_type: PricingType = PricingType.FIXED, **fields) -> PriceTerms:
    return PriceTerms(pricing_type=pricing_type, **fields)


class TestPrimaryValue:
    def test_fixed_is_the_flat_price(self) -> None:
        display = resolve_price(_make_terms(price=Decimal("1000")))
        assert display.primary_value == Decimal("1000.00")
        assert display.primary_label == "R$ 1.000,00"

    def test_per_km_multiplies_distance(self) -> None:
        terms = _make_terms(PricingType.PER_KM, price_per_km=Decimal("2.5"), distance_km=Decimal("400"))
        display = resolve_price(terms)
        assert display.primary_value == Decimal("1000.00")
        assert display.secondary_label == "R$ 2,50/km × 400 km"

    def test_per_ton_converts_kilograms(self) -> None:
        terms = _make_terms(PricingType.PER_TON, price_per_ton=Decimal("40"), weight=Decimal("27000"))
        display = resolve_price(terms)
        assert display.primary_value == Decimal("1080.00")
        assert display.breakdown["weight_tonnes"] == "27"

    def test_fleet_price_is_never_divided(self) -> None:
        terms = _make_terms(price=Decimal("900"), required_trucks=3)
        display = resolve_price(terms)
        assert display.primary_value == Decimal("900.00")
        assert display.secondary_label.endswith("· 3 carretas")
        assert agreed_price(terms) == Decimal("900.00")


class TestVisibility:
    @pytest.mark.parametrize("pricing_type,fields", [
        (PricingType.FIXED, {"price": Decimal("500")}),
        (PricingType.PER_KM, {"price_per_km": Decimal("3"), "distance_km": Decimal("100")}),
        (PricingType.PER_TON, {"price_per_ton": Decimal("20"), "weight": Decimal("30000")}),
    ])
    def test_company_sees_only_primary(self, pricing_type, fields) -> None:
        display = resolve_price(_make_terms(pricing_type, **fields), ViewerRole.COMPANY)
        assert display.secondary_label is None
        assert display.breakdown is None
        assert display.primary_label.startswith("R$ ")

    def test_carrier_sees_breakdown(self) -> None:
        display = resolve_price(_make_terms(price=Decimal("500")), ViewerRole.CARRIER)
        assert display.secondary_label == "Valor fixo por carreta"
        assert display.breakdown == {"price": "500.00"}


class TestIncompleteTerms:
    def test_per_km_without_distance(self) -> None:
        with pytest.raises(ValidationFailedError):
            resolve_price(_make_terms(PricingType.PER_KM, price_per_km=Decimal("2")))

    def test_fixed_without_price(self) -> None:
        with pytest.raises(ValidationFailedError):
            resolve_price(_make_terms())

    def test_non_positive_rate(self) -> None:
        with pytest.raises(ValidationFailedError):
            resolve_price(_make_terms(PricingType.PER_TON, price_per_ton=Decimal("0"), weight=Decimal("1000")))


class TestMoney:
    def test_quantize_half_up(self) -> None:
        assert quantize_money(Decimal("10.005")) == Decimal("10.01")

    def test_format_brl(self) -> None:
        assert format_brl(Decimal("1234.5")) == "R$ 1.234,50"
        assert format_brl(Decimal("-7")) == "-R$ 7,00"
        assert format_brl(Decimal("1234567.891")) == "R$ 1.234.567,89"


class TestUnits:
    def test_to_decimal_avoids_float_noise(self) -> None:
        assert to_decimal(0.1) == Decimal("0.1")
        assert to_decimal(None) is None

    def test_kg_to_tonnes(self) -> None:
        assert kg_to_tonnes(27000) == Decimal("27")
        assert kg_to_tonnes("1500") == Decimal("1.5")
