"""
Regulatory minimum price (piso mínimo de frete) per truck.

    minimum = rate_per_km(category, axles, tier) * distance_km + fixed_charge(category, axles, tier)

rounded to cents. When the cargo category has no row for the axle/tier
combination the general-cargo row is used instead; when that is missing too
the floor is undefined and the freight is not floor-enforceable. The value is
per truck and is never divided by ``required_trucks``.
"""

from __future__ import annotations

import logging
import uuid
from decimal import Decimal
from typing import Optional

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from haulbroker.core.config import get_settings
from haulbroker.models.base import utcnow
from haulbroker.models.freight import Freight
from haulbroker.models.pricing import CargoCategory, RegulatoryRate, TableTier, VehicleOwnership
from haulbroker.schemas.pricing import RateUpsert
from haulbroker.utils.money import quantize_money
from haulbroker.utils.units import Number, to_decimal

logger = logging.getLogger(__name__)
settings = get_settings()

GENERAL_CARGO = CargoCategory.CARGA_GERAL

CARGO_TO_CATEGORY: dict[str, CargoCategory] = {
    "graos_soja": CargoCategory.GRANEL_SOLIDO,
    "graos_milho": CargoCategory.GRANEL_SOLIDO,
    "graos_trigo": CargoCategory.GRANEL_SOLIDO,
    "graos_arroz": CargoCategory.GRANEL_SOLIDO,
    "adubo_fertilizante": CargoCategory.GRANEL_SOLIDO,
    "calcario": CargoCategory.GRANEL_SOLIDO,
    "farelo_soja": CargoCategory.GRANEL_SOLIDO,
    "acucar": CargoCategory.GRANEL_SOLIDO,
    "cafe": CargoCategory.GRANEL_SOLIDO,
    "sementes_bags": CargoCategory.NEOGRANEL,
    "defensivos_agricolas": CargoCategory.PERIGOSA_CARGA_GERAL,
    "combustivel": CargoCategory.GRANEL_LIQUIDO,
    "combustivel_diesel": CargoCategory.GRANEL_LIQUIDO,
    "racao_animal": CargoCategory.CARGA_GERAL,
    "fardos_algodao": CargoCategory.CARGA_GERAL,
    "maquinas_agricolas": CargoCategory.CARGA_GERAL,
    "equipamentos": CargoCategory.CARGA_GERAL,
    "madeira": CargoCategory.CARGA_GERAL,
    "celulose": CargoCategory.CARGA_GERAL,
    "hortifruti": CargoCategory.CARGA_GERAL,
    "carnes": CargoCategory.CARGA_GERAL,
    "laticinios": CargoCategory.CARGA_GERAL,
}


def resolve_cargo_category(cargo_type: str) -> CargoCategory:
    """Map a cargo type to its regulatory category; unknown types are general cargo."""
    key = (cargo_type or "").strip().lower()
    try:
        return CargoCategory(key)
    except ValueError:
        return CARGO_TO_CATEGORY.get(key, GENERAL_CARGO)


def resolve_table_tier(high_performance: bool, ownership: VehicleOwnership | str) -> TableTier:
    owned = VehicleOwnership(ownership) == VehicleOwnership.OWN
    if high_performance:
        return TableTier.D if owned else TableTier.C
    return TableTier.B if owned else TableTier.A


def compute_minimum_price(rate_per_km: Number, fixed_charge: Number, distance_km: Number) -> Decimal:
    """Pure floor computation for one truck."""
    raw = to_decimal(rate_per_km) * to_decimal(distance_km) + to_decimal(fixed_charge)
    return quantize_money(raw)


class PricingFloorService:
    def __init__(self, db: AsyncSession) -> None:
        self.db = db

    async def _rate_row(self, category: str, axles: int, tier: str) -> Optional[RegulatoryRate]:
        result = await self.db.execute(
            select(RegulatoryRate).where(
                RegulatoryRate.cargo_category == category,
                RegulatoryRate.axles == axles,
                RegulatoryRate.table_tier == tier,
            )
        )
        return result.scalar_one_or_none()

    async def find_rate(
        self, category: CargoCategory, axles: int, tier: TableTier
    ) -> Optional[RegulatoryRate]:
        rate = await self._rate_row(category.value, axles, tier.value)
        if rate is None and category != GENERAL_CARGO:
            rate = await self._rate_row(GENERAL_CARGO.value, axles, tier.value)
            if rate is not None:
                logger.info(
                    "price_floor_general_cargo_fallback",
                    extra={"category": category.value, "axles": axles, "tier": tier.value},
                )
        return rate

    async def quote(
        self,
        cargo_type: str,
        axles: int,
        tier: TableTier,
        distance_km: Number,
    ) -> Optional[Decimal]:
        category = resolve_cargo_category(cargo_type)
        rate = await self.find_rate(category, axles, tier)
        if rate is None:
            return None
        return compute_minimum_price(rate.rate_per_km, rate.fixed_charge, distance_km)

    async def floor_for_freight(self, freight: Freight) -> Optional[Decimal]:
        """Per-truck floor for a freight, or None when it cannot be enforced."""
        if freight.distance_km is None or to_decimal(freight.distance_km) <= 0:
            return None
        axles = freight.vehicle_axles or settings.default_vehicle_axles
        tier = TableTier(freight.table_tier) if freight.table_tier else resolve_table_tier(
            freight.high_performance, freight.vehicle_ownership
        )
        floor = await self.quote(freight.cargo_type, axles, tier, freight.distance_km)
        if floor is None:
            logger.warning(
                "price_floor_undefined",
                extra={"freight_id": freight.id, "cargo_type": freight.cargo_type, "axles": axles, "tier": tier.value},
            )
        return floor

    async def upsert_rate(self, payload: RateUpsert) -> RegulatoryRate:
        rate = await self._rate_row(payload.cargo_category.value, payload.axles, payload.table_tier.value)
        if rate is None:
            rate = RegulatoryRate(
                id=str(uuid.uuid4()),
                cargo_category=payload.cargo_category.value,
                axles=payload.axles,
                table_tier=payload.table_tier.value,
            )
            self.db.add(rate)
        rate.rate_per_km = payload.rate_per_km
        rate.fixed_charge = payload.fixed_charge
        rate.updated_at = utcnow()
        await self.db.commit()
        logger.info(
            "regulatory_rate_upserted",
            extra={
                "category": rate.cargo_category,
                "axles": rate.axles,
                "tier": rate.table_tier,
                "rate_per_km": str(rate.rate_per_km),
                "fixed_charge": str(rate.fixed_charge),
            },
        )
        return rate

    async def latest_rate_change(self):
        result = await self.db.execute(select(func.max(RegulatoryRate.updated_at)))
        return result.scalar_one_or_none()
