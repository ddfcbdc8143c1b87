from decimal import Decimal
from typing import Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from haulbroker.core.config import get_settings
from haulbroker.core.db import get_db
from haulbroker.models.pricing import TableTier, VehicleOwnership
from haulbroker.schemas.pricing import FloorQuote, RateResponse, RateUpsert, RecalculationReport, RepairReport
from haulbroker.services.price_maintenance import PriceMaintenanceService
from haulbroker.services.pricing_floor import PricingFloorService, resolve_cargo_category, resolve_table_tier

router = APIRouter()
settings = get_settings()


async def _floors(db: AsyncSession = Depends(get_db)) -> PricingFloorService:
    return PricingFloorService(db)


async def _maintenance(db: AsyncSession = Depends(get_db)) -> PriceMaintenanceService:
    return PriceMaintenanceService(db)


@router.put("/rates", response_model=RateResponse)
async def upsert_rate(payload: RateUpsert, service: PricingFloorService = Depends(_floors)) -> RateResponse:
    return RateResponse.model_validate(await service.upsert_rate(payload))


@router.get("/floor", response_model=FloorQuote)
async def quote_floor(
    cargo_type: str,
    distance_km: Decimal = Query(..., gt=0),
    axles: Optional[int] = Query(None, ge=2, le=9),
    table_tier: Optional[TableTier] = None,
    high_performance: bool = False,
    vehicle_ownership: VehicleOwnership = VehicleOwnership.THIRD_PARTY,
    service: PricingFloorService = Depends(_floors),
) -> FloorQuote:
    axles = axles or settings.default_vehicle_axles
    tier = table_tier or resolve_table_tier(high_performance, vehicle_ownership)
    floor = await service.quote(cargo_type, axles, tier, distance_km)
    return FloorQuote(
        cargo_type=cargo_type,
        cargo_category=resolve_cargo_category(cargo_type),
        axles=axles,
        table_tier=tier,
        distance_km=distance_km,
        minimum_regulatory_price=floor,
        enforceable=floor is not None,
    )


@router.post("/recalculate", response_model=RecalculationReport)
async def recalculate_floors(
    limit: Optional[int] = Query(None, ge=1, le=10000),
    service: PriceMaintenanceService = Depends(_maintenance),
) -> RecalculationReport:
    return await service.recalculate_floors(limit)


@router.post("/repair-agreed-prices", response_model=RepairReport)
async def repair_agreed_prices(service: PriceMaintenanceService = Depends(_maintenance)) -> RepairReport:
    return await service.repair_divided_agreed_prices()
