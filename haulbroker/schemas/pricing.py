from datetime import datetime
from decimal import Decimal
from typing import List, Optional

from pydantic import BaseModel, Field

from haulbroker.models.pricing import CargoCategory, TableTier


class RateUpsert(BaseModel):
    cargo_category: CargoCategory
    axles: int = Field(..., ge=2, le=9)
    table_tier: TableTier
    rate_per_km: Decimal = Field(..., ge=0)
    fixed_charge: Decimal = Field(..., ge=0)


class RateResponse(BaseModel):
    id: str
    cargo_category: str
    axles: int
    table_tier: str
    rate_per_km: Decimal
    fixed_charge: Decimal
    updated_at: datetime

    model_config = {"from_attributes": True}


class FloorQuote(BaseModel):
    cargo_type: str
    cargo_category: CargoCategory
    axles: int
    table_tier: TableTier
    distance_km: Decimal
    minimum_regulatory_price: Optional[Decimal] = None
    enforceable: bool


class RecalculationReport(BaseModel):
    examined: int = 0
    updated: int = 0
    unchanged: int = 0
    unenforceable: int = 0
    freight_ids: List[str] = Field(default_factory=list)


class AgreedPriceRepairItem(BaseModel):
    assignment_id: str
    freight_id: str
    previous_agreed_price: Decimal
    corrected_agreed_price: Decimal


class RepairReport(BaseModel):
    examined: int = 0
    repaired: int = 0
    skipped: int = 0
    items: List[AgreedPriceRepairItem] = Field(default_factory=list)
