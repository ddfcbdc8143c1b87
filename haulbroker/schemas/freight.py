from datetime import datetime
from decimal import Decimal
from typing import Literal, Optional

from pydantic import BaseModel, Field, model_validator

from haulbroker.models.freight import FreightStatus, PricingType, ProposalStatus
from haulbroker.models.pricing import VehicleOwnership


class FreightCreate(BaseModel):
    cargo_type: str
    required_trucks: int = Field(1, ge=1)
    pricing_type: PricingType = PricingType.FIXED
    price: Optional[Decimal] = Field(None, gt=0)
    price_per_km: Optional[Decimal] = Field(None, gt=0)
    price_per_ton: Optional[Decimal] = Field(None, gt=0)
    weight: Optional[Decimal] = Field(None, gt=0)  # kg
    distance_km: Optional[Decimal] = Field(None, gt=0)
    vehicle_axles: Optional[int] = Field(None, ge=2, le=9)
    high_performance: bool = False
    vehicle_ownership: VehicleOwnership = VehicleOwnership.THIRD_PARTY

    @model_validator(mode="after")
    def pricing_fields_present(self) -> "FreightCreate":
        if self.pricing_type == PricingType.FIXED and self.price is None:
            raise ValueError("FIXED pricing requires price")
        if self.pricing_type == PricingType.PER_KM and (self.price_per_km is None or self.distance_km is None):
            raise ValueError("PER_KM pricing requires price_per_km and distance_km")
        if self.pricing_type == PricingType.PER_TON and (self.price_per_ton is None or self.weight is None):
            raise ValueError("PER_TON pricing requires price_per_ton and weight")
        return self


class FreightResponse(BaseModel):
    id: str
    producer_id: str
    cargo_type: str
    cargo_category: Optional[str]
    required_trucks: int
    accepted_trucks: int
    remaining_slots: int
    status: FreightStatus
    effective_status: Optional[FreightStatus] = None
    driver_id: Optional[str]
    pricing_type: PricingType
    price: Optional[Decimal]
    price_per_km: Optional[Decimal]
    price_per_ton: Optional[Decimal]
    weight: Optional[Decimal]
    distance_km: Optional[Decimal]
    vehicle_axles: Optional[int]
    table_tier: Optional[str]
    minimum_regulatory_price: Optional[Decimal]
    floor_computed_at: Optional[datetime]
    cancelled_at: Optional[datetime] = None
    cancellation_reason: Optional[str] = None
    created_at: datetime

    model_config = {"from_attributes": True}


class FreightCancel(BaseModel):
    reason: Optional[str] = Field(None, max_length=500)


class EffectiveStatusResponse(BaseModel):
    freight_id: str
    required_trucks: int
    accepted_trucks: int
    status: FreightStatus


class PriceDisplayResponse(BaseModel):
    freight_id: str
    viewer: Literal["carrier", "company"]
    pricing_type: PricingType
    primary_value: Decimal
    primary_label: str
    secondary_label: Optional[str] = None
    breakdown: Optional[dict] = None


class ProposalCreate(BaseModel):
    proposed_price: Decimal
    message: Optional[str] = Field(None, max_length=500)


class ProposalResponse(BaseModel):
    id: str
    freight_id: str
    driver_id: str
    proposed_price: Decimal
    message: Optional[str]
    status: ProposalStatus
    resolved_at: Optional[datetime]
    created_at: datetime

    model_config = {"from_attributes": True}
