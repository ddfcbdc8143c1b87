from datetime import datetime
from decimal import Decimal
from typing import Optional

from pydantic import BaseModel, Field

from haulbroker.models.freight import FreightStatus


class AssignmentResponse(BaseModel):
    id: str
    freight_id: str
    driver_id: str
    proposal_id: Optional[str]
    agreed_price: Decimal
    minimum_regulatory_price: Optional[Decimal]
    status: FreightStatus
    accepted_at: datetime
    delivery_reported_at: Optional[datetime]
    delivery_confirmed_at: Optional[datetime]
    delivery_confirmed_by: Optional[str]
    payment_confirmed_by_producer_at: Optional[datetime]
    payment_confirmed_by_driver_at: Optional[datetime]
    cancelled_at: Optional[datetime]

    model_config = {"from_attributes": True}


class AcceptProposalResponse(BaseModel):
    assignment: AssignmentResponse
    remaining_slots: int


class TransitionRequest(BaseModel):
    target_status: FreightStatus
    notes: Optional[str] = Field(None, max_length=500)


class WithdrawRequest(BaseModel):
    reason: Optional[str] = Field(None, max_length=500)


class WithdrawResponse(BaseModel):
    assignment_id: str
    freed_slot: bool
    withdrawal_fee: Optional[Decimal] = None
    remaining_slots: int


class RatingCreate(BaseModel):
    score: int = Field(..., ge=1, le=5)
    comment: Optional[str] = Field(None, max_length=1000)


class RatingResponse(BaseModel):
    id: str
    assignment_id: str
    rater_id: str
    rated_id: str
    score: int
    comment: Optional[str]

    model_config = {"from_attributes": True}
