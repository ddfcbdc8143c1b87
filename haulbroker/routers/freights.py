from typing import Optional

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from haulbroker.api import deps
from haulbroker.core.db import get_db
from haulbroker.models.freight import Freight
from haulbroker.schemas.freight import (
    EffectiveStatusResponse,
    FreightCancel,
    FreightCreate,
    FreightResponse,
    PriceDisplayResponse,
    ProposalCreate,
    ProposalResponse,
)
from haulbroker.services.freight import FreightService
from haulbroker.services.price_contract import ViewerRole
from haulbroker.services.status_aggregator import StatusAggregator

router = APIRouter()


async def _service(db: AsyncSession = Depends(get_db)) -> FreightService:
    return FreightService(db)


async def _aggregator(db: AsyncSession = Depends(get_db)) -> StatusAggregator:
    return StatusAggregator(db)


async def _to_response(freight: Freight, aggregator: StatusAggregator) -> FreightResponse:
    response = FreightResponse.model_validate(freight)
    response.effective_status = await aggregator.effective_status_for(freight)
    return response


@router.post("", response_model=FreightResponse, status_code=status.HTTP_201_CREATED)
async def create_freight(
    payload: FreightCreate,
    actor_id: str = Depends(deps.get_actor_id),
    service: FreightService = Depends(_service),
    aggregator: StatusAggregator = Depends(_aggregator),
) -> FreightResponse:
    freight = await service.create_freight(actor_id, payload)
    return await _to_response(freight, aggregator)


@router.get("/{freight_id}", response_model=FreightResponse)
async def get_freight(
    freight_id: str,
    service: FreightService = Depends(_service),
    aggregator: StatusAggregator = Depends(_aggregator),
) -> FreightResponse:
    freight = await service.get_freight(freight_id)
    return await _to_response(freight, aggregator)


@router.get("/{freight_id}/status", response_model=EffectiveStatusResponse)
async def get_effective_status(
    freight_id: str,
    service: FreightService = Depends(_service),
    aggregator: StatusAggregator = Depends(_aggregator),
) -> EffectiveStatusResponse:
    freight = await service.get_freight(freight_id)
    return EffectiveStatusResponse(
        freight_id=freight.id,
        required_trucks=freight.required_trucks,
        accepted_trucks=freight.accepted_trucks,
        status=await aggregator.effective_status_for(freight),
    )


@router.get("/{freight_id}/price", response_model=PriceDisplayResponse, response_model_exclude_none=True)
async def get_price(
    freight_id: str,
    viewer: ViewerRole = Query(ViewerRole.CARRIER),
    service: FreightService = Depends(_service),
) -> PriceDisplayResponse:
    display = await service.price_display(freight_id, viewer)
    return PriceDisplayResponse(
        freight_id=freight_id,
        viewer=viewer.value,
        pricing_type=display.pricing_type,
        primary_value=display.primary_value,
        primary_label=display.primary_label,
        secondary_label=display.secondary_label,
        breakdown=display.breakdown,
    )


@router.post("/{freight_id}/proposals", response_model=ProposalResponse, status_code=status.HTTP_201_CREATED)
async def submit_proposal(
    freight_id: str,
    payload: ProposalCreate,
    actor_id: str = Depends(deps.get_actor_id),
    service: FreightService = Depends(_service),
) -> ProposalResponse:
    proposal = await service.submit_proposal(freight_id, actor_id, payload)
    return ProposalResponse.model_validate(proposal)


@router.post("/{freight_id}/cancel", response_model=FreightResponse)
async def cancel_freight(
    freight_id: str,
    payload: Optional[FreightCancel] = None,
    actor_id: str = Depends(deps.get_actor_id),
    service: FreightService = Depends(_service),
    aggregator: StatusAggregator = Depends(_aggregator),
) -> FreightResponse:
    reason = payload.reason if payload else None
    freight = await service.cancel_freight(freight_id, actor_id, reason)
    return await _to_response(freight, aggregator)
