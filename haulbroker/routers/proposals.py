from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from haulbroker.api import deps
from haulbroker.core.db import get_db
from haulbroker.schemas.assignment import AcceptProposalResponse, AssignmentResponse
from haulbroker.schemas.freight import ProposalResponse
from haulbroker.services.capacity import CapacityAllocator
from haulbroker.services.freight import FreightService

router = APIRouter()


async def _allocator(db: AsyncSession = Depends(get_db)) -> CapacityAllocator:
    return CapacityAllocator(db)


async def _service(db: AsyncSession = Depends(get_db)) -> FreightService:
    return FreightService(db)


@router.post("/{proposal_id}/accept", response_model=AcceptProposalResponse)
async def accept_proposal(
    proposal_id: str,
    actor_id: str = Depends(deps.get_actor_id),
    allocator: CapacityAllocator = Depends(_allocator),
) -> AcceptProposalResponse:
    result = await allocator.accept_proposal(proposal_id, actor_id)
    return AcceptProposalResponse(
        assignment=AssignmentResponse.model_validate(result.assignment),
        remaining_slots=result.remaining_slots,
    )


@router.post("/{proposal_id}/reject", response_model=ProposalResponse)
async def reject_proposal(
    proposal_id: str,
    actor_id: str = Depends(deps.get_actor_id),
    service: FreightService = Depends(_service),
) -> ProposalResponse:
    proposal = await service.reject_proposal(proposal_id, actor_id)
    return ProposalResponse.model_validate(proposal)
