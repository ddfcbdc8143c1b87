from typing import Optional

from fastapi import APIRouter, Depends, status
from sqlalchemy.ext.asyncio import AsyncSession

from haulbroker.api import deps
from haulbroker.core.db import get_db
from haulbroker.schemas.assignment import (
    AssignmentResponse,
    RatingCreate,
    RatingResponse,
    TransitionRequest,
    WithdrawRequest,
    WithdrawResponse,
)
from haulbroker.services.assignment_state import AssignmentStateMachine, WithdrawalResult

router = APIRouter()


async def _machine(db: AsyncSession = Depends(get_db)) -> AssignmentStateMachine:
    return AssignmentStateMachine(db)


def _withdraw_response(result: WithdrawalResult) -> WithdrawResponse:
    return WithdrawResponse(
        assignment_id=result.assignment.id,
        freed_slot=result.freed_slot,
        withdrawal_fee=result.withdrawal_fee,
        remaining_slots=result.remaining_slots,
    )


@router.get("/{assignment_id}", response_model=AssignmentResponse)
async def get_assignment(
    assignment_id: str,
    machine: AssignmentStateMachine = Depends(_machine),
) -> AssignmentResponse:
    return AssignmentResponse.model_validate(await machine.get_assignment(assignment_id))


@router.post("/{assignment_id}/transition", response_model=AssignmentResponse)
async def transition_assignment(
    assignment_id: str,
    payload: TransitionRequest,
    actor_id: str = Depends(deps.get_actor_id),
    machine: AssignmentStateMachine = Depends(_machine),
) -> AssignmentResponse:
    assignment = await machine.transition(assignment_id, payload.target_status, actor_id, payload.notes)
    return AssignmentResponse.model_validate(assignment)


@router.post("/{assignment_id}/withdraw", response_model=WithdrawResponse)
async def withdraw_assignment(
    assignment_id: str,
    payload: Optional[WithdrawRequest] = None,
    actor_id: str = Depends(deps.get_actor_id),
    machine: AssignmentStateMachine = Depends(_machine),
) -> WithdrawResponse:
    reason = payload.reason if payload else None
    return _withdraw_response(await machine.withdraw(assignment_id, actor_id, reason))


@router.post("/{assignment_id}/release", response_model=WithdrawResponse)
async def release_assignment(
    assignment_id: str,
    payload: Optional[WithdrawRequest] = None,
    actor_id: str = Depends(deps.get_actor_id),
    machine: AssignmentStateMachine = Depends(_machine),
) -> WithdrawResponse:
    reason = payload.reason if payload else None
    return _withdraw_response(await machine.release(assignment_id, actor_id, reason))


@router.post("/{assignment_id}/payment/sent", response_model=AssignmentResponse)
async def confirm_payment_sent(
    assignment_id: str,
    actor_id: str = Depends(deps.get_actor_id),
    machine: AssignmentStateMachine = Depends(_machine),
) -> AssignmentResponse:
    return AssignmentResponse.model_validate(await machine.confirm_payment_sent(assignment_id, actor_id))


@router.post("/{assignment_id}/payment/received", response_model=AssignmentResponse)
async def confirm_payment_received(
    assignment_id: str,
    actor_id: str = Depends(deps.get_actor_id),
    machine: AssignmentStateMachine = Depends(_machine),
) -> AssignmentResponse:
    return AssignmentResponse.model_validate(await machine.confirm_payment_received(assignment_id, actor_id))


@router.post("/{assignment_id}/ratings", response_model=RatingResponse, status_code=status.HTTP_201_CREATED)
async def submit_rating(
    assignment_id: str,
    payload: RatingCreate,
    actor_id: str = Depends(deps.get_actor_id),
    machine: AssignmentStateMachine = Depends(_machine),
) -> RatingResponse:
    rating = await machine.submit_rating(assignment_id, actor_id, payload.score, payload.comment)
    return RatingResponse.model_validate(rating)
