"""
Proposal acceptance and the freight capacity it consumes.

This is the only writer of ``Freight.accepted_trucks`` and ``Freight.driver_id``.
Both are changed through single UPDATE statements whose WHERE clause carries
the precondition (free capacity, unbound driver), and the affected row count
decides the outcome. A lost race shows up as zero rows updated and is reported
as a conflict after the whole transaction is rolled back; nothing is retried.
"""

from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from haulbroker.core.errors import (
    BrokerError,
    ConflictError,
    ForbiddenError,
    NotFoundError,
    ValidationFailedError,
)
from haulbroker.models.assignment import AssignmentStatusEvent, FreightAssignment
from haulbroker.models.base import utcnow
from haulbroker.models.freight import Freight, FreightProposal, FreightStatus, ProposalStatus
from haulbroker.services.event_dispatcher import EventType, emit_event
from haulbroker.utils.units import to_decimal

logger = logging.getLogger(__name__)


@dataclass
class AcceptanceResult:
    assignment: FreightAssignment
    remaining_slots: int


class CapacityAllocator:
    def __init__(self, db: AsyncSession) -> None:
        self.db = db

    async def claim_slot(self, freight_id: str) -> None:
        result = await self.db.execute(
            update(Freight)
            .where(
                Freight.id == freight_id,
                Freight.status != FreightStatus.CANCELLED,
                Freight.accepted_trucks < Freight.required_trucks,
            )
            .values(accepted_trucks=Freight.accepted_trucks + 1, updated_at=utcnow())
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            raise ConflictError("Freight capacity exhausted", details={"freight_id": freight_id})

    async def bind_driver(self, freight_id: str, driver_id: str) -> None:
        result = await self.db.execute(
            update(Freight)
            .where(Freight.id == freight_id, Freight.driver_id.is_(None))
            .values(driver_id=driver_id, status=FreightStatus.ACCEPTED, updated_at=utcnow())
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            raise ConflictError("Freight already has a driver", details={"freight_id": freight_id})

    async def release_slot(self, freight: Freight, driver_id: str) -> None:
        """Give one slot back; single-truck freights also drop the bound driver and reopen."""
        result = await self.db.execute(
            update(Freight)
            .where(Freight.id == freight.id, Freight.accepted_trucks > 0)
            .values(accepted_trucks=Freight.accepted_trucks - 1, updated_at=utcnow())
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            raise ConflictError("Freight has no accepted capacity to release", details={"freight_id": freight.id})

        if freight.is_single_truck:
            result = await self.db.execute(
                update(Freight)
                .where(Freight.id == freight.id, Freight.driver_id == driver_id)
                .values(driver_id=None, status=FreightStatus.OPEN)
                .execution_options(synchronize_session=False)
            )
            if result.rowcount != 1:
                raise ConflictError(
                    "Freight is not bound to this driver",
                    details={"freight_id": freight.id, "driver_id": driver_id},
                )

    async def _mark_proposal_accepted(self, proposal_id: str) -> None:
        result = await self.db.execute(
            update(FreightProposal)
            .where(FreightProposal.id == proposal_id, FreightProposal.status == ProposalStatus.PENDING)
            .values(status=ProposalStatus.ACCEPTED, resolved_at=utcnow())
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            raise ConflictError("Proposal already resolved", details={"proposal_id": proposal_id})

    async def _check_acceptable(self, proposal: FreightProposal, freight: Freight, producer_id: str) -> None:
        if freight.producer_id != producer_id:
            raise ForbiddenError("Only the freight owner can accept proposals", details={"proposal_id": proposal.id})
        if proposal.status != ProposalStatus.PENDING:
            raise ConflictError(
                "Proposal already resolved",
                details={"proposal_id": proposal.id, "status": ProposalStatus(proposal.status).value},
            )
        if freight.status == FreightStatus.CANCELLED or freight.accepted_trucks >= freight.required_trucks:
            raise ConflictError(
                "Freight capacity exhausted",
                details={"freight_id": freight.id, "required_trucks": freight.required_trucks},
            )

        price = to_decimal(proposal.proposed_price)
        if price is None or price <= 0:
            raise ValidationFailedError("Proposed price must be positive", details={"proposal_id": proposal.id})

        existing = await self.db.execute(
            select(FreightAssignment.id).where(
                FreightAssignment.freight_id == freight.id,
                FreightAssignment.driver_id == proposal.driver_id,
                FreightAssignment.status != FreightStatus.CANCELLED,
            )
        )
        if existing.first() is not None:
            raise ConflictError(
                "Carrier already assigned to this freight",
                details={"freight_id": freight.id, "driver_id": proposal.driver_id},
            )

        floor = to_decimal(freight.minimum_regulatory_price)
        if floor is not None and price < floor:
            raise ValidationFailedError(
                "Proposed price is below the regulatory minimum per truck",
                details={"proposed_price": str(price), "minimum_regulatory_price": str(floor)},
            )

    async def accept_proposal(self, proposal_id: str, producer_id: str) -> AcceptanceResult:
        try:
            result = await self._accept(proposal_id, producer_id)
        except BrokerError as exc:
            await self.db.rollback()
            logger.info(
                "proposal_accept_refused",
                extra={"proposal_id": proposal_id, "code": exc.code.value, "reason": exc.message},
            )
            raise
        except IntegrityError:
            # Another acceptance for the same carrier committed first
            await self.db.rollback()
            raise ConflictError("Carrier already assigned to this freight", details={"proposal_id": proposal_id})

        await emit_event(
            EventType.PROPOSAL_ACCEPTED,
            {
                "freight_id": result.assignment.freight_id,
                "proposal_id": proposal_id,
                "assignment_id": result.assignment.id,
                "agreed_price": str(result.assignment.agreed_price),
                "remaining_slots": result.remaining_slots,
            },
            target_user_id=result.assignment.driver_id,
        )
        return result

    async def _accept(self, proposal_id: str, producer_id: str) -> AcceptanceResult:
        proposal = await self.db.get(FreightProposal, proposal_id)
        if proposal is None:
            raise NotFoundError("Proposal not found", details={"proposal_id": proposal_id})
        freight = await self.db.get(Freight, proposal.freight_id)
        if freight is None:
            raise NotFoundError("Freight not found", details={"freight_id": proposal.freight_id})

        await self._check_acceptable(proposal, freight, producer_id)

        now = utcnow()
        assignment = FreightAssignment(
            id=str(uuid.uuid4()),
            freight_id=freight.id,
            driver_id=proposal.driver_id,
            proposal_id=proposal.id,
            agreed_price=proposal.proposed_price,
            minimum_regulatory_price=freight.minimum_regulatory_price,
            status=FreightStatus.ACCEPTED,
            accepted_at=now,
        )
        self.db.add(assignment)
        self.db.add(
            AssignmentStatusEvent(
                id=str(uuid.uuid4()),
                assignment_id=assignment.id,
                from_status=None,
                to_status=FreightStatus.ACCEPTED.value,
                actor_id=producer_id,
                created_at=now,
            )
        )
        await self.db.flush()

        await self.claim_slot(freight.id)
        if freight.is_single_truck:
            await self.bind_driver(freight.id, proposal.driver_id)
        await self._mark_proposal_accepted(proposal.id)

        # Pick up the guarded updates before the transaction ends
        await self.db.refresh(freight)
        await self.db.refresh(assignment)
        await self.db.refresh(proposal)
        await self.db.commit()

        logger.info(
            "proposal_accepted",
            extra={
                "freight_id": freight.id,
                "proposal_id": proposal.id,
                "assignment_id": assignment.id,
                "driver_id": assignment.driver_id,
                "agreed_price": str(assignment.agreed_price),
                "accepted_trucks": freight.accepted_trucks,
                "required_trucks": freight.required_trucks,
            },
        )
        return AcceptanceResult(assignment=assignment, remaining_slots=freight.remaining_slots)
