from __future__ import annotations

import logging
import uuid
from typing import Optional

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from haulbroker.core.errors import BrokerError, ConflictError, ForbiddenError, NotFoundError, ValidationFailedError
from haulbroker.models.assignment import FreightAssignment
from haulbroker.models.base import utcnow
from haulbroker.models.freight import Freight, FreightProposal, FreightStatus, ProposalStatus
from haulbroker.schemas.freight import FreightCreate, ProposalCreate
from haulbroker.services.event_dispatcher import EventType, emit_event
from haulbroker.services.price_contract import PriceDisplay, PriceTerms, ViewerRole, resolve_price
from haulbroker.services.pricing_floor import PricingFloorService, resolve_cargo_category, resolve_table_tier
from haulbroker.utils.units import to_decimal

logger = logging.getLogger(__name__)


class FreightService:
    def __init__(self, db: AsyncSession) -> None:
        self.db = db

    async def get_freight(self, freight_id: str) -> Freight:
        freight = await self.db.get(Freight, freight_id)
        if freight is None:
            raise NotFoundError("Freight not found", details={"freight_id": freight_id})
        return freight

    async def get_proposal(self, proposal_id: str) -> FreightProposal:
        proposal = await self.db.get(FreightProposal, proposal_id)
        if proposal is None:
            raise NotFoundError("Proposal not found", details={"proposal_id": proposal_id})
        return proposal

    async def _refuse(self, exc: BrokerError, operation: str, **context) -> None:
        await self.db.rollback()
        logger.info(
            "freight_operation_refused",
            extra={"operation": operation, "code": exc.code.value, "reason": exc.message, **context},
        )

    async def create_freight(self, producer_id: str, payload: FreightCreate) -> Freight:
        try:
            freight = await self._create_freight(producer_id, payload)
        except BrokerError as exc:
            await self._refuse(exc, "create_freight", producer_id=producer_id)
            raise

        await emit_event(
            EventType.FREIGHT_CREATED,
            {"freight_id": freight.id, "required_trucks": freight.required_trucks},
            target_user_id=producer_id,
        )
        return freight

    async def _create_freight(self, producer_id: str, payload: FreightCreate) -> Freight:
        category = resolve_cargo_category(payload.cargo_type)
        tier = resolve_table_tier(payload.high_performance, payload.vehicle_ownership)

        freight = Freight(
            id=str(uuid.uuid4()),
            producer_id=producer_id,
            cargo_type=payload.cargo_type,
            cargo_category=category.value,
            weight=payload.weight,
            distance_km=payload.distance_km,
            vehicle_axles=payload.vehicle_axles,
            high_performance=payload.high_performance,
            vehicle_ownership=payload.vehicle_ownership.value,
            table_tier=tier.value,
            required_trucks=payload.required_trucks,
            accepted_trucks=0,
            status=FreightStatus.OPEN,
            pricing_type=payload.pricing_type,
            price=payload.price,
            price_per_km=payload.price_per_km,
            price_per_ton=payload.price_per_ton,
        )
        # Fails early on incomplete pricing terms
        resolve_price(PriceTerms.from_freight(freight))

        freight.minimum_regulatory_price = await PricingFloorService(self.db).floor_for_freight(freight)
        freight.floor_computed_at = utcnow()

        self.db.add(freight)
        await self.db.commit()

        logger.info(
            "freight_created",
            extra={
                "freight_id": freight.id,
                "producer_id": producer_id,
                "required_trucks": freight.required_trucks,
                "minimum_regulatory_price": str(freight.minimum_regulatory_price),
            },
        )
        return freight

    async def price_display(self, freight_id: str, viewer: ViewerRole) -> PriceDisplay:
        freight = await self.get_freight(freight_id)
        return resolve_price(PriceTerms.from_freight(freight), viewer)

    async def _has_active_commitment(self, freight_id: str, driver_id: str) -> Optional[str]:
        pending = await self.db.execute(
            select(FreightProposal.id).where(
                FreightProposal.freight_id == freight_id,
                FreightProposal.driver_id == driver_id,
                FreightProposal.status == ProposalStatus.PENDING,
            )
        )
        if pending.first() is not None:
            return "pending_proposal"
        active = await self.db.execute(
            select(FreightAssignment.id).where(
                FreightAssignment.freight_id == freight_id,
                FreightAssignment.driver_id == driver_id,
                FreightAssignment.status != FreightStatus.CANCELLED,
            )
        )
        if active.first() is not None:
            return "active_assignment"
        return None

    async def submit_proposal(self, freight_id: str, driver_id: str, payload: ProposalCreate) -> FreightProposal:
        try:
            proposal, freight = await self._submit_proposal(freight_id, driver_id, payload)
        except BrokerError as exc:
            await self._refuse(exc, "submit_proposal", freight_id=freight_id, driver_id=driver_id)
            raise

        await emit_event(
            EventType.PROPOSAL_SUBMITTED,
            {"freight_id": freight_id, "proposal_id": proposal.id, "proposed_price": str(proposal.proposed_price)},
            target_user_id=freight.producer_id,
        )
        return proposal

    async def _submit_proposal(self, freight_id: str, driver_id: str, payload: ProposalCreate):
        freight = await self.get_freight(freight_id)

        if freight.producer_id == driver_id:
            raise ForbiddenError("A requester cannot bid on their own freight", details={"freight_id": freight_id})
        if to_decimal(payload.proposed_price) <= 0:
            raise ValidationFailedError(
                "Proposed price must be positive",
                details={"proposed_price": str(payload.proposed_price)},
            )
        if freight.status == FreightStatus.CANCELLED:
            raise ConflictError("Freight is cancelled", details={"freight_id": freight_id})
        if freight.accepted_trucks >= freight.required_trucks:
            raise ConflictError(
                "Freight has no remaining capacity",
                details={"freight_id": freight_id, "required_trucks": freight.required_trucks},
            )
        existing = await self._has_active_commitment(freight_id, driver_id)
        if existing:
            raise ConflictError(
                "Carrier already committed to this freight",
                details={"freight_id": freight_id, "reason": existing},
            )

        proposal = FreightProposal(
            id=str(uuid.uuid4()),
            freight_id=freight_id,
            driver_id=driver_id,
            proposed_price=payload.proposed_price,
            message=payload.message,
            status=ProposalStatus.PENDING,
        )
        self.db.add(proposal)
        await self.db.commit()

        logger.info(
            "proposal_submitted",
            extra={"freight_id": freight_id, "proposal_id": proposal.id, "driver_id": driver_id},
        )
        return proposal, freight

    async def reject_proposal(self, proposal_id: str, producer_id: str) -> FreightProposal:
        try:
            proposal, freight = await self._reject_proposal(proposal_id, producer_id)
        except BrokerError as exc:
            await self._refuse(exc, "reject_proposal", proposal_id=proposal_id)
            raise

        await emit_event(
            EventType.PROPOSAL_REJECTED,
            {"freight_id": freight.id, "proposal_id": proposal_id},
            target_user_id=proposal.driver_id,
        )
        return proposal

    async def _reject_proposal(self, proposal_id: str, producer_id: str):
        proposal = await self.get_proposal(proposal_id)
        freight = await self.get_freight(proposal.freight_id)

        if freight.producer_id != producer_id:
            raise ForbiddenError("Only the freight owner can reject proposals", details={"proposal_id": proposal_id})
        if proposal.status != ProposalStatus.PENDING:
            raise ConflictError(
                "Proposal already resolved",
                details={"proposal_id": proposal_id, "status": ProposalStatus(proposal.status).value},
            )

        proposal.status = ProposalStatus.REJECTED
        proposal.resolved_at = utcnow()
        await self.db.commit()

        logger.info("proposal_rejected", extra={"proposal_id": proposal_id, "freight_id": freight.id})
        return proposal, freight

    async def cancel_freight(self, freight_id: str, producer_id: str, reason: Optional[str] = None) -> Freight:
        """
        Withdraw the freight from the market.

        Only possible while no carrier holds a slot; the owner releases accepted
        carriers first. Pending proposals are rejected in the same transaction
        and their bidders are notified.
        """
        try:
            freight, bidders = await self._cancel_freight(freight_id, producer_id, reason)
        except BrokerError as exc:
            await self._refuse(exc, "cancel_freight", freight_id=freight_id)
            raise

        for driver_id in bidders:
            await emit_event(
                EventType.FREIGHT_CANCELLED,
                {"freight_id": freight_id, "reason": reason},
                target_user_id=driver_id,
            )
        return freight

    async def _cancel_freight(self, freight_id: str, producer_id: str, reason: Optional[str]):
        freight = await self.get_freight(freight_id)
        if freight.producer_id != producer_id:
            raise ForbiddenError("Only the freight owner can cancel it", details={"freight_id": freight_id})
        if freight.status == FreightStatus.CANCELLED:
            raise ConflictError("Freight is already cancelled", details={"freight_id": freight_id})
        if freight.accepted_trucks > 0:
            raise ConflictError(
                "Release accepted carriers before cancelling",
                details={"freight_id": freight_id, "accepted_trucks": freight.accepted_trucks},
            )

        now = utcnow()
        result = await self.db.execute(
            update(Freight)
            .where(
                Freight.id == freight_id,
                Freight.status != FreightStatus.CANCELLED,
                Freight.accepted_trucks == 0,
            )
            .values(
                status=FreightStatus.CANCELLED,
                cancelled_at=now,
                cancelled_by=producer_id,
                cancellation_reason=reason,
                updated_at=now,
            )
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            raise ConflictError("Freight changed concurrently", details={"freight_id": freight_id})

        pending = await self.db.execute(
            select(FreightProposal.driver_id).where(
                FreightProposal.freight_id == freight_id,
                FreightProposal.status == ProposalStatus.PENDING,
            )
        )
        bidders = list(pending.scalars().all())
        await self.db.execute(
            update(FreightProposal)
            .where(FreightProposal.freight_id == freight_id, FreightProposal.status == ProposalStatus.PENDING)
            .values(status=ProposalStatus.REJECTED, resolved_at=now)
            .execution_options(synchronize_session=False)
        )

        await self.db.refresh(freight)
        await self.db.commit()

        logger.info(
            "freight_cancelled",
            extra={"freight_id": freight_id, "producer_id": producer_id, "rejected_proposals": len(bidders)},
        )
        return freight, bidders
