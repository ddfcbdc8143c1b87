"""
Batch maintenance of freight prices.

``recalculate_floors`` brings per-truck floors in line with the current rate
table. It only writes ``Freight.minimum_regulatory_price`` and
``Freight.floor_computed_at``; prices already agreed on assignments stay as
they were accepted. Finished freights are skipped: a fleet counts as finished
once every slot is taken and every live truck is DELIVERED.

``repair_divided_agreed_prices`` fixes assignments of multi-truck FIXED
freights whose agreed price was stored as the freight price split across the
trucks. Every correction is logged and recorded in ``agreed_price_repair``
before the assignment is touched, and repaired or already-correct rows are
skipped, so the job can be re-run at will.
"""

from __future__ import annotations

import logging
import uuid
from decimal import Decimal

from sqlalchemy import and_, or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from haulbroker.core.config import get_settings
from haulbroker.models.assignment import FreightAssignment
from haulbroker.models.base import utcnow
from haulbroker.models.freight import Freight, FreightProposal, FreightStatus, PricingType
from haulbroker.models.pricing import AgreedPriceRepair
from haulbroker.schemas.pricing import AgreedPriceRepairItem, RecalculationReport, RepairReport
from haulbroker.services.price_contract import PriceTerms, agreed_price
from haulbroker.services.pricing_floor import PricingFloorService
from haulbroker.utils.money import quantize_money
from haulbroker.utils.units import to_decimal

logger = logging.getLogger(__name__)
settings = get_settings()

FLOOR_TRACKED_STATUSES = (
    FreightStatus.OPEN,
    FreightStatus.ACCEPTED,
    FreightStatus.LOADING,
    FreightStatus.LOADED,
    FreightStatus.IN_TRANSIT,
    FreightStatus.DELIVERED_PENDING_CONFIRMATION,
)


def _fleet_fully_delivered():
    """Multi-truck freights keep OPEN as their own status; their trucks say whether the fleet is done."""
    undelivered = (
        select(FreightAssignment.id)
        .where(
            FreightAssignment.freight_id == Freight.id,
            FreightAssignment.status.notin_((FreightStatus.DELIVERED, FreightStatus.CANCELLED)),
        )
        .exists()
    )
    return and_(Freight.required_trucks > 1, Freight.accepted_trucks >= Freight.required_trucks, ~undelivered)


class PriceMaintenanceService:
    def __init__(self, db: AsyncSession) -> None:
        self.db = db

    async def recalculate_floors(self, limit: int | None = None) -> RecalculationReport:
        limit = limit or settings.price_floor_batch_limit
        floors = PricingFloorService(self.db)
        latest_rate_change = await floors.latest_rate_change()

        stale = Freight.floor_computed_at.is_(None)
        if latest_rate_change is not None:
            stale = or_(stale, Freight.floor_computed_at < latest_rate_change)

        result = await self.db.execute(
            select(Freight)
            .where(Freight.status.in_(FLOOR_TRACKED_STATUSES), ~_fleet_fully_delivered(), stale)
            .order_by(Freight.created_at)
            .limit(limit)
        )
        freights = result.scalars().all()

        report = RecalculationReport()
        now = utcnow()
        for freight in freights:
            report.examined += 1
            previous = to_decimal(freight.minimum_regulatory_price)
            current = await floors.floor_for_freight(freight)

            if current is None:
                report.unenforceable += 1
            elif previous == current:
                report.unchanged += 1
            else:
                report.updated += 1
                report.freight_ids.append(freight.id)

            if previous != current:
                logger.info(
                    "price_floor_recalculated",
                    extra={
                        "freight_id": freight.id,
                        "previous": str(previous) if previous is not None else None,
                        "current": str(current) if current is not None else None,
                    },
                )
            freight.minimum_regulatory_price = current
            freight.floor_computed_at = now

        await self.db.commit()
        logger.info("price_floor_batch_finished", extra=report.model_dump(exclude={"freight_ids"}))
        return report

    async def repair_divided_agreed_prices(self) -> RepairReport:
        result = await self.db.execute(
            select(FreightAssignment, Freight, FreightProposal)
            .join(Freight, Freight.id == FreightAssignment.freight_id)
            .outerjoin(FreightProposal, FreightProposal.id == FreightAssignment.proposal_id)
            .outerjoin(AgreedPriceRepair, AgreedPriceRepair.assignment_id == FreightAssignment.id)
            .where(
                Freight.required_trucks > 1,
                Freight.pricing_type == PricingType.FIXED,
                Freight.price.is_not(None),
                AgreedPriceRepair.id.is_(None),
            )
            .order_by(FreightAssignment.accepted_at)
        )
        rows = result.all()

        report = RepairReport()
        for assignment, freight, proposal in rows:
            report.examined += 1
            stored = to_decimal(assignment.agreed_price)
            divided = quantize_money(to_decimal(freight.price) / Decimal(freight.required_trucks))
            if stored != divided:
                report.skipped += 1
                continue

            if proposal is not None:
                corrected = quantize_money(to_decimal(proposal.proposed_price))
            else:
                corrected = agreed_price(PriceTerms.from_freight(freight))
            if corrected == stored:
                report.skipped += 1
                continue

            logger.warning(
                "agreed_price_repair",
                extra={
                    "assignment_id": assignment.id,
                    "freight_id": freight.id,
                    "previous_agreed_price": str(stored),
                    "corrected_agreed_price": str(corrected),
                },
            )
            self.db.add(
                AgreedPriceRepair(
                    id=str(uuid.uuid4()),
                    assignment_id=assignment.id,
                    freight_id=freight.id,
                    previous_agreed_price=stored,
                    corrected_agreed_price=corrected,
                    reason=f"agreed price was freight price / {freight.required_trucks}",
                )
            )
            assignment.agreed_price = corrected
            report.repaired += 1
            report.items.append(
                AgreedPriceRepairItem(
                    assignment_id=assignment.id,
                    freight_id=freight.id,
                    previous_agreed_price=stored,
                    corrected_agreed_price=corrected,
                )
            )

        await self.db.commit()
        logger.info("agreed_price_repair_finished", extra={"examined": report.examined, "repaired": report.repaired})
        return report
