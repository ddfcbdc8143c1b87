"""
One effective status for a freight.

Single-truck freights report their own status. Multi-truck freights report
the most advanced status among their live assignments, ranked by
``STATUS_RANK``; with no live assignment the freight is still seeking
capacity and reports OPEN. A cancelled freight reports CANCELLED whatever
its size.
"""

from __future__ import annotations

from typing import Iterable

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from haulbroker.core.errors import NotFoundError
from haulbroker.models.assignment import FreightAssignment
from haulbroker.models.freight import Freight, FreightStatus

STATUS_RANK: dict[FreightStatus, int] = {
    FreightStatus.COMPLETED: 7,
    FreightStatus.DELIVERED: 7,
    FreightStatus.DELIVERED_PENDING_CONFIRMATION: 6,
    FreightStatus.IN_TRANSIT: 5,
    FreightStatus.LOADED: 4,
    FreightStatus.LOADING: 3,
    FreightStatus.ACCEPTED: 2,
    FreightStatus.OPEN: 1,
    FreightStatus.CANCELLED: 0,
}


def aggregate_status(required_trucks: int, own_status: FreightStatus, assignment_statuses: Iterable[FreightStatus]) -> FreightStatus:
    if required_trucks == 1 or FreightStatus(own_status) == FreightStatus.CANCELLED:
        return FreightStatus(own_status)

    live = [FreightStatus(s) for s in assignment_statuses if FreightStatus(s) != FreightStatus.CANCELLED]
    if not live:
        return FreightStatus.OPEN
    return max(live, key=STATUS_RANK.__getitem__)


class StatusAggregator:
    def __init__(self, db: AsyncSession) -> None:
        self.db = db

    async def effective_status_for(self, freight: Freight) -> FreightStatus:
        if freight.is_single_truck:
            return FreightStatus(freight.status)
        result = await self.db.execute(
            select(FreightAssignment.status).where(FreightAssignment.freight_id == freight.id)
        )
        return aggregate_status(freight.required_trucks, freight.status, result.scalars().all())

    async def get_effective_status(self, freight_id: str) -> FreightStatus:
        freight = await self.db.get(Freight, freight_id)
        if freight is None:
            raise NotFoundError("Freight not found", details={"freight_id": freight_id})
        return await self.effective_status_for(freight)
