"""
Completion-time history snapshots.

Every write is an insert that merges on the entity's unique key: columns the
stored row already holds are kept, empty ones are filled from the incoming
values. Delivery confirmation and the two payment marks each call in with the
fields they know and end up on one row. Live freights and assignments are
only read.
"""

from __future__ import annotations

import logging
import uuid
from datetime import datetime
from decimal import Decimal
from typing import Any, Dict, Optional

from sqlalchemy import Table, func, select
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.ext.asyncio import AsyncSession

from haulbroker.core.errors import NotFoundError
from haulbroker.models.assignment import FreightAssignment
from haulbroker.models.freight import Freight, FreightStatus
from haulbroker.models.history import AssignmentHistory, FreightHistory
from haulbroker.services.status_aggregator import StatusAggregator
from haulbroker.utils.money import quantize_money

logger = logging.getLogger(__name__)

# Never merged: identity and insert-time columns
_KEY_COLUMNS = {"id", "freight_id", "assignment_id", "created_at"}


def _jsonable(value: Any) -> Any:
    if isinstance(value, Decimal):
        return str(value)
    if isinstance(value, datetime):
        return value.isoformat()
    if hasattr(value, "value"):
        return value.value
    return value


def _row_dict(obj, columns) -> Dict[str, Any]:
    return {name: _jsonable(getattr(obj, name)) for name in columns}


_FREIGHT_SNAPSHOT_FIELDS = (
    "id", "producer_id", "cargo_type", "cargo_category", "weight", "distance_km", "vehicle_axles",
    "table_tier", "required_trucks", "accepted_trucks", "status", "driver_id", "pricing_type",
    "price", "price_per_km", "price_per_ton", "minimum_regulatory_price", "created_at",
)
_ASSIGNMENT_SNAPSHOT_FIELDS = (
    "id", "freight_id", "driver_id", "proposal_id", "agreed_price", "minimum_regulatory_price",
    "status", "accepted_at", "delivery_reported_at", "delivery_confirmed_at", "delivery_confirmed_by",
    "payment_confirmed_by_producer_at", "payment_confirmed_by_driver_at",
)


class HistorySnapshotWriter:
    """Writes into the caller's transaction; the caller commits."""

    def __init__(self, db: AsyncSession) -> None:
        self.db = db

    def _insert(self, table: Table):
        dialect = self.db.get_bind().dialect.name
        if dialect == "postgresql":
            return pg_insert(table)
        return sqlite_insert(table)

    async def _merge(self, table: Table, key: str, values: Dict[str, Any]) -> None:
        stmt = self._insert(table).values(**values)
        merged = {
            name: func.coalesce(table.c[name], stmt.excluded[name])
            for name in values
            if name not in _KEY_COLUMNS
        }
        await self.db.execute(stmt.on_conflict_do_update(index_elements=[key], set_=merged))

    async def persist_freight_snapshot(
        self,
        freight_id: str,
        *,
        delivery_confirmed_at: Optional[datetime] = None,
        delivery_confirmed_by: Optional[str] = None,
        payment_confirmed_by_producer_at: Optional[datetime] = None,
        payment_confirmed_by_driver_at: Optional[datetime] = None,
    ) -> None:
        freight = await self.db.get(Freight, freight_id)
        if freight is None:
            raise NotFoundError("Freight not found", details={"freight_id": freight_id})

        result = await self.db.execute(
            select(FreightAssignment).where(
                FreightAssignment.freight_id == freight_id,
                FreightAssignment.status != FreightStatus.CANCELLED,
            )
        )
        live = result.scalars().all()
        total = quantize_money(sum((a.agreed_price for a in live), Decimal("0")))
        effective = await StatusAggregator(self.db).effective_status_for(freight)

        snapshot = _row_dict(freight, _FREIGHT_SNAPSHOT_FIELDS)
        snapshot["assignments"] = [_row_dict(a, _ASSIGNMENT_SNAPSHOT_FIELDS) for a in live]

        await self._merge(
            FreightHistory.__table__,
            "freight_id",
            {
                "id": str(uuid.uuid4()),
                "freight_id": freight_id,
                "final_status": effective.value,
                "required_trucks": freight.required_trucks,
                "total_agreed_price": total,
                "snapshot": snapshot,
                "delivery_confirmed_at": delivery_confirmed_at,
                "delivery_confirmed_by": delivery_confirmed_by,
                "payment_confirmed_by_producer_at": payment_confirmed_by_producer_at,
                "payment_confirmed_by_driver_at": payment_confirmed_by_driver_at,
            },
        )
        logger.info("freight_history_merged", extra={"freight_id": freight_id})

    async def persist_assignment_snapshot(
        self,
        assignment_id: str,
        *,
        delivery_confirmed_at: Optional[datetime] = None,
        delivery_confirmed_by: Optional[str] = None,
        payment_confirmed_by_producer_at: Optional[datetime] = None,
        payment_confirmed_by_driver_at: Optional[datetime] = None,
    ) -> None:
        assignment = await self.db.get(FreightAssignment, assignment_id)
        if assignment is None:
            raise NotFoundError("Assignment not found", details={"assignment_id": assignment_id})

        await self._merge(
            AssignmentHistory.__table__,
            "assignment_id",
            {
                "id": str(uuid.uuid4()),
                "assignment_id": assignment_id,
                "freight_id": assignment.freight_id,
                "driver_id": assignment.driver_id,
                "final_status": FreightStatus(assignment.status).value,
                "agreed_price": assignment.agreed_price,
                "snapshot": _row_dict(assignment, _ASSIGNMENT_SNAPSHOT_FIELDS),
                "accepted_at": assignment.accepted_at,
                "delivery_reported_at": assignment.delivery_reported_at,
                "delivery_confirmed_at": delivery_confirmed_at,
                "delivery_confirmed_by": delivery_confirmed_by,
                "payment_confirmed_by_producer_at": payment_confirmed_by_producer_at,
                "payment_confirmed_by_driver_at": payment_confirmed_by_driver_at,
            },
        )
        logger.info("assignment_history_merged", extra={"assignment_id": assignment_id})
