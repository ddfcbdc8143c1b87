"""Tests for the write-once, merge-on-conflict history snapshots."""

from datetime import datetime

import pytest
from sqlalchemy import select

from haulbroker.core.errors import NotFoundError
from haulbroker.models.assignment import FreightAssignment
from haulbroker.models.freight import Freight, FreightStatus
from haulbroker.models.history import AssignmentHistory, FreightHistory
from haulbroker.services.history import HistorySnapshotWriter
from tests.factories import accepted_assignment, reload

DELIVERED_AT = datetime(2026, 3, 1, 12, 0, 0)
SENT_AT = datetime(2026, 3, 2, 9, 30, 0)
RECEIVED_AT = datetime(2026, 3, 3, 18, 15, 0)


async def _freight_rows(db):
    return (await db.execute(select(FreightHistory))).scalars().all()


class TestFreightSnapshot:
    async def test_partial_writes_converge_on_one_row(self, db, general_cargo_rate) -> None:
        freight, _ = await accepted_assignment(db)
        freight_id = freight.id
        writer = HistorySnapshotWriter(db)

        await writer.persist_freight_snapshot(
            freight_id, delivery_confirmed_at=DELIVERED_AT, delivery_confirmed_by="producer-1"
        )
        await writer.persist_freight_snapshot(freight_id, payment_confirmed_by_producer_at=SENT_AT)
        await writer.persist_freight_snapshot(freight_id, payment_confirmed_by_driver_at=RECEIVED_AT)
        await db.commit()

        rows = await _freight_rows(db)
        assert len(rows) == 1
        row = rows[0]
        assert row.delivery_confirmed_at == DELIVERED_AT
        assert row.delivery_confirmed_by == "producer-1"
        assert row.payment_confirmed_by_producer_at == SENT_AT
        assert row.payment_confirmed_by_driver_at == RECEIVED_AT
        assert row.snapshot["id"] == freight_id
        assert len(row.snapshot["assignments"]) == 1

    async def test_stored_values_are_never_overwritten(self, db, general_cargo_rate) -> None:
        freight, _ = await accepted_assignment(db)
        freight_id = freight.id
        writer = HistorySnapshotWriter(db)

        await writer.persist_freight_snapshot(
            freight_id, delivery_confirmed_at=DELIVERED_AT, delivery_confirmed_by="producer-1"
        )
        await db.commit()
        first = (await _freight_rows(db))[0]
        first_id, first_status = first.id, first.final_status

        await writer.persist_freight_snapshot(
            freight_id, delivery_confirmed_at=SENT_AT, delivery_confirmed_by="someone-else"
        )
        await db.commit()

        row = await reload(db, FreightHistory, first_id)
        assert row.delivery_confirmed_at == DELIVERED_AT
        assert row.delivery_confirmed_by == "producer-1"
        assert row.final_status == first_status

    async def test_live_rows_are_only_read(self, db, general_cargo_rate) -> None:
        freight, assignment = await accepted_assignment(db)
        freight_id, assignment_id = freight.id, assignment.id

        await HistorySnapshotWriter(db).persist_freight_snapshot(freight_id, delivery_confirmed_at=DELIVERED_AT)
        await db.commit()

        live = await reload(db, Freight, freight_id)
        assert live.status == FreightStatus.ACCEPTED
        assert (await reload(db, FreightAssignment, assignment_id)).delivery_confirmed_at is None

    async def test_total_is_the_sum_of_live_prices(self, db, general_cargo_rate) -> None:
        freight, _ = await accepted_assignment(db, price="750.00")
        await HistorySnapshotWriter(db).persist_freight_snapshot(freight.id)
        await db.commit()
        assert str((await _freight_rows(db))[0].total_agreed_price) == "750.00"

    async def test_unknown_freight(self, db) -> None:
        with pytest.raises(NotFoundError):
            await HistorySnapshotWriter(db).persist_freight_snapshot("missing")


class TestAssignmentSnapshot:
    async def test_merges_per_assignment(self, db, general_cargo_rate) -> None:
        _, assignment = await accepted_assignment(db)
        assignment_id = assignment.id
        writer = HistorySnapshotWriter(db)

        await writer.persist_assignment_snapshot(assignment_id, delivery_confirmed_at=DELIVERED_AT)
        await writer.persist_assignment_snapshot(assignment_id, payment_confirmed_by_producer_at=SENT_AT)
        await db.commit()

        rows = (await db.execute(select(AssignmentHistory))).scalars().all()
        assert len(rows) == 1
        assert rows[0].driver_id == "driver-1"
        assert rows[0].delivery_confirmed_at == DELIVERED_AT
        assert rows[0].payment_confirmed_by_producer_at == SENT_AT
        assert rows[0].snapshot["agreed_price"] == "1000.00"

    async def test_unknown_assignment(self, db) -> None:
        with pytest.raises(NotFoundError):
            await HistorySnapshotWriter(db).persist_assignment_snapshot("missing")
