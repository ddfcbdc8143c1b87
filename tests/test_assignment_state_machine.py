"""Tests for the per-truck lifecycle, withdrawal/release and the payment handshake."""

from decimal import Decimal

import pytest
from sqlalchemy import select

from haulbroker.core.errors import ConflictError, ForbiddenError, NotFoundError, ValidationFailedError
from haulbroker.models.assignment import AssignmentStatusEvent, FreightAssignment
from haulbroker.models.freight import Freight, FreightStatus
from haulbroker.models.history import AssignmentHistory, FreightHistory
from haulbroker.models.payout import PayoutDeduction, PayoutDeductionStatus
from haulbroker.models.rating import FreightRating
from haulbroker.services.assignment_state import AssignmentStateMachine
from haulbroker.services.capacity import CapacityAllocator
from tests.factories import PRODUCER, accepted_assignment, count_assignments, make_proposal, reload

S = FreightStatus


async def _deliver(db, assignment_id: str, driver_id: str = "driver-1") -> None:
    machine = AssignmentStateMachine(db)
    for step in (S.LOADING, S.LOADED, S.IN_TRANSIT, S.DELIVERED_PENDING_CONFIRMATION):
        await machine.transition(assignment_id, step, driver_id)
    await machine.transition(assignment_id, S.DELIVERED, PRODUCER)


class TestTransitions:
    async def test_unknown_assignment(self, db) -> None:
        with pytest.raises(NotFoundError):
            await AssignmentStateMachine(db).transition("missing", S.LOADING, "driver-1")

    async def test_full_lifecycle_is_recorded(self, db, general_cargo_rate) -> None:
        freight, assignment = await accepted_assignment(db)
        await _deliver(db, assignment.id)

        stored = await reload(db, FreightAssignment, assignment.id)
        assert stored.status == S.DELIVERED
        assert stored.delivery_reported_at is not None
        assert stored.delivery_confirmed_at is not None
        assert stored.delivery_confirmed_by == PRODUCER
        assert (await reload(db, Freight, freight.id)).status == S.DELIVERED

        events = (await db.execute(
            select(AssignmentStatusEvent.to_status)
            .where(AssignmentStatusEvent.assignment_id == assignment.id)
            .order_by(AssignmentStatusEvent.created_at)
        )).scalars().all()
        assert events == ["ACCEPTED", "LOADING", "LOADED", "IN_TRANSIT",
                          "DELIVERED_PENDING_CONFIRMATION", "DELIVERED"]

    async def test_steps_cannot_be_skipped(self, db, general_cargo_rate) -> None:
        _, assignment = await accepted_assignment(db)
        assignment_id = assignment.id
        with pytest.raises(ValidationFailedError):
            await AssignmentStateMachine(db).transition(assignment_id, S.IN_TRANSIT, "driver-1")
        assert (await reload(db, FreightAssignment, assignment_id)).status == S.ACCEPTED

    async def test_steps_cannot_go_backwards(self, db, general_cargo_rate) -> None:
        _, assignment = await accepted_assignment(db)
        machine = AssignmentStateMachine(db)
        await machine.transition(assignment.id, S.LOADING, "driver-1")
        with pytest.raises(ValidationFailedError):
            await machine.transition(assignment.id, S.ACCEPTED, "driver-1")

    async def test_owner_cannot_advance_the_truck(self, db, general_cargo_rate) -> None:
        _, assignment = await accepted_assignment(db)
        with pytest.raises(ForbiddenError):
            await AssignmentStateMachine(db).transition(assignment.id, S.LOADING, PRODUCER)

    async def test_carrier_cannot_confirm_delivery(self, db, general_cargo_rate) -> None:
        _, assignment = await accepted_assignment(db)
        assignment_id = assignment.id
        machine = AssignmentStateMachine(db)
        for step in (S.LOADING, S.LOADED, S.IN_TRANSIT, S.DELIVERED_PENDING_CONFIRMATION):
            await machine.transition(assignment_id, step, "driver-1")
        with pytest.raises(ForbiddenError):
            await machine.transition(assignment_id, S.DELIVERED, "driver-1")
        stored = await reload(db, FreightAssignment, assignment_id)
        assert stored.status == S.DELIVERED_PENDING_CONFIRMATION

    async def test_outsider_is_forbidden(self, db, general_cargo_rate) -> None:
        _, assignment = await accepted_assignment(db)
        with pytest.raises(ForbiddenError):
            await AssignmentStateMachine(db).transition(assignment.id, S.LOADING, "stranger")

    async def test_cancelled_is_not_a_transition(self, db, general_cargo_rate) -> None:
        _, assignment = await accepted_assignment(db)
        with pytest.raises(ValidationFailedError):
            await AssignmentStateMachine(db).transition(assignment.id, S.CANCELLED, "driver-1")

    async def test_fleet_freight_status_is_untouched(self, db, general_cargo_rate) -> None:
        freight, assignment = await accepted_assignment(db, required_trucks=2)
        await AssignmentStateMachine(db).transition(assignment.id, S.LOADING, "driver-1")
        assert (await reload(db, Freight, freight.id)).status == S.OPEN


class TestWithdraw:
    async def test_frees_slot_and_charges_fee(self, db, general_cargo_rate) -> None:
        freight, assignment = await accepted_assignment(db)
        freight_id = freight.id

        result = await AssignmentStateMachine(db).withdraw(assignment.id, "driver-1", "truck broke down")

        assert result.freed_slot is True
        assert result.withdrawal_fee == Decimal("50.00")
        assert result.remaining_slots == 1
        assert result.assignment.status == S.CANCELLED
        assert result.assignment.cancelled_by == "driver-1"
        assert result.assignment.cancellation_reason == "truck broke down"

        stored = await reload(db, Freight, freight_id)
        assert stored.accepted_trucks == 0
        assert stored.driver_id is None
        assert stored.status == S.OPEN

        deductions = (await db.execute(select(PayoutDeduction))).scalars().all()
        assert len(deductions) == 1
        assert deductions[0].driver_id == "driver-1"
        assert deductions[0].amount == Decimal("50.00")
        assert deductions[0].status == PayoutDeductionStatus.PENDING

    async def test_freed_slot_can_be_filled_again(self, db, general_cargo_rate) -> None:
        freight, assignment = await accepted_assignment(db)
        freight_id = freight.id
        await AssignmentStateMachine(db).withdraw(assignment.id, "driver-1")

        replacement = await make_proposal(db, freight_id, "driver-2", 400)
        result = await CapacityAllocator(db).accept_proposal(replacement.id, PRODUCER)

        assert result.remaining_slots == 0
        stored = await reload(db, Freight, freight_id)
        assert stored.driver_id == "driver-2"
        assert await count_assignments(db, freight_id) == 2
        assert await count_assignments(db, freight_id, active_only=True) == 1

    async def test_same_carrier_can_return_after_withdrawing(self, db, general_cargo_rate) -> None:
        freight, assignment = await accepted_assignment(db, required_trucks=2)
        freight_id = freight.id
        await AssignmentStateMachine(db).withdraw(assignment.id, "driver-1")

        again = await make_proposal(db, freight_id, "driver-1", 400)
        await CapacityAllocator(db).accept_proposal(again.id, PRODUCER)
        assert await count_assignments(db, freight_id, active_only=True) == 1

    async def test_only_before_loading(self, db, general_cargo_rate) -> None:
        freight, assignment = await accepted_assignment(db)
        freight_id = freight.id
        machine = AssignmentStateMachine(db)
        await machine.transition(assignment.id, S.LOADING, "driver-1")

        with pytest.raises(ValidationFailedError):
            await machine.withdraw(assignment.id, "driver-1")
        assert (await reload(db, Freight, freight_id)).accepted_trucks == 1
        assert (await db.execute(select(PayoutDeduction))).scalars().all() == []

    async def test_only_the_carrier_withdraws(self, db, general_cargo_rate) -> None:
        _, assignment = await accepted_assignment(db)
        with pytest.raises(ForbiddenError):
            await AssignmentStateMachine(db).withdraw(assignment.id, PRODUCER)

    async def test_second_withdrawal_is_refused(self, db, general_cargo_rate) -> None:
        freight, assignment = await accepted_assignment(db, required_trucks=2)
        freight_id = freight.id
        machine = AssignmentStateMachine(db)
        await machine.withdraw(assignment.id, "driver-1")

        with pytest.raises(ValidationFailedError):
            await machine.withdraw(assignment.id, "driver-1")
        assert (await reload(db, Freight, freight_id)).accepted_trucks == 0

    async def test_stale_withdrawal_loses_to_concurrent_change(self, db, session_factory, general_cargo_rate) -> None:
        freight, assignment = await accepted_assignment(db, required_trucks=2)
        freight_id, assignment_id = freight.id, assignment.id
        await db.commit()

        async with session_factory() as other:
            stale = await other.get(FreightAssignment, assignment_id)
            assert stale.status == S.ACCEPTED
            await other.commit()

            await AssignmentStateMachine(db).transition(assignment_id, S.LOADING, "driver-1")

            with pytest.raises(ConflictError):
                await AssignmentStateMachine(other).withdraw(assignment_id, "driver-1")

        assert (await reload(db, Freight, freight_id)).accepted_trucks == 1
        assert (await reload(db, FreightAssignment, assignment_id)).status == S.LOADING

    async def test_stale_transition_cannot_revive_withdrawn_assignment(
        self, db, session_factory, general_cargo_rate
    ) -> None:
        freight, assignment = await accepted_assignment(db)
        freight_id, assignment_id = freight.id, assignment.id

        async with session_factory() as other:
            stale = await other.get(FreightAssignment, assignment_id)
            assert stale.status == S.ACCEPTED
            await other.commit()

            await AssignmentStateMachine(db).withdraw(assignment_id, "driver-1")

            with pytest.raises(ConflictError):
                await AssignmentStateMachine(other).transition(assignment_id, S.LOADING, "driver-1")

        proposal = await make_proposal(db, freight_id, "driver-2", "1000.00")
        await CapacityAllocator(db).accept_proposal(proposal.id, PRODUCER)

        assert (await reload(db, FreightAssignment, assignment_id)).status == S.CANCELLED
        assert await count_assignments(db, freight_id, active_only=True) == 1
        stored = await reload(db, Freight, freight_id)
        assert stored.accepted_trucks == 1
        assert stored.driver_id == "driver-2"
        events = (
            await db.execute(
                select(AssignmentStatusEvent.to_status).where(AssignmentStatusEvent.assignment_id == assignment_id)
            )
        ).scalars().all()
        assert "LOADING" not in events


class TestRelease:
    async def test_owner_releases_without_fee(self, db, general_cargo_rate) -> None:
        freight, assignment = await accepted_assignment(db)
        freight_id = freight.id
        await AssignmentStateMachine(db).transition(assignment.id, S.LOADING, "driver-1")

        result = await AssignmentStateMachine(db).release(assignment.id, PRODUCER, "no show")

        assert result.withdrawal_fee is None
        assert result.remaining_slots == 1
        assert result.assignment.status == S.CANCELLED
        stored = await reload(db, Freight, freight_id)
        assert stored.accepted_trucks == 0
        assert stored.driver_id is None
        assert stored.status == S.OPEN
        assert (await db.execute(select(PayoutDeduction))).scalars().all() == []

    async def test_not_after_loading(self, db, general_cargo_rate) -> None:
        _, assignment = await accepted_assignment(db)
        machine = AssignmentStateMachine(db)
        await machine.transition(assignment.id, S.LOADING, "driver-1")
        await machine.transition(assignment.id, S.LOADED, "driver-1")
        with pytest.raises(ValidationFailedError):
            await machine.release(assignment.id, PRODUCER)

    async def test_only_owner_releases(self, db, general_cargo_rate) -> None:
        _, assignment = await accepted_assignment(db)
        with pytest.raises(ForbiddenError):
            await AssignmentStateMachine(db).release(assignment.id, "driver-1")


class TestPayments:
    async def test_handshake_completes_single_truck_freight(self, db, general_cargo_rate) -> None:
        freight, assignment = await accepted_assignment(db)
        freight_id, assignment_id = freight.id, assignment.id
        await _deliver(db, assignment_id)
        machine = AssignmentStateMachine(db)

        await machine.confirm_payment_sent(assignment_id, PRODUCER)
        await machine.confirm_payment_received(assignment_id, "driver-1")

        stored = await reload(db, FreightAssignment, assignment_id)
        assert stored.payment_confirmed_by_producer_at is not None
        assert stored.payment_confirmed_by_driver_at is not None
        assert stored.status == S.DELIVERED
        assert (await reload(db, Freight, freight_id)).status == S.COMPLETED

        history = (await db.execute(select(FreightHistory))).scalars().all()
        assert len(history) == 1
        assert history[0].delivery_confirmed_by == PRODUCER
        assert history[0].payment_confirmed_by_producer_at is not None
        assert history[0].payment_confirmed_by_driver_at is not None
        assert history[0].final_status == "DELIVERED"

    async def test_payment_requires_delivery(self, db, general_cargo_rate) -> None:
        _, assignment = await accepted_assignment(db)
        with pytest.raises(ValidationFailedError):
            await AssignmentStateMachine(db).confirm_payment_sent(assignment.id, PRODUCER)

    async def test_receipt_requires_the_sent_mark(self, db, general_cargo_rate) -> None:
        _, assignment = await accepted_assignment(db)
        await _deliver(db, assignment.id)
        with pytest.raises(ValidationFailedError):
            await AssignmentStateMachine(db).confirm_payment_received(assignment.id, "driver-1")

    async def test_marks_are_idempotent(self, db, general_cargo_rate) -> None:
        _, assignment = await accepted_assignment(db)
        assignment_id = assignment.id
        await _deliver(db, assignment_id)
        machine = AssignmentStateMachine(db)

        first = await machine.confirm_payment_sent(assignment_id, PRODUCER)
        sent_at = first.payment_confirmed_by_producer_at
        second = await machine.confirm_payment_sent(assignment_id, PRODUCER)
        assert second.payment_confirmed_by_producer_at == sent_at

    async def test_parties_are_checked(self, db, general_cargo_rate) -> None:
        _, assignment = await accepted_assignment(db)
        assignment_id = assignment.id
        await _deliver(db, assignment_id)
        machine = AssignmentStateMachine(db)
        with pytest.raises(ForbiddenError):
            await machine.confirm_payment_sent(assignment_id, "driver-1")
        with pytest.raises(ForbiddenError):
            await machine.confirm_payment_received(assignment_id, PRODUCER)


class TestFleetDelivery:
    async def test_freight_history_waits_for_every_truck(self, db, general_cargo_rate) -> None:
        freight, first = await accepted_assignment(db, required_trucks=2, driver_id="driver-1", price="600.00")
        freight_id = freight.id
        proposal = await make_proposal(db, freight_id, "driver-2", "700.00")
        second = (await CapacityAllocator(db).accept_proposal(proposal.id, PRODUCER)).assignment

        await _deliver(db, first.id, "driver-1")
        assert (await db.execute(select(FreightHistory))).scalars().all() == []
        assert len((await db.execute(select(AssignmentHistory))).scalars().all()) == 1

        await _deliver(db, second.id, "driver-2")
        history = (await db.execute(select(FreightHistory))).scalars().all()
        assert len(history) == 1
        assert history[0].total_agreed_price == Decimal("1300.00")
        assert history[0].required_trucks == 2
        assert len(history[0].snapshot["assignments"]) == 2


class TestRatings:
    async def test_owner_rates_after_delivery(self, db, general_cargo_rate) -> None:
        _, assignment = await accepted_assignment(db)
        await _deliver(db, assignment.id)
        rating = await AssignmentStateMachine(db).submit_rating(assignment.id, PRODUCER, 5, "pontual")
        assert rating.rated_id == "driver-1"
        assert rating.score == 5

    async def test_carrier_waits_for_both_payment_marks(self, db, general_cargo_rate) -> None:
        _, assignment = await accepted_assignment(db)
        assignment_id = assignment.id
        await _deliver(db, assignment_id)
        machine = AssignmentStateMachine(db)
        await machine.confirm_payment_sent(assignment_id, PRODUCER)

        with pytest.raises(ValidationFailedError):
            await machine.submit_rating(assignment_id, "driver-1", 4)

        await machine.confirm_payment_received(assignment_id, "driver-1")
        rating = await machine.submit_rating(assignment_id, "driver-1", 4)
        assert rating.rated_id == PRODUCER

    async def test_owner_cannot_rate_before_delivery(self, db, general_cargo_rate) -> None:
        _, assignment = await accepted_assignment(db)
        with pytest.raises(ValidationFailedError):
            await AssignmentStateMachine(db).submit_rating(assignment.id, PRODUCER, 5)

    @pytest.mark.parametrize("score", [0, 6])
    async def test_score_range(self, db, general_cargo_rate, score) -> None:
        _, assignment = await accepted_assignment(db)
        await _deliver(db, assignment.id)
        with pytest.raises(ValidationFailedError):
            await AssignmentStateMachine(db).submit_rating(assignment.id, PRODUCER, score)

    async def test_one_rating_per_rater(self, db, general_cargo_rate) -> None:
        _, assignment = await accepted_assignment(db)
        assignment_id = assignment.id
        await _deliver(db, assignment_id)
        machine = AssignmentStateMachine(db)
        await machine.submit_rating(assignment_id, PRODUCER, 5)
        with pytest.raises(ConflictError):
            await machine.submit_rating(assignment_id, PRODUCER, 3)
        assert len((await db.execute(select(FreightRating))).scalars().all()) == 1

    async def test_outsider_cannot_rate(self, db, general_cargo_rate) -> None:
        _, assignment = await accepted_assignment(db)
        await _deliver(db, assignment.id)
        with pytest.raises(ForbiddenError):
            await AssignmentStateMachine(db).submit_rating(assignment.id, "stranger", 5)
