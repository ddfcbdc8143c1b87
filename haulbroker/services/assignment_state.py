"""
Per-truck delivery lifecycle.

    ACCEPTED -> LOADING -> LOADED -> IN_TRANSIT -> DELIVERED_PENDING_CONFIRMATION -> DELIVERED

The carrier drives every step up to DELIVERED_PENDING_CONFIRMATION; only the
freight owner confirms delivery. CANCELLED is reached through withdrawal
(carrier, from ACCEPTED, fee charged) or release (owner, from ACCEPTED or
LOADING, no fee), and both hand the slot back through the capacity allocator.

Payment confirmation runs beside the lifecycle: the owner marks the payment
as sent, then the carrier confirms receipt. It never moves the assignment,
but the carrier can only rate once both marks exist.
"""

from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass
from decimal import Decimal
from typing import Optional

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
from haulbroker.models.freight import Freight, FreightStatus
from haulbroker.models.rating import FreightRating
from haulbroker.services.capacity import CapacityAllocator
from haulbroker.services.event_dispatcher import EventType, emit_event
from haulbroker.services.history import HistorySnapshotWriter
from haulbroker.services.payout_ledger import PayoutLedger

logger = logging.getLogger(__name__)

CARRIER_STEPS = {
    FreightStatus.ACCEPTED: FreightStatus.LOADING,
    FreightStatus.LOADING: FreightStatus.LOADED,
    FreightStatus.LOADED: FreightStatus.IN_TRANSIT,
    FreightStatus.IN_TRANSIT: FreightStatus.DELIVERED_PENDING_CONFIRMATION,
}

RELEASABLE = (FreightStatus.ACCEPTED, FreightStatus.LOADING)


@dataclass
class WithdrawalResult:
    assignment: FreightAssignment
    freed_slot: bool
    withdrawal_fee: Optional[Decimal]
    remaining_slots: int


class AssignmentStateMachine:
    def __init__(self, db: AsyncSession) -> None:
        self.db = db

    async def _load(self, assignment_id: str) -> tuple[FreightAssignment, Freight]:
        assignment = await self.db.get(FreightAssignment, assignment_id)
        if assignment is None:
            raise NotFoundError("Assignment not found", details={"assignment_id": assignment_id})
        freight = await self.db.get(Freight, assignment.freight_id)
        if freight is None:
            raise NotFoundError("Freight not found", details={"freight_id": assignment.freight_id})
        return assignment, freight

    async def get_assignment(self, assignment_id: str) -> FreightAssignment:
        assignment, _ = await self._load(assignment_id)
        return assignment

    def _record(self, assignment: FreightAssignment, from_status, to_status: FreightStatus, actor_id: str, notes=None) -> None:
        self.db.add(
            AssignmentStatusEvent(
                id=str(uuid.uuid4()),
                assignment_id=assignment.id,
                from_status=FreightStatus(from_status).value if from_status else None,
                to_status=to_status.value,
                actor_id=actor_id,
                notes=notes,
                created_at=utcnow(),
            )
        )

    async def _fail(self, exc: BrokerError, operation: str, assignment_id: str) -> None:
        await self.db.rollback()
        logger.info(
            "assignment_operation_refused",
            extra={"operation": operation, "assignment_id": assignment_id, "code": exc.code.value, "reason": exc.message},
        )

    async def _freight_fully_delivered(self, freight: Freight) -> bool:
        if freight.accepted_trucks < freight.required_trucks:
            return False
        result = await self.db.execute(
            select(FreightAssignment.status).where(
                FreightAssignment.freight_id == freight.id,
                FreightAssignment.status != FreightStatus.CANCELLED,
            )
        )
        statuses = [FreightStatus(s) for s in result.scalars().all()]
        return bool(statuses) and all(s == FreightStatus.DELIVERED for s in statuses)

    # Lifecycle ------------------------------------------------------------

    async def transition(
        self, assignment_id: str, target: FreightStatus, actor_id: str, notes: Optional[str] = None
    ) -> FreightAssignment:
        try:
            assignment, freight, previous = await self._transition(assignment_id, FreightStatus(target), actor_id, notes)
        except BrokerError as exc:
            await self._fail(exc, "transition", assignment_id)
            raise

        counterpart = freight.producer_id if actor_id == assignment.driver_id else assignment.driver_id
        await emit_event(
            EventType.ASSIGNMENT_STATUS_CHANGED,
            {
                "freight_id": freight.id,
                "assignment_id": assignment.id,
                "from_status": previous.value,
                "to_status": FreightStatus(assignment.status).value,
            },
            target_user_id=counterpart,
        )
        if assignment.status == FreightStatus.DELIVERED:
            await emit_event(
                EventType.ASSIGNMENT_DELIVERY_CONFIRMED,
                {"freight_id": freight.id, "assignment_id": assignment.id},
                target_user_id=assignment.driver_id,
            )
        return assignment

    async def _transition(self, assignment_id: str, target: FreightStatus, actor_id: str, notes: Optional[str]):
        assignment, freight = await self._load(assignment_id)
        current = FreightStatus(assignment.status)
        is_carrier = actor_id == assignment.driver_id
        is_owner = actor_id == freight.producer_id

        if not (is_carrier or is_owner):
            raise ForbiddenError("Actor is not a party to this assignment", details={"assignment_id": assignment_id})
        if target == FreightStatus.CANCELLED:
            raise ValidationFailedError(
                "Cancellation goes through withdrawal or release",
                details={"assignment_id": assignment_id},
            )

        if CARRIER_STEPS.get(current) == target:
            if not is_carrier:
                raise ForbiddenError("Only the carrier advances the delivery", details={"assignment_id": assignment_id})
        elif current == FreightStatus.DELIVERED_PENDING_CONFIRMATION and target == FreightStatus.DELIVERED:
            if not is_owner:
                raise ForbiddenError("Only the freight owner confirms delivery", details={"assignment_id": assignment_id})
        else:
            raise ValidationFailedError(
                f"Invalid transition {current.value} -> {target.value}",
                details={"assignment_id": assignment_id, "from_status": current.value, "to_status": target.value},
            )

        now = utcnow()
        values = {"status": target, "updated_at": now}
        if target == FreightStatus.DELIVERED_PENDING_CONFIRMATION:
            values["delivery_reported_at"] = now
        elif target == FreightStatus.DELIVERED:
            values["delivery_confirmed_at"] = now
            values["delivery_confirmed_by"] = actor_id
        result = await self.db.execute(
            update(FreightAssignment)
            .where(FreightAssignment.id == assignment.id, FreightAssignment.status == current)
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            raise ConflictError("Assignment changed concurrently", details={"assignment_id": assignment.id})
        await self.db.refresh(assignment)

        if freight.is_single_truck:
            freight.status = target
        self._record(assignment, current, target, actor_id, notes)

        if target == FreightStatus.DELIVERED:
            writer = HistorySnapshotWriter(self.db)
            await writer.persist_assignment_snapshot(
                assignment.id, delivery_confirmed_at=now, delivery_confirmed_by=actor_id
            )
            if await self._freight_fully_delivered(freight):
                await writer.persist_freight_snapshot(
                    freight.id, delivery_confirmed_at=now, delivery_confirmed_by=actor_id
                )

        await self.db.commit()

        logger.info(
            "assignment_status_changed",
            extra={
                "assignment_id": assignment.id,
                "freight_id": freight.id,
                "from_status": current.value,
                "to_status": target.value,
                "actor_id": actor_id,
            },
        )
        return assignment, freight, current

    async def _cancel(self, assignment: FreightAssignment, allowed, actor_id: str, reason: Optional[str]) -> None:
        result = await self.db.execute(
            update(FreightAssignment)
            .where(FreightAssignment.id == assignment.id, FreightAssignment.status.in_(allowed))
            .values(
                status=FreightStatus.CANCELLED,
                cancelled_at=utcnow(),
                cancelled_by=actor_id,
                cancellation_reason=reason,
                updated_at=utcnow(),
            )
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            raise ConflictError("Assignment changed concurrently", details={"assignment_id": assignment.id})

    async def withdraw(self, assignment_id: str, carrier_id: str, reason: Optional[str] = None) -> WithdrawalResult:
        try:
            assignment, freight, deduction = await self._withdraw(assignment_id, carrier_id, reason)
        except BrokerError as exc:
            await self._fail(exc, "withdraw", assignment_id)
            raise

        await emit_event(
            EventType.ASSIGNMENT_WITHDRAWN,
            {"freight_id": freight.id, "assignment_id": assignment.id, "remaining_slots": freight.remaining_slots},
            target_user_id=freight.producer_id,
        )
        return WithdrawalResult(
            assignment=assignment,
            freed_slot=True,
            withdrawal_fee=deduction.amount,
            remaining_slots=freight.remaining_slots,
        )

    async def _withdraw(self, assignment_id: str, carrier_id: str, reason: Optional[str]):
        assignment, freight = await self._load(assignment_id)
        if assignment.driver_id != carrier_id:
            raise ForbiddenError("Only the assigned carrier can withdraw", details={"assignment_id": assignment_id})
        current = FreightStatus(assignment.status)
        if current != FreightStatus.ACCEPTED:
            raise ValidationFailedError(
                "Withdrawal is only possible before loading starts",
                details={"assignment_id": assignment_id, "status": current.value},
            )

        await self._cancel(assignment, (FreightStatus.ACCEPTED,), carrier_id, reason)
        deduction = PayoutLedger(self.db).queue_withdrawal_fee(assignment)
        await CapacityAllocator(self.db).release_slot(freight, carrier_id)
        self._record(assignment, current, FreightStatus.CANCELLED, carrier_id, reason)

        await self.db.flush()
        await self.db.refresh(assignment)
        await self.db.refresh(freight)
        await self.db.commit()

        logger.info(
            "assignment_withdrawn",
            extra={
                "assignment_id": assignment.id,
                "freight_id": freight.id,
                "driver_id": carrier_id,
                "withdrawal_fee": str(deduction.amount),
                "accepted_trucks": freight.accepted_trucks,
            },
        )
        return assignment, freight, deduction

    async def release(self, assignment_id: str, producer_id: str, reason: Optional[str] = None) -> WithdrawalResult:
        try:
            assignment, freight = await self._release(assignment_id, producer_id, reason)
        except BrokerError as exc:
            await self._fail(exc, "release", assignment_id)
            raise

        await emit_event(
            EventType.ASSIGNMENT_RELEASED,
            {"freight_id": freight.id, "assignment_id": assignment.id},
            target_user_id=assignment.driver_id,
        )
        return WithdrawalResult(
            assignment=assignment, freed_slot=True, withdrawal_fee=None, remaining_slots=freight.remaining_slots
        )

    async def _release(self, assignment_id: str, producer_id: str, reason: Optional[str]):
        assignment, freight = await self._load(assignment_id)
        if freight.producer_id != producer_id:
            raise ForbiddenError("Only the freight owner can release a carrier", details={"assignment_id": assignment_id})
        current = FreightStatus(assignment.status)
        if current not in RELEASABLE:
            raise ValidationFailedError(
                "Carrier can only be released before the cargo is loaded",
                details={"assignment_id": assignment_id, "status": current.value},
            )

        await self._cancel(assignment, RELEASABLE, producer_id, reason)
        await CapacityAllocator(self.db).release_slot(freight, assignment.driver_id)
        self._record(assignment, current, FreightStatus.CANCELLED, producer_id, reason)

        await self.db.flush()
        await self.db.refresh(assignment)
        await self.db.refresh(freight)
        await self.db.commit()

        logger.info(
            "assignment_released",
            extra={"assignment_id": assignment.id, "freight_id": freight.id, "driver_id": assignment.driver_id},
        )
        return assignment, freight

    # Payment handshake ------------------------------------------------------

    async def confirm_payment_sent(self, assignment_id: str, producer_id: str) -> FreightAssignment:
        try:
            assignment, freight, changed = await self._confirm_payment_sent(assignment_id, producer_id)
        except BrokerError as exc:
            await self._fail(exc, "confirm_payment_sent", assignment_id)
            raise

        if changed:
            await emit_event(
                EventType.ASSIGNMENT_PAYMENT_SENT,
                {"freight_id": freight.id, "assignment_id": assignment.id},
                target_user_id=assignment.driver_id,
            )
        return assignment

    async def _confirm_payment_sent(self, assignment_id: str, producer_id: str):
        assignment, freight = await self._load(assignment_id)
        if freight.producer_id != producer_id:
            raise ForbiddenError("Only the freight owner marks the payment", details={"assignment_id": assignment_id})
        if assignment.status != FreightStatus.DELIVERED:
            raise ValidationFailedError(
                "Payment can only be marked after delivery is confirmed",
                details={"assignment_id": assignment_id, "status": FreightStatus(assignment.status).value},
            )
        if assignment.payment_confirmed_by_producer_at is not None:
            return assignment, freight, False

        now = utcnow()
        assignment.payment_confirmed_by_producer_at = now
        writer = HistorySnapshotWriter(self.db)
        await writer.persist_assignment_snapshot(assignment.id, payment_confirmed_by_producer_at=now)
        if freight.is_single_truck:
            await writer.persist_freight_snapshot(freight.id, payment_confirmed_by_producer_at=now)

        await self.db.commit()
        logger.info("payment_marked_sent", extra={"assignment_id": assignment.id, "freight_id": freight.id})
        return assignment, freight, True

    async def confirm_payment_received(self, assignment_id: str, carrier_id: str) -> FreightAssignment:
        try:
            assignment, freight, changed = await self._confirm_payment_received(assignment_id, carrier_id)
        except BrokerError as exc:
            await self._fail(exc, "confirm_payment_received", assignment_id)
            raise

        if changed:
            await emit_event(
                EventType.ASSIGNMENT_PAYMENT_RECEIVED,
                {"freight_id": freight.id, "assignment_id": assignment.id},
                target_user_id=freight.producer_id,
            )
        return assignment

    async def _confirm_payment_received(self, assignment_id: str, carrier_id: str):
        assignment, freight = await self._load(assignment_id)
        if assignment.driver_id != carrier_id:
            raise ForbiddenError("Only the assigned carrier confirms receipt", details={"assignment_id": assignment_id})
        if assignment.status != FreightStatus.DELIVERED:
            raise ValidationFailedError(
                "Payment can only be confirmed after delivery is confirmed",
                details={"assignment_id": assignment_id, "status": FreightStatus(assignment.status).value},
            )
        if assignment.payment_confirmed_by_producer_at is None:
            raise ValidationFailedError(
                "The freight owner has not marked the payment as sent",
                details={"assignment_id": assignment_id},
            )
        if assignment.payment_confirmed_by_driver_at is not None:
            return assignment, freight, False

        now = utcnow()
        assignment.payment_confirmed_by_driver_at = now
        writer = HistorySnapshotWriter(self.db)
        await writer.persist_assignment_snapshot(assignment.id, payment_confirmed_by_driver_at=now)
        if freight.is_single_truck:
            await writer.persist_freight_snapshot(freight.id, payment_confirmed_by_driver_at=now)
            if freight.status == FreightStatus.DELIVERED:
                freight.status = FreightStatus.COMPLETED

        await self.db.flush()
        await self.db.refresh(assignment)
        await self.db.refresh(freight)
        await self.db.commit()
        logger.info("payment_confirmed_received", extra={"assignment_id": assignment.id, "freight_id": freight.id})
        return assignment, freight, True

    # Ratings ----------------------------------------------------------------

    async def submit_rating(
        self, assignment_id: str, rater_id: str, score: int, comment: Optional[str] = None
    ) -> FreightRating:
        try:
            return await self._submit_rating(assignment_id, rater_id, score, comment)
        except BrokerError as exc:
            await self._fail(exc, "submit_rating", assignment_id)
            raise
        except IntegrityError:
            await self.db.rollback()
            raise ConflictError("Rating already submitted", details={"assignment_id": assignment_id})

    async def _submit_rating(self, assignment_id: str, rater_id: str, score: int, comment: Optional[str]) -> FreightRating:
        assignment, freight = await self._load(assignment_id)
        if rater_id == assignment.driver_id:
            rated_id = freight.producer_id
            if assignment.payment_confirmed_by_producer_at is None or assignment.payment_confirmed_by_driver_at is None:
                raise ValidationFailedError(
                    "Carrier can rate only after both payment confirmations",
                    details={"assignment_id": assignment_id},
                )
        elif rater_id == freight.producer_id:
            rated_id = assignment.driver_id
            if assignment.status != FreightStatus.DELIVERED:
                raise ValidationFailedError(
                    "Freight owner can rate only after delivery is confirmed",
                    details={"assignment_id": assignment_id},
                )
        else:
            raise ForbiddenError("Actor is not a party to this assignment", details={"assignment_id": assignment_id})

        if not 1 <= score <= 5:
            raise ValidationFailedError("Score must be between 1 and 5", details={"score": score})

        existing = await self.db.execute(
            select(FreightRating.id).where(
                FreightRating.assignment_id == assignment_id, FreightRating.rater_id == rater_id
            )
        )
        if existing.first() is not None:
            raise ConflictError("Rating already submitted", details={"assignment_id": assignment_id})

        rating = FreightRating(
            id=str(uuid.uuid4()),
            freight_id=freight.id,
            assignment_id=assignment_id,
            rater_id=rater_id,
            rated_id=rated_id,
            score=score,
            comment=comment,
        )
        self.db.add(rating)
        await self.db.commit()
        logger.info("rating_submitted", extra={"assignment_id": assignment_id, "rater_id": rater_id, "score": score})
        return rating
