from __future__ import annotations

import logging
import uuid
from decimal import Decimal
from typing import Optional

from sqlalchemy.ext.asyncio import AsyncSession

from haulbroker.core.config import get_settings
from haulbroker.models.assignment import FreightAssignment
from haulbroker.models.payout import PayoutDeduction, PayoutDeductionStatus
from haulbroker.utils.money import quantize_money

logger = logging.getLogger(__name__)
settings = get_settings()


class PayoutLedger:
    """Queues debits against a carrier's next payout.

    Entries are added to the caller's session and commit with the caller's
    transaction, so a rolled back withdrawal leaves no fee behind.
    """

    def __init__(self, db: AsyncSession) -> None:
        self.db = db

    def queue_withdrawal_fee(
        self,
        assignment: FreightAssignment,
        amount: Optional[Decimal] = None,
        reason: Optional[str] = None,
    ) -> PayoutDeduction:
        fee = quantize_money(amount if amount is not None else settings.withdrawal_fee)
        deduction = PayoutDeduction(
            id=str(uuid.uuid4()),
            driver_id=assignment.driver_id,
            assignment_id=assignment.id,
            freight_id=assignment.freight_id,
            amount=fee,
            currency=settings.payout_currency,
            reason=reason or "Taxa de desistência de frete aceito",
            status=PayoutDeductionStatus.PENDING,
        )
        self.db.add(deduction)
        logger.info(
            "withdrawal_fee_queued",
            extra={"driver_id": assignment.driver_id, "assignment_id": assignment.id, "amount": str(fee)},
        )
        return deduction
