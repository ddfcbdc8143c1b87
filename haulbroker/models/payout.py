"""Debits queued against a carrier's next payout."""

import enum

from sqlalchemy import Column, DateTime, Enum, ForeignKey, Numeric, String, Text, func

from haulbroker.models.base import Base, enum_values, utcnow


class PayoutDeductionStatus(str, enum.Enum):
    PENDING = "pending"
    APPLIED = "applied"
    CANCELLED = "cancelled"


class PayoutDeduction(Base):
    __tablename__ = "payout_deduction"

    id = Column(String, primary_key=True)
    driver_id = Column(String, nullable=False, index=True)
    # One fee per withdrawn assignment
    assignment_id = Column(String, ForeignKey("freight_assignment.id"), nullable=False, unique=True)
    freight_id = Column(String, ForeignKey("freight.id"), nullable=False, index=True)

    amount = Column(Numeric(12, 2), nullable=False)
    currency = Column(String, nullable=False, default="BRL")
    reason = Column(Text, nullable=True)
    status = Column(
        Enum(PayoutDeductionStatus, values_callable=enum_values, native_enum=False, length=16),
        nullable=False,
        default=PayoutDeductionStatus.PENDING,
    )

    created_at = Column(DateTime, nullable=False, default=utcnow, server_default=func.now())
