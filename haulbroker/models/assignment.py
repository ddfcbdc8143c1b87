from sqlalchemy import Column, DateTime, Enum, ForeignKey, Index, Numeric, String, Text, func, text
from sqlalchemy.orm import relationship

from haulbroker.models.base import Base, enum_values, utcnow
from haulbroker.models.freight import FreightStatus

_ACTIVE_ONLY = text("status != 'CANCELLED'")


class FreightAssignment(Base):
    """One accepted truck on one freight slot."""

    __tablename__ = "freight_assignment"

    id = Column(String, primary_key=True)
    freight_id = Column(String, ForeignKey("freight.id"), nullable=False, index=True)
    driver_id = Column(String, nullable=False, index=True)
    proposal_id = Column(String, ForeignKey("freight_proposal.id"), nullable=True, index=True)

    agreed_price = Column(Numeric(12, 2), nullable=False)
    minimum_regulatory_price = Column(Numeric(12, 2), nullable=True)
    status = Column(
        Enum(FreightStatus, values_callable=enum_values, native_enum=False, length=40),
        nullable=False,
        default=FreightStatus.ACCEPTED,
    )

    accepted_at = Column(DateTime, nullable=False)
    delivery_reported_at = Column(DateTime, nullable=True)
    delivery_confirmed_at = Column(DateTime, nullable=True)
    delivery_confirmed_by = Column(String, nullable=True)
    payment_confirmed_by_producer_at = Column(DateTime, nullable=True)
    payment_confirmed_by_driver_at = Column(DateTime, nullable=True)

    cancelled_at = Column(DateTime, nullable=True)
    cancelled_by = Column(String, nullable=True)
    cancellation_reason = Column(Text, nullable=True)

    created_at = Column(DateTime, nullable=False, default=utcnow, server_default=func.now())
    updated_at = Column(DateTime, nullable=False, default=utcnow, server_default=func.now(), onupdate=utcnow)

    freight = relationship("Freight", back_populates="assignments")
    status_events = relationship(
        "AssignmentStatusEvent",
        back_populates="assignment",
        cascade="all, delete-orphan",
        order_by="AssignmentStatusEvent.created_at",
    )

    __table_args__ = (
        # A carrier can hold at most one live assignment per freight
        Index(
            "uq_freight_assignment_active_driver",
            "freight_id",
            "driver_id",
            unique=True,
            sqlite_where=_ACTIVE_ONLY,
            postgresql_where=_ACTIVE_ONLY,
        ),
    )


class AssignmentStatusEvent(Base):
    __tablename__ = "freight_assignment_status_event"

    id = Column(String, primary_key=True)
    assignment_id = Column(String, ForeignKey("freight_assignment.id"), nullable=False, index=True)
    from_status = Column(String, nullable=True)
    to_status = Column(String, nullable=False)
    actor_id = Column(String, nullable=True)
    notes = Column(Text, nullable=True)
    created_at = Column(DateTime, nullable=False)

    assignment = relationship("FreightAssignment", back_populates="status_events")
