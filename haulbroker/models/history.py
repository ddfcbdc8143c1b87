"""
Write-once history snapshots of completed freights and assignments.

Rows are keyed uniquely by the entity id. Writers merge on conflict and only
ever fill columns that are still empty, so repeated triggers (delivery
confirmation, producer payment mark, driver payment confirmation) converge on
a single record and never rewrite a value already stored.
"""

from sqlalchemy import JSON, Column, DateTime, ForeignKey, Integer, Numeric, String, func

from haulbroker.models.base import Base, utcnow


class FreightHistory(Base):
    __tablename__ = "freight_history"

    id = Column(String, primary_key=True)
    freight_id = Column(String, ForeignKey("freight.id"), nullable=False, unique=True)

    final_status = Column(String, nullable=True)
    required_trucks = Column(Integer, nullable=True)
    total_agreed_price = Column(Numeric(14, 2), nullable=True)
    snapshot = Column(JSON, nullable=True)

    delivery_confirmed_at = Column(DateTime, nullable=True)
    delivery_confirmed_by = Column(String, nullable=True)
    payment_confirmed_by_producer_at = Column(DateTime, nullable=True)
    payment_confirmed_by_driver_at = Column(DateTime, nullable=True)

    created_at = Column(DateTime, nullable=False, default=utcnow, server_default=func.now())


class AssignmentHistory(Base):
    __tablename__ = "freight_assignment_history"

    id = Column(String, primary_key=True)
    assignment_id = Column(String, ForeignKey("freight_assignment.id"), nullable=False, unique=True)
    freight_id = Column(String, ForeignKey("freight.id"), nullable=False, index=True)
    driver_id = Column(String, nullable=True)

    final_status = Column(String, nullable=True)
    agreed_price = Column(Numeric(12, 2), nullable=True)
    snapshot = Column(JSON, nullable=True)

    accepted_at = Column(DateTime, nullable=True)
    delivery_reported_at = Column(DateTime, nullable=True)
    delivery_confirmed_at = Column(DateTime, nullable=True)
    delivery_confirmed_by = Column(String, nullable=True)
    payment_confirmed_by_producer_at = Column(DateTime, nullable=True)
    payment_confirmed_by_driver_at = Column(DateTime, nullable=True)

    created_at = Column(DateTime, nullable=False, default=utcnow, server_default=func.now())
