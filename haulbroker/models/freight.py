import enum

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    Column,
    DateTime,
    Enum,
    ForeignKey,
    Integer,
    Numeric,
    String,
    Text,
    func,
)
from sqlalchemy.orm import relationship

from haulbroker.models.base import Base, enum_values, utcnow


class FreightStatus(str, enum.Enum):
    """Lifecycle values shared by freights and their per-truck assignments.

    Assignments never hold OPEN or COMPLETED; those belong to the freight.
    """

    OPEN = "OPEN"
    ACCEPTED = "ACCEPTED"
    LOADING = "LOADING"
    LOADED = "LOADED"
    IN_TRANSIT = "IN_TRANSIT"
    DELIVERED_PENDING_CONFIRMATION = "DELIVERED_PENDING_CONFIRMATION"
    DELIVERED = "DELIVERED"
    COMPLETED = "COMPLETED"
    CANCELLED = "CANCELLED"


class PricingType(str, enum.Enum):
    FIXED = "FIXED"
    PER_KM = "PER_KM"
    PER_TON = "PER_TON"


class ProposalStatus(str, enum.Enum):
    PENDING = "PENDING"
    ACCEPTED = "ACCEPTED"
    REJECTED = "REJECTED"


class Freight(Base):
    __tablename__ = "freight"

    id = Column(String, primary_key=True)
    producer_id = Column(String, nullable=False, index=True)

    cargo_type = Column(String, nullable=False)
    cargo_category = Column(String, nullable=True)
    weight = Column(Numeric(12, 2), nullable=True)  # kg
    distance_km = Column(Numeric(10, 2), nullable=True)
    vehicle_axles = Column(Integer, nullable=True)
    high_performance = Column(Boolean, nullable=False, default=False)
    vehicle_ownership = Column(String, nullable=False, default="THIRD_PARTY")
    table_tier = Column(String(1), nullable=True)

    required_trucks = Column(Integer, nullable=False, default=1)
    accepted_trucks = Column(Integer, nullable=False, default=0)
    status = Column(
        Enum(FreightStatus, values_callable=enum_values, native_enum=False, length=40),
        nullable=False,
        default=FreightStatus.OPEN,
    )
    # Set at most once, and only for single-truck freights
    driver_id = Column(String, nullable=True, index=True)

    pricing_type = Column(
        Enum(PricingType, values_callable=enum_values, native_enum=False, length=16),
        nullable=False,
        default=PricingType.FIXED,
    )
    price = Column(Numeric(12, 2), nullable=True)
    price_per_km = Column(Numeric(12, 4), nullable=True)
    price_per_ton = Column(Numeric(12, 4), nullable=True)

    # Per truck; null means the floor is not enforceable for this freight
    minimum_regulatory_price = Column(Numeric(12, 2), nullable=True)
    floor_computed_at = Column(DateTime, nullable=True)

    cancelled_at = Column(DateTime, nullable=True)
    cancelled_by = Column(String, nullable=True)
    cancellation_reason = Column(Text, nullable=True)

    created_at = Column(DateTime, nullable=False, default=utcnow, server_default=func.now())
    updated_at = Column(DateTime, nullable=False, default=utcnow, server_default=func.now(), onupdate=utcnow)

    proposals = relationship("FreightProposal", back_populates="freight", cascade="all, delete-orphan")
    assignments = relationship("FreightAssignment", back_populates="freight", cascade="all, delete-orphan")

    __table_args__ = (
        CheckConstraint("required_trucks >= 1", name="ck_freight_required_trucks_positive"),
        CheckConstraint(
            "accepted_trucks >= 0 AND accepted_trucks <= required_trucks",
            name="ck_freight_accepted_within_capacity",
        ),
    )

    @property
    def is_single_truck(self) -> bool:
        return self.required_trucks == 1

    @property
    def remaining_slots(self) -> int:
        return self.required_trucks - self.accepted_trucks


class FreightProposal(Base):
    __tablename__ = "freight_proposal"

    id = Column(String, primary_key=True)
    freight_id = Column(String, ForeignKey("freight.id"), nullable=False, index=True)
    driver_id = Column(String, nullable=False, index=True)

    proposed_price = Column(Numeric(12, 2), nullable=False)
    message = Column(Text, nullable=True)
    status = Column(
        Enum(ProposalStatus, values_callable=enum_values, native_enum=False, length=16),
        nullable=False,
        default=ProposalStatus.PENDING,
    )
    resolved_at = Column(DateTime, nullable=True)

    created_at = Column(DateTime, nullable=False, default=utcnow, server_default=func.now())

    freight = relationship("Freight", back_populates="proposals")
