"""Regulatory rate table and the audit trail of agreed-price repairs."""

import enum

from sqlalchemy import Column, DateTime, ForeignKey, Integer, Numeric, String, Text, UniqueConstraint

from haulbroker.models.base import Base, utcnow


class CargoCategory(str, enum.Enum):
    GRANEL_SOLIDO = "granel_solido"
    GRANEL_LIQUIDO = "granel_liquido"
    NEOGRANEL = "neogranel"
    PERIGOSA_CARGA_GERAL = "perigosa_carga_geral"
    CARGA_GERAL = "carga_geral"


class TableTier(str, enum.Enum):
    """Rate tables: A/B are standard, C/D high-performance; B and D for owned vehicles."""

    A = "A"
    B = "B"
    C = "C"
    D = "D"


class VehicleOwnership(str, enum.Enum):
    THIRD_PARTY = "THIRD_PARTY"
    OWN = "OWN"


class RegulatoryRate(Base):
    __tablename__ = "regulatory_rate"

    id = Column(String, primary_key=True)
    cargo_category = Column(String, nullable=False)
    axles = Column(Integer, nullable=False)
    table_tier = Column(String(1), nullable=False)

    rate_per_km = Column(Numeric(12, 4), nullable=False)
    fixed_charge = Column(Numeric(12, 2), nullable=False)

    # Bumped whenever the row changes; freights with an older floor get recalculated
    updated_at = Column(DateTime, nullable=False, default=utcnow)

    __table_args__ = (
        UniqueConstraint("cargo_category", "axles", "table_tier", name="uq_regulatory_rate_key"),
    )


class AgreedPriceRepair(Base):
    """Prior value of an assignment price corrected by the repair job."""

    __tablename__ = "agreed_price_repair"

    id = Column(String, primary_key=True)
    assignment_id = Column(String, ForeignKey("freight_assignment.id"), nullable=False, unique=True)
    freight_id = Column(String, ForeignKey("freight.id"), nullable=False, index=True)
    previous_agreed_price = Column(Numeric(12, 2), nullable=False)
    corrected_agreed_price = Column(Numeric(12, 2), nullable=False)
    reason = Column(Text, nullable=True)
    repaired_at = Column(DateTime, nullable=False, default=utcnow)
