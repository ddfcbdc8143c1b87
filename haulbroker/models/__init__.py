"""SQLAlchemy models for the HaulBroker allocation engine."""

from haulbroker.models.freight import Freight, FreightProposal, FreightStatus, PricingType, ProposalStatus  # noqa: F401
from haulbroker.models.assignment import AssignmentStatusEvent, FreightAssignment  # noqa: F401
from haulbroker.models.pricing import (  # noqa: F401
    AgreedPriceRepair,
    CargoCategory,
    RegulatoryRate,
    TableTier,
    VehicleOwnership,
)
from haulbroker.models.history import AssignmentHistory, FreightHistory  # noqa: F401
from haulbroker.models.payout import PayoutDeduction, PayoutDeductionStatus  # noqa: F401
from haulbroker.models.rating import FreightRating  # noqa: F401
