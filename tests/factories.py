from decimal import Decimal

from sqlalchemy import func, select

from haulbroker.models.assignment import FreightAssignment
from haulbroker.models.freight import Freight, FreightStatus, PricingType
from haulbroker.models.pricing import CargoCategory, TableTier
from haulbroker.schemas.freight import FreightCreate, ProposalCreate
from haulbroker.schemas.pricing import RateUpsert
from haulbroker.services.capacity import CapacityAllocator
from haulbroker.services.freight import FreightService
from haulbroker.services.pricing_floor import PricingFloorService

PRODUCER = "producer-1"


def _dec(value):
    return Decimal(str(value)) if value is not None else None


async def seed_rate(
    db,
    category: CargoCategory = CargoCategory.CARGA_GERAL,
    axles: int = 5,
    tier: TableTier = TableTier.A,
    rate_per_km: str = "0.50",
    fixed_charge: str = "50.00",
):
    return await PricingFloorService(db).upsert_rate(
        RateUpsert(
            cargo_category=category,
            axles=axles,
            table_tier=tier,
            rate_per_km=Decimal(rate_per_km),
            fixed_charge=Decimal(fixed_charge),
        )
    )


async def make_freight(
    db,
    required_trucks: int = 1,
    price: str = "1000.00",
    distance_km: str = "100",
    cargo_type: str = "carga_geral",
    producer_id: str = PRODUCER,
    **overrides,
) -> Freight:
    fields = dict(
        cargo_type=cargo_type,
        required_trucks=required_trucks,
        pricing_type=PricingType.FIXED,
        price=_dec(price),
        distance_km=_dec(distance_km),
        weight=Decimal("27000"),
        vehicle_axles=5,
    )
    fields.update(overrides)
    return await FreightService(db).create_freight(producer_id, FreightCreate(**fields))


async def make_proposal(db, freight_id: str, driver_id: str, price):
    return await FreightService(db).submit_proposal(
        freight_id, driver_id, ProposalCreate(proposed_price=Decimal(str(price)))
    )


async def accepted_assignment(db, required_trucks: int = 1, driver_id: str = "driver-1", price="1000.00"):
    """A freight with one accepted carrier."""
    freight = await make_freight(db, required_trucks=required_trucks)
    proposal = await make_proposal(db, freight.id, driver_id, price)
    result = await CapacityAllocator(db).accept_proposal(proposal.id, PRODUCER)
    return freight, result.assignment


async def reload(db, model, ident):
    return await db.get(model, ident, populate_existing=True)


async def count_assignments(db, freight_id: str, active_only: bool = False) -> int:
    stmt = select(func.count(FreightAssignment.id)).where(FreightAssignment.freight_id == freight_id)
    if active_only:
        stmt = stmt.where(FreightAssignment.status != FreightStatus.CANCELLED)
    return (await db.execute(stmt)).scalar_one()
