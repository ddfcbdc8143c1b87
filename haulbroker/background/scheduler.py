from __future__ import annotations

import logging

from apscheduler.schedulers.asyncio import AsyncIOScheduler

from haulbroker.core.config import get_settings
from haulbroker.core.db import AsyncSessionFactory
from haulbroker.services.price_maintenance import PriceMaintenanceService

logger = logging.getLogger(__name__)
settings = get_settings()

maintenance_scheduler = AsyncIOScheduler()


async def run_price_floor_recalculation() -> None:
    async with AsyncSessionFactory() as session:
        try:
            report = await PriceMaintenanceService(session).recalculate_floors(settings.price_floor_batch_limit)
            logger.info(
                "price_floor_cycle",
                extra={
                    "examined": report.examined,
                    "updated": report.updated,
                    "unchanged": report.unchanged,
                    "unenforceable": report.unenforceable,
                },
            )
        except Exception as exc:
            await session.rollback()
            logger.exception("Price floor recalculation failed", extra={"error": str(exc)})


def start_scheduler() -> None:
    if maintenance_scheduler.running:
        return
    maintenance_scheduler.add_job(
        run_price_floor_recalculation,
        "interval",
        minutes=settings.price_floor_recalc_interval_minutes,
        id="price-floor-recalculation",
        max_instances=1,
        coalesce=True,
    )
    maintenance_scheduler.start()
    logger.info(
        "Maintenance scheduler started",
        extra={"interval_minutes": settings.price_floor_recalc_interval_minutes},
    )


def shutdown_scheduler() -> None:
    if maintenance_scheduler.running:
        maintenance_scheduler.shutdown(wait=False)
        logger.info("Maintenance scheduler stopped")
