from fastapi import APIRouter

from haulbroker.routers import assignments, freights, health, pricing, proposals

api_router = APIRouter()

api_router.include_router(health.router, tags=["Health"])
api_router.include_router(freights.router, prefix="/freights", tags=["Freights"])
api_router.include_router(proposals.router, prefix="/proposals", tags=["Proposals"])
api_router.include_router(assignments.router, prefix="/assignments", tags=["Assignments"])
api_router.include_router(pricing.router, prefix="/pricing", tags=["Pricing"])
