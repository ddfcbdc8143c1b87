import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from haulbroker.api.router import api_router
from haulbroker.background.scheduler import shutdown_scheduler, start_scheduler
from haulbroker.core.config import get_settings
from haulbroker.core.db import check_database_connection, init_database
from haulbroker.core.errors import BrokerError
from haulbroker.services.notifications import register_notification_handlers

logger = logging.getLogger(__name__)
settings = get_settings()


@asynccontextmanager
async def lifespan(_: FastAPI):
    logger.info("Starting application initialization")
    if await check_database_connection():
        await init_database()
    else:
        logger.error("Database unreachable at startup; tables were not initialized")

    register_notification_handlers()

    if settings.enable_scheduler:
        try:
            start_scheduler()
        except Exception as exc:
            logger.exception("Error starting scheduler", extra={"error": str(exc)})

    yield

    shutdown_scheduler()
    logger.info("Shutdown complete")


app = FastAPI(
    title=settings.project_name,
    debug=settings.debug,
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.backend_cors_origins,
    allow_credentials=True,
    allow_methods=["GET", "POST", "PUT", "OPTIONS"],
    allow_headers=["Content-Type", "Authorization", "Accept", "Origin", "X-Actor-Id"],
)


@app.exception_handler(BrokerError)
async def broker_error_handler(request: Request, exc: BrokerError) -> JSONResponse:
    return JSONResponse(status_code=exc.http_status, content=exc.to_dict())


app.include_router(api_router, prefix="/api")


@app.get("/", tags=["Health"])
async def root() -> dict[str, str]:
    return {"status": "ok", "environment": settings.environment}
