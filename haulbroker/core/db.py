import logging
from collections.abc import AsyncGenerator
from typing import Optional

from sqlalchemy import event, text
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from haulbroker.core.config import get_settings
from haulbroker.models.base import Base

logger = logging.getLogger(__name__)
settings = get_settings()


def get_async_database_url(url: str) -> str:
    """Convert database URL to an async-compatible driver URL."""
    if url.startswith("postgresql://"):
        url = url.replace("postgresql://", "postgresql+psycopg://", 1)
    elif url.startswith("postgres://"):
        url = url.replace("postgres://", "postgresql+psycopg://", 1)
    elif url.startswith("sqlite://"):
        url = url.replace("sqlite://", "sqlite+aiosqlite://", 1)
    return url


def _configure_sqlite(engine: AsyncEngine) -> None:
    """Make SQLite transactions take the write lock up front.

    pysqlite defers BEGIN until the first DML statement, which lets two
    writers interleave reads and then deadlock on lock promotion. Taking the
    lock at BEGIN serializes writers the same way a row lock does on Postgres.
    """

    @event.listens_for(engine.sync_engine, "connect")
    def _disable_driver_transactions(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None

    @event.listens_for(engine.sync_engine, "begin")
    def _begin_immediate(conn):
        conn.exec_driver_sql("BEGIN IMMEDIATE")


def build_engine(url: str, echo: bool = False) -> AsyncEngine:
    database_url = get_async_database_url(url)
    if database_url.startswith("sqlite"):
        engine = create_async_engine(
            database_url,
            echo=echo,
            connect_args={"timeout": settings.sqlite_busy_timeout_seconds},
        )
        _configure_sqlite(engine)
        return engine

    return create_async_engine(
        database_url,
        future=True,
        echo=echo,
        pool_pre_ping=True,  # Verify connections before using
        pool_recycle=3600,   # Recycle connections after 1 hour
        pool_timeout=10,     # Wait up to 10 seconds for a connection from pool
        max_overflow=10,
        connect_args={"connect_timeout": 10},
    )


def build_session_factory(bind: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(bind=bind, expire_on_commit=False)


engine: AsyncEngine = build_engine(settings.database_url, echo=settings.debug)
logger.info("[DB] Database engine created", extra={"dialect": engine.dialect.name})

AsyncSessionFactory = build_session_factory(engine)


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    async with AsyncSessionFactory() as session:
        yield session


async def init_database(bind: Optional[AsyncEngine] = None) -> None:
    """Create all tables. In production use Alembic migrations instead."""
    import haulbroker.models  # noqa: F401 ensure models import

    async with (bind or engine).begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    logger.info("[DB] Database tables initialized")


async def check_database_connection() -> bool:
    try:
        async with engine.connect() as conn:
            await conn.execute(text("SELECT 1"))
        return True
    except Exception as exc:
        logger.error("[DB] Database connection test failed", extra={"error": str(exc)})
        return False
