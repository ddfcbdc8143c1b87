import os

# Settings are read at import time; the module-level engine is never used by tests.
os.environ.setdefault("DATABASE_URL", "sqlite:///./haulbroker-test.db")
os.environ.setdefault("ENABLE_SCHEDULER", "false")
os.environ.setdefault("SQLITE_BUSY_TIMEOUT_SECONDS", "30")

import pytest

from haulbroker.core.db import build_engine, build_session_factory, init_database
from tests.factories import seed_rate


@pytest.fixture
async def engine(tmp_path):
    engine = build_engine(f"sqlite:///{tmp_path / 'haulbroker.db'}")
    await init_database(bind=engine)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine):
    return build_session_factory(engine)


@pytest.fixture
async def db(session_factory):
    async with session_factory() as session:
        yield session


@pytest.fixture
async def general_cargo_rate(db):
    """carga_geral, 5 axles, tier A: 0.50/km + 50.00, i.e. a 100.00 floor over 100 km."""
    return await seed_rate(db)
