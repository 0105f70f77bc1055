import os
import tempfile
from datetime import date

# Point the app at a throwaway SQLite file before any backend module reads settings.
_DB_DIR = tempfile.mkdtemp(prefix="scheduling-tests-")
_DB_PATH = os.path.join(_DB_DIR, "scheduling.db")
os.environ["DATABASE_URL"] = f"sqlite+aiosqlite:///{_DB_PATH}"
os.environ["REDIS_URL"] = ""

import pytest
from sqlalchemy import create_engine

from backend.app.db.base import Base
import backend.app.models  # noqa: F401
from backend.app.services.scheduling_config import SchedulingConfig


# A Wednesday; every test computes dates relative to it.
TODAY = date(2025, 11, 5)

TEST_CONFIG = SchedulingConfig(
    default_slot_capacity=2,
    slot_interval_minutes=30,
    horizon_days=90,
    default_lead_time_days=0,
    lead_times={"cake": 14, "cookies": 7},
    timezone="America/New_York",
)


def fixed_today() -> date:
    return TODAY


@pytest.fixture(scope="session")
def sync_engine():
    engine = create_engine(f"sqlite:///{_DB_PATH}")
    Base.metadata.create_all(engine)
    yield engine
    Base.metadata.drop_all(engine)
    engine.dispose()


@pytest.fixture(autouse=True)
def clean_tables(sync_engine):
    with sync_engine.begin() as conn:
        for table in reversed(Base.metadata.sorted_tables):
            conn.execute(table.delete())
    yield


@pytest.fixture
def today() -> date:
    return TODAY


@pytest.fixture
def config() -> SchedulingConfig:
    return TEST_CONFIG


@pytest.fixture
def clock():
    return fixed_today
