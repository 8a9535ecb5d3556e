"""
conftest.py — Shared pytest fixtures for the events quote & scheduling test suite.

Engine tests are pure unit tests. Store, service and API tests run against
an in-memory SQLite database (aiosqlite) created from the ORM metadata, so
no PostgreSQL server is needed.

Import-path bootstrapping:
    The ``backend/`` directory is inserted into sys.path so that all
    ``app.*`` imports resolve correctly regardless of where pytest is invoked.
"""

import sys
import os
from contextlib import asynccontextmanager
from datetime import date

import pytest

# ---------------------------------------------------------------------------
# Ensure ``backend/`` is on the import path before any app imports occur.
# ---------------------------------------------------------------------------
_BACKEND_DIR = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))
if _BACKEND_DIR not in sys.path:
    sys.path.insert(0, _BACKEND_DIR)

SQLITE_URL = "sqlite+aiosqlite://"


# ---------------------------------------------------------------------------
# Engine fixtures
# ---------------------------------------------------------------------------

@pytest.fixture(scope="session")
def default_config():
    """PricingConfig with all defaults: global margin, retention off, fixed surcharge of 0, warn policies."""
    from app.config import PricingConfig
    return PricingConfig()


@pytest.fixture(scope="session")
def labor_engine():
    """
    LaborEngine with a fixed ARL surcharge of 10 000 per event, so surcharge
    arithmetic is visible in totals.
    """
    from app.config import PricingConfig
    from app.services.labor_engine import LaborEngine
    return LaborEngine(PricingConfig(surcharge_mode="fixed", surcharge_amount=10000.0))


@pytest.fixture(scope="session")
def quote_engine(default_config):
    from app.services.quote_engine import QuoteEngine
    return QuoteEngine(default_config)


# ---------------------------------------------------------------------------
# Sample data
# ---------------------------------------------------------------------------

@pytest.fixture
def standard_tiers():
    """
    Three-band tier list:
      0–4 h  → 25 000 / h
      4–8 h  → 22 000 / h
      8 h+   → 20 000 / h
    """
    return [
        {"min_hours": 0, "max_hours": 4, "rate": 25000.0, "description": "1-4h"},
        {"min_hours": 4, "max_hours": 8, "rate": 22000.0, "description": "4-8h"},
        {"min_hours": 8, "max_hours": None, "rate": 20000.0, "description": "8h+"},
    ]


@pytest.fixture
def sample_workers(standard_tiers):
    """
    Worker 1: operario with ARL, no extra cost.
    Worker 2: coordinator without ARL, default extra cost 15 000 ("Parking").
    """
    return {
        1: {
            "id": 1, "name": "Ana Operaria", "worker_type": "operario",
            "rate_tiers": standard_tiers, "has_arl": True,
            "default_extra_cost": 0.0, "default_extra_cost_reason": None,
        },
        2: {
            "id": 2, "name": "Luis Coordinador", "worker_type": "coordinador",
            "rate_tiers": standard_tiers, "has_arl": False,
            "default_extra_cost": 15000.0, "default_extra_cost_reason": "Parking",
        },
    }


@pytest.fixture
def single_day_event():
    """One day, 08:00–17:00 → 9 billable hours."""
    return {
        "start_date": "2024-06-15",
        "end_date": "2024-06-15",
        "start_time": "08:00",
        "end_time": "17:00",
    }


@pytest.fixture
def multi_day_event():
    """
    Three days across a month boundary, 12 h each (08:00–20:00) → 36 hours.
    """
    days = ["2024-01-30", "2024-01-31", "2024-02-01"]
    return {
        "start_date": "2024-01-30",
        "end_date": "2024-02-01",
        "selected_days": days,
        "daily_schedules": [
            {"date": d, "start_time": "08:00", "end_time": "20:00"} for d in days
        ],
    }


@pytest.fixture
def future_day():
    """A date safely in the future for booking validation."""
    today = date.today()
    return date(today.year + 1, 6, 15)


# ---------------------------------------------------------------------------
# Database fixtures
# ---------------------------------------------------------------------------

@pytest.fixture
def make_session():
    """
    Async context manager factory yielding an AsyncSession on a fresh
    in-memory SQLite schema. Use inside a coroutine run with asyncio.run().
    """
    from sqlalchemy.ext.asyncio import async_sessionmaker, create_async_engine
    from sqlalchemy.pool import StaticPool
    from app.db import Base
    from app.models import orm_models  # noqa: F401

    @asynccontextmanager
    async def _open():
        engine = create_async_engine(SQLITE_URL, poolclass=StaticPool)
        async with engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)
        factory = async_sessionmaker(engine, expire_on_commit=False)
        try:
            async with factory() as session:
                yield session
        finally:
            await engine.dispose()

    return _open


@pytest.fixture
def client():
    """
    TestClient over the full app with ``get_db`` pointed at in-memory SQLite.
    Tables are created on the first request, inside the client's event loop.
    """
    from fastapi.testclient import TestClient
    from sqlalchemy.ext.asyncio import async_sessionmaker, create_async_engine
    from sqlalchemy.pool import StaticPool
    from app.db import Base, get_db
    from app.main import app
    from app.models import orm_models  # noqa: F401

    engine = create_async_engine(
        SQLITE_URL, poolclass=StaticPool, connect_args={"check_same_thread": False},
    )
    factory = async_sessionmaker(engine, expire_on_commit=False)
    state = {"ready": False}

    async def _override_get_db():
        if not state["ready"]:
            async with engine.begin() as conn:
                await conn.run_sync(Base.metadata.create_all)
            state["ready"] = True
        async with factory() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise

    app.dependency_overrides[get_db] = _override_get_db
    with TestClient(app) as test_client:
        yield test_client
    app.dependency_overrides.clear()
