"""
Pytest configuration and fixtures.
"""

import os
from datetime import datetime, timezone
from decimal import Decimal

# Keep src.db from building a PostgreSQL engine at import time
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")
os.environ.setdefault("RECONCILIATION_SWEEP_ENABLED", "false")

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncSession, create_async_engine, async_sessionmaker
from sqlalchemy.pool import StaticPool

from src.models import Base, Delivery, DeliveryStatus, Driver


# Test database URL (use SQLite for tests)
TEST_DATABASE_URL = "sqlite+aiosqlite:///:memory:"


@pytest_asyncio.fixture
async def db_engine():
    """Create test database engine."""
    engine = create_async_engine(TEST_DATABASE_URL, echo=False, poolclass=StaticPool)

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    await engine.dispose()


@pytest_asyncio.fixture
async def session_factory(db_engine):
    return async_sessionmaker(
        db_engine,
        class_=AsyncSession,
        expire_on_commit=False,
    )


@pytest_asyncio.fixture
async def db_session(session_factory):
    """Create test database session."""
    async with session_factory() as session:
        yield session


# ── Factories ─────────────────────────────────────────────


@pytest.fixture
def make_driver(db_session):
    async def _make(**kwargs):
        defaults = {"full_name": "Test Driver"}
        defaults.update(kwargs)
        driver = Driver(**defaults)
        db_session.add(driver)
        await db_session.commit()
        return driver

    return _make


@pytest.fixture
def make_delivery(db_session):
    async def _make(driver=None, fee="100", status=DeliveryStatus.DELIVERED, **kwargs):
        delivery = Delivery(
            fee=Decimal(fee),
            status=status,
            assigned_to=driver.id if driver is not None else None,
            delivered_at=datetime.now(timezone.utc) if status == DeliveryStatus.DELIVERED else None,
            **kwargs,
        )
        db_session.add(delivery)
        await db_session.commit()
        return delivery

    return _make
