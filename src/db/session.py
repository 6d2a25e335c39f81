"""
Database engine and sessions.

Each request, sweep run or script gets its own AsyncSession. The session
commits when the caller finishes cleanly and rolls back when it raises.
Services that need finer control (per-driver commits during a sweep,
per-delivery commits during bulk recalculation) commit inside that scope.
"""

from contextlib import asynccontextmanager
from typing import AsyncGenerator

from sqlalchemy.ext.asyncio import (
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.pool import NullPool

from src.config import settings

# asyncpg behind a transaction pooler cannot use prepared statement caching
_connect_args = {"statement_cache_size": 0} if "+asyncpg" in settings.database_url else {}

engine = create_async_engine(
    settings.database_url,
    poolclass=NullPool,
    echo=not settings.is_production,
    connect_args=_connect_args,
)

# Rule sets and deliveries stay readable after commit for response building
AsyncSessionLocal = async_sessionmaker(
    bind=engine,
    class_=AsyncSession,
    expire_on_commit=False,
    autocommit=False,
    autoflush=False,
)


@asynccontextmanager
async def get_db_context() -> AsyncGenerator[AsyncSession, None]:
    """Session for the reconciliation sweep, the startup check and scripts."""
    async with AsyncSessionLocal() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    """Request-scoped session for the admin and event endpoints."""
    async with get_db_context() as session:
        yield session
