"""
Health check endpoints.
"""

from fastapi import APIRouter, Depends
from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession

from src.db import get_db
from src.services.config_store import ConfigStore

router = APIRouter(prefix="/health", tags=["Health"])


@router.get("")
async def health_check():
    """Returns 200 if the service is running."""
    return {"status": "healthy", "service": "courier-earnings"}


@router.get("/ready")
async def readiness_check(db: AsyncSession = Depends(get_db)):
    """
    Readiness check.

    Ready when the database answers. Also reports which rule set splits new
    deliveries (version 0 is the built-in default).
    """
    try:
        await db.execute(text("SELECT 1"))
        rule_set = await ConfigStore(db).get_active()
    except Exception as e:
        return {
            "status": "not_ready",
            "database": f"error: {str(e)}",
        }

    return {
        "status": "ready",
        "database": "connected",
        "active_rule_set_version": rule_set.version,
    }


@router.get("/live")
async def liveness_check():
    """Returns 200 if the process is alive."""
    return {"status": "alive"}
