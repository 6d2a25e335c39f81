"""
Courier Earnings - delivery fee split and driver totals reconciliation

Main FastAPI application with:
- Versioned earnings rule sets (admin API)
- Delivered-event bookkeeping
- Driver totals validation and repair, on demand and on a schedule
"""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI

from src.api import api_router
from src.config import settings
from src.db import get_db_context
from src.scheduler.jobs import scheduler, setup_scheduler
from src.services.config_store import ConfigStore

# Configure logging
logging.basicConfig(
    level=getattr(logging, settings.log_level.upper()),
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Application lifespan manager.

    Startup:
    - Reports the active rule set
    - Starts the reconciliation sweep scheduler

    Shutdown:
    - Stops the scheduler
    """
    logger.info("Starting Courier Earnings...")

    async with get_db_context() as db:
        rule_set, _ = await ConfigStore(db).get_active_rules()
        if rule_set.id is None:
            logger.warning("No earnings rule set is active; using the built-in 67% default")
        else:
            logger.info(f"Active earnings rule set: v{rule_set.version} ({rule_set.name})")

    if settings.reconciliation_sweep_enabled:
        setup_scheduler()
        scheduler.start()

    logger.info("Courier Earnings started successfully!")

    yield

    # Shutdown
    logger.info("Shutting down Courier Earnings...")
    if scheduler.running:
        scheduler.shutdown(wait=False)


# Create FastAPI application
app = FastAPI(
    title="Courier Earnings",
    description="Delivery fee split and driver totals reconciliation",
    version="1.0.0",
    lifespan=lifespan,
    docs_url="/docs" if not settings.is_production else None,
    redoc_url="/redoc" if not settings.is_production else None,
)

# Include routers
app.include_router(api_router)  # /api/* endpoints


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "src.main:app",
        host="0.0.0.0",
        port=8000,
        reload=not settings.is_production,
    )
