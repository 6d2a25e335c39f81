"""API router aggregation."""

from fastapi import APIRouter

from src.api.admin import admin_router
from src.api.events import router as events_router
from src.api.health import router as health_router

# Main API router (for /api/* endpoints)
api_router = APIRouter(prefix="/api")

api_router.include_router(health_router)
api_router.include_router(admin_router)
api_router.include_router(events_router)

__all__ = ["api_router"]
