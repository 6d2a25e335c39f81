"""Admin driver totals reconciliation API endpoints."""

from fastapi import APIRouter, Depends, Request
from sqlalchemy.ext.asyncio import AsyncSession

from src.api.errors import http_error
from src.db import get_db
from src.schemas.reconciliation import FixResponse, SweepResponse, ValidationReportResponse
from src.services.exceptions import EarningsError
from src.services.reconciliation import ReconciliationEngine
from src.utils.audit import get_actor

router = APIRouter(prefix="/reconciliation")


@router.get("/drivers", response_model=SweepResponse)
async def validate_all_drivers(
    db: AsyncSession = Depends(get_db),
):
    """Validate every driver's totals without changing anything."""
    report = await ReconciliationEngine(db).validate_all()
    return SweepResponse.model_validate(report)


@router.post("/drivers/fix", response_model=SweepResponse)
async def fix_all_drivers(
    request: Request,
    db: AsyncSession = Depends(get_db),
):
    """Repair every driver whose totals drifted."""
    report = await ReconciliationEngine(db).fix_all(actor=get_actor(request))
    return SweepResponse.model_validate(report)


@router.get("/drivers/{driver_id}", response_model=ValidationReportResponse)
async def validate_driver(
    driver_id: int,
    db: AsyncSession = Depends(get_db),
):
    """Compare a driver's stored totals with the totals recomputed from deliveries."""
    try:
        report = await ReconciliationEngine(db).validate(driver_id)
    except EarningsError as e:
        raise http_error(e) from e

    return ValidationReportResponse.model_validate(report)


@router.post("/drivers/{driver_id}/fix", response_model=FixResponse)
async def fix_driver(
    request: Request,
    driver_id: int,
    db: AsyncSession = Depends(get_db),
):
    """Repair a driver's totals if they drifted. Safe to repeat."""
    try:
        result = await ReconciliationEngine(db).fix(driver_id, actor=get_actor(request))
    except EarningsError as e:
        raise http_error(e) from e

    return FixResponse.model_validate(result)
