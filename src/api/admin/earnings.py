"""Admin earnings configuration API endpoints."""

from datetime import datetime
from typing import Optional

from fastapi import APIRouter, Depends, Query, Request, status
from sqlalchemy.ext.asyncio import AsyncSession

from src.api.errors import http_error
from src.db import get_db
from src.schemas.earnings import (
    BulkRecalculateItem,
    BulkRecalculateRequest,
    BulkRecalculateResponse,
    EarningsStatsResponse,
    RuleSetCreate,
    RuleSetListResponse,
    RuleSetResponse,
    RuleSetRevise,
    SplitRequest,
    SplitResponse,
    rules_to_documents,
)
from src.services.config_store import ConfigStore
from src.services.earnings_stats import get_earnings_stats
from src.services.exceptions import EarningsError
from src.services.reconciliation import ReconciliationEngine
from src.utils.audit import get_actor, get_client_ip

router = APIRouter(prefix="/earnings")


@router.post("/test-calculation", response_model=SplitResponse)
async def test_calculation(
    data: SplitRequest,
    db: AsyncSession = Depends(get_db),
):
    """Split a fee with the active or a named rule set. Nothing is stored."""
    engine = ReconciliationEngine(db)
    try:
        rule_set, split = await engine.compute_split(data.fee, data.rule_set_id)
    except EarningsError as e:
        raise http_error(e) from e

    return SplitResponse(
        fee=data.fee,
        driver_earning=split.driver_earning,
        company_earning=split.company_earning,
        rule_set_version=rule_set.version,
        rule_index=split.rule_index,
        rule_kind=split.rule_kind,
        fallback_used=split.fallback_used,
    )


# ── Rule sets ─────────────────────────────────────────────


@router.get("/rule-sets", response_model=RuleSetListResponse)
async def list_rule_sets(
    db: AsyncSession = Depends(get_db),
    page: int = Query(1, ge=1),
    per_page: int = Query(20, ge=1, le=100),
):
    """List rule set versions, newest first."""
    items, total = await ConfigStore(db).list_rule_sets(page=page, limit=per_page)

    return RuleSetListResponse(
        items=[RuleSetResponse.model_validate(item) for item in items],
        total=total,
        page=page,
        per_page=per_page,
        pages=(total + per_page - 1) // per_page if total else 0,
    )


@router.post("/rule-sets", response_model=RuleSetResponse, status_code=status.HTTP_201_CREATED)
async def create_rule_set(
    request: Request,
    data: RuleSetCreate,
    db: AsyncSession = Depends(get_db),
):
    """Create a new, inactive rule set version."""
    try:
        rule_set = await ConfigStore(db).create(
            rules=rules_to_documents(data.rules),
            notes=data.notes,
            author=get_actor(request),
            name=data.name,
            ip_address=get_client_ip(request),
        )
    except EarningsError as e:
        raise http_error(e) from e

    return RuleSetResponse.model_validate(rule_set)


@router.get("/rule-sets/active", response_model=RuleSetResponse)
async def get_active_rule_set(
    db: AsyncSession = Depends(get_db),
):
    """Active rule set, or the built-in default if none was activated."""
    rule_set = await ConfigStore(db).get_active()
    return RuleSetResponse.model_validate(rule_set)


@router.get("/rule-sets/{rule_set_id}", response_model=RuleSetResponse)
async def get_rule_set(
    rule_set_id: int,
    db: AsyncSession = Depends(get_db),
):
    """Get a rule set version."""
    try:
        rule_set = await ConfigStore(db).get(rule_set_id)
    except EarningsError as e:
        raise http_error(e) from e

    return RuleSetResponse.model_validate(rule_set)


@router.put("/rule-sets/{rule_set_id}", response_model=RuleSetResponse)
async def revise_rule_set(
    request: Request,
    rule_set_id: int,
    data: RuleSetRevise,
    db: AsyncSession = Depends(get_db),
):
    """
    Revise a rule set.

    Creates the next version; the source version is left untouched. If the
    source was active, the new version becomes active.
    """
    try:
        rule_set = await ConfigStore(db).revise(
            rule_set_id,
            author=get_actor(request),
            rules=rules_to_documents(data.rules) if data.rules is not None else None,
            notes=data.notes,
            name=data.name,
            ip_address=get_client_ip(request),
        )
    except EarningsError as e:
        raise http_error(e) from e

    return RuleSetResponse.model_validate(rule_set)


@router.post("/rule-sets/{rule_set_id}/activate", response_model=RuleSetResponse)
async def activate_rule_set(
    request: Request,
    rule_set_id: int,
    db: AsyncSession = Depends(get_db),
):
    """Make a rule set the active one."""
    try:
        rule_set = await ConfigStore(db).activate(
            rule_set_id,
            author=get_actor(request),
            ip_address=get_client_ip(request),
        )
    except EarningsError as e:
        raise http_error(e) from e

    return RuleSetResponse.model_validate(rule_set)


@router.delete("/rule-sets/{rule_set_id}")
async def delete_rule_set(
    request: Request,
    rule_set_id: int,
    db: AsyncSession = Depends(get_db),
):
    """Delete a rule set version. The active one cannot be deleted."""
    try:
        await ConfigStore(db).delete_non_active(
            rule_set_id,
            author=get_actor(request),
            ip_address=get_client_ip(request),
        )
    except EarningsError as e:
        raise http_error(e) from e

    return {"success": True}


# ── Recalculation and stats ───────────────────────────────


@router.post("/bulk-recalculate", response_model=BulkRecalculateResponse)
async def bulk_recalculate(
    request: Request,
    data: BulkRecalculateRequest,
    db: AsyncSession = Depends(get_db),
):
    """Re-derive earnings for the given deliveries. Failures are reported per delivery."""
    engine = ReconciliationEngine(db)
    try:
        results = await engine.bulk_recalculate(
            data.delivery_ids,
            rule_set_id=data.rule_set_id,
            actor=get_actor(request),
            ip_address=get_client_ip(request),
        )
    except EarningsError as e:
        raise http_error(e) from e

    succeeded = sum(1 for r in results if r.success)
    return BulkRecalculateResponse(
        total=len(results),
        succeeded=succeeded,
        failed=len(results) - succeeded,
        results=[BulkRecalculateItem.model_validate(r) for r in results],
    )


@router.get("/stats", response_model=EarningsStatsResponse)
async def earnings_stats(
    db: AsyncSession = Depends(get_db),
    start_date: Optional[datetime] = Query(None),
    end_date: Optional[datetime] = Query(None),
    driver_id: Optional[int] = Query(None),
):
    """Revenue and earnings of delivered deliveries."""
    stats = await get_earnings_stats(db, start=start_date, end=end_date, driver_id=driver_id)
    return EarningsStatsResponse.model_validate(stats)
