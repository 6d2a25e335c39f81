"""Earnings configuration schemas."""

from datetime import datetime
from decimal import Decimal
from typing import Annotated, List, Literal, Optional, Union

from pydantic import BaseModel, Field


# ── Rules ─────────────────────────────────────────────────


class TierIn(BaseModel):
    """One fee band of a tiered rule. Exactly one of driver_percent / driver_fixed."""

    min_fee: Decimal = Field(default=Decimal("0"), ge=0)
    max_fee: Optional[Decimal] = Field(None, ge=0)  # None = unbounded
    driver_percent: Optional[Decimal] = Field(None, ge=0, le=100)
    driver_fixed: Optional[Decimal] = Field(None, ge=0)


class FixedRuleIn(BaseModel):
    kind: Literal["fixed"]
    amount: Decimal = Field(..., ge=0)
    min_fee: Decimal = Field(default=Decimal("0"), ge=0)
    max_fee: Optional[Decimal] = Field(None, ge=0)
    description: Optional[str] = Field(None, max_length=255)


class PercentageRuleIn(BaseModel):
    kind: Literal["percentage"]
    driver_percent: Decimal = Field(..., ge=0, le=100)
    min_fee: Decimal = Field(default=Decimal("0"), ge=0)
    max_fee: Optional[Decimal] = Field(None, ge=0)
    description: Optional[str] = Field(None, max_length=255)


class TieredRuleIn(BaseModel):
    kind: Literal["tiered"]
    tiers: List[TierIn] = Field(..., min_length=1)
    description: Optional[str] = Field(None, max_length=255)


RuleIn = Annotated[
    Union[FixedRuleIn, PercentageRuleIn, TieredRuleIn],
    Field(discriminator="kind"),
]


def rules_to_documents(rules: List[RuleIn]) -> list:
    """JSON documents as stored in rule_sets.rules (amounts as strings)."""
    return [rule.model_dump(mode="json") for rule in rules]


# ── Rule sets ─────────────────────────────────────────────


class RuleSetCreate(BaseModel):
    """Create a new (inactive) rule set version."""

    rules: List[RuleIn] = Field(..., min_length=1)
    name: Optional[str] = Field(None, max_length=150)
    notes: Optional[str] = None


class RuleSetRevise(BaseModel):
    """Revise a rule set into the next version. Omitted fields are copied."""

    rules: Optional[List[RuleIn]] = Field(None, min_length=1)
    name: Optional[str] = Field(None, max_length=150)
    notes: Optional[str] = None


class RuleSetResponse(BaseModel):
    """Rule set as stored. id is None for the built-in default."""

    id: Optional[int]
    version: int
    name: str
    rules: list
    is_active: bool
    effective_from: Optional[datetime] = None
    notes: Optional[str] = None
    derived_from_version: Optional[int] = None
    created_by: Optional[str] = None
    updated_by: Optional[str] = None
    created_at: Optional[datetime] = None

    model_config = {"from_attributes": True}


class RuleSetListResponse(BaseModel):
    """Paginated list of rule sets."""

    items: List[RuleSetResponse]
    total: int
    page: int
    per_page: int
    pages: int


# ── Calculation ───────────────────────────────────────────


class SplitRequest(BaseModel):
    """What-if split of a fee."""

    fee: Decimal = Field(..., ge=0)
    rule_set_id: Optional[int] = None  # active rule set if omitted


class SplitResponse(BaseModel):
    fee: Decimal
    driver_earning: Decimal
    company_earning: Decimal
    rule_set_version: int
    rule_index: Optional[int]
    rule_kind: Optional[str]
    fallback_used: bool


class BulkRecalculateRequest(BaseModel):
    delivery_ids: List[int] = Field(..., min_length=1, max_length=1000)
    rule_set_id: Optional[int] = None


class BulkRecalculateItem(BaseModel):
    delivery_id: int
    success: bool
    driver_earning: Optional[Decimal] = None
    company_earning: Optional[Decimal] = None
    rule_set_version: Optional[int] = None
    error: Optional[str] = None

    model_config = {"from_attributes": True}


class BulkRecalculateResponse(BaseModel):
    total: int
    succeeded: int
    failed: int
    results: List[BulkRecalculateItem]


class FeeRangeStatsResponse(BaseModel):
    """Delivered deliveries within one fee range."""

    label: str
    delivery_count: int
    revenue: Decimal
    driver_earnings: Decimal
    company_earnings: Decimal

    model_config = {"from_attributes": True}


class EarningsStatsResponse(BaseModel):
    """Revenue and earnings of delivered deliveries."""

    delivery_count: int
    total_revenue: Decimal
    total_driver_earnings: Decimal
    total_company_earnings: Decimal
    avg_driver_earning: Decimal
    pending_earnings_count: int
    fee_ranges: List[FeeRangeStatsResponse] = []

    model_config = {"from_attributes": True}
