"""Pydantic schemas for request/response validation."""

from src.schemas.audit import AuditLogListResponse, AuditLogResponse
from src.schemas.earnings import (
    BulkRecalculateItem,
    BulkRecalculateRequest,
    BulkRecalculateResponse,
    EarningsStatsResponse,
    FeeRangeStatsResponse,
    FixedRuleIn,
    PercentageRuleIn,
    RuleSetCreate,
    RuleSetListResponse,
    RuleSetResponse,
    RuleSetRevise,
    SplitRequest,
    SplitResponse,
    TieredRuleIn,
    TierIn,
    rules_to_documents,
)
from src.schemas.events import DeliveredOutcomeResponse, DeliveryDeliveredEvent
from src.schemas.reconciliation import (
    DriverTotalsResponse,
    FixResponse,
    SweepEntryResponse,
    SweepResponse,
    ValidationReportResponse,
)

__all__ = [
    # Audit
    "AuditLogResponse",
    "AuditLogListResponse",
    # Rules
    "FixedRuleIn",
    "PercentageRuleIn",
    "TieredRuleIn",
    "TierIn",
    "rules_to_documents",
    # Rule sets
    "RuleSetCreate",
    "RuleSetRevise",
    "RuleSetResponse",
    "RuleSetListResponse",
    # Calculation
    "SplitRequest",
    "SplitResponse",
    "BulkRecalculateRequest",
    "BulkRecalculateItem",
    "BulkRecalculateResponse",
    "EarningsStatsResponse",
    "FeeRangeStatsResponse",
    # Reconciliation
    "DriverTotalsResponse",
    "ValidationReportResponse",
    "FixResponse",
    "SweepEntryResponse",
    "SweepResponse",
    # Events
    "DeliveryDeliveredEvent",
    "DeliveredOutcomeResponse",
]
