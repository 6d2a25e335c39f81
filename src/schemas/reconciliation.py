"""Driver totals reconciliation schemas."""

from decimal import Decimal
from typing import List, Optional

from pydantic import BaseModel


class DriverTotalsResponse(BaseModel):
    total_deliveries: int
    completed_deliveries: int
    total_earnings: Decimal

    model_config = {"from_attributes": True}


class ValidationReportResponse(BaseModel):
    """Stored totals against totals recomputed from deliveries."""

    driver_id: int
    is_valid: bool
    stored: DriverTotalsResponse
    actual: DriverTotalsResponse
    mismatched_fields: List[str]
    missing_earnings_delivery_ids: List[int]

    model_config = {"from_attributes": True}


class FixResponse(BaseModel):
    driver_id: int
    repaired: bool
    before: ValidationReportResponse
    after: ValidationReportResponse

    model_config = {"from_attributes": True}


class SweepEntryResponse(BaseModel):
    driver_id: int
    is_valid: Optional[bool]
    repaired: bool
    mismatched_fields: List[str]
    error: Optional[str]

    model_config = {"from_attributes": True}


class SweepResponse(BaseModel):
    """Result of validating or fixing every driver."""

    total_drivers: int
    valid_drivers: int
    invalid_drivers: int
    repaired_drivers: int
    failed_drivers: int
    entries: List[SweepEntryResponse]

    model_config = {"from_attributes": True}
