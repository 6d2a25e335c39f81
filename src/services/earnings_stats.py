"""Earnings statistics over delivered deliveries."""

from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from typing import Optional, Tuple

from sqlalchemy import and_, func, select
from sqlalchemy.ext.asyncio import AsyncSession

from src.models import Delivery, DeliveryStatus

CENT = Decimal("0.01")

# (label, lower bound exclusive, upper bound inclusive); None is open
FEE_RANGES: Tuple[Tuple[str, Optional[Decimal], Optional[Decimal]], ...] = (
    ("up_to_100", None, Decimal("100")),
    ("101_to_150", Decimal("100"), Decimal("150")),
    ("over_150", Decimal("150"), None),
)


@dataclass(frozen=True)
class FeeRangeStats:
    label: str
    delivery_count: int
    revenue: Decimal
    driver_earnings: Decimal
    company_earnings: Decimal


@dataclass(frozen=True)
class EarningsStats:
    delivery_count: int
    total_revenue: Decimal
    total_driver_earnings: Decimal
    total_company_earnings: Decimal
    # Delivered deliveries still waiting for earnings
    pending_earnings_count: int
    fee_ranges: Tuple[FeeRangeStats, ...] = ()

    @property
    def avg_driver_earning(self) -> Decimal:
        earned = self.delivery_count - self.pending_earnings_count
        if earned <= 0:
            return Decimal("0.00")
        return (self.total_driver_earnings / earned).quantize(CENT)


def _sum(value) -> Decimal:
    return Decimal(str(value or 0)).quantize(CENT)


def _range_condition(lower: Optional[Decimal], upper: Optional[Decimal]):
    conditions = []
    if lower is not None:
        conditions.append(Delivery.fee > lower)
    if upper is not None:
        conditions.append(Delivery.fee <= upper)
    return and_(*conditions)


def _range_columns(label: str, lower: Optional[Decimal], upper: Optional[Decimal]) -> list:
    cond = _range_condition(lower, upper)
    return [
        func.count().filter(cond).label(f"{label}_count"),
        func.sum(Delivery.fee).filter(cond).label(f"{label}_revenue"),
        func.sum(Delivery.driver_earning).filter(cond).label(f"{label}_driver"),
        func.sum(Delivery.company_earning).filter(cond).label(f"{label}_company"),
    ]


async def get_earnings_stats(
    db: AsyncSession,
    start: Optional[datetime] = None,
    end: Optional[datetime] = None,
    driver_id: Optional[int] = None,
) -> EarningsStats:
    """
    Revenue and earnings of delivered deliveries.

    Besides the totals, deliveries are broken down by fee range
    (up to 100, 101 to 150, over 150). Every range is reported, empty
    ones with zeros.

    Args:
        db: Database session
        start: Only deliveries delivered at or after this time
        end: Only deliveries delivered at or before this time
        driver_id: Only deliveries assigned to this driver
    """
    range_columns = []
    for label, lower, upper in FEE_RANGES:
        range_columns.extend(_range_columns(label, lower, upper))

    query = (
        select(
            func.count().label("delivery_count"),
            func.sum(Delivery.fee).label("revenue"),
            func.sum(Delivery.driver_earning).label("driver_earnings"),
            func.sum(Delivery.company_earning).label("company_earnings"),
            func.count().filter(Delivery.driver_earning.is_(None)).label("pending"),
            *range_columns,
        )
        .select_from(Delivery)
        .where(Delivery.status == DeliveryStatus.DELIVERED)
    )

    if start:
        query = query.where(Delivery.delivered_at >= start)
    if end:
        query = query.where(Delivery.delivered_at <= end)
    if driver_id is not None:
        query = query.where(Delivery.assigned_to == driver_id)

    row = (await db.execute(query)).one()._mapping

    fee_ranges = tuple(
        FeeRangeStats(
            label=label,
            delivery_count=row[f"{label}_count"] or 0,
            revenue=_sum(row[f"{label}_revenue"]),
            driver_earnings=_sum(row[f"{label}_driver"]),
            company_earnings=_sum(row[f"{label}_company"]),
        )
        for label, _, _ in FEE_RANGES
    )

    return EarningsStats(
        delivery_count=row["delivery_count"] or 0,
        total_revenue=_sum(row["revenue"]),
        total_driver_earnings=_sum(row["driver_earnings"]),
        total_company_earnings=_sum(row["company_earnings"]),
        pending_earnings_count=row["pending"] or 0,
        fee_ranges=fee_ranges,
    )
