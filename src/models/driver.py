"""
Driver model with cached delivery aggregates.
"""

from datetime import datetime
from decimal import Decimal
from typing import TYPE_CHECKING, List, Optional

from sqlalchemy import DateTime, Integer, String
from sqlalchemy.orm import Mapped, mapped_column, relationship

from src.models.base import BaseModel, Money

if TYPE_CHECKING:
    from src.models.delivery import Delivery


class Driver(BaseModel):
    """
    Courier driver.

    total_deliveries, completed_deliveries and total_earnings are a cache
    over the deliveries table. They are only ever overwritten with values
    recomputed from deliveries, never incremented.
    """

    __tablename__ = "drivers"

    full_name: Mapped[str] = mapped_column(
        String(150),
        nullable=False,
    )

    # Cached aggregates
    total_deliveries: Mapped[int] = mapped_column(
        Integer,
        default=0,
        server_default="0",
        nullable=False,
        comment="All deliveries ever assigned, any status",
    )
    completed_deliveries: Mapped[int] = mapped_column(
        Integer,
        default=0,
        server_default="0",
        nullable=False,
        comment="Deliveries with status delivered",
    )
    total_earnings: Mapped[Decimal] = mapped_column(
        Money,
        default=Decimal("0"),
        server_default="0",
        nullable=False,
        comment="Sum of driver_earning over delivered deliveries",
    )

    # Repair telemetry
    totals_repair_count: Mapped[int] = mapped_column(
        Integer,
        default=0,
        server_default="0",
        nullable=False,
    )
    totals_repaired_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
    )

    deliveries: Mapped[List["Delivery"]] = relationship(
        "Delivery",
        back_populates="driver",
    )

    def __repr__(self) -> str:
        return (
            f"<Driver(id={self.id}, completed={self.completed_deliveries}, "
            f"total_earnings={self.total_earnings})>"
        )
