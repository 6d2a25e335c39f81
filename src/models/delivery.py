"""
Delivery model (fields relevant to earnings).
"""

from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import TYPE_CHECKING, Optional

from sqlalchemy import CheckConstraint, DateTime, ForeignKey, Index, Integer
from sqlalchemy import Enum as SQLAlchemyEnum
from sqlalchemy.orm import Mapped, mapped_column, relationship

from src.models.base import BaseModel, Money

if TYPE_CHECKING:
    from src.models.driver import Driver


class DeliveryStatus(str, Enum):
    """Delivery lifecycle states. Only DELIVERED matters for earnings."""
    PENDING = "pending"
    BROADCASTING = "broadcasting"
    ACCEPTED = "accepted"
    PICKED_UP = "picked_up"
    IN_TRANSIT = "in_transit"
    DELIVERED = "delivered"
    CANCELLED = "cancelled"
    FAILED = "failed"


class Delivery(BaseModel):
    """
    A customer delivery.

    driver_earning and company_earning stay NULL until the delivery first
    reaches DELIVERED. earnings_rule_set_version records which rule set
    produced them.
    """

    __tablename__ = "deliveries"
    __table_args__ = (
        Index("ix_deliveries_assigned_to_status", "assigned_to", "status"),
        CheckConstraint("fee >= 0", name="fee_non_negative"),
    )

    fee: Mapped[Decimal] = mapped_column(
        Money,
        nullable=False,
    )
    driver_earning: Mapped[Optional[Decimal]] = mapped_column(
        Money,
        nullable=True,
    )
    company_earning: Mapped[Optional[Decimal]] = mapped_column(
        Money,
        nullable=True,
    )
    earnings_rule_set_version: Mapped[Optional[int]] = mapped_column(
        Integer,
        nullable=True,
        comment="RuleSet version used for the stored earnings",
    )
    earnings_calculated_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
    )

    status: Mapped[DeliveryStatus] = mapped_column(
        SQLAlchemyEnum(
            DeliveryStatus,
            values_callable=lambda x: [e.value for e in x],
        ),
        default=DeliveryStatus.PENDING,
        nullable=False,
        index=True,
    )
    assigned_to: Mapped[Optional[int]] = mapped_column(
        ForeignKey("drivers.id"),
        nullable=True,
        index=True,
    )
    delivered_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
    )

    driver: Mapped[Optional["Driver"]] = relationship(
        "Driver",
        back_populates="deliveries",
    )

    @property
    def has_earnings(self) -> bool:
        return self.driver_earning is not None and self.company_earning is not None

    def __repr__(self) -> str:
        return f"<Delivery(id={self.id}, status={self.status}, fee={self.fee})>"
