"""
Database models.

All models are exported here for convenient imports:
    from src.models import Delivery, Driver, RuleSet, etc.
"""

from src.models.audit import AuditAction, AuditLog
from src.models.base import Base, BaseModel, Money, TimestampMixin
from src.models.delivery import Delivery, DeliveryStatus
from src.models.driver import Driver
from src.models.rule_set import RuleSet

__all__ = [
    # Base
    "Base",
    "BaseModel",
    "Money",
    "TimestampMixin",
    # Delivery
    "Delivery",
    "DeliveryStatus",
    # Driver
    "Driver",
    # Earnings configuration
    "RuleSet",
    # Audit
    "AuditLog",
    "AuditAction",
]
