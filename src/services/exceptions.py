"""
Errors raised by the earnings services.

All of them are local, recoverable conditions. The API layer maps them to
HTTP status codes; the delivered-event orchestration logs and swallows them.
"""

from typing import Optional


class EarningsError(Exception):
    """Base class for earnings and reconciliation errors."""

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class ConfigValidationError(EarningsError):
    """A rule list is malformed. Nothing is stored."""

    def __init__(self, reason: str, rule_index: Optional[int] = None):
        self.reason = reason
        self.rule_index = rule_index
        if rule_index is None:
            message = reason
        else:
            message = f"Rule {rule_index + 1}: {reason}"
        super().__init__(message)


class ConfigNotFound(EarningsError):
    def __init__(self, rule_set_id: int):
        self.rule_set_id = rule_set_id
        super().__init__(f"Earnings configuration {rule_set_id} not found")


class ConfigInvalid(EarningsError):
    """A stored rule set no longer passes validation."""

    def __init__(self, rule_set_id: int, error: ConfigValidationError):
        self.rule_set_id = rule_set_id
        self.error = error
        super().__init__(f"Earnings configuration {rule_set_id} is invalid: {error.message}")


class CannotDeleteActive(EarningsError):
    def __init__(self, rule_set_id: int):
        self.rule_set_id = rule_set_id
        super().__init__(f"Cannot delete active earnings configuration {rule_set_id}")


class DeliveryNotFound(EarningsError):
    def __init__(self, delivery_id: int):
        self.delivery_id = delivery_id
        super().__init__("Delivery not found")


class DeliveryNotDelivered(EarningsError):
    """Earnings were requested for a delivery that is not delivered yet."""

    def __init__(self, delivery_id: int, status: str):
        self.delivery_id = delivery_id
        self.status = status
        super().__init__(f"Delivery {delivery_id} is not in delivered status (status: {status})")


class DriverNotFound(EarningsError):
    def __init__(self, driver_id: int):
        self.driver_id = driver_id
        super().__init__(f"Driver {driver_id} not found")
