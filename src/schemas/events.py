"""Delivery lifecycle event schemas."""

from typing import Dict, Optional

from pydantic import BaseModel, Field


class DeliveryDeliveredEvent(BaseModel):
    """Sent by the dispatch service after a delivery reached delivered status."""

    delivery_id: int = Field(..., ge=1)


class DeliveredOutcomeResponse(BaseModel):
    """Per-step result: "ok" or "failed: <reason>"."""

    delivery_id: int
    driver_id: Optional[int]
    steps: Dict[str, str]
    repaired: bool
    succeeded: bool

    model_config = {"from_attributes": True}
