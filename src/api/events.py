"""
Delivery lifecycle event endpoints.

Called by the dispatch service after it has committed a status change.
Bookkeeping failures never fail the request; they are reported in the
response and logged.
"""

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from src.db import get_db
from src.schemas.events import DeliveredOutcomeResponse, DeliveryDeliveredEvent
from src.services.reconciliation import ReconciliationEngine

router = APIRouter(prefix="/events", tags=["Events"])


@router.post("/delivery-delivered", response_model=DeliveredOutcomeResponse)
async def delivery_delivered(
    event: DeliveryDeliveredEvent,
    db: AsyncSession = Depends(get_db),
):
    """Compute earnings and refresh the driver's totals for a delivered delivery."""
    outcome = await ReconciliationEngine(db).on_delivery_delivered(event.delivery_id)
    return DeliveredOutcomeResponse.model_validate(outcome)
