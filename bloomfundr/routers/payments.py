"""
Payment Completion Router

Simulated payment completion, used while the checkout runs in test mode
(no real Stripe Checkout). Settles the order exactly like the webhook
path but never calls Stripe: every positive share lands as a completed
payout.

Endpoints:
- POST /payments/complete - Mark an order paid and settle it
"""

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.orm import Session
from pydantic import BaseModel, ConfigDict, Field
from typing import Optional
import logging

from database.db import get_db
from services.exceptions import CampaignNotFoundError, OrderNotFoundError, OrderStateError
from services.notification_service import NotificationService, get_notification_service
from services.settlement_service import SettlementProcessor
from services.stripe_service import StripeService, get_stripe_service

router = APIRouter(prefix="/payments", tags=["Payments"])
logger = logging.getLogger(__name__)


class CompletePaymentRequest(BaseModel):
    """Request to complete a test-mode payment."""
    model_config = ConfigDict(populate_by_name=True)

    order_id: Optional[str] = Field(None, alias="orderId")


@router.post("/complete")
async def complete_payment(
    request: CompletePaymentRequest,
    db: Session = Depends(get_db),
    stripe: StripeService = Depends(get_stripe_service),
    notifier: NotificationService = Depends(get_notification_service)
):
    """
    Complete payment for an order without a payment rail.

    Example:
    ```json
    {"orderId": "7b0c3c1e-..."}
    ```
    """
    if not request.order_id:
        raise HTTPException(status_code=400, detail="Missing orderId")

    processor = SettlementProcessor(db, stripe, notifier)

    try:
        result = await processor.settle_order(request.order_id, simulate_transfers=True)
    except OrderNotFoundError:
        raise HTTPException(status_code=404, detail="Order not found")
    except CampaignNotFoundError:
        raise HTTPException(status_code=404, detail="Campaign not found")
    except OrderStateError as e:
        raise HTTPException(status_code=409, detail=str(e))
    except ValueError as e:
        logger.error(f"Payment completion rejected for order {request.order_id}: {e}")
        raise HTTPException(status_code=422, detail=str(e))

    if result.already_paid:
        logger.info(f"Order {result.order_number} already marked as paid")

    return {
        "success": True,
        "message": "Order already paid" if result.already_paid else "Payment completed",
        "orderNumber": result.order_number,
        "settlement": result.to_dict(),
    }
