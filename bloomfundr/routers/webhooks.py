"""
Webhook Handlers for Stripe

Stripe delivers events at least once: a webhook may arrive again after a
timeout even though the first delivery succeeded. Settlement and refund
processing are both safe to repeat.

Response policy:
- 400: missing/invalid signature or payload (Stripe will not retry usefully)
- 500: Stripe not configured, or the order could not be marked paid
- 200: everything else, including orders we cannot find and payout legs
  that failed (those are recorded on the payout rows)
"""

from fastapi import APIRouter, Depends, HTTPException, Request
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session
from datetime import datetime
import logging

from database.db import get_db
from services.exceptions import CampaignNotFoundError, OrderNotFoundError, OrderStateError
from services.notification_service import NotificationService, get_notification_service
from services.refund_service import process_refund
from services.settlement_service import SettlementProcessor
from services.stripe_service import StripeService, get_stripe_service

router = APIRouter(prefix="/webhooks", tags=["Webhooks"])
logger = logging.getLogger(__name__)


@router.post("/stripe")
async def stripe_webhook(
    request: Request,
    db: Session = Depends(get_db),
    stripe: StripeService = Depends(get_stripe_service),
    notifier: NotificationService = Depends(get_notification_service)
):
    """
    Handle Stripe webhook events.

    Important events:
    - checkout.session.completed: Customer paid, settle the order in metadata.orderId
    - payment_intent.succeeded: Logged only (covered by checkout.session.completed)
    - charge.refunded: Record the refund and reverse payouts on full refund
    """
    if not stripe.is_webhook_configured:
        logger.error("Stripe: Missing webhook secret configuration")
        raise HTTPException(status_code=500, detail="Stripe not configured")

    signature = request.headers.get('stripe-signature')
    if not signature:
        logger.error("Stripe: No stripe signature found")
        raise HTTPException(status_code=400, detail="No signature")

    payload = await request.body()

    try:
        event = stripe.construct_webhook_event(payload, signature)
    except ValueError as e:
        logger.error(f"Stripe: Webhook signature verification failed: {str(e)}")
        raise HTTPException(status_code=400, detail=f"Webhook Error: {str(e)}")

    event_type = event['type']
    data_object = (event.get('data') or {}).get('object') or {}
    logger.info(f"Stripe webhook received: {event_type}")

    if event_type == 'checkout.session.completed':
        await _handle_checkout_completed(db, stripe, notifier, data_object)

    elif event_type == 'payment_intent.succeeded':
        logger.info(f"Stripe: Payment intent succeeded: {data_object.get('id')}")

    elif event_type == 'charge.refunded':
        logger.info(f"Stripe: Charge refunded: {data_object.get('id')}")
        try:
            process_refund(db, data_object, notifier)
        except SQLAlchemyError as e:
            db.rollback()
            logger.error(f"Stripe: Refund processing failed for charge {data_object.get('id')}: {e}")
            raise HTTPException(status_code=500, detail="Refund processing failed")

    else:
        logger.info(f"Stripe: Unhandled event type: {event_type}")

    return {"received": True}


async def _handle_checkout_completed(
    db: Session,
    stripe: StripeService,
    notifier: NotificationService,
    session: dict
):
    logger.info(f"Stripe: Checkout session completed: {session.get('id')}")

    order_id = (session.get('metadata') or {}).get('orderId')
    if not order_id:
        logger.error("Stripe: No orderId in session metadata")
        return

    processor = SettlementProcessor(db, stripe, notifier)
    try:
        result = await processor.settle_order(order_id, payment_intent_id=session.get('payment_intent'))
    except (OrderNotFoundError, CampaignNotFoundError, OrderStateError, ValueError) as e:
        # Redelivery cannot fix these; acknowledge so Stripe stops retrying
        logger.error(f"Stripe: Settlement skipped for order {order_id}: {e}")
        return
    except SQLAlchemyError as e:
        db.rollback()
        logger.error(f"Stripe: Failed to mark order {order_id} as paid: {e}")
        raise HTTPException(status_code=500, detail="Failed to update order")

    if result.already_paid:
        logger.info(f"Stripe: Order {result.order_number} already settled")


@router.get("/health")
def webhook_health():
    """
    Health check endpoint for webhook service.

    Stripe dashboards can ping this to verify the endpoint is reachable.
    """
    return {
        "status": "healthy",
        "service": "webhooks",
        "timestamp": datetime.utcnow().isoformat()
    }
