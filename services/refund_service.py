"""
Refund handling for charge.refunded webhooks.

Updates the order's refund fields and, on a full refund, appends one
reversal payout (negative amount) per payout the order created. Payout
rows are never edited. Lifetime earnings are not decremented; the
reversal rows make the difference visible through reconciliation.

The refund fields and the reversal rows are committed together. A
redelivered event for a refunded order writes any reversal still missing
and is otherwise a no-op.
"""

import logging
from datetime import datetime
from decimal import Decimal
from typing import Dict, List, Optional

from sqlalchemy import select
from sqlalchemy.orm import Session, aliased

from database.models import Order, Payout, PaymentStatus, PayoutStatus, RecipientType
from services.notification_service import EmailType, NotificationService
from services.payout_calculator import round_currency

logger = logging.getLogger(__name__)


def reversed_payout_ids():
    """Select of payout ids that already have a reversal row."""
    reversal = aliased(Payout)
    return select(reversal.original_payout_id).where(
        reversal.is_reversal.is_(True),
        reversal.original_payout_id.isnot(None)
    )


def _reversible_payouts(db: Session, order_id: str) -> List[Payout]:
    """Original payouts of an order that have not been reversed yet."""
    return db.query(Payout).filter(
        Payout.order_id == order_id,
        Payout.is_reversal.is_(False),
        Payout.status.in_([PayoutStatus.COMPLETED, PayoutStatus.PENDING]),
        Payout.id.not_in(reversed_payout_ids())
    ).all()


def process_refund(db: Session, charge: Dict, notifier: NotificationService) -> Optional[Dict]:
    """
    Apply a Stripe charge.refunded event to the matching order.

    Args:
        db: Database session
        charge: The charge object from the event (plain dict)
        notifier: Notification service for dashboards and email

    Returns:
        Summary dict, or None when no order matches the charge
    """
    logger.info(f"Refund: Processing refund for charge {charge.get('id')}")

    payment_intent_id = charge.get('payment_intent')
    if not payment_intent_id:
        logger.error("Refund: No payment intent in charge")
        return None

    order = db.query(Order).filter(Order.stripe_payment_intent_id == payment_intent_id).first()
    if not order:
        logger.error(f"Refund: No order found for payment intent {payment_intent_id}")
        return None

    refund_amount = round_currency(Decimal(charge.get('amount_refunded') or 0) / 100)
    is_full_refund = refund_amount >= round_currency(order.total)

    if order.payment_status == PaymentStatus.REFUNDED and not _reversible_payouts(db, order.id):
        # Redelivered event; reversals and notifications already went out
        logger.info(f"Refund: Order {order.order_number} already fully refunded, skipping")
        return {
            "order_id": order.id,
            "order_number": order.order_number,
            "refund_amount": str(round_currency(order.refund_amount)),
            "full_refund": True,
            "reversal_payout_ids": [],
        }

    refunds = (charge.get('refunds') or {}).get('data') or []

    order.refund_status = "full" if is_full_refund else "partial"
    order.refund_amount = refund_amount
    order.refunded_at = datetime.utcnow()
    order.stripe_refund_id = refunds[0].get('id') if refunds else None
    order.payment_status = PaymentStatus.REFUNDED if is_full_refund else PaymentStatus.PARTIALLY_REFUNDED

    logger.info(
        f"Refund: Order {order.order_number} refund_amount={refund_amount} "
        f"total={order.total} full={is_full_refund}"
    )

    # Refund fields and reversal rows commit together
    reversals = []
    if is_full_refund:
        now = datetime.utcnow()
        for payout in _reversible_payouts(db, order.id):
            reversal = Payout(
                campaign_id=payout.campaign_id,
                order_id=order.id,
                recipient_type=payout.recipient_type,
                recipient_id=payout.recipient_id,
                amount=-payout.amount,
                status=PayoutStatus.COMPLETED,
                is_reversal=True,
                original_payout_id=payout.id,
                processed_at=now,
            )
            db.add(reversal)
            reversals.append(reversal)
    db.commit()

    if is_full_refund:
        for reversal in reversals:
            logger.info(f"Refund: Created reversal payout for {reversal.recipient_type}: {reversal.amount}")

        campaign = order.campaign
        message = (
            f"Order #{order.order_number} has been fully refunded. "
            f"The payout for this order has been reversed."
        )
        notifier.notify_recipient(
            db, RecipientType.FLORIST, campaign.florist_id,
            title="Order Refunded", message=message,
            notification_type="warning", link_url="/florist/orders"
        )
        notifier.notify_recipient(
            db, RecipientType.ORGANIZATION, campaign.organization_id,
            title="Order Refunded", message=message,
            notification_type="warning", link_url="/org/campaigns"
        )

    customer = order.customer
    if customer is not None:
        campaign = order.campaign
        notifier.send_email(
            EmailType.REFUND_NOTIFICATION,
            customer.email,
            {
                "customerName": customer.full_name,
                "orderNumber": order.order_number,
                "refundAmount": f"${refund_amount:.2f}",
                "organizationName": (campaign.organization.name if campaign.organization else None) or "Organization",
                "campaignName": campaign.name,
                "isPartial": not is_full_refund,
            },
        )

    logger.info(f"Refund: Processing complete for order {order.order_number}")

    return {
        "order_id": order.id,
        "order_number": order.order_number,
        "refund_amount": str(refund_amount),
        "full_refund": is_full_refund,
        "reversal_payout_ids": [r.id for r in reversals],
    }
