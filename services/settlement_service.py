"""
Order Settlement Processor

Turns a "payment completed for order X" signal into:
1. The order marked paid (exactly once)
2. One payout row per recipient with a positive share
3. Lifetime earnings credited for pending/completed payouts
4. Best-effort notifications and emails

Invocation surfaces:
- POST /webhooks/stripe (checkout.session.completed), real transfers
- POST /payments/complete, simulated transfers (no Stripe call)

Ordering matters: the order is committed as paid BEFORE any transfer is
attempted. Capturing the customer's money and distributing it are
separate failure domains; a failed transfer must never leave a paid
order looking unpaid.

The florist and organization legs run concurrently and are joined with
gather(return_exceptions=True), so one leg's failure cannot cancel or
roll back the other.
"""

import asyncio
import logging
import os
from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from typing import Dict, Optional

from sqlalchemy import update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from database.models import (
    Campaign, Order, Payout, PaymentStatus, PayoutStatus, RecipientType
)
from services.earnings_service import increment_lifetime_earnings
from services.exceptions import (
    CampaignNotFoundError, OrderNotFoundError, OrderStateError, RecipientNotFoundError
)
from services.notification_service import EmailType, NotificationService
from services.payout_calculator import PayoutSplit, calculate_split, round_currency
from services.stripe_service import StripeService

logger = logging.getLogger(__name__)

DEFAULT_TRANSFER_TIMEOUT = float(os.getenv('TRANSFER_TIMEOUT_SECONDS', '20'))

SKIPPED = "skipped"


@dataclass
class RecipientLeg:
    """What settlement owes one recipient."""
    recipient_type: str
    recipient_id: str
    name: str
    amount: Decimal
    stripe_account_id: Optional[str] = None
    notification_email: Optional[str] = None


@dataclass
class TransferAttempt:
    status: str
    transfer_id: Optional[str] = None
    error: Optional[str] = None


@dataclass
class LegOutcome:
    recipient_type: str
    recipient_id: str
    amount: Decimal
    status: str  # skipped, pending, completed, failed
    payout_id: Optional[str] = None
    transfer_id: Optional[str] = None
    error: Optional[str] = None
    earnings_credited: bool = False

    def to_dict(self) -> Dict:
        return {
            "recipient_type": self.recipient_type,
            "recipient_id": self.recipient_id,
            "amount": str(self.amount),
            "status": self.status,
            "payout_id": self.payout_id,
            "transfer_id": self.transfer_id,
            "error": self.error,
            "earnings_credited": self.earnings_credited,
        }


@dataclass
class SettlementResult:
    order_id: str
    order_number: str
    already_paid: bool = False
    split: Optional[PayoutSplit] = None
    legs: Dict[str, LegOutcome] = field(default_factory=dict)

    @property
    def florist(self) -> Optional[LegOutcome]:
        return self.legs.get(RecipientType.FLORIST)

    @property
    def organization(self) -> Optional[LegOutcome]:
        return self.legs.get(RecipientType.ORGANIZATION)

    def to_dict(self) -> Dict:
        return {
            "order_id": self.order_id,
            "order_number": self.order_number,
            "already_paid": self.already_paid,
            "split": self.split.to_dict() if self.split else None,
            "payouts": {name: leg.to_dict() for name, leg in self.legs.items()},
        }


class SettlementProcessor:
    """
    Settles one order per call.

    Usage:
        processor = SettlementProcessor(db, stripe_service, notification_service)
        result = await processor.settle_order(order_id, payment_intent_id="pi_...")
    """

    def __init__(
        self,
        db: Session,
        stripe: StripeService,
        notifier: NotificationService,
        transfer_timeout: float = DEFAULT_TRANSFER_TIMEOUT
    ):
        self.db = db
        self.stripe = stripe
        self.notifier = notifier
        self.transfer_timeout = transfer_timeout

    async def settle_order(
        self,
        order_id: str,
        payment_intent_id: Optional[str] = None,
        simulate_transfers: bool = False
    ) -> SettlementResult:
        """
        Mark an order paid and distribute its net revenue.

        Args:
            order_id: Order to settle
            payment_intent_id: Stripe PaymentIntent reference, stored on the order
            simulate_transfers: Never call Stripe; positive shares land as completed

        Raises:
            OrderNotFoundError, CampaignNotFoundError: Nothing was changed
            OrderStateError: Order is refunded/failed, nothing was changed
        """
        order = self.db.get(Order, order_id)
        if order is None:
            logger.error(f"Settlement: Order {order_id} not found")
            raise OrderNotFoundError(order_id)

        if order.payment_status == PaymentStatus.PAID:
            logger.info(f"Settlement: Order {order.order_number} already marked as paid, skipping")
            return SettlementResult(order.id, order.order_number, already_paid=True)

        campaign = self.db.get(Campaign, order.campaign_id)
        if campaign is None:
            logger.error(f"Settlement: Campaign {order.campaign_id} for order {order.order_number} not found")
            raise CampaignNotFoundError(order.campaign_id)

        split = calculate_split(
            subtotal=order.subtotal,
            processing_fee=order.processing_fee,
            platform_fee=order.platform_fee,
            florist_margin_percent=campaign.florist_margin_percent,
            organization_margin_percent=campaign.organization_margin_percent,
        )

        logger.info(
            f"Settlement: Payout calculation for order {order.order_number}: "
            f"subtotal={order.subtotal} platform_fee={order.platform_fee} "
            f"processing_fee={order.processing_fee} available={split.available_for_distribution} "
            f"florist={split.florist_amount} organization={split.organization_amount}"
        )

        if not self._mark_paid(order, payment_intent_id):
            return SettlementResult(order.id, order.order_number, already_paid=True)

        legs = self._build_legs(campaign, split)

        # Fan-out: external calls only, no session use off the event loop thread
        attempts = await asyncio.gather(
            *(self._execute_transfer(order, campaign, leg, simulate_transfers) for leg in legs),
            return_exceptions=True
        )

        result = SettlementResult(order.id, order.order_number, split=split)
        for leg, attempt in zip(legs, attempts):
            if isinstance(attempt, BaseException):
                attempt = self._failed_attempt(leg, attempt)
            result.legs[leg.recipient_type] = self._record_leg(order, campaign, leg, attempt)

        self._send_order_confirmation(order, campaign)

        logger.info(
            f"Settlement: Order {order.order_number} complete - "
            + ", ".join(f"{name}={leg.status}" for name, leg in result.legs.items())
        )
        return result

    def _mark_paid(self, order: Order, payment_intent_id: Optional[str]) -> bool:
        """
        Conditionally flip pending -> paid and commit.

        Two concurrent deliveries of the same webhook can both pass the
        status read above; only the one whose UPDATE matches a pending
        row goes on to create payouts.

        Returns:
            True if this call performed the transition
        """
        values = {"payment_status": PaymentStatus.PAID, "paid_at": datetime.utcnow()}
        if payment_intent_id:
            values["stripe_payment_intent_id"] = payment_intent_id

        result = self.db.execute(
            update(Order)
            .where(Order.id == order.id)
            .where(Order.payment_status == PaymentStatus.PENDING)
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        changed = result.rowcount
        self.db.commit()
        self.db.refresh(order)

        if changed:
            logger.info(f"Settlement: Order {order.order_number} marked as paid")
            return True

        if order.payment_status == PaymentStatus.PAID:
            logger.info(f"Settlement: Order {order.order_number} was paid by a concurrent delivery")
            return False

        logger.error(f"Settlement: Order {order.order_number} is '{order.payment_status}', not settling")
        raise OrderStateError(order.id, order.payment_status)

    def _build_legs(self, campaign: Campaign, split: PayoutSplit):
        florist = campaign.florist
        organization = campaign.organization
        return [
            RecipientLeg(
                recipient_type=RecipientType.FLORIST,
                recipient_id=campaign.florist_id,
                name=(florist.business_name if florist else None) or "Florist",
                amount=split.florist_amount,
                stripe_account_id=florist.stripe_account_id if florist else None,
                notification_email=florist.notification_email if florist else None,
            ),
            RecipientLeg(
                recipient_type=RecipientType.ORGANIZATION,
                recipient_id=campaign.organization_id,
                name=(organization.name if organization else None) or "Organization",
                amount=split.organization_amount,
                stripe_account_id=organization.stripe_account_id if organization else None,
                notification_email=organization.notification_email if organization else None,
            ),
        ]

    async def _execute_transfer(
        self,
        order: Order,
        campaign: Campaign,
        leg: RecipientLeg,
        simulate: bool
    ) -> TransferAttempt:
        """Decide and run the external part of one leg. Raises on transfer failure."""
        if leg.amount <= 0:
            logger.info(f"Settlement: Skipping {leg.recipient_type} transfer - amount is ${leg.amount}")
            return TransferAttempt(SKIPPED)

        if simulate:
            logger.info(f"Settlement: Simulated {leg.recipient_type} transfer of ${leg.amount}")
            return TransferAttempt(PayoutStatus.COMPLETED)

        if not leg.stripe_account_id:
            logger.info(f"Settlement: {leg.recipient_type} has no Stripe account connected, creating pending payout")
            return TransferAttempt(PayoutStatus.PENDING)

        logger.info(f"Settlement: Processing {leg.recipient_type} transfer: ${leg.amount} to {leg.stripe_account_id}")

        transfer = await asyncio.wait_for(
            asyncio.to_thread(
                self.stripe.create_transfer,
                amount=leg.amount,
                destination=leg.stripe_account_id,
                description=f"BloomFundr payout for order {order.order_number}",
                metadata={
                    "campaignId": campaign.id,
                    "orderId": order.id,
                    "recipientType": leg.recipient_type,
                    "recipientId": leg.recipient_id,
                    "orderNumber": order.order_number,
                },
                idempotency_key=f"settlement-{order.id}-{leg.recipient_type}",
                transfer_group=campaign.id,
            ),
            timeout=self.transfer_timeout
        )
        return TransferAttempt(PayoutStatus.COMPLETED, transfer_id=transfer["id"])

    def _failed_attempt(self, leg: RecipientLeg, error: BaseException) -> TransferAttempt:
        if isinstance(error, asyncio.TimeoutError):
            message = f"Transfer timed out after {self.transfer_timeout:g}s"
        else:
            message = str(error) or error.__class__.__name__
        logger.error(f"Settlement: Transfer failed for {leg.recipient_type}: {message}")
        return TransferAttempt(PayoutStatus.FAILED, error=message)

    def _record_leg(
        self,
        order: Order,
        campaign: Campaign,
        leg: RecipientLeg,
        attempt: TransferAttempt
    ) -> LegOutcome:
        """Persist one leg: payout row, earnings, notifications."""
        outcome = LegOutcome(
            recipient_type=leg.recipient_type,
            recipient_id=leg.recipient_id,
            amount=leg.amount,
            status=attempt.status,
            transfer_id=attempt.transfer_id,
            error=attempt.error,
        )
        if attempt.status == SKIPPED:
            return outcome

        payout = Payout(
            campaign_id=campaign.id,
            order_id=order.id,
            recipient_type=leg.recipient_type,
            recipient_id=leg.recipient_id,
            amount=leg.amount,
            status=attempt.status,
            stripe_transfer_id=attempt.transfer_id,
            failure_reason=attempt.error,
            processed_at=datetime.utcnow() if attempt.status == PayoutStatus.COMPLETED else None,
        )
        try:
            self.db.add(payout)
            self.db.commit()
            outcome.payout_id = payout.id
        except SQLAlchemyError as e:
            self.db.rollback()
            logger.error(
                f"Settlement: Failed to create {attempt.status} payout record for "
                f"{leg.recipient_type} on order {order.order_number} "
                f"(transfer={attempt.transfer_id}): {e}"
            )
            outcome.error = f"Payout record not saved: {e}"
            return outcome

        if attempt.status in (PayoutStatus.PENDING, PayoutStatus.COMPLETED):
            outcome.earnings_credited = self._credit_earnings(leg)

        if attempt.status == PayoutStatus.FAILED:
            self.notifier.notify_recipient(
                self.db,
                leg.recipient_type,
                leg.recipient_id,
                title="Payout Failed",
                message=(
                    f"A payout of ${leg.amount:.2f} for order {order.order_number} failed. "
                    f"Please check your Stripe Connect account settings. Error: {attempt.error}"
                ),
                notification_type="error",
                link_url=self.notifier.settings_link(leg.recipient_type),
            )
        elif attempt.transfer_id:
            self.notifier.send_email(
                EmailType.PAYOUT_CONFIRMATION,
                leg.notification_email,
                {
                    "recipientName": leg.name,
                    "recipientType": leg.recipient_type,
                    "amount": f"${leg.amount:.2f}",
                    "payoutCount": 1,
                    "campaignNames": [campaign.name],
                    "dashboardLink": self.notifier.app_url + self.notifier.settings_link(leg.recipient_type),
                },
            )

        return outcome

    def _credit_earnings(self, leg: RecipientLeg) -> bool:
        # The payout row is already committed; a counter failure is drift, not a rollback
        try:
            increment_lifetime_earnings(self.db, leg.recipient_type, leg.recipient_id, leg.amount)
            return True
        except (SQLAlchemyError, RecipientNotFoundError) as e:
            self.db.rollback()
            logger.error(f"Settlement: Failed to update {leg.recipient_type} {leg.recipient_id} earnings: {e}")
            return False

    def _send_order_confirmation(self, order: Order, campaign: Campaign):
        customer = order.customer
        if customer is None:
            return
        self.notifier.send_email(
            EmailType.ORDER_CONFIRMATION,
            customer.email,
            {
                "customerName": customer.full_name,
                "orderNumber": order.order_number,
                "organizationName": campaign.organization.name if campaign.organization else None,
                "campaignName": campaign.name,
                "total": str(round_currency(order.total)),
                "items": [
                    {
                        "name": item.product_name or "Product",
                        "quantity": item.quantity,
                        "price": str(round_currency(item.unit_price)),
                    }
                    for item in order.items
                ],
            },
        )
