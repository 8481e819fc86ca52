"""
Deferred payout processing.

Settlement leaves a pending payout when a recipient has no connected
Stripe account. Once the recipient finishes Stripe onboarding, this
service transfers every pending payout they are owed.

Earnings were already credited when the pending row was created, so
nothing here touches the lifetime counter. A failed transfer keeps the
row pending (with failure_reason) so it is retried next time instead of
diverging from the credited total. Payouts that a full refund already
reversed are never transferred.
"""

import logging
from datetime import datetime
from typing import Dict

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from database.models import Payout, PayoutStatus
from services.earnings_service import recipient_model
from services.exceptions import (
    NoPayoutAccountError, PayoutAccountNotReadyError, RecipientNotFoundError, TransferError
)
from services.refund_service import reversed_payout_ids
from services.stripe_service import StripeService

logger = logging.getLogger(__name__)


def process_pending_payouts(
    db: Session,
    stripe: StripeService,
    recipient_type: str,
    recipient_id: str
) -> Dict:
    """
    Transfer all pending payouts owed to one recipient.

    Raises:
        RecipientNotFoundError: Unknown florist/organization
        NoPayoutAccountError: Recipient has not connected Stripe
        PayoutAccountNotReadyError: Stripe onboarding incomplete
    """
    logger.info(f"Pending payouts: Processing for {recipient_type} {recipient_id}")

    model = recipient_model(recipient_type)
    recipient = db.get(model, recipient_id)
    if recipient is None:
        raise RecipientNotFoundError(f"{recipient_type} {recipient_id} not found")

    stripe_account_id = recipient.stripe_account_id
    if not stripe_account_id:
        raise NoPayoutAccountError(
            "No Stripe account connected. Please complete Stripe onboarding first."
        )

    account = stripe.retrieve_account(stripe_account_id)
    if not account.get('charges_enabled') or not account.get('payouts_enabled'):
        raise PayoutAccountNotReadyError(
            "Stripe account is not fully onboarded. Please complete Stripe setup."
        )

    pending = db.query(Payout).filter(
        Payout.recipient_type == recipient_type,
        Payout.recipient_id == recipient_id,
        Payout.status == PayoutStatus.PENDING,
        Payout.is_reversal.is_(False),
        Payout.id.not_in(reversed_payout_ids())
    ).order_by(Payout.created_at).all()

    if not pending:
        return {"processed": 0, "failed": 0, "results": [], "message": "No pending payouts found"}

    logger.info(f"Pending payouts: Found {len(pending)} pending payouts to process")

    processed = 0
    failed = 0
    results = []

    for payout in pending:
        if payout.amount <= 0:
            logger.info(f"Pending payouts: Skipping payout {payout.id} - amount is zero or negative")
            continue

        try:
            transfer = stripe.create_transfer(
                amount=payout.amount,
                destination=stripe_account_id,
                metadata={
                    "payout_id": payout.id,
                    "campaign_id": payout.campaign_id,
                    "recipient_type": recipient_type,
                },
                idempotency_key=f"payout-{payout.id}",
                transfer_group=payout.campaign_id,
            )
        except TransferError as e:
            payout.failure_reason = str(e)
            db.commit()
            failed += 1
            logger.error(f"Pending payouts: Failed to process payout {payout.id}: {e}")
            results.append({
                "payout_id": payout.id,
                "amount": str(payout.amount),
                "status": PayoutStatus.PENDING,
                "error": str(e),
            })
            continue

        payout.status = PayoutStatus.COMPLETED
        payout.stripe_transfer_id = transfer['id']
        payout.processed_at = datetime.utcnow()
        payout.failure_reason = None
        try:
            db.commit()
        except SQLAlchemyError as e:
            db.rollback()
            logger.error(
                f"Pending payouts: Transfer {transfer['id']} sent but payout {payout.id} not updated: {e}"
            )
            raise

        processed += 1
        logger.info(f"Pending payouts: Transfer created: {transfer['id']} for ${payout.amount}")
        results.append({
            "payout_id": payout.id,
            "amount": str(payout.amount),
            "transfer_id": transfer['id'],
            "status": PayoutStatus.COMPLETED,
        })

    return {
        "processed": processed,
        "failed": failed,
        "results": results,
        "message": f"Processed {processed} payouts, {failed} failed",
    }
