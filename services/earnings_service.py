"""
Lifetime earnings ledger.

Florist.total_lifetime_earnings and Organization.total_lifetime_earnings
are cached running totals of bf_payouts. They are only ever moved by a
single atomic UPDATE ... SET x = x + :delta, never read-modify-write in
Python, so concurrent settlements for the same recipient cannot lose
an increment.
"""

import logging
from decimal import Decimal
from typing import Dict

from sqlalchemy import func, select, update
from sqlalchemy.orm import Session

from database.models import Florist, Organization, Payout, PayoutStatus, RecipientType
from services.exceptions import RecipientNotFoundError
from services.payout_calculator import ZERO, round_currency

logger = logging.getLogger(__name__)

RECIPIENT_MODELS = {
    RecipientType.FLORIST: Florist,
    RecipientType.ORGANIZATION: Organization,
}


def recipient_model(recipient_type: str):
    try:
        return RECIPIENT_MODELS[recipient_type]
    except KeyError:
        raise ValueError(f"Unknown recipient type: {recipient_type}")


def increment_lifetime_earnings(db: Session, recipient_type: str, recipient_id: str, amount: Decimal):
    """
    Atomically add amount to a recipient's lifetime earnings and commit.

    Raises:
        RecipientNotFoundError: No row was updated
    """
    model = recipient_model(recipient_type)
    result = db.execute(
        update(model)
        .where(model.id == recipient_id)
        .values(total_lifetime_earnings=model.total_lifetime_earnings + amount)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount == 0:
        db.rollback()
        raise RecipientNotFoundError(f"{recipient_type} {recipient_id} not found")
    db.commit()
    logger.info(f"Earnings: +{amount} for {recipient_type} {recipient_id}")


def reconcile_lifetime_earnings(db: Session, recipient_type: str, recipient_id: str) -> Dict:
    """
    Compare the cached counter with the payout history.

    History counts pending and completed rows, reversals included.
    A non-zero drift means a swallowed counter failure or a refund.
    """
    model = recipient_model(recipient_type)
    # Read the column directly; an ORM instance in the session may predate the increments
    row = db.execute(
        select(model.total_lifetime_earnings).where(model.id == recipient_id)
    ).first()
    if row is None:
        raise RecipientNotFoundError(f"{recipient_type} {recipient_id} not found")

    history_total = db.execute(
        select(func.coalesce(func.sum(Payout.amount), 0))
        .where(Payout.recipient_type == recipient_type)
        .where(Payout.recipient_id == recipient_id)
        .where(Payout.status.in_([PayoutStatus.PENDING, PayoutStatus.COMPLETED]))
    ).scalar_one()

    cached = round_currency(row[0] or ZERO)
    history = round_currency(history_total)

    return {
        "recipient_type": recipient_type,
        "recipient_id": recipient_id,
        "cached_lifetime_earnings": cached,
        "payout_history_total": history,
        "drift": cached - history,
    }
