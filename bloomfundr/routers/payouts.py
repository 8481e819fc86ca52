"""
Payout Router - Administrative payout views

Payout-leg failures never reach the paying customer; they surface here.

Endpoints:
- GET /payouts/ - List payouts with filters
- GET /payouts/{id} - Get payout details
- GET /payouts/campaign/{campaign_id} - List campaign payouts
- POST /payouts/process-pending - Transfer pending payouts once a recipient connects Stripe
- GET /payouts/earnings/{recipient_type}/{recipient_id} - Lifetime earnings vs payout history
"""

from fastapi import APIRouter, HTTPException, Depends
from sqlalchemy.orm import Session
from typing import List, Optional
from pydantic import BaseModel, ConfigDict, Field
from datetime import datetime
from decimal import Decimal
import logging

from database.db import get_db
from database.models import Campaign, Payout, RecipientType
from services.earnings_service import reconcile_lifetime_earnings
from services.exceptions import (
    NoPayoutAccountError, PayoutAccountNotReadyError, RecipientNotFoundError, TransferError
)
from services.pending_payout_service import process_pending_payouts
from services.stripe_service import StripeService, get_stripe_service

router = APIRouter(prefix="/payouts", tags=["Payouts"])
logger = logging.getLogger(__name__)

RECIPIENT_PATTERN = r'^(florist|organization)$'


class PayoutResponse(BaseModel):
    """Payout response schema."""
    model_config = ConfigDict(from_attributes=True)

    id: str
    campaign_id: str
    order_id: Optional[str]
    recipient_type: str
    recipient_id: str
    amount: Decimal
    status: str
    stripe_transfer_id: Optional[str]
    failure_reason: Optional[str]
    processed_at: Optional[datetime]
    is_reversal: bool
    original_payout_id: Optional[str]
    created_at: datetime


class ProcessPendingRequest(BaseModel):
    recipient_type: str = Field(..., pattern=RECIPIENT_PATTERN)
    recipient_id: str = Field(..., min_length=1)


class EarningsReconciliation(BaseModel):
    recipient_type: str
    recipient_id: str
    cached_lifetime_earnings: Decimal
    payout_history_total: Decimal
    drift: Decimal


@router.get("/", response_model=List[PayoutResponse])
def list_payouts(
    status: Optional[str] = None,
    recipient_type: Optional[str] = None,
    recipient_id: Optional[str] = None,
    order_id: Optional[str] = None,
    skip: int = 0,
    limit: int = 100,
    db: Session = Depends(get_db)
):
    """
    List payouts with optional filters.

    Query params:
    - status: pending, completed, failed
    - recipient_type / recipient_id: One florist or organization
    - order_id: Payouts created by one order (reversals included)
    - skip / limit: Pagination
    """
    query = db.query(Payout)

    if status:
        query = query.filter(Payout.status == status)
    if recipient_type:
        query = query.filter(Payout.recipient_type == recipient_type)
    if recipient_id:
        query = query.filter(Payout.recipient_id == recipient_id)
    if order_id:
        query = query.filter(Payout.order_id == order_id)

    return query.order_by(Payout.created_at.desc()).offset(skip).limit(limit).all()


@router.get("/campaign/{campaign_id}", response_model=List[PayoutResponse])
def list_campaign_payouts(campaign_id: str, db: Session = Depends(get_db)):
    """List all payouts for a campaign."""
    campaign = db.get(Campaign, campaign_id)
    if not campaign:
        raise HTTPException(status_code=404, detail="Campaign not found")

    return db.query(Payout).filter(Payout.campaign_id == campaign_id).order_by(Payout.created_at).all()


@router.get(
    "/earnings/{recipient_type}/{recipient_id}",
    response_model=EarningsReconciliation
)
def get_earnings_reconciliation(recipient_type: str, recipient_id: str, db: Session = Depends(get_db)):
    """Compare a recipient's cached lifetime earnings with their payout history."""
    if recipient_type not in RecipientType.ALL:
        raise HTTPException(status_code=400, detail=f"Unknown recipient type: {recipient_type}")
    try:
        return reconcile_lifetime_earnings(db, recipient_type, recipient_id)
    except RecipientNotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))


@router.post("/process-pending")
def process_pending(
    request: ProcessPendingRequest,
    db: Session = Depends(get_db),
    stripe: StripeService = Depends(get_stripe_service)
):
    """
    Transfer every pending payout owed to a recipient.

    Called after a florist or organization finishes Stripe onboarding.
    """
    try:
        summary = process_pending_payouts(db, stripe, request.recipient_type, request.recipient_id)
    except RecipientNotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))
    except (NoPayoutAccountError, PayoutAccountNotReadyError) as e:
        raise HTTPException(status_code=400, detail=str(e))
    except TransferError as e:
        logger.error(f"Pending payouts: Stripe account check failed: {e}")
        raise HTTPException(status_code=502, detail=f"Stripe error: {e}")

    return {"success": True, **summary}


@router.get("/{payout_id}", response_model=PayoutResponse)
def get_payout(payout_id: str, db: Session = Depends(get_db)):
    """Get payout details by ID."""
    payout = db.get(Payout, payout_id)
    if not payout:
        raise HTTPException(status_code=404, detail="Payout not found")
    return payout
