"""
BloomFundr Database Models

This module defines the SQLAlchemy models used by the payment back office.

Architecture:
- Florists: Businesses supplying the products of a fundraiser
- Organizations: Schools/clubs running fundraiser campaigns
- Campaigns: Fundraisers linking one florist and one organization,
  with the margin split between them
- Customers / Orders: Purchases made by supporters through a campaign
- Payouts: Settlement records, one row per (order, recipient) attempt
- Notifications: In-app messages shown on florist/organization dashboards
"""

import uuid
from datetime import datetime

from sqlalchemy import (
    Column, Integer, String, Numeric, Boolean, DateTime,
    Text, ForeignKey
)
from sqlalchemy.orm import declarative_base, relationship

Base = declarative_base()


def new_id() -> str:
    return str(uuid.uuid4())


# Money columns: two decimal places, handled as Decimal in Python
Money = Numeric(10, 2, asdecimal=True)


class PaymentStatus:
    """Order payment states."""
    PENDING = "pending"
    PAID = "paid"
    FAILED = "failed"
    REFUNDED = "refunded"
    PARTIALLY_REFUNDED = "partially_refunded"


class PayoutStatus:
    """Payout row states."""
    PENDING = "pending"        # Owed, waiting for a connected payout account
    COMPLETED = "completed"    # Transfer executed
    FAILED = "failed"          # Transfer rejected by Stripe


class RecipientType:
    FLORIST = "florist"
    ORGANIZATION = "organization"

    ALL = (FLORIST, ORGANIZATION)


class Florist(Base):
    """
    Florist supplying a campaign.

    total_lifetime_earnings is a cached running total, only ever
    incremented by settlement. bf_payouts is the source of truth.
    """
    __tablename__ = "bf_florists"

    id = Column(String(36), primary_key=True, default=new_id)
    business_name = Column(String(255), nullable=False)
    notification_email = Column(String(255))

    # Stripe Connect account; payouts are deferred while this is empty
    stripe_account_id = Column(String(100))

    total_lifetime_earnings = Column(Money, nullable=False, default=0)

    created_at = Column(DateTime, default=datetime.utcnow)

    campaigns = relationship("Campaign", back_populates="florist")


class Organization(Base):
    """School or club running fundraiser campaigns."""
    __tablename__ = "bf_organizations"

    id = Column(String(36), primary_key=True, default=new_id)
    name = Column(String(255), nullable=False)
    notification_email = Column(String(255))
    stripe_account_id = Column(String(100))

    total_lifetime_earnings = Column(Money, nullable=False, default=0)

    created_at = Column(DateTime, default=datetime.utcnow)

    campaigns = relationship("Campaign", back_populates="organization")


class Campaign(Base):
    """
    Fundraiser campaign.

    Margins are percentages (0-100) of the revenue left after fees.
    They do not need to sum to 100: settlement renormalizes them
    against their own sum. platform_fee_percent is only used at
    checkout, where it is baked into Order.platform_fee.
    """
    __tablename__ = "bf_campaigns"

    id = Column(String(36), primary_key=True, default=new_id)
    name = Column(String(255), nullable=False)
    florist_id = Column(String(36), ForeignKey("bf_florists.id"), nullable=False)
    organization_id = Column(String(36), ForeignKey("bf_organizations.id"), nullable=False)

    florist_margin_percent = Column(Numeric(5, 2), nullable=False, default=0)
    organization_margin_percent = Column(Numeric(5, 2), nullable=False, default=0)
    platform_fee_percent = Column(Numeric(5, 2), nullable=False, default=10)

    created_at = Column(DateTime, default=datetime.utcnow)

    florist = relationship("Florist", back_populates="campaigns")
    organization = relationship("Organization", back_populates="campaigns")
    orders = relationship("Order", back_populates="campaign")


class Customer(Base):
    __tablename__ = "bf_customers"

    id = Column(String(36), primary_key=True, default=new_id)
    email = Column(String(255))
    full_name = Column(String(255))

    orders = relationship("Order", back_populates="customer")


class Order(Base):
    """
    Customer order placed through a campaign.

    Invariant: total == subtotal + processing_fee. The platform fee is
    deducted from the merchants' share, never added to the customer total.
    payment_status moves pending -> paid exactly once (see settlement).
    """
    __tablename__ = "bf_orders"

    id = Column(String(36), primary_key=True, default=new_id)
    order_number = Column(String(50), nullable=False, unique=True)
    campaign_id = Column(String(36), ForeignKey("bf_campaigns.id"), nullable=False)
    customer_id = Column(String(36), ForeignKey("bf_customers.id"))

    subtotal = Column(Money, nullable=False)
    platform_fee = Column(Money, nullable=False, default=0)
    processing_fee = Column(Money, nullable=False, default=0)
    total = Column(Money, nullable=False)

    # Status tracking
    payment_status = Column(String(20), nullable=False, default=PaymentStatus.PENDING, index=True)
    paid_at = Column(DateTime)
    stripe_payment_intent_id = Column(String(255), index=True)

    # Refunds
    refund_status = Column(String(20))  # full, partial
    refund_amount = Column(Money)
    refunded_at = Column(DateTime)
    stripe_refund_id = Column(String(255))

    created_at = Column(DateTime, default=datetime.utcnow)

    campaign = relationship("Campaign", back_populates="orders")
    customer = relationship("Customer", back_populates="orders")
    items = relationship("OrderItem", back_populates="order")


class OrderItem(Base):
    __tablename__ = "bf_order_items"

    id = Column(String(36), primary_key=True, default=new_id)
    order_id = Column(String(36), ForeignKey("bf_orders.id"), nullable=False)
    product_name = Column(String(255))
    quantity = Column(Integer, nullable=False, default=1)
    unit_price = Column(Money, nullable=False)

    order = relationship("Order", back_populates="items")


class Payout(Base):
    """
    One settlement attempt to one recipient.

    Append-only: amount, recipient and order never change after insert.
    Refunds are modeled as new rows with is_reversal=True and a
    negative amount pointing at the original payout.

    Status flow:
    - pending: owed, recipient has no connected Stripe account yet
    - completed: Stripe transfer executed (stripe_transfer_id set)
    - failed: Stripe rejected the transfer (failure_reason set)
    """
    __tablename__ = "bf_payouts"

    id = Column(String(36), primary_key=True, default=new_id)
    campaign_id = Column(String(36), ForeignKey("bf_campaigns.id"), nullable=False, index=True)
    order_id = Column(String(36), ForeignKey("bf_orders.id"), index=True)

    # Recipient
    recipient_type = Column(String(20), nullable=False)  # florist, organization
    recipient_id = Column(String(36), nullable=False, index=True)

    amount = Column(Money, nullable=False)

    status = Column(String(20), nullable=False, default=PayoutStatus.PENDING)
    stripe_transfer_id = Column(String(100))
    failure_reason = Column(Text)
    processed_at = Column(DateTime)

    # Reversals (refund clawbacks)
    is_reversal = Column(Boolean, nullable=False, default=False)
    original_payout_id = Column(String(36), ForeignKey("bf_payouts.id"))

    created_at = Column(DateTime, default=datetime.utcnow)

    campaign = relationship("Campaign")
    order = relationship("Order")

    def __repr__(self):
        return f"<Payout(id={self.id}, {self.recipient_type}={self.amount}, status={self.status})>"


class FloristNotification(Base):
    """In-app notification shown on the florist dashboard."""
    __tablename__ = "bf_florist_notifications"

    id = Column(String(36), primary_key=True, default=new_id)
    florist_id = Column(String(36), ForeignKey("bf_florists.id"), nullable=False, index=True)
    title = Column(String(255), nullable=False)
    message = Column(Text, nullable=False)
    notification_type = Column(String(20), default="info")  # info, warning, error
    link_url = Column(String(255))
    is_read = Column(Boolean, default=False)
    created_at = Column(DateTime, default=datetime.utcnow)


class OrganizationNotification(Base):
    """In-app notification shown on the organization dashboard."""
    __tablename__ = "bf_notifications"

    id = Column(String(36), primary_key=True, default=new_id)
    organization_id = Column(String(36), ForeignKey("bf_organizations.id"), nullable=False, index=True)
    title = Column(String(255), nullable=False)
    message = Column(Text, nullable=False)
    notification_type = Column(String(20), default="info")
    link_url = Column(String(255))
    is_read = Column(Boolean, default=False)
    created_at = Column(DateTime, default=datetime.utcnow)
