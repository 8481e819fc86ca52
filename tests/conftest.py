"""
Shared pytest fixtures for BloomFundr tests.

Every test gets a fresh in-memory SQLite database. The FastAPI app is
wired to it through dependency overrides; Stripe runs in mock mode.
"""
import os

os.environ.setdefault("DATABASE_URL", "sqlite://")
os.environ.setdefault("STRIPE_SECRET_KEY", "sk_test_mock_key")
os.environ.setdefault("STRIPE_WEBHOOK_SECRET", "whsec_test_secret")
os.environ.pop("EMAIL_FUNCTION_URL", None)

from decimal import Decimal

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from database.db import get_db
from database.models import (
    Base, Campaign, Customer, Florist, Order, OrderItem, Organization
)
from main import app
from services.notification_service import NotificationService, get_notification_service
from services.stripe_service import StripeService, get_stripe_service

engine = create_engine(
    "sqlite://",
    connect_args={"check_same_thread": False},
    poolclass=StaticPool,
)
TestingSessionLocal = sessionmaker(bind=engine, expire_on_commit=False, autoflush=False)


@pytest.fixture
def db_session():
    """Fresh schema per test."""
    Base.metadata.create_all(bind=engine)
    session = TestingSessionLocal()
    try:
        yield session
    finally:
        session.close()
        Base.metadata.drop_all(bind=engine)


@pytest.fixture
def stripe_service():
    """Stripe service in mock mode with a known webhook secret."""
    service = StripeService()
    service.webhook_secret = "whsec_test_secret"
    return service


@pytest.fixture
def notifier():
    """Notification service with email disabled."""
    service = NotificationService()
    service.email_url = ""
    return service


@pytest.fixture
def client(db_session, stripe_service, notifier):
    def override_get_db():
        yield db_session

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_stripe_service] = lambda: stripe_service
    app.dependency_overrides[get_notification_service] = lambda: notifier
    try:
        with TestClient(app) as test_client:
            yield test_client
    finally:
        app.dependency_overrides.clear()


@pytest.fixture
def make_order(db_session):
    """
    Create a florist, organization, campaign, customer and pending order.

    Defaults match the reference example: subtotal 100.00,
    processing fee 3.00, platform fee 10.00, margins 60/40.
    """
    counter = {"n": 0}

    def _make_order(
        subtotal="100.00",
        processing_fee="3.00",
        platform_fee="10.00",
        florist_margin="60",
        organization_margin="40",
        florist_account=None,
        organization_account=None,
        payment_status="pending",
        campaign=None,
    ):
        counter["n"] += 1
        if campaign is None:
            florist = Florist(
                business_name="Petal & Stem",
                notification_email="florist@example.com",
                stripe_account_id=florist_account,
            )
            organization = Organization(
                name="Lincoln High Band",
                notification_email="band@example.com",
                stripe_account_id=organization_account,
            )
            db_session.add_all([florist, organization])
            db_session.flush()
            campaign = Campaign(
                name="Spring Flower Sale",
                florist_id=florist.id,
                organization_id=organization.id,
                florist_margin_percent=Decimal(florist_margin),
                organization_margin_percent=Decimal(organization_margin),
            )
            db_session.add(campaign)
            db_session.flush()

        customer = Customer(email="parent@example.com", full_name="Jamie Parent")
        db_session.add(customer)
        db_session.flush()

        order = Order(
            order_number=f"BF-{1000 + counter['n']}",
            campaign_id=campaign.id,
            customer_id=customer.id,
            subtotal=Decimal(subtotal),
            processing_fee=Decimal(processing_fee),
            platform_fee=Decimal(platform_fee),
            total=Decimal(subtotal) + Decimal(processing_fee),
            payment_status=payment_status,
        )
        db_session.add(order)
        db_session.flush()
        db_session.add(OrderItem(
            order_id=order.id,
            product_name="Rose Bouquet",
            quantity=2,
            unit_price=Decimal(subtotal) / 2,
        ))
        db_session.commit()
        return order

    return _make_order
