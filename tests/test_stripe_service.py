"""
Tests for the Stripe Connect service.
"""

import hashlib
import hmac
import json
import time
from decimal import Decimal
from unittest.mock import MagicMock, patch

import pytest
import stripe

from services.exceptions import TransferError
from services.stripe_service import StripeService


@pytest.fixture
def live_service(monkeypatch):
    monkeypatch.setenv("STRIPE_SECRET_KEY", "sk_test_live_looking_key")
    monkeypatch.setenv("STRIPE_WEBHOOK_SECRET", "whsec_live")
    return StripeService()


def signed(payload: str, secret: str):
    timestamp = int(time.time())
    digest = hmac.new(secret.encode(), f"{timestamp}.{payload}".encode(), hashlib.sha256).hexdigest()
    return f"t={timestamp},v1={digest}"


class TestTransfers:

    def test_mock_transfer(self, stripe_service):
        transfer = stripe_service.create_transfer(
            amount=Decimal("52.20"), destination="acct_123", idempotency_key="k"
        )

        assert stripe_service.is_mock is True
        assert transfer["id"].startswith("tr_mock_")
        assert transfer["amount"] == 5220
        assert transfer["destination"] == "acct_123"

    def test_real_transfer_sends_cents_and_idempotency_key(self, live_service):
        fake = MagicMock(
            id="tr_live", object="transfer", amount=3480, currency="usd",
            destination="acct_org", description="Campaign payout"
        )
        with patch("services.stripe_service.stripe.Transfer.create", return_value=fake) as create:
            transfer = live_service.create_transfer(
                amount=Decimal("34.80"),
                destination="acct_org",
                description="Campaign payout",
                idempotency_key="settlement-o1-organization",
                transfer_group="campaign-1",
            )

        assert transfer["id"] == "tr_live"
        kwargs = create.call_args.kwargs
        assert kwargs["amount"] == 3480
        assert kwargs["currency"] == "usd"
        assert kwargs["idempotency_key"] == "settlement-o1-organization"
        assert kwargs["transfer_group"] == "campaign-1"

    def test_stripe_error_becomes_transfer_error(self, live_service):
        error = stripe.InvalidRequestError("No such destination: acct_gone", param="destination")
        with patch("services.stripe_service.stripe.Transfer.create", side_effect=error):
            with pytest.raises(TransferError, match="acct_gone"):
                live_service.create_transfer(amount=Decimal("1.00"), destination="acct_gone")

    def test_mock_account_is_ready(self, stripe_service):
        account = stripe_service.retrieve_account("acct_1")
        assert account["charges_enabled"] and account["payouts_enabled"]


class TestWebhookVerification:

    def test_valid_signature(self, stripe_service):
        payload = json.dumps({"id": "evt_1", "type": "charge.refunded", "data": {"object": {}}})

        event = stripe_service.construct_webhook_event(payload.encode(), signed(payload, "whsec_test_secret"))

        assert event["type"] == "charge.refunded"
        assert isinstance(event, dict)

    def test_missing_signature(self, stripe_service):
        with pytest.raises(ValueError, match="Missing signature"):
            stripe_service.construct_webhook_event(b"{}", "")

    def test_wrong_secret(self, stripe_service):
        payload = json.dumps({"type": "charge.refunded"})
        with pytest.raises(ValueError, match="Invalid signature"):
            stripe_service.construct_webhook_event(payload, signed(payload, "whsec_other"))

    def test_tampered_payload(self, stripe_service):
        payload = json.dumps({"type": "charge.refunded", "amount": 1})
        header = signed(payload, "whsec_test_secret")
        with pytest.raises(ValueError):
            stripe_service.construct_webhook_event(payload.replace("1", "9"), header)

    def test_signed_garbage_rejected(self, stripe_service):
        payload = "not json"
        with pytest.raises(ValueError, match="Invalid payload"):
            stripe_service.construct_webhook_event(payload, signed(payload, "whsec_test_secret"))

    def test_event_converted_to_plain_dict(self, stripe_service):
        payload = json.dumps({
            "id": "evt_2",
            "object": "event",
            "type": "checkout.session.completed",
            "data": {"object": {"id": "cs_1", "metadata": {"orderId": "o-1"}}},
        })

        with patch("services.stripe_service.stripe.Webhook.construct_event",
                   wraps=stripe.Webhook.construct_event) as construct:
            event = stripe_service.construct_webhook_event(payload, signed(payload, "whsec_test_secret"))

        construct.assert_called_once()
        assert event["data"]["object"]["metadata"].get("orderId") == "o-1"
