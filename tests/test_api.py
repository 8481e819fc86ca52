"""
API tests for payment completion and payout administration endpoints.
"""

import asyncio
from decimal import Decimal
from unittest.mock import MagicMock

from database.models import Campaign, Florist, Payout
from services.exceptions import TransferError
from services.refund_service import process_refund
from services.settlement_service import SettlementProcessor


class TestHealthEndpoints:

    def test_health_check(self, client):
        response = client.get("/health")
        assert response.status_code == 200
        data = response.json()
        assert data["status"] == "healthy"
        assert data["service"] == "BloomFundr API"

    def test_root_endpoint(self, client):
        response = client.get("/")
        assert response.status_code == 200
        assert "BloomFundr" in response.json()["message"]

    def test_webhook_health(self, client):
        assert client.get("/webhooks/health").json()["status"] == "healthy"


class TestCompletePayment:

    def test_missing_order_id(self, client):
        response = client.post("/payments/complete", json={})
        assert response.status_code == 400
        assert response.json()["detail"] == "Missing orderId"

    def test_unknown_order(self, client):
        response = client.post("/payments/complete", json={"orderId": "nope"})
        assert response.status_code == 404

    def test_completes_payment_with_simulated_payouts(self, client, db_session, make_order):
        order = make_order(florist_account="acct_florist")

        response = client.post("/payments/complete", json={"orderId": order.id})

        assert response.status_code == 200
        data = response.json()
        assert data["success"] is True
        assert data["message"] == "Payment completed"
        assert data["orderNumber"] == order.order_number
        assert data["settlement"]["split"]["florist_amount"] == "52.20"
        assert data["settlement"]["payouts"]["florist"]["status"] == "completed"
        assert data["settlement"]["payouts"]["organization"]["status"] == "completed"

        db_session.refresh(order)
        assert order.payment_status == "paid"

    def test_already_paid(self, client, db_session, make_order):
        order = make_order()
        client.post("/payments/complete", json={"orderId": order.id})

        response = client.post("/payments/complete", json={"orderId": order.id})

        assert response.status_code == 200
        assert response.json()["message"] == "Order already paid"
        assert db_session.query(Payout).count() == 2

    def test_refunded_order_conflict(self, client, make_order):
        order = make_order(payment_status="refunded")

        response = client.post("/payments/complete", json={"orderId": order.id})

        assert response.status_code == 409


class TestPayoutViews:

    def test_list_and_filter(self, client, make_order):
        order = make_order()
        client.post("/payments/complete", json={"orderId": order.id})

        all_payouts = client.get("/payouts/").json()
        florist_only = client.get("/payouts/", params={"recipient_type": "florist"}).json()

        assert len(all_payouts) == 2
        assert len(florist_only) == 1
        assert Decimal(florist_only[0]["amount"]) == Decimal("52.20")
        assert florist_only[0]["is_reversal"] is False

    def test_get_payout(self, client, db_session, make_order):
        order = make_order()
        client.post("/payments/complete", json={"orderId": order.id})
        payout = db_session.query(Payout).first()

        response = client.get(f"/payouts/{payout.id}")

        assert response.status_code == 200
        assert response.json()["id"] == payout.id

    def test_get_missing_payout(self, client):
        assert client.get("/payouts/missing").status_code == 404

    def test_campaign_payouts(self, client, make_order):
        order = make_order()
        client.post("/payments/complete", json={"orderId": order.id})

        response = client.get(f"/payouts/campaign/{order.campaign_id}")

        assert response.status_code == 200
        assert len(response.json()) == 2

    def test_campaign_payouts_unknown_campaign(self, client):
        assert client.get("/payouts/campaign/missing").status_code == 404


class TestProcessPending:

    def test_transfers_pending_payouts_after_onboarding(self, client, db_session, stripe_service, notifier, make_order):
        order = make_order()
        campaign = db_session.get(Campaign, order.campaign_id)
        asyncio.run(SettlementProcessor(db_session, stripe_service, notifier).settle_order(order.id))

        florist = db_session.get(Florist, campaign.florist_id)
        florist.stripe_account_id = "acct_new"
        db_session.commit()
        stripe_service.create_transfer = MagicMock(return_value={"id": "tr_deferred"})

        response = client.post("/payouts/process-pending", json={
            "recipient_type": "florist",
            "recipient_id": florist.id,
        })

        assert response.status_code == 200
        data = response.json()
        assert data["processed"] == 1
        assert data["failed"] == 0

        payout = db_session.query(Payout).filter(Payout.recipient_type == "florist").one()
        db_session.refresh(payout)
        assert payout.status == "completed"
        assert payout.stripe_transfer_id == "tr_deferred"
        assert Decimal(payout.amount) == Decimal("52.20")

        # Earnings were credited at settlement time, not again here
        db_session.refresh(florist)
        assert Decimal(florist.total_lifetime_earnings) == Decimal("52.20")

    def test_failed_transfer_keeps_payout_pending(self, client, db_session, stripe_service, notifier, make_order):
        order = make_order()
        campaign = db_session.get(Campaign, order.campaign_id)
        asyncio.run(SettlementProcessor(db_session, stripe_service, notifier).settle_order(order.id))

        florist = db_session.get(Florist, campaign.florist_id)
        florist.stripe_account_id = "acct_new"
        db_session.commit()
        stripe_service.create_transfer = MagicMock(side_effect=TransferError("payouts disabled"))

        response = client.post("/payouts/process-pending", json={
            "recipient_type": "florist",
            "recipient_id": florist.id,
        })

        assert response.status_code == 200
        assert response.json()["failed"] == 1

        payout = db_session.query(Payout).filter(Payout.recipient_type == "florist").one()
        db_session.refresh(payout)
        assert payout.status == "pending"
        assert payout.failure_reason == "payouts disabled"

    def test_refunded_order_pending_payout_not_transferred(self, client, db_session, stripe_service, notifier, make_order):
        order = make_order()
        campaign = db_session.get(Campaign, order.campaign_id)
        asyncio.run(
            SettlementProcessor(db_session, stripe_service, notifier).settle_order(order.id, payment_intent_id="pi_gone")
        )
        process_refund(db_session, {"payment_intent": "pi_gone", "amount_refunded": 10300}, notifier)

        florist = db_session.get(Florist, campaign.florist_id)
        florist.stripe_account_id = "acct_new"
        db_session.commit()
        stripe_service.create_transfer = MagicMock(return_value={"id": "tr_should_not_exist"})

        response = client.post("/payouts/process-pending", json={
            "recipient_type": "florist",
            "recipient_id": florist.id,
        })

        assert response.status_code == 200
        assert response.json()["processed"] == 0
        stripe_service.create_transfer.assert_not_called()

        original = db_session.query(Payout).filter(
            Payout.recipient_type == "florist", Payout.is_reversal.is_(False)
        ).one()
        db_session.refresh(original)
        assert original.status == "pending"
        assert original.stripe_transfer_id is None

    def test_no_account_connected(self, client, db_session, make_order):
        order = make_order()
        florist_id = db_session.get(Campaign, order.campaign_id).florist_id

        response = client.post("/payouts/process-pending", json={
            "recipient_type": "florist",
            "recipient_id": florist_id,
        })

        assert response.status_code == 400
        assert "No Stripe account" in response.json()["detail"]

    def test_account_not_onboarded(self, client, db_session, stripe_service, make_order):
        order = make_order(organization_account="acct_half_done")
        org_id = db_session.get(Campaign, order.campaign_id).organization_id
        stripe_service.retrieve_account = MagicMock(return_value={
            "id": "acct_half_done", "charges_enabled": True, "payouts_enabled": False
        })

        response = client.post("/payouts/process-pending", json={
            "recipient_type": "organization",
            "recipient_id": org_id,
        })

        assert response.status_code == 400
        assert "not fully onboarded" in response.json()["detail"]

    def test_unknown_recipient(self, client):
        response = client.post("/payouts/process-pending", json={
            "recipient_type": "florist",
            "recipient_id": "ghost",
        })
        assert response.status_code == 404

    def test_invalid_recipient_type(self, client):
        response = client.post("/payouts/process-pending", json={
            "recipient_type": "customer",
            "recipient_id": "x",
        })
        assert response.status_code == 422


class TestEarningsReconciliation:

    def test_no_drift_after_settlement(self, client, db_session, make_order):
        order = make_order()
        client.post("/payments/complete", json={"orderId": order.id})
        florist_id = db_session.get(Campaign, order.campaign_id).florist_id

        response = client.get(f"/payouts/earnings/florist/{florist_id}")

        assert response.status_code == 200
        data = response.json()
        assert Decimal(data["cached_lifetime_earnings"]) == Decimal("52.20")
        assert Decimal(data["payout_history_total"]) == Decimal("52.20")
        assert Decimal(data["drift"]) == 0

    def test_unknown_recipient_type(self, client):
        assert client.get("/payouts/earnings/customer/x").status_code == 400

    def test_unknown_recipient(self, client):
        assert client.get("/payouts/earnings/organization/ghost").status_code == 404
