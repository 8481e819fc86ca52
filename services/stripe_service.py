"""
Stripe Connect Integration Service

Moves settled order revenue to florists and organizations and
verifies the webhooks Stripe sends when a checkout completes.

Stripe Flow:
1. Customer pays through a Checkout Session (order id in metadata)
2. Stripe sends checkout.session.completed to /webhooks/stripe
3. Settlement creates one Transfer per recipient with a connected account
4. Recipients without an account get a pending payout, transferred later
"""

import os
import stripe
from typing import Dict, Optional
import logging

from services.exceptions import TransferError
from services.payout_calculator import to_cents

logger = logging.getLogger(__name__)


class StripeService:
    """Stripe Connect transfer and webhook service."""

    def __init__(self):
        """Initialize Stripe service with API key from environment."""
        self.api_key = os.getenv('STRIPE_SECRET_KEY', 'sk_test_mock_key')
        self.webhook_secret = os.getenv('STRIPE_WEBHOOK_SECRET', '')
        self.currency = os.getenv('PAYOUT_CURRENCY', 'usd').lower()
        self.webhook_tolerance = int(os.getenv('STRIPE_WEBHOOK_TOLERANCE_SECONDS', '300'))

        stripe.api_key = self.api_key
        stripe.max_network_retries = int(os.getenv('STRIPE_MAX_NETWORK_RETRIES', '2'))

        # Mock mode flag
        self.is_mock = self.api_key.startswith('sk_test_mock')

        if self.is_mock:
            logger.info("Stripe: Running in mock mode (no real API key)")
        else:
            logger.info("Stripe: Initialized with real API key")

    @property
    def is_webhook_configured(self) -> bool:
        return bool(self.webhook_secret)

    def create_transfer(
        self,
        amount,
        destination: str,
        description: Optional[str] = None,
        metadata: Optional[Dict] = None,
        idempotency_key: Optional[str] = None,
        transfer_group: Optional[str] = None
    ) -> Dict:
        """
        Create a Stripe Transfer to a connected account.

        Args:
            amount: Amount in currency units (Decimal, e.g. 52.20)
            destination: Connected Stripe account ID (starts with 'acct_')
            description: Transfer description
            metadata: Optional metadata
            idempotency_key: Makes retried calls return the original transfer
            transfer_group: Optional grouping (campaign id)

        Returns:
            Dict with Transfer data

        Raises:
            TransferError: If Stripe rejects the transfer
        """
        amount_cents = to_cents(amount)

        # Mock mode
        if self.is_mock:
            logger.info(f"Stripe Mock: Creating transfer for {amount} {self.currency} to {destination}")
            return {
                'id': f'tr_mock_{int(os.urandom(4).hex(), 16)}',
                'object': 'transfer',
                'amount': amount_cents,
                'currency': self.currency,
                'destination': destination,
                'description': description,
                'metadata': metadata or {}
            }

        # Real API call
        try:
            params = dict(
                amount=amount_cents,
                currency=self.currency,
                destination=destination,
                description=description,
                metadata=metadata or {},
            )
            if transfer_group:
                params['transfer_group'] = transfer_group
            if idempotency_key:
                params['idempotency_key'] = idempotency_key

            transfer = stripe.Transfer.create(**params)

            logger.info(f"Stripe: Transfer created - {transfer.id}")

            return {
                'id': transfer.id,
                'object': transfer.object,
                'amount': transfer.amount,
                'currency': transfer.currency,
                'destination': transfer.destination,
                'description': transfer.description,
            }

        except stripe.StripeError as e:
            logger.error(f"Stripe: Transfer creation failed: {str(e)}")
            raise TransferError(str(e)) from e

    def retrieve_account(self, account_id: str) -> Dict:
        """
        Retrieve a connected account's onboarding state.

        Returns:
            Dict with id, charges_enabled, payouts_enabled
        """
        if self.is_mock:
            logger.info(f"Stripe Mock: Retrieving account {account_id}")
            return {
                'id': account_id,
                'charges_enabled': True,
                'payouts_enabled': True
            }

        try:
            account = stripe.Account.retrieve(account_id)
            return {
                'id': account.id,
                'charges_enabled': bool(account.charges_enabled),
                'payouts_enabled': bool(account.payouts_enabled)
            }
        except stripe.StripeError as e:
            logger.error(f"Stripe: Account retrieval failed: {str(e)}")
            raise TransferError(str(e)) from e

    def construct_webhook_event(
        self,
        payload: bytes,
        signature: str
    ) -> Dict:
        """
        Verify a webhook signature and parse the event.

        Verification always runs, mock mode included.

        Args:
            payload: Raw request body
            signature: Stripe-Signature header value

        Returns:
            Event as a plain dict

        Raises:
            ValueError: If the payload or signature is invalid
        """
        if not signature:
            raise ValueError("Missing signature")

        if isinstance(payload, bytes):
            payload = payload.decode('utf-8')

        try:
            event = stripe.Webhook.construct_event(
                payload,
                signature,
                self.webhook_secret,
                self.webhook_tolerance
            )
        except stripe.SignatureVerificationError as e:
            logger.error(f"Stripe: Invalid webhook signature: {str(e)}")
            raise ValueError("Invalid signature") from e
        except ValueError as e:
            logger.error(f"Stripe: Invalid webhook payload: {str(e)}")
            raise ValueError("Invalid payload") from e

        event = event.to_dict()
        if 'type' not in event:
            raise ValueError("Invalid payload")

        logger.info(f"Stripe: Webhook event verified - {event['type']}")
        return event


# Singleton instance
stripe_service = StripeService()


def get_stripe_service() -> StripeService:
    """FastAPI dependency returning the shared Stripe service."""
    return stripe_service
