"""
Payment back-office exceptions.

Only the not-found / state errors are fatal for a settlement request.
Per-recipient failures are recorded on the payout row instead of raised.
"""


class SettlementError(Exception):
    """Base class for settlement errors."""


class OrderNotFoundError(SettlementError):
    def __init__(self, order_id: str):
        super().__init__(f"Order not found: {order_id}")
        self.order_id = order_id


class CampaignNotFoundError(SettlementError):
    def __init__(self, campaign_id: str):
        super().__init__(f"Campaign not found: {campaign_id}")
        self.campaign_id = campaign_id


class OrderStateError(SettlementError):
    """Order is neither pending nor paid (e.g. refunded) and cannot be settled."""

    def __init__(self, order_id: str, status: str):
        super().__init__(f"Order {order_id} cannot be settled from status '{status}'")
        self.order_id = order_id
        self.status = status


class TransferError(SettlementError):
    """Stripe rejected or failed a transfer."""


class NoPayoutAccountError(SettlementError):
    """Recipient has no connected Stripe account."""


class PayoutAccountNotReadyError(SettlementError):
    """Connected Stripe account has not finished onboarding."""


class RecipientNotFoundError(SettlementError):
    pass
