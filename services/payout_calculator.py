"""
Payout split calculation.

Net revenue of an order (subtotal minus the processing and platform fees
already stored on the order) is split between florist and organization
in proportion to their campaign margins. The margins are renormalized
against their own sum, so a 45/45 campaign still distributes everything.

Each share is rounded to the cent on its own. The two rounded shares may
differ from the rounded pool by one cent; that difference is left alone.
"""

from dataclasses import dataclass
from decimal import Decimal, ROUND_HALF_UP

CENT = Decimal("0.01")
ZERO = Decimal("0.00")


@dataclass(frozen=True)
class PayoutSplit:
    available_for_distribution: Decimal
    florist_amount: Decimal
    organization_amount: Decimal

    def to_dict(self) -> dict:
        return {
            "available_for_distribution": str(self.available_for_distribution),
            "florist_amount": str(self.florist_amount),
            "organization_amount": str(self.organization_amount),
        }


def to_decimal(value) -> Decimal:
    if value is None:
        return ZERO
    if isinstance(value, Decimal):
        return value
    # str() first so floats like 0.1 don't carry binary noise
    return Decimal(str(value))


def round_currency(value) -> Decimal:
    """Round to cents, half away from zero."""
    return to_decimal(value).quantize(CENT, rounding=ROUND_HALF_UP)


def _check_percent(name: str, value: Decimal):
    if value < 0 or value > 100:
        raise ValueError(f"{name} must be between 0 and 100, got {value}")


def calculate_split(
    subtotal,
    processing_fee,
    platform_fee,
    florist_margin_percent,
    organization_margin_percent,
) -> PayoutSplit:
    """
    Compute florist and organization shares for one order.

    Example:
        subtotal=100.00, processing_fee=3.00, platform_fee=10.00, 60/40
        -> available 87.00, florist 52.20, organization 34.80
    """
    florist_pct = to_decimal(florist_margin_percent)
    org_pct = to_decimal(organization_margin_percent)
    _check_percent("florist_margin_percent", florist_pct)
    _check_percent("organization_margin_percent", org_pct)

    available = to_decimal(subtotal) - to_decimal(processing_fee) - to_decimal(platform_fee)
    weight = florist_pct + org_pct

    if weight == 0:
        return PayoutSplit(round_currency(available), ZERO, ZERO)

    florist_amount = round_currency(available * florist_pct / weight)
    org_amount = round_currency(available * org_pct / weight)

    return PayoutSplit(
        available_for_distribution=round_currency(available),
        florist_amount=florist_amount,
        organization_amount=org_amount,
    )


def to_cents(amount) -> int:
    """Stripe amounts are integers in the smallest currency unit."""
    return int((round_currency(amount) * 100).to_integral_value(rounding=ROUND_HALF_UP))
