"""Tiered platform fee calculation.

Amounts strictly above 1000 (face value) pay 0.5%; everything else pays 1%.
Split arithmetic is done on integers only: the total is floored to minor
units, the fee is floored from that, and the merchant share is whatever is
left, so fee + merchant always equals the total exactly.
"""
from __future__ import annotations

from decimal import Decimal, InvalidOperation
from typing import Union

from .exceptions import SplitpayValidationError
from .models import FeeSplit

FEE_TIER_THRESHOLD = Decimal("1000")
HIGH_VOLUME_FEE_RATE = Decimal("0.005")
STANDARD_FEE_RATE = Decimal("0.01")

AmountLike = Union[Decimal, int, str, float]


def _to_decimal(amount: AmountLike) -> Decimal:
    if isinstance(amount, bool):
        raise SplitpayValidationError(f"Invalid amount: {amount!r}", field="amount")
    try:
        # str() first so binary float artefacts never reach the split
        value = Decimal(str(amount)) if isinstance(amount, float) else Decimal(amount)
    except (InvalidOperation, TypeError, ValueError) as exc:
        raise SplitpayValidationError(f"Invalid amount: {amount!r}", field="amount") from exc
    if not value.is_finite():
        raise SplitpayValidationError(f"Invalid amount: {amount!r}", field="amount")
    return value


def fee_percent_for(amount: AmountLike) -> Decimal:
    """Fee rate for an amount in human units."""
    value = _to_decimal(amount)
    return HIGH_VOLUME_FEE_RATE if value > FEE_TIER_THRESHOLD else STANDARD_FEE_RATE


def fee_display_text(amount: AmountLike) -> str:
    rate = fee_percent_for(amount)
    return f"{(rate * 100).normalize():f}%"


def to_minor_units(amount: AmountLike, decimals: int) -> int:
    """floor(amount * 10**decimals), exact for any precision."""
    if decimals < 0:
        raise SplitpayValidationError("decimals must be >= 0", field="decimals")
    value = _to_decimal(amount)
    numerator, denominator = value.as_integer_ratio()
    return (numerator * 10**decimals) // denominator


def compute_fee_split(total_amount: AmountLike, decimals: int = 6) -> FeeSplit:
    """Split a total into platform fee and merchant share.

    Args:
        total_amount: Amount in human units (e.g. Decimal("2000") USDC)
        decimals: Token precision used for minor units

    Returns:
        FeeSplit with fee + merchant == floor(total * 10**decimals)

    Raises:
        SplitpayValidationError: Non-positive or malformed amount
    """
    value = _to_decimal(total_amount)
    if value <= 0:
        raise SplitpayValidationError(
            f"Amount must be positive, got {total_amount}", field="amount"
        )

    rate = fee_percent_for(value)
    total_minor = to_minor_units(value, decimals)
    rate_num, rate_den = rate.as_integer_ratio()
    fee_minor = (total_minor * rate_num) // rate_den
    merchant_minor = total_minor - fee_minor

    return FeeSplit(
        fee_percent=rate,
        fee_amount_minor=fee_minor,
        merchant_amount_minor=merchant_minor,
        total_minor=total_minor,
        decimals=decimals,
    )
