"""Platform fee split."""

from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from typing import Union

from src.tipper.errors import ConfigError
from src.tipper.types import FeeBreakdown

# USDC minor unit
AMOUNT_QUANTUM = Decimal("0.000001")


def to_decimal(value: Union[Decimal, float, int, str]) -> Decimal:
    if isinstance(value, float):
        # go through str so 0.05 stays 0.05
        return Decimal(str(value))
    return Decimal(value)


class FeeCalculator:
    """Splits settled tips into platform fee and creator proceeds."""

    def __init__(self, fee_rate: Union[Decimal, float, str]):
        try:
            rate = to_decimal(fee_rate)
        except InvalidOperation:
            raise ConfigError(f"Platform fee is not a number: {fee_rate!r}") from None
        if not rate.is_finite() or not Decimal(0) <= rate <= Decimal(1):
            raise ConfigError(f"Platform fee must be between 0 and 1, got {fee_rate}")
        self.fee_rate = rate

    def split(self, total: Union[Decimal, float, int, str]) -> FeeBreakdown:
        """Return the fee breakdown of ``total``.

        The fee is rounded half-up to the token's minor unit; the creator
        receives the exact remainder so the parts always sum to the total.
        """
        amount = to_decimal(total)
        platform_fee = (amount * self.fee_rate).quantize(AMOUNT_QUANTUM, rounding=ROUND_HALF_UP)
        return FeeBreakdown(
            total=amount,
            platform_fee=platform_fee,
            creator_receives=amount - platform_fee,
        )
