"""Protocol checks of a decoded authorization against the offer's terms."""

from decimal import Decimal, InvalidOperation

from src.logging_utils import get_logger
from src.tipper.errors import (
    AssetMismatchError,
    InsufficientAmountError,
    NetworkMismatchError,
    RecipientMismatchError,
)
from src.tipper.types import PaymentAuthorization

logger = get_logger(__name__)

# USDC has 6 decimals
USDC_DECIMALS = 6


def format_units(value: int, decimals: int = USDC_DECIMALS) -> Decimal:
    """Convert integer minor units to a decimal amount."""
    return Decimal(value).scaleb(-decimals)


def display_amount(amount: Decimal) -> str:
    """Render an amount without trailing zeros or exponent ("0.09", "10")."""
    return format(amount.normalize(), "f")


def validate(
    auth: PaymentAuthorization,
    expected_amount: str,
    expected_recipient: str,
    expected_network: str,
    expected_asset: str,
) -> None:
    """Check network, asset, amount and recipient, in that order.

    Args:
        auth: Decoded authorization.
        expected_amount: Required amount as a decimal string.
        expected_recipient: Wallet the tip must be paid to.
        expected_network: Configured network identifier.
        expected_asset: Configured token contract address.

    Raises:
        ProtocolError: The first failing check; overpayment is accepted.
    """
    if auth.network != expected_network:
        raise NetworkMismatchError(
            f"Invalid network. Expected {expected_network}, got {auth.network}",
            details={"expected": expected_network, "actual": auth.network},
        )

    if auth.asset.lower() != expected_asset.lower():
        raise AssetMismatchError(
            "Invalid token. Only USDC is accepted",
            details={"expected": expected_asset, "actual": auth.asset},
        )

    try:
        required = Decimal(expected_amount)
    except InvalidOperation as e:
        raise ValueError(f"Expected amount is not a decimal: {expected_amount!r}") from e

    paid = format_units(auth.payment.value)
    if paid < required:
        raise InsufficientAmountError(
            f"Insufficient amount. Expected {expected_amount}, got {display_amount(paid)}",
            details={"expected": expected_amount, "actual": display_amount(paid)},
        )
    logger.info(f"Amount verified: {display_amount(paid)} USDC")

    if auth.payment.to_address.lower() != expected_recipient.lower():
        raise RecipientMismatchError(
            "Invalid recipient address",
            details={"expected": expected_recipient, "actual": auth.payment.to_address},
        )
    logger.info("Recipient verified")
