"""402 Payment Required offer generation."""

import uuid
from datetime import datetime, timedelta, timezone
from typing import Callable, Optional

from src.logging_utils import get_logger
from src.tipper.types import PaymentOffer

logger = get_logger(__name__)

OFFER_TTL = timedelta(minutes=10)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class OfferGenerator:
    """Builds payment challenges for a fixed asset and network."""

    def __init__(
        self,
        asset: str,
        network: str,
        ttl: timedelta = OFFER_TTL,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        """Initialize the generator.

        Args:
            asset: Token contract address clients must pay with.
            network: Network identifier clients must pay on.
            ttl: How long an offer stays valid.
            clock: Returns the current time. Defaults to timezone-aware UTC now.
        """
        self.asset = asset
        self.network = network
        self.ttl = ttl
        self._clock = clock or utcnow

    def generate(self, resource: str, amount: str, pay_to: str, description: str) -> PaymentOffer:
        """Create a fresh offer for a resource.

        Args:
            resource: Resource path being paid for (e.g. /api/tips/<meme_id>).
            amount: Required amount as a decimal string (e.g. "0.10").
            pay_to: Recipient wallet address.
            description: Human-readable description shown by the wallet.

        Returns:
            A PaymentOffer with a unique nonce expiring ``ttl`` from now.
        """
        created_at = self._clock()
        offer = PaymentOffer(
            max_amount_required=amount,
            resource=resource,
            description=description,
            pay_to=pay_to,
            asset=self.asset,
            network=self.network,
            nonce=str(uuid.uuid4()),
            expires_at=created_at + self.ttl,
        )
        logger.debug(f"Generated offer {offer.nonce} for {resource}: {amount} to {pay_to}")
        return offer
