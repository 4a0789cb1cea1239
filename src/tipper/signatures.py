"""EIP-712 TransferWithAuthorization signature verification.

The client signs an EIP-3009 ``TransferWithAuthorization`` message for the
USDC contract. We rebuild the typed data, recover the signer and compare it
with the claimed ``from`` address.
"""

import time
from typing import Callable, Optional

from eth_account import Account
from eth_account.messages import encode_typed_data

from src.config import NETWORK_CHAIN_IDS
from src.logging_utils import get_logger
from src.tipper.errors import ConfigError, SignatureError
from src.tipper.types import PaymentAuthorization

logger = get_logger(__name__)

TRANSFER_WITH_AUTHORIZATION_TYPES = {
    "TransferWithAuthorization": [
        {"name": "from", "type": "address"},
        {"name": "to", "type": "address"},
        {"name": "value", "type": "uint256"},
        {"name": "validAfter", "type": "uint256"},
        {"name": "validBefore", "type": "uint256"},
        {"name": "nonce", "type": "bytes32"},
    ]
}


def chain_id_for_network(network: str) -> int:
    try:
        return NETWORK_CHAIN_IDS[network]
    except KeyError:
        raise ConfigError(f"Unsupported network: {network}") from None


def build_typed_data(
    auth: PaymentAuthorization, chain_id: int, domain_name: str, domain_version: str
) -> dict:
    """Return the EIP-712 domain, types and message for an authorization."""
    payment = auth.payment
    return {
        "domain_data": {
            "name": domain_name,
            "version": domain_version,
            "chainId": chain_id,
            "verifyingContract": auth.asset,
        },
        "message_types": TRANSFER_WITH_AUTHORIZATION_TYPES,
        "message_data": {
            "from": payment.from_address,
            "to": payment.to_address,
            "value": payment.value,
            "validAfter": payment.valid_after,
            "validBefore": payment.valid_before,
            "nonce": bytes.fromhex(payment.nonce.removeprefix("0x")),
        },
    }


class SignatureVerifier:
    """Checks the validity window and signer of an authorization."""

    def __init__(
        self,
        network: str,
        domain_name: str = "USD Coin",
        domain_version: str = "2",
        clock: Optional[Callable[[], float]] = None,
    ):
        """Initialize the verifier.

        Args:
            network: Network identifier; selects the EIP-712 chain id.
            domain_name: Token's EIP-712 domain name.
            domain_version: Token's EIP-712 domain version.
            clock: Returns unix seconds. Defaults to time.time.

        Raises:
            ConfigError: If the network has no known chain id.
        """
        self.chain_id = chain_id_for_network(network)
        self.domain_name = domain_name
        self.domain_version = domain_version
        self._clock = clock or time.time

    def recover_signer(self, auth: PaymentAuthorization) -> str:
        """Recover the address that signed the authorization.

        Raises whatever eth_account raises for malformed input.
        """
        typed = build_typed_data(auth, self.chain_id, self.domain_name, self.domain_version)
        signable = encode_typed_data(**typed)
        return Account.recover_message(signable, signature=auth.payment.signature)

    def check(self, auth: PaymentAuthorization) -> None:
        """Validate timing, then the signature.

        Raises:
            SignatureError: With reason authorization_not_yet_valid,
                authorization_expired or invalid_signature.
        """
        payment = auth.payment
        now = int(self._clock())

        if now < payment.valid_after:
            logger.warning(f"Authorization not valid until {payment.valid_after}, now {now}")
            raise SignatureError(
                "Payment authorization is not yet valid",
                reason="authorization_not_yet_valid",
            )
        if now > payment.valid_before:
            logger.warning(f"Authorization expired at {payment.valid_before}, now {now}")
            raise SignatureError(
                "Payment authorization has expired",
                reason="authorization_expired",
            )

        try:
            recovered = self.recover_signer(auth)
        except Exception as e:
            logger.warning(f"Signature recovery failed: {e}")
            raise SignatureError("Invalid payment signature", reason="invalid_signature") from e

        if recovered.lower() != payment.from_address.lower():
            logger.warning(f"Signature mismatch: expected {payment.from_address}, recovered {recovered}")
            raise SignatureError("Invalid payment signature", reason="invalid_signature")

    def verify(self, auth: PaymentAuthorization) -> bool:
        """Return True iff the authorization is in its window and signed by ``from``."""
        try:
            self.check(auth)
        except SignatureError:
            return False
        return True
