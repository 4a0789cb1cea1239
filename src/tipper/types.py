"""Pydantic models for the x402 tip payment protocol.

Wire names are camelCase; models accept either the wire name or the Python
field name and dump with ``by_alias=True``.
"""

import re
from datetime import datetime
from decimal import Decimal
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

BYTES32_HEX = re.compile(r"(0x)?[0-9a-fA-F]{64}")


class PaymentOffer(BaseModel):
    """402 Payment Required challenge returned for an unpaid request."""

    model_config = ConfigDict(populate_by_name=True)

    max_amount_required: str = Field(alias="maxAmountRequired", description="Required amount (decimal string)")
    resource: str = Field(description="Resource path being paid for")
    description: str
    pay_to: str = Field(alias="payTo", description="Recipient wallet address")
    asset: str = Field(description="Token contract address")
    network: str
    nonce: str = Field(description="Unique per generated offer")
    expires_at: datetime = Field(alias="expiresAt")


class PaymentEnvelope(BaseModel):
    """Signed EIP-3009 transfer authorization."""

    model_config = ConfigDict(populate_by_name=True)

    from_address: str = Field(alias="from")
    to_address: str = Field(alias="to")
    value: int = Field(ge=0, description="Amount in minor units (6 decimals)")
    valid_after: int = Field(alias="validAfter", description="Unix seconds")
    valid_before: int = Field(alias="validBefore", description="Unix seconds")
    nonce: str = Field(description="bytes32, stored as lowercase 0x-prefixed hex")
    signature: str

    @field_validator("nonce")
    @classmethod
    def canonical_nonce(cls, v: str) -> str:
        """Every spelling of the same 32 bytes maps to one value.

        The replay guard keys on this string and the signer hashes the same
        bytes, so ``abc...`` and ``0xABC...`` must not be distinct nonces.
        """
        if not BYTES32_HEX.fullmatch(v):
            raise ValueError("nonce must be 32 bytes of hex")
        return "0x" + v[-64:].lower()


class PaymentAuthorization(BaseModel):
    """Decoded X-PAYMENT header."""

    scheme: str
    network: str
    asset: str
    payment: PaymentEnvelope


class VerificationResult(BaseModel):
    """Outcome of a settlement attempt."""

    model_config = ConfigDict(populate_by_name=True, frozen=True)

    valid: bool
    transaction_hash: Optional[str] = Field(default=None, alias="transactionHash")
    block_number: Optional[int] = Field(default=None, alias="blockNumber")
    confirmed: Optional[bool] = None
    error: Optional[str] = None
    # True when produced by the local simulator; the hash is not on any chain
    simulated: bool = False


class FeeBreakdown(BaseModel):
    """Split of a settled tip between the platform and the creator."""

    model_config = ConfigDict(populate_by_name=True, frozen=True)

    total: Decimal
    platform_fee: Decimal = Field(alias="platformFee")
    creator_receives: Decimal = Field(alias="creatorReceives")
