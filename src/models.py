"""Shared data models for the TipPerMeme API.

Ledger records and request bodies. Protocol models live in src.tipper.types.
"""

from datetime import datetime, timezone
from decimal import Decimal
from typing import Optional

from pydantic import BaseModel, Field

EVM_ADDRESS_PATTERN = r"^0x[a-fA-F0-9]{40}$"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Creator(BaseModel):
    """Meme creator, keyed by wallet."""

    wallet_address: str = Field(description="Creator wallet address")
    username: Optional[str] = None
    created_at: datetime = Field(default_factory=_utcnow)
    total_memes: int = 0
    total_tips: int = 0
    total_earned: Decimal = Decimal(0)


class Meme(BaseModel):
    """Uploaded meme and its tip statistics."""

    id: str
    creator_wallet: str
    image_url: str
    caption: Optional[str] = None
    category: str = "general"
    created_at: datetime = Field(default_factory=_utcnow)
    tip_count: int = 0
    total_earned: Decimal = Decimal(0)
    view_count: int = 0


class Tip(BaseModel):
    """Settled tip. ``tx_hash`` is unique across the ledger."""

    id: str
    meme_id: str
    from_wallet: str = Field(description="Verified payer, the authorization's `from`")
    to_wallet: str
    amount: Decimal = Field(description="Amount credited to the creator")
    platform_fee: Decimal = Decimal(0)
    tx_hash: str
    simulated: bool = False
    created_at: datetime = Field(default_factory=_utcnow)


class MemeCreateRequest(BaseModel):
    """Body of POST /api/memes."""

    creator_wallet: str = Field(pattern=EVM_ADDRESS_PATTERN, description="Wallet that receives tips")
    image_url: str = Field(min_length=1)
    caption: Optional[str] = None
    category: str = "general"
