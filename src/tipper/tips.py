"""Tip submission: the x402 flow behind POST /api/tips/{meme_id}.

1. Look up the meme (404 if missing)
2. No X-PAYMENT header: answer 402 with a fresh payment offer
3. Run the verification pipeline (400 on any rejection)
4. Replay guard on the settlement transaction hash (409)
5. Split the fee and record the tip
"""

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from src.config import Config
from src.database import Database
from src.logging_utils import get_logger
from src.models import Tip
from src.tipper.errors import ReplayError
from src.tipper.fees import FeeCalculator
from src.tipper.offers import OfferGenerator
from src.tipper.verification import PaymentVerifier

logger = get_logger(__name__)

DUPLICATE_TRANSACTION = "This transaction has already been processed"


@dataclass
class TipSubmission:
    """HTTP-agnostic response of a tip submission."""

    status_code: int
    body: Dict[str, Any] = field(default_factory=dict)


class TipService:
    """Handles tip submissions against the ledger."""

    def __init__(
        self,
        settings: Config,
        database: Database,
        verifier: PaymentVerifier,
        offers: OfferGenerator,
        fees: FeeCalculator,
    ):
        self.settings = settings
        self.db = database
        self.verifier = verifier
        self.offers = offers
        self.fees = fees

    async def submit_tip(self, meme_id: str, x_payment: Optional[str]) -> TipSubmission:
        """Process a tip for a meme.

        Args:
            meme_id: Meme being tipped.
            x_payment: Raw X-PAYMENT header, or None on the first request.

        Returns:
            TipSubmission with status 200, 400, 402, 404 or 409.
        """
        logger.info(f"Tip request received for meme {meme_id}")

        meme = await self.db.get_meme(meme_id)
        if not meme:
            return TipSubmission(404, {"error": "Meme not found"})

        amount = self.settings.tip_amount

        if not x_payment:
            logger.info("No X-PAYMENT header found, returning 402 Payment Required")
            offer = self.offers.generate(
                resource=f"/api/tips/{meme_id}",
                amount=amount,
                pay_to=meme.creator_wallet,
                description=f"Tip for meme: {meme.caption or 'Untitled'}",
            )
            return TipSubmission(402, offer.model_dump(by_alias=True, mode="json"))

        outcome = await self.verifier.verify(x_payment, amount, meme.creator_wallet)
        if not outcome.verified:
            if outcome.code == ReplayError.code:
                return self._conflict(ReplayError(outcome.error, reason=outcome.reason))
            return TipSubmission(
                400,
                {
                    "error": "Payment verification failed",
                    "details": outcome.error,
                    "code": outcome.code,
                    "reason": outcome.reason,
                },
            )

        result = outcome.result
        if await self.db.tx_hash_exists(result.transaction_hash):
            logger.warning(f"Duplicate transaction detected: {result.transaction_hash}")
            return self._duplicate_transaction(result.transaction_hash)

        breakdown = self.fees.split(amount)
        logger.info(
            f"Payment breakdown: total {breakdown.total}, platform fee {breakdown.platform_fee}, "
            f"creator receives {breakdown.creator_receives}"
        )

        tip = await self.db.create_tip(
            meme_id=meme.id,
            from_wallet=outcome.payer,
            to_wallet=meme.creator_wallet,
            amount=breakdown.creator_receives,
            platform_fee=breakdown.platform_fee,
            tx_hash=result.transaction_hash,
            simulated=result.simulated,
        )
        if tip is None:
            # Lost the race to a concurrent request with the same hash
            return self._duplicate_transaction(result.transaction_hash)

        logger.info(f"Tip {tip.id} saved for meme {meme.id}")
        return TipSubmission(
            200,
            {
                "success": True,
                "message": "Tip received successfully",
                "tip": {
                    "id": tip.id,
                    "amount": str(breakdown.total),
                    "creatorReceives": str(breakdown.creator_receives),
                    "platformFee": str(breakdown.platform_fee),
                    "transactionHash": tip.tx_hash,
                    "from": tip.from_wallet,
                    "timestamp": tip.created_at.isoformat(),
                    "simulated": tip.simulated,
                },
                "fees": breakdown.model_dump(by_alias=True, mode="json"),
                "settlement": result.model_dump(by_alias=True, mode="json"),
                "meme": {
                    "id": meme.id,
                    "newTipCount": meme.tip_count + 1,
                    "newTotalEarned": str(meme.total_earned + breakdown.creator_receives),
                },
            },
        )

    @staticmethod
    def _conflict(error: ReplayError) -> TipSubmission:
        return TipSubmission(
            409,
            {
                "error": DUPLICATE_TRANSACTION,
                "details": error.message,
                "code": error.code,
                "reason": error.reason,
            },
        )

    def _duplicate_transaction(self, tx_hash: str) -> TipSubmission:
        return self._conflict(
            ReplayError(
                f"Transaction {tx_hash} is already recorded",
                reason="duplicate_transaction",
                details={"transaction_hash": tx_hash},
            )
        )

    async def list_tips(self, meme_id: str) -> List[Tip]:
        return await self.db.get_tips_by_meme(meme_id)
