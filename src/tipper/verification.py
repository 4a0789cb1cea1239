"""x402 payment verification pipeline.

A tip payment goes through four stages in order:

    DECODE -> PROTOCOL_CHECK -> SIGNATURE_CHECK -> SETTLEMENT

Each stage raises a TipperError to reject; the first failure ends the
attempt with REJECTED carrying that stage's reason. Nothing is retried: a
rejected authorization must be re-signed by the client.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Awaitable, Callable, Optional

from pydantic import BaseModel

from src.logging_utils import get_logger
from src.tipper import codec
from src.tipper.errors import ReplayError, SettlementError, TipperError
from src.tipper.settlement import SettlementBackend
from src.tipper.signatures import SignatureVerifier
from src.tipper.types import PaymentAuthorization, VerificationResult
from src.tipper.validation import validate

logger = get_logger(__name__)

# Claims (payer, nonce); returns False when it was already claimed
NonceGuard = Callable[[str, str], Awaitable[bool]]


class PipelineState(str, Enum):
    DECODE = "decode"
    PROTOCOL_CHECK = "protocol_check"
    SIGNATURE_CHECK = "signature_check"
    SETTLEMENT = "settlement"


class Outcome(str, Enum):
    VERIFIED = "verified"
    REJECTED = "rejected"


class VerificationOutcome(BaseModel):
    """Terminal result of one verification attempt."""

    outcome: Outcome
    state: PipelineState
    authorization: Optional[PaymentAuthorization] = None
    result: Optional[VerificationResult] = None
    code: Optional[str] = None
    reason: Optional[str] = None
    error: Optional[str] = None

    @property
    def verified(self) -> bool:
        return self.outcome == Outcome.VERIFIED

    @property
    def payer(self) -> Optional[str]:
        """Verified payer address, taken from the signed authorization."""
        if self.authorization is None:
            return None
        return self.authorization.payment.from_address


@dataclass
class _Attempt:
    raw_envelope: object
    expected_amount: str
    expected_recipient: str
    authorization: Optional[PaymentAuthorization] = None
    result: Optional[VerificationResult] = None


class PaymentVerifier:
    """Runs the verification pipeline for one configured asset and network."""

    def __init__(
        self,
        network: str,
        asset: str,
        signature_verifier: SignatureVerifier,
        settlement: SettlementBackend,
        nonce_guard: Optional[NonceGuard] = None,
    ):
        """Initialize the pipeline.

        Args:
            network: Network identifier payments must declare.
            asset: Token contract address payments must declare.
            signature_verifier: Checks timing and EIP-712 signer.
            settlement: Backend confirming verified authorizations.
            nonce_guard: Optional claim on (payer, nonce) run just before
                settlement so one authorization cannot be settled twice.
        """
        self.network = network
        self.asset = asset
        self.signature_verifier = signature_verifier
        self.settlement = settlement
        self.nonce_guard = nonce_guard

    async def verify(
        self, raw_envelope, expected_amount: str, expected_recipient: str
    ) -> VerificationOutcome:
        """Verify and settle an X-PAYMENT envelope.

        Args:
            raw_envelope: The X-PAYMENT header value.
            expected_amount: Required amount as a decimal string.
            expected_recipient: Wallet the payment must go to.

        Returns:
            VERIFIED with the settlement result, or REJECTED with the first
            failing stage's code and message.
        """
        logger.info("Starting x402 payment verification")
        attempt = _Attempt(raw_envelope, expected_amount, expected_recipient)

        stages = (
            (PipelineState.DECODE, self._decode),
            (PipelineState.PROTOCOL_CHECK, self._check_protocol),
            (PipelineState.SIGNATURE_CHECK, self._check_signature),
            (PipelineState.SETTLEMENT, self._settle),
        )
        for state, stage in stages:
            try:
                await stage(attempt)
            except TipperError as e:
                logger.warning(f"Payment rejected at {state.value}: {e.message} ({e.reason})")
                return self._rejected(state, attempt, e.code, e.reason, e.message)
            except Exception as e:
                logger.error(f"Unexpected error at {state.value}: {e}", exc_info=True)
                return self._rejected(
                    state, attempt, "internal_error", "internal_error", "Payment verification error"
                )
            logger.info(f"Stage {state.value} passed")

        logger.info(f"Payment verified, transaction hash: {attempt.result.transaction_hash}")
        return VerificationOutcome(
            outcome=Outcome.VERIFIED,
            state=PipelineState.SETTLEMENT,
            authorization=attempt.authorization,
            result=attempt.result,
        )

    @staticmethod
    def _rejected(state, attempt: _Attempt, code, reason, message) -> VerificationOutcome:
        return VerificationOutcome(
            outcome=Outcome.REJECTED,
            state=state,
            authorization=attempt.authorization,
            result=attempt.result,
            code=code,
            reason=reason,
            error=message,
        )

    async def _decode(self, attempt: _Attempt) -> None:
        attempt.authorization = codec.decode(attempt.raw_envelope)

    async def _check_protocol(self, attempt: _Attempt) -> None:
        validate(
            attempt.authorization,
            expected_amount=attempt.expected_amount,
            expected_recipient=attempt.expected_recipient,
            expected_network=self.network,
            expected_asset=self.asset,
        )

    async def _check_signature(self, attempt: _Attempt) -> None:
        self.signature_verifier.check(attempt.authorization)

    async def _settle(self, attempt: _Attempt) -> None:
        payment = attempt.authorization.payment
        if self.nonce_guard is not None:
            fresh = await self.nonce_guard(payment.from_address.lower(), payment.nonce.lower())
            if not fresh:
                raise ReplayError(
                    "This payment authorization has already been used",
                    reason="nonce_reused",
                )

        result = await self.settlement.confirm(attempt.authorization)
        attempt.result = result
        if not result.valid:
            raise SettlementError(result.error or "Settlement failed", reason="settlement_rejected")
        if not result.transaction_hash:
            raise SettlementError(
                "Settlement did not return a transaction hash", reason="missing_transaction_hash"
            )
