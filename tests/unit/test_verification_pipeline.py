"""Unit tests for the DECODE -> PROTOCOL_CHECK -> SIGNATURE_CHECK -> SETTLEMENT pipeline."""

import base64
import json
import time

import pytest
from eth_account import Account

from src.database import Database
from src.tipper import codec
from src.tipper.settlement import MockSettlement, SettlementBackend
from src.tipper.signatures import SignatureVerifier
from src.tipper.types import VerificationResult
from src.tipper.verification import Outcome, PaymentVerifier, PipelineState

ASSET = "0x036CbD53842c5426634e7929541eC2318f3dCF7e"
TX_HASH = "0x" + "cd" * 32


class RecordingSettlement(SettlementBackend):
    """Settlement stub returning a canned result and counting calls."""

    name = "recording"

    def __init__(self, result=None):
        self.calls = 0
        self.result = result or VerificationResult(
            valid=True, transaction_hash=TX_HASH, block_number=42, confirmed=True
        )

    async def confirm(self, auth):
        self.calls += 1
        return self.result


class ExplodingSettlement(SettlementBackend):
    async def confirm(self, auth):
        raise RuntimeError("boom")


def pipeline(settlement, nonce_guard=None, clock=None):
    return PaymentVerifier(
        network="base-sepolia",
        asset=ASSET,
        signature_verifier=SignatureVerifier("base-sepolia", clock=clock),
        settlement=settlement,
        nonce_guard=nonce_guard,
    )


@pytest.mark.unit
class TestPaymentVerifier:

    async def test_verified(self, make_authorization, creator_wallet, payer):
        settlement = RecordingSettlement()
        outcome = await pipeline(settlement).verify(
            codec.encode(make_authorization()), "0.10", creator_wallet
        )

        assert outcome.outcome == Outcome.VERIFIED
        assert outcome.verified
        assert outcome.state == PipelineState.SETTLEMENT
        assert outcome.result.transaction_hash == TX_HASH
        assert outcome.payer == payer.address
        assert settlement.calls == 1

    async def test_verified_with_mock_backend(self, make_authorization, creator_wallet):
        verifier = SignatureVerifier("base-sepolia")
        p = PaymentVerifier("base-sepolia", ASSET, verifier, MockSettlement(verifier, enabled=True))

        outcome = await p.verify(codec.encode(make_authorization()), "0.10", creator_wallet)

        assert outcome.verified
        assert outcome.result.simulated is True

    async def test_decode_failure(self, creator_wallet):
        settlement = RecordingSettlement()
        outcome = await pipeline(settlement).verify("%%%", "0.10", creator_wallet)

        assert outcome.outcome == Outcome.REJECTED
        assert outcome.state == PipelineState.DECODE
        assert outcome.code == "decode_error"
        assert outcome.error == "Failed to decode X-PAYMENT header"
        assert outcome.authorization is None
        assert outcome.payer is None
        assert settlement.calls == 0

    async def test_insufficient_amount(self, make_authorization, creator_wallet):
        settlement = RecordingSettlement()
        outcome = await pipeline(settlement).verify(
            codec.encode(make_authorization(value=90_000)), "0.10", creator_wallet
        )

        assert outcome.state == PipelineState.PROTOCOL_CHECK
        assert outcome.code == "insufficient_amount"
        assert outcome.error == "Insufficient amount. Expected 0.10, got 0.09"
        assert settlement.calls == 0

    async def test_wrong_recipient(self, make_authorization):
        outcome = await pipeline(RecordingSettlement()).verify(
            codec.encode(make_authorization()), "0.10", Account.create().address
        )

        assert outcome.state == PipelineState.PROTOCOL_CHECK
        assert outcome.error == "Invalid recipient address"

    async def test_expired_authorization(self, make_authorization, creator_wallet):
        now = int(time.time())
        settlement = RecordingSettlement()
        outcome = await pipeline(settlement).verify(
            codec.encode(make_authorization(valid_after=now - 900, valid_before=now - 300)),
            "0.10",
            creator_wallet,
        )

        assert outcome.state == PipelineState.SIGNATURE_CHECK
        assert outcome.reason == "authorization_expired"
        assert settlement.calls == 0

    async def test_forged_signature(self, make_authorization, creator_wallet, payer):
        auth = make_authorization(signer=Account.create(), from_address=payer.address)
        settlement = RecordingSettlement()

        outcome = await pipeline(settlement).verify(codec.encode(auth), "0.10", creator_wallet)

        assert outcome.state == PipelineState.SIGNATURE_CHECK
        assert outcome.error == "Invalid payment signature"
        assert settlement.calls == 0

    async def test_settlement_rejected(self, make_authorization, creator_wallet):
        settlement = RecordingSettlement(
            VerificationResult(valid=False, error="Failed to connect to payment facilitator")
        )
        outcome = await pipeline(settlement).verify(
            codec.encode(make_authorization()), "0.10", creator_wallet
        )

        assert outcome.state == PipelineState.SETTLEMENT
        assert outcome.code == "settlement_error"
        assert outcome.error == "Failed to connect to payment facilitator"
        assert outcome.result.valid is False

    async def test_settlement_without_transaction_hash(self, make_authorization, creator_wallet):
        settlement = RecordingSettlement(VerificationResult(valid=True, confirmed=True))
        outcome = await pipeline(settlement).verify(
            codec.encode(make_authorization()), "0.10", creator_wallet
        )

        assert outcome.code == "settlement_error"
        assert outcome.reason == "missing_transaction_hash"

    async def test_unexpected_error_is_contained(self, make_authorization, creator_wallet):
        outcome = await pipeline(ExplodingSettlement()).verify(
            codec.encode(make_authorization()), "0.10", creator_wallet
        )

        assert outcome.outcome == Outcome.REJECTED
        assert outcome.state == PipelineState.SETTLEMENT
        assert outcome.code == "internal_error"

    async def test_nonce_guard_blocks_second_use(self, make_authorization, creator_wallet):
        claimed = set()

        async def guard(payer, nonce):
            if (payer, nonce) in claimed:
                return False
            claimed.add((payer, nonce))
            return True

        settlement = RecordingSettlement()
        p = pipeline(settlement, nonce_guard=guard)
        envelope = codec.encode(make_authorization())

        first = await p.verify(envelope, "0.10", creator_wallet)
        second = await p.verify(envelope, "0.10", creator_wallet)

        assert first.verified
        assert second.outcome == Outcome.REJECTED
        assert second.code == "replay"
        assert second.state == PipelineState.SETTLEMENT
        assert settlement.calls == 1

    async def test_raw_base64_of_arbitrary_bytes(self, creator_wallet):
        garbage = base64.b64encode(bytes(range(256))).decode("ascii")
        outcome = await pipeline(RecordingSettlement()).verify(garbage, "0.10", creator_wallet)

        assert outcome.state == PipelineState.DECODE

    @pytest.mark.parametrize("respell", [lambda n: n[2:], lambda n: "0x" + n[2:].upper()])
    async def test_nonce_respelling_is_still_a_replay(
        self, tmp_path, make_authorization, creator_wallet, respell
    ):
        db = Database(str(tmp_path / "nonces.db"))
        await db.initialize()
        verifier = SignatureVerifier("base-sepolia")
        p = PaymentVerifier(
            "base-sepolia",
            ASSET,
            verifier,
            MockSettlement(verifier, enabled=True),
            nonce_guard=db.claim_payment_nonce,
        )
        auth = make_authorization()
        envelope = json.loads(base64.b64decode(codec.encode(auth)))
        envelope["payment"]["nonce"] = respell(envelope["payment"]["nonce"])
        respelled = base64.b64encode(json.dumps(envelope).encode("utf-8")).decode("ascii")

        first = await p.verify(codec.encode(auth), "0.10", creator_wallet)
        second = await p.verify(respelled, "0.10", creator_wallet)

        assert first.verified
        assert not second.verified
        assert second.code == "replay"
        assert second.authorization.payment.nonce == auth.payment.nonce
