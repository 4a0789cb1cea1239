import os
import secrets
import time

import pytest
from eth_account import Account
from eth_account.messages import encode_typed_data

# Set dummy environment variables for testing
# This must run before src.config is imported by any test
os.environ.setdefault("USDC_CONTRACT", "0x036CbD53842c5426634e7929541eC2318f3dCF7e")
os.environ.setdefault("NETWORK", "base-sepolia")
os.environ.setdefault("FACILITATOR_URL", "http://facilitator.test")
os.environ.setdefault("LOG_FORMAT", "text")

from src.config import Config  # noqa: E402
from src.tipper.types import PaymentAuthorization  # noqa: E402

NETWORK = "base-sepolia"
CHAIN_ID = 84532
ASSET = "0x036cbd53842c5426634e7929541ec2318f3dcf7e"


def sign_transfer(signer, message: dict, asset: str = ASSET, chain_id: int = CHAIN_ID) -> str:
    """Sign a TransferWithAuthorization the way a USDC wallet would."""
    signable = encode_typed_data(
        domain_data={
            "name": "USD Coin",
            "version": "2",
            "chainId": chain_id,
            "verifyingContract": asset,
        },
        message_types={
            "TransferWithAuthorization": [
                {"name": "from", "type": "address"},
                {"name": "to", "type": "address"},
                {"name": "value", "type": "uint256"},
                {"name": "validAfter", "type": "uint256"},
                {"name": "validBefore", "type": "uint256"},
                {"name": "nonce", "type": "bytes32"},
            ]
        },
        message_data={**message, "nonce": bytes.fromhex(message["nonce"][2:])},
    )
    signed = signer.sign_message(signable)
    return "0x" + bytes(signed.signature).hex()


@pytest.fixture
def payer():
    return Account.create()


@pytest.fixture
def creator_wallet():
    return Account.create().address


@pytest.fixture
def make_authorization(payer, creator_wallet):
    """Factory for signed authorizations; every field can be overridden."""

    def _make(
        value: int = 100_000,
        to=None,
        valid_after=None,
        valid_before=None,
        nonce=None,
        signer=None,
        from_address=None,
        network: str = NETWORK,
        asset: str = ASSET,
        chain_id: int = CHAIN_ID,
    ) -> PaymentAuthorization:
        signer = signer or payer
        now = int(time.time())
        message = {
            "from": signer.address,
            "to": to or creator_wallet,
            "value": value,
            "validAfter": now - 60 if valid_after is None else valid_after,
            "validBefore": now + 600 if valid_before is None else valid_before,
            "nonce": nonce or "0x" + secrets.token_hex(32),
        }
        signature = sign_transfer(signer, message, asset=asset, chain_id=chain_id)
        return PaymentAuthorization(
            scheme="exact",
            network=network,
            asset=asset,
            payment={
                **message,
                "from": from_address or signer.address,
                "value": str(value),
                "signature": signature,
            },
        )

    return _make


@pytest.fixture
def settings(tmp_path):
    return Config(
        usdc_contract="0x036CbD53842c5426634e7929541eC2318f3dCF7e",
        network=NETWORK,
        facilitator_url="http://facilitator.test",
        settlement_backend="mock",
        allow_mock_settlement=True,
        database_path=str(tmp_path / "test.db"),
        log_format="text",
    )
