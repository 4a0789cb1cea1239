"""Exception hierarchy for tip payment verification.

Every pipeline failure is a TipperError carrying a stable ``code`` for
machines and a human-readable message that is surfaced verbatim to callers.
"""

from typing import Any, Dict, Optional


class TipperError(Exception):
    """Base exception for all tip verification errors."""

    code = "tipper_error"

    def __init__(
        self,
        message: str,
        reason: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message)
        self.message = message
        self.reason = reason or self.code
        self.details = details or {}

    def __str__(self):
        return self.message


class DecodeError(TipperError):
    """Raised when the X-PAYMENT envelope cannot be decoded."""

    code = "decode_error"


class ProtocolError(TipperError):
    """Raised when an authorization does not match the payment requirements."""

    code = "protocol_error"


class NetworkMismatchError(ProtocolError):
    code = "network_mismatch"


class AssetMismatchError(ProtocolError):
    code = "asset_mismatch"


class InsufficientAmountError(ProtocolError):
    code = "insufficient_amount"


class RecipientMismatchError(ProtocolError):
    code = "recipient_mismatch"


class SignatureError(TipperError):
    """Raised when the authorization window or signature is invalid."""

    code = "signature_error"


class SettlementError(TipperError):
    """Raised when the settlement backend rejects or cannot be reached."""

    code = "settlement_error"


class ReplayError(TipperError):
    """Raised when a transaction hash or authorization nonce was already used."""

    code = "replay"


class ConfigError(TipperError, ValueError):
    """Raised for invalid or missing configuration. Fatal at startup."""

    code = "config_error"
