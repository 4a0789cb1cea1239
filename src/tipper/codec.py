"""X-PAYMENT header codec.

The header is base64-encoded JSON:

    {"scheme": "exact", "network": "base-mainnet", "asset": "0x...",
     "payment": {"from": ..., "to": ..., "value": "100000",
                 "validAfter": ..., "validBefore": ..., "nonce": "0x...",
                 "signature": "0x..."}}

Decoding treats the header as hostile: every failure becomes a DecodeError
with a stable reason.
"""

import base64
import binascii
import json
from typing import Any

from pydantic import ValidationError

from src.logging_utils import get_logger
from src.tipper.errors import DecodeError
from src.tipper.types import PaymentAuthorization

logger = get_logger(__name__)

REQUIRED_FIELDS = ("scheme", "network", "asset", "payment")
DECODE_FAILED = "Failed to decode X-PAYMENT header"

# A signed envelope is well under 1 KiB encoded
MAX_ENVELOPE_LENGTH = 8192


def decode(raw_envelope: Any) -> PaymentAuthorization:
    """Decode an X-PAYMENT header value into a PaymentAuthorization.

    Args:
        raw_envelope: Header value as received from the client.

    Returns:
        The structured authorization.

    Raises:
        DecodeError: If the envelope is empty or oversized, not base64, not
            UTF-8 JSON, not an object, missing a required field, or malformed.
    """
    if not isinstance(raw_envelope, (str, bytes)) or not raw_envelope:
        raise DecodeError(DECODE_FAILED, reason="empty_envelope")

    if len(raw_envelope) > MAX_ENVELOPE_LENGTH:
        logger.warning(f"X-PAYMENT too large: {len(raw_envelope)} bytes")
        raise DecodeError(DECODE_FAILED, reason="envelope_too_large")

    try:
        raw = base64.b64decode(raw_envelope.strip(), validate=True)
        text = raw.decode("utf-8")
    except (binascii.Error, ValueError) as e:
        # UnicodeDecodeError is a ValueError
        logger.warning(f"X-PAYMENT is not base64 UTF-8: {e}")
        raise DecodeError(DECODE_FAILED, reason="invalid_encoding") from e

    try:
        data = json.loads(text)
    except (ValueError, RecursionError) as e:
        # JSONDecodeError, int digit limits, or nesting deeper than the parser allows
        logger.warning(f"X-PAYMENT is not JSON: {type(e).__name__}")
        raise DecodeError(DECODE_FAILED, reason="invalid_json") from e

    if not isinstance(data, dict):
        raise DecodeError(DECODE_FAILED, reason="not_an_object")

    for field in REQUIRED_FIELDS:
        if not data.get(field):
            logger.warning(f"X-PAYMENT missing field: {field}")
            raise DecodeError(DECODE_FAILED, reason=f"missing_field:{field}")

    try:
        return PaymentAuthorization.model_validate(data)
    except ValidationError as e:
        errors = [
            {"loc": ".".join(str(p) for p in err["loc"]), "msg": err["msg"]}
            for err in e.errors()
        ]
        logger.warning(f"X-PAYMENT payment structure invalid: {errors}")
        raise DecodeError(DECODE_FAILED, reason="invalid_payment", details={"errors": errors}) from e


def encode(auth: PaymentAuthorization) -> str:
    """Encode an authorization into its X-PAYMENT header form."""
    payload = auth.model_dump(by_alias=True)
    payload["payment"]["value"] = str(payload["payment"]["value"])
    return base64.b64encode(json.dumps(payload, separators=(",", ":")).encode("utf-8")).decode("ascii")
