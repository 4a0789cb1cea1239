"""Settlement backends.

Two interchangeable backends confirm a verified authorization:

- FacilitatorSettlement asks a remote x402 facilitator to confirm it.
- MockSettlement simulates confirmation locally for development. It must be
  explicitly enabled and its transaction hashes do not exist on any chain.
"""

import random
import secrets
from abc import ABC, abstractmethod
from typing import Optional

import httpx
from pydantic import ValidationError

from src.config import Config
from src.logging_utils import get_correlation_id, get_logger
from src.tipper.errors import ConfigError
from src.tipper.signatures import SignatureVerifier
from src.tipper.types import PaymentAuthorization, VerificationResult

logger = get_logger(__name__)

FACILITATOR_REJECTED = "Facilitator verification failed"
FACILITATOR_UNREACHABLE = "Failed to connect to payment facilitator"
FACILITATOR_BAD_RESPONSE = "Invalid response from payment facilitator"


class SettlementBackend(ABC):
    """Confirms an authorization and returns a transaction reference."""

    name = "abstract"

    @abstractmethod
    async def confirm(self, auth: PaymentAuthorization) -> VerificationResult:
        """Confirm the authorization. Never raises for remote failures."""

    async def close(self) -> None:
        """Release any held resources."""


class FacilitatorSettlement(SettlementBackend):
    """Confirms payments through a remote facilitator's /verify endpoint."""

    name = "facilitator"

    def __init__(
        self,
        base_url: str,
        timeout: float = 10.0,
        http_client: Optional[httpx.AsyncClient] = None,
    ):
        """Initialize the facilitator client.

        Args:
            base_url: Facilitator base URL.
            timeout: Bound on the whole request, in seconds.
            http_client: Pre-built client (tests pass one with a MockTransport).
        """
        if not base_url:
            raise ConfigError("Facilitator URL is required for facilitator settlement")
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self._http = http_client or httpx.AsyncClient(base_url=self.base_url, timeout=timeout)

    async def close(self) -> None:
        await self._http.aclose()

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.close()

    async def confirm(self, auth: PaymentAuthorization) -> VerificationResult:
        body = {
            "payment": auth.payment.model_dump(by_alias=True),
            "network": auth.network,
            "asset": auth.asset,
        }
        body["payment"]["value"] = str(auth.payment.value)

        headers = {}
        correlation_id = get_correlation_id()
        if correlation_id:
            headers["X-Correlation-Id"] = correlation_id

        logger.info(f"Verifying payment with facilitator at {self.base_url}")
        try:
            response = await self._http.post(
                f"{self.base_url}/verify", json=body, headers=headers, timeout=self.timeout
            )
        except httpx.TimeoutException as e:
            logger.error(f"Facilitator timed out after {self.timeout}s: {e}")
            return VerificationResult(valid=False, error=FACILITATOR_UNREACHABLE)
        except httpx.RequestError as e:
            logger.error(f"Error calling facilitator: {e}")
            return VerificationResult(valid=False, error=FACILITATOR_UNREACHABLE)

        try:
            data = response.json()
        except ValueError:
            data = None

        if not response.is_success:
            error = None
            if isinstance(data, dict):
                error = data.get("error") or data.get("message")
            logger.error(f"Facilitator error {response.status_code}: {data}")
            return VerificationResult(valid=False, error=str(error) if error else FACILITATOR_REJECTED)

        if not isinstance(data, dict):
            logger.error(f"Facilitator returned a non-object body: {response.text[:200]}")
            return VerificationResult(valid=False, error=FACILITATOR_BAD_RESPONSE)

        try:
            result = VerificationResult.model_validate({**data, "simulated": False})
        except ValidationError as e:
            logger.error(f"Facilitator response did not match the result shape: {e}")
            return VerificationResult(valid=False, error=FACILITATOR_BAD_RESPONSE)

        logger.info(f"Facilitator verification result: {result.model_dump(by_alias=True)}")
        return result


class MockSettlement(SettlementBackend):
    """Local simulation of settlement for environments without a facilitator.

    Re-checks the signature and fabricates a transaction hash and block
    number. The hash is random and cannot be looked up on chain.
    """

    name = "mock"

    def __init__(self, verifier: SignatureVerifier, enabled: bool = False):
        if not enabled:
            raise ConfigError(
                "Mock settlement must be explicitly enabled (ALLOW_MOCK_SETTLEMENT=true)"
            )
        self.verifier = verifier
        logger.warning("MOCK MODE: payments will be simulated, not settled")

    async def confirm(self, auth: PaymentAuthorization) -> VerificationResult:
        logger.warning("MOCK MODE: simulating payment verification")
        if not self.verifier.verify(auth):
            return VerificationResult(valid=False, error="Invalid signature", simulated=True)

        return VerificationResult(
            valid=True,
            transaction_hash=f"0x{secrets.token_hex(32)}",
            block_number=random.randint(10_000_000, 10_999_999),
            confirmed=True,
            simulated=True,
        )


def create_settlement_backend(settings: Config, verifier: SignatureVerifier) -> SettlementBackend:
    """Build the backend named by ``settings.settlement_backend``.

    Raises:
        ConfigError: If mock is selected without the opt-in flag or the
            facilitator URL is missing.
    """
    if settings.settlement_backend == "mock":
        return MockSettlement(verifier, enabled=settings.allow_mock_settlement)
    if settings.settlement_backend == "facilitator":
        return FacilitatorSettlement(
            settings.facilitator_url, timeout=settings.facilitator_timeout_seconds
        )
    raise ConfigError(f"Unknown settlement backend: {settings.settlement_backend}")
