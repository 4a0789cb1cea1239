"""Centralized configuration management for the TipPerMeme API.

Loads all configuration from environment variables with sensible defaults.
"""

from typing import Literal, Optional

from dotenv import load_dotenv
from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

from src.tipper.errors import ConfigError

# Load environment variables from .env file
load_dotenv()

# EIP-155 chain ids for the networks the tip endpoint accepts
NETWORK_CHAIN_IDS = {
    "base-mainnet": 8453,
    "base-sepolia": 84532,
}


class Config(BaseSettings):
    """Main configuration class for the tipping service."""

    model_config = SettingsConfigDict(env_file=".env", case_sensitive=False, extra="ignore")

    # Payment asset and network
    usdc_contract: str = Field(default="", description="USDC token contract address")
    network: str = Field(default="base-mainnet", description="Network identifier")
    usdc_domain_name: str = Field(default="USD Coin", description="EIP-712 domain name of the token")
    usdc_domain_version: str = Field(default="2", description="EIP-712 domain version of the token")

    # Settlement
    settlement_backend: Literal["facilitator", "mock"] = Field(default="facilitator")
    allow_mock_settlement: bool = Field(
        default=False,
        description="Explicit opt-in required for the simulated settlement backend",
    )
    facilitator_url: str = Field(default="", description="Payment facilitator base URL")
    facilitator_timeout_seconds: float = Field(default=10.0)

    # Economics
    platform_fee: float = Field(default=0.05, description="Platform fee fraction in [0, 1]")
    tip_amount: str = Field(default="0.10", description="Fixed tip amount in USDC")

    # Service
    api_host: str = Field(default="0.0.0.0")
    api_port: int = Field(default=3001)

    # Database
    database_path: str = Field(default="./tipermeme.db")

    # Logging
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = Field(default="INFO")
    log_format: Literal["json", "text"] = Field(default="json")


# Global config instance
config = Config()


def validate_config_for_service(
    service: Literal["api"], settings: Optional[Config] = None
) -> None:
    """Validate that required configuration is present for a service.

    Args:
        service: The service name to validate configuration for.
        settings: Configuration to check. Defaults to the global instance.

    Raises:
        ConfigError: If required configuration is missing or invalid.
    """
    settings = settings or config
    errors = []

    if not settings.usdc_contract:
        errors.append("USDC_CONTRACT must be set")

    if settings.network not in NETWORK_CHAIN_IDS:
        errors.append(
            f"NETWORK must be one of {', '.join(sorted(NETWORK_CHAIN_IDS))}, got {settings.network!r}"
        )

    if not 0 <= settings.platform_fee <= 1:
        errors.append(f"PLATFORM_FEE must be between 0 and 1, got {settings.platform_fee}")

    try:
        if float(settings.tip_amount) <= 0:
            errors.append("TIP_AMOUNT must be positive")
    except ValueError:
        errors.append(f"TIP_AMOUNT must be a decimal string, got {settings.tip_amount!r}")

    if settings.settlement_backend == "facilitator":
        if not settings.facilitator_url:
            errors.append("FACILITATOR_URL must be set for the facilitator settlement backend")
        if settings.facilitator_timeout_seconds <= 0:
            errors.append("FACILITATOR_TIMEOUT_SECONDS must be positive")
    elif not settings.allow_mock_settlement:
        errors.append("SETTLEMENT_BACKEND=mock requires ALLOW_MOCK_SETTLEMENT=true")

    if errors:
        error_msg = f"Configuration errors for {service} service:\n" + "\n".join(f"  - {e}" for e in errors)
        raise ConfigError(error_msg, details={"errors": errors})
