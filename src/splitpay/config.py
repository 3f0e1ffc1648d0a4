"""Canonical configuration surface for splitpay."""
from __future__ import annotations

from functools import lru_cache
from pathlib import Path
from typing import Dict, Literal, Optional

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

# Platform fee recipients used when nothing is configured (devnet/testnet values)
DEFAULT_SOLANA_PLATFORM_WALLET = "367XwKWueJw99K5b1jpwKhdYMAGgavoiV7oZvCFkv3Xt"
DEFAULT_EVM_PLATFORM_WALLET = "0x2f4c8b05d3F4784B0c2C74dbe5FDE142EE431EAc"

ZERO_ADDRESS = "0x0000000000000000000000000000000000000000"

# Deployed settlement contracts, keyed by chain registry name
DEFAULT_SETTLEMENT_CONTRACTS: Dict[str, str] = {
    "base": "0x1c0A0eFBb438cc7705b947644F6AB88698b2704F",
    "base_sepolia": "0x1c0A0eFBb438cc7705b947644F6AB88698b2704F",
    "celo": "0xF1c485Ba184262F1EAC91584f6B26fdcaa3F794a",
}


class SplitpaySettings(BaseSettings):
    """Main splitpay configuration."""

    model_config = SettingsConfigDict(
        env_prefix="SPLITPAY_",
        env_nested_delimiter="__",
        env_file=".env",
        extra="ignore",
    )

    # Environment
    environment: Literal["dev", "sandbox", "prod"] = "dev"

    # Backend-of-record (document API)
    api_base_url: str = "http://localhost:3000"
    http_timeout_seconds: float = 30.0

    # Reporting
    report_max_retries: int = 3
    report_base_delay_seconds: float = 1.0

    # Chain selection
    default_evm_chain: str = "base_sepolia"
    default_solana_chain: str = "solana_devnet"

    # RPC overrides keyed by chain registry name
    rpc_urls: Dict[str, str] = Field(default_factory=dict)

    # Fee recipients
    solana_platform_wallet: str = DEFAULT_SOLANA_PLATFORM_WALLET
    evm_platform_wallet: str = DEFAULT_EVM_PLATFORM_WALLET

    # Settlement contracts (contract-call chains)
    settlement_contracts: Dict[str, str] = Field(
        default_factory=lambda: dict(DEFAULT_SETTLEMENT_CONTRACTS)
    )

    # Confirmation polling (account-instruction chains)
    confirmation_poll_attempts: int = 30
    confirmation_poll_interval_seconds: float = 1.0

    @field_validator("confirmation_poll_attempts", "report_max_retries")
    @classmethod
    def validate_non_negative(cls, v: int) -> int:
        if v < 0:
            raise ValueError("must be >= 0")
        return v

    @field_validator("evm_platform_wallet")
    @classmethod
    def reject_zero_address(cls, v: str) -> str:
        if v.lower() == ZERO_ADDRESS:
            raise ValueError("platform wallet cannot be the zero address")
        return v

    @field_validator("api_base_url")
    @classmethod
    def strip_trailing_slash(cls, v: str) -> str:
        return v.rstrip("/")

    def platform_address_for(self, family: str) -> str:
        """Fee recipient for a chain family."""
        if family == "account_instruction":
            return self.solana_platform_wallet
        return self.evm_platform_wallet

    def settlement_contract_for(self, chain: str) -> Optional[str]:
        return self.settlement_contracts.get(chain) or None


@lru_cache
def load_settings(env_file: str | None = None) -> SplitpaySettings:
    """Load SplitpaySettings once per process to keep components consistent."""
    env_path = Path(env_file) if env_file else None
    return SplitpaySettings(_env_file=env_path)
