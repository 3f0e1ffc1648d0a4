"""
Chain registry for splitpay.

Provides centralized configuration for:
- Supported networks and the execution model (chain family) of each
- RPC endpoints with environment overrides
- Native coin metadata
- Explorer links
"""
from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from enum import Enum
from typing import Dict, List, Optional

from .exceptions import UnsupportedChainError

logger = logging.getLogger(__name__)


class ChainFamily(str, Enum):
    """Execution model of a chain."""
    # Multi-instruction transactions, per-owner token accounts (Solana)
    ACCOUNT_INSTRUCTION = "account_instruction"
    # Account-based chains with a settlement contract (EVM)
    CONTRACT_CALL = "contract_call"


@dataclass(frozen=True)
class ChainConfig:
    """Configuration for a blockchain network."""
    name: str
    display_name: str
    family: ChainFamily
    rpc_url: str
    explorer_url: str
    native_token: str
    native_decimals: int
    chain_id: Optional[int] = None  # EVM only
    is_testnet: bool = False

    def explorer_tx_url(self, tx_id: str) -> str:
        """Block explorer link for a transaction."""
        return f"{self.explorer_url.rstrip('/')}/tx/{tx_id}"


def _rpc_override(name: str, overrides: Optional[Dict[str, str]]) -> Optional[str]:
    if overrides and overrides.get(name):
        return overrides[name]
    return os.getenv(f"SPLITPAY_{name.upper()}_RPC_URL")


def _build_chain(
    name: str,
    display_name: str,
    family: ChainFamily,
    default_rpc: str,
    explorer_url: str,
    native_token: str,
    native_decimals: int,
    chain_id: Optional[int] = None,
    is_testnet: bool = False,
    overrides: Optional[Dict[str, str]] = None,
) -> ChainConfig:
    """Build a ChainConfig with environment variable overrides."""
    rpc_url = _rpc_override(name, overrides) or default_rpc
    return ChainConfig(
        name=name,
        display_name=display_name,
        family=family,
        rpc_url=rpc_url,
        explorer_url=explorer_url,
        native_token=native_token,
        native_decimals=native_decimals,
        chain_id=chain_id,
        is_testnet=is_testnet,
    )


def build_default_chains(rpc_overrides: Optional[Dict[str, str]] = None) -> Dict[str, ChainConfig]:
    """Build the registry of all supported chains."""
    chains: Dict[str, ChainConfig] = {}

    chains["solana"] = _build_chain(
        name="solana",
        display_name="Solana",
        family=ChainFamily.ACCOUNT_INSTRUCTION,
        default_rpc="https://api.mainnet-beta.solana.com",
        explorer_url="https://solscan.io",
        native_token="SOL",
        native_decimals=9,
        overrides=rpc_overrides,
    )

    chains["solana_devnet"] = _build_chain(
        name="solana_devnet",
        display_name="Solana Devnet",
        family=ChainFamily.ACCOUNT_INSTRUCTION,
        default_rpc="https://api.devnet.solana.com",
        explorer_url="https://solscan.io",
        native_token="SOL",
        native_decimals=9,
        is_testnet=True,
        overrides=rpc_overrides,
    )

    chains["base"] = _build_chain(
        name="base",
        display_name="Base",
        family=ChainFamily.CONTRACT_CALL,
        default_rpc="https://mainnet.base.org",
        explorer_url="https://basescan.org",
        native_token="ETH",
        native_decimals=18,
        chain_id=8453,
        overrides=rpc_overrides,
    )

    chains["base_sepolia"] = _build_chain(
        name="base_sepolia",
        display_name="Base Sepolia",
        family=ChainFamily.CONTRACT_CALL,
        default_rpc="https://sepolia.base.org",
        explorer_url="https://sepolia.basescan.org",
        native_token="ETH",
        native_decimals=18,
        chain_id=84532,
        is_testnet=True,
        overrides=rpc_overrides,
    )

    chains["celo"] = _build_chain(
        name="celo",
        display_name="Celo",
        family=ChainFamily.CONTRACT_CALL,
        default_rpc="https://forno.celo.org",
        explorer_url="https://celoscan.io",
        native_token="CELO",
        native_decimals=18,
        chain_id=42220,
        overrides=rpc_overrides,
    )

    return chains


# Global registry instance
_chains: Optional[Dict[str, ChainConfig]] = None


def get_chains() -> Dict[str, ChainConfig]:
    """Get the global chain registry."""
    global _chains
    if _chains is None:
        _chains = build_default_chains()
    return _chains


def set_chains(chains: Dict[str, ChainConfig]) -> None:
    """Replace the global chain registry."""
    global _chains
    _chains = chains


def get_chain_config(chain: str) -> ChainConfig:
    """Look up a chain, raising UnsupportedChainError if unknown."""
    chains = get_chains()
    if chain not in chains:
        raise UnsupportedChainError(chain, supported=sorted(chains))
    return chains[chain]


def family_of(chain: str) -> ChainFamily:
    return get_chain_config(chain).family


def supported_chains(family: Optional[ChainFamily] = None) -> List[str]:
    return [
        name for name, cfg in get_chains().items()
        if family is None or cfg.family == family
    ]


def explorer_tx_url(chain: str, tx_id: str) -> str:
    """Convenience wrapper around ChainConfig.explorer_tx_url."""
    return get_chain_config(chain).explorer_tx_url(tx_id)


def normalize_chain_name(
    raw: Optional[str],
    default_evm: str = "base_sepolia",
    default_solana: str = "solana_devnet",
) -> str:
    """Map a free-form chain label from a document to a registry key.

    Exact registry keys pass through. Otherwise anything mentioning solana
    or celo maps to that network and everything else falls back to the
    default EVM chain.
    """
    if not raw:
        return default_evm
    label = raw.strip().lower().replace("-", "_").replace(" ", "_")
    if label in get_chains():
        return label
    if "solana" in label:
        return default_solana
    if "celo" in label:
        return "celo"
    if label == "basesepolia":
        return "base_sepolia"
    logger.debug("Unrecognised chain label %r, using %s", raw, default_evm)
    return default_evm


def resolve_rpc_url(chain: str, overrides: Optional[Dict[str, str]] = None) -> str:
    """RPC endpoint for a chain, preferring an explicit override."""
    if overrides and overrides.get(chain):
        return overrides[chain]
    return get_chain_config(chain).rpc_url
