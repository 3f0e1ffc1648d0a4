"""Token metadata reused across splitpay components."""
from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Optional

from .chains import get_chain_config
from .exceptions import UnsupportedTokenError


class TokenKind(str, Enum):
    """How value moves for a token."""

    NATIVE = "native"
    FUNGIBLE = "fungible"


@dataclass(slots=True)
class TokenMetadata:
    """Chain-aware token metadata."""

    symbol: str
    name: str
    decimals: int
    kind: TokenKind = TokenKind.FUNGIBLE
    # chain registry name -> contract address or mint
    contract_addresses: dict[str, str] = field(default_factory=dict)


@dataclass(frozen=True)
class ResolvedToken:
    """A token bound to one chain."""

    symbol: str
    kind: TokenKind
    identifier: str  # mint or ERC-20 address; empty for native coins
    decimals: int
    chain: str


TOKEN_REGISTRY: dict[str, TokenMetadata] = {
    "USDC": TokenMetadata(
        symbol="USDC",
        name="USD Coin",
        decimals=6,
        contract_addresses={
            "base": "0x833589fCD6eDb6E08f4c7C32D4f71b54bdA02913",
            "base_sepolia": "0x036CbD53842c5426634e7929541eC2318f3dCF7e",
            "celo": "0xcebA9300f2b948710d2653dD7B07f33A8B32118C",
            "solana": "EPjFWdd5AufqSSqeM2qN1xzybapC8G4wEGGkZwyTDt1v",
            "solana_devnet": "4zMMC9srt5Ri5X14GAgXhaHii3GnPAEERYPJgZJDncDU",
        },
    ),
    "USDT": TokenMetadata(
        symbol="USDT",
        name="Tether USD",
        decimals=6,
        contract_addresses={
            "base": "0xfde4C96c8593536E31F229EA8f37b2ADa2699bb2",
            "base_sepolia": "0xfde4C96c8593536E31F229EA8f37b2ADa2699bb2",
            "solana": "Es9vMFrzaCERmJfrF4H2FYD4KCoNkY11McCe8BenwNYB",
        },
    ),
    "cUSD": TokenMetadata(
        symbol="cUSD",
        name="Celo Dollar",
        decimals=18,
        contract_addresses={
            "celo": "0x765DE816845861e75A25fCA122bb6898B8B1282a",
        },
    ),
}

# Currency codes that documents carry but which settle as a token
CURRENCY_ALIASES: dict[str, str] = {
    "USD": "USDC",
}


def normalize_symbol(symbol: Optional[str]) -> str:
    if not symbol:
        return "USDC"
    symbol = symbol.strip()
    upper = symbol.upper()
    if upper in CURRENCY_ALIASES:
        return CURRENCY_ALIASES[upper]
    for known in TOKEN_REGISTRY:
        if known.upper() == upper:
            return known
    return upper


def get_token_metadata(symbol: str) -> TokenMetadata:
    try:
        return TOKEN_REGISTRY[normalize_symbol(symbol)]
    except KeyError as exc:
        raise ValueError(f"unknown token: {symbol}") from exc


def resolve_token(chain: str, symbol: str) -> ResolvedToken:
    """Bind a token symbol to a chain.

    The chain's native coin symbol resolves to a native token with the
    chain's native precision.
    """
    chain_cfg = get_chain_config(chain)
    symbol = normalize_symbol(symbol)

    if symbol == chain_cfg.native_token:
        return ResolvedToken(
            symbol=symbol,
            kind=TokenKind.NATIVE,
            identifier="",
            decimals=chain_cfg.native_decimals,
            chain=chain,
        )

    meta = TOKEN_REGISTRY.get(symbol)
    if meta is None or chain not in meta.contract_addresses:
        raise UnsupportedTokenError(symbol, chain)

    return ResolvedToken(
        symbol=meta.symbol,
        kind=meta.kind,
        identifier=meta.contract_addresses[chain],
        decimals=meta.decimals,
        chain=chain,
    )


def get_tokens_for_chain(chain: str) -> list[str]:
    native = get_chain_config(chain).native_token
    return [native] + [s for s, meta in TOKEN_REGISTRY.items() if chain in meta.contract_addresses]
