"""Chain RPC clients."""
from .evm import EvmRPCClient
from .solana import FINAL_COMMITMENTS, SolanaClient

__all__ = [
    "EvmRPCClient",
    "SolanaClient",
    "FINAL_COMMITMENTS",
]
