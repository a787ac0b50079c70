"""EVM chain client."""
from .client import EvmClient, RpcError

__all__ = ["EvmClient", "RpcError"]
