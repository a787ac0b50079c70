"""ERC-20 token wrapper."""
from .token import Erc20Token

__all__ = ["Erc20Token"]
