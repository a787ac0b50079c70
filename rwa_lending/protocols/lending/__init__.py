"""Lending diamond: ABI, contract wrapper and pure parsers."""
from .contract import LendingContract

__all__ = ["LendingContract"]
