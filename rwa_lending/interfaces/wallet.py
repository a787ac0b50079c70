"""Wallet provider protocol. Connection management and key custody live behind it."""
from typing import Any, Protocol


class WalletProvider(Protocol):
    """Abstract interface for a connected, possibly signing, wallet."""

    @property
    def can_sign(self) -> bool: ...

    async def get_address(self) -> str: ...

    async def get_chain_id(self) -> int: ...

    async def sign_and_send(self, tx: dict[str, Any]) -> str: ...
