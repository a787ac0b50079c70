"""Ledger client protocol for EVM JSON-RPC access."""
from typing import Any, Protocol


class LedgerClient(Protocol):
    """Abstract interface for blockchain RPC interactions."""

    async def eth_call(self, to: str, data: bytes, sender: str | None = None) -> bytes: ...

    async def estimate_gas(self, tx: dict[str, Any]) -> int: ...

    async def get_transaction_receipt(self, tx_hash: str) -> dict[str, Any] | None: ...

    async def wait_for_receipt(self, tx_hash: str) -> dict[str, Any]: ...
