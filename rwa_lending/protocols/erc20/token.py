"""Minimal ERC-20 reads plus the approve transaction builder."""
from __future__ import annotations

from typing import Any

from ...interfaces.chain import LedgerClient
from ..abi import AbiFunction

ALLOWANCE = AbiFunction("allowance", ("address", "address"), ("uint256",))
BALANCE_OF = AbiFunction("balanceOf", ("address",), ("uint256",))
SYMBOL = AbiFunction("symbol", (), ("string",))
DECIMALS = AbiFunction("decimals", (), ("uint8",))
APPROVE = AbiFunction("approve", ("address", "uint256"), ("bool",))


class Erc20Token:
    def __init__(self, client: LedgerClient, address: str) -> None:
        self._client = client
        self.address = address

    async def _read(self, fn: AbiFunction, *args: Any) -> Any:
        data = await self._client.eth_call(self.address, fn.encode_call(*args))
        return fn.decode_output(data)[0]

    async def allowance(self, owner: str, spender: str) -> int:
        return int(await self._read(ALLOWANCE, owner, spender))

    async def balance_of(self, account: str) -> int:
        return int(await self._read(BALANCE_OF, account))

    async def symbol(self) -> str:
        return str(await self._read(SYMBOL))

    async def decimals(self) -> int:
        return int(await self._read(DECIMALS))

    def build_approve_tx(self, owner: str, spender: str, amount: int) -> dict[str, Any]:
        return {
            "from": owner,
            "to": self.address,
            "data": APPROVE.encode_call(spender, amount),
        }
