"""EVM JSON-RPC client with fallback support."""
from __future__ import annotations

import asyncio
import logging
import ssl
from typing import Any

import aiohttp
import certifi
from eth_utils import decode_hex, encode_hex

from ...models import NetworkContext

logger = logging.getLogger(__name__)


class RpcError(RuntimeError):
    """JSON-RPC error object returned by a node (reverts, rejections, ...)."""

    def __init__(self, code: int | None, message: str, data: Any = None) -> None:
        super().__init__(f"RPC Error {code}: {message}")
        self.code = code
        self.message = message
        self.data = data


_TRANSPORT_ERRORS = (aiohttp.ClientError, asyncio.TimeoutError, OSError, ValueError)


class EvmClient:
    """EVM RPC client with automatic endpoint fallback.

    Transport failures move on to the next endpoint. An ``error`` object in a
    response is deterministic (a revert is a revert on every node), so it is
    raised as :class:`RpcError` straight away.
    """

    def __init__(self, network: NetworkContext, poll_interval: float = 2.0) -> None:
        self.endpoints = list(network.rpc_endpoints)
        self.timeout = network.rpc_timeout
        self.poll_interval = poll_interval
        self.current_rpc_index = 0
        self._request_id = 0

    async def rpc_call(self, method: str, params: list[Any]) -> Any:
        """Make RPC call with fallback to alternative endpoints."""
        if not self.endpoints:
            raise RuntimeError("No RPC endpoints configured")

        self._request_id += 1
        payload = {
            "jsonrpc": "2.0",
            "id": self._request_id,
            "method": method,
            "params": params,
        }

        ssl_context = ssl.create_default_context(cafile=certifi.where())

        last_error: Exception | None = None
        for attempt in range(len(self.endpoints)):
            rpc_index = (self.current_rpc_index + attempt) % len(self.endpoints)
            rpc_url = self.endpoints[rpc_index]

            try:
                connector = aiohttp.TCPConnector(ssl=ssl_context)
                async with aiohttp.ClientSession(connector=connector) as session:
                    async with session.post(
                        rpc_url,
                        json=payload,
                        timeout=aiohttp.ClientTimeout(total=self.timeout),
                    ) as response:
                        result = await response.json()
            except _TRANSPORT_ERRORS as e:
                last_error = e
                logger.warning("RPC endpoint %s failed: %s", rpc_url, e)
                if attempt < len(self.endpoints) - 1:
                    logger.info("Trying next endpoint...")
                continue

            if "error" in result:
                error = result["error"] or {}
                raise RpcError(error.get("code"), error.get("message", ""), error.get("data"))

            if rpc_index != self.current_rpc_index:
                logger.info("Switched to RPC endpoint: %s", rpc_url)
                self.current_rpc_index = rpc_index

            return result.get("result")

        raise RuntimeError(f"All RPC endpoints failed. Last error: {last_error}")

    async def eth_call(self, to: str, data: bytes, sender: str | None = None) -> bytes:
        """Execute a read-only contract call against the latest block."""
        call: dict[str, Any] = {"to": to, "data": encode_hex(data)}
        if sender:
            call["from"] = sender
        result = await self.rpc_call("eth_call", [call, "latest"])
        return decode_hex(result or "0x")

    async def estimate_gas(self, tx: dict[str, Any]) -> int:
        result = await self.rpc_call("eth_estimateGas", [_serialize_tx(tx)])
        return int(result, 16)

    async def get_transaction_receipt(self, tx_hash: str) -> dict[str, Any] | None:
        return await self.rpc_call("eth_getTransactionReceipt", [tx_hash])

    async def wait_for_receipt(self, tx_hash: str) -> dict[str, Any]:
        """Poll until the transaction is mined.

        No timeout: a pending transaction is abandoned only by cancelling the
        awaiting task.
        """
        while True:
            receipt = await self.get_transaction_receipt(tx_hash)
            if receipt:
                return receipt
            logger.debug("Receipt for %s not available yet", tx_hash)
            await asyncio.sleep(self.poll_interval)


def _serialize_tx(tx: dict[str, Any]) -> dict[str, Any]:
    """Hex-encode integer and bytes fields the way JSON-RPC expects."""
    out: dict[str, Any] = {}
    for key, value in tx.items():
        if isinstance(value, bool):
            out[key] = value
        elif isinstance(value, int):
            out[key] = hex(value)
        elif isinstance(value, (bytes, bytearray)):
            out[key] = encode_hex(value)
        else:
            out[key] = value
    return out
