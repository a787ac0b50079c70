"""Minimal ABI helpers shared by the contract wrappers."""
from __future__ import annotations

from dataclasses import dataclass
from typing import Any

from eth_abi import decode, encode
from eth_utils import function_signature_to_4byte_selector, to_checksum_address


@dataclass(frozen=True)
class AbiFunction:
    """A single contract function: selector, input encoding, output decoding."""

    name: str
    inputs: tuple[str, ...] = ()
    outputs: tuple[str, ...] = ()

    @property
    def signature(self) -> str:
        return f"{self.name}({','.join(self.inputs)})"

    @property
    def selector(self) -> bytes:
        return function_signature_to_4byte_selector(self.signature)

    def encode_call(self, *args: Any) -> bytes:
        if len(args) != len(self.inputs):
            raise TypeError(
                f"{self.signature} takes {len(self.inputs)} arguments, got {len(args)}"
            )
        values = [
            to_checksum_address(v) if t == "address" else v
            for t, v in zip(self.inputs, args)
        ]
        return self.selector + encode(list(self.inputs), values)

    def decode_output(self, data: bytes) -> tuple[Any, ...]:
        if not self.outputs:
            return ()
        return tuple(decode(list(self.outputs), data))


ERROR_STRING_SELECTOR = function_signature_to_4byte_selector("Error(string)")
PANIC_SELECTOR = function_signature_to_4byte_selector("Panic(uint256)")
