"""Shared test fixtures, sample data and an in-memory ledger."""
from __future__ import annotations

import textwrap
from decimal import Decimal
from pathlib import Path
from typing import Any, Callable
from unittest.mock import AsyncMock

import pytest
from eth_abi import decode, encode

from rwa_lending.config import DEFAULT_TIERS, AppConfig, EngineConfig, NetworkConfig
from rwa_lending.models import (
    AssetPosition,
    NetworkContext,
    TokenInfo,
    WalletSession,
    ZERO_ADDRESS,
)
from rwa_lending.protocols.abi import AbiFunction

OWNER = "0x1234567890abcdef1234567890abcdef12345678"
LENDING = "0x1111111111111111111111111111111111111111"
USDC_ADDRESS = "0xaaaaaaaaaaaaaaaaaaaaaaaaaaaaaaaaaaaaaaaa"
CHAIN_ID = 11155111

USDC = TokenInfo(address=USDC_ADDRESS, symbol="USDC", name="USD Coin", decimals=6)
ETH = TokenInfo(address=ZERO_ADDRESS, symbol="ETH", name="Ether", decimals=18)


# ---------------------------------------------------------------------------
# In-memory ledger
# ---------------------------------------------------------------------------


class FakeLedger:
    """LedgerClient double that answers eth_call by contract and selector.

    Handlers receive the decoded call arguments and return the output tuple;
    an exception instance is raised instead of answered.
    """

    def __init__(self) -> None:
        self._handlers: dict[tuple[str | None, bytes], tuple[AbiFunction, Any]] = {}
        self.eth_call = AsyncMock(side_effect=self._eth_call)
        self.estimate_gas = AsyncMock(return_value=250_000)
        self.get_transaction_receipt = AsyncMock(return_value=None)
        self.wait_for_receipt = AsyncMock(
            return_value={"status": "0x1", "blockNumber": "0x10", "gasUsed": "0x3d090"}
        )

    def on(self, fn: AbiFunction, *outputs: Any, to: str | None = None) -> None:
        self._handlers[(to, fn.selector)] = (fn, outputs)

    def on_call(
        self, fn: AbiFunction, handler: Callable[..., tuple], to: str | None = None
    ) -> None:
        self._handlers[(to, fn.selector)] = (fn, handler)

    def fail(self, fn: AbiFunction, error: Exception, to: str | None = None) -> None:
        self._handlers[(to, fn.selector)] = (fn, error)

    def calls_to(self, fn: AbiFunction) -> int:
        return sum(
            1 for call in self.eth_call.call_args_list if call.args[1][:4] == fn.selector
        )

    async def _eth_call(self, to: str, data: bytes, sender: str | None = None) -> bytes:
        selector = bytes(data[:4])
        entry = self._handlers.get((to.lower(), selector)) or self._handlers.get(
            (None, selector)
        )
        if entry is None:
            raise AssertionError(f"unexpected eth_call to {to} selector {selector.hex()}")
        fn, answer = entry
        if isinstance(answer, Exception):
            raise answer
        if callable(answer):
            args = decode(list(fn.inputs), bytes(data[4:])) if fn.inputs else ()
            answer = answer(*args)
        return encode(list(fn.outputs), list(answer))


class FakeWallet:
    """WalletProvider double."""

    def __init__(
        self, address: str = OWNER, chain_id: int = CHAIN_ID, can_sign: bool = True
    ) -> None:
        self._can_sign = can_sign
        self.get_address = AsyncMock(return_value=address)
        self.get_chain_id = AsyncMock(return_value=chain_id)
        self.sign_and_send = AsyncMock(return_value="0x" + "ab" * 32)

    @property
    def can_sign(self) -> bool:
        return self._can_sign


@pytest.fixture()
def ledger() -> FakeLedger:
    return FakeLedger()


@pytest.fixture()
def wallet() -> FakeWallet:
    return FakeWallet()


# ---------------------------------------------------------------------------
# Config fixtures
# ---------------------------------------------------------------------------


@pytest.fixture()
def sample_engine() -> EngineConfig:
    return EngineConfig(settle_delay_seconds=0, gas_estimate_timeout=0.5)


@pytest.fixture()
def sample_network_config() -> NetworkConfig:
    return NetworkConfig(
        chain_id=CHAIN_ID,
        name="Sepolia Testnet",
        rpc_endpoints=("https://rpc1.example.com", "https://rpc2.example.com"),
        rpc_timeout=10,
        contracts={"lending": LENDING},
        tokens=(USDC, ETH),
    )


@pytest.fixture()
def sample_network(sample_network_config: NetworkConfig) -> NetworkContext:
    return sample_network_config.to_context()


@pytest.fixture()
def sample_app_config(
    sample_engine: EngineConfig, sample_network_config: NetworkConfig
) -> AppConfig:
    return AppConfig(
        engine=sample_engine,
        networks={"sepolia": sample_network_config},
        tiers=DEFAULT_TIERS,
    )


@pytest.fixture()
def session(wallet: FakeWallet) -> WalletSession:
    return WalletSession(
        address=OWNER, chain_id=CHAIN_ID, can_sign=True, connected=True, provider=wallet
    )


# ---------------------------------------------------------------------------
# Model fixtures
# ---------------------------------------------------------------------------


@pytest.fixture()
def sample_position() -> AssetPosition:
    return AssetPosition(
        token_id=7,
        owner=OWNER,
        is_authorized=True,
        custody_amount=50 * 10**18,
        investment_amount=50 * 10**18,
        token_address=LENDING,
        name="Harbor View Apartments",
        asset_type="Real Estate",
        display_value=Decimal("100000"),
    )


# ---------------------------------------------------------------------------
# Config YAML fixture
# ---------------------------------------------------------------------------

SAMPLE_YAML = textwrap.dedent(f"""\
    engine:
      settle_delay_seconds: 0.5
      gas_estimate_timeout: 5
      display_unit_price: 2500
    networks:
      sepolia:
        name: Sepolia Testnet
        chain_id: {CHAIN_ID}
        rpc_endpoints: ["https://rpc.example.com"]
        rpc_timeout: 10
        contracts:
          lending: "{LENDING}"
        tokens:
          - symbol: USDC
            address: "{USDC_ADDRESS}"
            decimals: 6
""")


@pytest.fixture()
def sample_yaml_path(tmp_path: Path) -> Path:
    cfg_file = tmp_path / "config.yaml"
    cfg_file.write_text(SAMPLE_YAML)
    return cfg_file
