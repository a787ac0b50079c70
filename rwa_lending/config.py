"""Configuration loader: reads config.yaml, interpolates env vars, validates."""
from __future__ import annotations

import logging
import os
import re
from dataclasses import dataclass, field
from decimal import Decimal
from pathlib import Path
from typing import Any

import yaml
from dotenv import load_dotenv

from .models import LoanTier, NetworkContext, TokenInfo

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Frozen config dataclasses
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class EngineConfig:
    # Heuristic pause after a confirmed transaction; the read path of public
    # RPC nodes can lag finality by a block or two.
    settle_delay_seconds: float = 2.0
    gas_estimate_timeout: float = 10.0
    gas_safety_margin_pct: int = 20
    metadata_timeout: float = 10.0
    receipt_poll_interval: float = 2.0
    ipfs_gateway: str = "https://ipfs.io/ipfs/"
    # Rough native-unit to USD conversion used only for display values.
    display_unit_price: Decimal = Decimal("2000")


@dataclass(frozen=True)
class NetworkConfig:
    chain_id: int = 0
    name: str = ""
    rpc_endpoints: tuple[str, ...] = ()
    rpc_timeout: int = 30
    contracts: dict[str, str] = field(default_factory=dict)
    tokens: tuple[TokenInfo, ...] = ()

    def to_context(self) -> NetworkContext:
        return NetworkContext(
            chain_id=self.chain_id,
            name=self.name,
            lending_contract=self.contracts.get("lending", ""),
            token_registry=self.contracts.get("token_registry", ""),
            tokens=self.tokens,
            rpc_endpoints=self.rpc_endpoints,
            rpc_timeout=self.rpc_timeout,
        )


DEFAULT_TIERS: tuple[LoanTier, ...] = (
    LoanTier(
        id="standard",
        name="Standard Tier",
        max_ltv=Decimal("60"),
        annual_rate=Decimal("8.5"),
        min_asset_value=Decimal("10000"),
        max_loan_amount=Decimal("500000"),
        gas_estimate=300_000,
    ),
    LoanTier(
        id="premium",
        name="Premium Tier",
        max_ltv=Decimal("75"),
        annual_rate=Decimal("6.5"),
        min_asset_value=Decimal("50000"),
        max_loan_amount=Decimal("2000000"),
        gas_estimate=350_000,
    ),
    LoanTier(
        id="elite",
        name="Elite Tier",
        max_ltv=Decimal("85"),
        annual_rate=Decimal("4.5"),
        min_asset_value=Decimal("250000"),
        max_loan_amount=Decimal("10000000"),
        gas_estimate=400_000,
    ),
)


@dataclass(frozen=True)
class AppConfig:
    engine: EngineConfig = field(default_factory=EngineConfig)
    networks: dict[str, NetworkConfig] = field(default_factory=dict)
    tiers: tuple[LoanTier, ...] = DEFAULT_TIERS

    def network_name_for_chain(self, chain_id: int) -> str | None:
        for name, network in self.networks.items():
            if network.chain_id == chain_id:
                return name
        return None

    def tier(self, tier_id: str) -> LoanTier | None:
        for tier in self.tiers:
            if tier.id == tier_id:
                return tier
        return None


# ---------------------------------------------------------------------------
# Env interpolation
# ---------------------------------------------------------------------------

_ENV_VAR_RE = re.compile(r"\$\{([^}]+)}")


def _interpolate_env(value: Any) -> Any:
    """Recursively replace ${VAR} references with environment variable values."""
    if isinstance(value, str):
        return _ENV_VAR_RE.sub(lambda m: os.environ.get(m.group(1), ""), value)
    if isinstance(value, dict):
        return {k: _interpolate_env(v) for k, v in value.items()}
    if isinstance(value, list):
        return [_interpolate_env(item) for item in value]
    return value


# ---------------------------------------------------------------------------
# YAML → dataclass builders
# ---------------------------------------------------------------------------


def _build_engine(raw: dict[str, Any]) -> EngineConfig:
    defaults = EngineConfig()
    return EngineConfig(
        settle_delay_seconds=float(
            raw.get("settle_delay_seconds", defaults.settle_delay_seconds)
        ),
        gas_estimate_timeout=float(
            raw.get("gas_estimate_timeout", defaults.gas_estimate_timeout)
        ),
        gas_safety_margin_pct=int(
            raw.get("gas_safety_margin_pct", defaults.gas_safety_margin_pct)
        ),
        metadata_timeout=float(raw.get("metadata_timeout", defaults.metadata_timeout)),
        receipt_poll_interval=float(
            raw.get("receipt_poll_interval", defaults.receipt_poll_interval)
        ),
        ipfs_gateway=raw.get("ipfs_gateway", defaults.ipfs_gateway),
        display_unit_price=Decimal(
            str(raw.get("display_unit_price", defaults.display_unit_price))
        ),
    )


def _build_tokens(raw: list[dict[str, Any]]) -> tuple[TokenInfo, ...]:
    tokens: list[TokenInfo] = []
    for t in raw:
        tokens.append(
            TokenInfo(
                address=t.get("address", ""),
                symbol=t.get("symbol", ""),
                name=t.get("name", t.get("symbol", "")),
                decimals=int(t.get("decimals", 18)),
            )
        )
    return tuple(tokens)


def _build_networks(raw: dict[str, Any]) -> dict[str, NetworkConfig]:
    networks: dict[str, NetworkConfig] = {}
    for name, cfg in raw.items():
        networks[name] = NetworkConfig(
            chain_id=int(cfg.get("chain_id", 0)),
            name=cfg.get("name", name),
            rpc_endpoints=tuple(cfg.get("rpc_endpoints", [])),
            rpc_timeout=int(cfg.get("rpc_timeout", 30)),
            contracts=dict(cfg.get("contracts", {})),
            tokens=_build_tokens(cfg.get("tokens", [])),
        )
    return networks


def _build_tiers(raw: list[dict[str, Any]]) -> tuple[LoanTier, ...]:
    if not raw:
        return DEFAULT_TIERS
    tiers: list[LoanTier] = []
    for t in raw:
        tiers.append(
            LoanTier(
                id=t.get("id", ""),
                name=t.get("name", t.get("id", "")),
                max_ltv=Decimal(str(t.get("max_ltv", 60))),
                annual_rate=Decimal(str(t.get("annual_rate", 8.5))),
                min_asset_value=Decimal(str(t.get("min_asset_value", 0))),
                max_loan_amount=Decimal(str(t.get("max_loan_amount", 0))),
                gas_estimate=int(t.get("gas_estimate", 300_000)),
            )
        )
    return tuple(tiers)


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------


def load_config(config_path: str | Path | None = None) -> AppConfig:
    """Load and validate application configuration from YAML + .env.

    Args:
        config_path: Path to config.yaml. Defaults to ``config.yaml`` in the
            project root (one level up from this package).
    """
    load_dotenv()

    if config_path is None:
        config_path = Path(__file__).resolve().parent.parent / "config.yaml"
    config_path = Path(config_path)

    if not config_path.exists():
        raise FileNotFoundError(f"Config file not found: {config_path}")

    with open(config_path) as f:
        raw = yaml.safe_load(f) or {}

    raw = _interpolate_env(raw)

    cfg = AppConfig(
        engine=_build_engine(raw.get("engine", {})),
        networks=_build_networks(raw.get("networks", {})),
        tiers=_build_tiers(raw.get("tiers", [])),
    )

    _validate(cfg)
    logger.info("Configuration loaded from %s", config_path)
    return cfg


def _validate(cfg: AppConfig) -> None:
    """Raise on invalid configuration."""
    if not cfg.networks:
        raise ValueError("At least one network must be configured")

    seen_chains: set[int] = set()
    for name, network in cfg.networks.items():
        if network.chain_id <= 0:
            raise ValueError(f"Network '{name}' has no chain_id")
        if network.chain_id in seen_chains:
            raise ValueError(f"Network '{name}' reuses chain_id {network.chain_id}")
        seen_chains.add(network.chain_id)
        if not network.rpc_endpoints:
            raise ValueError(f"Network '{name}' has no rpc_endpoints")
        if not network.contracts.get("lending"):
            raise ValueError(f"Network '{name}' has no lending contract")
        for token in network.tokens:
            if not token.address or not token.symbol:
                raise ValueError(
                    f"Network '{name}' has a token without address or symbol"
                )

    tier_ids = [t.id for t in cfg.tiers]
    if len(set(tier_ids)) != len(tier_ids):
        raise ValueError("Loan tier ids must be unique")
    for tier in cfg.tiers:
        if not (0 < tier.max_ltv <= 100):
            raise ValueError(f"Tier '{tier.id}' max_ltv must be within (0, 100]")
    if cfg.engine.gas_safety_margin_pct < 0:
        raise ValueError("gas_safety_margin_pct must not be negative")
