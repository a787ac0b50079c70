"""Data models. All frozen."""
from __future__ import annotations

from dataclasses import dataclass, field
from decimal import Decimal
from enum import Enum
from typing import TYPE_CHECKING, Any

from .errors import CalculationError, OriginationError

if TYPE_CHECKING:
    from .interfaces.wallet import WalletProvider

ZERO_ADDRESS = "0x0000000000000000000000000000000000000000"

SECONDS_PER_DAY = 24 * 60 * 60
PAYMENT_PERIOD_SECONDS = 30 * SECONDS_PER_DAY
MIN_LOAN_DURATION = 30 * SECONDS_PER_DAY
MAX_LOAN_DURATION = 365 * SECONDS_PER_DAY


def payment_periods(duration_seconds: int) -> int:
    """Number of whole 30-day payment periods in a loan duration."""
    return duration_seconds // PAYMENT_PERIOD_SECONDS


def months_to_seconds(months: int) -> int:
    return months * PAYMENT_PERIOD_SECONDS


# ---------------------------------------------------------------------------
# Session / network
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class WalletSession:
    """Snapshot of a connected wallet, owned by the wallet provider."""

    address: str
    chain_id: int
    can_sign: bool = False
    connected: bool = True
    provider: WalletProvider | None = field(default=None, compare=False, repr=False)

    @classmethod
    def disconnected(cls) -> WalletSession:
        return cls(address="", chain_id=0, can_sign=False, connected=False)


@dataclass(frozen=True)
class TokenInfo:
    """Fungible token accepted as loan currency."""

    address: str
    symbol: str
    name: str = ""
    decimals: int = 18

    @property
    def is_native(self) -> bool:
        return self.address.lower() == ZERO_ADDRESS


@dataclass(frozen=True)
class LoanTier:
    id: str
    name: str
    max_ltv: Decimal
    annual_rate: Decimal
    min_asset_value: Decimal
    max_loan_amount: Decimal
    gas_estimate: int


@dataclass(frozen=True)
class NetworkContext:
    """Resolved per-chain context; re-resolved on every chain switch."""

    chain_id: int
    name: str
    lending_contract: str
    # Carried from config for hosts that list tokens; the engine reads `tokens`.
    token_registry: str = ""
    tokens: tuple[TokenInfo, ...] = ()
    rpc_endpoints: tuple[str, ...] = ()
    rpc_timeout: int = 30

    def token(self, symbol: str) -> TokenInfo | None:
        for token in self.tokens:
            if token.symbol.lower() == symbol.lower():
                return token
        return None


# ---------------------------------------------------------------------------
# Positions
# ---------------------------------------------------------------------------


class MetadataSource(str, Enum):
    EMBEDDED = "embedded"
    REMOTE = "remote"
    ABSENT = "absent"


_TYPE_TRAITS = ("Asset Type", "Type")
_VALUE_TRAITS = ("Value (USD)", "Value")
_LOCATION_TRAITS = ("Location",)


@dataclass(frozen=True)
class DisplayMetadata:
    """Off-chain display document for a position, decoded once.

    The document is advisory: nothing financial is read from it except an
    asserted value, which may only raise the displayed value.
    """

    source: MetadataSource
    uri: str = ""
    document: dict[str, Any] | None = None

    @classmethod
    def absent(cls, uri: str = "") -> DisplayMetadata:
        return cls(source=MetadataSource.ABSENT, uri=uri)

    def _trait(self, names: tuple[str, ...]) -> Any:
        if not self.document:
            return None
        attributes = self.document.get("attributes") or []
        for attr in attributes:
            if isinstance(attr, dict) and attr.get("trait_type") in names:
                return attr.get("value")
        return None

    @property
    def name(self) -> str | None:
        if not self.document:
            return None
        name = self.document.get("name")
        return str(name) if name else None

    @property
    def asset_type(self) -> str | None:
        value = self._trait(_TYPE_TRAITS)
        return str(value) if value else None

    @property
    def location(self) -> str | None:
        value = self._trait(_LOCATION_TRAITS)
        return str(value) if value else None

    @property
    def asserted_value(self) -> Decimal:
        raw = self._trait(_VALUE_TRAITS)
        if raw is None:
            return Decimal(0)
        try:
            value = Decimal(str(raw).replace(",", "").replace("$", "").strip())
        except ArithmeticError:
            return Decimal(0)
        return value if value.is_finite() and value > 0 else Decimal(0)


@dataclass(frozen=True)
class AssetPosition:
    """One tokenized-asset holding, as an immutable snapshot."""

    token_id: int
    owner: str
    is_authorized: bool
    custody_amount: int
    investment_amount: int = 0
    duration_seconds: int = 0
    interest_rate_bps: int = 0
    token_address: str = ""
    metadata: DisplayMetadata = field(default_factory=DisplayMetadata.absent)
    name: str = ""
    asset_type: str = ""
    location: str = ""
    display_value: Decimal = Decimal(0)
    is_collateralized: bool = False
    active_loan_id: int | None = None

    @property
    def can_be_collateralized(self) -> bool:
        return self.is_authorized and self.custody_amount > 0 and not self.is_collateralized


@dataclass(frozen=True)
class PositionSnapshot:
    positions: tuple[AssetPosition, ...] = ()
    connected: bool = True
    owner: str = ""
    chain_id: int = 0

    def get(self, token_id: int) -> AssetPosition | None:
        for position in self.positions:
            if position.token_id == token_id:
                return position
        return None

    @property
    def eligible(self) -> tuple[AssetPosition, ...]:
        return tuple(p for p in self.positions if p.can_be_collateralized)


@dataclass(frozen=True)
class LoanRecord:
    """Decoded ``getLoanById`` result."""

    loan_id: int
    account_token_id: int
    borrower: str
    loan_amount: int
    total_debt: int
    buffer_amount: int
    remaining_buffer: int
    start_time: int
    duration_seconds: int
    interest_rate_bps: int
    last_payment_time: int
    is_active: bool
    token_address: str
    source_chain_selector: int
    source_address: str
    monthly_payments: tuple[bool, ...] = ()


# ---------------------------------------------------------------------------
# Terms / approval / origination
# ---------------------------------------------------------------------------


class Provenance(str, Enum):
    PROVISIONAL = "provisional"
    AUTHORITATIVE = "authoritative"


@dataclass(frozen=True)
class LoanTerms:
    """Loan quote in token minor units.

    Provisional terms come from a local estimate and carry no buffer amount;
    only authoritative (ledger-sourced) terms may feed an allowance or a
    transaction.
    """

    principal: int
    duration_seconds: int
    interest_rate_bps: int
    total_debt: int
    buffer_amount: int | None
    monthly_payment: int
    provenance: Provenance

    @property
    def periods(self) -> int:
        return payment_periods(self.duration_seconds)

    @property
    def is_authoritative(self) -> bool:
        return self.provenance is Provenance.AUTHORITATIVE

    def required_allowance(self) -> int:
        """principal + 2 × buffer, matching the lending contract's own check."""
        if not self.is_authoritative or self.buffer_amount is None:
            raise CalculationError(
                "Provisional terms cannot be used to compute a required allowance"
            )
        return self.principal + 2 * self.buffer_amount


@dataclass(frozen=True)
class ApprovalState:
    current_allowance: int
    required_allowance: int
    tolerance: int = 0
    needs_approval: bool = True
    approving: bool = False

    @property
    def shortfall(self) -> int:
        return max(0, self.required_allowance - self.current_allowance)


@dataclass(frozen=True)
class TxResult:
    tx_hash: str
    status: int
    block_number: int = 0
    gas_used: int = 0

    @classmethod
    def from_receipt(cls, receipt: dict[str, Any]) -> TxResult:
        return cls(
            tx_hash=receipt.get("transactionHash", ""),
            status=_hex_int(receipt.get("status")),
            block_number=_hex_int(receipt.get("blockNumber")),
            gas_used=_hex_int(receipt.get("gasUsed")),
        )


def _hex_int(value: Any) -> int:
    if value is None:
        return 0
    if isinstance(value, int):
        return value
    return int(str(value), 16) if str(value).startswith("0x") else int(value)


@dataclass(frozen=True)
class OriginationParams:
    token_id: int
    account_id: int
    duration_seconds: int
    principal: int
    token_address: str
    origin_chain_id: int
    borrower: str
    fallback_gas: int


@dataclass(frozen=True)
class OriginationResult:
    tx_hash: str = ""
    status: int | None = None
    error: OriginationError | None = None
    gas_limit: int = 0
    used_fallback_gas: bool = False

    @property
    def succeeded(self) -> bool:
        return self.error is None and self.status == 1


@dataclass(frozen=True)
class PreflightReport:
    terms: LoanTerms
    required_allowance: int
    tolerance: int
    warnings: tuple[str, ...] = ()
