"""Pure decoding and classification helpers for lending-contract data. No I/O."""
from __future__ import annotations

from decimal import ROUND_DOWN, Decimal
from typing import Any

from eth_abi import decode
from eth_utils import decode_hex

from ...errors import (
    AllowanceKind,
    ContractError,
    ContractValidationError,
    InsufficientCollateral,
    InvalidLoanDuration,
    LoanAlreadyExists,
    OriginationError,
    Unauthorized,
    UnknownError,
    UserRejected,
)
from ...models import LoanRecord
from ..abi import ERROR_STRING_SELECTOR, PANIC_SELECTOR
from .abi import KNOWN_CUSTOM_ERRORS

# Deficits below 0.001 of a whole token are rounding noise rather than a
# missing approval.
PRECISION_DEFICIT_DIGITS = 3

_REVERT_PATTERNS: tuple[tuple[str, type[ContractValidationError]], ...] = (
    ("InvalidLoanDuration", InvalidLoanDuration),
    ("LoanAlreadyExists", LoanAlreadyExists),
    ("Unauthorized", Unauthorized),
    ("InsufficientCollateral", InsufficientCollateral),
)

_REJECTION_MARKERS = ("user rejected", "user denied", "action_rejected", "rejected by user")


# ---------------------------------------------------------------------------
# Units
# ---------------------------------------------------------------------------


def parse_units(amount: Decimal | str | int, decimals: int) -> int:
    """Convert a human token amount into integer minor units (truncating)."""
    value = Decimal(str(amount))
    return int((value * (Decimal(10) ** decimals)).to_integral_value(rounding=ROUND_DOWN))


def format_units(amount: int, decimals: int) -> str:
    """Format integer minor units as a plain decimal string without trailing zeros."""
    value = Decimal(amount) / (Decimal(10) ** decimals)
    text = format(value.normalize(), "f")
    return text


def allowance_tolerance(decimals: int) -> int:
    """Rounding tolerance for allowance comparisons, in minor units.

    18-decimal tokens tolerate 1e12 wei (0.000001 tokens); smaller-precision
    tokens tolerate the same 0.000001 token, down to a single unit.
    """
    if decimals >= 18:
        return 10**12
    return 10 ** max(0, decimals - 6)


def precision_ceiling(decimals: int) -> int:
    """Largest deficit, exclusive, still reported as a precision mismatch."""
    return 10 ** max(0, decimals - PRECISION_DEFICIT_DIGITS)


def allowance_kind(deficit: int, decimals: int) -> AllowanceKind:
    if 0 < deficit < precision_ceiling(decimals):
        return AllowanceKind.PRECISION
    return AllowanceKind.SHORTFALL


def account_id_for(address: str) -> int:
    """Account token id derived from the last 8 hex digits of the borrower address."""
    return int(address[-8:], 16)


# ---------------------------------------------------------------------------
# Ledger records
# ---------------------------------------------------------------------------


def parse_loan_record(raw: tuple[Any, ...]) -> LoanRecord:
    """Build a LoanRecord from the decoded getLoanById struct."""
    return LoanRecord(
        loan_id=int(raw[0]),
        account_token_id=int(raw[1]),
        borrower=raw[2],
        loan_amount=int(raw[3]),
        total_debt=int(raw[4]),
        buffer_amount=int(raw[5]),
        remaining_buffer=int(raw[6]),
        start_time=int(raw[7]),
        duration_seconds=int(raw[8]),
        interest_rate_bps=int(raw[9]),
        last_payment_time=int(raw[10]),
        is_active=bool(raw[11]),
        token_address=raw[12],
        source_chain_selector=int(raw[13]),
        source_address=raw[14],
        monthly_payments=tuple(bool(p) for p in raw[15]),
    )


# ---------------------------------------------------------------------------
# Reverts
# ---------------------------------------------------------------------------


def decode_revert_data(data: bytes | str | None) -> str | None:
    """Turn raw revert data into a reason string.

    Handles ``Error(string)``, ``Panic(uint256)`` and the lending contract's
    known custom errors; anything else is returned as hex.
    """
    if data is None:
        return None
    if isinstance(data, str):
        if not data.startswith("0x"):
            return None
        try:
            data = decode_hex(data)
        except ValueError:
            return None
    if len(data) < 4:
        return None

    selector, payload = bytes(data[:4]), bytes(data[4:])
    try:
        if selector == ERROR_STRING_SELECTOR:
            return decode(["string"], payload)[0]
        if selector == PANIC_SELECTOR:
            return f"Panic({hex(decode(['uint256'], payload)[0])})"
    except Exception:
        return "0x" + bytes(data).hex()
    if selector in KNOWN_CUSTOM_ERRORS:
        return KNOWN_CUSTOM_ERRORS[selector]
    return "0x" + bytes(data).hex()


def _revert_payload(exc: BaseException) -> Any:
    data = getattr(exc, "data", None)
    if isinstance(data, dict):
        data = data.get("data") or data.get("originalError", {}).get("data")
    return data


def extract_revert_reason(exc: BaseException) -> str | None:
    """Best-effort reason for a failed call: decoded data, then an explicit reason."""
    reason = decode_revert_data(_revert_payload(exc))
    if reason:
        return reason
    explicit = getattr(exc, "reason", None)
    if isinstance(explicit, str) and explicit:
        return explicit
    return None


def classify_revert(reason: str) -> ContractValidationError:
    """Map a revert reason onto the business error it represents."""
    for marker, error_cls in _REVERT_PATTERNS:
        if marker in reason:
            return error_cls(reason=reason)
    return ContractError(f"Contract error: {reason}", reason=reason)


def is_user_rejection(exc: BaseException) -> bool:
    if isinstance(exc, UserRejected):
        return True
    if getattr(exc, "code", None) in (4001, "ACTION_REJECTED"):
        return True
    text = str(exc).lower()
    return any(marker in text for marker in _REJECTION_MARKERS)


def classify_exception(exc: BaseException) -> OriginationError:
    """Classify any failure raised while sending a transaction."""
    if isinstance(exc, OriginationError):
        return exc
    if is_user_rejection(exc):
        return UserRejected("Transaction rejected by user")

    reason = extract_revert_reason(exc)
    if reason:
        return classify_revert(reason)

    message = getattr(exc, "message", None) or str(exc)
    for marker, _ in _REVERT_PATTERNS:
        if marker in message:
            return classify_revert(message)

    if "execution reverted" in message or "CALL_EXCEPTION" in message:
        return ContractError(
            "Transaction failed: contract validation error",
            reason=message,
        )
    if getattr(exc, "code", None) == -32603:
        return UnknownError(
            "Internal JSON-RPC error", remediation="Check gas settings and try again."
        )
    return UnknownError(message or type(exc).__name__)
