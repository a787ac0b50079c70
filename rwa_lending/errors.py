"""Exception taxonomy for loan origination.

Every error carries a ``remediation`` string suitable for showing to the
borrower next to the error message.
"""
from __future__ import annotations

from enum import Enum


class OriginationError(Exception):
    """Base exception for all origination-engine errors."""

    default_remediation = ""

    def __init__(self, message: str = "", remediation: str | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.remediation = (
            remediation if remediation is not None else self.default_remediation
        )


class ConfigurationError(OriginationError):
    """Raised when a network or tier is missing from configuration."""


# ---------------------------------------------------------------------------
# Session / network
# ---------------------------------------------------------------------------


class NotConnectedError(OriginationError):
    """Raised when an operation needs a connected wallet session."""

    default_remediation = "Connect your wallet and try again."


class NetworkMismatchError(OriginationError):
    """Raised when the wallet chain is unsupported or differs from the selection."""

    default_remediation = "Switch your wallet to the selected network."


class PositionFetchError(OriginationError):
    """Raised when the ledger cannot be read while resolving positions."""

    default_remediation = "Check your network connection and reload your assets."


class LedgerReadError(OriginationError):
    """Raised when a ledger read needed by the current step fails."""

    default_remediation = "Check your network connection and try again."


class CalculationError(OriginationError):
    """Raised when authoritative loan terms cannot be obtained."""

    default_remediation = "Loan terms could not be confirmed on-chain; try again."


# ---------------------------------------------------------------------------
# Preflight validation
# ---------------------------------------------------------------------------


class ValidationError(OriginationError):
    """Base class for preflight failures; raised before any transaction."""


class DraftIncompleteError(ValidationError):
    default_remediation = "Complete the loan configuration before reviewing."


class LoanAmountError(ValidationError):
    default_remediation = "Choose a loan amount within the tier limits."


class DurationOutOfRange(ValidationError):
    default_remediation = "Choose a loan term between 30 and 365 days."


class InvalidPaymentSchedule(ValidationError):
    default_remediation = "The loan term must cover at least one monthly payment."


class OwnershipError(ValidationError):
    default_remediation = (
        "Make sure this wallet owns the asset and that it has been authorized."
    )


class CollateralConflict(ValidationError):
    default_remediation = "This asset is already used as collateral for a loan."


class TokenContractError(ValidationError):
    default_remediation = "Pick a currency deployed on the selected network."


class AllowanceKind(str, Enum):
    PRECISION = "precision"
    SHORTFALL = "shortfall"


class AllowanceInsufficient(ValidationError):
    default_remediation = "Approve the lending contract to spend the required tokens."

    def __init__(
        self,
        message: str = "",
        remediation: str | None = None,
        *,
        kind: AllowanceKind = AllowanceKind.SHORTFALL,
        required: int = 0,
        current: int = 0,
    ) -> None:
        super().__init__(message, remediation)
        self.kind = kind
        self.required = required
        self.current = current

    @property
    def deficit(self) -> int:
        return max(0, self.required - self.current)


class BalanceInsufficient(ValidationError):
    default_remediation = "Top up your wallet with the loan currency."

    def __init__(
        self,
        message: str = "",
        remediation: str | None = None,
        *,
        required: int = 0,
        balance: int = 0,
        symbol: str = "",
    ) -> None:
        super().__init__(message, remediation)
        self.required = required
        self.balance = balance
        self.symbol = symbol


class LiquidityInsufficient(ValidationError):
    default_remediation = "The lending pool cannot fund this amount; try a smaller loan."


class StaleQuoteError(ValidationError):
    default_remediation = "Loan terms changed on-chain; review the new quote."


# ---------------------------------------------------------------------------
# Contract reverts
# ---------------------------------------------------------------------------


class ContractValidationError(OriginationError):
    """A revert from the lending contract, with the raw reason kept."""

    default_remediation = (
        "Check asset ownership, loan parameters and token allowances."
    )

    def __init__(
        self, message: str = "", remediation: str | None = None, *, reason: str = ""
    ) -> None:
        super().__init__(message or reason, remediation)
        self.reason = reason


class InvalidLoanDuration(ContractValidationError):
    default_remediation = "Invalid loan duration. Must be between 30 and 365 days."


class LoanAlreadyExists(ContractValidationError):
    default_remediation = "This asset already has an active loan."


class Unauthorized(ContractValidationError):
    default_remediation = "You don't own this asset or it's not properly authorized."


class InsufficientCollateral(ContractValidationError):
    default_remediation = "Insufficient token allowance or balance for the loan."


class ContractError(ContractValidationError):
    """Revert that matches no known business error."""


# ---------------------------------------------------------------------------
# Transactions
# ---------------------------------------------------------------------------


class UserRejected(OriginationError):
    default_remediation = "The request was rejected in your wallet."


class ApprovalError(OriginationError):
    default_remediation = "Token approval failed; no loan was created. Try again."


class ApprovalInProgressError(ApprovalError):
    default_remediation = "An approval is already pending; wait for it to confirm."


class SubmissionInProgressError(OriginationError):
    default_remediation = "A loan transaction is already pending."


class GasEstimationFailure(OriginationError):
    """Recorded when gas estimation fails; submission falls back to static gas."""


class ExecutionFailure(OriginationError):
    default_remediation = (
        "Transaction failed during execution. Check contract conditions."
    )


class UnknownError(OriginationError):
    default_remediation = "Failed to create loan. Please try again."


class InvalidTransitionError(OriginationError):
    """Raised when a wizard action is not allowed in the current state."""
