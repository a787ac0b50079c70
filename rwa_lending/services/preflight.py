"""Preflight validation mirroring the lending contract's revert conditions.

Checks run top to bottom and the first failure is raised. Steps 1-6 are
local fast-fail guards that save a wasted transaction; only the final
``validateLoanCreationView`` dry run is a guarantee.
"""
from __future__ import annotations

import logging
from typing import Awaitable, Callable

from ..chains.evm import EvmClient
from ..diagnostics import LoggingDiagnostics
from ..errors import (
    AllowanceInsufficient,
    AllowanceKind,
    BalanceInsufficient,
    CollateralConflict,
    DurationOutOfRange,
    InvalidPaymentSchedule,
    LedgerReadError,
    LiquidityInsufficient,
    NetworkMismatchError,
    NotConnectedError,
    OwnershipError,
    PositionFetchError,
    TokenContractError,
)
from ..interfaces.chain import LedgerClient
from ..interfaces.diagnostics import DiagnosticsSink
from ..models import (
    MAX_LOAN_DURATION,
    MIN_LOAN_DURATION,
    AssetPosition,
    NetworkContext,
    PreflightReport,
    TokenInfo,
    WalletSession,
    payment_periods,
)
from ..protocols.erc20 import Erc20Token
from ..protocols.lending import LendingContract
from ..protocols.lending.parser import (
    allowance_kind,
    allowance_tolerance,
    classify_exception,
    format_units,
)
from .economics import LoanEconomicsCalculator

logger = logging.getLogger(__name__)


async def _read_ledger(what: str, pending: Awaitable[int]) -> int:
    try:
        return await pending
    except Exception as e:
        raise LedgerReadError(f"Failed to read {what}: {e}") from e


class PreflightValidator:
    def __init__(
        self,
        calculator: LoanEconomicsCalculator | None = None,
        client_factory: Callable[[NetworkContext], LedgerClient] = EvmClient,
        diagnostics: DiagnosticsSink | None = None,
    ) -> None:
        self._client_factory = client_factory
        self._diagnostics = diagnostics or LoggingDiagnostics()
        self._calculator = calculator or LoanEconomicsCalculator(
            client_factory, self._diagnostics
        )

    async def validate(
        self,
        position: AssetPosition,
        network: NetworkContext,
        principal: int,
        duration_seconds: int,
        token: TokenInfo,
        session: WalletSession | None,
    ) -> PreflightReport:
        """Run every check; return fresh authoritative terms on success."""
        if session is None or not session.connected or not session.address:
            raise NotConnectedError("Wallet not connected")
        if session.chain_id != network.chain_id:
            raise NetworkMismatchError(
                f"Wallet is on chain {session.chain_id}, expected {network.name} "
                f"({network.chain_id})"
            )

        warnings: list[str] = []
        owner = session.address
        client = self._client_factory(network)
        contract = LendingContract(client, network.lending_contract)

        # 1-2. duration and schedule
        self._check_duration(duration_seconds)
        self._diagnostics.record("preflight.duration_ok", duration_seconds=duration_seconds)

        # 3. ownership, read fresh from the ledger
        await self._check_ownership(contract, owner, position.token_id)
        self._diagnostics.record("preflight.ownership_ok", token_id=position.token_id)

        # 4. collateral conflict
        if position.is_collateralized:
            raise CollateralConflict(
                f"Asset #{position.token_id} is already collateral for loan "
                f"{position.active_loan_id}"
            )
        warning = await self._active_loan_warning(contract, owner)
        if warning:
            warnings.append(warning)

        # 5. authoritative terms, balance and allowance
        terms = await self._calculator.recompute(network, principal, duration_seconds)
        required = terms.required_allowance()
        tolerance = 0

        if token.is_native:
            warnings.append(
                f"{token.symbol} uses the zero address; token balance, allowance "
                "and liquidity checks were skipped"
            )
            self._diagnostics.record("preflight.native_token", symbol=token.symbol)
        else:
            erc20 = Erc20Token(client, token.address)
            symbol, decimals = await self._verify_token(erc20, token, network)
            tolerance = allowance_tolerance(decimals)

            balance = await _read_ledger(
                f"{symbol} balance of {owner}", erc20.balance_of(owner)
            )
            self._check_balance(balance, required, terms.buffer_amount or 0, symbol, decimals)

            current = await _read_ledger(
                f"{symbol} allowance of {owner}",
                erc20.allowance(owner, network.lending_contract),
            )
            warning = self._check_allowance(current, required, tolerance, symbol, decimals)
            if warning:
                warnings.append(warning)

            # 6. pool liquidity
            pool_balance = await _read_ledger(
                f"{symbol} liquidity of the lending pool",
                erc20.balance_of(network.lending_contract),
            )
            if pool_balance < principal:
                raise LiquidityInsufficient(
                    f"Lending pool holds {format_units(pool_balance, decimals)} {symbol}, "
                    f"loan needs {format_units(principal, decimals)} {symbol}"
                )
            self._diagnostics.record(
                "preflight.funds_ok",
                balance=balance,
                allowance=current,
                required=required,
                pool_balance=pool_balance,
            )

        # 7. contract dry run
        try:
            await contract.validate_loan_creation_view(
                position.token_id, duration_seconds, sender=owner
            )
        except Exception as e:
            error = classify_exception(e)
            self._diagnostics.record(
                "preflight.contract_rejected", error=type(error).__name__, reason=str(e)
            )
            raise error from e

        self._diagnostics.record("preflight.passed", token_id=position.token_id)
        logger.info("Preflight passed for asset #%d", position.token_id)
        return PreflightReport(
            terms=terms,
            required_allowance=required,
            tolerance=tolerance,
            warnings=tuple(warnings),
        )

    @staticmethod
    def _check_duration(duration_seconds: int) -> None:
        if not MIN_LOAN_DURATION <= duration_seconds <= MAX_LOAN_DURATION:
            raise DurationOutOfRange(
                f"Loan duration of {duration_seconds}s is outside 30 to 365 days"
            )
        if payment_periods(duration_seconds) < 1:
            raise InvalidPaymentSchedule(
                f"Loan duration of {duration_seconds}s covers no payment period"
            )

    async def _check_ownership(
        self, contract: LendingContract, owner: str, token_id: int
    ) -> None:
        try:
            holdings = await contract.get_user_investments(owner)
        except Exception as e:
            raise PositionFetchError(f"Failed to read investments for {owner}: {e}") from e

        for held_id, amount, authorized in holdings:
            if held_id != token_id:
                continue
            if not authorized:
                raise OwnershipError(f"Asset #{token_id} is not authorized")
            if amount <= 0:
                raise OwnershipError(f"Asset #{token_id} holds no custody amount")
            return
        raise OwnershipError(f"Asset #{token_id} is not owned by {owner}")

    async def _active_loan_warning(
        self, contract: LendingContract, owner: str
    ) -> str | None:
        """Best-effort cross-reference; never raises."""
        try:
            loan_ids = await contract.get_user_loans(owner)
            active = [
                loan_id
                for loan_id in loan_ids
                if (await contract.get_loan_by_id(loan_id)).is_active
            ]
        except Exception as e:
            logger.warning("Active loan cross-reference failed: %s", e)
            self._diagnostics.record("preflight.loan_check_failed", error=str(e))
            return None

        if not active:
            return None
        self._diagnostics.record("preflight.active_loans", loan_ids=active)
        return f"Wallet already has {len(active)} active loan(s); this may conflict"

    async def _verify_token(
        self, erc20: Erc20Token, token: TokenInfo, network: NetworkContext
    ) -> tuple[str, int]:
        try:
            symbol = await erc20.symbol()
            decimals = await erc20.decimals()
        except Exception as e:
            raise TokenContractError(
                f"Token contract at {token.address} is invalid or not deployed on "
                f"{network.name} (expected {token.symbol}): {e}"
            ) from e
        if symbol != token.symbol:
            logger.warning(
                "Token %s reports symbol %s, configured as %s",
                token.address,
                symbol,
                token.symbol,
            )
        if decimals != token.decimals:
            logger.warning(
                "Token %s reports %d decimals, configured as %d",
                token.address,
                decimals,
                token.decimals,
            )
        return symbol, decimals

    @staticmethod
    def _check_balance(
        balance: int, required: int, buffer_amount: int, symbol: str, decimals: int
    ) -> None:
        if balance >= required:
            return
        needed = format_units(required, decimals)
        buffer = format_units(buffer_amount, decimals)
        if balance == 0:
            message = (
                f"No {symbol} tokens found in your wallet. Required: {needed} {symbol} "
                f"({buffer} {symbol} buffer deposit)"
            )
        else:
            message = (
                f"Insufficient {symbol} balance. Required: {needed} {symbol}, "
                f"current: {format_units(balance, decimals)} {symbol}"
            )
        raise BalanceInsufficient(message, required=required, balance=balance, symbol=symbol)

    @staticmethod
    def _check_allowance(
        current: int, required: int, tolerance: int, symbol: str, decimals: int
    ) -> str | None:
        deficit = required - current
        if deficit <= 0:
            return None
        if deficit <= tolerance:
            return (
                f"Allowance is {format_units(deficit, decimals)} {symbol} short, "
                "within rounding tolerance"
            )

        kind = allowance_kind(deficit, decimals)
        needed = format_units(required, decimals)
        have = format_units(current, decimals)
        if kind is AllowanceKind.PRECISION:
            message = (
                f"Allowance precision mismatch: required {needed} {symbol}, "
                f"current {have} {symbol}"
            )
            remediation = "Approve a slightly higher amount and try again."
        else:
            message = (
                f"Insufficient allowance: required {needed} {symbol}, current {have} {symbol}"
            )
            remediation = None
        raise AllowanceInsufficient(
            message, remediation, kind=kind, required=required, current=current
        )
