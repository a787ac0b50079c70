"""Loan economics: provisional local estimate and authoritative ledger recompute.

Precedence: :meth:`LoanEconomicsCalculator.estimate` is for instant display
only. Anything past the review step (allowance, preflight, submission) uses
:meth:`LoanEconomicsCalculator.recompute`, whose numbers come verbatim from
the lending contract.
"""
from __future__ import annotations

import logging
from decimal import ROUND_HALF_UP, Decimal
from typing import Callable

from ..chains.evm import EvmClient
from ..diagnostics import LoggingDiagnostics
from ..errors import CalculationError, LoanAmountError
from ..interfaces.chain import LedgerClient
from ..interfaces.diagnostics import DiagnosticsSink
from ..models import (
    AssetPosition,
    LoanTerms,
    LoanTier,
    NetworkContext,
    Provenance,
    payment_periods,
)
from ..protocols.lending import LendingContract

logger = logging.getLogger(__name__)


def amortized_payment(principal: Decimal, annual_rate_pct: Decimal, periods: int) -> Decimal:
    """Standard annuity payment ``P·r(1+r)^n / ((1+r)^n − 1)``; ``P / n`` at zero rate."""
    if periods <= 0:
        raise ValueError("periods must be positive")
    r = annual_rate_pct / Decimal(100) / Decimal(12)
    if r == 0:
        return principal / periods
    growth = (1 + r) ** periods
    return principal * r * growth / (growth - 1)


class LoanEconomicsCalculator:
    def __init__(
        self,
        client_factory: Callable[[NetworkContext], LedgerClient] = EvmClient,
        diagnostics: DiagnosticsSink | None = None,
    ) -> None:
        self._client_factory = client_factory
        self._diagnostics = diagnostics or LoggingDiagnostics()

    def estimate(
        self,
        position: AssetPosition | None,
        principal: int,
        duration_seconds: int,
        tier: LoanTier,
    ) -> LoanTerms:
        """Provisional terms from the tier's nominal rate, in minor units.

        Carries no buffer amount, so it can never produce a required allowance.
        """
        periods = payment_periods(duration_seconds)
        if periods < 1:
            raise CalculationError(
                f"Duration of {duration_seconds}s covers no payment period"
            )
        monthly = amortized_payment(Decimal(principal), tier.annual_rate, periods)
        monthly_units = int(monthly.to_integral_value(rounding=ROUND_HALF_UP))

        terms = LoanTerms(
            principal=principal,
            duration_seconds=duration_seconds,
            interest_rate_bps=int(tier.annual_rate * 100),
            total_debt=monthly_units * periods,
            buffer_amount=None,
            monthly_payment=monthly_units,
            provenance=Provenance.PROVISIONAL,
        )
        self._diagnostics.record(
            "economics.estimate",
            token_id=position.token_id if position else None,
            tier=tier.id,
            principal=principal,
            monthly_payment=monthly_units,
        )
        return terms

    async def recompute(
        self, network: NetworkContext, principal: int, duration_seconds: int
    ) -> LoanTerms:
        """Authoritative terms read from the lending contract."""
        periods = payment_periods(duration_seconds)
        if periods < 1:
            raise CalculationError(
                f"Duration of {duration_seconds}s covers no payment period"
            )
        contract = LendingContract(
            self._client_factory(network), network.lending_contract
        )
        try:
            rate_bps = await contract.calculate_interest_rate(duration_seconds)
            total_debt, buffer_amount = await contract.calculate_loan_terms(
                principal, duration_seconds
            )
        except Exception as e:
            self._diagnostics.record("economics.recompute_failed", error=str(e))
            raise CalculationError(f"Could not read loan terms from the ledger: {e}") from e

        terms = LoanTerms(
            principal=principal,
            duration_seconds=duration_seconds,
            interest_rate_bps=rate_bps,
            total_debt=total_debt,
            buffer_amount=buffer_amount,
            monthly_payment=total_debt // periods,
            provenance=Provenance.AUTHORITATIVE,
        )
        logger.info(
            "Ledger terms: principal=%d duration=%ds debt=%d buffer=%d rate=%dbps",
            principal,
            duration_seconds,
            total_debt,
            buffer_amount,
            rate_bps,
        )
        self._diagnostics.record(
            "economics.recompute",
            principal=principal,
            duration_seconds=duration_seconds,
            total_debt=total_debt,
            buffer_amount=buffer_amount,
            interest_rate_bps=rate_bps,
        )
        return terms

    # --- advisory helpers ----------------------------------------------------

    @staticmethod
    def ltv(principal: Decimal, position_value: Decimal) -> Decimal:
        """Loan-to-value in percent; infinite when the position has no value."""
        if position_value <= 0:
            return Decimal("Infinity")
        return principal / position_value * 100

    @staticmethod
    def max_loan_amount(position: AssetPosition, tier: LoanTier) -> Decimal:
        return min(position.display_value * tier.max_ltv / 100, tier.max_loan_amount)

    def check_ltv(
        self, principal: Decimal, position: AssetPosition, tier: LoanTier
    ) -> Decimal:
        ratio = self.ltv(principal, position.display_value)
        if ratio > tier.max_ltv:
            raise LoanAmountError(
                f"LTV of {ratio:.2f}% exceeds the {tier.name} maximum of {tier.max_ltv}%"
            )
        return ratio
