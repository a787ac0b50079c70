"""Integration tests for authoritative loan terms read from the ledger."""
from __future__ import annotations

import pytest

from conftest import FakeLedger
from rwa_lending.chains.evm import RpcError
from rwa_lending.errors import CalculationError
from rwa_lending.models import SECONDS_PER_DAY, NetworkContext, Provenance
from rwa_lending.protocols.lending import abi
from rwa_lending.services.economics import LoanEconomicsCalculator

PRINCIPAL = 10_000 * 10**6
SIX_MONTHS = 180 * SECONDS_PER_DAY


def _ledger_schedule(principal: int, duration: int) -> tuple[int, int]:
    months = duration // (30 * SECONDS_PER_DAY)
    interest = principal * 85 * months // 12_000
    return principal + interest, principal // 20


@pytest.fixture()
def calculator(ledger: FakeLedger) -> LoanEconomicsCalculator:
    ledger.on(abi.CALCULATE_INTEREST_RATE, 850)
    ledger.on_call(abi.CALCULATE_LOAN_TERMS, _ledger_schedule)
    return LoanEconomicsCalculator(client_factory=lambda network: ledger)


class TestRecompute:
    @pytest.mark.asyncio
    async def test_ten_thousand_over_180_days(
        self, calculator: LoanEconomicsCalculator, sample_network: NetworkContext
    ) -> None:
        terms = await calculator.recompute(sample_network, PRINCIPAL, SIX_MONTHS)

        total_debt, buffer_amount = _ledger_schedule(PRINCIPAL, SIX_MONTHS)
        assert terms.provenance is Provenance.AUTHORITATIVE
        assert terms.total_debt == total_debt
        assert terms.buffer_amount == buffer_amount
        assert terms.interest_rate_bps == 850
        assert terms.monthly_payment == total_debt // 6
        assert terms.required_allowance() == PRINCIPAL + 2 * buffer_amount

    @pytest.mark.asyncio
    async def test_idempotent(
        self, calculator: LoanEconomicsCalculator, sample_network: NetworkContext
    ) -> None:
        first = await calculator.recompute(sample_network, PRINCIPAL, SIX_MONTHS)
        second = await calculator.recompute(sample_network, PRINCIPAL, SIX_MONTHS)
        assert first == second

    @pytest.mark.asyncio
    async def test_total_debt_monotonic_in_duration(
        self, calculator: LoanEconomicsCalculator, sample_network: NetworkContext
    ) -> None:
        debts = [
            (await calculator.recompute(sample_network, PRINCIPAL, days * SECONDS_PER_DAY)).total_debt
            for days in range(30, 366, 15)
        ]
        assert debts == sorted(debts)

    @pytest.mark.asyncio
    async def test_values_taken_verbatim(
        self, ledger: FakeLedger, sample_network: NetworkContext
    ) -> None:
        ledger.on(abi.CALCULATE_INTEREST_RATE, 1)
        ledger.on(abi.CALCULATE_LOAN_TERMS, 123_456_789, 7)
        calculator = LoanEconomicsCalculator(client_factory=lambda network: ledger)

        terms = await calculator.recompute(sample_network, PRINCIPAL, SIX_MONTHS)

        assert (terms.total_debt, terms.buffer_amount) == (123_456_789, 7)

    @pytest.mark.asyncio
    async def test_ledger_failure_raises_calculation_error(
        self, ledger: FakeLedger, sample_network: NetworkContext
    ) -> None:
        ledger.on(abi.CALCULATE_INTEREST_RATE, 850)
        ledger.fail(abi.CALCULATE_LOAN_TERMS, RpcError(3, "execution reverted"))
        calculator = LoanEconomicsCalculator(client_factory=lambda network: ledger)

        with pytest.raises(CalculationError):
            await calculator.recompute(sample_network, PRINCIPAL, SIX_MONTHS)

    @pytest.mark.asyncio
    async def test_duration_without_period(
        self, calculator: LoanEconomicsCalculator, sample_network: NetworkContext
    ) -> None:
        with pytest.raises(CalculationError):
            await calculator.recompute(sample_network, PRINCIPAL, 10 * SECONDS_PER_DAY)
