"""Integration tests for createLoan submission."""
from __future__ import annotations

import asyncio
from dataclasses import replace

import pytest
from eth_abi import decode, encode
from eth_utils import encode_hex

from conftest import LENDING, OWNER, USDC_ADDRESS, CHAIN_ID, FakeLedger, FakeWallet
from rwa_lending.chains.evm import RpcError
from rwa_lending.config import EngineConfig
from rwa_lending.diagnostics import CollectingDiagnostics
from rwa_lending.errors import (
    ContractError,
    ExecutionFailure,
    InvalidLoanDuration,
    NotConnectedError,
    SubmissionInProgressError,
    UnknownError,
    UserRejected,
)
from rwa_lending.models import NetworkContext, OriginationParams, WalletSession
from rwa_lending.protocols.abi import ERROR_STRING_SELECTOR
from rwa_lending.protocols.lending import abi
from rwa_lending.protocols.lending.parser import account_id_for
from rwa_lending.services.submitter import OriginationSubmitter, apply_gas_margin


@pytest.fixture()
def params() -> OriginationParams:
    return OriginationParams(
        token_id=7,
        account_id=account_id_for(OWNER),
        duration_seconds=180 * 86400,
        principal=10_000 * 10**6,
        token_address=USDC_ADDRESS,
        origin_chain_id=CHAIN_ID,
        borrower=OWNER,
        fallback_gas=500_000,
    )


@pytest.fixture()
def diagnostics() -> CollectingDiagnostics:
    return CollectingDiagnostics()


@pytest.fixture()
def submitter(
    ledger: FakeLedger, sample_engine: EngineConfig, diagnostics: CollectingDiagnostics
) -> OriginationSubmitter:
    return OriginationSubmitter(
        engine=sample_engine, client_factory=lambda network: ledger, diagnostics=diagnostics
    )


class TestGasMargin:
    @pytest.mark.parametrize(
        "gas,margin,expected",
        [(250_000, 20, 300_000), (500_000, 20, 600_000), (100_001, 20, 120_001), (1000, 0, 1000)],
    )
    def test_apply_gas_margin(self, gas: int, margin: int, expected: int) -> None:
        assert apply_gas_margin(gas, margin) == expected


class TestSubmit:
    @pytest.mark.asyncio
    async def test_success_uses_estimate_with_margin(
        self,
        submitter: OriginationSubmitter,
        ledger: FakeLedger,
        wallet: FakeWallet,
        session: WalletSession,
        sample_network: NetworkContext,
        params: OriginationParams,
        diagnostics: CollectingDiagnostics,
    ) -> None:
        result = await submitter.submit(params, session, sample_network)

        assert result.succeeded
        assert result.gas_limit == 300_000
        assert result.used_fallback_gas is False
        assert result.tx_hash == "0x" + "ab" * 32
        assert submitter.submitting is False
        assert diagnostics.names()[-1] == "submit.confirmed"

        tx = wallet.sign_and_send.call_args.args[0]
        assert tx["to"] == LENDING
        assert tx["gas"] == 300_000
        assert tx["data"][:4] == abi.CREATE_LOAN.selector
        decoded = decode(list(abi.CREATE_LOAN.inputs), tx["data"][4:])
        assert decoded[0] == 7
        assert decoded[1] == 0x12345678
        assert decoded[3] == 10_000 * 10**6
        assert decoded[5] == CHAIN_ID

    @pytest.mark.asyncio
    async def test_estimation_failure_falls_back_to_static_gas(
        self,
        submitter: OriginationSubmitter,
        ledger: FakeLedger,
        session: WalletSession,
        sample_network: NetworkContext,
        params: OriginationParams,
        diagnostics: CollectingDiagnostics,
    ) -> None:
        ledger.estimate_gas.side_effect = RpcError(-32000, "gas required exceeds allowance")

        result = await submitter.submit(params, session, sample_network)

        assert result.succeeded
        assert result.gas_limit == 600_000
        assert result.used_fallback_gas is True
        assert diagnostics.last("submit.gas_fallback")["fallback_gas"] == 500_000

    @pytest.mark.asyncio
    async def test_estimation_timeout_falls_back(
        self,
        ledger: FakeLedger,
        sample_engine: EngineConfig,
        session: WalletSession,
        sample_network: NetworkContext,
        params: OriginationParams,
    ) -> None:
        async def hang(tx):
            await asyncio.sleep(10)

        ledger.estimate_gas.side_effect = hang
        submitter = OriginationSubmitter(
            engine=replace(sample_engine, gas_estimate_timeout=0.01),
            client_factory=lambda network: ledger,
        )

        result = await submitter.submit(params, session, sample_network)

        assert result.used_fallback_gas is True
        assert result.gas_limit == 600_000

    @pytest.mark.asyncio
    async def test_reverted_receipt_is_execution_failure(
        self,
        submitter: OriginationSubmitter,
        ledger: FakeLedger,
        session: WalletSession,
        sample_network: NetworkContext,
        params: OriginationParams,
    ) -> None:
        ledger.wait_for_receipt.return_value = {"status": "0x0", "gasUsed": "0x3d090"}

        result = await submitter.submit(params, session, sample_network)

        assert result.status == 0
        assert isinstance(result.error, ExecutionFailure)
        assert not result.succeeded

    @pytest.mark.asyncio
    async def test_revert_reason_is_classified(
        self,
        submitter: OriginationSubmitter,
        wallet: FakeWallet,
        session: WalletSession,
        sample_network: NetworkContext,
        params: OriginationParams,
    ) -> None:
        data = encode_hex(ERROR_STRING_SELECTOR + encode(["string"], ["InvalidLoanDuration"]))
        wallet.sign_and_send.side_effect = RpcError(3, "execution reverted", data)

        result = await submitter.submit(params, session, sample_network)

        assert isinstance(result.error, InvalidLoanDuration)
        assert result.error.reason == "InvalidLoanDuration"
        assert result.tx_hash == ""

    @pytest.mark.asyncio
    async def test_unrecognised_revert(
        self,
        submitter: OriginationSubmitter,
        wallet: FakeWallet,
        session: WalletSession,
        sample_network: NetworkContext,
        params: OriginationParams,
    ) -> None:
        wallet.sign_and_send.side_effect = RpcError(3, "execution reverted")

        result = await submitter.submit(params, session, sample_network)

        assert isinstance(result.error, ContractError)

    @pytest.mark.asyncio
    async def test_internal_rpc_error(
        self,
        submitter: OriginationSubmitter,
        wallet: FakeWallet,
        session: WalletSession,
        sample_network: NetworkContext,
        params: OriginationParams,
    ) -> None:
        wallet.sign_and_send.side_effect = RpcError(-32603, "Internal JSON-RPC error.")

        result = await submitter.submit(params, session, sample_network)

        assert isinstance(result.error, UnknownError)
        assert "gas" in result.error.remediation

    @pytest.mark.asyncio
    async def test_user_rejection(
        self,
        submitter: OriginationSubmitter,
        wallet: FakeWallet,
        session: WalletSession,
        sample_network: NetworkContext,
        params: OriginationParams,
    ) -> None:
        wallet.sign_and_send.side_effect = RpcError(4001, "User denied transaction signature")

        result = await submitter.submit(params, session, sample_network)

        assert isinstance(result.error, UserRejected)

    @pytest.mark.asyncio
    async def test_non_signing_wallet(
        self,
        submitter: OriginationSubmitter,
        wallet: FakeWallet,
        session: WalletSession,
        sample_network: NetworkContext,
        params: OriginationParams,
    ) -> None:
        result = await submitter.submit(
            params, replace(session, can_sign=False), sample_network
        )

        assert isinstance(result.error, NotConnectedError)
        wallet.sign_and_send.assert_not_called()

    @pytest.mark.asyncio
    async def test_concurrent_submission_is_rejected(
        self,
        submitter: OriginationSubmitter,
        wallet: FakeWallet,
        session: WalletSession,
        sample_network: NetworkContext,
        params: OriginationParams,
    ) -> None:
        release = asyncio.Event()

        async def slow_send(tx):
            await release.wait()
            return "0x" + "ef" * 32

        wallet.sign_and_send.side_effect = slow_send
        first = asyncio.create_task(submitter.submit(params, session, sample_network))
        while not wallet.sign_and_send.called:
            await asyncio.sleep(0)

        with pytest.raises(SubmissionInProgressError):
            await submitter.submit(params, session, sample_network)

        release.set()
        result = await first
        assert result.succeeded
        assert wallet.sign_and_send.await_count == 1
