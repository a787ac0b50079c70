"""createLoan submission: gas estimation, signing, receipt classification."""
from __future__ import annotations

import asyncio
import logging
from typing import Callable

from ..chains.evm import EvmClient
from ..config import EngineConfig
from ..diagnostics import LoggingDiagnostics
from ..errors import (
    ExecutionFailure,
    GasEstimationFailure,
    NotConnectedError,
    SubmissionInProgressError,
)
from ..interfaces.chain import LedgerClient
from ..interfaces.diagnostics import DiagnosticsSink
from ..models import (
    NetworkContext,
    OriginationParams,
    OriginationResult,
    TxResult,
    WalletSession,
)
from ..protocols.lending import LendingContract
from ..protocols.lending.parser import classify_exception

logger = logging.getLogger(__name__)


def apply_gas_margin(gas: int, margin_pct: int = 20) -> int:
    return gas * (100 + margin_pct) // 100


class OriginationSubmitter:
    """Submit a single createLoan transaction and classify its outcome.

    Failures are returned inside the :class:`OriginationResult`; only a
    concurrent second submission raises.
    """

    def __init__(
        self,
        engine: EngineConfig | None = None,
        client_factory: Callable[[NetworkContext], LedgerClient] | None = None,
        diagnostics: DiagnosticsSink | None = None,
    ) -> None:
        self._engine = engine or EngineConfig()
        self._client_factory = client_factory or (
            lambda network: EvmClient(network, self._engine.receipt_poll_interval)
        )
        self._diagnostics = diagnostics or LoggingDiagnostics()
        self._submitting = False

    @property
    def submitting(self) -> bool:
        return self._submitting

    async def submit(
        self,
        params: OriginationParams,
        session: WalletSession,
        network: NetworkContext,
    ) -> OriginationResult:
        if self._submitting:
            raise SubmissionInProgressError("A loan transaction is already pending")
        if session.provider is None or not session.can_sign:
            return OriginationResult(
                error=NotConnectedError("Connected wallet cannot sign transactions")
            )

        self._submitting = True
        try:
            return await self._submit(params, session, network)
        finally:
            self._submitting = False

    async def _estimate_gas(
        self, contract: LendingContract, params: OriginationParams
    ) -> tuple[int, bool]:
        """Return ``(gas, used_fallback)``; never raises."""
        try:
            gas = await asyncio.wait_for(
                contract.estimate_create_loan_gas(params),
                timeout=self._engine.gas_estimate_timeout,
            )
            return gas, False
        except asyncio.TimeoutError:
            failure = GasEstimationFailure(
                f"Gas estimation timed out after {self._engine.gas_estimate_timeout}s"
            )
        except Exception as e:
            failure = GasEstimationFailure(f"Gas estimation failed: {e}")

        logger.warning("%s; using static gas %d", failure.message, params.fallback_gas)
        self._diagnostics.record(
            "submit.gas_fallback",
            error=failure.message,
            fallback_gas=params.fallback_gas,
        )
        return params.fallback_gas, True

    async def _submit(
        self,
        params: OriginationParams,
        session: WalletSession,
        network: NetworkContext,
    ) -> OriginationResult:
        client = self._client_factory(network)
        contract = LendingContract(client, network.lending_contract)

        gas, used_fallback = await self._estimate_gas(contract, params)
        gas_limit = apply_gas_margin(gas, self._engine.gas_safety_margin_pct)
        tx = contract.build_create_loan_tx(params, gas_limit)
        self._diagnostics.record(
            "submit.sending",
            token_id=params.token_id,
            principal=params.principal,
            duration_seconds=params.duration_seconds,
            gas_limit=gas_limit,
        )

        tx_hash = ""
        try:
            tx_hash = await session.provider.sign_and_send(tx)
            logger.info("createLoan submitted: %s (gas limit %d)", tx_hash, gas_limit)
            receipt = await client.wait_for_receipt(tx_hash)
        except Exception as e:
            error = classify_exception(e)
            logger.error("createLoan failed: %s", error.message)
            self._diagnostics.record(
                "submit.failed", error=type(error).__name__, detail=str(e)
            )
            return OriginationResult(
                tx_hash=tx_hash,
                error=error,
                gas_limit=gas_limit,
                used_fallback_gas=used_fallback,
            )

        result = TxResult.from_receipt({"transactionHash": tx_hash, **receipt})
        if result.status == 0:
            error = ExecutionFailure(f"Transaction {tx_hash} reverted during execution")
            self._diagnostics.record("submit.reverted", tx_hash=tx_hash)
            return OriginationResult(
                tx_hash=tx_hash,
                status=0,
                error=error,
                gas_limit=gas_limit,
                used_fallback_gas=used_fallback,
            )

        self._diagnostics.record(
            "submit.confirmed",
            tx_hash=tx_hash,
            block_number=result.block_number,
            gas_used=result.gas_used,
        )
        return OriginationResult(
            tx_hash=tx_hash,
            status=result.status,
            gas_limit=gas_limit,
            used_fallback_gas=used_fallback,
        )
