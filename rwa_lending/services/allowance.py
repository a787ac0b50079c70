"""ERC-20 allowance checks and approval transactions."""
from __future__ import annotations

import asyncio
import logging
from typing import Callable

from ..chains.evm import EvmClient
from ..config import EngineConfig
from ..diagnostics import LoggingDiagnostics
from ..errors import (
    ApprovalError,
    ApprovalInProgressError,
    LedgerReadError,
    NotConnectedError,
    UserRejected,
)
from ..interfaces.chain import LedgerClient
from ..interfaces.diagnostics import DiagnosticsSink
from ..models import ApprovalState, NetworkContext, TokenInfo, TxResult, WalletSession
from ..protocols.erc20 import Erc20Token
from ..protocols.lending.parser import allowance_tolerance, is_user_rejection

logger = logging.getLogger(__name__)


class AllowanceOrchestrator:
    """Check and grant the lending contract's spending allowance.

    One approval at most is in flight per instance; a second request while
    one is pending is rejected rather than queued.
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
        self._approving = False
        self.last_granted: int | None = None

    @property
    def approving(self) -> bool:
        return self._approving

    async def check(
        self,
        network: NetworkContext,
        owner: str,
        spender: str,
        token: TokenInfo,
        required: int,
    ) -> ApprovalState:
        tolerance = allowance_tolerance(token.decimals)
        if token.is_native:
            return ApprovalState(
                current_allowance=0,
                required_allowance=required,
                tolerance=tolerance,
                needs_approval=False,
                approving=self._approving,
            )

        erc20 = Erc20Token(self._client_factory(network), token.address)
        try:
            current = await erc20.allowance(owner, spender)
        except Exception as e:
            raise LedgerReadError(
                f"Failed to read {token.symbol} allowance of {owner}: {e}"
            ) from e
        state = ApprovalState(
            current_allowance=current,
            required_allowance=required,
            tolerance=tolerance,
            needs_approval=current < required - tolerance,
            approving=self._approving,
        )
        self._diagnostics.record(
            "allowance.checked",
            token=token.symbol,
            current=current,
            required=required,
            needs_approval=state.needs_approval,
        )
        return state

    async def approve(
        self,
        session: WalletSession,
        network: NetworkContext,
        token: TokenInfo,
        spender: str,
        amount: int,
        precision_buffer: int = 0,
    ) -> TxResult:
        """Send ``approve(spender, amount + precision_buffer)`` and wait for it.

        After confirmation and the settle delay the granted allowance is read
        back from the ledger and kept in :attr:`last_granted`; the requested
        amount is never assumed. If that read fails the mined approval is still
        returned and :attr:`last_granted` stays ``None``.
        """
        if self._approving:
            raise ApprovalInProgressError("An approval transaction is already pending")
        if session.provider is None or not session.can_sign:
            raise NotConnectedError("Connected wallet cannot sign transactions")

        self._approving = True
        self.last_granted = None
        try:
            return await self._approve(
                session, network, token, spender, amount + precision_buffer
            )
        finally:
            self._approving = False

    async def _approve(
        self,
        session: WalletSession,
        network: NetworkContext,
        token: TokenInfo,
        spender: str,
        amount: int,
    ) -> TxResult:
        client = self._client_factory(network)
        erc20 = Erc20Token(client, token.address)
        tx = erc20.build_approve_tx(session.address, spender, amount)
        self._diagnostics.record("allowance.approve_sent", token=token.symbol, amount=amount)

        try:
            tx_hash = await session.provider.sign_and_send(tx)
        except Exception as e:
            if is_user_rejection(e):
                self._diagnostics.record("allowance.approve_rejected", token=token.symbol)
                raise UserRejected("Approval rejected in wallet") from e
            raise ApprovalError(f"Approval transaction failed: {e}") from e

        logger.info("Approval submitted: %s", tx_hash)
        try:
            receipt = await client.wait_for_receipt(tx_hash)
        except Exception as e:
            self._diagnostics.record("allowance.receipt_failed", tx_hash=tx_hash, error=str(e))
            raise ApprovalError(
                f"Approval {tx_hash} was sent but its receipt could not be read: {e}"
            ) from e
        result = TxResult.from_receipt({"transactionHash": tx_hash, **receipt})
        if result.status == 0:
            self._diagnostics.record("allowance.approve_reverted", tx_hash=tx_hash)
            raise ApprovalError(f"Approval transaction {tx_hash} reverted")

        # Public RPC read paths can lag the block that mined the approval.
        await asyncio.sleep(self._engine.settle_delay_seconds)
        try:
            granted = await erc20.allowance(session.address, spender)
        except Exception as e:
            # The approval is mined; only the read-back is missing.
            logger.warning("Approval %s confirmed but allowance re-read failed: %s", tx_hash, e)
            self._diagnostics.record("allowance.reread_failed", tx_hash=tx_hash, error=str(e))
            return result
        self.last_granted = granted
        logger.info("Allowance after approval: %d (requested %d)", granted, amount)
        self._diagnostics.record(
            "allowance.approve_confirmed",
            tx_hash=tx_hash,
            requested=amount,
            granted=granted,
        )
        return result
