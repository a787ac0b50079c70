"""Origination wizard: the borrower-facing state machine.

DISCONNECTED -> CONFIGURING -> REVIEW_PENDING -> (APPROVING -> REVIEW_PENDING)
-> SUBMITTING -> COMPLETED | FAILED

Any draft change while REVIEW_PENDING drops the authoritative quote and
returns to CONFIGURING, so a loan is never submitted against stale terms.
"""
from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, replace
from decimal import Decimal
from enum import Enum
from typing import Callable

from ..config import AppConfig
from ..diagnostics import LoggingDiagnostics
from ..errors import (
    CollateralConflict,
    ConfigurationError,
    DraftIncompleteError,
    InvalidTransitionError,
    LoanAmountError,
    NetworkMismatchError,
    NotConnectedError,
    OriginationError,
    OwnershipError,
    StaleQuoteError,
    TokenContractError,
)
from ..interfaces.chain import LedgerClient
from ..interfaces.diagnostics import DiagnosticsSink
from ..interfaces.wallet import WalletProvider
from ..models import (
    ApprovalState,
    AssetPosition,
    LoanTerms,
    LoanTier,
    NetworkContext,
    OriginationParams,
    OriginationResult,
    PositionSnapshot,
    TokenInfo,
    TxResult,
    WalletSession,
    months_to_seconds,
)
from ..protocols.lending.parser import account_id_for, parse_units
from .allowance import AllowanceOrchestrator
from .economics import LoanEconomicsCalculator
from .position_resolver import AssetPositionResolver
from .preflight import PreflightValidator
from .submitter import OriginationSubmitter

logger = logging.getLogger(__name__)


class WizardState(str, Enum):
    DISCONNECTED = "disconnected"
    CONFIGURING = "configuring"
    REVIEW_PENDING = "review_pending"
    APPROVING = "approving"
    SUBMITTING = "submitting"
    COMPLETED = "completed"
    FAILED = "failed"


_BUSY_STATES = (WizardState.APPROVING, WizardState.SUBMITTING)
_TERMINAL_STATES = (WizardState.COMPLETED, WizardState.FAILED)


@dataclass(frozen=True)
class Draft:
    """User selections; amounts are human units of the loan currency."""

    token_id: int | None = None
    tier_id: str | None = None
    amount: Decimal | None = None
    term_months: int | None = None
    currency: str | None = None
    network: str | None = None


@dataclass(frozen=True)
class _ResolvedDraft:
    position: AssetPosition
    tier: LoanTier
    token: TokenInfo
    network: NetworkContext
    amount: Decimal
    principal: int
    duration_seconds: int


class OriginationWizard:
    """One wizard instance per wallet session."""

    def __init__(
        self,
        config: AppConfig,
        client_factory: Callable[[NetworkContext], LedgerClient] | None = None,
        diagnostics: DiagnosticsSink | None = None,
        resolver: AssetPositionResolver | None = None,
        calculator: LoanEconomicsCalculator | None = None,
        validator: PreflightValidator | None = None,
        allowance: AllowanceOrchestrator | None = None,
        submitter: OriginationSubmitter | None = None,
    ) -> None:
        self._config = config
        self._engine = config.engine
        self._diagnostics = diagnostics or LoggingDiagnostics()

        factory_kwargs = {"client_factory": client_factory} if client_factory else {}
        self._resolver = resolver or AssetPositionResolver(
            self._engine, diagnostics=self._diagnostics, **factory_kwargs
        )
        self._calculator = calculator or LoanEconomicsCalculator(
            diagnostics=self._diagnostics, **factory_kwargs
        )
        self._validator = validator or PreflightValidator(
            self._calculator, diagnostics=self._diagnostics, **factory_kwargs
        )
        self._allowance = allowance or AllowanceOrchestrator(
            self._engine, diagnostics=self._diagnostics, **factory_kwargs
        )
        self._submitter = submitter or OriginationSubmitter(
            self._engine, diagnostics=self._diagnostics, **factory_kwargs
        )

        self.state = WizardState.DISCONNECTED
        self.session: WalletSession | None = None
        self.network: NetworkContext | None = None
        self.snapshot = PositionSnapshot(connected=False)
        self.draft = Draft()
        self.terms: LoanTerms | None = None
        self.approval: ApprovalState | None = None
        self.last_error: OriginationError | None = None
        self.last_result: OriginationResult | None = None
        self._confirming = False

    # ------------------------------------------------------------------
    # Session
    # ------------------------------------------------------------------

    def _transition(self, new_state: WizardState) -> None:
        if new_state is not self.state:
            logger.debug("Wizard %s -> %s", self.state.value, new_state.value)
            self._diagnostics.record(
                "wizard.transition", source=self.state.value, target=new_state.value
            )
        self.state = new_state

    async def connect(self, provider: WalletProvider) -> PositionSnapshot:
        """Bind a wallet session and load its positions."""
        address = await provider.get_address()
        chain_id = await provider.get_chain_id()
        await self._bind(provider, address, chain_id)
        return self.snapshot

    async def _bind(self, provider: WalletProvider, address: str, chain_id: int) -> None:
        self._reset_draft()
        name = self._config.network_name_for_chain(chain_id)
        if name is None:
            self.session = None
            self.network = None
            self.snapshot = PositionSnapshot(connected=False)
            self._transition(WizardState.DISCONNECTED)
            raise NetworkMismatchError(f"Chain {chain_id} is not a supported network")

        self.session = WalletSession(
            address=address,
            chain_id=chain_id,
            can_sign=provider.can_sign,
            connected=True,
            provider=provider,
        )
        self.network = self._config.networks[name].to_context()
        self.draft = Draft(network=name)
        self._transition(WizardState.CONFIGURING)
        logger.info("Connected %s on %s", address, self.network.name)
        await self.refresh_positions()

    async def disconnect(self) -> None:
        self._reset_draft()
        self.session = None
        self.network = None
        self.snapshot = PositionSnapshot(connected=False)
        self._transition(WizardState.DISCONNECTED)

    async def on_chain_changed(self, chain_id: int) -> PositionSnapshot:
        """Re-resolve the network after the wallet switched chains."""
        if self.session is None or self.session.provider is None:
            raise NotConnectedError("Wallet not connected")
        if self.state in _BUSY_STATES:
            logger.warning("Chain changed to %d while %s", chain_id, self.state.value)
        await self._bind(self.session.provider, self.session.address, chain_id)
        return self.snapshot

    async def refresh_positions(self) -> PositionSnapshot:
        if self.network is None:
            self.snapshot = PositionSnapshot(connected=False)
            return self.snapshot
        self.snapshot = await self._resolver.resolve(self.session, self.network)
        return self.snapshot

    # ------------------------------------------------------------------
    # Draft
    # ------------------------------------------------------------------

    def _reset_draft(self) -> None:
        self.draft = Draft()
        self._invalidate_quote()
        self.last_error = None
        self.last_result = None

    def _invalidate_quote(self) -> None:
        self.terms = None
        self.approval = None

    def _ensure_idle(self, action: str) -> None:
        if self._confirming:
            raise InvalidTransitionError(
                f"Cannot {action} while a loan confirmation is in progress"
            )

    def _update_draft(self, **changes) -> None:
        if self.state is WizardState.DISCONNECTED:
            raise NotConnectedError("Connect a wallet before configuring a loan")
        self._ensure_idle("change the loan draft")
        if self.state in _BUSY_STATES or self.state in _TERMINAL_STATES:
            raise InvalidTransitionError(
                f"Cannot change the loan draft while {self.state.value}"
            )
        self.draft = replace(self.draft, **changes)
        if self.state is WizardState.REVIEW_PENDING:
            self._invalidate_quote()
            self._transition(WizardState.CONFIGURING)

    def select_asset(self, token_id: int) -> None:
        self._update_draft(token_id=token_id)

    def select_tier(self, tier_id: str) -> None:
        self._update_draft(tier_id=tier_id)

    def set_amount(self, amount: Decimal | str) -> None:
        self._update_draft(amount=Decimal(str(amount)))

    def set_term(self, months: int) -> None:
        self._update_draft(term_months=int(months))

    def select_currency(self, symbol: str) -> None:
        self._update_draft(currency=symbol)

    def select_network(self, name: str) -> None:
        if name not in self._config.networks:
            raise ConfigurationError(f"Unknown network '{name}'")
        self._update_draft(network=name)

    def _resolve_draft(self) -> _ResolvedDraft:
        if self.session is None or self.network is None:
            raise NotConnectedError("Wallet not connected")

        draft = self.draft
        missing = [
            label
            for label, value in (
                ("asset", draft.token_id),
                ("tier", draft.tier_id),
                ("amount", draft.amount),
                ("term", draft.term_months),
                ("currency", draft.currency),
            )
            if value is None
        ]
        if missing:
            raise DraftIncompleteError(f"Missing loan fields: {', '.join(missing)}")

        network_cfg = self._config.networks.get(draft.network or "")
        if network_cfg is None or network_cfg.chain_id != self.session.chain_id:
            raise NetworkMismatchError(
                f"Selected network '{draft.network}' does not match wallet chain "
                f"{self.session.chain_id}"
            )

        position = self.snapshot.get(draft.token_id)
        if position is None:
            raise OwnershipError(f"Asset #{draft.token_id} is not in this wallet")
        tier = self._config.tier(draft.tier_id)
        if tier is None:
            raise ConfigurationError(f"Unknown loan tier '{draft.tier_id}'")
        token = self.network.token(draft.currency)
        if token is None:
            raise TokenContractError(
                f"{draft.currency} is not available on {self.network.name}"
            )

        return _ResolvedDraft(
            position=position,
            tier=tier,
            token=token,
            network=self.network,
            amount=draft.amount,
            principal=parse_units(draft.amount, token.decimals),
            duration_seconds=months_to_seconds(draft.term_months),
        )

    def quote(self) -> LoanTerms:
        """Provisional terms for display; never used for a transaction."""
        resolved = self._resolve_draft()
        return self._calculator.estimate(
            resolved.position, resolved.principal, resolved.duration_seconds, resolved.tier
        )

    def max_loan_amount(self) -> Decimal:
        resolved = self._resolve_draft()
        return self._calculator.max_loan_amount(resolved.position, resolved.tier)

    # ------------------------------------------------------------------
    # Review / approve / confirm
    # ------------------------------------------------------------------

    async def review(self) -> ApprovalState:
        """Validate the draft, fetch authoritative terms and check allowance."""
        self._ensure_idle("review")
        if self.state not in (WizardState.CONFIGURING, WizardState.REVIEW_PENDING):
            raise InvalidTransitionError(f"Cannot review while {self.state.value}")
        try:
            return await self._review()
        except OriginationError as e:
            self.last_error = e
            raise

    async def _review(self) -> ApprovalState:
        resolved = self._resolve_draft()
        position, tier = resolved.position, resolved.tier
        if resolved.amount <= 0:
            raise LoanAmountError("Loan amount must be greater than zero")
        max_amount = self._calculator.max_loan_amount(position, tier)
        if resolved.amount > max_amount:
            raise LoanAmountError(
                f"Loan amount {resolved.amount} exceeds the maximum of {max_amount:.2f}"
            )
        self._calculator.check_ltv(resolved.amount, position, tier)
        if position.is_collateralized:
            raise CollateralConflict(
                f"Asset #{position.token_id} is already used as collateral"
            )
        if not position.can_be_collateralized:
            raise OwnershipError(
                f"Asset #{position.token_id} is not authorized or holds no amount"
            )

        terms = await self._calculator.recompute(
            resolved.network, resolved.principal, resolved.duration_seconds
        )
        approval = await self._allowance.check(
            resolved.network,
            self.session.address,
            resolved.network.lending_contract,
            resolved.token,
            terms.required_allowance(),
        )
        self.terms = terms
        self.approval = approval
        self.last_error = None
        self._transition(WizardState.REVIEW_PENDING)
        return approval

    async def approve(self, precision_buffer: int = 0) -> TxResult | None:
        """Approve the required allowance; returns None when none is needed."""
        self._ensure_idle("approve")
        if self.state is not WizardState.REVIEW_PENDING or self.terms is None:
            raise InvalidTransitionError(f"Cannot approve while {self.state.value}")
        if self.approval is not None and not self.approval.needs_approval:
            return None

        resolved = self._resolve_draft()
        required = self.terms.required_allowance()
        spender = resolved.network.lending_contract

        self._transition(WizardState.APPROVING)
        try:
            result = await self._allowance.approve(
                self.session,
                resolved.network,
                resolved.token,
                spender,
                required,
                precision_buffer,
            )
            self.approval = await self._allowance.check(
                resolved.network, self.session.address, spender, resolved.token, required
            )
        except OriginationError as e:
            self.last_error = e
            raise
        finally:
            self._transition(WizardState.REVIEW_PENDING)
        return result

    async def confirm(self) -> OriginationResult:
        """Run the preflight, then submit createLoan.

        The wizard stays reserved from the first check until the outcome is
        known, so a second confirm, an approval or a draft edit issued while
        the preflight is awaited is rejected.
        """
        self._ensure_idle("confirm")
        if self.state is not WizardState.REVIEW_PENDING:
            raise InvalidTransitionError(f"Cannot confirm while {self.state.value}")
        if self.terms is None or not self.terms.is_authoritative:
            raise InvalidTransitionError("Review the loan before confirming")
        if self._allowance.approving:
            raise InvalidTransitionError("Wait for the pending approval to confirm")

        self._confirming = True
        try:
            return await self._confirm()
        finally:
            self._confirming = False

    async def _confirm(self) -> OriginationResult:
        resolved = self._resolve_draft()
        try:
            report = await self._validator.validate(
                resolved.position,
                resolved.network,
                resolved.principal,
                resolved.duration_seconds,
                resolved.token,
                self.session,
            )
        except OriginationError as e:
            self.last_error = e
            raise

        if report.terms != self.terms:
            self.last_error = StaleQuoteError(
                "Loan terms changed since review; review the new quote"
            )
            self._invalidate_quote()
            self._transition(WizardState.CONFIGURING)
            raise self.last_error
        if self.state is not WizardState.REVIEW_PENDING or self.session is None:
            self.last_error = InvalidTransitionError(
                f"Wizard moved to {self.state.value} during the preflight"
            )
            raise self.last_error
        for warning in report.warnings:
            logger.warning("Preflight: %s", warning)

        address = self.session.address
        params = OriginationParams(
            token_id=resolved.position.token_id,
            account_id=account_id_for(address),
            duration_seconds=resolved.duration_seconds,
            principal=resolved.principal,
            token_address=resolved.token.address,
            origin_chain_id=resolved.network.chain_id,
            borrower=address,
            fallback_gas=resolved.tier.gas_estimate,
        )

        self._transition(WizardState.SUBMITTING)
        result = await self._submitter.submit(params, self.session, resolved.network)
        self.last_result = result
        if not result.succeeded:
            self.last_error = result.error
            self._transition(WizardState.FAILED)
            return result

        self._transition(WizardState.COMPLETED)
        logger.info("Loan created for asset #%d: %s", params.token_id, result.tx_hash)
        # Heuristic only: the RPC read path may not reflect the new loan yet.
        await asyncio.sleep(self._engine.settle_delay_seconds)
        try:
            await self.refresh_positions()
        except OriginationError as e:
            logger.warning("Could not refresh positions after loan creation: %s", e)
        return result

    def close(self) -> None:
        """Discard the draft and cached quotes; on-chain approvals remain valid."""
        self._ensure_idle("close the wizard")
        if self.state in _BUSY_STATES:
            raise InvalidTransitionError(f"Cannot close while {self.state.value}")
        self._reset_draft()
        if self.session is not None and self.network is not None:
            name = self._config.network_name_for_chain(self.session.chain_id)
            self.draft = Draft(network=name)
            self._transition(WizardState.CONFIGURING)
        else:
            self._transition(WizardState.DISCONNECTED)
