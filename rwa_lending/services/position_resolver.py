"""Asset position resolution: ledger reads merged with display metadata."""
from __future__ import annotations

import logging
from decimal import Decimal
from typing import Callable

from ..chains.evm import EvmClient
from ..config import EngineConfig
from ..diagnostics import LoggingDiagnostics
from ..errors import PositionFetchError
from ..interfaces.chain import LedgerClient
from ..interfaces.diagnostics import DiagnosticsSink
from ..interfaces.metadata import MetadataResolver
from ..metadata import HttpMetadataResolver
from ..models import (
    AssetPosition,
    DisplayMetadata,
    NetworkContext,
    PositionSnapshot,
    WalletSession,
    ZERO_ADDRESS,
)
from ..protocols.lending import LendingContract

logger = logging.getLogger(__name__)

_LEDGER_VALUE_DECIMALS = 18
DEFAULT_ASSET_TYPE = "Real World Asset"


def display_value(
    investment_amount: int,
    custody_amount: int,
    metadata: DisplayMetadata,
    unit_price: Decimal,
) -> Decimal:
    """Ledger-derived value, raised (never lowered) by a metadata-asserted value."""
    amount = investment_amount or custody_amount
    ledger_value = Decimal(amount) / (Decimal(10) ** _LEDGER_VALUE_DECIMALS) * unit_price
    return max(ledger_value, metadata.asserted_value)


class AssetPositionResolver:
    """Build the borrower's position snapshot for one network."""

    def __init__(
        self,
        engine: EngineConfig | None = None,
        client_factory: Callable[[NetworkContext], LedgerClient] = EvmClient,
        metadata_resolver: MetadataResolver | None = None,
        diagnostics: DiagnosticsSink | None = None,
    ) -> None:
        self._engine = engine or EngineConfig()
        self._client_factory = client_factory
        self._metadata = metadata_resolver or HttpMetadataResolver(
            self._engine.ipfs_gateway, self._engine.metadata_timeout
        )
        self._diagnostics = diagnostics or LoggingDiagnostics()

    async def resolve(
        self, session: WalletSession | None, network: NetworkContext
    ) -> PositionSnapshot:
        """Resolve every position held by the session's address.

        A missing or disconnected session yields a disconnected snapshot.
        Investment and detail reads are fatal (:class:`PositionFetchError`);
        loan and metadata lookups only degrade the result.
        """
        if session is None or not session.connected or not session.address:
            self._diagnostics.record("positions.disconnected")
            return PositionSnapshot(connected=False)

        owner = session.address
        contract = LendingContract(
            self._client_factory(network), network.lending_contract
        )
        logger.info("Resolving positions for %s on %s", owner, network.name)

        try:
            holdings = await contract.get_user_investments(owner)
        except Exception as e:
            self._diagnostics.record("positions.fetch_failed", owner=owner, error=str(e))
            raise PositionFetchError(f"Failed to read investments for {owner}: {e}") from e

        logger.info("Found %d holdings", len(holdings))
        active_loan_id = await self._first_active_loan(contract, owner) if holdings else None

        positions: list[AssetPosition] = []
        for token_id, custody_amount, authorized in holdings:
            try:
                detail = await contract.get_user_nft_detail(owner, token_id)
            except Exception as e:
                self._diagnostics.record(
                    "positions.fetch_failed", owner=owner, token_id=token_id, error=str(e)
                )
                raise PositionFetchError(
                    f"Failed to read details of asset #{token_id}: {e}"
                ) from e

            metadata = await self._resolve_metadata(contract, token_id)
            investment_amount = detail["amount"]
            token_address = detail["token_address"]
            if not token_address or token_address.lower() == ZERO_ADDRESS:
                token_address = network.lending_contract
            holds_value = custody_amount > 0 or investment_amount > 0
            collateralized = active_loan_id is not None and holds_value

            positions.append(
                AssetPosition(
                    token_id=token_id,
                    owner=owner,
                    is_authorized=authorized or detail["is_authorized"],
                    custody_amount=custody_amount,
                    investment_amount=investment_amount,
                    duration_seconds=detail["duration_seconds"],
                    interest_rate_bps=detail["interest_rate_bps"],
                    token_address=token_address,
                    metadata=metadata,
                    name=metadata.name or f"NFT Asset #{token_id}",
                    asset_type=metadata.asset_type or DEFAULT_ASSET_TYPE,
                    location=metadata.location or "",
                    display_value=display_value(
                        investment_amount,
                        custody_amount,
                        metadata,
                        self._engine.display_unit_price,
                    ),
                    is_collateralized=collateralized,
                    active_loan_id=active_loan_id if collateralized else None,
                )
            )

        self._diagnostics.record(
            "positions.resolved",
            owner=owner,
            count=len(positions),
            collateralized=sum(1 for p in positions if p.is_collateralized),
        )
        return PositionSnapshot(
            positions=tuple(positions),
            connected=True,
            owner=owner,
            chain_id=network.chain_id,
        )

    async def _first_active_loan(
        self, contract: LendingContract, owner: str
    ) -> int | None:
        """Id of the owner's first active loan.

        Loans are not mapped back to a specific collateral token, so any
        active loan marks every funded position as collateralized.
        """
        try:
            loan_ids = await contract.get_user_loans(owner)
        except Exception as e:
            logger.warning("Could not read loans for %s: %s", owner, e)
            self._diagnostics.record("positions.loans_unavailable", owner=owner, error=str(e))
            return None

        for loan_id in loan_ids:
            try:
                record = await contract.get_loan_by_id(loan_id)
            except Exception as e:
                logger.warning("Could not read loan %d: %s", loan_id, e)
                continue
            if record.is_active:
                return loan_id
        return None

    async def _resolve_metadata(
        self, contract: LendingContract, token_id: int
    ) -> DisplayMetadata:
        try:
            uri = await contract.token_uri(token_id)
            return await self._metadata.resolve(uri)
        except Exception as e:
            logger.warning("Metadata unavailable for asset #%d: %s", token_id, e)
            self._diagnostics.record("positions.metadata_failed", token_id=token_id, error=str(e))
            return DisplayMetadata.absent()
