"""Typed wrapper around the lending diamond's view and loan facets."""
from __future__ import annotations

import logging
from typing import Any

from ...interfaces.chain import LedgerClient
from ...models import LoanRecord, OriginationParams
from . import abi, parser

logger = logging.getLogger(__name__)


class LendingContract:
    """Read and build calls against one deployment of the lending contract."""

    def __init__(self, client: LedgerClient, address: str) -> None:
        self._client = client
        self.address = address

    async def _call(
        self, fn: abi.AbiFunction, *args: Any, sender: str | None = None
    ) -> tuple[Any, ...]:
        data = await self._client.eth_call(self.address, fn.encode_call(*args), sender)
        return fn.decode_output(data)

    # --- view facet ----------------------------------------------------------

    async def get_user_investments(
        self, owner: str
    ) -> list[tuple[int, int, bool]]:
        """Return ``(token_id, amount, is_authorized)`` for every holding."""
        token_ids, amounts, authorized = await self._call(abi.GET_USER_INVESTMENTS, owner)
        return [
            (int(tid), int(amt), bool(auth))
            for tid, amt, auth in zip(token_ids, amounts, authorized)
        ]

    async def get_user_nft_detail(self, owner: str, token_id: int) -> dict[str, Any]:
        is_auth, amount, duration, rate, token_address = await self._call(
            abi.GET_USER_NFT_DETAIL, owner, token_id
        )
        return {
            "is_authorized": bool(is_auth),
            "amount": int(amount),
            "duration_seconds": int(duration),
            "interest_rate_bps": int(rate),
            "token_address": token_address,
        }

    async def get_user_loans(self, owner: str) -> list[int]:
        (loan_ids,) = await self._call(abi.GET_USER_LOANS, owner)
        return [int(loan_id) for loan_id in loan_ids]

    async def get_loan_by_id(self, loan_id: int) -> LoanRecord:
        (raw,) = await self._call(abi.GET_LOAN_BY_ID, loan_id)
        return parser.parse_loan_record(raw)

    async def calculate_interest_rate(self, duration_seconds: int) -> int:
        (rate,) = await self._call(abi.CALCULATE_INTEREST_RATE, duration_seconds)
        return int(rate)

    async def calculate_loan_terms(
        self, principal: int, duration_seconds: int
    ) -> tuple[int, int]:
        """Return ``(total_debt, buffer_amount)`` as computed by the contract."""
        total_debt, buffer_amount = await self._call(
            abi.CALCULATE_LOAN_TERMS, principal, duration_seconds
        )
        return int(total_debt), int(buffer_amount)

    async def validate_loan_creation_view(
        self, token_id: int, duration_seconds: int, sender: str | None = None
    ) -> None:
        """Dry-run the contract's own creation checks; raises on revert."""
        await self._call(
            abi.VALIDATE_LOAN_CREATION_VIEW, token_id, duration_seconds, sender=sender
        )

    async def token_uri(self, token_id: int) -> str:
        (uri,) = await self._call(abi.TOKEN_URI, token_id)
        return uri

    # --- loan facet ----------------------------------------------------------

    def build_create_loan_tx(
        self, params: OriginationParams, gas_limit: int | None = None
    ) -> dict[str, Any]:
        data = abi.CREATE_LOAN.encode_call(
            params.token_id,
            params.account_id,
            params.duration_seconds,
            params.principal,
            params.token_address,
            params.origin_chain_id,
            params.borrower,
        )
        tx: dict[str, Any] = {"from": params.borrower, "to": self.address, "data": data}
        if gas_limit is not None:
            tx["gas"] = gas_limit
        return tx

    async def estimate_create_loan_gas(self, params: OriginationParams) -> int:
        gas = await self._client.estimate_gas(self.build_create_loan_tx(params))
        logger.debug("createLoan gas estimate for token %d: %d", params.token_id, gas)
        return gas
