"""Unit tests for data models."""
from __future__ import annotations

from dataclasses import replace
from decimal import Decimal

import pytest

from rwa_lending.errors import CalculationError
from rwa_lending.models import (
    MAX_LOAN_DURATION,
    MIN_LOAN_DURATION,
    SECONDS_PER_DAY,
    AssetPosition,
    DisplayMetadata,
    LoanTerms,
    MetadataSource,
    PositionSnapshot,
    Provenance,
    TokenInfo,
    TxResult,
    WalletSession,
    ZERO_ADDRESS,
    months_to_seconds,
    payment_periods,
)


def _terms(**overrides) -> LoanTerms:
    values = dict(
        principal=10_000,
        duration_seconds=180 * SECONDS_PER_DAY,
        interest_rate_bps=850,
        total_debt=10_425,
        buffer_amount=500,
        monthly_payment=1_737,
        provenance=Provenance.AUTHORITATIVE,
    )
    values.update(overrides)
    return LoanTerms(**values)


class TestPaymentPeriods:
    def test_minimum_duration_is_one_period(self) -> None:
        assert payment_periods(MIN_LOAN_DURATION) == 1

    def test_maximum_duration_is_twelve_periods(self) -> None:
        assert payment_periods(MAX_LOAN_DURATION) == 12

    def test_every_valid_duration_has_a_period(self) -> None:
        for days in range(30, 366):
            assert payment_periods(days * SECONDS_PER_DAY) >= 1

    def test_months_to_seconds(self) -> None:
        assert months_to_seconds(6) == 180 * SECONDS_PER_DAY


class TestLoanTerms:
    def test_required_allowance_doubles_buffer(self) -> None:
        assert _terms().required_allowance() == 10_000 + 2 * 500

    def test_provisional_terms_cannot_produce_allowance(self) -> None:
        terms = _terms(buffer_amount=None, provenance=Provenance.PROVISIONAL)
        with pytest.raises(CalculationError):
            terms.required_allowance()

    def test_periods(self) -> None:
        assert _terms().periods == 6

    def test_frozen(self) -> None:
        with pytest.raises(AttributeError):
            _terms().total_debt = 0  # type: ignore[misc]


class TestAssetPosition:
    def test_eligible(self, sample_position: AssetPosition) -> None:
        assert sample_position.can_be_collateralized is True

    def test_collateralized_is_not_eligible(self, sample_position: AssetPosition) -> None:
        pos = replace(sample_position, is_collateralized=True, active_loan_id=3)
        assert pos.can_be_collateralized is False

    def test_unauthorized_or_empty_is_not_eligible(
        self, sample_position: AssetPosition
    ) -> None:
        assert not replace(sample_position, is_authorized=False).can_be_collateralized
        assert not replace(sample_position, custody_amount=0).can_be_collateralized

    def test_snapshot_lookup_and_eligible(self, sample_position: AssetPosition) -> None:
        snapshot = PositionSnapshot(positions=(sample_position,), owner="0x1")
        assert snapshot.get(7) is sample_position
        assert snapshot.get(8) is None
        assert snapshot.eligible == (sample_position,)


class TestDisplayMetadata:
    DOC = {
        "name": "Harbor View",
        "attributes": [
            {"trait_type": "Type", "value": "Real Estate"},
            {"trait_type": "Value (USD)", "value": "$250,000"},
            {"trait_type": "Location", "value": "Lisbon"},
        ],
    }

    def test_accessors(self) -> None:
        meta = DisplayMetadata(source=MetadataSource.EMBEDDED, document=self.DOC)
        assert meta.name == "Harbor View"
        assert meta.asset_type == "Real Estate"
        assert meta.location == "Lisbon"
        assert meta.asserted_value == Decimal("250000")

    def test_absent_has_no_fields(self) -> None:
        meta = DisplayMetadata.absent("ipfs://x")
        assert meta.source is MetadataSource.ABSENT
        assert meta.uri == "ipfs://x"
        assert meta.name is None
        assert meta.asserted_value == 0

    def test_unparseable_value_is_zero(self) -> None:
        doc = {"attributes": [{"trait_type": "Value", "value": "priceless"}]}
        meta = DisplayMetadata(source=MetadataSource.REMOTE, document=doc)
        assert meta.asserted_value == 0

    def test_negative_value_is_zero(self) -> None:
        doc = {"attributes": [{"trait_type": "Value", "value": -5}]}
        meta = DisplayMetadata(source=MetadataSource.REMOTE, document=doc)
        assert meta.asserted_value == 0


class TestMisc:
    def test_native_token(self) -> None:
        assert TokenInfo(address=ZERO_ADDRESS, symbol="ETH").is_native
        assert not TokenInfo(address="0x" + "a" * 40, symbol="USDC").is_native

    def test_disconnected_session(self) -> None:
        s = WalletSession.disconnected()
        assert s.connected is False
        assert s.can_sign is False

    def test_tx_result_from_hex_receipt(self) -> None:
        result = TxResult.from_receipt(
            {"transactionHash": "0xabc", "status": "0x1", "blockNumber": "0x10", "gasUsed": "0x5208"}
        )
        assert result == TxResult(tx_hash="0xabc", status=1, block_number=16, gas_used=21000)
