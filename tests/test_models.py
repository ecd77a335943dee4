"""Tests for data models."""

from datetime import datetime, timezone
from decimal import Decimal

import pytest

from ledgersync.models import (
    Provider,
    RemoteAccount,
    RemoteAccountSet,
    RemoteTransaction,
    SimpleFINMetadata,
    SyncAllResult,
    SyncResult,
    TokenHolding,
    Transaction,
    WalletMetadata,
    metadata_from_dict,
    metadata_to_dict,
    to_usd,
)

POSTED = datetime(2024, 1, 15, tzinfo=timezone.utc)


class TestTransaction:
    """Tests for Transaction model."""

    def test_is_expense(self) -> None:
        """Test is_expense and is_income properties."""
        expense = Transaction(
            account_id="acc", external_id="T1", posted_at=POSTED,
            amount=Decimal("-100"), description="Rent",
        )
        income = Transaction(
            account_id="acc", external_id="T2", posted_at=POSTED,
            amount=Decimal("100"), description="Salary",
        )
        assert expense.is_expense is True
        assert expense.is_income is False
        assert income.is_expense is False
        assert income.is_income is True


class TestToUsd:
    """Tests for to_usd function."""

    def test_rounds_to_cents(self) -> None:
        assert to_usd(Decimal("12.345678")) == Decimal("12.35")
        assert to_usd("3") == Decimal("3.00")

    def test_float_goes_through_str(self) -> None:
        """Test binary float noise does not leak into the result."""
        assert to_usd(0.1 + 0.2) == Decimal("0.30")


class TestMetadata:
    """Tests for metadata serialization."""

    def test_simplefin_round_trip(self) -> None:
        metadata = SimpleFINMetadata(
            org_domain="bank.example.com",
            org_name="Example Bank",
            currency="USD",
            available_balance=Decimal("950.25"),
            balance_date=POSTED,
        )

        data = metadata_to_dict(metadata)

        assert data is not None
        assert data["kind"] == "simplefin"
        assert data["available_balance"] == "950.25"
        assert metadata_from_dict(data) == metadata

    def test_wallet_includes_token_count(self) -> None:
        metadata = WalletMetadata(
            sol_balance=Decimal("2.5"),
            sol_price_usd=Decimal("150.26"),
            sol_value_usd=Decimal("375.65"),
            tokens=(
                TokenHolding(
                    mint="mint-1", symbol="USDC", name="USD Coin", decimals=6,
                    balance=Decimal("100.5"), price_usd=Decimal("0.9998"),
                    value_usd=Decimal("100.48"),
                ),
            ),
        )

        data = metadata_to_dict(metadata)

        assert data is not None
        assert data["kind"] == "wallet"
        assert data["token_count"] == 1
        assert metadata_from_dict(data) == metadata

    def test_none(self) -> None:
        assert metadata_to_dict(None) is None
        assert metadata_from_dict(None) is None

    def test_unknown_kind(self) -> None:
        with pytest.raises(ValueError, match="Unknown metadata kind"):
            metadata_from_dict({"kind": "brokerage"})


class TestRemoteAccountSet:
    """Tests for merging provider results."""

    def test_extend(self) -> None:
        tx = RemoteTransaction(
            external_id="T1", posted_at=POSTED, amount=Decimal("-1"), description="Fee"
        )
        first = RemoteAccountSet(
            accounts=[RemoteAccount("A", "A", "checking", Decimal("1"))],
            transactions={"A": [tx]},
        )
        second = RemoteAccountSet(
            accounts=[RemoteAccount("B", "B", "crypto", Decimal("2"))],
            transactions={"A": [tx]},
            errors=["partial"],
        )

        first.extend(second)

        assert [a.external_id for a in first.accounts] == ["A", "B"]
        assert len(first.transactions["A"]) == 2
        assert first.errors == ["partial"]


class TestSyncAllResult:
    """Tests for the aggregate result."""

    def test_success_requires_every_provider(self) -> None:
        ok = SyncAllResult(
            per_provider={
                Provider.SIMPLEFIN: SyncResult(success=True, synced=2),
                Provider.SOLANA: SyncResult(success=True, synced=1),
            },
            total_synced=3,
        )
        mixed = SyncAllResult(
            per_provider={
                Provider.SIMPLEFIN: SyncResult(success=False, error="down"),
                Provider.SOLANA: SyncResult(success=True, synced=1),
            },
            total_synced=1,
        )
        assert ok.success
        assert not mixed.success
