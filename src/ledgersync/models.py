"""Data models for accounts, transactions, snapshots and sync results."""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Any

CENTS = Decimal("0.01")


class Provider(str, Enum):
    """External data sources an account can be synced from."""

    SIMPLEFIN = "SimpleFIN"
    SOLANA = "Solana"


def utc_now() -> datetime:
    """Return the current time as an aware UTC datetime."""
    return datetime.now(timezone.utc)


def to_usd(value: Decimal | float | int | str) -> Decimal:
    """Convert a numeric value to a Decimal rounded to cents."""
    return Decimal(str(value)).quantize(CENTS)


@dataclass(frozen=True)
class SimpleFINMetadata:
    """Provider-owned details for a SimpleFIN account."""

    org_domain: str | None = None
    org_name: str | None = None
    currency: str | None = None
    available_balance: Decimal | None = None
    balance_date: datetime | None = None


@dataclass(frozen=True)
class TokenHolding:
    """A non-zero SPL token balance held by a wallet."""

    mint: str
    symbol: str
    name: str
    decimals: int
    balance: Decimal
    price_usd: Decimal | None = None
    value_usd: Decimal | None = None


@dataclass(frozen=True)
class WalletMetadata:
    """Provider-owned details for a Solana wallet."""

    sol_balance: Decimal
    sol_price_usd: Decimal | None = None
    sol_value_usd: Decimal | None = None
    tokens: tuple[TokenHolding, ...] = ()

    @property
    def token_count(self) -> int:
        """Number of token holdings."""
        return len(self.tokens)


AccountMetadata = SimpleFINMetadata | WalletMetadata


def _dec(value: Any) -> Decimal | None:
    return None if value is None else Decimal(str(value))


def _iso(value: datetime | None) -> str | None:
    return value.isoformat() if value else None


def _parse_iso(value: str | None) -> datetime | None:
    return datetime.fromisoformat(value) if value else None


def metadata_to_dict(metadata: AccountMetadata | None) -> dict[str, Any] | None:
    """Serialize account metadata to a JSON-safe dict tagged with its kind."""
    if metadata is None:
        return None

    if isinstance(metadata, SimpleFINMetadata):
        return {
            "kind": "simplefin",
            "org_domain": metadata.org_domain,
            "org_name": metadata.org_name,
            "currency": metadata.currency,
            "available_balance": (
                str(metadata.available_balance)
                if metadata.available_balance is not None
                else None
            ),
            "balance_date": _iso(metadata.balance_date),
        }

    return {
        "kind": "wallet",
        "sol_balance": str(metadata.sol_balance),
        "sol_price_usd": str(metadata.sol_price_usd) if metadata.sol_price_usd is not None else None,
        "sol_value_usd": str(metadata.sol_value_usd) if metadata.sol_value_usd is not None else None,
        "token_count": metadata.token_count,
        "tokens": [
            {
                "mint": t.mint,
                "symbol": t.symbol,
                "name": t.name,
                "decimals": t.decimals,
                "balance": str(t.balance),
                "price_usd": str(t.price_usd) if t.price_usd is not None else None,
                "value_usd": str(t.value_usd) if t.value_usd is not None else None,
            }
            for t in metadata.tokens
        ],
    }


def metadata_from_dict(data: dict[str, Any] | None) -> AccountMetadata | None:
    """Rebuild account metadata from its serialized form.

    Raises:
        ValueError: If the ``kind`` tag is missing or unknown
    """
    if not data:
        return None

    kind = data.get("kind")
    if kind == "simplefin":
        return SimpleFINMetadata(
            org_domain=data.get("org_domain"),
            org_name=data.get("org_name"),
            currency=data.get("currency"),
            available_balance=_dec(data.get("available_balance")),
            balance_date=_parse_iso(data.get("balance_date")),
        )
    if kind == "wallet":
        return WalletMetadata(
            sol_balance=Decimal(data["sol_balance"]),
            sol_price_usd=_dec(data.get("sol_price_usd")),
            sol_value_usd=_dec(data.get("sol_value_usd")),
            tokens=tuple(
                TokenHolding(
                    mint=t["mint"],
                    symbol=t["symbol"],
                    name=t["name"],
                    decimals=int(t["decimals"]),
                    balance=Decimal(t["balance"]),
                    price_usd=_dec(t.get("price_usd")),
                    value_usd=_dec(t.get("value_usd")),
                )
                for t in data.get("tokens", [])
            ),
        )

    raise ValueError(f"Unknown metadata kind: {kind!r}")


@dataclass
class Account:
    """A financial holding tracked locally."""

    owner_id: str
    provider: Provider
    external_id: str
    name: str
    account_type: str = "other"
    balance: Decimal | None = None
    last_synced_at: datetime | None = None
    include_in_net_worth: bool = True
    is_hidden: bool = False
    category: str | None = None
    metadata: AccountMetadata | None = None
    id: str | None = None


@dataclass
class Transaction:
    """A ledger entry belonging to one account."""

    account_id: str
    external_id: str
    posted_at: datetime
    amount: Decimal
    description: str
    payee: str | None = None
    memo: str | None = None
    pending: bool = False
    label_id: str | None = None
    id: str | None = None

    @property
    def is_expense(self) -> bool:
        """Return True if this is an expense (negative amount)."""
        return self.amount < 0

    @property
    def is_income(self) -> bool:
        """Return True if this is income (positive amount)."""
        return self.amount > 0


@dataclass(frozen=True)
class Snapshot:
    """Immutable point-in-time balance observation for one account."""

    account_id: str
    timestamp: datetime
    value: Decimal
    id: str | None = None


@dataclass
class Credential:
    """Secret reference used to re-authenticate with a provider."""

    owner_id: str
    provider: Provider
    access_token: str
    updated_at: datetime = field(default_factory=utc_now)


@dataclass(frozen=True)
class RemoteTransaction:
    """A transaction as reported by a provider."""

    external_id: str
    posted_at: datetime
    amount: Decimal
    description: str
    payee: str | None = None
    memo: str | None = None
    pending: bool = False


@dataclass(frozen=True)
class RemoteAccount:
    """An account as reported by a provider."""

    external_id: str
    name: str
    account_type: str
    balance: Decimal | None
    metadata: AccountMetadata | None = None


@dataclass
class RemoteAccountSet:
    """Everything one provider call returned, including partial errors."""

    accounts: list[RemoteAccount] = field(default_factory=list)
    transactions: dict[str, list[RemoteTransaction]] = field(default_factory=dict)
    errors: list[str] = field(default_factory=list)

    def extend(self, other: "RemoteAccountSet") -> None:
        """Merge another result set into this one."""
        self.accounts.extend(other.accounts)
        for external_id, txs in other.transactions.items():
            self.transactions.setdefault(external_id, []).extend(txs)
        self.errors.extend(other.errors)


@dataclass
class ReconcileResult:
    """Outcome of reconciling one provider's remote data."""

    success: bool
    account_count: int = 0
    error: str | None = None


@dataclass
class SyncResult:
    """Outcome of syncing one provider."""

    success: bool
    synced: int = 0
    error: str | None = None


@dataclass
class SyncAllResult:
    """Per-provider outcomes of a sync across every provider."""

    per_provider: dict[Provider, SyncResult]
    total_synced: int = 0

    @property
    def success(self) -> bool:
        """True when every provider synced without error."""
        return all(result.success for result in self.per_provider.values())


@dataclass
class ConnectResult:
    """Outcome of connecting a new provider account."""

    success: bool
    account_count: int = 0
    error: str | None = None
    total_value: Decimal | None = None
    token_count: int | None = None


@dataclass
class OperationResult:
    """Outcome of a simple mutating operation."""

    success: bool
    error: str | None = None


@dataclass
class AccountList:
    """Accounts visible to the caller."""

    success: bool
    accounts: list[Account] = field(default_factory=list)
    error: str | None = None


@dataclass
class TransactionList:
    """Transactions visible to the caller, newest first."""

    success: bool
    transactions: list[Transaction] = field(default_factory=list)
    account_names: dict[str, str] = field(default_factory=dict)
    error: str | None = None


@dataclass(frozen=True)
class HistoryPoint:
    """One bucket of the reconstructed net-worth time series."""

    timestamp: datetime
    value: Decimal


@dataclass
class PortfolioValue:
    """Current total of all accounts included in net worth."""

    total_value: Decimal = Decimal("0")
    account_count: int = 0
    last_synced: datetime | None = None


@dataclass
class PortfolioChange:
    """Change in portfolio value relative to roughly 24 hours ago."""

    change_24h: Decimal
    change_percent_24h: Decimal
