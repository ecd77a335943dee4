"""Storage port and its in-memory and SQLAlchemy implementations."""

import logging
from abc import ABC, abstractmethod
from collections.abc import Iterable, Iterator
from contextlib import AbstractContextManager, contextmanager
from dataclasses import replace
from datetime import datetime

from sqlalchemy import delete, select
from sqlalchemy.engine import Engine
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

from ledgersync.db import (
    AccountRow,
    Base,
    CredentialRow,
    SnapshotRow,
    TransactionRow,
    create_ledger_engine,
    generate_id,
)
from ledgersync.errors import RecordWriteError, StorageError, StorageUnavailableError
from ledgersync.models import (
    Account,
    Credential,
    Provider,
    Snapshot,
    Transaction,
    metadata_from_dict,
    metadata_to_dict,
)

logger = logging.getLogger(__name__)


class StoragePort(ABC):
    """Persistence operations the sync engine and reconstructor rely on.

    Implementations must serialize conflicting writes and enforce the
    uniqueness of (owner, provider, external id) for accounts and
    (account id, external id) for transactions.
    """

    @abstractmethod
    def transaction(self) -> AbstractContextManager[None]:
        """
        Context manager grouping writes into one unit.

        Either every write inside the block is kept or, when the block
        raises, none of them is. Blocks may nest; only the outermost
        one commits.
        """
        pass

    @abstractmethod
    def get_account(self, owner_id: str, provider: Provider, external_id: str) -> Account | None:
        """Look up an account by its provider-native identifier."""
        pass

    @abstractmethod
    def get_account_by_id(self, owner_id: str, account_id: str) -> Account | None:
        """Look up an account by its local id, scoped to an owner."""
        pass

    @abstractmethod
    def list_accounts(
        self,
        owner_id: str,
        provider: Provider | None = None,
        include_in_net_worth: bool | None = None,
    ) -> list[Account]:
        """
        List an owner's accounts, ordered by name.

        Args:
            owner_id: Owner to list accounts for
            provider: Only accounts from this provider
            include_in_net_worth: Only accounts with this flag value

        Returns:
            List of Account objects
        """
        pass

    @abstractmethod
    def insert_account(self, account: Account) -> Account:
        """
        Insert a new account.

        Returns:
            The stored account with its local id assigned

        Raises:
            RecordWriteError: If (owner, provider, external id) already exists
        """
        pass

    @abstractmethod
    def update_account(self, account: Account) -> None:
        """Replace a stored account's fields (matched by local id)."""
        pass

    @abstractmethod
    def delete_account(self, owner_id: str, account_id: str) -> bool:
        """Delete an account with its snapshots and transactions."""
        pass

    @abstractmethod
    def get_transaction(self, account_id: str, external_id: str) -> Transaction | None:
        """Look up a transaction by its provider-native identifier."""
        pass

    @abstractmethod
    def get_transaction_by_id(self, transaction_id: str) -> Transaction | None:
        """Look up a transaction by its local id."""
        pass

    @abstractmethod
    def insert_transaction(self, transaction: Transaction) -> Transaction:
        """Insert a new transaction and return it with its id assigned."""
        pass

    @abstractmethod
    def update_transaction(self, transaction: Transaction) -> None:
        """Replace a stored transaction's fields (matched by local id)."""
        pass

    @abstractmethod
    def list_transactions(
        self, account_ids: Iterable[str], limit: int | None = None
    ) -> list[Transaction]:
        """List transactions for the given accounts, newest first."""
        pass

    @abstractmethod
    def insert_snapshot(self, snapshot: Snapshot) -> Snapshot:
        """Append a snapshot and return it with its id assigned."""
        pass

    @abstractmethod
    def query_snapshots(
        self,
        account_ids: Iterable[str],
        start: datetime | None = None,
        end: datetime | None = None,
    ) -> list[Snapshot]:
        """
        Fetch snapshots for a set of accounts, ascending by timestamp.

        Args:
            account_ids: Accounts to include
            start: Inclusive lower bound
            end: Inclusive upper bound

        Returns:
            List of Snapshot objects
        """
        pass

    @abstractmethod
    def get_credential(self, owner_id: str, provider: Provider) -> Credential | None:
        """Load the stored credential for an owner and provider."""
        pass

    @abstractmethod
    def upsert_credential(self, credential: Credential) -> None:
        """Insert or replace the credential for (owner, provider)."""
        pass


class InMemoryStorage(StoragePort):
    """Dict-backed storage. Returned records are copies of the stored ones."""

    def __init__(self) -> None:
        self._accounts: dict[str, Account] = {}
        self._transactions: dict[str, Transaction] = {}
        self._snapshots: list[Snapshot] = []
        self._credentials: dict[tuple[str, Provider], Credential] = {}

    @contextmanager
    def transaction(self) -> Iterator[None]:
        # Stored records are never mutated in place, so shallow copies suffice
        saved = (
            dict(self._accounts),
            dict(self._transactions),
            list(self._snapshots),
            dict(self._credentials),
        )
        try:
            yield
        except BaseException:
            self._accounts, self._transactions, self._snapshots, self._credentials = saved
            raise

    def get_account(self, owner_id: str, provider: Provider, external_id: str) -> Account | None:
        for account in self._accounts.values():
            if (
                account.owner_id == owner_id
                and account.provider == provider
                and account.external_id == external_id
            ):
                return replace(account)
        return None

    def get_account_by_id(self, owner_id: str, account_id: str) -> Account | None:
        account = self._accounts.get(account_id)
        if account is None or account.owner_id != owner_id:
            return None
        return replace(account)

    def list_accounts(
        self,
        owner_id: str,
        provider: Provider | None = None,
        include_in_net_worth: bool | None = None,
    ) -> list[Account]:
        accounts = [
            replace(a)
            for a in self._accounts.values()
            if a.owner_id == owner_id
            and (provider is None or a.provider == provider)
            and (include_in_net_worth is None or a.include_in_net_worth == include_in_net_worth)
        ]
        accounts.sort(key=lambda a: a.name)
        return accounts

    def insert_account(self, account: Account) -> Account:
        if self.get_account(account.owner_id, account.provider, account.external_id):
            raise RecordWriteError(
                f"Account already exists: {account.provider.value}/{account.external_id}"
            )
        stored = replace(account, id=account.id or generate_id())
        self._accounts[stored.id] = stored  # type: ignore[index]
        return replace(stored)

    def update_account(self, account: Account) -> None:
        if account.id not in self._accounts:
            raise RecordWriteError(f"Account not found: {account.id}")
        self._accounts[account.id] = replace(account)

    def delete_account(self, owner_id: str, account_id: str) -> bool:
        account = self._accounts.get(account_id)
        if account is None or account.owner_id != owner_id:
            return False
        del self._accounts[account_id]
        self._snapshots = [s for s in self._snapshots if s.account_id != account_id]
        self._transactions = {
            tx_id: tx for tx_id, tx in self._transactions.items() if tx.account_id != account_id
        }
        return True

    def get_transaction(self, account_id: str, external_id: str) -> Transaction | None:
        for tx in self._transactions.values():
            if tx.account_id == account_id and tx.external_id == external_id:
                return replace(tx)
        return None

    def get_transaction_by_id(self, transaction_id: str) -> Transaction | None:
        tx = self._transactions.get(transaction_id)
        return replace(tx) if tx else None

    def insert_transaction(self, transaction: Transaction) -> Transaction:
        if transaction.account_id not in self._accounts:
            raise RecordWriteError(f"Account not found: {transaction.account_id}")
        if self.get_transaction(transaction.account_id, transaction.external_id):
            raise RecordWriteError(f"Transaction already exists: {transaction.external_id}")
        stored = replace(transaction, id=transaction.id or generate_id())
        self._transactions[stored.id] = stored  # type: ignore[index]
        return replace(stored)

    def update_transaction(self, transaction: Transaction) -> None:
        if transaction.id not in self._transactions:
            raise RecordWriteError(f"Transaction not found: {transaction.id}")
        self._transactions[transaction.id] = replace(transaction)

    def list_transactions(
        self, account_ids: Iterable[str], limit: int | None = None
    ) -> list[Transaction]:
        wanted = set(account_ids)
        txs = [replace(tx) for tx in self._transactions.values() if tx.account_id in wanted]
        txs.sort(key=lambda t: t.posted_at, reverse=True)
        return txs[:limit] if limit is not None else txs

    def insert_snapshot(self, snapshot: Snapshot) -> Snapshot:
        if snapshot.account_id not in self._accounts:
            raise RecordWriteError(f"Account not found: {snapshot.account_id}")
        stored = replace(snapshot, id=snapshot.id or generate_id())
        self._snapshots.append(stored)
        return stored

    def query_snapshots(
        self,
        account_ids: Iterable[str],
        start: datetime | None = None,
        end: datetime | None = None,
    ) -> list[Snapshot]:
        wanted = set(account_ids)
        result = [
            s
            for s in self._snapshots
            if s.account_id in wanted
            and (start is None or s.timestamp >= start)
            and (end is None or s.timestamp <= end)
        ]
        # sort() is stable, so equal timestamps keep insertion order
        result.sort(key=lambda s: s.timestamp)
        return result

    def get_credential(self, owner_id: str, provider: Provider) -> Credential | None:
        credential = self._credentials.get((owner_id, provider))
        return replace(credential) if credential else None

    def upsert_credential(self, credential: Credential) -> None:
        self._credentials[(credential.owner_id, credential.provider)] = replace(credential)


def _to_account(row: AccountRow) -> Account:
    return Account(
        id=row.id,
        owner_id=row.owner_id,
        provider=Provider(row.provider),
        external_id=row.external_id,
        name=row.name,
        account_type=row.account_type,
        balance=row.balance,
        last_synced_at=row.last_synced_at,
        include_in_net_worth=row.include_in_net_worth,
        is_hidden=row.is_hidden,
        category=row.category,
        metadata=metadata_from_dict(row.metadata_json),
    )


def _to_transaction(row: TransactionRow) -> Transaction:
    return Transaction(
        id=row.id,
        account_id=row.account_id,
        external_id=row.external_id,
        posted_at=row.posted_at,
        amount=row.amount,
        description=row.description,
        payee=row.payee,
        memo=row.memo,
        pending=row.pending,
        label_id=row.label_id,
    )


def _to_snapshot(row: SnapshotRow) -> Snapshot:
    return Snapshot(id=row.id, account_id=row.account_id, timestamp=row.timestamp, value=row.value)


def _storage_error(error: SQLAlchemyError) -> StorageError:
    if isinstance(error, IntegrityError):
        return RecordWriteError(f"Constraint violation: {error.orig}")
    return StorageUnavailableError(f"Database error: {error}")


class SqlAlchemyStorage(StoragePort):
    """
    Storage backed by a SQL database through SQLAlchemy.

    Every public call runs in its own session and commits on success.
    Inside ``transaction()`` calls share one session and commit together.
    Database errors surface as RecordWriteError (constraint violations)
    or StorageUnavailableError (anything else).
    An instance is meant for one thread; the sync engine only calls it from
    the event loop thread and never awaits inside a transaction.
    """

    def __init__(self, engine: Engine | str) -> None:
        self.engine = create_ledger_engine(engine) if isinstance(engine, str) else engine
        try:
            Base.metadata.create_all(self.engine)
        except SQLAlchemyError as e:
            raise StorageUnavailableError(f"Could not open ledger database: {e}") from e
        self._sessions = sessionmaker(bind=self.engine, autoflush=False, expire_on_commit=False)
        self._active: Session | None = None
        logger.debug("Opened ledger database %s", self.engine.url)

    @contextmanager
    def _session(self) -> Iterator[Session]:
        if self._active is not None:
            try:
                yield self._active
            except SQLAlchemyError as e:
                raise _storage_error(e) from e
            return

        session = self._sessions()
        self._active = session
        try:
            yield session
            session.commit()
        except BaseException as e:
            session.rollback()
            if isinstance(e, SQLAlchemyError):
                raise _storage_error(e) from e
            raise
        finally:
            self._active = None
            session.close()

    @contextmanager
    def transaction(self) -> Iterator[None]:
        with self._session():
            yield

    def get_account(self, owner_id: str, provider: Provider, external_id: str) -> Account | None:
        with self._session() as session:
            row = session.scalars(
                select(AccountRow).where(
                    AccountRow.owner_id == owner_id,
                    AccountRow.provider == provider.value,
                    AccountRow.external_id == external_id,
                )
            ).one_or_none()
            return _to_account(row) if row else None

    def get_account_by_id(self, owner_id: str, account_id: str) -> Account | None:
        with self._session() as session:
            row = session.get(AccountRow, account_id)
            if row is None or row.owner_id != owner_id:
                return None
            return _to_account(row)

    def list_accounts(
        self,
        owner_id: str,
        provider: Provider | None = None,
        include_in_net_worth: bool | None = None,
    ) -> list[Account]:
        query = select(AccountRow).where(AccountRow.owner_id == owner_id)
        if provider is not None:
            query = query.where(AccountRow.provider == provider.value)
        if include_in_net_worth is not None:
            query = query.where(AccountRow.include_in_net_worth == include_in_net_worth)

        with self._session() as session:
            return [_to_account(row) for row in session.scalars(query.order_by(AccountRow.name))]

    def insert_account(self, account: Account) -> Account:
        with self._session() as session:
            row = AccountRow(
                id=account.id or generate_id(),
                owner_id=account.owner_id,
                provider=account.provider.value,
                external_id=account.external_id,
            )
            self._apply_account(row, account)
            session.add(row)
            session.flush()
            return _to_account(row)

    def update_account(self, account: Account) -> None:
        with self._session() as session:
            row = session.get(AccountRow, account.id) if account.id else None
            if row is None:
                raise RecordWriteError(f"Account not found: {account.id}")
            self._apply_account(row, account)
            session.flush()

    @staticmethod
    def _apply_account(row: AccountRow, account: Account) -> None:
        row.name = account.name
        row.account_type = account.account_type
        row.balance = account.balance
        row.last_synced_at = account.last_synced_at
        row.include_in_net_worth = account.include_in_net_worth
        row.is_hidden = account.is_hidden
        row.category = account.category
        row.metadata_json = metadata_to_dict(account.metadata)

    def delete_account(self, owner_id: str, account_id: str) -> bool:
        # Snapshots and transactions go with it through ON DELETE CASCADE
        with self._session() as session:
            result = session.execute(
                delete(AccountRow).where(
                    AccountRow.id == account_id, AccountRow.owner_id == owner_id
                )
            )
            return bool(result.rowcount)

    def get_transaction(self, account_id: str, external_id: str) -> Transaction | None:
        with self._session() as session:
            row = session.scalars(
                select(TransactionRow).where(
                    TransactionRow.account_id == account_id,
                    TransactionRow.external_id == external_id,
                )
            ).one_or_none()
            return _to_transaction(row) if row else None

    def get_transaction_by_id(self, transaction_id: str) -> Transaction | None:
        with self._session() as session:
            row = session.get(TransactionRow, transaction_id)
            return _to_transaction(row) if row else None

    def insert_transaction(self, transaction: Transaction) -> Transaction:
        with self._session() as session:
            row = TransactionRow(
                id=transaction.id or generate_id(),
                account_id=transaction.account_id,
                external_id=transaction.external_id,
            )
            self._apply_transaction(row, transaction)
            session.add(row)
            session.flush()
            return _to_transaction(row)

    def update_transaction(self, transaction: Transaction) -> None:
        with self._session() as session:
            row = session.get(TransactionRow, transaction.id) if transaction.id else None
            if row is None:
                raise RecordWriteError(f"Transaction not found: {transaction.id}")
            self._apply_transaction(row, transaction)
            session.flush()

    @staticmethod
    def _apply_transaction(row: TransactionRow, transaction: Transaction) -> None:
        row.posted_at = transaction.posted_at
        row.amount = transaction.amount
        row.description = transaction.description
        row.payee = transaction.payee
        row.memo = transaction.memo
        row.pending = transaction.pending
        row.label_id = transaction.label_id

    def list_transactions(
        self, account_ids: Iterable[str], limit: int | None = None
    ) -> list[Transaction]:
        query = (
            select(TransactionRow)
            .where(TransactionRow.account_id.in_(list(account_ids)))
            .order_by(TransactionRow.posted_at.desc())
        )
        if limit is not None:
            query = query.limit(limit)

        with self._session() as session:
            return [_to_transaction(row) for row in session.scalars(query)]

    def insert_snapshot(self, snapshot: Snapshot) -> Snapshot:
        with self._session() as session:
            row = SnapshotRow(
                id=snapshot.id or generate_id(),
                account_id=snapshot.account_id,
                timestamp=snapshot.timestamp,
                value=snapshot.value,
            )
            session.add(row)
            session.flush()
            return _to_snapshot(row)

    def query_snapshots(
        self,
        account_ids: Iterable[str],
        start: datetime | None = None,
        end: datetime | None = None,
    ) -> list[Snapshot]:
        query = select(SnapshotRow).where(SnapshotRow.account_id.in_(list(account_ids)))
        if start is not None:
            query = query.where(SnapshotRow.timestamp >= start)
        if end is not None:
            query = query.where(SnapshotRow.timestamp <= end)

        with self._session() as session:
            rows = session.scalars(query.order_by(SnapshotRow.timestamp))
            return [_to_snapshot(row) for row in rows]

    def get_credential(self, owner_id: str, provider: Provider) -> Credential | None:
        with self._session() as session:
            row = session.get(CredentialRow, (owner_id, provider.value))
            if row is None:
                return None
            return Credential(
                owner_id=row.owner_id,
                provider=Provider(row.provider),
                access_token=row.access_token,
                updated_at=row.updated_at,
            )

    def upsert_credential(self, credential: Credential) -> None:
        with self._session() as session:
            session.merge(
                CredentialRow(
                    owner_id=credential.owner_id,
                    provider=credential.provider.value,
                    access_token=credential.access_token,
                    updated_at=credential.updated_at,
                )
            )
