"""Merge remote provider data into local storage."""

import logging
from collections.abc import Callable, Mapping, Sequence
from dataclasses import replace
from datetime import datetime
from decimal import Decimal

from ledgersync.errors import RecordWriteError
from ledgersync.models import (
    Account,
    Provider,
    ReconcileResult,
    RemoteAccount,
    RemoteTransaction,
    Snapshot,
    Transaction,
    utc_now,
)
from ledgersync.storage import StoragePort

logger = logging.getLogger(__name__)


class Reconciler:
    """
    Upserts remote accounts and transactions for one owner and provider.

    Accounts are matched by (owner, provider, external id) and transactions
    by (account id, external id). Provider-owned fields are overwritten;
    local-only fields (hidden, net-worth flag, category, account type,
    transaction labels) are left alone. A snapshot is appended only when an
    account is new or its balance changed.
    """

    def __init__(self, storage: StoragePort, clock: Callable[[], datetime] = utc_now) -> None:
        self.storage = storage
        self.clock = clock

    def reconcile(
        self,
        owner_id: str,
        provider: Provider,
        remote_accounts: Sequence[RemoteAccount],
        remote_transactions_by_account: Mapping[str, Sequence[RemoteTransaction]] | None = None,
    ) -> ReconcileResult:
        """
        Reconcile one provider's remote data against storage.

        Args:
            owner_id: Owner the accounts belong to
            provider: Provider the data came from
            remote_accounts: Accounts reported by the provider
            remote_transactions_by_account: Transactions keyed by account external id

        Returns:
            ReconcileResult with the number of accounts processed, or an
            error if storage failed as a whole
        """
        transactions_by_account = remote_transactions_by_account or {}
        synced_at = self.clock()
        processed = 0

        try:
            for remote in remote_accounts:
                try:
                    # The account row and its snapshot are written together
                    with self.storage.transaction():
                        account = self._upsert_account(owner_id, provider, remote, synced_at)
                except RecordWriteError as e:
                    logger.error(
                        "Skipping %s account %s: %s", provider.value, remote.external_id, e
                    )
                    continue

                processed += 1
                for remote_tx in transactions_by_account.get(remote.external_id, ()):
                    try:
                        self._upsert_transaction(account.id, remote_tx)  # type: ignore[arg-type]
                    except RecordWriteError as e:
                        logger.error(
                            "Skipping transaction %s on account %s: %s",
                            remote_tx.external_id, remote.external_id, e,
                        )
        except Exception as e:
            logger.exception("Reconciliation failed for %s", provider.value)
            return ReconcileResult(success=False, account_count=processed,
                                   error=f"Failed to sync accounts: {e}")

        logger.info("Reconciled %d %s accounts", processed, provider.value)
        return ReconcileResult(success=True, account_count=processed)

    def _upsert_account(
        self,
        owner_id: str,
        provider: Provider,
        remote: RemoteAccount,
        synced_at: datetime,
    ) -> Account:
        existing = self.storage.get_account(owner_id, provider, remote.external_id)

        if existing is None:
            account = self.storage.insert_account(
                Account(
                    owner_id=owner_id,
                    provider=provider,
                    external_id=remote.external_id,
                    name=remote.name,
                    account_type=remote.account_type,
                    balance=remote.balance,
                    last_synced_at=synced_at,
                    metadata=remote.metadata,
                )
            )
            balance_changed = True
        else:
            account = replace(
                existing,
                name=remote.name,
                balance=remote.balance,
                metadata=remote.metadata,
                last_synced_at=synced_at,
            )
            self.storage.update_account(account)
            balance_changed = existing.balance != remote.balance

        if balance_changed:
            self.storage.insert_snapshot(
                Snapshot(
                    account_id=account.id,  # type: ignore[arg-type]
                    timestamp=synced_at,
                    value=remote.balance if remote.balance is not None else Decimal(0),
                )
            )

        return account

    def _upsert_transaction(self, account_id: str, remote: RemoteTransaction) -> None:
        existing = self.storage.get_transaction(account_id, remote.external_id)

        if existing is None:
            self.storage.insert_transaction(
                Transaction(
                    account_id=account_id,
                    external_id=remote.external_id,
                    posted_at=remote.posted_at,
                    amount=remote.amount,
                    description=remote.description,
                    payee=remote.payee,
                    memo=remote.memo,
                    pending=remote.pending,
                )
            )
            return

        self.storage.update_transaction(
            replace(
                existing,
                posted_at=remote.posted_at,
                amount=remote.amount,
                description=remote.description,
                payee=remote.payee,
                memo=remote.memo,
                pending=remote.pending,
            )
        )
