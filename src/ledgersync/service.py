"""Caller-facing entry points.

Every operation resolves the caller's identity first. Without one it
returns its "Unauthorized" shape and touches neither storage nor the
network. Nothing here raises; failures come back as result objects.
"""

import logging
from dataclasses import replace
from datetime import datetime

from ledgersync.errors import LedgerSyncError
from ledgersync.identity import IdentityPort
from ledgersync.models import (
    AccountList,
    ConnectResult,
    HistoryPoint,
    OperationResult,
    PortfolioValue,
    Provider,
    SyncAllResult,
    SyncResult,
    TransactionList,
)
from ledgersync.portfolio import BucketSize, PortfolioReconstructor
from ledgersync.storage import StoragePort
from ledgersync.sync import SyncOrchestrator

logger = logging.getLogger(__name__)

UNAUTHORIZED = "Unauthorized"


class LedgerService:
    """Identity-scoped facade over the sync engine and the reconstructor."""

    def __init__(
        self,
        identity: IdentityPort,
        orchestrator: SyncOrchestrator,
        reconstructor: PortfolioReconstructor,
        storage: StoragePort | None = None,
    ) -> None:
        self.identity = identity
        self.orchestrator = orchestrator
        self.reconstructor = reconstructor
        self.storage = storage or orchestrator.storage

    async def sync_all(self) -> SyncAllResult:
        owner_id = self.identity.current_owner_id()
        if owner_id is None:
            return SyncAllResult(
                per_provider={
                    provider: SyncResult(success=False, error=UNAUTHORIZED)
                    for provider in self.orchestrator.adapters
                },
                total_synced=0,
            )
        return await self.orchestrator.sync_all(owner_id)

    async def sync_provider(self, provider: Provider) -> SyncResult:
        owner_id = self.identity.current_owner_id()
        if owner_id is None:
            return SyncResult(success=False, error=UNAUTHORIZED)
        return await self.orchestrator.sync_provider(owner_id, provider)

    async def connect_simplefin(self, setup_token: str) -> ConnectResult:
        owner_id = self.identity.current_owner_id()
        if owner_id is None:
            return ConnectResult(success=False, error=UNAUTHORIZED)
        return await self.orchestrator.connect_simplefin(owner_id, setup_token)

    async def connect_wallet(self, address: str) -> ConnectResult:
        owner_id = self.identity.current_owner_id()
        if owner_id is None:
            return ConnectResult(success=False, error=UNAUTHORIZED)
        return await self.orchestrator.connect_wallet(owner_id, address)

    def remove_account(self, account_id: str) -> OperationResult:
        """Delete an account along with its snapshots and transactions."""
        owner_id = self.identity.current_owner_id()
        if owner_id is None:
            return OperationResult(success=False, error=UNAUTHORIZED)

        try:
            removed = self.storage.delete_account(owner_id, account_id)
        except LedgerSyncError as e:
            logger.error("Failed to remove account %s: %s", account_id, e)
            return OperationResult(success=False, error=f"Failed to remove account: {e.message}")

        if not removed:
            return OperationResult(success=False, error="Account not found")
        logger.info("Removed account %s", account_id)
        return OperationResult(success=True)

    def portfolio_history(
        self,
        start: datetime | None = None,
        end: datetime | None = None,
        bucket_size: BucketSize = BucketSize.DAY,
    ) -> list[HistoryPoint]:
        """Bucketed net-worth series, empty when unauthorized or on storage failure."""
        owner_id = self.identity.current_owner_id()
        if owner_id is None:
            return []

        try:
            return self.reconstructor.reconstruct(owner_id, start, end, bucket_size)
        except LedgerSyncError as e:
            logger.error("Failed to load portfolio history: %s", e)
            return []

    def portfolio_value(self) -> PortfolioValue:
        owner_id = self.identity.current_owner_id()
        if owner_id is None:
            return PortfolioValue()

        try:
            return self.reconstructor.total_value(owner_id)
        except LedgerSyncError as e:
            logger.error("Failed to load portfolio value: %s", e)
            return PortfolioValue()

    def list_accounts(self, provider: Provider | None = None) -> AccountList:
        owner_id = self.identity.current_owner_id()
        if owner_id is None:
            return AccountList(success=False, error=UNAUTHORIZED)

        try:
            accounts = self.storage.list_accounts(owner_id, provider=provider)
        except LedgerSyncError as e:
            logger.error("Failed to list accounts: %s", e)
            return AccountList(success=False, error="Failed to fetch accounts")
        return AccountList(success=True, accounts=accounts)

    def update_account_settings(
        self,
        account_id: str,
        include_in_net_worth: bool | None = None,
        is_hidden: bool | None = None,
        category: str | None = None,
    ) -> OperationResult:
        """
        Change the local-only settings of an account.

        Arguments left as None are unchanged. Sync never overwrites these.
        """
        owner_id = self.identity.current_owner_id()
        if owner_id is None:
            return OperationResult(success=False, error=UNAUTHORIZED)

        try:
            account = self.storage.get_account_by_id(owner_id, account_id)
            if account is None:
                return OperationResult(success=False, error="Account not found")

            changes: dict[str, object] = {}
            if include_in_net_worth is not None:
                changes["include_in_net_worth"] = include_in_net_worth
            if is_hidden is not None:
                changes["is_hidden"] = is_hidden
            if category is not None:
                changes["category"] = category or None

            if changes:
                self.storage.update_account(replace(account, **changes))  # type: ignore[arg-type]
        except LedgerSyncError as e:
            logger.error("Failed to update account %s: %s", account_id, e)
            return OperationResult(success=False, error=f"Failed to update account: {e.message}")

        return OperationResult(success=True)

    def list_transactions(self, limit: int | None = None) -> TransactionList:
        """Transactions of the caller's visible accounts, newest first."""
        owner_id = self.identity.current_owner_id()
        if owner_id is None:
            return TransactionList(success=False, error=UNAUTHORIZED)

        try:
            accounts = [a for a in self.storage.list_accounts(owner_id) if not a.is_hidden]
            names = {a.id: a.name for a in accounts if a.id}
            transactions = self.storage.list_transactions(names, limit=limit)
        except LedgerSyncError as e:
            logger.error("Failed to list transactions: %s", e)
            return TransactionList(success=False, error="Failed to fetch transactions")
        return TransactionList(success=True, transactions=transactions, account_names=names)

    def label_transaction(self, transaction_id: str, label_id: str | None) -> OperationResult:
        """Set or clear a transaction's local label. Sync keeps it."""
        owner_id = self.identity.current_owner_id()
        if owner_id is None:
            return OperationResult(success=False, error=UNAUTHORIZED)

        try:
            transaction = self.storage.get_transaction_by_id(transaction_id)
            if transaction is None or not self.storage.get_account_by_id(
                owner_id, transaction.account_id
            ):
                return OperationResult(success=False, error="Transaction not found")
            self.storage.update_transaction(replace(transaction, label_id=label_id or None))
        except LedgerSyncError as e:
            logger.error("Failed to label transaction %s: %s", transaction_id, e)
            return OperationResult(
                success=False, error=f"Failed to update transaction: {e.message}"
            )

        return OperationResult(success=True)

    async def check_simplefin(self) -> OperationResult:
        owner_id = self.identity.current_owner_id()
        if owner_id is None:
            return OperationResult(success=False, error=UNAUTHORIZED)
        return await self.orchestrator.check_simplefin(owner_id)
