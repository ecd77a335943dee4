"""Sync orchestration: credentials -> adapter -> reconciler."""

import asyncio
import logging
from collections.abc import Callable, Mapping
from datetime import datetime

from ledgersync.config import DEFAULT_HISTORY_DAYS
from ledgersync.errors import (
    InvalidInputError,
    LedgerSyncError,
    ProviderError,
    UnauthorizedError,
)
from ledgersync.models import (
    ConnectResult,
    Credential,
    OperationResult,
    Provider,
    RemoteAccountSet,
    SyncAllResult,
    SyncResult,
    WalletMetadata,
    utc_now,
)
from ledgersync.providers.base import FetchWindow, ProviderAdapter
from ledgersync.providers.simplefin import SimpleFINAdapter
from ledgersync.reconciler import Reconciler
from ledgersync.storage import StoragePort
from ledgersync.utils import is_valid_solana_address, mask_address

logger = logging.getLogger(__name__)

NO_CREDENTIALS_MESSAGE = "No SimpleFIN credentials found. Please reconnect your account."
WALLET_EXISTS_MESSAGE = "Wallet already connected"
INVALID_WALLET_MESSAGE = "Invalid Solana wallet address"
ACCESS_EXPIRED_MESSAGE = "SimpleFIN access is no longer valid. Please reconnect your account."


class MissingCredentialError(LedgerSyncError):
    """No stored credential for the provider."""


def describe_error(error: BaseException) -> str:
    """Turn an exception into the text reported to the caller."""
    if isinstance(error, (UnauthorizedError, InvalidInputError, MissingCredentialError)):
        return error.message
    if isinstance(error, ProviderError):
        return f"Failed to fetch accounts: {error.message}"
    return str(error) or type(error).__name__


class SyncOrchestrator:
    """Runs provider syncs for an owner and aggregates their results."""

    def __init__(
        self,
        storage: StoragePort,
        adapters: Mapping[Provider, ProviderAdapter],
        reconciler: Reconciler | None = None,
        history_days: int = DEFAULT_HISTORY_DAYS,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self.storage = storage
        self.adapters = dict(adapters)
        self.reconciler = reconciler or Reconciler(storage, clock=clock)
        self.history_days = history_days
        self.clock = clock

    async def sync_provider(
        self,
        owner_id: str,
        provider: Provider,
        credential_override: str | None = None,
    ) -> SyncResult:
        """
        Fetch one provider's data and reconcile it into storage.

        Args:
            owner_id: Owner to sync
            provider: Provider to sync
            credential_override: Credential to use instead of the stored one
                (access URL for SimpleFIN, wallet address for Solana)

        Returns:
            SyncResult with the number of accounts synced or an error
        """
        adapter = self.adapters.get(provider)
        if adapter is None:
            return SyncResult(success=False, error=f"{provider.value} is not configured")

        try:
            if provider is Provider.SOLANA:
                remote = await self._fetch_wallets(owner_id, adapter, credential_override)
            else:
                remote = await self._fetch_with_credential(
                    owner_id, provider, adapter, credential_override
                )
        except Exception as e:
            if isinstance(e, LedgerSyncError):
                logger.error("%s sync failed: %s", provider.value, e)
            else:
                logger.exception("%s sync failed", provider.value)
            return SyncResult(success=False, error=describe_error(e))

        for message in remote.errors:
            logger.warning("%s reported a partial error: %s", provider.value, message)

        result = self.reconciler.reconcile(
            owner_id, provider, remote.accounts, remote.transactions
        )
        return SyncResult(success=result.success, synced=result.account_count, error=result.error)

    async def _fetch_with_credential(
        self,
        owner_id: str,
        provider: Provider,
        adapter: ProviderAdapter,
        credential_override: str | None,
    ) -> RemoteAccountSet:
        credential = credential_override
        if credential is None:
            stored = self.storage.get_credential(owner_id, provider)
            if stored is None:
                raise MissingCredentialError(NO_CREDENTIALS_MESSAGE)
            credential = stored.access_token

        window = FetchWindow.last_days(self.history_days, now=self.clock())
        return await adapter.fetch_remote(credential, window)

    async def _fetch_wallets(
        self,
        owner_id: str,
        adapter: ProviderAdapter,
        address_override: str | None,
    ) -> RemoteAccountSet:
        # A newly connected wallet must fail loudly
        if address_override is not None:
            return await adapter.fetch_remote(address_override, FetchWindow())

        addresses = [
            a.external_id for a in self.storage.list_accounts(owner_id, provider=Provider.SOLANA)
        ]
        results = await asyncio.gather(
            *(adapter.fetch_remote(address, FetchWindow()) for address in addresses),
            return_exceptions=True,
        )

        combined = RemoteAccountSet()
        for address, result in zip(addresses, results):
            if isinstance(result, BaseException):
                if not isinstance(result, Exception):
                    raise result
                logger.error("Error syncing wallet %s: %s", mask_address(address), result)
                combined.errors.append(f"{mask_address(address)}: {result}")
            else:
                combined.extend(result)
        return combined

    async def sync_all(self, owner_id: str) -> SyncAllResult:
        """
        Sync every configured provider concurrently.

        One provider failing never affects another's result. The total
        only counts providers that succeeded.
        """
        providers = list(self.adapters)
        outcomes = await asyncio.gather(
            *(self.sync_provider(owner_id, provider) for provider in providers),
            return_exceptions=True,
        )

        per_provider: dict[Provider, SyncResult] = {}
        for provider, outcome in zip(providers, outcomes):
            if isinstance(outcome, BaseException):
                if not isinstance(outcome, Exception):
                    raise outcome
                logger.error("%s sync raised: %s", provider.value, outcome)
                outcome = SyncResult(success=False, error=describe_error(outcome))
            per_provider[provider] = outcome

        total = sum(r.synced for r in per_provider.values() if r.success)
        logger.info("Synced %d accounts across %d providers", total, len(providers))
        return SyncAllResult(per_provider=per_provider, total_synced=total)

    async def connect_simplefin(self, owner_id: str, setup_token: str) -> ConnectResult:
        """
        Claim a SimpleFIN setup token, store the access URL and sync it.

        Returns:
            ConnectResult with the number of accounts synced
        """
        adapter = self.adapters.get(Provider.SIMPLEFIN)
        if not isinstance(adapter, SimpleFINAdapter):
            return ConnectResult(success=False, error="SimpleFIN is not configured")

        try:
            access_url = await adapter.claim(setup_token)
        except InvalidInputError as e:
            return ConnectResult(success=False, error=e.message)
        except (UnauthorizedError, ProviderError) as e:
            logger.error("SimpleFIN claim failed: %s", e)
            return ConnectResult(success=False, error=f"Failed to claim token: {e.message}")

        try:
            self.storage.upsert_credential(
                Credential(
                    owner_id=owner_id,
                    provider=Provider.SIMPLEFIN,
                    access_token=access_url,
                    updated_at=self.clock(),
                )
            )
        except LedgerSyncError as e:
            logger.error("Could not store SimpleFIN credential: %s", e)
            return ConnectResult(success=False, error=f"Failed to connect SimpleFIN: {e.message}")

        result = await self.sync_provider(owner_id, Provider.SIMPLEFIN, credential_override=access_url)
        if not result.success:
            return ConnectResult(success=False, error=result.error)
        return ConnectResult(success=True, account_count=result.synced)

    async def check_simplefin(self, owner_id: str) -> OperationResult:
        """Check that the stored SimpleFIN access URL still authenticates."""
        adapter = self.adapters.get(Provider.SIMPLEFIN)
        if not isinstance(adapter, SimpleFINAdapter):
            return OperationResult(success=False, error="SimpleFIN is not configured")

        try:
            credential = self.storage.get_credential(owner_id, Provider.SIMPLEFIN)
        except LedgerSyncError as e:
            logger.error("Could not load SimpleFIN credential: %s", e)
            return OperationResult(success=False, error=f"Failed to check SimpleFIN: {e.message}")
        if credential is None:
            return OperationResult(success=False, error=NO_CREDENTIALS_MESSAGE)

        if not await adapter.validate_access_url(credential.access_token):
            return OperationResult(success=False, error=ACCESS_EXPIRED_MESSAGE)
        return OperationResult(success=True)

    async def connect_wallet(self, owner_id: str, address: str) -> ConnectResult:
        """
        Start tracking a Solana wallet and sync it immediately.

        Returns:
            ConnectResult with the wallet's USD value and token count
        """
        address = address.strip()
        if not is_valid_solana_address(address):
            return ConnectResult(success=False, error=INVALID_WALLET_MESSAGE)

        try:
            existing = self.storage.get_account(owner_id, Provider.SOLANA, address)
        except LedgerSyncError as e:
            return ConnectResult(success=False, error=f"Failed to connect wallet: {e.message}")
        if existing is not None:
            return ConnectResult(success=False, error=WALLET_EXISTS_MESSAGE)

        result = await self.sync_provider(owner_id, Provider.SOLANA, credential_override=address)
        if not result.success:
            return ConnectResult(success=False, error=result.error)

        account = self.storage.get_account(owner_id, Provider.SOLANA, address)
        if account is None:
            return ConnectResult(success=False, error="Failed to connect wallet")

        token_count = (
            account.metadata.token_count if isinstance(account.metadata, WalletMetadata) else 0
        )
        return ConnectResult(
            success=True,
            account_count=1,
            total_value=account.balance,
            token_count=token_count,
        )
