"""Exception classes for provider, fetch and storage failures."""

from typing import Any


class LedgerSyncError(Exception):
    """Base exception for ledgersync errors."""

    def __init__(
        self,
        message: str,
        status_code: int | None = None,
        details: dict[str, Any] | None = None,
    ) -> None:
        self.message = message
        self.status_code = status_code
        self.details = details or {}
        super().__init__(message)


class UnauthorizedError(LedgerSyncError):
    """No resolvable identity, or the provider rejected the credential."""


class InvalidInputError(LedgerSyncError):
    """Malformed address or token, detected before any network call."""


class ProviderError(LedgerSyncError):
    """A provider call failed with a terminal, unclassified error."""


class TransientFetchError(ProviderError):
    """Network failure, 429 or 5xx that persisted through every retry."""


class MalformedResponseError(ProviderError):
    """Provider response did not match the expected schema."""


class StorageError(LedgerSyncError):
    """Base class for storage failures."""


class RecordWriteError(StorageError):
    """A single record could not be written (e.g. a uniqueness violation)."""


class StorageUnavailableError(StorageError):
    """The storage backend cannot be reached at all."""
