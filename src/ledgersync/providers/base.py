"""Base adapter class shared by the provider integrations."""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any, ClassVar

import requests

from ledgersync.errors import (
    MalformedResponseError,
    ProviderError,
    TransientFetchError,
    UnauthorizedError,
)
from ledgersync.fetch import (
    RETRYABLE_EXCEPTIONS,
    ResilientFetcher,
    RetryConfig,
    is_retryable_status,
)
from ledgersync.models import Provider, RemoteAccountSet, utc_now


@dataclass(frozen=True)
class FetchWindow:
    """Time window and account filter for a remote fetch."""

    start: datetime | None = None
    end: datetime | None = None
    account_ids: list[str] = field(default_factory=list)

    @classmethod
    def last_days(cls, days: int, now: datetime | None = None) -> "FetchWindow":
        """Window covering the last ``days`` days up to now."""
        now = now or utc_now()
        return cls(start=now - timedelta(days=days))


def check_response(
    response: requests.Response,
    service: str,
    unauthorized_message: str | None = None,
) -> None:
    """
    Raise the matching error for a non-2xx response.

    Args:
        response: Response returned by the fetcher (retries already spent)
        service: Provider name used in messages
        unauthorized_message: Message for 401/403 responses

    Raises:
        UnauthorizedError: For 401 and 403
        TransientFetchError: For 429 and 5xx
        ProviderError: For any other non-2xx status
    """
    status = response.status_code
    if 200 <= status < 300:
        return

    reason = response.reason or f"HTTP {status}"
    if status in (401, 403):
        raise UnauthorizedError(
            unauthorized_message or f"{service} access denied: {reason}",
            status_code=status,
        )
    if is_retryable_status(status):
        raise TransientFetchError(f"{service} unavailable: {reason}", status_code=status)
    raise ProviderError(f"{service} API error: {reason}", status_code=status)


async def send(
    fetcher: ResilientFetcher,
    method: str,
    url: str,
    retry_config: RetryConfig,
    service: str,
    **request_kwargs: Any,
) -> requests.Response:
    """Fetch through the resilient fetcher, mapping network failures to provider errors.

    Raises:
        TransientFetchError: Connection errors or timeouts outlasted the retries
        ProviderError: Any other requests failure (bad URL, too many redirects, ...)
    """
    try:
        return await fetcher.fetch(method, url, retry_config, label=service, **request_kwargs)
    except RETRYABLE_EXCEPTIONS as e:
        raise TransientFetchError(f"{service} request failed: {e}") from e
    except requests.RequestException as e:
        raise ProviderError(f"{service} request failed: {e}") from e


def parse_json(response: requests.Response, service: str) -> Any:
    """Decode a JSON body, raising MalformedResponseError when it is not JSON."""
    try:
        return response.json()
    except ValueError as e:
        raise MalformedResponseError(f"{service} returned invalid JSON: {e}") from e


class ProviderAdapter(ABC):
    """Translates one provider's responses into the remote account shape."""

    provider: ClassVar[Provider]

    def __init__(self, fetcher: ResilientFetcher) -> None:
        self.fetcher = fetcher

    @abstractmethod
    async def fetch_remote(self, credential: str, window: FetchWindow) -> RemoteAccountSet:
        """
        Fetch accounts and transactions for one credential.

        Args:
            credential: Provider credential (access URL, wallet address, ...)
            window: Time window and account filter

        Returns:
            RemoteAccountSet with accounts, transactions and partial errors

        Raises:
            InvalidInputError: Credential is malformed (no request was sent)
            UnauthorizedError: Provider rejected the credential
            TransientFetchError: Network failures persisted through retries
            MalformedResponseError: Response did not match the schema
        """
        pass
