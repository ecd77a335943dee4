"""HTTP fetching with per-attempt timeouts, retries and exponential backoff.

Every provider call goes through :class:`ResilientFetcher`. Outcomes are
classified as:

- 2xx, 3xx and 4xx (except 429): returned to the caller as-is
- 429 and 5xx: retried, honoring ``Retry-After`` when the server sends one
- connection errors and timeouts: retried

When retries run out the last response is returned (HTTP failures) or the
last exception is re-raised (network failures).
"""

import asyncio
import email.utils
import logging
import time
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import Any

import requests

logger = logging.getLogger(__name__)

Sleep = Callable[[float], Awaitable[Any]]


@dataclass(frozen=True)
class RetryConfig:
    """Retry budget for one class of calls."""

    max_retries: int = 3
    base_delay_ms: int = 1000
    timeout_ms: int = 10_000

    @property
    def timeout_seconds(self) -> float:
        """Per-attempt timeout in seconds, as requests expects it."""
        return self.timeout_ms / 1000

    def backoff_ms(self, attempt: int) -> float:
        """Delay before retrying after the given 0-based attempt."""
        return float(self.base_delay_ms * 2**attempt)


# Token claims are interactive, so fail fast.
CLAIM_RETRY = RetryConfig(max_retries=2, base_delay_ms=500, timeout_ms=5_000)
BULK_RETRY = RetryConfig(max_retries=3, base_delay_ms=1000, timeout_ms=30_000)
PRICE_RETRY = RetryConfig(max_retries=2, base_delay_ms=500, timeout_ms=5_000)
RPC_RETRY = RetryConfig(max_retries=3, base_delay_ms=1000, timeout_ms=10_000)

DEFAULT_RETRY_CONFIGS: dict[str, RetryConfig] = {
    "claim": CLAIM_RETRY,
    "bulk": BULK_RETRY,
    "price": PRICE_RETRY,
    "rpc": RPC_RETRY,
}

RETRYABLE_EXCEPTIONS = (requests.ConnectionError, requests.Timeout)


def is_retryable_status(status_code: int) -> bool:
    """Return True for rate limiting and server errors."""
    return status_code == 429 or 500 <= status_code <= 599


def parse_retry_after(value: str | None, now: float | None = None) -> float | None:
    """Parse a Retry-After header into milliseconds.

    The header may hold either a number of seconds or an HTTP-date.
    Returns None when the header is absent or unparseable.
    """
    if not value:
        return None

    value = value.strip()
    try:
        return max(0.0, float(value) * 1000)
    except ValueError:
        pass

    try:
        retry_at = email.utils.parsedate_to_datetime(value)
    except (TypeError, ValueError):
        return None
    if retry_at is None:
        return None

    current = time.time() if now is None else now
    return max(0.0, (retry_at.timestamp() - current) * 1000)


class ResilientFetcher:
    """Wraps a requests session with timeout, retry and backoff."""

    def __init__(
        self,
        session: requests.Session | None = None,
        sleep: Sleep = asyncio.sleep,
    ) -> None:
        """
        Initialize the fetcher.

        Args:
            session: Session used for every request (a new one if omitted)
            sleep: Coroutine function taking seconds, used between attempts
        """
        self.session = session or requests.Session()
        self._sleep = sleep

    async def fetch(
        self,
        method: str,
        url: str,
        retry_config: RetryConfig,
        label: str | None = None,
        **request_kwargs: Any,
    ) -> requests.Response:
        """
        Perform an HTTP request, retrying transient failures.

        Args:
            method: HTTP method
            url: Full request URL
            retry_config: Retry budget and per-attempt timeout
            label: Name used in log messages (defaults to the URL)
            **request_kwargs: Passed through to ``Session.request``

        Returns:
            The first non-retryable response, or the last response once
            retries are exhausted

        Raises:
            requests.ConnectionError: Network failure on the final attempt
            requests.Timeout: Timeout on the final attempt
        """
        label = label or url[:80]
        max_retries = max(0, retry_config.max_retries)

        for attempt in range(max_retries + 1):
            is_last = attempt == max_retries
            try:
                response = await asyncio.to_thread(
                    self.session.request,
                    method,
                    url,
                    timeout=retry_config.timeout_seconds,
                    **request_kwargs,
                )
            except RETRYABLE_EXCEPTIONS as e:
                if is_last:
                    logger.error("%s failed after %d attempts: %s", label, attempt + 1, e)
                    raise
                delay_ms = retry_config.backoff_ms(attempt)
                logger.warning(
                    "%s: %s, retrying in %dms (attempt %d/%d)",
                    label, e, delay_ms, attempt + 1, max_retries,
                )
                await self._sleep(delay_ms / 1000)
                continue

            if not is_retryable_status(response.status_code) or is_last:
                logger.debug("%s %s -> HTTP %s", method, label, response.status_code)
                return response

            retry_after = parse_retry_after(response.headers.get("Retry-After"))
            delay_ms = retry_after if retry_after is not None else retry_config.backoff_ms(attempt)
            logger.warning(
                "%s: HTTP %s, retrying in %dms (attempt %d/%d)",
                label, response.status_code, delay_ms, attempt + 1, max_retries,
            )
            await self._sleep(delay_ms / 1000)

        # range() always yields at least one attempt, and the last one returns or raises
        raise AssertionError("unreachable")
