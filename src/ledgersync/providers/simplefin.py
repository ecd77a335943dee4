"""SimpleFIN Bridge adapter.

Protocol reference: https://www.simplefin.org/protocol.html

A user connects by pasting a setup token (a base64-encoded claim URL).
Claiming it once yields an access URL with embedded Basic-auth credentials,
which is stored and used for every later ``/accounts`` request.
"""

import base64
import binascii
import logging
from dataclasses import dataclass
from typing import Any, ClassVar
from urllib.parse import unquote, urlsplit

from ledgersync.errors import (
    InvalidInputError,
    MalformedResponseError,
    ProviderError,
    UnauthorizedError,
)
from ledgersync.fetch import BULK_RETRY, CLAIM_RETRY, ResilientFetcher, RetryConfig
from ledgersync.models import (
    Provider,
    RemoteAccount,
    RemoteAccountSet,
    RemoteTransaction,
    SimpleFINMetadata,
)
from ledgersync.providers.base import (
    FetchWindow,
    ProviderAdapter,
    check_response,
    parse_json,
    send,
)
from ledgersync.utils import parse_decimal, parse_epoch, to_epoch

logger = logging.getLogger(__name__)

SERVICE = "SimpleFIN"
ACCESS_DENIED_MESSAGE = "SimpleFIN access denied. Please reconnect your account."

# Institutions whose accounts are all of one type
INSTITUTION_TYPE_MAP: dict[str, str] = {
    "chase.com": "checking",
    "capitalone.com": "checking",
    "robinhood.com": "investment",
    "schwab.com": "investment",
    "coinbase.com": "crypto",
}

# Checked in order against the lowercased account name
NAME_KEYWORDS: list[tuple[str, tuple[str, ...]]] = [
    ("checking", ("checking",)),
    ("savings", ("savings",)),
    ("credit", ("credit", "card")),
    ("investment", ("investment", "brokerage", "ira", "401k")),
    ("crypto", ("crypto", "bitcoin", "ethereum")),
]


@dataclass(frozen=True)
class AccessUrl:
    """Components of a SimpleFIN access URL."""

    url: str
    scheme: str
    username: str
    password: str
    host: str
    path: str

    @property
    def accounts_url(self) -> str:
        """Endpoint for the accounts request, without credentials."""
        return f"{self.scheme}://{self.host}{self.path.rstrip('/')}/accounts"


def decode_setup_token(setup_token: str) -> str:
    """
    Decode a setup token to its claim URL.

    Raises:
        InvalidInputError: If the token is not base64 for an http(s) URL
    """
    token = setup_token.strip()
    if not token:
        raise InvalidInputError("Setup token is empty")

    padded = token + "=" * (-len(token) % 4)
    try:
        claim_url = base64.b64decode(padded, validate=True).decode("utf-8").strip()
    except (binascii.Error, UnicodeDecodeError) as e:
        raise InvalidInputError("Invalid SimpleFIN setup token") from e

    parts = urlsplit(claim_url)
    if parts.scheme not in ("http", "https") or not parts.netloc:
        raise InvalidInputError("Invalid SimpleFIN setup token")

    return claim_url


def parse_access_url(access_url: str) -> AccessUrl:
    """
    Split an access URL into its components.

    Raises:
        UnauthorizedError: If the URL carries no usable credentials
    """
    parts = urlsplit(access_url.strip())
    if parts.scheme not in ("http", "https") or not parts.username or parts.password is None:
        raise UnauthorizedError("SimpleFIN access URL is invalid. Please reconnect your account.")

    return AccessUrl(
        url=access_url,
        scheme=parts.scheme,
        username=unquote(parts.username),
        password=unquote(parts.password),
        host=parts.netloc.rpartition("@")[2],
        path=parts.path,
    )


def infer_account_type(org_domain: str | None, account_name: str) -> str:
    """Determine account type from the institution domain, then the account name."""
    if org_domain and org_domain in INSTITUTION_TYPE_MAP:
        return INSTITUTION_TYPE_MAP[org_domain]

    lower_name = account_name.lower()
    for account_type, keywords in NAME_KEYWORDS:
        if any(keyword in lower_name for keyword in keywords):
            return account_type

    return "other"


def _require(data: dict[str, Any], key: str, context: str) -> Any:
    if key not in data or data[key] is None:
        raise MalformedResponseError(f"SimpleFIN {context} is missing '{key}'")
    return data[key]


def transform_transaction(raw: dict[str, Any]) -> RemoteTransaction:
    """Convert a SimpleFIN transaction payload to a RemoteTransaction."""
    if not isinstance(raw, dict):
        raise MalformedResponseError("SimpleFIN transaction is not an object")

    external_id = str(_require(raw, "id", "transaction"))
    posted_at = parse_epoch(_require(raw, "posted", "transaction"))
    amount = parse_decimal(_require(raw, "amount", "transaction"))
    if posted_at is None or amount is None:
        raise MalformedResponseError(f"SimpleFIN transaction {external_id} has invalid values")

    return RemoteTransaction(
        external_id=external_id,
        posted_at=posted_at,
        amount=amount,
        description=str(raw.get("description") or ""),
        payee=raw.get("payee") or None,
        memo=raw.get("memo") or None,
        pending=bool(raw.get("pending", False)),
    )


def transform_account(raw: dict[str, Any]) -> tuple[RemoteAccount, list[RemoteTransaction]]:
    """Convert a SimpleFIN account payload to a RemoteAccount and its transactions."""
    if not isinstance(raw, dict):
        raise MalformedResponseError("SimpleFIN account is not an object")

    external_id = str(_require(raw, "id", "account"))
    account_name = str(_require(raw, "name", "account"))
    org = raw.get("org") or {}
    if not isinstance(org, dict):
        raise MalformedResponseError(f"SimpleFIN account {external_id} has an invalid org")

    balance = parse_decimal(_require(raw, "balance", "account"))
    if balance is None:
        raise MalformedResponseError(f"SimpleFIN account {external_id} has an invalid balance")

    org_name = org.get("name") or org.get("domain") or "Unknown"
    metadata = SimpleFINMetadata(
        org_domain=org.get("domain"),
        org_name=org.get("name"),
        currency=raw.get("currency"),
        available_balance=parse_decimal(raw.get("available-balance")),
        balance_date=parse_epoch(raw.get("balance-date")),
    )

    account = RemoteAccount(
        external_id=external_id,
        name=f"{org_name} - {account_name}",
        account_type=infer_account_type(org.get("domain"), account_name),
        balance=balance,
        metadata=metadata,
    )

    raw_transactions = raw.get("transactions") or []
    if not isinstance(raw_transactions, list):
        raise MalformedResponseError(f"SimpleFIN account {external_id} has invalid transactions")

    return account, [transform_transaction(tx) for tx in raw_transactions]


def transform_account_set(data: Any) -> RemoteAccountSet:
    """Convert a full ``/accounts`` response body."""
    if not isinstance(data, dict) or not isinstance(data.get("accounts"), list):
        raise MalformedResponseError("SimpleFIN response has no accounts list")

    result = RemoteAccountSet(errors=[str(e) for e in data.get("errors") or []])
    for raw in data["accounts"]:
        account, transactions = transform_account(raw)
        result.accounts.append(account)
        if transactions:
            result.transactions[account.external_id] = transactions
    return result


class SimpleFINAdapter(ProviderAdapter):
    """Claims setup tokens and fetches accounts from a SimpleFIN Bridge."""

    provider: ClassVar[Provider] = Provider.SIMPLEFIN

    def __init__(
        self,
        fetcher: ResilientFetcher,
        claim_retry: RetryConfig = CLAIM_RETRY,
        bulk_retry: RetryConfig = BULK_RETRY,
    ) -> None:
        super().__init__(fetcher)
        self.claim_retry = claim_retry
        self.bulk_retry = bulk_retry

    async def claim(self, setup_token: str) -> str:
        """
        Exchange a setup token for an access URL.

        Raises:
            InvalidInputError: Token is malformed (no request was sent)
            UnauthorizedError: Token was rejected (already claimed or expired)
            ProviderError: Any other failure
        """
        claim_url = decode_setup_token(setup_token)

        response = await send(
            self.fetcher,
            "POST",
            claim_url,
            self.claim_retry,
            f"{SERVICE} claim",
            headers={"Content-Type": "application/x-www-form-urlencoded"},
        )
        check_response(
            response,
            f"{SERVICE} claim",
            unauthorized_message="Failed to claim setup token: token was rejected",
        )

        access_url = response.text.strip()
        parse_access_url(access_url)
        return access_url

    async def fetch_remote(self, credential: str, window: FetchWindow) -> RemoteAccountSet:
        access = parse_access_url(credential)

        params: dict[str, str] = {}
        if window.start:
            params["start-date"] = str(to_epoch(window.start))
        if window.end:
            params["end-date"] = str(to_epoch(window.end))
        if window.account_ids:
            params["account"] = ",".join(window.account_ids)

        response = await send(
            self.fetcher,
            "GET",
            access.accounts_url,
            self.bulk_retry,
            f"{SERVICE} accounts",
            params=params,
            auth=(access.username, access.password),
            headers={"Accept": "application/json"},
        )
        check_response(response, SERVICE, unauthorized_message=ACCESS_DENIED_MESSAGE)

        result = transform_account_set(parse_json(response, SERVICE))
        logger.debug(
            "SimpleFIN returned %d accounts, %d errors", len(result.accounts), len(result.errors)
        )
        return result

    async def validate_access_url(self, access_url: str) -> bool:
        """Return True if the access URL still authenticates."""
        try:
            await self.fetch_remote(access_url, FetchWindow())
        except (UnauthorizedError, ProviderError) as e:
            logger.info("SimpleFIN access URL check failed: %s", e)
            return False
        return True
