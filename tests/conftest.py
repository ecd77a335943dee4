"""Pytest configuration and fixtures."""

import json
from datetime import datetime, timedelta, timezone
from typing import Any

import pytest
import requests

from ledgersync.storage import InMemoryStorage

# Real mainnet addresses: a wallet from the Solana docs and the USDC mint
WALLET_ADDRESS = "7xKXtg2CW87d97TXJSDpbD5jBkheTqA83TZRuJosgAsU"
OTHER_WALLET_ADDRESS = "DezXAZ8z7PnrnRJjz3wXBoRgixCa6xjnB7YaB1pPB263"
USDC_MINT = "EPjFWdd5AufqSSqeM2qN1xzybapC8G4wEGGkZwyTDt1v"

START = datetime(2024, 1, 1, tzinfo=timezone.utc)


def make_response(
    status_code: int = 200,
    json_body: Any = None,
    text: str | None = None,
    headers: dict[str, str] | None = None,
    reason: str | None = None,
) -> requests.Response:
    """Build a real requests.Response without touching the network."""
    response = requests.Response()
    response.status_code = status_code
    response.reason = reason or ""
    if json_body is not None:
        response._content = json.dumps(json_body).encode("utf-8")
        response.headers["Content-Type"] = "application/json"
    else:
        response._content = (text or "").encode("utf-8")
    response.encoding = "utf-8"
    response.headers.update(headers or {})
    return response


class FakeClock:
    """Callable clock that only moves when told to."""

    def __init__(self, now: datetime = START) -> None:
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs: float) -> None:
        self.now += timedelta(**kwargs)


class RecordingSleep:
    """Async sleep replacement that records requested delays."""

    def __init__(self) -> None:
        self.delays: list[float] = []

    async def __call__(self, seconds: float) -> None:
        self.delays.append(seconds)


@pytest.fixture
def storage() -> InMemoryStorage:
    """Return an empty in-memory storage."""
    return InMemoryStorage()


@pytest.fixture
def clock() -> FakeClock:
    """Return a clock fixed at 2024-01-01 UTC."""
    return FakeClock()


@pytest.fixture
def sleep() -> RecordingSleep:
    """Return a sleep that records delays instead of waiting."""
    return RecordingSleep()


@pytest.fixture(autouse=True)
def no_solana_rpc_env(monkeypatch: pytest.MonkeyPatch) -> None:
    """Keep a developer's SOLANA_RPC_URL out of the tests."""
    monkeypatch.delenv("SOLANA_RPC_URL", raising=False)
