"""USD price lookups from Jupiter (SPL tokens) and CoinGecko (SOL).

Price lookups never fail a sync: any error is logged and the price is
reported as missing.
"""

import logging
from decimal import Decimal
from typing import Any

from ledgersync.config import DEFAULT_COINGECKO_URL, DEFAULT_JUPITER_PRICE_URL
from ledgersync.errors import LedgerSyncError
from ledgersync.fetch import PRICE_RETRY, ResilientFetcher, RetryConfig
from ledgersync.providers.base import check_response, parse_json, send
from ledgersync.utils import parse_decimal

logger = logging.getLogger(__name__)

SOL_MINT = "So11111111111111111111111111111111111111112"


class PriceFeed:
    """Client for the token and SOL price services."""

    def __init__(
        self,
        fetcher: ResilientFetcher,
        jupiter_url: str = DEFAULT_JUPITER_PRICE_URL,
        coingecko_url: str = DEFAULT_COINGECKO_URL,
        retry_config: RetryConfig = PRICE_RETRY,
    ) -> None:
        self.fetcher = fetcher
        self.jupiter_url = jupiter_url
        self.coingecko_url = coingecko_url.rstrip("/")
        self.retry_config = retry_config

    async def _get_json(self, url: str, service: str, params: dict[str, str]) -> Any:
        response = await send(self.fetcher, "GET", url, self.retry_config, service, params=params)
        check_response(response, service)
        return parse_json(response, service)

    async def get_sol_price(self) -> Decimal | None:
        """Fetch the SOL/USD price, or None if it is unavailable."""
        try:
            data = await self._get_json(
                f"{self.coingecko_url}/simple/price",
                "CoinGecko SOL price",
                {"ids": "solana", "vs_currencies": "usd"},
            )
        except LedgerSyncError as e:
            logger.warning("Failed to fetch SOL price: %s", e)
            return None

        if not isinstance(data, dict):
            logger.warning("CoinGecko returned an unexpected payload")
            return None
        entry = data.get("solana")
        if not isinstance(entry, dict):
            logger.warning("CoinGecko returned no SOL price")
            return None
        return parse_decimal(entry.get("usd"))

    async def get_token_prices(self, mints: list[str]) -> dict[str, Decimal]:
        """
        Fetch USD prices for SPL token mints.

        SOL is excluded since it is priced separately. Mints without a
        price are absent from the result.
        """
        token_mints = [m for m in mints if m != SOL_MINT]
        if not token_mints:
            return {}

        try:
            data = await self._get_json(
                self.jupiter_url,
                "Jupiter price",
                {"ids": ",".join(token_mints)},
            )
        except LedgerSyncError as e:
            logger.warning("Failed to fetch token prices: %s", e)
            return {}

        entries = data.get("data") if isinstance(data, dict) else None
        if not isinstance(entries, dict):
            logger.warning("Jupiter returned an unexpected payload")
            return {}

        prices: dict[str, Decimal] = {}
        for mint, entry in entries.items():
            price = parse_decimal(entry.get("price")) if isinstance(entry, dict) else None
            if price:
                prices[mint] = price
        return prices
