"""Provider adapters package."""

from typing import Any

from ledgersync.config import get_price_urls, get_retry_config, get_solana_rpc_url
from ledgersync.fetch import ResilientFetcher
from ledgersync.models import Provider
from ledgersync.providers.base import FetchWindow, ProviderAdapter
from ledgersync.providers.prices import PriceFeed
from ledgersync.providers.simplefin import SimpleFINAdapter
from ledgersync.providers.solana import SolanaRpcClient, SolanaWalletAdapter

__all__ = [
    "FetchWindow",
    "PriceFeed",
    "ProviderAdapter",
    "SimpleFINAdapter",
    "SolanaRpcClient",
    "SolanaWalletAdapter",
    "create_adapters",
]


def create_adapters(
    fetcher: ResilientFetcher,
    config: dict[str, Any] | None = None,
) -> dict[Provider, ProviderAdapter]:
    """Build every provider adapter, wired from config."""
    price_urls = get_price_urls(config)
    prices = PriceFeed(
        fetcher,
        jupiter_url=price_urls["jupiter"],
        coingecko_url=price_urls["coingecko"],
        retry_config=get_retry_config(config, "price"),
    )
    rpc = SolanaRpcClient(
        fetcher,
        rpc_url=get_solana_rpc_url(config),
        retry_config=get_retry_config(config, "rpc"),
    )

    return {
        Provider.SIMPLEFIN: SimpleFINAdapter(
            fetcher,
            claim_retry=get_retry_config(config, "claim"),
            bulk_retry=get_retry_config(config, "bulk"),
        ),
        Provider.SOLANA: SolanaWalletAdapter(fetcher, rpc=rpc, prices=prices),
    }
