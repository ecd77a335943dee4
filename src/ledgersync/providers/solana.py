"""Solana wallet adapter.

Balances come from a Solana JSON-RPC node. Each wallet becomes a single
``crypto`` account valued in USD; wallets have no transactions.
"""

import asyncio
import logging
from decimal import Decimal
from typing import Any, ClassVar

from ledgersync.config import DEFAULT_SOLANA_RPC_URL
from ledgersync.errors import (
    InvalidInputError,
    MalformedResponseError,
    ProviderError,
    TransientFetchError,
)
from ledgersync.fetch import RPC_RETRY, ResilientFetcher, RetryConfig
from ledgersync.models import (
    Provider,
    RemoteAccount,
    RemoteAccountSet,
    TokenHolding,
    WalletMetadata,
    to_usd,
)
from ledgersync.providers.base import (
    FetchWindow,
    ProviderAdapter,
    check_response,
    parse_json,
    send,
)
from ledgersync.providers.prices import SOL_MINT, PriceFeed
from ledgersync.utils import is_valid_solana_address, mask_address, parse_decimal

logger = logging.getLogger(__name__)

SERVICE = "Solana RPC"

LAMPORTS_PER_SOL = 1_000_000_000
TOKEN_PROGRAM_ID = "TokenkegQfeZyiNwAJbNbGKPFXCWuBvf9Ss623VQ5DA"

# JSON-RPC error codes raised by the node itself rather than the request
INTERNAL_ERROR_CODE = -32603
SERVER_ERROR_CODES = range(-32099, -31999)

# Known SPL token metadata: mint -> (symbol, name)
KNOWN_TOKENS: dict[str, tuple[str, str]] = {
    SOL_MINT: ("SOL", "Wrapped SOL"),
    "EPjFWdd5AufqSSqeM2qN1xzybapC8G4wEGGkZwyTDt1v": ("USDC", "USD Coin"),
    "Es9vMFrzaCERmJfrF4H2FYD4KCoNkY11McCe8BenwNYB": ("USDT", "Tether USD"),
    "DezXAZ8z7PnrnRJjz3wXBoRgixCa6xjnB7YaB1pPB263": ("BONK", "Bonk"),
    "jtojtomepa8beP8AuQc6eXt5FriJwfFMwQx2v2f9mCL": ("JTO", "Jito"),
    "JUPyiwrYJFskUPiHa7hkeR8VUtAeFoSYbKedZNsDvCN": ("JUP", "Jupiter"),
    "4k3Dyjzvzp8eMZWUXbBCjEvwSkkk59S5iCNLY3QrkX6R": ("RAY", "Raydium"),
}


def wallet_account_name(address: str) -> str:
    """Display name for a wallet account."""
    return f"Solana Wallet ({mask_address(address)})"


def parse_token_account(entry: Any) -> TokenHolding | None:
    """
    Convert one jsonParsed token account to a TokenHolding.

    Returns None for zero balances.

    Raises:
        MalformedResponseError: If the entry is not a parsed SPL token account
    """
    try:
        info = entry["account"]["data"]["parsed"]["info"]
        mint = str(info["mint"])
        token_amount = info["tokenAmount"]
        decimals = int(token_amount["decimals"])
    except (KeyError, TypeError, ValueError) as e:
        raise MalformedResponseError(f"{SERVICE} returned an unparsed token account") from e

    balance = parse_decimal(token_amount.get("uiAmountString"))
    if balance is None:
        raw_amount = parse_decimal(token_amount.get("amount"))
        if raw_amount is None:
            raise MalformedResponseError(f"{SERVICE} token account {mint} has no amount")
        balance = raw_amount.scaleb(-decimals)

    if not balance:
        return None

    symbol, name = KNOWN_TOKENS.get(mint, ("UNKNOWN", "Unknown Token"))
    return TokenHolding(mint=mint, symbol=symbol, name=name, decimals=decimals, balance=balance)


class SolanaRpcClient:
    """Minimal JSON-RPC client for the calls the wallet adapter needs."""

    def __init__(
        self,
        fetcher: ResilientFetcher,
        rpc_url: str = DEFAULT_SOLANA_RPC_URL,
        retry_config: RetryConfig = RPC_RETRY,
    ) -> None:
        self.fetcher = fetcher
        self.rpc_url = rpc_url
        self.retry_config = retry_config

    async def call(self, method: str, params: list[Any]) -> Any:
        """
        Invoke a JSON-RPC method and return its ``result``.

        Raises:
            TransientFetchError: Node-side error or retries exhausted
            ProviderError: Request was rejected
            MalformedResponseError: Body is not a JSON-RPC response
        """
        payload = {"jsonrpc": "2.0", "id": 1, "method": method, "params": params}
        response = await send(
            self.fetcher, "POST", self.rpc_url, self.retry_config, f"{SERVICE} {method}", json=payload
        )
        check_response(response, SERVICE)

        body = parse_json(response, SERVICE)
        if not isinstance(body, dict):
            raise MalformedResponseError(f"{SERVICE} {method} returned a non-object body")

        error = body.get("error")
        if error is not None:
            code = error.get("code") if isinstance(error, dict) else None
            message = error.get("message") if isinstance(error, dict) else str(error)
            text = f"{SERVICE} {method} failed: {message}"
            if code == INTERNAL_ERROR_CODE or code in SERVER_ERROR_CODES:
                raise TransientFetchError(text, details={"code": code})
            raise ProviderError(text, details={"code": code})

        if "result" not in body:
            raise MalformedResponseError(f"{SERVICE} {method} response has no result")
        return body["result"]

    async def get_balance(self, address: str) -> int:
        """Get the SOL balance of an address in lamports."""
        result = await self.call("getBalance", [address])
        value = result.get("value") if isinstance(result, dict) else None
        if not isinstance(value, int) or isinstance(value, bool):
            raise MalformedResponseError(f"{SERVICE} getBalance returned no lamport value")
        return value

    async def get_token_accounts(self, address: str) -> list[TokenHolding]:
        """Get the non-zero SPL token balances owned by an address."""
        result = await self.call(
            "getTokenAccountsByOwner",
            [address, {"programId": TOKEN_PROGRAM_ID}, {"encoding": "jsonParsed"}],
        )
        entries = result.get("value") if isinstance(result, dict) else None
        if not isinstance(entries, list):
            raise MalformedResponseError(f"{SERVICE} getTokenAccountsByOwner returned no list")

        holdings = []
        for entry in entries:
            holding = parse_token_account(entry)
            if holding is not None:
                holdings.append(holding)
        return holdings


class SolanaWalletAdapter(ProviderAdapter):
    """Values a Solana wallet from its SOL and SPL token balances."""

    provider: ClassVar[Provider] = Provider.SOLANA

    def __init__(
        self,
        fetcher: ResilientFetcher,
        rpc: SolanaRpcClient | None = None,
        prices: PriceFeed | None = None,
    ) -> None:
        super().__init__(fetcher)
        self.rpc = rpc or SolanaRpcClient(fetcher)
        self.prices = prices or PriceFeed(fetcher)

    async def fetch_remote(self, credential: str, window: FetchWindow) -> RemoteAccountSet:
        address = credential.strip()
        if not is_valid_solana_address(address):
            raise InvalidInputError("Invalid Solana wallet address", details={"address": address})

        lamports, holdings = await asyncio.gather(
            self.rpc.get_balance(address),
            self.rpc.get_token_accounts(address),
        )
        sol_price, token_prices = await asyncio.gather(
            self.prices.get_sol_price(),
            self.prices.get_token_prices([h.mint for h in holdings]),
        )

        sol_balance = Decimal(lamports) / LAMPORTS_PER_SOL
        sol_value = to_usd(sol_balance * sol_price) if sol_price is not None else None

        tokens = []
        for holding in holdings:
            price = token_prices.get(holding.mint)
            tokens.append(
                TokenHolding(
                    mint=holding.mint,
                    symbol=holding.symbol,
                    name=holding.name,
                    decimals=holding.decimals,
                    balance=holding.balance,
                    price_usd=price,
                    value_usd=to_usd(holding.balance * price) if price is not None else None,
                )
            )

        total = (sol_value or Decimal(0)) + sum(
            (t.value_usd for t in tokens if t.value_usd is not None), Decimal(0)
        )
        logger.debug(
            "Wallet %s: %s SOL, %d tokens, $%s",
            mask_address(address), sol_balance, len(tokens), to_usd(total),
        )

        account = RemoteAccount(
            external_id=address,
            name=wallet_account_name(address),
            account_type="crypto",
            balance=to_usd(total),
            metadata=WalletMetadata(
                sol_balance=sol_balance,
                sol_price_usd=sol_price,
                sol_value_usd=sol_value,
                tokens=tuple(tokens),
            ),
        )
        return RemoteAccountSet(accounts=[account])
