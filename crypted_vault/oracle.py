"""
PriceOracle — USD prices for native chain currencies.

Prices come from the CoinGecko ``simple/price`` endpoint and are cached for
a minute. Prices are informational: a failed lookup never raises, it falls
back to the last known price (or 0).
"""
import time
import asyncio
import logging
from decimal import Decimal
from typing import Callable, Optional, Union

import aiohttp

logger = logging.getLogger("crypted.oracle")

COINGECKO_URL = "https://api.coingecko.com/api/v3/simple/price"
CACHE_EXPIRY = 60  # seconds

TOKEN_IDS = {
    "ETH": "ethereum",
    "BTC": "bitcoin",
    "MATIC": "matic-network",
    "BNB": "binancecoin",
    "USDT": "tether",
    "USDC": "usd-coin",
    "DAI": "dai",
}

NETWORK_SYMBOLS = {
    "eth-mainnet": "ETH",
    "base-mainnet": "ETH",
    "optimism-mainnet": "ETH",
    "sepolia": "ETH",
    "mainnet": "ETH",
    "polygon": "MATIC",
    "bsc": "BNB",
    "arbitrum": "ETH",
}

Number = Union[int, float, Decimal]


class PriceOracle:
    """Cached CoinGecko price lookups."""

    def __init__(
        self,
        base_url: str = COINGECKO_URL,
        cache_expiry: int = CACHE_EXPIRY,
        clock: Callable[[], float] = time.monotonic,
    ):
        self._base_url = base_url
        self._cache_expiry = cache_expiry
        self._clock = clock
        self._token_ids = dict(TOKEN_IDS)
        self._prices: dict[str, float] = {}
        self._fetched_at: dict[str, float] = {}
        self._session: Optional[aiohttp.ClientSession] = None

    async def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(
                timeout=aiohttp.ClientTimeout(total=10),
            )
        return self._session

    async def close(self) -> None:
        if self._session and not self._session.closed:
            await self._session.close()
        self._session = None

    async def _fetch_price(self, token_id: str) -> float:
        session = await self._get_session()
        params = {"ids": token_id, "vs_currencies": "usd"}
        async with session.get(self._base_url, params=params) as resp:
            resp.raise_for_status()
            data = await resp.json(content_type=None)
        return float((data.get(token_id) or {}).get("usd") or 0)

    def _cached(self, symbol: str) -> Optional[float]:
        fetched = self._fetched_at.get(symbol)
        if fetched is None or self._clock() - fetched > self._cache_expiry:
            return None
        return self._prices.get(symbol)

    async def get_price(self, symbol: str) -> float:
        """USD price of ``symbol``; 0 for unknown tokens."""
        symbol = symbol.upper()
        cached = self._cached(symbol)
        if cached is not None:
            return cached
        token_id = self._token_ids.get(symbol)
        if token_id is None:
            logger.warning("Unknown token symbol: %s", symbol)
            return 0.0
        try:
            price = await self._fetch_price(token_id)
        except (aiohttp.ClientError, asyncio.TimeoutError, ValueError) as err:
            logger.error("Failed to fetch price for %s: %s", symbol, err)
            return self._prices.get(symbol, 0.0)
        self._prices[symbol] = price
        self._fetched_at[symbol] = self._clock()
        return price

    async def get_prices(self, symbols: list[str]) -> dict[str, float]:
        prices = await asyncio.gather(*(self.get_price(s) for s in symbols))
        return dict(zip(symbols, prices))

    async def calculate_value(self, symbol: str, amount: Number) -> float:
        price = await self.get_price(symbol)
        return price * float(amount)

    @staticmethod
    def network_symbol(network: str) -> str:
        return NETWORK_SYMBOLS.get(network, "ETH")

    async def network_price(self, network: str) -> dict:
        symbol = self.network_symbol(network)
        price = await self.get_price(symbol)
        return {"symbol": symbol, "price": price, "formatted": self.format_price(price)}

    @staticmethod
    def format_price(price: Number) -> str:
        price = float(price)
        if price >= 1000:
            return f"${price:,.2f}"
        if price >= 1:
            return f"${price:.2f}"
        if price >= 0.01:
            return f"${price:.4f}"
        return f"${price:.6f}"

    async def format_balance(self, symbol: str, balance: Number) -> dict:
        """Balance with its USD value, raw and formatted for display."""
        usd = await self.calculate_value(symbol, balance)
        return {
            "balance": balance,
            "symbol": symbol,
            "usd": usd,
            "formatted": {
                "balance": f"{float(balance):.4f} {symbol}",
                "usd": self.format_price(usd),
            },
        }

    def add_token_id(self, symbol: str, coingecko_id: str) -> None:
        self._token_ids[symbol.upper()] = coingecko_id

    def clear_cache(self) -> None:
        self._prices.clear()
        self._fetched_at.clear()

    def cache_status(self) -> dict:
        return {
            "cachedTokens": list(self._prices),
            "cacheSize": len(self._prices),
            "cacheExpiry": self._cache_expiry,
        }
