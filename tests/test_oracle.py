"""
Tests for the price oracle (network calls replaced by a stub fetch).
"""
import aiohttp
import pytest

from crypted_vault.oracle import PriceOracle


class StubOracle(PriceOracle):

    def __init__(self, prices, **kwargs):
        super().__init__(**kwargs)
        self.prices = prices
        self.calls = []

    async def _fetch_price(self, token_id):
        self.calls.append(token_id)
        price = self.prices[token_id]
        if isinstance(price, Exception):
            raise price
        return price


class Clock:
    def __init__(self):
        self.now = 0.0

    def __call__(self):
        return self.now


class TestPrices:

    @pytest.mark.asyncio
    async def test_get_price_is_cached(self):
        clock = Clock()
        oracle = StubOracle({"ethereum": 2500.0}, clock=clock)
        assert await oracle.get_price("eth") == 2500.0
        assert await oracle.get_price("ETH") == 2500.0
        assert oracle.calls == ["ethereum"]
        clock.now += 61
        await oracle.get_price("ETH")
        assert oracle.calls == ["ethereum", "ethereum"]

    @pytest.mark.asyncio
    async def test_unknown_symbol(self):
        oracle = StubOracle({})
        assert await oracle.get_price("NOPE") == 0.0
        assert oracle.calls == []

    @pytest.mark.asyncio
    async def test_failure_falls_back_to_last_price(self):
        clock = Clock()
        oracle = StubOracle({"ethereum": 2500.0}, clock=clock)
        await oracle.get_price("ETH")
        oracle.prices["ethereum"] = aiohttp.ClientError("boom")
        clock.now += 61
        assert await oracle.get_price("ETH") == 2500.0

    @pytest.mark.asyncio
    async def test_failure_without_cache(self):
        oracle = StubOracle({"bitcoin": aiohttp.ClientError("boom")})
        assert await oracle.get_price("BTC") == 0.0

    @pytest.mark.asyncio
    async def test_get_prices_and_value(self):
        oracle = StubOracle({"ethereum": 2000.0, "binancecoin": 300.0})
        assert await oracle.get_prices(["ETH", "BNB"]) == {"ETH": 2000.0, "BNB": 300.0}
        assert await oracle.calculate_value("ETH", 0.5) == 1000.0

    @pytest.mark.asyncio
    async def test_add_token_id(self):
        oracle = StubOracle({"arbitrum": 1.2})
        oracle.add_token_id("arb", "arbitrum")
        assert await oracle.get_price("ARB") == 1.2

    @pytest.mark.asyncio
    async def test_cache_status_and_clear(self):
        oracle = StubOracle({"ethereum": 2000.0})
        await oracle.get_price("ETH")
        assert oracle.cache_status()["cachedTokens"] == ["ETH"]
        oracle.clear_cache()
        assert oracle.cache_status()["cacheSize"] == 0

    @pytest.mark.asyncio
    async def test_network_price(self):
        oracle = StubOracle({"matic-network": 0.5})
        result = await oracle.network_price("polygon")
        assert result == {"symbol": "MATIC", "price": 0.5, "formatted": "$0.5000"}


class TestFormatting:

    @pytest.mark.parametrize("price,expected", [
        (2534.567, "$2,534.57"),
        (12.5, "$12.50"),
        (0.05, "$0.0500"),
        (0.001234, "$0.001234"),
        (0, "$0.000000"),
    ])
    def test_format_price(self, price, expected):
        assert PriceOracle.format_price(price) == expected

    def test_network_symbol(self):
        assert PriceOracle.network_symbol("bsc") == "BNB"
        assert PriceOracle.network_symbol("unknown") == "ETH"

    @pytest.mark.asyncio
    async def test_format_balance(self):
        oracle = StubOracle({"ethereum": 2000.0})
        result = await oracle.format_balance("ETH", 1.5)
        assert result["usd"] == 3000.0
        assert result["formatted"] == {"balance": "1.5000 ETH", "usd": "$3,000.00"}
