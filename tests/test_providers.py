"""Tests for the market data adapters (vendor envelopes, limiter gate, fallbacks)."""

import unittest
from unittest.mock import AsyncMock

import httpx

from gains.cache import InMemoryCache
from gains.errors import (
    ERR_AUTH,
    ERR_INVALID_SYMBOL,
    ERR_QUOTA,
    ERR_RATE_LIMITED,
    ERR_TRANSPORT,
)
from gains.models import ProviderSpec
from gains.providers.alpha_vantage import AlphaVantageProvider
from gains.providers.crypto import CryptoProvider, crypto_base_symbol, is_crypto_symbol
from gains.providers.finnhub import FinnhubProvider
from gains.providers.fmp import FMPProvider
from gains.providers.news import NewsProvider
from gains.providers.rate_limiter import SlidingWindowRateLimiter
from gains.providers.twelve_data import TwelveDataProvider


def _spec(name: str, max_requests: int = 5, priority: int = 1) -> ProviderSpec:
    return ProviderSpec(name, "https://example.test", max_requests, 60_000, True, priority)


def _client(*responses) -> AsyncMock:
    client = AsyncMock(spec=httpx.AsyncClient)
    client.get = AsyncMock(side_effect=list(responses))
    return client


class TestAlphaVantageProvider(unittest.IsolatedAsyncioTestCase):

    def _provider(self, client, max_requests: int = 5):
        return AlphaVantageProvider(_spec("alpha_vantage", max_requests), "key", client, SlidingWindowRateLimiter())

    async def test_parses_global_quote(self):
        client = _client(httpx.Response(200, json={
            "Global Quote": {
                "01. symbol": "AAPL",
                "05. price": "189.50",
                "06. volume": "51000000",
                "09. change": "2.10",
                "10. change percent": "1.12%",
            }
        }))
        result = await self._provider(client).fetch_quote("aapl")

        self.assertTrue(result.success)
        self.assertEqual(result.quote.symbol, "AAPL")
        self.assertAlmostEqual(result.quote.price, 189.50)
        self.assertAlmostEqual(result.quote.change_percent, 1.12)
        self.assertEqual(result.quote.volume, 51_000_000)
        self.assertEqual(result.quote.source, "alpha_vantage")

    async def test_note_in_200_body_is_rate_limited(self):
        client = _client(httpx.Response(200, json={
            "Note": "Thank you for using Alpha Vantage! Our standard API call frequency is 5 calls per minute."
        }))
        result = await self._provider(client).fetch_quote("AAPL")
        self.assertFalse(result.success)
        self.assertEqual(result.error, ERR_RATE_LIMITED)

    async def test_daily_limit_information_is_quota(self):
        client = _client(httpx.Response(200, json={
            "Information": "You have reached the 25 requests per day limit."
        }))
        result = await self._provider(client).fetch_quote("AAPL")
        self.assertEqual(result.error, ERR_QUOTA)

    async def test_error_message_is_invalid_symbol(self):
        client = _client(httpx.Response(200, json={"Error Message": "Invalid API call."}))
        result = await self._provider(client).fetch_quote("ZZZZ")
        self.assertEqual(result.error, ERR_INVALID_SYMBOL)

    async def test_empty_global_quote_is_invalid_symbol(self):
        client = _client(httpx.Response(200, json={"Global Quote": {}}))
        result = await self._provider(client).fetch_quote("ZZZZ")
        self.assertEqual(result.error, ERR_INVALID_SYMBOL)

    async def test_denied_by_limiter_without_network_call(self):
        client = _client(httpx.Response(200, json={"Global Quote": {"05. price": "1"}}))
        provider = self._provider(client, max_requests=1)

        first = await provider.fetch_quote("AAPL")
        second = await provider.fetch_quote("AAPL")

        self.assertTrue(first.success)
        self.assertEqual(second.error, ERR_RATE_LIMITED)
        self.assertEqual(client.get.await_count, 1)

    async def test_timeout_is_transport_error(self):
        client = _client(httpx.ReadTimeout("slow"))
        result = await self._provider(client).fetch_quote("AAPL")
        self.assertEqual(result.error, ERR_TRANSPORT)

    async def test_history_is_normalized(self):
        client = _client(httpx.Response(200, json={
            "Time Series (Daily)": {
                "2024-01-03": {"1. open": "10", "2. high": "12", "3. low": "9", "4. close": "11", "5. volume": "100"},
                "2024-01-02": {"1. open": "9", "2. high": "10", "3. low": "8", "4. close": "10", "5. volume": "90"},
            }
        }))
        result = await self._provider(client).fetch_history("AAPL", days=30)

        self.assertTrue(result.success)
        df = result.data
        self.assertEqual(list(df.columns), ["Open", "High", "Low", "Close", "Volume"])
        self.assertEqual(df.index.name, "Date")
        self.assertTrue(df.index.is_monotonic_increasing)
        self.assertEqual(float(df.iloc[-1]["Close"]), 11.0)


class TestTwelveDataProvider(unittest.IsolatedAsyncioTestCase):

    def _provider(self, client):
        return TwelveDataProvider(_spec("twelve_data", 8, 2), "key", client, SlidingWindowRateLimiter())

    async def test_parses_quote(self):
        client = _client(httpx.Response(200, json={
            "symbol": "MSFT", "name": "Microsoft Corp", "close": "410.2",
            "change": "-3.1", "percent_change": "-0.75", "volume": "1200",
        }))
        result = await self._provider(client).fetch_quote("MSFT")
        self.assertTrue(result.success)
        self.assertEqual(result.quote.name, "Microsoft Corp")
        self.assertAlmostEqual(result.quote.change_percent, -0.75)

    async def test_error_envelope_codes(self):
        cases = [
            ({"status": "error", "code": 429, "message": "You have run out of API credits for the current minute."}, ERR_RATE_LIMITED),
            ({"status": "error", "code": 401, "message": "Invalid apikey"}, ERR_AUTH),
            ({"status": "error", "code": 400, "message": "symbol not found"}, ERR_INVALID_SYMBOL),
        ]
        for body, tag in cases:
            with self.subTest(tag=tag):
                result = await self._provider(_client(httpx.Response(200, json=body))).fetch_quote("X")
                self.assertEqual(result.error, tag)

    async def test_http_429_is_rate_limited(self):
        result = await self._provider(_client(httpx.Response(429, text="slow down"))).fetch_quote("X")
        self.assertEqual(result.error, ERR_RATE_LIMITED)
        self.assertEqual(result.status_code, 429)


class TestFinnhubProvider(unittest.IsolatedAsyncioTestCase):

    def _provider(self, client):
        return FinnhubProvider(_spec("finnhub", 60, 3), "key", client, SlidingWindowRateLimiter())

    async def test_all_zero_quote_is_invalid_symbol(self):
        client = _client(httpx.Response(200, json={"c": 0, "d": None, "dp": None, "h": 0, "l": 0}))
        result = await self._provider(client).fetch_quote("NOPE")
        self.assertEqual(result.error, ERR_INVALID_SYMBOL)

    async def test_parses_quote(self):
        client = _client(httpx.Response(200, json={"c": 150.0, "d": 1.5, "dp": 1.01}))
        result = await self._provider(client).fetch_quote("AAPL")
        self.assertTrue(result.success)
        self.assertEqual(result.quote.volume, 0)
        self.assertAlmostEqual(result.quote.change, 1.5)

    async def test_403_is_auth_error(self):
        result = await self._provider(_client(httpx.Response(403, text="forbidden"))).fetch_quote("AAPL")
        self.assertEqual(result.error, ERR_AUTH)


class TestFMPProvider(unittest.IsolatedAsyncioTestCase):

    def _provider(self, client, limiter=None):
        return FMPProvider(
            ProviderSpec("fmp", "https://example.test", 250, 86_400_000, True, 4),
            "key",
            client,
            limiter or SlidingWindowRateLimiter(),
            cache=InMemoryCache(default_ttl=300),
        )

    async def test_cache_hit_skips_network_and_budget(self):
        limiter = SlidingWindowRateLimiter()
        client = _client(httpx.Response(200, json=[{"symbol": "AAPL", "name": "Apple", "price": 190.0}]))
        provider = self._provider(client, limiter)

        first = await provider.fetch_quote("AAPL")
        second = await provider.fetch_quote("AAPL")

        self.assertTrue(first.success)
        self.assertTrue(second.success)
        self.assertEqual(client.get.await_count, 1)
        self.assertEqual(limiter.remaining("fmp", 250, 86_400_000), 249)

    async def test_limit_error_message_is_quota(self):
        client = _client(httpx.Response(200, json={"Error Message": "Limit Reach . Please upgrade your plan"}))
        result = await self._provider(client).fetch_quote("AAPL")
        self.assertEqual(result.error, ERR_QUOTA)

    async def test_empty_list_is_invalid_symbol(self):
        result = await self._provider(_client(httpx.Response(200, json=[]))).fetch_quote("NOPE")
        self.assertEqual(result.error, ERR_INVALID_SYMBOL)


class TestCryptoProvider(unittest.IsolatedAsyncioTestCase):

    def test_allow_list_symbol_variants(self):
        self.assertEqual(crypto_base_symbol("btc-usd"), "BTC")
        self.assertEqual(crypto_base_symbol("ETHUSD"), "ETH")
        self.assertEqual(crypto_base_symbol("SOL"), "SOL")
        self.assertIsNone(crypto_base_symbol("AAPL"))
        self.assertFalse(is_crypto_symbol("LTC"))

    async def test_parses_simple_price(self):
        client = _client(httpx.Response(200, json={
            "bitcoin": {"usd": 100000.0, "usd_24h_change": 2.5, "usd_24h_vol": 3.0e10, "usd_market_cap": 2.0e12}
        }))
        result = await CryptoProvider(client).fetch_quote("BTC-USD")

        self.assertTrue(result.success)
        self.assertEqual(result.quote.symbol, "BTC")
        self.assertEqual(result.quote.source, "coingecko")
        self.assertAlmostEqual(result.quote.change_percent, 2.5)
        _, kwargs = client.get.call_args
        self.assertEqual(kwargs["timeout"], 8.0)

    async def test_timeout_serves_static_fallback(self):
        client = _client(httpx.ConnectTimeout("down"))
        result = await CryptoProvider(client).fetch_quote("ETH")

        self.assertTrue(result.success)
        self.assertEqual(result.quote.source, "static_fallback")
        self.assertEqual(result.quote.price, 3400.0)

    async def test_timeout_without_static_price_fails(self):
        client = _client(httpx.ConnectTimeout("down"))
        result = await CryptoProvider(client).fetch_quote("DOGE")
        self.assertFalse(result.success)
        self.assertEqual(result.error, ERR_TRANSPORT)


class TestNewsProvider(unittest.IsolatedAsyncioTestCase):

    async def test_newsapi_articles_are_cached(self):
        client = _client(httpx.Response(200, json={"articles": [
            {"title": "Fed holds rates", "description": "d", "url": "u", "source": {"name": "Reuters"}, "publishedAt": "t"},
            {"title": "[Removed]"},
        ]}))
        news = NewsProvider("key", client)

        first = await news.fetch_headlines(["AAPL"])
        second = await news.fetch_headlines(["AAPL"])

        self.assertEqual([item["title"] for item in first], ["Fed holds rates"])
        self.assertEqual(first, second)
        self.assertEqual(client.get.await_count, 1)

    async def test_failure_returns_empty_list(self):
        client = _client(httpx.ConnectError("offline"))
        self.assertEqual(await NewsProvider("key", client).fetch_headlines(), [])

    async def test_without_key_or_fallback_returns_empty(self):
        client = _client()
        self.assertEqual(await NewsProvider(None, client).fetch_headlines(), [])
        client.get.assert_not_awaited()


if __name__ == "__main__":
    unittest.main()
