"""Financial Modeling Prep adapter with a short quote cache."""

import logging
from typing import Optional

import httpx
import pandas as pd

from ..cache import InMemoryCache
from ..errors import ERR_INVALID_SYMBOL, ERR_QUOTA, ERR_RATE_LIMITED
from ..models import ProviderSpec, Quote, normalize_symbol
from .base import BaseQuoteProvider, ProviderResult, to_float, to_optional_float
from .rate_limiter import SlidingWindowRateLimiter

logger = logging.getLogger(__name__)


class FMPProvider(BaseQuoteProvider):
    """
    FMP quotes, history and news.

    The free tier allows 250 calls per day, so quotes are cached for a few
    minutes and cache hits do not consume rate budget.
    """

    def __init__(
        self,
        spec: ProviderSpec,
        api_key: Optional[str],
        http_client: httpx.AsyncClient,
        rate_limiter: SlidingWindowRateLimiter,
        cache: Optional[InMemoryCache] = None,
        cache_ttl: int = 300,
    ):
        super().__init__(spec, api_key, http_client, rate_limiter)
        self.cache = cache or InMemoryCache(default_ttl=cache_ttl)
        self.cache_ttl = cache_ttl

    def _envelope_error(self, payload, symbol: str):
        if isinstance(payload, dict) and "Error Message" in payload:
            message = str(payload["Error Message"])
            tag = ERR_QUOTA if "limit" in message.lower() else ERR_INVALID_SYMBOL
            logger.warning("[FMP] %s for %s: %s", tag, symbol, message[:200])
            return ProviderResult.fail(self.name, tag, message)
        return None

    async def fetch_quote(self, symbol: str) -> ProviderResult:
        symbol = normalize_symbol(symbol)
        cache_key = f"fmp_quote:{symbol}"
        cached = self.cache.get(cache_key, ttl_seconds=self.cache_ttl)
        if cached is not None:
            logger.debug("[FMP] Cache hit for %s", symbol)
            return ProviderResult.ok(self.name, quote=cached)

        if not self._acquire():
            return ProviderResult.fail(self.name, ERR_RATE_LIMITED, "daily budget exhausted")

        response, failure = await self._get(
            f"{self.spec.base_url}/quote/{symbol}",
            params={"apikey": self.api_key},
        )
        if failure:
            return failure
        status_failure = self._check_status(response)
        if status_failure:
            return status_failure

        payload = self._json(response)
        envelope_failure = self._envelope_error(payload, symbol)
        if envelope_failure:
            return envelope_failure
        if not isinstance(payload, list):
            return self._invalid(response, "body is not a JSON list")
        if not payload:
            return ProviderResult.fail(self.name, ERR_INVALID_SYMBOL, "empty quote list")

        item = payload[0]
        price = to_float(item.get("price"))
        if price <= 0:
            return self._invalid(response, "missing price")

        quote = Quote(
            symbol=item.get("symbol", symbol),
            name=item.get("name") or symbol,
            price=price,
            change=to_float(item.get("change")),
            change_percent=to_float(item.get("changesPercentage")),
            volume=int(to_float(item.get("volume"))),
            market_cap=to_optional_float(item.get("marketCap")),
            pe_ratio=to_optional_float(item.get("pe")),
            source=self.name,
        )
        self.cache.set(cache_key, quote)
        return ProviderResult.ok(self.name, quote=quote)

    async def fetch_history(self, symbol: str, days: int = 365) -> ProviderResult:
        symbol = normalize_symbol(symbol)
        if not self._acquire():
            return ProviderResult.fail(self.name, ERR_RATE_LIMITED, "daily budget exhausted")

        response, failure = await self._get(
            f"{self.spec.base_url}/historical-price-full/{symbol}",
            params={"timeseries": days, "apikey": self.api_key},
        )
        if failure:
            return failure
        status_failure = self._check_status(response)
        if status_failure:
            return status_failure

        payload = self._json(response)
        envelope_failure = self._envelope_error(payload, symbol)
        if envelope_failure:
            return envelope_failure
        rows = payload.get("historical") if isinstance(payload, dict) else None
        if not rows:
            return ProviderResult.fail(self.name, ERR_INVALID_SYMBOL, "no historical rows")

        df = self._normalize_ohlcv(pd.DataFrame(rows).set_index("date"))
        if df is None:
            return self._invalid(response, "unparseable historical rows")
        return ProviderResult.ok(self.name, data=df)

    async def fetch_news(self, symbols, limit: int = 10) -> list:
        """Stock news, used as the NewsAPI fallback. Returns [] on any failure."""
        if not self.active or not self._acquire():
            return []
        params = {"limit": limit, "apikey": self.api_key}
        if symbols:
            params["tickers"] = ",".join(symbols)
        response, failure = await self._get(f"{self.spec.base_url}/stock_news", params=params)
        if failure or self._check_status(response):
            return []
        payload = self._json(response)
        if not isinstance(payload, list):
            return []
        return [
            {
                "title": item.get("title", ""),
                "description": (item.get("text") or "")[:300],
                "url": item.get("url", ""),
                "source": item.get("site", "FMP"),
                "publishedAt": item.get("publishedDate", ""),
            }
            for item in payload[:limit]
            if item.get("title")
        ]
