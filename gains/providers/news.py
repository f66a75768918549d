"""Financial news headlines (NewsAPI, FMP fallback)."""

import logging
from typing import Dict, List, Optional, Sequence

import httpx

from ..cache import InMemoryCache
from ..errors import truncate_body
from .fmp import FMPProvider

logger = logging.getLogger(__name__)

NEWS_API_BASE_URL = "https://newsapi.org/v2"
NEWS_DOMAINS = "reuters.com,bloomberg.com,cnbc.com,marketwatch.com"


class NewsProvider:
    """
    Best-effort headline fetcher.

    Features:
    - NewsAPI ``everything`` restricted to financial outlets
    - FMP stock news when NewsAPI is unavailable
    - Caching (30 min default)
    - Never raises; an empty list means "no news"
    """

    def __init__(
        self,
        api_key: Optional[str],
        http_client: httpx.AsyncClient,
        cache: Optional[InMemoryCache] = None,
        fmp: Optional[FMPProvider] = None,
        cache_ttl: int = 1800,
    ):
        self.api_key = api_key
        self.http_client = http_client
        self.cache = cache or InMemoryCache(default_ttl=cache_ttl)
        self.cache_ttl = cache_ttl
        self.fmp = fmp

    async def fetch_headlines(self, symbols: Optional[Sequence[str]] = None, limit: int = 8) -> List[Dict[str, str]]:
        """
        Fetch recent headlines for symbols, or general market news.

        Returns:
            List of items with keys: title, description, url, source, publishedAt
        """
        symbols = list(symbols or [])
        cache_key = f"news:{','.join(sorted(symbols)) or 'market'}:{limit}"
        cached = self.cache.get(cache_key, ttl_seconds=self.cache_ttl)
        if cached is not None:
            logger.info("Cache hit for news: %s", cache_key)
            return cached

        items: List[Dict[str, str]] = []
        if self.api_key:
            items = await self._fetch_newsapi(symbols, limit)

        if not items and self.fmp is not None:
            try:
                items = await self.fmp.fetch_news(symbols, limit)
            except Exception as exc:
                logger.warning("FMP news fallback failed: %s", exc)
                items = []

        if items:
            self.cache.set(cache_key, items)
        logger.info("Fetched %d news items", len(items))
        return items

    async def _fetch_newsapi(self, symbols: List[str], limit: int) -> List[Dict[str, str]]:
        query = " OR ".join(symbols) if symbols else "stock market investment"
        try:
            response = await self.http_client.get(
                f"{NEWS_API_BASE_URL}/everything",
                params={
                    "q": query,
                    "domains": NEWS_DOMAINS,
                    "sortBy": "publishedAt",
                    "pageSize": limit,
                    "apiKey": self.api_key,
                },
                timeout=12,
            )
        except httpx.HTTPError as exc:
            logger.warning("[NewsAPI] Transport error: %s", exc)
            return []

        if response.status_code != 200:
            logger.warning("[NewsAPI] HTTP %d: %s", response.status_code, truncate_body(response.text))
            return []

        try:
            payload = response.json()
        except ValueError:
            logger.warning("[NewsAPI] Body is not JSON")
            return []

        items = []
        for article in payload.get("articles") or []:
            title = (article.get("title") or "").strip()
            if not title or title == "[Removed]":
                continue
            items.append(
                {
                    "title": title,
                    "description": (article.get("description") or "")[:300],
                    "url": article.get("url", ""),
                    "source": (article.get("source") or {}).get("name", ""),
                    "publishedAt": article.get("publishedAt", ""),
                }
            )
            if len(items) >= limit:
                break
        return items
