"""Priority-ordered fallback across market data providers."""

import logging
from typing import List, Optional, Sequence

import pandas as pd

from ..models import Quote, normalize_symbol
from .base import OHLCV_COLUMNS, BaseQuoteProvider, ProviderResult
from .crypto import CryptoProvider, is_crypto_symbol

logger = logging.getLogger(__name__)


class QuoteRouter:
    """
    Market data router with multi-source fallback.

    Strategy:
    1. Crypto allow-list symbols -> CoinGecko adapter directly
    2. Otherwise active providers (credential configured), ascending priority
    3. First success wins; failures are logged and the next provider is tried
    4. Exhaustion returns None / empty DataFrame, never raises

    Provider attempts for one symbol are strictly sequential.
    """

    def __init__(self, providers: Sequence[BaseQuoteProvider], crypto: Optional[CryptoProvider] = None):
        self.providers = list(providers)
        self.crypto = crypto

    def active_providers(self) -> List[BaseQuoteProvider]:
        return sorted((p for p in self.providers if p.active), key=lambda p: p.spec.priority)

    def _log_failure(self, symbol: str, result: ProviderResult) -> None:
        logger.warning(
            "Provider %s failed for %s: %s%s %s",
            result.provider,
            symbol,
            result.error,
            f" (HTTP {result.status_code})" if result.status_code else "",
            result.message[:200],
        )

    async def get_stock_data(self, symbol: str) -> Optional[Quote]:
        """
        Fetch a quote through the fallback chain.

        Returns:
            Quote from the first provider that answered, or None when every
            provider failed (callers proceed with partial data)
        """
        symbol = normalize_symbol(symbol)
        if not symbol:
            return None

        if is_crypto_symbol(symbol) and self.crypto is not None:
            try:
                result = await self.crypto.fetch_quote(symbol)
            except Exception as exc:
                logger.error("Crypto adapter raised for %s: %s", symbol, exc)
                return None
            if result.success:
                return result.quote
            self._log_failure(symbol, result)
            return None

        chain = self.active_providers()
        if not chain:
            logger.warning("No active market data provider for %s", symbol)
            return None

        for provider in chain:
            try:
                result = await provider.fetch_quote(symbol)
            except Exception as exc:
                logger.error("Provider %s raised for %s: %s", provider.name, symbol, exc, exc_info=True)
                continue

            if result.success and result.quote is not None:
                logger.debug("Quote for %s served by %s", symbol, provider.name)
                return result.quote
            self._log_failure(symbol, result)

        logger.warning("All providers exhausted for %s", symbol)
        return None

    async def get_historical_data(self, symbol: str, days: int = 365) -> pd.DataFrame:
        """
        Fetch daily OHLCV through the same chain.

        Returns:
            Normalized DataFrame, empty when no provider could serve it
        """
        symbol = normalize_symbol(symbol)
        for provider in self.active_providers():
            try:
                result = await provider.fetch_history(symbol, days)
            except Exception as exc:
                logger.error("Provider %s raised on history for %s: %s", provider.name, symbol, exc, exc_info=True)
                continue

            if result.success and result.data is not None and not result.data.empty:
                logger.info("History for %s served by %s (%d rows)", symbol, provider.name, len(result.data))
                return result.data
            self._log_failure(symbol, result)

        logger.warning("No history available for %s", symbol)
        empty = pd.DataFrame(columns=OHLCV_COLUMNS)
        empty.index.name = "Date"
        return empty
