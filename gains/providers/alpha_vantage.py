"""Alpha Vantage adapter (GLOBAL_QUOTE and TIME_SERIES_DAILY)."""

import logging

import pandas as pd

from ..errors import ERR_INVALID_SYMBOL, ERR_QUOTA, ERR_RATE_LIMITED, truncate_body
from ..models import Quote, normalize_symbol
from .base import BaseQuoteProvider, ProviderResult, to_float

logger = logging.getLogger(__name__)


class AlphaVantageProvider(BaseQuoteProvider):
    """
    Alpha Vantage quotes and daily history.

    Alpha Vantage answers rate-limit and quota problems with HTTP 200 and a
    ``Note`` or ``Information`` key in the body instead of a quote, so the
    envelope has to be inspected before the payload is trusted.
    """

    def _envelope_error(self, payload: dict, symbol: str):
        if "Error Message" in payload:
            logger.info("[AlphaVantage] Unknown symbol %s: %s", symbol, truncate_body(payload["Error Message"]))
            return ProviderResult.fail(self.name, ERR_INVALID_SYMBOL, payload["Error Message"])

        notice = payload.get("Note") or payload.get("Information")
        if notice:
            text = str(notice)
            tag = ERR_QUOTA if "per day" in text.lower() or "premium" in text.lower() else ERR_RATE_LIMITED
            logger.warning("[AlphaVantage] %s for %s: %s", tag, symbol, truncate_body(text))
            return ProviderResult.fail(self.name, tag, text)
        return None

    async def fetch_quote(self, symbol: str) -> ProviderResult:
        symbol = normalize_symbol(symbol)
        if not self._acquire():
            return ProviderResult.fail(self.name, ERR_RATE_LIMITED, "local budget exhausted")

        response, failure = await self._get(
            self.spec.base_url,
            params={"function": "GLOBAL_QUOTE", "symbol": symbol, "apikey": self.api_key},
        )
        if failure:
            return failure
        status_failure = self._check_status(response)
        if status_failure:
            return status_failure

        payload = self._json(response)
        if not isinstance(payload, dict):
            return self._invalid(response, "body is not a JSON object")

        envelope_failure = self._envelope_error(payload, symbol)
        if envelope_failure:
            return envelope_failure

        quote = payload.get("Global Quote")
        if not quote:
            return ProviderResult.fail(self.name, ERR_INVALID_SYMBOL, "empty Global Quote")

        price = to_float(quote.get("05. price"))
        if price <= 0:
            return self._invalid(response, "missing price")

        return ProviderResult.ok(
            self.name,
            quote=Quote(
                symbol=quote.get("01. symbol", symbol),
                name=symbol,
                price=price,
                change=to_float(quote.get("09. change")),
                change_percent=to_float(quote.get("10. change percent")),
                volume=int(to_float(quote.get("06. volume"))),
                source=self.name,
            ),
        )

    async def fetch_history(self, symbol: str, days: int = 365) -> ProviderResult:
        symbol = normalize_symbol(symbol)
        if not self._acquire():
            return ProviderResult.fail(self.name, ERR_RATE_LIMITED, "local budget exhausted")

        response, failure = await self._get(
            self.spec.base_url,
            params={
                "function": "TIME_SERIES_DAILY",
                "symbol": symbol,
                "outputsize": "full" if days > 100 else "compact",
                "apikey": self.api_key,
            },
        )
        if failure:
            return failure
        status_failure = self._check_status(response)
        if status_failure:
            return status_failure

        payload = self._json(response)
        if not isinstance(payload, dict):
            return self._invalid(response, "body is not a JSON object")
        envelope_failure = self._envelope_error(payload, symbol)
        if envelope_failure:
            return envelope_failure

        series = payload.get("Time Series (Daily)")
        if not series:
            return ProviderResult.fail(self.name, ERR_INVALID_SYMBOL, "no daily series")

        df = pd.DataFrame.from_dict(series, orient="index")
        df = df.rename(columns=lambda c: c.split(". ", 1)[-1])
        df = self._normalize_ohlcv(df)
        if df is None:
            return self._invalid(response, "unparseable daily series")
        return ProviderResult.ok(self.name, data=df.tail(days))
