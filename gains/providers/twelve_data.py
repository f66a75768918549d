"""Twelve Data adapter."""

import logging

import pandas as pd

from ..errors import ERR_AUTH, ERR_INVALID_SYMBOL, ERR_QUOTA, ERR_RATE_LIMITED, truncate_body
from ..models import Quote, normalize_symbol
from .base import BaseQuoteProvider, ProviderResult, to_float, to_optional_float

logger = logging.getLogger(__name__)


class TwelveDataProvider(BaseQuoteProvider):
    """Twelve Data quotes and time series; errors come as ``{"status": "error"}``."""

    def _envelope_error(self, payload: dict, symbol: str):
        if payload.get("status") != "error":
            return None

        code = int(to_float(payload.get("code"), 0))
        message = str(payload.get("message", ""))
        logger.warning("[TwelveData] Error %s for %s: %s", code, symbol, truncate_body(message))
        if code == 429:
            tag = ERR_QUOTA if "day" in message.lower() else ERR_RATE_LIMITED
            return ProviderResult.fail(self.name, tag, message, code)
        if code in (401, 403):
            return ProviderResult.fail(self.name, ERR_AUTH, message, code)
        return ProviderResult.fail(self.name, ERR_INVALID_SYMBOL, message, code or None)

    async def fetch_quote(self, symbol: str) -> ProviderResult:
        symbol = normalize_symbol(symbol)
        if not self._acquire():
            return ProviderResult.fail(self.name, ERR_RATE_LIMITED, "local budget exhausted")

        response, failure = await self._get(
            f"{self.spec.base_url}/quote",
            params={"symbol": symbol, "apikey": self.api_key},
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

        price = to_float(payload.get("close"))
        if price <= 0:
            return self._invalid(response, "missing close")

        return ProviderResult.ok(
            self.name,
            quote=Quote(
                symbol=payload.get("symbol", symbol),
                name=payload.get("name") or symbol,
                price=price,
                change=to_float(payload.get("change")),
                change_percent=to_float(payload.get("percent_change")),
                volume=int(to_float(payload.get("volume"))),
                market_cap=to_optional_float(payload.get("market_cap")),
                source=self.name,
            ),
        )

    async def fetch_history(self, symbol: str, days: int = 365) -> ProviderResult:
        symbol = normalize_symbol(symbol)
        if not self._acquire():
            return ProviderResult.fail(self.name, ERR_RATE_LIMITED, "local budget exhausted")

        response, failure = await self._get(
            f"{self.spec.base_url}/time_series",
            params={
                "symbol": symbol,
                "interval": "1day",
                "outputsize": min(max(days, 1), 5000),
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

        values = payload.get("values") or []
        if not values:
            return ProviderResult.fail(self.name, ERR_INVALID_SYMBOL, "no values")

        df = pd.DataFrame(values).set_index("datetime")
        df = self._normalize_ohlcv(df)
        if df is None:
            return self._invalid(response, "unparseable time series")
        return ProviderResult.ok(self.name, data=df)
