"""Finnhub quote adapter."""

import logging

from ..errors import ERR_INVALID_SYMBOL, ERR_RATE_LIMITED
from ..models import Quote, normalize_symbol
from .base import BaseQuoteProvider, ProviderResult, to_float

logger = logging.getLogger(__name__)


class FinnhubProvider(BaseQuoteProvider):
    """
    Finnhub ``/quote`` adapter.

    Finnhub answers unknown symbols with HTTP 200 and an all-zero quote
    (``c == 0`` and ``d is None``), and does not report volume on this
    endpoint.
    """

    async def fetch_quote(self, symbol: str) -> ProviderResult:
        symbol = normalize_symbol(symbol)
        if not self._acquire():
            return ProviderResult.fail(self.name, ERR_RATE_LIMITED, "local budget exhausted")

        response, failure = await self._get(
            f"{self.spec.base_url}/quote",
            params={"symbol": symbol, "token": self.api_key},
        )
        if failure:
            return failure
        status_failure = self._check_status(response)
        if status_failure:
            return status_failure

        payload = self._json(response)
        if not isinstance(payload, dict):
            return self._invalid(response, "body is not a JSON object")
        if "error" in payload:
            logger.warning("[Finnhub] Error for %s: %s", symbol, payload["error"])
            return ProviderResult.fail(self.name, ERR_INVALID_SYMBOL, str(payload["error"]))

        price = to_float(payload.get("c"))
        if price <= 0 and payload.get("d") is None:
            logger.info("[Finnhub] No data for %s", symbol)
            return ProviderResult.fail(self.name, ERR_INVALID_SYMBOL, "empty quote")
        if price <= 0:
            return self._invalid(response, "non-positive price")

        return ProviderResult.ok(
            self.name,
            quote=Quote(
                symbol=symbol,
                name=symbol,
                price=price,
                change=to_float(payload.get("d")),
                change_percent=to_float(payload.get("dp")),
                volume=0,
                source=self.name,
            ),
        )
