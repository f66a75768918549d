"""CoinGecko adapter for the crypto allow-list (keyless, outside the rate-limited chain)."""

import logging
from typing import Dict, Optional

import httpx

from ..errors import ERR_INVALID_RESPONSE, ERR_INVALID_SYMBOL, ERR_RATE_LIMITED, ERR_TRANSPORT
from ..models import Quote, normalize_symbol
from .base import ProviderResult, to_float

logger = logging.getLogger(__name__)

COINGECKO_BASE_URL = "https://api.coingecko.com/api/v3"

# Ticker -> (CoinGecko id, display name)
CRYPTO_IDS: Dict[str, tuple] = {
    "BTC": ("bitcoin", "Bitcoin"),
    "ETH": ("ethereum", "Ethereum"),
    "SOL": ("solana", "Solana"),
    "ADA": ("cardano", "Cardano"),
    "XRP": ("ripple", "XRP"),
    "DOGE": ("dogecoin", "Dogecoin"),
}

# Last-known prices served when CoinGecko is unreachable. Accuracy degrades
# with age; the quote is tagged "static_fallback" so callers can tell.
STATIC_FALLBACK_PRICES: Dict[str, float] = {
    "BTC": 97000.0,
    "ETH": 3400.0,
    "SOL": 190.0,
}


def crypto_base_symbol(symbol: str) -> Optional[str]:
    """
    Map BTC, BTC-USD, BTCUSD (any case) to the allow-list ticker.

    Returns:
        "BTC" etc. when the symbol is on the allow-list, None otherwise
    """
    s = normalize_symbol(symbol)
    for suffix in ("-USD", "USD"):
        if s.endswith(suffix) and s[: -len(suffix)] in CRYPTO_IDS:
            s = s[: -len(suffix)]
            break
    return s if s in CRYPTO_IDS else None


def is_crypto_symbol(symbol: str) -> bool:
    return crypto_base_symbol(symbol) is not None


class CryptoProvider:
    """
    CoinGecko ``simple/price`` adapter.

    Uses a hard per-call timeout. On transport failure, symbols with a
    static fallback price still produce a quote (zero change) instead of
    failing.
    """

    name = "coingecko"

    def __init__(self, http_client: httpx.AsyncClient, timeout: float = 8.0, base_url: str = COINGECKO_BASE_URL):
        self.http_client = http_client
        self.timeout = timeout
        self.base_url = base_url

    def _static_fallback(self, base: str, reason: str) -> ProviderResult:
        price = STATIC_FALLBACK_PRICES.get(base)
        if price is None:
            return ProviderResult.fail(self.name, ERR_TRANSPORT, reason)

        logger.warning("[CoinGecko] %s for %s, serving static fallback price %.2f", reason, base, price)
        return ProviderResult.ok(
            "static_fallback",
            quote=Quote(
                symbol=base,
                name=CRYPTO_IDS[base][1],
                price=price,
                change=0.0,
                change_percent=0.0,
                volume=0,
                source="static_fallback",
            ),
        )

    async def fetch_quote(self, symbol: str) -> ProviderResult:
        base = crypto_base_symbol(symbol)
        if base is None:
            return ProviderResult.fail(self.name, ERR_INVALID_SYMBOL, f"{symbol} not on crypto allow-list")

        coin_id, display_name = CRYPTO_IDS[base]
        try:
            response = await self.http_client.get(
                f"{self.base_url}/simple/price",
                params={
                    "ids": coin_id,
                    "vs_currencies": "usd",
                    "include_24hr_change": "true",
                    "include_24hr_vol": "true",
                    "include_market_cap": "true",
                },
                timeout=self.timeout,
            )
        except httpx.TimeoutException:
            return self._static_fallback(base, f"timeout after {self.timeout:.0f}s")
        except httpx.HTTPError as exc:
            return self._static_fallback(base, f"transport error {type(exc).__name__}")

        if response.status_code == 429:
            logger.warning("[CoinGecko] Rate limited for %s", base)
            return ProviderResult.fail(self.name, ERR_RATE_LIMITED, "HTTP 429", 429)
        if response.status_code >= 500:
            return self._static_fallback(base, f"HTTP {response.status_code}")
        if response.status_code != 200:
            return ProviderResult.fail(self.name, ERR_INVALID_RESPONSE, f"HTTP {response.status_code}", response.status_code)

        try:
            payload = response.json()
        except ValueError:
            return ProviderResult.fail(self.name, ERR_INVALID_RESPONSE, "body is not JSON")

        data = payload.get(coin_id) if isinstance(payload, dict) else None
        price = to_float((data or {}).get("usd"))
        if price <= 0:
            return ProviderResult.fail(self.name, ERR_INVALID_RESPONSE, "missing usd price")

        change_percent = to_float(data.get("usd_24h_change"))
        # 24h absolute change derived from the percent move
        change = price - price / (1 + change_percent / 100) if change_percent > -100 else 0.0

        return ProviderResult.ok(
            self.name,
            quote=Quote(
                symbol=base,
                name=display_name,
                price=price,
                change=round(change, 2),
                change_percent=round(change_percent, 2),
                volume=int(to_float(data.get("usd_24h_vol"))),
                market_cap=to_float(data.get("usd_market_cap")) or None,
                source=self.name,
            ),
        )
