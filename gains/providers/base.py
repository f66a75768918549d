"""Common result type and base class for market data adapters."""

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict, Optional

import httpx
import pandas as pd

from ..errors import (
    ERR_AUTH,
    ERR_INVALID_RESPONSE,
    ERR_RATE_LIMITED,
    ERR_TRANSPORT,
    truncate_body,
)
from ..models import ProviderSpec, Quote
from .rate_limiter import SlidingWindowRateLimiter

logger = logging.getLogger(__name__)

OHLCV_COLUMNS = ["Open", "High", "Low", "Close", "Volume"]


@dataclass
class ProviderResult:
    """Outcome of one adapter call: a quote/series or a typed error tag."""
    success: bool
    provider: str
    quote: Optional[Quote] = None
    data: Optional[pd.DataFrame] = None
    error: Optional[str] = None
    status_code: Optional[int] = None
    message: str = ""
    timestamp: Optional[datetime] = None

    def __post_init__(self):
        if self.timestamp is None:
            self.timestamp = datetime.now()

    @classmethod
    def ok(cls, provider: str, quote: Optional[Quote] = None, data: Optional[pd.DataFrame] = None) -> "ProviderResult":
        return cls(success=True, provider=provider, quote=quote, data=data)

    @classmethod
    def fail(
        cls,
        provider: str,
        error: str,
        message: str = "",
        status_code: Optional[int] = None,
    ) -> "ProviderResult":
        return cls(success=False, provider=provider, error=error, message=message, status_code=status_code)


def to_float(value: Any, default: float = 0.0) -> float:
    """Parse vendor numbers that may arrive as strings, percents or null."""
    if value is None:
        return default
    if isinstance(value, (int, float)):
        return float(value)
    text = str(value).strip().replace(",", "").rstrip("%")
    if not text or text.lower() in ("none", "null", "n/a", "-"):
        return default
    try:
        return float(text)
    except ValueError:
        return default


def to_optional_float(value: Any) -> Optional[float]:
    parsed = to_float(value, default=float("nan"))
    return None if parsed != parsed else parsed


class BaseQuoteProvider(ABC):
    """
    Base class for rate-limited market data adapters.

    Subclasses implement the vendor-specific request and envelope
    inspection; this class owns the limiter gate and the transport error
    translation so every adapter fails the same way.
    """

    def __init__(
        self,
        spec: ProviderSpec,
        api_key: Optional[str],
        http_client: httpx.AsyncClient,
        rate_limiter: SlidingWindowRateLimiter,
    ):
        self.spec = spec
        self.name = spec.name
        self.api_key = api_key
        self.http_client = http_client
        self.rate_limiter = rate_limiter

    @property
    def active(self) -> bool:
        return self.spec.active and bool(self.api_key)

    def _acquire(self) -> bool:
        if self.rate_limiter.allow(self.spec):
            return True
        logger.info("[%s] Local rate budget exhausted, skipping network call", self.name)
        return False

    async def _get(self, url: str, params: Optional[Dict[str, Any]] = None, timeout: Optional[float] = None):
        """
        GET a vendor endpoint.

        Returns:
            (response, None) on any HTTP response, (None, ProviderResult) on
            transport failure
        """
        try:
            kwargs: Dict[str, Any] = {"params": params}
            if timeout is not None:
                kwargs["timeout"] = timeout
            response = await self.http_client.get(url, **kwargs)
            return response, None
        except httpx.TimeoutException:
            logger.warning("[%s] Timeout calling %s", self.name, url)
            return None, ProviderResult.fail(self.name, ERR_TRANSPORT, "timeout")
        except httpx.HTTPError as exc:
            logger.warning("[%s] Transport error: %s", self.name, exc)
            return None, ProviderResult.fail(self.name, ERR_TRANSPORT, type(exc).__name__)

    def _check_status(self, response: httpx.Response) -> Optional[ProviderResult]:
        """Translate non-2xx statuses shared by all vendors."""
        status = response.status_code
        if 200 <= status < 300:
            return None
        body = truncate_body(response.text)
        logger.warning("[%s] HTTP %d: %s", self.name, status, body)
        if status == 429:
            return ProviderResult.fail(self.name, ERR_RATE_LIMITED, body, status)
        if status in (401, 403):
            return ProviderResult.fail(self.name, ERR_AUTH, body, status)
        if status >= 500:
            return ProviderResult.fail(self.name, ERR_TRANSPORT, body, status)
        return None

    def _json(self, response: httpx.Response) -> Any:
        try:
            return response.json()
        except ValueError:
            return None

    def _invalid(self, response: httpx.Response, message: str) -> ProviderResult:
        logger.warning("[%s] Invalid response (%s): %s", self.name, message, truncate_body(response.text))
        return ProviderResult.fail(self.name, ERR_INVALID_RESPONSE, message, response.status_code)

    @abstractmethod
    async def fetch_quote(self, symbol: str) -> ProviderResult:
        """Fetch a quote. Must return ProviderResult, never raise."""

    async def fetch_history(self, symbol: str, days: int = 365) -> ProviderResult:
        """Fetch daily OHLCV. Providers without a history endpoint report no data."""
        return ProviderResult.fail(self.name, ERR_INVALID_RESPONSE, "history not supported")

    @staticmethod
    def _normalize_ohlcv(df: Optional[pd.DataFrame]) -> Optional[pd.DataFrame]:
        """
        Normalize OHLCV DataFrame to standard format.

        Returns:
            DataFrame with columns Open, High, Low, Close, Volume and an
            ascending DatetimeIndex named 'Date', or None if unusable
        """
        if df is None or df.empty:
            return None

        df = df.copy()
        df.columns = [str(col).strip().capitalize() for col in df.columns]
        if not set(OHLCV_COLUMNS).issubset(df.columns):
            return None

        df = df[OHLCV_COLUMNS]
        for col in OHLCV_COLUMNS:
            df[col] = pd.to_numeric(df[col], errors="coerce")

        df.index = pd.to_datetime(df.index, errors="coerce")
        df.index.name = "Date"
        df = df[~df.index.isna()].dropna().sort_index()
        return df if not df.empty else None
