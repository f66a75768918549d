"""Configuration management for the G.AI.NS backend."""

import os
from dataclasses import dataclass, field
from typing import List, Optional

from dotenv import load_dotenv

from .models import ProviderSpec
from .providers.rate_limiter import SlidingWindowRateLimiter

# Load environment variables
load_dotenv()

# Provider endpoints
ALPHA_VANTAGE_BASE_URL = "https://www.alphavantage.co/query"
TWELVE_DATA_BASE_URL = "https://api.twelvedata.com"
FINNHUB_BASE_URL = "https://finnhub.io/api/v1"
FMP_BASE_URL = "https://financialmodelingprep.com/api/v3"

# AI endpoints
OPENAI_BASE_URL = "https://api.openai.com/v1"
GROK_BASE_URL = "https://api.x.ai/v1"
ANTHROPIC_BASE_URL = "https://api.anthropic.com/v1"

MINUTE_MS = 60_000
DAY_MS = 86_400_000


def _env_str(name: str, default: str = "") -> str:
    return os.getenv(name, default).strip()


def _env_optional(name: str) -> Optional[str]:
    return _env_str(name) or None


def _env_bool(name: str, default: bool = False) -> bool:
    raw = _env_str(name)
    if not raw:
        return default
    return raw.lower() in ("1", "true", "yes", "on")


@dataclass
class MarketDataSettings:
    """
    Provider specs plus the rate limiter that guards them.

    Constructed once at startup and passed to every adapter, so tests can
    build an isolated instance instead of sharing process-wide state.
    """
    providers: List[ProviderSpec]
    rate_limiter: SlidingWindowRateLimiter = field(default_factory=SlidingWindowRateLimiter)

    def get(self, name: str) -> Optional[ProviderSpec]:
        return next((p for p in self.providers if p.name == name), None)


@dataclass
class Config:
    """Application configuration loaded from environment variables."""

    # AI backends
    openai_api_key: Optional[str] = None
    openai_model: str = "gpt-4o-mini"
    grok_api_key: Optional[str] = None
    grok_model: str = "grok-3-mini"
    anthropic_api_key: Optional[str] = None
    claude_model: str = "claude-3-5-sonnet-latest"
    ai_backend_order: List[str] = field(default_factory=lambda: ["openai", "grok", "claude"])
    allow_rule_based_only: bool = False

    # Market data providers (optional)
    alphavantage_api_key: Optional[str] = None
    alphavantage_rpm: int = 5  # Free tier: 5 requests per minute
    twelvedata_api_key: Optional[str] = None
    twelvedata_rpm: int = 8  # Free tier: 8 requests per minute
    finnhub_api_key: Optional[str] = None
    finnhub_rpm: int = 60
    fmp_api_key: Optional[str] = None
    fmp_daily_limit: int = 250
    news_api_key: Optional[str] = None

    # Cache TTLs (seconds)
    fmp_quote_cache_ttl: int = 300
    news_cache_ttl: int = 1800

    # Runtime
    app_env: str = "production"
    http_timeout: int = 30
    crypto_timeout: float = 8.0
    ai_probe_timeout: float = 10.0
    ai_probe_timeout_dev: float = 30.0
    ai_request_timeout: float = 120.0
    dev_max_retries: int = 2
    dev_retry_delay: float = 1.0

    # Job queue
    job_queue_type: str = "file"
    job_queue_dir: str = ".job-queue"
    upstash_redis_rest_url: Optional[str] = None
    upstash_redis_rest_token: Optional[str] = None
    worker_poll_interval: float = 2.0
    worker_batch_size: int = 3
    job_ttl_seconds: int = 600

    # HTTP surface
    recommendation_mode: str = "async"
    embedded_worker: bool = True
    api_host: str = "0.0.0.0"
    api_port: int = 8000
    log_level: str = "INFO"

    @property
    def is_production(self) -> bool:
        return self.app_env == "production"

    @property
    def has_ai_backend(self) -> bool:
        return bool(self.openai_api_key or self.grok_api_key or self.anthropic_api_key)

    @property
    def has_market_data(self) -> bool:
        return bool(
            self.alphavantage_api_key
            or self.twelvedata_api_key
            or self.finnhub_api_key
            or self.fmp_api_key
        )

    def market_data(self) -> MarketDataSettings:
        """Build provider specs; a provider is active iff its key is set."""
        providers = [
            ProviderSpec(
                name="alpha_vantage",
                base_url=ALPHA_VANTAGE_BASE_URL,
                max_requests=self.alphavantage_rpm,
                window_ms=MINUTE_MS,
                active=bool(self.alphavantage_api_key),
                priority=1,
            ),
            ProviderSpec(
                name="twelve_data",
                base_url=TWELVE_DATA_BASE_URL,
                max_requests=self.twelvedata_rpm,
                window_ms=MINUTE_MS,
                active=bool(self.twelvedata_api_key),
                priority=2,
            ),
            ProviderSpec(
                name="finnhub",
                base_url=FINNHUB_BASE_URL,
                max_requests=self.finnhub_rpm,
                window_ms=MINUTE_MS,
                active=bool(self.finnhub_api_key),
                priority=3,
            ),
            ProviderSpec(
                name="fmp",
                base_url=FMP_BASE_URL,
                max_requests=self.fmp_daily_limit,
                window_ms=DAY_MS,
                active=bool(self.fmp_api_key),
                priority=4,
            ),
        ]
        return MarketDataSettings(providers=providers)

    @classmethod
    def from_env(cls) -> "Config":
        """Create configuration from environment variables."""
        order = [
            part.strip().lower()
            for part in _env_str("AI_BACKEND_ORDER", "openai,grok,claude").split(",")
            if part.strip()
        ]
        return cls(
            openai_api_key=_env_optional("OPENAI_API_KEY"),
            openai_model=_env_str("OPENAI_MODEL", "gpt-4o-mini") or "gpt-4o-mini",
            grok_api_key=_env_optional("GROK_API_KEY"),
            grok_model=_env_str("GROK_MODEL", "grok-3-mini") or "grok-3-mini",
            anthropic_api_key=_env_optional("ANTHROPIC_API_KEY"),
            claude_model=_env_str("CLAUDE_MODEL", "claude-3-5-sonnet-latest") or "claude-3-5-sonnet-latest",
            ai_backend_order=order or ["openai", "grok", "claude"],
            allow_rule_based_only=_env_bool("ALLOW_RULE_BASED_ONLY"),
            alphavantage_api_key=_env_optional("ALPHA_VANTAGE_API_KEY"),
            alphavantage_rpm=int(os.getenv("ALPHA_VANTAGE_RPM", "5")),
            twelvedata_api_key=_env_optional("TWELVE_DATA_API_KEY"),
            twelvedata_rpm=int(os.getenv("TWELVE_DATA_RPM", "8")),
            finnhub_api_key=_env_optional("FINNHUB_API_KEY"),
            finnhub_rpm=int(os.getenv("FINNHUB_RPM", "60")),
            fmp_api_key=_env_optional("FMP_API_KEY"),
            fmp_daily_limit=int(os.getenv("FMP_DAILY_LIMIT", "250")),
            news_api_key=_env_optional("NEWS_API_KEY"),
            fmp_quote_cache_ttl=int(os.getenv("FMP_QUOTE_CACHE_TTL", "300")),
            news_cache_ttl=int(os.getenv("NEWS_CACHE_TTL", "1800")),
            app_env=_env_str("APP_ENV", "production").lower() or "production",
            http_timeout=int(os.getenv("HTTP_TIMEOUT", "30")),
            crypto_timeout=float(os.getenv("CRYPTO_TIMEOUT", "8")),
            ai_probe_timeout=float(os.getenv("AI_PROBE_TIMEOUT", "10")),
            job_queue_type=_env_str("JOB_QUEUE_TYPE", "file").lower() or "file",
            job_queue_dir=_env_str("JOB_QUEUE_DIR", ".job-queue") or ".job-queue",
            upstash_redis_rest_url=_env_optional("UPSTASH_REDIS_REST_URL"),
            upstash_redis_rest_token=_env_optional("UPSTASH_REDIS_REST_TOKEN"),
            worker_poll_interval=float(os.getenv("WORKER_POLL_INTERVAL", "2")),
            job_ttl_seconds=int(os.getenv("JOB_TTL_SECONDS", "600")),
            recommendation_mode=_env_str("RECOMMENDATION_MODE", "async").lower() or "async",
            embedded_worker=_env_bool("EMBEDDED_WORKER", default=True),
            api_host=_env_str("API_HOST", "0.0.0.0") or "0.0.0.0",
            api_port=int(os.getenv("API_PORT", "8000")),
            log_level=_env_str("LOG_LEVEL", "INFO").upper() or "INFO",
        )
