"""Wires configuration into providers, the generator, the job queue and the worker."""

import logging
from dataclasses import dataclass
from typing import List, Optional

import httpx

from .ai.backends import AIBackend, build_backends
from .cache import InMemoryCache
from .config import Config, MarketDataSettings
from .http_client import close_http_client, get_http_client
from .jobs.queue import JobQueue, create_job_queue
from .jobs.worker import JobProcessor
from .providers.alpha_vantage import AlphaVantageProvider
from .providers.crypto import CryptoProvider
from .providers.finnhub import FinnhubProvider
from .providers.fmp import FMPProvider
from .providers.news import NewsProvider
from .providers.router import QuoteRouter
from .providers.twelve_data import TwelveDataProvider
from .services.market_context import MarketContextAssembler
from .services.recommendations import RecommendationGenerator
from .services.rule_based import RuleBasedBuilder

logger = logging.getLogger(__name__)


@dataclass
class Services:
    """Everything a process needs, built once at startup."""
    config: Config
    http_client: httpx.AsyncClient
    market: MarketDataSettings
    router: QuoteRouter
    news: NewsProvider
    backends: List[AIBackend]
    generator: RecommendationGenerator
    queue: JobQueue
    processor: JobProcessor

    async def aclose(self) -> None:
        await self.processor.stop()
        await close_http_client(self.http_client)


def build_router(config: Config, market: MarketDataSettings, http_client: httpx.AsyncClient) -> QuoteRouter:
    limiter = market.rate_limiter
    fmp = FMPProvider(
        market.get("fmp"),
        config.fmp_api_key,
        http_client,
        limiter,
        cache=InMemoryCache(default_ttl=config.fmp_quote_cache_ttl),
        cache_ttl=config.fmp_quote_cache_ttl,
    )
    providers = [
        AlphaVantageProvider(market.get("alpha_vantage"), config.alphavantage_api_key, http_client, limiter),
        TwelveDataProvider(market.get("twelve_data"), config.twelvedata_api_key, http_client, limiter),
        FinnhubProvider(market.get("finnhub"), config.finnhub_api_key, http_client, limiter),
        fmp,
    ]
    return QuoteRouter(providers, crypto=CryptoProvider(http_client, timeout=config.crypto_timeout))


def build_services(
    config: Config,
    http_client: Optional[httpx.AsyncClient] = None,
    queue: Optional[JobQueue] = None,
) -> Services:
    """Construct the service graph from configuration."""
    http_client = http_client or get_http_client(config.http_timeout)
    market = config.market_data()
    router = build_router(config, market, http_client)

    fmp = next((p for p in router.providers if isinstance(p, FMPProvider)), None)
    news = NewsProvider(
        config.news_api_key,
        http_client,
        cache=InMemoryCache(default_ttl=config.news_cache_ttl),
        fmp=fmp if fmp is not None and fmp.active else None,
        cache_ttl=config.news_cache_ttl,
    )

    backends = build_backends(config, http_client)
    generator = RecommendationGenerator(
        backends,
        assembler=MarketContextAssembler(router),
        news=news,
        rule_based=RuleBasedBuilder(),
        is_production=config.is_production,
        probe_timeout=config.ai_probe_timeout,
        probe_timeout_dev=config.ai_probe_timeout_dev,
        request_timeout=config.ai_request_timeout,
        dev_max_retries=config.dev_max_retries,
        dev_retry_delay=config.dev_retry_delay,
        allow_rule_based_only=config.allow_rule_based_only,
    )

    queue = queue or create_job_queue(config)
    processor = JobProcessor(
        queue,
        generator,
        poll_interval=config.worker_poll_interval,
        batch_size=config.worker_batch_size,
        job_ttl_seconds=config.job_ttl_seconds,
    )

    active = [p.name for p in router.active_providers()]
    logger.info("Market data providers active: %s", active or "none (crypto only)")
    if not backends and not config.allow_rule_based_only:
        logger.warning("No AI backend configured; recommendation requests will fail")

    return Services(
        config=config,
        http_client=http_client,
        market=market,
        router=router,
        news=news,
        backends=backends,
        generator=generator,
        queue=queue,
        processor=processor,
    )
