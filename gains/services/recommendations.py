"""Recommendation generator: AI backend chain, repair rules and projections."""

import asyncio
import logging
from typing import Awaitable, Callable, List, Optional

from ..ai.backends import AIBackend
from ..ai.parsing import parse_recommendations
from ..ai.prompts import SYSTEM_PROMPT, build_user_prompt
from ..errors import (
    ERR_AUTH,
    ERR_INVALID_RESPONSE,
    ERR_QUOTA,
    ERR_RATE_LIMITED,
    ERR_TIMEOUT,
    AIBackendError,
    ConfigurationError,
    RecommendationError,
    RecommendationParseError,
)
from ..models import RecommendationResult, UserProfile
from ..providers.news import NewsProvider
from .market_context import MarketContextAssembler
from .portfolio_analysis import analyze_existing_portfolio
from .portfolio_rules import finalize_recommendations
from .projections import calculate_projections
from .rule_based import RuleBasedBuilder

logger = logging.getLogger(__name__)

MAX_TOKENS = 3000
TEMPERATURE = 0.3
MARKET_DATA_UNAVAILABLE = (
    "=== LIVE MARKET DATA ===\n"
    "Real-time market data is unavailable; base recommendations on long-term fundamentals."
)


def exhaustion_message(failures: List[AIBackendError]) -> str:
    """User-facing summary of why every AI backend failed."""
    tags = {f.tag for f in failures}
    causes = []
    if ERR_QUOTA in tags:
        causes.append("API quota exhausted")
    if ERR_RATE_LIMITED in tags:
        causes.append("rate limit reached")
    if ERR_AUTH in tags:
        causes.append("invalid API key")
    if ERR_TIMEOUT in tags:
        causes.append("request timed out")
    if ERR_INVALID_RESPONSE in tags:
        causes.append("unusable response")
    names = ", ".join(dict.fromkeys(f.backend for f in failures)) or "none"
    detail = "; ".join(causes) or "service unavailable"
    return f"All AI providers failed ({names}): {detail}. Please try again later or check your API keys."


class RecommendationGenerator:
    """
    Produces a RecommendationResult for a user profile.

    Flow:
    1. Walk the AI backend chain in configured order
    2. Probe each backend under a deadline before the full call
    3. Build the prompt context once (market digest, holdings analysis, news)
    4. Parse and repair the output, then enforce capital and holding coverage
    5. Fall back to the rule-based builder when every backend failed

    Rate-limited calls are retried only outside production.
    """

    def __init__(
        self,
        backends: List[AIBackend],
        assembler: Optional[MarketContextAssembler] = None,
        news: Optional[NewsProvider] = None,
        rule_based: Optional[RuleBasedBuilder] = None,
        is_production: bool = True,
        probe_timeout: float = 10.0,
        probe_timeout_dev: float = 30.0,
        request_timeout: float = 120.0,
        dev_max_retries: int = 2,
        dev_retry_delay: float = 1.0,
        allow_rule_based_only: bool = False,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.backends = list(backends)
        self.assembler = assembler
        self.news = news
        self.rule_based = rule_based or RuleBasedBuilder()
        self.is_production = is_production
        self.probe_timeout = probe_timeout if is_production else probe_timeout_dev
        self.request_timeout = request_timeout
        self.max_retries = 0 if is_production else dev_max_retries
        self.retry_delay = dev_retry_delay
        self.allow_rule_based_only = allow_rule_based_only
        self._sleep = sleep

    async def _with_retry(self, backend: AIBackend, call: Callable[[], Awaitable[str]]) -> str:
        attempt = 0
        while True:
            try:
                return await call()
            except AIBackendError as exc:
                if exc.tag != ERR_RATE_LIMITED or attempt >= self.max_retries:
                    raise
                attempt += 1
                logger.info(
                    "[%s] Rate limited, retry %d/%d in %.1fs",
                    backend.name,
                    attempt,
                    self.max_retries,
                    self.retry_delay,
                )
                await self._sleep(self.retry_delay)

    async def _probe(self, backend: AIBackend) -> None:
        async def call() -> str:
            try:
                await asyncio.wait_for(backend.probe(self.probe_timeout), timeout=self.probe_timeout)
            except asyncio.TimeoutError as exc:
                raise AIBackendError(backend.name, ERR_TIMEOUT, f"probe exceeded {self.probe_timeout:.0f}s") from exc
            return "ok"

        await self._with_retry(backend, call)

    async def _build_prompt(self, profile: UserProfile) -> str:
        market_context = MARKET_DATA_UNAVAILABLE
        if self.assembler is not None:
            try:
                market_context = await self.assembler.assemble(profile)
            except Exception as exc:
                logger.warning("Market context assembly failed: %s", exc, exc_info=True)

        headlines = []
        if self.news is not None:
            symbols = [h.symbol for h in profile.existingPortfolio][:5]
            try:
                headlines = await self.news.fetch_headlines(symbols)
            except Exception as exc:
                logger.warning("News fetch failed: %s", exc)

        return build_user_prompt(profile, market_context, analyze_existing_portfolio(profile), headlines)

    async def _try_backend(self, backend: AIBackend, profile: UserProfile, prompt: str) -> RecommendationResult:
        text = await self._with_retry(
            backend,
            lambda: backend.complete(
                SYSTEM_PROMPT,
                prompt,
                max_tokens=MAX_TOKENS,
                temperature=TEMPERATURE,
                timeout=self.request_timeout,
            ),
        )
        try:
            parsed = parse_recommendations(text)
            items, repairs = finalize_recommendations(parsed.recommendations, profile)
            projections = calculate_projections(items, profile)
        except RecommendationParseError as exc:
            raise AIBackendError(backend.name, ERR_INVALID_RESPONSE, str(exc)) from exc
        except (ArithmeticError, ValueError, TypeError) as exc:
            logger.warning("[%s] Unusable recommendation values: %s", backend.name, exc, exc_info=True)
            raise AIBackendError(backend.name, ERR_INVALID_RESPONSE, f"unusable values: {exc}") from exc

        return RecommendationResult(
            recommendations=items,
            portfolio_projections=projections,
            reasoning=parsed.narrative.get("reasoning", ""),
            risk_assessment=parsed.narrative.get("riskAssessment", ""),
            market_outlook=parsed.narrative.get("marketOutlook", ""),
            source=backend.name,
            warnings=parsed.warnings + repairs,
        )

    async def generate(self, profile: UserProfile) -> RecommendationResult:
        """
        Generate recommendations for a validated profile.

        Raises:
            ConfigurationError: no AI backend configured (and rule-based only
                mode is off)
            RecommendationError: every source, including the rule-based
                builder, failed
        """
        if not self.backends:
            if self.allow_rule_based_only:
                logger.info("No AI backend configured, rule-based only mode")
                return self.rule_based.build(profile, note="No AI backend configured; showing rule-based recommendations.")
            raise ConfigurationError(
                "No AI backend configured. Set OPENAI_API_KEY, GROK_API_KEY or ANTHROPIC_API_KEY."
            )

        failures: List[AIBackendError] = []
        prompt: Optional[str] = None

        for backend in self.backends:
            try:
                await self._probe(backend)
            except AIBackendError as exc:
                logger.warning("[%s] Probe failed: %s", backend.name, exc)
                failures.append(exc)
                continue

            if prompt is None:
                prompt = await self._build_prompt(profile)

            try:
                result = await self._try_backend(backend, profile, prompt)
            except AIBackendError as exc:
                logger.warning("[%s] Recommendation call failed: %s", backend.name, exc)
                failures.append(exc)
                continue

            logger.info(
                "[%s] Generated %d recommendation(s), %d repair note(s)",
                backend.name,
                len(result.recommendations),
                len(result.warnings),
            )
            return result

        message = exhaustion_message(failures)
        logger.error(message)
        try:
            return self.rule_based.build(profile, note=f"{message} Showing rule-based recommendations.")
        except Exception as exc:
            logger.error("Rule-based builder failed: %s", exc, exc_info=True)
            raise RecommendationError(message) from exc
