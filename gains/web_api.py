"""REST API - FastAPI application exposing recommendations, job polling and market data."""

import logging
from contextlib import asynccontextmanager
from datetime import datetime
from typing import Any, Dict, Optional

from fastapi import FastAPI, HTTPException, Query, Request, status
from fastapi.responses import JSONResponse

from . import __version__
from .container import Services
from .errors import ConfigurationError, RecommendationError
from .models import Job, JobStatus, UserProfile, utc_now

logger = logging.getLogger(__name__)

EXPECTED_PROCESSING_SECONDS = 45.0
PENDING_WARNING_MINUTES = 2
PROCESSING_WARNING_MINUTES = 3


def _error_response(error: str, details: str, status_code: int = 500) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content={"error": error, "details": details, "timestamp": utc_now().isoformat()},
    )


def estimate_progress(job: Job, now: Optional[datetime] = None) -> int:
    """
    Rough completion percentage for polling clients.

    Pending jobs never report more than 15%; processing jobs move from 15%
    toward 95% as elapsed time approaches the expected duration.
    """
    now = now or utc_now()
    if job.status.terminal:
        return 100
    if job.status == JobStatus.PENDING:
        waited = (now - job.created_at).total_seconds()
        return int(min(15.0, 5.0 + waited / 2))
    elapsed = (now - job.updated_at).total_seconds()
    return int(min(95.0, 15.0 + 80.0 * elapsed / EXPECTED_PROCESSING_SECONDS))


def job_status_payload(job: Job, now: Optional[datetime] = None) -> Dict[str, Any]:
    now = now or utc_now()
    age_seconds = max(0, int(round((now - job.created_at).total_seconds())))
    age_minutes = age_seconds // 60
    payload: Dict[str, Any] = {
        "requestId": job.id,
        "status": job.status.value,
        "createdAt": job.created_at.isoformat(),
        "updatedAt": job.updated_at.isoformat(),
        "jobAge": {
            "seconds": age_seconds,
            "minutes": age_minutes,
            "humanReadable": f"{age_minutes}m {age_seconds % 60}s" if age_minutes else f"{age_seconds}s",
        },
        "progress": estimate_progress(job, now),
    }

    if job.status == JobStatus.COMPLETED:
        payload["result"] = job.result
    elif job.status == JobStatus.FAILED:
        payload["error"] = job.error or "Recommendation generation failed"
    elif job.status == JobStatus.PROCESSING:
        payload["message"] = "Recommendation generation in progress..."
        if age_minutes >= PROCESSING_WARNING_MINUTES:
            payload["warning"] = (
                f"Job has been processing for {age_minutes} minutes. This may indicate a system issue."
            )
    else:
        payload["message"] = "Recommendation generation queued, waiting to start..."
        if age_minutes >= PENDING_WARNING_MINUTES:
            payload["warning"] = (
                f"Job has been pending for {age_minutes} minutes. Is the background worker running?"
            )
    return payload


def create_app(services: Services) -> FastAPI:
    """Build the FastAPI app around an already-wired service graph."""

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        config = services.config
        if config.embedded_worker and config.recommendation_mode == "async":
            services.processor.start()
            logger.info("Embedded job processor started")
        yield
        await services.aclose()

    app = FastAPI(title="G.AI.NS Recommendation API", version=__version__, lifespan=lifespan)
    app.state.services = services

    def _services(request: Request) -> Services:
        return request.app.state.services

    @app.get("/healthz")
    async def healthz(request: Request):
        """Unauthenticated health probe endpoint for external pingers."""
        svc = _services(request)
        return {
            "status": "ok",
            "version": __version__,
            "queue": svc.queue.name,
            "worker": svc.processor.running,
        }

    @app.post("/api/recommendations")
    async def create_recommendations(
        profile: UserProfile,
        request: Request,
        mode: Optional[str] = Query(default=None, pattern="^(sync|async)$"),
    ):
        """
        Generate recommendations synchronously, or queue a job and return its id.
        """
        svc = _services(request)
        mode = mode or svc.config.recommendation_mode

        if not svc.backends and not svc.config.allow_rule_based_only:
            logger.error("Recommendation request rejected: no AI backend configured")
            return _error_response(
                "AI service not configured",
                "No AI backend configured. Set OPENAI_API_KEY, GROK_API_KEY or ANTHROPIC_API_KEY.",
            )

        if mode == "sync":
            try:
                result = await svc.generator.generate(profile)
            except (ConfigurationError, RecommendationError) as exc:
                logger.error("Synchronous generation failed: %s", exc)
                return _error_response("Failed to generate recommendations", str(exc))
            return result.to_dict()

        job_id = await svc.queue.add_job(profile.model_dump(mode="json"))
        return JSONResponse(
            status_code=status.HTTP_202_ACCEPTED,
            content={
                "requestId": job_id,
                "status": JobStatus.PENDING.value,
                "message": "Recommendation generation queued. Poll /api/results/{requestId} for the result.",
            },
        )

    @app.get("/api/results/{request_id}")
    async def get_results(request_id: str, request: Request):
        job = await _services(request).queue.get_job(request_id)
        if job is None:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Job not found")
        return job_status_payload(job)

    @app.get("/api/latest-results")
    async def latest_results(request: Request):
        """Most recently completed job, for clients that lost their request id."""
        job = await _services(request).queue.latest_completed()
        if job is None:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="No completed results found")
        return job_status_payload(job)

    @app.get("/api/stock-price")
    async def stock_price(request: Request, symbol: Optional[str] = None):
        if not symbol or not symbol.strip():
            raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Symbol parameter is required")
        quote = await _services(request).router.get_stock_data(symbol)
        if quote is None:
            raise HTTPException(
                status_code=status.HTTP_404_NOT_FOUND,
                detail=f"Stock data not found for {symbol.strip().upper()}",
            )
        return {"success": True, "data": quote.to_dict(), "timestamp": utc_now().isoformat()}

    @app.get("/api/historical")
    async def historical(
        request: Request,
        symbol: Optional[str] = None,
        days: int = Query(default=365, ge=1, le=1825),
    ):
        if not symbol or not symbol.strip():
            raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Symbol parameter is required")
        df = await _services(request).router.get_historical_data(symbol, days)
        if df.empty:
            raise HTTPException(
                status_code=status.HTTP_404_NOT_FOUND,
                detail=f"Historical data not found for {symbol.strip().upper()}",
            )
        rows = [
            {
                "date": idx.strftime("%Y-%m-%d"),
                "open": float(row["Open"]),
                "high": float(row["High"]),
                "low": float(row["Low"]),
                "close": float(row["Close"]),
                "volume": int(row["Volume"]),
            }
            for idx, row in df.iterrows()
        ]
        return {"symbol": symbol.strip().upper(), "days": days, "count": len(rows), "data": rows}

    @app.get("/api/validate-keys")
    async def validate_keys(request: Request):
        """Which credentials are configured and the resulting fallback chains."""
        svc = _services(request)
        config = svc.config
        keys = {
            "openai": bool(config.openai_api_key),
            "grok": bool(config.grok_api_key),
            "claude": bool(config.anthropic_api_key),
            "alphaVantage": bool(config.alphavantage_api_key),
            "twelveData": bool(config.twelvedata_api_key),
            "finnhub": bool(config.finnhub_api_key),
            "fmp": bool(config.fmp_api_key),
            "newsApi": bool(config.news_api_key),
        }
        has_ai = config.has_ai_backend
        has_data = config.has_market_data
        if not has_ai:
            required = "Add an AI service API key (OpenAI recommended)"
        elif not has_data:
            required = "Add a financial data API key (Alpha Vantage recommended)"
        else:
            required = "All required keys configured!"
        return {
            "hasRequiredKeys": has_ai and has_data,
            "hasAIService": has_ai,
            "hasFinancialData": has_data,
            "configuredKeys": [k for k, v in keys.items() if v],
            "missingKeys": [k for k, v in keys.items() if not v],
            "details": keys,
            "fallbackChains": {
                "ai": [b.name for b in svc.backends],
                "financialData": [p.name for p in svc.router.active_providers()],
                "crypto": ["coingecko", "static_fallback"],
            },
            "recommendations": {
                "required": required,
                "optional": "Consider adding News API for enhanced market insights",
                "fallbackInfo": "APIs fall back in priority order when a provider fails or exceeds its limits",
            },
        }

    @app.get("/api/api-usage")
    async def api_usage(request: Request):
        """Remaining local rate budget per market data provider."""
        market = _services(request).market
        return {
            "providers": market.rate_limiter.usage(market.providers),
            "timestamp": utc_now().isoformat(),
        }

    return app
