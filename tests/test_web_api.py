import asyncio
import time
from datetime import timedelta
from unittest.mock import AsyncMock

import pandas as pd
import pytest
from fastapi.testclient import TestClient

from gains.config import Config
from gains.container import build_services
from gains.jobs.queue import InMemoryJobQueue
from gains.models import Job, JobStatus, Quote, utc_now
from gains.web_api import create_app, estimate_progress, job_status_payload

PROFILE = {"riskTolerance": 2, "capitalAvailable": 10000, "timeHorizon": "long"}


def _services(**overrides):
    settings = {"job_queue_type": "memory", "allow_rule_based_only": True, "embedded_worker": False}
    settings.update(overrides)
    return build_services(Config(**settings), http_client=AsyncMock(), queue=InMemoryJobQueue())


@pytest.fixture
def services():
    return _services()


@pytest.fixture
def client(services):
    return TestClient(create_app(services))


def _job(status, created_ago=0, updated_ago=None):
    now = utc_now()
    created = now - timedelta(seconds=created_ago)
    updated = now - timedelta(seconds=created_ago if updated_ago is None else updated_ago)
    return Job(id="job_1_abc", status=status, user_profile=PROFILE, created_at=created, updated_at=updated)


def test_async_request_returns_request_id_immediately(client, services):
    response = client.post("/api/recommendations", json=PROFILE)

    assert response.status_code == 202
    payload = response.json()
    assert payload["status"] == "pending"
    assert payload["requestId"].startswith("job_")

    poll = client.get(f"/api/results/{payload['requestId']}")
    assert poll.status_code == 200
    body = poll.json()
    assert body["status"] == "pending"
    assert 0 <= body["progress"] <= 15
    assert "jobAge" in body


def test_async_job_result_after_processing(client, services):
    request_id = client.post("/api/recommendations", json=PROFILE).json()["requestId"]

    asyncio.run(services.processor.process_pending_jobs())

    body = client.get(f"/api/results/{request_id}").json()
    assert body["status"] == "completed"
    assert body["progress"] == 100
    symbols = {r["symbol"] for r in body["result"]["recommendations"]}
    assert {"BND", "VTI", "TIP"} <= symbols

    latest = client.get("/api/latest-results")
    assert latest.status_code == 200
    assert latest.json()["requestId"] == request_id


def test_sync_mode_returns_full_result(client):
    response = client.post("/api/recommendations?mode=sync", json=PROFILE)

    assert response.status_code == 200
    payload = response.json()
    assert payload["source"] == "rule_based"
    assert sum(r["amount"] for r in payload["recommendations"]) == pytest.approx(10000)
    assert len(payload["portfolioProjections"]["monthlyProjections"]) == 60
    assert not any(r["sector"] == "Cryptocurrency" for r in payload["recommendations"])


def test_invalid_profile_is_rejected(client):
    response = client.post("/api/recommendations", json={"riskTolerance": 11, "capitalAvailable": 100})
    assert response.status_code == 422

    response = client.post("/api/recommendations?mode=batch", json=PROFILE)
    assert response.status_code == 422


def test_no_ai_backend_fails_fast():
    client = TestClient(create_app(_services(allow_rule_based_only=False)))

    response = client.post("/api/recommendations", json=PROFILE)

    assert response.status_code == 500
    payload = response.json()
    assert payload["error"] == "AI service not configured"
    assert "OPENAI_API_KEY" in payload["details"]
    assert "timestamp" in payload


def test_unknown_job_and_no_latest(client):
    assert client.get("/api/results/job_0_missing").status_code == 404
    assert client.get("/api/results/job_0_missing").json()["detail"] == "Job not found"
    assert client.get("/api/latest-results").status_code == 404


def test_stock_price(client, services, monkeypatch):
    quote = Quote(symbol="AAPL", name="Apple Inc.", price=190.5, change=1.5, change_percent=0.79, source="finnhub")
    monkeypatch.setattr(services.router, "get_stock_data", AsyncMock(side_effect=[quote, None]))

    response = client.get("/api/stock-price", params={"symbol": "aapl"})
    assert response.status_code == 200
    assert response.json()["success"] is True
    assert response.json()["data"]["changePercent"] == 0.79

    missing = client.get("/api/stock-price", params={"symbol": "zzzz"})
    assert missing.status_code == 404
    assert "ZZZZ" in missing.json()["detail"]

    assert client.get("/api/stock-price").status_code == 400


def test_historical(client, services, monkeypatch):
    frame = pd.DataFrame(
        {"Open": [10.0], "High": [11.0], "Low": [9.5], "Close": [10.5], "Volume": [1200]},
        index=pd.to_datetime(["2024-01-02"]),
    )
    monkeypatch.setattr(services.router, "get_historical_data", AsyncMock(side_effect=[frame, pd.DataFrame()]))

    response = client.get("/api/historical", params={"symbol": "vti", "days": 30})
    assert response.status_code == 200
    assert response.json()["data"][0] == {
        "date": "2024-01-02", "open": 10.0, "high": 11.0, "low": 9.5, "close": 10.5, "volume": 1200,
    }

    assert client.get("/api/historical", params={"symbol": "vti"}).status_code == 404
    assert client.get("/api/historical", params={"symbol": "vti", "days": 0}).status_code == 422


def test_validate_keys_lists_fallback_chains():
    client = TestClient(create_app(_services(grok_api_key="g", finnhub_api_key="f")))

    payload = client.get("/api/validate-keys").json()

    assert payload["hasAIService"] is True
    assert payload["hasFinancialData"] is True
    assert payload["hasRequiredKeys"] is True
    assert "grok" in payload["configuredKeys"]
    assert "openai" in payload["missingKeys"]
    assert payload["fallbackChains"]["ai"] == ["grok"]
    assert payload["fallbackChains"]["financialData"] == ["finnhub"]


def test_api_usage(client):
    payload = client.get("/api/api-usage").json()
    assert payload["providers"]["alpha_vantage"]["maxRequests"] == 5
    assert payload["providers"]["fmp"]["remaining"] == 250


def test_healthz(client):
    payload = client.get("/healthz").json()
    assert payload == {"status": "ok", "version": payload["version"], "queue": "memory", "worker": False}


def test_embedded_worker_completes_jobs():
    services = _services(embedded_worker=True, worker_poll_interval=0.05)

    with TestClient(create_app(services)) as client:
        assert client.get("/healthz").json()["worker"] is True
        request_id = client.post("/api/recommendations", json=PROFILE).json()["requestId"]
        status = None
        for _ in range(100):
            status = client.get(f"/api/results/{request_id}").json()["status"]
            if status == "completed":
                break
            time.sleep(0.05)

    assert status == "completed"
    assert services.processor.running is False


def test_progress_estimates():
    assert estimate_progress(_job(JobStatus.PENDING, created_ago=600)) == 15
    assert estimate_progress(_job(JobStatus.COMPLETED)) == 100
    assert estimate_progress(_job(JobStatus.FAILED)) == 100
    halfway = estimate_progress(_job(JobStatus.PROCESSING, created_ago=30, updated_ago=22))
    assert 15 < halfway < 95
    assert estimate_progress(_job(JobStatus.PROCESSING, created_ago=600, updated_ago=600)) == 95


def test_stale_job_warnings():
    pending = job_status_payload(_job(JobStatus.PENDING, created_ago=150))
    assert "worker" in pending["warning"]
    assert pending["jobAge"]["humanReadable"] == "2m 30s"

    processing = job_status_payload(_job(JobStatus.PROCESSING, created_ago=200))
    assert "processing for 3 minutes" in processing["warning"]

    fresh = job_status_payload(_job(JobStatus.PENDING, created_ago=5))
    assert "warning" not in fresh

    failed = _job(JobStatus.FAILED)
    failed.error = "All AI providers failed"
    assert job_status_payload(failed)["error"] == "All AI providers failed"
