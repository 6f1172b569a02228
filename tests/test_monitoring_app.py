from __future__ import annotations

import asyncio
import logging
import time
from datetime import datetime, timezone

from fastapi.testclient import TestClient

from provider_sync.config import SyncSettings
from provider_sync.core.models import DataProviderResponse
from provider_sync.core.orchestrator import SyncOrchestrator
from provider_sync.monitoring.app import create_monitoring_app
from provider_sync.monitoring.observability import _ProbeAccessLogFilter
from provider_sync.monitoring.state import sync_metrics
from provider_sync.stores.memory import InMemoryDocumentStore, InMemoryProviderStateStore


class EmptySource:
    async def fetch_current_data(self, request) -> DataProviderResponse:
        return DataProviderResponse(data=(), timestamp=datetime.now(timezone.utc))


def test_probe_endpoints_report_ok() -> None:
    client = TestClient(create_monitoring_app())

    assert client.get("/healthz").json() == {"status": "ok"}
    assert client.get("/readyz").json() == {"status": "ready"}


def test_metrics_endpoint_exposes_sync_metrics() -> None:
    orchestrator = SyncOrchestrator(
        EmptySource(),
        InMemoryDocumentStore(),
        InMemoryProviderStateStore(),
        metrics=sync_metrics,
    )
    asyncio.run(orchestrator.sync("monitoring-demo"))

    client = TestClient(create_monitoring_app())
    response = client.get("/metrics")
    body = response.text

    assert response.status_code == 200
    assert "provider_sync_run_total" in body
    assert 'provider="monitoring-demo"' in body


def test_probe_access_log_filter_drops_successful_probe_lines() -> None:
    log_filter = _ProbeAccessLogFilter(("/healthz", "/readyz"))

    def record(path: str, status: int) -> logging.LogRecord:
        return logging.LogRecord(
            "uvicorn.access", logging.INFO, __file__, 1, '%s - "%s %s HTTP/%s" %d',
            ("127.0.0.1:5000", "GET", path, "1.1", status), None,
        )

    assert log_filter.filter(record("/healthz/", 200)) is False
    assert log_filter.filter(record("/readyz?probe=1", 200)) is False
    assert log_filter.filter(record("/healthz", 500)) is True
    assert log_filter.filter(record("/metrics", 200)) is True


class RecordingSource(EmptySource):
    def __init__(self) -> None:
        self.providers: list[str] = []

    async def fetch_current_data(self, request) -> DataProviderResponse:
        self.providers.append(request.provider_id)
        return await super().fetch_current_data(request)


def test_lifespan_schedules_a_sync_job_per_provider() -> None:
    source = RecordingSource()
    settings = SyncSettings(
        PROVIDER_NAMES="lifespan-alpha,lifespan-beta",
        SYNC_INTERVAL_SECONDS=3600,
        SYNC_RUN_IMMEDIATELY=True,
    )

    def orchestrator_factory(active: SyncSettings) -> SyncOrchestrator:
        assert active is settings
        return SyncOrchestrator(source, InMemoryDocumentStore(), InMemoryProviderStateStore(), metrics=sync_metrics)

    app = create_monitoring_app(settings, orchestrator_factory)
    with TestClient(app) as client:
        jobs = client.get("/jobs").json()
        assert sorted(jobs) == ["provider_sync:lifespan-alpha", "provider_sync:lifespan-beta"]
        assert all(status["active"] for status in jobs.values())

        body = ""
        for _ in range(100):
            body = client.get("/metrics").text
            synced = [f'provider="{name}",status="success"' in body for name in ("lifespan-alpha", "lifespan-beta")]
            if all(synced):
                break
            time.sleep(0.02)
        scheduler = app.state.scheduler

    assert 'provider_sync_run_total{provider="lifespan-alpha",status="success"}' in body
    assert 'provider_sync_run_total{provider="lifespan-beta",status="success"}' in body
    assert sorted(set(source.providers)) == ["lifespan-alpha", "lifespan-beta"]
    assert scheduler.active_jobs() == []


def test_lifespan_skips_scheduler_without_providers() -> None:
    def orchestrator_factory(_: SyncSettings) -> SyncOrchestrator:
        raise AssertionError("no orchestrator should be built")

    app = create_monitoring_app(SyncSettings(PROVIDER_NAMES=""), orchestrator_factory)
    with TestClient(app) as client:
        assert client.get("/jobs").json() == {}
        assert client.get("/healthz").json() == {"status": "ok"}

    assert app.state.scheduler is None


def test_lifespan_respects_disabled_scheduler() -> None:
    def orchestrator_factory(_: SyncSettings) -> SyncOrchestrator:
        raise AssertionError("no orchestrator should be built")

    settings = SyncSettings(PROVIDER_NAMES="alpha", SYNC_SCHEDULER_ENABLED=False)
    app = create_monitoring_app(settings, orchestrator_factory)
    with TestClient(app) as client:
        assert client.get("/jobs").json() == {}
