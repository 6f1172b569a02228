from __future__ import annotations

import logging
from collections.abc import Callable
from contextlib import asynccontextmanager

from fastapi import FastAPI, Response

from provider_sync.config import SyncSettings, load_settings
from provider_sync.core.orchestrator import SyncOrchestrator
from provider_sync.jobs.__main__ import build_orchestrator
from provider_sync.jobs.scheduler import IntervalSyncScheduler, provider_sync_job
from provider_sync.monitoring.observability import configure_probe_access_log_filter
from provider_sync.monitoring.state import sync_exporter, sync_metrics

logger = logging.getLogger(__name__)

OrchestratorFactory = Callable[[SyncSettings], SyncOrchestrator]


def start_sync_scheduler(
    settings: SyncSettings,
    orchestrator_factory: OrchestratorFactory,
) -> IntervalSyncScheduler | None:
    provider_names = settings.provider_names()
    if not settings.SYNC_SCHEDULER_ENABLED or not provider_names:
        logger.info(
            "sync_scheduler_disabled",
            extra={"enabled": settings.SYNC_SCHEDULER_ENABLED, "providers": provider_names},
        )
        return None

    orchestrator = orchestrator_factory(settings)
    scheduler = IntervalSyncScheduler(metrics=sync_metrics)
    for provider_name in provider_names:
        scheduler.schedule(
            provider_sync_job(
                orchestrator,
                provider_name,
                interval_seconds=settings.SYNC_INTERVAL_SECONDS,
                run_immediately=settings.SYNC_RUN_IMMEDIATELY,
            )
        )
    return scheduler


def create_monitoring_app(
    settings: SyncSettings | None = None,
    orchestrator_factory: OrchestratorFactory | None = None,
) -> FastAPI:
    @asynccontextmanager
    async def lifespan(app: FastAPI):
        app.state.scheduler = start_sync_scheduler(
            settings or load_settings(),
            orchestrator_factory or build_orchestrator,
        )
        yield
        if app.state.scheduler is not None:
            await app.state.scheduler.stop_all()

    app = FastAPI(title="Provider Sync Monitoring", version="0.1.0", lifespan=lifespan)
    app.state.scheduler = None
    configure_probe_access_log_filter()

    @app.get("/healthz")
    async def healthz() -> dict[str, str]:
        return {"status": "ok"}

    @app.get("/readyz")
    async def readyz() -> dict[str, str]:
        return {"status": "ready"}

    @app.get("/jobs")
    async def jobs() -> dict[str, dict[str, bool]]:
        scheduler: IntervalSyncScheduler | None = app.state.scheduler
        if scheduler is None:
            return {}
        statuses = {}
        for name in scheduler.active_jobs():
            status = scheduler.status(name)
            statuses[name] = {"active": status.active, "running": status.running}
        return statuses

    @app.get("/metrics")
    async def metrics() -> Response:
        body = sync_exporter.render(sync_metrics)
        return Response(content=body, media_type="text/plain; version=0.0.4")

    return app


app = create_monitoring_app()
