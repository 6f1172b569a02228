from __future__ import annotations

import asyncio
import logging
import sys

from provider_sync.config import SyncSettings, load_settings
from provider_sync.core.orchestrator import SyncOrchestrator
from provider_sync.jobs.provider_sync import run_provider_sync
from provider_sync.monitoring.observability import configure_logging
from provider_sync.monitoring.state import sync_metrics
from provider_sync.providers.client import ProviderClient
from provider_sync.stores.base import DocumentStore, ProviderStateStore
from provider_sync.stores.jsonl import JsonlDocumentStore
from provider_sync.stores.memory import InMemoryDocumentStore, InMemoryProviderStateStore
from provider_sync.stores.postgres import PostgresDocumentStore, PostgresProviderStateStore
from provider_sync.stores.redis_state import RedisProviderStateStore, create_redis_client

logger = logging.getLogger(__name__)


def _required(value: str | None, name: str) -> str:
    if not value:
        raise RuntimeError(f"missing required environment variable: {name}")
    return value


def _build_document_store(settings: SyncSettings) -> DocumentStore:
    backend = settings.DOCUMENT_STORE_BACKEND
    if backend == "postgres":
        dsn = _required(settings.DATABASE_URL, "DATABASE_URL")
        return PostgresDocumentStore(dsn=dsn, batch_size=settings.DOCUMENT_STORE_BATCH_SIZE)
    if backend == "memory":
        return InMemoryDocumentStore()
    return JsonlDocumentStore(file_path=settings.DOCUMENT_STORE_FILE)


def _build_state_store(settings: SyncSettings) -> ProviderStateStore:
    backend = settings.STATE_STORE_BACKEND
    if backend == "postgres":
        return PostgresProviderStateStore(dsn=_required(settings.DATABASE_URL, "DATABASE_URL"))
    if backend == "redis":
        client = create_redis_client(_required(settings.REDIS_URL, "REDIS_URL"))
        return RedisProviderStateStore(client)
    return InMemoryProviderStateStore()


def build_orchestrator(settings: SyncSettings) -> SyncOrchestrator:
    client = ProviderClient(
        base_url=_required(settings.PROVIDER_BASE_URL, "PROVIDER_BASE_URL"),
        timeout_seconds=settings.PROVIDER_TIMEOUT_SECONDS,
        metrics=sync_metrics,
    )
    return SyncOrchestrator(
        client,
        _build_document_store(settings),
        _build_state_store(settings),
        retry_config=settings.retry_config(),
        page_size=settings.PROVIDER_PAGE_SIZE,
        max_pages=settings.PROVIDER_MAX_PAGES,
        metrics=sync_metrics,
    )


def main() -> int:
    configure_logging()
    settings = load_settings()
    provider_names = settings.provider_names()
    if not provider_names:
        raise RuntimeError("PROVIDER_NAMES must list at least one provider")

    orchestrator = build_orchestrator(settings)
    results = asyncio.run(run_provider_sync(orchestrator, provider_names))
    failed = [result.provider for result in results if not result.success]
    if failed:
        logger.error("provider_sync_job_failed", extra={"providers": failed})
        return 1
    logger.info("provider_sync_job_completed", extra={"providers": provider_names})
    return 0


if __name__ == "__main__":
    sys.exit(main())
