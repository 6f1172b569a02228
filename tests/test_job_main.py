from __future__ import annotations

from datetime import datetime, timezone

import pytest

from provider_sync.config import SyncSettings
from provider_sync.core.models import DataProviderResponse
from provider_sync.core.orchestrator import SyncOrchestrator
from provider_sync.core.retry import RetryConfig
from provider_sync.jobs import __main__ as job_main
from provider_sync.stores.jsonl import JsonlDocumentStore
from provider_sync.stores.memory import InMemoryDocumentStore, InMemoryProviderStateStore
from provider_sync.stores.postgres import PostgresDocumentStore, PostgresProviderStateStore
from provider_sync.stores.redis_state import RedisProviderStateStore


class EmptySource:
    def __init__(self, fail_for: set[str] | None = None) -> None:
        self.fail_for = fail_for or set()

    async def fetch_current_data(self, request) -> DataProviderResponse:
        if request.provider_id in self.fail_for:
            raise RuntimeError("provider offline")
        return DataProviderResponse(data=(), timestamp=datetime.now(timezone.utc))


def _orchestrator(source: EmptySource) -> SyncOrchestrator:
    return SyncOrchestrator(
        source,
        InMemoryDocumentStore(),
        InMemoryProviderStateStore(),
        retry_config=RetryConfig(max_attempts=1),
    )


def test_required_raises_when_missing() -> None:
    with pytest.raises(RuntimeError):
        job_main._required(None, "PROVIDER_BASE_URL")


def test_build_document_store_defaults_to_jsonl() -> None:
    store = job_main._build_document_store(SyncSettings())
    assert isinstance(store, JsonlDocumentStore)


def test_build_document_store_requires_database_url_for_postgres(monkeypatch) -> None:
    monkeypatch.delenv("DATABASE_URL", raising=False)
    with pytest.raises(RuntimeError):
        job_main._build_document_store(SyncSettings(DOCUMENT_STORE_BACKEND="postgres"))


def test_build_document_store_uses_postgres_when_configured() -> None:
    settings = SyncSettings(
        DOCUMENT_STORE_BACKEND="postgres",
        DATABASE_URL="postgresql://example",
        DOCUMENT_STORE_BATCH_SIZE=2000,
    )
    store = job_main._build_document_store(settings)
    assert isinstance(store, PostgresDocumentStore)
    assert store._batch_size == 2000


def test_build_state_store_selects_backend() -> None:
    assert isinstance(job_main._build_state_store(SyncSettings()), InMemoryProviderStateStore)
    assert isinstance(
        job_main._build_state_store(SyncSettings(STATE_STORE_BACKEND="postgres", DATABASE_URL="postgresql://example")),
        PostgresProviderStateStore,
    )
    assert isinstance(
        job_main._build_state_store(SyncSettings(STATE_STORE_BACKEND="redis", REDIS_URL="redis://localhost:6379/0")),
        RedisProviderStateStore,
    )


def test_build_orchestrator_requires_base_url(monkeypatch) -> None:
    monkeypatch.delenv("PROVIDER_BASE_URL", raising=False)
    with pytest.raises(RuntimeError):
        job_main.build_orchestrator(SyncSettings())


def test_main_requires_provider_names(monkeypatch) -> None:
    monkeypatch.setenv("PROVIDER_NAMES", " , ")
    with pytest.raises(RuntimeError):
        job_main.main()


def test_main_returns_zero_when_every_provider_succeeds(monkeypatch) -> None:
    monkeypatch.setenv("PROVIDER_NAMES", "alpha,beta")
    monkeypatch.setattr(job_main, "build_orchestrator", lambda settings: _orchestrator(EmptySource()))

    assert job_main.main() == 0


def test_main_returns_non_zero_when_any_provider_fails(monkeypatch) -> None:
    monkeypatch.setenv("PROVIDER_NAMES", "alpha,beta")
    monkeypatch.setattr(
        job_main,
        "build_orchestrator",
        lambda settings: _orchestrator(EmptySource(fail_for={"beta"})),
    )

    assert job_main.main() == 1
