from __future__ import annotations

import asyncio
import hashlib
import json
import logging
from collections.abc import Sequence
from datetime import datetime, timezone
from enum import Enum
from time import perf_counter
from typing import Awaitable, Callable, Protocol, TypeVar

from provider_sync.core.exceptions import (
    ConfigValidationError,
    PersistenceError,
    ProviderRequestError,
    RetryExhaustedError,
    SyncCancelledError,
)
from provider_sync.core.metrics import SyncMetricsCollector
from provider_sync.core.models import (
    DataProviderResponse,
    PriceRecord,
    ProviderHealth,
    ProviderState,
    SyncErrorKind,
    SyncResult,
)
from provider_sync.core.retry import DEFAULT_RETRY_CONFIG, RetryConfig, with_exponential_backoff
from provider_sync.providers.client import CurrentDataRequest
from provider_sync.stores.base import DocumentItem, DocumentStore, ProviderStateStore

R = TypeVar("R")
logger = logging.getLogger(__name__)


class PriceDataSource(Protocol):
    async def fetch_current_data(self, request: CurrentDataRequest) -> DataProviderResponse: ...


class SyncPhase(str, Enum):
    IDLE = "idle"
    FETCHING = "fetching"
    PERSISTING = "persisting"
    ADVANCING_CURSOR = "advancing_cursor"
    FAILED = "failed"


def compute_batch_id(previous_batch_id: str | None, records: Sequence[PriceRecord]) -> str:
    """Chain the previous batch id with the canonical content of this batch."""
    digest = hashlib.sha256()
    digest.update((previous_batch_id or "").encode("utf-8"))
    digest.update(b"\x00")
    for record in sorted(records, key=lambda item: item.id):
        digest.update(json.dumps(record.to_document(), sort_keys=True, ensure_ascii=True).encode("utf-8"))
        digest.update(b"\n")
    return digest.hexdigest()[:32]


class SyncOrchestrator:
    def __init__(
        self,
        client: PriceDataSource,
        document_store: DocumentStore,
        state_store: ProviderStateStore,
        *,
        retry_config: RetryConfig = DEFAULT_RETRY_CONFIG,
        page_size: int = 0,
        max_pages: int = 100,
        metrics: SyncMetricsCollector | None = None,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        if page_size < 0:
            raise ValueError("page_size must be >= 0")
        if max_pages <= 0:
            raise ValueError("max_pages must be > 0")
        self._client = client
        self._document_store = document_store
        self._state_store = state_store
        self._retry_config = retry_config
        self._page_size = page_size
        self._max_pages = max_pages
        self._metrics = metrics
        self._clock = clock or (lambda: datetime.now(timezone.utc))
        self._locks: dict[str, asyncio.Lock] = {}
        self._phases: dict[str, SyncPhase] = {}
        self._last_results: dict[str, SyncResult] = {}

    def phase(self, provider_name: str) -> SyncPhase:
        return self._phases.get(provider_name, SyncPhase.IDLE)

    def last_result(self, provider_name: str) -> SyncResult | None:
        return self._last_results.get(provider_name)

    async def sync(self, provider_name: str, *, cancel_event: asyncio.Event | None = None) -> SyncResult:
        started = perf_counter()
        logger.info("sync_started", extra={"provider": provider_name})
        try:
            if not provider_name or not provider_name.strip():
                raise ConfigValidationError("provider name is required")
            async with self._lock_for(provider_name):
                result = await self._run(provider_name, cancel_event)
        except asyncio.CancelledError:
            self._phases[provider_name] = SyncPhase.FAILED
            self._record_run(provider_name, "cancelled", started)
            logger.warning("sync_cancelled", extra={"provider": provider_name})
            raise
        except Exception as exc:
            failed_phase = self.phase(provider_name)
            self._phases[provider_name] = SyncPhase.FAILED
            kind = _classify(exc, failed_phase)
            self._record_run(provider_name, "failure", started)
            logger.error(
                "sync_failed",
                extra={
                    "provider": provider_name,
                    "phase": failed_phase.value,
                    "error_kind": kind.value,
                    "error": str(exc),
                },
            )
            result = SyncResult(
                success=False,
                records_processed=0,
                timestamp=self._clock(),
                error=str(exc),
                error_kind=kind,
                provider=provider_name,
            )
            self._last_results[provider_name] = result
            return result

        self._record_run(provider_name, "success", started)
        if self._metrics:
            self._metrics.add_records(provider_name, result.records_processed)
        self._last_results[provider_name] = result
        logger.info(
            "sync_completed",
            extra={
                "provider": provider_name,
                "records": result.records_processed,
                "batch_id": result.batch_id,
            },
        )
        return result

    async def health(self, provider_name: str) -> ProviderHealth:
        state = await self._state_store.get_state(provider_name)
        last_sync = state.last_sync_date if state is not None else None
        last_result = self._last_results.get(provider_name)
        if last_result is not None and not last_result.success:
            return ProviderHealth(healthy=False, last_sync=last_sync, message=f"last sync failed: {last_result.error}")
        if last_sync is None:
            return ProviderHealth(healthy=False, message="provider has not synced yet")
        return ProviderHealth(healthy=True, last_sync=last_sync, message="provider is operational")

    async def _run(self, provider_name: str, cancel_event: asyncio.Event | None) -> SyncResult:
        self._phases[provider_name] = SyncPhase.FETCHING
        state = await self._read_state(provider_name)
        records = await self._time(provider_name, "fetch", lambda: self._fetch_all(provider_name, cancel_event))

        _raise_if_cancelled(cancel_event, "before persisting")
        self._phases[provider_name] = SyncPhase.PERSISTING
        synced_at = self._clock()
        batch_id = compute_batch_id(state.last_batch_id, records)
        await self._time(provider_name, "persist", lambda: self._persist(provider_name, records, batch_id, synced_at))

        _raise_if_cancelled(cancel_event, "before advancing cursor")
        self._phases[provider_name] = SyncPhase.ADVANCING_CURSOR
        next_state = state.advance(batch_id, synced_at)
        await self._time(provider_name, "advance_cursor", lambda: self._save_state(provider_name, next_state))

        # Persisted writes are not rolled back on a late cancel.
        _raise_if_cancelled(cancel_event, "after advancing cursor")
        self._phases[provider_name] = SyncPhase.IDLE
        return SyncResult(
            success=True,
            records_processed=len(records),
            timestamp=synced_at,
            provider=provider_name,
            batch_id=batch_id,
        )

    async def _fetch_all(self, provider_name: str, cancel_event: asyncio.Event | None) -> list[PriceRecord]:
        records: dict[str, PriceRecord] = {}
        offset = 0
        for page in range(1, self._max_pages + 1):
            request = CurrentDataRequest(provider_id=provider_name, limit=self._page_size, offset=offset)
            response = await with_exponential_backoff(
                lambda: self._client.fetch_current_data(request),
                self._retry_config,
                on_retry=lambda attempt, exc, delay: self._on_retry(provider_name, attempt, exc, delay),
                cancel_event=cancel_event,
            )
            for record in response.data:
                records[record.id] = record
            if not response.metadata.has_more or not response.data:
                break
            offset += len(response.data)
        else:
            logger.warning(
                "sync_page_limit_reached",
                extra={"provider": provider_name, "max_pages": self._max_pages, "records": len(records)},
            )
        logger.info(
            "sync_fetch_completed",
            extra={"provider": provider_name, "pages": page, "records": len(records)},
        )
        return list(records.values())

    async def _persist(
        self,
        provider_name: str,
        records: Sequence[PriceRecord],
        batch_id: str,
        synced_at: datetime,
    ) -> None:
        if not records:
            return
        metadata = {"batchId": batch_id, "syncTimestamp": synced_at.isoformat(), "source": provider_name}
        items = [DocumentItem(key=record.id, data=record.to_document(), metadata=dict(metadata)) for record in records]
        try:
            await self._document_store.batch_put(items)
        except PersistenceError:
            raise
        except Exception as exc:
            raise PersistenceError(f"document store batch write failed: store={self._document_store.store_name}") from exc

    async def _read_state(self, provider_name: str) -> ProviderState:
        try:
            state = await self._state_store.get_state(provider_name)
        except PersistenceError:
            raise
        except Exception as exc:
            raise PersistenceError(f"provider state read failed: provider={provider_name}: {exc}") from exc
        return state or ProviderState.initial()

    async def _save_state(self, provider_name: str, state: ProviderState) -> None:
        try:
            await self._state_store.save_state(provider_name, state)
        except PersistenceError:
            raise
        except Exception as exc:
            raise PersistenceError(f"provider state write failed: provider={provider_name}: {exc}") from exc

    def _on_retry(self, provider_name: str, attempt: int, exc: Exception, delay: float) -> None:
        if self._metrics:
            self._metrics.increment_retry(provider_name)
        logger.info(
            "sync_fetch_retry",
            extra={"provider": provider_name, "attempt": attempt, "next_delay_seconds": delay, "error": str(exc)},
        )

    def _lock_for(self, provider_name: str) -> asyncio.Lock:
        lock = self._locks.get(provider_name)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[provider_name] = lock
        return lock

    async def _time(self, provider_name: str, phase: str, action: Callable[[], Awaitable[R]]) -> R:
        started = perf_counter()
        result = await action()
        if self._metrics:
            self._metrics.observe_phase_duration(provider_name, phase, (perf_counter() - started) * 1000.0)
        return result

    def _record_run(self, provider_name: str, status: str, started: float) -> None:
        if not self._metrics:
            return
        self._metrics.increment_run(provider_name, status)
        self._metrics.observe_sync_duration(provider_name, perf_counter() - started)


def _raise_if_cancelled(cancel_event: asyncio.Event | None, stage: str) -> None:
    if cancel_event is not None and cancel_event.is_set():
        raise SyncCancelledError(f"sync cancelled {stage}")


def _classify(exc: Exception, phase: SyncPhase) -> SyncErrorKind:
    if isinstance(exc, RetryExhaustedError):
        return SyncErrorKind.RETRY_EXHAUSTED
    if isinstance(exc, SyncCancelledError):
        return SyncErrorKind.CANCELLED
    if isinstance(exc, ConfigValidationError):
        return SyncErrorKind.CONFIG_VALIDATION
    if isinstance(exc, PersistenceError):
        return SyncErrorKind.PERSISTENCE
    if isinstance(exc, ProviderRequestError) or phase is SyncPhase.FETCHING:
        return SyncErrorKind.PROVIDER
    return SyncErrorKind.PERSISTENCE
