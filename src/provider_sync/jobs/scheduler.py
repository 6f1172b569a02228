from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from datetime import datetime, timezone

from provider_sync.core.metrics import SyncMetricsCollector
from provider_sync.core.models import SyncResult
from provider_sync.core.orchestrator import SyncOrchestrator

logger = logging.getLogger(__name__)

ONE_HOUR_SECONDS = 60 * 60
ONE_DAY_SECONDS = 24 * ONE_HOUR_SECONDS


@dataclass(frozen=True)
class SyncJobConfig:
    name: str
    run: Callable[[], Awaitable[SyncResult]]
    interval_seconds: float
    run_immediately: bool = False
    on_complete: Callable[[SyncResult], None] | None = None
    on_error: Callable[[Exception], None] | None = None

    def __post_init__(self) -> None:
        if not self.name:
            raise ValueError("job name is required")
        if self.interval_seconds <= 0:
            raise ValueError("interval_seconds must be > 0")


@dataclass(frozen=True)
class SyncJobStatus:
    exists: bool
    active: bool
    running: bool


class IntervalSyncScheduler:
    """Runs sync jobs at a fixed interval inside the current event loop.

    A tick that fires while the previous run of the same job is still in
    progress is skipped rather than queued.
    """

    def __init__(self, metrics: SyncMetricsCollector | None = None) -> None:
        self._metrics = metrics
        self._configs: dict[str, SyncJobConfig] = {}
        self._loops: dict[str, asyncio.Task[None]] = {}
        self._runs: set[asyncio.Task[None]] = set()
        self._running: set[str] = set()

    def schedule(self, config: SyncJobConfig) -> None:
        self.stop(config.name)
        self._configs[config.name] = config
        self._loops[config.name] = asyncio.get_running_loop().create_task(self._loop(config))
        logger.info(
            "scheduler_job_scheduled",
            extra={"job": config.name, "interval_seconds": config.interval_seconds},
        )

    def stop(self, name: str) -> None:
        task = self._loops.pop(name, None)
        if task is None:
            return
        task.cancel()
        logger.info("scheduler_job_stopped", extra={"job": name})

    async def stop_all(self) -> None:
        tasks = list(self._loops.values()) + list(self._runs)
        for name in list(self._loops):
            self.stop(name)
        for task in self._runs:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)

    def active_jobs(self) -> list[str]:
        return list(self._loops)

    def status(self, name: str) -> SyncJobStatus:
        return SyncJobStatus(
            exists=name in self._configs,
            active=name in self._loops,
            running=name in self._running,
        )

    async def trigger(self, name: str) -> None:
        config = self._configs.get(name)
        if config is None:
            raise KeyError(f"job '{name}' not found")
        await self._run_job(config)

    async def _loop(self, config: SyncJobConfig) -> None:
        if config.run_immediately:
            self._spawn(config)
        while True:
            await asyncio.sleep(config.interval_seconds)
            self._spawn(config)

    def _spawn(self, config: SyncJobConfig) -> None:
        task = asyncio.get_running_loop().create_task(self._run_job(config))
        self._runs.add(task)
        task.add_done_callback(self._runs.discard)

    async def _run_job(self, config: SyncJobConfig) -> None:
        if config.name in self._running:
            logger.warning("scheduler_job_skipped", extra={"job": config.name})
            if self._metrics:
                self._metrics.increment_scheduler_skip(config.name)
            return

        self._running.add(config.name)
        logger.info("scheduler_job_started", extra={"job": config.name})
        try:
            result = await config.run()
        except Exception as exc:
            logger.exception("scheduler_job_error", extra={"job": config.name})
            self._call(config.on_error, exc, config.name)
            result = SyncResult(
                success=False,
                records_processed=0,
                timestamp=datetime.now(timezone.utc),
                error=str(exc),
            )
        finally:
            self._running.discard(config.name)

        if result.success:
            logger.info(
                "scheduler_job_completed",
                extra={"job": config.name, "records": result.records_processed},
            )
        else:
            logger.error("scheduler_job_failed", extra={"job": config.name, "error": result.error})
        self._call(config.on_complete, result, config.name)

    @staticmethod
    def _call(callback: Callable | None, value: object, job: str) -> None:
        if callback is None:
            return
        try:
            callback(value)
        except Exception:
            logger.exception("scheduler_callback_failed", extra={"job": job})


def provider_sync_job(
    orchestrator: SyncOrchestrator,
    provider_name: str,
    interval_seconds: float = ONE_DAY_SECONDS,
    run_immediately: bool = False,
) -> SyncJobConfig:
    async def run() -> SyncResult:
        return await orchestrator.sync(provider_name)

    return SyncJobConfig(
        name=f"provider_sync:{provider_name}",
        run=run,
        interval_seconds=interval_seconds,
        run_immediately=run_immediately,
    )
