from __future__ import annotations

import asyncio
from collections.abc import Callable, Sequence
from datetime import datetime
from typing import Any

from provider_sync.core.orchestrator import SyncOrchestrator
from provider_sync.jobs.provider_sync import run_provider_sync

try:
    from airflow import DAG
    from airflow.operators.python import PythonOperator

    AIRFLOW_AVAILABLE = True
except ImportError:
    AIRFLOW_AVAILABLE = False
    DAG = Any  # type: ignore[misc,assignment]
    PythonOperator = Any  # type: ignore[misc,assignment]


def build_provider_sync_callable(
    orchestrator_factory: Callable[[], SyncOrchestrator],
    provider_names: Sequence[str],
) -> Callable[[], int]:
    """Return a task callable that fails the task when any provider sync failed."""

    def _run() -> int:
        orchestrator = orchestrator_factory()
        results = asyncio.run(run_provider_sync(orchestrator, provider_names))
        failed = [f"{result.provider}: {result.error}" for result in results if not result.success]
        if failed:
            raise RuntimeError("provider sync failed: " + "; ".join(failed))
        return sum(result.records_processed for result in results)

    return _run


def create_provider_sync_dag(
    dag_id: str,
    orchestrator_factory: Callable[[], SyncOrchestrator],
    provider_names: Sequence[str],
    schedule: str = "@daily",
    start_date: datetime | None = None,
) -> Any:
    if not AIRFLOW_AVAILABLE:
        raise RuntimeError("apache-airflow is not installed")

    dag = DAG(
        dag_id=dag_id,
        schedule=schedule,
        start_date=start_date or datetime(2026, 1, 1),
        catchup=False,
        tags=["provider-sync", "prices"],
    )
    PythonOperator(
        task_id="provider_sync",
        python_callable=build_provider_sync_callable(orchestrator_factory, provider_names),
        dag=dag,
    )
    return dag
