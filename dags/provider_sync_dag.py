from __future__ import annotations

from provider_sync.config import load_settings
from provider_sync.jobs.__main__ import build_orchestrator
from provider_sync.orchestration.airflow_adapter import AIRFLOW_AVAILABLE, create_provider_sync_dag

_settings = load_settings()

if AIRFLOW_AVAILABLE:
    dag = create_provider_sync_dag(
        dag_id="provider_price_sync",
        orchestrator_factory=lambda: build_orchestrator(_settings),
        provider_names=_settings.provider_names(),
    )
