from __future__ import annotations

from provider_sync.core.metrics import SyncMetricsCollector
from provider_sync.core.prometheus_exporter import SyncPrometheusExporter

sync_metrics = SyncMetricsCollector()
sync_exporter = SyncPrometheusExporter()
