from __future__ import annotations

from prometheus_client import CollectorRegistry, Gauge, generate_latest

from provider_sync.core.metrics import SyncMetricsCollector


class SyncPrometheusExporter:
    def __init__(self) -> None:
        self._registry = CollectorRegistry()
        self._phase_duration = Gauge(
            "provider_sync_phase_duration_ms",
            "Latest sync phase duration in milliseconds",
            labelnames=("provider", "phase"),
            registry=self._registry,
        )
        self._sync_run_total = Gauge(
            "provider_sync_run_total",
            "Sync runs grouped by provider and status",
            labelnames=("provider", "status"),
            registry=self._registry,
        )
        self._sync_records_total = Gauge(
            "provider_sync_records_total",
            "Records written by provider",
            labelnames=("provider",),
            registry=self._registry,
        )
        self._sync_duration_seconds = Gauge(
            "provider_sync_duration_seconds",
            "Latest sync duration by provider",
            labelnames=("provider",),
            registry=self._registry,
        )
        self._sync_retry_total = Gauge(
            "provider_sync_retry_total",
            "Provider fetch retries by provider",
            labelnames=("provider",),
            registry=self._registry,
        )
        self._http_errors_total = Gauge(
            "provider_sync_http_errors_total",
            "Provider HTTP errors grouped by provider and code",
            labelnames=("provider", "code"),
            registry=self._registry,
        )
        self._scheduler_skips_total = Gauge(
            "provider_sync_scheduler_skips_total",
            "Scheduled runs skipped because the previous run was still in progress",
            labelnames=("job",),
            registry=self._registry,
        )

    def render(self, metrics: SyncMetricsCollector) -> str:
        latest_by_phase: dict[tuple[str, str], float] = {}
        for item in metrics.phase_durations:
            latest_by_phase[(item.provider, item.phase)] = item.duration_ms
        for (provider, phase), duration in latest_by_phase.items():
            self._phase_duration.labels(provider=provider, phase=phase).set(duration)
        for (provider, status), count in metrics.sync_run_total.items():
            self._sync_run_total.labels(provider=provider, status=status).set(count)
        for provider, count in metrics.sync_records_total.items():
            self._sync_records_total.labels(provider=provider).set(count)
        for provider, duration in metrics.sync_duration_seconds.items():
            self._sync_duration_seconds.labels(provider=provider).set(duration)
        for provider, count in metrics.sync_retry_total.items():
            self._sync_retry_total.labels(provider=provider).set(count)
        for (provider, code), count in metrics.provider_http_errors_total.items():
            self._http_errors_total.labels(provider=provider, code=code).set(count)
        for job, count in metrics.scheduler_skips_total.items():
            self._scheduler_skips_total.labels(job=job).set(count)
        return generate_latest(self._registry).decode("utf-8")
