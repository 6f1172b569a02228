from __future__ import annotations

from collections import defaultdict
from dataclasses import dataclass


@dataclass(frozen=True)
class PhaseDuration:
    provider: str
    phase: str
    duration_ms: float


class SyncMetricsCollector:
    def __init__(self) -> None:
        self.phase_durations: list[PhaseDuration] = []
        self.sync_run_total: dict[tuple[str, str], int] = defaultdict(int)
        self.sync_records_total: dict[str, int] = defaultdict(int)
        self.sync_duration_seconds: dict[str, float] = {}
        self.sync_retry_total: dict[str, int] = defaultdict(int)
        self.provider_http_errors_total: dict[tuple[str, str], int] = defaultdict(int)
        self.scheduler_skips_total: dict[str, int] = defaultdict(int)

    def observe_phase_duration(self, provider: str, phase: str, duration_ms: float) -> None:
        self.phase_durations.append(PhaseDuration(provider=provider, phase=phase, duration_ms=duration_ms))

    def increment_run(self, provider: str, status: str) -> None:
        self.sync_run_total[(provider, status)] += 1

    def add_records(self, provider: str, count: int) -> None:
        if count <= 0:
            return
        self.sync_records_total[provider] += count

    def observe_sync_duration(self, provider: str, duration_seconds: float) -> None:
        self.sync_duration_seconds[provider] = duration_seconds

    def increment_retry(self, provider: str) -> None:
        self.sync_retry_total[provider] += 1

    def increment_provider_http_error(self, code: int | str, provider: str) -> None:
        self.provider_http_errors_total[(provider, str(code))] += 1

    def increment_scheduler_skip(self, job: str) -> None:
        self.scheduler_skips_total[job] += 1
