from __future__ import annotations

from typing import Literal

from pydantic import field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from provider_sync.core.retry import RetryConfig
from provider_sync.jobs.scheduler import ONE_DAY_SECONDS


class SyncSettings(BaseSettings):
    model_config = SettingsConfigDict(extra="ignore")

    SERVICE_NAME: str = "provider-sync"
    PROVIDER_BASE_URL: str | None = None
    PROVIDER_NAMES: str = ""
    PROVIDER_TIMEOUT_SECONDS: float = 10.0
    PROVIDER_PAGE_SIZE: int = 0
    PROVIDER_MAX_PAGES: int = 100
    DOCUMENT_STORE_BACKEND: Literal["memory", "jsonl", "postgres"] = "jsonl"
    DOCUMENT_STORE_FILE: str = "runtime/price_documents.jsonl"
    DOCUMENT_STORE_BATCH_SIZE: int = 1000
    STATE_STORE_BACKEND: Literal["memory", "redis", "postgres"] = "memory"
    DATABASE_URL: str | None = None
    REDIS_URL: str | None = None
    RETRY_MAX_ATTEMPTS: int = 10
    RETRY_INITIAL_DELAY_SECONDS: float = 0.1
    RETRY_MAX_DELAY_SECONDS: float = 10.0
    RETRY_BACKOFF_FACTOR: float = 2.0
    RETRY_MAX_TOTAL_TIMEOUT_SECONDS: float = 60.0
    SYNC_SCHEDULER_ENABLED: bool = True
    SYNC_INTERVAL_SECONDS: float = ONE_DAY_SECONDS
    SYNC_RUN_IMMEDIATELY: bool = False
    MONITORING_HOST: str = "0.0.0.0"
    MONITORING_PORT: int = 8001

    @field_validator("DOCUMENT_STORE_BACKEND", "STATE_STORE_BACKEND", mode="before")
    @classmethod
    def _lower_backend(cls, value: object) -> object:
        return value.lower() if isinstance(value, str) else value

    def provider_names(self) -> list[str]:
        return [name.strip() for name in self.PROVIDER_NAMES.split(",") if name.strip()]

    def retry_config(self) -> RetryConfig:
        return RetryConfig(
            max_attempts=self.RETRY_MAX_ATTEMPTS,
            initial_delay_seconds=self.RETRY_INITIAL_DELAY_SECONDS,
            max_delay_seconds=self.RETRY_MAX_DELAY_SECONDS,
            backoff_factor=self.RETRY_BACKOFF_FACTOR,
            max_total_timeout_seconds=self.RETRY_MAX_TOTAL_TIMEOUT_SECONDS,
        )


def load_settings(**overrides: object) -> SyncSettings:
    return SyncSettings(**overrides)
