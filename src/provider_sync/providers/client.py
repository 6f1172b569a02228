from __future__ import annotations

import logging
import re
from collections.abc import Callable, Mapping
from dataclasses import dataclass
from datetime import datetime
from typing import Any

import httpx
from pydantic import BaseModel, ValidationError

from provider_sync.core.exceptions import (
    ConfigValidationError,
    ProviderDecodeError,
    ProviderHTTPStatusError,
    ProviderNetworkError,
)
from provider_sync.core.metrics import SyncMetricsCollector
from provider_sync.core.models import DataProviderResponse, ProviderHealth, ProviderInfo
from provider_sync.providers.schemas import (
    DataResponsePayload,
    ProviderHealthPayload,
    ProviderListPayload,
    validate_provider_config,
)

logger = logging.getLogger(__name__)

_TIME_WINDOW_PATTERN = re.compile(r"^\d+[dmy]$")


@dataclass(frozen=True)
class CurrentDataRequest:
    provider_id: str = ""
    limit: int = 0
    offset: int = 0


@dataclass(frozen=True)
class HistoricalDataRequest:
    provider_id: str = ""
    time_window: str = ""
    start_date: datetime | None = None
    end_date: datetime | None = None
    limit: int = 0
    offset: int = 0


class ProviderClient:
    def __init__(
        self,
        base_url: str,
        timeout_seconds: float = 10.0,
        provider_name: str = "unknown",
        metrics: SyncMetricsCollector | None = None,
        client_factory: Callable[[], httpx.AsyncClient] | None = None,
    ) -> None:
        if not base_url.strip():
            raise ConfigValidationError("provider base_url is required")
        self._base_url = base_url.strip().rstrip("/")
        self._timeout_seconds = timeout_seconds
        self.provider_name = provider_name
        self._metrics = metrics
        self._client_factory = client_factory

    @classmethod
    def from_config(
        cls,
        raw: Mapping[str, Any],
        provider_name: str = "unknown",
        metrics: SyncMetricsCollector | None = None,
        client_factory: Callable[[], httpx.AsyncClient] | None = None,
    ) -> ProviderClient:
        config = validate_provider_config(raw)
        return cls(
            base_url=config.base_url,
            timeout_seconds=config.timeout_seconds,
            provider_name=provider_name,
            metrics=metrics,
            client_factory=client_factory,
        )

    @property
    def base_url(self) -> str:
        return self._base_url

    async def fetch_current_data(self, request: CurrentDataRequest) -> DataProviderResponse:
        return await self._fetch_data("/data/current", _paging_params(request.provider_id, request.limit, request.offset))

    async def fetch_previous_data(self, request: CurrentDataRequest) -> DataProviderResponse:
        return await self._fetch_data("/data/previous", _paging_params(request.provider_id, request.limit, request.offset))

    async def fetch_historical_data(self, request: HistoricalDataRequest) -> DataProviderResponse:
        if request.time_window and not _TIME_WINDOW_PATTERN.match(request.time_window):
            raise ConfigValidationError(f"invalid time window format: {request.time_window}")
        if request.start_date and request.end_date and request.start_date > request.end_date:
            raise ConfigValidationError("start_date must not be after end_date")
        params = _paging_params(request.provider_id, request.limit, request.offset)
        if request.time_window:
            params["timeWindow"] = request.time_window
        if request.start_date is not None:
            params["startDate"] = request.start_date.isoformat()
        if request.end_date is not None:
            params["endDate"] = request.end_date.isoformat()
        return await self._fetch_data("/data/historical", params)

    async def get_provider_health(self, provider_id: str = "") -> ProviderHealth:
        params: dict[str, Any] = {"providerId": provider_id} if provider_id else {}
        payload = await self._get_json("/provider/health", params)
        return _decode(ProviderHealthPayload, payload, "/provider/health").to_health()

    async def list_providers(self) -> list[ProviderInfo]:
        payload = await self._get_json("/provider/list", {})
        listing = _decode(ProviderListPayload, payload, "/provider/list")
        return [item.to_info() for item in listing.providers]

    async def _fetch_data(self, path: str, params: dict[str, Any]) -> DataProviderResponse:
        payload = await self._get_json(path, params)
        response = _decode(DataResponsePayload, payload, path).to_response()
        logger.info(
            "provider_fetch_completed",
            extra={
                "provider": self.provider_name,
                "path": path,
                "record_count": len(response.data),
                "has_more": response.metadata.has_more,
            },
        )
        return response

    async def _get_json(self, path: str, params: dict[str, Any]) -> Any:
        url = f"{self._base_url}{path}"
        factory = self._client_factory or (lambda: httpx.AsyncClient(timeout=self._timeout_seconds))
        try:
            async with factory() as client:
                response = await client.get(url, params=params)
        except httpx.TimeoutException as exc:
            raise ProviderNetworkError(f"provider timeout: path={path}") from exc
        except httpx.HTTPError as exc:
            raise ProviderNetworkError(f"provider request error: path={path}: {exc}") from exc

        if response.status_code < 200 or response.status_code >= 300:
            if self._metrics:
                provider = params.get("providerId") or self.provider_name
                self._metrics.increment_provider_http_error(code=response.status_code, provider=provider)
            raise ProviderHTTPStatusError(response.status_code, url=url)

        try:
            return response.json()
        except ValueError as exc:
            raise ProviderDecodeError(f"provider payload is not valid json: path={path}") from exc


def _paging_params(provider_id: str, limit: int, offset: int) -> dict[str, Any]:
    params: dict[str, Any] = {}
    if provider_id:
        params["providerId"] = provider_id
    if limit > 0:
        params["limit"] = limit
    if offset > 0:
        params["offset"] = offset
    return params


def _decode(schema: type[BaseModel], payload: Any, path: str) -> Any:
    if not isinstance(payload, dict):
        raise ProviderDecodeError(f"provider payload is not a json object: path={path}")
    try:
        return schema.model_validate(payload)
    except ValidationError as exc:
        raise ProviderDecodeError(f"provider payload does not match schema: path={path}: {exc.error_count()} errors") from exc
