from __future__ import annotations

from collections.abc import Mapping
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator, model_validator

from provider_sync.core.exceptions import ConfigValidationError
from provider_sync.core.models import (
    DataProviderResponse,
    PriceRecord,
    ProviderHealth,
    ProviderInfo,
    ResponseMetadata,
)


class _WireModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")


class PriceRecordPayload(_WireModel):
    id: str = Field(min_length=1)
    facility_name: str = Field(alias="facilityName")
    facility_id: str | None = Field(default=None, alias="facilityId")
    procedure_code: str = Field(alias="procedureCode")
    procedure_description: str = Field(alias="procedureDescription")
    procedure_category: str | None = Field(default=None, alias="procedureCategory")
    procedure_details: str | None = Field(default=None, alias="procedureDetails")
    price: Decimal = Field(ge=0)
    currency: str
    estimated_duration_minutes: int | None = Field(default=None, alias="estimatedDurationMinutes")
    effective_date: datetime = Field(alias="effectiveDate")
    last_updated: datetime = Field(alias="lastUpdated")
    source: str
    tags: list[str] | None = None

    def to_record(self) -> PriceRecord:
        return PriceRecord(
            id=self.id,
            facility_name=self.facility_name,
            procedure_code=self.procedure_code,
            procedure_description=self.procedure_description,
            price=self.price,
            currency=self.currency,
            effective_date=self.effective_date,
            last_updated=self.last_updated,
            source=self.source,
            tags=frozenset(self.tags or ()),
            facility_id=self.facility_id or None,
            procedure_category=self.procedure_category or None,
            procedure_details=self.procedure_details or None,
            estimated_duration_minutes=self.estimated_duration_minutes,
        )


class ResponseMetadataPayload(_WireModel):
    source: str | None = None
    count: int | None = Field(default=None, ge=0)
    total: int | None = Field(default=None, ge=0)
    has_more: bool = Field(default=False, alias="hasMore")
    batch_id: str | None = Field(default=None, alias="batchId")
    message: str | None = None


class DataResponsePayload(_WireModel):
    data: list[PriceRecordPayload]
    timestamp: datetime | None = None
    metadata: ResponseMetadataPayload | None = None

    @model_validator(mode="after")
    def count_matches_data(self) -> DataResponsePayload:
        if self.metadata is not None and self.metadata.count is not None:
            if self.metadata.count != len(self.data):
                raise ValueError(
                    f"metadata.count={self.metadata.count} does not match data length {len(self.data)}"
                )
        return self

    def to_response(self) -> DataProviderResponse:
        metadata = self.metadata or ResponseMetadataPayload()
        return DataProviderResponse(
            data=tuple(item.to_record() for item in self.data),
            timestamp=self.timestamp or datetime.now(timezone.utc),
            metadata=ResponseMetadata(
                source=metadata.source,
                count=metadata.count,
                total=metadata.total,
                has_more=metadata.has_more,
                batch_id=metadata.batch_id,
                message=metadata.message,
            ),
        )


class ProviderHealthPayload(_WireModel):
    healthy: bool
    last_sync: datetime | None = Field(default=None, alias="lastSync")
    message: str | None = None

    def to_health(self) -> ProviderHealth:
        return ProviderHealth(healthy=self.healthy, last_sync=self.last_sync, message=self.message)


class ProviderInfoPayload(_WireModel):
    id: str
    name: str
    type: str = ""
    healthy: bool = False
    last_sync: datetime | None = Field(default=None, alias="lastSync")

    def to_info(self) -> ProviderInfo:
        return ProviderInfo(
            id=self.id,
            name=self.name,
            type=self.type,
            healthy=self.healthy,
            last_sync=self.last_sync,
        )


class ProviderListPayload(_WireModel):
    providers: list[ProviderInfoPayload] = Field(default_factory=list)


class ProviderConfig(BaseModel):
    model_config = ConfigDict(frozen=True, extra="ignore")

    base_url: str
    provider_id: str = ""
    timeout_seconds: float = Field(default=10.0, gt=0)
    page_size: int = Field(default=0, ge=0)
    max_pages: int = Field(default=100, gt=0)

    @field_validator("base_url")
    @classmethod
    def base_url_is_http(cls, v: str) -> str:
        value = v.strip()
        if not value.startswith(("http://", "https://")):
            raise ValueError("base_url must start with http:// or https://")
        return value.rstrip("/")


def validate_provider_config(raw: Mapping[str, Any]) -> ProviderConfig:
    try:
        return ProviderConfig.model_validate(dict(raw))
    except ValidationError as exc:
        fields = ", ".join(".".join(str(part) for part in error["loc"]) or "<root>" for error in exc.errors())
        raise ConfigValidationError(f"invalid provider config: {fields}") from exc
