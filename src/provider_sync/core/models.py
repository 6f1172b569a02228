from __future__ import annotations

from dataclasses import dataclass, field, replace
from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Any


def _parse_datetime(value: Any) -> datetime:
    if isinstance(value, datetime):
        return value
    return datetime.fromisoformat(str(value).replace("Z", "+00:00"))


@dataclass(frozen=True)
class PriceRecord:
    id: str
    facility_name: str
    procedure_code: str
    procedure_description: str
    price: Decimal
    currency: str
    effective_date: datetime
    last_updated: datetime
    source: str
    tags: frozenset[str] = frozenset()
    facility_id: str | None = None
    procedure_category: str | None = None
    procedure_details: str | None = None
    estimated_duration_minutes: int | None = None

    def __post_init__(self) -> None:
        if not self.id:
            raise ValueError("price record id must not be empty")
        if self.price < 0:
            raise ValueError("price must be >= 0")

    def to_document(self) -> dict[str, Any]:
        document: dict[str, Any] = {
            "id": self.id,
            "facilityName": self.facility_name,
            "procedureCode": self.procedure_code,
            "procedureDescription": self.procedure_description,
            "price": float(self.price),
            "currency": self.currency,
            "effectiveDate": self.effective_date.isoformat(),
            "lastUpdated": self.last_updated.isoformat(),
            "source": self.source,
            "tags": sorted(self.tags),
        }
        optional = {
            "facilityId": self.facility_id,
            "procedureCategory": self.procedure_category,
            "procedureDetails": self.procedure_details,
            "estimatedDurationMinutes": self.estimated_duration_minutes,
        }
        document.update({key: value for key, value in optional.items() if value is not None})
        return document

    @classmethod
    def from_document(cls, document: dict[str, Any]) -> PriceRecord:
        duration = document.get("estimatedDurationMinutes")
        return cls(
            id=str(document["id"]),
            facility_name=str(document["facilityName"]),
            procedure_code=str(document["procedureCode"]),
            procedure_description=str(document["procedureDescription"]),
            price=Decimal(str(document["price"])),
            currency=str(document["currency"]),
            effective_date=_parse_datetime(document["effectiveDate"]),
            last_updated=_parse_datetime(document["lastUpdated"]),
            source=str(document["source"]),
            tags=frozenset(document.get("tags") or ()),
            facility_id=document.get("facilityId"),
            procedure_category=document.get("procedureCategory"),
            procedure_details=document.get("procedureDetails"),
            estimated_duration_minutes=int(duration) if duration is not None else None,
        )


@dataclass(frozen=True)
class ResponseMetadata:
    source: str | None = None
    count: int | None = None
    total: int | None = None
    has_more: bool = False
    batch_id: str | None = None
    message: str | None = None


@dataclass(frozen=True)
class DataProviderResponse:
    data: tuple[PriceRecord, ...]
    timestamp: datetime
    metadata: ResponseMetadata = field(default_factory=ResponseMetadata)


@dataclass(frozen=True)
class ProviderState:
    last_sync_date: datetime | None = None
    last_batch_id: str | None = None
    previous_batch_id: str | None = None

    @classmethod
    def initial(cls) -> ProviderState:
        return cls()

    def advance(self, batch_id: str, synced_at: datetime) -> ProviderState:
        """Next generation: the current batch becomes the previous one."""
        return replace(
            self,
            last_sync_date=synced_at,
            last_batch_id=batch_id,
            previous_batch_id=self.last_batch_id,
        )

    def to_dict(self) -> dict[str, str]:
        payload: dict[str, str] = {}
        if self.last_sync_date is not None:
            payload["lastSyncDate"] = self.last_sync_date.isoformat()
        if self.last_batch_id is not None:
            payload["lastBatchId"] = self.last_batch_id
        if self.previous_batch_id is not None:
            payload["previousBatchId"] = self.previous_batch_id
        return payload

    @classmethod
    def from_dict(cls, payload: dict[str, Any]) -> ProviderState:
        last_sync_date = payload.get("lastSyncDate")
        return cls(
            last_sync_date=_parse_datetime(last_sync_date) if last_sync_date else None,
            last_batch_id=payload.get("lastBatchId") or None,
            previous_batch_id=payload.get("previousBatchId") or None,
        )


class SyncErrorKind(str, Enum):
    RETRY_EXHAUSTED = "retry_exhausted"
    CANCELLED = "cancelled"
    CONFIG_VALIDATION = "config_validation"
    PERSISTENCE = "persistence"
    PROVIDER = "provider"


@dataclass(frozen=True)
class SyncResult:
    success: bool
    records_processed: int
    timestamp: datetime
    error: str | None = None
    error_kind: SyncErrorKind | None = None
    provider: str | None = None
    batch_id: str | None = None


@dataclass(frozen=True)
class ProviderHealth:
    healthy: bool
    last_sync: datetime | None = None
    message: str | None = None


@dataclass(frozen=True)
class ProviderInfo:
    id: str
    name: str
    type: str
    healthy: bool
    last_sync: datetime | None = None
