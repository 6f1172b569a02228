from __future__ import annotations

from abc import ABC, abstractmethod
from collections.abc import Sequence
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from provider_sync.core.models import ProviderState


class FilterOperator(str, Enum):
    EQ = "eq"
    GT = "gt"
    GTE = "gte"
    LT = "lt"
    LTE = "lte"


class SortOrder(str, Enum):
    ASC = "asc"
    DESC = "desc"


@dataclass(frozen=True)
class QueryFilter:
    field: str
    operator: FilterOperator
    value: Any

    def matches(self, document: dict[str, Any]) -> bool:
        if self.field not in document:
            return False
        current = document[self.field]
        try:
            if self.operator is FilterOperator.EQ:
                return current == self.value
            if self.operator is FilterOperator.GT:
                return current > self.value
            if self.operator is FilterOperator.GTE:
                return current >= self.value
            if self.operator is FilterOperator.LT:
                return current < self.value
            return current <= self.value
        except TypeError:
            # Values of different types never satisfy a range comparison.
            return False


@dataclass(frozen=True)
class QueryOptions:
    limit: int | None = None
    offset: int = 0
    sort_by: str | None = None
    sort_order: SortOrder = SortOrder.ASC

    def __post_init__(self) -> None:
        if self.limit is not None and self.limit < 0:
            raise ValueError("limit must be >= 0")
        if self.offset < 0:
            raise ValueError("offset must be >= 0")


@dataclass(frozen=True)
class DocumentItem:
    key: str
    data: dict[str, Any]
    metadata: dict[str, Any] = field(default_factory=dict)


class DocumentStore(ABC):
    """Generic keyed document storage consumed by the sync orchestrator."""

    @property
    @abstractmethod
    def store_name(self) -> str:
        raise NotImplementedError

    @abstractmethod
    async def put(self, key: str, data: dict[str, Any], metadata: dict[str, Any] | None = None) -> None:
        raise NotImplementedError

    @abstractmethod
    async def get(self, key: str) -> dict[str, Any] | None:
        raise NotImplementedError

    @abstractmethod
    async def query(
        self,
        filters: Sequence[QueryFilter] = (),
        options: QueryOptions | None = None,
    ) -> list[dict[str, Any]]:
        raise NotImplementedError

    @abstractmethod
    async def delete(self, key: str) -> None:
        raise NotImplementedError

    @abstractmethod
    async def exists(self, key: str) -> bool:
        raise NotImplementedError

    async def batch_put(self, items: Sequence[DocumentItem]) -> None:
        for item in items:
            await self.put(item.key, item.data, item.metadata)


class ProviderStateStore(ABC):
    """Durable per-provider sync cursor. ``save_state`` overwrites, it never merges."""

    @abstractmethod
    async def get_state(self, provider_name: str) -> ProviderState | None:
        raise NotImplementedError

    @abstractmethod
    async def save_state(self, provider_name: str, state: ProviderState) -> None:
        raise NotImplementedError


def apply_query(
    documents: Sequence[dict[str, Any]],
    filters: Sequence[QueryFilter],
    options: QueryOptions | None,
) -> list[dict[str, Any]]:
    """Filter, sort and page documents held in process memory."""
    options = options or QueryOptions()
    results = [doc for doc in documents if all(item.matches(doc) for item in filters)]
    if options.sort_by:
        sort_by = options.sort_by
        present = [doc for doc in results if doc.get(sort_by) is not None]
        missing = [doc for doc in results if doc.get(sort_by) is None]
        present.sort(key=lambda doc: doc[sort_by], reverse=options.sort_order is SortOrder.DESC)
        results = present + missing
    end = None if options.limit is None else options.offset + options.limit
    return results[options.offset : end]
