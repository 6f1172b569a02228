from __future__ import annotations

import copy
from collections.abc import Sequence
from typing import Any

from provider_sync.core.models import ProviderState
from provider_sync.stores.base import (
    DocumentStore,
    ProviderStateStore,
    QueryFilter,
    QueryOptions,
    apply_query,
)


class InMemoryDocumentStore(DocumentStore):
    def __init__(self, name: str = "in-memory-store") -> None:
        self._name = name
        self._items: dict[str, tuple[dict[str, Any], dict[str, Any]]] = {}

    @property
    def store_name(self) -> str:
        return self._name

    async def put(self, key: str, data: dict[str, Any], metadata: dict[str, Any] | None = None) -> None:
        self._items[key] = (copy.deepcopy(data), dict(metadata or {}))

    async def get(self, key: str) -> dict[str, Any] | None:
        item = self._items.get(key)
        if item is None:
            return None
        return copy.deepcopy(item[0])

    async def get_metadata(self, key: str) -> dict[str, Any] | None:
        item = self._items.get(key)
        return dict(item[1]) if item is not None else None

    async def query(
        self,
        filters: Sequence[QueryFilter] = (),
        options: QueryOptions | None = None,
    ) -> list[dict[str, Any]]:
        documents = [copy.deepcopy(data) for data, _ in self._items.values()]
        return apply_query(documents, filters, options)

    async def delete(self, key: str) -> None:
        self._items.pop(key, None)

    async def exists(self, key: str) -> bool:
        return key in self._items

    def size(self) -> int:
        return len(self._items)


class InMemoryProviderStateStore(ProviderStateStore):
    def __init__(self) -> None:
        self._states: dict[str, dict[str, str]] = {}

    async def get_state(self, provider_name: str) -> ProviderState | None:
        payload = self._states.get(provider_name)
        if payload is None:
            return None
        return ProviderState.from_dict(payload)

    async def save_state(self, provider_name: str, state: ProviderState) -> None:
        self._states[provider_name] = state.to_dict()
