"""Document and provider-state stores."""

from provider_sync.stores.base import (
    DocumentItem,
    DocumentStore,
    FilterOperator,
    ProviderStateStore,
    QueryFilter,
    QueryOptions,
    SortOrder,
)
from provider_sync.stores.jsonl import JsonlDocumentStore
from provider_sync.stores.memory import InMemoryDocumentStore, InMemoryProviderStateStore
from provider_sync.stores.postgres import PostgresDocumentStore, PostgresProviderStateStore
from provider_sync.stores.redis_state import RedisProviderStateStore, create_redis_client

__all__ = [
    "DocumentItem",
    "DocumentStore",
    "FilterOperator",
    "InMemoryDocumentStore",
    "InMemoryProviderStateStore",
    "JsonlDocumentStore",
    "PostgresDocumentStore",
    "PostgresProviderStateStore",
    "ProviderStateStore",
    "QueryFilter",
    "QueryOptions",
    "RedisProviderStateStore",
    "SortOrder",
    "create_redis_client",
]
