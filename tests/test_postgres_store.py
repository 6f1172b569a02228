from __future__ import annotations

import json
from datetime import datetime, timezone

import pytest

from provider_sync.core.exceptions import PersistenceError
from provider_sync.core.models import ProviderState
from provider_sync.stores.base import DocumentItem, FilterOperator, QueryFilter, QueryOptions, SortOrder
from provider_sync.stores.postgres import (
    DOCUMENTS_DDL,
    UPSERT_DOCUMENT_SQL,
    UPSERT_STATE_SQL,
    PostgresDocumentStore,
    PostgresProviderStateStore,
    build_query_sql,
)


class FakePool:
    def __init__(self, rows: dict[str, dict] | None = None, fail: bool = False) -> None:
        self.executed: list[tuple[str, tuple]] = []
        self.many_calls: list[tuple[str, list[tuple]]] = []
        self.fetch_calls: list[tuple[str, tuple]] = []
        self.rows = rows or {}
        self.fail = fail
        self.closed = False

    async def execute(self, sql: str, *params) -> str:
        self.executed.append((sql, params))
        return "OK"

    async def close(self) -> None:
        self.closed = True

    async def executemany(self, sql: str, values: list[tuple]) -> None:
        if self.fail:
            raise OSError("connection reset")
        self.many_calls.append((sql, values))

    async def fetchrow(self, sql: str, *params):
        self.fetch_calls.append((sql, params))
        return self.rows.get(params[-1])

    async def fetch(self, sql: str, *params):
        self.fetch_calls.append((sql, params))
        return list(self.rows.values())


def _factory(pool: FakePool):
    async def pool_factory(_: str):
        return pool

    return pool_factory


@pytest.mark.asyncio
async def test_postgres_document_store_upserts_in_batches() -> None:
    pool = FakePool()
    store = PostgresDocumentStore("postgresql://example", batch_size=2, pool_factory=_factory(pool))
    items = [DocumentItem(key=f"r{idx}", data={"id": f"r{idx}"}, metadata={"batchId": "b1"}) for idx in range(5)]

    await store.batch_put(items)

    assert pool.executed[0][0] == DOCUMENTS_DDL
    assert [len(values) for _, values in pool.many_calls] == [2, 2, 1]
    assert UPSERT_DOCUMENT_SQL.strip() in pool.many_calls[0][0]
    first = pool.many_calls[0][1][0]
    assert first[0] == "postgres-store"
    assert first[1] == "r0"
    assert json.loads(first[2]) == {"id": "r0"}
    assert json.loads(first[3]) == {"batchId": "b1"}


@pytest.mark.asyncio
async def test_postgres_document_store_dedups_keys_within_batch() -> None:
    pool = FakePool()
    store = PostgresDocumentStore("postgresql://example", pool_factory=_factory(pool))

    await store.batch_put(
        [
            DocumentItem(key="r1", data={"price": 1.0}),
            DocumentItem(key="r1", data={"price": 2.0}),
        ]
    )

    values = pool.many_calls[0][1]
    assert len(values) == 1
    assert json.loads(values[0][2]) == {"price": 2.0}


@pytest.mark.asyncio
async def test_postgres_document_store_wraps_driver_errors() -> None:
    store = PostgresDocumentStore("postgresql://example", pool_factory=_factory(FakePool(fail=True)))

    with pytest.raises(PersistenceError):
        await store.batch_put([DocumentItem(key="r1", data={})])


@pytest.mark.asyncio
async def test_postgres_document_store_reads_jsonb_rows() -> None:
    pool = FakePool(rows={"r1": {"data": '{"id": "r1", "price": 5.0}'}})
    store = PostgresDocumentStore("postgresql://example", pool_factory=_factory(pool))

    assert await store.get("r1") == {"id": "r1", "price": 5.0}
    assert await store.get("r2") is None
    assert await store.exists("r1") is True
    assert await store.query() == [{"id": "r1", "price": 5.0}]


def test_build_query_sql_parameterises_filters_and_paging() -> None:
    sql, params = build_query_sql(
        "prices",
        [
            QueryFilter("currency", FilterOperator.EQ, "NGN"),
            QueryFilter("price", FilterOperator.LT, 500),
        ],
        QueryOptions(limit=10, offset=20, sort_by="price", sort_order=SortOrder.DESC),
    )

    assert "data -> $2::text = $3::jsonb" in sql
    assert "data -> $4::text < $5::jsonb" in sql
    assert "ORDER BY data -> $6::text DESC NULLS LAST" in sql
    assert sql.endswith("LIMIT $7 OFFSET $8")
    assert params == ["prices", "currency", '"NGN"', "price", "500", "price", 10, 20]


def test_build_query_sql_defaults_to_key_order() -> None:
    sql, params = build_query_sql("prices", [], QueryOptions())

    assert sql.endswith("ORDER BY key ASC")
    assert params == ["prices"]


@pytest.mark.asyncio
async def test_postgres_state_store_round_trips_state() -> None:
    synced_at = datetime(2026, 1, 1, tzinfo=timezone.utc)
    pool = FakePool(
        rows={"p1": {"last_sync_date": synced_at, "last_batch_id": "b2", "previous_batch_id": "b1"}}
    )
    store = PostgresProviderStateStore("postgresql://example", pool_factory=_factory(pool))

    state = await store.get_state("p1")
    assert state == ProviderState(last_sync_date=synced_at, last_batch_id="b2", previous_batch_id="b1")
    assert await store.get_state("p2") is None

    await store.save_state("p1", state.advance("b3", synced_at))
    sql, params = pool.executed[-1]
    assert sql == UPSERT_STATE_SQL
    assert params == ("p1", synced_at, "b3", "b2")


class BrokenSchemaPool(FakePool):
    async def execute(self, sql: str, *params) -> str:
        raise OSError("permission denied for schema public")


@pytest.mark.asyncio
async def test_schema_setup_failure_closes_each_pool_and_raises_persistence_error() -> None:
    pools: list[BrokenSchemaPool] = []

    async def pool_factory(_: str):
        pool = BrokenSchemaPool()
        pools.append(pool)
        return pool

    store = PostgresProviderStateStore("postgresql://example", pool_factory=pool_factory)

    for _ in range(3):
        with pytest.raises(PersistenceError, match="schema setup failed"):
            await store.get_state("p1")

    assert len(pools) == 3
    assert all(pool.closed for pool in pools)


@pytest.mark.asyncio
async def test_connection_failure_is_a_persistence_error() -> None:
    async def pool_factory(_: str):
        raise OSError("connection refused")

    store = PostgresDocumentStore("postgresql://example", pool_factory=pool_factory)

    with pytest.raises(PersistenceError, match="connection failed"):
        await store.get("r1")
