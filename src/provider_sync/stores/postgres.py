from __future__ import annotations

import asyncio
import json
from collections.abc import Sequence
from typing import Any, Awaitable, Callable

from provider_sync.core.exceptions import PersistenceError
from provider_sync.core.models import ProviderState
from provider_sync.stores.base import (
    DocumentItem,
    DocumentStore,
    FilterOperator,
    ProviderStateStore,
    QueryFilter,
    QueryOptions,
    SortOrder,
)

DOCUMENTS_DDL = """
CREATE TABLE IF NOT EXISTS provider_documents (
    store_name TEXT NOT NULL,
    key TEXT NOT NULL,
    data JSONB NOT NULL,
    metadata JSONB NOT NULL DEFAULT '{}'::jsonb,
    updated_at TIMESTAMPTZ NOT NULL DEFAULT now(),
    PRIMARY KEY (store_name, key)
)
"""

UPSERT_DOCUMENT_SQL = """
INSERT INTO provider_documents (store_name, key, data, metadata, updated_at)
VALUES ($1, $2, $3::jsonb, $4::jsonb, now())
ON CONFLICT (store_name, key) DO UPDATE
SET
    data = EXCLUDED.data,
    metadata = EXCLUDED.metadata,
    updated_at = EXCLUDED.updated_at
"""

PROVIDER_STATE_DDL = """
CREATE TABLE IF NOT EXISTS provider_state (
    provider_name TEXT PRIMARY KEY,
    last_sync_date TIMESTAMPTZ NULL,
    last_batch_id TEXT NULL,
    previous_batch_id TEXT NULL,
    updated_at TIMESTAMPTZ NOT NULL DEFAULT now()
)
"""

UPSERT_STATE_SQL = """
INSERT INTO provider_state (provider_name, last_sync_date, last_batch_id, previous_batch_id, updated_at)
VALUES ($1, $2, $3, $4, now())
ON CONFLICT (provider_name) DO UPDATE
SET
    last_sync_date = EXCLUDED.last_sync_date,
    last_batch_id = EXCLUDED.last_batch_id,
    previous_batch_id = EXCLUDED.previous_batch_id,
    updated_at = EXCLUDED.updated_at
"""

_OPERATOR_SQL: dict[FilterOperator, str] = {
    FilterOperator.EQ: "=",
    FilterOperator.GT: ">",
    FilterOperator.GTE: ">=",
    FilterOperator.LT: "<",
    FilterOperator.LTE: "<=",
}

PoolFactory = Callable[[str], Awaitable[Any]]


class _AsyncpgPool:
    def __init__(self, dsn: str, ddl: str, pool_factory: PoolFactory | None) -> None:
        self._dsn = dsn
        self._ddl = ddl
        self._pool_factory = pool_factory
        self._pool: Any | None = None
        self._lock = asyncio.Lock()

    async def get(self) -> Any:
        async with self._lock:
            if self._pool is None:
                try:
                    pool = await self._create_pool()
                except RuntimeError:
                    raise
                except Exception as exc:
                    raise PersistenceError(f"postgres connection failed: {exc}") from exc
                try:
                    await pool.execute(self._ddl)
                except Exception as exc:
                    await pool.close()
                    raise PersistenceError(f"postgres schema setup failed: {exc}") from exc
                self._pool = pool
            return self._pool

    async def close(self) -> None:
        async with self._lock:
            if self._pool is not None:
                try:
                    await self._pool.close()
                finally:
                    self._pool = None

    async def _create_pool(self) -> Any:
        if self._pool_factory:
            return await self._pool_factory(self._dsn)
        try:
            import asyncpg
        except ImportError as exc:
            raise RuntimeError("asyncpg is required for postgres stores") from exc
        return await asyncpg.create_pool(dsn=self._dsn, min_size=1, max_size=5)


class PostgresDocumentStore(DocumentStore):
    def __init__(
        self,
        dsn: str,
        name: str = "postgres-store",
        batch_size: int = 1000,
        pool_factory: PoolFactory | None = None,
    ) -> None:
        if batch_size <= 0:
            raise ValueError("batch_size must be > 0")
        self._name = name
        self._batch_size = batch_size
        self._pool = _AsyncpgPool(dsn, DOCUMENTS_DDL, pool_factory)

    @property
    def store_name(self) -> str:
        return self._name

    async def put(self, key: str, data: dict[str, Any], metadata: dict[str, Any] | None = None) -> None:
        await self.batch_put([DocumentItem(key=key, data=data, metadata=metadata or {})])

    async def batch_put(self, items: Sequence[DocumentItem]) -> None:
        if not items:
            return
        # The last entry for a key wins, as it would with sequential puts.
        latest = {item.key: item for item in items}
        rows = [self._to_row(item) for item in latest.values()]
        pool = await self._pool.get()
        for start in range(0, len(rows), self._batch_size):
            batch = rows[start : start + self._batch_size]
            try:
                await pool.executemany(UPSERT_DOCUMENT_SQL, batch)
            except Exception as exc:
                raise PersistenceError(f"postgres document upsert failed: store={self._name}") from exc

    async def get(self, key: str) -> dict[str, Any] | None:
        row = await self._fetchrow(
            "SELECT data FROM provider_documents WHERE store_name = $1 AND key = $2",
            self._name,
            key,
        )
        return _load_json(row["data"]) if row is not None else None

    async def query(
        self,
        filters: Sequence[QueryFilter] = (),
        options: QueryOptions | None = None,
    ) -> list[dict[str, Any]]:
        sql, params = build_query_sql(self._name, filters, options or QueryOptions())
        pool = await self._pool.get()
        try:
            rows = await pool.fetch(sql, *params)
        except Exception as exc:
            raise PersistenceError(f"postgres document query failed: store={self._name}") from exc
        return [_load_json(row["data"]) for row in rows]

    async def delete(self, key: str) -> None:
        pool = await self._pool.get()
        try:
            await pool.execute(
                "DELETE FROM provider_documents WHERE store_name = $1 AND key = $2",
                self._name,
                key,
            )
        except Exception as exc:
            raise PersistenceError(f"postgres document delete failed: store={self._name}") from exc

    async def exists(self, key: str) -> bool:
        row = await self._fetchrow(
            "SELECT 1 AS found FROM provider_documents WHERE store_name = $1 AND key = $2",
            self._name,
            key,
        )
        return row is not None

    async def close(self) -> None:
        await self._pool.close()

    async def _fetchrow(self, sql: str, *params: Any) -> Any:
        pool = await self._pool.get()
        try:
            return await pool.fetchrow(sql, *params)
        except Exception as exc:
            raise PersistenceError(f"postgres document read failed: store={self._name}") from exc

    def _to_row(self, item: DocumentItem) -> tuple:
        return (
            self._name,
            item.key,
            json.dumps(item.data, ensure_ascii=True),
            json.dumps(item.metadata, ensure_ascii=True, default=str),
        )


def build_query_sql(store_name: str, filters: Sequence[QueryFilter], options: QueryOptions) -> tuple[str, list[Any]]:
    """Translate typed filters into a parameterised JSONB query."""
    params: list[Any] = [store_name]
    clauses = ["store_name = $1"]
    for item in filters:
        params.append(item.field)
        field_index = len(params)
        params.append(json.dumps(item.value))
        value_index = len(params)
        clauses.append(f"data -> ${field_index}::text {_OPERATOR_SQL[item.operator]} ${value_index}::jsonb")
    sql = f"SELECT data FROM provider_documents WHERE {' AND '.join(clauses)}"
    if options.sort_by:
        params.append(options.sort_by)
        direction = "DESC" if options.sort_order is SortOrder.DESC else "ASC"
        sql += f" ORDER BY data -> ${len(params)}::text {direction} NULLS LAST"
    else:
        sql += " ORDER BY key ASC"
    if options.limit is not None:
        params.append(options.limit)
        sql += f" LIMIT ${len(params)}"
    if options.offset:
        params.append(options.offset)
        sql += f" OFFSET ${len(params)}"
    return sql, params


class PostgresProviderStateStore(ProviderStateStore):
    def __init__(self, dsn: str, pool_factory: PoolFactory | None = None) -> None:
        self._pool = _AsyncpgPool(dsn, PROVIDER_STATE_DDL, pool_factory)

    async def get_state(self, provider_name: str) -> ProviderState | None:
        pool = await self._pool.get()
        try:
            row = await pool.fetchrow(
                "SELECT last_sync_date, last_batch_id, previous_batch_id FROM provider_state WHERE provider_name = $1",
                provider_name,
            )
        except Exception as exc:
            raise PersistenceError(f"postgres provider state read failed: provider={provider_name}") from exc
        if row is None:
            return None
        return ProviderState(
            last_sync_date=row["last_sync_date"],
            last_batch_id=row["last_batch_id"],
            previous_batch_id=row["previous_batch_id"],
        )

    async def save_state(self, provider_name: str, state: ProviderState) -> None:
        pool = await self._pool.get()
        try:
            await pool.execute(
                UPSERT_STATE_SQL,
                provider_name,
                state.last_sync_date,
                state.last_batch_id,
                state.previous_batch_id,
            )
        except Exception as exc:
            raise PersistenceError(f"postgres provider state write failed: provider={provider_name}") from exc

    async def close(self) -> None:
        await self._pool.close()


def _load_json(value: Any) -> dict[str, Any]:
    if isinstance(value, (str, bytes)):
        return json.loads(value)
    return dict(value)
