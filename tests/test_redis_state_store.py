from __future__ import annotations

import json
from datetime import datetime, timezone

import pytest

from provider_sync.core.exceptions import PersistenceError
from provider_sync.core.models import ProviderState
from provider_sync.stores.redis_state import RedisProviderStateStore


class FakeRedis:
    def __init__(self) -> None:
        self.values: dict[str, str] = {}

    async def get(self, key: str) -> str | None:
        return self.values.get(key)

    async def set(self, key: str, value: str) -> bool:
        self.values[key] = value
        return True


class BrokenRedis(FakeRedis):
    async def set(self, key: str, value: str) -> bool:
        raise ConnectionError("redis unavailable")


@pytest.mark.asyncio
async def test_redis_state_store_writes_json_under_prefixed_key() -> None:
    client = FakeRedis()
    store = RedisProviderStateStore(client)
    synced_at = datetime(2026, 2, 1, tzinfo=timezone.utc)

    await store.save_state("p1", ProviderState(last_sync_date=synced_at, last_batch_id="b1"))

    assert json.loads(client.values["provider_state:p1"]) == {
        "lastSyncDate": "2026-02-01T00:00:00+00:00",
        "lastBatchId": "b1",
    }
    assert await store.get_state("p1") == ProviderState(last_sync_date=synced_at, last_batch_id="b1")
    assert await store.get_state("p2") is None


@pytest.mark.asyncio
async def test_redis_state_store_wraps_client_failures() -> None:
    store = RedisProviderStateStore(BrokenRedis())

    with pytest.raises(PersistenceError):
        await store.save_state("p1", ProviderState.initial())


@pytest.mark.asyncio
async def test_redis_state_store_rejects_corrupt_payload() -> None:
    client = FakeRedis()
    client.values["provider_state:p1"] = "{broken"
    store = RedisProviderStateStore(client)

    with pytest.raises(PersistenceError):
        await store.get_state("p1")


@pytest.mark.asyncio
@pytest.mark.parametrize("raw", ["[1, 2]", '"2026-01-01"', "42", '{"lastSyncDate": 5}'])
async def test_redis_state_store_rejects_non_object_payloads(raw: str) -> None:
    client = FakeRedis()
    client.values["provider_state:p1"] = raw
    store = RedisProviderStateStore(client)

    with pytest.raises(PersistenceError, match="corrupt"):
        await store.get_state("p1")
