from __future__ import annotations

import json
from typing import Any, Protocol

from provider_sync.core.exceptions import PersistenceError
from provider_sync.core.models import ProviderState
from provider_sync.stores.base import ProviderStateStore


class RedisLikeStateClient(Protocol):
    async def get(self, key: str) -> str | None: ...

    async def set(self, key: str, value: str) -> Any: ...


class RedisProviderStateStore(ProviderStateStore):
    def __init__(self, client: RedisLikeStateClient, key_prefix: str = "provider_state") -> None:
        self._client = client
        self._key_prefix = key_prefix

    async def get_state(self, provider_name: str) -> ProviderState | None:
        try:
            raw = await self._client.get(self._key(provider_name))
        except Exception as exc:
            raise PersistenceError(f"redis provider state read failed: provider={provider_name}") from exc
        if not raw:
            return None
        try:
            payload = json.loads(raw)
            if not isinstance(payload, dict):
                raise ValueError(f"expected a JSON object, got {type(payload).__name__}")
            return ProviderState.from_dict(payload)
        except (ValueError, TypeError) as exc:
            raise PersistenceError(f"stored provider state is corrupt: provider={provider_name}") from exc

    async def save_state(self, provider_name: str, state: ProviderState) -> None:
        payload = json.dumps(state.to_dict(), ensure_ascii=True, sort_keys=True)
        try:
            await self._client.set(self._key(provider_name), payload)
        except Exception as exc:
            raise PersistenceError(f"redis provider state write failed: provider={provider_name}") from exc

    def _key(self, provider_name: str) -> str:
        return f"{self._key_prefix}:{provider_name}"


def create_redis_client(url: str) -> Any:
    import redis.asyncio as redis

    return redis.from_url(
        url,
        encoding="utf-8",
        decode_responses=True,
        socket_connect_timeout=5,
        socket_timeout=5,
        health_check_interval=30,
    )
