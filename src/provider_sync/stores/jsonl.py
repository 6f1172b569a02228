from __future__ import annotations

import asyncio
import json
from collections.abc import Sequence
from pathlib import Path
from typing import Any

from provider_sync.core.exceptions import PersistenceError
from provider_sync.stores.base import DocumentItem, DocumentStore, QueryFilter, QueryOptions, apply_query


class JsonlDocumentStore(DocumentStore):
    """One JSON line per key. Every write rewrites the file with the latest entry per key."""

    def __init__(self, file_path: str, name: str = "jsonl-store") -> None:
        self._file = Path(file_path)
        self._name = name
        self._lock = asyncio.Lock()

    @property
    def store_name(self) -> str:
        return self._name

    async def put(self, key: str, data: dict[str, Any], metadata: dict[str, Any] | None = None) -> None:
        await self.batch_put([DocumentItem(key=key, data=data, metadata=metadata or {})])

    async def batch_put(self, items: Sequence[DocumentItem]) -> None:
        if not items:
            return
        async with self._lock:
            latest = self._read_existing()
            for item in items:
                latest[item.key] = {"key": item.key, "data": item.data, "metadata": item.metadata}
            self._write_all(latest)

    async def get(self, key: str) -> dict[str, Any] | None:
        entry = self._read_existing().get(key)
        return entry["data"] if entry is not None else None

    async def query(
        self,
        filters: Sequence[QueryFilter] = (),
        options: QueryOptions | None = None,
    ) -> list[dict[str, Any]]:
        documents = [entry["data"] for entry in self._read_existing().values()]
        return apply_query(documents, filters, options)

    async def delete(self, key: str) -> None:
        async with self._lock:
            latest = self._read_existing()
            if latest.pop(key, None) is not None:
                self._write_all(latest)

    async def exists(self, key: str) -> bool:
        return key in self._read_existing()

    def _read_existing(self) -> dict[str, dict[str, Any]]:
        if not self._file.exists():
            return {}
        latest: dict[str, dict[str, Any]] = {}
        try:
            for line in self._file.read_text(encoding="utf-8").splitlines():
                if not line.strip():
                    continue
                entry = json.loads(line)
                latest[str(entry["key"])] = entry
        except (OSError, ValueError, KeyError) as exc:
            raise PersistenceError(f"failed to read document store file: {self._file}") from exc
        return latest

    def _write_all(self, latest: dict[str, dict[str, Any]]) -> None:
        lines = [json.dumps(entry, ensure_ascii=True, sort_keys=True) for entry in latest.values()]
        try:
            self._file.parent.mkdir(parents=True, exist_ok=True)
            tmp_file = self._file.with_suffix(self._file.suffix + ".tmp")
            tmp_file.write_text("\n".join(lines) + ("\n" if lines else ""), encoding="utf-8")
            tmp_file.replace(self._file)
        except OSError as exc:
            raise PersistenceError(f"failed to write document store file: {self._file}") from exc
