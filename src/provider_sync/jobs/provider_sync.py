from __future__ import annotations

import asyncio
from collections.abc import Sequence

from provider_sync.core.models import SyncResult
from provider_sync.core.orchestrator import SyncOrchestrator


async def run_provider_sync(
    orchestrator: SyncOrchestrator,
    provider_names: Sequence[str],
    cancel_event: asyncio.Event | None = None,
) -> list[SyncResult]:
    """Sync every provider concurrently; results keep the input order."""
    return list(
        await asyncio.gather(
            *(orchestrator.sync(name, cancel_event=cancel_event) for name in provider_names)
        )
    )
