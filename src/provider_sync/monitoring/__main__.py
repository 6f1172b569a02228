from __future__ import annotations

import uvicorn

from provider_sync.config import load_settings


def main() -> None:
    settings = load_settings()
    uvicorn.run(
        "provider_sync.monitoring.app:app",
        host=settings.MONITORING_HOST,
        port=settings.MONITORING_PORT,
        reload=False,
    )


if __name__ == "__main__":
    main()
