"""Provider HTTP client."""

from provider_sync.providers.client import CurrentDataRequest, HistoricalDataRequest, ProviderClient
from provider_sync.providers.schemas import ProviderConfig, validate_provider_config

__all__ = [
    "CurrentDataRequest",
    "HistoricalDataRequest",
    "ProviderClient",
    "ProviderConfig",
    "validate_provider_config",
]
