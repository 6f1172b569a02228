from __future__ import annotations


class SyncError(Exception):
    """Base provider sync exception."""


class ProviderRequestError(SyncError):
    """Raised when a provider request failed."""


class ProviderNetworkError(ProviderRequestError):
    """Raised when the provider could not be reached."""


class ProviderHTTPStatusError(ProviderRequestError):
    """Raised when the provider answered with a non-2xx status."""

    def __init__(self, status_code: int, url: str = "") -> None:
        super().__init__(f"provider api returned status {status_code}")
        self.status_code = status_code
        self.url = url


class ProviderDecodeError(ProviderRequestError):
    """Raised when a provider payload does not match the response schema."""


class RetryExhaustedError(SyncError):
    """Raised when every attempt failed. The last failure is the __cause__."""

    def __init__(self, attempts: int, last_error: BaseException) -> None:
        super().__init__(f"max retry attempts ({attempts}) exceeded: {last_error}")
        self.attempts = attempts
        self.last_error = last_error


class SyncCancelledError(SyncError):
    """Raised when the caller's cancel signal stopped a sync."""


class RetryCancelledError(SyncCancelledError):
    """Raised when the caller cancelled or the overall deadline passed."""

    def __init__(self, attempts: int, last_error: BaseException | None = None, reason: str = "cancelled") -> None:
        if last_error is not None:
            message = f"retry aborted after {attempts} attempts: {reason} (last error: {last_error})"
        else:
            message = f"retry aborted: {reason}"
        super().__init__(message)
        self.attempts = attempts
        self.last_error = last_error
        self.reason = reason


class PersistenceError(SyncError):
    """Raised when a document store or provider state store operation failed."""


class ConfigValidationError(SyncError):
    """Raised when provider configuration is invalid, before any network call."""
