from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Awaitable, Callable, TypeVar

from provider_sync.core.exceptions import (
    ConfigValidationError,
    RetryCancelledError,
    RetryExhaustedError,
    SyncCancelledError,
)

T = TypeVar("T")
logger = logging.getLogger(__name__)

RetryObserver = Callable[[int, Exception, float], None]


@dataclass(frozen=True)
class RetryConfig:
    max_attempts: int = 10
    initial_delay_seconds: float = 0.1
    max_delay_seconds: float = 10.0
    backoff_factor: float = 2.0
    # 0 disables the overall deadline.
    max_total_timeout_seconds: float = 60.0

    def __post_init__(self) -> None:
        if self.max_attempts < 1:
            raise ValueError("max_attempts must be >= 1")
        if self.initial_delay_seconds <= 0:
            raise ValueError("initial_delay_seconds must be > 0")
        if self.max_delay_seconds < self.initial_delay_seconds:
            raise ValueError("max_delay_seconds must be >= initial_delay_seconds")
        if self.backoff_factor < 1.0:
            raise ValueError("backoff_factor must be >= 1.0")
        if self.max_total_timeout_seconds < 0:
            raise ValueError("max_total_timeout_seconds must be >= 0")

    def delay_for(self, attempt: int) -> float:
        """Wait applied after failed attempt ``attempt`` (1-based)."""
        if attempt < 1:
            raise ValueError("attempt must be >= 1")
        delay = self.initial_delay_seconds
        for _ in range(attempt - 1):
            delay = min(delay * self.backoff_factor, self.max_delay_seconds)
            if delay >= self.max_delay_seconds:
                break
        return min(delay, self.max_delay_seconds)


DEFAULT_RETRY_CONFIG = RetryConfig()


class _AttemptAborted(Exception):
    def __init__(self, reason: str) -> None:
        super().__init__(reason)
        self.reason = reason


def _is_retryable(exc: Exception) -> bool:
    return not isinstance(exc, (ConfigValidationError, SyncCancelledError))


async def with_exponential_backoff(
    operation: Callable[[], Awaitable[T]],
    config: RetryConfig = DEFAULT_RETRY_CONFIG,
    *,
    on_retry: RetryObserver | None = None,
    should_retry: Callable[[Exception], bool] | None = None,
    cancel_event: asyncio.Event | None = None,
) -> T:
    """Run ``operation`` until it succeeds or the retry budget is spent.

    The wait after failed attempt ``k`` is ``config.delay_for(k)``. Setting
    ``cancel_event`` or passing the overall deadline aborts with
    :class:`RetryCancelledError`; running out of attempts raises
    :class:`RetryExhaustedError` chained to the last failure. Errors rejected
    by ``should_retry`` are re-raised untouched.
    """
    loop = asyncio.get_running_loop()
    deadline = loop.time() + config.max_total_timeout_seconds if config.max_total_timeout_seconds > 0 else None
    retryable = should_retry or _is_retryable
    last_error: Exception | None = None
    delay = config.initial_delay_seconds

    for attempt in range(1, config.max_attempts + 1):
        _raise_if_aborted(attempt - 1, last_error, cancel_event, deadline, loop)
        try:
            return await _run_attempt(operation, cancel_event, deadline, loop)
        except _AttemptAborted as aborted:
            raise RetryCancelledError(attempt, last_error, reason=aborted.reason) from last_error
        except Exception as exc:
            if not retryable(exc):
                raise
            last_error = exc

        if attempt == config.max_attempts:
            raise RetryExhaustedError(config.max_attempts, last_error) from last_error

        logger.warning(
            "retry_scheduled",
            extra={"attempt": attempt, "next_delay_seconds": delay, "error": str(last_error)},
        )
        _notify(on_retry, attempt, last_error, delay)
        _raise_if_aborted(attempt, last_error, cancel_event, deadline, loop)
        await _wait(delay, cancel_event, deadline, loop)
        delay = min(delay * config.backoff_factor, config.max_delay_seconds)

    # max_attempts >= 1, so the loop always returns or raises.
    raise AssertionError("unreachable")


def _abort_reason(
    cancel_event: asyncio.Event | None,
    deadline: float | None,
    loop: asyncio.AbstractEventLoop,
) -> str | None:
    if cancel_event is not None and cancel_event.is_set():
        return "cancelled"
    if deadline is not None and loop.time() >= deadline:
        return "deadline exceeded"
    return None


def _raise_if_aborted(
    attempts: int,
    last_error: Exception | None,
    cancel_event: asyncio.Event | None,
    deadline: float | None,
    loop: asyncio.AbstractEventLoop,
) -> None:
    reason = _abort_reason(cancel_event, deadline, loop)
    if reason is None:
        return
    logger.warning(
        "retry_aborted",
        extra={"attempts": attempts, "reason": reason, "has_last_error": last_error is not None},
    )
    raise RetryCancelledError(attempts, last_error, reason=reason) from last_error


async def _run_attempt(
    operation: Callable[[], Awaitable[T]],
    cancel_event: asyncio.Event | None,
    deadline: float | None,
    loop: asyncio.AbstractEventLoop,
) -> T:
    if cancel_event is None and deadline is None:
        return await operation()

    task = asyncio.ensure_future(operation())
    waiters: set[asyncio.Future] = {task}
    cancel_waiter: asyncio.Future | None = None
    if cancel_event is not None:
        cancel_waiter = asyncio.ensure_future(cancel_event.wait())
        waiters.add(cancel_waiter)
    timeout = max(deadline - loop.time(), 0.0) if deadline is not None else None
    try:
        done, _ = await asyncio.wait(waiters, timeout=timeout, return_when=asyncio.FIRST_COMPLETED)
    finally:
        if cancel_waiter is not None:
            cancel_waiter.cancel()
        if not task.done():
            task.cancel()

    if task in done:
        return task.result()
    # The attempt was cut off; let it observe its cancellation before reporting.
    await asyncio.wait({task})
    if cancel_event is not None and cancel_event.is_set():
        raise _AttemptAborted("cancelled")
    raise _AttemptAborted("deadline exceeded")


async def _wait(
    delay: float,
    cancel_event: asyncio.Event | None,
    deadline: float | None,
    loop: asyncio.AbstractEventLoop,
) -> None:
    timeout = delay
    if deadline is not None:
        timeout = min(timeout, max(deadline - loop.time(), 0.0))
    if cancel_event is None:
        await asyncio.sleep(timeout)
        return
    try:
        await asyncio.wait_for(cancel_event.wait(), timeout=timeout)
    except asyncio.TimeoutError:
        pass


def _notify(on_retry: RetryObserver | None, attempt: int, exc: Exception, next_delay: float) -> None:
    if on_retry is None:
        return
    try:
        on_retry(attempt, exc, next_delay)
    except Exception:
        logger.exception("retry_observer_failed", extra={"attempt": attempt})
