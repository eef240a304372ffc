# backend/placescout/services/search/retry.py
"""
Bounded retries with capped exponential backoff (no jitter).

Every network-bound call in the pipeline (provider fetches, vector store
operations) runs through ``RetryExecutor.execute`` with a per-attempt
timeout and an optional caller deadline. Outcomes are reported to the
ProviderUsageTracker and Prometheus.
"""
from __future__ import annotations

import asyncio
from dataclasses import dataclass
import logging
import time
from typing import Any, Awaitable, Callable, Optional, TypeVar

import httpx

from ...core.config import Settings
from ...core.constants import RETRYABLE_STATUS_CODES
from ...core.exceptions import (
    DeadlineExceededError,
    DomainException,
    ProviderError,
    ProviderTransientError,
    RetryExhaustedError,
)
from ...monitoring.provider_usage import ProviderUsageTracker
from .. import metrics
from .deadline import Deadline

logger = logging.getLogger(__name__)

T = TypeVar("T")

_TRANSIENT_MESSAGE_HINTS = ("timeout", "timed out", "network", "connection")


@dataclass
class RetryConfig:
    """Retry policy for one class of operations."""

    max_retries: int = 3
    initial_delay_s: float = 1.0
    max_delay_s: float = 30.0
    multiplier: float = 2.0

    @classmethod
    def from_settings(cls, settings: Settings) -> "RetryConfig":
        return cls(
            max_retries=settings.retry_max_retries,
            initial_delay_s=settings.retry_initial_delay_s,
            max_delay_s=settings.retry_max_delay_s,
            multiplier=settings.retry_backoff_multiplier,
        )

    def delay_for(self, retry_index: int) -> float:
        """Delay before retry number ``retry_index`` (0-based)."""
        return min(self.initial_delay_s * (self.multiplier**retry_index), self.max_delay_s)


def is_retryable(exc: BaseException) -> bool:
    """Classify an exception as transient (retry) or fatal (surface now)."""
    if isinstance(exc, DeadlineExceededError):
        return False
    if isinstance(exc, ProviderTransientError):
        return True
    if isinstance(exc, ProviderError):
        return False
    if isinstance(exc, (asyncio.TimeoutError, TimeoutError, ConnectionError)):
        return True
    if isinstance(exc, (httpx.TimeoutException, httpx.NetworkError, httpx.RemoteProtocolError)):
        return True
    if isinstance(exc, httpx.HTTPStatusError):
        return exc.response.status_code in RETRYABLE_STATUS_CODES
    status_code = getattr(exc, "status_code", None)
    if isinstance(status_code, int):
        return status_code in RETRYABLE_STATUS_CODES
    if isinstance(exc, DomainException):
        return False
    message = str(exc).lower()
    return any(hint in message for hint in _TRANSIENT_MESSAGE_HINTS)


class RetryExecutor:
    """
    Run async operations with bounded retries.

    Usage:
        executor = RetryExecutor(RetryConfig(max_retries=2), usage=tracker)
        places = await executor.execute(
            "geoapify", provider.fetch, lat, lon, radius, timeout_s=8.0, deadline=deadline
        )
    """

    def __init__(
        self,
        config: Optional[RetryConfig] = None,
        *,
        usage: Optional[ProviderUsageTracker] = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ) -> None:
        self.config = config or RetryConfig()
        self.usage = usage
        self._sleep = sleep

    async def execute(
        self,
        operation: str,
        func: Callable[..., Awaitable[T]],
        *args: Any,
        timeout_s: Optional[float] = None,
        deadline: Optional[Deadline] = None,
        **kwargs: Any,
    ) -> T:
        """
        Await ``func(*args, **kwargs)`` with retries.

        Raises:
            DeadlineExceededError: the caller deadline expired
            RetryExhaustedError: every attempt failed with a transient error
            Exception: the first non-retryable error, unchanged
        """
        started = time.perf_counter()
        retries = 0
        last_error: Optional[BaseException] = None
        attempts = self.config.max_retries + 1

        for attempt in range(attempts):
            if deadline is not None and deadline.expired:
                self._report(operation, started, False, "DeadlineExceededError", retries)
                raise DeadlineExceededError(
                    f"{operation}: deadline exceeded after {attempt} attempt(s)",
                    details={"operation": operation, "attempts": attempt},
                ) from last_error

            attempt_timeout = deadline.cap(timeout_s) if deadline is not None else timeout_s
            try:
                if attempt_timeout is None:
                    result = await func(*args, **kwargs)
                else:
                    result = await asyncio.wait_for(func(*args, **kwargs), timeout=attempt_timeout)
            except Exception as exc:
                last_error = exc
                error_type = type(exc).__name__
                if not is_retryable(exc):
                    self._report(operation, started, False, error_type, retries)
                    raise
                if attempt + 1 >= attempts:
                    break
                delay = self.config.delay_for(attempt)
                if deadline is not None and delay >= deadline.remaining_s:
                    # Sleeping would overrun the caller; the next loop turn reports expiry
                    delay = deadline.remaining_s
                retries += 1
                metrics.record_retry(operation, error_type)
                logger.warning(
                    "Transient failure, retrying",
                    extra={
                        "event": "operation_retry",
                        "op": operation,
                        "attempt": attempt + 1,
                        "delay": delay,
                        "error": str(exc) or error_type,
                    },
                )
                await self._sleep(delay)
                continue

            self._report(operation, started, True, None, retries)
            return result

        assert last_error is not None
        self._report(operation, started, False, type(last_error).__name__, retries)
        logger.warning(
            "Retries exhausted",
            extra={
                "event": "operation_retry_exhausted",
                "op": operation,
                "attempts": attempts,
                "error": str(last_error) or type(last_error).__name__,
            },
        )
        raise RetryExhaustedError(operation, attempts, last_error) from last_error

    def _report(
        self,
        operation: str,
        started: float,
        success: bool,
        error_type: Optional[str],
        retries: int,
    ) -> None:
        latency_ms = (time.perf_counter() - started) * 1000
        metrics.record_operation(operation, success, latency_ms, error_type)
        if self.usage is not None:
            self.usage.record(
                operation,
                success=success,
                latency_ms=latency_ms,
                error_type=error_type,
                retries=retries,
            )
