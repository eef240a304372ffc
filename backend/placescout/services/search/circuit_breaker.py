# backend/placescout/services/search/circuit_breaker.py
"""
Circuit breaker for external calls that should stop being attempted while
the dependency is degraded (embedding API).
"""
from dataclasses import dataclass, field
from enum import Enum
import logging
import threading
import time
from typing import Any, Awaitable, Callable, Dict, Optional, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")


class CircuitState(Enum):
    CLOSED = "closed"
    OPEN = "open"
    HALF_OPEN = "half_open"


@dataclass
class CircuitBreakerConfig:
    failure_threshold: int = 3  # consecutive failures before opening
    success_threshold: int = 1  # successes to close from half-open
    timeout_seconds: float = 60.0  # time open before a trial call


class CircuitOpenError(Exception):
    """Raised when a call is rejected because the circuit is open."""


@dataclass
class CircuitBreaker:
    """
    Usage:
        breaker = CircuitBreaker(name="embedding")
        try:
            vector = await breaker.call(provider.embed, text)
        except CircuitOpenError:
            # use fallback
    """

    name: str
    config: CircuitBreakerConfig = field(default_factory=CircuitBreakerConfig)
    clock: Callable[[], float] = time.monotonic

    _state: CircuitState = field(default=CircuitState.CLOSED, init=False)
    _failure_count: int = field(default=0, init=False)
    _success_count: int = field(default=0, init=False)
    _opened_at: Optional[float] = field(default=None, init=False)
    _lock: threading.Lock = field(default_factory=threading.Lock, init=False)

    @property
    def state(self) -> CircuitState:
        with self._lock:
            return self._state

    def _should_attempt(self) -> bool:
        with self._lock:
            if self._state == CircuitState.OPEN:
                assert self._opened_at is not None
                if self.clock() - self._opened_at < self.config.timeout_seconds:
                    return False
                self._state = CircuitState.HALF_OPEN
                logger.info(f"Circuit {self.name}: OPEN -> HALF_OPEN")
            return True

    def _record_success(self) -> None:
        with self._lock:
            if self._state == CircuitState.HALF_OPEN:
                self._success_count += 1
                if self._success_count >= self.config.success_threshold:
                    self._state = CircuitState.CLOSED
                    self._failure_count = 0
                    self._success_count = 0
                    logger.info(f"Circuit {self.name}: HALF_OPEN -> CLOSED")
            else:
                self._failure_count = 0

    def _record_failure(self) -> None:
        with self._lock:
            if self._state == CircuitState.HALF_OPEN:
                self._state = CircuitState.OPEN
                self._opened_at = self.clock()
                self._success_count = 0
                logger.warning(f"Circuit {self.name}: HALF_OPEN -> OPEN (trial failed)")
                return
            self._failure_count += 1
            if self._state == CircuitState.CLOSED and (
                self._failure_count >= self.config.failure_threshold
            ):
                self._state = CircuitState.OPEN
                self._opened_at = self.clock()
                logger.warning(
                    f"Circuit {self.name}: CLOSED -> OPEN ({self._failure_count} failures)"
                )

    async def call(self, func: Callable[..., Awaitable[T]], *args: Any, **kwargs: Any) -> T:
        """
        Raises:
            CircuitOpenError: the circuit is open and not yet ready for a trial call
        """
        if not self._should_attempt():
            raise CircuitOpenError(f"Circuit {self.name} is OPEN")
        try:
            result = await func(*args, **kwargs)
        except Exception:
            self._record_failure()
            raise
        self._record_success()
        return result

    def reset(self) -> None:
        with self._lock:
            self._state = CircuitState.CLOSED
            self._failure_count = 0
            self._success_count = 0
            self._opened_at = None

    def snapshot(self) -> Dict[str, Any]:
        with self._lock:
            return {"name": self.name, "state": self._state.value, "failures": self._failure_count}
