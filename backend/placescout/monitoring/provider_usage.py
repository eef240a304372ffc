# backend/placescout/monitoring/provider_usage.py
"""
Rolling per-operation usage statistics.

Every call made through the RetryExecutor lands here (keyed by operation
name, which for provider calls is the provider name). The health monitor
reads these windows to score providers that have no probe endpoint, and
records its own probe samples into the same windows.
"""
from __future__ import annotations

from collections import defaultdict, deque
from dataclasses import dataclass, field
import threading
import time
from typing import Deque, Dict, Optional

DEFAULT_WINDOW = 50


@dataclass(frozen=True)
class UsageSample:
    success: bool
    latency_ms: float
    at: float


@dataclass
class UsageSnapshot:
    name: str
    samples: int
    success_rate: Optional[float]
    avg_response_ms: Optional[float]
    total_requests: int
    total_failures: int
    retry_attempts: int
    errors_by_type: Dict[str, int] = field(default_factory=dict)
    last_used_at: Optional[float] = None

    def to_dict(self) -> Dict[str, object]:
        return {
            "name": self.name,
            "samples": self.samples,
            "success_rate": self.success_rate,
            "avg_response_ms": self.avg_response_ms,
            "total_requests": self.total_requests,
            "total_failures": self.total_failures,
            "retry_attempts": self.retry_attempts,
            "errors_by_type": dict(self.errors_by_type),
            "last_used_at": self.last_used_at,
        }


class ProviderUsageTracker:
    """Thread-safe rolling windows of call outcomes."""

    def __init__(self, window: int = DEFAULT_WINDOW) -> None:
        self.window = window
        self._samples: Dict[str, Deque[UsageSample]] = defaultdict(
            lambda: deque(maxlen=self.window)
        )
        self._totals: Dict[str, Dict[str, int]] = defaultdict(
            lambda: {"requests": 0, "failures": 0, "retries": 0}
        )
        self._errors: Dict[str, Dict[str, int]] = defaultdict(lambda: defaultdict(int))
        self._lock = threading.Lock()

    def record(
        self,
        name: str,
        *,
        success: bool,
        latency_ms: float,
        error_type: Optional[str] = None,
        retries: int = 0,
    ) -> None:
        with self._lock:
            self._samples[name].append(
                UsageSample(success=success, latency_ms=max(latency_ms, 0.0), at=time.time())
            )
            totals = self._totals[name]
            totals["requests"] += 1
            totals["retries"] += retries
            if not success:
                totals["failures"] += 1
                if error_type:
                    self._errors[name][error_type] += 1

    def snapshot(self, name: str) -> UsageSnapshot:
        with self._lock:
            samples = list(self._samples.get(name, ()))
            totals = dict(self._totals.get(name, {"requests": 0, "failures": 0, "retries": 0}))
            errors = dict(self._errors.get(name, {}))
        if samples:
            success_rate: Optional[float] = sum(1 for s in samples if s.success) / len(samples)
            avg_ms: Optional[float] = sum(s.latency_ms for s in samples) / len(samples)
            last_used: Optional[float] = samples[-1].at
        else:
            success_rate = avg_ms = last_used = None
        return UsageSnapshot(
            name=name,
            samples=len(samples),
            success_rate=success_rate,
            avg_response_ms=avg_ms,
            total_requests=totals["requests"],
            total_failures=totals["failures"],
            retry_attempts=totals["retries"],
            errors_by_type=errors,
            last_used_at=last_used,
        )

    def reset(self, name: Optional[str] = None) -> None:
        with self._lock:
            if name is None:
                self._samples.clear()
                self._totals.clear()
                self._errors.clear()
            else:
                self._samples.pop(name, None)
                self._totals.pop(name, None)
                self._errors.pop(name, None)
