# backend/placescout/services/base.py
"""
Base service pattern for PlaceScout.

Provides logging and performance monitoring shared by the pipeline
services (aggregator, ingestion, unified search).
"""

import asyncio
from functools import wraps
import logging
import time
from typing import Any, Callable, Dict, TypeVar, cast

from ..monitoring.prometheus_metrics import PrometheusMetrics

logger = logging.getLogger(__name__)

F = TypeVar("F", bound=Callable[..., Any])

SLOW_OPERATION_SECONDS = 1.0


class BaseService:
    """Common service plumbing: a class logger and per-operation timings."""

    def __init__(self) -> None:
        self.logger = logging.getLogger(self.__class__.__module__)
        self._metrics: Dict[str, Dict[str, float]] = {}

    @staticmethod
    def measure_operation(operation_name: str) -> Callable[[F], F]:
        """
        Decorator to measure async operation performance.

        Usage:
            @BaseService.measure_operation("ingest_for_location")
            async def ingest_for_location(self, query):
                ...

        Records a Prometheus sample, keeps an in-process summary and warns
        about slow operations.
        """

        def decorator(func: F) -> F:
            if not asyncio.iscoroutinefunction(func):
                raise TypeError(f"measure_operation expects a coroutine function: {func!r}")

            @wraps(func)
            async def async_wrapper(self: "BaseService", *args: Any, **kwargs: Any) -> Any:
                start_time = time.perf_counter()
                success = False
                error_type = None
                try:
                    result = await func(self, *args, **kwargs)
                    success = True
                    return result
                except Exception as e:
                    error_type = type(e).__name__
                    raise
                finally:
                    elapsed = time.perf_counter() - start_time
                    self._record_metric(operation_name, elapsed, success)
                    if elapsed > SLOW_OPERATION_SECONDS:
                        self.logger.warning(
                            f"Slow operation detected: {operation_name} took {elapsed:.2f}s"
                        )
                    PrometheusMetrics.record_service_operation(
                        service=self.__class__.__name__,
                        operation=operation_name,
                        duration=elapsed,
                        status="success" if success else "error",
                        error_type=error_type,
                    )

            return cast(F, async_wrapper)

        return decorator

    def _record_metric(self, operation: str, elapsed: float, success: bool) -> None:
        stats = self._metrics.setdefault(
            operation, {"count": 0, "total_time": 0.0, "failures": 0, "max_time": 0.0}
        )
        stats["count"] += 1
        stats["total_time"] += elapsed
        stats["max_time"] = max(stats["max_time"], elapsed)
        if not success:
            stats["failures"] += 1

    def get_metrics(self) -> Dict[str, Dict[str, float]]:
        """Per-operation count, average/max latency and failure count."""
        summary: Dict[str, Dict[str, float]] = {}
        for operation, stats in self._metrics.items():
            count = stats["count"] or 1
            summary[operation] = {
                "count": stats["count"],
                "avg_time": stats["total_time"] / count,
                "max_time": stats["max_time"],
                "failures": stats["failures"],
            }
        return summary
