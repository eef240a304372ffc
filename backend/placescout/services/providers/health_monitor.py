# backend/placescout/services/providers/health_monitor.py
"""
Provider health monitoring and dynamic tier ordering.

Each cycle probes providers that expose a probe endpoint and scores the
others from real usage recorded by the RetryExecutor. After a cycle the
tier order is recomputed: disabled providers last, then by status
severity, then by performance score. The generative fallback provider
always keeps the final tier.
"""
from __future__ import annotations

import asyncio
from contextlib import suppress
from dataclasses import dataclass, field, replace
from datetime import datetime
import logging
import time
from typing import Any, Callable, Dict, List, Literal, Mapping, Optional, Sequence

from ...core.config import Settings
from ...core.constants import PROVIDER_AI_FALLBACK
from ...core.request_context import operation_scope
from ...monitoring.provider_usage import ProviderUsageTracker
from ...schemas.places import utcnow
from .. import metrics
from .base import PlaceProvider

logger = logging.getLogger(__name__)

HealthLevel = Literal["healthy", "warning", "critical", "down"]

SEVERITY: Dict[str, int] = {"healthy": 0, "warning": 1, "critical": 2, "down": 3}


@dataclass
class HealthMonitorConfig:
    interval_s: float = 300.0
    timeout_s: float = 10.0
    critical_success_rate: float = 0.5
    critical_response_ms: float = 8000.0
    warning_success_rate: float = 0.7
    warning_response_ms: float = 3000.0
    enabled: bool = True
    fallback_provider: str = PROVIDER_AI_FALLBACK

    @classmethod
    def from_settings(cls, settings: Settings) -> "HealthMonitorConfig":
        return cls(
            interval_s=settings.health_check_interval_s,
            timeout_s=settings.health_check_timeout_s,
            critical_success_rate=settings.health_critical_success_rate,
            critical_response_ms=settings.health_critical_response_ms,
            warning_success_rate=settings.health_warning_success_rate,
            warning_response_ms=settings.health_warning_response_ms,
            enabled=settings.health_monitor_enabled,
            fallback_provider=settings.fallback_provider,
        )

    def classify(self, success_rate: float, response_ms: float) -> HealthLevel:
        if success_rate < self.critical_success_rate or response_ms > self.critical_response_ms:
            return "critical"
        if success_rate < self.warning_success_rate or response_ms > self.warning_response_ms:
            return "warning"
        return "healthy"


@dataclass
class ProviderHealthStatus:
    name: str
    tier: int
    status: HealthLevel = "healthy"
    response_ms: float = 0.0
    success_rate: float = 1.0
    enabled: bool = True
    last_check: Optional[datetime] = None
    last_error: Optional[str] = None

    @property
    def performance_score(self) -> float:
        return self.success_rate * 100 - self.response_ms / 100

    def to_dict(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "tier": self.tier,
            "status": self.status,
            "response_ms": round(self.response_ms, 1),
            "success_rate": round(self.success_rate, 3),
            "enabled": self.enabled,
            "last_check": self.last_check.isoformat() if self.last_check else None,
            "last_error": self.last_error,
        }


@dataclass
class TierReorderEvent:
    previous_order: List[str]
    new_order: List[str]
    reasons: List[str] = field(default_factory=list)
    at: datetime = field(default_factory=utcnow)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "previous_order": list(self.previous_order),
            "new_order": list(self.new_order),
            "reasons": list(self.reasons),
            "at": self.at.isoformat(),
        }


ReorderListener = Callable[[TierReorderEvent], None]


class ProviderHealthMonitor:
    """
    Owns the provider status map and the tier order read by the aggregator.

    Usage:
        monitor = ProviderHealthMonitor(providers, usage, initial_order=order)
        aggregator.set_tier_source(monitor)
        monitor.start()
    """

    def __init__(
        self,
        providers: Mapping[str, PlaceProvider],
        usage: ProviderUsageTracker,
        config: Optional[HealthMonitorConfig] = None,
        initial_order: Optional[Sequence[str]] = None,
    ) -> None:
        self.providers = dict(providers)
        self.usage = usage
        self.config = config or HealthMonitorConfig()
        self._listeners: List[ReorderListener] = []
        self._task: Optional[asyncio.Task] = None
        self.last_reorder: Optional[TierReorderEvent] = None

        fallback = self.config.fallback_provider
        order = [name for name in (initial_order or self.providers) if name in self.providers]
        order += [name for name in self.providers if name not in order]
        order = [name for name in order if name != fallback]
        if fallback in self.providers:
            order.append(fallback)
        self._statuses: Dict[str, ProviderHealthStatus] = {
            name: ProviderHealthStatus(name=name, tier=index)
            for index, name in enumerate(order, start=1)
        }
        metrics.record_tier_order(order, reordered=False)

    # Order and status access

    def current_order(self) -> List[str]:
        """Enabled providers by tier; the fallback provider is always last."""
        ranked = sorted(self._statuses.values(), key=lambda status: status.tier)
        return [status.name for status in ranked if status.enabled]

    def get_status(self, name: str) -> Optional[ProviderHealthStatus]:
        status = self._statuses.get(name)
        return replace(status) if status else None

    def all_statuses(self) -> Dict[str, ProviderHealthStatus]:
        return {name: replace(status) for name, status in self._statuses.items()}

    def on_reorder(self, listener: ReorderListener) -> None:
        self._listeners.append(listener)

    def set_enabled(self, name: str, enabled: bool) -> Optional[TierReorderEvent]:
        """
        Toggle a provider and recompute the order right away.

        Raises:
            KeyError: unknown provider name
        """
        status = self._statuses[name]
        status.enabled = enabled
        logger.info(f"Provider {name} {'enabled' if enabled else 'disabled'}")
        return self._reorder()

    # Monitoring

    async def run_cycle(self) -> Optional[TierReorderEvent]:
        """Probe or score every provider, then recompute tiers."""
        with operation_scope(inherit=False):
            await asyncio.gather(*(self._check(name) for name in list(self._statuses)))
            summary = self.system_summary()
            logger.info(
                f"Health cycle done: system {summary['overall']} "
                f"({summary['healthy']} healthy, {summary['warning']} warning, "
                f"{summary['critical']} critical, {summary['down']} down)"
            )
            return self._reorder()

    async def _check(self, name: str) -> None:
        status = self._statuses[name]
        provider = self.providers.get(name)
        if provider is None or not provider.supports_probe:
            self._update_from_usage(status)
            return

        started = time.perf_counter()
        try:
            ok = await asyncio.wait_for(
                provider.probe(self.config.timeout_s), timeout=self.config.timeout_s
            )
        except Exception as e:
            latency_ms = (time.perf_counter() - started) * 1000
            self.usage.record(
                name, success=False, latency_ms=latency_ms, error_type=type(e).__name__
            )
            status.status = "down"
            status.last_error = str(e) or type(e).__name__
            status.last_check = utcnow()
            metrics.record_provider_health(name, status.status)
            logger.error(
                f"Health probe for {name} failed: {status.last_error}",
                extra={"event": "provider_down", "provider": name},
            )
            return

        latency_ms = (time.perf_counter() - started) * 1000
        self.usage.record(
            name,
            success=ok,
            latency_ms=latency_ms,
            error_type=None if ok else "probe_failed",
        )
        status.last_error = None if ok else "probe returned an unhealthy response"
        self._update_from_usage(status)

    def _update_from_usage(self, status: ProviderHealthStatus) -> None:
        snapshot = self.usage.snapshot(status.name)
        status.last_check = utcnow()
        if snapshot.success_rate is None or snapshot.avg_response_ms is None:
            return
        status.success_rate = snapshot.success_rate
        status.response_ms = snapshot.avg_response_ms
        status.status = self.config.classify(status.success_rate, status.response_ms)
        metrics.record_provider_health(status.name, status.status)
        logger.debug(
            f"{status.name}: {status.status} ({status.success_rate:.2f} success, "
            f"{status.response_ms:.0f}ms)"
        )

    def _reorder(self) -> Optional[TierReorderEvent]:
        fallback = self.config.fallback_provider
        ranked = sorted(
            (s for s in self._statuses.values() if s.name != fallback),
            key=lambda status: status.tier,
        )
        previous = [status.name for status in ranked]
        # Stable sort: ties keep their current relative order
        reordered = sorted(
            ranked,
            key=lambda s: (not s.enabled, SEVERITY[s.status], -s.performance_score),
        )
        new_order = [status.name for status in reordered]
        if new_order == previous:
            return None

        reasons: List[str] = []
        for tier, status in enumerate(reordered, start=1):
            if status.tier != tier:
                reasons.append(
                    f"{status.name}: moved from tier {status.tier} to {tier} "
                    f"({status.status}, {status.success_rate:.2f} success rate)"
                )
                status.tier = tier
        if fallback in self._statuses:
            self._statuses[fallback].tier = len(reordered) + 1

        full_order = new_order + ([fallback] if fallback in self._statuses else [])
        metrics.record_tier_order(full_order, reordered=True)
        event = TierReorderEvent(previous_order=previous, new_order=new_order, reasons=reasons)
        self.last_reorder = event
        logger.warning(
            f"Provider tiers reordered: {previous} -> {new_order}",
            extra={"event": "tier_reorder", "reasons": reasons},
        )
        for listener in list(self._listeners):
            try:
                listener(event)
            except Exception:
                logger.exception("Tier reorder listener failed")
        return event

    def system_summary(self) -> Dict[str, Any]:
        statuses = list(self._statuses.values())
        counts = {level: 0 for level in SEVERITY}
        for status in statuses:
            counts[status.status] += 1

        if counts["down"] > 0 or counts["critical"] > len(statuses) / 2:
            overall = "critical"
        elif counts["warning"] + counts["critical"] > counts["healthy"]:
            overall = "warning"
        else:
            overall = "healthy"

        recommendations: List[str] = []
        for status in sorted(statuses, key=lambda s: s.tier):
            if not status.enabled:
                recommendations.append(f"{status.name} is disabled")
            elif status.status == "down":
                recommendations.append(
                    f"{status.name} is down; check its credentials and connectivity"
                )
            elif status.status == "critical":
                recommendations.append(
                    f"{status.name} is critical ({status.success_rate:.0%} success, "
                    f"{status.response_ms:.0f}ms); consider disabling it"
                )

        return {
            "overall": overall,
            **counts,
            "total": len(statuses),
            "order": self.current_order(),
            "recommendations": recommendations,
        }

    # Lifecycle

    def start(self) -> None:
        if not self.config.enabled:
            logger.info("Provider health monitor disabled")
            return
        if self._task is not None and not self._task.done():
            return
        self._task = asyncio.create_task(self._loop())
        logger.info(f"Provider health monitor started (every {self.config.interval_s:.0f}s)")

    async def stop(self) -> None:
        if self._task is None:
            return
        self._task.cancel()
        with suppress(asyncio.CancelledError):
            await self._task
        self._task = None
        logger.info("Provider health monitor stopped")

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    async def _loop(self) -> None:
        while True:
            await asyncio.sleep(self.config.interval_s)
            try:
                await self.run_cycle()
            except Exception:
                logger.exception("Provider health cycle failed")
