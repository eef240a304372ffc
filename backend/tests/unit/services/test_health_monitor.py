# backend/tests/unit/services/test_health_monitor.py
"""Provider health classification and dynamic tier ordering."""
import pytest

from placescout.core.exceptions import ProviderTransientError
from placescout.services.providers.health_monitor import (
    HealthMonitorConfig,
    ProviderHealthMonitor,
    ProviderHealthStatus,
)
from placescout.services.providers.mock_provider import MockPlaceProvider

FALLBACK = "ai-fallback"


def _providers(*names, **overrides):
    providers = {name: MockPlaceProvider(name=name, supports_probe=False) for name in names}
    providers[FALLBACK] = MockPlaceProvider(name=FALLBACK, supports_probe=False)
    providers.update(overrides)
    return providers


def _record(usage, name, successes, failures, latency_ms):
    for _ in range(successes):
        usage.record(name, success=True, latency_ms=latency_ms)
    for _ in range(failures):
        usage.record(name, success=False, latency_ms=latency_ms, error_type="ProviderTransientError")


@pytest.fixture
def monitor(usage):
    return ProviderHealthMonitor(
        _providers("a", "b", "c"), usage, initial_order=["a", "b", "c", FALLBACK]
    )


class TestClassification:
    @pytest.mark.parametrize(
        "success_rate,response_ms,expected",
        [
            (0.95, 200, "healthy"),
            (0.65, 200, "warning"),
            (0.95, 4000, "warning"),
            (0.4, 200, "critical"),
            (0.95, 9000, "critical"),
        ],
    )
    def test_thresholds(self, success_rate, response_ms, expected):
        assert HealthMonitorConfig().classify(success_rate, response_ms) == expected

    def test_performance_score(self):
        status = ProviderHealthStatus(name="a", tier=1, success_rate=0.9, response_ms=500)
        assert status.performance_score == pytest.approx(85.0)


class TestTierOrdering:
    def test_fallback_always_takes_the_last_tier(self, usage):
        monitor = ProviderHealthMonitor(
            _providers("a", "b"), usage, initial_order=[FALLBACK, "a", "b"]
        )
        assert monitor.current_order() == ["a", "b", FALLBACK]

    @pytest.mark.asyncio
    async def test_critical_provider_drops_to_lowest_enabled_tier(self, monitor, usage):
        _record(usage, "a", successes=4, failures=6, latency_ms=9000)
        _record(usage, "b", successes=10, failures=0, latency_ms=100)
        _record(usage, "c", successes=10, failures=0, latency_ms=100)
        events = []
        monitor.on_reorder(events.append)

        event = await monitor.run_cycle()

        assert monitor.get_status("a").status == "critical"
        assert event is not None
        assert event.previous_order == ["a", "b", "c"]
        assert event.new_order == ["b", "c", "a"]
        assert events == [event]
        assert monitor.current_order() == ["b", "c", "a", FALLBACK]
        assert monitor.get_status(FALLBACK).tier == 4
        assert monitor.get_status("a").tier == 3

    @pytest.mark.asyncio
    async def test_unchanged_order_emits_no_event(self, monitor, usage):
        for name in ("a", "b", "c"):
            _record(usage, name, successes=10, failures=0, latency_ms=100)
        events = []
        monitor.on_reorder(events.append)

        assert await monitor.run_cycle() is None
        assert events == []
        assert monitor.last_reorder is None

    @pytest.mark.asyncio
    async def test_providers_without_samples_keep_their_status(self, monitor):
        await monitor.run_cycle()
        status = monitor.get_status("b")
        assert status.status == "healthy"
        assert status.last_check is not None

    @pytest.mark.asyncio
    async def test_probe_exception_marks_provider_down(self, usage):
        broken = MockPlaceProvider(name="b", fail_with=ProviderTransientError("b", "timeout"))
        monitor = ProviderHealthMonitor(_providers("a", b=broken), usage)

        await monitor.run_cycle()

        status = monitor.get_status("b")
        assert status.status == "down"
        assert "timeout" in status.last_error
        assert usage.snapshot("b").total_failures == 1
        assert monitor.current_order() == ["a", "b", FALLBACK]
        assert monitor.system_summary()["overall"] == "critical"

    @pytest.mark.asyncio
    async def test_unhealthy_probe_response_counts_as_failure(self, usage):
        sick = MockPlaceProvider(name="a", probe_result=False)
        monitor = ProviderHealthMonitor(_providers("b", a=sick), usage, initial_order=["a", "b"])

        await monitor.run_cycle()

        status = monitor.get_status("a")
        assert status.status == "critical"
        assert status.last_error == "probe returned an unhealthy response"
        assert sick.probes == 1
        assert monitor.current_order() == ["b", "a", FALLBACK]

    def test_disabling_removes_provider_from_order(self, monitor):
        event = monitor.set_enabled("a", False)

        assert monitor.current_order() == ["b", "c", FALLBACK]
        assert event.new_order == ["b", "c", "a"]
        assert "a is disabled" in monitor.system_summary()["recommendations"]

        monitor.set_enabled("a", True)
        assert "a" in monitor.current_order()

    def test_unknown_provider_cannot_be_toggled(self, monitor):
        with pytest.raises(KeyError):
            monitor.set_enabled("nope", False)

    def test_failing_listener_does_not_break_reordering(self, monitor):
        def explode(event):
            raise RuntimeError("listener bug")

        monitor.on_reorder(explode)
        assert monitor.set_enabled("a", False) is not None

    def test_statuses_are_copies(self, monitor):
        monitor.get_status("a").enabled = False
        assert monitor.get_status("a").enabled is True


class TestSummaryAndLifecycle:
    def test_summary_of_a_fresh_monitor(self, monitor):
        summary = monitor.system_summary()
        assert summary["overall"] == "healthy"
        assert summary["healthy"] == 4
        assert summary["total"] == 4
        assert summary["order"] == ["a", "b", "c", FALLBACK]
        assert summary["recommendations"] == []

    @pytest.mark.asyncio
    async def test_start_and_stop(self, usage):
        monitor = ProviderHealthMonitor(
            _providers("a"), usage, config=HealthMonitorConfig(interval_s=3600)
        )
        monitor.start()
        assert monitor.running is True
        await monitor.stop()
        assert monitor.running is False

    @pytest.mark.asyncio
    async def test_disabled_monitor_does_not_start(self, usage):
        monitor = ProviderHealthMonitor(
            _providers("a"), usage, config=HealthMonitorConfig(enabled=False)
        )
        monitor.start()
        assert monitor.running is False
