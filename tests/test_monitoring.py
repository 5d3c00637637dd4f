"""Tests for performance monitoring and health checks."""

import pytest

from conftest import FakeTarget
from mcp_session_snapshot.catalog import MemoryCatalog
from mcp_session_snapshot.engine import SnapshotEngine
from mcp_session_snapshot.library import SnapshotLibrary
from mcp_session_snapshot.monitoring import HealthStatus, PerformanceMonitor, monitor_request, performance_monitor


def test_record_request_and_operations():
    monitor = PerformanceMonitor()
    monitor.record_request(0.5, True)
    monitor.record_request(1.5, False)
    monitor.record_operation("capture", "partial")
    monitor.record_operation("capture", "partial")

    metrics = monitor.get_current_metrics()
    assert metrics.total_requests == 2
    assert metrics.failed_requests == 1
    assert metrics.average_response_time == 1.0
    assert metrics.operations == {"capture:partial": 2}
    assert metrics.to_dict()["success_rate"] == 0.5


def test_browser_health():
    engine = SnapshotEngine(SnapshotLibrary(MemoryCatalog()))
    assert PerformanceMonitor.check_browser_health(None)["status"] is HealthStatus.UNHEALTHY
    assert PerformanceMonitor.check_browser_health(engine)["status"] is HealthStatus.UNHEALTHY

    target = FakeTarget()
    engine.attach(target)
    assert PerformanceMonitor.check_browser_health(engine)["status"] is HealthStatus.HEALTHY

    target.closed = True
    assert PerformanceMonitor.check_browser_health(engine)["status"] is HealthStatus.UNHEALTHY


@pytest.mark.asyncio
async def test_catalog_health():
    catalog = MemoryCatalog(quota_bytes=1000)
    engine = SnapshotEngine(SnapshotLibrary(catalog, size_ceiling=400))

    assert (await PerformanceMonitor.check_catalog_health(engine))["status"] is HealthStatus.HEALTHY

    await catalog.set("a", "x" * 700)
    result = await PerformanceMonitor.check_catalog_health(engine)
    assert result["status"] is HealthStatus.DEGRADED
    assert result["details"]["usage_bytes"] == 700

    await catalog.set("b", "x" * 300)
    assert (await PerformanceMonitor.check_catalog_health(engine))["status"] is HealthStatus.UNHEALTHY


@pytest.mark.asyncio
async def test_health_status_report(engine):
    status = await PerformanceMonitor().get_health_status(engine)
    assert set(status["checks"]) == {"browser", "catalog", "memory", "response_time"}
    assert status["checks"]["browser"]["status"] == "healthy"
    assert status["summary"]["total_checks"] == 4


@pytest.mark.asyncio
async def test_failing_check_is_unhealthy():
    def broken():
        raise RuntimeError("boom")

    check = await PerformanceMonitor().perform_health_check("broken", broken)
    assert check.status is HealthStatus.UNHEALTHY
    assert "boom" in check.message


@pytest.mark.asyncio
async def test_monitor_request_counts_error_envelopes():
    @monitor_request
    async def tool_like(status: str) -> dict:
        return {"status": status}

    await tool_like("success")
    await tool_like("partial")
    await tool_like("error")

    assert performance_monitor.total_requests == 3
    assert performance_monitor.failed_requests == 1
