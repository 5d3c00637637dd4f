"""
Performance monitoring and health indicators for the session snapshot server.
"""

from __future__ import annotations

import functools
import inspect
import logging
import time
from collections import Counter
from collections.abc import Callable
from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING, Any

import psutil

if TYPE_CHECKING:
    from .engine import SnapshotEngine

logger = logging.getLogger(__name__)


class HealthStatus(Enum):
    """Health status levels."""

    HEALTHY = "healthy"
    DEGRADED = "degraded"
    UNHEALTHY = "unhealthy"


@dataclass
class PerformanceMetrics:
    """Performance metrics collection."""

    # Request metrics
    total_requests: int = 0
    successful_requests: int = 0
    failed_requests: int = 0
    average_response_time: float = 0.0

    # System metrics
    cpu_usage: float = 0.0
    memory_usage: float = 0.0
    memory_usage_mb: float = 0.0

    # Snapshot operation outcomes, e.g. {"capture:degraded": 2}
    operations: dict[str, int] = field(default_factory=dict)

    # Timestamp
    timestamp: float = field(default_factory=time.time)

    def to_dict(self) -> dict[str, Any]:
        """Convert metrics to dictionary."""
        return {
            "total_requests": self.total_requests,
            "successful_requests": self.successful_requests,
            "failed_requests": self.failed_requests,
            "success_rate": self.successful_requests / max(self.total_requests, 1),
            "average_response_time": self.average_response_time,
            "cpu_usage": self.cpu_usage,
            "memory_usage": self.memory_usage,
            "memory_usage_mb": self.memory_usage_mb,
            "operations": dict(self.operations),
            "timestamp": self.timestamp,
        }


@dataclass
class HealthCheck:
    """Individual health check result."""

    name: str
    status: HealthStatus
    message: str
    details: dict[str, Any] = field(default_factory=dict)
    check_duration: float = 0.0
    timestamp: float = field(default_factory=time.time)


class PerformanceMonitor:
    """Monitors performance metrics and health indicators."""

    def __init__(self) -> None:
        self.metrics_history: list[PerformanceMetrics] = []
        self.start_time = time.time()
        self.request_times: list[float] = []
        self.max_history_size = 100
        self.total_requests = 0
        self.failed_requests = 0
        self.operations: Counter[str] = Counter()

    def record_request(self, duration: float, success: bool) -> None:
        """Record a request with its duration and success status."""
        self.total_requests += 1
        if not success:
            self.failed_requests += 1
        self.request_times.append(duration)

        # Keep only last 100 request times for efficiency
        if len(self.request_times) > self.max_history_size:
            self.request_times = self.request_times[-self.max_history_size:]

    def record_operation(self, operation: str, outcome: str) -> None:
        """Count the outcome of a capture, restore, import or export."""
        self.operations[f"{operation}:{outcome}"] += 1

    def reset(self) -> None:
        self.metrics_history.clear()
        self.request_times.clear()
        self.total_requests = 0
        self.failed_requests = 0
        self.operations.clear()
        self.start_time = time.time()

    def get_current_metrics(self) -> PerformanceMetrics:
        """Get current performance metrics."""
        cpu_percent = psutil.cpu_percent(interval=None)
        memory_info = psutil.virtual_memory()
        process_memory = psutil.Process().memory_info()

        avg_response_time = 0.0
        if self.request_times:
            avg_response_time = sum(self.request_times) / len(self.request_times)

        return PerformanceMetrics(
            total_requests=self.total_requests,
            successful_requests=self.total_requests - self.failed_requests,
            failed_requests=self.failed_requests,
            average_response_time=avg_response_time,
            cpu_usage=cpu_percent,
            memory_usage=memory_info.percent,
            memory_usage_mb=process_memory.rss / 1024 / 1024,
            operations=dict(self.operations),
        )

    async def perform_health_check(self, name: str, check_func: Callable) -> HealthCheck:
        """Perform an individual health check."""
        start_time = time.time()

        try:
            result = check_func()
            if inspect.isawaitable(result):
                result = await result

            duration = time.time() - start_time

            if result is True:
                status = HealthStatus.HEALTHY
                message = "Check passed"
                details = {}
            elif isinstance(result, dict):
                status = result.get("status", HealthStatus.HEALTHY)
                message = result.get("message", "Check completed")
                details = result.get("details", {})
            else:
                status = HealthStatus.DEGRADED
                message = str(result)
                details = {}

            return HealthCheck(
                name=name,
                status=status,
                message=message,
                details=details,
                check_duration=duration,
            )

        except Exception as e:
            duration = time.time() - start_time
            logger.error(f"Health check '{name}' failed: {e}")

            return HealthCheck(
                name=name,
                status=HealthStatus.UNHEALTHY,
                message=f"Check failed: {e!s}",
                details={"exception": str(e)},
                check_duration=duration,
            )

    @staticmethod
    def check_browser_health(engine: SnapshotEngine | None) -> dict[str, Any]:
        """Check that a live browsing context is attached."""
        if engine is None:
            return {"status": HealthStatus.UNHEALTHY, "message": "Engine not initialized"}

        targets = engine.targets
        if not targets:
            return {"status": HealthStatus.UNHEALTHY, "message": "No browsing context attached"}

        detached = [
            key for key, target in targets.items()
            if not getattr(target, "is_attached", lambda: True)()
        ]
        if detached:
            return {
                "status": HealthStatus.UNHEALTHY,
                "message": f"Browsing context closed: {', '.join(detached)}",
            }

        return {
            "status": HealthStatus.HEALTHY,
            "message": "Browsing context is attached",
            "details": {key: target.url for key, target in targets.items()},
        }

    @staticmethod
    async def check_catalog_health(engine: SnapshotEngine | None) -> dict[str, Any]:
        """Check catalog usage against its quota."""
        if engine is None:
            return {"status": HealthStatus.UNHEALTHY, "message": "Engine not initialized"}

        catalog = engine.library.catalog
        usage = await catalog.usage()
        quota = getattr(catalog, "quota_bytes", None)
        details = {"usage_bytes": usage, "quota_bytes": quota, "snapshots": len(await catalog.keys())}

        if quota and usage >= quota:
            return {"status": HealthStatus.UNHEALTHY, "message": "Catalog quota exhausted", "details": details}
        # Another full-size snapshot no longer fits
        if quota and quota - usage < engine.library.size_ceiling:
            return {"status": HealthStatus.DEGRADED, "message": "Catalog is nearly full", "details": details}
        return {"status": HealthStatus.HEALTHY, "message": "Catalog has room", "details": details}

    def check_memory_health(self) -> dict[str, Any]:
        """Check memory usage health."""
        memory_info = psutil.virtual_memory()
        process_memory_mb = psutil.Process().memory_info().rss / 1024 / 1024

        # Memory usage thresholds
        system_memory_threshold = 90.0  # 90% system memory usage
        process_memory_threshold = 500.0  # 500MB process memory usage

        if memory_info.percent > system_memory_threshold:
            status = HealthStatus.UNHEALTHY
            message = f"High system memory usage: {memory_info.percent:.1f}%"
        elif process_memory_mb > process_memory_threshold:
            status = HealthStatus.DEGRADED
            message = f"High process memory usage: {process_memory_mb:.1f}MB"
        else:
            status = HealthStatus.HEALTHY
            message = "Memory usage is normal"

        return {
            "status": status,
            "message": message,
            "details": {
                "system_memory_percent": memory_info.percent,
                "process_memory_mb": process_memory_mb,
                "available_memory_mb": memory_info.available / 1024 / 1024,
            }
        }

    def check_response_time_health(self) -> dict[str, Any]:
        """Check response time health."""
        if not self.request_times:
            return {
                "status": HealthStatus.HEALTHY,
                "message": "No requests to analyze",
            }

        avg_response_time = sum(self.request_times) / len(self.request_times)
        max_response_time = max(self.request_times)

        # Restores wait up to the replay timeout plus a reload
        degraded_threshold = 10.0
        unhealthy_threshold = 45.0

        if max_response_time > unhealthy_threshold:
            status = HealthStatus.UNHEALTHY
            message = f"Very slow response times detected (max: {max_response_time:.2f}s)"
        elif avg_response_time > degraded_threshold:
            status = HealthStatus.DEGRADED
            message = f"Slow average response time: {avg_response_time:.2f}s"
        else:
            status = HealthStatus.HEALTHY
            message = "Response times are normal"

        return {
            "status": status,
            "message": message,
            "details": {
                "average_response_time": avg_response_time,
                "max_response_time": max_response_time,
                "total_requests": len(self.request_times),
            }
        }

    async def get_health_status(self, engine: SnapshotEngine | None = None) -> dict[str, Any]:
        """Get comprehensive health status."""
        health_checks = [
            await self.perform_health_check("browser", lambda: self.check_browser_health(engine)),
            await self.perform_health_check(
                "catalog", functools.partial(self.check_catalog_health, engine)
            ),
            await self.perform_health_check("memory", self.check_memory_health),
            await self.perform_health_check("response_time", self.check_response_time_health),
        ]

        overall_status = HealthStatus.HEALTHY
        for check in health_checks:
            if check.status == HealthStatus.UNHEALTHY:
                overall_status = HealthStatus.UNHEALTHY
            elif check.status == HealthStatus.DEGRADED and overall_status == HealthStatus.HEALTHY:
                overall_status = HealthStatus.DEGRADED

        return {
            "status": overall_status.value,
            "timestamp": time.time(),
            "uptime_seconds": time.time() - self.start_time,
            "checks": {check.name: {
                "status": check.status.value,
                "message": check.message,
                "details": check.details,
                "check_duration": check.check_duration,
            } for check in health_checks},
            "summary": {
                "total_checks": len(health_checks),
                "healthy_checks": len([c for c in health_checks if c.status == HealthStatus.HEALTHY]),
                "degraded_checks": len([c for c in health_checks if c.status == HealthStatus.DEGRADED]),
                "unhealthy_checks": len([c for c in health_checks if c.status == HealthStatus.UNHEALTHY]),
            }
        }

    def update_metrics_history(self) -> None:
        """Update metrics history with current metrics."""
        self.metrics_history.append(self.get_current_metrics())

        if len(self.metrics_history) > self.max_history_size:
            self.metrics_history = self.metrics_history[-self.max_history_size:]

    def get_metrics_summary(self) -> dict[str, Any]:
        """Get metrics summary with current and historical data."""
        current_metrics = self.get_current_metrics()

        trends = {}
        if len(self.metrics_history) >= 2:
            previous_metrics = self.metrics_history[-2]
            trends = {
                "cpu_usage_trend": current_metrics.cpu_usage - previous_metrics.cpu_usage,
                "memory_usage_trend": current_metrics.memory_usage - previous_metrics.memory_usage,
                "response_time_trend": current_metrics.average_response_time - previous_metrics.average_response_time,
            }

        return {
            "current": current_metrics.to_dict(),
            "trends": trends,
            "uptime_seconds": time.time() - self.start_time,
            "metrics_count": len(self.metrics_history),
        }


# Global performance monitor instance
performance_monitor = PerformanceMonitor()


def monitor_request(func: Callable) -> Callable:
    """Decorator to monitor request performance."""
    @functools.wraps(func)
    async def wrapper(*args: Any, **kwargs: Any) -> Any:
        start_time = time.time()
        success = False

        try:
            result = await func(*args, **kwargs)
            success = not (isinstance(result, dict) and result.get("status") == "error")
            return result
        finally:
            performance_monitor.record_request(time.time() - start_time, success)

    return wrapper
