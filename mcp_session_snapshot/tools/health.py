"""
Health monitoring tools for the session snapshot server.
"""

import logging
import time

from mcp.server.fastmcp import Context

from .. import __version__
from ..context_utils import _get_lifespan_context
from ..monitoring import performance_monitor
from ..security import LockedCredentialGate, ResourceType, SecurityLevel, secure_operation
from ..server import tool

logger = logging.getLogger(__name__)


@tool()
@secure_operation(
    ResourceType.SERVER_STATUS,
    "health_check",
    SecurityLevel.PUBLIC,
    "Server health status check"
)
async def health_check(ctx: Context) -> dict:
    """
    Get the current health status of the server.

    Checks that the browser is attached, that the snapshot catalog has room
    for another snapshot, and that memory use and response times are normal.

    Returns:
        dict: Health status information
    """
    lifespan_ctx = _get_lifespan_context(ctx) or {}
    try:
        health_status = await performance_monitor.get_health_status(lifespan_ctx.get("engine"))
        return {
            "status": "success",
            "data": health_status,
            "message": "Health check completed successfully"
        }
    except Exception as e:
        logger.error(f"Health check failed: {e}")
        return {
            "status": "error",
            "data": {
                "status": "unhealthy",
                "error": str(e),
                "timestamp": performance_monitor.start_time,
            },
            "message": f"Health check failed: {e}"
        }


@tool()
@secure_operation(
    ResourceType.SERVER_STATUS,
    "performance_metrics",
    SecurityLevel.LOW,
    "Server performance metrics"
)
async def get_performance_metrics(ctx: Context) -> dict:
    """
    Get performance metrics: request statistics, capture and restore outcomes,
    and system resource usage.

    Returns:
        dict: Performance metrics and trends
    """
    try:
        performance_monitor.update_metrics_history()
        return {
            "status": "success",
            "data": performance_monitor.get_metrics_summary(),
            "message": "Performance metrics retrieved successfully"
        }
    except Exception as e:
        logger.error(f"Failed to get performance metrics: {e}")
        return {
            "status": "error",
            "data": {},
            "message": f"Failed to get performance metrics: {e}"
        }


@tool()
@secure_operation(
    ResourceType.SERVER_STATUS,
    "server_info",
    SecurityLevel.PUBLIC,
    "Basic server information"
)
async def get_server_info(ctx: Context) -> dict:
    """
    Get basic server information: version, uptime and browser configuration.
    """
    uptime_seconds = time.time() - performance_monitor.start_time
    lifespan_ctx = _get_lifespan_context(ctx) or {}
    browser = lifespan_ctx.get("browser")
    engine = lifespan_ctx.get("engine")

    server_info = {
        "server_name": "MCP Session Snapshot",
        "version": __version__,
        "uptime_seconds": uptime_seconds,
        "uptime_formatted": _format_uptime(uptime_seconds),
        "browser": {
            "type": getattr(browser, "browser_type", None),
            "headless": getattr(browser, "headless", None),
        },
        "targets": sorted(engine.targets) if engine is not None else [],
        "size_ceiling_bytes": engine.library.size_ceiling if engine is not None else None,
        "export_verification_required": isinstance(getattr(engine, "gate", None), LockedCredentialGate),
    }

    return {
        "status": "success",
        "data": server_info,
        "message": "Server information retrieved successfully"
    }


def _format_uptime(uptime_seconds: float) -> str:
    """Format uptime in a human-readable format."""
    days = int(uptime_seconds // (24 * 3600))
    hours = int((uptime_seconds % (24 * 3600)) // 3600)
    minutes = int((uptime_seconds % 3600) // 60)
    seconds = int(uptime_seconds % 60)

    parts = []
    if days > 0:
        parts.append(f"{days}d")
    if hours > 0:
        parts.append(f"{hours}h")
    if minutes > 0:
        parts.append(f"{minutes}m")
    if seconds > 0 or not parts:
        parts.append(f"{seconds}s")

    return " ".join(parts)
