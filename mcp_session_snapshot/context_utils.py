"""Context utilities for MCP tools."""

from __future__ import annotations

from typing import Any

from mcp.server.fastmcp import Context

from .engine import SnapshotEngine
from .exceptions import BackendError


def _get_lifespan_context(ctx: Context) -> Any:
    """Extract the lifespan context from MCP context.

    Args:
        ctx: The MCP context object

    Returns:
        The lifespan context dictionary or None if not available
    """
    direct = getattr(ctx, "lifespan_context", None)
    if isinstance(direct, dict):
        return direct

    try:
        request_context = ctx.request_context
    except (AttributeError, ValueError):
        return None

    return getattr(request_context, "lifespan_context", None)


def get_engine(ctx: Context) -> SnapshotEngine:
    """Return the engine created by the server lifespan.

    Raises:
        BackendError: If the server was started without an engine
    """
    lifespan_ctx = _get_lifespan_context(ctx)
    engine = lifespan_ctx.get("engine") if isinstance(lifespan_ctx, dict) else None
    if not isinstance(engine, SnapshotEngine):
        raise BackendError("Snapshot engine is not initialized")
    return engine
