"""
Server setup and lifespan management for the session snapshot MCP server.
"""

from __future__ import annotations

import logging
import os
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from pathlib import Path
from typing import Any

from mcp.server.fastmcp import FastMCP

from .catalog import DirectoryCatalog
from .config import (
    BROWSER_ENV,
    CATALOG_DIR_ENV,
    CATALOG_QUOTA_BYTES,
    CATALOG_QUOTA_ENV,
    DEFAULT_BROWSER,
    DEFAULT_CATALOG_DIR,
    DEFAULT_START_URL,
    EXPORT_VERIFICATION_ENV,
    HEADLESS_ENV,
    REQUIRE_EXPORT_VERIFICATION,
    START_URL_ENV,
)
from .engine import SnapshotEngine
from .library import SnapshotLibrary
from .monitoring import performance_monitor
from .security import build_credential_gate, security_manager
from .target import launch_browser

logger = logging.getLogger("mcp_session_snapshot.server")

_TRUE_VALUES = {"1", "true", "yes", "on"}


def _env_flag(name: str, default: bool) -> bool:
    value = os.environ.get(name)
    if value is None:
        return default
    return value.strip().lower() in _TRUE_VALUES


def build_engine() -> SnapshotEngine:
    """Create the engine from environment settings (catalog, quota, gate)."""
    catalog_dir = Path(os.environ.get(CATALOG_DIR_ENV) or DEFAULT_CATALOG_DIR)
    quota = int(os.environ.get(CATALOG_QUOTA_ENV) or CATALOG_QUOTA_BYTES)
    gate = build_credential_gate(
        _env_flag(EXPORT_VERIFICATION_ENV, REQUIRE_EXPORT_VERIFICATION), security_manager
    )
    logger.info("Snapshot catalog at %s (quota %d bytes)", catalog_dir, quota)
    return SnapshotEngine(SnapshotLibrary(DirectoryCatalog(catalog_dir, quota)), gate=gate)


@asynccontextmanager
async def app_lifespan(_server: FastMCP) -> AsyncIterator[dict[str, Any]]:
    """Launch the browser, attach it to a fresh engine and clean up on exit."""
    engine = build_engine()
    browser = await launch_browser(
        os.environ.get(BROWSER_ENV) or DEFAULT_BROWSER,
        headless=_env_flag(HEADLESS_ENV, True),
        start_url=os.environ.get(START_URL_ENV) or DEFAULT_START_URL,
    )
    engine.attach(browser.target)
    try:
        yield {
            "engine": engine,
            "browser": browser,
            "security_manager": security_manager,
            "monitor": performance_monitor,
        }
    finally:
        logger.info("Shutting down session snapshot server")
        engine.detach(browser.target.key)
        await browser.close()

        metrics = performance_monitor.get_current_metrics()
        logger.info(f"Total requests processed: {metrics.total_requests}")
        logger.info(f"Total errors: {metrics.failed_requests}")


mcp = FastMCP("Session Snapshot", lifespan=app_lifespan)

# Export the tool decorator for use in tools modules
tool = mcp.tool
