"""Centralized configuration for the session snapshot MCP server."""

from pathlib import Path

# Snapshot size policy
SNAPSHOT_SIZE_CEILING = 4 * 1024 * 1024  # 4 MiB per persisted snapshot
CATALOG_QUOTA_BYTES = 10 * 1024 * 1024  # overall catalog budget

# Value normalizer
MAX_NORMALIZE_DEPTH = 10

# Restore timing (in seconds)
DATABASE_REPLAY_TIMEOUT = 2.0
DATABASE_SETTLE_DELAY = 0.5

# Export clearance lifetime after an external verification (in seconds)
EXPORT_CLEARANCE_TTL = 900  # 15 minutes

# Catalog location
DEFAULT_CATALOG_DIR = Path.home() / ".mcp-session-snapshot" / "catalog"
CATALOG_DIR_ENV = "SNAPSHOT_CATALOG_DIR"
CATALOG_QUOTA_ENV = "SNAPSHOT_CATALOG_QUOTA"

# Browser binding
DEFAULT_BROWSER = "chromium"
DEFAULT_START_URL = "about:blank"
BROWSER_ENV = "SNAPSHOT_BROWSER"
HEADLESS_ENV = "SNAPSHOT_HEADLESS"
START_URL_ENV = "SNAPSHOT_START_URL"
NAVIGATION_TIMEOUT_MS = 30_000

# Feature flags
ENABLE_DATABASE_CAPTURE = True
REQUIRE_EXPORT_VERIFICATION = False
EXPORT_VERIFICATION_ENV = "SNAPSHOT_REQUIRE_EXPORT_VERIFICATION"
