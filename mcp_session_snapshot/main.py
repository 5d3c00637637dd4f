"""
Command line entry point for the session snapshot MCP server.
"""

from __future__ import annotations

import argparse
import importlib
import logging
import os
import signal
import threading
import time
from types import FrameType
from typing import Any

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
    START_URL_ENV,
)

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger("mcp_session_snapshot")

# Global variables to track MCP instance
mcp_instance = None
# Flag to track if the server is shutting down
is_shutting_down = False
# Timestamp of the last interrupt signal
last_interrupt_time: float = 0.0


def signal_handler(sig: int, _frame: FrameType | None) -> None:
    """Handle process interruption signals like SIGINT (Ctrl+C)."""
    global is_shutting_down, last_interrupt_time

    current_time = time.time()

    match sig:
        case signal.SIGINT:
            # Double Ctrl+C forces the exit
            if is_shutting_down or (
                current_time - last_interrupt_time < 1.0 and last_interrupt_time > 0
            ):
                logger.info("Forced server shutdown (double Ctrl+C)")
                os._exit(1)
            else:
                logger.info("Graceful shutdown initiated (Ctrl+C)")
        case signal.SIGTERM:
            logger.info("Termination signal received")
        case _:
            logger.info(f"Unhandled signal: {sig}")

    is_shutting_down = True
    last_interrupt_time = current_time
    logger.info("Server shutdown requested by user")

    # Give the lifespan a moment to close the browser
    def delayed_exit() -> None:
        time.sleep(2.0)
        logger.info("Terminating process")
        os._exit(0)

    threading.Thread(target=delayed_exit, daemon=True).start()


def initialize_mcp() -> Any:
    """Initialize MCP server and register components."""
    server_module = importlib.import_module(".server", package="mcp_session_snapshot")

    # Import all MCP components to register them
    importlib.import_module(".tools", package="mcp_session_snapshot")
    importlib.import_module(".prompts", package="mcp_session_snapshot")

    return server_module.mcp


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    """Parse command line arguments."""
    parser = argparse.ArgumentParser(
        description="Capture and restore browser session state over the Model Context Protocol",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    parser.add_argument(
        "--catalog-dir",
        default=str(DEFAULT_CATALOG_DIR),
        help=f"Directory holding saved snapshots (default: {DEFAULT_CATALOG_DIR})",
    )
    parser.add_argument(
        "--quota",
        type=int,
        default=CATALOG_QUOTA_BYTES,
        help=f"Catalog storage quota in bytes (default: {CATALOG_QUOTA_BYTES})",
    )
    parser.add_argument(
        "--browser",
        choices=["chromium", "firefox", "webkit"],
        default=DEFAULT_BROWSER,
        help=f"Browser engine to drive (default: {DEFAULT_BROWSER})",
    )
    parser.add_argument(
        "--headed",
        action="store_true",
        help="Show the browser window instead of running headless",
    )
    parser.add_argument(
        "--start-url",
        default=DEFAULT_START_URL,
        help="Page to open when the browser starts",
    )
    parser.add_argument(
        "--require-export-verification",
        action="store_true",
        help="Block exports until verify_export_access has been confirmed",
    )
    parser.add_argument(
        "--transport",
        choices=["stdio", "sse", "streamable-http"],
        default="stdio",
        help="MCP transport (default: stdio)",
    )
    return parser.parse_args(argv)


def apply_environment(args: argparse.Namespace) -> None:
    """Hand CLI settings to the server lifespan through environment variables."""
    os.environ[CATALOG_DIR_ENV] = args.catalog_dir
    os.environ[CATALOG_QUOTA_ENV] = str(args.quota)
    os.environ[BROWSER_ENV] = args.browser
    os.environ[HEADLESS_ENV] = "0" if args.headed else "1"
    os.environ[START_URL_ENV] = args.start_url
    os.environ[EXPORT_VERIFICATION_ENV] = "1" if args.require_export_verification else "0"


def main() -> None:
    """Run the MCP server."""
    global mcp_instance, is_shutting_down

    signal.signal(signal.SIGINT, signal_handler)

    try:
        args = parse_args()
        apply_environment(args)

        mcp_instance = initialize_mcp()

        logger.info(
            "Starting Session Snapshot MCP server (%s, %s)",
            args.browser,
            "headed" if args.headed else "headless",
        )
        logger.info("Snapshot tools: capture_snapshot, restore_snapshot, list_snapshots, get_snapshot")
        logger.info("Catalog tools: rename_snapshot, delete_snapshot, clear_snapshots")
        logger.info("Transfer tools: import_snapshot, import_snapshot_files, export_snapshot, export_cookies")
        logger.info("Security: verify_export_access (required=%s)", args.require_export_verification)
        logger.info("Monitoring: health_check, get_performance_metrics, get_server_info")

        mcp_instance.run(transport=args.transport)
    except KeyboardInterrupt:
        is_shutting_down = True
        logger.info("Server shutdown requested by user")
    except Exception as e:
        logger.error("Error starting server: %s", e, exc_info=True)
        raise


if __name__ == "__main__":
    main()
