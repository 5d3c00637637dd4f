"""
Session snapshot server for Model Context Protocol.

This package captures the client-side state of a web origin (cookies,
localStorage, sessionStorage and IndexedDB) as a portable snapshot and
restores it into a browser driven through Playwright.
"""

__version__ = "0.1.0"

from .capture import CaptureOrchestrator
from .engine import SnapshotEngine
from .library import SnapshotLibrary
from .main import main
from .models import CaptureReport, CookieRecord, RestoreReport, RestoreState, SnapshotRecord
from .normalizer import denormalize, normalize
from .restore import FutureDecisionChannel, RestoreOrchestrator, StaticDecisionChannel
from .server import mcp

# Import tools
from .tools import (
    capture_snapshot,
    export_snapshot,
    import_snapshot,
    list_snapshots,
    restore_snapshot,
)

__all__ = [
    "CaptureOrchestrator",
    "CaptureReport",
    "CookieRecord",
    "FutureDecisionChannel",
    "RestoreOrchestrator",
    "RestoreReport",
    "RestoreState",
    "SnapshotEngine",
    "SnapshotLibrary",
    "SnapshotRecord",
    "StaticDecisionChannel",
    "capture_snapshot",
    "denormalize",
    "export_snapshot",
    "import_snapshot",
    "list_snapshots",
    "main",
    "mcp",
    "normalize",
    "restore_snapshot",
]


# Define __main__ entry point
def __main__() -> None:
    main()
