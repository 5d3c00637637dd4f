"""
Tools for the session snapshot server.
Capture and restore, catalog management, import/export and health monitoring.
"""

from mcp_session_snapshot.tools.health import (
    get_performance_metrics,
    get_server_info,
    health_check,
)
from mcp_session_snapshot.tools.snapshots import (
    capture_snapshot,
    clear_snapshots,
    delete_snapshot,
    get_snapshot,
    list_snapshots,
    rename_snapshot,
    restore_snapshot,
)
from mcp_session_snapshot.tools.transfer import (
    export_cookies,
    export_snapshot,
    import_snapshot,
    import_snapshot_files,
    verify_export_access,
)

__all__ = [
    "capture_snapshot",
    "clear_snapshots",
    "delete_snapshot",
    "export_cookies",
    "export_snapshot",
    "get_performance_metrics",
    "get_server_info",
    "get_snapshot",
    "health_check",
    "import_snapshot",
    "import_snapshot_files",
    "list_snapshots",
    "rename_snapshot",
    "restore_snapshot",
    "verify_export_access",
]
