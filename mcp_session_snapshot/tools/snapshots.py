"""
Capture, restore and catalog management tools.
"""

import logging
from typing import Literal

from mcp.server.fastmcp import Context
from pydantic import Field

from ..context_utils import get_engine
from ..exceptions import PersistenceExhaustedError, SnapshotEngineError
from ..monitoring import monitor_request, performance_monitor
from ..restore import StaticDecisionChannel
from ..security import ResourceType, SecurityLevel, secure_operation
from ..server import tool
from ..typing_utils import DomainDecisionChannel
from .utils import ElicitationDecisionChannel, envelope, error_envelope, restore_envelope

logger = logging.getLogger("mcp_session_snapshot.tools.snapshots")


@tool()
@monitor_request
@secure_operation(
    ResourceType.SNAPSHOT_WRITE,
    "capture_snapshot",
    SecurityLevel.MEDIUM,
    "Capture cookies, storage and databases of the current page",
)
async def capture_snapshot(
    name: str | None = Field(
        default=None,
        description="Label for the snapshot (default: '<domain> <timestamp>')",
        max_length=200,
    ),
    target: str | None = Field(
        default=None,
        description="Browsing context to capture (default: the only attached one)",
    ),
    *,
    ctx: Context,
) -> dict:
    """
    Capture the full client-side state of the page open in the browser.

    Cookies, localStorage, sessionStorage and IndexedDB databases are saved
    as one snapshot. If the snapshot is too large the databases are dropped
    and the result is reported with status "partial".

    Returns:
        dict: Envelope with the snapshot summary, dropped categories and warnings
    """
    try:
        engine = get_engine(ctx)
        report = await engine.capture(engine.get_target(target), name)
    except PersistenceExhaustedError as e:
        performance_monitor.record_operation("capture", "exhausted")
        return error_envelope(e, "Capture")
    except SnapshotEngineError as e:
        performance_monitor.record_operation("capture", "error")
        return error_envelope(e, "Capture")

    data = report.summary()
    data["warnings"] = report.warnings
    if report.degraded or report.warnings:
        performance_monitor.record_operation("capture", "partial")
        dropped = ", ".join(report.dropped) or "nothing"
        return envelope(
            "partial",
            data,
            f"Snapshot '{report.snapshot.name}' saved with omissions "
            f"(dropped: {dropped}; {len(report.warnings)} warning(s))",
        )
    performance_monitor.record_operation("capture", "success")
    return envelope("success", data, f"Snapshot '{report.snapshot.name}' saved")


@tool()
@monitor_request
@secure_operation(
    ResourceType.SNAPSHOT_RESTORE,
    "restore_snapshot",
    SecurityLevel.HIGH,
    "Replace the current page's cookies, storage and databases with a snapshot",
)
async def restore_snapshot(
    snapshot_id: str = Field(..., description="Id of the snapshot to restore"),
    on_domain_mismatch: Literal["ask", "proceed", "navigate", "cancel"] = Field(
        default="ask",
        description=(
            "What to do when the browser is on another domain: ask the user, "
            "restore anyway, navigate to the snapshot's site and stop, or cancel"
        ),
    ),
    target: str | None = Field(
        default=None,
        description="Browsing context to restore into (default: the only attached one)",
    ),
    *,
    ctx: Context,
) -> dict:
    """
    Restore a saved snapshot into the browser.

    Existing cookies and storage of the page are wiped and replaced, then
    databases are recreated and the page is reloaded.

    Returns:
        dict: Envelope with restore counts; status is "success", "partial",
        "aborted" or "error"
    """
    decisions: DomainDecisionChannel
    if on_domain_mismatch == "ask":
        decisions = ElicitationDecisionChannel(ctx)
    else:
        decisions = StaticDecisionChannel(on_domain_mismatch)

    try:
        engine = get_engine(ctx)
        report = await engine.restore(engine.get_target(target), snapshot_id, decisions)
    except SnapshotEngineError as e:
        performance_monitor.record_operation("restore", "error")
        return error_envelope(e, "Restore")

    response = restore_envelope(report)
    performance_monitor.record_operation("restore", response["status"])
    return response


@tool()
@monitor_request
@secure_operation(
    ResourceType.SNAPSHOT_READ,
    "list_snapshots",
    SecurityLevel.LOW,
    "List saved snapshots",
)
async def list_snapshots(
    target: str | None = Field(
        default=None,
        description="Browsing context whose domain is listed first",
    ),
    *,
    ctx: Context,
) -> dict:
    """
    List saved snapshots, those of the current page's domain first, then newest first.

    Returns:
        dict: Envelope with one summary per snapshot
    """
    try:
        engine = get_engine(ctx)
        current = engine.get_target(target) if engine.targets else None
        summaries = await engine.list_snapshots(current)
    except SnapshotEngineError as e:
        return error_envelope(e, "Listing snapshots")
    return envelope(
        "success",
        [summary.model_dump(mode="json") for summary in summaries],
        f"{len(summaries)} snapshot(s)",
    )


@tool()
@monitor_request
@secure_operation(
    ResourceType.SNAPSHOT_READ,
    "get_snapshot",
    SecurityLevel.LOW,
    "Show one saved snapshot",
)
async def get_snapshot(
    snapshot_id: str = Field(..., description="Id of the snapshot"),
    include_data: bool = Field(
        default=False,
        description="Include cookie values, storage items and database records",
    ),
    *,
    ctx: Context,
) -> dict:
    """
    Show a saved snapshot.

    Returns:
        dict: Envelope with the snapshot metadata, or the full record when
        include_data is true
    """
    try:
        snapshot = await get_engine(ctx).get(snapshot_id)
    except SnapshotEngineError as e:
        return error_envelope(e, "Loading snapshot")

    if include_data:
        data = snapshot.to_wire()
    else:
        data = snapshot.model_dump(
            mode="json",
            by_alias=True,
            exclude={"cookies", "local_storage", "session_storage", "indexed_db"},
        )
        data["databases"] = {
            name: {collection: len(records) for collection, records in collections.items()}
            for name, collections in snapshot.indexed_db.items()
        }
    return envelope("success", data, f"Snapshot '{snapshot.name}'")


@tool()
@monitor_request
@secure_operation(
    ResourceType.SNAPSHOT_WRITE,
    "rename_snapshot",
    SecurityLevel.LOW,
    "Rename a saved snapshot",
)
async def rename_snapshot(
    snapshot_id: str = Field(..., description="Id of the snapshot"),
    name: str = Field(..., description="New label", min_length=1, max_length=200),
    *,
    ctx: Context,
) -> dict:
    """Give a saved snapshot a new label."""
    try:
        snapshot = await get_engine(ctx).rename(snapshot_id, name)
    except SnapshotEngineError as e:
        return error_envelope(e, "Rename")
    return envelope("success", {"id": snapshot.id, "name": snapshot.name}, f"Snapshot renamed to '{snapshot.name}'")


@tool()
@monitor_request
@secure_operation(
    ResourceType.SNAPSHOT_WRITE,
    "delete_snapshot",
    SecurityLevel.MEDIUM,
    "Delete a saved snapshot",
)
async def delete_snapshot(
    snapshot_id: str = Field(..., description="Id of the snapshot"),
    *,
    ctx: Context,
) -> dict:
    """Delete a saved snapshot."""
    try:
        await get_engine(ctx).delete(snapshot_id)
    except SnapshotEngineError as e:
        return error_envelope(e, "Delete")
    return envelope("success", {"id": snapshot_id}, f"Snapshot {snapshot_id} deleted")


@tool()
@monitor_request
@secure_operation(
    ResourceType.SNAPSHOT_WRITE,
    "clear_snapshots",
    SecurityLevel.HIGH,
    "Delete every saved snapshot",
)
async def clear_snapshots(
    confirm: bool = Field(
        default=False,
        description="Must be true; every saved snapshot is deleted",
    ),
    *,
    ctx: Context,
) -> dict:
    """Delete every saved snapshot."""
    if not confirm:
        return envelope("error", {"removed": 0}, "Refusing to clear snapshots without confirm=true")
    try:
        removed = await get_engine(ctx).clear()
    except SnapshotEngineError as e:
        return error_envelope(e, "Clear")
    return envelope("success", {"removed": removed}, f"Deleted {removed} snapshot(s)")
