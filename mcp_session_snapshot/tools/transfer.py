"""
Import and export tools.

Exports are gated: when export verification is required, a snapshot can only
leave the server after ``verify_export_access`` has granted a clearance.
"""

import asyncio
import logging
from pathlib import Path
from typing import Literal

from mcp.server.fastmcp import Context
from mcp.shared.exceptions import McpError
from pydantic import BaseModel, Field

from ..config import EXPORT_CLEARANCE_TTL
from ..context_utils import get_engine
from ..exceptions import ExportBlockedError, SnapshotEngineError
from ..monitoring import monitor_request, performance_monitor
from ..security import ResourceType, SecurityLevel, secure_operation, security_manager
from ..server import tool
from .utils import envelope, error_envelope

logger = logging.getLogger("mcp_session_snapshot.tools.transfer")


def _read_document(path: Path) -> str:
    return path.read_text(encoding="utf-8")


@tool()
@monitor_request
@secure_operation(
    ResourceType.SNAPSHOT_EXPORT,
    "export_snapshot",
    SecurityLevel.HIGH,
    "Export a snapshot, including live session cookies",
)
async def export_snapshot(
    snapshot_id: str = Field(..., description="Id of the snapshot to export"),
    directory: str | None = Field(
        default=None,
        description="Directory to write session_<name>_<id>.json into; omit to return the JSON",
    ),
    *,
    ctx: Context,
) -> dict:
    """
    Export a snapshot as a JSON document that can be imported elsewhere.

    Returns:
        dict: Envelope with the file name and either the written path or the
        document itself
    """
    try:
        filename, document = await get_engine(ctx).export(snapshot_id)
    except ExportBlockedError as e:
        performance_monitor.record_operation("export", "blocked")
        return error_envelope(e, "Export")
    except SnapshotEngineError as e:
        return error_envelope(e, "Export")

    if directory is None:
        performance_monitor.record_operation("export", "success")
        return envelope("success", {"filename": filename, "document": document}, f"Exported {filename}")

    destination = Path(directory).expanduser() / filename
    try:
        await asyncio.to_thread(destination.parent.mkdir, parents=True, exist_ok=True)
        await asyncio.to_thread(destination.write_text, document, encoding="utf-8")
    except OSError as e:
        return error_envelope(e, "Export")
    performance_monitor.record_operation("export", "success")
    return envelope("success", {"filename": filename, "path": str(destination)}, f"Exported to {destination}")


@tool()
@monitor_request
@secure_operation(
    ResourceType.SNAPSHOT_EXPORT,
    "export_cookies",
    SecurityLevel.HIGH,
    "Export the cookies of a snapshot as text",
)
async def export_cookies(
    snapshot_id: str = Field(..., description="Id of the snapshot"),
    format: Literal["json", "netscape", "header"] = Field(
        default="json",
        description="'json' list, Netscape cookies.txt, or an HTTP Cookie header value",
    ),
    *,
    ctx: Context,
) -> dict:
    """
    Export only the cookies of a snapshot.

    Returns:
        dict: Envelope with the formatted cookies
    """
    try:
        text = await get_engine(ctx).export_cookies(snapshot_id, format)
    except SnapshotEngineError as e:
        return error_envelope(e, "Cookie export")
    return envelope("success", {"format": format, "cookies": text}, f"Cookies exported as {format}")


@tool()
@monitor_request
@secure_operation(
    ResourceType.SNAPSHOT_WRITE,
    "import_snapshot",
    SecurityLevel.MEDIUM,
    "Import a snapshot document",
)
async def import_snapshot(
    document: str = Field(..., description="Snapshot JSON with at least name, domain and cookies"),
    *,
    ctx: Context,
) -> dict:
    """
    Import a snapshot from its JSON text. The snapshot gets a new id and an
    import-time creation date.
    """
    try:
        snapshot = await get_engine(ctx).import_document(document)
    except SnapshotEngineError as e:
        performance_monitor.record_operation("import", "error")
        return error_envelope(e, "Import")
    performance_monitor.record_operation("import", "success")
    return envelope(
        "success",
        {"id": snapshot.id, "name": snapshot.name, "domain": snapshot.domain},
        f"Imported snapshot '{snapshot.name}'",
    )


@tool()
@monitor_request
@secure_operation(
    ResourceType.SNAPSHOT_WRITE,
    "import_snapshot_files",
    SecurityLevel.MEDIUM,
    "Import snapshot files from disk",
)
async def import_snapshot_files(
    paths: list[str] = Field(..., description="Paths of .json snapshot files", min_length=1),
    *,
    ctx: Context,
) -> dict:
    """
    Import several snapshot files. Files that are missing, are not .json or
    do not hold a valid snapshot are skipped and listed.
    """
    documents: list[tuple[str, str]] = []
    unreadable: list[dict] = []
    for raw in paths:
        path = Path(raw).expanduser()
        if path.suffix.lower() != ".json":
            unreadable.append({"source": raw, "error": "Not a .json file", "details": {}})
            continue
        try:
            documents.append((raw, await asyncio.to_thread(_read_document, path)))
        except (OSError, UnicodeDecodeError) as e:
            unreadable.append({"source": raw, "error": str(e), "details": {}})

    try:
        report = await get_engine(ctx).import_many(documents)
    except SnapshotEngineError as e:
        return error_envelope(e, "Import")

    report.skipped = unreadable + report.skipped
    status = "success" if not report.skipped else ("partial" if report.imported else "error")
    performance_monitor.record_operation("import", status)
    return envelope(
        status,
        report.model_dump(mode="json"),
        f"Imported {len(report.imported)} snapshot(s), skipped {len(report.skipped)}",
    )


class ExportConfirmation(BaseModel):
    """Answer to the export verification prompt."""

    confirm: bool = Field(default=False, description="Allow snapshots to be exported")


@tool()
@monitor_request
@secure_operation(
    ResourceType.SNAPSHOT_EXPORT,
    "verify_export_access",
    SecurityLevel.HIGH,
    "Ask the user to allow snapshot exports for a limited time",
)
async def verify_export_access(ctx: Context) -> dict:
    """
    Ask the user to confirm that snapshots may be exported. On confirmation
    exports are allowed for a limited time.
    """
    minutes = EXPORT_CLEARANCE_TTL // 60
    try:
        result = await ctx.elicit(
            message=(
                "Exported snapshots contain live session cookies. "
                f"Allow exports for the next {minutes} minutes?"
            ),
            schema=ExportConfirmation,
        )
    except McpError as e:
        return error_envelope(e, "Export verification")

    if result.action != "accept" or result.data is None or not result.data.confirm:
        security_manager.revoke_clearance(ResourceType.SNAPSHOT_EXPORT)
        return envelope("error", {"granted": False}, "Export access was not granted")

    record = security_manager.grant_clearance(ResourceType.SNAPSHOT_EXPORT, ttl_seconds=EXPORT_CLEARANCE_TTL)
    return envelope(
        "success",
        {"granted": True, "expires_at": record.expiry_timestamp},
        f"Exports allowed for {minutes} minutes",
    )
