"""
MCP prompt definitions for the session snapshot server.
"""

from __future__ import annotations

from pydantic import Field

from .server import mcp


@mcp.prompt()  # pragma: no cover
def save_session_assistant(
    label: str | None = Field(None, description="Optional label for the snapshot"),
) -> str:
    """
    Creates a prompt that walks through saving the current browser session.
    """
    label_text = f' named "{label}"' if label else ""
    return f"""
    I want to save the current browser session{label_text}.

    Please:
    1. Use capture_snapshot to save cookies, localStorage, sessionStorage and IndexedDB
    2. If the status is "partial", tell me exactly which categories were dropped and why
    3. Report the snapshot id and the number of cookies and storage items saved
    """


@mcp.prompt()  # pragma: no cover
def restore_session_assistant(
    domain: str = Field(..., description="Domain whose session should be restored"),
) -> str:
    """
    Creates a prompt that finds and restores a saved session for a domain.
    """
    return f"""
    I want to get my saved session for {domain} back.

    Please:
    1. Use list_snapshots and pick the newest snapshot whose domain is {domain}
    2. Confirm the choice with me before restoring, since restoring wipes the page's current cookies and storage
    3. Use restore_snapshot with that id
    4. If the status is "partial" or "aborted", explain what was not restored
    """


@mcp.prompt()  # pragma: no cover
def move_session_assistant(
    snapshot_id: str = Field(..., description="Snapshot to move to another machine"),
) -> str:
    """
    Creates a prompt to export a snapshot for use elsewhere.
    """
    return f"""
    I want to move snapshot {snapshot_id} to another machine.

    Please:
    1. Use export_snapshot with snapshot_id={snapshot_id}
    2. If the export is blocked, use verify_export_access and then try again
    3. Remind me that the exported file contains live session cookies and should be kept private
    4. Tell me to load it on the other machine with import_snapshot_files
    """
