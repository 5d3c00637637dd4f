"""
Helpers shared by the snapshot tools: response envelopes and the
elicitation-backed domain decision channel.
"""

import logging
from typing import Any

from mcp.server.fastmcp import Context
from mcp.shared.exceptions import McpError
from pydantic import BaseModel, Field

from ..models import RestoreReport, RestoreState
from ..typing_utils import DomainDecision

logger = logging.getLogger("mcp_session_snapshot.tools.utils")

_DECISIONS: tuple[DomainDecision, ...] = ("proceed", "navigate", "cancel")


def envelope(status: str, data: Any, message: str) -> dict[str, Any]:
    return {"status": status, "data": data, "message": message}


def error_envelope(exc: Exception, action: str) -> dict[str, Any]:
    """Convert an engine error into the error envelope returned by tools."""
    logger.error(f"{action} failed: {exc}")
    return envelope(
        "error",
        {"error_type": type(exc).__name__, "details": getattr(exc, "details", {})},
        f"{action} failed: {exc}",
    )


def restore_envelope(report: RestoreReport) -> dict[str, Any]:
    """Map a restore report to an envelope; partial restores are never "success"."""
    data = report.model_dump(mode="json")
    data["summary"] = report.summary()
    if report.state is RestoreState.ABORTED:
        return envelope("aborted", data, f"Restore aborted at domain check ({report.domain_decision or 'error'})")
    if report.state is RestoreState.FAILED:
        return envelope("error", data, "Restore failed: the browsing context is no longer available")
    if report.partial:
        return envelope(
            "partial",
            data,
            f"Restore partially completed: {report.cookies_restored} cookie(s), "
            f"{report.key_value_items_restored} key-value item(s), "
            f"{report.databases_restored}/{report.databases_total} database(s)",
        )
    return envelope(
        "success",
        data,
        f"Restored {report.cookies_restored} cookie(s), "
        f"{report.key_value_items_restored} key-value item(s), "
        f"{report.databases_restored} database(s)",
    )


class DomainChoice(BaseModel):
    """Answer to a domain mismatch prompt."""

    decision: str = Field(
        default="cancel",
        description="'proceed' to restore here anyway, 'navigate' to open the snapshot's site, or 'cancel'",
    )


class ElicitationDecisionChannel:
    """Asks the MCP client's user what to do about a domain mismatch."""

    def __init__(self, ctx: Context) -> None:
        self.ctx = ctx

    async def decide(self, snapshot_domain: str, current_domain: str) -> DomainDecision:
        message = (
            f"This snapshot was captured on {snapshot_domain}, but the browser is on "
            f"{current_domain or 'a page without a domain'}. Restore here anyway, "
            "navigate to the original site, or cancel?"
        )
        try:
            result = await self.ctx.elicit(message=message, schema=DomainChoice)
        except McpError as exc:
            logger.warning(f"Could not ask for a domain decision: {exc}")
            return "cancel"

        if result.action != "accept" or result.data is None:
            return "cancel"
        decision = result.data.decision.strip().lower()
        if decision not in _DECISIONS:
            logger.warning(f"Unrecognized domain decision: {decision!r}")
            return "cancel"
        return decision  # type: ignore[return-value]
