"""
Snapshot engine session.

``SnapshotEngine`` is the explicit state object for one server session: it
owns the snapshot library, the attached targets, one operation lock per
target and the listing last shown to the caller. Captures and restores on
the same target never overlap.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import AsyncIterator, Iterable, Mapping
from contextlib import asynccontextmanager
from typing import Any

from .capture import CaptureOrchestrator
from .config import (
    DATABASE_REPLAY_TIMEOUT,
    DATABASE_SETTLE_DELAY,
    ENABLE_DATABASE_CAPTURE,
)
from .exceptions import NotFoundError, TargetBusyError
from .library import SnapshotLibrary
from .models import (
    CaptureReport,
    ImportReport,
    RestoreReport,
    SnapshotRecord,
    SnapshotSummary,
    extract_domain,
)
from .restore import RestoreOrchestrator, StaticDecisionChannel
from .security import OpenCredentialGate
from .typing_utils import (
    CookieExportFormat,
    CredentialGate,
    DomainDecisionChannel,
    TargetContext,
)

logger = logging.getLogger("mcp_session_snapshot.engine")


class SnapshotEngine:
    """Capture/restore session over one snapshot library."""

    def __init__(
        self,
        library: SnapshotLibrary,
        *,
        gate: CredentialGate | None = None,
        replay_timeout: float = DATABASE_REPLAY_TIMEOUT,
        settle_delay: float = DATABASE_SETTLE_DELAY,
        capture_databases: bool = ENABLE_DATABASE_CAPTURE,
    ) -> None:
        self.library = library
        self.gate: CredentialGate = gate or OpenCredentialGate()
        self.replay_timeout = replay_timeout
        self.settle_delay = settle_delay
        self.capture_databases = capture_databases
        self.targets: dict[str, TargetContext] = {}
        self.loaded: dict[str, SnapshotSummary] = {}
        self._target_locks: dict[str, asyncio.Lock] = {}

    def attach(self, target: TargetContext) -> None:
        self.targets[target.key] = target
        logger.info("Attached target %s", target.key)

    def detach(self, key: str) -> None:
        self.targets.pop(key, None)
        self._target_locks.pop(key, None)

    def get_target(self, key: str | None = None) -> TargetContext:
        """Return the named target, or the only one when no key is given."""
        if key is None:
            if len(self.targets) == 1:
                return next(iter(self.targets.values()))
            if not self.targets:
                raise NotFoundError("No browsing context is attached")
            raise NotFoundError(
                "Several browsing contexts are attached; name one",
                {"targets": sorted(self.targets)},
            )
        try:
            return self.targets[key]
        except KeyError:
            raise NotFoundError(f"Unknown target '{key}'", {"target": key}) from None

    def is_busy(self, target: TargetContext) -> bool:
        lock = self._target_locks.get(target.key)
        return lock is not None and lock.locked()

    @asynccontextmanager
    async def exclusive(self, target: TargetContext) -> AsyncIterator[None]:
        """Hold the target's operation lock, failing fast if it is taken."""
        lock = self._target_locks.setdefault(target.key, asyncio.Lock())
        if lock.locked():
            raise TargetBusyError(
                f"Another capture or restore is running on '{target.key}'",
                {"target": target.key},
            )
        async with lock:
            yield

    async def capture(self, target: TargetContext, name: str | None = None) -> CaptureReport:
        async with self.exclusive(target):
            orchestrator = CaptureOrchestrator(
                target,
                self.library,
                size_ceiling=self.library.size_ceiling,
                capture_databases=self.capture_databases,
            )
            return await orchestrator.capture(name)

    async def restore(
        self,
        target: TargetContext,
        snapshot_id: str,
        decisions: DomainDecisionChannel | None = None,
    ) -> RestoreReport:
        snapshot = await self.library.get(snapshot_id)
        return await self.restore_record(target, snapshot, decisions)

    async def restore_record(
        self,
        target: TargetContext,
        snapshot: SnapshotRecord,
        decisions: DomainDecisionChannel | None = None,
    ) -> RestoreReport:
        """Restore a snapshot that is not necessarily in the catalog."""
        async with self.exclusive(target):
            orchestrator = RestoreOrchestrator(
                target,
                decisions or StaticDecisionChannel("cancel"),
                replay_timeout=self.replay_timeout,
                settle_delay=self.settle_delay,
            )
            return await orchestrator.restore(snapshot)

    async def list_snapshots(self, target: TargetContext | None = None) -> list[SnapshotSummary]:
        """List the library, putting snapshots of the target's domain first."""
        current_domain = extract_domain(target.url) if target is not None else ""
        summaries = await self.library.list_snapshots(current_domain)
        self.loaded = {summary.id: summary for summary in summaries}
        return summaries

    async def get(self, snapshot_id: str) -> SnapshotRecord:
        return await self.library.get(snapshot_id)

    async def rename(self, snapshot_id: str, name: str) -> SnapshotRecord:
        renamed = await self.library.rename(snapshot_id, name)
        if snapshot_id in self.loaded:
            self.loaded[snapshot_id] = self.loaded[snapshot_id].model_copy(update={"name": renamed.name})
        return renamed

    async def delete(self, snapshot_id: str) -> None:
        await self.library.delete(snapshot_id)
        self.loaded.pop(snapshot_id, None)

    async def clear(self) -> int:
        removed = await self.library.clear()
        self.loaded.clear()
        return removed

    async def import_document(self, document: str | bytes | Mapping[str, Any]) -> SnapshotRecord:
        return await self.library.import_document(document)

    async def import_many(
        self, documents: Iterable[tuple[str, str | bytes | Mapping[str, Any]]]
    ) -> ImportReport:
        return await self.library.import_many(documents)

    async def export(self, snapshot_id: str) -> tuple[str, str]:
        return await self.library.export(snapshot_id, self.gate)

    async def export_cookies(self, snapshot_id: str, fmt: CookieExportFormat = "json") -> str:
        return await self.library.export_cookies(snapshot_id, self.gate, fmt)
