"""
Capture orchestrator.

Reads every state category of a target concurrently, assembles a snapshot
and persists it through the degrade ladder: the full snapshot first, then the
snapshot without its embedded databases. Cookies and the key-value stores are
never dropped; if even that minimal snapshot cannot be persisted the capture
fails.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any

from .config import ENABLE_DATABASE_CAPTURE, SNAPSHOT_SIZE_CEILING
from .exceptions import (
    ErrorResult,
    PersistenceExhaustedError,
    QuotaExceededError,
    TargetUnavailableError,
)
from .library import SnapshotLibrary
from .mirrors import CookieMirror, DatabaseMirror, KeyValueStoreMirror
from .models import CaptureReport, SnapshotRecord, extract_domain, utc_now
from .typing_utils import DatabaseDump, TargetContext

logger = logging.getLogger("mcp_session_snapshot.capture")

DATABASES_CATEGORY = "indexedDB"


def default_snapshot_name(url: str) -> str:
    domain = extract_domain(url) or "snapshot"
    return f"{domain} {utc_now():%Y-%m-%d %H:%M:%S}"


class CaptureOrchestrator:
    """Captures one target into the snapshot library."""

    def __init__(
        self,
        target: TargetContext,
        library: SnapshotLibrary,
        *,
        size_ceiling: int = SNAPSHOT_SIZE_CEILING,
        capture_databases: bool = ENABLE_DATABASE_CAPTURE,
    ) -> None:
        self.target = target
        self.library = library
        self.size_ceiling = size_ceiling
        self.capture_databases = capture_databases
        self.cookies = CookieMirror(target)
        self.local_storage = KeyValueStoreMirror(target, "localStorage")
        self.session_storage = KeyValueStoreMirror(target, "sessionStorage")
        self.databases = DatabaseMirror(target)

    async def _read_databases(self) -> tuple[DatabaseDump, list[ErrorResult]]:
        if not self.capture_databases:
            return {}, []
        return await self.databases.export_everything()

    async def read(self, name: str | None = None) -> tuple[SnapshotRecord, list[dict[str, Any]]]:
        """
        Read every category and assemble an unsaved snapshot.

        Returns:
            Tuple of (snapshot, warnings) where warnings describe categories
            that could not be read and were left empty

        Raises:
            BackendError: If the cookie jar cannot be enumerated
        """
        url = self.target.url
        cookies, local_items, session_items, database_read = await asyncio.gather(
            self.cookies.list_all(),
            self.local_storage.list_all(),
            self.session_storage.list_all(),
            self._read_databases(),
            return_exceptions=True,
        )

        for outcome in (cookies, local_items, session_items, database_read):
            if isinstance(outcome, TargetUnavailableError):
                raise outcome
        # No snapshot without cookies
        if isinstance(cookies, BaseException):
            raise cookies

        warnings: list[dict[str, Any]] = []

        def category(value: Any, label: str, empty: Any) -> Any:
            if isinstance(value, Exception):
                logger.warning("Could not read %s during capture: %s", label, value)
                warnings.append(ErrorResult(value, context=label, recoverable=True).to_dict())
                return empty
            return value

        local_items = category(local_items, "localStorage", {})
        session_items = category(session_items, "sessionStorage", {})
        databases, database_errors = category(database_read, DATABASES_CATEGORY, ({}, []))
        warnings.extend(error.to_dict() for error in database_errors)

        snapshot = SnapshotRecord.from_capture(
            name=name or default_snapshot_name(url),
            url=url,
            cookie_store_id=self.target.cookie_store_id,
            cookies=cookies,
            local_storage=local_items,
            session_storage=session_items,
            indexed_db=databases,
        )
        return snapshot, warnings

    async def capture(self, name: str | None = None) -> CaptureReport:
        """
        Capture the target and persist the snapshot.

        Raises:
            PersistenceExhaustedError: If not even cookies and key-value
                stores could be persisted
        """
        snapshot, warnings = await self.read(name)
        logger.info(
            "Captured %s: %d cookie(s), %d+%d key-value item(s), %d database(s)",
            snapshot.domain or snapshot.url,
            snapshot.cookie_count,
            snapshot.local_storage_count,
            snapshot.session_storage_count,
            snapshot.indexed_db_count,
        )
        return await self.persist(snapshot, warnings)

    async def persist(
        self, snapshot: SnapshotRecord, warnings: list[dict[str, Any]] | None = None
    ) -> CaptureReport:
        """Walk the degrade ladder until one rung is persisted."""
        rungs: list[tuple[SnapshotRecord, list[str]]] = [(snapshot, [])]
        if snapshot.indexed_db:
            rungs.append((snapshot.without_databases(), [DATABASES_CATEGORY]))

        attempts: list[dict[str, Any]] = []
        for candidate, dropped in rungs:
            size = candidate.serialized_size()
            if size > self.size_ceiling:
                logger.warning(
                    "Snapshot %s is %d bytes (ceiling %d), dropped=%s",
                    candidate.id,
                    size,
                    self.size_ceiling,
                    dropped,
                )
                attempts.append({"dropped": dropped, "size_bytes": size, "reason": "size_ceiling"})
                continue
            try:
                await self.library.save(candidate)
            except QuotaExceededError as exc:
                logger.warning("Catalog rejected snapshot %s: %s", candidate.id, exc)
                attempts.append({"dropped": dropped, "size_bytes": size, "reason": "catalog_quota"})
                continue

            if dropped:
                logger.warning("Snapshot %s saved without %s", candidate.id, ", ".join(dropped))
            return CaptureReport(
                snapshot=candidate,
                size_bytes=size,
                degraded=bool(dropped),
                dropped=dropped,
                warnings=list(warnings or []),
            )

        logger.error("Could not persist snapshot %s at any degrade level", snapshot.id)
        raise PersistenceExhaustedError(
            "Snapshot could not be persisted even without embedded databases",
            {"snapshot_id": snapshot.id, "attempts": attempts},
        )
