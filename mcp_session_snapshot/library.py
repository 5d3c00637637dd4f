"""
Snapshot library: the catalog-facing operations around saved snapshots.

Listing, renaming, deleting, importing and exporting all go through here so
that every write into the catalog is serialized by one lock and checked
against the per-snapshot size ceiling.
"""

from __future__ import annotations

import asyncio
import json
import logging
import re
from collections.abc import Iterable, Mapping
from typing import Any

import pydantic

from . import cookie_formats
from .config import SNAPSHOT_SIZE_CEILING
from .exceptions import (
    ExportBlockedError,
    NotFoundError,
    QuotaExceededError,
    SnapshotEngineError,
    SnapshotFormatError,
    ValidationError,
)
from .models import ImportReport, SnapshotRecord, SnapshotSummary, new_snapshot_id, utc_now
from .typing_utils import CookieExportFormat, CredentialGate, SnapshotCatalog

logger = logging.getLogger("mcp_session_snapshot.library")

# Fields an imported document must carry to be accepted
REQUIRED_IMPORT_FIELDS = ("name", "domain", "cookies")

_UNSAFE_FILENAME_CHARS = re.compile(r'[\\/:*?"<>|\s]+')


def export_filename(snapshot: SnapshotRecord) -> str:
    """File name used when a snapshot is exported."""
    safe_name = _UNSAFE_FILENAME_CHARS.sub("_", snapshot.name).strip("_") or "snapshot"
    return f"session_{safe_name}_{snapshot.id}.json"


def parse_snapshot_document(document: str | bytes | Mapping[str, Any]) -> SnapshotRecord:
    """
    Validate an imported document and turn it into a fresh snapshot.

    The imported snapshot receives a new id and an import-time creation
    timestamp; unknown fields (including the derived counts) are ignored.

    Raises:
        SnapshotFormatError: If the document is not a usable snapshot
    """
    if isinstance(document, (str, bytes)):
        try:
            document = json.loads(document)
        except (json.JSONDecodeError, UnicodeDecodeError) as exc:
            raise SnapshotFormatError(f"Not a JSON document: {exc}") from exc

    if not isinstance(document, Mapping):
        raise SnapshotFormatError(
            "Snapshot document must be a JSON object",
            {"type": type(document).__name__},
        )

    missing = [
        field
        for field in REQUIRED_IMPORT_FIELDS
        if document.get(field) is None or document.get(field) == ""
    ]
    if missing:
        raise SnapshotFormatError(
            f"Snapshot document is missing required fields: {', '.join(missing)}",
            {"missing": missing},
        )

    data = {
        key: value
        for key, value in document.items()
        if key not in ("id", "createdAt", "created_at", "timestamp")
    }
    data["id"] = new_snapshot_id()
    data["createdAt"] = utc_now()
    try:
        return SnapshotRecord.model_validate(data)
    except pydantic.ValidationError as exc:
        raise SnapshotFormatError(
            f"Invalid snapshot document: {exc.error_count()} error(s)",
            {"errors": exc.errors(include_url=False, include_context=False)},
        ) from exc


class SnapshotLibrary:
    """Catalog-backed collection of saved snapshots."""

    def __init__(
        self,
        catalog: SnapshotCatalog,
        *,
        size_ceiling: int = SNAPSHOT_SIZE_CEILING,
    ) -> None:
        self.catalog = catalog
        self.size_ceiling = size_ceiling
        self.lock = asyncio.Lock()

    async def save(self, snapshot: SnapshotRecord) -> int:
        """
        Persist a snapshot and return its serialized size in bytes.

        Raises:
            QuotaExceededError: If the snapshot is over the size ceiling or
                the catalog has no room left for it
        """
        async with self.lock:
            return await self._store(snapshot)

    async def _store(self, snapshot: SnapshotRecord) -> int:
        payload = snapshot.to_json()
        size = len(payload.encode("utf-8"))
        if size > self.size_ceiling:
            raise QuotaExceededError(
                f"Snapshot '{snapshot.name}' is {size} bytes, over the {self.size_ceiling} byte ceiling",
                {"snapshot_id": snapshot.id, "size_bytes": size, "ceiling_bytes": self.size_ceiling},
            )
        await self.catalog.set(snapshot.id, payload)
        logger.info("Saved snapshot %s (%s, %d bytes)", snapshot.id, snapshot.domain, size)
        return size

    async def get(self, snapshot_id: str) -> SnapshotRecord:
        """
        Load a snapshot by id.

        Raises:
            NotFoundError: If no such snapshot exists
            SnapshotFormatError: If the stored entry is corrupt
        """
        payload = await self.catalog.get(snapshot_id)
        if payload is None:
            raise NotFoundError(f"Snapshot '{snapshot_id}' not found", {"snapshot_id": snapshot_id})
        try:
            return SnapshotRecord.model_validate_json(payload)
        except pydantic.ValidationError as exc:
            raise SnapshotFormatError(
                f"Stored snapshot '{snapshot_id}' is corrupt",
                {"snapshot_id": snapshot_id, "errors": exc.error_count()},
            ) from exc

    async def list_snapshots(self, current_domain: str = "") -> list[SnapshotSummary]:
        """List saved snapshots, current domain first, then newest first."""
        summaries: list[SnapshotSummary] = []
        for key in await self.catalog.keys():
            try:
                snapshot = await self.get(key)
            except SnapshotEngineError as exc:
                logger.warning("Skipping catalog entry %s: %s", key, exc)
                continue
            summaries.append(
                SnapshotSummary(
                    id=snapshot.id,
                    name=snapshot.name,
                    domain=snapshot.domain,
                    created_at=snapshot.created_at,
                    cookie_count=snapshot.cookie_count,
                    local_storage_count=snapshot.local_storage_count,
                    session_storage_count=snapshot.session_storage_count,
                    indexed_db_count=snapshot.indexed_db_count,
                    matches_current_domain=bool(current_domain) and snapshot.domain == current_domain,
                )
            )
        summaries.sort(key=lambda entry: entry.created_at, reverse=True)
        summaries.sort(key=lambda entry: not entry.matches_current_domain)
        return summaries

    async def rename(self, snapshot_id: str, name: str) -> SnapshotRecord:
        """Change the user label of a snapshot; nothing else is touched."""
        if not name.strip():
            raise ValidationError("Snapshot name must not be empty", {"snapshot_id": snapshot_id})
        async with self.lock:
            snapshot = await self.get(snapshot_id)
            renamed = snapshot.model_copy(update={"name": name.strip()})
            await self._store(renamed)
        return renamed

    async def delete(self, snapshot_id: str) -> None:
        async with self.lock:
            deleted = await self.catalog.delete(snapshot_id)
        if not deleted:
            raise NotFoundError(f"Snapshot '{snapshot_id}' not found", {"snapshot_id": snapshot_id})
        logger.info("Deleted snapshot %s", snapshot_id)

    async def clear(self) -> int:
        """Delete every saved snapshot and return how many were removed."""
        removed = 0
        async with self.lock:
            for key in await self.catalog.keys():
                if await self.catalog.delete(key):
                    removed += 1
        logger.info("Cleared %d snapshot(s)", removed)
        return removed

    async def import_document(self, document: str | bytes | Mapping[str, Any]) -> SnapshotRecord:
        """Import one snapshot document into the catalog."""
        snapshot = parse_snapshot_document(document)
        await self.save(snapshot)
        return snapshot

    async def import_many(
        self, documents: Iterable[tuple[str, str | bytes | Mapping[str, Any]]]
    ) -> ImportReport:
        """Import several ``(source, document)`` pairs, skipping invalid ones."""
        report = ImportReport()
        for source, document in documents:
            try:
                snapshot = await self.import_document(document)
            except (ValidationError, QuotaExceededError) as exc:
                logger.warning("Skipping import of %s: %s", source, exc)
                report.skipped.append({"source": source, "error": str(exc), "details": exc.details})
                continue
            report.imported.append(snapshot.id)
        return report

    async def export(self, snapshot_id: str, gate: CredentialGate) -> tuple[str, str]:
        """
        Export a snapshot as a pretty-printed JSON document.

        Returns:
            Tuple of (file name, document text)

        Raises:
            ExportBlockedError: If the credential gate refuses the export
        """
        await self._check_gate(gate, snapshot_id)
        snapshot = await self.get(snapshot_id)
        return export_filename(snapshot), snapshot.to_json(indent=2)

    async def export_cookies(
        self,
        snapshot_id: str,
        gate: CredentialGate,
        fmt: CookieExportFormat = "json",
    ) -> str:
        """Export only the cookies of a snapshot in the requested text format."""
        await self._check_gate(gate, snapshot_id)
        snapshot = await self.get(snapshot_id)
        if fmt == "netscape":
            return cookie_formats.to_netscape(snapshot.cookies)
        if fmt == "header":
            return cookie_formats.to_header_string(snapshot.cookies)
        if fmt == "json":
            return json.dumps(
                [cookie.model_dump(mode="json", by_alias=True) for cookie in snapshot.cookies],
                indent=2,
            )
        raise ValidationError(f"Unknown cookie export format: {fmt}", {"format": fmt})

    @staticmethod
    async def _check_gate(gate: CredentialGate, snapshot_id: str) -> None:
        if not await gate.is_export_allowed():
            logger.warning("Export of %s blocked by credential gate", snapshot_id)
            raise ExportBlockedError(
                "Export requires credential verification", {"snapshot_id": snapshot_id}
            )
