"""
Embedded database mirror.

Databases are copied opaquely record by record: every record is passed
through the value normalizer on export and through its inverse on recreate.
Record keys are not preserved; recreated collections use auto-increment keys
in insertion order.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Mapping, Sequence
from typing import Any

from ..config import MAX_NORMALIZE_DEPTH
from ..exceptions import (
    BackendError,
    ErrorResult,
    TargetUnavailableError,
    ValidationError,
    guarded,
)
from ..models import DatabaseReplayResult
from ..normalizer import ElidedPlaceholder, OpaqueBlob, count_elided, denormalize, normalize
from ..typing_utils import DatabaseDump, NormalizedValue, TargetContext
from . import scripts

logger = logging.getLogger("mcp_session_snapshot.mirrors.databases")


class DatabaseMirror:
    """Enumerates, exports and recreates the embedded databases of an origin."""

    def __init__(self, target: TargetContext, *, max_depth: int = MAX_NORMALIZE_DEPTH) -> None:
        self._target = target
        self._max_depth = max_depth
        self.last_errors: list[ErrorResult] = []

    async def list_databases(self) -> list[str]:
        names = await guarded(
            self._target.evaluate(scripts.LIST_DATABASES), "list databases"
        )
        return [str(name) for name in names or []]

    async def export_all(self, name: str) -> dict[str, list[NormalizedValue]]:
        """
        Read every collection of a database and normalize its records.

        Collections that cannot be read are left out and recorded in
        ``last_errors``; so are individual records with no normalized form.

        Raises:
            BackendError: If the database cannot be opened at all
        """
        self.last_errors = []
        outcome = await guarded(
            self._target.evaluate(
                scripts.EXPORT_DATABASE,
                {"name": name, "maxDepth": scripts.TRANSPORT_MAX_DEPTH},
            ),
            "export database",
            database=name,
        )
        outcome = outcome or {}

        for collection, message in (outcome.get("errors") or {}).items():
            error = BackendError(
                f"Could not read collection '{collection}': {message}",
                {"database": name, "collection": collection},
            )
            logger.warning("%s", error)
            self.last_errors.append(
                ErrorResult(error, context=f"{name}/{collection}", recoverable=True)
            )

        exported: dict[str, list[NormalizedValue]] = {}
        for collection, records in (outcome.get("collections") or {}).items():
            normalized: list[NormalizedValue] = []
            for index, record in enumerate(records or []):
                try:
                    normalized.append(normalize(self._revive(record, 0), max_depth=self._max_depth))
                except ValidationError as exc:
                    logger.warning(
                        "Skipping record %d of %s/%s: %s", index, name, collection, exc
                    )
                    self.last_errors.append(
                        ErrorResult(exc, context=f"{name}/{collection}#{index}", recoverable=True)
                    )
            exported[collection] = normalized
        return exported

    async def export_everything(self) -> tuple[DatabaseDump, list[ErrorResult]]:
        """Export every database; databases that fail are skipped and reported."""
        dump: DatabaseDump = {}
        errors: list[ErrorResult] = []
        for name in await self.list_databases():
            try:
                dump[name] = await self.export_all(name)
            except TargetUnavailableError:
                raise
            except BackendError as exc:
                logger.warning("Skipping database %s: %s", name, exc)
                errors.append(ErrorResult(exc, context=name, recoverable=True))
                continue
            errors.extend(self.last_errors)
        return dump, errors

    async def recreate(
        self, name: str, collections: Mapping[str, Sequence[NormalizedValue]]
    ) -> DatabaseReplayResult:
        """
        Delete a database and rebuild it from normalized collections.

        Each collection is populated independently; a failing collection is
        reported in the result and never stops the others.

        Raises:
            TargetUnavailableError: If the browsing context went away
        """
        result = DatabaseReplayResult(name=name)
        try:
            await guarded(
                self._target.evaluate(
                    scripts.RECREATE_DATABASE,
                    {"name": name, "collections": list(collections)},
                ),
                "recreate database",
                database=name,
            )
        except TargetUnavailableError:
            raise
        except BackendError as exc:
            logger.error("Could not recreate database %s: %s", name, exc)
            result.errors.append(ErrorResult(exc, context=name).to_dict())
            return result

        outcomes = await asyncio.gather(
            *(
                self._populate(name, collection, records)
                for collection, records in collections.items()
            ),
            return_exceptions=True,
        )
        for collection, outcome in zip(collections, outcomes):
            if isinstance(outcome, TargetUnavailableError):
                raise outcome
            if isinstance(outcome, Exception):
                logger.error("Collection %s/%s failed: %s", name, collection, outcome)
                result.errors.append(
                    ErrorResult(outcome, context=f"{name}/{collection}", recoverable=True).to_dict()
                )
                continue
            added, failed, elided_count = outcome
            result.collections_restored += 1
            result.records_restored += added
            result.records_failed += failed
            result.elided += elided_count

        if result.elided:
            logger.info("Database %s restored with %d elided value(s)", name, result.elided)
        return result

    async def _populate(
        self, name: str, collection: str, records: Sequence[NormalizedValue]
    ) -> tuple[int, int, int]:
        payload: list[Any] = []
        skipped = 0
        for index, record in enumerate(records):
            try:
                payload.append(self._to_transport(denormalize(record)))
            except ValidationError as exc:
                logger.warning("Skipping record %d of %s/%s: %s", index, name, collection, exc)
                skipped += 1
        elided_count = count_elided(list(records))
        if not payload:
            return 0, skipped, elided_count

        outcome = await guarded(
            self._target.evaluate(
                scripts.INSERT_RECORDS,
                {"name": name, "collection": collection, "records": payload},
            ),
            "insert records",
            database=name,
            collection=collection,
        )
        outcome = outcome or {}
        failures = outcome.get("failed") or []
        for failure in failures:
            logger.warning(
                "Record %s of %s/%s rejected: %s",
                failure.get("index"),
                name,
                collection,
                failure.get("error"),
            )
        return int(outcome.get("added", 0)), skipped + len(failures), elided_count

    def _revive(self, value: Any, depth: int) -> Any:
        """Turn transport markers for binary objects into :class:`OpaqueBlob`."""
        if depth > self._max_depth:
            return value
        if isinstance(value, list):
            return [self._revive(item, depth + 1) for item in value]
        if isinstance(value, dict):
            if scripts.OPAQUE_KEY in value:
                return OpaqueBlob(str(value[scripts.OPAQUE_KEY]), value.get("size"))
            return {key: self._revive(item, depth + 1) for key, item in value.items()}
        return value

    @classmethod
    def _to_transport(cls, value: Any) -> Any:
        """Make a denormalized record safe to hand to the page."""
        if isinstance(value, ElidedPlaceholder):
            return str(value)
        if isinstance(value, list):
            return [cls._to_transport(item) for item in value]
        if isinstance(value, dict):
            return {key: cls._to_transport(item) for key, item in value.items()}
        return value
