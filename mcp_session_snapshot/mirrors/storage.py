"""Key-value store mirror for the two flat string stores of an origin."""

from __future__ import annotations

import logging
from collections.abc import Mapping
from typing import Any

from ..exceptions import BackendError, guarded
from ..typing_utils import StorageArea, TargetContext, ensure_string
from . import scripts

logger = logging.getLogger("mcp_session_snapshot.mirrors.storage")


class KeyValueStoreMirror:
    """Enumerates, clears and writes one scoped string store."""

    def __init__(self, target: TargetContext, area: StorageArea) -> None:
        self._target = target
        self.area = area
        self.last_failures: list[dict[str, Any]] = []

    async def list_all(self) -> dict[str, str]:
        items = await guarded(
            self._target.evaluate(scripts.READ_STORAGE, self.area),
            f"read {self.area}",
        )
        if not isinstance(items, Mapping):
            raise BackendError(
                f"Unexpected {self.area} payload", {"type": type(items).__name__}
            )
        return {str(key): ensure_string(value) for key, value in items.items()}

    async def clear(self) -> None:
        await guarded(
            self._target.evaluate(scripts.CLEAR_STORAGE, self.area),
            f"clear {self.area}",
        )

    async def set_many(self, items: Mapping[str, str]) -> int:
        """Write every item; returns how many were stored."""
        return await self._write(items, clear=False)

    async def replace(self, items: Mapping[str, str]) -> int:
        """Clear the store and write ``items`` in one in-page step."""
        return await self._write(items, clear=True)

    async def _write(self, items: Mapping[str, str], *, clear: bool) -> int:
        payload = {key: ensure_string(value) for key, value in items.items()}
        outcome = await guarded(
            self._target.evaluate(
                scripts.SET_STORAGE,
                {"area": self.area, "items": payload, "clear": clear},
            ),
            f"write {self.area}",
            count=len(payload),
        )
        outcome = outcome or {}
        self.last_failures = list(outcome.get("failed", []))
        for failure in self.last_failures:
            logger.warning(
                "Failed to restore %s item %r: %s",
                self.area,
                failure.get("key"),
                failure.get("error"),
            )
        return int(outcome.get("restored", 0))
