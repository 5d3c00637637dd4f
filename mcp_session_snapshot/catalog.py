"""Persistence catalogs holding the canonical serialized snapshots."""

from __future__ import annotations

import asyncio
import logging
import re
from pathlib import Path

from .config import CATALOG_QUOTA_BYTES
from .exceptions import BackendError, QuotaExceededError, ValidationError

logger = logging.getLogger("mcp_session_snapshot.catalog")

_KEY_PATTERN = re.compile(r"^[A-Za-z0-9._-]+$")


def _size(value: str) -> int:
    return len(value.encode("utf-8"))


def _check_quota(key: str, current: int, replaced: int, incoming: int, quota: int) -> None:
    projected = current - replaced + incoming
    if projected > quota:
        raise QuotaExceededError(
            f"Catalog quota exceeded writing '{key}'",
            {"key": key, "projected_bytes": projected, "quota_bytes": quota},
        )


class MemoryCatalog:
    """In-memory catalog for tests and ephemeral sessions."""

    def __init__(self, quota_bytes: int = CATALOG_QUOTA_BYTES) -> None:
        self._entries: dict[str, str] = {}
        self.quota_bytes = quota_bytes

    async def get(self, key: str) -> str | None:
        return self._entries.get(key)

    async def set(self, key: str, value: str) -> None:
        replaced = _size(self._entries[key]) if key in self._entries else 0
        _check_quota(key, await self.usage(), replaced, _size(value), self.quota_bytes)
        self._entries[key] = value

    async def delete(self, key: str) -> bool:
        return self._entries.pop(key, None) is not None

    async def keys(self) -> list[str]:
        return list(self._entries)

    async def usage(self) -> int:
        return sum(_size(value) for value in self._entries.values())


class DirectoryCatalog:
    """Catalog storing one UTF-8 JSON file per key inside a directory."""

    def __init__(self, directory: Path | str, quota_bytes: int = CATALOG_QUOTA_BYTES) -> None:
        self.directory = Path(directory).expanduser()
        self.quota_bytes = quota_bytes

    def _path(self, key: str) -> Path:
        if not _KEY_PATTERN.match(key):
            raise ValidationError(f"Invalid catalog key: {key!r}", {"key": key})
        return self.directory / f"{key}.json"

    async def get(self, key: str) -> str | None:
        path = self._path(key)
        try:
            return await asyncio.to_thread(path.read_text, encoding="utf-8")
        except FileNotFoundError:
            return None
        except OSError as exc:
            raise BackendError(f"Could not read catalog entry '{key}': {exc}", {"key": key}) from exc

    async def set(self, key: str, value: str) -> None:
        path = self._path(key)
        replaced = path.stat().st_size if path.exists() else 0
        _check_quota(key, await self.usage(), replaced, _size(value), self.quota_bytes)
        try:
            await asyncio.to_thread(self._write_atomic, path, value)
        except OSError as exc:
            raise BackendError(f"Could not write catalog entry '{key}': {exc}", {"key": key}) from exc
        logger.debug("Wrote catalog entry %s (%d bytes)", key, _size(value))

    def _write_atomic(self, path: Path, value: str) -> None:
        self.directory.mkdir(parents=True, exist_ok=True)
        scratch = path.with_suffix(".json.tmp")
        scratch.write_text(value, encoding="utf-8")
        scratch.replace(path)

    async def delete(self, key: str) -> bool:
        path = self._path(key)
        try:
            await asyncio.to_thread(path.unlink)
        except FileNotFoundError:
            return False
        except OSError as exc:
            raise BackendError(f"Could not delete catalog entry '{key}': {exc}", {"key": key}) from exc
        return True

    async def keys(self) -> list[str]:
        if not self.directory.is_dir():
            return []
        return sorted(path.stem for path in self.directory.glob("*.json"))

    async def usage(self) -> int:
        if not self.directory.is_dir():
            return 0
        return sum(path.stat().st_size for path in self.directory.glob("*.json"))
