"""Cookie mirror: enumerate, delete and write back the cookies of one origin."""

from __future__ import annotations

import logging
from collections.abc import Mapping
from typing import Any

import pydantic

from ..exceptions import NotFoundError, ValidationError, guarded
from ..models import CookieRecord
from ..typing_utils import TargetContext

logger = logging.getLogger("mcp_session_snapshot.mirrors.cookies")


def to_cookie_record(data: CookieRecord | Mapping[str, Any]) -> CookieRecord:
    """Validate a cookie mapping into a :class:`CookieRecord`.

    Raises:
        ValidationError: If the mapping is not a usable cookie
    """
    if isinstance(data, CookieRecord):
        return data
    try:
        return CookieRecord.model_validate(dict(data))
    except pydantic.ValidationError as exc:
        raise ValidationError(
            f"Invalid cookie record: {exc.error_count()} error(s)",
            {"name": data.get("name"), "errors": exc.errors(include_url=False)},
        ) from exc


class CookieMirror:
    """Reads and writes the live cookie jar of a target context."""

    def __init__(self, target: TargetContext) -> None:
        self._target = target

    async def list_all(self) -> list[CookieRecord]:
        """Return every cookie visible to the target's current URL.

        Cookies the jar reports in an unusable shape are skipped with a warning.
        """
        raw_cookies = await guarded(self._target.get_cookies(), "list cookies")
        records: list[CookieRecord] = []
        for raw in raw_cookies:
            try:
                records.append(to_cookie_record(raw))
            except ValidationError as exc:
                logger.warning("Skipping unreadable cookie %r: %s", raw.get("name"), exc)
        return records

    async def remove(self, name: str) -> None:
        """Delete a cookie by name.

        Raises:
            NotFoundError: If no cookie with that name exists for the origin
            BackendError: If the jar rejects the removal
        """
        removed = await guarded(
            self._target.remove_cookie(name), "remove cookie", name=name
        )
        if not removed:
            raise NotFoundError(f"Cookie '{name}' not found", {"name": name})

    async def write(self, record: CookieRecord | Mapping[str, Any]) -> CookieRecord:
        """Write a cookie into the live jar.

        The mirror never renames: a caller changing ``name`` or ``host_only``
        must remove the old cookie first.

        Raises:
            ValidationError: If the record is malformed
            BackendError: If the jar rejects the cookie
        """
        cookie = to_cookie_record(record)
        stored = await guarded(
            self._target.set_cookie(cookie.model_dump(by_alias=True)),
            "write cookie",
            name=cookie.name,
        )
        if not stored:
            return cookie
        return to_cookie_record(stored)
