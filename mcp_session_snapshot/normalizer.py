"""
Value normalizer for embedded database records.

Converts arbitrary nested runtime values into the JSON-safe tagged form that
is persisted inside a snapshot, and back. Binary payloads are never persisted:
they are replaced by an ``Elided`` marker whose inverse is a visible
:class:`ElidedPlaceholder` so that restore logic can report the loss.
"""

from __future__ import annotations

import array
import math
from collections.abc import Mapping
from dataclasses import dataclass
from datetime import datetime
from typing import Any

from .config import MAX_NORMALIZE_DEPTH
from .exceptions import ValidationError
from .typing_utils import (
    DATE_TAG,
    ELIDED_TAG,
    RECORD_TAG,
    TYPE_KEY,
    Elided,
    ElisionReason,
    NormalizedValue,
    TaggedDate,
    is_elided,
    is_escaped_record,
    is_tagged_date,
)


@dataclass(frozen=True)
class OpaqueBlob:
    """Stand-in for a browser binary object (ArrayBuffer, typed view, Blob)."""

    kind: str
    size: int | None = None


@dataclass(frozen=True)
class ElidedPlaceholder:
    """Denormalized form of an ``Elided`` marker."""

    reason: str

    def __str__(self) -> str:
        return f"[elided: {self.reason}]"


BINARY_TYPES: tuple[type, ...] = (bytes, bytearray, memoryview, array.array, OpaqueBlob)


def is_binary(value: Any) -> bool:
    """Check whether a value is a byte buffer, byte view or blob-like object."""
    return isinstance(value, BINARY_TYPES)


def elided(reason: ElisionReason) -> Elided:
    return {TYPE_KEY: ELIDED_TAG, "reason": reason}  # type: ignore[return-value]


def tagged_date(value: datetime) -> TaggedDate:
    return {TYPE_KEY: DATE_TAG, "value": value.isoformat()}  # type: ignore[return-value]


def normalize(
    value: Any, depth: int = 0, *, max_depth: int = MAX_NORMALIZE_DEPTH
) -> NormalizedValue:
    """
    Convert a runtime value into its JSON-safe tagged form.

    Args:
        value: Value read from an embedded database
        depth: Current nesting level
        max_depth: Levels below which containers are no longer descended

    Returns:
        The normalized value

    Raises:
        ValidationError: If the value has a type with no normalized form
    """
    if depth > max_depth:
        return elided("max-depth")

    if value is None or isinstance(value, (bool, int, str)):
        return value

    if isinstance(value, float):
        # JSON has no representation for NaN or infinities
        return value if math.isfinite(value) else None

    if is_binary(value):
        return elided("binary")

    if isinstance(value, datetime):
        return tagged_date(value)

    if isinstance(value, (list, tuple)):
        return [normalize(item, depth + 1, max_depth=max_depth) for item in value]

    if isinstance(value, Mapping):
        record = {
            str(key): normalize(item, depth + 1, max_depth=max_depth)
            for key, item in value.items()
        }
        if TYPE_KEY in record:
            return {TYPE_KEY: RECORD_TAG, "value": record}
        return record

    raise ValidationError(
        f"Cannot normalize value of type {type(value).__name__}",
        {"type": type(value).__name__, "depth": depth},
    )


def denormalize(value: NormalizedValue) -> Any:
    """
    Reconstruct the runtime value for a normalized value.

    ``Elided`` markers become :class:`ElidedPlaceholder` instances.

    Raises:
        ValidationError: If a tagged date carries an unparsable timestamp
    """
    if value is None or isinstance(value, (bool, int, float, str)):
        return value

    if isinstance(value, list):
        return [denormalize(item) for item in value]

    if isinstance(value, dict):
        if is_tagged_date(value):
            try:
                return datetime.fromisoformat(value["value"])
            except (TypeError, ValueError) as exc:
                raise ValidationError(
                    f"Invalid tagged date: {value['value']!r}",
                    {"value": value["value"]},
                ) from exc
        if is_elided(value):
            return ElidedPlaceholder(str(value.get("reason", "binary")))
        if is_escaped_record(value):
            return {key: denormalize(item) for key, item in value["value"].items()}
        return {key: denormalize(item) for key, item in value.items()}

    raise ValidationError(
        f"Not a normalized value: {type(value).__name__}",
        {"type": type(value).__name__},
    )


def count_elided(value: NormalizedValue) -> int:
    """Count the ``Elided`` markers inside a normalized value."""
    if isinstance(value, list):
        return sum(count_elided(item) for item in value)
    if isinstance(value, dict):
        if is_elided(value):
            return 1
        if is_tagged_date(value):
            return 0
        if is_escaped_record(value):
            return sum(count_elided(item) for item in value["value"].values())
        return sum(count_elided(item) for item in value.values())
    return 0
