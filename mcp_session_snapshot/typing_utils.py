"""
Typing utilities, protocols and type guards for the snapshot engine.

The collaborator contracts the engine is designed against (browsing context,
persistence catalog, domain decision channel, credential gate) are declared
here as protocols so that the Playwright binding, the on-disk catalog and the
test doubles can all satisfy them structurally.
"""

from typing import Any, Literal, Protocol, TypedDict, TypeGuard, Union

# Modern type aliases using Literal
SameSitePolicy = Literal["no_restriction", "lax", "strict", "unspecified"]
StorageArea = Literal["localStorage", "sessionStorage"]
DomainDecision = Literal["proceed", "navigate", "cancel"]
ElisionReason = Literal["binary", "max-depth"]
CookieExportFormat = Literal["json", "netscape", "header"]

DATE_TAG = "Date"
ELIDED_TAG = "Elided"
RECORD_TAG = "Record"
TYPE_KEY = "__type"


# Functional syntax: a dunder key in a class body would be name-mangled
TaggedDate = TypedDict("TaggedDate", {"__type": Literal["Date"], "value": str})
Elided = TypedDict("Elided", {"__type": Literal["Elided"], "reason": ElisionReason})


# JSON-safe tagged union produced by the value normalizer
NormalizedValue = Union[
    None,
    bool,
    int,
    float,
    str,
    TaggedDate,
    Elided,
    list["NormalizedValue"],
    dict[str, "NormalizedValue"],
]

# db name -> collection name -> records
DatabaseDump = dict[str, dict[str, list[NormalizedValue]]]


# Protocol definitions for the external collaborators
class TargetContext(Protocol):
    """A live browsing context the mirrors read from and write to.

    Cookie dictionaries exchanged through this protocol use the snapshot wire
    names (``expirationDate``, ``hostOnly``, ``sameSite`` ...).
    """

    @property
    def key(self) -> str:
        """Stable identifier used to serialize operations per context."""
        ...

    @property
    def url(self) -> str:
        """URL currently loaded in the context."""
        ...

    @property
    def cookie_store_id(self) -> str:
        """Identifier of the cookie partition the context writes into."""
        ...

    async def evaluate(self, script: str, arg: Any = None) -> Any:
        """Run a script inside the context and return its result."""
        ...

    async def get_cookies(self) -> list[dict[str, Any]]:
        """Return every cookie visible to the current URL."""
        ...

    async def set_cookie(self, cookie: dict[str, Any]) -> dict[str, Any]:
        """Write a cookie into the live jar and return what was stored."""
        ...

    async def remove_cookie(self, name: str) -> bool:
        """Remove a cookie by name; ``False`` when nothing matched."""
        ...

    async def navigate(self, url: str) -> None:
        """Load ``url`` in the context."""
        ...

    async def reload(self) -> None:
        """Reload the context so replayed state is picked up."""
        ...


class SnapshotCatalog(Protocol):
    """Durable key-value catalog owning the canonical snapshot copies."""

    async def get(self, key: str) -> str | None:
        ...

    async def set(self, key: str, value: str) -> None:
        ...

    async def delete(self, key: str) -> bool:
        ...

    async def keys(self) -> list[str]:
        ...

    async def usage(self) -> int:
        ...


class DomainDecisionChannel(Protocol):
    """Asks the caller what to do when snapshot and target domains differ."""

    async def decide(self, snapshot_domain: str, current_domain: str) -> DomainDecision:
        ...


class CredentialGate(Protocol):
    """Yes/no predicate consulted before a snapshot leaves the system."""

    async def is_export_allowed(self) -> bool:
        ...


def is_tagged_date(value: Any) -> TypeGuard[TaggedDate]:
    """Type guard for the normalized date form."""
    return isinstance(value, dict) and value.get(TYPE_KEY) == DATE_TAG and "value" in value


def is_elided(value: Any) -> TypeGuard[Elided]:
    """Type guard for the elision marker."""
    return isinstance(value, dict) and value.get(TYPE_KEY) == ELIDED_TAG


def is_escaped_record(value: Any) -> bool:
    """Check whether a mapping was wrapped because it owns a ``__type`` key."""
    return (
        isinstance(value, dict)
        and value.get(TYPE_KEY) == RECORD_TAG
        and isinstance(value.get("value"), dict)
    )


def ensure_string(value: str | Any, default: str = "") -> str:
    """Ensure a value is a string, with fallback."""
    if isinstance(value, str):
        return value
    elif value is None:
        return default
    else:
        return str(value)
