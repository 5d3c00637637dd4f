"""
Data models for the session snapshot engine.
"""

from __future__ import annotations

import secrets
import time
import urllib.parse
from datetime import datetime, timezone
from enum import Enum
from typing import Any

from pydantic import (
    AliasChoices,
    BaseModel,
    ConfigDict,
    Field,
    computed_field,
    field_validator,
    model_validator,
)
from pydantic.alias_generators import to_camel

from .typing_utils import DomainDecision, SameSitePolicy

# Browser-native spellings accepted for the same-site policy
_SAME_SITE_ALIASES: dict[str, str] = {
    "none": "no_restriction",
    "no_restriction": "no_restriction",
    "lax": "lax",
    "strict": "strict",
    "unspecified": "unspecified",
}


def new_snapshot_id() -> str:
    """Create an opaque snapshot identifier."""
    return f"snap-{int(time.time() * 1000)}-{secrets.token_hex(4)}"


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def extract_domain(url: str) -> str:
    """
    Extract the domain (host and optional port) from an http(s) URL.

    Args:
        url: The URL to extract the domain from

    Returns:
        The domain, or an empty string for non-web URLs
    """
    parsed = urllib.parse.urlparse(url)
    if parsed.scheme not in ("http", "https"):
        return ""
    return parsed.netloc.rsplit("@", 1)[-1]


class CookieRecord(BaseModel):
    """A single cookie as captured from, or replayed into, a cookie jar."""

    model_config = ConfigDict(
        alias_generator=to_camel, populate_by_name=True, extra="ignore"
    )

    name: str
    value: str = ""
    domain: str = ""
    path: str = "/"
    expiration_date: float | None = None  # epoch seconds; None for session cookies
    same_site: SameSitePolicy = "unspecified"
    host_only: bool = False
    session: bool = False
    secure: bool = False
    http_only: bool = False
    store_id: str | None = None

    @field_validator("same_site", mode="before")
    @classmethod
    def _coerce_same_site(cls, value: Any) -> Any:
        if value is None:
            return "unspecified"
        if isinstance(value, str):
            return _SAME_SITE_ALIASES.get(value.lower(), value)
        return value

    @model_validator(mode="after")
    def _enforce_session_expiration(self) -> CookieRecord:
        if self.session:
            self.expiration_date = None
        elif self.expiration_date is None or self.expiration_date <= 0:
            # No usable expiry means the browser treats it as a session cookie
            self.expiration_date = None
            self.session = True
        return self


class SnapshotRecord(BaseModel):
    """The unit of capture and restore."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    id: str = Field(default_factory=new_snapshot_id, frozen=True)
    name: str = Field(min_length=1)
    url: str = Field(default="", frozen=True)
    domain: str = Field(frozen=True)
    created_at: datetime = Field(
        default_factory=utc_now,
        frozen=True,
        validation_alias=AliasChoices("createdAt", "created_at", "timestamp"),
        serialization_alias="createdAt",
    )
    cookie_store_id: str | None = Field(default=None, alias="cookieStoreId")
    cookies: list[CookieRecord] = Field(default_factory=list)
    local_storage: dict[str, str] = Field(default_factory=dict, alias="localStorage")
    session_storage: dict[str, str] = Field(
        default_factory=dict, alias="sessionStorage"
    )
    indexed_db: dict[str, dict[str, list[Any]]] = Field(
        default_factory=dict, alias="indexedDB"
    )

    @classmethod
    def from_capture(cls, *, name: str, url: str, **categories: Any) -> SnapshotRecord:
        """Build a record for a fresh capture, deriving the domain from ``url``."""
        return cls(name=name, url=url, domain=extract_domain(url), **categories)

    @computed_field(alias="cookieCount")  # type: ignore[prop-decorator]
    @property
    def cookie_count(self) -> int:
        return len(self.cookies)

    @computed_field(alias="localStorageCount")  # type: ignore[prop-decorator]
    @property
    def local_storage_count(self) -> int:
        return len(self.local_storage)

    @computed_field(alias="sessionStorageCount")  # type: ignore[prop-decorator]
    @property
    def session_storage_count(self) -> int:
        return len(self.session_storage)

    @computed_field(alias="indexedDBCount")  # type: ignore[prop-decorator]
    @property
    def indexed_db_count(self) -> int:
        return len(self.indexed_db)

    def to_wire(self) -> dict[str, Any]:
        """Serialize to the JSON-compatible wire shape."""
        return self.model_dump(mode="json", by_alias=True)

    def to_json(self, *, indent: int | None = None) -> str:
        """Serialize to the UTF-8 JSON document used for persistence and files."""
        return self.model_dump_json(by_alias=True, indent=indent)

    def serialized_size(self) -> int:
        """Size in bytes of the persisted form."""
        return len(self.to_json().encode("utf-8"))

    def without_databases(self) -> SnapshotRecord:
        """Copy of this record with the embedded databases dropped."""
        return self.model_copy(update={"indexed_db": {}})


class CaptureReport(BaseModel):
    """Outcome of one capture, including any degrade steps taken."""

    snapshot: SnapshotRecord
    size_bytes: int
    degraded: bool = False
    dropped: list[str] = Field(default_factory=list)
    warnings: list[dict[str, Any]] = Field(default_factory=list)

    def summary(self) -> dict[str, Any]:
        """Counts per category for display."""
        return {
            "snapshot_id": self.snapshot.id,
            "name": self.snapshot.name,
            "domain": self.snapshot.domain,
            "cookies": self.snapshot.cookie_count,
            "local_storage": self.snapshot.local_storage_count,
            "session_storage": self.snapshot.session_storage_count,
            "indexed_db": self.snapshot.indexed_db_count,
            "size_bytes": self.size_bytes,
            "degraded": self.degraded,
            "dropped": list(self.dropped),
        }


class DatabaseReplayResult(BaseModel):
    """Per-database outcome of a recreate."""

    name: str
    collections_restored: int = 0
    records_restored: int = 0
    records_failed: int = 0
    elided: int = 0
    errors: list[dict[str, Any]] = Field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.errors


class RestoreState(Enum):
    """States of the restore state machine."""

    INIT = "init"
    DOMAIN_CHECK = "domain_check"
    COOKIE_REPLAY = "cookie_replay"
    STORE_REPLAY = "store_replay"
    DATABASE_REPLAY = "database_replay"
    FINALIZE = "finalize"
    DONE = "done"
    ABORTED = "aborted"
    FAILED = "failed"


class RestoreReport(BaseModel):
    """Aggregate counts and trace of one restore."""

    snapshot_id: str
    state: RestoreState = RestoreState.INIT
    transitions: list[RestoreState] = Field(default_factory=list)
    domain_decision: DomainDecision | None = None
    cookies_removed: int = 0
    cookies_restored: int = 0
    cookies_failed: int = 0
    local_storage_restored: int = 0
    session_storage_restored: int = 0
    databases_total: int = 0
    databases_restored: int = 0
    database_results: list[DatabaseReplayResult] = Field(default_factory=list)
    timer_armed: bool = False
    timed_out: bool = False
    reloaded: bool = False
    errors: list[dict[str, Any]] = Field(default_factory=list)

    @computed_field  # type: ignore[prop-decorator]
    @property
    def key_value_items_restored(self) -> int:
        return self.local_storage_restored + self.session_storage_restored

    @computed_field  # type: ignore[prop-decorator]
    @property
    def partial(self) -> bool:
        """Whether anything in the snapshot did not make it into the target."""
        return (
            self.cookies_failed > 0
            or self.timed_out
            or self.databases_restored < self.databases_total
            or bool(self.errors)
        )

    def summary(self) -> dict[str, Any]:
        return {
            "snapshot_id": self.snapshot_id,
            "state": self.state.value,
            "cookies_restored": self.cookies_restored,
            "cookies_failed": self.cookies_failed,
            "key_value_items_restored": self.key_value_items_restored,
            "databases_restored": self.databases_restored,
            "databases_total": self.databases_total,
            "timed_out": self.timed_out,
            "partial": self.partial,
        }


class ImportReport(BaseModel):
    """Outcome of importing one or more snapshot documents."""

    imported: list[str] = Field(default_factory=list)
    skipped: list[dict[str, Any]] = Field(default_factory=list)


class SnapshotSummary(BaseModel):
    """Catalog listing entry."""

    id: str
    name: str
    domain: str
    created_at: datetime
    cookie_count: int
    local_storage_count: int
    session_storage_count: int
    indexed_db_count: int
    matches_current_domain: bool = False
