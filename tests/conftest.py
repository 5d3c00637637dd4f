"""
Shared test fixtures and configurations for the session snapshot tests.
"""

import asyncio
import copy
from collections.abc import Iterator
from typing import Any
from unittest.mock import MagicMock

import pytest

from mcp_session_snapshot.catalog import MemoryCatalog
from mcp_session_snapshot.engine import SnapshotEngine
from mcp_session_snapshot.exceptions import TargetUnavailableError
from mcp_session_snapshot.library import SnapshotLibrary
from mcp_session_snapshot.mirrors import scripts
from mcp_session_snapshot.models import CookieRecord, SnapshotRecord
from mcp_session_snapshot.monitoring import performance_monitor
from mcp_session_snapshot.security import security_manager

SAMPLE_URL = "https://example.com/app"

SAMPLE_COOKIES = [
    {
        "name": "sid",
        "value": "abc123",
        "domain": "example.com",
        "path": "/",
        "expirationDate": 4102444800.0,
        "sameSite": "lax",
        "hostOnly": True,
        "session": False,
        "secure": True,
        "httpOnly": True,
        "storeId": "default",
    },
    {
        "name": "theme",
        "value": "dark",
        "domain": ".example.com",
        "path": "/",
        "expirationDate": None,
        "sameSite": "unspecified",
        "hostOnly": False,
        "session": True,
        "secure": False,
        "httpOnly": False,
        "storeId": "default",
    },
]


class FakeTarget:
    """In-memory browsing context answering the in-page snapshot scripts."""

    def __init__(
        self,
        url: str = SAMPLE_URL,
        *,
        key: str = "main",
        cookie_store_id: str = "default",
        cookies: list[dict[str, Any]] | None = None,
        local_storage: dict[str, str] | None = None,
        session_storage: dict[str, str] | None = None,
        databases: dict[str, dict[str, list[Any]]] | None = None,
    ) -> None:
        self._url = url
        self._key = key
        self._cookie_store_id = cookie_store_id
        self.cookies: list[dict[str, Any]] = copy.deepcopy(cookies or [])
        self.storage: dict[str, dict[str, str]] = {
            "localStorage": dict(local_storage or {}),
            "sessionStorage": dict(session_storage or {}),
        }
        self.databases: dict[str, dict[str, list[Any]]] = copy.deepcopy(databases or {})
        self.closed = False
        self.navigations: list[str] = []
        self.reloads = 0
        self.scripts_run: list[str] = []
        # Failure injection
        self.hang_databases: set[str] = set()
        self.rejected_cookies: set[str] = set()
        self.rejected_storage_keys: set[str] = set()
        self.failing_areas: set[str] = set()
        self.list_databases_error: Exception | None = None
        self.failing_collections: set[str] = set()
        self.reload_error: Exception | None = None

    @property
    def key(self) -> str:
        return self._key

    @property
    def url(self) -> str:
        return self._url

    @property
    def cookie_store_id(self) -> str:
        return self._cookie_store_id

    def is_attached(self) -> bool:
        return not self.closed

    def _ensure_open(self) -> None:
        if self.closed:
            raise TargetUnavailableError("Browsing context is closed", {"target": self._key})

    async def evaluate(self, script: str, arg: Any = None) -> Any:
        self._ensure_open()
        self.scripts_run.append(script)

        if script == scripts.READ_STORAGE:
            if arg in self.failing_areas:
                raise RuntimeError(f"{arg} is not available")
            return dict(self.storage[arg])
        if script == scripts.CLEAR_STORAGE:
            self.storage[arg].clear()
            return True
        if script == scripts.SET_STORAGE:
            if arg["area"] in self.failing_areas:
                raise RuntimeError(f"{arg['area']} is not available")
            store = self.storage[arg["area"]]
            if arg["clear"]:
                store.clear()
            restored, failed = 0, []
            for key, value in arg["items"].items():
                if key in self.rejected_storage_keys:
                    failed.append({"key": key, "error": "QuotaExceededError"})
                    continue
                store[key] = value
                restored += 1
            return {"restored": restored, "failed": failed}
        if script == scripts.LIST_DATABASES:
            if self.list_databases_error is not None:
                raise self.list_databases_error
            return list(self.databases)
        if script == scripts.EXPORT_DATABASE:
            return {
                "collections": copy.deepcopy(self.databases[arg["name"]]),
                "errors": {},
            }
        if script == scripts.RECREATE_DATABASE:
            if arg["name"] in self.hang_databases:
                await asyncio.Event().wait()
            self.databases[arg["name"]] = {name: [] for name in arg["collections"]}
            return {"created": list(arg["collections"])}
        if script == scripts.INSERT_RECORDS:
            if arg["collection"] in self.failing_collections:
                raise RuntimeError(f"ConstraintError in {arg['collection']}")
            collection = self.databases[arg["name"]][arg["collection"]]
            collection.extend(copy.deepcopy(arg["records"]))
            return {"added": len(arg["records"]), "failed": []}
        raise AssertionError("Unexpected script")

    async def get_cookies(self) -> list[dict[str, Any]]:
        self._ensure_open()
        return copy.deepcopy(self.cookies)

    async def set_cookie(self, cookie: dict[str, Any]) -> dict[str, Any]:
        self._ensure_open()
        if cookie["name"] in self.rejected_cookies:
            raise RuntimeError(f"Cookie {cookie['name']} rejected")
        self.cookies = [
            existing
            for existing in self.cookies
            if (existing["name"], existing["domain"], existing["path"])
            != (cookie["name"], cookie["domain"], cookie["path"])
        ]
        stored = {**cookie, "storeId": self._cookie_store_id}
        self.cookies.append(stored)
        return dict(stored)

    async def remove_cookie(self, name: str) -> bool:
        self._ensure_open()
        before = len(self.cookies)
        self.cookies = [cookie for cookie in self.cookies if cookie["name"] != name]
        return len(self.cookies) != before

    async def navigate(self, url: str) -> None:
        self._ensure_open()
        self.navigations.append(url)
        self._url = url

    async def reload(self) -> None:
        self._ensure_open()
        if self.reload_error is not None:
            raise self.reload_error
        self.reloads += 1


class MockContext(MagicMock):
    """Mock for MCP Context"""

    def __init__(self, *args: Any, **kwargs: Any) -> None:
        super().__init__(*args, **kwargs)
        self.lifespan_context: dict[str, Any] = {}

    async def report_progress(self, current: int, total: int) -> None:
        """Mock for report_progress method"""
        pass

    async def info(self, message: str) -> None:
        """Mock for info method"""
        pass

    async def error(self, message: str) -> None:
        """Mock for error method"""
        pass


def make_snapshot(**overrides: Any) -> SnapshotRecord:
    """Build a snapshot of example.com with one cookie and one local item."""
    data: dict[str, Any] = {
        "name": "example session",
        "url": SAMPLE_URL,
        "domain": "example.com",
        "cookies": [CookieRecord.model_validate(SAMPLE_COOKIES[0])],
        "local_storage": {"token": "xyz"},
    }
    data.update(overrides)
    return SnapshotRecord(**data)


@pytest.fixture
def fake_target() -> FakeTarget:
    """Return a target on example.com with cookies and both stores filled."""
    return FakeTarget(
        cookies=SAMPLE_COOKIES,
        local_storage={"token": "xyz", "lang": "en"},
        session_storage={"tab": "1"},
    )


@pytest.fixture
def catalog() -> MemoryCatalog:
    return MemoryCatalog()


@pytest.fixture
def library(catalog: MemoryCatalog) -> SnapshotLibrary:
    return SnapshotLibrary(catalog)


@pytest.fixture
def engine(library: SnapshotLibrary, fake_target: FakeTarget) -> SnapshotEngine:
    """Return an engine with the fake target attached and short replay timers."""
    snapshot_engine = SnapshotEngine(library, replay_timeout=0.2, settle_delay=0)
    snapshot_engine.attach(fake_target)
    return snapshot_engine


@pytest.fixture
def mock_context(engine: SnapshotEngine) -> MockContext:
    """Return a mock Context whose lifespan holds the test engine."""
    context = MockContext()
    context.lifespan_context = {"engine": engine, "browser": None}
    return context


@pytest.fixture(autouse=True)
def reset_security_manager() -> Iterator[None]:
    security_manager.reset()
    yield
    security_manager.reset()


@pytest.fixture(autouse=True)
def reset_performance_monitor() -> Iterator[None]:
    performance_monitor.reset()
    yield
    performance_monitor.reset()
