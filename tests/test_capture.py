"""Tests for the capture orchestrator and its degrade ladder."""

import pytest

from conftest import SAMPLE_COOKIES, FakeTarget
from mcp_session_snapshot.capture import CaptureOrchestrator, default_snapshot_name
from mcp_session_snapshot.catalog import MemoryCatalog
from mcp_session_snapshot.exceptions import (
    BackendError,
    PersistenceExhaustedError,
    TargetUnavailableError,
)
from mcp_session_snapshot.library import SnapshotLibrary
from mcp_session_snapshot.mirrors import scripts


def _target_with_database(records: int = 1, payload: str = "x") -> FakeTarget:
    return FakeTarget(
        cookies=SAMPLE_COOKIES,
        local_storage={"token": "xyz"},
        databases={"app": {"items": [{"n": i, "payload": payload} for i in range(records)]}},
    )


@pytest.mark.asyncio
async def test_capture_everything(fake_target, library):
    fake_target.databases = {"app": {"items": [{"n": 1, "raw": {"__opaque__": "Blob", "size": 3}}]}}
    report = await CaptureOrchestrator(fake_target, library).capture("before logout")

    snapshot = report.snapshot
    assert snapshot.name == "before logout"
    assert snapshot.domain == "example.com"
    assert snapshot.url == "https://example.com/app"
    assert snapshot.cookie_store_id == "default"
    assert snapshot.cookie_count == 2
    assert snapshot.local_storage == {"token": "xyz", "lang": "en"}
    assert snapshot.session_storage == {"tab": "1"}
    assert snapshot.indexed_db == {
        "app": {"items": [{"n": 1, "raw": {"__type": "Elided", "reason": "binary"}}]}
    }
    assert report.degraded is False
    assert report.warnings == []
    assert await library.get(snapshot.id) == snapshot


@pytest.mark.asyncio
async def test_default_name(fake_target, library):
    report = await CaptureOrchestrator(fake_target, library).capture()
    assert report.snapshot.name.startswith("example.com ")


def test_default_name_without_domain():
    assert default_snapshot_name("about:blank").startswith("snapshot ")


@pytest.mark.asyncio
async def test_database_capture_can_be_disabled(library):
    target = _target_with_database()
    report = await CaptureOrchestrator(target, library, capture_databases=False).capture("x")
    assert report.snapshot.indexed_db == {}
    assert scripts.LIST_DATABASES not in target.scripts_run


@pytest.mark.asyncio
async def test_oversized_snapshot_drops_databases():
    target = _target_with_database(records=20, payload="x" * 200)
    library = SnapshotLibrary(MemoryCatalog(), size_ceiling=2000)

    report = await CaptureOrchestrator(target, library, size_ceiling=2000).capture("big")

    assert report.degraded is True
    assert report.dropped == ["indexedDB"]
    assert report.snapshot.indexed_db == {}
    assert report.snapshot.cookie_count == 2
    assert report.size_bytes <= 2000
    stored = await library.get(report.snapshot.id)
    assert stored.indexed_db == {}
    assert stored.local_storage == {"token": "xyz"}


@pytest.mark.asyncio
async def test_catalog_quota_counts_as_failed_rung():
    target = _target_with_database(records=20, payload="x" * 200)
    library = SnapshotLibrary(MemoryCatalog(quota_bytes=2000))

    report = await CaptureOrchestrator(target, library).capture("quota")

    assert report.degraded is True
    assert report.dropped == ["indexedDB"]


@pytest.mark.asyncio
async def test_persistence_exhausted():
    target = FakeTarget(cookies=SAMPLE_COOKIES, local_storage={"blob": "x" * 5000})
    library = SnapshotLibrary(MemoryCatalog(), size_ceiling=1000)

    with pytest.raises(PersistenceExhaustedError) as excinfo:
        await CaptureOrchestrator(target, library, size_ceiling=1000).capture("huge")

    assert excinfo.value.details["attempts"][0]["reason"] == "size_ceiling"
    assert await library.list_snapshots() == []


@pytest.mark.asyncio
async def test_exhausted_after_dropping_databases():
    target = FakeTarget(
        cookies=SAMPLE_COOKIES,
        local_storage={"blob": "x" * 5000},
        databases={"app": {"items": [1]}},
    )
    library = SnapshotLibrary(MemoryCatalog(), size_ceiling=1000)

    with pytest.raises(PersistenceExhaustedError) as excinfo:
        await CaptureOrchestrator(target, library, size_ceiling=1000).capture("huge")

    attempts = excinfo.value.details["attempts"]
    assert [attempt["dropped"] for attempt in attempts] == [[], ["indexedDB"]]


@pytest.mark.asyncio
async def test_unreadable_store_becomes_warning(fake_target, library):
    fake_target.failing_areas.add("sessionStorage")
    report = await CaptureOrchestrator(fake_target, library).capture("x")
    assert report.snapshot.session_storage == {}
    assert report.snapshot.local_storage == {"token": "xyz", "lang": "en"}
    assert [warning["context"] for warning in report.warnings] == ["sessionStorage"]


@pytest.mark.asyncio
async def test_unreadable_databases_become_warning(fake_target, library):
    fake_target.list_databases_error = RuntimeError("indexedDB disabled")
    report = await CaptureOrchestrator(fake_target, library).capture("x")
    assert report.snapshot.indexed_db == {}
    assert report.warnings[0]["context"] == "indexedDB"
    assert report.warnings[0]["error_type"] == "BackendError"


@pytest.mark.asyncio
async def test_cookie_failure_is_fatal(fake_target, library):
    async def broken_jar():
        raise RuntimeError("jar locked")

    fake_target.get_cookies = broken_jar
    with pytest.raises(BackendError):
        await CaptureOrchestrator(fake_target, library).capture("x")
    assert await library.list_snapshots() == []


@pytest.mark.asyncio
async def test_closed_target(fake_target, library):
    fake_target.closed = True
    with pytest.raises(TargetUnavailableError):
        await CaptureOrchestrator(fake_target, library).capture("x")
