"""Tests for the engine session: targets, per-target exclusivity and catalog state."""

import asyncio

import pytest

from conftest import FakeTarget, make_snapshot
from mcp_session_snapshot.exceptions import ExportBlockedError, NotFoundError, TargetBusyError
from mcp_session_snapshot.models import RestoreState
from mcp_session_snapshot.restore import FutureDecisionChannel
from mcp_session_snapshot.security import LockedCredentialGate, ResourceType, SecurityManager


def test_get_target(engine, fake_target):
    assert engine.get_target() is fake_target
    assert engine.get_target("main") is fake_target
    with pytest.raises(NotFoundError):
        engine.get_target("popup")


def test_get_target_requires_a_key_with_several_targets(engine):
    engine.attach(FakeTarget(key="popup"))
    with pytest.raises(NotFoundError) as excinfo:
        engine.get_target()
    assert excinfo.value.details["targets"] == ["main", "popup"]

    engine.detach("popup")
    engine.detach("main")
    with pytest.raises(NotFoundError):
        engine.get_target()


@pytest.mark.asyncio
async def test_capture_then_restore(engine, fake_target):
    report = await engine.capture(fake_target, "round trip")

    fake_target.cookies.clear()
    fake_target.storage["localStorage"].clear()
    restored = await engine.restore(fake_target, report.snapshot.id)

    assert restored.state is RestoreState.DONE
    assert restored.cookies_restored == 2
    assert fake_target.storage["localStorage"] == {"token": "xyz", "lang": "en"}
    assert not engine.is_busy(fake_target)


@pytest.mark.asyncio
async def test_restore_unknown_snapshot(engine, fake_target):
    with pytest.raises(NotFoundError):
        await engine.restore(fake_target, "snap-missing")


@pytest.mark.asyncio
async def test_mismatched_restore_defaults_to_cancel(engine):
    target = FakeTarget("https://other.org/", key="other")
    engine.attach(target)
    report = await engine.restore_record(target, make_snapshot())
    assert report.state is RestoreState.ABORTED


@pytest.mark.asyncio
async def test_overlapping_operations_on_one_target_are_rejected(engine):
    target = FakeTarget("https://other.org/", key="other")
    engine.attach(target)
    decisions = FutureDecisionChannel()
    running = asyncio.create_task(engine.restore_record(target, make_snapshot(), decisions))
    await decisions.wait_for_prompt()

    assert engine.is_busy(target)
    with pytest.raises(TargetBusyError):
        await engine.capture(target, "during restore")
    # Other targets are not blocked
    await engine.capture(engine.get_target("main"), "elsewhere")

    decisions.resolve("cancel")
    report = await running
    assert report.state is RestoreState.ABORTED
    assert not engine.is_busy(target)


@pytest.mark.asyncio
async def test_listing_tracks_loaded_snapshots(engine, fake_target):
    first = (await engine.capture(fake_target, "first")).snapshot
    second = (await engine.capture(fake_target, "second")).snapshot

    summaries = await engine.list_snapshots(fake_target)
    assert set(engine.loaded) == {first.id, second.id}
    assert all(summary.matches_current_domain for summary in summaries)

    await engine.rename(first.id, "renamed")
    assert engine.loaded[first.id].name == "renamed"

    await engine.delete(second.id)
    assert set(engine.loaded) == {first.id}

    assert await engine.clear() == 1
    assert engine.loaded == {}


@pytest.mark.asyncio
async def test_export_goes_through_gate(engine, fake_target):
    manager = SecurityManager()
    engine.gate = LockedCredentialGate(manager)
    snapshot = (await engine.capture(fake_target, "secret")).snapshot

    with pytest.raises(ExportBlockedError):
        await engine.export(snapshot.id)

    manager.grant_clearance(ResourceType.SNAPSHOT_EXPORT, ttl_seconds=60)
    filename, _document = await engine.export(snapshot.id)
    assert filename.endswith(f"{snapshot.id}.json")
    assert "sid=abc123" in await engine.export_cookies(snapshot.id, "header")


@pytest.mark.asyncio
async def test_import_document(engine):
    snapshot = await engine.import_document(make_snapshot().to_json())
    assert (await engine.get(snapshot.id)).name == "example session"
