"""Tests for the restore state machine."""

import asyncio

import pytest

from conftest import SAMPLE_COOKIES, FakeTarget, make_snapshot
from mcp_session_snapshot.models import CookieRecord, RestoreState
from mcp_session_snapshot.restore import (
    FutureDecisionChannel,
    RestoreOrchestrator,
    StaticDecisionChannel,
)


def _orchestrator(target, decisions=None, **kwargs):
    kwargs.setdefault("replay_timeout", 0.2)
    kwargs.setdefault("settle_delay", 0)
    return RestoreOrchestrator(target, decisions or StaticDecisionChannel("cancel"), **kwargs)


@pytest.mark.asyncio
async def test_end_to_end_restore_without_databases():
    target = FakeTarget(
        cookies=[{**SAMPLE_COOKIES[1], "name": "stale"}],
        local_storage={"old": "1"},
        session_storage={"old": "2"},
    )
    snapshot = make_snapshot()

    report = await _orchestrator(target).restore(snapshot)

    assert report.state is RestoreState.DONE
    assert report.transitions == [
        RestoreState.INIT,
        RestoreState.DOMAIN_CHECK,
        RestoreState.COOKIE_REPLAY,
        RestoreState.STORE_REPLAY,
        RestoreState.FINALIZE,
        RestoreState.DONE,
    ]
    assert report.cookies_removed == 1
    assert report.cookies_restored == 1
    assert report.key_value_items_restored == 1
    assert report.timer_armed is False
    assert report.partial is False
    assert report.reloaded is True
    assert target.reloads == 1

    assert [cookie["name"] for cookie in target.cookies] == ["sid"]
    assert target.storage == {"localStorage": {"token": "xyz"}, "sessionStorage": {}}


@pytest.mark.asyncio
async def test_cookies_are_written_into_the_target_partition():
    target = FakeTarget(cookie_store_id="container-2")
    cookie = CookieRecord.model_validate({**SAMPLE_COOKIES[0], "storeId": "firefox-default"})

    await _orchestrator(target).restore(make_snapshot(cookies=[cookie]))

    assert target.cookies[0]["storeId"] == "container-2"


@pytest.mark.asyncio
async def test_same_domain_never_asks():
    decisions = StaticDecisionChannel("cancel")
    report = await _orchestrator(FakeTarget(), decisions).restore(make_snapshot())
    assert decisions.asked == []
    assert report.state is RestoreState.DONE


@pytest.mark.asyncio
async def test_domain_mismatch_cancel():
    target = FakeTarget("https://other.org/", local_storage={"keep": "me"})
    decisions = StaticDecisionChannel("cancel")

    report = await _orchestrator(target, decisions).restore(make_snapshot())

    assert decisions.asked == [("example.com", "other.org")]
    assert report.state is RestoreState.ABORTED
    assert report.domain_decision == "cancel"
    assert report.errors[0]["error_type"] == "RestoreAbortedError"
    assert target.storage["localStorage"] == {"keep": "me"}
    assert target.reloads == 0


@pytest.mark.asyncio
async def test_domain_mismatch_navigate():
    target = FakeTarget("https://other.org/")

    report = await _orchestrator(target, StaticDecisionChannel("navigate")).restore(make_snapshot())

    assert report.state is RestoreState.ABORTED
    assert report.domain_decision == "navigate"
    assert target.navigations == ["https://example.com/app"]
    assert target.cookies == []


@pytest.mark.asyncio
async def test_navigate_without_url_uses_domain():
    target = FakeTarget("https://other.org/")
    snapshot = make_snapshot(url="")

    await _orchestrator(target, StaticDecisionChannel("navigate")).restore(snapshot)

    assert target.navigations == ["https://example.com/"]


@pytest.mark.asyncio
async def test_domain_mismatch_proceed():
    target = FakeTarget("https://other.org/")
    report = await _orchestrator(target, StaticDecisionChannel("proceed")).restore(make_snapshot())
    assert report.state is RestoreState.DONE
    assert report.domain_decision == "proceed"
    assert report.cookies_restored == 1


@pytest.mark.asyncio
async def test_restore_suspends_until_decision_resolved():
    target = FakeTarget("https://other.org/")
    decisions = FutureDecisionChannel()
    restore = asyncio.create_task(_orchestrator(target, decisions).restore(make_snapshot()))

    assert await decisions.wait_for_prompt() == ("example.com", "other.org")
    await asyncio.sleep(0)
    assert not restore.done()
    assert target.cookies == []

    decisions.resolve("proceed")
    report = await restore

    assert report.state is RestoreState.DONE
    assert report.cookies_restored == 1


@pytest.mark.asyncio
async def test_cancelled_decision_aborts():
    target = FakeTarget("https://other.org/")
    decisions = FutureDecisionChannel()
    restore = asyncio.create_task(_orchestrator(target, decisions).restore(make_snapshot()))

    await decisions.wait_for_prompt()
    decisions.cancel()
    report = await restore

    assert report.state is RestoreState.ABORTED
    assert report.domain_decision == "cancel"


def test_resolve_without_pending_decision():
    with pytest.raises(RuntimeError):
        FutureDecisionChannel().resolve("proceed")


@pytest.mark.asyncio
async def test_database_replay():
    target = FakeTarget()
    snapshot = make_snapshot(indexed_db={"app": {"items": [{"n": 1}, {"n": 2}]}, "cache": {}})

    report = await _orchestrator(target).restore(snapshot)

    assert report.state is RestoreState.DONE
    assert RestoreState.DATABASE_REPLAY in report.transitions
    assert report.timer_armed is True
    assert report.timed_out is False
    assert report.databases_total == 2
    assert report.databases_restored == 2
    assert target.databases == {"app": {"items": [{"n": 1}, {"n": 2}]}, "cache": {}}


@pytest.mark.asyncio
async def test_fallback_timer_reloads_anyway():
    target = FakeTarget()
    target.hang_databases.add("stuck")
    snapshot = make_snapshot(indexed_db={"stuck": {"items": [1]}, "fine": {"items": [2]}})

    report = await _orchestrator(target, replay_timeout=0.1).restore(snapshot)

    assert report.state is RestoreState.DONE
    assert report.timer_armed is True
    assert report.timed_out is True
    assert report.partial is True
    assert report.databases_restored == 1
    assert report.reloaded is True
    assert target.reloads == 1
    timeout_errors = [error for error in report.errors if error["error_type"] == "ReplayTimeoutError"]
    assert timeout_errors[0]["details"]["unfinished"] == ["stuck"]


@pytest.mark.asyncio
async def test_cookie_failures_do_not_stop_restore():
    target = FakeTarget()
    target.rejected_cookies.add("sid")
    cookies = [CookieRecord.model_validate(cookie) for cookie in SAMPLE_COOKIES]

    report = await _orchestrator(target).restore(make_snapshot(cookies=cookies))

    assert report.state is RestoreState.DONE
    assert report.cookies_restored == 1
    assert report.cookies_failed == 1
    assert report.key_value_items_restored == 1
    assert report.partial is True


@pytest.mark.asyncio
async def test_store_item_failures_are_recorded():
    target = FakeTarget()
    target.rejected_storage_keys.add("token")

    report = await _orchestrator(target).restore(make_snapshot())

    assert report.state is RestoreState.DONE
    assert report.key_value_items_restored == 0
    assert report.errors[0]["context"] == "localStorage:token"
    assert report.partial is True


@pytest.mark.asyncio
async def test_closed_target_fails():
    target = FakeTarget()
    target.closed = True

    report = await _orchestrator(target).restore(make_snapshot())

    assert report.state is RestoreState.FAILED
    assert report.transitions[-2] is RestoreState.COOKIE_REPLAY
    assert report.errors[-1]["recoverable"] is False


@pytest.mark.asyncio
@pytest.mark.parametrize("url", ["file:///etc/passwd", "javascript:alert(1)"])
async def test_navigate_refuses_non_web_urls(url):
    target = FakeTarget("https://other.org/")

    report = await _orchestrator(target, StaticDecisionChannel("navigate")).restore(make_snapshot(url=url))

    assert report.state is RestoreState.ABORTED
    assert target.navigations == ["https://example.com/"]


class BrokenDecisionChannel:
    async def decide(self, snapshot_domain, current_domain):
        raise RuntimeError("client went away")


@pytest.mark.asyncio
async def test_failing_decision_channel_aborts():
    target = FakeTarget("https://other.org/")

    report = await _orchestrator(target, BrokenDecisionChannel()).restore(make_snapshot())

    assert report.state is RestoreState.ABORTED
    assert report.domain_decision is None
    assert report.errors[0]["error_type"] == "BackendError"
    assert report.errors[0]["context"] == "domain_check"
    assert target.cookies == []


@pytest.mark.asyncio
async def test_reload_failure_keeps_report():
    target = FakeTarget()
    target.reload_error = RuntimeError("Timeout 30000ms exceeded")

    report = await _orchestrator(target).restore(make_snapshot())

    assert report.state is RestoreState.DONE
    assert RestoreState.FINALIZE in report.transitions
    assert report.cookies_restored == 1
    assert report.key_value_items_restored == 1
    assert report.reloaded is False
    assert report.partial is True
    assert report.errors[-1]["context"] == "finalize"
    assert "Timeout 30000ms exceeded" in report.errors[-1]["message"]
    assert [cookie["name"] for cookie in target.cookies] == ["sid"]
