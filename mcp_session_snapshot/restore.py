"""
Restore orchestrator.

Replays a snapshot onto a target as an explicit state machine::

    INIT -> DOMAIN_CHECK -> COOKIE_REPLAY -> STORE_REPLAY
         -> DATABASE_REPLAY -> FINALIZE -> DONE

``ABORTED`` is reachable only from ``DOMAIN_CHECK``; ``FAILED`` only from a
replay stage when the target goes away. Every other failure is recorded in
the report and the sequence carries on.
"""

from __future__ import annotations

import asyncio
import logging

from .config import DATABASE_REPLAY_TIMEOUT, DATABASE_SETTLE_DELAY
from .exceptions import (
    BackendError,
    ErrorResult,
    NotFoundError,
    ReplayTimeoutError,
    RestoreAbortedError,
    SnapshotEngineError,
    TargetUnavailableError,
    ValidationError,
    guarded,
)
from .mirrors import CookieMirror, DatabaseMirror, KeyValueStoreMirror
from .models import DatabaseReplayResult, RestoreReport, RestoreState, SnapshotRecord, extract_domain
from .security import security_manager
from .typing_utils import DomainDecision, DomainDecisionChannel, TargetContext

logger = logging.getLogger("mcp_session_snapshot.restore")


class StaticDecisionChannel:
    """Answers every domain mismatch with the same decision."""

    def __init__(self, decision: DomainDecision = "cancel") -> None:
        self.decision = decision
        self.asked: list[tuple[str, str]] = []

    async def decide(self, snapshot_domain: str, current_domain: str) -> DomainDecision:
        self.asked.append((snapshot_domain, current_domain))
        return self.decision


class FutureDecisionChannel:
    """
    Suspends the restore until someone resolves or cancels the decision.

    ``cancel()`` cancels the pending continuation; the restore treats that as
    a "cancel" decision.
    """

    def __init__(self) -> None:
        self._future: asyncio.Future[DomainDecision] | None = None
        self._prompted = asyncio.Event()
        self.pending: tuple[str, str] | None = None

    async def decide(self, snapshot_domain: str, current_domain: str) -> DomainDecision:
        future: asyncio.Future[DomainDecision] = asyncio.get_running_loop().create_future()
        self._future = future
        self.pending = (snapshot_domain, current_domain)
        self._prompted.set()
        try:
            return await future
        except asyncio.CancelledError:
            task = asyncio.current_task()
            if future.cancelled() and task is not None and not task.cancelling():
                return "cancel"
            raise
        finally:
            self.pending = None
            self._future = None
            self._prompted.clear()

    async def wait_for_prompt(self) -> tuple[str, str]:
        """Wait until a restore is suspended on this channel."""
        await self._prompted.wait()
        assert self.pending is not None
        return self.pending

    def resolve(self, decision: DomainDecision) -> None:
        if self._future is None or self._future.done():
            raise RuntimeError("No domain decision is pending")
        self._future.set_result(decision)

    def cancel(self) -> None:
        if self._future is not None and not self._future.done():
            self._future.cancel()


class RestoreOrchestrator:
    """Replays snapshots onto one target."""

    def __init__(
        self,
        target: TargetContext,
        decisions: DomainDecisionChannel,
        *,
        replay_timeout: float = DATABASE_REPLAY_TIMEOUT,
        settle_delay: float = DATABASE_SETTLE_DELAY,
    ) -> None:
        self.target = target
        self.decisions = decisions
        self.replay_timeout = replay_timeout
        self.settle_delay = settle_delay
        self.cookies = CookieMirror(target)
        self.local_storage = KeyValueStoreMirror(target, "localStorage")
        self.session_storage = KeyValueStoreMirror(target, "sessionStorage")
        self.databases = DatabaseMirror(target)

    def _enter(self, report: RestoreReport, state: RestoreState) -> None:
        report.state = state
        report.transitions.append(state)
        logger.debug("Restore %s -> %s", report.snapshot_id, state.value)

    @staticmethod
    def _record(report: RestoreReport, exc: Exception, context: str, recoverable: bool = True) -> None:
        report.errors.append(ErrorResult(exc, context=context, recoverable=recoverable).to_dict())

    async def restore(self, snapshot: SnapshotRecord) -> RestoreReport:
        """Run the state machine to a terminal state and return the report."""
        report = RestoreReport(snapshot_id=snapshot.id)
        self._enter(report, RestoreState.INIT)

        self._enter(report, RestoreState.DOMAIN_CHECK)
        if not await self._check_domain(snapshot, report):
            self._enter(report, RestoreState.ABORTED)
            logger.info("Restore of %s aborted at domain check", snapshot.id)
            return report

        try:
            self._enter(report, RestoreState.COOKIE_REPLAY)
            await self._replay_cookies(snapshot, report)

            self._enter(report, RestoreState.STORE_REPLAY)
            await self._replay_stores(snapshot, report)

            if snapshot.indexed_db:
                self._enter(report, RestoreState.DATABASE_REPLAY)
                await self._replay_databases(snapshot, report)

            self._enter(report, RestoreState.FINALIZE)
            await self._finalize(report)
        except TargetUnavailableError as exc:
            logger.error("Restore of %s failed during %s: %s", snapshot.id, report.state.value, exc)
            self._record(report, exc, report.state.value, recoverable=False)
            self._enter(report, RestoreState.FAILED)
            return report

        self._enter(report, RestoreState.DONE)
        logger.info(
            "Restored %s: %d cookie(s), %d key-value item(s), %d/%d database(s)",
            snapshot.id,
            report.cookies_restored,
            report.key_value_items_restored,
            report.databases_restored,
            report.databases_total,
        )
        return report

    async def _check_domain(self, snapshot: SnapshotRecord, report: RestoreReport) -> bool:
        current_domain = extract_domain(self.target.url)
        if not snapshot.domain or snapshot.domain == current_domain:
            return True

        logger.info(
            "Snapshot %s belongs to %s but target is on %s",
            snapshot.id,
            snapshot.domain,
            current_domain or self.target.url,
        )
        try:
            decision = await guarded(
                self.decisions.decide(snapshot.domain, current_domain), "domain decision"
            )
        except SnapshotEngineError as exc:
            logger.error("No domain decision for %s: %s", snapshot.id, exc)
            self._record(report, exc, "domain_check")
            return False
        report.domain_decision = decision

        if decision == "proceed":
            return True
        if decision == "navigate":
            destination = snapshot.url
            # Imported snapshots may carry any scheme; only web pages are opened
            if not destination or not security_manager.validate_url_safety(destination):
                destination = f"https://{snapshot.domain}/"
            try:
                await guarded(self.target.navigate(destination), "navigate", url=destination)
            except SnapshotEngineError as exc:
                self._record(report, exc, "domain_check")
                return False
        self._record(
            report,
            RestoreAbortedError(
                f"Restore stopped at domain check ({decision})",
                {"snapshot_domain": snapshot.domain, "current_domain": current_domain},
            ),
            "domain_check",
        )
        return False

    async def _finalize(self, report: RestoreReport) -> None:
        try:
            await guarded(self.target.reload(), "reload", target=self.target.key)
        except TargetUnavailableError:
            raise
        except BackendError as exc:
            # Replayed state is already in place; the page just shows stale content
            logger.error("Reload after restore of %s failed: %s", report.snapshot_id, exc)
            self._record(report, exc, "finalize")
            return
        report.reloaded = True

    async def _replay_cookies(self, snapshot: SnapshotRecord, report: RestoreReport) -> None:
        try:
            existing = await self.cookies.list_all()
        except TargetUnavailableError:
            raise
        except BackendError as exc:
            logger.error("Could not list cookies before replay: %s", exc)
            self._record(report, exc, "cookie_replay")
            existing = []

        for name in dict.fromkeys(cookie.name for cookie in existing):
            try:
                await self.cookies.remove(name)
                report.cookies_removed += 1
            except NotFoundError:
                continue
            except TargetUnavailableError:
                raise
            except BackendError as exc:
                logger.warning("Could not remove cookie %s: %s", name, exc)
                self._record(report, exc, f"cookie:{name}")

        store_id = self.target.cookie_store_id
        for cookie in snapshot.cookies:
            try:
                await self.cookies.write(cookie.model_copy(update={"store_id": store_id}))
                report.cookies_restored += 1
            except TargetUnavailableError:
                raise
            except (ValidationError, BackendError) as exc:
                logger.warning("Could not restore cookie %s: %s", cookie.name, exc)
                report.cookies_failed += 1
                self._record(report, exc, f"cookie:{cookie.name}")

    async def _replay_stores(self, snapshot: SnapshotRecord, report: RestoreReport) -> None:
        for mirror, items in (
            (self.local_storage, snapshot.local_storage),
            (self.session_storage, snapshot.session_storage),
        ):
            try:
                restored = await mirror.replace(items)
            except TargetUnavailableError:
                raise
            except BackendError as exc:
                logger.error("Could not replay %s: %s", mirror.area, exc)
                self._record(report, exc, mirror.area)
                continue
            for failure in mirror.last_failures:
                report.errors.append(
                    {
                        "error_type": "BackendError",
                        "message": str(failure.get("error", "")),
                        "context": f"{mirror.area}:{failure.get('key')}",
                        "recoverable": True,
                        "details": {},
                    }
                )
            if mirror.area == "localStorage":
                report.local_storage_restored = restored
            else:
                report.session_storage_restored = restored

    async def _replay_databases(self, snapshot: SnapshotRecord, report: RestoreReport) -> None:
        report.databases_total = len(snapshot.indexed_db)
        tasks: dict[asyncio.Task[DatabaseReplayResult], str] = {
            asyncio.create_task(self.databases.recreate(name, collections), name=f"recreate:{name}"): name
            for name, collections in snapshot.indexed_db.items()
        }
        report.timer_armed = True
        done, pending = await asyncio.wait(tasks, timeout=self.replay_timeout)

        if pending:
            report.timed_out = True
            for task in pending:
                task.cancel()
            await asyncio.gather(*pending, return_exceptions=True)
            unfinished = sorted(tasks[task] for task in pending)
            logger.warning(
                "Database replay did not settle within %.1fs; unfinished: %s",
                self.replay_timeout,
                ", ".join(unfinished),
            )
            self._record(
                report,
                ReplayTimeoutError(
                    f"Database replay timed out after {self.replay_timeout}s",
                    {"unfinished": unfinished},
                ),
                "database_replay",
            )

        for task in done:
            name = tasks[task]
            exc = task.exception()
            if isinstance(exc, TargetUnavailableError):
                raise exc
            if exc is not None:
                logger.error("Database %s could not be restored: %s", name, exc)
                self._record(report, exc, name)
                continue
            result = task.result()
            report.database_results.append(result)
            if result.ok:
                report.databases_restored += 1

        if not pending:
            # Let the last commits land before the target reloads
            await asyncio.sleep(self.settle_delay)
