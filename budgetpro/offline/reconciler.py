"""Sync reconciler: replays the pending write queue against the server.

One reconciliation pass folds over an ordered snapshot of the queue and
produces a SyncReport:

  - accepted by the server   -> confirmed, continue
  - no usable response       -> stop; this item and everything after it stay
                                queued in their original order
  - declined with 400/404/409/422 -> rejected (dropped, kept in diagnostics),
                                continue
  - declined with 401/403 or 5xx -> stop, item kept (session or server trouble
                                is not a property of the record)

Confirmed and rejected ids are removed in a single queue update when the pass
ends, however it ends. At most one pass runs at a time; triggers that arrive
meanwhile are coalesced into exactly one follow-up pass. An automatic trigger
held back by the retry backoff is re-fired once the delay has passed.
"""

from __future__ import annotations

import asyncio
import inspect
import logging
import time
import uuid
from collections import deque
from dataclasses import dataclass, field, replace
from typing import Any, Callable, Deque, FrozenSet, List, Optional, Tuple

from budgetpro.core.logging import sync_pass_ctx
from .errors import ApplicationRejection, TransportError, UnexpectedResponse
from .queue import PendingExpense, PendingWriteQueue
from .remote import RemoteClient

logger = logging.getLogger("budgetpro.offline.sync")

RECONNECT = "reconnect"
STARTUP = "startup"
MANUAL = "manual"
AUTOMATIC_REASONS = frozenset({RECONNECT, STARTUP})


@dataclass(frozen=True)
class Rejection:
    local_id: str
    name: str
    status_code: int
    reason: str


@dataclass(frozen=True)
class SyncReport:
    confirmed: FrozenSet[str] = frozenset()
    rejected: Tuple[Rejection, ...] = ()
    stopped_early: bool = False
    stop_reason: Optional[str] = None
    attempted: int = 0
    skipped: bool = False

    @classmethod
    def empty(cls) -> "SyncReport":
        return cls()

    @property
    def consumed(self) -> FrozenSet[str]:
        """Ids that leave the queue: confirmed plus rejected."""
        return self.confirmed | {r.local_id for r in self.rejected}

    def confirm(self, local_id: str) -> "SyncReport":
        return replace(
            self, confirmed=self.confirmed | {local_id}, attempted=self.attempted + 1
        )

    def reject(self, rejection: Rejection) -> "SyncReport":
        return replace(
            self, rejected=self.rejected + (rejection,), attempted=self.attempted + 1
        )

    def stop(self, reason: str) -> "SyncReport":
        return replace(
            self, stopped_early=True, stop_reason=reason, attempted=self.attempted + 1
        )


@dataclass
class RetryBackoff:
    """Exponential delay between automatic passes after a failed one."""

    initial: float = 5.0
    maximum: float = 300.0
    clock: Callable[[], float] = time.monotonic
    failures: int = 0
    _not_before: float = field(default=0.0, repr=False)

    def ready(self) -> bool:
        return self.failures == 0 or self.clock() >= self._not_before

    @property
    def delay(self) -> float:
        if self.failures == 0:
            return 0.0
        return min(self.initial * (2 ** (self.failures - 1)), self.maximum)

    @property
    def remaining(self) -> float:
        """Seconds until an automatic pass may run again."""
        if self.failures == 0:
            return 0.0
        return max(0.0, self._not_before - self.clock())

    def record_failure(self) -> None:
        self.failures += 1
        self._not_before = self.clock() + self.delay

    def reset(self) -> None:
        self.failures = 0
        self._not_before = 0.0


class SyncReconciler:
    def __init__(
        self,
        queue: PendingWriteQueue,
        remote: RemoteClient,
        backoff: Optional[RetryBackoff] = None,
        diagnostics_limit: int = 100,
    ):
        self._queue = queue
        self._remote = remote
        self._backoff = backoff or RetryBackoff()
        self._refresh_hooks: List[Callable[[], Any]] = []
        self._task: Optional[asyncio.Task] = None
        self._followup = False
        self._deferred: Optional[asyncio.TimerHandle] = None
        self.diagnostics: Deque[Rejection] = deque(maxlen=diagnostics_limit)
        self.passes_run = 0
        self.last_report: Optional[SyncReport] = None

    @property
    def in_flight(self) -> bool:
        return self._task is not None and not self._task.done()

    @property
    def retry_scheduled(self) -> bool:
        return self._deferred is not None

    @property
    def backoff(self) -> RetryBackoff:
        return self._backoff

    def add_refresh_hook(self, hook: Callable[[], Any]) -> None:
        """Called (and awaited if it returns an awaitable) after a pass confirms writes."""
        self._refresh_hooks.append(hook)

    def close(self) -> None:
        """Drop the scheduled retry, if any; an in-flight pass runs to completion."""
        if self._deferred is not None:
            self._deferred.cancel()
            self._deferred = None

    # Triggers --------------------------------------------------
    def trigger(self, reason: str = MANUAL) -> Optional[asyncio.Task]:
        """Start a pass, or flag a follow-up if one is already running.

        Returns the in-flight task, or None when an automatic trigger is
        held back by the retry backoff. A held-back trigger is retried once
        the backoff delay has passed (one pending retry at most).
        """
        if self.in_flight:
            logger.debug("sync already running, coalescing %s trigger", reason)
            self._followup = True
            return self._task
        loop = asyncio.get_running_loop()
        if reason in AUTOMATIC_REASONS and not self._backoff.ready():
            logger.info(
                "holding %s sync for %.1fs, retry backoff active",
                reason,
                self._backoff.remaining,
            )
            if self._deferred is None:
                self._deferred = loop.call_later(
                    self._backoff.remaining, self._fire_deferred, reason
                )
            return None
        self.close()
        self._task = loop.create_task(self._drain(reason))
        self._task.add_done_callback(self._report_task_failure)
        return self._task

    def _fire_deferred(self, reason: str) -> None:
        self._deferred = None
        self.trigger(reason)

    async def request_sync(self, reason: str = MANUAL) -> SyncReport:
        task = self.trigger(reason)
        if task is None:
            return replace(SyncReport.empty(), skipped=True)
        return await asyncio.shield(task)

    async def _drain(self, reason: str) -> SyncReport:
        try:
            report = await self._run_tagged(reason)
            while self._followup:
                self._followup = False
                report = await self._run_tagged("followup")
            return report
        finally:
            self._followup = False

    async def _run_tagged(self, reason: str) -> SyncReport:
        token = sync_pass_ctx.set(uuid.uuid4().hex[:8])
        try:
            logger.debug("sync pass started (%s)", reason)
            report = await self._run_pass()
        finally:
            sync_pass_ctx.reset(token)
        if report.stopped_early:
            self._backoff.record_failure()
        else:
            self._backoff.reset()
        return report

    @staticmethod
    def _report_task_failure(task: asyncio.Task) -> None:
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.error("sync pass failed", exc_info=exc)

    # The pass itself -------------------------------------------
    async def _run_pass(self) -> SyncReport:
        """Replay the queue once, in order; see the module docstring.

        Only reached through trigger()/request_sync(), which keep passes from
        overlapping. Whatever ends the pass (including an unexpected error or
        cancellation), the ids settled so far leave the queue.
        """
        self.passes_run += 1
        snapshot = self._queue.peek_all()
        if not snapshot:
            self.last_report = SyncReport.empty()
            return self.last_report

        logger.info("synchronizing %d pending expense(s)", len(snapshot))
        report = SyncReport()
        try:
            for item in snapshot:
                report = await self._replay(report, item)
                if report.stopped_early:
                    break
        finally:
            self._queue.remove(report.consumed)
            self.last_report = report

        if report.stopped_early:
            logger.info(
                "sync stopped after %d of %d item(s): %s",
                report.attempted,
                len(snapshot),
                report.stop_reason,
            )
        if report.confirmed:
            logger.info("%d expense(s) synchronized", len(report.confirmed))
            await self._refresh()
        return report

    async def _replay(self, report: SyncReport, item: PendingExpense) -> SyncReport:
        try:
            await self._remote.create_expense(item.to_payload())
        except UnexpectedResponse as e:
            return report.stop(f"unusable answer from server: {e}")
        except TransportError as e:
            return report.stop(f"no response from server: {e}")
        except ApplicationRejection as e:
            if not e.consumes_queue_slot:
                return report.stop(f"server declined with HTTP {e.status_code}: {e.reason}")
            rejection = Rejection(
                local_id=item.local_id,
                name=item.name,
                status_code=e.status_code,
                reason=e.reason,
            )
            self.diagnostics.append(rejection)
            logger.warning(
                "queued expense '%s' rejected by server (HTTP %d): %s",
                item.name,
                e.status_code,
                e.reason,
            )
            return report.reject(rejection)
        return report.confirm(item.local_id)

    async def _refresh(self) -> None:
        for hook in list(self._refresh_hooks):
            try:
                result = hook()
                if inspect.isawaitable(result):
                    await result
            except Exception:
                logger.exception("refresh hook failed after sync")
