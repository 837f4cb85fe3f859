"""Replay semantics of the sync reconciler against a scripted server."""
import asyncio
import json

import httpx
import pytest

from budgetpro.offline.queue import PendingWriteQueue
from budgetpro.offline.reconciler import (
    MANUAL,
    RECONNECT,
    STARTUP,
    RetryBackoff,
    SyncReconciler,
    SyncReport,
)
from budgetpro.offline.remote import RemoteClient

from conftest import expense


class ScriptedServer:
    """Answers POST /api/expenses by record name; unknown names are accepted."""

    def __init__(self, script=None):
        self.script = dict(script or {})
        self.posted = []
        self._next_id = 0

    def __call__(self, request: httpx.Request) -> httpx.Response:
        name = json.loads(request.content)["name"]
        outcome = self.script.get(name, 201)
        if outcome == "down":
            raise httpx.ConnectError("connection refused", request=request)
        self.posted.append(name)
        if outcome == "portal":
            return httpx.Response(
                200,
                content=b"<html>login to wifi</html>",
                headers={"content-type": "text/html"},
            )
        if outcome == "crash":
            raise RuntimeError("handler blew up")
        if outcome == 201:
            self._next_id += 1
            return httpx.Response(201, json={"id": self._next_id, "message": "Expense saved"})
        return httpx.Response(outcome, json={"error": "rejected", "detail": f"no ({outcome})"})


def build(store, handler, backoff=None):
    http = httpx.AsyncClient(base_url="http://testserver", transport=httpx.MockTransport(handler))
    queue = PendingWriteQueue(store)
    reconciler = SyncReconciler(queue, RemoteClient(http), backoff=backoff)
    return queue, reconciler


def fill(queue, *names):
    return [queue.enqueue(expense(name=n)) for n in names]


def test_all_items_confirmed_in_order(store):
    server = ScriptedServer()
    queue, reconciler = build(store, server)
    items = fill(queue, "A", "B", "C")

    report = asyncio.run(reconciler.request_sync(MANUAL))

    assert server.posted == ["A", "B", "C"]
    assert report.confirmed == {i.local_id for i in items}
    assert not report.stopped_early
    assert queue.size() == 0


def test_transport_failure_stops_pass_and_keeps_tail(store):
    server = ScriptedServer({"B": "down"})
    queue, reconciler = build(store, server)
    a, b, c = fill(queue, "A", "B", "C")

    report = asyncio.run(reconciler.request_sync(MANUAL))

    assert server.posted == ["A"]
    assert report.stopped_early
    assert report.confirmed == {a.local_id}
    assert [i.local_id for i in queue.peek_all()] == [b.local_id, c.local_id]


def test_validation_rejection_is_dropped_and_recorded(store):
    server = ScriptedServer({"B": 422})
    queue, reconciler = build(store, server)
    a, b, c = fill(queue, "A", "B", "C")

    report = asyncio.run(reconciler.request_sync(MANUAL))

    assert server.posted == ["A", "B", "C"]
    assert report.confirmed == {a.local_id, c.local_id}
    assert [r.local_id for r in report.rejected] == [b.local_id]
    assert report.rejected[0].status_code == 422
    assert queue.size() == 0
    assert [r.name for r in reconciler.diagnostics] == ["B"]


@pytest.mark.parametrize("status", [401, 403, 500, 503])
def test_session_or_server_trouble_keeps_item(store, status):
    server = ScriptedServer({"B": status})
    queue, reconciler = build(store, server)
    a, b, c = fill(queue, "A", "B", "C")

    report = asyncio.run(reconciler.request_sync(MANUAL))

    assert report.stopped_early
    assert "HTTP %d" % status in report.stop_reason
    assert server.posted == ["A", "B"]
    assert [i.local_id for i in queue.peek_all()] == [b.local_id, c.local_id]
    assert not reconciler.diagnostics


def test_confirmed_items_are_never_resent(store):
    server = ScriptedServer({"B": "down"})
    queue, reconciler = build(store, server)
    fill(queue, "A", "B")

    asyncio.run(reconciler.request_sync(MANUAL))
    server.script.clear()
    asyncio.run(reconciler.request_sync(MANUAL))
    asyncio.run(reconciler.request_sync(MANUAL))

    assert server.posted == ["A", "B"]
    assert queue.size() == 0


def test_empty_queue_pass_sends_nothing(store):
    server = ScriptedServer()
    _, reconciler = build(store, server)
    report = asyncio.run(reconciler.request_sync(MANUAL))
    assert report == SyncReport.empty()
    assert server.posted == []


def test_refresh_hook_runs_only_after_confirmation(store):
    server = ScriptedServer({"A": 422})
    queue, reconciler = build(store, server)
    calls = []

    async def refresh():
        calls.append("refresh")

    reconciler.add_refresh_hook(refresh)
    fill(queue, "A")
    asyncio.run(reconciler.request_sync(MANUAL))
    assert calls == []

    fill(queue, "B")
    asyncio.run(reconciler.request_sync(MANUAL))
    assert calls == ["refresh"]


def test_failing_refresh_hook_does_not_fail_the_pass(store):
    queue, reconciler = build(store, ScriptedServer())

    def broken():
        raise RuntimeError("view went away")

    reconciler.add_refresh_hook(broken)
    fill(queue, "A")
    report = asyncio.run(reconciler.request_sync(MANUAL))
    assert len(report.confirmed) == 1
    assert queue.size() == 0


def test_concurrent_triggers_coalesce_into_one_followup(store):
    async def scenario():
        gate = asyncio.Event()
        posted = []

        async def handler(request):
            await gate.wait()
            posted.append(json.loads(request.content)["name"])
            return httpx.Response(201, json={"id": len(posted)})

        queue, reconciler = build(store, handler)
        fill(queue, "A")

        first = reconciler.trigger(MANUAL)
        await asyncio.sleep(0)
        assert reconciler.in_flight
        assert reconciler.trigger(RECONNECT) is first
        assert reconciler.trigger(MANUAL) is first

        gate.set()
        await first
        return queue, reconciler, posted

    queue, reconciler, posted = asyncio.run(scenario())
    assert posted == ["A"]
    assert reconciler.passes_run == 2
    assert queue.size() == 0
    assert not reconciler.in_flight


def test_backoff_holds_automatic_triggers_only():
    now = [100.0]
    backoff = RetryBackoff(initial=5.0, maximum=20.0, clock=lambda: now[0])
    assert backoff.ready() and backoff.delay == 0.0

    backoff.record_failure()
    assert backoff.delay == 5.0
    assert not backoff.ready()
    now[0] += 2.0
    assert backoff.remaining == 3.0
    now[0] += 3.0
    assert backoff.ready()
    assert backoff.remaining == 0.0

    backoff.record_failure()
    backoff.record_failure()
    backoff.record_failure()
    assert backoff.delay == 20.0

    backoff.reset()
    assert backoff.ready() and backoff.failures == 0


def test_failed_pass_backs_off_reconnect_but_not_manual(store):
    now = [0.0]
    server = ScriptedServer({"A": "down"})
    backoff = RetryBackoff(initial=30.0, maximum=60.0, clock=lambda: now[0])
    queue, reconciler = build(store, server, backoff=backoff)
    fill(queue, "A")

    async def scenario():
        first = await reconciler.request_sync(RECONNECT)
        held = await reconciler.request_sync(RECONNECT)
        assert reconciler.retry_scheduled
        server.script.clear()
        manual = await reconciler.request_sync(MANUAL)
        return first, held, manual

    first, held, manual = asyncio.run(scenario())
    assert first.stopped_early
    assert held.skipped and held.attempted == 0
    assert not reconciler.retry_scheduled
    assert len(manual.confirmed) == 1
    assert backoff.failures == 0
    assert queue.size() == 0


def test_foreign_success_page_stops_pass_and_keeps_confirmations(store):
    server = ScriptedServer({"B": "portal"})
    queue, reconciler = build(store, server)
    a, b = fill(queue, "A", "B")

    report = asyncio.run(reconciler.request_sync(MANUAL))

    assert report.stopped_early
    assert "unusable answer" in report.stop_reason
    assert report.confirmed == {a.local_id}
    assert [i.local_id for i in queue.peek_all()] == [b.local_id]

    server.script.clear()
    asyncio.run(reconciler.request_sync(MANUAL))
    assert server.posted == ["A", "B", "B"]
    assert queue.size() == 0


def test_unexpected_error_still_removes_settled_items(store):
    server = ScriptedServer({"B": "crash"})
    queue, reconciler = build(store, server)
    a, b, c = fill(queue, "A", "B", "C")

    with pytest.raises(RuntimeError):
        asyncio.run(reconciler.request_sync(MANUAL))

    assert reconciler.last_report.confirmed == {a.local_id}
    assert [i.local_id for i in queue.peek_all()] == [b.local_id, c.local_id]


def test_held_back_reconnect_is_retried_after_the_delay(store):
    server = ScriptedServer({"A": "down"})
    backoff = RetryBackoff(initial=0.05, maximum=0.05)
    queue, reconciler = build(store, server, backoff=backoff)
    fill(queue, "A")

    async def scenario():
        await reconciler.request_sync(RECONNECT)
        server.script.clear()
        held = await reconciler.request_sync(RECONNECT)
        scheduled = reconciler.retry_scheduled
        repeat = reconciler.trigger(RECONNECT)
        for _ in range(100):
            await asyncio.sleep(0.02)
            if queue.size() == 0 and not reconciler.in_flight:
                break
        return held, scheduled, repeat

    held, scheduled, repeat = asyncio.run(scenario())
    assert held.skipped
    assert scheduled
    assert repeat is None
    assert server.posted == ["A"]
    assert queue.size() == 0
    assert not reconciler.retry_scheduled
    assert reconciler.backoff.failures == 0


def test_close_drops_scheduled_retry(store):
    now = [0.0]
    server = ScriptedServer({"A": "down"})
    backoff = RetryBackoff(initial=30.0, maximum=60.0, clock=lambda: now[0])
    queue, reconciler = build(store, server, backoff=backoff)
    fill(queue, "A")

    async def scenario():
        await reconciler.request_sync(STARTUP)
        await reconciler.request_sync(RECONNECT)
        scheduled = reconciler.retry_scheduled
        reconciler.close()
        return scheduled

    assert asyncio.run(scenario())
    assert not reconciler.retry_scheduled
    assert queue.size() == 1
