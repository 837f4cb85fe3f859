"""End-to-end offline client tests against the real app over ASGITransport."""
import asyncio
from decimal import Decimal
from datetime import date, timedelta

import httpx
import pytest

from budgetpro.offline.client import AddOutcome, OfflineExpenseClient
from budgetpro.offline.connectivity import ConnectivityState
from budgetpro.offline.errors import ApplicationRejection, TransportError
from budgetpro.offline.reconciler import MANUAL

from conftest import SwitchableTransport, expense


@pytest.fixture
def network(app):
    return SwitchableTransport(httpx.ASGITransport(app=app))


def run(settings, network, scenario):
    """Build a client, sign up, then run ``scenario(client)`` in one event loop."""

    async def go():
        client = OfflineExpenseClient.from_settings(settings, transport=network)
        async with client:
            await client.register("alice", "s3cret!")
            return await scenario(client)

    return asyncio.run(go())


def go_offline(client, network):
    network.online = False
    client.set_online(False)


def test_online_add_is_saved_directly(settings, network):
    async def scenario(client):
        refreshed = []
        client.add_refresh_hook(lambda: refreshed.append(1))
        result = await client.add_expense(expense())
        listing = await client.list_expenses()
        return result, listing, refreshed, client.pending_count

    result, listing, refreshed, pending = run(settings, network, scenario)
    assert result.outcome is AddOutcome.SAVED
    assert result.server_id is not None
    assert listing.source == "network"
    assert [e.name for e in listing.expenses] == ["Coffee"]
    assert refreshed == [1]
    assert pending == 0


def test_offline_add_is_queued_and_synced_on_reconnect(settings, network):
    async def scenario(client):
        await client.list_expenses()
        go_offline(client, network)

        queued = await client.add_expense(expense(name="Bus ticket", category="Transport"))
        stale = await client.list_expenses()
        pending_offline = client.pending_count

        network.online = True
        client.set_online(True)
        report = await client.reconciler.request_sync(MANUAL)
        fresh = await client.list_expenses()
        return queued, stale, pending_offline, report, fresh, client.pending_count

    queued, stale, pending_offline, report, fresh, pending = run(settings, network, scenario)
    assert queued.outcome is AddOutcome.QUEUED
    assert "offline" in queued.message.lower()
    assert stale.source == "cache"
    assert stale.count == 0
    assert pending_offline == 1
    assert len(report.confirmed) == 1
    assert fresh.source == "network"
    assert [e.name for e in fresh.expenses] == ["Bus ticket"]
    assert pending == 0
    assert network.posted_names() == ["Bus ticket"]


def test_queued_items_replay_in_insertion_order(settings, network):
    async def scenario(client):
        go_offline(client, network)
        for name in ("first", "second", "third"):
            await client.add_expense(expense(name=name))
        network.online = True
        client.set_online(True)
        await client.retry_sync()
        return client.pending_count

    assert run(settings, network, scenario) == 0
    assert network.posted_names() == ["first", "second", "third"]


def test_unreachable_server_queues_and_marks_offline(settings, network):
    async def scenario(client):
        network.online = False
        result = await client.add_expense(expense())
        return result, client.monitor.is_online, client.pending_count

    result, online, pending = run(settings, network, scenario)
    assert result.outcome is AddOutcome.QUEUED
    assert not online
    assert pending == 1


def test_invalid_record_is_rejected_not_queued(settings, network):
    tomorrow = (date.today() + timedelta(days=1)).isoformat()

    async def scenario(client):
        with pytest.raises(ApplicationRejection) as exc_info:
            await client.add_expense(expense(expense_date=tomorrow))
        return exc_info.value, client.pending_count

    rejection, pending = run(settings, network, scenario)
    assert rejection.status_code == 422
    assert rejection.consumes_queue_slot
    assert pending == 0


def test_offline_read_without_cache_reports_offline(settings, network):
    async def scenario(client):
        go_offline(client, network)
        return await client.fetch_aggregates("by_category", "month")

    series = run(settings, network, scenario)
    assert series.source == "offline"
    assert series.labels == [] and series.data == []
    assert series.message


def test_deletes_are_not_queued(settings, network):
    async def scenario(client):
        saved = await client.add_expense(expense())
        go_offline(client, network)
        with pytest.raises(TransportError):
            await client.delete_expense(saved.server_id)
        return client.pending_count

    assert run(settings, network, scenario) == 0


def test_startup_drains_leftover_queue(settings, network):
    async def scenario(client):
        go_offline(client, network)
        await client.add_expense(expense(name="left over"))
        network.online = True
        status = await client.start()
        return status, client.pending_count

    status, pending = run(settings, network, scenario)
    assert status.authenticated and not status.degraded
    assert pending == 0
    assert network.posted_names() == ["left over"]


def test_startup_offline_runs_degraded_with_known_user(settings, network):
    async def scenario(client):
        banners = []
        client.add_banner_listener(lambda new, old: banners.append(new))
        network.online = False
        status = await client.start()
        return status, client.monitor.state, banners

    status, state, banners = run(settings, network, scenario)
    assert status.degraded
    assert status.username == "alice"
    assert state is ConnectivityState.OFFLINE
    assert banners == [ConnectivityState.OFFLINE]


def test_probe_updates_connectivity(settings, network):
    async def scenario(client):
        network.online = False
        down = await client.check_connectivity()
        network.online = True
        up = await client.check_connectivity()
        return down, up

    assert run(settings, network, scenario) == (
        ConnectivityState.OFFLINE,
        ConnectivityState.ONLINE,
    )


def test_logout_forgets_cached_data(settings, network):
    async def scenario(client):
        await client.add_expense(expense())
        await client.list_expenses()
        await client.logout()
        go_offline(client, network)
        return await client.list_expenses(), client.store.get_json("session_user")

    listing, user = run(settings, network, scenario)
    assert listing.source == "offline"
    assert user is None


def test_failed_create_then_reachability_signal_drains_queue(settings, network):
    async def scenario():
        client = OfflineExpenseClient.from_settings(settings, transport=network)
        async with client:
            await client.register("alice", "s3cret!")
            await client.start()
            network.online = False
            await client.add_expense(expense(name="late bus"))
            network.online = True
            client.set_online(True)
            started = client.reconciler.in_flight
            await client.reconciler.request_sync(MANUAL)
            return started, client.pending_count

    started, pending = asyncio.run(scenario())
    assert started
    assert pending == 0
    assert network.posted_names() == ["late bus"]


def test_decimal_amount_is_saved_online(settings, network):
    async def scenario(client):
        return await client.add_expense(expense(amount=Decimal("3.10")))

    result = run(settings, network, scenario)
    assert result.outcome is AddOutcome.SAVED


def test_pending_writes_stay_with_their_account(settings, network):
    async def scenario(client):
        go_offline(client, network)
        await client.add_expense(expense(name="alice offline"))
        network.online = True
        client.set_online(True)
        await client.logout()

        await client.register("bob", "b0bpass")
        bob_pending = client.pending_count
        await client.retry_sync()
        bob_listing = await client.list_expenses()

        await client.logout()
        await client.login("alice", "s3cret!")
        alice_pending = client.pending_count
        await client.retry_sync()
        alice_listing = await client.list_expenses()
        return bob_pending, bob_listing, alice_pending, alice_listing

    bob_pending, bob_listing, alice_pending, alice_listing = run(settings, network, scenario)
    assert bob_pending == 0
    assert bob_listing.count == 0
    assert alice_pending == 1
    assert [e.name for e in alice_listing.expenses] == ["alice offline"]
    assert network.posted_names() == ["alice offline"]
