from decimal import Decimal

import pytest

from budgetpro.models.expense import ExpenseIn
from budgetpro.offline.errors import PersistenceError, QueueFullError
from budgetpro.offline.queue import QUEUE_KEY, PendingWriteQueue
from budgetpro.offline.storage import LocalStore

from conftest import expense


def test_enqueue_keeps_insertion_order_and_unique_ids(store):
    queue = PendingWriteQueue(store)
    for name in ("A", "B", "C"):
        queue.enqueue(expense(name=name))
    items = queue.peek_all()
    assert [i.name for i in items] == ["A", "B", "C"]
    assert len({i.local_id for i in items}) == 3
    assert len(queue) == 3


def test_queue_survives_restart(tmp_path):
    path = tmp_path / "client.sqlite3"
    first = PendingWriteQueue(LocalStore(path))
    first.enqueue(expense(name="A"))
    first.enqueue(expense(name="B"))

    reopened = PendingWriteQueue(LocalStore(path))
    assert [i.name for i in reopened.peek_all()] == ["A", "B"]


def test_payload_excludes_local_fields(store):
    queue = PendingWriteQueue(store)
    pending = queue.enqueue(ExpenseIn.model_validate(expense()))
    payload = pending.to_payload()
    assert "local_id" not in payload and "queued_at" not in payload
    assert payload == {
        "name": "Coffee",
        "amount": 2.5,
        "category": "Food",
        "expense_date": "2025-02-22",
        "expense_hour": 9,
        "expense_minute": 0,
    }


def test_remove_is_idempotent(store):
    queue = PendingWriteQueue(store)
    a = queue.enqueue(expense(name="A"))
    b = queue.enqueue(expense(name="B"))

    assert queue.remove([a.local_id, "no-such-id"]) == 1
    assert queue.remove([a.local_id]) == 0
    assert queue.remove([]) == 0
    assert [i.local_id for i in queue.peek_all()] == [b.local_id]


def test_queue_bound(store):
    queue = PendingWriteQueue(store, max_items=2)
    queue.enqueue(expense(name="A"))
    queue.enqueue(expense(name="B"))
    with pytest.raises(QueueFullError):
        queue.enqueue(expense(name="C"))
    assert [i.name for i in queue.peek_all()] == ["A", "B"]
    assert issubclass(QueueFullError, PersistenceError)


def test_listeners_receive_size(store):
    sizes = []
    queue = PendingWriteQueue(store)
    queue.add_listener(sizes.append)
    a = queue.enqueue(expense(name="A"))
    queue.enqueue(expense(name="B"))
    queue.remove([a.local_id])
    queue.remove([a.local_id])
    assert sizes == [1, 2, 1]


def test_corrupt_queue_raises_persistence_error(store):
    store.set_json(QUEUE_KEY, [{"name": "half a record"}])
    with pytest.raises(PersistenceError):
        PendingWriteQueue(store).peek_all()


def test_unwritable_store_raises_persistence_error(tmp_path):
    store = LocalStore(tmp_path / "client.sqlite3")
    queue = PendingWriteQueue(store)
    store.path = tmp_path / "missing-dir" / "client.sqlite3"
    with pytest.raises(PersistenceError):
        queue.enqueue(expense())


def test_decimal_amount_is_queued_as_number(store):
    queue = PendingWriteQueue(store)
    pending = queue.enqueue(expense(amount=Decimal("2.50")))
    assert pending.to_payload()["amount"] == 2.5
    assert isinstance(pending.to_payload()["amount"], float)
    assert queue.peek_all()[0].amount == 2.5


def test_unencodable_value_raises_persistence_error(store):
    with pytest.raises(PersistenceError):
        store.set_json("broken", {"amount": object()})
    assert store.get_json("broken") is None


def test_claim_parks_other_accounts_items(store):
    queue = PendingWriteQueue(store)
    queue.enqueue(expense(name="unowned"))

    assert queue.claim("alice") == 1
    assert queue.owner() == "alice"
    queue.enqueue(expense(name="alice-2"))

    assert queue.claim("bob") == 0
    queue.enqueue(expense(name="bob-1"))

    assert queue.claim("Alice") == 2
    assert [i.name for i in queue.peek_all()] == ["unowned", "alice-2"]
    assert queue.claim("alice") == 2

    assert queue.claim("bob") == 1
    assert [i.name for i in queue.peek_all()] == ["bob-1"]
