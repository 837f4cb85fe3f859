"""Pending write queue: expense creates the server has not acknowledged yet.

The queue is an ordered list persisted as one JSON document in the local
store. Items are immutable; the queue only ever appends or removes. Insertion
order is replay order.
"""

from __future__ import annotations

import logging
import secrets
import time
from dataclasses import asdict, dataclass, fields
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, Callable, Dict, Iterable, List, Mapping, Optional, Union

from budgetpro.db.dal import to_utc_iso
from budgetpro.models.expense import ExpenseIn
from budgetpro.services.money import round2
from .errors import PersistenceError, QueueFullError
from .storage import LocalStore

logger = logging.getLogger("budgetpro.offline.queue")

QUEUE_KEY = "offline_queue"

# Fields that exist only on the client and never reach the server
_LOCAL_FIELDS = ("local_id", "queued_at")


def new_local_id() -> str:
    """Nanosecond timestamp plus a random suffix: sortable, unique in practice."""
    return f"{time.time_ns():020d}-{secrets.token_hex(4)}"


@dataclass(frozen=True)
class PendingExpense:
    local_id: str
    name: str
    amount: float
    category: str
    expense_date: str
    expense_hour: int
    expense_minute: int
    queued_at: str

    def to_payload(self) -> Dict[str, Any]:
        """Wire payload for create_expense, without the local-only fields."""
        data = asdict(self)
        for key in _LOCAL_FIELDS:
            data.pop(key)
        return data

    def to_record(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_record(cls, record: Mapping[str, Any]) -> "PendingExpense":
        names = {f.name for f in fields(cls)}
        missing = names - set(record)
        if missing:
            raise ValueError(f"queued record is missing {sorted(missing)}")
        return cls(**{k: record[k] for k in names})


ExpenseLike = Union[ExpenseIn, Mapping[str, Any]]


def payload_fields(expense: ExpenseLike) -> Dict[str, Any]:
    """Wire fields of an expense; dates become ISO strings, Decimal amounts floats."""
    if isinstance(expense, ExpenseIn):
        data = expense.model_dump(mode="json")
    else:
        data = dict(expense)
    expense_date = data.get("expense_date")
    if hasattr(expense_date, "isoformat"):
        expense_date = expense_date.isoformat()
    amount = data.get("amount")
    if isinstance(amount, Decimal):
        amount = round2(amount)
    return {
        "name": data.get("name"),
        "amount": amount,
        "category": data.get("category"),
        "expense_date": expense_date,
        "expense_hour": data.get("expense_hour"),
        "expense_minute": data.get("expense_minute"),
    }


class PendingWriteQueue:
    """Durable FIFO of PendingExpense records.

    Mutations (enqueue, remove) each persist the complete queue in one store
    write. Listeners receive the new size after every mutation.
    """

    def __init__(self, store: LocalStore, max_items: int = 1000, key: str = QUEUE_KEY):
        self._store = store
        self._max_items = max_items
        self._key = key
        self._owner_key = f"{key}:owner"
        self._listeners: List[Callable[[int], Any]] = []

    # Internal --------------------------------------------------
    def _parked_key(self, owner: str) -> str:
        return f"{self._key}:parked:{owner}"

    @staticmethod
    def _decode(records: Any) -> List[PendingExpense]:
        try:
            return [PendingExpense.from_record(r) for r in records]
        except (TypeError, ValueError) as e:
            raise PersistenceError(f"pending write queue is corrupt: {e}") from e

    def _load(self) -> List[PendingExpense]:
        return self._decode(self._store.get_json(self._key, []))

    def _save(self, items: List[PendingExpense]) -> None:
        self._store.set_json(self._key, [item.to_record() for item in items])
        for listener in list(self._listeners):
            listener(len(items))

    # Public API -----------------------------------------------
    def add_listener(self, listener: Callable[[int], Any]) -> None:
        self._listeners.append(listener)

    def enqueue(self, expense: ExpenseLike) -> PendingExpense:
        """Append an expense with a fresh local id and persist the queue.

        Raises PersistenceError when the store cannot be written (the write is
        then lost and the caller must tell the user), QueueFullError when the
        configured bound is reached.
        """
        items = self._load()
        if len(items) >= self._max_items:
            raise QueueFullError(
                f"pending write queue is full ({self._max_items} items)"
            )
        taken = {item.local_id for item in items}
        local_id = new_local_id()
        while local_id in taken:
            local_id = new_local_id()
        pending = PendingExpense(
            local_id=local_id,
            queued_at=to_utc_iso(datetime.now(timezone.utc)),
            **payload_fields(expense),
        )
        items.append(pending)
        self._save(items)
        logger.info("expense queued for sync (%d pending)", len(items))
        return pending

    def peek_all(self) -> List[PendingExpense]:
        return self._load()

    def remove(self, local_ids: Iterable[str]) -> int:
        """Drop every entry whose local id is given; unknown ids are ignored."""
        wanted = set(local_ids)
        if not wanted:
            return 0
        items = self._load()
        kept = [item for item in items if item.local_id not in wanted]
        removed = len(items) - len(kept)
        if removed:
            self._save(kept)
            logger.debug("removed %d item(s) from pending queue", removed)
        return removed

    def owner(self) -> Optional[str]:
        """Account the live queue belongs to (None until first sign-in)."""
        return self._store.get_json(self._owner_key)

    def claim(self, username: str) -> int:
        """Make ``username`` the owner of the live queue; returns its new size.

        Items queued under another account are parked under that account and
        come back when it signs in again, so they are never replayed with
        someone else's session. Unowned items go to the claimant.
        """
        owner = username.casefold()
        current = self.owner()
        if current == owner:
            return self.size()
        items = self._load()
        if current is not None and items:
            self._store.set_json(
                self._parked_key(current), [item.to_record() for item in items]
            )
            logger.info("parked %d pending item(s) of a previous account", len(items))
            items = []
        parked_key = self._parked_key(owner)
        restored = self._decode(self._store.get_json(parked_key, []))
        self._save(items + restored)
        self._store.delete(parked_key)
        self._store.set_json(self._owner_key, owner)
        if restored:
            logger.info("restored %d parked pending item(s)", len(restored))
        return len(items) + len(restored)

    def size(self) -> int:
        return len(self._load())

    def __len__(self) -> int:
        return self.size()
