"""Offline-capable expense client.

Wires the pieces together with explicit lifecycles (one instance per process,
built by ``OfflineExpenseClient.from_settings``):

    LocalStore -> PendingWriteQueue ----------------\\
    LocalStore -> OfflineCacheTransport -> httpx -> RemoteClient -> SyncReconciler
    ConnectivityMonitor --(offline -> online)--> SyncReconciler.trigger

Only two paths add to or drain the queue: a create that could not reach the
server (``add_expense``) and the reconciler's removal step. Signing in claims
the queue for that account, parking items another account left behind.
"""

from __future__ import annotations

import inspect
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, List, Optional

import httpx

from budgetpro.core.config import Settings
from budgetpro.models.auth import SessionOut
from .cache import OfflineCacheTransport
from .connectivity import ConnectivityMonitor, ConnectivityState
from .errors import ApplicationRejection, TransportError
from .queue import ExpenseLike, PendingExpense, PendingWriteQueue, payload_fields
from .reconciler import MANUAL, RECONNECT, STARTUP, RetryBackoff, SyncReconciler, SyncReport
from .remote import AggregateSeries, ExpenseListing, RemoteClient
from .storage import LocalStore

logger = logging.getLogger("budgetpro.offline.client")

SESSION_USER_KEY = "session_user"


class AddOutcome(str, Enum):
    SAVED = "saved"
    QUEUED = "queued"


@dataclass(frozen=True)
class AddResult:
    outcome: AddOutcome
    server_id: Optional[int] = None
    pending: Optional[PendingExpense] = None

    @property
    def message(self) -> str:
        if self.outcome is AddOutcome.SAVED:
            return "Expense saved."
        return "Offline: expense saved locally, it will be synchronized on reconnect."


@dataclass(frozen=True)
class SessionStatus:
    authenticated: bool
    username: Optional[str] = None
    degraded: bool = False  # server unreachable; running from local state


class OfflineExpenseClient:
    def __init__(
        self,
        remote: RemoteClient,
        queue: PendingWriteQueue,
        monitor: ConnectivityMonitor,
        reconciler: SyncReconciler,
        store: LocalStore,
        cache: Optional[OfflineCacheTransport] = None,
        http: Optional[httpx.AsyncClient] = None,
        static_assets: Optional[List[str]] = None,
    ):
        self.remote = remote
        self.queue = queue
        self.monitor = monitor
        self.reconciler = reconciler
        self.store = store
        self.cache = cache
        self._http = http
        self._static_assets = list(static_assets or [])
        self._refresh_hooks: List[Callable[[], Any]] = []
        reconciler.add_refresh_hook(self._notify_refresh)

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> "OfflineExpenseClient":
        """Build the whole client stack; ``transport`` replaces the network (tests)."""
        if settings.client_store_path is None:
            settings.init_post_load()
        store = LocalStore(settings.client_store_path)  # type: ignore[arg-type]
        cache = OfflineCacheTransport(
            transport or httpx.AsyncHTTPTransport(),
            store,
            cache_version=settings.cache_version,
            api_prefix=settings.api_prefix,
        )
        http = httpx.AsyncClient(
            base_url=str(settings.api_base_url),
            transport=cache,
            timeout=settings.http_timeout_seconds,
        )
        remote = RemoteClient(http)
        queue = PendingWriteQueue(store, max_items=settings.offline_queue_max_items)
        reconciler = SyncReconciler(
            queue,
            remote,
            backoff=RetryBackoff(
                initial=settings.sync_backoff_initial_seconds,
                maximum=settings.sync_backoff_max_seconds,
            ),
            diagnostics_limit=settings.sync_diagnostics_limit,
        )
        return cls(
            remote=remote,
            queue=queue,
            monitor=ConnectivityMonitor(),
            reconciler=reconciler,
            store=store,
            cache=cache,
            http=http,
            static_assets=settings.static_assets,
        )

    # Lifecycle -------------------------------------------------
    async def start(self) -> SessionStatus:
        """Check the session, seed connectivity and drain leftovers from last run.

        An unreachable session endpoint means degraded mode with the last known
        username, never a logout.
        """
        if self.cache is not None:
            self.cache.activate()
        try:
            session = await self.remote.check_session()
        except TransportError:
            logger.warning("session check failed, continuing in offline mode")
            self.monitor.notify(False)
            status = SessionStatus(
                authenticated=True,
                username=self.store.get_json(SESSION_USER_KEY),
                degraded=True,
            )
        else:
            self.monitor.notify(True)
            if session.authenticated:
                self._remember_user(session.username)
            status = SessionStatus(
                authenticated=session.authenticated, username=session.username
            )
        self.monitor.set_reconnect_callback(self._on_reconnect)

        if self.monitor.is_online:
            if self.cache is not None and self._static_assets and self._http is not None:
                await self.cache.precache(str(self._http.base_url), self._static_assets)
            if status.authenticated and self.queue.size():
                await self.reconciler.request_sync(STARTUP)
        return status

    async def aclose(self) -> None:
        self.reconciler.close()
        if self._http is not None:
            await self._http.aclose()

    async def __aenter__(self) -> "OfflineExpenseClient":
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.aclose()

    # Connectivity ----------------------------------------------
    def set_online(self, online: bool) -> bool:
        """Forward a platform reachability signal to the monitor."""
        return self.monitor.notify(online)

    def add_banner_listener(
        self, listener: Callable[[ConnectivityState, ConnectivityState], Any]
    ) -> None:
        self.monitor.add_listener(listener)

    async def check_connectivity(self) -> ConnectivityState:
        return await self.monitor.probe(self.remote)

    def _on_reconnect(self) -> None:
        self.reconciler.trigger(RECONNECT)

    # Refresh ---------------------------------------------------
    def add_refresh_hook(self, hook: Callable[[], Any]) -> None:
        """Called after server-visible state changed (saved add, synced queue)."""
        self._refresh_hooks.append(hook)

    async def _notify_refresh(self) -> None:
        for hook in list(self._refresh_hooks):
            result = hook()
            if inspect.isawaitable(result):
                await result

    # Writes ----------------------------------------------------
    async def add_expense(self, expense: ExpenseLike) -> AddResult:
        """Save an expense, falling back to the pending queue when offline.

        ApplicationRejection propagates (the user must fix the record);
        PersistenceError propagates when even the local queue cannot take it.
        """
        if not self.monitor.is_online:
            return AddResult(AddOutcome.QUEUED, pending=self.queue.enqueue(expense))
        try:
            accepted = await self.remote.create_expense(payload_fields(expense))
        except TransportError as e:
            logger.info("create failed without response, queueing: %s", e)
            # The next reachability signal then counts as a reconnect.
            self.monitor.notify(False)
            return AddResult(AddOutcome.QUEUED, pending=self.queue.enqueue(expense))
        await self._notify_refresh()
        return AddResult(AddOutcome.SAVED, server_id=accepted.server_id)

    async def delete_expense(self, expense_id: int) -> None:
        """Delete on the server; deletes are never queued, so TransportError propagates."""
        await self.remote.delete_expense(expense_id)
        await self._notify_refresh()

    async def retry_sync(self) -> SyncReport:
        return await self.reconciler.request_sync(MANUAL)

    @property
    def pending_count(self) -> int:
        return self.queue.size()

    # Reads -----------------------------------------------------
    async def list_expenses(
        self,
        period: str = "all",
        category: str = "all",
        year: Optional[int] = None,
        month: Optional[int] = None,
    ) -> ExpenseListing:
        return await self.remote.list_expenses(period, category, year, month)

    async def fetch_aggregates(self, kind: str, period: str = "month") -> AggregateSeries:
        return await self.remote.fetch_aggregates(kind, period)

    # Session ---------------------------------------------------
    async def login(self, username: str, password: str) -> SessionOut:
        session = await self.remote.login(username, password)
        self._remember_user(session.username)
        return session

    async def register(self, username: str, password: str) -> SessionOut:
        session = await self.remote.register(username, password)
        self._remember_user(session.username)
        return session

    def _remember_user(self, username: Optional[str]) -> None:
        self.store.set_json(SESSION_USER_KEY, username)
        if username:
            self.queue.claim(username)

    async def logout(self) -> None:
        """Close the session; local state is cleared even if the server is unreachable.

        Pending writes stay tagged with this account; another account signing in
        on this device parks them instead of replaying them.
        """
        try:
            await self.remote.logout()
        except (TransportError, ApplicationRejection) as e:
            logger.info("logout request failed (%s); clearing local session anyway", e)
        self.store.delete(SESSION_USER_KEY)
        if self.cache is not None:
            self.cache.clear_data()
