"""Connectivity monitor: a two-state machine fed by reachability notifications.

There are no timers. The platform (or the caller) reports reachability through
``notify()``; an offline -> online transition fires the reconnect callback,
and every transition is passed to the banner listeners. The reported state is
advisory: request failures in the remote layer still route writes to the
pending queue whatever the monitor says.
"""

from __future__ import annotations

import logging
from enum import Enum
from typing import TYPE_CHECKING, Any, Callable, List, Optional

from .errors import ApplicationRejection, TransportError

if TYPE_CHECKING:  # pragma: no cover
    from .remote import RemoteClient

logger = logging.getLogger("budgetpro.offline.connectivity")


class ConnectivityState(str, Enum):
    ONLINE = "online"
    OFFLINE = "offline"


Listener = Callable[[ConnectivityState, ConnectivityState], Any]


class ConnectivityMonitor:
    def __init__(
        self,
        initial: ConnectivityState = ConnectivityState.ONLINE,
        on_reconnect: Optional[Callable[[], Any]] = None,
    ):
        self._state = ConnectivityState(initial)
        self._on_reconnect = on_reconnect
        self._listeners: List[Listener] = []

    @property
    def state(self) -> ConnectivityState:
        return self._state

    @property
    def is_online(self) -> bool:
        return self._state is ConnectivityState.ONLINE

    def set_reconnect_callback(self, callback: Optional[Callable[[], Any]]) -> None:
        self._on_reconnect = callback

    def add_listener(self, listener: Listener) -> None:
        """Register a banner listener called as listener(new_state, previous)."""
        self._listeners.append(listener)

    def notify(self, online: bool) -> bool:
        """Apply a reachability signal; returns True when the state changed."""
        new = ConnectivityState.ONLINE if online else ConnectivityState.OFFLINE
        previous = self._state
        if new is previous:
            return False
        self._state = new
        logger.info("connectivity %s -> %s", previous.value, new.value)
        for listener in list(self._listeners):
            listener(new, previous)
        if new is ConnectivityState.ONLINE and self._on_reconnect is not None:
            self._on_reconnect()
        return True

    async def probe(self, remote: "RemoteClient") -> ConnectivityState:
        """One reachability check against the session endpoint.

        Any server answer, even a refusal, means the network is up.
        """
        try:
            await remote.check_session()
        except TransportError:
            self.notify(False)
        except ApplicationRejection:
            self.notify(True)
        else:
            self.notify(True)
        return self._state
