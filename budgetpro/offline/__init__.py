"""Offline support for the Budget Pro client.

Public entry point is OfflineExpenseClient; the building blocks are exported
for callers that wire their own stack.
"""

from .cache import OfflineCacheTransport, request_signature
from .client import AddOutcome, AddResult, OfflineExpenseClient, SessionStatus
from .connectivity import ConnectivityMonitor, ConnectivityState
from .errors import (
    ApplicationRejection,
    PersistenceError,
    QueueFullError,
    TransportError,
    UnexpectedResponse,
)
from .queue import PendingExpense, PendingWriteQueue
from .reconciler import Rejection, RetryBackoff, SyncReconciler, SyncReport
from .remote import AggregateSeries, ExpenseListing, RemoteClient
from .storage import LocalStore

__all__ = [
    "OfflineCacheTransport",
    "request_signature",
    "AddOutcome",
    "AddResult",
    "OfflineExpenseClient",
    "SessionStatus",
    "ConnectivityMonitor",
    "ConnectivityState",
    "ApplicationRejection",
    "PersistenceError",
    "QueueFullError",
    "TransportError",
    "UnexpectedResponse",
    "PendingExpense",
    "PendingWriteQueue",
    "Rejection",
    "RetryBackoff",
    "SyncReconciler",
    "SyncReport",
    "AggregateSeries",
    "ExpenseListing",
    "RemoteClient",
    "LocalStore",
]
