"""Error taxonomy for the offline client.

- TransportError: no usable response was obtained (offline, DNS failure,
  timeout, a 2xx page that did not come from the API).
  Recovered locally by queueing writes or serving cached reads.
- ApplicationRejection: the server answered and declined the operation.
- PersistenceError: the local durable store could not be read or written.
"""

from __future__ import annotations

from typing import Optional

# Statuses after which a queued write is dropped for good; retrying the same
# payload cannot succeed.
CONSUMING_STATUSES = frozenset({400, 404, 409, 422})


class OfflineClientError(Exception):
    pass


class TransportError(OfflineClientError):
    pass


class ApplicationRejection(OfflineClientError):
    def __init__(
        self, status_code: int, reason: str, error_code: Optional[str] = None
    ):
        super().__init__(f"HTTP {status_code}: {reason}")
        self.status_code = status_code
        self.reason = reason
        self.error_code = error_code

    @property
    def consumes_queue_slot(self) -> bool:
        return self.status_code in CONSUMING_STATUSES


class PersistenceError(OfflineClientError):
    pass


class QueueFullError(PersistenceError):
    pass


class UnexpectedResponse(TransportError):
    """A 2xx answer that is not the API's (captive portal, proxy page).

    Treated as no answer: the write is queued or kept queued.
    """
