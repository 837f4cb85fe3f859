"""Request interception cache for the offline client.

``OfflineCacheTransport`` wraps the real httpx transport and applies two
policies to GET requests:

  - data reads (path under the API prefix): network first. Every 2xx answer
    replaces the cached entry for its signature before it is returned. When
    the network fails the cached body is served; with nothing cached a
    synthetic 503 ``{"error": "offline", ...}`` answer is returned instead of
    the transport error.
  - static assets (any other GET): cache first, network on a miss.

Responses served from the store carry ``X-Budgetpro-Cache: hit``; synthetic
offline answers carry ``X-Budgetpro-Cache: offline``. Writes are never cached
and their transport errors propagate unchanged.
"""

from __future__ import annotations

import json
import logging
from typing import Iterable, List
from urllib.parse import urlencode

import httpx

from .storage import LocalStore, StoredResponse

logger = logging.getLogger("budgetpro.offline.cache")

CACHE_HEADER = "X-Budgetpro-Cache"
CACHE_HIT = "hit"
CACHE_OFFLINE = "offline"

OFFLINE_DETAIL = (
    "You are offline and no data from a previous connection is available."
)

# Headers describing the wire encoding of the original body; the stored body is
# already decoded.
_HOP_HEADERS = {"content-encoding", "content-length", "transfer-encoding"}


def request_signature(request: httpx.Request) -> str:
    """Method + path + sorted query parameters."""
    query = urlencode(sorted(request.url.params.multi_items()))
    return f"{request.method} {request.url.path}?{query}"


class OfflineCacheTransport(httpx.AsyncBaseTransport):
    def __init__(
        self,
        inner: httpx.AsyncBaseTransport,
        store: LocalStore,
        cache_version: str,
        api_prefix: str = "/api/",
    ):
        self._inner = inner
        self._store = store
        self.cache_version = cache_version
        self.api_prefix = api_prefix

    @property
    def api_namespace(self) -> str:
        return f"{self.cache_version}-api"

    @property
    def static_namespace(self) -> str:
        return f"{self.cache_version}-static"

    def is_data_request(self, request: httpx.Request) -> bool:
        return request.url.path.startswith(self.api_prefix)

    # Transport API --------------------------------------------
    async def handle_async_request(self, request: httpx.Request) -> httpx.Response:
        if request.method != "GET":
            return await self._inner.handle_async_request(request)
        if self.is_data_request(request):
            return await self._network_first(request)
        return await self._cache_first(request)

    async def aclose(self) -> None:
        await self._inner.aclose()

    # Policies --------------------------------------------------
    async def _network_first(self, request: httpx.Request) -> httpx.Response:
        signature = request_signature(request)
        try:
            return await self._fetch_and_store(request, self.api_namespace)
        except httpx.TransportError as e:
            cached = self._store.get_response(self.api_namespace, signature)
            if cached is not None:
                logger.info("network unavailable, serving cached %s", signature)
                return self._from_cache(request, cached)
            logger.info("network unavailable, nothing cached for %s (%s)", signature, e)
            return self._offline_response(request)

    async def _cache_first(self, request: httpx.Request) -> httpx.Response:
        cached = self._store.get_response(
            self.static_namespace, request_signature(request)
        )
        if cached is not None:
            return self._from_cache(request, cached)
        return await self._fetch_and_store(request, self.static_namespace)

    # Helpers ---------------------------------------------------
    async def _fetch_and_store(
        self, request: httpx.Request, namespace: str
    ) -> httpx.Response:
        response = await self._inner.handle_async_request(request)
        try:
            body = await response.aread()
        finally:
            await response.aclose()
        headers = [
            (k, v) for k, v in response.headers.multi_items() if k.lower() not in _HOP_HEADERS
        ]
        if response.is_success:
            self._store.put_response(
                namespace,
                StoredResponse(
                    signature=request_signature(request),
                    status_code=response.status_code,
                    media_type=response.headers.get("content-type"),
                    body=body,
                ),
            )
        return httpx.Response(
            status_code=response.status_code,
            headers=headers,
            content=body,
            request=request,
        )

    def _from_cache(self, request: httpx.Request, cached: StoredResponse) -> httpx.Response:
        headers = {CACHE_HEADER: CACHE_HIT}
        if cached.media_type:
            headers["content-type"] = cached.media_type
        return httpx.Response(
            status_code=cached.status_code,
            headers=headers,
            content=cached.body,
            request=request,
        )

    def _offline_response(self, request: httpx.Request) -> httpx.Response:
        body = {"error": "offline", "detail": OFFLINE_DETAIL, "offline": True}
        return httpx.Response(
            status_code=503,
            headers={CACHE_HEADER: CACHE_OFFLINE, "content-type": "application/json"},
            content=json.dumps(body).encode("utf-8"),
            request=request,
        )

    # Lifecycle -------------------------------------------------
    async def precache(self, base_url: str, paths: Iterable[str]) -> List[str]:
        """Fetch and store the app shell assets; returns the paths that failed."""
        failed: List[str] = []
        base = httpx.URL(base_url)
        for path in paths:
            request = httpx.Request("GET", base.join(path))
            try:
                response = await self._fetch_and_store(request, self.static_namespace)
            except httpx.TransportError as e:
                logger.warning("could not precache %s: %s", path, e)
                failed.append(path)
                continue
            if not response.is_success:
                logger.warning("could not precache %s: HTTP %s", path, response.status_code)
                failed.append(path)
        return failed

    def activate(self) -> int:
        """Drop entries cached under any other cache version."""
        current = {self.api_namespace, self.static_namespace}
        stale = [ns for ns in self._store.list_namespaces() if ns not in current]
        removed = self._store.drop_namespaces(stale)
        if stale:
            logger.info("dropped %d cached response(s) from %s", removed, stale)
        return removed

    def clear_data(self) -> int:
        """Forget cached API data (used at logout so another user never sees it)."""
        return self._store.drop_namespaces([self.api_namespace])
