"""Typed async client for the Budget Pro HTTP API.

Every call either returns a parsed result, raises ApplicationRejection (the
server answered and said no) or raises TransportError (no answer at all, or a
success page that did not come from the API).
Reads go through the interception cache, so they report where their data came
from instead of raising when the network is down.
"""

from __future__ import annotations

import logging
from typing import Any, Dict, List, Literal, Mapping, Optional

import httpx
from pydantic import BaseModel, Field

from budgetpro.models.auth import SessionOut
from budgetpro.models.expense import ExpenseOut, SyncBatchOut
from budgetpro.models.stats import WeeklyDataset
from .cache import CACHE_HEADER, CACHE_HIT, CACHE_OFFLINE
from .errors import ApplicationRejection, TransportError, UnexpectedResponse

logger = logging.getLogger("budgetpro.offline.remote")

Source = Literal["network", "cache", "offline"]


class CreateAccepted(BaseModel):
    server_id: int


class ExpenseListing(BaseModel):
    expenses: List[ExpenseOut] = Field(default_factory=list)
    total: float = 0.0
    by_category: Dict[str, float] = Field(default_factory=dict)
    by_date: Dict[str, float] = Field(default_factory=dict)
    count: int = 0
    source: Source = "network"
    message: Optional[str] = None


class AggregateSeries(BaseModel):
    type: str
    period: str
    labels: List[str] = Field(default_factory=list)
    data: List[float] = Field(default_factory=list)
    counts: Optional[List[int]] = None
    datasets: Optional[List[WeeklyDataset]] = None
    source: Source = "network"
    message: Optional[str] = None


def _source_of(response: httpx.Response) -> Source:
    tag = response.headers.get(CACHE_HEADER)
    if tag == CACHE_HIT:
        return "cache"
    if tag == CACHE_OFFLINE:
        return "offline"
    return "network"


def _reason_from(response: httpx.Response) -> tuple[str, Optional[str]]:
    """Pull a human readable reason out of an error envelope."""
    try:
        body = response.json()
    except ValueError:
        return response.text or response.reason_phrase, None
    if not isinstance(body, dict):
        return str(body), None
    detail = body.get("detail")
    if isinstance(detail, list):
        parts = []
        for err in detail:
            loc = [str(p) for p in err.get("loc", ()) if p != "body"]
            parts.append(f"{'.'.join(loc)}: {err.get('msg')}" if loc else str(err.get("msg")))
        detail = "; ".join(parts)
    return str(detail or body.get("error") or response.reason_phrase), body.get("error")


class RemoteClient:
    def __init__(self, http: httpx.AsyncClient):
        self._http = http

    async def _send(self, method: str, url: str, **kwargs: Any) -> httpx.Response:
        try:
            return await self._http.request(method, url, **kwargs)
        except httpx.TransportError as e:
            raise TransportError(f"{method} {url} failed: {e}") from e

    def _reject(self, response: httpx.Response) -> ApplicationRejection:
        reason, code = _reason_from(response)
        return ApplicationRejection(response.status_code, reason, code)

    # Writes ----------------------------------------------------
    async def create_expense(self, record: Mapping[str, Any]) -> CreateAccepted:
        response = await self._send("POST", "/api/expenses", json=dict(record))
        if response.status_code in (200, 201):
            try:
                return CreateAccepted(server_id=response.json()["id"])
            except (ValueError, KeyError, TypeError) as e:
                raise UnexpectedResponse(
                    f"POST /api/expenses answered {response.status_code} "
                    f"without an expense id ({response.headers.get('content-type')})"
                ) from e
        raise self._reject(response)

    async def delete_expense(self, expense_id: int) -> None:
        response = await self._send("DELETE", f"/api/expenses/{expense_id}")
        if response.is_success:
            return None
        raise self._reject(response)

    async def sync_expenses(self, records: List[Mapping[str, Any]]) -> SyncBatchOut:
        response = await self._send(
            "POST", "/api/expenses/sync", json={"expenses": [dict(r) for r in records]}
        )
        if response.is_success:
            return SyncBatchOut.model_validate(response.json())
        raise self._reject(response)

    # Reads -----------------------------------------------------
    async def list_expenses(
        self,
        period: str = "all",
        category: str = "all",
        year: Optional[int] = None,
        month: Optional[int] = None,
    ) -> ExpenseListing:
        params: Dict[str, Any] = {"period": period, "category": category}
        if year is not None:
            params["year"] = year
        if month is not None:
            params["month"] = month
        response = await self._send("GET", "/api/expenses", params=params)
        source = _source_of(response)
        if source == "offline":
            return ExpenseListing(source=source, message=_reason_from(response)[0])
        if not response.is_success:
            raise self._reject(response)
        return ExpenseListing.model_validate({**response.json(), "source": source})

    async def fetch_aggregates(self, kind: str, period: str = "month") -> AggregateSeries:
        response = await self._send(
            "GET", "/api/stats", params={"type": kind, "period": period}
        )
        source = _source_of(response)
        if source == "offline":
            return AggregateSeries(
                type=kind, period=period, source=source, message=_reason_from(response)[0]
            )
        if not response.is_success:
            raise self._reject(response)
        return AggregateSeries.model_validate({**response.json(), "source": source})

    # Session ---------------------------------------------------
    async def check_session(self) -> SessionOut:
        """Live session state; cached or synthetic answers count as unreachable."""
        response = await self._send("GET", "/api/auth/check")
        if _source_of(response) != "network":
            raise TransportError("session endpoint unreachable")
        if not response.is_success:
            raise self._reject(response)
        try:
            return SessionOut.model_validate(response.json())
        except ValueError as e:
            raise UnexpectedResponse("session endpoint answered with a foreign page") from e

    async def login(self, username: str, password: str) -> SessionOut:
        response = await self._send(
            "POST", "/api/auth/login", json={"username": username, "password": password}
        )
        if response.is_success:
            return SessionOut.model_validate(response.json())
        raise self._reject(response)

    async def register(self, username: str, password: str) -> SessionOut:
        response = await self._send(
            "POST", "/api/auth/register", json={"username": username, "password": password}
        )
        if response.is_success:
            return SessionOut.model_validate(response.json())
        raise self._reject(response)

    async def logout(self) -> None:
        response = await self._send("POST", "/api/auth/logout")
        if not response.is_success:
            raise self._reject(response)
