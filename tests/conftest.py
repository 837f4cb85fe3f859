"""Shared pytest fixtures."""
from __future__ import annotations

import json
from pathlib import Path
from typing import List

import httpx
import pytest
from fastapi.testclient import TestClient

from budgetpro.core.config import Settings
from budgetpro.main import create_app
from budgetpro.offline.storage import LocalStore

COFFEE = {
    "name": "Coffee",
    "amount": 2.5,
    "category": "Food",
    "expense_date": "2025-02-22",
    "expense_hour": 9,
    "expense_minute": 0,
}


def expense(**overrides) -> dict:
    return {**COFFEE, **overrides}


class SwitchableTransport(httpx.AsyncBaseTransport):
    """Wraps a real transport; raises ConnectError while ``online`` is False.

    Every request that actually reaches the inner transport is recorded.
    """

    def __init__(self, inner: httpx.AsyncBaseTransport):
        self.inner = inner
        self.online = True
        self.sent: List[httpx.Request] = []

    async def handle_async_request(self, request: httpx.Request) -> httpx.Response:
        if not self.online:
            raise httpx.ConnectError("network is unreachable", request=request)
        self.sent.append(request)
        return await self.inner.handle_async_request(request)

    def posted_names(self) -> List[str]:
        return [
            json.loads(r.content)["name"]
            for r in self.sent
            if r.method == "POST" and r.url.path == "/api/expenses"
        ]


@pytest.fixture
def settings(tmp_path: Path) -> Settings:
    s = Settings(
        data_dir=tmp_path,
        debug=False,
        api_base_url="http://testserver",
        static_assets=[],
    )
    s.init_post_load()
    return s


@pytest.fixture
def app(settings: Settings):
    return create_app(settings_override=settings)


@pytest.fixture
def client(app) -> TestClient:
    return TestClient(app)


@pytest.fixture
def auth_client(client: TestClient) -> TestClient:
    resp = client.post(
        "/api/auth/register", json={"username": "alice", "password": "s3cret!"}
    )
    assert resp.status_code == 201
    return client


@pytest.fixture
def store(tmp_path: Path) -> LocalStore:
    return LocalStore(tmp_path / "client-store.sqlite3")

