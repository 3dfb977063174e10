"""
Socius Sync — Test Configuration (conftest.py)
================================================

What:  Shared fixtures for the test suite.
How:   Environment variables are set before the package is imported so the
       settings singleton never sees a developer's .env values.

Fixture Overview:
    blob_backend     FileBlobBackend in a per-test temporary directory
    gateway          InMemoryGateway: idempotent fake remote with an
                     online switch and a gate to hold calls in flight
    server_engine    async SQLite engine with the server tables created
    app              FastAPI app bound to server_engine
    api_client       httpx.AsyncClient talking to `app` in-process
"""

import asyncio
import os
import tempfile
from typing import Any, Dict, List, Optional

# Must run before any socius_sync import: settings is built at import time
os.environ["DATABASE_URL"] = "sqlite+aiosqlite:///:memory:"
os.environ["API_BASE_URL"] = "http://test"
os.environ["LOCAL_STORE_ROOT"] = tempfile.mkdtemp(prefix="socius_test_")
os.environ["RETRY_MAX_ATTEMPTS"] = "2"
os.environ["RETRY_MIN_WAIT"] = "0"
os.environ["RETRY_MAX_WAIT"] = "0"
os.environ["SYNC_DELETE_TOMBSTONES"] = "false"
os.environ["LOG_LEVEL"] = "WARNING"

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import create_async_engine

from socius_sync.database import Base, build_session_factory, get_db_session
from socius_sync.exceptions import RemoteNotFoundError, RemoteUnavailableError
import socius_sync.models.record  # noqa: F401  registers server tables on Base
from socius_sync.services.gateway_base import RemoteGateway
from socius_sync.services.local_store import FileBlobBackend


# ══════════════════════════════════════════════════════════════════════════
# Fake remote
# ══════════════════════════════════════════════════════════════════════════


class InMemoryGateway(RemoteGateway):
    """
    Remote collection kept in a dict keyed by client_id.

    Attributes:
        online:        False makes every call raise RemoteUnavailableError
        fail_creates:  True makes only create() fail (list still works)
        gate:          when set, calls wait on this event before answering
        calls:         (method, client_id) for every call, in order
    """

    def __init__(self, records: Optional[List[Dict[str, Any]]] = None):
        self.records: Dict[str, Dict[str, Any]] = {r["client_id"]: dict(r) for r in records or []}
        self.online = True
        self.fail_creates = False
        self.fail_deletes = False
        self.gate: Optional[asyncio.Event] = None
        self.calls: List[tuple] = []

    async def _enter(self, method: str, client_id: Optional[str]) -> None:
        self.calls.append((method, client_id))
        if self.gate is not None:
            await self.gate.wait()
        if not self.online:
            raise RemoteUnavailableError()

    def count(self, method: str) -> int:
        return sum(1 for call in self.calls if call[0] == method)

    async def create(self, body: Dict[str, Any]) -> Dict[str, Any]:
        await self._enter("create", body["client_id"])
        if self.fail_creates:
            raise RemoteUnavailableError()
        self.records[body["client_id"]] = dict(body)
        return dict(body)

    async def list(self) -> List[Dict[str, Any]]:
        await self._enter("list", None)
        return [dict(r) for r in self.records.values()]

    async def update(self, record_id: str, patch: Dict[str, Any]) -> Dict[str, Any]:
        await self._enter("update", record_id)
        if record_id not in self.records:
            raise RemoteNotFoundError(record_id=record_id)
        self.records[record_id].update(patch)
        return dict(self.records[record_id])

    async def delete(self, record_id: str) -> None:
        await self._enter("delete", record_id)
        if self.fail_deletes:
            raise RemoteUnavailableError()
        self.records.pop(record_id, None)


# ══════════════════════════════════════════════════════════════════════════
# Device-side fixtures
# ══════════════════════════════════════════════════════════════════════════


@pytest.fixture
def blob_backend(tmp_path):
    return FileBlobBackend(str(tmp_path / "device"))


@pytest.fixture
def gateway():
    return InMemoryGateway()


class Clock:
    """Deterministic epoch-ms clock; each call advances by `step`."""

    def __init__(self, start: int = 1_704_067_200_000, step: int = 1000):
        self.now = start
        self.step = step

    def __call__(self) -> int:
        value = self.now
        self.now += self.step
        return value


@pytest.fixture
def clock():
    # 2024-01-01T00:00:00Z
    return Clock()


# ══════════════════════════════════════════════════════════════════════════
# Reference server fixtures
# ══════════════════════════════════════════════════════════════════════════


@pytest_asyncio.fixture
async def server_engine(tmp_path):
    """
    File-backed SQLite engine with the server tables.

    A file (not :memory:) so concurrent requests each get their own
    connection to the same database.
    """
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'server.db'}")
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def app(server_engine):
    from socius_sync.main import create_app

    session_factory = build_session_factory(server_engine)

    async def override_session():
        async with session_factory() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise

    application = create_app()
    application.dependency_overrides[get_db_session] = override_session
    return application


@pytest_asyncio.fixture
async def api_client(app):
    """
    httpx client routed into the app in-process.

    Usage:
        async def test_health(api_client):
            response = await api_client.get("/health")
    """
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
        yield client
