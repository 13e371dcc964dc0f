"""Shared fixtures for the control plane tests."""

from unittest.mock import AsyncMock
import json

import httpx
import pytest
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from api.src.config import get_settings
from api.src.db.database import Base
from api.src.models.project import Build, Project
from api.src.services import clients, events, retry

settings = get_settings()

class FakeUpstream:
    """
    Stands in for the build worker and the deploy engine.

    Replies are queued per (method, path); the last one repeats. A reply is a
    status code, a (status, body) tuple, an exception to raise, or a callable
    taking the request.
    """

    def __init__(self):
        self.replies = {}
        self.requests = []

    def on(self, method: str, path: str, *replies):
        self.replies[(method, path)] = list(replies)

    def calls(self, method: str, path: str):
        return [r for r in self.requests if r.method == method and r.url.path == path]

    def payloads(self, method: str, path: str):
        return [json.loads(r.content) for r in self.calls(method, path)]

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        queued = self.replies.get((request.method, request.url.path))
        if not queued:
            return httpx.Response(404, json={"error": f"No route for {request.url.path}"})
        reply = queued.pop(0) if len(queued) > 1 else queued[0]

        if isinstance(reply, Exception):
            raise reply
        if callable(reply):
            reply = reply(request)
        if isinstance(reply, httpx.Response):
            return reply
        if isinstance(reply, tuple):
            status, body = reply
            return httpx.Response(status, json=body)
        return httpx.Response(reply, json={})

@pytest.fixture
async def session_factory():
    engine = create_async_engine(
        "sqlite+aiosqlite://",
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)
    await engine.dispose()

@pytest.fixture
async def db(session_factory):
    async with session_factory() as session:
        yield session

@pytest.fixture(autouse=True)
def publisher(monkeypatch):
    mock = AsyncMock()
    monkeypatch.setattr(events, "publisher", mock)
    return mock

@pytest.fixture(autouse=True)
def delays(monkeypatch):
    """Backoff delays requested by the retry helper; nothing actually sleeps."""
    recorded = []

    async def fake_sleep(seconds):
        recorded.append(seconds)

    monkeypatch.setattr(retry, "_sleep", fake_sleep)
    return recorded

@pytest.fixture
def upstream(monkeypatch):
    fake = FakeUpstream()
    fake.on("POST", "/ports/check", lambda request: httpx.Response(
        200, json={"port": json.loads(request.content)["port"], "available": True}
    ))
    fake.on("POST", "/build", (202, {"success": True}))
    fake.on("POST", "/activate", (200, {"success": True}))
    fake.on("POST", "/stop", (200, {"success": True}))

    def http_client(timeout):
        return httpx.AsyncClient(transport=httpx.MockTransport(fake.handler), timeout=timeout)

    monkeypatch.setattr(clients, "http_client", http_client)
    return fake

@pytest.fixture
async def project(db):
    project = Project(
        name="shop",
        repo_url="https://github.com/acme/shop.git",
        branch="main",
        root_directory="./",
        build_command="npm run build",
        runtime_kind="server",
        subdomain="shop",
        port=8001,
    )
    db.add(project)
    await db.commit()
    return project

@pytest.fixture
def make_build(db):
    async def _make(project, status="success", **fields) -> Build:
        build = Build(project_id=project.id, status=status, logs="", **fields)
        db.add(build)
        await db.commit()
        return build
    return _make
